#!/usr/bin/env python3
"""Command-line interface for analyzing student activity descriptions and essays."""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

from storylens.libs.config_loader import load_all_configs
from .batch_analyzer import BatchAnalyzer, load_entry
from .models import AnalysisOptions

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
LOG = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Score student-written entries against the narrative rubric and suggest revisions',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyze one entry (plain text or YAML with structured fields)
  storylens-analyze entries/food_drive.txt

  # Quick scoring without revision suggestions
  storylens-analyze entries/*.yaml --depth quick --skip-coaching

  # Write one report per entry plus a summary
  storylens-analyze entries/*.yaml --output-dir reports/ --summary reports/summary.yaml

  # Use a specific model
  storylens-analyze entries/essay.txt --model gpt-4o
        """
    )

    parser.add_argument(
        'entries',
        type=Path,
        nargs='+',
        help='Entry files to analyze (.txt or .yaml)'
    )
    parser.add_argument(
        '--depth', '-d',
        choices=['quick', 'standard', 'comprehensive'],
        default='standard',
        help='Analysis depth (default: standard)'
    )
    parser.add_argument(
        '--skip-coaching',
        action='store_true',
        help='Skip workshop item generation'
    )
    parser.add_argument(
        '--output-dir', '-o',
        type=Path,
        default=None,
        help='Directory for per-entry report YAML files (default: next to each entry file)'
    )
    parser.add_argument(
        '--summary', '-s',
        type=Path,
        default=None,
        help='Path to save summary YAML file (default: analysis_summary_TIMESTAMP.yaml in the output directory)'
    )
    parser.add_argument(
        '--config-dir', '-c',
        type=Path,
        default=None,
        help='Directory of YAML configuration files (default: the bundled config/ directory)'
    )
    parser.add_argument(
        '--model', '-m',
        type=str,
        default=None,
        help='OpenAI model to use (overrides config value)'
    )
    parser.add_argument(
        '--max-concurrent', '-t',
        type=int,
        default=None,
        help='Maximum number of entries analyzed at once (overrides config value)'
    )
    parser.add_argument(
        '--continue-on-error',
        action='store_true',
        help='Continue analyzing even if some entries fail'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )
    return parser


def main(argv=None):
    """Main entry point for storylens-analyze command."""
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    missing = [p for p in args.entries if not p.is_file()]
    if missing:
        for path in missing:
            LOG.error(f"Entry file does not exist: {path}")
        sys.exit(1)

    try:
        entries = [load_entry(path) for path in args.entries]
    except (OSError, ValueError) as e:
        LOG.error(f"Failed to load entries: {e}")
        sys.exit(1)

    try:
        config = load_all_configs(args.config_dir)
    except Exception as e:
        LOG.error(f"Failed to load configuration: {e}")
        sys.exit(1)

    try:
        analyzer = BatchAnalyzer(configs=config, model=args.model, max_concurrent=args.max_concurrent)
    except Exception as e:
        LOG.error(f"Failed to initialize analyzer: {e}")
        sys.exit(1)

    output_dir = args.output_dir or args.entries[0].parent
    options = AnalysisOptions(depth=args.depth, skip_coaching=args.skip_coaching)
    LOG.info(f"Analyzing {len(entries)} entries at depth '{args.depth}'")
    if args.model:
        LOG.info(f"Using model: {args.model}")

    try:
        results = analyzer.analyze_all(
            entries,
            options=options,
            output_dir=output_dir,
            continue_on_error=args.continue_on_error
        )
    except Exception as e:
        LOG.error(f"Analysis failed: {e}")
        sys.exit(1)

    if not results:
        LOG.error("No entries were analyzed")
        sys.exit(1)

    if args.summary is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        summary_path = output_dir / f"analysis_summary_{timestamp}.yaml"
    else:
        summary_path = args.summary

    try:
        analyzer.save_summary(results, summary_path)
    except Exception as e:
        LOG.error(f"Failed to save summary: {e}")

    successful = [r for r in results if r.success]
    failed = [r for r in results if not r.success]

    print(f"\n{'='*60}")
    print("Analysis Complete")
    print(f"{'='*60}")
    print(f"Total entries: {len(results)}")
    print(f"Analyzed: {len(successful)}")
    print(f"Failed: {len(failed)}")

    if successful:
        print("\nResults:")
        for result in successful:
            marker = " (degraded)" if result.degraded else ""
            print(f"  {result.entry_id}: {result.overall_index:.1f}/100 {result.reader_impression}{marker}")
            if result.report and result.report.workshop_items:
                for item in result.report.workshop_items:
                    print(f"    [{item.severity}] {item.category_id}: {item.problem}")

    if failed:
        print("\nFailed entries:")
        for result in failed:
            print(f"  {result.entry_id}: {result.error_message}")

    print(f"\nReports saved in: {output_dir}")
    print(f"Summary saved to: {summary_path}")

    if failed and not args.continue_on_error:
        sys.exit(1)


if __name__ == "__main__":
    main()
