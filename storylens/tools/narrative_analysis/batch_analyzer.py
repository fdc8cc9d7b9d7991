"""Batch analyzer for running many entries through one shared pipeline using async/await."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml
from tqdm.asyncio import tqdm

from storylens.libs.config_loader import ConfigType, get_config
from .models import AnalysisOptions, AnalysisReport, Entry
from .pipeline import AnalysisPipeline

LOG = logging.getLogger(__name__)

ENTRY_FIELDS = ('id', 'category', 'text', 'title', 'duration', 'hours_per_week', 'weeks_per_year', 'achievements')


def load_entry(path: Path) -> Entry:
    """
    Load an entry from a plain-text or YAML file.

    Plain text becomes the entry text, with the file stem as its id. YAML files
    hold a mapping of entry fields; a missing id defaults to the file stem.

    Raises:
        ValueError: if a YAML file does not hold a mapping
    """
    path = Path(path)
    raw = path.read_text(encoding='utf-8')
    if path.suffix.lower() not in ('.yaml', '.yml'):
        return Entry(id=path.stem, text=raw)

    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Entry file {path} must contain a mapping, got {type(data).__name__}")
    fields = {k: v for k, v in data.items() if k in ENTRY_FIELDS}
    fields.setdefault('id', path.stem)
    fields['id'] = str(fields['id'])
    if 'achievements' in fields:
        fields['achievements'] = tuple(fields['achievements'] or ())
    return Entry(**fields)


@dataclass
class BatchAnalysisResult:
    """Result from analyzing one entry in a batch."""
    entry_id: str
    success: bool
    overall_index: float = 0.0
    reader_impression: str = ""
    status: str = ""
    degraded: bool = False
    error_message: Optional[str] = None
    report: Optional[AnalysisReport] = None
    report_path: Optional[str] = None
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat()

    @classmethod
    def from_report(cls, report: AnalysisReport, report_path: Optional[Path] = None) -> "BatchAnalysisResult":
        return cls(
            entry_id=report.entry_id,
            success=True,
            overall_index=report.overall_index,
            reader_impression=report.reader_impression,
            status=report.status,
            degraded=report.degraded,
            report=report,
            report_path=str(report_path) if report_path else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        data: Dict[str, Any] = {
            'entry_id': self.entry_id,
            'success': self.success,
            'timestamp': self.timestamp,
        }
        if self.error_message:
            data['error_message'] = self.error_message
        if self.report:
            data.update({
                'overall_index': self.overall_index,
                'reader_impression': self.reader_impression,
                'status': self.status,
                'degraded': self.degraded,
                'flags': list(self.report.flags),
                'unavailable_analyses': list(self.report.unavailable_analyses),
                'categories': {
                    score.category_id: score.score for score in self.report.categories
                },
            })
        if self.report_path:
            data['report_path'] = self.report_path
        return data


def save_report(report: AnalysisReport, output_path: Path) -> None:
    """Write one analysis report as YAML."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(report.to_yaml_dict(), f, default_flow_style=False, sort_keys=False, allow_unicode=True)


class BatchAnalyzer:
    """Analyze multiple entries concurrently through a single pipeline."""

    def __init__(self,
                 configs: ConfigType,
                 model: Optional[str] = None,
                 max_concurrent: Optional[int] = None,
                 pipeline: Optional[AnalysisPipeline] = None):
        """
        Initialize the batch analyzer.

        Args:
            configs: Configuration dictionary (required)
            model: Model to use (overrides config value)
            max_concurrent: Maximum entries analyzed at once (overrides config value)
            pipeline: Pre-built pipeline; created from ``configs`` when omitted
        """
        self.configs = configs
        self.max_concurrent = max_concurrent or get_config("batch.max_concurrent", configs, default=4)
        # One pipeline means one gateway, so every run shares the same model-call limiter.
        self.pipeline = pipeline or AnalysisPipeline.from_configs(configs, model=model)

    async def _analyze_single_async(self,
                                    entry: Entry,
                                    options: AnalysisOptions,
                                    output_dir: Optional[Path]) -> BatchAnalysisResult:
        try:
            report = await self.pipeline.analyze_async(entry, options)
            report_path = None
            if output_dir is not None:
                report_path = output_dir / f"{entry.id}.yaml"
                save_report(report, report_path)
            return BatchAnalysisResult.from_report(report, report_path)
        except Exception as e:  # pylint: disable=broad-except
            LOG.error(f"Error analyzing {entry.id}: {e}")
            return BatchAnalysisResult(entry_id=entry.id, success=False, error_message=str(e))

    async def analyze_all_async(self,
                                entries: Iterable[Entry],
                                options: Optional[AnalysisOptions] = None,
                                output_dir: Optional[Path] = None,
                                continue_on_error: bool = True) -> List[BatchAnalysisResult]:
        """
        Analyze all entries with bounded concurrency.

        Args:
            entries: Entries to analyze
            options: Analysis options applied to every entry
            output_dir: Directory to write one report YAML per entry (optional)
            continue_on_error: Whether to keep going after an entry fails

        Returns:
            List of BatchAnalysisResult objects sorted by entry id
        """
        entries = list(entries)
        options = options or AnalysisOptions()
        if not entries:
            LOG.error("No entries to analyze")
            return []

        LOG.info(f"Analyzing {len(entries)} entries (depth={options.depth}, max_concurrent={self.max_concurrent})")
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def analyze_with_semaphore(entry: Entry) -> BatchAnalysisResult:
            async with semaphore:
                return await self._analyze_single_async(entry, options, output_dir)

        tasks = [asyncio.ensure_future(analyze_with_semaphore(entry)) for entry in entries]
        results = []
        for coro in tqdm.as_completed(tasks, total=len(tasks), desc="Analyzing entries"):
            result = await coro
            results.append(result)
            if result.success:
                LOG.debug(f"Completed: {result.entry_id} - {result.overall_index} ({result.reader_impression})")
                continue
            LOG.warning(f"Failed: {result.entry_id} - {result.error_message}")
            if not continue_on_error:
                for task in tasks:
                    if not task.done():
                        task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                break

        results.sort(key=lambda r: r.entry_id)
        return results

    def analyze_all(self,
                    entries: Iterable[Entry],
                    options: Optional[AnalysisOptions] = None,
                    output_dir: Optional[Path] = None,
                    continue_on_error: bool = True) -> List[BatchAnalysisResult]:
        """Synchronous wrapper for analyze_all_async."""
        return asyncio.run(self.analyze_all_async(entries, options, output_dir, continue_on_error))

    def save_summary(self, results: List[BatchAnalysisResult], output_path: Path):
        """
        Save analysis summary to YAML file.

        Args:
            results: List of analysis results
            output_path: Path to save summary file
        """
        successful = [r for r in results if r.success]
        failed = [r for r in results if not r.success]

        summary = {
            'analysis_summary': {
                'timestamp': datetime.now().isoformat(),
                'total_entries': len(results),
                'successful': len(successful),
                'failed': len(failed),
                'degraded': sum(1 for r in successful if r.degraded),
                'average_index': round(sum(r.overall_index for r in successful) / len(successful), 1)
                if successful else 0,
            },
            'entries': [r.to_dict() for r in results]
        }

        with open(output_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(summary, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

        LOG.info(f"Summary saved to {output_path}")
