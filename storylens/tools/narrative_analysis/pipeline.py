"""Pipeline orchestrator: one entry in, one AnalysisReport out."""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from storylens.libs.config_loader import ConfigType
from storylens.libs.llm import create_agent
from storylens.libs.model_gateway import ModelGateway, PermanentGatewayError, RetryBudget
from storylens.libs.tracing import RunTracer, Timer
from .aggregator import aggregate
from .authenticity import AuthenticityDetector, heuristic_authenticity
from .calibration import calibrate
from .category_scorer import CategoryScorer, PartialFailure
from .config import DepthProfile, PipelineConfig
from .errors import DeadlineExceeded, IntegrityError
from .features import extract_features
from .models import (
    AnalysisOptions,
    AnalysisReport,
    AuthenticityAnalysis,
    Entry,
    ExtractedFeatures,
    RubricCategoryScore,
    WorkshopItem,
)
from .workshop import WorkshopItemGenerator

LOG = logging.getLogger(__name__)


@dataclass
class PipelineRun:
    """Mutable bookkeeping for a single analyze() call. Never shared between runs."""
    run_id: str
    entry: Entry
    options: AnalysisOptions
    profile: DepthProfile
    budget: RetryBudget
    deadline: float
    state: str = "pending"
    unavailable: List[str] = field(default_factory=list)
    deadline_exceeded: bool = False

    def remaining(self) -> float:
        return max(0.0, self.deadline - asyncio.get_running_loop().time())

    def degrade(self, analysis: str) -> None:
        if analysis not in self.unavailable:
            self.unavailable.append(analysis)


class AnalysisPipeline:
    """
    Run the analysis state machine for one entry at a time.

    extracting -> scoring (category batches and authenticity in parallel) ->
    calibrating -> aggregating -> generating_workshop_items -> done, or failed
    when no category batch produced usable scores.
    """

    def __init__(self, config: PipelineConfig, gateway: ModelGateway, tracer: Optional[RunTracer] = None):
        self.config = config
        self.gateway = gateway
        self.tracer = tracer or RunTracer()
        self.scorer = CategoryScorer(gateway, config)
        self.authenticity = AuthenticityDetector(gateway, config)
        self.workshop = WorkshopItemGenerator(gateway, config)

    @classmethod
    def from_configs(cls,
                     configs: ConfigType,
                     model: Optional[str] = None,
                     agent: Any = None,
                     tracer: Optional[RunTracer] = None) -> "AnalysisPipeline":
        """
        Build a pipeline from merged YAML configs.

        Args:
            configs: Configuration dictionary (required)
            model: Model to use (overrides config value)
            agent: Pre-built agent; when omitted one is created from the ``openai`` section
            tracer: Tracer for run events

        Raises:
            ConfigError: if the pipeline configuration is invalid
            KeyError: if no agent is given and the OpenAI API key is missing
        """
        config = PipelineConfig.from_configs(configs)
        if agent is None:
            agent = create_agent(configs, model=model)
        settings = config.gateway
        gateway = ModelGateway(
            agent,
            max_attempts=settings.max_attempts,
            backoff_base=settings.backoff_base_seconds,
            backoff_max=settings.backoff_max_seconds,
            max_concurrent=settings.max_concurrent_calls,
        )
        return cls(config, gateway, tracer)

    def analyze(self, entry: Entry, options: Optional[AnalysisOptions] = None) -> AnalysisReport:
        """Synchronous wrapper around ``analyze_async``."""
        return asyncio.run(self.analyze_async(entry, options))

    async def analyze_async(self, entry: Entry, options: Optional[AnalysisOptions] = None) -> AnalysisReport:
        """
        Analyze one entry under the depth profile's wall-clock deadline.

        External flakiness never raises: failed sub-analyses are recorded on
        the report, which is marked degraded.

        Raises:
            PermanentGatewayError: on authentication or model configuration failure
            IntegrityError: if the assembled report has no categories
        """
        options = options or AnalysisOptions()
        profile = self.config.depth(options.depth)
        loop = asyncio.get_running_loop()
        run = PipelineRun(
            run_id=uuid.uuid4().hex[:12],
            entry=entry,
            options=options,
            profile=profile,
            budget=RetryBudget(self.config.run_retry_budget),
            deadline=loop.time() + profile.run_timeout_seconds,
        )
        LOG.info(f"Analyzing entry {entry.id} (run {run.run_id}, depth={options.depth})")

        try:
            return await self._run(run)
        except PermanentGatewayError as e:
            self._transition(run, "failed", "failed", reason=str(e))
            raise

    async def _run(self, run: PipelineRun) -> AnalysisReport:
        features = self._extract(run)
        if features is None:
            return self._failed_report(run)

        empty = features.is_empty
        if empty:
            self._transition(run, "scoring", "skipped", reason="empty entry")
            scores = [RubricCategoryScore.placeholder(c.id) for c in self.config.categories]
            authenticity = AuthenticityAnalysis.neutral()
            all_failed = False
        else:
            scores, authenticity, all_failed = await self._score(run, features)

        with Timer() as timer:
            scores = calibrate(scores, self.config.calibration)
        self._transition(run, "calibrating", "completed", elapsed_ms=timer.elapsed_ms,
                         table=self.config.calibration.version)

        with Timer() as timer:
            report = aggregate(
                scores,
                authenticity,
                self.config,
                entry_id=run.entry.id,
                depth=run.options.depth,
                empty_entry=empty,
                unavailable_analyses=run.unavailable,
                deadline_exceeded=run.deadline_exceeded,
                failed=all_failed,
            )
            self._check_integrity(report)
        self._transition(run, "aggregating", "completed", elapsed_ms=timer.elapsed_ms,
                         overall_index=report.overall_index)

        if all_failed:
            self._transition(run, "generating_workshop_items", "skipped", reason="no usable scores")
            self._transition(run, "failed", "failed", reason="every category batch failed")
            return report

        items = await self._workshop(run, report, features)
        report = report.model_copy(update={
            "workshop_items": tuple(items),
            "unavailable_analyses": tuple(run.unavailable),
            "deadline_exceeded": run.deadline_exceeded,
            "degraded": report.degraded or run.deadline_exceeded or bool(run.unavailable),
        })
        self._transition(run, "done", "degraded" if report.degraded else "completed",
                         overall_index=report.overall_index, unavailable=list(run.unavailable))
        return report

    def _transition(self, run: PipelineRun, stage: str, status: str, elapsed_ms: float = 0.0, **detail) -> None:
        run.state = stage
        self.tracer.emit(run.run_id, stage, status, elapsed_ms=elapsed_ms, entry_id=run.entry.id, **detail)

    def _extract(self, run: PipelineRun) -> Optional[ExtractedFeatures]:
        self._transition(run, "extracting", "started")
        with Timer() as timer:
            try:
                features = extract_features(run.entry.text)
            except Exception as e:  # pylint: disable=broad-except
                LOG.exception(f"Feature extraction failed for {run.entry.id}")
                self._transition(run, "extracting", "failed", reason=f"{type(e).__name__}: {e}")
                return None
        self._transition(run, "extracting", "completed", elapsed_ms=timer.elapsed_ms,
                         words=features.word_count)
        return features

    def _failed_report(self, run: PipelineRun) -> AnalysisReport:
        run.degrade("feature_extraction")
        report = aggregate(
            [RubricCategoryScore.placeholder(c.id, status="unavailable") for c in self.config.categories],
            None,
            self.config,
            entry_id=run.entry.id,
            depth=run.options.depth,
            unavailable_analyses=run.unavailable,
            failed=True,
        )
        self._check_integrity(report)
        self._transition(run, "failed", "failed", reason="feature extraction failed")
        return report

    async def _score(self,
                     run: PipelineRun,
                     features: ExtractedFeatures) -> Tuple[List[RubricCategoryScore], AuthenticityAnalysis, bool]:
        """Run category batches and the authenticity call together under the run deadline."""
        self._transition(run, "scoring", "started")
        categories = self.config.categories
        batches = self.scorer.plan_batches(categories)

        # The model authenticity call runs alongside scoring, so batches get the heuristic pre-signals.
        pre_signals = heuristic_authenticity(features)
        batch_tasks = {
            asyncio.create_task(self.scorer.score_batch(batch, run.entry, features, pre_signals, run.budget)): batch
            for batch in batches
        }
        auth_task = asyncio.create_task(self.authenticity.detect_authenticity(run.entry, features, run.budget))
        tasks = set(batch_tasks) | {auth_task}

        with Timer() as timer:
            done, pending = await asyncio.wait(
                tasks, timeout=run.remaining(), return_when=asyncio.FIRST_EXCEPTION
            )
            await self._cancel(pending)

        for task in done:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()

        if pending:
            run.deadline_exceeded = True
            LOG.warning(f"Run {run.run_id}: cancelled {len(pending)} scoring call(s) at the deadline")
            self._transition(run, "scoring", "cancelled", elapsed_ms=timer.elapsed_ms, pending=len(pending))

        outcomes = [task.result() for task in batch_tasks if task in done]
        result = self.scorer.collect(categories, outcomes)

        failed_batches = [
            batch.name for task, batch in batch_tasks.items()
            if task not in done or task.result().error is not None
        ]
        for name in failed_batches:
            run.degrade(f"category_batch:{name}")

        authenticity = auth_task.result() if auth_task in done else AuthenticityAnalysis.neutral()
        if not authenticity.available:
            run.degrade("authenticity")

        scores = result.scores if isinstance(result, PartialFailure) else result
        all_failed = len(failed_batches) == len(batches)
        status = "failed" if all_failed else ("degraded" if failed_batches or not authenticity.available else "completed")
        self._transition(run, "scoring", status, elapsed_ms=timer.elapsed_ms,
                         batches=len(batches), failed_batches=failed_batches,
                         authenticity=authenticity.source)
        return scores, authenticity, all_failed

    async def _workshop(self,
                        run: PipelineRun,
                        report: AnalysisReport,
                        features: ExtractedFeatures) -> List[WorkshopItem]:
        if run.options.skip_coaching:
            self._transition(run, "generating_workshop_items", "skipped", reason="skip_coaching")
            return []

        self._transition(run, "generating_workshop_items", "started")
        with Timer() as timer:
            items = self.workshop.build_items(report, run.entry, features, max_items=run.profile.max_workshop_items)
            if items and run.profile.generate_suggestions and not features.is_empty:
                items = await self._with_suggestions(run, items)
        self._transition(run, "generating_workshop_items", "completed", elapsed_ms=timer.elapsed_ms,
                         items=len(items))
        return items

    async def _with_suggestions(self, run: PipelineRun, items: List[WorkshopItem]) -> List[WorkshopItem]:
        try:
            items = await self.workshop.add_suggestions(
                items, run.entry, budget=run.budget, timeout=run.remaining()
            )
        except DeadlineExceeded as e:
            run.deadline_exceeded = True
            LOG.warning(f"Run {run.run_id}: {e}")
            items = e.partial

        if any(item.suggestion_status == "unavailable" for item in items):
            run.degrade("workshop_suggestions")
        return items

    @staticmethod
    async def _cancel(pending) -> None:
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _check_integrity(self, report: AnalysisReport) -> None:
        if not report.categories:
            raise IntegrityError(f"report for {report.entry_id} has no categories")
        missing = [cid for cid in self.config.category_ids if report.category(cid) is None]
        if missing:
            raise IntegrityError(f"report for {report.entry_id} is missing categories: {missing}")
        if report.overall_index is None:
            raise IntegrityError(f"report for {report.entry_id} has no overall index")
