"""Shared fixtures: fake agents that stand in for the model service."""

import asyncio
import copy
import json
import re
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import pytest

from storylens.libs.config_loader import load_all_configs
from storylens.libs.model_gateway import ModelGateway
from storylens.libs.tracing import RunTracer
from storylens.tools.narrative_analysis.config import PipelineConfig
from storylens.tools.narrative_analysis.pipeline import AnalysisPipeline

CONFIG_DIR = Path(__file__).parent.parent / "config"

FOOD_DRIVE = (
    "I organized a 3-day food drive that collected 1,200 lbs of food for the downtown "
    "shelter, coordinating 15 volunteers."
)

_BATCH_IDS = re.compile(r"on these rubric categories: (.*?)\. For each")


class FakeResult:
    def __init__(self, output):
        self.output = output


class FakeAgent:
    """Async stand-in for a pydantic-ai Agent.

    ``responder(prompt)`` returns the raw model text, an exception to raise,
    or a coroutine producing either.
    """

    def __init__(self, responder: Callable[[str], object]):
        self.responder = responder
        self.prompts: List[str] = []

    async def run(self, prompt: str) -> FakeResult:
        self.prompts.append(prompt)
        response = self.responder(prompt)
        if asyncio.iscoroutine(response):
            response = await response
        if isinstance(response, BaseException):
            raise response
        return FakeResult(response)


class StatusError(Exception):
    """HTTP-style failure carrying a status code."""

    def __init__(self, status_code: int, message: str = "service error"):
        super().__init__(message)
        self.status_code = status_code


async def hang():
    await asyncio.sleep(3600)


def batch_ids(prompt: str) -> List[str]:
    match = _BATCH_IDS.search(prompt)
    return match.group(1).split(", ") if match else []


def is_batch_prompt(prompt: str) -> bool:
    return "RUBRIC CATEGORIES" in prompt


def is_authenticity_prompt(prompt: str) -> bool:
    return "sounds like their own voice" in prompt


def is_suggestion_prompt(prompt: str) -> bool:
    return "concrete revisions" in prompt


def batch_response(ids: Iterable[str], score: float = 7.0, quote: str = "1,200 lbs", **overrides) -> str:
    categories = []
    for category_id in ids:
        item = {
            "id": category_id,
            "score": score,
            "evidence": [quote],
            "justification": f"Evidence supports {category_id}.",
            "confidence": 0.8,
        }
        item.update(overrides.get(category_id, {}))
        categories.append(item)
    return "```json\n" + json.dumps({"categories": categories}) + "\n```"


def authenticity_response(score: float = 8.0, voice_type: str = "authentic") -> str:
    return json.dumps({
        "score": score,
        "voice_type": voice_type,
        "red_flags": [],
        "green_flags": ["concrete_numbers"],
    })


def suggestions_response(n: int = 2) -> str:
    return "Here you go:\n" + json.dumps({
        "suggestions": [{"text": f"Revision {i + 1}", "rationale": "More specific"} for i in range(n)]
    })


def make_responder(score: float = 7.0,
                   quote: str = "1,200 lbs",
                   scores: Optional[dict] = None,
                   fail_batches: Iterable[str] = (),
                   hang_batches: Iterable[str] = (),
                   authenticity: object = None,
                   suggestions: object = None) -> Callable[[str], object]:
    """
    Build a responder for the whole pipeline.

    A batch is addressed by any category id it contains. ``scores`` maps
    category ids to per-category score overrides.
    """
    fail_batches = set(fail_batches)
    hang_batches = set(hang_batches)
    scores = scores or {}

    def responder(prompt: str):
        if is_batch_prompt(prompt):
            ids = batch_ids(prompt)
            if fail_batches & set(ids):
                return "I'm sorry, I can't produce JSON right now."
            if hang_batches & set(ids):
                return hang()
            overrides = {cid: {"score": scores[cid]} for cid in ids if cid in scores}
            return batch_response(ids, score=score, quote=quote, **overrides)
        if is_authenticity_prompt(prompt):
            return authenticity if authenticity is not None else authenticity_response()
        if is_suggestion_prompt(prompt):
            return suggestions if suggestions is not None else suggestions_response()
        raise AssertionError(f"unexpected prompt: {prompt[:80]}")

    return responder


def make_configs(call_timeout: float = 0.5, run_timeout: float = 2.0) -> dict:
    """Repository configs with timings shrunk for tests."""
    configs = copy.deepcopy(load_all_configs(str(CONFIG_DIR)))
    pipeline = configs["pipeline"]
    pipeline["gateway"].update({
        "backoff_base_seconds": 0.0,
        "backoff_max_seconds": 0.0,
        "call_timeout_seconds": call_timeout,
    })
    for depth in pipeline["depths"].values():
        depth["run_timeout_seconds"] = run_timeout
    return configs


@pytest.fixture
def configs():
    return make_configs()


@pytest.fixture
def pipeline_config(configs):
    return PipelineConfig.from_configs(configs)


@pytest.fixture
def tracer():
    return RunTracer()


def build_pipeline(responder, config: PipelineConfig, tracer: Optional[RunTracer] = None, max_attempts: int = 2):
    agent = FakeAgent(responder)
    gateway = ModelGateway(agent, max_attempts=max_attempts, backoff_base=0.0, backoff_max=0.0)
    return AnalysisPipeline(config, gateway, tracer), agent
