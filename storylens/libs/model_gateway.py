"""Model gateway: one structured call to the language-model service.

The gateway renders a prompt, runs it through a pydantic-ai agent under a
wall-clock timeout, pulls a JSON object out of whatever text comes back,
validates it against a pydantic schema, and retries transient failures with
exponential backoff. Callers receive a ``GatewayResult`` and never see raw
model output.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
from pydantic_ai.exceptions import ModelHTTPError, UserError

LOG = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

_FENCED_JSON = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
_FENCED_ANY = re.compile(r"```[a-zA-Z]*\s*(.*?)\s*```", re.DOTALL)

PERMANENT_STATUS_CODES = frozenset({400, 401, 403, 404, 422})


class GatewayErrorKind(str, Enum):
    TIMEOUT = "timeout"
    MALFORMED = "malformed"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class GatewayError:
    """Typed description of a failed gateway invocation."""
    kind: GatewayErrorKind
    message: str
    attempts: int = 1

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message} (after {self.attempts} attempt(s))"


class TransientGatewayError(Exception):
    """A failure worth retrying (timeout, malformed payload, rate limit, outage)."""

    def __init__(self, kind: GatewayErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


class PermanentGatewayError(Exception):
    """Authentication or configuration failure. Never retried."""


class PayloadExtractionError(ValueError):
    """No JSON object could be recovered from the model output."""


@dataclass(frozen=True)
class GatewayResult(Generic[SchemaT]):
    """Either a validated payload or a GatewayError, never both."""
    payload: Optional[SchemaT] = None
    error: Optional[GatewayError] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, payload: SchemaT, attempts: int) -> "GatewayResult[SchemaT]":
        return cls(payload=payload, attempts=attempts)

    @classmethod
    def failure(cls, error: GatewayError) -> "GatewayResult[SchemaT]":
        return cls(error=error, attempts=error.attempts)


@dataclass(frozen=True)
class PromptSpec:
    """Role instructions, context, and an explicit output-format instruction."""
    role: str
    context: List[str] = field(default_factory=list)
    output_format: str = ""
    task: str = ""

    def render(self) -> str:
        parts = [f"ROLE:\n{self.role.strip()}"]
        if self.task:
            parts.append(f"TASK:\n{self.task.strip()}")
        for section in self.context:
            if section and section.strip():
                parts.append(section.strip())
        if self.output_format:
            parts.append(
                "OUTPUT FORMAT:\n"
                f"{self.output_format.strip()}\n"
                "Return exactly one JSON object and nothing else."
            )
        return "\n\n".join(parts)


class RetryBudget:
    """Per-run cap on the number of retries all gateway calls may spend."""

    def __init__(self, total: int):
        self.total = max(0, total)
        self.used = 0

    @property
    def remaining(self) -> int:
        return self.total - self.used

    def take(self) -> bool:
        # Single event loop: check-and-increment cannot interleave.
        if self.used >= self.total:
            return False
        self.used += 1
        return True


class ConcurrencyLimiter:
    """Caps in-flight model calls across every run sharing one gateway.

    Each synchronous ``analyze`` call runs its own event loop, possibly on its
    own thread, so the cap is a process-wide thread semaphore. Waiting callers
    poll it with ``asyncio.sleep`` and never block their loop.
    """

    def __init__(self, max_concurrent: int, poll_interval: float = 0.01):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.poll_interval = poll_interval
        self._slots = threading.BoundedSemaphore(max_concurrent)
        self._lock = threading.Lock()
        self.in_flight = 0
        self.peak_in_flight = 0

    async def acquire(self) -> None:
        while not self._slots.acquire(blocking=False):
            await asyncio.sleep(self.poll_interval)
        with self._lock:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)

    def release(self) -> None:
        with self._lock:
            self.in_flight -= 1
        self._slots.release()

    async def __aenter__(self) -> "ConcurrencyLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()


def extract_json_payload(text: str) -> dict[str, Any]:
    """
    Recover a single JSON object from model output.

    Surrounding prose and markdown fences are tolerated; the recovered value
    itself must be a JSON object.

    Raises:
        PayloadExtractionError: if no JSON object can be found
    """
    if not text or not text.strip():
        raise PayloadExtractionError("empty model output")

    candidates: List[str] = []
    for pattern in (_FENCED_JSON, _FENCED_ANY):
        candidates.extend(m.group(1) for m in pattern.finditer(text))
    candidates.append(text.strip())

    decoder = json.JSONDecoder()
    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return value

        # Scan for the first decodable object embedded in prose.
        for match in re.finditer(r"{", candidate):
            try:
                value, _ = decoder.raw_decode(candidate, match.start())
            except json.JSONDecodeError:
                continue
            if isinstance(value, dict):
                return value

    raise PayloadExtractionError("no JSON object found in model output")


def _output_text(result: Any) -> Any:
    """Pull the output out of an AgentRunResult (or a test double)."""
    if hasattr(result, 'output'):
        return result.output
    if hasattr(result, 'data'):
        return result.data
    return result


def classify_exception(exc: BaseException) -> Exception:
    """Map an exception raised by the agent onto the gateway taxonomy."""
    if isinstance(exc, (PermanentGatewayError, TransientGatewayError)):
        return exc
    if isinstance(exc, UserError):
        return PermanentGatewayError(f"model configuration error: {exc}")

    status_code = exc.status_code if isinstance(exc, ModelHTTPError) else getattr(exc, "status_code", None)
    if isinstance(status_code, int):
        if status_code == 429:
            return TransientGatewayError(GatewayErrorKind.RATE_LIMITED, f"rate limited (HTTP 429): {exc}")
        if status_code in PERMANENT_STATUS_CODES:
            return PermanentGatewayError(f"model service rejected the request (HTTP {status_code}): {exc}")
        return TransientGatewayError(GatewayErrorKind.UNAVAILABLE, f"model service error (HTTP {status_code}): {exc}")

    return TransientGatewayError(GatewayErrorKind.UNAVAILABLE, f"{type(exc).__name__}: {exc}")


class ModelGateway:
    """Send prompts to the model service and return validated payloads."""

    def __init__(self,
                 agent: Any,
                 *,
                 max_attempts: int = 3,
                 backoff_base: float = 0.5,
                 backoff_max: float = 4.0,
                 limiter: Optional[ConcurrencyLimiter] = None,
                 max_concurrent: int = 4):
        """
        Initialize the gateway.

        Args:
            agent: Object with an async ``run(prompt)`` method (a pydantic-ai Agent)
            max_attempts: Attempts per invocation, including the first
            backoff_base: Delay before the first retry, in seconds
            backoff_max: Upper bound on any single backoff delay
            limiter: Shared concurrency limiter (created if omitted)
            max_concurrent: Cap used when creating the limiter
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.agent = agent
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.limiter = limiter or ConcurrencyLimiter(max_concurrent)

    def backoff_delay(self, attempt: int) -> float:
        """Delay after a failed ``attempt`` (1-based)."""
        return min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))

    async def invoke(self,
                     prompt: PromptSpec,
                     response_schema: Type[SchemaT],
                     timeout: float,
                     budget: Optional[RetryBudget] = None) -> GatewayResult[SchemaT]:
        """
        Run one structured call with timeout, extraction, validation and retries.

        Raises:
            PermanentGatewayError: on authentication/configuration failures
        """
        rendered = prompt.render()
        attempt = 0

        while True:
            attempt += 1
            try:
                payload = await self._attempt(rendered, response_schema, timeout)
                if attempt > 1:
                    LOG.info(f"{response_schema.__name__} succeeded on attempt {attempt}")
                return GatewayResult.success(payload, attempt)
            except PermanentGatewayError:
                LOG.error(f"Permanent model service failure for {response_schema.__name__}")
                raise
            except TransientGatewayError as e:
                LOG.warning(f"{response_schema.__name__} attempt {attempt}/{self.max_attempts} "
                            f"failed ({e.kind.value}): {e.message}")
                failure = GatewayError(e.kind, e.message, attempt)

            if attempt >= self.max_attempts:
                return GatewayResult.failure(failure)
            if budget is not None and not budget.take():
                LOG.warning(f"Run retry budget exhausted; not retrying {response_schema.__name__}")
                return GatewayResult.failure(failure)
            await asyncio.sleep(self.backoff_delay(attempt))

    async def _attempt(self, rendered: str, response_schema: Type[SchemaT], timeout: float) -> SchemaT:
        async with self.limiter:
            try:
                result = await asyncio.wait_for(self.agent.run(rendered), timeout=timeout)
            except asyncio.TimeoutError:
                raise TransientGatewayError(GatewayErrorKind.TIMEOUT, f"no response within {timeout:.1f}s")
            except asyncio.CancelledError:
                raise
            except Exception as e:  # pylint: disable=broad-except
                raise classify_exception(e) from e

        output = _output_text(result)
        if isinstance(output, BaseModel):
            output = output.model_dump()
        try:
            data = output if isinstance(output, dict) else extract_json_payload(str(output))
        except PayloadExtractionError as e:
            raise TransientGatewayError(GatewayErrorKind.MALFORMED, str(e)) from e

        try:
            return response_schema.model_validate(data)
        except ValidationError as e:
            raise TransientGatewayError(
                GatewayErrorKind.MALFORMED,
                f"payload does not match {response_schema.__name__}: {e.error_count()} error(s)",
            ) from e
