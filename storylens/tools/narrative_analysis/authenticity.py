"""Authenticity detection: manufactured voice versus authentic voice."""

import logging
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from storylens.libs.model_gateway import ModelGateway, PromptSpec, RetryBudget
from .config import PipelineConfig
from .features import render_feature_summary
from .models import AuthenticityAnalysis, Entry, ExtractedFeatures
from .prompts import render_entry

LOG = logging.getLogger(__name__)

AUTHENTICITY_ROLE = (
    "You are an admissions reader who specializes in telling a student's own voice apart "
    "from manufactured, coached, or template-driven writing. Manufactured voice leans on "
    "buzzwords, résumé phrasing, passive constructions and grand claims without detail. "
    "Authentic voice has specific, slightly untidy detail only this writer would know, "
    "admitted difficulty, and plain language."
)


class AuthenticityPayload(BaseModel):
    """Expected model response for the authenticity call."""
    score: float = Field(ge=0, le=10)
    voice_type: str = Field(pattern=r"^(manufactured|mixed|authentic)$")
    red_flags: List[str] = Field(default_factory=list)
    green_flags: List[str] = Field(default_factory=list)

    @field_validator("voice_type", mode="before")
    @classmethod
    def _lowercase(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


def heuristic_authenticity(features: ExtractedFeatures) -> AuthenticityAnalysis:
    """
    Estimate authenticity from extracted features alone.

    Used as a pre-signal to bias the model prompt and as scoring context while
    the model call is still in flight.
    """
    if features.is_empty:
        return AuthenticityAnalysis(source="heuristic")

    red: List[str] = []
    green: List[str] = []
    score = 6.0

    if features.buzzword_density >= 2.0:
        red.append("buzzword_heavy")
        score -= 2.0
    elif features.voice.with_label('buzzword'):
        red.append("buzzwords_present")
        score -= 1.0
    if features.passive_ratio > 0.4:
        red.append("passive_voice")
        score -= 1.0
    if features.evidence.with_label('outcome') and not features.evidence.with_label('quantity'):
        red.append("unquantified_claims")
        score -= 0.5

    if features.evidence.with_label('quantity'):
        green.append("concrete_numbers")
        score += 1.0
    if features.arc.with_label('stakes'):
        green.append("admits_difficulty")
        score += 1.0
    if features.reflection_quality in ("moderate", "deep"):
        green.append("genuine_reflection")
        score += 1.0
    if features.collaboration.with_label('named_partner'):
        green.append("names_real_people")
        score += 0.5

    score = max(0.0, min(10.0, score))
    if score < 4.5:
        voice_type = "manufactured"
    elif score < 7.0:
        voice_type = "mixed"
    else:
        voice_type = "authentic"

    return AuthenticityAnalysis(
        score=round(score, 1),
        voice_type=voice_type,
        red_flags=tuple(red),
        green_flags=tuple(green),
        source="heuristic",
    )


def render_authenticity_context(authenticity: Optional[AuthenticityAnalysis]) -> str:
    """Format an authenticity analysis as prompt context."""
    if authenticity is None or not authenticity.available:
        return "AUTHENTICITY SIGNALS:\n- Not available; judge voice from the text alone."
    label = "heuristic pre-signals" if authenticity.source == "heuristic" else "reader assessment"
    return "\n".join([
        f"AUTHENTICITY SIGNALS ({label}):",
        f"- Score: {authenticity.score}/10 ({authenticity.voice_type} voice)",
        f"- Red flags: {', '.join(authenticity.red_flags) or 'none'}",
        f"- Green flags: {', '.join(authenticity.green_flags) or 'none'}",
    ])


class AuthenticityDetector:
    """Score an entry's voice with one model call."""

    def __init__(self, gateway: ModelGateway, config: PipelineConfig):
        self.gateway = gateway
        self.config = config

    def _build_prompt(self, entry: Entry, features: ExtractedFeatures) -> PromptSpec:
        pre_signals = heuristic_authenticity(features)
        return PromptSpec(
            role=AUTHENTICITY_ROLE,
            task=(
                "Assess whether this student's writing sounds like their own voice. The "
                "heuristic pre-signals below come from pattern matching and may be wrong; "
                "weigh them against the text itself."
            ),
            context=[
                render_entry(entry),
                render_feature_summary(features),
                render_authenticity_context(pre_signals),
            ],
            output_format=(
                '{"score": <0-10>, "voice_type": "manufactured" | "mixed" | "authentic", '
                '"red_flags": ["<short_snake_case_tag>", ...], '
                '"green_flags": ["<short_snake_case_tag>", ...]}'
            ),
        )

    async def detect_authenticity(self,
                                  entry: Entry,
                                  features: ExtractedFeatures,
                                  budget: Optional[RetryBudget] = None) -> AuthenticityAnalysis:
        """
        Return the model's authenticity assessment, or the neutral default on failure.

        Raises:
            PermanentGatewayError: propagated from the gateway
        """
        prompt = self._build_prompt(entry, features)
        result = await self.gateway.invoke(
            prompt, AuthenticityPayload, self.config.gateway.call_timeout_seconds, budget
        )
        if not result.ok:
            LOG.warning(f"Authenticity analysis unavailable for {entry.id}: {result.error}")
            return AuthenticityAnalysis.neutral()

        payload = result.payload
        return AuthenticityAnalysis(
            score=payload.score,
            voice_type=payload.voice_type,
            red_flags=tuple(payload.red_flags),
            green_flags=tuple(payload.green_flags),
            source="model",
        )
