"""Pydantic models for narrative analysis inputs, intermediate results and reports."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


FeatureFamily = Literal["voice", "evidence", "arc", "collaboration", "reflection"]
ScoreStatus = Literal["scored", "insufficient_evidence", "unavailable"]
VoiceType = Literal["manufactured", "mixed", "authentic", "unknown"]
Severity = Literal["low", "medium", "high"]
Depth = Literal["quick", "standard", "comprehensive"]

INSUFFICIENT_EVIDENCE_NOTE = "insufficient verifiable evidence"
UNAVAILABLE_NOTE = "score unavailable: the scoring service did not respond"
NO_SUGGESTION_NOTE = "problem identified, no machine-generated suggestion"

SEVERITY_RANK: Dict[str, int] = {"high": 3, "medium": 2, "low": 1}


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class Entry(_Frozen):
    """One unit of student-authored text submitted for analysis."""
    id: str = Field(description="Caller-assigned identifier")
    category: str = Field(
        default="school_activity",
        description="work, volunteer, school_activity, project, or an essay type"
    )
    text: str = Field(default="", description="Free-text description as written by the student")
    title: Optional[str] = Field(default=None, description="Short activity or essay title")
    duration: Optional[str] = Field(default=None, description="Time span, e.g. 'Sep 2022 - present'")
    hours_per_week: Optional[float] = Field(default=None, ge=0)
    weeks_per_year: Optional[float] = Field(default=None, ge=0, le=52)
    achievements: Tuple[str, ...] = Field(default=(), description="Structured achievements list")


class MarkerMatch(_Frozen):
    """A located occurrence of one marker; ``text == source[start:end]``."""
    label: str
    text: str
    start: int = Field(ge=0)
    end: int = Field(ge=0)


class FeatureBucket(_Frozen):
    """All matches for one marker family plus a 0-10 family score."""
    matches: Tuple[MarkerMatch, ...] = ()
    score: float = Field(default=0.0, ge=0, le=10)

    @property
    def count(self) -> int:
        return len(self.matches)

    def texts(self, label: Optional[str] = None) -> List[str]:
        return [m.text for m in self.matches if label is None or m.label == label]

    def with_label(self, label: str) -> List[MarkerMatch]:
        return [m for m in self.matches if m.label == label]


class ExtractedFeatures(_Frozen):
    """Structural and linguistic signals derived from one entry's text."""
    voice: FeatureBucket = FeatureBucket()
    evidence: FeatureBucket = FeatureBucket()
    arc: FeatureBucket = FeatureBucket()
    collaboration: FeatureBucket = FeatureBucket()
    reflection: FeatureBucket = FeatureBucket()
    word_count: int = 0
    sentence_count: int = 0
    buzzword_density: float = 0.0
    passive_ratio: float = 0.0
    sentence_variety: float = 0.0
    reflection_quality: Literal["none", "superficial", "moderate", "deep"] = "none"

    @property
    def is_empty(self) -> bool:
        return self.word_count == 0

    def bucket(self, family: str) -> FeatureBucket:
        return getattr(self, family)


class RubricCategoryDefinition(_Frozen):
    """One scored rubric dimension, loaded from configuration."""
    id: str
    label: str
    definition: str = ""
    anchor_0: str
    anchor_5: str
    anchor_10: str
    weight: float = Field(gt=0, le=1)
    batch: Optional[str] = Field(default=None, description="Scoring batch this category joins")
    feature_family: Optional[FeatureFamily] = None
    evaluator_prompts: Tuple[str, ...] = ()
    warning_signs: Tuple[str, ...] = ()


class RubricCategoryScore(_Frozen):
    """Score for one category. Calibration produces a new instance."""
    category_id: str
    score: Optional[float] = Field(default=None, ge=0, le=10)
    raw_score: Optional[float] = Field(default=None, ge=0, le=10)
    evidence: Tuple[str, ...] = ()
    justification: str = ""
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    status: ScoreStatus = "scored"
    calibration_version: Optional[str] = None

    @property
    def is_scored(self) -> bool:
        return self.score is not None

    @classmethod
    def placeholder(cls, category_id: str, status: ScoreStatus = "insufficient_evidence",
                    justification: Optional[str] = None) -> "RubricCategoryScore":
        if justification is None:
            justification = INSUFFICIENT_EVIDENCE_NOTE if status == "insufficient_evidence" else UNAVAILABLE_NOTE
        return cls(category_id=category_id, status=status, justification=justification, confidence=0.0)


class AuthenticityAnalysis(_Frozen):
    """Manufactured-voice versus authentic-voice assessment."""
    score: Optional[float] = Field(default=None, ge=0, le=10)
    voice_type: VoiceType = "unknown"
    red_flags: Tuple[str, ...] = ()
    green_flags: Tuple[str, ...] = ()
    source: Literal["model", "heuristic", "unavailable"] = "unavailable"

    @property
    def available(self) -> bool:
        return self.score is not None

    @classmethod
    def neutral(cls) -> "AuthenticityAnalysis":
        return cls()


class SuggestedRewrite(_Frozen):
    text: str
    rationale: str


class WorkshopItem(_Frozen):
    """A ranked, evidence-linked revision suggestion."""
    id: str
    severity: Severity
    category_id: str
    problem: str
    quote: str = ""
    start: int = 0
    end: int = 0
    estimated_impact: float = 0.0
    suggestions: Tuple[SuggestedRewrite, ...] = ()
    suggestion_status: Literal["generated", "unavailable", "skipped"] = "skipped"
    note: Optional[str] = None


class AnalysisOptions(_Frozen):
    depth: Depth = "standard"
    skip_coaching: bool = False


class AnalysisReport(_Frozen):
    """Terminal artifact of one pipeline run."""
    entry_id: str
    rubric_version: str
    overall_index: float = Field(ge=0, le=100)
    reader_impression: str
    categories: Tuple[RubricCategoryScore, ...]
    authenticity: AuthenticityAnalysis
    flags: Tuple[str, ...] = ()
    workshop_items: Tuple[WorkshopItem, ...] = ()
    status: Literal["done", "failed"] = "done"
    degraded: bool = False
    unavailable_analyses: Tuple[str, ...] = ()
    deadline_exceeded: bool = False
    depth: Depth = "standard"
    analyzed_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def category(self, category_id: str) -> Optional[RubricCategoryScore]:
        for score in self.categories:
            if score.category_id == category_id:
                return score
        return None

    def to_yaml_dict(self) -> dict:
        """Convert to plain data suitable for YAML serialization."""
        return self.model_dump(mode="json")
