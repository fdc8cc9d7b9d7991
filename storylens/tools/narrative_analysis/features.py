"""Heuristic feature extraction from entry text.

Runs before any model call. Every detector reports located matches so later
stages can quote the source precisely. Patterns are applied to the original
string (never a lower-cased copy), so offsets stay valid for any Unicode
input.
"""

import logging
import math
import re
from typing import Iterable, List, Pattern, Sequence, Tuple, Union

from .models import ExtractedFeatures, FeatureBucket, MarkerMatch

LOG = logging.getLogger(__name__)

BUZZWORDS = [
    'passionate about', 'thrilled to', 'excited to', 'leveraged', 'leverage',
    'synergy', 'synergies', 'responsible for', 'in charge of', 'tasked with',
    'stakeholder', 'stakeholders', 'utilize', 'utilized', 'optimize', 'streamline',
    'spearheaded', 'orchestrated', 'robust', 'cutting-edge', 'state-of-the-art',
    'world-class', 'best-in-class', 'game-changing', 'impactful',
]

ACTIVE_VERBS = [
    'built', 'created', 'designed', 'developed', 'launched', 'initiated',
    'led', 'managed', 'organized', 'coordinated', 'facilitated',
    'negotiated', 'persuaded', 'mobilized', 'recruited', 'trained',
    'redesigned', 'restructured', 'improved', 'solved', 'resolved',
    'addressed', 'tackled', 'founded', 'started', 'wrote', 'taught',
]

QUANTITY_UNITS = [
    'percent', 'lbs', 'lb', 'pounds', 'hours', 'hour', 'days', 'day', 'weeks', 'week',
    'months', 'month', 'years', 'year', 'students', 'student', 'people', 'participants',
    'volunteers', 'volunteer', 'members', 'member', 'dollars', 'kids', 'children',
    'families', 'meals', 'books', 'events', 'schools', 'teams', 'times', 'miles',
]

STAKES = [
    'deadline', 'pressure', 'challenge', 'obstacle', 'constraint', 'limited',
    'shortage', 'crisis', 'emergency', 'urgent', 'at risk', 'threatened',
    'jeopardized', 'depended', 'critical', 'essential', 'crucial', 'failed',
    'struggled',
]

TURNING_POINTS = [
    'until', 'suddenly', 'realized', 'discovered', 'pivoted', 'shifted',
    'changed course', 'adapted', 'breakthrough', 'turning point', 'moment',
]

TEMPORAL_MARKERS = [
    'first', 'initially', 'at first', 'began', 'then', 'next', 'later',
    'eventually', 'over time', 'finally', 'ultimately', 'by the end',
    'month', 'months', 'week', 'weeks', 'year', 'years', 'semester', 'season',
]

COLLABORATION_VERBS = [
    'collaborated', 'collaborating', 'partnered', 'worked with', 'teamed up',
    'consulted', 'coordinate', 'coordinated', 'coordinating', 'engaged with',
    'together', 'alongside', 'recruited', 'mentored',
]

LEARNING = [
    'learned', 'discovered', 'realized', 'understood', 'recognized', 'noticed',
    'observed', 'insight', 'lesson', 'takeaway', 'taught me',
]

BELIEF_SHIFTS = [
    'used to think', 'previously believed', 'once thought', 'changed my mind',
    'now understand', 'now see', 'differently', 'no longer',
]

_PASSIVE = re.compile(r"\b(?:was|were|been|being|is|are)\s+\w+ed\b", re.IGNORECASE)
_FIRST_PERSON = re.compile(r"\bI\b")
_WE = re.compile(r"\b(?:we|us|our|ours)\b", re.IGNORECASE)
_QUANTITY = re.compile(
    r"(?<![\w$.,])\$?\d+(?:,\d{3})*(?:\.\d+)?"
    r"(?:\s*%|(?:\s+|-)(?:" + "|".join(QUANTITY_UNITS) + r")\b)?",
    re.IGNORECASE,
)
_OUTCOME = re.compile(
    r"\b(?:resulted in|led to|achieved|accomplished|increased|decreased|improved|"
    r"reduced|raised|collected|grew|doubled|tripled)\b[^.!?\n]*",
    re.IGNORECASE,
)
_BEFORE_AFTER = [
    re.compile(r"\b(?:went from|from)\s+\$?\d[^.!?\n]*?\bto\s+\$?\d[\d,.%]*", re.IGNORECASE),
    re.compile(r"\bbefore\b[^.!?\n]*\bafter\b", re.IGNORECASE),
    re.compile(r"\binitially\b[^.!?\n]*\b(?:now|currently|today)\b", re.IGNORECASE),
    re.compile(r"\bused to\b[^.!?\n]*\bnow\b", re.IGNORECASE),
]
_NAMED_PARTNER = re.compile(
    r"\b(?i:with|alongside|and|thanks to|helped by|partnered with)\s+"
    r"(?P<name>[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)"
)
_TRANSFERABLE = [
    re.compile(r"\b(?:apply|use|bring|carry)\s+(?:this|these|what I learned)\b", re.IGNORECASE),
    re.compile(r"\bhelped me (?:in|with|understand)\b", re.IGNORECASE),
    re.compile(r"\bnow (?:approach|handle|see)\b", re.IGNORECASE),
]
_SENTENCE_SPLIT = re.compile(r"[.!?]+")

NOT_NAMES = {
    'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday',
    'January', 'February', 'March', 'April', 'May', 'June', 'July', 'August',
    'September', 'October', 'November', 'December', 'I', 'We', 'Our', 'The', 'My',
}


def _keyword_pattern(keywords: Sequence[str]) -> Pattern[str]:
    ordered = sorted(set(keywords), key=len, reverse=True)
    return re.compile(r"\b(?:" + "|".join(re.escape(k) for k in ordered) + r")\b", re.IGNORECASE)


_PATTERNS = {
    'buzzword': _keyword_pattern(BUZZWORDS),
    'active_verb': _keyword_pattern(ACTIVE_VERBS),
    'stakes': _keyword_pattern(STAKES),
    'turning_point': _keyword_pattern(TURNING_POINTS),
    'temporal': _keyword_pattern(TEMPORAL_MARKERS),
    'collaboration_verb': _keyword_pattern(COLLABORATION_VERBS),
    'learning': _keyword_pattern(LEARNING),
    'belief_shift': _keyword_pattern(BELIEF_SHIFTS),
}


def _find(text: str, label: str, pattern: Pattern[str], group: Union[int, str] = 0) -> List[MarkerMatch]:
    return [
        MarkerMatch(label=label, text=m.group(group), start=m.start(group), end=m.end(group))
        for m in pattern.finditer(text)
        if m.group(group)
    ]


def _bucket(matches: Iterable[MarkerMatch], score: float) -> FeatureBucket:
    unique = {(m.label, m.start, m.end): m for m in matches}
    ordered = sorted(unique.values(), key=lambda m: (m.start, m.end, m.label))
    return FeatureBucket(matches=tuple(ordered), score=round(max(0.0, min(10.0, score)), 1))


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def sentence_spans(text: str) -> List[Tuple[int, int]]:
    """Character spans of each sentence (trimmed), in order."""
    spans = []
    start = 0
    for m in list(_SENTENCE_SPLIT.finditer(text)) + [None]:
        end = m.start() if m else len(text)
        chunk = text[start:end]
        stripped = chunk.strip()
        if stripped:
            offset = start + (len(chunk) - len(chunk.lstrip()))
            spans.append((offset, offset + len(stripped)))
        if m:
            start = m.end()
    return spans


def sentence_variety(sentences: Sequence[str]) -> float:
    """0-10 score from the spread of sentence lengths."""
    if not sentences:
        return 0.0
    if len(sentences) == 1:
        return 5.0
    lengths = [len(s.split()) for s in sentences]
    mean = sum(lengths) / len(lengths)
    std_dev = math.sqrt(sum((n - mean) ** 2 for n in lengths) / len(lengths))
    # A standard deviation of about 7 words reads as well varied.
    return round(min(10.0, std_dev / 7 * 10), 1)


def reflection_quality(learning: int, belief_shifts: int) -> str:
    if learning >= 3 and belief_shifts >= 1:
        return 'deep'
    if learning >= 2 or belief_shifts >= 1:
        return 'moderate'
    if learning == 1:
        return 'superficial'
    return 'none'


def _tiered(count: int, tiers: Sequence[Tuple[int, float]]) -> float:
    for minimum, points in tiers:
        if count >= minimum:
            return points
    return 0.0


def extract_features(text: str) -> ExtractedFeatures:
    """
    Extract voice, evidence, arc, collaboration and reflection markers.

    Pure and deterministic. Empty or whitespace-only text yields empty buckets.
    """
    text = text or ""
    if not text.strip():
        return ExtractedFeatures()

    sentences = split_sentences(text)
    word_count = len(text.split())

    # Voice
    buzzwords = _find(text, 'buzzword', _PATTERNS['buzzword'])
    passive = _find(text, 'passive', _PASSIVE)
    active = _find(text, 'active_verb', _PATTERNS['active_verb'])
    first_person = _find(text, 'first_person', _FIRST_PERSON)
    variety = sentence_variety(sentences)
    passive_ratio = len(passive) / max(len(passive) + len(active), 1)
    voice_score = variety * 0.5 + (1 - passive_ratio) * 5 - min(3, len(buzzwords))

    # Evidence
    quantities = _find(text, 'quantity', _QUANTITY)
    outcomes = _find(text, 'outcome', _OUTCOME)
    before_after: List[MarkerMatch] = []
    for pattern in _BEFORE_AFTER:
        before_after.extend(_find(text, 'before_after', pattern))
    evidence_score = _tiered(len(quantities), [(3, 4), (2, 3), (1, 2)])
    evidence_score += 3 if outcomes else 0
    evidence_score += 3 if before_after else 0

    # Arc
    stakes = _find(text, 'stakes', _PATTERNS['stakes'])
    turns = _find(text, 'turning_point', _PATTERNS['turning_point'])
    temporal = _find(text, 'temporal', _PATTERNS['temporal'])
    arc_score = _tiered(len(temporal), [(3, 4), (2, 3), (1, 2)])
    arc_score += 3 if stakes else 0
    arc_score += 3 if turns else 0

    # Collaboration
    we_usage = _find(text, 'we', _WE)
    collab_verbs = _find(text, 'collaboration_verb', _PATTERNS['collaboration_verb'])
    partners = [m for m in _find(text, 'named_partner', _NAMED_PARTNER, 'name') if m.text not in NOT_NAMES]
    we_ratio = len(we_usage) / max(len(first_person), 1)
    team_score = _tiered(int(we_ratio * 10), [(5, 4), (3, 3), (1, 2)])
    team_score += min(3, len(collab_verbs)) + min(3, len(partners))

    # Reflection
    learning = _find(text, 'learning', _PATTERNS['learning'])
    shifts = _find(text, 'belief_shift', _PATTERNS['belief_shift'])
    transferable: List[MarkerMatch] = []
    for pattern in _TRANSFERABLE:
        transferable.extend(_find(text, 'transferable', pattern))
    quality = reflection_quality(len(learning), len(shifts))
    insight_score = {'deep': 9.0, 'moderate': 6.0, 'superficial': 3.0, 'none': 0.0}[quality]
    if transferable:
        insight_score += 2

    features = ExtractedFeatures(
        voice=_bucket(buzzwords + passive + active + first_person, voice_score),
        evidence=_bucket(quantities + outcomes + before_after, evidence_score),
        arc=_bucket(stakes + turns + temporal, arc_score),
        collaboration=_bucket(we_usage + collab_verbs + partners, team_score),
        reflection=_bucket(learning + shifts + transferable, insight_score),
        word_count=word_count,
        sentence_count=len(sentences),
        buzzword_density=round(len(buzzwords) / word_count * 100, 2),
        passive_ratio=round(passive_ratio, 2),
        sentence_variety=variety,
        reflection_quality=quality,
    )
    LOG.debug(f"Extracted features: {word_count} words, evidence={features.evidence.count}, "
              f"collaboration={features.collaboration.count}")
    return features


def _listing(items: Sequence[str], limit: int = 8) -> str:
    unique = list(dict.fromkeys(items))
    if not unique:
        return "none"
    shown = ", ".join(f'"{item}"' for item in unique[:limit])
    return shown + (f" (+{len(unique) - limit} more)" if len(unique) > limit else "")


def render_feature_summary(features: ExtractedFeatures) -> str:
    """Format extracted features as prompt context."""
    if features.is_empty:
        return "EXTRACTED FEATURES:\n- The entry is empty."
    v, e, a, c, r = (features.voice, features.evidence, features.arc,
                     features.collaboration, features.reflection)
    return "\n".join([
        "EXTRACTED FEATURES (heuristic, for context only):",
        f"- Voice: score {v.score}/10; active verbs {len(v.with_label('active_verb'))}, "
        f"passive constructions {len(v.with_label('passive'))} (ratio {features.passive_ratio}); "
        f"buzzwords {_listing(v.texts('buzzword'))}; sentence variety {features.sentence_variety}/10",
        f"- Evidence: score {e.score}/10; quantities {_listing(e.texts('quantity'))}; "
        f"outcome statements {len(e.with_label('outcome'))}; "
        f"before/after comparison {'yes' if e.with_label('before_after') else 'no'}",
        f"- Narrative arc: score {a.score}/10; stakes {_listing(a.texts('stakes'))}; "
        f"turning points {_listing(a.texts('turning_point'))}; temporal markers {len(a.with_label('temporal'))}",
        f"- Collaboration: score {c.score}/10; we/our usage {len(c.with_label('we'))}; "
        f"collaboration verbs {_listing(c.texts('collaboration_verb'))}; "
        f"named partners {_listing(c.texts('named_partner'))}",
        f"- Reflection: score {r.score}/10; quality {features.reflection_quality}; "
        f"learning statements {len(r.with_label('learning'))}; belief shifts {len(r.with_label('belief_shift'))}",
        f"- Length: {features.word_count} words in {features.sentence_count} sentence(s)",
    ])
