"""Prompt fragments shared by the scoring, authenticity and workshop calls."""

from typing import Iterable, List

from .models import Entry, RubricCategoryDefinition

READER_ROLE = (
    "You are an experienced college admissions reader evaluating a student's own writing "
    "about an activity or experience. Be fair, specific and evidence-driven. You may only "
    "cite evidence by quoting the student's text exactly, character for character. If the "
    "text does not support a judgment, say so instead of guessing."
)


def render_entry(entry: Entry) -> str:
    """Format an entry and its structured fields as prompt context."""
    lines = [f"ENTRY ({entry.category}):"]
    if entry.title:
        lines.append(f"- Title: {entry.title}")
    if entry.duration:
        lines.append(f"- Duration: {entry.duration}")
    if entry.hours_per_week is not None:
        lines.append(f"- Hours per week: {entry.hours_per_week:g}")
    if entry.weeks_per_year is not None:
        lines.append(f"- Weeks per year: {entry.weeks_per_year:g}")
    for achievement in entry.achievements:
        lines.append(f"- Achievement: {achievement}")
    lines.append(f"STUDENT TEXT:\n\"\"\"\n{entry.text}\n\"\"\"")
    return "\n".join(lines)


def render_category(category: RubricCategoryDefinition) -> str:
    lines = [f"[{category.id}] {category.label}"]
    if category.definition:
        lines.append(f"  Definition: {category.definition.strip()}")
    lines.extend([
        f"  0 = {category.anchor_0.strip()}",
        f"  5 = {category.anchor_5.strip()}",
        f"  10 = {category.anchor_10.strip()}",
    ])
    for question in category.evaluator_prompts:
        lines.append(f"  Ask: {question}")
    if category.warning_signs:
        lines.append(f"  Warning signs: {'; '.join(category.warning_signs)}")
    return "\n".join(lines)


def render_rubric(categories: Iterable[RubricCategoryDefinition]) -> str:
    sections: List[str] = ["RUBRIC CATEGORIES (score each from 0 to 10 using the anchors):"]
    sections.extend(render_category(c) for c in categories)
    return "\n\n".join(sections)
