"""Narrative analysis tool: rubric scoring, authenticity and workshop items for student writing."""

from .pipeline import AnalysisPipeline
from .config import PipelineConfig
from .models import AnalysisOptions, AnalysisReport, Entry, RubricCategoryScore, WorkshopItem
from .batch_analyzer import BatchAnalyzer, BatchAnalysisResult

__all__ = [
    'AnalysisPipeline',
    'PipelineConfig',
    'AnalysisOptions',
    'AnalysisReport',
    'Entry',
    'RubricCategoryScore',
    'WorkshopItem',
    'BatchAnalyzer',
    'BatchAnalysisResult'
]
