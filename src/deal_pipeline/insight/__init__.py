"""Insight generators for deal analysis."""

from .base import InsightGenerator
from .openai_generator import OpenAIInsightGenerator
from .template import TemplateInsightGenerator

__all__ = [
    'InsightGenerator',
    'OpenAIInsightGenerator',
    'TemplateInsightGenerator',
]
