"""
Deal Pipeline

A state engine for a sales deal pipeline board: deals bucketed into stage
columns, optimistic stage moves persisted in the background, derived value
aggregates, and AI-generated deal insights.
"""

__version__ = '0.1.0'

# Re-export key classes for convenience
from .store import PipelineStore
from .persistence import CommandOutcome, PersistenceQueue, StageChangeCommand
from .aggregates import (
    Aggregates,
    PipelineStats,
    attention_deals,
    pipeline_stats,
    recompute_aggregates,
)
from .models import (
    Column,
    Deal,
    DealCreate,
    DealStage,
    DealUpdate,
    FailedMove,
    PipelineState,
)
from .gateway import DealGateway, InMemoryDealGateway, PostgresDealGateway
from .insight import InsightGenerator, OpenAIInsightGenerator, TemplateInsightGenerator
from .logging import (
    configure_logging,
    get_logger,
    logging_context,
    OperationTimer,
)
from .errors import (
    DealPipelineError,
    ValidationError,
    GatewayError,
    GatewayConnectionError,
    GatewayNotFoundError,
    GatewayQueryError,
    InsightError,
    InsightRateLimitError,
    InsightModelError,
)

__all__ = [
    # Version
    '__version__',
    # Store
    'PipelineStore',
    'PersistenceQueue',
    'StageChangeCommand',
    'CommandOutcome',
    # Aggregates
    'Aggregates',
    'PipelineStats',
    'recompute_aggregates',
    'pipeline_stats',
    'attention_deals',
    # Models
    'Deal',
    'DealCreate',
    'DealUpdate',
    'DealStage',
    'Column',
    'FailedMove',
    'PipelineState',
    # Collaborators
    'DealGateway',
    'InMemoryDealGateway',
    'PostgresDealGateway',
    'InsightGenerator',
    'OpenAIInsightGenerator',
    'TemplateInsightGenerator',
    # Logging
    'configure_logging',
    'get_logger',
    'logging_context',
    'OperationTimer',
    # Errors
    'DealPipelineError',
    'ValidationError',
    'GatewayError',
    'GatewayConnectionError',
    'GatewayNotFoundError',
    'GatewayQueryError',
    'InsightError',
    'InsightRateLimitError',
    'InsightModelError',
]
