"""Remote deal gateway implementations."""

from .base import DealGateway, DealRecord, StageUpdate
from .memory import InMemoryDealGateway
from .postgres import PostgresDealGateway

__all__ = [
    'DealGateway',
    'DealRecord',
    'StageUpdate',
    'InMemoryDealGateway',
    'PostgresDealGateway',
]
