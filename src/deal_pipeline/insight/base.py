"""Insight generator interface."""

from abc import ABC, abstractmethod

from ..models.deal import Deal


class InsightGenerator(ABC):
    """Produces free-text analysis of a single deal.

    One external call per invocation; the store does not retry, time out or
    cancel it.
    """

    @abstractmethod
    async def analyze(self, deal: Deal) -> str:
        """Return Markdown analysis for ``deal``. Raises InsightError on failure."""
        ...

    async def close(self) -> None:
        """Release any held resources."""
        return None
