"""
Custom exceptions and error handling for the Deal Pipeline engine.

Provides:
- Typed exception hierarchy for gateway and insight failures
- Error context preservation for debugging
- Classification helpers that wrap raw driver/SDK exceptions
"""

from typing import Any


class DealPipelineError(Exception):
    """Base exception for all deal pipeline errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message


class ValidationError(DealPipelineError):
    """Input could not be turned into a valid deal."""

    pass


# =============================================================================
# Remote Deal Gateway Errors
# =============================================================================


class GatewayError(DealPipelineError):
    """Base class for remote deal gateway failures."""

    pass


class GatewayConnectionError(GatewayError):
    """The backing store could not be reached."""

    pass


class GatewayNotFoundError(GatewayError):
    """The requested deal record does not exist remotely."""

    pass


class GatewayQueryError(GatewayError):
    """The backing store rejected or failed the query."""

    pass


# =============================================================================
# Insight Generator Errors
# =============================================================================


class InsightError(DealPipelineError):
    """Base class for insight generation failures."""

    pass


class InsightRateLimitError(InsightError):
    """Rate limit exceeded on the model API."""

    pass


class InsightModelError(InsightError):
    """Model refused the request or returned an unusable response."""

    pass


# =============================================================================
# Error Handling Utilities
# =============================================================================


def wrap_gateway_error(exc: Exception, context: dict[str, Any] | None = None) -> GatewayError:
    """
    Wrap a database/driver exception in our typed error hierarchy.

    Args:
        exc: The original exception
        context: Additional context for debugging

    Returns:
        Typed GatewayError subclass
    """
    if isinstance(exc, GatewayError):
        return exc

    error_str = str(exc).lower()
    ctx = context or {}
    ctx['original_error'] = str(exc)
    ctx['error_type'] = type(exc).__name__

    if isinstance(exc, (ConnectionError, TimeoutError)) or 'connect' in error_str:
        return GatewayConnectionError(
            f"Deal store unreachable: {exc}",
            context=ctx,
        )
    elif 'not found' in error_str or 'no rows' in error_str:
        return GatewayNotFoundError(
            f"Deal not found: {exc}",
            context=ctx,
        )
    else:
        return GatewayQueryError(
            f"Deal store query failed: {exc}",
            context=ctx,
        )


def wrap_openai_error(exc: Exception, context: dict[str, Any] | None = None) -> InsightError:
    """
    Wrap an OpenAI exception in our typed error hierarchy.

    Args:
        exc: The original exception
        context: Additional context for debugging

    Returns:
        Typed InsightError subclass
    """
    if isinstance(exc, InsightError):
        return exc

    error_str = str(exc).lower()
    ctx = context or {}
    ctx['original_error'] = str(exc)
    ctx['error_type'] = type(exc).__name__

    if 'rate limit' in error_str or 'rate_limit' in error_str:
        return InsightRateLimitError(
            f"OpenAI rate limit exceeded: {exc}",
            context=ctx,
        )
    elif 'content policy' in error_str or 'refused' in error_str:
        return InsightModelError(
            f"OpenAI model refused request: {exc}",
            context=ctx,
        )
    else:
        return InsightError(
            f"OpenAI API error: {exc}",
            context=ctx,
        )


def describe_error(exc: BaseException, fallback: str) -> str:
    """
    Human-readable message for the store's ``error`` field.

    Typed errors contribute their message without the debug context; anything
    else falls back to ``str(exc)`` or ``fallback`` when that is empty.
    """
    if isinstance(exc, DealPipelineError):
        return exc.message or fallback
    return str(exc) or fallback
