"""Error taxonomy, classification and retry policy shared by every provider.

Every failure that leaves a provider client is a ``ServiceError`` carrying one of
the ``ErrorKind`` values. Raw transport and SDK exceptions are converted at the
client boundary with ``to_service_error``; converting an already classified
error returns it unchanged.

Classification of unknown exceptions matches the lowercased message and
exception type name against keyword groups in a fixed order:
timeout → network → rate/quota → server (5xx) → content safety → API_ERROR.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from kitchenpal.utils.logger import logger

T = TypeVar("T")


class ErrorKind(str, Enum):
    API_KEY_MISSING = "API_KEY_MISSING"
    API_ERROR = "API_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    GENERATION_FAILED = "GENERATION_FAILED"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    SERVER_ERROR = "SERVER_ERROR"


ERROR_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.API_KEY_MISSING: "Service configuration error. Please contact support.",
    ErrorKind.API_ERROR: "I couldn't process that request. Please try again.",
    ErrorKind.NETWORK_ERROR: "Connection issue. Please check your internet and try again.",
    ErrorKind.RATE_LIMITED: "Please wait a moment before sending another message.",
    ErrorKind.INVALID_RESPONSE: "Unexpected response format. Please try again.",
    ErrorKind.GENERATION_FAILED: "I couldn't create that. Please try a different request.",
    ErrorKind.TIMEOUT_ERROR: "The request took too long. Please try again.",
    ErrorKind.SERVER_ERROR: "Service temporarily unavailable. Please try again later.",
}

RETRYABLE_KINDS = frozenset(
    {ErrorKind.NETWORK_ERROR, ErrorKind.RATE_LIMITED, ErrorKind.TIMEOUT_ERROR, ErrorKind.SERVER_ERROR}
)

# Timeouts are retryable by the user but never retried automatically
AUTO_RETRY_KINDS = RETRYABLE_KINDS - {ErrorKind.TIMEOUT_ERROR}

# Ordered keyword groups; the first group with a hit wins
_KEYWORD_RULES: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (ErrorKind.TIMEOUT_ERROR, ("timeout", "timed out", "deadline exceeded")),
    (
        ErrorKind.NETWORK_ERROR,
        (
            "network",
            "econnrefused",
            "enotfound",
            "econnreset",
            "connection refused",
            "connection reset",
            "connection aborted",
            "cannot connect",
            "connecterror",
            "connectionerror",
            "socket",
            "dns",
            "name or service not known",
            "fetch",
        ),
    ),
    (ErrorKind.RATE_LIMITED, ("rate limit", "ratelimit", "rate_limit", "quota", "429", "too many requests",
                              "resource_exhausted", "resource exhausted")),
    (
        ErrorKind.SERVER_ERROR,
        ("500", "502", "503", "504", "internal server error", "bad gateway", "service unavailable", "overloaded"),
    ),
    (ErrorKind.GENERATION_FAILED, ("generation", "blocked", "safety", "content policy", "prohibited")),
)


class ServiceError(Exception):
    """Classified provider failure.

    Attributes:
        kind: Taxonomy bucket.
        user_message: Friendly text safe to show in the UI.
        retryable: Whether the UI should offer a retry affordance.
        original: Underlying exception, if any.
    """

    def __init__(
        self,
        kind: ErrorKind,
        detail: Optional[str] = None,
        original: Optional[BaseException] = None,
        user_message: Optional[str] = None,
    ) -> None:
        self.kind = kind
        self.user_message = user_message or ERROR_MESSAGES[kind]
        self.retryable = kind in RETRYABLE_KINDS
        self.original = original
        self.detail = detail or (str(original) if original else self.user_message)
        super().__init__(f"{kind.value}: {self.detail}")


class QueueFullError(ServiceError):
    """Raised when a rate limiter queue cannot accept more waiters."""

    def __init__(self, max_queue_size: int) -> None:
        super().__init__(ErrorKind.RATE_LIMITED, f"Rate limiter queue is full ({max_queue_size} waiting)")


def _describe(error: BaseException) -> str:
    return f"{type(error).__name__} {error}".lower()


def classify_error(error: BaseException) -> ErrorKind:
    """Map any exception to an ErrorKind.

    Pure function: the result depends only on the exception's type name, message
    and (for ServiceError) its stored kind.
    """
    if isinstance(error, ServiceError):
        return error.kind
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.TIMEOUT_ERROR

    text = _describe(error)
    for kind, keywords in _KEYWORD_RULES:
        if any(keyword in text for keyword in keywords):
            return kind
    # Connection failures from the stdlib often carry an empty message
    if isinstance(error, ConnectionError):
        return ErrorKind.NETWORK_ERROR
    return ErrorKind.API_ERROR


def to_service_error(error: BaseException) -> ServiceError:
    """Wrap ``error`` in a ServiceError. Idempotent for already classified errors."""
    if isinstance(error, ServiceError):
        return error
    return ServiceError(classify_error(error), original=error)


def error_for_status(status: int, body: str = "", provider: str = "provider") -> ServiceError:
    """Build a ServiceError for a non-2xx HTTP response."""
    detail = f"{provider} API error: {status} {body[:300]}".strip()
    if status == 429:
        kind = ErrorKind.RATE_LIMITED
    elif status == 408:
        kind = ErrorKind.TIMEOUT_ERROR
    elif status >= 500:
        kind = ErrorKind.SERVER_ERROR
    else:
        kind = ErrorKind.API_ERROR
    return ServiceError(kind, detail)


def backoff_delay(attempt: int, base_delay: float, max_delay: float, exponential: bool = True) -> float:
    """Delay before retry number ``attempt`` (0-based), capped at ``max_delay``."""
    delay = base_delay * (2**attempt) if exponential else base_delay
    return min(delay, max_delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    exponential: bool = True,
    operation_name: str = "provider call",
) -> T:
    """Run ``operation`` and retry transient classified failures.

    Only NETWORK_ERROR, RATE_LIMITED and SERVER_ERROR are retried. Every other
    kind, TIMEOUT_ERROR included, is raised immediately.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        max_retries: Retries after the first attempt (0 disables retrying).
        base_delay: Initial delay in seconds.
        max_delay: Upper bound for a single delay.
        exponential: Double the delay after each attempt.
        operation_name: Used in log messages.

    Raises:
        ServiceError: The last classified failure.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = to_service_error(e)
            if error.kind not in AUTO_RETRY_KINDS or attempt >= max_retries:
                if error is e:
                    raise
                raise error from e
            delay = backoff_delay(attempt, base_delay, max_delay, exponential)
            attempt += 1
            logger.warning(
                f"{operation_name} failed ({error.kind.value}), retrying in {delay:.1f}s "
                f"(attempt {attempt + 1}/{max_retries + 1})",
                extra={"error_kind": error.kind.value},
            )
            await asyncio.sleep(delay)


def safe_execute_sync(
    func: Callable[[], T],
    operation_name: str,
    log_level: str = "warning",
    default_return: Optional[T] = None,
    reraise: bool = False,
) -> Optional[T]:
    """Run an optional operation and degrade to ``default_return`` on failure.

    Used where a failure must not stop the request, e.g. image compression
    falls back to the original bytes.

    Args:
        func: Callable with no arguments.
        operation_name: Description for logging.
        log_level: "debug", "warning" or "error".
        default_return: Value returned when ``func`` raises and ``reraise`` is False.
        reraise: Log, then propagate the original exception.
    """
    try:
        return func()
    except Exception as e:
        log = {"debug": logger.debug, "error": logger.error}.get(log_level, logger.warning)
        log(f"{operation_name}: {e}")
        if reraise:
            raise
        return default_return
