from __future__ import annotations

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429})


def is_transient_http_error(exc: BaseException) -> bool:
    """Rate limits, server errors and dropped connections are worth another try."""

    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        return status_code in RETRYABLE_STATUS_CODES or status_code >= 500
    return False


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "http_call_retrying",
        attempt=retry_state.attempt_number,
        error=str(exc) or type(exc).__name__,
    )


def transient_retrying(*, max_attempts: int = 3, wait_seconds: float = 1.0) -> AsyncRetrying:
    return AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=wait_seconds, min=0, max=10),
        retry=retry_if_exception(is_transient_http_error),
        before_sleep=_log_retry,
        reraise=True,
    )
