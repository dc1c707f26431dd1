from __future__ import annotations

from collections.abc import Callable
from typing import Any

import requests
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential_jitter

_RETRY_STATUS = {
    408,    # request timeout
    429,    # too many requests
    500,
    502,
    503,
    504,
}


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, requests.ConnectionError | requests.Timeout):
        return True

    if isinstance(exc, requests.HTTPError):
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
        return isinstance(status, int) and status in _RETRY_STATUS

    return False


def retry_remote(*, attempts: int = 4, initial: float = 0.2, max_wait: float = 4.0) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Retry an HTTP backend call on connection errors and retryable statuses."""
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        return retry(
            reraise=True,
            stop=stop_after_attempt(attempts),
            wait=wait_exponential_jitter(initial=initial, max=max_wait),
            retry=retry_if_exception(_is_transient),
        )(fn)
    return decorator
