"""HTTP calls with bounded exponential-backoff retry.

This is the only place the package talks to the network. A 4xx answer other
than 429, or a malformed URL, is treated as an invalid request and fails at
once. Any other non-2xx answer or a connection-level failure is retried,
doubling the wait after every attempt (1000, 2000, 4000 ms with the defaults).
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import requests

from .config import DEFAULT_INITIAL_BACKOFF_MS, DEFAULT_MAX_RETRIES, DEFAULT_REQUEST_TIMEOUT

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable

LOGGER = logging.getLogger(__name__)

_TOO_MANY_REQUESTS = 429

# Malformed URLs fail the same way on every attempt.
_MALFORMED_URL_ERRORS = (
    requests.exceptions.InvalidURL,
    requests.exceptions.InvalidSchema,
    requests.exceptions.MissingSchema,
)


class TransportError(RuntimeError):
    """Raised when a remote call does not produce a 2xx response."""

    def __init__(self, message: str, url: str, status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class ClientError(TransportError):
    """Non-retryable failure: a 4xx answer other than 429, or a malformed URL."""


class RetriesExhaustedError(TransportError):
    """Retryable failures persisted past the retry budget."""


def is_client_error(status: int) -> bool:
    """Return True for statuses that must not be retried."""
    return 400 <= status < 500 and status != _TOO_MANY_REQUESTS  # noqa: PLR2004


def request_with_retry(  # noqa: PLR0913
    url: str,
    method: str = "GET",
    *,
    session: requests.Session | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_backoff_ms: int = DEFAULT_INITIAL_BACKOFF_MS,
    timeout: float | None = DEFAULT_REQUEST_TIMEOUT,
    **options: object,
) -> requests.Response:
    """Issue an HTTP request, retrying transient failures.

    Args:
        url: Absolute URL to call.
        method: HTTP verb.
        session: Optional session to issue the request with (connection reuse).
        max_retries: Number of retries after the first attempt (>= 0).
        initial_backoff_ms: Wait before the first retry; doubled after each retry (> 0).
        timeout: Per-attempt socket timeout in seconds.
        **options: Passed through to ``requests`` (headers, json, params, ...).

    Returns:
        The first 2xx response.

    Raises:
        ValueError: On invalid retry parameters.
        ClientError: On a 4xx answer other than 429, or a malformed URL (no retry).
        RetriesExhaustedError: When every attempt failed with a retryable error.

    """
    if max_retries < 0:
        msg = f"max_retries must be >= 0, got {max_retries}"
        raise ValueError(msg)
    if initial_backoff_ms <= 0:
        msg = f"initial_backoff_ms must be > 0, got {initial_backoff_ms}"
        raise ValueError(msg)

    send: Callable[..., requests.Response] = (
        session.request if session is not None else requests.request
    )
    retries_left = max_retries
    backoff_ms = initial_backoff_ms

    while True:
        status: int | None = None
        try:
            response = send(method, url, timeout=timeout, **options)
        except _MALFORMED_URL_ERRORS as exc:
            msg = f"Invalid request URL for {method} {url}: {exc}"
            raise ClientError(msg, url) from exc
        except requests.RequestException as exc:
            failure = f"{type(exc).__name__}: {exc}"
        else:
            status = response.status_code
            if 200 <= status < 300:  # noqa: PLR2004
                return response
            if is_client_error(status):
                msg = f"Client error: {status} for {method} {url}"
                raise ClientError(msg, url, status)
            failure = f"Server returned {status}"

        if retries_left == 0:
            msg = f"{method} {url} failed after {max_retries + 1} attempt(s): {failure}"
            raise RetriesExhaustedError(msg, url, status)

        LOGGER.warning(
            "%s %s failed (%s); retrying in %dms (%d left)",
            method,
            url,
            failure,
            backoff_ms,
            retries_left,
        )
        time.sleep(backoff_ms / 1000)
        retries_left -= 1
        backoff_ms *= 2
