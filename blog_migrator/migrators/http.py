"""
HTTP helpers shared by the REST clients.

Every client in :mod:`blog_migrator.migrators` talks to its service through
``requests`` with an explicit timeout.  Failed records are retried by
rerunning the migration, not inside a run, so :func:`with_retries` only
waits out rate limiting: a ``429`` response is retried after the delay
the server asked for, anything else is returned to the caller.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


def bearer_headers(token: str) -> Dict[str, str]:
    """Authorization header for the Google-style REST APIs."""
    return {"Authorization": f"Bearer {token}"} if token else {}


def with_retries(
    fn: Callable[[], requests.Response],
    *,
    max_attempts: int = 5,
    base_delay: float = 1.0,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> requests.Response:
    """
    Execute a function returning a ``requests.Response`` and wait out rate
    limiting.  A ``429`` is retried after ``Retry-After`` seconds (or an
    exponential delay when the header is missing) up to ``max_attempts``
    times; any other response, successful or not, is returned as is.

    :param fn: A zero-argument callable that performs the HTTP request.
    :param max_attempts: Maximum number of attempts before giving up.
    :param base_delay: Base delay in seconds when no ``Retry-After`` is sent.
    :return: The last ``requests.Response``.
    """
    attempt = 0
    while True:
        resp = fn()
        if resp.status_code != 429 or attempt >= max_attempts - 1:
            return resp
        retry_after = resp.headers.get("Retry-After")
        try:
            wait = float(retry_after) if retry_after else base_delay * (2 ** attempt)
        except ValueError:
            wait = base_delay * (2 ** attempt)
        logger.warning("Rate limited by %s, waiting %.1fs", resp.url, wait)
        sleep_fn(wait)
        attempt += 1
