# SPDX-License-Identifier: GPL-3.0-or-later
from itertools import takewhile
from typing import Any, Optional

import aiohttp_retry
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from meso_forge_mirror import APP_NAME
from meso_forge_mirror.core.config import get_config

SAFE_REQUEST_METHODS = frozenset(["GET", "HEAD", "OPTIONS", "TRACE"])

# Other 4xx responses are permanent, retrying them only delays the error
RETRY_STATUSES = frozenset([429, 500, 502, 503, 504])

USER_AGENT = f"{APP_NAME}/0.1.0"

DEFAULT_RETRY_OPTIONS: dict[str, Any] = {
    "backoff_factor": 1,
    "status_forcelist": RETRY_STATUSES,
    "raise_on_status": False,
    "allowed_methods": SAFE_REQUEST_METHODS,
}


class ExponentialBackoffRetry(Retry):
    """Retry that sleeps backoff_factor * 2^(N-1) seconds after the Nth consecutive failure.

    urllib3 skips the sleep after the first failure, here every retry waits: 1s, 2s, 4s...
    """

    def get_backoff_time(self) -> float:
        consecutive_errors = len(
            list(takewhile(lambda x: x.redirect_location is None, reversed(self.history)))
        )
        if consecutive_errors == 0:
            return 0
        backoff = self.backoff_factor * (2 ** (consecutive_errors - 1))
        return float(max(0, min(self.backoff_max, backoff)))


def get_retry_options() -> dict[str, Any]:
    """Return urllib3 Retry options derived from the current config."""
    retries = get_config().retry_attempts - 1
    return {**DEFAULT_RETRY_OPTIONS, "total": retries, "connect": retries, "read": retries}


def get_async_retry_options() -> aiohttp_retry.ExponentialRetry:
    """Return aiohttp_retry options with the same schedule as the requests sessions.

    aiohttp_retry waits start_timeout * factor^N after attempt N, counting from 1.
    """
    return aiohttp_retry.ExponentialRetry(
        attempts=get_config().retry_attempts,
        start_timeout=0.5,
        factor=2.0,
        statuses=set(RETRY_STATUSES),
    )


def get_requests_session(retry_options: Optional[dict[str, Any]] = None) -> requests.Session:
    """Create a requests session with retries mounted for http and https."""
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    retry = ExponentialBackoffRetry(**{**get_retry_options(), **(retry_options or {})})
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def get_upload_session() -> requests.Session:
    """Create a session for non-idempotent uploads, which must never be retried."""
    return get_requests_session(retry_options={"total": 0, "connect": 0, "read": 0})
