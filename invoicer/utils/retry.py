"""
invoicer/utils/retry.py
───────────────────────
Classifies storage failures and retries the ones that are worth retrying.

Only connection-level trouble is transient: refused connections, DNS
failures, timeouts, dropped sessions, lock waits that timed out and
serialization/deadlock aborts. Constraint violations, permission errors and
bad SQL are logical failures and propagate unchanged.
"""
import logging
import re

from sqlalchemy.exc import DBAPIError, TimeoutError as PoolTimeoutError
from tenacity import (
    Retrying, retry_if_exception_type,
    stop_after_attempt, wait_random,
)

logger = logging.getLogger(__name__)


TRANSIENT_PATTERN = re.compile(
    r'could not connect'
    r'|connection refused'
    r'|connection reset'
    r'|connection timed out'
    r'|timeout expired'
    r'|timed out'
    r'|name or service not known'
    r'|temporary failure in name resolution'
    r'|could not translate host name'
    r'|server closed the connection'
    r'|terminating connection'
    r'|ssl syscall error'
    r'|database is locked'
    r'|lock timeout'
    r'|canceling statement due to (statement|lock) timeout'
    r'|could not serialize access'
    r'|deadlock detected',
    re.IGNORECASE,
)


def is_transient(exc) -> bool:
    """Return True if `exc` looks like a recoverable backend failure."""
    if isinstance(exc, (PoolTimeoutError, ConnectionError, TimeoutError)):
        return True
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        return bool(TRANSIENT_PATTERN.search(str(exc.orig or exc)))
    return False


def call_with_retry(fn, *, attempts, retry_on, wait_max=0.0, label='backend call'):
    """
    Call `fn()` until it succeeds or `attempts` calls have raised one of
    `retry_on`. The last exception is re-raised unchanged.

    A small random wait spreads out callers that collided on the same rows.
    """
    retrying = Retrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_random(0, wait_max),
        retry=retry_if_exception_type(retry_on),
        before_sleep=lambda state: logger.warning(
            "%s failed (attempt %d/%d): %s",
            label, state.attempt_number, attempts, state.outcome.exception()
        ),
        reraise=True,
    )
    return retrying(fn)
