"""Bounded retry with linear backoff.

Shared by every keyed-upsert call site (result store, overrides, plans,
insights) so the attempt budget and backoff policy live in one place.

    from checkin.utils.retry import retry_with_backoff

    row = retry_with_backoff(
        lambda attempt: _try_upsert(...),
        attempts=3, delay=1.0, retry_on=(IntegrityError,),
        on_exhausted=lambda exc: TransientStoreConflict("ConversationResult", 7, 3),
    )
"""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_with_backoff(
    fn: Callable[[int], T],
    *,
    attempts: int = 3,
    delay: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] | None = None,
    on_exhausted: Callable[[BaseException], BaseException] | None = None,
    label: str = "operation",
) -> T:
    """Call ``fn(attempt)`` until it returns, waiting ``attempt * delay`` between tries.

    Only exceptions in ``retry_on`` are retried; anything else propagates
    immediately.  After the last attempt the final exception is re-raised,
    or replaced by ``on_exhausted(exc)`` when given.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    sleep = sleep or time.sleep

    for attempt in range(1, attempts + 1):
        try:
            return fn(attempt)
        except retry_on as exc:
            if attempt >= attempts:
                logger.error("%s failed after %d attempts: %s", label, attempts, exc)
                if on_exhausted is not None:
                    raise on_exhausted(exc) from exc
                raise
            backoff = attempt * delay
            logger.warning("%s attempt %d/%d failed (%s), retrying in %.2fs",
                           label, attempt, attempts, exc.__class__.__name__, backoff)
            if backoff > 0:
                sleep(backoff)
    raise AssertionError("unreachable")
