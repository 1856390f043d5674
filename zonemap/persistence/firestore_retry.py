from __future__ import annotations

import logging
import random
import time
from typing import Callable, TypeVar

from google.api_core import exceptions as gexc

from zonemap.common.logging import log_event

T = TypeVar("T")
logger = logging.getLogger(__name__)

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    gexc.Aborted,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
    gexc.ResourceExhausted,
    gexc.ServiceUnavailable,
    gexc.TooManyRequests,
)


def with_firestore_retry(
    fn: Callable[[], T],
    *,
    max_attempts: int = 6,
    base_delay_s: float = 0.2,
    max_delay_s: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call `fn`, retrying transient Firestore errors with capped exponential
    backoff and full jitter. Only for idempotent reads; cascade commits are not
    wrapped.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return fn()
        except TRANSIENT_ERRORS as e:
            if attempt >= max_attempts:
                raise
            cap_s = min(max_delay_s, base_delay_s * (2 ** (attempt - 1)))
            log_event(
                logger,
                "firestore.retry",
                severity="WARNING",
                attempt=attempt,
                cap_s=round(cap_s, 3),
                error=type(e).__name__,
            )
            sleep(random.uniform(0.0, cap_s))
    raise ValueError("max_attempts must be >= 1")
