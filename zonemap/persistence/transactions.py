from __future__ import annotations

from typing import Any, Callable, TypeVar

from google.cloud import firestore

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5


def run_transaction(db: Any, fn: Callable[[Any], T], *, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> T:
    """
    Run `fn(transaction)` inside a Firestore transaction.

    On contention the SDK re-invokes `fn` with a fresh attempt; only the attempt
    that commits contributes writes, and its return value is what we return.
    """
    transaction = db.transaction(max_attempts=max_attempts)

    @firestore.transactional
    def _attempt(txn: Any) -> T:
        return fn(txn)

    return _attempt(transaction)
