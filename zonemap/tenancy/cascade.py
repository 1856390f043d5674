"""
Cascading delete of a zone's dependent sub-collections.

Firestore does not delete sub-collections with their parent document. After a
zone delete commits, every known sub-collection under it is drained:

  tenants/{tenantId}/zones/{zoneId}/{sub}  for sub in DEPENDENT_SUBCOLLECTIONS

Each sub-collection is drained in pages of `batch_size` documents ordered by
document id, one WriteBatch per page, sequentially. Not transactional: pages
already deleted stay deleted, and re-running on a drained sub-collection costs
one empty read and zero writes.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

from google.cloud.firestore_v1.field_path import FieldPath

from zonemap.common.config import DEFAULT_CASCADE_BATCH_SIZE
from zonemap.common.errors import CascadeDeleteFailed
from zonemap.common.logging import log_event
from zonemap.persistence.firestore_retry import with_firestore_retry
from zonemap.tenancy.paths import ZONES_COLLECTION, dependent_collection_path

logger = logging.getLogger(__name__)

# Every sub-collection that can exist under a zone. Add new dependent kinds here.
DEPENDENT_SUBCOLLECTIONS: tuple[str, ...] = ("people", "locations")


def _yield_to_scheduler() -> None:
    time.sleep(0)


@dataclass
class SubcollectionResult:
    name: str
    path: str
    deleted: int = 0
    batches: int = 0
    fetches: int = 0
    error: Optional[str] = None

    @property
    def drained(self) -> bool:
        return self.error is None


@dataclass
class CascadeReport:
    tenant_id: str
    parent_id: str
    results: List[SubcollectionResult] = field(default_factory=list)

    @property
    def deleted(self) -> int:
        return sum(r.deleted for r in self.results)

    @property
    def failed(self) -> List[SubcollectionResult]:
        return [r for r in self.results if not r.drained]


class CascadeDeleter:
    def __init__(
        self,
        db: Any,
        *,
        parent_collection: str = ZONES_COLLECTION,
        subcollections: Sequence[str] = DEPENDENT_SUBCOLLECTIONS,
        batch_size: int = DEFAULT_CASCADE_BATCH_SIZE,
        pause: Callable[[], None] = _yield_to_scheduler,
    ) -> None:
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
            raise ValueError(f"batch_size must be a positive int, got {batch_size!r}")
        self._db = db
        self._parent_collection = parent_collection
        self._subcollections = tuple(subcollections)
        self._batch_size = batch_size
        self._pause = pause

    def delete_dependents(self, tenant_id: str, parent_id: str) -> CascadeReport:
        """
        Drain every dependent sub-collection of tenants/{tenant_id}/{parent}/{parent_id}.

        Raises CascadeDeleteFailed (carrying the report) if any sub-collection
        could not be fully drained; the others are still processed.
        """
        report = CascadeReport(tenant_id=tenant_id, parent_id=parent_id)
        log_event(
            logger,
            "cascade.started",
            tenant_id=tenant_id,
            parent_collection=self._parent_collection,
            parent_id=parent_id,
        )

        for name in self._subcollections:
            path = dependent_collection_path(tenant_id, self._parent_collection, parent_id, name)
            result = SubcollectionResult(name=name, path=path)
            report.results.append(result)
            try:
                self._drain(path, result)
            except Exception as e:
                result.error = f"{type(e).__name__}: {e}"
                log_event(
                    logger,
                    "cascade.subcollection_failed",
                    severity="ERROR",
                    path=path,
                    deleted=result.deleted,
                    batches=result.batches,
                    error=result.error,
                )
                continue
            log_event(logger, "cascade.subcollection_drained", path=path, deleted=result.deleted, batches=result.batches)

        if report.failed:
            names = ", ".join(r.name for r in report.failed)
            raise CascadeDeleteFailed(
                f"Cascade delete incomplete for {self._parent_collection}/{parent_id}: {names}",
                report=report,
            )

        log_event(logger, "cascade.finished", tenant_id=tenant_id, parent_id=parent_id, deleted=report.deleted)
        return report

    def _drain(self, path: str, result: SubcollectionResult) -> None:
        query = self._db.collection(path).order_by(FieldPath.document_id()).limit(self._batch_size)
        while True:
            docs = with_firestore_retry(lambda: list(query.stream()))
            result.fetches += 1
            if not docs:
                return

            batch = self._db.batch()
            for snap in docs:
                batch.delete(snap.reference)
            batch.commit()

            result.batches += 1
            result.deleted += len(docs)
            self._pause()
