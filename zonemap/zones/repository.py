from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar, Union

from google.cloud import firestore

from zonemap.common.errors import DocumentWriteFailed, MissingTenantScope
from zonemap.common.logging import log_event
from zonemap.messaging.changes import ChangeChannel, ChangeEvent, ChangeKind
from zonemap.tenancy.context import SessionContext
from zonemap.tenancy.models import MarkedLocation, Zone, ZonePerson
from zonemap.tenancy.paths import ZONES_COLLECTION, dependent_collection_path, tenant_collection_path

logger = logging.getLogger(__name__)

T = TypeVar("T")

PEOPLE = "people"
LOCATIONS = "locations"

# A fixed session, or a callable returning the current one (e.g. `lambda: manager.session`).
SessionSource = Union[SessionContext, Callable[[], Optional[SessionContext]]]


class ZoneRepository:
    """
    Tenant-scoped zone CRUD:

      tenants/{tenantId}/zones/{zoneId}
      tenants/{tenantId}/zones/{zoneId}/people/{personId}
      tenants/{tenantId}/zones/{zoneId}/locations/{locationId}

    Every successful write is published on the change channel. Deleting a zone
    only removes the zone document; its sub-collections are drained by the
    zone-deletion trigger.

    The session is resolved on every call, so a repository built from
    `lambda: manager.session` follows token refreshes and re-sign-ins.
    """

    def __init__(self, db: Any, session: SessionSource, *, changes: Optional[ChangeChannel] = None) -> None:
        self._db = db
        self._session_source = session
        self._changes = changes or ChangeChannel()

    @property
    def changes(self) -> ChangeChannel:
        return self._changes

    def _session(self) -> Optional[SessionContext]:
        source = self._session_source
        return source() if callable(source) else source

    def _tenant_id(self) -> str:
        session = self._session()
        if session is None:
            raise MissingTenantScope()
        return session.require_tenant_id()

    def _write(self, action: str, path: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except Exception as e:
            log_event(logger, "zones.write_failed", severity="ERROR", action=action, path=path, error=f"{type(e).__name__}: {e}")
            raise DocumentWriteFailed(f"Failed to {action} document at {path}: {e}") from e

    def _emit(self, kind: ChangeKind, collection: str, doc_id: str, path: str) -> None:
        self._changes.publish(
            ChangeEvent(kind=kind, collection=collection, doc_id=doc_id, tenant_id=path.split("/", 2)[1], path=path)
        )

    def _add(self, collection_path: str, collection: str, data: Dict[str, Any]) -> str:
        ref = self._db.collection(collection_path).document()
        self._write("add", collection_path, lambda: ref.set(data))
        self._emit(ChangeKind.CREATED, collection, ref.id, f"{collection_path}/{ref.id}")
        return ref.id

    def _update(self, collection_path: str, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        path = f"{collection_path}/{doc_id}"
        self._write("update", path, lambda: self._db.document(path).update(data))
        self._emit(ChangeKind.UPDATED, collection, doc_id, path)

    def _delete(self, collection_path: str, collection: str, doc_id: str) -> None:
        path = f"{collection_path}/{doc_id}"
        self._write("delete", path, lambda: self._db.document(path).delete())
        self._emit(ChangeKind.DELETED, collection, doc_id, path)

    def _list(self, collection_path: str) -> List[Dict[str, Any]]:
        return [{"id": snap.id, **(snap.to_dict() or {})} for snap in self._db.collection(collection_path).stream()]

    # --- zones ---

    def _zones_path(self) -> str:
        return tenant_collection_path(self._tenant_id(), ZONES_COLLECTION)

    def list_zones(self) -> List[Dict[str, Any]]:
        return self._list(self._zones_path())

    def create_zone(self, zone: Zone) -> str:
        return self._add(self._zones_path(), ZONES_COLLECTION, zone.model_dump(by_alias=True))

    def update_zone(self, zone_id: str, changes: Mapping[str, Any]) -> None:
        data = {k: v for k, v in changes.items() if k != "id"}
        self._update(self._zones_path(), ZONES_COLLECTION, zone_id, data)

    def delete_zone(self, zone_id: str) -> None:
        self._delete(self._zones_path(), ZONES_COLLECTION, zone_id)

    # --- people ---

    def _dependent_path(self, zone_id: str, sub: str) -> str:
        return dependent_collection_path(self._tenant_id(), ZONES_COLLECTION, zone_id, sub)

    def list_people(self, zone_id: str) -> List[Dict[str, Any]]:
        return self._list(self._dependent_path(zone_id, PEOPLE))

    def add_person(self, zone_id: str, person: ZonePerson) -> str:
        return self._add(self._dependent_path(zone_id, PEOPLE), PEOPLE, person.model_dump())

    def update_person(self, zone_id: str, person_id: str, changes: Mapping[str, Any]) -> None:
        data = {k: v for k, v in changes.items() if k != "id"}
        data["updatedAt"] = firestore.SERVER_TIMESTAMP
        self._update(self._dependent_path(zone_id, PEOPLE), PEOPLE, person_id, data)

    def remove_person(self, zone_id: str, person_id: str) -> None:
        self._delete(self._dependent_path(zone_id, PEOPLE), PEOPLE, person_id)

    # --- marked locations ---

    def list_locations(self, zone_id: str) -> List[Dict[str, Any]]:
        return self._list(self._dependent_path(zone_id, LOCATIONS))

    def add_location(self, zone_id: str, location: MarkedLocation) -> str:
        return self._add(self._dependent_path(zone_id, LOCATIONS), LOCATIONS, location.model_dump(by_alias=True))

    def remove_location(self, zone_id: str, location_id: str) -> None:
        self._delete(self._dependent_path(zone_id, LOCATIONS), LOCATIONS, location_id)
