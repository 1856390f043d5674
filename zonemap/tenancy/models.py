from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class TenantRecord(BaseModel):
    """
    Stored at tenants/{tenantId}. The id is allocated by Firestore, never by clients.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    owner_id: str = Field(alias="ownerId")
    status: Literal["active"] = "active"

    def to_firestore(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class AssignedPerson(BaseModel):
    name: str
    phone: str = ""
    note: str = ""


class ZonePerson(BaseModel):
    name: str
    phone: str = ""
    note: str = ""


class MarkedLocation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    # Stored as-is (GeoPoint or {"lat", "lng"}); no geometry handling here.
    location: Any
    assigned_person: AssignedPerson = Field(alias="assignedPerson")


class Zone(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    comment: str = ""
    color: str = ""
    owner_id: str = Field(alias="ownerId")
    parent_zone_id: Optional[str] = Field(default=None, alias="parentZoneId")
    geometry: Dict[str, Any] = Field(default_factory=dict)
