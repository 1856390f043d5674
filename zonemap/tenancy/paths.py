from __future__ import annotations

TENANTS_COLLECTION = "tenants"
ZONES_COLLECTION = "zones"


def _segment(name: str, value: str) -> str:
    s = str(value or "").strip()
    if not s:
        raise ValueError(f"{name} is required")
    if "/" in s:
        raise ValueError(f"{name} must be a single path segment, got {s!r}")
    return s


def tenant_collection_path(tenant_id: str, collection_name: str) -> str:
    """
    Example:
      tenant_collection_path("t1", "zones") => tenants/t1/zones
    """
    return f"{TENANTS_COLLECTION}/{_segment('tenant_id', tenant_id)}/{_segment('collection_name', collection_name)}"


def dependent_collection_path(tenant_id: str, parent_collection: str, parent_id: str, subcollection: str) -> str:
    """
    Example:
      dependent_collection_path("t1", "zones", "z9", "people") => tenants/t1/zones/z9/people
    """
    return "/".join(
        [
            tenant_collection_path(tenant_id, parent_collection),
            _segment("parent_id", parent_id),
            _segment("subcollection", subcollection),
        ]
    )

