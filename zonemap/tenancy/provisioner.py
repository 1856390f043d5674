"""
Tenant provisioning for newly created identities.

Runs inside the identity provider's "before user created" blocking hook:

1. Validate the candidate identity (uid required)
2. Derive a tenant label (display name > email > "User <uid[:8]>")
3. Create tenants/{autoId} inside one Firestore transaction
4. Return the claims patch {"tenantId": <autoId>}

The hook returns the patch as custom claims of the identity being created, so
the identity never exists without its tenant claim. Any raised error aborts the
identity creation. Not idempotent: the trigger fires once per identity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from zonemap.common.errors import CallerFacingError, InvalidIdentity, ProvisioningFailed
from zonemap.common.logging import log_event
from zonemap.persistence.transactions import run_transaction
from zonemap.tenancy.models import TenantRecord
from zonemap.tenancy.paths import TENANTS_COLLECTION

logger = logging.getLogger(__name__)

TENANT_ID_CLAIM = "tenantId"
_FALLBACK_UID_PREFIX_LEN = 8


@dataclass(frozen=True, slots=True)
class IdentityCandidate:
    uid: str
    display_name: Optional[str] = None
    email: Optional[str] = None


def derive_tenant_name(candidate: IdentityCandidate) -> str:
    display_name = (candidate.display_name or "").strip()
    if display_name:
        return display_name
    email = (candidate.email or "").strip()
    if email:
        return email
    return f"User {candidate.uid[:_FALLBACK_UID_PREFIX_LEN]}"


class TenantProvisioner:
    def __init__(self, db: Any, *, collection_name: str = TENANTS_COLLECTION) -> None:
        self._db = db
        self._collection_name = collection_name

    def provision(self, candidate: IdentityCandidate) -> Dict[str, str]:
        uid = str(getattr(candidate, "uid", None) or "").strip()
        if not uid:
            log_event(logger, "tenant.provision.invalid_identity", severity="ERROR")
            raise InvalidIdentity()

        record = TenantRecord(name=derive_tenant_name(candidate), owner_id=uid)
        log_event(logger, "tenant.provision.started", uid=uid)

        def _create_tenant(transaction: Any) -> str:
            # Fresh auto-id per attempt; only the committed attempt's id escapes.
            ref = self._db.collection(self._collection_name).document()
            transaction.set(ref, record.to_firestore())
            log_event(logger, "tenant.provision.attempt", severity="DEBUG", uid=uid, tenant_id=ref.id)
            return ref.id

        try:
            tenant_id = run_transaction(self._db, _create_tenant)
        except CallerFacingError:
            log_event(logger, "tenant.provision.failed", severity="ERROR", uid=uid, exc_info=True)
            raise
        except Exception as e:
            log_event(logger, "tenant.provision.failed", severity="ERROR", uid=uid, exc_info=True)
            raise ProvisioningFailed(f"Failed to set up tenant for user: {e}") from e

        log_event(logger, "tenant.provision.succeeded", uid=uid, tenant_id=tenant_id)
        return {TENANT_ID_CLAIM: tenant_id}
