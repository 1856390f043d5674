"""
Cloud Functions entrypoints for tenant lifecycle.

- assign_tenant_id_on_create: blocking "before user created" hook. Creates the
  user's tenant and returns {"tenantId": ...} as custom claims, so the user is
  created with the claim already in place. Any error aborts user creation.
- on_zone_deleted: runs after tenants/{tenantId}/zones/{zoneId} is deleted and
  drains the zone's dependent sub-collections. Failures are logged only; the
  zone delete has already committed.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from firebase_functions import firestore_fn, https_fn, identity_fn

from zonemap.common.config import apply_functions_emulator_env, load_config
from zonemap.common.errors import CallerFacingError, CascadeDeleteFailed
from zonemap.common.logging import bind_request_id, init_structured_logging, log_event
from zonemap.persistence.firebase_client import get_firestore_client
from zonemap.tenancy.cascade import CascadeDeleter, CascadeReport
from zonemap.tenancy.provisioner import IdentityCandidate, TenantProvisioner

_EMULATOR_MODE = apply_functions_emulator_env()

init_structured_logging(service="zonemap-functions")
logger = logging.getLogger(__name__)

if _EMULATOR_MODE:
    log_event(logger, "functions.emulator_mode")


def _https_error(err: CallerFacingError) -> https_fn.HttpsError:
    try:
        code = https_fn.FunctionsErrorCode(err.code)
    except ValueError:
        code = https_fn.FunctionsErrorCode.INTERNAL
    return https_fn.HttpsError(code=code, message=err.user_message)


def handle_user_created(user: Any, *, db: Any = None) -> dict[str, str]:
    """
    Provision a tenant for `user` (an AuthUserRecord-like object) and return the
    custom claims patch. Raises https_fn.HttpsError to abort user creation.
    """
    candidate = IdentityCandidate(
        uid=str(getattr(user, "uid", None) or ""),
        display_name=getattr(user, "display_name", None),
        email=getattr(user, "email", None),
    )
    try:
        return TenantProvisioner(db if db is not None else get_firestore_client()).provision(candidate)
    except https_fn.HttpsError:
        raise
    except CallerFacingError as e:
        raise _https_error(e) from e


def handle_zone_deleted(params: Mapping[str, str], *, db: Any = None, batch_size: Optional[int] = None) -> Optional[CascadeReport]:
    """
    Drain the deleted zone's sub-collections. Never raises: the zone delete has
    already committed, so failures are logged and a later re-trigger (or a
    re-run over the same zone) can finish the job.
    """
    tenant_id = str(params.get("tenantId") or "")
    zone_id = str(params.get("zoneId") or "")
    try:
        deleter = CascadeDeleter(
            db if db is not None else get_firestore_client(),
            batch_size=batch_size or load_config().cascade_batch_size,
        )
        return deleter.delete_dependents(tenant_id, zone_id)
    except CascadeDeleteFailed as e:
        log_event(
            logger,
            "functions.on_zone_deleted.failed",
            severity="ERROR",
            tenant_id=tenant_id,
            zone_id=zone_id,
            error=str(e),
            failed=[r.name for r in (e.report.failed if e.report else [])],
        )
    except Exception as e:
        log_event(
            logger,
            "functions.on_zone_deleted.failed",
            severity="ERROR",
            tenant_id=tenant_id,
            zone_id=zone_id,
            error=f"{type(e).__name__}: {e}",
            exc_info=True,
        )
    return None


@identity_fn.before_user_created()
def assign_tenant_id_on_create(event: identity_fn.AuthBlockingEvent) -> identity_fn.BeforeCreateResponse:
    with bind_request_id(request_id=getattr(event, "event_id", None)):
        claims = handle_user_created(event.data)
        return identity_fn.BeforeCreateResponse(custom_claims=claims)


@firestore_fn.on_document_deleted(document="tenants/{tenantId}/zones/{zoneId}")
def on_zone_deleted(event: firestore_fn.Event[firestore_fn.DocumentSnapshot | None]) -> None:
    with bind_request_id(request_id=getattr(event, "id", None)):
        handle_zone_deleted(event.params)
