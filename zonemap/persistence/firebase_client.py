from __future__ import annotations

import logging
import os
import threading
from typing import Mapping, Optional

import firebase_admin
from firebase_admin import credentials, firestore

from zonemap.common.logging import log_event

logger = logging.getLogger(__name__)


_MANAGED_RUNTIME_VARS = ("K_SERVICE", "FUNCTION_TARGET")


def is_local_execution(env: Optional[Mapping[str, str]] = None) -> bool:
    """
    True unless we're on a managed runtime (Cloud Functions / Cloud Run / App Engine).
    ENV=local forces local.
    """
    e = os.environ if env is None else env
    if (e.get("ENV") or "").strip().lower() == "local":
        return True
    if any((e.get(k) or "").strip() for k in _MANAGED_RUNTIME_VARS):
        return False
    return not any(str(k).startswith("GAE_") for k in e)


def require_firestore_emulator_or_allow_prod(*, caller: str, env: Optional[Mapping[str, str]] = None) -> None:
    """
    Fail closed when a local process would talk to production Firestore.

    Local runs need FIRESTORE_EMULATOR_HOST (set automatically under the
    Functions emulator) or an explicit ALLOW_PROD_FIRESTORE=1.
    """
    e = os.environ if env is None else env
    if not is_local_execution(e):
        return
    if (e.get("FIRESTORE_EMULATOR_HOST") or "").strip():
        return
    if (e.get("ALLOW_PROD_FIRESTORE") or "").strip() == "1":
        return

    log_event(logger, "firebase.prod_firestore_refused", severity="ERROR", caller=caller)
    raise RuntimeError(
        f"Refusing to use production Firestore from local execution (caller={caller}). "
        "Set FIRESTORE_EMULATOR_HOST (e.g. 127.0.0.1:8080) or ALLOW_PROD_FIRESTORE=1."
    )


def _resolve_project_id(explicit_project_id: Optional[str] = None) -> Optional[str]:
    if explicit_project_id:
        return explicit_project_id
    return os.getenv("FIREBASE_PROJECT_ID") or os.getenv("GOOGLE_CLOUD_PROJECT") or os.getenv("GCLOUD_PROJECT")


_init_lock = threading.Lock()


def init_firebase_admin(*, project_id: Optional[str] = None) -> None:
    """
    Initialize Firebase Admin SDK exactly once.

    - Managed runtimes (Cloud Functions): default app, Application Default Credentials.
    - Emulator: FIRESTORE_EMULATOR_HOST / FIREBASE_AUTH_EMULATOR_HOST are honored by the SDK.
    """
    require_firestore_emulator_or_allow_prod(caller="zonemap.persistence.firebase_client.init_firebase_admin")

    if firebase_admin._apps:
        return

    with _init_lock:
        if firebase_admin._apps:
            return

        resolved_project_id = _resolve_project_id(project_id)
        options = {"projectId": resolved_project_id} if resolved_project_id else None
        try:
            firebase_admin.initialize_app(credentials.ApplicationDefault(), options)
        except Exception as e:
            raise RuntimeError(
                "Failed to initialize Firebase Admin SDK with Application Default Credentials (ADC). "
                "Locally: run `gcloud auth application-default login` or use the emulators."
            ) from e

        log_event(
            logger,
            "firebase.admin.initialized",
            project_id=resolved_project_id,
            firestore_emulator_host=os.getenv("FIRESTORE_EMULATOR_HOST"),
            auth_emulator_host=os.getenv("FIREBASE_AUTH_EMULATOR_HOST"),
        )


def get_firestore_client(*, project_id: Optional[str] = None):
    init_firebase_admin(project_id=project_id)
    return firestore.client()
