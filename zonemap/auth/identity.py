"""
Client-side identity provider access (Firebase Auth REST surface).

- Interactive sign-in: a credential provider (browser popup, device flow, ...)
  yields an IdP credential which is exchanged via `accounts:signInWithIdp`.
- Token fetch: the Secure Token endpoint mints a fresh ID token from the
  refresh token; claims are decoded from that token's payload.

Signature verification is the server's job (Admin SDK); clients only read claims.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Optional, Protocol
from urllib.parse import urlencode

import jwt
import requests

from zonemap.common.config import ZonemapConfig
from zonemap.common.errors import IdentityStoreError, UserCancelled
from zonemap.common.logging import log_event

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_HOST = "https://identitytoolkit.googleapis.com"
SECURE_TOKEN_HOST = "https://securetoken.googleapis.com"


@dataclass(frozen=True, slots=True)
class Identity:
    uid: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    refresh_token: Optional[str] = field(default=None, repr=False)
    claims: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class IdToken:
    token: str = field(repr=False)
    claims: Mapping[str, Any]
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_in_s: Optional[int] = None


@dataclass(frozen=True, slots=True)
class IdpCredential:
    provider_id: str
    id_token: Optional[str] = field(default=None, repr=False)
    access_token: Optional[str] = field(default=None, repr=False)


class IdentityStore(Protocol):
    def sign_in(self) -> Identity: ...

    def get_id_token(self, identity: Identity, *, force_refresh: bool = True) -> IdToken: ...

    def sign_out(self, identity: Identity) -> None: ...


def decode_claims(token: str) -> dict[str, Any]:
    """
    Read the claim set of an ID token without verifying its signature.
    """
    try:
        return dict(jwt.decode(token, options={"verify_signature": False}))
    except jwt.PyJWTError as e:
        raise IdentityStoreError("Identity provider returned a malformed token", reason="MALFORMED_TOKEN") from e


def _error_reason(response: Any) -> str:
    try:
        body = response.json()
    except ValueError:
        return "UNKNOWN"
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict):
        msg = str(err.get("message") or "UNKNOWN")
    else:
        msg = str(err or "UNKNOWN")
    # e.g. "BLOCKING_FUNCTION_ERROR_RESPONSE : ..." / "TOKEN_EXPIRED"
    return msg.split(":", 1)[0].strip().upper() or "UNKNOWN"


class FirebaseIdentityClient:
    def __init__(
        self,
        config: ZonemapConfig,
        *,
        credential_provider: Callable[[], IdpCredential],
        http: Optional[requests.Session] = None,
        request_uri: str = "http://localhost",
    ) -> None:
        if not config.web_api_key:
            raise ValueError("FIREBASE_API_KEY is required for the identity client")
        self._api_key = config.web_api_key
        self._timeout_s = config.http_timeout_s
        self._credential_provider = credential_provider
        self._http = http or requests.Session()
        self._request_uri = request_uri
        if config.auth_emulator_host:
            emulator = f"http://{config.auth_emulator_host}"
            self._identity_toolkit = f"{emulator}/identitytoolkit.googleapis.com/v1"
            self._secure_token = f"{emulator}/securetoken.googleapis.com/v1"
        else:
            self._identity_toolkit = f"{IDENTITY_TOOLKIT_HOST}/v1"
            self._secure_token = f"{SECURE_TOKEN_HOST}/v1"

    def _post(self, url: str, *, operation: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._http.post(url, params={"key": self._api_key}, timeout=self._timeout_s, **kwargs)
        except requests.RequestException as e:
            log_event(logger, "identity.request_failed", severity="WARNING", operation=operation, error=str(e))
            raise IdentityStoreError(f"{operation} failed: {e}", reason="NETWORK_ERROR") from e

        if response.status_code >= 400:
            reason = _error_reason(response)
            log_event(
                logger,
                "identity.request_rejected",
                severity="WARNING",
                operation=operation,
                status_code=response.status_code,
                reason=reason,
            )
            raise IdentityStoreError(f"{operation} rejected: {reason}", reason=reason, status_code=response.status_code)
        return response.json()

    def sign_in(self) -> Identity:
        # UserCancelled from the interactive step propagates untouched.
        credential = self._credential_provider()
        post_body = {"providerId": credential.provider_id}
        if credential.id_token:
            post_body["id_token"] = credential.id_token
        if credential.access_token:
            post_body["access_token"] = credential.access_token

        body = self._post(
            f"{self._identity_toolkit}/accounts:signInWithIdp",
            operation="signInWithIdp",
            json={
                "postBody": urlencode(post_body),
                "requestUri": self._request_uri,
                "returnSecureToken": True,
                "returnIdpCredential": True,
            },
        )
        uid = str(body.get("localId") or "").strip()
        if not uid:
            raise IdentityStoreError("signInWithIdp returned no user id", reason="MISSING_LOCAL_ID")

        claims = decode_claims(body["idToken"]) if body.get("idToken") else {}
        log_event(logger, "identity.signed_in", uid=uid, provider_id=credential.provider_id)
        return Identity(
            uid=uid,
            display_name=body.get("displayName") or None,
            email=body.get("email") or None,
            refresh_token=body.get("refreshToken"),
            claims=claims,
        )

    def get_id_token(self, identity: Identity, *, force_refresh: bool = True) -> IdToken:
        # The REST surface always mints a new token; force_refresh is implied.
        _ = force_refresh
        if not identity.refresh_token:
            raise IdentityStoreError("Identity has no refresh token", reason="MISSING_REFRESH_TOKEN")

        body = self._post(
            f"{self._secure_token}/token",
            operation="token",
            data={"grant_type": "refresh_token", "refresh_token": identity.refresh_token},
        )
        token = str(body.get("id_token") or "")
        if not token:
            raise IdentityStoreError("token endpoint returned no id_token", reason="MISSING_ID_TOKEN")

        expires_in = body.get("expires_in")
        return IdToken(
            token=token,
            claims=decode_claims(token),
            refresh_token=body.get("refresh_token") or identity.refresh_token,
            expires_in_s=int(expires_in) if expires_in is not None else None,
        )

    def sign_out(self, identity: Identity) -> None:
        # Firebase client sign-out is local: the refresh token is simply dropped.
        log_event(logger, "identity.signed_out", uid=identity.uid)


def with_rotated_refresh_token(identity: Identity, token: IdToken) -> Identity:
    if token.refresh_token and token.refresh_token != identity.refresh_token:
        return replace(identity, refresh_token=token.refresh_token, claims=dict(token.claims))
    return replace(identity, claims=dict(token.claims))


POPUP_CANCELLATION_MESSAGES: Mapping[str, str] = {
    "popup-closed-by-user": "Sign-in was cancelled",
    "popup-blocked": "Popup was blocked by your browser",
    "cancelled-popup-request": "Sign-in request was cancelled",
}


def cancelled(kind: str) -> UserCancelled:
    """
    Build the UserCancelled error a credential provider raises when the user
    closes or blocks the interactive step.
    """
    message = POPUP_CANCELLATION_MESSAGES.get(kind, "Sign-in was cancelled")
    return UserCancelled(f"interactive sign-in aborted: {kind}", user_message=message)
