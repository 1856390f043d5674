"""
Client-side token lifecycle.

States:
  UNAUTHENTICATED -> AUTHENTICATING -> AUTHENTICATED -> REFRESHING -> AUTHENTICATED | UNAUTHENTICATED

- sign_in(): interactive sign-in, then an immediate token fetch
- fetch_token(): fresh token; tenantId is read from *that* token's claims
- refresh_token(): re-fetch; any failure forces sign_out() and re-raises
- start_token_refresh(): periodic refresh (50 min < 60 min token lifetime)
- call_authorized(send): Bearer header, at most ONE refresh-and-retry on 401

The session lives in an explicit SessionContext created on sign-in and dropped
on sign-out. There are no locks; a token fetch that completes after its session
was torn down is discarded instead of resurrecting the session.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, TypeVar

import requests

from zonemap.auth.identity import IdentityStore
from zonemap.auth.refresh import RefreshScheduler
from zonemap.common.config import ZonemapConfig
from zonemap.common.errors import AuthExpired, NoTokenAvailable, UserCancelled, is_auth_expired
from zonemap.common.logging import log_event
from zonemap.tenancy.context import SessionContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


def _noop_navigate(path: str) -> None:
    log_event(logger, "auth.redirect", severity="DEBUG", path=path)


class TokenLifecycleManager:
    def __init__(
        self,
        identity_store: IdentityStore,
        *,
        config: Optional[ZonemapConfig] = None,
        http: Optional[requests.Session] = None,
        navigate: Callable[[str], None] = _noop_navigate,
    ) -> None:
        self._store = identity_store
        self._config = config or ZonemapConfig()
        self._http = http
        self._navigate = navigate
        self._state = AuthState.UNAUTHENTICATED
        self._session: Optional[SessionContext] = None
        self._schedulers: List[RefreshScheduler] = []
        self.error: Optional[str] = None

    # --- state ---

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def session(self) -> Optional[SessionContext]:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None and self._state in (AuthState.AUTHENTICATED, AuthState.REFRESHING)

    @property
    def id_token(self) -> Optional[str]:
        return self._session.id_token if self._session is not None else None

    @property
    def tenant_id(self) -> Optional[str]:
        return self._session.tenant_id if self._session is not None else None

    def clear_error(self) -> None:
        self.error = None

    # --- lifecycle ---

    def sign_in(self) -> Optional[SessionContext]:
        """
        Returns the new session, or None when the user cancelled (see `error`).

        A cancelled popup leaves a session that is already held untouched. Any
        other failure ends in UNAUTHENTICATED with no session left behind.
        """
        self._state = AuthState.AUTHENTICATING
        self.error = None
        try:
            identity = self._store.sign_in()
        except UserCancelled as e:
            self._state = AuthState.AUTHENTICATED if self._session is not None else AuthState.UNAUTHENTICATED
            self.error = e.user_message
            log_event(logger, "auth.sign_in.cancelled", message=e.user_message)
            return None
        except Exception as e:
            log_event(logger, "auth.sign_in.failed", severity="WARNING", error=f"{type(e).__name__}: {e}")
            self._abort_sign_in(str(e) or "Failed to sign in")
            raise

        # A new identity replaces whatever session was held; its timers go with it.
        self._cancel_schedulers()
        self._session = SessionContext(identity=identity)
        try:
            session = self.fetch_token()
        except Exception as e:
            log_event(logger, "auth.sign_in.failed", severity="WARNING", uid=identity.uid, error=f"{type(e).__name__}: {e}")
            self._abort_sign_in("Failed to fetch authentication token")
            raise

        log_event(logger, "auth.sign_in.succeeded", uid=identity.uid, tenant_id=session.tenant_id)
        return session

    def _abort_sign_in(self, error: str) -> None:
        if self._session is not None:
            self.sign_out()
        self._state = AuthState.UNAUTHENTICATED
        self.error = error

    def _cancel_schedulers(self) -> None:
        schedulers, self._schedulers = self._schedulers, []
        for scheduler in schedulers:
            scheduler.cancel()

    def fetch_token(self) -> SessionContext:
        session = self._session
        if session is None:
            raise NoTokenAvailable("No signed-in identity to fetch a token for")

        token = self._store.get_id_token(session.identity, force_refresh=True)

        if self._session is None or self._session.session_id != session.session_id:
            log_event(logger, "auth.token.discarded", severity="DEBUG", uid=session.uid)
            raise NoTokenAvailable("Session ended while fetching a token")

        updated = session.with_token(token)
        self._session = updated
        self._state = AuthState.AUTHENTICATED
        log_event(
            logger,
            "auth.token.fetched",
            uid=updated.uid,
            tenant_id=updated.tenant_id,
            token_present=bool(updated.id_token),
        )
        return updated

    def refresh_token(self) -> Optional[SessionContext]:
        """
        Re-fetch the token. On failure the session is unrecoverable: sign out, re-raise.
        """
        if self._session is None:
            return None
        self._state = AuthState.REFRESHING
        try:
            return self.fetch_token()
        except Exception as e:
            log_event(logger, "auth.token.refresh_failed", severity="WARNING", error=f"{type(e).__name__}: {e}")
            # Session may already be gone (signed out while the fetch was in flight).
            if self._session is not None:
                self.sign_out()
            raise

    def sign_out(self) -> None:
        session = self._session
        self._session = None
        self._state = AuthState.UNAUTHENTICATED
        self.error = None

        self._cancel_schedulers()

        if session is not None:
            try:
                self._store.sign_out(session.identity)
            except Exception as e:
                # Best-effort; local state is already cleared.
                log_event(logger, "auth.sign_out.provider_failed", severity="WARNING", error=f"{type(e).__name__}: {e}")
            log_event(logger, "auth.sign_out", uid=session.uid)

        self._navigate(self._config.login_path)

    # --- scheduled refresh ---

    def start_token_refresh(self) -> Optional[RefreshScheduler]:
        """
        Start periodic refresh. Returns None when not authenticated or when
        background timers are unavailable. The owner should cancel the returned
        scheduler when it stops observing; sign_out() cancels all of them.
        """
        if not self._config.background_timers or not self.is_authenticated:
            return None

        def _tick() -> None:
            try:
                self.refresh_token()
            except Exception:
                # refresh_token already signed out and logged.
                return

        scheduler = RefreshScheduler(
            period_s=self._config.token_refresh_period_s,
            tick=_tick,
            should_continue=lambda: self._session is not None,
        )
        self._schedulers = [s for s in self._schedulers if s.running]
        self._schedulers.append(scheduler)
        return scheduler.start()

    # --- authorized calls ---

    def auth_header(self) -> dict[str, str]:
        token = self.id_token
        if not token:
            raise NoTokenAvailable()
        return {"Authorization": f"Bearer {token}"}

    def call_authorized(self, send: Callable[[Mapping[str, str]], T]) -> T:
        """
        Perform `send(headers)` with a Bearer header.

        On a 401-class failure while a token is held: refresh once, retry once.
        If the refresh or the retry fails, sign out and raise that latest failure.
        """
        headers = self.auth_header()
        try:
            return send(headers)
        except Exception as e:
            if not (is_auth_expired(e) and self.id_token):
                raise
            log_event(logger, "auth.call.expired", severity="WARNING", uid=self._session.uid if self._session else None)

        # Single recovery attempt; refresh_token() signs out on its own failure.
        self.refresh_token()
        try:
            result = send(self.auth_header())
        except Exception as e:
            log_event(logger, "auth.call.retry_failed", severity="WARNING", error=f"{type(e).__name__}: {e}")
            self.sign_out()
            raise
        log_event(logger, "auth.call.recovered")
        return result

    def request(self, method: str, url: str, *, headers: Optional[Mapping[str, str]] = None, **kwargs: Any) -> requests.Response:
        """
        `requests` convenience over call_authorized(); 401 responses become AuthExpired.
        """
        if self._http is None:
            self._http = requests.Session()
        http = self._http
        kwargs.setdefault("timeout", self._config.http_timeout_s)

        def _send(auth: Mapping[str, str]) -> requests.Response:
            response = http.request(method, url, headers={**dict(headers or {}), **auth}, **kwargs)
            if response.status_code == 401:
                raise AuthExpired(f"{method} {url} returned 401", response=response)
            response.raise_for_status()
            return response

        return self.call_authorized(_send)
