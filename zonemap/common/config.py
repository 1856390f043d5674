from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

# Firebase ID tokens live for one hour; refresh strictly before that.
DEFAULT_TOKEN_LIFETIME_S = 60 * 60
DEFAULT_TOKEN_REFRESH_PERIOD_S = 50 * 60
DEFAULT_CASCADE_BATCH_SIZE = 100
DEFAULT_LOGIN_PATH = "/login"
DEFAULT_HTTP_TIMEOUT_S = 10.0

# Conventional emulator ports (firebase.json defaults).
DEFAULT_FIRESTORE_EMULATOR_HOST = "127.0.0.1:8080"
DEFAULT_AUTH_EMULATOR_HOST = "127.0.0.1:9099"


def _parse_bool(v: object | None, *, default: bool = False) -> bool:
    if v is None:
        return default
    s = str(v).strip().lower()
    if s == "":
        return default
    return s in {"1", "true", "t", "yes", "y", "on"}


def _get_nonempty(env: Mapping[str, str], name: str) -> Optional[str]:
    v = env.get(name)
    if v is None:
        return None
    s = str(v).strip()
    return s if s else None


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _get_nonempty(env, name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _get_nonempty(env, name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class ZonemapConfig:
    project_id: Optional[str] = None
    web_api_key: Optional[str] = None
    auth_emulator_host: Optional[str] = None
    firestore_emulator_host: Optional[str] = None
    cascade_batch_size: int = DEFAULT_CASCADE_BATCH_SIZE
    token_refresh_period_s: float = DEFAULT_TOKEN_REFRESH_PERIOD_S
    token_lifetime_s: float = DEFAULT_TOKEN_LIFETIME_S
    login_path: str = DEFAULT_LOGIN_PATH
    background_timers: bool = True
    http_timeout_s: float = DEFAULT_HTTP_TIMEOUT_S

    def __post_init__(self) -> None:
        if self.cascade_batch_size <= 0:
            raise ValueError(f"cascade_batch_size must be positive, got {self.cascade_batch_size}")
        if self.token_lifetime_s <= 0:
            raise ValueError(f"token_lifetime_s must be positive, got {self.token_lifetime_s}")
        if not (0 < self.token_refresh_period_s < self.token_lifetime_s):
            raise ValueError(
                "token_refresh_period_s must be positive and strictly shorter than token_lifetime_s "
                f"(got period={self.token_refresh_period_s}, lifetime={self.token_lifetime_s})"
            )
        if self.http_timeout_s <= 0:
            raise ValueError(f"http_timeout_s must be positive, got {self.http_timeout_s}")


def load_config(env: Mapping[str, str] | None = None) -> ZonemapConfig:
    """
    Read ZonemapConfig from environment variables.

    Raises ValueError on malformed or contradictory values (fail fast at startup).
    """
    e = os.environ if env is None else env
    return ZonemapConfig(
        project_id=_get_nonempty(e, "FIREBASE_PROJECT_ID") or _get_nonempty(e, "GOOGLE_CLOUD_PROJECT"),
        web_api_key=_get_nonempty(e, "FIREBASE_API_KEY"),
        auth_emulator_host=_get_nonempty(e, "FIREBASE_AUTH_EMULATOR_HOST"),
        firestore_emulator_host=_get_nonempty(e, "FIRESTORE_EMULATOR_HOST"),
        cascade_batch_size=_get_int(e, "ZONEMAP_CASCADE_BATCH_SIZE", DEFAULT_CASCADE_BATCH_SIZE),
        token_refresh_period_s=_get_float(e, "ZONEMAP_TOKEN_REFRESH_PERIOD_S", DEFAULT_TOKEN_REFRESH_PERIOD_S),
        token_lifetime_s=_get_float(e, "ZONEMAP_TOKEN_LIFETIME_S", DEFAULT_TOKEN_LIFETIME_S),
        login_path=_get_nonempty(e, "ZONEMAP_LOGIN_PATH") or DEFAULT_LOGIN_PATH,
        background_timers=_parse_bool(e.get("ZONEMAP_BACKGROUND_TIMERS"), default=True),
        http_timeout_s=_get_float(e, "ZONEMAP_HTTP_TIMEOUT_S", DEFAULT_HTTP_TIMEOUT_S),
    )


def apply_functions_emulator_env(env: dict[str, str] | None = None) -> bool:
    """
    When running under the Functions emulator, point the Admin SDK at the local
    Firestore/Auth emulators unless hosts are already configured.

    Returns True when emulator mode was detected.
    """
    e = os.environ if env is None else env
    if (e.get("FUNCTIONS_EMULATOR") or "").strip().lower() != "true":
        return False
    e.setdefault("FIRESTORE_EMULATOR_HOST", DEFAULT_FIRESTORE_EMULATOR_HOST)
    e.setdefault("FIREBASE_AUTH_EMULATOR_HOST", DEFAULT_AUTH_EMULATOR_HOST)
    return True
