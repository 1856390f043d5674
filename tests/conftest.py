from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _isolate_zonemap_env(monkeypatch) -> None:
    """
    Test hygiene: operator env (emulator hosts, tuning knobs) must not leak into tests.
    """
    for name in (
        "FUNCTIONS_EMULATOR",
        "ZONEMAP_CASCADE_BATCH_SIZE",
        "ZONEMAP_TOKEN_REFRESH_PERIOD_S",
        "ZONEMAP_TOKEN_LIFETIME_S",
        "ZONEMAP_LOGIN_PATH",
        "ZONEMAP_BACKGROUND_TIMERS",
        "ZONEMAP_HTTP_TIMEOUT_S",
    ):
        monkeypatch.delenv(name, raising=False)
