from __future__ import annotations

import sys
from typing import Any
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


_CONFIG_ENV_VARS = (
    "LOGIN_MAIL",
    "LOGIN_PASS",
    "MF_TOTP_SECRET",
    "IMAP_HOST",
    "IMAP_PORT",
    "IMAP_USER",
    "IMAP_PASSWORD",
    "IMAP_FOLDER",
    "MF_EMAIL_FROM",
    "BROWSER_HEADLESS",
    "BROWSER_USER_AGENT",
    "TRACE_PATH",
    "DEBUG_DIR",
    "LOG_LEVEL",
    "LOG_FILE",
    "QUIET_LOG_LEVEL",
)


def pytest_configure(config: Any) -> None:
    config.addinivalue_line(
        "markers",
        "live: smoke tests that log into the real site and require real credentials",
    )


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
