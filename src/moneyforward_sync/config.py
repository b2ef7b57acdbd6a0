from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .models import Credentials


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name, "") or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in {"1", "true", "t", "yes", "y", "on"}


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _default_config_from_env() -> dict:
    """
    Env-only config, so a `.env` file is enough for most setups.

    Variable names match the ones the deployed service already uses (LOGIN_MAIL, IMAP_*, MF_*).
    """
    return {
        "login": {
            "email": os.getenv("LOGIN_MAIL", ""),
            "password": os.getenv("LOGIN_PASS", ""),
            "totp_secret": os.getenv("MF_TOTP_SECRET", ""),
        },
        "mailbox": {
            "host": os.getenv("IMAP_HOST", ""),
            "port": os.getenv("IMAP_PORT", "") or 993,
            "user": os.getenv("IMAP_USER", ""),
            "password": os.getenv("IMAP_PASSWORD", ""),
            "sender": os.getenv("MF_EMAIL_FROM", ""),
            "folder": os.getenv("IMAP_FOLDER", "INBOX"),
        },
        "browser": {
            "headless": _env_bool("BROWSER_HEADLESS", default=True),
            "user_agent": os.getenv("BROWSER_USER_AGENT", DEFAULT_USER_AGENT),
            "trace_path": os.getenv("TRACE_PATH", "traces/trace.zip"),
            "debug_dir": os.getenv("DEBUG_DIR", "data/debug"),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "file_path": os.getenv("LOG_FILE", ""),
            "quiet_level": os.getenv("QUIET_LOG_LEVEL", "WARNING"),
        },
    }


class LoginConfig(BaseModel):
    # Empty strings are allowed on purpose: a blank field fails visibly at the sign-in form.
    email: str = ""
    password: str = Field(default="", repr=False)
    totp_secret: str = Field(default="", repr=False)

    def credentials(self) -> Credentials:
        return Credentials(
            email=self.email,
            password=self.password,
            totp_secret=self.totp_secret.strip() or None,
        )


class MailboxConfig(BaseModel):
    """
    IMAP mailbox that receives the sign-in code email.

    Only needed when the account uses email OTP; completeness is checked lazily by
    `require_complete()` when the login flow actually reaches that step.
    """

    host: str = ""
    port: int = 993
    user: str = ""
    password: str = Field(default="", repr=False)
    sender: str = ""
    folder: str = "INBOX"
    lookback_minutes: int = Field(default=5, gt=0)
    timeout_seconds: float = Field(default=60.0, gt=0)

    def missing_fields(self) -> list[str]:
        required = {
            "host": self.host,
            "user": self.user,
            "password": self.password,
            "sender": self.sender,
        }
        return [name for name, value in required.items() if not (value or "").strip()]

    def require_complete(self) -> "MailboxConfig":
        missing = self.missing_fields()
        if missing:
            raise ConfigurationError(
                "Email OTP requested by the site but mailbox settings are incomplete "
                f"(missing: {', '.join('mailbox.' + m for m in missing)}). "
                "Set IMAP_HOST/IMAP_USER/IMAP_PASSWORD/MF_EMAIL_FROM."
            )
        return self


class SiteConfig(BaseModel):
    sign_in_url: str = "https://id.moneyforward.com/sign_in"
    portfolio_url: str = "https://moneyforward.com/bs/portfolio"
    accounts_url: str = "https://moneyforward.com/accounts"


class BrowserConfig(BaseModel):
    headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    launch_args: list[str] = Field(default_factory=lambda: ["--disable-gpu", "--no-sandbox"])
    trace_path: str = "traces/trace.zip"
    debug_dir: str = "data/debug"
    step_debug: bool = False

    type_delay_ms: int = Field(default=10, ge=0)
    settle_delay_ms: int = Field(default=2_000, ge=0)

    # All waits are bounded; a layout change on the site must fail, not hang.
    navigation_timeout_ms: int = 300_000
    element_timeout_ms: int = 120_000
    page_ready_timeout_ms: int = 300_000

    @field_validator("navigation_timeout_ms", "element_timeout_ms", "page_ready_timeout_ms")
    @classmethod
    def _timeouts_must_be_bounded(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("browser timeouts must be > 0 ms (unbounded waits are not supported)")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = ""
    # Chatty third-party loggers held at `quiet_level` regardless of `level`.
    quiet_loggers: list[str] = Field(default_factory=lambda: ["playwright", "asyncio"])
    quiet_level: str = "WARNING"


class AppConfig(BaseModel):
    # Built once at the process boundary and shared read-only by concurrent invocations.
    model_config = ConfigDict(frozen=True)

    login: LoginConfig = LoginConfig()
    mailbox: MailboxConfig = MailboxConfig()
    site: SiteConfig = SiteConfig()
    browser: BrowserConfig = BrowserConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(path: Union[str, Path, None] = None) -> AppConfig:
    raw: dict = {}
    if path:
        p = Path(path)
        if p.exists():
            raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
            raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    try:
        return AppConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
