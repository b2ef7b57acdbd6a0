import logging
from pathlib import Path
from typing import Iterable, Optional, Sequence


class RedactSecretsFilter(logging.Filter):
    """
    Replace known secret values (site password, TOTP secret, mailbox password) with `***`.

    Attached to the handlers so third-party loggers (playwright echoing a typed value, imaplib
    debug output) are covered too.
    """

    def __init__(self, secrets: Iterable[str]) -> None:
        super().__init__()
        # Longest first so a secret containing another one is replaced whole.
        self.secrets = sorted({s for s in secrets if s}, key=len, reverse=True)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        redacted = message
        for secret in self.secrets:
            redacted = redacted.replace(secret, "***")
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(
    level: str = "INFO",
    file_path: Optional[str] = None,
    *,
    secrets: Iterable[str] = (),
    quiet_loggers: Sequence[str] = ("playwright", "asyncio"),
    quiet_level: str = "WARNING",
) -> None:
    numeric_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    redact = RedactSecretsFilter(secrets)
    for handler in handlers:
        handler.addFilter(redact)

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        handlers=handlers,
        force=True,  # the CLI reconfigures once the config file has been read
    )

    quiet = getattr(logging, (quiet_level or "WARNING").upper(), logging.WARNING)
    for name in quiet_loggers:
        logging.getLogger(name).setLevel(quiet)


def mask_code(code: str) -> str:
    """Keep the first and last two digits of a one-time code for log lines."""
    return f"{code[:2]}****{code[-2:]}" if len(code) >= 4 else "***"
