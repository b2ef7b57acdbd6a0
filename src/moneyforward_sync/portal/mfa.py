from __future__ import annotations

import asyncio
import contextlib
import html as _html
import imaplib
import logging
import re
from datetime import datetime, timedelta, timezone
from email import message_from_bytes
from email.message import Message
from email.utils import parsedate_to_datetime
from typing import Iterator, Optional

from ..config import MailboxConfig
from ..errors import OtpNotFoundError, OtpTimeoutError, TransportError
from ..logging_config import mask_code


logger = logging.getLogger(__name__)

_CODE_RE = re.compile(r"(?<!\d)(\d{6})(?!\d)")

_IMAP_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def _safe_imap_logout(mail: Optional[imaplib.IMAP4_SSL]) -> None:
    if mail is None:
        return
    try:
        mail.close()
    except Exception:
        logger.debug("IMAP close failed (mailbox may not be selected).", exc_info=True)
    try:
        mail.logout()
    except Exception:
        logger.debug("IMAP logout failed.", exc_info=True)


@contextlib.contextmanager
def _mailbox(cfg: MailboxConfig) -> Iterator[imaplib.IMAP4_SSL]:
    """
    Authenticated, read-only selected mailbox. Logged out exactly once on exit.
    """
    try:
        mail = imaplib.IMAP4_SSL(cfg.host, int(cfg.port), timeout=cfg.timeout_seconds)
    except (OSError, imaplib.IMAP4.error) as e:
        raise TransportError(f"IMAP connect failed for {cfg.host}:{cfg.port}: {e}") from e

    try:
        try:
            mail.login(cfg.user, cfg.password)
            sel_status, _ = mail.select(cfg.folder, readonly=True)
        except (OSError, imaplib.IMAP4.error) as e:
            raise TransportError(f"IMAP login/select failed for user={cfg.user!r}: {e}") from e
        if sel_status != "OK":
            raise TransportError(f"IMAP select failed for folder={cfg.folder!r}: {sel_status}")
        yield mail
    finally:
        _safe_imap_logout(mail)


def _imap_date(dt: datetime) -> str:
    # IMAP SINCE takes a day ("18-Oct-2026"), independent of locale.
    return f"{dt.day:02d}-{_IMAP_MONTHS[dt.month - 1]}-{dt.year}"


def fetch_otp_from_mailbox(cfg: MailboxConfig, *, now: Optional[datetime] = None) -> str:
    """
    Return the 6-digit sign-in code from the newest email sent by `cfg.sender` within
    the lookback window.

    Raises OtpNotFoundError when no qualifying email (or no code) exists and TransportError
    on IMAP failures. Blocking; use `fetch_email_otp` from async code.
    """
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(minutes=cfg.lookback_minutes)

    # SINCE is compared against the server-local date of each message; widen by a day so a
    # server west of UTC still returns fresh mail around midnight. The Date check below
    # enforces the real window.
    search_since = since - timedelta(days=1)

    with _mailbox(cfg) as mail:
        try:
            status, data = mail.search(None, "FROM", f'"{cfg.sender}"', "SINCE", _imap_date(search_since))
        except (OSError, imaplib.IMAP4.error) as e:
            raise TransportError(f"IMAP search failed: {e}") from e
        if status != "OK":
            raise TransportError(f"IMAP search failed: {status} {data}")

        ids = data[0].split() if data and data[0] else []
        if not ids:
            raise OtpNotFoundError(f"OTP mail not found (from={cfg.sender!r} since={since.isoformat()}).")

        # Highest sequence number is treated as the most recently received message.
        latest = max(ids, key=int)
        try:
            status, msg_data = mail.fetch(latest, "(RFC822)")
        except (OSError, imaplib.IMAP4.error) as e:
            raise TransportError(f"IMAP fetch failed for msg_id={latest!r}: {e}") from e
        if status != "OK" or not msg_data or not isinstance(msg_data[0], tuple):
            raise TransportError(f"IMAP fetch failed for msg_id={latest!r}: {status}")

        msg = message_from_bytes(msg_data[0][1])

    # SINCE is day-granular; enforce the minute-level window from the Date header.
    received_at = _best_effort_msg_datetime_utc(msg)
    if received_at is not None and received_at < since:
        raise OtpNotFoundError(
            f"Latest OTP mail is older than {cfg.lookback_minutes} minutes (received_at={received_at.isoformat()})."
        )

    code = extract_code(_extract_text_body(msg))
    if not code:
        raise OtpNotFoundError("OTP code not found in email body.")

    logger.info(
        "Fetched OTP from email (msg_id=%s received_at=%s code=%s)",
        latest.decode(errors="replace") if isinstance(latest, bytes) else latest,
        received_at.isoformat() if received_at else "?",
        mask_code(code),
    )
    return code


async def fetch_email_otp(cfg: MailboxConfig) -> str:
    """
    Await a single OTP lookup. The IMAP conversation runs in a worker thread; the caller
    sees one suspension point bounded by `cfg.timeout_seconds`.
    """
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(fetch_otp_from_mailbox, cfg),
            timeout=cfg.timeout_seconds,
        )
    except asyncio.TimeoutError as e:
        raise OtpTimeoutError(f"Timed out waiting for OTP mailbox lookup after {cfg.timeout_seconds}s") from e


def preflight_mailbox(cfg: MailboxConfig) -> None:
    """Connectivity check only (login + read-only select)."""
    cfg.require_complete()
    with _mailbox(cfg):
        pass
    logger.info("IMAP preflight OK (host=%r folder=%r)", cfg.host, cfg.folder)


def extract_code(text: str) -> Optional[str]:
    m = _CODE_RE.search(text or "")
    return m.group(1) if m else None


def _extract_text_body(msg: Message) -> str:
    """
    Plain-text body of the message. Falls back to tag-stripped HTML when the sender only
    ships an HTML part.
    """
    plain: list[str] = []
    html_parts: list[str] = []
    for part in msg.walk() if msg.is_multipart() else [msg]:
        if part.is_multipart():
            continue
        disp = (part.get("Content-Disposition") or "").lower()
        if "attachment" in disp:
            continue
        ctype = part.get_content_type()
        if ctype == "text/plain":
            plain.append(_decode_part(part))
        elif ctype == "text/html":
            html_parts.append(_decode_part(part))

    if plain:
        return "\n".join(plain)
    return "\n".join(_strip_html_to_text(h) for h in html_parts)


def _decode_part(part: Message) -> str:
    payload = part.get_payload(decode=True) or b""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def _best_effort_msg_datetime_utc(msg: Message) -> Optional[datetime]:
    raw_date = (msg.get("Date") or "").strip()
    if not raw_date:
        return None
    try:
        dt = parsedate_to_datetime(raw_date)
    except (TypeError, ValueError):
        return None
    if not dt:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _strip_html_to_text(s: str) -> str:
    # Remove style/script blocks and comments
    s = re.sub(r"(?is)<style[^>]*>.*?</style>", " ", s)
    s = re.sub(r"(?is)<script[^>]*>.*?</script>", " ", s)
    s = re.sub(r"(?is)<!--.*?-->", " ", s)
    s = re.sub(r"(?is)<[^>]+>", " ", s)
    s = _html.unescape(s)
    s = re.sub(r"\s+", " ", s).strip()
    return s
