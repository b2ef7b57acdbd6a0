from __future__ import annotations

import enum
import logging
from typing import Awaitable, Callable, Optional, Protocol

from ..config import MailboxConfig
from ..errors import AuthenticationError, MoneyForwardError
from ..logging_config import mask_code
from ..models import Credentials
from .selectors import SiteSelectors
from .totp import generate_totp


logger = logging.getLogger(__name__)

OtpProvider = Callable[[MailboxConfig], Awaitable[str]]


class LoginState(str, enum.Enum):
    START = "start"
    EMAIL_SUBMITTED = "email_submitted"
    PASSWORD_SUBMITTED = "password_submitted"
    AWAITING_TOTP = "awaiting_totp"
    AWAITING_EMAIL_OTP = "awaiting_email_otp"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class MfaChallenge(str, enum.Enum):
    NO_MFA = "no_mfa"
    TOTP_REQUIRED = "totp_required"
    EMAIL_OTP_REQUIRED = "email_otp_required"


class LoginPage(Protocol):
    """The subset of BrowserSession the login flow drives."""

    async def goto(self, url: str, *, timeout_ms: Optional[int] = None) -> None: ...
    async def exists(self, selector: str) -> bool: ...
    async def click(self, selector: str) -> None: ...
    async def type(self, selector: str, text: str) -> None: ...
    async def wait_for(self, selector: str, *, timeout_ms: Optional[int] = None) -> None: ...
    async def pause(self, ms: int) -> None: ...
    async def step(self, name: str) -> None: ...
    async def save_debug(self, name_prefix: str) -> None: ...


def classify_mfa(*, has_totp_input: bool, has_email_otp_input: bool, totp_configured: bool) -> MfaChallenge:
    """
    Decide which MFA path the page is asking for.

    The site picks the method per account (or skips MFA), so this is driven by what is on
    the page. A TOTP input without a configured secret falls through to the email check.
    """
    if has_totp_input and totp_configured:
        return MfaChallenge.TOTP_REQUIRED
    if has_email_otp_input:
        return MfaChallenge.EMAIL_OTP_REQUIRED
    return MfaChallenge.NO_MFA


async def detect_mfa_challenge(page: LoginPage, selectors: SiteSelectors, *, totp_configured: bool) -> MfaChallenge:
    return classify_mfa(
        has_totp_input=await page.exists(selectors.totp_input),
        has_email_otp_input=await page.exists(selectors.email_otp_input),
        totp_configured=totp_configured,
    )


class LoginStateMachine:
    """
    Drives a fresh session to an authenticated page.

    `history` records every state visited, so callers (and tests) can see which MFA branch
    was taken. Errors are never retried: the state becomes FAILED and the error propagates.
    """

    def __init__(
        self,
        page: LoginPage,
        *,
        creds: Credentials,
        sign_in_url: str,
        mailbox: MailboxConfig,
        otp_provider: OtpProvider,
        selectors: Optional[SiteSelectors] = None,
        settle_delay_ms: int = 2_000,
        element_timeout_ms: Optional[int] = None,
    ) -> None:
        self.page = page
        self.creds = creds
        self.sign_in_url = sign_in_url
        self.mailbox = mailbox
        self.otp_provider = otp_provider
        self.selectors = selectors or SiteSelectors()
        self.settle_delay_ms = settle_delay_ms
        self.element_timeout_ms = element_timeout_ms

        self.state = LoginState.START
        self.history: list[LoginState] = [LoginState.START]
        self.challenge: Optional[MfaChallenge] = None
        self.failure_reason: Optional[str] = None

    def _enter(self, state: LoginState) -> None:
        self.state = state
        self.history.append(state)

    async def run(self) -> LoginState:
        try:
            await self._submit_email()
            await self._submit_password()
            await self._handle_mfa()
        except Exception as e:
            self.failure_reason = str(e) or type(e).__name__
            self._enter(LoginState.FAILED)
            logger.error("Login failed in state=%s: %s", self.history[-2].value, self.failure_reason)
            await self.page.save_debug("login_failure")
            raise

        self._enter(LoginState.AUTHENTICATED)
        await self.page.step("login_complete")
        return self.state

    async def _submit_email(self) -> None:
        s = self.selectors
        await self.page.goto(self.sign_in_url)
        await self.page.pause(self.settle_delay_ms)
        await self.page.step("sign_in_page")

        await self.page.type(s.email_input, self.creds.email)
        await self.page.click(s.submit_button)
        self._enter(LoginState.EMAIL_SUBMITTED)

    async def _submit_password(self) -> None:
        s = self.selectors
        await self.page.wait_for(s.password_input, timeout_ms=self.element_timeout_ms)
        await self.page.step("password_form")

        await self.page.type(s.password_input, self.creds.password)
        await self.page.click(s.submit_button)
        self._enter(LoginState.PASSWORD_SUBMITTED)

    async def _handle_mfa(self) -> None:
        await self.page.pause(self.settle_delay_ms)
        self.challenge = await detect_mfa_challenge(
            self.page,
            self.selectors,
            totp_configured=bool(self.creds.totp_secret),
        )
        logger.info("MFA challenge: %s", self.challenge.value)

        if self.challenge is MfaChallenge.TOTP_REQUIRED:
            self._enter(LoginState.AWAITING_TOTP)
            await self._submit_totp()
        elif self.challenge is MfaChallenge.EMAIL_OTP_REQUIRED:
            self._enter(LoginState.AWAITING_EMAIL_OTP)
            await self._submit_email_otp()

    async def _submit_totp(self) -> None:
        code = generate_totp(self.creds.totp_secret or "")
        logger.info("Submitting TOTP code=%s", mask_code(code))
        await self._submit_code(self.selectors.totp_input, code)

    async def _submit_email_otp(self) -> None:
        mailbox = self.mailbox.require_complete()
        logger.info("Waiting for OTP from email...")
        code = await self.otp_provider(mailbox)
        logger.info("Submitting email OTP code=%s", mask_code(code))
        await self._submit_code(self.selectors.email_otp_input, code)

    async def _submit_code(self, selector: str, code: str) -> None:
        try:
            await self.page.type(selector, code)
            await self.page.click(self.selectors.submit_button)
        except MoneyForwardError as e:
            raise AuthenticationError(f"Failed to submit MFA code: {e}") from e
