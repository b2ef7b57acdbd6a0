from __future__ import annotations

import asyncio

import pytest

from fakes import FakeSession, navigation_timeout, otp_provider
from moneyforward_sync.config import MailboxConfig
from moneyforward_sync.errors import (
    AuthenticationError,
    ConfigurationError,
    NavigationError,
    OtpNotFoundError,
)
from moneyforward_sync.models import Credentials
from moneyforward_sync.portal import login as login_mod
from moneyforward_sync.portal.login import LoginState, LoginStateMachine, MfaChallenge, classify_mfa
from moneyforward_sync.portal.selectors import SiteSelectors


S = SiteSelectors()
SIGN_IN = "https://id.example.test/sign_in"
MAILBOX = MailboxConfig(host="imap.example.test", user="me", password="pw", sender="no-reply@example.test")


def _machine(session: FakeSession, *, totp_secret=None, mailbox=MAILBOX, provider=None) -> LoginStateMachine:
    return LoginStateMachine(
        session,
        creds=Credentials(email="me@example.test", password="hunter2", totp_secret=totp_secret),
        sign_in_url=SIGN_IN,
        mailbox=mailbox,
        otp_provider=provider or otp_provider(),
        settle_delay_ms=0,
        element_timeout_ms=5_000,
    )


@pytest.mark.parametrize(
    ("totp_input", "email_input", "configured", "expected"),
    [
        (False, False, False, MfaChallenge.NO_MFA),
        (False, False, True, MfaChallenge.NO_MFA),
        (True, False, True, MfaChallenge.TOTP_REQUIRED),
        (True, True, True, MfaChallenge.TOTP_REQUIRED),
        (True, False, False, MfaChallenge.NO_MFA),
        (True, True, False, MfaChallenge.EMAIL_OTP_REQUIRED),
        (False, True, True, MfaChallenge.EMAIL_OTP_REQUIRED),
        (False, True, False, MfaChallenge.EMAIL_OTP_REQUIRED),
    ],
)
def test_classify_mfa(totp_input: bool, email_input: bool, configured: bool, expected: MfaChallenge) -> None:
    assert (
        classify_mfa(has_totp_input=totp_input, has_email_otp_input=email_input, totp_configured=configured)
        is expected
    )


def test_no_mfa_goes_straight_to_authenticated() -> None:
    session = FakeSession()
    provider = otp_provider()
    machine = _machine(session, provider=provider)

    assert asyncio.run(machine.run()) is LoginState.AUTHENTICATED
    assert machine.history == [
        LoginState.START,
        LoginState.EMAIL_SUBMITTED,
        LoginState.PASSWORD_SUBMITTED,
        LoginState.AUTHENTICATED,
    ]
    assert machine.challenge is MfaChallenge.NO_MFA
    assert session.calls[0] == ("goto", SIGN_IN, None)
    assert session.typed(S.email_input) == ["me@example.test"]
    assert session.typed(S.password_input) == ["hunter2"]
    assert session.typed(S.totp_input) == []
    assert session.typed(S.email_otp_input) == []
    assert provider.seen == []


def test_password_wait_is_bounded() -> None:
    session = FakeSession()
    asyncio.run(_machine(session).run())
    assert ("wait_for", S.password_input, 5_000) in session.calls


def test_totp_branch(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(login_mod, "generate_totp", lambda secret: "654321")
    session = FakeSession(present={S.totp_input})
    provider = otp_provider()
    machine = _machine(session, totp_secret="JBSWY3DPEHPK3PXP", provider=provider)

    asyncio.run(machine.run())

    assert LoginState.AWAITING_TOTP in machine.history
    assert LoginState.AWAITING_EMAIL_OTP not in machine.history
    assert machine.state is LoginState.AUTHENTICATED
    assert session.typed(S.totp_input) == ["654321"]
    assert provider.seen == []


def test_totp_wins_when_both_inputs_present(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(login_mod, "generate_totp", lambda secret: "654321")
    session = FakeSession(present={S.totp_input, S.email_otp_input})
    provider = otp_provider()
    machine = _machine(session, totp_secret="JBSWY3DPEHPK3PXP", provider=provider)

    asyncio.run(machine.run())

    assert machine.history.count(LoginState.AWAITING_TOTP) == 1
    assert LoginState.AWAITING_EMAIL_OTP not in machine.history
    assert session.typed(S.email_otp_input) == []
    assert provider.seen == []


def test_real_totp_code_is_six_digits() -> None:
    session = FakeSession(present={S.totp_input})
    asyncio.run(_machine(session, totp_secret="JBSWY3DPEHPK3PXP").run())
    (code,) = session.typed(S.totp_input)
    assert len(code) == 6 and code.isdigit()


def test_email_otp_branch() -> None:
    session = FakeSession(present={S.email_otp_input})
    provider = otp_provider("112233")
    machine = _machine(session, provider=provider)

    asyncio.run(machine.run())

    assert LoginState.AWAITING_EMAIL_OTP in machine.history
    assert LoginState.AWAITING_TOTP not in machine.history
    assert session.typed(S.email_otp_input) == ["112233"]
    assert provider.seen == [MAILBOX]
    # submit clicked for email, password and the OTP
    assert session.clicked() == [S.submit_button] * 3


def test_totp_input_without_secret_falls_back_to_email_otp() -> None:
    session = FakeSession(present={S.totp_input, S.email_otp_input})
    machine = _machine(session, totp_secret=None)

    asyncio.run(machine.run())

    assert machine.challenge is MfaChallenge.EMAIL_OTP_REQUIRED
    assert session.typed(S.totp_input) == []


def test_email_otp_with_incomplete_mailbox_fails_fast() -> None:
    session = FakeSession(present={S.email_otp_input})
    provider = otp_provider()
    machine = _machine(session, mailbox=MailboxConfig(host="imap.example.test"), provider=provider)

    with pytest.raises(ConfigurationError) as ei:
        asyncio.run(machine.run())

    assert "mailbox.sender" in str(ei.value)
    assert machine.state is LoginState.FAILED
    assert provider.seen == []


def test_email_otp_failure_marks_failed_and_propagates() -> None:
    session = FakeSession(present={S.email_otp_input})
    machine = _machine(session, provider=otp_provider(error=OtpNotFoundError("OTP mail not found")))

    with pytest.raises(OtpNotFoundError):
        asyncio.run(machine.run())

    assert machine.history[-2:] == [LoginState.AWAITING_EMAIL_OTP, LoginState.FAILED]
    assert machine.failure_reason == "OTP mail not found"
    assert session.debug_saved == ["login_failure"]


def test_totp_generation_error_is_authentication_error() -> None:
    session = FakeSession(present={S.totp_input})
    machine = _machine(session, totp_secret="not base32 !!!")

    with pytest.raises(AuthenticationError):
        asyncio.run(machine.run())

    assert machine.history[-2:] == [LoginState.AWAITING_TOTP, LoginState.FAILED]


def test_code_submit_failure_is_authentication_error() -> None:
    session = FakeSession(
        present={S.email_otp_input},
        fail_on={f"type:{S.email_otp_input}": NavigationError("input detached")},
    )
    with pytest.raises(AuthenticationError):
        asyncio.run(_machine(session).run())


def test_missing_password_field_is_navigation_error() -> None:
    session = FakeSession(fail_on={f"wait_for:{S.password_input}": navigation_timeout(S.password_input)})
    machine = _machine(session)

    with pytest.raises(NavigationError):
        asyncio.run(machine.run())

    assert machine.history == [LoginState.START, LoginState.EMAIL_SUBMITTED, LoginState.FAILED]
    assert session.typed(S.password_input) == []
