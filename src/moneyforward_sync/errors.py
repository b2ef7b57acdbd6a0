from __future__ import annotations


class MoneyForwardError(RuntimeError):
    """
    Base class for every failure raised by the login/scrape core.

    The message always carries a human-readable cause; callers translate it into whatever
    generic failure their surface exposes.
    """


class ConfigurationError(MoneyForwardError):
    """Missing or invalid credentials / mailbox settings."""


class NavigationError(MoneyForwardError):
    """A page did not reach the expected state (element missing, navigation failed, or timed out)."""


class AuthenticationError(MoneyForwardError):
    """MFA code generation or submission failed."""


class OtpError(MoneyForwardError):
    pass


class OtpNotFoundError(OtpError):
    """No qualifying OTP email, or no 6-digit code in its body."""


class OtpTimeoutError(OtpError):
    pass


class TransportError(OtpError):
    """IMAP connection / protocol failure."""
