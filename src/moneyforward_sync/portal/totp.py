from __future__ import annotations

import pyotp

from ..errors import AuthenticationError


def generate_totp(secret: str) -> str:
    """
    Current RFC 6238 code (30s step, 6 digits) for an authenticator-app secret.
    """
    cleaned = (secret or "").replace(" ", "").strip()
    if not cleaned:
        raise AuthenticationError("TOTP secret is empty.")
    try:
        return pyotp.TOTP(cleaned).now()
    except Exception as e:
        # pyotp raises binascii.Error / ValueError for non-base32 secrets
        raise AuthenticationError(f"Failed to generate TOTP code: {e}") from e
