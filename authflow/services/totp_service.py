"""TOTP second factor (RFC 6238) backed by pyotp."""

import pyotp

from authflow.config import Settings


class TotpService:
    """Generates secrets and checks authenticator codes."""

    # Accept the previous and next 30s step for clock drift
    VALID_WINDOW = 1

    def __init__(self, settings: Settings):
        self.issuer_name = settings.mfa_issuer_name

    def generate_secret(self) -> str:
        return pyotp.random_base32()

    def provisioning_uri(self, secret: str, email: str) -> str:
        """otpauth:// URI for enrolling ``secret`` in an authenticator app."""
        return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=self.issuer_name)

    def verify(self, secret: str, code: str) -> bool:
        return pyotp.TOTP(secret).verify(code, valid_window=self.VALID_WINDOW)
