"""Signed OAuth state values for the mailbox connect flow (CSRF protection)."""

import hashlib
import hmac

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from mailbridge.core.config import get_settings
from mailbridge.shared.utils.generators import generate_nonce

_OAUTH_STATE_KEY_INFO = b"mailbridge-oauth-state-v1"


class OAuthStateManager:
    """Signed OAuth state (tenant_id:nonce:signature).

    The same value is set in an HttpOnly cookie and sent to the provider;
    the callback requires both to match and the signature to verify.
    """

    def __init__(self, secret_key: str | None = None) -> None:
        if secret_key is None:
            secret_key = get_settings().secret_key.get_secret_value()
        self._signing_key = self._derive_signing_key(secret_key)

    @staticmethod
    def _derive_signing_key(secret_key: str) -> bytes:
        """Derive a purpose-specific HMAC key from the master secret."""
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=None,
            info=_OAUTH_STATE_KEY_INFO,
        )
        return hkdf.derive(secret_key.encode())

    def _sign(self, payload: str) -> str:
        return hmac.new(self._signing_key, payload.encode(), hashlib.sha256).hexdigest()

    def create_signed_state(self, tenant_id: str, nonce: str | None = None) -> str:
        """Return tenant_id:nonce:signature."""
        payload = f"{tenant_id}:{nonce or generate_nonce()}"
        return f"{payload}:{self._sign(payload)}"

    def verify_and_extract(self, signed_state: str) -> str:
        """Verify signature and return the tenant id.

        Splits on the last colon for the signature and the first colon for
        the tenant, so the nonce may contain colons.

        Raises:
            ValueError: Invalid format or signature.
        """
        parts = signed_state.rsplit(":", 1)
        if len(parts) != 2:
            raise ValueError("Invalid state format")
        payload, signature = parts
        tenant_id, sep, nonce = payload.partition(":")
        if not sep or not tenant_id or not nonce:
            raise ValueError("Invalid state format")
        if not hmac.compare_digest(self._sign(payload), signature):
            raise ValueError("Invalid state signature - possible CSRF attack")
        return tenant_id
