"""Credential vault for provider OAuth tokens at rest (Fernet)."""

from __future__ import annotations

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from mailbridge.core.config import Settings, get_settings
from mailbridge.domain.exceptions import CryptoError

DECRYPTION_ERROR_MSG = "Failed to decrypt token - invalid or tampered ciphertext"


class CredentialVault:
    """Encrypt/decrypt OAuth tokens with authenticated symmetric encryption.

    The key setting is a comma-separated list of Fernet keys. The first key
    encrypts; every key is tried on decrypt so keys can be rotated without
    re-encrypting stored tokens first.
    """

    def __init__(self, key: str) -> None:
        keys = [part.strip() for part in (key or "").split(",") if part.strip()]
        if not keys:
            raise CryptoError("Token encryption key is not configured")
        try:
            fernets = [Fernet(k.encode()) for k in keys]
        except (ValueError, TypeError) as e:
            raise CryptoError("Token encryption key is malformed") from e
        self._fernet = MultiFernet(fernets)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> CredentialVault:
        settings = settings or get_settings()
        return cls(settings.email_token_encryption_key.get_secret_value())

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a token to a string safe for storage."""
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored token.

        Raises:
            CryptoError: If the ciphertext is malformed, tampered, or was
                written under a key that is no longer configured.
        """
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise CryptoError(DECRYPTION_ERROR_MSG) from e

    def decrypt_optional(self, ciphertext: str | None) -> str | None:
        """Decrypt, passing None through ("no token stored" is not an integrity failure)."""
        if ciphertext is None:
            return None
        return self.decrypt(ciphertext)
