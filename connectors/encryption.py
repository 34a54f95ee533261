"""
Credential encryption — encrypt / decrypt provider secrets at rest.

Uses AES-256-CBC with PKCS7 padding from the ``cryptography`` library.
Stored values have the form ``<iv hex>:<ciphertext hex>`` with a fresh
16-byte IV per call.

The key comes from ``config.encryption_key`` (env var: ``ENCRYPTION_KEY``).
Generate one with::

    openssl rand -hex 32

A key that is not 64 hex characters is accepted for compatibility with
older deployments: its first 32 raw bytes are used, or its SHA-256 digest
when it is shorter than that.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import re
from typing import Any, Dict, Iterable, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from config.settings import Settings
from connectors.errors import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

_IV_LENGTH = 16
_KEY_LENGTH = 32
_ENCRYPTED_RE = re.compile(r"^[0-9a-fA-F]{32}:(?:[0-9a-fA-F]{32})+$")

# Settings fields that are never stored in plaintext.
SENSITIVE_FIELDS = (
    "monday_api_key",
    "redmine_api_key",
    "google_client_secret",
    "spotify_client_secret",
    "google_refresh_token",
    "spotify_refresh_token",
)


def derive_key(secret: str) -> bytes:
    """Turn the configured secret into a 32-byte AES key."""
    if len(secret) == _KEY_LENGTH * 2:
        try:
            return bytes.fromhex(secret)
        except ValueError:
            pass
    raw = secret.encode("utf-8")
    if len(raw) >= _KEY_LENGTH:
        return raw[:_KEY_LENGTH]
    return hashlib.sha256(raw).digest()


class CredentialCipher:
    """Symmetric cipher for secret strings stored in the settings record."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ConfigurationError("Encryption key must not be empty")
        self._key = derive_key(secret)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialCipher":
        """
        Build the cipher from configuration, refusing to start without a key
        outside development.
        """
        if settings.encryption_key:
            return cls(settings.encryption_key)

        if not settings.is_development:
            raise ConfigurationError(
                "ENCRYPTION_KEY is not set. Generate one with: openssl rand -hex 32"
            )

        logger.warning(
            "ENCRYPTION_KEY not set — using an ephemeral key. "
            "Secrets saved in this run will be unreadable after restart."
        )
        return cls(os.urandom(_KEY_LENGTH).hex())

    def derive_secret(self, purpose: str) -> str:
        """Hex HMAC of ``purpose`` under the key, for signing unrelated data."""
        return hmac.new(self._key, purpose.encode("utf-8"), hashlib.sha256).hexdigest()

    # ── Single values ───────────────────────────────────────────────────

    def encrypt(self, plaintext: str) -> str:
        """Encrypt ``plaintext``; empty input stays empty."""
        if not plaintext:
            return ""

        iv = os.urandom(_IV_LENGTH)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{ciphertext.hex()}"

    def _decrypt(self, stored: str) -> str:
        iv_hex, sep, data_hex = stored.partition(":")
        if not sep or not data_hex:
            raise DecryptionError("value is not in iv:ciphertext form")
        try:
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(data_hex)
        except ValueError as exc:
            raise DecryptionError("value is not hex encoded") from exc
        if len(iv) != _IV_LENGTH or not ciphertext or len(ciphertext) % _IV_LENGTH:
            raise DecryptionError("bad iv or ciphertext length")

        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        try:
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plain = unpadder.update(padded) + unpadder.finalize()
            return plain.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            raise DecryptionError("wrong key or corrupted value") from exc

    def try_decrypt(self, stored: Optional[str]) -> Optional[str]:
        """
        Decrypt ``stored`` or return ``None`` when it cannot be decrypted.

        Empty input decrypts to ``""``.
        """
        if not stored:
            return ""
        try:
            return self._decrypt(stored)
        except DecryptionError as exc:
            logger.debug("Decryption failed: %s", exc)
            return None

    def decrypt(self, stored: Optional[str]) -> str:
        """
        Decrypt ``stored``, failing closed.

        A malformed or foreign-key value logs a warning and yields ``""``.
        """
        value = self.try_decrypt(stored)
        if value is None:
            logger.warning("Stored secret could not be decrypted; treating it as absent")
            return ""
        return value

    def looks_encrypted(self, stored: Optional[str]) -> bool:
        """True if ``stored`` has the ``iv:ciphertext`` shape written by :meth:`encrypt`."""
        return bool(stored) and _ENCRYPTED_RE.match(stored) is not None

    def reveal(self, stored: Optional[str]) -> str:
        """
        Decrypt ``stored``, falling back to the raw value.

        For secrets that may have been written directly to configuration
        without going through :meth:`encrypt`. A value that has the
        encrypted shape but does not decrypt (foreign key, corruption)
        still fails closed.
        """
        value = self.try_decrypt(stored)
        if value is not None:
            return value
        if self.looks_encrypted(stored):
            logger.warning("Stored secret could not be decrypted; treating it as absent")
            return ""
        logger.info("Stored secret is not encrypted; using it as plaintext")
        return stored or ""

    # ── Batch helpers ───────────────────────────────────────────────────

    def encrypt_fields(
        self,
        data: Dict[str, Any],
        fields: Iterable[str] = SENSITIVE_FIELDS,
    ) -> Dict[str, Any]:
        """Return a copy of ``data`` with the non-empty string ``fields`` encrypted."""
        result = dict(data)
        for field in fields:
            value = result.get(field)
            if value and isinstance(value, str):
                result[field] = self.encrypt(value)
        return result

    def decrypt_fields(
        self,
        data: Dict[str, Any],
        fields: Iterable[str] = SENSITIVE_FIELDS,
    ) -> Dict[str, Any]:
        """Return a copy of ``data`` with the string ``fields`` decrypted (plaintext fallback)."""
        result = dict(data)
        for field in fields:
            value = result.get(field)
            if value and isinstance(value, str):
                result[field] = self.reveal(value)
        return result
