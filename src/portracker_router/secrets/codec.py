"""AES-256-GCM codec for router passwords at rest.

Each call to :meth:`CredentialCodec.encrypt` uses a fresh 16-byte random IV
and returns hex-encoded ciphertext, IV and 16-byte authentication tag,
matching the ``encrypted_password`` / ``encryption_iv`` / ``encryption_tag``
columns of a stored router record.

The key comes from configuration (``encryption.key``). A 32-byte key is used
as-is; any other secret is stretched to 32 bytes with scrypt. Without a
configured key, a key is derived from this machine's host name and
architecture. That fallback only works on the machine that encrypted the
data and is logged as a warning.
"""

from __future__ import annotations

import logging
import os
import platform
import socket
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from portracker_router.errors import EncryptionError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16

_CONFIGURED_KEY_SALT = b"router-salt"
_MACHINE_KEY_SALT = b"portracker-router-key"


@dataclass(frozen=True)
class EncryptedSecret:
    """Hex-encoded ciphertext, IV and tag produced by one encryption."""

    ciphertext: str
    iv: str
    tag: str


def _scrypt(secret: bytes, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=2**14, r=8, p=1)
    return kdf.derive(secret)


def derive_key(configured_key: str | None) -> bytes:
    """Return the 32-byte AES key for *configured_key*.

    Falls back to a machine-derived key when no key is configured.
    """
    if configured_key:
        raw = configured_key.encode("utf-8")
        if len(raw) == KEY_LENGTH:
            return raw
        return _scrypt(raw, _CONFIGURED_KEY_SALT)

    logger.warning(
        "No encryption key configured; deriving one from host name and architecture. "
        "Passwords encrypted with this key cannot be decrypted on another machine. "
        "Set PORTRACKER_ENCRYPTION__KEY for production."
    )
    machine_id = socket.gethostname() + platform.machine()
    return _scrypt(machine_id.encode("utf-8"), _MACHINE_KEY_SALT)


class CredentialCodec:
    """Encrypts and decrypts router passwords.

    Parameters
    ----------
    key:
        Configured secret. ``None`` selects the machine-derived fallback.
    """

    def __init__(self, key: str | None = None) -> None:
        self._aesgcm = AESGCM(derive_key(key))

    def __repr__(self) -> str:
        return "CredentialCodec(<key hidden>)"

    def encrypt(self, plaintext: str) -> EncryptedSecret:
        if not plaintext:
            raise EncryptionError("Cannot encrypt empty string")

        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return EncryptedSecret(ciphertext=ciphertext.hex(), iv=iv.hex(), tag=tag.hex())

    def decrypt(self, ciphertext: str, iv: str, tag: str) -> str:
        if not ciphertext or not iv or not tag:
            raise EncryptionError("Missing encryption parameters")

        try:
            raw_ciphertext = bytes.fromhex(ciphertext)
            raw_iv = bytes.fromhex(iv)
            raw_tag = bytes.fromhex(tag)
        except ValueError as exc:
            raise EncryptionError("Encryption parameters are not valid hex") from exc

        if len(raw_iv) != IV_LENGTH or len(raw_tag) != TAG_LENGTH:
            raise EncryptionError("Encryption parameters have the wrong length")

        try:
            plaintext = self._aesgcm.decrypt(raw_iv, raw_ciphertext + raw_tag, None)
        except InvalidTag as exc:
            logger.error("Decryption failed: authentication tag mismatch")
            raise EncryptionError("Failed to decrypt data") from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EncryptionError("Decrypted data is not valid UTF-8") from exc

    # -- storage helpers -------------------------------------------------

    def encrypt_password(self, password: str) -> dict[str, str]:
        """Encrypt *password* into the stored router record fields."""
        secret = self.encrypt(password)
        return {
            "encrypted_password": secret.ciphertext,
            "encryption_iv": secret.iv,
            "encryption_tag": secret.tag,
        }

    def decrypt_password(self, record: object) -> str:
        """Decrypt the password of a stored router record.

        *record* is anything with ``encrypted_password``, ``encryption_iv``
        and ``encryption_tag`` attributes (e.g. a :class:`RouterConfig`).
        """
        return self.decrypt(
            getattr(record, "encrypted_password", None) or "",
            getattr(record, "encryption_iv", None) or "",
            getattr(record, "encryption_tag", None) or "",
        )
