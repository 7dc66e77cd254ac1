"""Tests for the AES-256-GCM credential codec."""

from __future__ import annotations

import logging

import pytest

from portracker_router.errors import EncryptionError
from portracker_router.models import RouterConfig
from portracker_router.secrets.codec import (
    IV_LENGTH,
    KEY_LENGTH,
    TAG_LENGTH,
    CredentialCodec,
    EncryptedSecret,
    derive_key,
)

from tests.conftest import TEST_KEY


def _flip_hex(value: str, index: int = 0) -> str:
    """Flip one bit of the byte at *index* of a hex string."""
    raw = bytearray(bytes.fromhex(value))
    raw[index] ^= 0x01
    return raw.hex()


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------


class TestDeriveKey:
    def test_32_byte_key_used_verbatim(self) -> None:
        assert derive_key(TEST_KEY) == TEST_KEY.encode("utf-8")

    def test_short_key_is_stretched(self) -> None:
        key = derive_key("short-secret")
        assert len(key) == KEY_LENGTH
        assert key != b"short-secret"

    def test_stretching_is_deterministic(self) -> None:
        assert derive_key("short-secret") == derive_key("short-secret")

    def test_machine_fallback_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="portracker_router.secrets.codec"):
            key = derive_key(None)
        assert len(key) == KEY_LENGTH
        assert "No encryption key configured" in caplog.text

    def test_machine_fallback_is_stable(self) -> None:
        assert derive_key(None) == derive_key("")


# ---------------------------------------------------------------------------
# Encrypt / decrypt
# ---------------------------------------------------------------------------


class TestCredentialCodec:
    @pytest.mark.parametrize("password", ["hunter2", "p@ss w0rd!", "pässwörd-ünïcode", "x" * 500])
    def test_round_trip(self, codec: CredentialCodec, password: str) -> None:
        secret = codec.encrypt(password)
        assert codec.decrypt(secret.ciphertext, secret.iv, secret.tag) == password

    def test_output_shape(self, codec: CredentialCodec) -> None:
        secret = codec.encrypt("hunter2")
        assert isinstance(secret, EncryptedSecret)
        assert len(bytes.fromhex(secret.iv)) == IV_LENGTH
        assert len(bytes.fromhex(secret.tag)) == TAG_LENGTH
        assert len(bytes.fromhex(secret.ciphertext)) == len("hunter2")

    def test_fresh_iv_per_call(self, codec: CredentialCodec) -> None:
        first = codec.encrypt("hunter2")
        second = codec.encrypt("hunter2")
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_empty_plaintext_rejected(self, codec: CredentialCodec) -> None:
        with pytest.raises(EncryptionError):
            codec.encrypt("")

    @pytest.mark.parametrize("part", ["ciphertext", "iv", "tag"])
    def test_tampering_detected(self, codec: CredentialCodec, part: str) -> None:
        secret = codec.encrypt("hunter2")
        fields = {"ciphertext": secret.ciphertext, "iv": secret.iv, "tag": secret.tag}
        fields[part] = _flip_hex(fields[part])
        with pytest.raises(EncryptionError):
            codec.decrypt(**fields)

    def test_tampering_last_byte_detected(self, codec: CredentialCodec) -> None:
        secret = codec.encrypt("hunter2")
        with pytest.raises(EncryptionError):
            codec.decrypt(secret.ciphertext, secret.iv, _flip_hex(secret.tag, TAG_LENGTH - 1))

    def test_wrong_key_rejected(self, codec: CredentialCodec) -> None:
        secret = codec.encrypt("hunter2")
        other = CredentialCodec("another-key-that-is-not-the-same")
        with pytest.raises(EncryptionError):
            other.decrypt(secret.ciphertext, secret.iv, secret.tag)

    @pytest.mark.parametrize(
        "ciphertext, iv, tag",
        [
            ("", "00" * IV_LENGTH, "00" * TAG_LENGTH),
            ("abcd", "", "00" * TAG_LENGTH),
            ("abcd", "00" * IV_LENGTH, ""),
            ("not-hex", "00" * IV_LENGTH, "00" * TAG_LENGTH),
            ("abcd", "00" * 4, "00" * TAG_LENGTH),
            ("abcd", "00" * IV_LENGTH, "00" * 4),
        ],
    )
    def test_malformed_parameters(
        self, codec: CredentialCodec, ciphertext: str, iv: str, tag: str,
    ) -> None:
        with pytest.raises(EncryptionError):
            codec.decrypt(ciphertext, iv, tag)

    def test_repr_hides_key(self, codec: CredentialCodec) -> None:
        assert TEST_KEY not in repr(codec)


# ---------------------------------------------------------------------------
# Storage helpers
# ---------------------------------------------------------------------------


class TestPasswordRecords:
    def test_encrypt_password_fields(self, codec: CredentialCodec) -> None:
        fields = codec.encrypt_password("hunter2")
        assert set(fields) == {"encrypted_password", "encryption_iv", "encryption_tag"}

    def test_decrypt_router_record(self, codec: CredentialCodec) -> None:
        record = RouterConfig(
            name="home", host="192.168.1.1", username="root",
            **codec.encrypt_password("hunter2"),
        )
        assert codec.decrypt_password(record) == "hunter2"

    def test_record_without_password(self, codec: CredentialCodec) -> None:
        record = RouterConfig(name="home", host="192.168.1.1", username="root")
        with pytest.raises(EncryptionError):
            codec.decrypt_password(record)
