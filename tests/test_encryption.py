"""
Tests for the token vault.

Covers the stored layout, non-determinism, tamper detection and key
configuration errors.
"""
import base64

import pytest

from gymledger.accounting.encryption import (
    ENCRYPTED_POSITION,
    TokenVault,
    generate_master_key,
    is_encryption_configured,
    verify_encryption,
)
from gymledger.accounting.errors import ConfigurationError, InvalidInput, TamperedOrCorrupt
from gymledger.config import settings


class TestTokenVault:
    """Encrypt / decrypt behaviour."""

    def test_decrypts_what_it_encrypts(self, vault):
        token = "eyJhbGciOiJSUzI1NiJ9.access-token-payload"
        assert vault.decrypt(vault.encrypt(token)) == token

    def test_unicode_tokens_survive(self, vault):
        assert vault.decrypt(vault.encrypt("tøken-✓")) == "tøken-✓"

    def test_same_plaintext_encrypts_differently(self, vault):
        first = vault.encrypt("refresh-token")
        second = vault.encrypt("refresh-token")
        assert first != second

    def test_layout_is_salt_iv_tag_ciphertext(self, vault):
        blob = base64.b64decode(vault.encrypt("abc"))
        # 64 salt + 16 iv + 16 tag + 3 bytes of ciphertext
        assert len(blob) == ENCRYPTED_POSITION + 3

    def test_flipped_byte_is_rejected_at_every_position(self, vault):
        raw = base64.b64decode(vault.encrypt("access-token"))

        for position in range(len(raw)):
            tampered = bytearray(raw)
            tampered[position] ^= 0x01
            with pytest.raises(TamperedOrCorrupt):
                vault.decrypt(base64.b64encode(bytes(tampered)).decode())

    def test_wrong_key_is_rejected(self, vault):
        blob = vault.encrypt("access-token")
        other = TokenVault("cd" * 32)
        with pytest.raises(TamperedOrCorrupt):
            other.decrypt(blob)

    def test_truncated_blob_is_rejected(self, vault):
        short = base64.b64encode(b"x" * 40).decode()
        with pytest.raises(TamperedOrCorrupt, match="Invalid encrypted token format"):
            vault.decrypt(short)

    def test_non_base64_is_rejected(self, vault):
        with pytest.raises(TamperedOrCorrupt):
            vault.decrypt("not base64 at all!!")

    def test_empty_input(self, vault):
        with pytest.raises(InvalidInput):
            vault.encrypt("")
        with pytest.raises(InvalidInput):
            vault.decrypt("")


class TestMasterKey:
    """Master key validation."""

    @pytest.mark.parametrize("key", ["", "abc", "zz" * 32, "ab" * 31, "ab" * 31 + "  ", "ab" * 30 + " ab "])
    def test_malformed_key_is_a_configuration_error(self, key):
        with pytest.raises(ConfigurationError):
            TokenVault(key).encrypt("token")

    def test_key_read_from_settings(self, monkeypatch):
        monkeypatch.setattr(settings, "ACCOUNTING_ENCRYPTION_KEY", "ef" * 32)
        blob = TokenVault().encrypt("token")
        assert TokenVault("ef" * 32).decrypt(blob) == "token"

    def test_missing_key_in_settings(self, monkeypatch):
        monkeypatch.setattr(settings, "ACCOUNTING_ENCRYPTION_KEY", "")
        with pytest.raises(ConfigurationError):
            TokenVault().encrypt("token")
        assert is_encryption_configured() is False

    def test_generated_key_is_usable(self):
        key = generate_master_key()
        assert len(key) == 64
        assert verify_encryption(TokenVault(key)) is True
