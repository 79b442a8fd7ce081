"""Tests for the credential vault."""

import pytest

from evidence_sync.core.errors import ConfigurationError
from evidence_sync.utils.crypto import (
    MASK,
    CredentialVault,
    is_sensitive_key,
    looks_encrypted,
    mask_value,
    merge_config,
)


class TestCredentialVault:
    """Test envelope encryption of single values."""

    def test_round_trip(self, vault):
        sealed = vault.encrypt("ghp_supersecret")
        assert sealed != "ghp_supersecret"
        assert looks_encrypted(sealed)
        assert vault.decrypt(sealed) == "ghp_supersecret"

    def test_envelope_format(self, vault):
        iv_hex, tag_hex, cipher_hex = vault.encrypt("abc").split(":")
        assert len(bytes.fromhex(iv_hex)) == 16
        assert len(bytes.fromhex(tag_hex)) == 16
        assert len(bytes.fromhex(cipher_hex)) == 3

    def test_same_plaintext_encrypts_differently(self, vault):
        assert vault.encrypt("same") != vault.encrypt("same")

    def test_unicode_round_trip(self, vault):
        assert vault.decrypt(vault.encrypt("pässwörd ✓")) == "pässwörd ✓"

    def test_empty_value_is_not_encrypted(self, vault):
        assert vault.encrypt("") == ""

    def test_legacy_plaintext_passes_through(self, vault):
        assert vault.decrypt("plain-legacy-token") == "plain-legacy-token"
        assert vault.decrypt("https://example.com") == "https://example.com"

    def test_tampered_ciphertext_is_returned_unchanged(self, vault):
        iv_hex, tag_hex, cipher_hex = vault.encrypt("secret").split(":")
        flipped = "0" if cipher_hex[0] != "0" else "1"
        tampered = f"{iv_hex}:{tag_hex}:{flipped}{cipher_hex[1:]}"
        assert vault.decrypt(tampered) == tampered

    def test_other_vault_cannot_read(self, vault):
        other = CredentialVault("another-master-secret-of-sufficient-size", salt="test-salt")
        sealed = vault.encrypt("secret")
        assert other.decrypt(sealed) == sealed

    def test_missing_secret_is_fatal(self):
        with pytest.raises(ConfigurationError):
            CredentialVault(None)
        with pytest.raises(ConfigurationError):
            CredentialVault("")

    def test_short_secret_is_fatal(self):
        with pytest.raises(ConfigurationError, match="at least 32"):
            CredentialVault("too-short")
        with pytest.raises(ConfigurationError):
            CredentialVault("x" * 31)

    def test_minimum_length_secret_is_accepted(self):
        vault = CredentialVault("x" * 32)
        assert vault.decrypt(vault.encrypt("ok")) == "ok"


class TestConfigWalk:
    """Test field-level processing of nested config maps."""

    def test_only_sensitive_keys_are_encrypted(self, vault):
        config = {
            "keyName": "X-API-Key",
            "keyValue": "k-123456",
            "location": "header",
            "tokenUrl": "https://auth.example.com/token",
            "clientSecret": "cs-987",
            "nested": {"password": "hunter22", "username": "svc"},
        }
        sealed = vault.encrypt_config(config)

        assert sealed["keyName"] == "X-API-Key"
        assert sealed["location"] == "header"
        assert sealed["tokenUrl"] == "https://auth.example.com/token"
        assert sealed["nested"]["username"] == "svc"
        assert looks_encrypted(sealed["keyValue"])
        assert looks_encrypted(sealed["clientSecret"])
        assert looks_encrypted(sealed["nested"]["password"])

        assert vault.decrypt_config(sealed) == config

    def test_non_string_values(self, vault):
        config = {"apiKey": None, "tokenEnabled": True, "secrets": ["a-1", "b-2"], "port": 443}
        sealed = vault.encrypt_config(config)
        assert sealed["apiKey"] is None
        assert sealed["tokenEnabled"] is True
        assert sealed["port"] == 443
        assert all(looks_encrypted(item) for item in sealed["secrets"])

    def test_numeric_secrets_are_encrypted(self, vault):
        sealed = vault.encrypt_config({"apiKey": 987654321, "password": 123456, "token": 12.5})

        assert all(looks_encrypted(value) for value in sealed.values())
        assert vault.decrypt_config(sealed) == {"apiKey": "987654321", "password": "123456", "token": "12.5"}
        assert CredentialVault.mask_config({"password": 123456}) == {"password": MASK + "3456"}

    def test_none_config(self, vault):
        assert vault.encrypt_config(None) is None
        assert vault.decrypt_config(None) is None
        assert vault.mask_config(None) is None

    def test_sensitive_key_detection(self):
        assert is_sensitive_key("apiKey")
        assert is_sensitive_key("client_secret")
        assert is_sensitive_key("accessToken")
        assert not is_sensitive_key("keyName")
        assert not is_sensitive_key("tokenUrl")
        assert not is_sensitive_key("orgUrl")
        assert not is_sensitive_key("username")


class TestMasking:
    """Test display redaction."""

    def test_keeps_last_four(self):
        assert mask_value("abcdefgh1234") == MASK + "1234"

    def test_short_values_fully_masked(self):
        assert mask_value("abcd") == MASK

    def test_ciphertext_fully_masked(self, vault):
        assert mask_value(vault.encrypt("abcdefgh1234")) == MASK

    def test_idempotent(self):
        once = mask_value("abcdefgh1234")
        assert mask_value(once) == once

    def test_mask_config(self):
        masked = CredentialVault.mask_config({"token": "tok-abcdef", "username": "svc"})
        assert masked == {"token": MASK + "cdef", "username": "svc"}


class TestMergeConfig:
    """Test overlaying edits onto stored configs."""

    def test_masked_value_keeps_stored_secret(self):
        stored = {"token": "real-token-value", "orgUrl": "https://a.okta.com"}
        update = {"token": MASK + "alue", "orgUrl": "https://b.okta.com"}
        assert merge_config(stored, update) == {
            "token": "real-token-value",
            "orgUrl": "https://b.okta.com",
        }

    def test_new_secret_replaces_stored(self):
        assert merge_config({"token": "old"}, {"token": "new"}) == {"token": "new"}

    def test_nested_merge(self):
        stored = {"auth": {"password": "p", "username": "u"}}
        update = {"auth": {"password": MASK, "username": "v"}}
        assert merge_config(stored, update) == {"auth": {"password": "p", "username": "v"}}

    def test_empty_inputs(self):
        assert merge_config(None, None) == {}
        assert merge_config(None, {"a": 1}) == {"a": 1}
