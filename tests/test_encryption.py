"""
Unit tests for API key encryption helpers.
"""
import pytest

from dashboard.utils.encryption import decrypt_value, encrypt_value, mask_api_key
from shared.errors import DecryptionError


class TestEncryptValue:
    """Tests for encrypt_value / decrypt_value."""

    def test_round_trip(self):
        """Decrypting an encrypted value returns the plaintext."""
        assert decrypt_value(encrypt_value("sk_live_123456")) == "sk_live_123456"

    def test_ciphertext_hides_plaintext(self):
        ciphertext = encrypt_value("sk_live_123456")
        assert "sk_live_123456" not in ciphertext

    def test_ciphertext_is_randomized(self):
        """Fernet tokens embed a random IV, so equal inputs differ."""
        assert encrypt_value("same") != encrypt_value("same")

    def test_malformed_ciphertext_raises(self):
        with pytest.raises(DecryptionError):
            decrypt_value("not-a-valid-token")

    def test_tampered_ciphertext_raises(self):
        ciphertext = encrypt_value("sk_live_123456")
        tampered = ciphertext[:-6] + ("A" if ciphertext[-6] != "A" else "B") + ciphertext[-5:]
        with pytest.raises(DecryptionError):
            decrypt_value(tampered)


class TestMaskApiKey:
    """Tests for mask_api_key."""

    def test_keeps_first_and_last_four(self):
        assert mask_api_key("abcd1234efgh") == "abcd****efgh"

    def test_short_key_fully_hidden(self):
        assert mask_api_key("abc") == "***"

    def test_empty_key(self):
        assert mask_api_key("") == ""
