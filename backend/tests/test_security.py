"""
Tests for core.security helpers – password hashing and AES-256-GCM
secret encryption.
"""
import base64

import pytest

from core.security import (
    decrypt_value,
    encrypt_value,
    hash_password,
    verify_password,
)

KEY = base64.b64encode(b"m" * 32).decode()
OTHER_KEY = base64.b64encode(b"n" * 32).decode()


class TestPasswordHashing:

    def test_hash_then_verify(self):
        stored = hash_password("pw1234", rounds=1000)
        assert stored.startswith("$pbkdf2-sha256$")
        assert verify_password("pw1234", stored)

    def test_wrong_password(self):
        stored = hash_password("pw1234", rounds=1000)
        assert not verify_password("pw12345", stored)

    def test_salted(self):
        assert hash_password("pw1234", rounds=1000) != hash_password("pw1234", rounds=1000)

    def test_oversized_input_is_a_mismatch(self):
        stored = hash_password("pw1234", rounds=1000)
        assert verify_password("x" * 5000, stored) is False

    @pytest.mark.parametrize("stored", [None, ""])
    def test_oauth_only_account_never_verifies(self, stored):
        assert verify_password("anything", stored) is False


class TestSecretEncryption:

    def test_decrypts_with_same_key(self):
        ct, iv = encrypt_value("JBSWY3DPEHPK3PXP", KEY)
        assert "JBSWY3DPEHPK3PXP" not in ct
        assert decrypt_value(ct, iv, KEY) == "JBSWY3DPEHPK3PXP"

    def test_fresh_nonce_each_call(self):
        assert encrypt_value("same", KEY)[1] != encrypt_value("same", KEY)[1]

    def test_wrong_key_fails(self):
        ct, iv = encrypt_value("secret", KEY)
        with pytest.raises(ValueError, match="tampered"):
            decrypt_value(ct, iv, OTHER_KEY)

    def test_tampered_ciphertext_fails(self):
        ct, iv = encrypt_value("secret", KEY)
        raw = bytearray(base64.b64decode(ct))
        raw[0] ^= 0x01
        with pytest.raises(ValueError):
            decrypt_value(base64.b64encode(bytes(raw)).decode(), iv, KEY)

    def test_short_master_key_rejected(self):
        with pytest.raises(RuntimeError, match="32 bytes"):
            encrypt_value("secret", base64.b64encode(b"short").decode())
