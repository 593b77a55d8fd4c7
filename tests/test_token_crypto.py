import base64
import unittest

from shared.errors import CipherError
from utils.token_crypto import ENVELOPE_PREFIX, decrypt_token, derive_key, encrypt_token, is_sealed, seal_token

KEY = "0123456789abcdef0123456789abcdef"


class TokenCryptoTests(unittest.TestCase):
    def test_round_trip(self):
        for value in ("ya29.a0AfH6SMB", "", "ünïcødé ✓", "x" * 2048):
            self.assertEqual(decrypt_token(encrypt_token(value, KEY), KEY), value)

    def test_nonce_is_random(self):
        first = encrypt_token("same-token", KEY)
        second = encrypt_token("same-token", KEY)
        self.assertNotEqual(first, second)
        self.assertNotEqual(base64.b64decode(first)[:12], base64.b64decode(second)[:12])

    def test_layout_is_nonce_then_ciphertext_and_tag(self):
        blob = base64.b64decode(encrypt_token("abc", KEY))
        self.assertEqual(len(blob), 12 + 3 + 16)

    def test_key_uses_first_32_bytes(self):
        self.assertEqual(derive_key(KEY + "ignored"), KEY.encode("utf-8"))
        self.assertEqual(decrypt_token(encrypt_token("t", KEY + "tail"), KEY), "t")

    def test_bad_key_lengths_are_rejected(self):
        for key in ("", "short", "0123456789abcdef0"):
            with self.assertRaises(CipherError):
                derive_key(key)
        self.assertEqual(len(derive_key("0123456789abcdef")), 16)
        self.assertEqual(len(derive_key("0123456789abcdef01234567")), 24)

    def test_wrong_key_fails(self):
        ciphertext = encrypt_token("secret", KEY)
        with self.assertRaises(CipherError):
            decrypt_token(ciphertext, "fedcba9876543210fedcba9876543210")

    def test_tampered_ciphertext_fails(self):
        blob = bytearray(base64.b64decode(encrypt_token("secret", KEY)))
        blob[-1] ^= 0x01
        with self.assertRaises(CipherError):
            decrypt_token(base64.b64encode(bytes(blob)).decode(), KEY)

    def test_malformed_input_fails(self):
        with self.assertRaises(CipherError):
            decrypt_token("not-base64!", KEY)
        with self.assertRaises(CipherError):
            decrypt_token(base64.b64encode(b"short").decode(), KEY)

    def test_sealed_envelope(self):
        sealed = seal_token("refresh-1", KEY)
        self.assertTrue(sealed.startswith(ENVELOPE_PREFIX))
        self.assertTrue(is_sealed(sealed))
        self.assertFalse(is_sealed("1//0gLegacyPlaintextToken"))
        self.assertEqual(decrypt_token(sealed, KEY), "refresh-1")


if __name__ == "__main__":
    unittest.main()
