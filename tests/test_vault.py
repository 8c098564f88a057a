"""
Tests for key-at-rest encryption (vault.py).

Covers:
  - seal / open round-trip with the salted PBKDF2 scheme
  - Wrong passphrase and tampered envelopes
  - Nonce and salt freshness per seal
  - Envelope dict encoding, including the legacy array shape
  - Legacy pad32 envelopes and upgrade detection
"""

import unittest

from Crypto.Cipher import AES

from keyrelay_core.errors import AuthenticationError, ValidationError
from keyrelay_core.vault import (
    KDF_PAD32,
    KDF_PBKDF2,
    KeyVault,
    SecretEnvelope,
)

SECRET = bytes.fromhex("ab" * 32)


def _legacy_extension_envelope(secret_hex: str, passphrase: str) -> dict:
    """What the browser extension stored: passphrase padded with '0' as the key."""
    key = passphrase.ljust(32, "0").encode()
    nonce = bytes(range(12))
    ct, tag = AES.new(key, AES.MODE_GCM, nonce=nonce).encrypt_and_digest(secret_hex.encode())
    return {"encrypted": list(ct + tag), "iv": list(nonce)}


class TestSealOpen(unittest.TestCase):

    def setUp(self):
        self.vault = KeyVault(iterations=1_000)

    def test_round_trip(self):
        env = self.vault.seal(SECRET, "pw1")
        self.assertEqual(self.vault.open(env, "pw1"), SECRET)

    def test_wrong_passphrase(self):
        env = self.vault.seal(SECRET, "pw1")
        with self.assertRaises(AuthenticationError):
            self.vault.open(env, "wrong")

    def test_error_message_does_not_leak(self):
        env = self.vault.seal(SECRET, "pw1")
        with self.assertRaises(AuthenticationError) as cm:
            self.vault.open(env, "wrong")
        self.assertEqual(str(cm.exception), "Unable to decrypt wallet")

    def test_tampered_ciphertext(self):
        env = self.vault.seal(SECRET, "pw1")
        flipped = bytes([env.ciphertext[0] ^ 1]) + env.ciphertext[1:]
        bad = SecretEnvelope(flipped, env.nonce, env.salt, env.kdf, env.iterations)
        with self.assertRaises(AuthenticationError):
            self.vault.open(bad, "pw1")

    def test_truncated_ciphertext(self):
        env = self.vault.seal(SECRET, "pw1")
        bad = SecretEnvelope(env.ciphertext[:10], env.nonce, env.salt, env.kdf, env.iterations)
        with self.assertRaises(AuthenticationError):
            self.vault.open(bad, "pw1")

    def test_fresh_nonce_and_salt(self):
        a = self.vault.seal(SECRET, "pw1")
        b = self.vault.seal(SECRET, "pw1")
        self.assertNotEqual(a.nonce, b.nonce)
        self.assertNotEqual(a.salt, b.salt)
        self.assertNotEqual(a.ciphertext, b.ciphertext)

    def test_records_kdf_parameters(self):
        env = self.vault.seal(SECRET, "pw1")
        self.assertEqual(env.kdf, KDF_PBKDF2)
        self.assertEqual(env.iterations, 1_000)
        self.assertEqual(len(env.salt), 16)
        self.assertEqual(len(env.nonce), 12)

    def test_empty_passphrase_rejected(self):
        with self.assertRaises(ValidationError):
            self.vault.seal(SECRET, "")

    def test_empty_secret_rejected(self):
        with self.assertRaises(ValidationError):
            self.vault.seal(b"", "pw1")

    def test_unicode_passphrase(self):
        env = self.vault.seal(SECRET, "pässwörd ✓")
        self.assertEqual(self.vault.open(env, "pässwörd ✓"), SECRET)

    def test_iterations_must_be_positive(self):
        with self.assertRaises(ValueError):
            KeyVault(iterations=0)


class TestEnvelopeEncoding(unittest.TestCase):

    def test_dict_round_trip(self):
        vault = KeyVault(iterations=1_000)
        env = vault.seal(SECRET, "pw1")
        restored = SecretEnvelope.from_dict(env.to_dict())
        self.assertEqual(restored, env)
        self.assertEqual(vault.open(restored, "pw1"), SECRET)

    def test_dict_is_hex(self):
        d = KeyVault(iterations=1_000).seal(SECRET, "pw1").to_dict()
        self.assertEqual(d["version"], 1)
        self.assertEqual(d["kdf"], KDF_PBKDF2)
        bytes.fromhex(d["ciphertext"])
        bytes.fromhex(d["salt"])

    def test_malformed_dict(self):
        with self.assertRaises(ValidationError):
            SecretEnvelope.from_dict({"ciphertext": "zz", "nonce": "00"})
        with self.assertRaises(ValidationError):
            SecretEnvelope.from_dict({})

    def test_legacy_array_shape_implies_pad32(self):
        env = SecretEnvelope.from_dict(_legacy_extension_envelope("cd" * 32, "pw1"))
        self.assertEqual(env.kdf, KDF_PAD32)
        self.assertEqual(env.salt, b"")


class TestLegacyScheme(unittest.TestCase):

    def setUp(self):
        self.vault = KeyVault(iterations=1_000)

    def test_opens_extension_envelope(self):
        env = SecretEnvelope.from_dict(_legacy_extension_envelope("cd" * 32, "pw1"))
        self.assertEqual(self.vault.open(env, "pw1"), ("cd" * 32).encode())

    def test_legacy_wrong_passphrase(self):
        env = SecretEnvelope.from_dict(_legacy_extension_envelope("cd" * 32, "pw1"))
        with self.assertRaises(AuthenticationError):
            self.vault.open(env, "pw2")

    def test_overlong_passphrase_cannot_open_legacy(self):
        env = SecretEnvelope.from_dict(_legacy_extension_envelope("cd" * 32, "pw1"))
        with self.assertRaises(AuthenticationError):
            self.vault.open(env, "x" * 40)

    def test_legacy_needs_upgrade(self):
        env = self.vault.seal(SECRET, "pw1", kdf=KDF_PAD32)
        self.assertTrue(self.vault.needs_upgrade(env))

    def test_weaker_iterations_need_upgrade(self):
        env = KeyVault(iterations=500).seal(SECRET, "pw1")
        self.assertTrue(self.vault.needs_upgrade(env))
        self.assertFalse(self.vault.needs_upgrade(self.vault.seal(SECRET, "pw1")))

    def test_unknown_kdf(self):
        with self.assertRaises(ValidationError):
            self.vault.seal(SECRET, "pw1", kdf="md5")


if __name__ == "__main__":
    unittest.main()
