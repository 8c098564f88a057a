"""
Key-at-rest encryption for KeyRelay.

``KeyVault`` seals a single secret (the account's raw private key) into a
``SecretEnvelope`` and opens it again with the same passphrase.

Current scheme
    PBKDF2-HMAC-SHA256 with a random 16-byte salt and a configurable
    iteration count derives a 32-byte key; AES-256-GCM (pycryptodome) with a
    fresh 96-bit nonce per seal encrypts and authenticates in one pass.

Legacy scheme (``kdf="pad32"``)
    The browser extension this wallet replaces right-padded the passphrase
    with ``"0"`` to 32 bytes and used it directly as the AES key: no salt, no
    stretching.  Envelopes in that format can still be opened so existing
    installs can migrate; the session manager re-seals them with the current
    scheme on the first successful unlock.

The ciphertext stored in an envelope is ``ciphertext || tag`` which is the
layout WebCrypto produces, so legacy envelopes decode without conversion.
"""

from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass
from typing import Any

from Crypto.Cipher import AES

from keyrelay_core.errors import AuthenticationError, ValidationError

logger = logging.getLogger("keyrelay_vault")

KDF_PBKDF2 = "pbkdf2-hmac-sha256"
KDF_PAD32 = "pad32"

DEFAULT_ITERATIONS = 600_000
KEY_LEN = 32
NONCE_LEN = 12
SALT_LEN = 16
TAG_LEN = 16


@dataclass(frozen=True)
class SecretEnvelope:
    """Opaque at-rest form of a secret."""
    ciphertext: bytes           # AES-GCM ciphertext with the tag appended
    nonce: bytes
    salt: bytes = b""
    kdf: str = KDF_PBKDF2
    iterations: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": 1,
            "ciphertext": self.ciphertext.hex(),
            "nonce": self.nonce.hex(),
            "salt": self.salt.hex(),
            "kdf": self.kdf,
            "kdf_iterations": self.iterations,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SecretEnvelope:
        """Decode a stored envelope.

        Also accepts the extension's ``{"encrypted": [...], "iv": [...]}``
        shape (byte arrays as integer lists), which implies the legacy KDF.
        """
        try:
            if "encrypted" in data and "iv" in data:
                return cls(
                    ciphertext=bytes(data["encrypted"]),
                    nonce=bytes(data["iv"]),
                    kdf=KDF_PAD32,
                )
            return cls(
                ciphertext=bytes.fromhex(data["ciphertext"]),
                nonce=bytes.fromhex(data["nonce"]),
                salt=bytes.fromhex(data.get("salt", "")),
                kdf=data.get("kdf", KDF_PBKDF2),
                iterations=int(data.get("kdf_iterations", 0)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed envelope: {exc}") from None


def _pad32_key(passphrase: str) -> bytes:
    """Legacy derivation: the passphrase itself, zero-character padded."""
    return passphrase.ljust(KEY_LEN, "0").encode("utf-8")


class KeyVault:
    """Seal and open secrets with a passphrase."""

    def __init__(self, iterations: int = DEFAULT_ITERATIONS):
        if iterations < 1:
            raise ValueError("iterations must be positive")
        self.iterations = iterations

    # ---- key derivation ----

    @staticmethod
    def _derive(passphrase: str, envelope_kdf: str, salt: bytes, iterations: int) -> bytes:
        if envelope_kdf == KDF_PBKDF2:
            return hashlib.pbkdf2_hmac(
                "sha256", passphrase.encode("utf-8"), salt, iterations, dklen=KEY_LEN,
            )
        if envelope_kdf == KDF_PAD32:
            key = _pad32_key(passphrase)
            # WebCrypto rejects AES keys that are not 16/24/32 bytes, so an
            # over-long passphrase could never have sealed a legacy envelope.
            if len(key) != KEY_LEN:
                raise AuthenticationError()
            return key
        raise AuthenticationError()

    # ---- public API ----

    def seal(self, secret: bytes, passphrase: str, *, kdf: str = KDF_PBKDF2) -> SecretEnvelope:
        """Encrypt *secret* under a key derived from *passphrase*."""
        if not isinstance(secret, (bytes, bytearray)) or not secret:
            raise ValidationError("secret must be non-empty bytes")
        if not passphrase:
            raise ValidationError("passphrase must not be empty")

        if kdf == KDF_PBKDF2:
            salt = os.urandom(SALT_LEN)
            iterations = self.iterations
        elif kdf == KDF_PAD32:
            salt, iterations = b"", 0
            if len(_pad32_key(passphrase)) != KEY_LEN:
                raise ValidationError("legacy scheme needs a passphrase of at most 32 bytes")
        else:
            raise ValidationError(f"Unknown kdf: {kdf}")

        key = self._derive(passphrase, kdf, salt, iterations)
        nonce = os.urandom(NONCE_LEN)  # unique per seal
        cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
        ciphertext, tag = cipher.encrypt_and_digest(bytes(secret))
        return SecretEnvelope(
            ciphertext=ciphertext + tag,
            nonce=nonce,
            salt=salt,
            kdf=kdf,
            iterations=iterations,
        )

    def open(self, envelope: SecretEnvelope, passphrase: str) -> bytes:
        """Decrypt *envelope*; raises AuthenticationError on any mismatch."""
        if len(envelope.ciphertext) <= TAG_LEN or len(envelope.nonce) != NONCE_LEN:
            raise AuthenticationError()
        if envelope.kdf == KDF_PBKDF2 and envelope.iterations < 1:
            raise AuthenticationError()
        key = self._derive(passphrase, envelope.kdf, envelope.salt, envelope.iterations)
        body, tag = envelope.ciphertext[:-TAG_LEN], envelope.ciphertext[-TAG_LEN:]
        cipher = AES.new(key, AES.MODE_GCM, nonce=envelope.nonce)
        try:
            return cipher.decrypt_and_verify(body, tag)
        except ValueError:
            logger.debug("Envelope authentication failed")
            raise AuthenticationError() from None

    def needs_upgrade(self, envelope: SecretEnvelope) -> bool:
        """True when *envelope* was sealed with a weaker scheme than ours."""
        return envelope.kdf != KDF_PBKDF2 or envelope.iterations < self.iterations
