"""
Signing for KeyRelay.

Keys are raw 32-byte private keys of one of two types:

  - ``ecdsa``   secp256k1, RFC 6979 deterministic signatures over SHA-256
  - ``ed25519`` EdDSA (deterministic by construction)

Only frozen drafts are signed; the signing input is the frozen draft's
canonical byte encoding.  Several accounts may each add one signature to
the same frozen draft (e.g. a recipient co-signing a token association).
"""

from __future__ import annotations

import hashlib
import os

from ecdsa import BadSignatureError, Ed25519, MalformedPointError, SECP256k1, SigningKey, VerifyingKey

from keyrelay_core.errors import PreconditionError, ValidationError
from keyrelay_core.transaction import FrozenDraft, SignaturePair, SignedTransaction

KEY_TYPES = ("ecdsa", "ed25519")

# DER prefixes of PKCS#8-wrapped raw keys as exported by common wallets.
_DER_PREFIXES = {
    "ed25519": "302e020100300506032b657004220420",
    "ecdsa": "3030020100300706052b8104000a04220420",
}


def _curve(key_type: str):
    if key_type == "ecdsa":
        return SECP256k1
    if key_type == "ed25519":
        return Ed25519
    raise ValidationError(f"Unsupported key type: {key_type}")


def _signing_key(raw_key: bytes, key_type: str) -> SigningKey:
    try:
        return SigningKey.from_string(raw_key, curve=_curve(key_type))
    except MalformedPointError:
        raise ValidationError("Invalid private key") from None


def parse_private_key(text: str, key_type: str = "ecdsa") -> bytes:
    """Decode a hex (optionally DER-wrapped or ``0x``-prefixed) private key."""
    if not isinstance(text, str):
        raise ValidationError("private key must be a hex string")
    s = text.strip().lower().removeprefix("0x")
    prefix = _DER_PREFIXES.get(key_type)
    if prefix and s.startswith(prefix):
        s = s[len(prefix):]
    if len(s) != 64:
        raise ValidationError(f"Invalid {key_type} private key format")
    try:
        raw = bytes.fromhex(s)
    except ValueError:
        raise ValidationError(f"Invalid {key_type} private key format") from None
    _signing_key(raw, key_type)  # range check
    return raw


def generate_private_key(key_type: str = "ecdsa") -> bytes:
    """Fresh random private key of *key_type*."""
    if key_type == "ed25519":
        return os.urandom(32)
    return SigningKey.generate(curve=SECP256k1).to_string()


def public_key_bytes(raw_key: bytes, key_type: str = "ecdsa") -> bytes:
    """Compressed secp256k1 point (33 bytes) or raw Ed25519 key (32 bytes)."""
    vk = _signing_key(raw_key, key_type).get_verifying_key()
    if key_type == "ecdsa":
        return vk.to_string("compressed")
    return vk.to_string()


def _sign_bytes(data: bytes, raw_key: bytes, key_type: str) -> bytes:
    sk = _signing_key(raw_key, key_type)
    if key_type == "ecdsa":
        return sk.sign_deterministic(data, hashfunc=hashlib.sha256)
    return sk.sign_deterministic(data)


def verify_bytes(public_key: bytes, data: bytes, signature: bytes) -> bool:
    """Check *signature* over *data*; the key type follows from the key length."""
    try:
        if len(public_key) == 32:
            vk = VerifyingKey.from_string(public_key, curve=Ed25519)
            return vk.verify(signature, data)
        vk = VerifyingKey.from_string(public_key, curve=SECP256k1)
        return vk.verify(signature, data, hashfunc=hashlib.sha256)
    except (BadSignatureError, MalformedPointError):
        return False


class SigningEngine:
    """Produces signatures over frozen drafts and free-form messages."""

    def sign(
        self,
        target: FrozenDraft | SignedTransaction,
        raw_key: bytes,
        key_type: str = "ecdsa",
    ) -> SignedTransaction:
        """
        Add a signature by *raw_key* to *target*.

        *target* is a frozen draft (first signature) or an already signed
        transaction (co-signature).  Anything else, including an unfrozen
        draft, raises PreconditionError.
        """
        if isinstance(target, FrozenDraft):
            signed = SignedTransaction(frozen=target)
        elif isinstance(target, SignedTransaction):
            signed = target
        else:
            raise PreconditionError("transaction must be frozen before signing")

        pub = public_key_bytes(raw_key, key_type)
        if signed.signed_by(pub):
            return signed
        sig = _sign_bytes(signed.frozen.canonical_bytes(), raw_key, key_type)
        return signed.with_signature(SignaturePair(public_key=pub, signature=sig))

    def sign_message(self, message: str | bytes, raw_key: bytes, key_type: str = "ecdsa") -> dict:
        """Sign an arbitrary page-supplied message."""
        if isinstance(message, str):
            message = message.encode("utf-8")
        if not isinstance(message, bytes) or not message:
            raise ValidationError("message must be a non-empty string")
        return {
            "publicKey": public_key_bytes(raw_key, key_type).hex(),
            "signature": _sign_bytes(message, raw_key, key_type).hex(),
        }

    @staticmethod
    def verify(signed: SignedTransaction) -> bool:
        """True when *signed* has signatures and every one checks out."""
        data = signed.frozen.canonical_bytes()
        return bool(signed.signatures) and all(
            verify_bytes(s.public_key, data, s.signature) for s in signed.signatures
        )
