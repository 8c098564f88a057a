"""
KeyRelay - a custodial wallet core that keeps the signing key behind a relay.

Key features:
- Passphrase-sealed key envelope (AES-256-GCM, salted PBKDF2)
- Single-session state machine guarding every signing operation
- Immutable transaction drafts, frozen before they can be signed
- secp256k1 / Ed25519 signatures over canonical transaction bytes
- Submission and receipt polling against a ledger's HTTP endpoints
- Allow-listed page ↔ relay ↔ service request bridge
"""

__version__ = "0.1.0"
__all__ = [
    "errors",
    "config",
    "vault",
    "storage",
    "session",
    "network",
    "transaction",
    "signing",
    "execution",
    "service",
    "bridge",
]
