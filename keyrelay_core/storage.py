"""
Persistence for the wallet record.

The wallet keeps exactly one logical record (``WALLET_KEY``) holding the
account id, the sealed key envelope and the selected network.  Two stores
implement the same ``put`` / ``get`` / ``delete`` surface over JSON-compatible
values:

  - ``MemoryStore`` – process-local dict, used by tests and throwaway sessions
  - ``SqliteStore`` – single-table SQLite key-value file that survives restarts

Usage:
    store = SqliteStore("data/keyrelay.db")
    store.put(WALLET_KEY, record.to_dict())
    raw = store.get(WALLET_KEY)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from keyrelay_core.errors import ValidationError
from keyrelay_core.vault import SecretEnvelope

logger = logging.getLogger("keyrelay_storage")

# Fixed identifier of the single wallet record.
WALLET_KEY = "walletData"


@dataclass
class WalletRecord:
    """Persisted wallet: who, which sealed key, which network."""
    account_id: str
    envelope: SecretEnvelope
    network: str
    key_type: str = "ecdsa"

    def to_dict(self) -> dict[str, Any]:
        return {
            "accountId": self.account_id,
            "encryptedPrivateKey": self.envelope.to_dict(),
            "network": self.network,
            "keyType": self.key_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WalletRecord:
        try:
            return cls(
                account_id=data["accountId"],
                envelope=SecretEnvelope.from_dict(data["encryptedPrivateKey"]),
                network=data.get("network", "testnet"),
                key_type=data.get("keyType", "ecdsa"),
            )
        except (KeyError, TypeError) as exc:
            raise ValidationError(f"Malformed wallet record: {exc}") from None


class PersistentStore(Protocol):
    def put(self, key: str, value: dict[str, Any]) -> None: ...

    def get(self, key: str) -> dict[str, Any] | None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Dict-backed store; contents vanish with the process."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def put(self, key: str, value: dict[str, Any]) -> None:
        # Round-trip through JSON so callers never share mutable state with us
        self._data[key] = json.dumps(value)

    def get(self, key: str) -> dict[str, Any] | None:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def close(self) -> None:
        self._data.clear()


class SqliteStore:
    """Thin SQLite wrapper persisting JSON values by key."""

    CURRENT_SCHEMA_VERSION = 1

    def __init__(self, db_path: str = "data/keyrelay.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout = 5000")
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()
        self._ensure_schema_version()
        logger.info(f"Storage opened: {db_path}")

    # ── schema ───────────────────────────────────────────────────

    def _create_tables(self) -> None:
        c = self._conn
        c.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key        TEXT PRIMARY KEY,
                value_json TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                id      INTEGER PRIMARY KEY CHECK (id = 1),
                version INTEGER NOT NULL
            )
        """)
        c.commit()

    def _ensure_schema_version(self) -> None:
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_version (id, version) VALUES (1, ?)",
                (self.CURRENT_SCHEMA_VERSION,),
            )
            self._conn.commit()
        elif row["version"] > self.CURRENT_SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema v{row['version']} is newer than this software "
                f"(v{self.CURRENT_SCHEMA_VERSION}).  Upgrade KeyRelay."
            )

    # ── key-value surface ────────────────────────────────────────

    def put(self, key: str, value: dict[str, Any]) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO kv (key, value_json) VALUES (?, ?)",
            (key, json.dumps(value)),
        )
        self._conn.commit()

    def get(self, key: str) -> dict[str, Any] | None:
        row = self._conn.execute(
            "SELECT value_json FROM kv WHERE key = ?", (key,)
        ).fetchone()
        return json.loads(row["value_json"]) if row else None

    def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
        logger.info("Storage closed")


def open_store(path: str = "") -> MemoryStore | SqliteStore:
    """Return a SQLite store for *path*, or a memory store when empty."""
    return SqliteStore(path) if path else MemoryStore()
