"""
Session management for KeyRelay.

The wallet is a three-state machine::

    UNINITIALIZED --import_wallet--> UNLOCKED
    LOCKED        --unlock(ok)-----> UNLOCKED
    UNLOCKED      --lock / unlock(bad passphrase)--> LOCKED
    any           --reset--------> UNINITIALIZED

``UNINITIALIZED`` means no wallet record is stored.  ``LOCKED`` means a record
exists but no decrypted key is in memory (always the case right after a
restart).  ``UNLOCKED`` means a ``Session`` is resident: the raw key, the
account and a ``NetworkClient`` bound to the selected network.

A single ``asyncio.Lock`` guards every transition and every signing
operation, so concurrent callers (several page contexts, the wallet UI)
serialize on the one Session.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable

from keyrelay_core.account import normalize_entity_id
from keyrelay_core.config import NETWORK_IDS, KeyRelayConfig
from keyrelay_core.errors import AuthenticationError, PreconditionError, ValidationError
from keyrelay_core.network import NetworkClient
from keyrelay_core.signing import KEY_TYPES, public_key_bytes
from keyrelay_core.storage import WALLET_KEY, PersistentStore, WalletRecord, open_store
from keyrelay_core.vault import KDF_PAD32, KeyVault

logger = logging.getLogger("keyrelay_session")

ClientFactory = Callable[[str, bytes, str, str], NetworkClient]


class WalletState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


@dataclass
class Session:
    """Decrypted, in-memory binding of the account key to a network."""
    account_id: str
    raw_key: bytes = field(repr=False)
    network: str
    client: NetworkClient
    key_type: str = "ecdsa"


def _legacy_plaintext_key(secret: bytes) -> bytes:
    """Legacy envelopes hold the key as 64 hex characters, not raw bytes."""
    try:
        text = secret.decode("ascii")
        if len(text) == 64:
            return bytes.fromhex(text)
    except (UnicodeDecodeError, ValueError):
        pass
    return secret


class SessionManager:
    """Owns the single optional Session and the persisted wallet record."""

    def __init__(
        self,
        store: PersistentStore,
        config: KeyRelayConfig | None = None,
        *,
        vault: KeyVault | None = None,
        client_factory: ClientFactory | None = None,
    ):
        self.config = config or KeyRelayConfig()
        self._store = store
        self._vault = vault or KeyVault(self.config.wallet.kdf_iterations)
        self._client_factory = client_factory or self._default_client
        self._session: Session | None = None
        self._lock = asyncio.Lock()
        self._owns_store = False

    @classmethod
    def from_config(cls, config: KeyRelayConfig) -> SessionManager:
        """Build a manager over the store named by ``wallet.store_path``."""
        manager = cls(open_store(config.wallet.store_path), config)
        manager._owns_store = True
        return manager

    def _default_client(self, account_id: str, raw_key: bytes, network: str, key_type: str) -> NetworkClient:
        return NetworkClient(
            account_id, raw_key, network, self.config.endpoints(network), key_type=key_type,
        )

    # ---- state ----

    def _load_record(self) -> WalletRecord | None:
        raw = self._store.get(WALLET_KEY)
        return WalletRecord.from_dict(raw) if raw is not None else None

    @property
    def state(self) -> WalletState:
        if self._session is not None:
            return WalletState.UNLOCKED
        if self._store.get(WALLET_KEY) is None:
            return WalletState.UNINITIALIZED
        return WalletState.LOCKED

    @property
    def session(self) -> Session | None:
        return self._session

    def require_session(self) -> Session:
        if self._session is None:
            if self.state is WalletState.UNINITIALIZED:
                raise PreconditionError("No wallet found")
            raise PreconditionError("Wallet is locked")
        return self._session

    def account_info(self) -> dict[str, Any]:
        """Account id and network; available while locked."""
        if self._session is not None:
            return {"accountId": self._session.account_id, "network": self._session.network}
        record = self._load_record()
        if record is None:
            raise PreconditionError("No wallet found")
        return {"accountId": record.account_id, "network": record.network}

    # ---- internal transitions (callers hold self._lock) ----

    async def _drop_session(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            await session.client.close()

    async def _bind(self, account_id: str, raw_key: bytes, network: str, key_type: str) -> Session:
        await self._drop_session()
        client = self._client_factory(account_id, raw_key, network, key_type)
        self._session = Session(account_id, raw_key, network, client, key_type)
        return self._session

    # ---- transitions ----

    async def import_wallet(
        self,
        account_id: str,
        raw_key: bytes,
        passphrase: str,
        key_type: str = "ecdsa",
    ) -> Session:
        """Seal *raw_key*, persist the record and unlock on the default network."""
        account_id = normalize_entity_id(account_id)
        if key_type not in KEY_TYPES:
            raise ValidationError(f"Unsupported key type: {key_type}")
        public_key_bytes(raw_key, key_type)  # rejects malformed keys

        async with self._lock:
            if self.state is not WalletState.UNINITIALIZED:
                raise PreconditionError("A wallet is already installed; reset it first")
            network = self.config.wallet.default_network
            envelope = self._vault.seal(raw_key, passphrase)
            record = WalletRecord(account_id, envelope, network, key_type)
            self._store.put(WALLET_KEY, record.to_dict())
            session = await self._bind(account_id, raw_key, network, key_type)
            logger.info(f"Wallet imported for {account_id} on {network}")
            return session

    async def unlock(self, passphrase: str) -> Session:
        """
        Decrypt the stored key and make it resident.

        A wrong passphrase raises AuthenticationError and leaves the wallet
        locked, discarding any session that was resident.
        """
        async with self._lock:
            record = self._load_record()
            if record is None:
                raise PreconditionError("No wallet found")
            try:
                secret = self._vault.open(record.envelope, passphrase)
            except AuthenticationError:
                await self._drop_session()
                logger.warning(f"Unlock failed for {record.account_id}")
                raise

            if record.envelope.kdf == KDF_PAD32:
                secret = _legacy_plaintext_key(secret)
            if self._vault.needs_upgrade(record.envelope):
                record.envelope = self._vault.seal(secret, passphrase)
                self._store.put(WALLET_KEY, record.to_dict())
                logger.info(f"Re-sealed key envelope for {record.account_id}")

            session = await self._bind(record.account_id, secret, record.network, record.key_type)
            logger.info(f"Wallet unlocked for {record.account_id} on {record.network}")
            return session

    async def lock(self) -> None:
        async with self._lock:
            await self._drop_session()
            logger.info("Wallet locked")

    async def reset(self) -> None:
        """Forget the wallet entirely."""
        async with self._lock:
            await self._drop_session()
            self._store.delete(WALLET_KEY)
            logger.info("Wallet reset")

    async def switch_network(self, network: str) -> str:
        """Rebind to *network*; the stored key is not touched."""
        if network not in NETWORK_IDS:
            raise ValidationError(f"Unknown network: {network}")
        async with self._lock:
            record = self._load_record()
            if record is None:
                raise PreconditionError("No wallet found")
            record.network = network
            self._store.put(WALLET_KEY, record.to_dict())
            if self._session is not None and self._session.network != network:
                s = self._session
                await self._bind(s.account_id, s.raw_key, network, s.key_type)
            logger.info(f"Switched network to {network}")
            return network

    @contextlib.asynccontextmanager
    async def signing(self) -> AsyncIterator[Session]:
        """Hold the session exclusively for one signing operation."""
        async with self._lock:
            yield self.require_session()

    async def close(self) -> None:
        async with self._lock:
            await self._drop_session()
            if self._owns_store:
                self._store.close()
