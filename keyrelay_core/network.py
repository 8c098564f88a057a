"""
Per-network ledger client for KeyRelay.

A ``NetworkClient`` binds an operator (account id + private key) to one of
the configured networks and talks to that network over HTTP with
``aiohttp``:

Query surface (read-only, idempotent)
    GET  {mirror}/accounts/{id}
    GET  {mirror}/accounts/{id}/tokens
    GET  {mirror}/transactions?account.id={id}&limit=N

Submission surface
    POST {submit}/transactions          {"transaction": <hex payload>}
    GET  {submit}/transactions/{tx_id}  receipt lookup

A 404 on the query surface means "nothing recorded yet" and maps to an
empty result.  Any other non-2xx response, and every transport failure,
raises ``NetworkError``.  Calls carry no built-in timeout; callers wrap them
with ``asyncio.wait_for``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from keyrelay_core.account import normalize_entity_id
from keyrelay_core.config import NETWORK_IDS, NetworkEndpoints
from keyrelay_core.errors import NetworkError, ValidationError
from keyrelay_core.precision import tinybars_to_hbar
from keyrelay_core.signing import public_key_bytes

logger = logging.getLogger("keyrelay_network")


@dataclass(frozen=True)
class TokenHolding:
    token_id: str
    balance: int
    symbol: str = "Unknown"
    name: str = "Unknown Token"

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokenId": self.token_id,
            "balance": self.balance,
            "symbol": self.symbol,
            "name": self.name,
        }


@dataclass(frozen=True)
class Balance:
    tinybars: int = 0
    tokens: tuple[TokenHolding, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "hbars": f"{tinybars_to_hbar(self.tinybars):.8f}",
            "tinybars": self.tinybars,
            "tokens": [t.to_dict() for t in self.tokens],
        }


@dataclass(frozen=True)
class TransactionSummary:
    transaction_id: str
    type: str
    timestamp: str
    result: str
    fee: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "transactionId": self.transaction_id,
            "type": self.type,
            "timestamp": self.timestamp,
            "result": self.result,
            "fee": self.fee,
        }


def _error_message(payload: Any, fallback: str) -> str:
    """Pull a human message out of a mirror-node style error body."""
    if isinstance(payload, dict):
        status = payload.get("_status")
        if isinstance(status, dict):
            msgs = status.get("messages") or []
            if msgs and isinstance(msgs[0], dict) and msgs[0].get("message"):
                return str(msgs[0]["message"])
        if payload.get("message"):
            return str(payload["message"])
    return fallback


class NetworkClient:
    """Operator-bound HTTP client for one network."""

    def __init__(
        self,
        account_id: str,
        raw_key: bytes,
        network: str,
        endpoints: NetworkEndpoints,
        *,
        key_type: str = "ecdsa",
        session: aiohttp.ClientSession | None = None,
    ):
        if network not in NETWORK_IDS:
            raise ValidationError(f"Unknown network: {network}")
        self.account_id = normalize_entity_id(account_id)
        self.network = network
        self.endpoints = endpoints
        self.key_type = key_type
        self._raw_key = raw_key
        self.public_key = public_key_bytes(raw_key, key_type)
        self._http = session
        self._owns_http = session is None

    def __repr__(self) -> str:
        return f"NetworkClient({self.account_id}@{self.network})"

    @property
    def operator_key(self) -> bytes:
        return self._raw_key

    # ---- transport ----

    def _session(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession()
            self._owns_http = True
        return self._http

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        not_found_ok: bool = False,
    ) -> Any:
        try:
            async with self._session().request(method, url, params=params, json=json_body) as resp:
                if resp.status == 404 and not_found_ok:
                    logger.debug(f"{method} {url} -> 404 (empty)")
                    return None
                try:
                    payload = await resp.json(content_type=None)
                except ValueError:
                    payload = None
                if resp.status >= 400:
                    msg = _error_message(payload, resp.reason or f"HTTP {resp.status}")
                    logger.warning(f"{method} {url} failed: {resp.status} {msg}")
                    raise NetworkError(msg, status=resp.status)
                return payload
        except aiohttp.ClientError as exc:
            logger.warning(f"{method} {url} transport error: {exc}")
            raise NetworkError(f"Network request failed: {exc}") from exc

    def _account(self, account_id: str | None) -> str:
        return self.account_id if account_id is None else normalize_entity_id(account_id)

    # ---- queries ----

    async def get_balance(self, account_id: str | None = None) -> Balance:
        acct = self._account(account_id)
        data = await self._request(
            "GET", f"{self.endpoints.mirror_url}/accounts/{acct}", not_found_ok=True,
        )
        if not data:
            return Balance()
        bal = data.get("balance") or {}
        tokens = tuple(
            TokenHolding(token_id=t["token_id"], balance=int(t.get("balance", 0)))
            for t in bal.get("tokens") or []
        )
        return Balance(tinybars=int(bal.get("balance", 0)), tokens=tokens)

    async def list_tokens(self, account_id: str | None = None) -> list[TokenHolding]:
        acct = self._account(account_id)
        data = await self._request(
            "GET", f"{self.endpoints.mirror_url}/accounts/{acct}/tokens", not_found_ok=True,
        )
        if not data:
            return []
        return [
            TokenHolding(
                token_id=t["token_id"],
                balance=int(t.get("balance", 0)),
                symbol=t.get("symbol") or "Unknown",
                name=t.get("name") or "Unknown Token",
            )
            for t in data.get("tokens") or []
        ]

    async def list_transactions(
        self, account_id: str | None = None, limit: int = 10,
    ) -> list[TransactionSummary]:
        acct = self._account(account_id)
        if limit < 1:
            raise ValidationError("limit must be positive")
        data = await self._request(
            "GET",
            f"{self.endpoints.mirror_url}/transactions",
            params={"account.id": acct, "limit": str(limit)},
            not_found_ok=True,
        )
        if not data:
            return []
        return [
            TransactionSummary(
                transaction_id=tx.get("transaction_id", ""),
                type=tx.get("name", ""),
                timestamp=tx.get("consensus_timestamp", ""),
                result=tx.get("result", ""),
                fee=int(tx.get("charged_tx_fee", 0)),
            )
            for tx in data.get("transactions") or []
        ]

    # ---- submission ----

    async def submit_transaction(self, payload: bytes) -> dict[str, Any]:
        """Hand a signed payload to the ingestion endpoint."""
        data = await self._request(
            "POST",
            f"{self.endpoints.submit_url}/transactions",
            json_body={"transaction": payload.hex()},
        )
        if not isinstance(data, dict) or "transaction_id" not in data:
            raise NetworkError("Malformed submission acknowledgement")
        return data

    async def get_receipt(self, transaction_id: str) -> dict[str, Any] | None:
        """Receipt record for *transaction_id*, or None while not yet final."""
        data = await self._request(
            "GET",
            f"{self.endpoints.submit_url}/transactions/{transaction_id}",
            not_found_ok=True,
        )
        if not data:
            return None
        rows = data.get("transactions") or []
        return rows[0] if rows else None

    async def close(self) -> None:
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None
