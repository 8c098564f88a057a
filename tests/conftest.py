"""
Shared pytest fixtures for the KeyRelay test suite.

``FakeLedger`` serves the mirror/submission HTTP surface in-process with
aiohttp's TestServer so network, execution, session, service and bridge
tests run against real sockets without leaving the machine.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import time

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from keyrelay_core.config import NETWORK_IDS, KeyRelayConfig, NetworkEndpoints
from keyrelay_core.session import SessionManager
from keyrelay_core.signing import verify_bytes
from keyrelay_core.storage import MemoryStore
from keyrelay_core.vault import KeyVault

OPERATOR_ID = "0.0.1001"
RECIPIENT_ID = "0.0.2002"
OPERATOR_KEY = bytes.fromhex("11" * 32)
RECIPIENT_KEY = bytes.fromhex("22" * 32)
FAST_ITERATIONS = 1_000


def _not_found(message: str = "Not found") -> web.Response:
    return web.json_response({"_status": {"messages": [{"message": message}]}}, status=404)


class FakeLedger:
    """In-memory ledger speaking the mirror-node JSON dialect."""

    def __init__(self):
        self.accounts: dict[str, dict] = {}
        self.receipts: dict[str, dict] = {}
        self.history: list[dict] = []
        self.submissions: list[dict] = []
        self.pending_polls = 0          # receipt lookups answered 404 first
        self.submit_delay = 0.0
        self.fail_submit: tuple[int, str] | None = None
        self._next_entity = 5000

    # ---- setup ----

    def add_account(self, account_id: str, tinybars: int = 0, tokens: list[dict] | None = None) -> None:
        self.accounts[account_id] = {"balance": tinybars, "tokens": list(tokens or [])}

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/v1/accounts/{id}", self._account)
        app.router.add_get("/api/v1/accounts/{id}/tokens", self._tokens)
        app.router.add_get("/api/v1/transactions", self._list)
        app.router.add_post("/api/v1/transactions", self._submit)
        app.router.add_get("/api/v1/transactions/{tx_id}", self._receipt)
        return app

    @contextlib.asynccontextmanager
    async def serve(self, config: KeyRelayConfig | None = None):
        """Run the server; point every network of *config* at it."""
        async with TestServer(self.app()) as server:
            url = str(server.make_url("/api/v1"))
            if config is not None:
                for net in NETWORK_IDS:
                    config.networks[net] = NetworkEndpoints(url)
            yield url

    # ---- handlers ----

    async def _account(self, request: web.Request) -> web.Response:
        acct = self.accounts.get(request.match_info["id"])
        if acct is None:
            return _not_found()
        return web.json_response({
            "account": request.match_info["id"],
            "balance": {
                "balance": acct["balance"],
                "tokens": [{"token_id": t["token_id"], "balance": t["balance"]} for t in acct["tokens"]],
            },
        })

    async def _tokens(self, request: web.Request) -> web.Response:
        acct = self.accounts.get(request.match_info["id"])
        if acct is None:
            return _not_found()
        return web.json_response({"tokens": acct["tokens"]})

    async def _list(self, request: web.Request) -> web.Response:
        account = request.query.get("account.id")
        limit = int(request.query.get("limit", "25"))
        rows = [h for h in self.history if account in h["_parties"]][:limit]
        if not rows:
            return _not_found()
        return web.json_response({"transactions": [
            {k: v for k, v in h.items() if not k.startswith("_")} for h in rows
        ]})

    async def _submit(self, request: web.Request) -> web.Response:
        if self.submit_delay:
            await asyncio.sleep(self.submit_delay)
        if self.fail_submit is not None:
            status, message = self.fail_submit
            return web.json_response({"_status": {"messages": [{"message": message}]}}, status=status)

        wire = json.loads(bytes.fromhex((await request.json())["transaction"]))
        tx = json.loads(wire["body"])
        self.submissions.append(tx)
        tx_id = tx["transactionId"]

        if tx_id in self.receipts:
            return web.json_response({"transaction_id": tx_id, "status": "DUPLICATE_TRANSACTION"})
        sigs = wire["sigMap"]
        if not sigs or not all(
            verify_bytes(bytes.fromhex(s["pubKey"]), wire["body"].encode(), bytes.fromhex(s["signature"]))
            for s in sigs
        ):
            return web.json_response({"transaction_id": tx_id, "status": "INVALID_SIGNATURE"})

        self.receipts[tx_id] = self._apply(tx)
        return web.json_response({"transaction_id": tx_id, "status": "OK"})

    def _apply(self, tx: dict) -> dict:
        receipt = {"transaction_id": tx["transactionId"], "result": "SUCCESS", "entity_id": None}
        parties = {tx["payer"]}
        if tx["type"] == "cryptoTransfer":
            parties.update(t["account"] for t in tx["transfers"])
            if tx["asset"] == "HBAR":
                for t in tx["transfers"]:
                    if t["amount"] < 0 and self.accounts.get(t["account"], {}).get("balance", 0) < -t["amount"]:
                        receipt["result"] = "INSUFFICIENT_ACCOUNT_BALANCE"
                        break
                else:
                    for t in tx["transfers"]:
                        self.accounts.setdefault(t["account"], {"balance": 0, "tokens": []})
                        self.accounts[t["account"]]["balance"] += t["amount"]
        elif tx["type"] in ("tokenCreation", "contractCreate"):
            self._next_entity += 1
            receipt["entity_id"] = f"0.0.{self._next_entity}"
        self.history.append({
            "transaction_id": tx["transactionId"],
            "name": tx["type"].upper(),
            "consensus_timestamp": f"{time.time():.9f}",
            "result": receipt["result"],
            "charged_tx_fee": 100_000,
            "_parties": parties,
        })
        return receipt

    async def _receipt(self, request: web.Request) -> web.Response:
        if self.pending_polls > 0:
            self.pending_polls -= 1
            return _not_found()
        receipt = self.receipts.get(request.match_info["tx_id"])
        if receipt is None:
            return _not_found()
        return web.json_response({"transactions": [receipt]})


@pytest.fixture
def ledger():
    """Fake ledger with a funded operator and an empty recipient."""
    fake = FakeLedger()
    fake.add_account(OPERATOR_ID, 100 * 100_000_000)
    fake.add_account(RECIPIENT_ID, 0)
    return fake


@pytest.fixture
def config():
    """Config tuned for tests: cheap KDF, fast polling, short deadlines."""
    cfg = KeyRelayConfig()
    cfg.wallet.kdf_iterations = FAST_ITERATIONS
    cfg.execution.poll_interval = 0.01
    cfg.execution.request_timeout = 5.0
    cfg.bridge.request_timeout = 5.0
    return cfg


@pytest.fixture
def vault():
    """KeyVault with a low iteration count."""
    return KeyVault(FAST_ITERATIONS)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def manager(store, config):
    """SessionManager over an empty in-memory store."""
    return SessionManager(store, config)
