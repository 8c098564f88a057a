"""
Privileged wallet service for KeyRelay.

The service is the only component that touches key material.  It serves two
kinds of callers through closed enumerations and fixed dispatch tables:

  - ``WalletAction``   the wallet's own UI (import, unlock, balances, sends …),
                       answered as ``{"success": bool, "data" | "error"}``
  - ``ProviderMethod`` untrusted page contexts arriving through the relay,
                       answered as a BridgeResponse dict

Page contexts must call ``wallet_requestAccounts`` before any other method;
the service remembers connected origins.  Every network round trip runs
under ``asyncio.wait_for`` with the configured deadline, and every error is
reduced to a message string before it leaves the service.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from keyrelay_core.errors import NetworkError, PreconditionError, ValidationError, describe_error
from keyrelay_core.execution import ExecutionPipeline, ExecutionResult
from keyrelay_core.protocol import ProviderMethod, is_request, make_response
from keyrelay_core.session import SessionManager
from keyrelay_core.signing import SigningEngine, parse_private_key
from keyrelay_core.transaction import TransactionDraft, build_token_create, build_transfer, freeze

logger = logging.getLogger("keyrelay_service")


class WalletAction(str, Enum):
    """Operations the wallet UI may request."""
    IMPORT_WALLET = "importWallet"
    UNLOCK = "unlock"
    LOCK = "lock"
    RESET = "reset"
    GET_ACCOUNT_INFO = "getAccountInfo"
    GET_BALANCE = "getBalance"
    GET_TOKENS = "getTokens"
    GET_TRANSACTIONS = "getTransactions"
    SEND_TRANSACTION = "sendTransaction"
    CREATE_TOKEN = "createToken"
    SWITCH_NETWORK = "switchNetwork"
    SIGN_MESSAGE = "signMessage"


def _require(data: dict[str, Any], key: str) -> Any:
    if not isinstance(data, dict) or data.get(key) in (None, ""):
        raise ValidationError(f"{key} is required")
    return data[key]


def _first_param(params: Any) -> Any:
    if isinstance(params, list):
        return params[0] if params else {}
    return params if params is not None else {}


class WalletService:
    """Executes wallet operations against the SessionManager."""

    def __init__(
        self,
        manager: SessionManager,
        *,
        signer: SigningEngine | None = None,
        pipeline: ExecutionPipeline | None = None,
        request_timeout: float | None = None,
    ):
        cfg = manager.config
        self.manager = manager
        self.signer = signer or SigningEngine()
        self.pipeline = pipeline or ExecutionPipeline(cfg.execution.poll_interval)
        self.request_timeout = (
            cfg.execution.request_timeout if request_timeout is None else request_timeout
        )
        self._connected_origins: set[str] = set()

    # ---- helpers ----

    async def _net(self, aw: Awaitable[Any]) -> Any:
        """Run one network operation under the service deadline."""
        try:
            return await asyncio.wait_for(aw, timeout=self.request_timeout)
        except asyncio.TimeoutError:
            raise NetworkError(f"Network request timed out after {self.request_timeout}s") from None

    async def _execute_draft(self, draft: TransactionDraft) -> ExecutionResult:
        async with self.manager.signing() as session:
            frozen = freeze(draft, session.client)
            signed = self.signer.sign(frozen, session.raw_key, session.key_type)
            return await self._net(self.pipeline.execute(signed, session.client))

    def is_connected(self, origin: str) -> bool:
        return origin in self._connected_origins

    def disconnect(self, origin: str) -> None:
        self._connected_origins.discard(origin)

    # ---- wallet UI actions ----

    async def _import_wallet(self, data: dict[str, Any]) -> dict[str, Any]:
        key_type = data.get("keyType", "ecdsa")
        raw_key = parse_private_key(_require(data, "privateKey"), key_type)
        session = await self.manager.import_wallet(
            _require(data, "accountId"), raw_key, _require(data, "password"), key_type,
        )
        return {"accountId": session.account_id, "network": session.network}

    async def _unlock(self, data: dict[str, Any]) -> dict[str, Any]:
        session = await self.manager.unlock(_require(data, "password"))
        return {"accountId": session.account_id, "network": session.network}

    async def _lock(self, data: dict[str, Any]) -> dict[str, Any]:
        await self.manager.lock()
        return {"state": self.manager.state.value}

    async def _reset(self, data: dict[str, Any]) -> dict[str, Any]:
        await self.manager.reset()
        self._connected_origins.clear()
        return {"state": self.manager.state.value}

    async def _account_info(self, data: dict[str, Any]) -> dict[str, Any]:
        info = self.manager.account_info()
        info["state"] = self.manager.state.value
        return info

    async def _balance(self, data: dict[str, Any]) -> dict[str, Any]:
        session = self.manager.require_session()
        balance = await self._net(session.client.get_balance())
        return balance.to_dict()

    async def _tokens(self, data: dict[str, Any]) -> list[dict[str, Any]]:
        session = self.manager.require_session()
        tokens = await self._net(session.client.list_tokens())
        return [t.to_dict() for t in tokens]

    async def _transactions(self, data: dict[str, Any]) -> list[dict[str, Any]]:
        session = self.manager.require_session()
        try:
            limit = int((data or {}).get("limit", 10))
        except (TypeError, ValueError):
            raise ValidationError("limit must be an integer") from None
        txs = await self._net(session.client.list_transactions(limit=limit))
        return [t.to_dict() for t in txs]

    async def _send_transaction(self, data: dict[str, Any]) -> dict[str, Any]:
        session = self.manager.require_session()
        draft = build_transfer(
            data.get("asset") or "HBAR",
            session.account_id,
            _require(data, "recipientId"),
            _require(data, "amount"),
            data.get("memo"),
        ).with_max_fee(self.manager.config.execution.default_max_fee)
        result = await self._execute_draft(draft)
        return result.to_dict()

    async def _create_token(self, data: dict[str, Any]) -> dict[str, Any]:
        session = self.manager.require_session()
        draft = build_token_create(
            _require(data, "tokenName"),
            _require(data, "tokenSymbol"),
            data.get("decimals", 0),
            data.get("initialSupply", 0),
            treasury=session.account_id,
        )
        result = await self._execute_draft(draft)
        out = result.to_dict()
        out["tokenId"] = result.created_entity_id
        return out

    async def _switch_network(self, data: dict[str, Any]) -> dict[str, Any]:
        return {"network": await self.manager.switch_network(_require(data, "network"))}

    async def _sign_message(self, data: dict[str, Any]) -> dict[str, Any]:
        message = _require(data, "message")
        async with self.manager.signing() as session:
            return self.signer.sign_message(message, session.raw_key, session.key_type)

    async def dispatch(self, action: WalletAction | str, data: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a wallet UI action and wrap the outcome for the popup."""
        try:
            handler = _ACTION_TABLE[WalletAction(action)]
        except ValueError:
            return {"success": False, "error": "Invalid action"}
        try:
            return {"success": True, "data": await handler(self, data or {})}
        except Exception as exc:
            _log_failure(str(action), exc)
            return {"success": False, "error": describe_error(exc)}

    # ---- page-context methods ----

    def _require_connected(self, origin: str) -> None:
        if origin not in self._connected_origins:
            raise PreconditionError("Origin is not connected; call wallet_requestAccounts first")

    async def _provider_request_accounts(self, params: Any, origin: str) -> list[str]:
        session = self.manager.require_session()
        self._connected_origins.add(origin)
        logger.info(f"Origin connected: {origin}")
        return [session.account_id]

    async def _provider_account_info(self, params: Any, origin: str) -> dict[str, Any]:
        self._require_connected(origin)
        return self.manager.account_info()

    async def _provider_send_transaction(self, params: Any, origin: str) -> dict[str, Any]:
        self._require_connected(origin)
        payload = _first_param(params)
        if not isinstance(payload, dict):
            raise ValidationError("transaction payload must be an object")
        return await self._send_transaction(payload)

    async def _provider_sign_message(self, params: Any, origin: str) -> dict[str, Any]:
        self._require_connected(origin)
        return await self._sign_message({"message": _first_param(params)})

    async def handle_provider_request(self, message: dict[str, Any], origin: str) -> dict[str, Any]:
        """Execute one BridgeRequest and build its BridgeResponse."""
        if not is_request(message):
            raise ValueError("not a provider request")
        req_id, method = message["id"], message["method"]
        try:
            handler = _PROVIDER_TABLE[ProviderMethod(method)]
        except ValueError:
            # The relay filters on the same list; reaching here means a bypass
            logger.warning(f"Rejected unlisted method {method!r} from {origin}")
            return make_response(req_id, error="UnsupportedMethodError")
        try:
            result = await handler(self, message.get("params"), origin)
        except Exception as exc:
            _log_failure(method, exc)
            return make_response(req_id, error=describe_error(exc))
        return make_response(req_id, result=result)


def _log_failure(what: str, exc: Exception) -> None:
    if isinstance(exc, (ValidationError, PreconditionError)):
        logger.info(f"{what} refused: {exc}")
    elif describe_error(exc) == "InternalError":
        logger.exception(f"{what} failed unexpectedly")
    else:
        logger.warning(f"{what} failed: {exc.__class__.__name__}: {exc}")


_ActionHandler = Callable[[WalletService, dict[str, Any]], Awaitable[Any]]
_ProviderHandler = Callable[[WalletService, Any, str], Awaitable[Any]]

_ACTION_TABLE: dict[WalletAction, _ActionHandler] = {
    WalletAction.IMPORT_WALLET: WalletService._import_wallet,
    WalletAction.UNLOCK: WalletService._unlock,
    WalletAction.LOCK: WalletService._lock,
    WalletAction.RESET: WalletService._reset,
    WalletAction.GET_ACCOUNT_INFO: WalletService._account_info,
    WalletAction.GET_BALANCE: WalletService._balance,
    WalletAction.GET_TOKENS: WalletService._tokens,
    WalletAction.GET_TRANSACTIONS: WalletService._transactions,
    WalletAction.SEND_TRANSACTION: WalletService._send_transaction,
    WalletAction.CREATE_TOKEN: WalletService._create_token,
    WalletAction.SWITCH_NETWORK: WalletService._switch_network,
    WalletAction.SIGN_MESSAGE: WalletService._sign_message,
}

_PROVIDER_TABLE: dict[ProviderMethod, _ProviderHandler] = {
    ProviderMethod.REQUEST_ACCOUNTS: WalletService._provider_request_accounts,
    ProviderMethod.GET_ACCOUNT_INFO: WalletService._provider_account_info,
    ProviderMethod.SEND_TRANSACTION: WalletService._provider_send_transaction,
    ProviderMethod.SIGN_MESSAGE: WalletService._provider_sign_message,
}

# Both tables must cover their enumeration exactly; fail at import otherwise.
if set(_ACTION_TABLE) != set(WalletAction):
    raise RuntimeError("WalletAction dispatch table is incomplete")
if set(_PROVIDER_TABLE) != set(ProviderMethod):
    raise RuntimeError("ProviderMethod dispatch table is incomplete")
