#!/usr/bin/env python3
"""
KeyRelay script runner: drives the ledger directly with an operator key.

Subcommands:
    transfer         send native units from the operator to the recipient
    token-transfer   associate the recipient with TOKEN_ID (recipient
                     co-signs), then move raw token units to it
    token-create     create a fungible token with the operator as treasury
    contract-deploy  deploy contract bytecode
    contract-call    call a function on CONTRACT_ID
    balance          print operator (and recipient) balances
    all              transfer, token-transfer, contract-deploy, contract-call

Usage:
    python run_wallet.py --network testnet transfer --amount 10
    python run_wallet.py token-create --name "Demo Token" --symbol DEMO

Environment variables:
    OPERATOR_ID, OPERATOR_KEY, RECIPIENT_ID, RECIPIENT_KEY,
    TOKEN_ID, CONTRACT_ID, CONTRACT_BYTECODE
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from keyrelay_core.config import NETWORK_IDS, KeyRelayConfig, load_config  # noqa: E402
from keyrelay_core.errors import NetworkError, WalletError  # noqa: E402
from keyrelay_core.execution import ExecutionPipeline, ExecutionResult  # noqa: E402
from keyrelay_core.logging_config import setup_logging  # noqa: E402
from keyrelay_core.network import NetworkClient  # noqa: E402
from keyrelay_core.precision import format_amount  # noqa: E402
from keyrelay_core.signing import SigningEngine, parse_private_key  # noqa: E402
from keyrelay_core.transaction import (  # noqa: E402
    TransactionDraft,
    build_contract_create,
    build_contract_execute,
    build_token_associate,
    build_token_create,
    build_transfer,
    freeze,
)

logger = logging.getLogger("keyrelay_runner")

STEP_PAUSE = 3.0


def log_transaction(title: str, result: ExecutionResult, info: str = "") -> None:
    print(f"\n=== {title} ===")
    print(f"Transaction ID: {result.transaction_id}")
    print(f"Status: {result.status.value}")
    if info:
        print(f"Info: {info}")
    print("=" * 50)


def _env(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if not value:
        raise SystemExit(f"{name} is not set")
    return value


class ScriptContext:
    """Operator client plus the signing and execution pieces scripts share."""

    def __init__(self, cfg: KeyRelayConfig, network: str, key_type: str = "ecdsa"):
        self.cfg = cfg
        self.key_type = key_type
        self.operator_key = parse_private_key(_env("OPERATOR_KEY"), key_type)
        self.client = NetworkClient(
            _env("OPERATOR_ID"), self.operator_key, network, cfg.endpoints(network), key_type=key_type,
        )
        self.signer = SigningEngine()
        self.pipeline = ExecutionPipeline(cfg.execution.poll_interval)

    def recipient(self) -> tuple[str, bytes]:
        return _env("RECIPIENT_ID"), parse_private_key(_env("RECIPIENT_KEY"), self.key_type)

    async def run(self, draft: TransactionDraft, *co_signers: bytes) -> ExecutionResult:
        frozen = freeze(draft, self.client)
        signed = self.signer.sign(frozen, self.operator_key, self.key_type)
        for key in co_signers:
            signed = self.signer.sign(signed, key, self.key_type)
        return await self.deadline(self.pipeline.execute(signed, self.client))

    async def deadline(self, aw):
        timeout = self.cfg.execution.request_timeout
        try:
            return await asyncio.wait_for(aw, timeout=timeout)
        except asyncio.TimeoutError:
            raise NetworkError(f"Network request timed out after {timeout}s") from None

    async def close(self) -> None:
        await self.client.close()


# ===================================================================
#  Scripts
# ===================================================================

async def cmd_transfer(ctx: ScriptContext, args) -> None:
    recipient_id, _ = ctx.recipient()
    print(f"\nSending {args.amount} HBAR from {ctx.client.account_id} to {recipient_id}...")
    result = await ctx.run(build_transfer("HBAR", ctx.client.account_id, recipient_id, args.amount, args.memo))
    log_transaction("HBAR Transfer", result)
    await cmd_balance(ctx, args)


async def cmd_token_transfer(ctx: ScriptContext, args) -> None:
    recipient_id, recipient_key = ctx.recipient()
    token_id = _env("TOKEN_ID")

    print(f"\nAssociating recipient {recipient_id} with token {token_id}...")
    assoc = await ctx.run(build_token_associate(recipient_id, [token_id]), recipient_key)
    log_transaction("Token Association", assoc)

    print(f"\nTransferring {args.amount} units of {token_id} to {recipient_id}...")
    result = await ctx.run(build_transfer(token_id, ctx.client.account_id, recipient_id, args.amount))
    log_transaction("Token Transfer", result)


async def cmd_token_create(ctx: ScriptContext, args) -> None:
    print(f"\nCreating token {args.name} ({args.symbol})...")
    draft = build_token_create(args.name, args.symbol, args.decimals, args.supply, ctx.client.account_id)
    result = await ctx.run(draft)
    log_transaction("Token Creation", result, f"Token ID: {result.created_entity_id}")


async def cmd_contract_deploy(ctx: ScriptContext, args) -> None:
    if args.bytecode_file:
        with open(args.bytecode_file, encoding="utf-8") as f:
            bytecode = f.read()
    else:
        bytecode = _env("CONTRACT_BYTECODE")
    print("\nDeploying contract...")
    result = await ctx.run(build_contract_create(bytecode, args.gas))
    log_transaction("Contract Deployment", result, f"Contract ID: {result.created_entity_id}")
    if result.created_entity_id:
        os.environ["CONTRACT_ID"] = result.created_entity_id


async def cmd_contract_call(ctx: ScriptContext, args) -> None:
    contract_id = _env("CONTRACT_ID")
    print(f"\nCalling {args.function}({', '.join(args.args)}) on {contract_id}...")
    result = await ctx.run(build_contract_execute(contract_id, args.gas, args.function, args.args))
    log_transaction("Contract Call", result)


async def cmd_balance(ctx: ScriptContext, args) -> None:
    accounts = [ctx.client.account_id]
    if os.environ.get("RECIPIENT_ID"):
        accounts.append(os.environ["RECIPIENT_ID"])
    for account in accounts:
        bal = await ctx.deadline(ctx.client.get_balance(account))
        print(f"{account}: {format_amount(bal.tinybars)}")
        for t in bal.tokens:
            print(f"    {t.token_id}: {t.balance}")


async def cmd_all(ctx: ScriptContext, args) -> None:
    steps = [
        ("transfer", cmd_transfer),
        ("token-transfer", cmd_token_transfer),
        ("contract-deploy", cmd_contract_deploy),
        ("contract-call", cmd_contract_call),
    ]
    for i, (name, fn) in enumerate(steps, 1):
        print(f"\n{'=' * 60}\nSTEP {i}: {name}\n{'=' * 60}")
        try:
            await fn(ctx, args)
        except (WalletError, SystemExit) as exc:
            print(f"Step {i} failed: {exc}")
            break
        print(f"Step {i} completed")
        if i < len(steps):
            await asyncio.sleep(STEP_PAUSE)


COMMANDS = {
    "transfer": cmd_transfer,
    "token-transfer": cmd_token_transfer,
    "token-create": cmd_token_create,
    "contract-deploy": cmd_contract_deploy,
    "contract-call": cmd_contract_call,
    "balance": cmd_balance,
    "all": cmd_all,
}


# ===================================================================
#  Entry point
# ===================================================================

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="KeyRelay ledger scripts")
    p.add_argument("--config", default=None, help="Path to keyrelay.toml config file")
    p.add_argument("--network", choices=NETWORK_IDS, default=None,
                   help="Network to use (default: wallet.default_network)")
    p.add_argument("--key-type", choices=("ecdsa", "ed25519"), default="ecdsa")
    p.add_argument("--amount", default="10", help="Amount for transfer subcommands")
    p.add_argument("--memo", default=None)
    p.add_argument("--gas", type=int, default=100_000)
    p.add_argument("--name", default="Demo Token")
    p.add_argument("--symbol", default="DEMO")
    p.add_argument("--decimals", type=int, default=2)
    p.add_argument("--supply", type=int, default=100_000)
    p.add_argument("--bytecode-file", default=None)
    p.add_argument("--function", default="set")
    p.add_argument("--args", nargs="*", default=["42"])
    p.add_argument("command", choices=sorted(COMMANDS))
    return p.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    cfg = load_config(args.config)
    setup_logging(level=cfg.logging.level, fmt=cfg.logging.format, log_file=cfg.logging.file or None)
    network = args.network or cfg.wallet.default_network

    ctx = ScriptContext(cfg, network, args.key_type)
    print(f"Client ready: {ctx.client.account_id} on {network}")
    try:
        await COMMANDS[args.command](ctx, args)
    except WalletError as exc:
        logger.error(f"{args.command} failed: {exc.code}: {exc}")
        return 1
    finally:
        await ctx.close()
    return 0


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    main_sync()
