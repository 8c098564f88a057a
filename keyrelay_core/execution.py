"""
Submission and receipt resolution for KeyRelay.

Execution is two network round trips:

  1. ``submit``         hand the signed payload to the ingestion endpoint and
                        get back an acknowledgement (transaction id + precheck)
  2. ``await_receipt``  poll the receipt lookup until the ledger reports a
                        final status

A non-success status is *data*: it comes back inside ``ExecutionResult``
and the caller decides what it means.  Transport failures raise
``NetworkError`` and are never retried here.  Nothing in this module applies
a deadline; wrap calls with ``asyncio.wait_for``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from keyrelay_core.errors import PreconditionError
from keyrelay_core.transaction import SignedTransaction

if TYPE_CHECKING:
    from keyrelay_core.network import NetworkClient

logger = logging.getLogger("keyrelay_execution")


class StatusCode(str, Enum):
    """Ledger status codes the wallet knows by name."""
    OK = "OK"
    SUCCESS = "SUCCESS"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    DUPLICATE_TRANSACTION = "DUPLICATE_TRANSACTION"
    TRANSACTION_EXPIRED = "TRANSACTION_EXPIRED"
    INSUFFICIENT_PAYER_BALANCE = "INSUFFICIENT_PAYER_BALANCE"
    INSUFFICIENT_ACCOUNT_BALANCE = "INSUFFICIENT_ACCOUNT_BALANCE"
    INSUFFICIENT_TOKEN_BALANCE = "INSUFFICIENT_TOKEN_BALANCE"
    INSUFFICIENT_TX_FEE = "INSUFFICIENT_TX_FEE"
    INVALID_ACCOUNT_ID = "INVALID_ACCOUNT_ID"
    INVALID_TOKEN_ID = "INVALID_TOKEN_ID"
    TOKEN_NOT_ASSOCIATED_TO_ACCOUNT = "TOKEN_NOT_ASSOCIATED_TO_ACCOUNT"
    TOKEN_ALREADY_ASSOCIATED_TO_ACCOUNT = "TOKEN_ALREADY_ASSOCIATED_TO_ACCOUNT"
    ACCOUNT_REPEATED_IN_ACCOUNT_AMOUNTS = "ACCOUNT_REPEATED_IN_ACCOUNT_AMOUNTS"
    CONTRACT_REVERT_EXECUTED = "CONTRACT_REVERT_EXECUTED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_network(cls, value) -> StatusCode:
        try:
            return cls(str(value))
        except ValueError:
            logger.warning(f"Unrecognised ledger status: {value!r}")
            return cls.UNKNOWN

    @property
    def is_success(self) -> bool:
        return self in (StatusCode.SUCCESS, StatusCode.OK)


@dataclass(frozen=True)
class Submission:
    """Acknowledgement of one submission round trip."""
    transaction_id: str
    precheck: StatusCode


@dataclass(frozen=True)
class ExecutionResult:
    transaction_id: str
    status: StatusCode
    created_entity_id: str | None = None

    def to_dict(self) -> dict:
        d = {"transactionId": self.transaction_id, "status": self.status.value}
        if self.created_entity_id:
            d["entityId"] = self.created_entity_id
        return d


class ExecutionPipeline:
    """Submits signed transactions and resolves their receipts."""

    def __init__(self, poll_interval: float = 1.0):
        self.poll_interval = poll_interval

    async def submit(self, signed: SignedTransaction, client: NetworkClient) -> Submission:
        """
        Send *signed* through *client*.

        Every call is a separate round trip; submitting the same object twice
        reaches the network twice.
        """
        if not isinstance(signed, SignedTransaction):
            raise PreconditionError("only signed transactions can be submitted")
        if signed.frozen.network != client.network:
            raise PreconditionError(
                f"transaction frozen for {signed.frozen.network}, client is on {client.network}"
            )
        if not signed.signed_by(client.public_key):
            raise PreconditionError("transaction is not signed by the paying account")

        ack = await client.submit_transaction(signed.to_bytes())
        precheck = StatusCode.from_network(ack.get("status", StatusCode.OK.value))
        tx_id = str(ack["transaction_id"])
        logger.info(f"Submitted {tx_id} on {client.network}: precheck {precheck.value}")
        return Submission(transaction_id=tx_id, precheck=precheck)

    async def await_receipt(self, submission: Submission, client: NetworkClient) -> ExecutionResult:
        """Poll until the ledger reports a final status for *submission*."""
        if submission.precheck is not StatusCode.OK:
            return ExecutionResult(submission.transaction_id, submission.precheck)

        while True:
            receipt = await client.get_receipt(submission.transaction_id)
            if receipt is not None:
                break
            await asyncio.sleep(self.poll_interval)

        result = ExecutionResult(
            transaction_id=submission.transaction_id,
            status=StatusCode.from_network(receipt.get("result")),
            created_entity_id=receipt.get("entity_id"),
        )
        logger.info(f"Receipt {result.transaction_id}: {result.status.value}")
        return result

    async def execute(self, signed: SignedTransaction, client: NetworkClient) -> ExecutionResult:
        return await self.await_receipt(await self.submit(signed, client), client)
