"""
Transaction construction for KeyRelay.

Drafts are immutable values.  Every builder step returns a *new* draft and
``freeze`` turns a draft into a distinct ``FrozenDraft`` type that carries
the payer, the network and the transaction id.  Only frozen drafts can be
signed; their canonical byte encoding (sorted-key compact JSON) is the
signing input.

Supported kinds:
  - CRYPTO_TRANSFER   native-asset or token transfer with balanced legs
  - TOKEN_CREATE      fungible token creation, treasury = signing account
  - TOKEN_ASSOCIATE   opt-in a receiving account must co-sign before it can
                      hold a new token
  - CONTRACT_CREATE   deploy bytecode
  - CONTRACT_EXECUTE  call a contract function

Balance invariant: for every asset moved by a draft, the leg deltas sum to
exactly zero.  ``freeze`` refuses drafts that break it.
"""

from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

from keyrelay_core.account import is_entity_id, normalize_entity_id
from keyrelay_core.errors import PreconditionError, ValidationError
from keyrelay_core.precision import NATIVE_SYMBOL, hbar_to_tinybars, to_decimal

if TYPE_CHECKING:
    from keyrelay_core.network import NetworkClient

MAX_MEMO_BYTES = 100
DEFAULT_MAX_FEE = 100_000_000            # 1 HBAR
TOKEN_CREATE_MAX_FEE = 3_000_000_000     # 30 HBAR
CONTRACT_MAX_FEE = 1_000_000_000         # 10 HBAR


class TransactionKind(str, Enum):
    CRYPTO_TRANSFER = "cryptoTransfer"
    TOKEN_CREATE = "tokenCreation"
    TOKEN_ASSOCIATE = "tokenAssociate"
    CONTRACT_CREATE = "contractCreate"
    CONTRACT_EXECUTE = "contractCall"


# ===================================================================
#  Value types
# ===================================================================

@dataclass(frozen=True)
class AssetRef:
    """The native asset (``token_id is None``) or a token."""
    token_id: str | None = None

    @property
    def is_native(self) -> bool:
        return self.token_id is None

    @classmethod
    def parse(cls, value: AssetRef | str | None) -> AssetRef:
        if isinstance(value, AssetRef):
            return value
        if value is None or value == NATIVE_SYMBOL:
            return NATIVE
        return cls(normalize_entity_id(value, "token id"))

    def __str__(self) -> str:
        return NATIVE_SYMBOL if self.token_id is None else self.token_id


NATIVE = AssetRef()


@dataclass(frozen=True)
class TransferLeg:
    party: str
    delta: int


@dataclass(frozen=True)
class TokenSpec:
    name: str
    symbol: str
    decimals: int
    initial_supply: int
    treasury: str


@dataclass(frozen=True)
class TokenAssociation:
    account: str
    token_ids: tuple[str, ...]


@dataclass(frozen=True)
class ContractSpec:
    gas: int
    bytecode: str | None = None        # hex, for CONTRACT_CREATE
    contract_id: str | None = None     # for CONTRACT_EXECUTE
    function: str | None = None
    args: tuple[Any, ...] = ()


@dataclass(frozen=True)
class TransactionDraft:
    """Unsigned, unfrozen transaction description."""
    kind: TransactionKind
    legs: tuple[TransferLeg, ...] = ()
    asset: AssetRef | None = None
    memo: str | None = None
    max_fee: int = DEFAULT_MAX_FEE
    token: TokenSpec | None = None
    association: TokenAssociation | None = None
    contract: ContractSpec | None = None

    def with_memo(self, memo: str | None) -> TransactionDraft:
        return replace(self, memo=_check_memo(memo))

    def with_max_fee(self, max_fee: int) -> TransactionDraft:
        return replace(self, max_fee=_check_positive_int(max_fee, "max fee"))

    def leg_sums(self) -> dict[AssetRef, int]:
        """Net delta per asset moved by this draft."""
        sums: dict[AssetRef, int] = {}
        asset = self.asset or NATIVE
        for leg in self.legs:
            sums[asset] = sums.get(asset, 0) + leg.delta
        return sums

    def body(self) -> dict[str, Any]:
        """Kind-specific part of the canonical encoding."""
        if self.kind is TransactionKind.CRYPTO_TRANSFER:
            return {
                "asset": str(self.asset or NATIVE),
                "transfers": [{"account": l.party, "amount": l.delta} for l in self.legs],
            }
        if self.kind is TransactionKind.TOKEN_CREATE:
            t = self.token
            return {
                "name": t.name,
                "symbol": t.symbol,
                "decimals": t.decimals,
                "initialSupply": t.initial_supply,
                "treasury": t.treasury,
            }
        if self.kind is TransactionKind.TOKEN_ASSOCIATE:
            a = self.association
            return {"account": a.account, "tokenIds": list(a.token_ids)}
        c = self.contract
        if self.kind is TransactionKind.CONTRACT_CREATE:
            return {"bytecode": c.bytecode, "gas": c.gas}
        return {
            "contractId": c.contract_id,
            "gas": c.gas,
            "function": c.function,
            "args": list(c.args),
        }


@dataclass(frozen=True)
class FrozenDraft:
    """A draft locked against mutation and bound to its payer and network."""
    draft: TransactionDraft
    transaction_id: str
    payer: str
    network: str

    def to_dict(self) -> dict[str, Any]:
        d = {
            "transactionId": self.transaction_id,
            "network": self.network,
            "payer": self.payer,
            "type": self.draft.kind.value,
            "maxFee": self.draft.max_fee,
            "memo": self.draft.memo or "",
        }
        d.update(self.draft.body())
        return d

    def canonical_bytes(self) -> bytes:
        return json.dumps(
            self.to_dict(), sort_keys=True, separators=(",", ":"),
        ).encode("utf-8")

    @property
    def transaction_hash(self) -> str:
        return hashlib.sha256(self.canonical_bytes()).hexdigest()


@dataclass(frozen=True)
class SignaturePair:
    public_key: bytes
    signature: bytes


@dataclass(frozen=True)
class SignedTransaction:
    """A frozen draft plus an append-only list of signatures."""
    frozen: FrozenDraft
    signatures: tuple[SignaturePair, ...] = ()

    @property
    def transaction_id(self) -> str:
        return self.frozen.transaction_id

    def signed_by(self, public_key: bytes) -> bool:
        return any(s.public_key == public_key for s in self.signatures)

    def with_signature(self, pair: SignaturePair) -> SignedTransaction:
        # One signature per key; a repeat from the same key changes nothing
        if self.signed_by(pair.public_key):
            return self
        return replace(self, signatures=self.signatures + (pair,))

    def to_bytes(self) -> bytes:
        """Wire payload handed to the submission endpoint."""
        return json.dumps(
            {
                "body": self.frozen.canonical_bytes().decode("utf-8"),
                "sigMap": [
                    {"pubKey": s.public_key.hex(), "signature": s.signature.hex()}
                    for s in self.signatures
                ],
            },
            separators=(",", ":"),
        ).encode("utf-8")


# ===================================================================
#  Input checks
# ===================================================================

def _check_memo(memo: str | None) -> str | None:
    if memo is None or memo == "":
        return None
    if not isinstance(memo, str):
        raise ValidationError("memo must be a string")
    if len(memo.encode("utf-8")) > MAX_MEMO_BYTES:
        raise ValidationError(f"memo exceeds {MAX_MEMO_BYTES} bytes")
    return memo


def _check_positive_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{name} must be a positive integer")
    return value


def _check_non_negative_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer")
    return value


def _token_units(amount) -> int:
    """Raw token amount: an integer, given as int or integral text."""
    d = to_decimal(amount)
    if d != d.to_integral_value():
        raise ValidationError("token amount must be an integer in raw units")
    return int(d)


# ===================================================================
#  Builders
# ===================================================================

def build_transfer(
    asset: AssetRef | str | None,
    from_account: str,
    to_account: str,
    amount,
    memo: str | None = None,
) -> TransactionDraft:
    """
    Build a two-leg transfer of *amount* from *from_account* to *to_account*.

    Native amounts are display units (8 decimals); token amounts are raw
    integer units.
    """
    asset_ref = AssetRef.parse(asset)
    sender = normalize_entity_id(from_account, "sender account id")
    receiver = normalize_entity_id(to_account, "recipient account id")
    if sender == receiver:
        raise ValidationError("sender and recipient must differ")
    if to_decimal(amount) <= 0:
        raise ValidationError("amount must be positive")

    units = hbar_to_tinybars(amount) if asset_ref.is_native else _token_units(amount)
    if units <= 0:
        raise ValidationError("amount must be positive")

    return TransactionDraft(
        kind=TransactionKind.CRYPTO_TRANSFER,
        legs=(TransferLeg(sender, -units), TransferLeg(receiver, units)),
        asset=asset_ref,
        memo=_check_memo(memo),
    )


def build_token_create(
    name: str,
    symbol: str,
    decimals: int,
    initial_supply: int,
    treasury: str,
) -> TransactionDraft:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("token name is required")
    if not isinstance(symbol, str) or not symbol.strip():
        raise ValidationError("token symbol is required")
    token = TokenSpec(
        name=name.strip(),
        symbol=symbol.strip(),
        decimals=_check_non_negative_int(decimals, "decimals"),
        initial_supply=_check_non_negative_int(initial_supply, "initial supply"),
        treasury=normalize_entity_id(treasury, "treasury account id"),
    )
    return TransactionDraft(
        kind=TransactionKind.TOKEN_CREATE,
        token=token,
        max_fee=TOKEN_CREATE_MAX_FEE,
    )


def build_token_associate(account: str, token_ids: list[str] | tuple[str, ...]) -> TransactionDraft:
    if not token_ids:
        raise ValidationError("at least one token id is required")
    ids = tuple(normalize_entity_id(t, "token id") for t in token_ids)
    if len(set(ids)) != len(ids):
        raise ValidationError("duplicate token ids")
    return TransactionDraft(
        kind=TransactionKind.TOKEN_ASSOCIATE,
        association=TokenAssociation(normalize_entity_id(account), ids),
    )


def build_contract_create(bytecode: str, gas: int) -> TransactionDraft:
    code = bytecode.strip().removeprefix("0x") if isinstance(bytecode, str) else ""
    try:
        bytes.fromhex(code)
    except ValueError:
        raise ValidationError("bytecode must be hex") from None
    if not code:
        raise ValidationError("bytecode is required")
    return TransactionDraft(
        kind=TransactionKind.CONTRACT_CREATE,
        contract=ContractSpec(gas=_check_positive_int(gas, "gas"), bytecode=code.lower()),
        max_fee=CONTRACT_MAX_FEE,
    )


def build_contract_execute(
    contract_id: str,
    gas: int,
    function: str,
    args: list[Any] | tuple[Any, ...] = (),
) -> TransactionDraft:
    if not isinstance(function, str) or not function.isidentifier():
        raise ValidationError("function must be an identifier")
    return TransactionDraft(
        kind=TransactionKind.CONTRACT_EXECUTE,
        contract=ContractSpec(
            gas=_check_positive_int(gas, "gas"),
            contract_id=normalize_entity_id(contract_id, "contract id"),
            function=function,
            args=tuple(args),
        ),
        max_fee=DEFAULT_MAX_FEE * 2,
    )


# ===================================================================
#  Freezing
# ===================================================================

def validate_balanced(draft: TransactionDraft) -> None:
    """Raise ValidationError unless every asset's legs net to zero."""
    for asset, total in draft.leg_sums().items():
        if total != 0:
            raise ValidationError(f"Unbalanced transfer for {asset}: net {total}")
    for leg in draft.legs:
        if not is_entity_id(leg.party):
            raise ValidationError(f"Invalid account id in transfer: {leg.party!r}")


def make_transaction_id(payer: str, valid_start_ns: int | None = None) -> str:
    ns = time.time_ns() if valid_start_ns is None else valid_start_ns
    seconds, nanos = divmod(ns, 1_000_000_000)
    return f"{payer}@{seconds}.{nanos:09d}"


def freeze(
    draft: TransactionDraft | FrozenDraft,
    client: NetworkClient,
    *,
    valid_start_ns: int | None = None,
) -> FrozenDraft:
    """
    Lock *draft* against mutation and bind it to *client*'s payer and network.

    Freezing an already frozen draft returns it unchanged.
    """
    if isinstance(draft, FrozenDraft):
        return draft
    if not isinstance(draft, TransactionDraft):
        raise PreconditionError("only transaction drafts can be frozen")

    validate_balanced(draft)
    if draft.kind is TransactionKind.TOKEN_CREATE and draft.token.treasury != client.account_id:
        raise ValidationError("token treasury must be the signing account")

    return FrozenDraft(
        draft=draft,
        transaction_id=make_transaction_id(client.account_id, valid_start_ns),
        payer=client.account_id,
        network=client.network,
    )
