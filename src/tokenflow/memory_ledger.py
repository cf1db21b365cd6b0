"""In-process ledger.

Implements the LedgerClient protocol against state held in memory: accounts
with native balances, fungible and non-fungible tokens, associations,
freeze/KYC/pause flags and contracts. Signatures are real and checked.

Faults can be injected per intent kind to exercise retry paths:

    ledger.inject("BUSY", kind=IntentKind.TOKEN_MINT, times=2)
    ledger.hang(kind=IntentKind.TRANSFER)
"""

import asyncio
import itertools
import json
import logging
import re
import time
from collections import Counter, deque
from dataclasses import dataclass, field

import tokenflow.constants as C
from tokenflow.config import ClientConfig
from tokenflow.constants import IntentKind, SupplyType, TokenKind
from tokenflow.errors import ConfigurationError, LedgerStatusError
from tokenflow.keys import PrivateKey, generate_key, verify
from tokenflow.provisioning import resolve_operator
from tokenflow.models import (
    AccountBalance,
    AccountIdentity,
    FrozenIntent,
    Receipt,
    TokenDefinition,
    TransactionIntent,
)

log = logging.getLogger("tokenflow.memory")

ACCOUNT_ID = re.compile(r"^\d+\.\d+\.\d+$")
OPERATOR_BALANCE = 50_000 * C.NATIVE_UNIT


@dataclass(slots=True)
class _Account:
    id: str
    public_key: str
    balance: int = 0


@dataclass(slots=True)
class _Holding:
    balance: int = 0
    frozen: bool = False
    kyc: bool = True


@dataclass(slots=True)
class _Token:
    id: str
    definition: TokenDefinition
    total_supply: int = 0
    paused: bool = False
    next_serial: int = 1
    owners: dict[int, str] = field(default_factory=dict)  # NFT serial -> account

    @property
    def is_nft(self) -> bool:
        return self.definition.kind is TokenKind.NON_FUNGIBLE


@dataclass(slots=True)
class _Fault:
    status: str | None  # None means hang
    kind: IntentKind | None
    stage: str
    remaining: int
    skip: int = 0


class _Rejected(Exception):
    def __init__(self, status: str):
        self.status = status


class InMemoryLedger:
    """A complete ledger living in the current process."""

    waits_for_finality = False

    def __init__(
        self,
        operator: AccountIdentity | None = None,
        *,
        max_batch_size: int = C.MAX_BATCH_SIZE,
        transaction_fee: int = 0,
        max_transaction_fee: int = C.DEFAULT_MAX_TRANSACTION_FEE,
        query_fee: int = 0,
        max_query_payment: int = C.DEFAULT_MAX_QUERY_PAYMENT,
        shard: int = 0,
        realm: int = 0,
    ):
        self.max_batch_size = max_batch_size
        self.transaction_fee = transaction_fee
        self.max_transaction_fee = max_transaction_fee
        self.query_fee = query_fee
        self.max_query_payment = max_query_payment
        self._prefix = f"{shard}.{realm}."
        self._ids = itertools.count(1001)
        self._accounts: dict[str, _Account] = {}
        self._tokens: dict[str, _Token] = {}
        self._holdings: dict[tuple[str, str], _Holding] = {}
        self._contracts: dict[str, bytes] = {}
        self._receipts: dict[str, Receipt] = {}
        self._faults: deque[_Fault] = deque()
        self._lock = asyncio.Lock()
        self._tx_seq = itertools.count(1)
        self.submitted: list[FrozenIntent] = []
        self.stats: Counter = Counter()

        if operator is None:
            operator = AccountIdentity(id=f"{self._prefix}2", private_key=generate_key())
        self.operator = operator
        self._accounts[operator.id] = _Account(operator.id, operator.public_key, OPERATOR_BALANCE)

    @classmethod
    def from_config(cls, config: ClientConfig) -> "InMemoryLedger":
        operator = None
        if config.operator_id or config.operator_key:
            operator = resolve_operator(config)
            if not ACCOUNT_ID.match(operator.id):
                raise ConfigurationError(f"operator id {operator.id!r} is not shard.realm.num")
        return cls(
            operator,
            max_batch_size=config.max_batch_size,
            max_transaction_fee=config.max_transaction_fee,
            max_query_payment=config.max_query_payment,
        )

    # ------------------------------------------------------------------
    # Fault injection and introspection
    # ------------------------------------------------------------------
    def inject(
        self,
        status: str,
        *,
        kind: IntentKind | None = None,
        times: int = 1,
        stage: str = "precheck",
        skip: int = 0,
    ) -> None:
        """Fail ``times`` matching submissions with ``status``, after letting ``skip`` through.

        ``precheck`` faults raise from submit(). ``receipt`` faults accept the
        submission and return a failed receipt without applying it.
        """
        if stage not in ("precheck", "receipt"):
            raise ValueError(f"unknown fault stage {stage!r}")
        self._faults.append(_Fault(status, kind, stage, times, skip))

    def hang(self, *, kind: IntentKind | None = None, times: int = 1) -> None:
        """Make the next ``times`` matching submissions never return."""
        self._faults.append(_Fault(None, kind, "precheck", times))

    def clear_faults(self) -> None:
        self._faults.clear()

    def submissions(self, kind: IntentKind | None = None) -> list[FrozenIntent]:
        return [f for f in self.submitted if kind is None or f.kind == kind]

    def token_supply(self, token_id: str) -> int:
        return self._tokens[token_id].total_supply

    def nft_owner(self, token_id: str, serial: int) -> str | None:
        return self._tokens[token_id].owners.get(serial)

    def _take_fault(self, kind: IntentKind) -> _Fault | None:
        for fault in self._faults:
            if fault.kind is None or fault.kind == kind:
                if fault.skip:
                    fault.skip -= 1
                    return None
                fault.remaining -= 1
                if fault.remaining <= 0:
                    self._faults.remove(fault)
                return fault
        return None

    # ------------------------------------------------------------------
    # LedgerClient
    # ------------------------------------------------------------------
    def is_valid_account_id(self, account_id: str) -> bool:
        return bool(account_id) and bool(ACCOUNT_ID.match(account_id))

    async def freeze(self, intent: TransactionIntent) -> FrozenIntent:
        if not isinstance(intent, TransactionIntent):
            raise TypeError(f"expected a TransactionIntent, got {type(intent).__name__}")
        now = time.time_ns()
        tx_id = f"{self.operator.id}@{now // 1_000_000_000}.{now % 1_000_000_000:09d}-{next(self._tx_seq)}"
        body = json.dumps(
            {"tx_id": tx_id, "kind": str(intent.kind), "payload": intent.payload, "fee": self.max_transaction_fee},
            sort_keys=True,
        ).encode()
        frozen = FrozenIntent(intent=intent, tx_id=tx_id, body=body)
        # operator pays for and co-signs everything
        frozen.signatures[self.operator.public_key] = self.operator.private_key.sign(body)
        return frozen

    async def sign(self, frozen: FrozenIntent, key: PrivateKey) -> None:
        frozen.signatures[key.public_key] = key.sign(frozen.body)

    async def submit(self, frozen: FrozenIntent) -> str:
        self.submitted.append(frozen)
        self.stats[f"submit.{frozen.kind}"] += 1
        fault = self._take_fault(frozen.kind)
        if fault is not None and fault.status is None:
            log.debug("Hanging %s", frozen.tx_id)
            await asyncio.Event().wait()
        if fault is not None and fault.stage == "precheck":
            log.debug("Injected precheck %s for %s", fault.status, frozen.tx_id)
            raise LedgerStatusError(fault.status)

        async with self._lock:
            if frozen.tx_id in self._receipts:
                raise LedgerStatusError("DUPLICATE_TRANSACTION")
            self._precheck(frozen)
            if fault is not None:
                receipt = Receipt(status=fault.status, tx_id=frozen.tx_id)
            else:
                receipt = self._execute(frozen)
            self._receipts[frozen.tx_id] = receipt
        log.debug("%s %s -> %s", frozen.kind, frozen.tx_id, receipt.status)
        return frozen.tx_id

    async def receipt(self, tx_id: str) -> Receipt:
        try:
            return self._receipts[tx_id]
        except KeyError:
            raise LedgerStatusError("RECEIPT_NOT_FOUND") from None

    async def balance(self, account_id: str) -> AccountBalance:
        """Balance query, paid for by the operator. Refused when its cost exceeds ``max_query_payment``."""
        if self.query_fee > self.max_query_payment:
            raise LedgerStatusError(C.MAX_QUERY_PAYMENT_EXCEEDED, f"query costs {self.query_fee}, cap is {self.max_query_payment}")
        account = self._accounts.get(account_id)
        if account is None:
            raise LedgerStatusError("INVALID_ACCOUNT_ID")
        self._accounts[self.operator.id].balance -= self.query_fee
        tokens = {tid: h.balance for (tid, aid), h in self._holdings.items() if aid == account_id}
        return AccountBalance(account_id=account_id, native=account.balance, tokens=tokens)

    async def close(self) -> None:
        pass

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def _precheck(self, frozen: FrozenIntent) -> None:
        if self.transaction_fee > self.max_transaction_fee:
            raise LedgerStatusError("INSUFFICIENT_TX_FEE")
        for public_key, signature in frozen.signatures.items():
            if not verify(frozen.body, signature, public_key):
                raise LedgerStatusError("INVALID_SIGNATURE")
        if self.operator.public_key not in frozen.signatures:
            raise LedgerStatusError("INVALID_SIGNATURE")
        payload = frozen.intent.payload
        if frozen.kind == IntentKind.TOKEN_MINT and len(payload.get("metadata", ())) > self.max_batch_size:
            raise LedgerStatusError("BATCH_SIZE_LIMIT_EXCEEDED")

    def _require(self, frozen: FrozenIntent, *public_keys: str | None) -> None:
        for public_key in public_keys:
            if public_key and public_key not in frozen.signatures:
                raise _Rejected("INVALID_SIGNATURE")

    def _account(self, account_id: str | None, status: str = "INVALID_ACCOUNT_ID") -> _Account:
        account = self._accounts.get(account_id or "")
        if account is None:
            raise _Rejected(status)
        return account

    def _token(self, token_id: str | None) -> _Token:
        token = self._tokens.get(token_id or "")
        if token is None:
            raise _Rejected("INVALID_TOKEN_ID")
        return token

    def _holding(self, token: _Token, account_id: str) -> _Holding:
        holding = self._holdings.get((token.id, account_id))
        if holding is None:
            raise _Rejected("TOKEN_NOT_ASSOCIATED_TO_ACCOUNT")
        return holding

    def _new_id(self) -> str:
        return f"{self._prefix}{next(self._ids)}"

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def _execute(self, frozen: FrozenIntent) -> Receipt:
        handler = getattr(self, f"_apply_{frozen.kind.lower()}")
        try:
            receipt = handler(frozen, frozen.intent.payload)
        except _Rejected as r:
            return Receipt(status=r.status, tx_id=frozen.tx_id)
        self._accounts[self.operator.id].balance -= self.transaction_fee
        return receipt

    def _apply_account_create(self, frozen, p) -> Receipt:
        payer = self._accounts[self.operator.id]
        amount = p["initial_balance"]
        if payer.balance < amount + self.transaction_fee:
            raise _Rejected("INSUFFICIENT_PAYER_BALANCE")
        account = _Account(self._new_id(), p["public_key"], amount)
        payer.balance -= amount
        self._accounts[account.id] = account
        return Receipt(status=C.SUCCESS, tx_id=frozen.tx_id, account_id=account.id)

    def _apply_token_create(self, frozen, p) -> Receipt:
        definition = TokenDefinition.from_payload(p)
        treasury = self._account(definition.treasury, "INVALID_TREASURY_ACCOUNT_FOR_TOKEN")
        self._require(frozen, treasury.public_key, definition.admin_key)
        if definition.is_nft and not definition.supply_key:
            raise _Rejected("TOKEN_HAS_NO_SUPPLY_KEY")
        token = _Token(self._new_id(), definition, total_supply=definition.initial_supply)
        self._tokens[token.id] = token
        self._holdings[(token.id, treasury.id)] = _Holding(balance=definition.initial_supply)
        return Receipt(status=C.SUCCESS, tx_id=frozen.tx_id, token_id=token.id, total_supply=token.total_supply)

    def _apply_token_mint(self, frozen, p) -> Receipt:
        token = self._token(p["token_id"])
        d = token.definition
        if not d.supply_key:
            raise _Rejected("TOKEN_HAS_NO_SUPPLY_KEY")
        self._require(frozen, d.supply_key)
        if token.paused:
            raise _Rejected("TOKEN_IS_PAUSED")
        treasury = self._holdings[(token.id, d.treasury)]

        if token.is_nft:
            metadata = [bytes.fromhex(m) for m in p.get("metadata", ())]
            if not metadata:
                raise _Rejected("INVALID_TOKEN_MINT_METADATA")
            if any(len(m) > C.MAX_METADATA_BYTES for m in metadata):
                raise _Rejected("METADATA_TOO_LONG")
            added = len(metadata)
        else:
            if "metadata" in p:
                raise _Rejected("INVALID_TOKEN_MINT_METADATA")
            added = p.get("amount", 0)
            if added <= 0:
                raise _Rejected("INVALID_TOKEN_MINT_AMOUNT")

        if d.supply_type is SupplyType.FINITE and token.total_supply + added > d.max_supply:
            raise _Rejected("TOKEN_MAX_SUPPLY_REACHED")

        serials: tuple[int, ...] = ()
        if token.is_nft:
            serials = tuple(range(token.next_serial, token.next_serial + added))
            token.next_serial += added
            for serial in serials:
                token.owners[serial] = d.treasury
        token.total_supply += added
        treasury.balance += added
        return Receipt(status=C.SUCCESS, tx_id=frozen.tx_id, token_id=token.id, serials=serials, total_supply=token.total_supply)

    def _apply_token_associate(self, frozen, p) -> Receipt:
        account = self._account(p["account"])
        self._require(frozen, account.public_key)
        tokens = [self._token(tid) for tid in p["token_ids"]]
        if any((t.id, account.id) in self._holdings for t in tokens):
            raise _Rejected("TOKEN_ALREADY_ASSOCIATED_TO_ACCOUNT")
        for token in tokens:
            self._holdings[(token.id, account.id)] = _Holding(kyc=not token.definition.kyc_key)
        return Receipt(status=C.SUCCESS, tx_id=frozen.tx_id, account_id=account.id)

    def _apply_transfer(self, frozen, p) -> Receipt:
        sender = self._account(p["sender"])
        receiver = self._account(p["receiver"])
        self._require(frozen, sender.public_key)

        if p.get("token_id") is None:
            amount = p["amount"]
            if amount <= 0:
                raise _Rejected("INVALID_ACCOUNT_AMOUNTS")
            if sender.balance < amount:
                raise _Rejected("INSUFFICIENT_ACCOUNT_BALANCE")
            sender.balance -= amount
            receiver.balance += amount
            return Receipt(status=C.SUCCESS, tx_id=frozen.tx_id)

        token = self._token(p["token_id"])
        if token.paused:
            raise _Rejected("TOKEN_IS_PAUSED")
        src = self._holding(token, sender.id)
        dst = self._holding(token, receiver.id)
        for holding in (src, dst):
            if holding.frozen:
                raise _Rejected("ACCOUNT_FROZEN_FOR_TOKEN")
            if not holding.kyc:
                raise _Rejected("ACCOUNT_KYC_NOT_GRANTED_FOR_TOKEN")

        serials = tuple(p.get("serials", ()))
        if token.is_nft:
            if not serials:
                raise _Rejected("INVALID_NFT_ID")
            for serial in serials:
                owner = token.owners.get(serial)
                if owner is None:
                    raise _Rejected("INVALID_NFT_ID")
                if owner != sender.id:
                    raise _Rejected("SENDER_DOES_NOT_OWN_NFT_SERIAL_NO")
            for serial in serials:
                token.owners[serial] = receiver.id
            amount = len(serials)
        else:
            if serials:
                raise _Rejected("ACCOUNT_AMOUNT_TRANSFERS_ONLY_ALLOWED_FOR_FUNGIBLE_COMMON")
            amount = p["amount"]
            if amount <= 0:
                raise _Rejected("INVALID_ACCOUNT_AMOUNTS")
            if src.balance < amount:
                raise _Rejected("INSUFFICIENT_TOKEN_BALANCE")
        src.balance -= amount
        dst.balance += amount
        return Receipt(status=C.SUCCESS, tx_id=frozen.tx_id, token_id=token.id, serials=serials)

    def _holder_admin(self, frozen, p, key_field: str, missing: str) -> tuple[_Token, _Holding]:
        token = self._token(p["token_id"])
        key = getattr(token.definition, key_field)
        if not key:
            raise _Rejected(missing)
        self._require(frozen, key)
        self._account(p["account"])
        return token, self._holding(token, p["account"])

    def _apply_token_freeze(self, frozen, p) -> Receipt:
        _, holding = self._holder_admin(frozen, p, "freeze_key", "TOKEN_HAS_NO_FREEZE_KEY")
        holding.frozen = True
        return Receipt(status=C.SUCCESS, tx_id=frozen.tx_id)

    def _apply_token_unfreeze(self, frozen, p) -> Receipt:
        _, holding = self._holder_admin(frozen, p, "freeze_key", "TOKEN_HAS_NO_FREEZE_KEY")
        holding.frozen = False
        return Receipt(status=C.SUCCESS, tx_id=frozen.tx_id)

    def _apply_token_grant_kyc(self, frozen, p) -> Receipt:
        _, holding = self._holder_admin(frozen, p, "kyc_key", "TOKEN_HAS_NO_KYC_KEY")
        holding.kyc = True
        return Receipt(status=C.SUCCESS, tx_id=frozen.tx_id)

    def _apply_token_revoke_kyc(self, frozen, p) -> Receipt:
        _, holding = self._holder_admin(frozen, p, "kyc_key", "TOKEN_HAS_NO_KYC_KEY")
        holding.kyc = False
        return Receipt(status=C.SUCCESS, tx_id=frozen.tx_id)

    def _set_paused(self, frozen, p, paused: bool) -> Receipt:
        token = self._token(p["token_id"])
        if not token.definition.pause_key:
            raise _Rejected("TOKEN_HAS_NO_PAUSE_KEY")
        self._require(frozen, token.definition.pause_key)
        token.paused = paused
        return Receipt(status=C.SUCCESS, tx_id=frozen.tx_id, token_id=token.id)

    def _apply_token_pause(self, frozen, p) -> Receipt:
        return self._set_paused(frozen, p, True)

    def _apply_token_unpause(self, frozen, p) -> Receipt:
        return self._set_paused(frozen, p, False)

    def _apply_token_wipe(self, frozen, p) -> Receipt:
        token, holding = self._holder_admin(frozen, p, "wipe_key", "TOKEN_HAS_NO_WIPE_KEY")
        if p["account"] == token.definition.treasury:
            raise _Rejected("CANNOT_WIPE_TOKEN_TREASURY_ACCOUNT")
        serials = tuple(p.get("serials", ()))
        if token.is_nft:
            if any(token.owners.get(s) != p["account"] for s in serials) or not serials:
                raise _Rejected("ACCOUNT_DOES_NOT_OWN_WIPED_NFT")
            for serial in serials:
                del token.owners[serial]
            amount = len(serials)
        else:
            amount = p.get("amount", 0)
            if amount <= 0 or serials:
                raise _Rejected("INVALID_WIPING_AMOUNT")
            if holding.balance < amount:
                raise _Rejected("INVALID_WIPING_AMOUNT")
        holding.balance -= amount
        token.total_supply -= amount
        return Receipt(status=C.SUCCESS, tx_id=frozen.tx_id, token_id=token.id, total_supply=token.total_supply)

    def _apply_contract_create(self, frozen, p) -> Receipt:
        bytecode = bytes.fromhex(p["bytecode"])
        if not bytecode:
            raise _Rejected("CONTRACT_BYTECODE_EMPTY")
        if p.get("gas", 0) <= 0:
            raise _Rejected("INSUFFICIENT_GAS")
        self._require(frozen, p.get("admin_key"))
        contract_id = self._new_id()
        self._contracts[contract_id] = bytecode
        return Receipt(status=C.SUCCESS, tx_id=frozen.tx_id, contract_id=contract_id)
