"""Domain data structures shared by the engine and the ledger clients."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Iterator, Mapping, Sequence

import tokenflow.constants as C
from tokenflow.constants import IntentKind, SupplyType, TokenKind
from tokenflow.keys import PrivateKey


@dataclass(frozen=True, slots=True)
class AccountIdentity:
    id: str
    private_key: PrivateKey

    @property
    def public_key(self) -> str:
        return self.private_key.public_key

    def __repr__(self) -> str:
        return f"AccountIdentity(id={self.id!r}, public_key={self.public_key})"


@dataclass(frozen=True, slots=True)
class TokenDefinition:
    """Parameters of a token class. Keys are referenced by public key."""

    name: str
    symbol: str
    treasury: str
    kind: TokenKind = TokenKind.FUNGIBLE
    decimals: int = 0
    initial_supply: int = 0
    supply_type: SupplyType = SupplyType.INFINITE
    max_supply: int | None = None
    supply_key: str | None = None
    admin_key: str | None = None
    freeze_key: str | None = None
    kyc_key: str | None = None
    pause_key: str | None = None
    wipe_key: str | None = None
    memo: str = ""

    def __post_init__(self):
        object.__setattr__(self, "kind", TokenKind(self.kind))
        object.__setattr__(self, "supply_type", SupplyType(self.supply_type))
        if not self.name or not self.symbol:
            raise ValueError("token name and symbol are required")
        if self.decimals < 0 or self.initial_supply < 0:
            raise ValueError("decimals and initial_supply must be non-negative")
        if self.supply_type is SupplyType.FINITE:
            if self.max_supply is None or self.max_supply <= 0:
                raise ValueError("a FINITE token needs a positive max_supply")
            if self.initial_supply > self.max_supply:
                raise ValueError(f"initial_supply {self.initial_supply} exceeds max_supply {self.max_supply}")
        elif self.max_supply is not None:
            raise ValueError("max_supply is only valid for FINITE tokens")
        if self.kind is TokenKind.NON_FUNGIBLE and (self.decimals or self.initial_supply):
            raise ValueError("non-fungible tokens have decimals == 0 and initial_supply == 0")

    @property
    def is_nft(self) -> bool:
        return self.kind is TokenKind.NON_FUNGIBLE

    def to_payload(self) -> dict[str, Any]:
        return {k: (str(v) if isinstance(v, (TokenKind, SupplyType)) else v) for k, v in asdict(self).items()}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> TokenDefinition:
        return cls(**payload)


@dataclass(frozen=True, slots=True)
class MintBatch:
    """One mint call worth of NFT metadata. Never larger than its ceiling."""

    entries: tuple[bytes, ...]
    ceiling: int = C.MAX_BATCH_SIZE

    def __post_init__(self):
        if not self.entries:
            raise ValueError("a mint batch needs at least one entry")
        if len(self.entries) > self.ceiling:
            raise ValueError(f"batch of {len(self.entries)} exceeds ceiling {self.ceiling}")

    def __len__(self) -> int:
        return len(self.entries)

    @classmethod
    def chunk(cls, metadata: Sequence[bytes], ceiling: int) -> Iterator[MintBatch]:
        """Contiguous, in-order chunks of at most ``ceiling`` entries."""
        if ceiling < 1:
            raise ValueError("ceiling must be >= 1")
        for start in range(0, len(metadata), ceiling):
            yield cls(tuple(metadata[start:start + ceiling]), ceiling)

    @staticmethod
    def count(n: int, ceiling: int) -> int:
        return math.ceil(n / ceiling)


@dataclass(frozen=True, slots=True)
class TransactionIntent:
    """A not-yet-bound request. ``signers`` names the accounts whose keys must sign."""

    kind: IntentKind
    payload: Mapping[str, Any]
    signers: tuple[str, ...] = ()


@dataclass(slots=True)
class FrozenIntent:
    """An intent bound to one client: fixed transaction id and body, collecting signatures.

    ``local_receipt`` is set when the client settles the intent without a ledger round trip.
    """

    intent: TransactionIntent
    tx_id: str | None
    body: bytes
    signatures: dict[str, str] = field(default_factory=dict)
    tx_json: dict[str, Any] | None = None
    context: dict[str, Any] = field(default_factory=dict)
    local_receipt: Receipt | None = None

    @property
    def kind(self) -> IntentKind:
        return self.intent.kind


@dataclass(frozen=True, slots=True)
class Receipt:
    status: str
    tx_id: str | None = None
    account_id: str | None = None
    token_id: str | None = None
    serials: tuple[int, ...] = ()
    contract_id: str | None = None
    total_supply: int | None = None

    @property
    def ok(self) -> bool:
        return self.status == C.SUCCESS


@dataclass(frozen=True, slots=True)
class TransactionOutcome:
    receipt: Receipt
    attempts: int
    elapsed: float = 0.0

    @property
    def status(self) -> str:
        return self.receipt.status


@dataclass(frozen=True, slots=True)
class AccountBalance:
    account_id: str
    native: int
    tokens: Mapping[str, int] = field(default_factory=dict)

    def token(self, token_id: str) -> int:
        return self.tokens.get(token_id, 0)


def is_transient(status: str) -> bool:
    return status in C.DEFAULT_TRANSIENT_STATUSES


def status_in(codes) -> Callable[[str], bool]:
    """Retry predicate that accepts exactly ``codes``."""
    codes = frozenset(codes)

    def retryable(status: str) -> bool:
        return status in codes

    return retryable


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = C.DEFAULT_MAX_ATTEMPTS
    backoff_delay: float = C.DEFAULT_BACKOFF
    timeout: float = 30.0
    retryable: Callable[[str], bool] = is_transient

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff_delay < 0:
            raise ValueError(f"backoff_delay must be >= 0, got {self.backoff_delay}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")

    @classmethod
    def from_config(cls, config) -> RetryPolicy:
        return cls(max_attempts=config.max_attempts, backoff_delay=config.backoff, timeout=config.timeout)
