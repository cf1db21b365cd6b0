from typing import Final
from enum import StrEnum


class IntentKind(StrEnum):
    ACCOUNT_CREATE     = "ACCOUNT_CREATE"
    TOKEN_CREATE       = "TOKEN_CREATE"
    TOKEN_MINT         = "TOKEN_MINT"
    TOKEN_ASSOCIATE    = "TOKEN_ASSOCIATE"
    TOKEN_FREEZE       = "TOKEN_FREEZE"
    TOKEN_UNFREEZE     = "TOKEN_UNFREEZE"
    TOKEN_GRANT_KYC    = "TOKEN_GRANT_KYC"
    TOKEN_REVOKE_KYC   = "TOKEN_REVOKE_KYC"
    TOKEN_PAUSE        = "TOKEN_PAUSE"
    TOKEN_UNPAUSE      = "TOKEN_UNPAUSE"
    TOKEN_WIPE         = "TOKEN_WIPE"
    TRANSFER           = "TRANSFER"
    CONTRACT_CREATE    = "CONTRACT_CREATE"


class TokenKind(StrEnum):
    FUNGIBLE     = "FUNGIBLE_COMMON"
    NON_FUNGIBLE = "NON_FUNGIBLE_UNIQUE"


class SupplyType(StrEnum):
    INFINITE = "INFINITE"
    FINITE   = "FINITE"


class WorkflowState(StrEnum):
    DEFINED     = "DEFINED"
    CREATED     = "CREATED"
    MINTED      = "MINTED"
    ASSOCIATED  = "ASSOCIATED"
    TRANSFERRED = "TRANSFERRED"
    FAILED      = "FAILED"


SUCCESS: Final = "SUCCESS"
TIMEOUT: Final = "TIMEOUT"
UNAVAILABLE: Final = "UNAVAILABLE"
NOT_SUPPORTED: Final = "NOT_SUPPORTED"
# Submitted but neither validated nor provably expired. Never retried.
OUTCOME_UNKNOWN: Final = "OUTCOME_UNKNOWN"

# Statuses that mean "try again later", not "this intent is wrong".
DEFAULT_TRANSIENT_STATUSES: Final = frozenset({
    "BUSY",
    "PLATFORM_TRANSACTION_NOT_CREATED",
    "PLATFORM_NOT_ACTIVE",
    UNAVAILABLE,
    TIMEOUT,
    # rippled
    "tooBusy",
    "slowDown",
    "noCurrent",
    "noNetwork",
    "telCAN_NOT_QUEUE",
    "telCAN_NOT_QUEUE_BALANCE",
    "telCAN_NOT_QUEUE_FULL",
    "telCAN_NOT_QUEUE_FEE",
    "telINSUF_FEE_P",
})

# Ledger-side limits
MAX_BATCH_SIZE = 10          # NFT metadata entries per mint transaction
XRPL_MAX_BATCH_SIZE = 8      # inner transactions per XRPL Batch
MAX_METADATA_BYTES = 100

# Native unit is 10^8 base units (1 unit == 100_000_000)
NATIVE_UNIT = 100_000_000
DEFAULT_FUNDING_AMOUNT = NATIVE_UNIT
DEFAULT_MAX_TRANSACTION_FEE = 100 * NATIVE_UNIT
DEFAULT_MAX_QUERY_PAYMENT = 50 * NATIVE_UNIT
MAX_QUERY_PAYMENT_EXCEEDED: Final = "MAX_QUERY_PAYMENT_EXCEEDED"

# Retry defaults
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF = 5.0
REQUEST_TIMEOUT = 300.0
RPC_TIMEOUT = 2.0
HORIZON = 15  # XRPL transactions expire if not validated within 15 ledgers

LOCAL_RIPPLED: Final = "http://localhost:5005"
TESTNET_RIPPLED: Final = "https://s.altnet.rippletest.net:51234"

__all__ = [
    "DEFAULT_BACKOFF",
    "DEFAULT_FUNDING_AMOUNT",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_MAX_QUERY_PAYMENT",
    "DEFAULT_MAX_TRANSACTION_FEE",
    "DEFAULT_TRANSIENT_STATUSES",
    "HORIZON",
    "LOCAL_RIPPLED",
    "MAX_BATCH_SIZE",
    "MAX_METADATA_BYTES",
    "MAX_QUERY_PAYMENT_EXCEEDED",
    "NATIVE_UNIT",
    "NOT_SUPPORTED",
    "OUTCOME_UNKNOWN",
    "REQUEST_TIMEOUT",
    "RPC_TIMEOUT",
    "SUCCESS",
    "TESTNET_RIPPLED",
    "TIMEOUT",
    "UNAVAILABLE",
    "XRPL_MAX_BATCH_SIZE",

    ######
    "IntentKind",
    "SupplyType",
    "TokenKind",
    "WorkflowState",
]
