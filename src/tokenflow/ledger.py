import logging
from typing import Protocol, runtime_checkable

from tokenflow.config import ClientConfig
from tokenflow.errors import LedgerStatusError
from tokenflow.keys import PrivateKey
from tokenflow.models import AccountBalance, AccountIdentity, FrozenIntent, Receipt, TransactionIntent

log = logging.getLogger("tokenflow.ledger")

__all__ = ["LedgerClient", "LedgerStatusError", "connect"]


@runtime_checkable
class LedgerClient(Protocol):
    """What the engine needs from a ledger. Nothing else touches the network."""

    operator: AccountIdentity | None
    max_batch_size: int
    # True when receipt() only returns once the outcome is final, so callers must not cut it short
    waits_for_finality: bool

    def is_valid_account_id(self, account_id: str) -> bool: ...
    async def freeze(self, intent: TransactionIntent) -> FrozenIntent: ...
    async def sign(self, frozen: FrozenIntent, key: PrivateKey) -> None: ...
    async def submit(self, frozen: FrozenIntent) -> str: ...
    async def receipt(self, tx_id: str) -> Receipt: ...
    async def balance(self, account_id: str) -> AccountBalance: ...
    async def close(self) -> None: ...


def connect(config: ClientConfig) -> LedgerClient:
    """Pick a client from ``config.network``: in-process ledger, local rippled, or testnet."""
    if config.network == "memory" and not config.nodes:
        from tokenflow.memory_ledger import InMemoryLedger
        client = InMemoryLedger.from_config(config)
    else:
        from tokenflow.xrpl_ledger import XrplLedgerClient
        client = XrplLedgerClient.from_config(config)
    log.info("Connected %s (network=%s)", type(client).__name__, config.network)
    return client
