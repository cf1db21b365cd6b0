import logging
from typing import Sequence

import tokenflow.constants as C
from tokenflow import intents
from tokenflow.errors import PartialBatchError
from tokenflow.executor import RetryExecutor
from tokenflow.keys import PrivateKey
from tokenflow.ledger import LedgerClient
from tokenflow.models import MintBatch, RetryPolicy

log = logging.getLogger("tokenflow.minting")


class BatchMinter:
    """Mints NFT metadata in contiguous chunks no larger than the batch ceiling.

    Chunks go out one at a time and serials come back in input order. A chunk
    failure stops the job with PartialBatchError; entries before it stay minted.
    """

    def __init__(self, executor: RetryExecutor, max_batch_size: int = C.MAX_BATCH_SIZE):
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        self.executor = executor
        self.max_batch_size = max_batch_size

    def ceiling(self, client: LedgerClient) -> int:
        return min(self.max_batch_size, getattr(client, "max_batch_size", self.max_batch_size))

    async def mint_all(
        self,
        token_id: str,
        metadata: Sequence[bytes],
        supply_key: PrivateKey,
        client: LedgerClient,
        policy: RetryPolicy | None = None,
        *,
        offset: int = 0,
    ) -> list[int]:
        """Mint ``metadata[offset:]``. Returns the new serials in input order."""
        if not 0 <= offset <= len(metadata):
            raise ValueError(f"offset {offset} outside 0..{len(metadata)}")
        ceiling = self.ceiling(client)
        remaining = metadata[offset:]
        total_chunks = MintBatch.count(len(remaining), ceiling)
        log.info("Minting %s entries into %s in %s chunk(s) of <= %s", len(remaining), token_id, total_chunks, ceiling)

        serials: list[int] = []
        done = offset
        for index, batch in enumerate(MintBatch.chunk(remaining, ceiling)):
            intent = intents.token_mint(token_id, metadata=batch.entries)
            try:
                outcome = await self.executor.execute(intent, supply_key, client, policy)
            except Exception as e:
                log.error("Mint chunk %s/%s failed after %s entries: %s", index + 1, total_chunks, done, e)
                raise PartialBatchError(completed=done, serials=serials, chunk_index=index, cause=e) from e
            serials.extend(outcome.receipt.serials)
            done += len(batch)
            log.debug("Chunk %s/%s minted serials %s", index + 1, total_chunks, list(outcome.receipt.serials))
        return serials

    async def mint_fungible(
        self,
        token_id: str,
        amount: int,
        supply_key: PrivateKey,
        client: LedgerClient,
        policy: RetryPolicy | None = None,
    ) -> int | None:
        """Mint ``amount`` fungible units. Returns the total supply the ledger reports."""
        outcome = await self.executor.execute(intents.token_mint(token_id, amount=amount), supply_key, client, policy)
        log.info("Minted %s units of %s, total supply %s", amount, token_id, outcome.receipt.total_supply)
        return outcome.receipt.total_supply
