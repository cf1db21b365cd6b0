"""Optional token controls: freeze, KYC, pause and wipe.

Each call is signed by the matching key on the token definition. The ledger
then refuses transfers touching a frozen or non-KYC holding, or a paused token.
"""

import logging
from typing import Sequence

from tokenflow import intents
from tokenflow.executor import RetryExecutor
from tokenflow.keys import PrivateKey
from tokenflow.ledger import LedgerClient
from tokenflow.models import RetryPolicy, TransactionIntent, TransactionOutcome

log = logging.getLogger("tokenflow.admin")


class TokenAdmin:
    def __init__(self, client: LedgerClient, executor: RetryExecutor, policy: RetryPolicy | None = None):
        self.client = client
        self.executor = executor
        self.policy = policy

    async def _run(self, intent: TransactionIntent, key: PrivateKey) -> TransactionOutcome:
        outcome = await self.executor.execute(intent, key, self.client, self.policy)
        log.info("%s %s ok", intent.kind, dict(intent.payload))
        return outcome

    async def freeze(self, token_id: str, account_id: str, freeze_key: PrivateKey) -> TransactionOutcome:
        return await self._run(intents.token_freeze(token_id, account_id), freeze_key)

    async def unfreeze(self, token_id: str, account_id: str, freeze_key: PrivateKey) -> TransactionOutcome:
        return await self._run(intents.token_unfreeze(token_id, account_id), freeze_key)

    async def grant_kyc(self, token_id: str, account_id: str, kyc_key: PrivateKey) -> TransactionOutcome:
        return await self._run(intents.token_grant_kyc(token_id, account_id), kyc_key)

    async def revoke_kyc(self, token_id: str, account_id: str, kyc_key: PrivateKey) -> TransactionOutcome:
        return await self._run(intents.token_revoke_kyc(token_id, account_id), kyc_key)

    async def pause(self, token_id: str, pause_key: PrivateKey) -> TransactionOutcome:
        return await self._run(intents.token_pause(token_id), pause_key)

    async def unpause(self, token_id: str, pause_key: PrivateKey) -> TransactionOutcome:
        return await self._run(intents.token_unpause(token_id), pause_key)

    async def wipe(
        self,
        token_id: str,
        account_id: str,
        wipe_key: PrivateKey,
        *,
        amount: int = 0,
        serials: Sequence[int] = (),
    ) -> TransactionOutcome:
        """Remove units or serials from a holder. Total supply shrinks by the same amount."""
        return await self._run(intents.token_wipe(token_id, account_id, amount=amount, serials=serials), wipe_key)
