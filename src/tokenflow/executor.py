import asyncio
import logging
from collections import Counter
from time import perf_counter
from typing import Awaitable, Callable, Sequence, TypeVar

from tokenflow.errors import LedgerStatusError, RejectedIntentError, RetryBudgetExhausted
from tokenflow.keys import PrivateKey
from tokenflow.ledger import LedgerClient
from tokenflow.models import FrozenIntent, Receipt, RetryPolicy, TransactionIntent, TransactionOutcome

log = logging.getLogger("tokenflow.executor")

T = TypeVar("T")


def _as_keys(signer: PrivateKey | Sequence[PrivateKey] | None) -> tuple[PrivateKey, ...]:
    if signer is None:
        return ()
    if isinstance(signer, PrivateKey):
        return (signer,)
    return tuple(signer)


class RetryExecutor:
    """Runs one intent to a receipt: freeze, sign, submit, await receipt.

    Transient statuses and timeouts are retried after ``backoff_delay`` until
    ``max_attempts`` is spent. Anything else fails on the first attempt. Each
    attempt freezes afresh, so a retry never resubmits a stale transaction id.

    Submit and receipt are bounded by ``timeout`` unless the client waits for
    finality itself; such a client returns a transient status only when the
    earlier transaction can no longer apply.
    """

    def __init__(self, policy: RetryPolicy | None = None):
        self.policy = policy or RetryPolicy()
        self._stats: Counter = Counter()

    async def execute(
        self,
        intent: TransactionIntent,
        signer: PrivateKey | Sequence[PrivateKey] | None,
        client: LedgerClient,
        policy: RetryPolicy | None = None,
    ) -> TransactionOutcome:
        if isinstance(intent, FrozenIntent):
            raise TypeError("execute() takes an unfrozen intent; it freezes once per attempt")
        policy = policy or self.policy
        keys = _as_keys(signer)
        started = perf_counter()
        last_error: BaseException | None = None

        for attempt in range(1, policy.max_attempts + 1):
            self._stats["attempts"] += 1
            try:
                receipt = await self._attempt(intent, keys, client, policy)
            except LedgerStatusError as e:
                if not policy.retryable(e.status):
                    self._stats[f"rejected.{e.status}"] += 1
                    log.warning("%s rejected at submit: %s", intent.kind, e.status)
                    raise RejectedIntentError(e.status, intent.kind) from e
                last_error = e
            except TimeoutError as e:
                last_error = e
            else:
                if receipt.ok:
                    self._stats[f"ok.{intent.kind}"] += 1
                    outcome = TransactionOutcome(receipt, attempts=attempt, elapsed=perf_counter() - started)
                    log.debug("%s ok after %s attempt(s) tx=%s", intent.kind, attempt, receipt.tx_id)
                    return outcome
                if not policy.retryable(receipt.status):
                    self._stats[f"rejected.{receipt.status}"] += 1
                    log.warning("%s rejected: %s (tx=%s)", intent.kind, receipt.status, receipt.tx_id)
                    raise RejectedIntentError(receipt.status, intent.kind, receipt)
                last_error = LedgerStatusError(receipt.status)

            reason = getattr(last_error, "status", None) or type(last_error).__name__
            if attempt < policy.max_attempts:
                self._stats["retries"] += 1
                log.info(
                    "%s transient failure %s (attempt %s/%s), retrying in %ss",
                    intent.kind, reason, attempt, policy.max_attempts, policy.backoff_delay,
                )
                await asyncio.sleep(policy.backoff_delay)
            else:
                log.error("%s failed after %s attempts, last: %s", intent.kind, attempt, reason)

        self._stats["exhausted"] += 1
        raise RetryBudgetExhausted(policy.max_attempts, last_error)

    async def _attempt(
        self,
        intent: TransactionIntent,
        keys: tuple[PrivateKey, ...],
        client: LedgerClient,
        policy: RetryPolicy,
    ) -> Receipt:
        t = policy.timeout
        frozen = await asyncio.wait_for(client.freeze(intent), timeout=t)
        if frozen.local_receipt is not None:
            return frozen.local_receipt
        for key in keys:
            await asyncio.wait_for(client.sign(frozen, key), timeout=t)
        if client.waits_for_finality:
            # once the body may have reached the ledger, only the client can tell whether it applied
            t = None
        tx_id = await asyncio.wait_for(client.submit(frozen), timeout=t)
        return await asyncio.wait_for(client.receipt(tx_id), timeout=t)

    async def query(self, fn: Callable[[], Awaitable[T]], policy: RetryPolicy | None = None) -> T:
        """Run a read-only call under the same transient/timeout rules."""
        policy = policy or self.policy
        last_error: BaseException | None = None
        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await asyncio.wait_for(fn(), timeout=policy.timeout)
            except LedgerStatusError as e:
                if not policy.retryable(e.status):
                    raise
                last_error = e
            except TimeoutError as e:
                last_error = e
            log.info("query transient failure %r (attempt %s/%s)", last_error, attempt, policy.max_attempts)
            if attempt < policy.max_attempts:
                await asyncio.sleep(policy.backoff_delay)
        raise RetryBudgetExhausted(policy.max_attempts, last_error)

    async def balance(self, client: LedgerClient, account_id: str, policy: RetryPolicy | None = None):
        return await self.query(lambda: client.balance(account_id), policy)

    def stats(self) -> dict[str, int]:
        return dict(self._stats)
