"""Token lifecycle: create, mint, associate, transfer.

    DEFINED -> CREATED -> MINTED -> ASSOCIATED -> TRANSFERRED

Steps are strictly sequential. A failed step aborts the workflow: the report
keeps the last state reached and names the step that failed, so the caller
can resume from there.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Sequence

from tokenflow import intents
from tokenflow.constants import WorkflowState
from tokenflow.errors import PartialBatchError, WorkflowError
from tokenflow.executor import RetryExecutor
from tokenflow.keys import PrivateKey
from tokenflow.ledger import LedgerClient
from tokenflow.minting import BatchMinter
from tokenflow.models import AccountIdentity, RetryPolicy, TokenDefinition

log = logging.getLogger("tokenflow.orchestrator")

S = WorkflowState


@dataclass(slots=True)
class WorkflowReport:
    definition: TokenDefinition
    workflow_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: WorkflowState = S.DEFINED
    token_id: str | None = None
    serials: list[int] = field(default_factory=list)
    minted_count: int = 0
    total_supply: int | None = None
    transferred_amount: int = 0
    transferred_serials: list[int] = field(default_factory=list)
    receiver: str | None = None
    failed_step: WorkflowState | None = None
    error: str | None = None
    history: list[dict[str, Any]] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.failed_step is not None

    @property
    def outcome(self) -> WorkflowState:
        return S.FAILED if self.failed else self.state

    def advance(self, state: WorkflowState, tx_id: str | None = None, **detail) -> None:
        self.state = state
        self.failed_step = None
        self.error = None
        self.history.append({"state": str(state), "tx_id": tx_id, "at": time.time(), **detail})

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "state": str(self.state),
            "outcome": str(self.outcome),
            "token_id": self.token_id,
            "name": self.definition.name,
            "symbol": self.definition.symbol,
            "kind": str(self.definition.kind),
            "serials": list(self.serials),
            "minted_count": self.minted_count,
            "total_supply": self.total_supply,
            "receiver": self.receiver,
            "transferred_amount": self.transferred_amount,
            "transferred_serials": list(self.transferred_serials),
            "failed_step": str(self.failed_step) if self.failed_step else None,
            "error": self.error,
            "history": list(self.history),
        }


class TokenLifecycleOrchestrator:
    def __init__(
        self,
        client: LedgerClient,
        executor: RetryExecutor | None = None,
        minter: BatchMinter | None = None,
        policy: RetryPolicy | None = None,
    ):
        self.client = client
        self.executor = executor or RetryExecutor(policy)
        self.minter = minter or BatchMinter(self.executor, getattr(client, "max_batch_size", 10))
        self.policy = policy

    def _expect(self, report: WorkflowReport, step: WorkflowState, required: WorkflowState) -> None:
        if report.state != required:
            raise WorkflowError(report, f"{step} needs state {required}, workflow {report.workflow_id} is {report.state}")

    def _fail(self, report: WorkflowReport, step: WorkflowState, exc: BaseException):
        report.failed_step = step
        report.error = f"{type(exc).__name__}: {exc}"
        report.history.append({"state": str(S.FAILED), "step": str(step), "error": report.error, "at": time.time()})
        log.error("Workflow %s failed at %s (last state %s): %s", report.workflow_id, step, report.state, report.error)
        raise WorkflowError(report) from exc

    async def create(
        self,
        report: WorkflowReport,
        treasury: AccountIdentity,
        admin_key: PrivateKey | None = None,
    ) -> WorkflowReport:
        self._expect(report, S.CREATED, S.DEFINED)
        keys = [treasury.private_key] + ([admin_key] if admin_key else [])
        try:
            outcome = await self.executor.execute(intents.token_create(report.definition), keys, self.client, self.policy)
        except Exception as e:
            self._fail(report, S.CREATED, e)
        report.token_id = outcome.receipt.token_id
        report.total_supply = outcome.receipt.total_supply
        report.advance(S.CREATED, outcome.receipt.tx_id, token_id=report.token_id)
        log.info("Created %s %s as %s", report.definition.kind, report.definition.symbol, report.token_id)
        return report

    async def mint(
        self,
        report: WorkflowReport,
        supply_key: PrivateKey,
        *,
        metadata: Sequence[bytes] = (),
        amount: int = 0,
    ) -> WorkflowReport:
        """Mint NFT ``metadata`` (resuming after ``minted_count``) or ``amount`` fungible units."""
        self._expect(report, S.MINTED, S.CREATED)
        d = report.definition
        try:
            if d.is_nft:
                serials = await self.minter.mint_all(
                    report.token_id, metadata, supply_key, self.client, self.policy, offset=report.minted_count
                )
                report.serials.extend(serials)
                report.minted_count = len(metadata)
            elif amount:
                report.total_supply = await self.minter.mint_fungible(report.token_id, amount, supply_key, self.client, self.policy)
                report.minted_count += amount
        except PartialBatchError as e:
            report.serials.extend(e.serials)
            report.minted_count = e.completed
            self._fail(report, S.MINTED, e)
        except Exception as e:
            self._fail(report, S.MINTED, e)
        report.advance(S.MINTED, minted_count=report.minted_count)
        return report

    async def associate(self, report: WorkflowReport, receiver: AccountIdentity) -> WorkflowReport:
        self._expect(report, S.ASSOCIATED, S.MINTED)
        report.receiver = receiver.id
        if receiver.id == report.definition.treasury:
            report.advance(S.ASSOCIATED, note="treasury is implicitly associated")
            return report
        try:
            outcome = await self.executor.execute(
                intents.token_associate(receiver.id, [report.token_id]), receiver.private_key, self.client, self.policy
            )
        except Exception as e:
            self._fail(report, S.ASSOCIATED, e)
        report.advance(S.ASSOCIATED, outcome.receipt.tx_id, account=receiver.id)
        return report

    async def transfer(
        self,
        report: WorkflowReport,
        sender: AccountIdentity,
        receiver: AccountIdentity,
        *,
        amount: int = 0,
        serials: Sequence[int] = (),
    ) -> WorkflowReport:
        self._expect(report, S.TRANSFERRED, S.ASSOCIATED)
        try:
            intent = intents.transfer(sender.id, receiver.id, token_id=report.token_id, amount=amount, serials=serials)
            outcome = await self.executor.execute(intent, sender.private_key, self.client, self.policy)
        except Exception as e:
            self._fail(report, S.TRANSFERRED, e)
        report.transferred_amount = amount
        report.transferred_serials = list(serials)
        report.advance(S.TRANSFERRED, outcome.receipt.tx_id, sender=sender.id, receiver=receiver.id)
        log.info("Transferred %s of %s from %s to %s", list(serials) or amount, report.token_id, sender.id, receiver.id)
        return report

    async def run(
        self,
        definition: TokenDefinition,
        treasury: AccountIdentity,
        receiver: AccountIdentity,
        supply_key: PrivateKey,
        *,
        metadata: Sequence[bytes] = (),
        mint_amount: int = 0,
        transfer_amount: int = 0,
        transfer_serials: Sequence[int] | None = None,
        admin_key: PrivateKey | None = None,
    ) -> WorkflowReport:
        """Run the whole lifecycle. Raises WorkflowError carrying the report on any failure."""
        return await self.resume(
            WorkflowReport(definition),
            treasury,
            receiver,
            supply_key,
            metadata=metadata,
            mint_amount=mint_amount,
            transfer_amount=transfer_amount,
            transfer_serials=transfer_serials,
            admin_key=admin_key,
        )

    async def resume(
        self,
        report: WorkflowReport,
        treasury: AccountIdentity,
        receiver: AccountIdentity,
        supply_key: PrivateKey,
        *,
        metadata: Sequence[bytes] = (),
        mint_amount: int = 0,
        transfer_amount: int = 0,
        transfer_serials: Sequence[int] | None = None,
        admin_key: PrivateKey | None = None,
    ) -> WorkflowReport:
        """Continue from ``report.state``. Completed steps are not repeated."""
        log.info("Workflow %s for %s starting at %s", report.workflow_id, report.definition.symbol, report.state)
        if report.state == S.DEFINED:
            await self.create(report, treasury, admin_key)
        if report.state == S.CREATED:
            await self.mint(report, supply_key, metadata=metadata, amount=mint_amount)
        if report.state == S.MINTED:
            await self.associate(report, receiver)
        if report.state == S.ASSOCIATED:
            serials = report.serials[:1] if transfer_serials is None and report.definition.is_nft else (transfer_serials or ())
            await self.transfer(report, treasury, receiver, amount=0 if serials else transfer_amount, serials=serials)
        return report
