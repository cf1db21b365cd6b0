"""End-to-end runs against a configured network.

``fungible`` creates a funded account, issues USDB from it and mints more.
``nft`` creates a treasury and a recipient, issues a capped diploma NFT,
mints five certificates, associates the recipient and hands over serial 1,
checking balances around the transfer.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import tokenflow.constants as C
from tokenflow.config import ClientConfig
from tokenflow.constants import SupplyType, TokenKind
from tokenflow.errors import TokenflowError
from tokenflow.executor import RetryExecutor
from tokenflow.keys import generate_key
from tokenflow.ledger import LedgerClient
from tokenflow.models import AccountIdentity, RetryPolicy, TokenDefinition
from tokenflow.orchestrator import TokenLifecycleOrchestrator, WorkflowReport
from tokenflow.provisioning import AccountProvisioner, CredentialSink

log = logging.getLogger("tokenflow.scenarios")

DIPLOMA_CIDS = [
    b"ipfs://bafyreiao6ajgsfji6qsgbqwdtjdu5gmul7tv2v3pd6kjgcw5o65b2ogst4/metadata.json",
    b"ipfs://bafyreic463uarchq4mlufp7pvfkfut7zeqsqmn3b2x3jjxwcjqx6b5pk7q/metadata.json",
    b"ipfs://bafyreihhja55q6h2rijscl3gra7a3ntiroyglz45z5wlyxdzs6kjh2dinu/metadata.json",
    b"ipfs://bafyreidb23oehkttjbff3gdi4vz7mjijcxjyxadwg32pngod4huozcwphu/metadata.json",
    b"ipfs://bafyreie7ftl6erd5etz5gscfwfiwjmht3b52cevdrf7hjwxx5ddns7zneu/metadata.json",
]


@dataclass
class ScenarioResult:
    accounts: dict[str, str] = field(default_factory=dict)
    balances: list[dict[str, Any]] = field(default_factory=list)
    report: WorkflowReport | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "accounts": self.accounts,
            "balances": self.balances,
            "report": self.report.to_dict() if self.report else None,
            "error": self.error,
        }


class Scenarios:
    def __init__(self, config: ClientConfig, client: LedgerClient, sink: CredentialSink | None = None):
        self.config = config
        self.client = client
        self.policy = RetryPolicy.from_config(config)
        self.executor = RetryExecutor(self.policy)
        self.provisioner = AccountProvisioner(self.executor, sink=sink)
        self.orchestrator = TokenLifecycleOrchestrator(client, self.executor, policy=self.policy)

    async def _snapshot(self, result: ScenarioResult, label: str, *accounts: AccountIdentity) -> None:
        for account in accounts:
            bal = await self.executor.balance(self.client, account.id)
            log.info("%s balance of %s: native=%s tokens=%s", label, account.id, bal.native, dict(bal.tokens))
            result.balances.append({"label": label, "account_id": account.id, "native": bal.native, "tokens": dict(bal.tokens)})

    async def fungible(self, funding_amount: int | None = None) -> ScenarioResult:
        result = ScenarioResult()
        funding = self.config.funding_amount if funding_amount is None else funding_amount
        log.info("Generating new account...")
        treasury = await self.provisioner.create(self.client, funding)
        result.accounts["treasury"] = treasury.id
        await self._snapshot(result, "new account", treasury)

        definition = TokenDefinition(
            name="USD Bar",
            symbol="USDB",
            treasury=treasury.id,
            kind=TokenKind.FUNGIBLE,
            decimals=2,
            initial_supply=10_000,
            supply_type=SupplyType.INFINITE,
            supply_key=treasury.public_key,
        )
        report = result.report = WorkflowReport(definition)
        try:
            await self.orchestrator.create(report, treasury)
            await self.orchestrator.mint(report, treasury.private_key, amount=1_000)
        except TokenflowError as e:
            # token steps are reported, the account stays usable
            result.error = str(e)
            log.error("Fungible token operations failed: %s", e)
        else:
            log.info("Fungible token %s total supply %s", report.token_id, report.total_supply)
        await self._snapshot(result, "after mint", treasury)
        return result

    async def nft(self, funding_amount: int = 20 * C.NATIVE_UNIT) -> ScenarioResult:
        result = ScenarioResult()
        treasury = await self.provisioner.create(self.client, funding_amount)
        alice = await self.provisioner.create(self.client, funding_amount)
        supply_key = generate_key()
        result.accounts.update(treasury=treasury.id, alice=alice.id)

        definition = TokenDefinition(
            name="diploma",
            symbol="GRAD",
            treasury=treasury.id,
            kind=TokenKind.NON_FUNGIBLE,
            supply_type=SupplyType.FINITE,
            max_supply=250,
            supply_key=supply_key.public_key,
        )
        report = result.report = WorkflowReport(definition)
        try:
            await self.orchestrator.create(report, treasury)
            await self.orchestrator.mint(report, supply_key, metadata=DIPLOMA_CIDS)
            await self.orchestrator.associate(report, alice)
            await self._snapshot(result, "before transfer", treasury, alice)
            await self.orchestrator.transfer(report, treasury, alice, serials=report.serials[:1])
            await self._snapshot(result, "after transfer", treasury, alice)
        except TokenflowError as e:
            result.error = str(e)
            log.error("NFT workflow stopped at %s: %s", report.state, e)
        return result
