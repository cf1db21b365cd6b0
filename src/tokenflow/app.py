import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, NonNegativeInt, PositiveInt

from tokenflow import intents
from tokenflow.config import ClientConfig, load_config
from tokenflow.constants import SupplyType, TokenKind
from tokenflow.errors import (
    ConfigurationError,
    LedgerStatusError,
    RejectedIntentError,
    RetryBudgetExhausted,
    WorkflowError,
)
from tokenflow.executor import RetryExecutor
from tokenflow.keys import generate_key
from tokenflow.ledger import LedgerClient, connect
from tokenflow.models import AccountIdentity, RetryPolicy, TokenDefinition
from tokenflow.orchestrator import TokenLifecycleOrchestrator, WorkflowReport
from tokenflow.provisioning import AccountProvisioner

log = logging.getLogger("tokenflow.app")

NOT_FOUND_STATUSES = {"INVALID_ACCOUNT_ID", "actNotFound"}


class CreateAccountReq(BaseModel):
    account_id: str | None = None
    private_key: str | None = None
    initial_balance: NonNegativeInt | None = None


class CreateAccountResp(BaseModel):
    account_id: str
    public_key: str
    seed: str | None = None
    created: bool


class WorkflowReq(BaseModel):
    name: str
    symbol: str
    kind: TokenKind = TokenKind.FUNGIBLE
    decimals: NonNegativeInt = 0
    initial_supply: NonNegativeInt = 0
    supply_type: SupplyType = SupplyType.INFINITE
    max_supply: PositiveInt | None = None
    treasury: str
    receiver: str
    metadata: list[str] = Field(default_factory=list)
    mint_amount: NonNegativeInt = 0
    transfer_amount: NonNegativeInt = 0
    transfer_serials: list[int] | None = None
    separate_supply_key: bool = False


def create_app(config: ClientConfig | None = None, client: LedgerClient | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = config or load_config()
        ledger = client or connect(cfg)
        policy = RetryPolicy.from_config(cfg)
        executor = RetryExecutor(policy)

        app.state.config = cfg
        app.state.client = ledger
        app.state.policy = policy
        app.state.executor = executor
        app.state.provisioner = AccountProvisioner(executor)
        app.state.orchestrator = TokenLifecycleOrchestrator(ledger, executor, policy=policy)
        app.state.accounts = {}
        app.state.workflows = {}
        if ledger.operator is not None:
            app.state.accounts[ledger.operator.id] = ledger.operator
        log.info("Ready on network=%s operator=%s", cfg.network, getattr(ledger.operator, "id", None))
        try:
            yield
        finally:
            log.info("Shutting down...")
            await ledger.close()

    app = FastAPI(
        title="tokenflow",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Accounts", "description": "Provision accounts and query balances"},
            {"name": "Workflows", "description": "Run token lifecycles"},
            {"name": "State", "description": "Executor and registry state"},
        ],
    )

    r_accounts = APIRouter(prefix="/accounts", tags=["Accounts"])
    r_workflows = APIRouter(prefix="/workflows", tags=["Workflows"])
    r_state = APIRouter(prefix="/state", tags=["State"])

    def _account(request: Request, account_id: str) -> AccountIdentity:
        identity = request.app.state.accounts.get(account_id)
        if identity is None:
            raise HTTPException(status_code=404, detail=f"Unknown account (no key held): {account_id}")
        return identity

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @r_accounts.post("", response_model=CreateAccountResp)
    async def accounts_create(req: CreateAccountReq, request: Request):
        st = request.app.state
        funding = st.config.funding_amount if req.initial_balance is None else req.initial_balance
        identity = await st.provisioner.resolve_or_create(req.account_id, req.private_key, st.client, funding)
        created = identity.id != req.account_id
        st.accounts[identity.id] = identity
        return CreateAccountResp(
            account_id=identity.id,
            public_key=identity.public_key,
            seed=identity.private_key.seed if created else None,
            created=created,
        )

    @r_accounts.get("")
    def accounts_list(request: Request):
        return sorted(request.app.state.accounts)

    @r_accounts.get("/{account_id}/balances")
    async def account_balances(account_id: str, request: Request):
        st = request.app.state
        bal = await st.executor.balance(st.client, account_id)
        return {"account_id": bal.account_id, "native": bal.native, "tokens": dict(bal.tokens)}

    @r_workflows.post("")
    async def workflows_run(req: WorkflowReq, request: Request):
        st = request.app.state
        treasury = _account(request, req.treasury)
        receiver = _account(request, req.receiver)
        supply_key = generate_key() if req.separate_supply_key else treasury.private_key
        try:
            definition = TokenDefinition(
                name=req.name,
                symbol=req.symbol,
                treasury=treasury.id,
                kind=req.kind,
                decimals=req.decimals,
                initial_supply=req.initial_supply,
                supply_type=req.supply_type,
                max_supply=req.max_supply,
                supply_key=supply_key.public_key,
            )
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        report = WorkflowReport(definition)
        st.workflows[report.workflow_id] = report
        await st.orchestrator.resume(
            report,
            treasury,
            receiver,
            supply_key,
            metadata=[m.encode() for m in req.metadata],
            mint_amount=req.mint_amount,
            transfer_amount=req.transfer_amount,
            transfer_serials=req.transfer_serials,
        )
        return report.to_dict()

    @r_workflows.get("")
    def workflows_list(request: Request):
        return [r.to_dict() for r in request.app.state.workflows.values()]

    @r_workflows.get("/{workflow_id}")
    def workflow_get(workflow_id: str, request: Request):
        report = request.app.state.workflows.get(workflow_id)
        if report is None:
            raise HTTPException(status_code=404, detail=f"Unknown workflow: {workflow_id}")
        return report.to_dict()

    @r_state.get("/summary")
    def state_summary(request: Request):
        st = request.app.state
        outcomes: dict[str, int] = {}
        for report in st.workflows.values():
            outcomes[str(report.outcome)] = outcomes.get(str(report.outcome), 0) + 1
        return {
            "network": st.config.network,
            "operator": getattr(st.client.operator, "id", None),
            "max_batch_size": st.client.max_batch_size,
            "accounts": len(st.accounts),
            "workflows": outcomes,
            "executor": st.executor.stats(),
            "intent_kinds": intents.available(),
        }

    @app.exception_handler(WorkflowError)
    async def workflow_error(request: Request, exc: WorkflowError):
        return JSONResponse(status_code=409, content={"detail": str(exc), "report": exc.report.to_dict()})

    @app.exception_handler(RejectedIntentError)
    async def rejected(request: Request, exc: RejectedIntentError):
        return JSONResponse(status_code=422, content={"detail": str(exc), "status": exc.status})

    @app.exception_handler(RetryBudgetExhausted)
    async def exhausted(request: Request, exc: RetryBudgetExhausted):
        return JSONResponse(status_code=503, content={"detail": str(exc), "status": exc.status, "attempts": exc.attempts})

    @app.exception_handler(LedgerStatusError)
    async def ledger_status(request: Request, exc: LedgerStatusError):
        code = 404 if exc.status in NOT_FOUND_STATUSES else 502
        return JSONResponse(status_code=code, content={"detail": str(exc), "status": exc.status})

    @app.exception_handler(ConfigurationError)
    async def configuration(request: Request, exc: ConfigurationError):
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    app.include_router(r_accounts)
    app.include_router(r_workflows)
    app.include_router(r_state)
    return app
