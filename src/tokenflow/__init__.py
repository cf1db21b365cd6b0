"""Client-side orchestration of account, token and transfer operations on a ledger."""

from tokenflow.config import ClientConfig, load_config
from tokenflow.executor import RetryExecutor
from tokenflow.ledger import LedgerClient, connect
from tokenflow.minting import BatchMinter
from tokenflow.models import RetryPolicy, TokenDefinition, status_in
from tokenflow.orchestrator import TokenLifecycleOrchestrator, WorkflowReport
from tokenflow.provisioning import AccountProvisioner

__all__ = [
    "AccountProvisioner",
    "BatchMinter",
    "ClientConfig",
    "LedgerClient",
    "RetryExecutor",
    "RetryPolicy",
    "TokenDefinition",
    "TokenLifecycleOrchestrator",
    "WorkflowReport",
    "connect",
    "load_config",
    "status_in",
]
