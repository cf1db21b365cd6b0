import asyncio
import io

import pytest

import tokenflow.constants as C
from tokenflow.executor import RetryExecutor
from tokenflow.memory_ledger import InMemoryLedger
from tokenflow.models import RetryPolicy
from tokenflow.provisioning import AccountProvisioner, StreamCredentialSink

FUNDING = 100 * C.NATIVE_UNIT


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def policy():
    return RetryPolicy(max_attempts=3, backoff_delay=0, timeout=2.0)


@pytest.fixture
def executor(policy):
    return RetryExecutor(policy)


@pytest.fixture
def sink_stream():
    return io.StringIO()


@pytest.fixture
def provisioner(executor, sink_stream):
    return AccountProvisioner(executor, sink=StreamCredentialSink(sink_stream))


@pytest.fixture
def new_account(provisioner, ledger):
    """Coroutine factory: ``await new_account()`` makes a funded account."""

    async def make(funding: int = FUNDING):
        return await provisioner.create(ledger, funding)

    return make
