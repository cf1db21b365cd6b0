import logging
import string
from pathlib import Path

from tokenflow import intents
from tokenflow.executor import RetryExecutor
from tokenflow.keys import PrivateKey
from tokenflow.ledger import LedgerClient
from tokenflow.models import RetryPolicy

log = logging.getLogger("tokenflow.contracts")


def load_bytecode(path: str | Path) -> bytes:
    """Read a compiled contract: raw bytes, or hex text (``.bin`` output, optional 0x)."""
    raw = Path(path).read_bytes()
    try:
        text = raw.decode("ascii").strip()
    except UnicodeDecodeError:
        return raw
    if text.startswith(("0x", "0X")):
        text = text[2:]
    if text and all(c in string.hexdigits for c in text) and len(text) % 2 == 0:
        return bytes.fromhex(text)
    return raw


async def deploy(
    client: LedgerClient,
    executor: RetryExecutor,
    bytecode: bytes,
    *,
    admin_key: PrivateKey | None = None,
    gas: int = 100_000,
    memo: str = "",
    policy: RetryPolicy | None = None,
) -> str:
    """Create a contract and return its id."""
    if not bytecode:
        raise ValueError("contract bytecode is empty")
    intent = intents.contract_create(
        bytecode, gas=gas, admin_key=admin_key.public_key if admin_key else None, memo=memo
    )
    outcome = await executor.execute(intent, admin_key, client, policy)
    log.info("Deployed %s bytes as contract %s", len(bytecode), outcome.receipt.contract_id)
    return outcome.receipt.contract_id
