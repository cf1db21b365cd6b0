import pytest

from conftest import run
from tokenflow import intents
from tokenflow.constants import IntentKind, SupplyType, TokenKind
from tokenflow.errors import PartialBatchError, RejectedIntentError
from tokenflow.keys import generate_key
from tokenflow.memory_ledger import InMemoryLedger
from tokenflow.minting import BatchMinter
from tokenflow.models import MintBatch, TokenDefinition


def _nft_class(ledger, executor, treasury, supply_key, **kw):
    definition = TokenDefinition(
        name="badge",
        symbol="BDG",
        treasury=treasury.id,
        kind=TokenKind.NON_FUNGIBLE,
        supply_key=supply_key.public_key,
        **kw,
    )
    outcome = run(executor.execute(intents.token_create(definition), treasury.private_key, ledger))
    return outcome.receipt.token_id


def _metadata(n):
    return [f"ipfs://item/{i}".encode() for i in range(n)]


def test_chunks_respect_ceiling_and_order(ledger, executor, new_account):
    treasury = run(new_account())
    supply_key = generate_key()
    token_id = _nft_class(ledger, executor, treasury, supply_key)
    minter = BatchMinter(executor, max_batch_size=5)

    serials = run(minter.mint_all(token_id, _metadata(12), supply_key, ledger))

    mints = ledger.submissions(IntentKind.TOKEN_MINT)
    assert [len(f.intent.payload["metadata"]) for f in mints] == [5, 5, 2]
    assert serials == list(range(1, 13))
    assert ledger.token_supply(token_id) == 12
    assert all(ledger.nft_owner(token_id, s) == treasury.id for s in serials)


def test_chunk_count_is_ceil_n_over_m(ledger, executor, new_account):
    treasury = run(new_account())
    supply_key = generate_key()
    token_id = _nft_class(ledger, executor, treasury, supply_key)

    run(BatchMinter(executor).mint_all(token_id, _metadata(25), supply_key, ledger))

    assert len(ledger.submissions(IntentKind.TOKEN_MINT)) == MintBatch.count(25, 10) == 3


def test_client_limit_lowers_ceiling(executor):
    ledger = InMemoryLedger(max_batch_size=3)
    minter = BatchMinter(executor, max_batch_size=10)
    assert minter.ceiling(ledger) == 3


def test_oversized_batch_is_refused_by_ledger(ledger, executor, new_account):
    treasury = run(new_account())
    supply_key = generate_key()
    token_id = _nft_class(ledger, executor, treasury, supply_key)

    # bypasses the minter, so the ledger sees 11 entries
    with pytest.raises(RejectedIntentError) as exc:
        run(executor.execute(intents.token_mint(token_id, metadata=_metadata(11)), supply_key, ledger))
    assert exc.value.status == "BATCH_SIZE_LIMIT_EXCEEDED"


def test_partial_failure_reports_progress_and_resumes(ledger, executor, new_account):
    treasury = run(new_account())
    supply_key = generate_key()
    token_id = _nft_class(ledger, executor, treasury, supply_key)
    minter = BatchMinter(executor, max_batch_size=4)
    metadata = _metadata(10)
    ledger.inject("INVALID_TOKEN_MINT_METADATA", kind=IntentKind.TOKEN_MINT, stage="receipt", skip=1)

    with pytest.raises(PartialBatchError) as exc:
        run(minter.mint_all(token_id, metadata, supply_key, ledger))

    assert exc.value.completed == 4
    assert exc.value.chunk_index == 1
    assert exc.value.serials == [1, 2, 3, 4]
    assert ledger.token_supply(token_id) == 4

    rest = run(minter.mint_all(token_id, metadata, supply_key, ledger, offset=exc.value.completed))

    assert rest == [5, 6, 7, 8, 9, 10]
    assert ledger.token_supply(token_id) == 10


def test_max_supply_stops_minting(ledger, executor, new_account):
    treasury = run(new_account())
    supply_key = generate_key()
    token_id = _nft_class(ledger, executor, treasury, supply_key, supply_type=SupplyType.FINITE, max_supply=3)

    with pytest.raises(PartialBatchError) as exc:
        run(BatchMinter(executor, max_batch_size=2).mint_all(token_id, _metadata(4), supply_key, ledger))

    assert exc.value.completed == 2
    assert exc.value.cause.status == "TOKEN_MAX_SUPPLY_REACHED"


def test_fungible_mint_returns_total_supply(ledger, executor, new_account):
    treasury = run(new_account())
    definition = TokenDefinition(
        name="USD Bar",
        symbol="USDB",
        treasury=treasury.id,
        decimals=2,
        initial_supply=10_000,
        supply_key=treasury.public_key,
    )
    token_id = run(executor.execute(intents.token_create(definition), treasury.private_key, ledger)).receipt.token_id

    total = run(BatchMinter(executor).mint_fungible(token_id, 1_000, treasury.private_key, ledger))

    assert total == 11_000
    assert run(ledger.balance(treasury.id)).token(token_id) == 11_000


def test_mint_batch_validation():
    with pytest.raises(ValueError):
        MintBatch(())
    with pytest.raises(ValueError):
        MintBatch(tuple(_metadata(3)), ceiling=2)
    assert [len(b) for b in MintBatch.chunk(_metadata(7), 3)] == [3, 3, 1]


def test_bad_offset(executor, ledger):
    with pytest.raises(ValueError):
        run(BatchMinter(executor).mint_all("0.0.1", _metadata(2), generate_key(), ledger, offset=3))
