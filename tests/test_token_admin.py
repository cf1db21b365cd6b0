import pytest

from conftest import run
from tokenflow import intents
from tokenflow.errors import RejectedIntentError
from tokenflow.keys import generate_key
from tokenflow.models import TokenDefinition
from tokenflow.token_admin import TokenAdmin


@pytest.fixture
def admin_keys():
    return {name: generate_key() for name in ("freeze", "kyc", "pause", "wipe")}


@pytest.fixture
def setup(ledger, executor, new_account, admin_keys):
    """A controlled fungible token held by a treasury and by alice (who has 100 units)."""
    treasury, alice = run(new_account()), run(new_account())
    definition = TokenDefinition(
        name="Controlled",
        symbol="CTL",
        treasury=treasury.id,
        initial_supply=1_000,
        supply_key=treasury.public_key,
        freeze_key=admin_keys["freeze"].public_key,
        kyc_key=admin_keys["kyc"].public_key,
        pause_key=admin_keys["pause"].public_key,
        wipe_key=admin_keys["wipe"].public_key,
    )
    token_id = run(executor.execute(intents.token_create(definition), treasury.private_key, ledger)).receipt.token_id
    run(executor.execute(intents.token_associate(alice.id, [token_id]), alice.private_key, ledger))
    admin = TokenAdmin(ledger, executor)
    run(admin.grant_kyc(token_id, alice.id, admin_keys["kyc"]))
    run(executor.execute(intents.transfer(treasury.id, alice.id, token_id=token_id, amount=100), treasury.private_key, ledger))
    return admin, token_id, treasury, alice


def _send(executor, ledger, sender, receiver, token_id, amount=1):
    intent = intents.transfer(sender.id, receiver.id, token_id=token_id, amount=amount)
    return run(executor.execute(intent, sender.private_key, ledger))


def _status_of_send(executor, ledger, *args):
    with pytest.raises(RejectedIntentError) as exc:
        _send(executor, ledger, *args)
    return exc.value.status


def test_kyc_is_required_when_token_has_kyc_key(ledger, executor, new_account, setup):
    _, token_id, treasury, _ = setup
    bob = run(new_account())
    run(executor.execute(intents.token_associate(bob.id, [token_id]), bob.private_key, ledger))

    assert _status_of_send(executor, ledger, treasury, bob, token_id) == "ACCOUNT_KYC_NOT_GRANTED_FOR_TOKEN"


def test_freeze_blocks_then_unfreeze_allows(ledger, executor, setup, admin_keys):
    admin, token_id, treasury, alice = setup

    run(admin.freeze(token_id, alice.id, admin_keys["freeze"]))
    assert _status_of_send(executor, ledger, alice, treasury, token_id) == "ACCOUNT_FROZEN_FOR_TOKEN"

    run(admin.unfreeze(token_id, alice.id, admin_keys["freeze"]))
    assert _send(executor, ledger, alice, treasury, token_id).receipt.ok


def test_revoked_kyc_blocks_transfers(ledger, executor, setup, admin_keys):
    admin, token_id, treasury, alice = setup
    run(admin.revoke_kyc(token_id, alice.id, admin_keys["kyc"]))
    assert _status_of_send(executor, ledger, treasury, alice, token_id) == "ACCOUNT_KYC_NOT_GRANTED_FOR_TOKEN"


def test_pause_blocks_transfers_and_mints(ledger, executor, setup, admin_keys):
    admin, token_id, treasury, alice = setup

    run(admin.pause(token_id, admin_keys["pause"]))
    assert _status_of_send(executor, ledger, treasury, alice, token_id) == "TOKEN_IS_PAUSED"
    with pytest.raises(RejectedIntentError) as exc:
        run(executor.execute(intents.token_mint(token_id, amount=5), treasury.private_key, ledger))
    assert exc.value.status == "TOKEN_IS_PAUSED"

    run(admin.unpause(token_id, admin_keys["pause"]))
    assert _send(executor, ledger, treasury, alice, token_id).receipt.ok


def test_wipe_reduces_holder_and_supply(ledger, setup, admin_keys):
    admin, token_id, treasury, alice = setup

    outcome = run(admin.wipe(token_id, alice.id, admin_keys["wipe"], amount=40))

    assert outcome.receipt.total_supply == 960
    assert run(ledger.balance(alice.id)).token(token_id) == 60
    assert ledger.token_supply(token_id) == 960


def test_wipe_cannot_touch_treasury(setup, admin_keys):
    admin, token_id, treasury, _ = setup
    with pytest.raises(RejectedIntentError) as exc:
        run(admin.wipe(token_id, treasury.id, admin_keys["wipe"], amount=1))
    assert exc.value.status == "CANNOT_WIPE_TOKEN_TREASURY_ACCOUNT"


def test_admin_action_needs_matching_key(setup, admin_keys):
    admin, token_id, _, alice = setup
    with pytest.raises(RejectedIntentError) as exc:
        run(admin.freeze(token_id, alice.id, admin_keys["pause"]))
    assert exc.value.status == "INVALID_SIGNATURE"


def test_token_without_key_refuses_action(ledger, executor, new_account):
    treasury = run(new_account())
    definition = TokenDefinition(name="Plain", symbol="PLN", treasury=treasury.id, initial_supply=10)
    token_id = run(executor.execute(intents.token_create(definition), treasury.private_key, ledger)).receipt.token_id

    with pytest.raises(RejectedIntentError) as exc:
        run(TokenAdmin(ledger, executor).pause(token_id, generate_key()))
    assert exc.value.status == "TOKEN_HAS_NO_PAUSE_KEY"
