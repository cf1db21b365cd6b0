"""Intent builders, one per request kind.

Payloads are plain JSON-able dicts so any client can bind them. Metadata is
carried hex-encoded.
"""

from typing import Any, Callable, Sequence

from tokenflow.constants import IntentKind
from tokenflow.models import TokenDefinition, TransactionIntent

_BUILDERS: dict[IntentKind, Callable[..., TransactionIntent]] = {}


def builder(kind: IntentKind):
    def register(fn):
        _BUILDERS[kind] = fn
        return fn
    return register


def build(kind: IntentKind | str, **params: Any) -> TransactionIntent:
    try:
        fn = _BUILDERS[IntentKind(kind)]
    except (KeyError, ValueError):
        raise ValueError(f"no intent builder for {kind!r}") from None
    return fn(**params)


def available() -> list[str]:
    return sorted(_BUILDERS)


@builder(IntentKind.ACCOUNT_CREATE)
def account_create(public_key: str, initial_balance: int) -> TransactionIntent:
    if initial_balance < 0:
        raise ValueError("initial_balance must be non-negative")
    return TransactionIntent(IntentKind.ACCOUNT_CREATE, {"public_key": public_key, "initial_balance": int(initial_balance)})


@builder(IntentKind.TOKEN_CREATE)
def token_create(definition: TokenDefinition) -> TransactionIntent:
    return TransactionIntent(IntentKind.TOKEN_CREATE, definition.to_payload(), signers=(definition.treasury,))


@builder(IntentKind.TOKEN_MINT)
def token_mint(token_id: str, *, metadata: Sequence[bytes] = (), amount: int = 0) -> TransactionIntent:
    if bool(metadata) == bool(amount):
        raise ValueError("a mint carries either metadata (NFT) or a positive amount (fungible)")
    payload: dict[str, Any] = {"token_id": token_id}
    if metadata:
        payload["metadata"] = [bytes(m).hex() for m in metadata]
    else:
        payload["amount"] = int(amount)
    return TransactionIntent(IntentKind.TOKEN_MINT, payload)


@builder(IntentKind.TOKEN_ASSOCIATE)
def token_associate(account_id: str, token_ids: Sequence[str]) -> TransactionIntent:
    return TransactionIntent(
        IntentKind.TOKEN_ASSOCIATE,
        {"account": account_id, "token_ids": list(token_ids)},
        signers=(account_id,),
    )


@builder(IntentKind.TRANSFER)
def transfer(
    sender: str,
    receiver: str,
    *,
    token_id: str | None = None,
    amount: int = 0,
    serials: Sequence[int] = (),
) -> TransactionIntent:
    """Native transfer when ``token_id`` is None, otherwise fungible units or NFT serials."""
    if serials and amount:
        raise ValueError("transfer either an amount or serials, not both")
    if not serials and amount <= 0:
        raise ValueError("transfer amount must be positive")
    if serials and token_id is None:
        raise ValueError("NFT serials need a token_id")
    payload: dict[str, Any] = {"sender": sender, "receiver": receiver, "token_id": token_id}
    if serials:
        payload["serials"] = [int(s) for s in serials]
    else:
        payload["amount"] = int(amount)
    return TransactionIntent(IntentKind.TRANSFER, payload, signers=(sender,))


def native_transfer(sender: str, receiver: str, amount: int) -> TransactionIntent:
    return transfer(sender, receiver, amount=amount)


def _token_account(kind: IntentKind):
    def build_admin(token_id: str, account_id: str) -> TransactionIntent:
        return TransactionIntent(kind, {"token_id": token_id, "account": account_id})
    build_admin.__name__ = kind.lower()
    return builder(kind)(build_admin)


token_freeze = _token_account(IntentKind.TOKEN_FREEZE)
token_unfreeze = _token_account(IntentKind.TOKEN_UNFREEZE)
token_grant_kyc = _token_account(IntentKind.TOKEN_GRANT_KYC)
token_revoke_kyc = _token_account(IntentKind.TOKEN_REVOKE_KYC)


@builder(IntentKind.TOKEN_PAUSE)
def token_pause(token_id: str) -> TransactionIntent:
    return TransactionIntent(IntentKind.TOKEN_PAUSE, {"token_id": token_id})


@builder(IntentKind.TOKEN_UNPAUSE)
def token_unpause(token_id: str) -> TransactionIntent:
    return TransactionIntent(IntentKind.TOKEN_UNPAUSE, {"token_id": token_id})


@builder(IntentKind.TOKEN_WIPE)
def token_wipe(token_id: str, account_id: str, *, amount: int = 0, serials: Sequence[int] = ()) -> TransactionIntent:
    if bool(serials) == bool(amount):
        raise ValueError("wipe either an amount or serials")
    payload: dict[str, Any] = {"token_id": token_id, "account": account_id}
    if serials:
        payload["serials"] = [int(s) for s in serials]
    else:
        payload["amount"] = int(amount)
    return TransactionIntent(IntentKind.TOKEN_WIPE, payload)


@builder(IntentKind.CONTRACT_CREATE)
def contract_create(bytecode: bytes, *, gas: int = 100_000, admin_key: str | None = None, memo: str = "") -> TransactionIntent:
    return TransactionIntent(
        IntentKind.CONTRACT_CREATE,
        {"bytecode": bytes(bytecode).hex(), "gas": int(gas), "admin_key": admin_key, "memo": memo},
    )
