"""XrplLedgerClient against a scripted rippled. No network."""

import httpx
import pytest
from xrpl.core.addresscodec import decode_classic_address
from xrpl.models import TransactionFlag
from xrpl.models.response import Response, ResponseStatus
from xrpl.models.transactions import BatchFlag, MPTokenIssuanceCreateFlag, NFTokenMintFlag

import tokenflow.constants as C
from conftest import run
from tokenflow import intents, xrpl_ledger
from tokenflow.config import ClientConfig
from tokenflow.errors import LedgerStatusError, RejectedIntentError
from tokenflow.executor import RetryExecutor
from tokenflow.keys import generate_key
from tokenflow.models import AccountIdentity, RetryPolicy, TokenDefinition
from tokenflow.constants import TokenKind
from tokenflow.xrpl_ledger import XrplLedgerClient, mpt_issuance_id, txid_from_signed_blob_hex

FEE_RESULT = {
    "expected_ledger_size": "32",
    "current_ledger_size": "2",
    "current_queue_size": "0",
    "max_queue_size": "640",
    "drops": {"base_fee": "10", "median_fee": "5000", "minimum_fee": "10", "open_ledger_fee": "10"},
    "ledger_current_index": 100,
}


class FakeRippled:
    """Answers JSON-RPC requests from canned results. ``engine_results`` are used in order."""

    def __init__(self, engine_results=("tesSUCCESS",), tx_result="tesSUCCESS"):
        self.engine_results = list(engine_results)
        self.tx_result = tx_result
        self.requests = []
        self.blobs = []

    async def request(self, req):
        self.requests.append(req)
        method = req.method
        if method == "account_info":
            result = {"account_data": {"Sequence": 7, "Balance": "5000000", "MintedNFTokens": 0}}
        elif method == "fee":
            result = FEE_RESULT
        elif method == "submit":
            self.blobs.append(req.tx_blob)
            er = self.engine_results.pop(0) if len(self.engine_results) > 1 else self.engine_results[0]
            result = {"engine_result": er, "engine_result_message": er}
        elif method == "tx":
            result = {"validated": True, "meta": {"TransactionResult": self.tx_result}}
        elif method == "account_objects":
            result = {"account_objects": []}
        elif method == "account_nfts":
            result = {"account_nfts": [
                {"Issuer": req.account, "NFTokenTaxon": 3},
                {"Issuer": req.account, "NFTokenTaxon": 3},
            ]}
        else:
            return Response(status=ResponseStatus.ERROR, result={"error": "unknownCmd"})
        return Response(status=ResponseStatus.SUCCESS, result=result)

    def methods(self):
        return [str(r.method.value) for r in self.requests]


NOT_FOUND = {"error": "txnNotFound", "searched_all": False}
EXPIRED = {"error": "txnNotFound", "searched_all": True}


class ScriptedRippled(FakeRippled):
    """Plays ``script[method]`` first: exceptions are raised, dicts are error results."""

    def __init__(self, script, **kwargs):
        super().__init__(**kwargs)
        self.script = {method: list(steps) for method, steps in script.items()}

    async def request(self, req):
        steps = self.script.get(str(req.method.value))
        if not steps:
            return await super().request(req)
        self.requests.append(req)
        step = steps.pop(0)
        if isinstance(step, BaseException):
            raise step
        return Response(status=ResponseStatus.ERROR, result=step)


@pytest.fixture
def operator():
    key = generate_key()
    return AccountIdentity(id=key.address, private_key=key)


def _client(operator, rippled, **config):
    config = ClientConfig(nodes={"node": "http://localhost:5005"}, **config)
    return XrplLedgerClient(config, operator, client=rippled)


def _executor():
    return RetryExecutor(RetryPolicy(max_attempts=3, backoff_delay=0, timeout=5.0))


def test_account_create_is_a_signed_payment(operator):
    rippled = FakeRippled()
    client = _client(operator, rippled)
    new_key = generate_key()

    outcome = run(_executor().execute(intents.account_create(new_key.public_key, 1_000_000), operator.private_key, client))

    assert outcome.receipt.ok
    assert outcome.receipt.account_id == new_key.address
    assert rippled.methods() == ["account_info", "fee", "submit", "tx"]
    assert outcome.receipt.tx_id == txid_from_signed_blob_hex(rippled.blobs[0])
    tx_req = rippled.requests[-1]
    assert (tx_req.min_ledger, tx_req.max_ledger) == (100, 100 + C.HORIZON)


def test_frozen_transaction_fields(operator):
    client = _client(operator, FakeRippled())
    frozen = run(client.freeze(intents.native_transfer(operator.id, generate_key().address, 25)))

    tx = frozen.tx_json
    assert tx["TransactionType"] == "Payment"
    assert tx["Amount"] == "25"
    assert tx["Sequence"] == 7
    assert tx["Fee"] == "10"
    assert tx["LastLedgerSequence"] == 100 + C.HORIZON

    run(client.sign(frozen, operator.private_key))
    assert tx["SigningPubKey"] == operator.public_key
    assert frozen.tx_id is not None
    # single-signature ledger: extra keys do not change the transaction
    tx_id = frozen.tx_id
    run(client.sign(frozen, generate_key()))
    assert frozen.tx_id == tx_id


def test_queue_refusal_is_retried(operator):
    rippled = FakeRippled(engine_results=["telCAN_NOT_QUEUE", "tesSUCCESS"])
    client = _client(operator, rippled)

    outcome = run(_executor().execute(intents.native_transfer(operator.id, generate_key().address, 1), operator.private_key, client))

    assert outcome.attempts == 2
    assert len(rippled.blobs) == 2


def test_malformed_transaction_is_rejected(operator):
    client = _client(operator, FakeRippled(engine_results=["temBAD_AMOUNT"]))
    with pytest.raises(RejectedIntentError) as exc:
        run(_executor().execute(intents.native_transfer(operator.id, generate_key().address, 1), operator.private_key, client))
    assert exc.value.status == "temBAD_AMOUNT"


def test_failed_validation_is_rejected(operator):
    client = _client(operator, FakeRippled(tx_result="tecNO_DST_INSUF_XRP"))
    with pytest.raises(RejectedIntentError) as exc:
        run(_executor().execute(intents.native_transfer(operator.id, generate_key().address, 1), operator.private_key, client))
    assert exc.value.status == "tecNO_DST_INSUF_XRP"


def test_fee_cap(operator):
    client = _client(operator, FakeRippled(), max_transaction_fee=5)
    with pytest.raises(RejectedIntentError) as exc:
        run(_executor().execute(intents.native_transfer(operator.id, generate_key().address, 1), operator.private_key, client))
    assert exc.value.status == "INSUFFICIENT_TX_FEE"


def test_fungible_token_create_translation(operator):
    client = _client(operator, FakeRippled())
    definition = TokenDefinition(
        name="USD Bar",
        symbol="USDB",
        treasury=operator.id,
        decimals=2,
        initial_supply=10_000,
        supply_type="FINITE",
        max_supply=1_000_000,
        supply_key=operator.public_key,
        kyc_key=operator.public_key,
    )
    tx = client._tx_token_create(definition.to_payload(), {})

    assert tx["TransactionType"] == "MPTokenIssuanceCreate"
    assert tx["AssetScale"] == 2
    assert tx["MaximumAmount"] == "1000000"
    assert tx["Flags"] & MPTokenIssuanceCreateFlag.TF_MPT_REQUIRE_AUTH
    assert tx["Flags"] & MPTokenIssuanceCreateFlag.TF_MPT_CAN_TRANSFER
    assert not tx["Flags"] & MPTokenIssuanceCreateFlag.TF_MPT_CAN_CLAWBACK


def test_nft_mint_batches_inner_transactions(operator):
    client = _client(operator, FakeRippled())
    token_id = f"{operator.id}:7"
    payload = intents.token_mint(token_id, metadata=[b"a", b"b", b"c"]).payload

    tx = client._tx_token_mint(payload, {})

    assert tx["TransactionType"] == "Batch"
    assert tx["Flags"] == BatchFlag.TF_ALL_OR_NOTHING
    inner = [r["RawTransaction"] for r in tx["RawTransactions"]]
    assert [i["URI"] for i in inner] == ["61", "62", "63"]
    assert all(i["NFTokenTaxon"] == 7 and i["Fee"] == "0" and i["SigningPubKey"] == "" for i in inner)
    assert all(i["Flags"] == NFTokenMintFlag.TF_TRANSFERABLE | TransactionFlag.TF_INNER_BATCH_TXN for i in inner)

    single = client._tx_token_mint(intents.token_mint(token_id, metadata=[b"a"]).payload, {})
    assert single["TransactionType"] == "NFTokenMint"


def test_batch_ceiling_is_the_ledger_limit(operator):
    client = _client(operator, FakeRippled(), max_batch_size=10)
    assert client.max_batch_size == C.XRPL_MAX_BATCH_SIZE


def test_local_settlements(operator):
    client = _client(operator, FakeRippled())
    nft_class = f"{operator.id}:1"

    associate = run(client.freeze(intents.token_associate(operator.id, [nft_class])))
    assert associate.local_receipt.ok

    contract = run(client.freeze(intents.contract_create(b"\x60")))
    assert contract.local_receipt.status == C.NOT_SUPPORTED


def test_balance_counts_nfts_by_class(operator):
    client = _client(operator, FakeRippled())
    bal = run(client.balance(operator.id))
    assert bal.native == 5_000_000
    assert bal.token(f"{operator.id}:3") == 2


def test_mpt_issuance_id_layout(operator):
    token_id = mpt_issuance_id(1, operator.id)
    assert len(token_id) == 48
    assert token_id.startswith("00000001")
    assert bytes.fromhex(token_id[8:]) == decode_classic_address(operator.id)


def test_nft_definition_becomes_class(operator):
    client = _client(operator, FakeRippled())
    definition = TokenDefinition(
        name="diploma", symbol="GRAD", treasury=operator.id, kind=TokenKind.NON_FUNGIBLE, supply_key=operator.public_key
    )

    outcome = run(_executor().execute(intents.token_create(definition), operator.private_key, client))

    assert outcome.receipt.token_id == f"{operator.id}:7"


@pytest.fixture
def fast_polls(monkeypatch):
    monkeypatch.setattr(xrpl_ledger, "POLL_INTERVAL", 0.01)


def _pay(operator):
    return intents.native_transfer(operator.id, generate_key().address, 1)


def test_failed_polls_keep_watching_the_submitted_transaction(operator, fast_polls):
    rippled = ScriptedRippled({"tx": [TimeoutError(), httpx.ReadTimeout("slow"), NOT_FOUND]})
    client = _client(operator, rippled)

    outcome = run(_executor().execute(_pay(operator), operator.private_key, client))

    assert outcome.receipt.ok
    assert outcome.attempts == 1
    assert len(rippled.blobs) == 1
    assert rippled.methods().count("tx") == 4


def test_slow_validation_outlasts_the_attempt_timeout(operator, fast_polls):
    rippled = ScriptedRippled({"tx": [NOT_FOUND] * 40})
    client = _client(operator, rippled)
    executor = RetryExecutor(RetryPolicy(max_attempts=3, backoff_delay=0, timeout=0.2))

    outcome = run(executor.execute(_pay(operator), operator.private_key, client))

    assert outcome.attempts == 1
    assert len(rippled.blobs) == 1


def test_expired_transaction_is_resubmitted(operator, fast_polls):
    rippled = ScriptedRippled({"tx": [NOT_FOUND, EXPIRED]})
    client = _client(operator, rippled)

    outcome = run(_executor().execute(_pay(operator), operator.private_key, client))

    assert outcome.attempts == 2
    assert len(rippled.blobs) == 2
    assert outcome.receipt.tx_id == txid_from_signed_blob_hex(rippled.blobs[1])


def test_unresolved_transaction_is_not_resubmitted(operator, fast_polls):
    rippled = ScriptedRippled({"tx": [NOT_FOUND] * 1000})
    client = _client(operator, rippled, request_timeout=0.2)

    with pytest.raises(RejectedIntentError) as exc:
        run(_executor().execute(_pay(operator), operator.private_key, client))

    assert exc.value.status == C.OUTCOME_UNKNOWN
    assert len(rippled.blobs) == 1


def test_dropped_submit_is_watched_not_repeated(operator, fast_polls):
    rippled = ScriptedRippled({"submit": [httpx.RemoteProtocolError("connection reset")]})
    client = _client(operator, rippled)

    outcome = run(_executor().execute(_pay(operator), operator.private_key, client))

    assert outcome.attempts == 1
    assert rippled.methods() == ["account_info", "fee", "submit", "tx"]


def test_failover_moves_queries_to_the_next_node(operator):
    rippled = ScriptedRippled({"account_info": [httpx.ConnectError("refused")]})
    config = ClientConfig(nodes={"a": "http://node-a:5005", "b": "http://node-b:5005"})
    client = XrplLedgerClient(config, operator, client=rippled)

    with pytest.raises(LedgerStatusError) as exc:
        run(client.balance(operator.id))

    assert exc.value.status == C.UNAVAILABLE
    assert client.url == "http://node-b:5005"
    assert client._query_client is client._client
    assert client._query_client.url == "http://node-b:5005"


def test_failover_keeps_the_mirror_for_queries():
    config = ClientConfig(
        nodes={"a": "http://node-a:5005", "b": "http://node-b:5005"},
        mirror_nodes={"m": "http://mirror:5005"},
    )
    client = XrplLedgerClient(config)

    client._rotate()

    assert client._client.url == "http://node-b:5005"
    assert client._query_client.url == "http://mirror:5005"
