"""LedgerClient for the XRP Ledger (rippled JSON-RPC).

Intent kinds map onto XRPL transactions:

    ACCOUNT_CREATE      Payment from the operator to the new key's address
    TOKEN_CREATE        MPTokenIssuanceCreate (fungible), AccountSet or
                        SetRegularKey carrying the definition memo (NFT class)
    TOKEN_MINT          NFTokenMint, or a Batch of inner NFTokenMints
    TOKEN_ASSOCIATE     MPTokenAuthorize by the holder
    TRANSFER            Payment (native or MPT), NFTokenCreateOffer to the receiver
    TOKEN_FREEZE/PAUSE  MPTokenIssuanceSet lock/unlock
    TOKEN_*_KYC         MPTokenAuthorize by the issuer
    TOKEN_WIPE          Clawback

Fungible mints and NFT associations have no XRPL transaction. They are
settled locally: the issuer's supply is tracked in this process, and any
account can own an NFT without opting in first.
"""

import asyncio
import hashlib
import json
import logging
import struct
from dataclasses import dataclass
from typing import Any, Callable

import httpx
from xrpl.asyncio.clients import AsyncJsonRpcClient
from xrpl.core.addresscodec import decode_classic_address, is_valid_classic_address
from xrpl.core.binarycodec import encode, encode_for_signing
from xrpl.core.keypairs import derive_classic_address
from xrpl.models import SubmitOnly, TransactionFlag
from xrpl.models.requests import AccountInfo, AccountNFTs, AccountObjects, Fee, Tx
from xrpl.models.transactions import (
    BatchFlag,
    MPTokenAuthorizeFlag,
    MPTokenIssuanceCreateFlag,
    MPTokenIssuanceSetFlag,
    NFTokenCreateOfferFlag,
    NFTokenMintFlag,
)

import tokenflow.constants as C
from tokenflow.config import ClientConfig
from tokenflow.constants import IntentKind
from tokenflow.errors import LedgerStatusError
from tokenflow.fee_info import FeeInfo
from tokenflow.keys import PrivateKey
from tokenflow.models import AccountBalance, AccountIdentity, FrozenIntent, Receipt, TokenDefinition, TransactionIntent
from tokenflow.nft_utils import encode_nftoken_id, nft_class_id, parse_nft_class_id
from tokenflow.provisioning import resolve_operator

log = logging.getLogger("tokenflow.xrpl")

MEMO_TYPE = "tokenflow/definition".encode().hex().upper()
POLL_INTERVAL = 0.5


def _sha512half(b: bytes) -> bytes:
    return hashlib.sha512(b).digest()[:32]


def txid_from_signed_blob_hex(signed_blob_hex: str) -> str:
    # XRPL txid = SHA512Half(0x54584E00 || signed_bytes)
    return _sha512half(bytes.fromhex("54584E00") + bytes.fromhex(signed_blob_hex)).hex().upper()


def mpt_issuance_id(sequence: int, issuer: str) -> str:
    """MPTokenIssuanceID: issuing transaction's sequence (32 bits) then the issuer's account id."""
    return (struct.pack(">I", sequence) + decode_classic_address(issuer)).hex().upper()


def _memo(data: dict) -> list[dict]:
    return [{"Memo": {"MemoType": MEMO_TYPE, "MemoData": json.dumps(data, sort_keys=True).encode().hex().upper()}}]


def _mpt_amount(token_id: str, amount: int) -> dict:
    return {"mpt_issuance_id": token_id, "value": str(amount)}


def _local(status: str = C.SUCCESS, **fields) -> Receipt:
    return Receipt(status=status, **fields)


@dataclass(slots=True)
class _TokenClass:
    definition: TokenDefinition
    supply: int = 0  # fungible: units issued so far, NFT: serials minted through this client


class XrplLedgerClient:
    # receipt() polls one hash until it validates or its LastLedgerSequence has passed
    waits_for_finality = True

    def __init__(self, config: ClientConfig, operator: AccountIdentity | None = None, *, client=None):
        self.config = config
        self.operator = operator
        self.max_batch_size = min(config.max_batch_size, C.XRPL_MAX_BATCH_SIZE)
        self._urls = list(config.rpc_urls.values())
        self._node = 0
        self._client = client or AsyncJsonRpcClient(self._urls[self._node])
        mirrors = list(config.mirror_nodes.values())
        self._mirror_url = mirrors[0] if mirrors and client is None else None
        self._query_client = AsyncJsonRpcClient(self._mirror_url) if self._mirror_url else self._client
        self._classes: dict[str, _TokenClass] = {}
        self._in_flight: dict[str, FrozenIntent] = {}

    @classmethod
    def from_config(cls, config: ClientConfig) -> "XrplLedgerClient":
        operator = resolve_operator(config) if config.operator_id or config.operator_key else None
        if operator is not None and not is_valid_classic_address(operator.id):
            log.warning("Operator id %s is not a classic address", operator.id)
        return cls(config, operator)

    @property
    def url(self) -> str:
        return self._urls[self._node]

    def _rotate(self) -> None:
        if len(self._urls) > 1:
            self._node = (self._node + 1) % len(self._urls)
            self._client = AsyncJsonRpcClient(self.url)
            if self._mirror_url is None:
                self._query_client = self._client
            log.warning("Switched to node %s", self.url)

    async def _rpc(self, req, *, t: float = C.RPC_TIMEOUT, query: bool = False, errors_ok: bool = False) -> dict:
        client = self._query_client if query else self._client
        url = self._mirror_url if client is not self._client else self.url
        try:
            resp = await asyncio.wait_for(client.request(req), timeout=t)
        except (httpx.HTTPError, OSError) as e:
            # TimeoutError lands here too
            log.warning("RPC %s to %s failed: %s", req.method, url, e.__class__.__name__)
            if client is self._client:
                self._rotate()
            raise LedgerStatusError(C.UNAVAILABLE, str(e)) from e
        if not resp.is_successful() and not errors_ok:
            raise LedgerStatusError(resp.result.get("error", "unknown"), resp.result.get("error_message"))
        return resp.result

    # ------------------------------------------------------------------
    # LedgerClient
    # ------------------------------------------------------------------
    def is_valid_account_id(self, account_id: str) -> bool:
        return bool(account_id) and is_valid_classic_address(account_id)

    async def freeze(self, intent: TransactionIntent) -> FrozenIntent:
        translate = _TRANSLATORS[intent.kind]
        context: dict[str, Any] = {}
        tx = translate(self, intent.payload, context)
        if isinstance(tx, Receipt):
            return FrozenIntent(intent=intent, tx_id=None, body=b"", context=context, local_receipt=tx)
        await self._autofill(tx, context)
        body = json.dumps(tx, sort_keys=True).encode()
        return FrozenIntent(intent=intent, tx_id=None, body=body, tx_json=tx, context=context)

    async def _autofill(self, tx: dict, context: dict) -> None:
        info = await self._rpc(AccountInfo(account=tx["Account"], ledger_index="current"))
        seq = info["account_data"]["Sequence"]
        fee_info = FeeInfo.from_fee_result(await self._rpc(Fee()))

        tx["Sequence"] = seq
        for i, inner in enumerate(tx.get("RawTransactions", []), start=1):
            inner["RawTransaction"]["Sequence"] = seq + i
        fee = fee_info.fee_for(tx["TransactionType"], len(tx.get("RawTransactions", [])))
        if fee > self.config.max_transaction_fee:
            raise LedgerStatusError("INSUFFICIENT_TX_FEE", f"fee {fee} drops exceeds cap {self.config.max_transaction_fee}")
        tx["Fee"] = str(fee)
        tx["LastLedgerSequence"] = fee_info.ledger_current_index + C.HORIZON
        if tx.get("Flags") == 0:
            del tx["Flags"]
        context["sequence"] = seq
        context["min_ledger"] = fee_info.ledger_current_index
        context["last_ledger"] = tx["LastLedgerSequence"]
        context["minted_before"] = info["account_data"].get("MintedNFTokens", 0)
        if context.get("nft_class"):
            # NFT classes are keyed by the sequence of their defining transaction
            context["taxon"] = seq
            tx["Memos"] = _memo({**context["definition"], "taxon": seq})

    async def sign(self, frozen: FrozenIntent, key: PrivateKey) -> None:
        """Single-signature ledger: the first key signs, later keys are recorded only."""
        if frozen.local_receipt is not None:
            return
        tx = frozen.tx_json
        if "TxnSignature" in tx:
            log.debug("%s already signed, ignoring extra key %s", frozen.kind, key.public_key[:10])
            return
        tx["SigningPubKey"] = key.public_key
        signing_blob = encode_for_signing(tx)
        tx["TxnSignature"] = key.sign(bytes.fromhex(signing_blob))
        frozen.context["blob"] = encode(tx)
        frozen.tx_id = txid_from_signed_blob_hex(frozen.context["blob"])
        frozen.signatures[key.public_key] = tx["TxnSignature"]

    async def submit(self, frozen: FrozenIntent) -> str:
        if "blob" not in frozen.context:
            raise LedgerStatusError("INVALID_SIGNATURE", "transaction was never signed")
        try:
            res = await self._rpc(SubmitOnly(tx_blob=frozen.context["blob"]), t=self.config.timeout)
        except LedgerStatusError as e:
            if e.status != C.UNAVAILABLE:
                raise
            # the node may have relayed the blob before the connection dropped
            log.warning("%s %s submit unconfirmed, watching the hash instead", frozen.kind, frozen.tx_id)
            self._in_flight[frozen.tx_id] = frozen
            return frozen.tx_id
        er = res.get("engine_result", "")
        log.debug("%s %s submit -> %s", frozen.kind, frozen.tx_id, er)
        # tem/tef: never applied. tel: local refusal, resubmit later.
        if er.startswith(("tem", "tef", "tel")):
            raise LedgerStatusError(er, res.get("engine_result_message"))
        self._in_flight[frozen.tx_id] = frozen
        return frozen.tx_id

    async def receipt(self, tx_id: str) -> Receipt:
        frozen = self._in_flight.get(tx_id)
        ctx = frozen.context if frozen is not None else {}
        try:
            result = await self._wait_validated(tx_id, ctx.get("min_ledger"), ctx.get("last_ledger"))
        except TimeoutError:
            # still includable as far as we know: a retry could apply it twice
            log.error("tx=%s unresolved after %.1fs, not resubmitting", tx_id, self.config.request_timeout)
            return Receipt(status=C.OUTCOME_UNKNOWN, tx_id=tx_id)
        finally:
            self._in_flight.pop(tx_id, None)
        if result is None:
            return Receipt(status=C.TIMEOUT, tx_id=tx_id)
        code = result["meta"]["TransactionResult"]
        if code != "tesSUCCESS":
            return Receipt(status=code, tx_id=tx_id)
        if frozen is None:
            return Receipt(status=C.SUCCESS, tx_id=tx_id)
        return await self._settle(frozen, result)

    async def _wait_validated(self, tx_hash: str, min_ledger: int | None, max_ledger: int | None) -> dict | None:
        """Poll until validated. None once the transaction can no longer be included.

        With a ledger range, "not found and searched_all" means the range is
        fully validated without it, so a resubmission cannot double-apply.
        Failed or busy polls ask again for the same hash. TimeoutError after
        ``request_timeout`` when neither outcome was observed.
        """
        req = Tx(transaction=tx_hash, min_ledger=min_ledger, max_ledger=max_ledger) if max_ledger else Tx(transaction=tx_hash)
        async with asyncio.timeout(self.config.request_timeout):
            while True:
                try:
                    result = await self._rpc(req, errors_ok=True)
                except LedgerStatusError as e:
                    log.info("tx=%s poll failed (%s), polling again", tx_hash, e.status)
                    result = {}
                error = result.get("error")
                if result.get("validated"):
                    return result
                if error == "txnNotFound" and result.get("searched_all"):
                    log.warning("tx=%s expired without validating", tx_hash)
                    return None
                if error not in (None, "txnNotFound") and error not in C.DEFAULT_TRANSIENT_STATUSES:
                    raise LedgerStatusError(error, result.get("error_message"))
                await asyncio.sleep(POLL_INTERVAL)

    async def _settle(self, frozen: FrozenIntent, result: dict) -> Receipt:
        tx, ctx, kind = frozen.tx_json, frozen.context, frozen.kind
        fields: dict[str, Any] = {"tx_id": frozen.tx_id}

        if kind == IntentKind.ACCOUNT_CREATE:
            fields["account_id"] = tx["Destination"]
        elif kind == IntentKind.TOKEN_CREATE:
            definition = TokenDefinition.from_payload(frozen.intent.payload)
            if ctx.get("nft_class"):
                token_id = nft_class_id(tx["Account"], ctx["taxon"])
                self._classes[token_id] = _TokenClass(definition)
            else:
                token_id = result.get("mpt_issuance_id") or mpt_issuance_id(ctx["sequence"], tx["Account"])
                self._classes[token_id] = _TokenClass(definition, supply=definition.initial_supply)
            fields.update(token_id=token_id, total_supply=self._classes[token_id].supply)
        elif kind == IntentKind.TOKEN_MINT:
            count = len(frozen.intent.payload["metadata"])
            info = await self._rpc(AccountInfo(account=tx["Account"], ledger_index="validated"))
            data = info["account_data"]
            minted = data.get("MintedNFTokens", 0)
            if minted - ctx["minted_before"] < count:
                # an all-or-nothing Batch can validate while its inner mints did not apply
                return Receipt(status="INNER_TRANSACTION_FAILED", tx_id=frozen.tx_id)
            end = data.get("FirstNFTokenSequence", 0) + minted
            token_id = frozen.intent.payload["token_id"]
            if (cls := self._classes.get(token_id)) is not None:
                cls.supply += count
            fields.update(token_id=token_id, serials=tuple(range(end - count, end)))
        elif kind == IntentKind.TOKEN_WIPE:
            token_id = frozen.intent.payload["token_id"]
            cls = self._classes[token_id]
            cls.supply -= frozen.intent.payload["amount"]
            fields.update(token_id=token_id, total_supply=cls.supply)
        return Receipt(status=C.SUCCESS, **fields)

    async def balance(self, account_id: str) -> AccountBalance:
        info = await self._rpc(AccountInfo(account=account_id, ledger_index="validated"), query=True)
        tokens: dict[str, int] = {}

        held = await self._rpc(AccountObjects(account=account_id, ledger_index="validated", type="mptoken"), query=True)
        for obj in held.get("account_objects", []):
            if obj.get("LedgerEntryType") == "MPToken":
                tokens[obj["MPTokenIssuanceID"]] = int(obj.get("MPTAmount", "0"))

        issued = await self._rpc(AccountObjects(account=account_id, ledger_index="validated", type="mpt_issuance"), query=True)
        for obj in issued.get("account_objects", []):
            token_id = obj.get("mpt_issuance_id") or mpt_issuance_id(obj["Sequence"], obj["Issuer"])
            if (cls := self._classes.get(token_id)) is not None:
                tokens[token_id] = cls.supply - int(obj.get("OutstandingAmount", "0"))

        nfts = await self._rpc(AccountNFTs(account=account_id, ledger_index="validated"), query=True)
        for nft in nfts.get("account_nfts", []):
            token_id = nft_class_id(nft["Issuer"], nft["NFTokenTaxon"])
            tokens[token_id] = tokens.get(token_id, 0) + 1

        return AccountBalance(account_id=account_id, native=int(info["account_data"]["Balance"]), tokens=tokens)

    async def close(self) -> None:
        self._in_flight.clear()

    # ------------------------------------------------------------------
    # Translators: payload -> XRPL transaction dict, or a local Receipt
    # ------------------------------------------------------------------
    def _class(self, token_id: str) -> _TokenClass | None:
        return self._classes.get(token_id)

    def _tx_account_create(self, p, ctx) -> dict:
        if self.operator is None:
            return _local("PAYER_ACCOUNT_NOT_FOUND")
        return {
            "TransactionType": "Payment",
            "Account": self.operator.id,
            "Destination": derive_classic_address(p["public_key"]),
            "Amount": str(p["initial_balance"]),
        }

    def _tx_token_create(self, p, ctx) -> dict:
        d = TokenDefinition.from_payload(p)
        if d.is_nft:
            ctx["nft_class"] = True
            ctx["definition"] = {"name": d.name, "symbol": d.symbol, "max_supply": d.max_supply, "memo": d.memo}
            if d.supply_key and derive_classic_address(d.supply_key) != d.treasury:
                return {"TransactionType": "SetRegularKey", "Account": d.treasury, "RegularKey": derive_classic_address(d.supply_key)}
            return {"TransactionType": "AccountSet", "Account": d.treasury}

        flags = MPTokenIssuanceCreateFlag.TF_MPT_CAN_TRANSFER
        if d.freeze_key or d.pause_key:
            flags |= MPTokenIssuanceCreateFlag.TF_MPT_CAN_LOCK
        if d.kyc_key:
            flags |= MPTokenIssuanceCreateFlag.TF_MPT_REQUIRE_AUTH
        if d.wipe_key:
            flags |= MPTokenIssuanceCreateFlag.TF_MPT_CAN_CLAWBACK
        tx = {
            "TransactionType": "MPTokenIssuanceCreate",
            "Account": d.treasury,
            "AssetScale": d.decimals,
            "Flags": int(flags),
            "MPTokenMetadata": json.dumps({"name": d.name, "symbol": d.symbol, "memo": d.memo}).encode().hex().upper(),
        }
        if d.max_supply is not None:
            tx["MaximumAmount"] = str(d.max_supply)
        return tx

    def _tx_token_mint(self, p, ctx):
        token_id = p["token_id"]
        cls = self._class(token_id)
        if "amount" in p:
            if cls is None:
                return _local("INVALID_TOKEN_ID")
            d = cls.definition
            if d.max_supply is not None and cls.supply + p["amount"] > d.max_supply:
                return _local("TOKEN_MAX_SUPPLY_REACHED")
            cls.supply += p["amount"]
            return _local(token_id=token_id, total_supply=cls.supply)

        parsed = parse_nft_class_id(token_id)
        if parsed is None:
            return _local("INVALID_TOKEN_ID")
        issuer, taxon = parsed
        metadata = p["metadata"]
        if len(metadata) > self.max_batch_size:
            return _local("BATCH_SIZE_LIMIT_EXCEEDED")
        if cls is not None and cls.definition.max_supply is not None and cls.supply + len(metadata) > cls.definition.max_supply:
            return _local("TOKEN_MAX_SUPPLY_REACHED")

        def mint(uri: str, inner: bool) -> dict:
            tx = {
                "TransactionType": "NFTokenMint",
                "Account": issuer,
                "NFTokenTaxon": taxon,
                "URI": uri.upper(),
                "Flags": int(NFTokenMintFlag.TF_TRANSFERABLE),
            }
            if inner:
                tx.update(Fee="0", SigningPubKey="", Flags=tx["Flags"] | int(TransactionFlag.TF_INNER_BATCH_TXN))
            return tx

        if len(metadata) == 1:
            return mint(metadata[0], inner=False)
        return {
            "TransactionType": "Batch",
            "Account": issuer,
            "Flags": int(BatchFlag.TF_ALL_OR_NOTHING),
            "RawTransactions": [{"RawTransaction": mint(uri, inner=True)} for uri in metadata],
        }

    def _tx_token_associate(self, p, ctx):
        token_ids = p["token_ids"]
        if len(token_ids) != 1:
            return _local("NOT_SUPPORTED")
        if parse_nft_class_id(token_ids[0]) is not None:
            return _local(account_id=p["account"])
        return {"TransactionType": "MPTokenAuthorize", "Account": p["account"], "MPTokenIssuanceID": token_ids[0]}

    def _tx_transfer(self, p, ctx):
        token_id = p.get("token_id")
        if token_id is None:
            amount: Any = str(p["amount"])
        elif (parsed := parse_nft_class_id(token_id)) is not None:
            issuer, taxon = parsed
            offers = [
                {
                    "TransactionType": "NFTokenCreateOffer",
                    "Account": p["sender"],
                    "NFTokenID": encode_nftoken_id(int(NFTokenMintFlag.TF_TRANSFERABLE), 0, issuer, taxon, serial),
                    "Amount": "0",
                    "Destination": p["receiver"],
                    "Flags": int(NFTokenCreateOfferFlag.TF_SELL_NFTOKEN),
                }
                for serial in p["serials"]
            ]
            if len(offers) == 1:
                return offers[0]
            if len(offers) > C.XRPL_MAX_BATCH_SIZE:
                return _local("BATCH_SIZE_LIMIT_EXCEEDED")
            for offer in offers:
                offer.update(Fee="0", SigningPubKey="", Flags=offer["Flags"] | int(TransactionFlag.TF_INNER_BATCH_TXN))
            return {
                "TransactionType": "Batch",
                "Account": p["sender"],
                "Flags": int(BatchFlag.TF_ALL_OR_NOTHING),
                "RawTransactions": [{"RawTransaction": o} for o in offers],
            }
        else:
            amount = _mpt_amount(token_id, p["amount"])
        return {"TransactionType": "Payment", "Account": p["sender"], "Destination": p["receiver"], "Amount": amount}

    def _issuer_of(self, token_id: str) -> str | None:
        cls = self._class(token_id)
        return cls.definition.treasury if cls else None

    def _mpt_set(self, p, flag, holder: bool):
        issuer = self._issuer_of(p["token_id"])
        if issuer is None or parse_nft_class_id(p["token_id"]) is not None:
            return _local(C.NOT_SUPPORTED)
        tx = {"TransactionType": "MPTokenIssuanceSet", "Account": issuer, "MPTokenIssuanceID": p["token_id"], "Flags": int(flag)}
        if holder:
            tx["Holder"] = p["account"]
        return tx

    def _tx_token_freeze(self, p, ctx):
        return self._mpt_set(p, MPTokenIssuanceSetFlag.TF_MPT_LOCK, holder=True)

    def _tx_token_unfreeze(self, p, ctx):
        return self._mpt_set(p, MPTokenIssuanceSetFlag.TF_MPT_UNLOCK, holder=True)

    def _tx_token_pause(self, p, ctx):
        return self._mpt_set(p, MPTokenIssuanceSetFlag.TF_MPT_LOCK, holder=False)

    def _tx_token_unpause(self, p, ctx):
        return self._mpt_set(p, MPTokenIssuanceSetFlag.TF_MPT_UNLOCK, holder=False)

    def _mpt_authorize(self, p, revoke: bool):
        issuer = self._issuer_of(p["token_id"])
        if issuer is None or parse_nft_class_id(p["token_id"]) is not None:
            return _local(C.NOT_SUPPORTED)
        tx = {"TransactionType": "MPTokenAuthorize", "Account": issuer, "MPTokenIssuanceID": p["token_id"], "Holder": p["account"]}
        if revoke:
            tx["Flags"] = int(MPTokenAuthorizeFlag.TF_MPT_UNAUTHORIZE)
        return tx

    def _tx_token_grant_kyc(self, p, ctx):
        return self._mpt_authorize(p, revoke=False)

    def _tx_token_revoke_kyc(self, p, ctx):
        return self._mpt_authorize(p, revoke=True)

    def _tx_token_wipe(self, p, ctx):
        issuer = self._issuer_of(p["token_id"])
        if issuer is None or "serials" in p:
            return _local(C.NOT_SUPPORTED)
        return {"TransactionType": "Clawback", "Account": issuer, "Amount": _mpt_amount(p["token_id"], p["amount"]), "Holder": p["account"]}

    def _tx_contract_create(self, p, ctx):
        return _local(C.NOT_SUPPORTED)


_TRANSLATORS: dict[IntentKind, Callable[[XrplLedgerClient, dict, dict], Any]] = {
    kind: getattr(XrplLedgerClient, f"_tx_{kind.lower()}") for kind in IntentKind
}


async def probe_node(url: str, max_retries: int = 30, retry_delay: float = 2.0, timeout: float = 3.0) -> dict:
    """Probe a rippled JSON-RPC endpoint until it answers server_info."""
    payload = {"method": "server_info", "params": [{}]}
    for attempt in range(1, max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=timeout) as http:
                r = await http.post(url, json=payload)
                r.raise_for_status()
                log.info("RPC endpoint %s responding (attempt %s/%s)", url, attempt, max_retries)
                return r.json().get("result", {})
        except (httpx.HTTPError, ValueError) as e:
            if attempt < max_retries:
                log.info("RPC not ready yet (attempt %s/%s): %s - retrying in %ss", attempt, max_retries, e.__class__.__name__, retry_delay)
                await asyncio.sleep(retry_delay)
            else:
                log.error("RPC failed after %s attempts", max_retries)
                raise
