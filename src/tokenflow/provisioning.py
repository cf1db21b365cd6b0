import json
import logging
import sys
from typing import IO, Protocol

from xrpl import CryptoAlgorithm

from tokenflow import intents
from tokenflow.config import ClientConfig
from tokenflow.errors import ConfigurationError
from tokenflow.executor import RetryExecutor
from tokenflow.keys import KeyParser, DEFAULT_KEY_PARSERS, generate_key, try_parse_private_key
from tokenflow.ledger import LedgerClient
from tokenflow.models import AccountIdentity, RetryPolicy

log = logging.getLogger("tokenflow.provisioning")


class CredentialSink(Protocol):
    def publish(self, identity: AccountIdentity) -> None: ...


class StreamCredentialSink:
    """Writes newly created credentials as one JSON line. This is their only copy."""

    def __init__(self, stream: IO[str] | None = None):
        self.stream = stream

    def publish(self, identity: AccountIdentity) -> None:
        key = identity.private_key
        stream = self.stream or sys.stdout
        stream.write(json.dumps({
            "account_id": identity.id,
            "algorithm": key.algorithm.value,
            "public_key": key.public_key,
            "private_key": key.private_key,
            "seed": key.seed,
        }) + "\n")
        stream.flush()


class AccountProvisioner:
    """Turns configured credentials into an identity, or creates a fresh funded account."""

    def __init__(
        self,
        executor: RetryExecutor,
        *,
        sink: CredentialSink | None = None,
        algorithm: CryptoAlgorithm = CryptoAlgorithm.SECP256K1,
        parsers: tuple[KeyParser, ...] = DEFAULT_KEY_PARSERS,
    ):
        self.executor = executor
        self.sink = sink or StreamCredentialSink()
        self.algorithm = algorithm
        self.parsers = parsers

    def resolve(self, configured_id: str | None, configured_key: str | None, client: LedgerClient) -> AccountIdentity | None:
        """Parse configured credentials. None when either is missing or malformed."""
        if not configured_id or not configured_key:
            return None
        if not client.is_valid_account_id(configured_id):
            log.warning("Configured account id %r is malformed", configured_id)
            return None
        key = try_parse_private_key(configured_key, self.parsers)
        if key is None:
            log.warning("Configured private key for %s could not be parsed", configured_id)
            return None
        return AccountIdentity(id=configured_id, private_key=key)

    async def resolve_or_create(
        self,
        configured_id: str | None,
        configured_key: str | None,
        client: LedgerClient,
        funding_amount: int,
        policy: RetryPolicy | None = None,
    ) -> AccountIdentity:
        """Return the configured identity, or create and fund a new one.

        Resolution is idempotent and makes no network call. Creation is not:
        every call on that path makes a distinct account.
        """
        identity = self.resolve(configured_id, configured_key, client)
        if identity is not None:
            log.debug("Using configured account %s", identity.id)
            return identity
        if configured_id or configured_key:
            log.warning("Configured credentials unusable, creating a new account instead")
        return await self.create(client, funding_amount, policy)

    async def create(self, client: LedgerClient, funding_amount: int, policy: RetryPolicy | None = None) -> AccountIdentity:
        if client.operator is None:
            raise ConfigurationError("creating an account needs an operator to pay for it")
        key = generate_key(self.algorithm)
        outcome = await self.executor.execute(
            intents.account_create(key.public_key, funding_amount),
            client.operator.private_key,
            client,
            policy,
        )
        identity = AccountIdentity(id=outcome.receipt.account_id, private_key=key)
        log.info("Created account %s funded with %s (attempts=%s)", identity.id, funding_amount, outcome.attempts)
        self.sink.publish(identity)
        return identity


def resolve_operator(config: ClientConfig, client: LedgerClient | None = None) -> AccountIdentity:
    """The paying account. It is never created, so missing credentials are fatal."""
    if not config.has_operator:
        raise ConfigurationError("operator id and key must be set (OPERATOR_ID / OPERATOR_KEY)")
    if client is not None and not client.is_valid_account_id(config.operator_id):
        raise ConfigurationError(f"operator id {config.operator_id!r} is malformed")
    key = try_parse_private_key(config.operator_key)
    if key is None:
        raise ConfigurationError("operator key could not be parsed")
    return AccountIdentity(id=config.operator_id, private_key=key)
