import os
import tomllib
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping

import tokenflow.constants as C
from tokenflow.errors import ConfigurationError

log = logging.getLogger("tokenflow.config")

pkg_root = Path(__file__).parent
config_file = pkg_root / "config.toml"

# First non-empty variable wins.
OPERATOR_ID_VARS = ("OPERATOR_ID", "MY_ACCOUNT_ID")
OPERATOR_KEY_VARS = ("OPERATOR_KEY", "MY_PRIVATE_KEY")


@dataclass(frozen=True, slots=True)
class ClientConfig:
    """Everything a ledger client and the engine around it need, read once at startup."""

    network: str = "testnet"
    operator_id: str | None = None
    operator_key: str | None = None
    nodes: Mapping[str, str] = field(default_factory=dict)
    mirror_nodes: Mapping[str, str] = field(default_factory=dict)
    max_transaction_fee: int = C.DEFAULT_MAX_TRANSACTION_FEE
    max_query_payment: int = C.DEFAULT_MAX_QUERY_PAYMENT
    request_timeout: float = C.REQUEST_TIMEOUT
    max_attempts: int = C.DEFAULT_MAX_ATTEMPTS
    backoff: float = C.DEFAULT_BACKOFF
    timeout: float = 90.0
    max_batch_size: int = C.MAX_BATCH_SIZE
    funding_amount: int = C.DEFAULT_FUNDING_AMOUNT

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff < 0:
            raise ConfigurationError(f"backoff must be >= 0, got {self.backoff}")
        if self.timeout <= 0 or self.request_timeout <= 0:
            raise ConfigurationError("timeouts must be positive")
        if self.max_batch_size < 1:
            raise ConfigurationError(f"max_batch_size must be >= 1, got {self.max_batch_size}")
        if self.funding_amount < 0:
            raise ConfigurationError(f"funding_amount must be >= 0, got {self.funding_amount}")

    @property
    def rpc_urls(self) -> dict[str, str]:
        """Node name -> JSON-RPC URL for the selected network."""
        if self.nodes:
            return dict(self.nodes)
        if self.network == "local":
            return {"local": C.LOCAL_RIPPLED}
        return {self.network: C.TESTNET_RIPPLED}

    @property
    def has_operator(self) -> bool:
        return bool(self.operator_id and self.operator_key)

    def replace(self, **changes) -> "ClientConfig":
        return replace(self, **changes)


def _first_env(env: Mapping[str, str], names) -> str | None:
    for name in names:
        if value := env.get(name, "").strip():
            return value
    return None


def _coerce(name: str, value, kind):
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name}: cannot convert {value!r} to {kind.__name__}") from e


def load_config(path: str | Path | None = None, env: Mapping[str, str] | None = None) -> ClientConfig:
    """Build a ClientConfig from config.toml plus environment overrides.

    The file is the packaged default unless ``path`` or TOKENFLOW_CONFIG names another.
    """
    env = os.environ if env is None else env
    path = Path(path or env.get("TOKENFLOW_CONFIG") or config_file)
    try:
        cfg = tomllib.loads(path.read_text())
    except FileNotFoundError as e:
        raise ConfigurationError(f"config file not found: {path}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"invalid config file {path}: {e}") from e

    operator = cfg.get("operator", {})
    client = cfg.get("client", {})
    retry = cfg.get("retry", {})

    values = dict(
        network=env.get("TOKENFLOW_NETWORK") or cfg.get("network", "testnet"),
        operator_id=_first_env(env, OPERATOR_ID_VARS) or operator.get("account_id") or None,
        operator_key=_first_env(env, OPERATOR_KEY_VARS) or operator.get("private_key") or None,
        nodes=dict(cfg.get("nodes", {})),
        mirror_nodes=dict(cfg.get("mirror_nodes", {})),
        max_transaction_fee=_coerce("max_transaction_fee", client.get("max_transaction_fee", C.DEFAULT_MAX_TRANSACTION_FEE), int),
        max_query_payment=_coerce("max_query_payment", client.get("max_query_payment", C.DEFAULT_MAX_QUERY_PAYMENT), int),
        request_timeout=_coerce("request_timeout", env.get("REQUEST_TIMEOUT") or client.get("request_timeout", C.REQUEST_TIMEOUT), float),
        max_attempts=_coerce("max_attempts", env.get("MAX_ATTEMPTS") or retry.get("max_attempts", C.DEFAULT_MAX_ATTEMPTS), int),
        backoff=_coerce("backoff", env.get("BACKOFF") or retry.get("backoff", C.DEFAULT_BACKOFF), float),
        timeout=_coerce("timeout", retry.get("timeout", 90.0), float),
        max_batch_size=_coerce("max_batch_size", env.get("MAX_BATCH_SIZE") or cfg.get("minting", {}).get("max_batch_size", C.MAX_BATCH_SIZE), int),
        funding_amount=_coerce("funding_amount", cfg.get("accounts", {}).get("funding_amount", C.DEFAULT_FUNDING_AMOUNT), int),
    )
    config = ClientConfig(**values)
    log.debug("Loaded config from %s (network=%s, operator=%s)", path, config.network, config.operator_id or "<unset>")
    return config
