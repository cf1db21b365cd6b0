"""Key material: generation, parsing and the signing capability.

All curve work is delegated to ``xrpl.core.keypairs``.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from xrpl import CryptoAlgorithm
from xrpl.core import addresscodec, keypairs
from xrpl.core.addresscodec import XRPLAddressCodecException
from xrpl.core.keypairs import XRPLKeypairsException

from tokenflow.errors import UnparseableKeyError

log = logging.getLogger("tokenflow.keys")

ENTROPY_BYTES = 16  # family seed entropy


@dataclass(frozen=True, slots=True)
class PrivateKey:
    algorithm: CryptoAlgorithm
    seed: str
    public_key: str
    private_key: str

    @classmethod
    def from_seed(cls, seed: str) -> "PrivateKey":
        _, algorithm = addresscodec.decode_seed(seed)
        public, private = keypairs.derive_keypair(seed)
        return cls(algorithm=algorithm, seed=seed, public_key=public, private_key=private)

    def sign(self, message: bytes) -> str:
        return keypairs.sign(message, self.private_key)

    def verify(self, message: bytes, signature: str) -> bool:
        return verify(message, signature, self.public_key)

    @property
    def address(self) -> str:
        """Classic XRPL address controlled by this key."""
        return keypairs.derive_classic_address(self.public_key)

    def __repr__(self) -> str:
        return f"PrivateKey(algorithm={self.algorithm.value}, public_key={self.public_key})"

    __str__ = __repr__


def verify(message: bytes, signature: str, public_key: str) -> bool:
    try:
        return keypairs.is_valid_message(message, bytes.fromhex(signature), public_key)
    except (ValueError, XRPLKeypairsException):
        return False


def generate_key(algorithm: CryptoAlgorithm = CryptoAlgorithm.SECP256K1) -> PrivateKey:
    return PrivateKey.from_seed(keypairs.generate_seed(algorithm=algorithm))


# A parser returns a key, or None when the text is not in its format.
KeyParser = Callable[[str], PrivateKey | None]


def _parser_for(algorithm: CryptoAlgorithm) -> KeyParser:
    def parse(text: str) -> PrivateKey | None:
        text = text.strip()
        try:
            if len(text) == ENTROPY_BYTES * 2:
                entropy = bytes.fromhex(text)
                return PrivateKey.from_seed(addresscodec.encode_seed(entropy, algorithm))
            _, seed_algorithm = addresscodec.decode_seed(text)
        except (ValueError, XRPLAddressCodecException, XRPLKeypairsException):
            return None
        if seed_algorithm != algorithm:
            return None
        return PrivateKey.from_seed(text)

    parse.__name__ = f"parse_{algorithm.value}"
    return parse


parse_ecdsa = _parser_for(CryptoAlgorithm.SECP256K1)
parse_ed25519 = _parser_for(CryptoAlgorithm.ED25519)

# ECDSA first. Raw hex entropy is valid under both algorithms, so order decides.
DEFAULT_KEY_PARSERS: tuple[KeyParser, ...] = (parse_ecdsa, parse_ed25519)


def parse_private_key(text: str | None, parsers: Iterable[KeyParser] = DEFAULT_KEY_PARSERS) -> PrivateKey:
    """Return the result of the first parser that accepts ``text``."""
    if not text or not text.strip():
        raise UnparseableKeyError("empty private key")
    for parser in parsers:
        key = parser(text)
        if key is not None:
            log.debug("Private key parsed by %s", getattr(parser, "__name__", parser))
            return key
    raise UnparseableKeyError("private key is not a recognised seed or entropy encoding")


def try_parse_private_key(text: str | None, parsers: Iterable[KeyParser] = DEFAULT_KEY_PARSERS) -> PrivateKey | None:
    try:
        return parse_private_key(text, parsers)
    except UnparseableKeyError:
        return None
