"""NFT identifiers on the XRP Ledger.

A token class is an (issuer, taxon) pair, written ``issuer:taxon``. A single
NFT is identified by its 256-bit NFTokenID, which is a pure function of the
mint fields, so it can be computed without asking the ledger.
"""

import base58

TAXON_MAX = 0xFFFFFFFF


def nft_class_id(issuer: str, taxon: int) -> str:
    return f"{issuer}:{taxon}"


def parse_nft_class_id(token_id: str) -> tuple[str, int] | None:
    """Split ``issuer:taxon``. None when ``token_id`` is not an NFT class id."""
    issuer, sep, taxon = token_id.partition(":")
    if not sep or not taxon.isdigit() or int(taxon) > TAXON_MAX:
        return None
    return issuer, int(taxon)


def scramble_taxon(taxon: int, sequence: int) -> bytes:
    """Scramble taxon with sequence the way rippled's cipheredTaxon does (nft.h)."""
    modulus = 384160001
    increment = 2459
    scramble = modulus * sequence + increment
    taxon ^= scramble
    taxon &= 0xFFFFFFFF
    return taxon.to_bytes(4, byteorder="big")


def encode_nftoken_id(
    flags: int,
    transfer_fee: int,
    issuer: str,
    taxon: int,
    sequence: int,
) -> str:
    """Encode the NFTokenID for serial ``sequence`` of ``issuer``.

    >>> encode_nftoken_id(11, 1337, "rJoxBSzpXhPtAuqFmqxQtGKjA13jUJWthE", 1337, 12)
    '000B0539C35B55AA096BA6D87A6E6C965A6534150DC56E5E12C5D09E0000000C'
    """
    issuer_bytes = base58.b58decode_check(issuer, alphabet=base58.XRP_ALPHABET)
    issuer_bytes = issuer_bytes[1:] if len(issuer_bytes) > 20 else issuer_bytes
    if len(issuer_bytes) != 20:
        raise ValueError(f"Issuer must decode to 20 bytes, got {len(issuer_bytes)}")

    nftoken_id = (
        flags.to_bytes(2, byteorder="big")
        + transfer_fee.to_bytes(2, byteorder="big")
        + issuer_bytes
        + scramble_taxon(taxon, sequence)
        + sequence.to_bytes(4, byteorder="big")
    )
    return nftoken_id.hex().upper()


def serial_of(nftoken_id: str) -> int:
    """The mint sequence (serial) stored in the last four bytes of an NFTokenID."""
    if len(nftoken_id) != 64:
        raise ValueError(f"NFTokenID must be 64 hex characters, got {len(nftoken_id)}")
    return int(nftoken_id[-8:], 16)
