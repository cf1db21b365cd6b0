"""Test the NFT id helpers."""

from __future__ import annotations

from unittest import TestCase

from xrpl.utils import parse_nftoken_id

from tokenflow.fee_info import OWNER_RESERVE_DROPS, FeeInfo
from tokenflow.nft_utils import encode_nftoken_id, nft_class_id, parse_nft_class_id, serial_of

ISSUER = "rJoxBSzpXhPtAuqFmqxQtGKjA13jUJWthE"
NFT_ID = "000B0539C35B55AA096BA6D87A6E6C965A6534150DC56E5E12C5D09E0000000C"


class TestEncodeNFTokenID(TestCase):
    def test_known_vector(self):
        self.assertEqual(encode_nftoken_id(11, 1337, ISSUER, 1337, 12), NFT_ID)

    def test_agrees_with_xrpl_parser(self):
        nft_id = encode_nftoken_id(8, 0, ISSUER, 42, 7)
        parsed = parse_nftoken_id(nft_id)
        self.assertEqual(parsed["issuer"], ISSUER)
        self.assertEqual(parsed["sequence"], 7)
        self.assertEqual(serial_of(nft_id), 7)

    def test_bad_issuer(self):
        with self.assertRaises(ValueError):
            encode_nftoken_id(0, 0, "rNotAnAddress", 0, 1)

    def test_serial_needs_full_id(self):
        with self.assertRaises(ValueError):
            serial_of("0C")


class TestClassId(TestCase):
    def test_round_trip(self):
        self.assertEqual(parse_nft_class_id(nft_class_id(ISSUER, 7)), (ISSUER, 7))

    def test_rejects_other_ids(self):
        self.assertIsNone(parse_nft_class_id("0.0.1001"))
        self.assertIsNone(parse_nft_class_id(f"{ISSUER}:x"))
        self.assertIsNone(parse_nft_class_id(f"{ISSUER}:{2**32}"))


class TestFeeInfo(TestCase):
    result = {
        "expected_ledger_size": "32",
        "current_ledger_size": "4",
        "current_queue_size": "0",
        "max_queue_size": "640",
        "drops": {"base_fee": "10", "median_fee": "5000", "minimum_fee": "10", "open_ledger_fee": "12"},
        "ledger_current_index": 120,
    }

    def test_parse_and_fee(self):
        fee = FeeInfo.from_fee_result(self.result)
        self.assertFalse(fee.queue_full)
        self.assertEqual(fee.fee_for("Payment"), 12)
        self.assertEqual(fee.fee_for("Batch", inner_count=3), 2 * OWNER_RESERVE_DROPS + 36)
