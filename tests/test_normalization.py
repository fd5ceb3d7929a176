"""Tests for address validation and base-unit parsing."""

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from packages.nestfi.errors import InvalidAddressInput
from packages.nestfi.normalization import (
    ZERO_ADDRESS,
    addresses_equal,
    is_valid_address,
    is_zero_address,
    normalize_address,
    parse_base_units,
    parse_optional_bool,
    validate_address,
)

CHECKSUMMED = "0x68194a729C2450ad26072b3D33ADaCbcef39D574"


class TestNormalizeAddress(unittest.TestCase):
    def test_lowercases_and_trims(self):
        self.assertEqual(normalize_address(f"  {CHECKSUMMED} "), CHECKSUMMED.lower())

    def test_adds_prefix(self):
        self.assertEqual(normalize_address("ABCDEF"), "0xabcdef")

    def test_empty_inputs(self):
        self.assertEqual(normalize_address(None), "")
        self.assertEqual(normalize_address("   "), "")
        self.assertEqual(normalize_address("0x"), "")

    def test_addresses_equal_is_case_insensitive(self):
        self.assertTrue(addresses_equal(CHECKSUMMED, CHECKSUMMED.lower()))
        self.assertFalse(addresses_equal(None, None))
        self.assertFalse(addresses_equal(CHECKSUMMED, ZERO_ADDRESS))

    def test_zero_address(self):
        self.assertTrue(is_zero_address("0x" + "0" * 40))
        self.assertFalse(is_valid_address(ZERO_ADDRESS))


class TestValidateAddress(unittest.TestCase):
    def test_returns_normalized(self):
        self.assertEqual(validate_address(CHECKSUMMED), CHECKSUMMED.lower())

    def test_rejects_missing_prefix(self):
        with self.assertRaises(InvalidAddressInput) as ctx:
            validate_address(CHECKSUMMED[2:], "user address")
        self.assertIn("0x-prefixed", str(ctx.exception))
        self.assertIn("user address", str(ctx.exception))

    def test_rejects_wrong_length(self):
        with self.assertRaises(InvalidAddressInput):
            validate_address(CHECKSUMMED[:-1])
        with self.assertRaises(InvalidAddressInput):
            validate_address(CHECKSUMMED + "0")

    def test_rejects_non_hex(self):
        with self.assertRaises(InvalidAddressInput):
            validate_address("0x" + "g" * 40)

    def test_rejects_zero_and_missing(self):
        with self.assertRaises(InvalidAddressInput):
            validate_address(ZERO_ADDRESS)
        with self.assertRaises(InvalidAddressInput):
            validate_address("")
        with self.assertRaises(InvalidAddressInput):
            validate_address(None)

    def test_is_also_value_error(self):
        with self.assertRaises(ValueError):
            validate_address("nope")


class TestParseBaseUnits(unittest.TestCase):
    def test_accepts_ints_and_strings(self):
        self.assertEqual(parse_base_units(5), 5)
        self.assertEqual(parse_base_units("1000000000"), 1_000_000_000)
        self.assertEqual(parse_base_units("0x10"), 16)

    def test_keeps_arbitrary_precision(self):
        big = "123456789012345678901234567890"
        self.assertEqual(parse_base_units(big), int(big))

    def test_rejects_lossy_or_garbage(self):
        self.assertIsNone(parse_base_units(1.5))
        self.assertIsNone(parse_base_units(True))
        self.assertIsNone(parse_base_units("1.5"))
        self.assertIsNone(parse_base_units(""))
        self.assertIsNone(parse_base_units(None))

    def test_optional_bool(self):
        self.assertTrue(parse_optional_bool("true"))
        self.assertFalse(parse_optional_bool(False))
        self.assertIsNone(parse_optional_bool("maybe"))
        self.assertIsNone(parse_optional_bool(None))


if __name__ == "__main__":
    unittest.main()
