"""
Unit tests for evmsim.core.primitives.

Coverage targets:
- Address canonicalisation from strings, ints and bytes
- EIP-55 checksum encoding and validation
- uint256 wrapping, signed views and SIGNEXTEND
- Checked arithmetic raising ArithmeticBoundsError
- Hex and integer parsing used by scenario files
"""

import pytest

from evmsim.core.constants import UINT256_MAX
from evmsim.core.primitives import (
    EMPTY_CODE_HASH,
    address_to_bytes,
    address_to_int,
    ceil32,
    checked_add,
    checked_mul,
    checked_sub,
    int_to_address,
    is_address,
    is_checksum_valid,
    keccak256,
    normalize_address,
    parse_hex_bytes,
    parse_uint,
    sign_extend,
    to_checksum_address,
    to_signed,
    to_uint256,
    to_unsigned,
    word_count,
)
from evmsim.core.simulation_exceptions import ArithmeticBoundsError


class TestAddresses:
    def test_normalize_lowercases_and_prefixes(self):
        raw = "5AAEB6053F3E94C9B9A09F33669435E7EF1BEAED"
        assert normalize_address(raw) == "0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed"

    def test_normalize_int_uses_low_160_bits(self):
        word = (1 << 200) | 0x1234
        assert normalize_address(word) == "0x" + "0" * 36 + "1234"

    def test_normalize_bytes(self):
        assert normalize_address(b"\x01" * 20) == "0x" + "01" * 20

    @pytest.mark.parametrize("bad", ["0x1234", "0x" + "zz" * 20, b"\x00" * 19, -1, True, 1.5])
    def test_normalize_rejects_invalid(self, bad):
        with pytest.raises(ValueError):
            normalize_address(bad)
        assert not is_address(bad)

    def test_int_round_trip(self):
        address = "0x" + "ab" * 20
        assert int_to_address(address_to_int(address)) == address
        assert address_to_bytes(address) == b"\xab" * 20

    def test_checksum_known_vector(self):
        assert (
            to_checksum_address("0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed")
            == "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
        )

    def test_checksum_validation(self):
        assert is_checksum_valid("0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed")
        assert is_checksum_valid("0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed")
        assert not is_checksum_valid("0x5AAeb6053F3E94C9b9A09f33669435E7Ef1BeAed")
        assert not is_checksum_valid("not-an-address")


class TestWordArithmetic:
    def test_keccak_of_empty(self):
        assert keccak256(b"").hex() == "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
        assert EMPTY_CODE_HASH == keccak256(b"")

    def test_uint256_wraps(self):
        assert to_uint256(UINT256_MAX + 1) == 0
        assert to_uint256(-1) == UINT256_MAX

    def test_signed_views(self):
        assert to_signed(UINT256_MAX) == -1
        assert to_signed(5) == 5
        assert to_unsigned(-2) == UINT256_MAX - 1

    def test_sign_extend(self):
        assert sign_extend(0xFF, 0) == UINT256_MAX
        assert sign_extend(0x7F, 0) == 0x7F
        assert sign_extend(0x1FF, 0) == UINT256_MAX
        assert sign_extend(0x12345, 31) == 0x12345

    def test_checked_arithmetic_bounds(self):
        assert checked_add(1, 2) == 3
        assert checked_sub(5, 5) == 0
        assert checked_mul(2, 3) == 6
        with pytest.raises(ArithmeticBoundsError):
            checked_add(UINT256_MAX, 1)
        with pytest.raises(ArithmeticBoundsError):
            checked_sub(0, 1)
        with pytest.raises(ArithmeticBoundsError):
            checked_mul(UINT256_MAX, 2)

    def test_word_helpers(self):
        assert ceil32(0) == 0
        assert ceil32(1) == 32
        assert ceil32(33) == 64
        assert word_count(0) == 0
        assert word_count(32) == 1
        assert word_count(33) == 2


class TestParsing:
    def test_parse_hex_bytes(self):
        assert parse_hex_bytes("0x0102") == b"\x01\x02"
        assert parse_hex_bytes("abc") == b"\x0a\xbc"
        assert parse_hex_bytes(None) == b""
        assert parse_hex_bytes(b"\x01") == b"\x01"
        with pytest.raises(ValueError):
            parse_hex_bytes("0xzz")

    def test_parse_uint(self):
        assert parse_uint(10) == 10
        assert parse_uint("1_000") == 1000
        assert parse_uint("0xff") == 255
        for bad in (-1, UINT256_MAX + 1, True, 1.0):
            with pytest.raises(ValueError):
                parse_uint(bad)
