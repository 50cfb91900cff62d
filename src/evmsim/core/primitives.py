"""
evmsim Numeric & Address Primitives

Fixed-width unsigned integer arithmetic and 160-bit address handling used
throughout the state store and the interpreter.

Two arithmetic flavours are provided:
- Wrapping (``to_uint256``, ``to_signed``...): EVM word semantics, used by
  the interpreter.
- Overflow-checked (``checked_add``, ``checked_sub``, ``checked_mul``): used
  for balances, where leaving the uint256 range is an error and never wraps.

Addresses are canonicalised to ``0x`` + 40 lowercase hex characters.
EIP-55 mixed-case checksums are supported for display.
"""

from __future__ import annotations

from typing import Union

from Crypto.Hash import keccak

from evmsim.core.constants import UINT160_MAX, UINT256_CEILING, UINT256_MAX, ADDRESS_BYTES
from evmsim.core.simulation_exceptions import ArithmeticBoundsError

AddressLike = Union[str, int, bytes, bytearray]

ZERO_ADDRESS = "0x" + "0" * 40


def keccak256(data: bytes) -> bytes:
    """Compute keccak256 hash (same as Ethereum)."""
    k = keccak.new(digest_bits=256)
    k.update(bytes(data))
    return k.digest()


EMPTY_CODE_HASH = keccak256(b"")


# ==================== Word arithmetic ====================


def to_uint256(value: int) -> int:
    """Wrap an arbitrary int into the uint256 range."""
    return value & UINT256_MAX


def to_signed(value: int) -> int:
    """Interpret a uint256 word as a two's complement signed integer."""
    value &= UINT256_MAX
    if value >= 2**255:
        return value - UINT256_CEILING
    return value


def to_unsigned(value: int) -> int:
    """Convert a signed integer to its uint256 two's complement encoding."""
    return value & UINT256_MAX


def sign_extend(value: int, byte_index: int) -> int:
    """Sign-extend ``value`` from byte ``byte_index`` (0 = lowest byte).

    Implements SIGNEXTEND: indices of 31 and above leave the word unchanged.
    """
    if byte_index >= 31:
        return value & UINT256_MAX
    bit = byte_index * 8 + 7
    mask = (1 << (bit + 1)) - 1
    if value & (1 << bit):
        return (value | (UINT256_MAX ^ mask)) & UINT256_MAX
    return value & mask


def _check_range(result: int, op: str) -> int:
    if result < 0 or result > UINT256_MAX:
        raise ArithmeticBoundsError(
            f"uint256 {op} out of range",
            details={"operation": op, "result": result},
        )
    return result


def checked_add(a: int, b: int) -> int:
    """Add two uint256 values, raising instead of wrapping on overflow."""
    return _check_range(a + b, "add")


def checked_sub(a: int, b: int) -> int:
    """Subtract two uint256 values, raising instead of wrapping on underflow."""
    return _check_range(a - b, "sub")


def checked_mul(a: int, b: int) -> int:
    """Multiply two uint256 values, raising instead of wrapping on overflow."""
    return _check_range(a * b, "mul")


def ceil32(value: int) -> int:
    """Round ``value`` up to the next multiple of 32."""
    return (value + 31) // 32 * 32


def word_count(size: int) -> int:
    """Number of 32-byte words needed to hold ``size`` bytes."""
    return (size + 31) // 32


# ==================== Addresses ====================


def normalize_address(address: AddressLike) -> str:
    """
    Canonicalise an address to ``0x`` + 40 lowercase hex characters.

    Accepts hex strings (with or without ``0x``, any case), ints (the low 160
    bits of a stack word are used, as CALL/BALANCE do) and 20-byte values.

    Raises:
        ValueError: If the value cannot be interpreted as an address
    """
    if isinstance(address, bool):
        raise ValueError("Address cannot be a bool")
    if isinstance(address, int):
        if address < 0:
            raise ValueError(f"Address cannot be negative: {address}")
        return int_to_address(address & UINT160_MAX)
    if isinstance(address, (bytes, bytearray)):
        if len(address) != ADDRESS_BYTES:
            raise ValueError(f"Address must be {ADDRESS_BYTES} bytes, got {len(address)}")
        return "0x" + bytes(address).hex()
    if isinstance(address, str):
        hex_part = address[2:] if address[:2].lower() == "0x" else address
        if len(hex_part) != 40:
            raise ValueError(f"Address hex part must be 40 characters, got {len(hex_part)}")
        try:
            int(hex_part, 16)
        except ValueError:
            raise ValueError(f"Invalid hex characters in address: {address}")
        return "0x" + hex_part.lower()
    raise ValueError(f"Unsupported address type: {type(address).__name__}")


def is_address(value: object) -> bool:
    """Return True if ``value`` can be canonicalised as an address."""
    try:
        normalize_address(value)  # type: ignore[arg-type]
    except ValueError:
        return False
    return True


def address_to_int(address: AddressLike) -> int:
    """Convert an address to its integer (stack word) form."""
    return int(normalize_address(address)[2:], 16)


def int_to_address(value: int) -> str:
    """Convert the low 160 bits of an int to a canonical address."""
    return f"0x{value & UINT160_MAX:040x}"


def address_to_bytes(address: AddressLike) -> bytes:
    """Convert an address to its 20-byte form."""
    return bytes.fromhex(normalize_address(address)[2:])


def to_checksum_address(address: AddressLike) -> str:
    """
    Convert an address to EIP-55 mixed-case checksum format.

    Example:
        >>> to_checksum_address("0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed")
        '0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed'
    """
    hex_lower = normalize_address(address)[2:]
    address_hash = keccak256(hex_lower.encode("utf-8")).hex()

    checksummed = []
    for i, char in enumerate(hex_lower):
        if char in "0123456789":
            checksummed.append(char)
        elif int(address_hash[i], 16) >= 8:
            checksummed.append(char.upper())
        else:
            checksummed.append(char)
    return "0x" + "".join(checksummed)


def is_checksum_valid(address: str) -> bool:
    """Return True if a mixed-case address carries a valid EIP-55 checksum.

    All-lowercase and all-uppercase addresses carry no checksum and are
    accepted.
    """
    if not is_address(address):
        return False
    hex_part = address[2:] if address[:2].lower() == "0x" else address
    if hex_part == hex_part.lower() or hex_part == hex_part.upper():
        return True
    return to_checksum_address(address)[2:] == hex_part


# ==================== Byte helpers ====================


def parse_hex_bytes(value: Union[str, bytes, bytearray, None]) -> bytes:
    """Decode ``0x``-prefixed (or bare) hex strings; pass bytes through."""
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = value.strip()
    if text[:2].lower() == "0x":
        text = text[2:]
    if len(text) % 2:
        text = "0" + text
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise ValueError(f"Invalid hex data: {value[:20]}...") from exc


def parse_uint(value: Union[int, str]) -> int:
    """Parse an int or a decimal/``0x`` hex string into a uint256."""
    if isinstance(value, bool):
        raise ValueError("Integer value cannot be a bool")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        text = value.strip().replace("_", "")
        result = int(text, 16) if text[:2].lower() == "0x" else int(text)
    else:
        raise ValueError(f"Unsupported integer type: {type(value).__name__}")
    if result < 0 or result > UINT256_MAX:
        raise ValueError(f"Value out of uint256 range: {value}")
    return result
