"""
Helpers shared by the interpreter's CREATE and CALL paths.
"""

from __future__ import annotations

from evmsim.core.constants import CALL_GAS_RETENTION_DIVISOR, GAS_CODE_DEPOSIT_BYTE, UINT256_MAX
from evmsim.core.primitives import address_to_bytes, int_to_address, keccak256
from evmsim.core.vm.evm.opcodes import Opcode, get_push_size

CODE_DEPOSIT_GAS = GAS_CODE_DEPOSIT_BYTE


def _rlp_encode_bytes(data: bytes) -> bytes:
    if len(data) == 1 and data[0] < 0x80:
        return data
    if len(data) < 56:
        return bytes([0x80 + len(data)]) + data
    length = len(data).to_bytes((len(data).bit_length() + 7) // 8, "big")
    return bytes([0xB7 + len(length)]) + length + data


def rlp_encode_address_nonce(address: str, nonce: int) -> bytes:
    """RLP encoding of the list [address, nonce] used to derive CREATE addresses."""
    nonce_bytes = nonce.to_bytes((nonce.bit_length() + 7) // 8, "big") if nonce else b""
    payload = _rlp_encode_bytes(address_to_bytes(address)) + _rlp_encode_bytes(nonce_bytes)
    return bytes([0xC0 + len(payload)]) + payload


def compute_create_address(sender: str, nonce: int) -> str:
    """CREATE address: keccak256(rlp([sender, nonce]))[12:]."""
    digest = keccak256(rlp_encode_address_nonce(sender, nonce))
    return int_to_address(int.from_bytes(digest[12:], "big"))


def compute_create2_address(sender: str, salt: int, init_code: bytes) -> str:
    """CREATE2 address: keccak256(0xff ++ sender ++ salt ++ keccak256(init_code))[12:]."""
    preimage = (
        b"\xff"
        + address_to_bytes(sender)
        + (salt & UINT256_MAX).to_bytes(32, "big")
        + keccak256(init_code)
    )
    return int_to_address(int.from_bytes(keccak256(preimage)[12:], "big"))


def compute_jump_destinations(code: bytes) -> frozenset:
    """Offsets of JUMPDEST instructions that are not inside PUSH immediates."""
    destinations = set()
    pc = 0
    length = len(code)
    while pc < length:
        opcode = code[pc]
        if opcode == Opcode.JUMPDEST:
            destinations.add(pc)
        pc += 1 + get_push_size(opcode)
    return frozenset(destinations)


def all_but_one_64th(gas: int) -> int:
    """EIP-150: the most gas a frame may forward to a child."""
    return gas - gas // CALL_GAS_RETENTION_DIVISOR
