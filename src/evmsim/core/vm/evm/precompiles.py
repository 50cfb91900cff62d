"""
Precompiled contracts at addresses 0x01-0x05.

Cancun also defines 0x06-0x0a (BN254 pairing ops, BLAKE2f, KZG point
evaluation). They are not modelled here: a call to one of those addresses
fails and consumes the gas forwarded to it.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Callable, Dict, Tuple

from Crypto.Hash import RIPEMD160
from ecdsa import BadSignatureError, SECP256k1, VerifyingKey
from ecdsa.ecdsa import InvalidPointError
from ecdsa.numbertheory import SquareRootError
from ecdsa.util import sigdecode_string

from evmsim.core.primitives import int_to_address, keccak256, word_count
from evmsim.core.vm.exceptions import OutOfGasError, PrecompileError

logger = logging.getLogger(__name__)

ECRECOVER_GAS = 3000
SHA256_BASE_GAS = 60
SHA256_WORD_GAS = 12
RIPEMD160_BASE_GAS = 600
RIPEMD160_WORD_GAS = 120
IDENTITY_BASE_GAS = 15
IDENTITY_WORD_GAS = 3
MODEXP_MIN_GAS = 200

SECP256K1_N = SECP256k1.order

SUPPORTED_PRECOMPILES = frozenset(int_to_address(n) for n in range(1, 6))
UNSUPPORTED_PRECOMPILES = frozenset(int_to_address(n) for n in range(6, 11))
PRECOMPILE_ADDRESSES = SUPPORTED_PRECOMPILES | UNSUPPORTED_PRECOMPILES


def _read(data: bytes, offset: int, size: int) -> bytes:
    """Slice ``data`` with zero padding past its end."""
    chunk = data[offset:offset + size]
    return chunk + bytes(size - len(chunk))


def _charge(name: str, cost: int, gas: int) -> None:
    if cost > gas:
        raise OutOfGasError(f"Out of gas for {name}", details={"required": cost, "available": gas})


class EVMPrecompiles:
    """Dispatch and implementations of the supported precompiles."""

    @staticmethod
    def is_precompile(address: str) -> bool:
        return address in PRECOMPILE_ADDRESSES

    @staticmethod
    def execute_precompile(address: str, data: bytes, gas: int) -> Tuple[bytes, int]:
        """
        Run the precompile at ``address``.

        Returns:
            (output, gas_used)

        Raises:
            OutOfGasError: If ``gas`` does not cover the precompile's cost
            PrecompileError: If the address is an unsupported precompile
        """
        address = address.lower()
        if len(address) != 42:
            address = int_to_address(int(address, 16))
        handler = _HANDLERS.get(address)
        if handler is None:
            raise PrecompileError(
                f"Precompile {address} is not supported",
                details={"address": address},
            )
        return handler(bytes(data), gas)

    @staticmethod
    def ecrecover(data: bytes, gas: int) -> Tuple[bytes, int]:
        _charge("ECRECOVER", ECRECOVER_GAS, gas)
        digest = _read(data, 0, 32)
        v = int.from_bytes(_read(data, 32, 32), "big")
        r = int.from_bytes(_read(data, 64, 32), "big")
        s = int.from_bytes(_read(data, 96, 32), "big")
        if v not in (27, 28) or not (0 < r < SECP256K1_N) or not (0 < s < SECP256K1_N):
            return b"", ECRECOVER_GAS

        try:
            candidates = VerifyingKey.from_public_key_recovery_with_digest(
                r.to_bytes(32, "big") + s.to_bytes(32, "big"),
                digest,
                curve=SECP256k1,
                sigdecode=sigdecode_string,
                allow_truncate=True,
            )
        except (BadSignatureError, InvalidPointError, SquareRootError, ValueError, AssertionError) as exc:
            logger.debug(
                "ecrecover failed: %s",
                exc,
                extra={"event": "precompile.ecrecover_failed"},
            )
            return b"", ECRECOVER_GAS

        # Candidates are ordered by the parity of R.y: even first (v = 27)
        recovery_id = v - 27
        if recovery_id >= len(candidates):
            return b"", ECRECOVER_GAS
        public_key = candidates[recovery_id].to_string("uncompressed")[1:]
        address = keccak256(public_key)[12:]
        return bytes(12) + address, ECRECOVER_GAS

    @staticmethod
    def sha256(data: bytes, gas: int) -> Tuple[bytes, int]:
        cost = SHA256_BASE_GAS + SHA256_WORD_GAS * word_count(len(data))
        _charge("SHA256", cost, gas)
        return hashlib.sha256(data).digest(), cost

    @staticmethod
    def ripemd160(data: bytes, gas: int) -> Tuple[bytes, int]:
        cost = RIPEMD160_BASE_GAS + RIPEMD160_WORD_GAS * word_count(len(data))
        _charge("RIPEMD160", cost, gas)
        digest = RIPEMD160.new(data).digest()
        return bytes(12) + digest, cost

    @staticmethod
    def identity(data: bytes, gas: int) -> Tuple[bytes, int]:
        cost = IDENTITY_BASE_GAS + IDENTITY_WORD_GAS * word_count(len(data))
        _charge("IDENTITY", cost, gas)
        return data, cost

    @staticmethod
    def modexp(data: bytes, gas: int) -> Tuple[bytes, int]:
        """Modular exponentiation with EIP-2565 pricing."""
        base_len = int.from_bytes(_read(data, 0, 32), "big")
        exp_len = int.from_bytes(_read(data, 32, 32), "big")
        mod_len = int.from_bytes(_read(data, 64, 32), "big")

        # The exponent head is needed for pricing before anything large is read
        exp_head_len = min(exp_len, 32)
        exp_head = int.from_bytes(_read(data, 96 + base_len, exp_head_len), "big") if exp_head_len else 0
        if exp_len <= 32:
            iterations = exp_head.bit_length() - 1 if exp_head else 0
        else:
            iterations = 8 * (exp_len - 32) + max(exp_head.bit_length() - 1, 0)
        iterations = max(iterations, 1)

        words = (max(base_len, mod_len) + 7) // 8
        cost = max(MODEXP_MIN_GAS, (words * words) * iterations // 3)
        _charge("MODEXP", cost, gas)

        if mod_len == 0:
            return b"", cost
        base = int.from_bytes(_read(data, 96, base_len), "big")
        exponent = int.from_bytes(_read(data, 96 + base_len, exp_len), "big")
        modulus = int.from_bytes(_read(data, 96 + base_len + exp_len, mod_len), "big")
        if modulus == 0:
            return bytes(mod_len), cost
        return pow(base, exponent, modulus).to_bytes(mod_len, "big"), cost


_HANDLERS: Dict[str, Callable[[bytes, int], Tuple[bytes, int]]] = {
    int_to_address(1): EVMPrecompiles.ecrecover,
    int_to_address(2): EVMPrecompiles.sha256,
    int_to_address(3): EVMPrecompiles.ripemd160,
    int_to_address(4): EVMPrecompiles.identity,
    int_to_address(5): EVMPrecompiles.modexp,
}
