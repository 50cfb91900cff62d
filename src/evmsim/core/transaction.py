"""
evmsim Core - Transaction

An EVM-style message call or contract creation submitted by an agent.

Transactions are immutable and consumed exactly once by the Execution
Engine. Structural problems (malformed addresses, negative amounts) are
caught at construction; state-dependent checks (nonce, balance, gas) happen
at execution time and produce a REJECTED outcome instead of an exception.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from evmsim.core.constants import (
    INITCODE_WORD_GAS,
    TX_BASE_GAS,
    TX_CREATE_GAS,
    TX_DATA_NONZERO_GAS,
    TX_DATA_ZERO_GAS,
    UINT256_MAX,
)
from evmsim.core.primitives import keccak256, normalize_address, parse_hex_bytes, parse_uint, word_count
from evmsim.core.simulation_exceptions import InvalidTransactionError


def canonical_json(data: Dict[str, Any]) -> str:
    """Produce a deterministic JSON string for hashing.

    - sort_keys=True: Consistent key ordering
    - separators=(',', ':'): No whitespace variations
    - ensure_ascii=True: No unicode encoding variations
    """
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def intrinsic_gas(data: bytes, is_create: bool) -> int:
    """Gas charged before any bytecode runs.

    21000 base, 4 per zero and 16 per non-zero calldata byte, plus 32000 and
    the EIP-3860 word cost for contract creation.
    """
    zero_bytes = data.count(0)
    gas = TX_BASE_GAS + zero_bytes * TX_DATA_ZERO_GAS + (len(data) - zero_bytes) * TX_DATA_NONZERO_GAS
    if is_create:
        gas += TX_CREATE_GAS + word_count(len(data)) * INITCODE_WORD_GAS
    return gas


@dataclass(frozen=True)
class Transaction:
    """
    Message call or contract creation.

    Attributes:
        sender: Originating externally owned account
        to: Target address; None means contract creation
        value: Wei transferred with the call
        data: Calldata, or init code for a creation
        gas_limit: Maximum gas the transaction may consume
        gas_price: Wei paid per unit of gas (must cover the block base fee)
        nonce: Explicit nonce; None takes the sender's nonce at execution time
    """

    sender: str
    to: Optional[str] = None
    value: int = 0
    data: bytes = b""
    gas_limit: int = TX_BASE_GAS
    gas_price: int = 0
    nonce: Optional[int] = None
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "sender", normalize_address(self.sender))
            if self.to is not None:
                object.__setattr__(self, "to", normalize_address(self.to))
        except ValueError as exc:
            raise InvalidTransactionError(f"Invalid transaction address: {exc}") from exc

        object.__setattr__(self, "data", bytes(self.data))
        for name in ("value", "gas_limit", "gas_price"):
            amount = getattr(self, name)
            if isinstance(amount, bool) or not isinstance(amount, int):
                raise InvalidTransactionError(
                    f"{name} must be an integer", details={"field": name, "value": repr(amount)}
                )
            if amount < 0 or amount > UINT256_MAX:
                raise InvalidTransactionError(
                    f"{name} out of uint256 range", details={"field": name, "value": amount}
                )
        if self.nonce is not None and (isinstance(self.nonce, bool) or self.nonce < 0):
            raise InvalidTransactionError("nonce must be a non-negative integer", details={"nonce": self.nonce})

    @property
    def is_create(self) -> bool:
        return self.to is None

    @property
    def intrinsic_gas(self) -> int:
        return intrinsic_gas(self.data, self.is_create)

    @property
    def max_cost(self) -> int:
        """Value plus the gas fee at full gas limit, reserved up front."""
        return self.value + self.gas_limit * self.gas_price

    def with_nonce(self, nonce: int) -> "Transaction":
        return Transaction(
            sender=self.sender,
            to=self.to,
            value=self.value,
            data=self.data,
            gas_limit=self.gas_limit,
            gas_price=self.gas_price,
            nonce=nonce,
            metadata=self.metadata,
        )

    def calculate_hash(self) -> str:
        """Deterministic transaction id over the canonical field encoding."""
        return "0x" + keccak256(canonical_json(self.to_dict()).encode("ascii")).hex()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sender": self.sender,
            "to": self.to,
            "value": self.value,
            "data": "0x" + self.data.hex(),
            "gas_limit": self.gas_limit,
            "gas_price": self.gas_price,
            "nonce": self.nonce,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Transaction":
        nonce = data.get("nonce")
        return cls(
            sender=data["sender"],
            to=data.get("to"),
            value=parse_uint(data.get("value", 0)),
            data=parse_hex_bytes(data.get("data")),
            gas_limit=parse_uint(data.get("gas_limit", TX_BASE_GAS)),
            gas_price=parse_uint(data.get("gas_price", 0)),
            nonce=None if nonce is None else parse_uint(nonce),
        )
