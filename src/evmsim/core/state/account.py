"""
Account records held by the World State Store.

Account instances are immutable: the store replaces a record wholesale when
a transaction commits, which is what lets snapshots share unchanged records.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from evmsim.core.primitives import (
    EMPTY_CODE_HASH,
    keccak256,
    normalize_address,
    parse_hex_bytes,
    parse_uint,
)

_EMPTY_STORAGE: Mapping[int, int] = MappingProxyType({})


def freeze_storage(storage: Optional[Mapping[int, int]]) -> Mapping[int, int]:
    """Copy ``storage`` into a read-only mapping, dropping zero slots."""
    if not storage:
        return _EMPTY_STORAGE
    return MappingProxyType({key: value for key, value in storage.items() if value})


@dataclass(frozen=True)
class Account:
    """
    Read-only account record.

    Attributes:
        address: Canonical 0x-prefixed lowercase address
        balance: uint256 balance in wei
        nonce: Transaction/creation counter
        code: Deployed bytecode (empty for externally owned accounts)
        storage: Persistent storage; unset keys read as zero
    """

    address: str
    balance: int = 0
    nonce: int = 0
    code: bytes = b""
    storage: Mapping[int, int] = field(default_factory=lambda: _EMPTY_STORAGE)

    @property
    def code_hash(self) -> bytes:
        return keccak256(self.code) if self.code else EMPTY_CODE_HASH

    @property
    def has_code(self) -> bool:
        return bool(self.code)

    @property
    def is_empty(self) -> bool:
        """EIP-161 emptiness: no code, zero nonce and zero balance."""
        return not self.code and self.nonce == 0 and self.balance == 0

    def storage_at(self, key: int) -> int:
        return self.storage.get(key, 0)

    def evolve(self, **changes: Any) -> "Account":
        """Return a copy with ``changes`` applied (storage is re-frozen)."""
        if "storage" in changes:
            changes["storage"] = freeze_storage(changes["storage"])
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "balance": self.balance,
            "nonce": self.nonce,
            "code": "0x" + self.code.hex(),
            "storage": {hex(key): hex(value) for key, value in sorted(self.storage.items())},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Account":
        """Build an account from a scenario/export dictionary."""
        storage = {
            parse_uint(key): parse_uint(value)
            for key, value in (data.get("storage") or {}).items()
        }
        return cls(
            address=normalize_address(data["address"]),
            balance=parse_uint(data.get("balance", 0)),
            nonce=parse_uint(data.get("nonce", 0)),
            code=parse_hex_bytes(data.get("code")),
            storage=freeze_storage(storage),
        )


def empty_account(address: str) -> Account:
    """Placeholder record returned for addresses that do not exist yet."""
    return Account(address=address)
