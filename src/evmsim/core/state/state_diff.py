"""
State diffs: the unit of commit between the Execution Engine and the store.

A diff records (before, after) pairs for every field a transaction changed.
The before values act as pre-images: the store refuses a diff whose
pre-images do not match its current state, which is how double-apply and
stale diffs are detected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Tuple


@dataclass(frozen=True)
class StorageChange:
    key: int
    before: int
    after: int


@dataclass(frozen=True)
class AccountDiff:
    """Changes applied to one account.

    ``None`` for balance/nonce/code means the field is unchanged.
    ``created`` means the account did not exist before the transaction;
    ``destroyed`` means it is removed from the store when the diff lands.
    """

    address: str
    created: bool = False
    destroyed: bool = False
    balance: Optional[Tuple[int, int]] = None
    nonce: Optional[Tuple[int, int]] = None
    code: Optional[Tuple[bytes, bytes]] = None
    storage: Tuple[StorageChange, ...] = ()

    @property
    def balance_delta(self) -> int:
        if self.balance is None:
            return 0
        return self.balance[1] - self.balance[0]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "address": self.address,
            "created": self.created,
            "destroyed": self.destroyed,
        }
        if self.balance is not None:
            data["balance"] = {"before": self.balance[0], "after": self.balance[1]}
        if self.nonce is not None:
            data["nonce"] = {"before": self.nonce[0], "after": self.nonce[1]}
        if self.code is not None:
            data["code"] = {"before": "0x" + self.code[0].hex(), "after": "0x" + self.code[1].hex()}
        if self.storage:
            data["storage"] = {
                hex(change.key): {"before": hex(change.before), "after": hex(change.after)}
                for change in self.storage
            }
        return data


@dataclass(frozen=True)
class StateDiff:
    """Ordered set of account changes produced by one transaction."""

    accounts: Tuple[AccountDiff, ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[AccountDiff]:
        return iter(self.accounts)

    def __len__(self) -> int:
        return len(self.accounts)

    @property
    def is_empty(self) -> bool:
        return not self.accounts

    def get(self, address: str) -> Optional[AccountDiff]:
        for account_diff in self.accounts:
            if account_diff.address == address:
                return account_diff
        return None

    @property
    def touched_addresses(self) -> Tuple[str, ...]:
        return tuple(account_diff.address for account_diff in self.accounts)

    def net_balance_change(self) -> int:
        """Sum of balance deltas; zero for a value-conserving transaction."""
        return sum(account_diff.balance_delta for account_diff in self.accounts)

    def to_dict(self) -> Dict[str, Any]:
        return {"accounts": [account_diff.to_dict() for account_diff in self.accounts]}


EMPTY_DIFF = StateDiff()
