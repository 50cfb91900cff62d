"""
Transaction-scoped journal over the World State Store.

The Execution Engine never writes to the World State directly. It reads and
writes through a StateJournal: reads fall through to the store, writes land
in an overlay and are recorded in an undo log. Each call frame opens a scope;
a failing frame discards only its own scope, a successful frame folds its
scope into the parent's. When the top-level frame succeeds, ``to_diff()``
turns the overlay into the StateDiff the store applies atomically.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Set, Tuple

from evmsim.core.constants import MAX_NONCE
from evmsim.core.primitives import checked_add, normalize_address
from evmsim.core.simulation_exceptions import InsufficientBalanceError, NonceError, StateError
from evmsim.core.state.state_diff import AccountDiff, StateDiff, StorageChange
from evmsim.core.state.world_state import WorldState


class _MutableAccount:
    """Working copy of an account inside a journal."""

    __slots__ = ("balance", "nonce", "code", "storage", "exists")

    def __init__(self, balance: int, nonce: int, code: bytes, exists: bool) -> None:
        self.balance = balance
        self.nonce = nonce
        self.code = code
        self.storage: Dict[int, int] = {}
        self.exists = exists


# Undo entry kinds
_BALANCE = "balance"
_NONCE = "nonce"
_CODE = "code"
_EXISTS = "exists"
_STORAGE = "storage"
_TRANSIENT = "transient"
_WARM_ADDRESS = "warm_address"
_WARM_SLOT = "warm_slot"
_LOG = "log"
_REFUND = "refund"
_CREATED = "created"
_DESTROYED = "destroyed"


class StateJournal:
    """
    Overlay of one transaction's pending writes with nested undo scopes.

    Besides account fields it journals everything that must roll back with a
    failing frame: transient storage, warm address/slot sets, emitted logs,
    the refund counter and created/destroyed account sets.
    """

    def __init__(self, world_state: WorldState) -> None:
        self.world_state = world_state
        self._accounts: Dict[str, _MutableAccount] = {}
        self._transient: Dict[Tuple[str, int], int] = {}
        self._warm_addresses: Set[str] = set()
        self._warm_slots: Set[Tuple[str, int]] = set()
        self._logs: List[Any] = []
        self._refund = 0
        self._created: Set[str] = set()
        self._destroyed: Set[str] = set()
        self._scopes: List[List[Tuple[Any, ...]]] = [[]]

    # ==================== Scopes ====================

    @property
    def depth(self) -> int:
        return len(self._scopes) - 1

    def enter_scope(self) -> None:
        self._scopes.append([])

    def commit_scope(self) -> None:
        """Fold the innermost scope's undo entries into its parent."""
        if len(self._scopes) < 2:
            raise StateError("No open journal scope to commit")
        entries = self._scopes.pop()
        self._scopes[-1].extend(entries)

    def discard_scope(self) -> None:
        """Undo every write made since the matching ``enter_scope``."""
        if len(self._scopes) < 2:
            raise StateError("No open journal scope to discard")
        entries = self._scopes.pop()
        for entry in reversed(entries):
            self._undo(entry)

    def _record(self, *entry: Any) -> None:
        self._scopes[-1].append(entry)

    def _undo(self, entry: Tuple[Any, ...]) -> None:
        kind = entry[0]
        if kind == _BALANCE:
            self._accounts[entry[1]].balance = entry[2]
        elif kind == _NONCE:
            self._accounts[entry[1]].nonce = entry[2]
        elif kind == _CODE:
            self._accounts[entry[1]].code = entry[2]
        elif kind == _EXISTS:
            self._accounts[entry[1]].exists = entry[2]
        elif kind == _STORAGE:
            _, address, key, had_key, previous = entry
            storage = self._accounts[address].storage
            if had_key:
                storage[key] = previous
            else:
                storage.pop(key, None)
        elif kind == _TRANSIENT:
            _, slot, previous = entry
            if previous:
                self._transient[slot] = previous
            else:
                self._transient.pop(slot, None)
        elif kind == _WARM_ADDRESS:
            self._warm_addresses.discard(entry[1])
        elif kind == _WARM_SLOT:
            self._warm_slots.discard(entry[1])
        elif kind == _LOG:
            self._logs.pop()
        elif kind == _REFUND:
            self._refund = entry[1]
        elif kind == _CREATED:
            self._created.discard(entry[1])
        elif kind == _DESTROYED:
            self._destroyed.discard(entry[1])

    # ==================== Accounts ====================

    def _load(self, address: str) -> _MutableAccount:
        account = self._accounts.get(address)
        if account is None:
            record = self.world_state.get_account(address)
            account = _MutableAccount(
                balance=record.balance,
                nonce=record.nonce,
                code=record.code,
                exists=self.world_state.account_exists(address),
            )
            self._accounts[address] = account
        return account

    def _touch(self, address: str) -> _MutableAccount:
        account = self._load(address)
        if not account.exists:
            self._record(_EXISTS, address, False)
            account.exists = True
        return account

    def account_exists(self, address: str) -> bool:
        return self._load(normalize_address(address)).exists

    def is_empty(self, address: str) -> bool:
        account = self._load(normalize_address(address))
        return not account.code and account.nonce == 0 and account.balance == 0

    def get_balance(self, address: str) -> int:
        return self._load(normalize_address(address)).balance

    def get_nonce(self, address: str) -> int:
        return self._load(normalize_address(address)).nonce

    def get_code(self, address: str) -> bytes:
        return self._load(normalize_address(address)).code

    def set_balance(self, address: str, balance: int) -> None:
        address = normalize_address(address)
        account = self._touch(address)
        self._record(_BALANCE, address, account.balance)
        account.balance = balance

    def add_balance(self, address: str, amount: int) -> None:
        """Credit ``amount``; overflowing uint256 raises ArithmeticBoundsError."""
        if amount == 0:
            self._touch(normalize_address(address))
            return
        self.set_balance(address, checked_add(self.get_balance(address), amount))

    def sub_balance(self, address: str, amount: int) -> None:
        """
        Debit ``amount``.

        Raises:
            InsufficientBalanceError: If the balance would go negative
        """
        balance = self.get_balance(address)
        if amount > balance:
            raise InsufficientBalanceError(
                "Insufficient balance for debit",
                address=normalize_address(address),
                balance=balance,
                required=amount,
            )
        if amount:
            self.set_balance(address, balance - amount)

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        """Move ``amount`` between accounts; the recipient is materialised."""
        self.sub_balance(sender, amount)
        self.add_balance(recipient, amount)

    def set_nonce(self, address: str, nonce: int) -> None:
        address = normalize_address(address)
        account = self._touch(address)
        self._record(_NONCE, address, account.nonce)
        account.nonce = nonce

    def increment_nonce(self, address: str) -> int:
        nonce = self.get_nonce(address) + 1
        if nonce > MAX_NONCE:
            raise NonceError(
                "Nonce cannot be incremented past 2**64 - 1",
                details={"address": normalize_address(address)},
            )
        self.set_nonce(address, nonce)
        return nonce

    def set_code(self, address: str, code: bytes) -> None:
        address = normalize_address(address)
        account = self._touch(address)
        self._record(_CODE, address, account.code)
        account.code = bytes(code)

    def has_collision(self, address: str) -> bool:
        """CREATE target already holds code, a nonce or storage."""
        address = normalize_address(address)
        account = self._load(address)
        if account.code or account.nonce:
            return True
        keys = set(account.storage) | set(self.world_state.get_account(address).storage)
        return any(self.get_storage(address, key) for key in keys)

    # ==================== Storage ====================

    def get_storage(self, address: str, key: int) -> int:
        address = normalize_address(address)
        account = self._load(address)
        if key in account.storage:
            return account.storage[key]
        return self.world_state.get_storage(address, key)

    def get_original_storage(self, address: str, key: int) -> int:
        """Value of the slot at the start of the transaction (EIP-2200)."""
        return self.world_state.get_storage(normalize_address(address), key)

    def set_storage(self, address: str, key: int, value: int) -> None:
        address = normalize_address(address)
        account = self._touch(address)
        had_key = key in account.storage
        self._record(_STORAGE, address, key, had_key, account.storage.get(key))
        account.storage[key] = value

    def get_transient(self, address: str, key: int) -> int:
        return self._transient.get((normalize_address(address), key), 0)

    def set_transient(self, address: str, key: int, value: int) -> None:
        slot = (normalize_address(address), key)
        self._record(_TRANSIENT, slot, self._transient.get(slot, 0))
        if value:
            self._transient[slot] = value
        else:
            self._transient.pop(slot, None)

    # ==================== Access lists (EIP-2929) ====================

    def is_warm(self, address: str) -> bool:
        return normalize_address(address) in self._warm_addresses

    def warm_address(self, address: str) -> bool:
        """Mark ``address`` warm; returns True if it was cold."""
        address = normalize_address(address)
        if address in self._warm_addresses:
            return False
        self._warm_addresses.add(address)
        self._record(_WARM_ADDRESS, address)
        return True

    def warm_slot(self, address: str, key: int) -> bool:
        """Mark a storage slot warm; returns True if it was cold."""
        slot = (normalize_address(address), key)
        if slot in self._warm_slots:
            return False
        self._warm_slots.add(slot)
        self._record(_WARM_SLOT, slot)
        return True

    @property
    def accessed_addresses(self) -> Set[str]:
        return set(self._warm_addresses)

    # ==================== Logs & refunds ====================

    def add_log(self, log: Any) -> None:
        self._logs.append(log)
        self._record(_LOG)

    @property
    def logs(self) -> List[Any]:
        return list(self._logs)

    @property
    def refund(self) -> int:
        return self._refund

    def add_refund(self, amount: int) -> None:
        self._record(_REFUND, self._refund)
        self._refund += amount

    def sub_refund(self, amount: int) -> None:
        self._record(_REFUND, self._refund)
        self._refund -= amount

    # ==================== Creation & self-destruct ====================

    def mark_created(self, address: str) -> None:
        address = normalize_address(address)
        if address not in self._created:
            self._created.add(address)
            self._record(_CREATED, address)

    def is_created(self, address: str) -> bool:
        return normalize_address(address) in self._created

    def mark_destroyed(self, address: str) -> None:
        address = normalize_address(address)
        if address not in self._destroyed:
            self._destroyed.add(address)
            self._record(_DESTROYED, address)

    def is_destroyed(self, address: str) -> bool:
        return normalize_address(address) in self._destroyed

    # ==================== Diff ====================

    def to_diff(self) -> StateDiff:
        """
        Build the StateDiff for everything written through this journal.

        Accounts that did not exist before and are still empty afterwards
        (touched by a zero-value call, for example) are left out.
        """
        if len(self._scopes) != 1:
            raise StateError("Cannot build a diff while journal scopes are open")

        diffs: List[AccountDiff] = []
        for address in sorted(self._accounts):
            account = self._accounts[address]
            existed = self.world_state.account_exists(address)
            base = self.world_state.get_account(address)

            if address in self._destroyed:
                if existed:
                    diffs.append(
                        AccountDiff(
                            address=address,
                            destroyed=True,
                            balance=(base.balance, 0),
                            nonce=(base.nonce, 0),
                            code=(base.code, b""),
                        )
                    )
                continue

            if not account.exists:
                continue

            storage = tuple(
                StorageChange(key=key, before=base.storage_at(key), after=value)
                for key, value in sorted(account.storage.items())
                if value != base.storage_at(key)
            )
            balance = (base.balance, account.balance) if account.balance != base.balance else None
            nonce = (base.nonce, account.nonce) if account.nonce != base.nonce else None
            code = (base.code, account.code) if account.code != base.code else None

            if not existed:
                if not account.code and not account.nonce and not account.balance and not storage:
                    continue
                diffs.append(
                    AccountDiff(
                        address=address,
                        created=True,
                        balance=balance,
                        nonce=nonce,
                        code=code,
                        storage=storage,
                    )
                )
                continue

            if balance is None and nonce is None and code is None and not storage:
                continue
            diffs.append(
                AccountDiff(address=address, balance=balance, nonce=nonce, code=code, storage=storage)
            )
        return StateDiff(accounts=tuple(diffs))

    def touched_addresses(self) -> List[str]:
        return sorted(address for address, account in self._accounts.items() if account.exists)

    def created_addresses(self) -> List[str]:
        return sorted(self._created)

    def destroyed_addresses(self) -> List[str]:
        return sorted(self._destroyed)
