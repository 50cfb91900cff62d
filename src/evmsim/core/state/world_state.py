"""
World State Store - the authoritative account ledger of a simulation.

Maps addresses to immutable Account records plus the current block
environment. Committed changes arrive as StateDiffs and land atomically.
Snapshots are shallow copies of the address → record map: unchanged records
are shared between snapshots and the live state (copy-on-write at account
granularity), so taking one is cheap.

The store is exclusively owned by one Execution Engine invocation at a time;
``transaction()`` marks that ownership and snapshot/restore are refused
while it is held.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from evmsim.core.constants import (
    BLOCKHASH_WINDOW,
    DEFAULT_BLOCK_GAS_LIMIT,
    DEFAULT_CHAIN_ID,
    DEFAULT_GENESIS_TIMESTAMP,
)
from evmsim.core.primitives import (
    ZERO_ADDRESS,
    checked_add,
    keccak256,
    normalize_address,
)
from evmsim.core.simulation_exceptions import (
    InvalidSnapshotError,
    StateConflictError,
    StateError,
)
from evmsim.core.state.account import Account, empty_account
from evmsim.core.state.state_diff import AccountDiff, StateDiff
from evmsim.core.structured_logger import get_structured_logger


@dataclass(frozen=True)
class BlockEnvironment:
    """Block-level metadata visible to executing bytecode."""

    number: int = 1
    timestamp: int = DEFAULT_GENESIS_TIMESTAMP
    gas_limit: int = DEFAULT_BLOCK_GAS_LIMIT
    base_fee: int = 0
    coinbase: str = ZERO_ADDRESS
    chain_id: int = DEFAULT_CHAIN_ID
    prevrandao: int = 0

    def advanced(self, timestamp_delta: int) -> "BlockEnvironment":
        return replace(self, number=self.number + 1, timestamp=self.timestamp + timestamp_delta)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SnapshotHandle:
    """Opaque reference to a captured World State."""

    id: int
    block_number: int


@dataclass(frozen=True)
class _Capture:
    accounts: Mapping[str, Account]
    block: BlockEnvironment
    block_hashes: Mapping[int, bytes]


class StateView:
    """
    Read-only facade over a WorldState, handed to agents.

    Exposes getters only; agents cannot reach the store through it.
    """

    __slots__ = ("_state",)

    def __init__(self, state: "WorldState") -> None:
        self._state = state

    @property
    def block(self) -> BlockEnvironment:
        return self._state.block

    def get_account(self, address: str) -> Account:
        return self._state.get_account(address)

    def get_balance(self, address: str) -> int:
        return self._state.get_balance(address)

    def get_nonce(self, address: str) -> int:
        return self._state.get_nonce(address)

    def get_code(self, address: str) -> bytes:
        return self._state.get_code(address)

    def get_storage(self, address: str, key: int) -> int:
        return self._state.get_storage(address, key)

    def account_exists(self, address: str) -> bool:
        return self._state.account_exists(address)

    def addresses(self) -> List[str]:
        return self._state.addresses()

    def state_root(self) -> str:
        return self._state.state_root()


class WorldState:
    """
    Authoritative mapping of address → Account plus block metadata.

    Contract:
    - get_account(address) never fails; unknown addresses read as empty
    - apply(diff) is atomic; mismatched pre-images raise StateConflictError
    - snapshot() / restore(handle) capture and replace the whole state;
      restoring invalidates every handle taken after the restored one
    """

    def __init__(
        self,
        accounts: Optional[Iterable[Account]] = None,
        block: Optional[BlockEnvironment] = None,
    ) -> None:
        self._accounts: Dict[str, Account] = {}
        self.block = block or BlockEnvironment()
        self._block_hashes: Dict[int, bytes] = {}
        self._snapshots: Dict[int, _Capture] = {}
        self._next_snapshot_id = 1
        self._in_transaction = False
        self.logger = get_structured_logger()
        if accounts:
            self.import_accounts(accounts)

    # ==================== Reads ====================

    def account_exists(self, address: str) -> bool:
        return normalize_address(address) in self._accounts

    def get_account(self, address: str) -> Account:
        """Read-only record for ``address`` (an empty record if it does not exist)."""
        address = normalize_address(address)
        account = self._accounts.get(address)
        return account if account is not None else empty_account(address)

    def get_balance(self, address: str) -> int:
        return self.get_account(address).balance

    def get_nonce(self, address: str) -> int:
        return self.get_account(address).nonce

    def get_code(self, address: str) -> bytes:
        return self.get_account(address).code

    def get_storage(self, address: str, key: int) -> int:
        return self.get_account(address).storage_at(key)

    def addresses(self) -> List[str]:
        return sorted(self._accounts)

    def __len__(self) -> int:
        return len(self._accounts)

    def __iter__(self) -> Iterator[Account]:
        for address in sorted(self._accounts):
            yield self._accounts[address]

    def total_balance(self) -> int:
        return sum(account.balance for account in self._accounts.values())

    def view(self) -> StateView:
        return StateView(self)

    def block_hash(self, number: int) -> int:
        """BLOCKHASH semantics: hashes of the last 256 blocks, else 0."""
        if number >= self.block.number or number < self.block.number - BLOCKHASH_WINDOW:
            return 0
        digest = self._block_hashes.get(number)
        if digest is None:
            digest = keccak256(b"evmsim-block" + number.to_bytes(32, "big"))
        return int.from_bytes(digest, "big")

    def state_root(self) -> str:
        """
        Deterministic digest of every account and the block number.

        Two states with identical observable content produce the same root
        regardless of the order in which they were built.
        """
        hasher_input = bytearray()
        hasher_input += self.block.number.to_bytes(32, "big")
        for address in sorted(self._accounts):
            account = self._accounts[address]
            hasher_input += bytes.fromhex(address[2:])
            hasher_input += account.nonce.to_bytes(32, "big")
            hasher_input += account.balance.to_bytes(32, "big")
            hasher_input += account.code_hash
            for key in sorted(account.storage):
                hasher_input += key.to_bytes(32, "big")
                hasher_input += account.storage[key].to_bytes(32, "big")
        return "0x" + keccak256(bytes(hasher_input)).hex()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "block": self.block.to_dict(),
            "accounts": [account.to_dict() for account in self],
        }

    # ==================== Setup (outside transactions) ====================

    def import_accounts(self, accounts: Iterable[Union[Account, Mapping[str, Any]]]) -> int:
        """
        Load accounts wholesale, replacing any existing record at the same address.

        This is the entry point for initial snapshots, whether they come from
        a scenario file or an on-chain state export.

        Returns:
            Number of accounts imported
        """
        self._require_idle("import accounts")
        count = 0
        for entry in accounts:
            account = entry if isinstance(entry, Account) else Account.from_dict(entry)
            account = account.evolve(address=normalize_address(account.address), storage=account.storage)
            self._accounts[account.address] = account
            count += 1
        return count

    def create_account(self, address: str) -> Account:
        """Materialise an empty account if it does not exist yet."""
        self._require_idle("create account")
        address = normalize_address(address)
        account = self._accounts.get(address)
        if account is None:
            account = empty_account(address)
            self._accounts[address] = account
        return account

    def mint(self, address: str, amount: int) -> int:
        """
        Explicitly modelled issuance: credit ``amount`` out of thin air.

        Returns:
            The new balance
        """
        self._require_idle("mint")
        if amount < 0:
            raise StateError("Mint amount cannot be negative", details={"amount": amount})
        address = normalize_address(address)
        account = self._accounts.get(address) or empty_account(address)
        account = account.evolve(balance=checked_add(account.balance, amount))
        self._accounts[address] = account
        return account.balance

    def advance_block(self, timestamp_delta: int) -> BlockEnvironment:
        """Seal the current block and move to the next one."""
        self._require_idle("advance block")
        number = self.block.number
        self._block_hashes[number] = keccak256(
            number.to_bytes(32, "big") + bytes.fromhex(self.state_root()[2:])
        )
        for stale in [n for n in self._block_hashes if n < number - BLOCKHASH_WINDOW]:
            del self._block_hashes[stale]
        self.block = self.block.advanced(timestamp_delta)
        return self.block

    # ==================== Transaction ownership ====================

    @contextmanager
    def transaction(self) -> Iterator["WorldState"]:
        """Mark the store as owned by one executing transaction."""
        if self._in_transaction:
            raise StateError("World state is already owned by an executing transaction")
        self._in_transaction = True
        try:
            yield self
        finally:
            self._in_transaction = False

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def _require_idle(self, operation: str) -> None:
        if self._in_transaction:
            raise StateError(
                f"Cannot {operation} while a transaction is executing",
                details={"operation": operation},
            )

    # ==================== Commit ====================

    def apply(self, diff: StateDiff) -> bool:
        """
        Apply a state diff atomically.

        Every pre-image is checked before anything is written, so either all
        changes land or none do.

        Raises:
            StateConflictError: If any pre-image differs from current state
        """
        staged: List[Tuple[str, Optional[Account]]] = []
        for account_diff in diff:
            staged.append((account_diff.address, self._stage(account_diff)))

        for address, account in staged:
            if account is None:
                self._accounts.pop(address, None)
            else:
                self._accounts[address] = account
        return True

    def _stage(self, account_diff: AccountDiff) -> Optional[Account]:
        address = account_diff.address
        current = self._accounts.get(address)

        if account_diff.created and current is not None:
            raise StateConflictError(
                "State diff creates an account that already exists",
                details={"address": address},
            )
        if not account_diff.created and current is None:
            raise StateConflictError(
                "State diff modifies an account that does not exist",
                details={"address": address},
            )
        base = current if current is not None else empty_account(address)

        changes: Dict[str, Any] = {}
        for field_name in ("balance", "nonce", "code"):
            pair = getattr(account_diff, field_name)
            if pair is None:
                continue
            before, after = pair
            if getattr(base, field_name) != before:
                raise StateConflictError(
                    f"State diff {field_name} pre-image mismatch",
                    details={"address": address, "field": field_name},
                )
            changes[field_name] = after

        if account_diff.storage:
            storage = dict(base.storage)
            for change in account_diff.storage:
                if storage.get(change.key, 0) != change.before:
                    raise StateConflictError(
                        "State diff storage pre-image mismatch",
                        details={"address": address, "key": hex(change.key)},
                    )
                if change.after:
                    storage[change.key] = change.after
                else:
                    storage.pop(change.key, None)
            changes["storage"] = storage

        if account_diff.destroyed:
            return None
        return base.evolve(**changes) if changes else base

    # ==================== Snapshots ====================

    def snapshot(self) -> SnapshotHandle:
        """Capture the current state; cheap because records are shared."""
        self._require_idle("snapshot")
        handle = SnapshotHandle(id=self._next_snapshot_id, block_number=self.block.number)
        self._next_snapshot_id += 1
        self._snapshots[handle.id] = _Capture(
            accounts=dict(self._accounts),
            block=self.block,
            block_hashes=dict(self._block_hashes),
        )
        return handle

    def restore(self, handle: SnapshotHandle) -> None:
        """
        Replace the current state with a captured one.

        Handles taken after ``handle`` are invalidated; ``handle`` itself
        stays valid and can be restored again.

        Raises:
            InvalidSnapshotError: If the handle is unknown, released or invalidated
        """
        self._require_idle("restore")
        capture = self._snapshots.get(getattr(handle, "id", None))
        if capture is None:
            raise InvalidSnapshotError(
                "Unknown or invalidated snapshot handle",
                details={"handle": repr(handle)},
            )
        self._accounts = dict(capture.accounts)
        self.block = capture.block
        self._block_hashes = dict(capture.block_hashes)
        for later in [snap_id for snap_id in self._snapshots if snap_id > handle.id]:
            del self._snapshots[later]
        self.logger.debug("World state restored", snapshot=handle.id, block_number=self.block.number)

    def release(self, handle: SnapshotHandle) -> bool:
        """Drop a snapshot; returns False if it was already gone."""
        return self._snapshots.pop(handle.id, None) is not None

    def has_snapshot(self, handle: SnapshotHandle) -> bool:
        return handle.id in self._snapshots

    @property
    def snapshot_count(self) -> int:
        return len(self._snapshots)

    def snapshot_accounts(self, handle: SnapshotHandle) -> Dict[str, Account]:
        """Inspect a captured state without restoring it."""
        capture = self._snapshots.get(handle.id)
        if capture is None:
            raise InvalidSnapshotError(
                "Unknown or invalidated snapshot handle",
                details={"handle": repr(handle)},
            )
        return dict(capture.accounts)
