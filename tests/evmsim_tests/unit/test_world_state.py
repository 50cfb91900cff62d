"""
Unit tests for WorldState.

Coverage targets:
- Reads of unknown addresses return empty accounts
- Setup operations (import, create, mint, advance_block)
- Atomic apply with pre-image conflict detection
- Snapshot/restore semantics and handle invalidation
- Deterministic state roots
"""

import pytest

from evmsim.core.simulation_exceptions import InvalidSnapshotError, StateConflictError, StateError
from evmsim.core.state.account import Account
from evmsim.core.state.state_diff import AccountDiff, StateDiff, StorageChange
from evmsim.core.state.world_state import SnapshotHandle, WorldState

from sim_helpers import ALICE, BOB, CAROL


def test_unknown_address_reads_empty(world_state):
    account = world_state.get_account(CAROL)
    assert account.balance == 0
    assert account.nonce == 0
    assert account.code == b""
    assert account.is_empty
    assert not world_state.account_exists(CAROL)


def test_account_defaults():
    account = Account(address=CAROL)
    assert account.storage_at(7) == 0
    assert dict(account.storage) == {}
    assert account.is_empty
    assert account.evolve(storage={1: 5}).storage_at(1) == 5
    assert Account(address=BOB).storage is account.storage


def test_import_normalizes_and_replaces(world_state):
    world_state.import_accounts([{"address": ALICE.upper().replace("0X", "0x"), "balance": "0x10", "nonce": 3}])
    account = world_state.get_account(ALICE)
    assert account.balance == 16
    assert account.nonce == 3


def test_import_storage_and_code():
    state = WorldState()
    state.import_accounts([{"address": CAROL, "code": "0x6000", "storage": {"0x1": "0x2a"}}])
    assert state.get_code(CAROL) == b"\x60\x00"
    assert state.get_storage(CAROL, 1) == 42
    assert state.get_storage(CAROL, 2) == 0


def test_mint_creates_and_credits(world_state):
    assert world_state.mint(CAROL, 50) == 50
    assert world_state.mint(CAROL, 25) == 75
    with pytest.raises(StateError):
        world_state.mint(CAROL, -1)


def test_create_account_is_idempotent(world_state):
    world_state.create_account(CAROL)
    world_state.mint(CAROL, 5)
    world_state.create_account(CAROL)
    assert world_state.get_balance(CAROL) == 5


def test_advance_block_moves_number_and_timestamp(world_state):
    before = world_state.block
    after = world_state.advance_block(12)
    assert after.number == before.number + 1
    assert after.timestamp == before.timestamp + 12
    assert world_state.block_hash(before.number) != 0
    assert world_state.block_hash(after.number) == 0


def test_setup_refused_while_transaction_open(world_state):
    with world_state.transaction():
        with pytest.raises(StateError):
            world_state.mint(ALICE, 1)
        with pytest.raises(StateError):
            world_state.snapshot()
    assert not world_state.in_transaction


def test_nested_transaction_ownership_refused(world_state):
    with world_state.transaction():
        with pytest.raises(StateError):
            with world_state.transaction():
                pass


class TestApply:
    def test_apply_transfers_balances(self, world_state):
        diff = StateDiff(
            accounts=(
                AccountDiff(address=ALICE, balance=(1000, 600)),
                AccountDiff(address=BOB, balance=(0, 400)),
            )
        )
        world_state.apply(diff)
        assert world_state.get_balance(ALICE) == 600
        assert world_state.get_balance(BOB) == 400

    def test_conflicting_preimage_changes_nothing(self, world_state):
        diff = StateDiff(
            accounts=(
                AccountDiff(address=ALICE, balance=(1000, 600)),
                AccountDiff(address=BOB, balance=(7, 407)),
            )
        )
        root = world_state.state_root()
        with pytest.raises(StateConflictError):
            world_state.apply(diff)
        assert world_state.state_root() == root
        assert world_state.get_balance(ALICE) == 1000

    def test_double_apply_is_a_conflict(self, world_state):
        diff = StateDiff(accounts=(AccountDiff(address=ALICE, nonce=(0, 1)),))
        world_state.apply(diff)
        with pytest.raises(StateConflictError):
            world_state.apply(diff)
        assert world_state.get_nonce(ALICE) == 1

    def test_create_existing_account_conflicts(self, world_state):
        diff = StateDiff(accounts=(AccountDiff(address=ALICE, created=True, balance=(0, 5)),))
        with pytest.raises(StateConflictError):
            world_state.apply(diff)

    def test_modify_missing_account_conflicts(self, world_state):
        diff = StateDiff(accounts=(AccountDiff(address=CAROL, balance=(0, 5)),))
        with pytest.raises(StateConflictError):
            world_state.apply(diff)

    def test_storage_changes_and_zero_deletes(self):
        state = WorldState(accounts=[Account(address=CAROL, storage={1: 5})])
        diff = StateDiff(
            accounts=(
                AccountDiff(
                    address=CAROL,
                    storage=(StorageChange(key=1, before=5, after=0), StorageChange(key=2, before=0, after=9)),
                ),
            )
        )
        state.apply(diff)
        assert dict(state.get_account(CAROL).storage) == {2: 9}

    def test_storage_preimage_mismatch(self):
        state = WorldState(accounts=[Account(address=CAROL, storage={1: 5})])
        diff = StateDiff(accounts=(AccountDiff(address=CAROL, storage=(StorageChange(key=1, before=4, after=0),)),))
        with pytest.raises(StateConflictError):
            state.apply(diff)


class TestSnapshots:
    def test_restore_reverts_all_changes(self, world_state):
        handle = world_state.snapshot()
        root = world_state.state_root()
        world_state.mint(CAROL, 10)
        world_state.advance_block(12)
        world_state.restore(handle)
        assert world_state.state_root() == root
        assert not world_state.account_exists(CAROL)
        assert world_state.block.number == handle.block_number

    def test_restore_invalidates_later_handles(self, world_state):
        first = world_state.snapshot()
        world_state.mint(ALICE, 1)
        second = world_state.snapshot()
        world_state.restore(first)
        assert world_state.has_snapshot(first)
        assert not world_state.has_snapshot(second)
        with pytest.raises(InvalidSnapshotError):
            world_state.restore(second)

    def test_handle_can_be_restored_repeatedly(self, world_state):
        handle = world_state.snapshot()
        for amount in (1, 2, 3):
            world_state.mint(ALICE, amount)
            world_state.restore(handle)
            assert world_state.get_balance(ALICE) == 1000

    def test_unknown_and_released_handles(self, world_state):
        with pytest.raises(InvalidSnapshotError):
            world_state.restore(SnapshotHandle(id=999, block_number=1))
        handle = world_state.snapshot()
        assert world_state.release(handle)
        assert not world_state.release(handle)
        with pytest.raises(InvalidSnapshotError):
            world_state.restore(handle)
        with pytest.raises(InvalidSnapshotError):
            world_state.snapshot_accounts(handle)

    def test_snapshot_accounts_inspection(self, world_state):
        handle = world_state.snapshot()
        world_state.mint(ALICE, 5)
        captured = world_state.snapshot_accounts(handle)
        assert captured[ALICE].balance == 1000
        assert world_state.snapshot_count == 1


def test_state_root_is_order_independent():
    first = WorldState()
    first.import_accounts([{"address": ALICE, "balance": 1}, {"address": BOB, "balance": 2}])
    second = WorldState()
    second.import_accounts([{"address": BOB, "balance": 2}, {"address": ALICE, "balance": 1}])
    assert first.state_root() == second.state_root()
    second.mint(BOB, 1)
    assert first.state_root() != second.state_root()


def test_view_is_read_only(world_state):
    view = world_state.view()
    assert view.get_balance(ALICE) == 1000
    assert view.state_root() == world_state.state_root()
    assert not hasattr(view, "mint")
    assert not hasattr(view, "apply")
