"""
Unit tests for StateJournal.

Coverage targets:
- Nested scopes: commit folds into parent, discard undoes everything
- Journalled side state (transient storage, warm sets, logs, refunds)
- Diff construction (created accounts, skipped empty touches)
- Create collision detection
"""

import pytest

from evmsim.core.constants import MAX_NONCE
from evmsim.core.simulation_exceptions import InsufficientBalanceError, NonceError, StateError
from evmsim.core.state.journal import StateJournal

from sim_helpers import ALICE, BOB, CAROL


@pytest.fixture
def journal(world_state):
    return StateJournal(world_state)


def test_reads_fall_through_to_world_state(journal):
    assert journal.get_balance(ALICE) == 1000
    assert journal.get_nonce(ALICE) == 0
    assert journal.account_exists(BOB)
    assert not journal.account_exists(CAROL)


def test_discard_scope_undoes_writes(journal):
    journal.enter_scope()
    journal.transfer(ALICE, BOB, 300)
    journal.set_storage(BOB, 1, 7)
    journal.set_transient(BOB, 1, 9)
    journal.add_log("log")
    journal.add_refund(100)
    journal.warm_slot(BOB, 1)
    journal.discard_scope()

    assert journal.get_balance(ALICE) == 1000
    assert journal.get_balance(BOB) == 0
    assert journal.get_storage(BOB, 1) == 0
    assert journal.get_transient(BOB, 1) == 0
    assert journal.logs == []
    assert journal.refund == 0
    assert journal.warm_slot(BOB, 1) is True


def test_commit_scope_folds_into_parent(journal):
    journal.enter_scope()
    journal.enter_scope()
    journal.transfer(ALICE, BOB, 100)
    journal.commit_scope()
    assert journal.get_balance(BOB) == 100
    journal.discard_scope()
    assert journal.get_balance(BOB) == 0


def test_scope_underflow_raises(journal):
    with pytest.raises(StateError):
        journal.commit_scope()
    with pytest.raises(StateError):
        journal.discard_scope()


def test_overdraft_raises(journal):
    with pytest.raises(InsufficientBalanceError):
        journal.sub_balance(ALICE, 1001)


def test_to_diff_requires_closed_scopes(journal):
    journal.enter_scope()
    with pytest.raises(StateError):
        journal.to_diff()


def test_diff_marks_created_accounts(journal, world_state):
    journal.transfer(ALICE, CAROL, 10)
    diff = journal.to_diff()
    carol = diff.get(CAROL)
    assert carol.created
    assert carol.balance == (0, 10)
    assert diff.get(ALICE).balance == (1000, 990)
    assert diff.net_balance_change() == 0

    world_state.apply(diff)
    assert world_state.get_balance(CAROL) == 10


def test_empty_touch_is_left_out_of_diff(journal):
    journal.add_balance(CAROL, 0)
    assert journal.to_diff().get(CAROL) is None


def test_unchanged_storage_write_is_left_out(world_state):
    world_state.import_accounts([{"address": CAROL, "storage": {"0x1": "0x5"}}])
    journal = StateJournal(world_state)
    journal.set_storage(CAROL, 1, 6)
    journal.set_storage(CAROL, 1, 5)
    assert journal.to_diff().is_empty


def test_original_storage_ignores_pending_writes(world_state):
    world_state.import_accounts([{"address": CAROL, "storage": {"0x1": "0x5"}}])
    journal = StateJournal(world_state)
    journal.set_storage(CAROL, 1, 8)
    assert journal.get_storage(CAROL, 1) == 8
    assert journal.get_original_storage(CAROL, 1) == 5


def test_collision_detection(journal, world_state):
    assert not journal.has_collision(CAROL)
    journal.set_nonce(CAROL, 1)
    assert journal.has_collision(CAROL)
    world_state.import_accounts([{"address": "0x" + "dd" * 20, "storage": {"0x0": "0x1"}}])
    assert StateJournal(world_state).has_collision("0x" + "dd" * 20)


def test_warm_address_reports_first_access(journal):
    assert journal.warm_address(CAROL) is True
    assert journal.warm_address(CAROL) is False
    assert journal.is_warm(CAROL)
    assert CAROL in journal.accessed_addresses


def test_created_and_destroyed_sets_roll_back(journal):
    journal.enter_scope()
    journal.mark_created(CAROL)
    journal.mark_destroyed(CAROL)
    journal.discard_scope()
    assert not journal.is_created(CAROL)
    assert not journal.is_destroyed(CAROL)


def test_created_and_destroyed_listings(journal):
    journal.mark_created(CAROL)
    journal.mark_destroyed(BOB)
    assert journal.created_addresses() == [CAROL]
    assert journal.destroyed_addresses() == [BOB]


def test_nonce_cannot_overflow(journal):
    journal.set_nonce(ALICE, MAX_NONCE)
    with pytest.raises(NonceError):
        journal.increment_nonce(ALICE)
    assert journal.get_nonce(ALICE) == MAX_NONCE
