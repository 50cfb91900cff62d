"""
World State Store: accounts, state diffs, snapshots and the transaction journal.
"""

from evmsim.core.state.account import Account, empty_account
from evmsim.core.state.journal import StateJournal
from evmsim.core.state.state_diff import EMPTY_DIFF, AccountDiff, StateDiff, StorageChange
from evmsim.core.state.world_state import BlockEnvironment, SnapshotHandle, StateView, WorldState

__all__ = [
    "Account",
    "AccountDiff",
    "BlockEnvironment",
    "EMPTY_DIFF",
    "SnapshotHandle",
    "StateDiff",
    "StateJournal",
    "StateView",
    "StorageChange",
    "WorldState",
    "empty_account",
]
