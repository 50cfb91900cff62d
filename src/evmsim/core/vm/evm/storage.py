"""
Contract storage views used by the interpreter.

EVMStorage prices SLOAD/SSTORE under EIP-2929 (warm/cold access) and
EIP-2200/EIP-3529 (net gas metering with reduced refunds). Values live in
the transaction's StateJournal so that a failing frame's writes are undone
with the rest of its scope.
"""

from __future__ import annotations

from typing import Tuple

from evmsim.core.constants import (
    GAS_COLD_SLOAD,
    GAS_SSTORE_RESET,
    GAS_SSTORE_SENTRY,
    GAS_SSTORE_SET,
    GAS_TRANSIENT,
    GAS_WARM_ACCESS,
    REFUND_SSTORE_CLEARS,
)
from evmsim.core.state.journal import StateJournal
from evmsim.core.vm.exceptions import OutOfGasError


class EVMStorage:
    """Persistent storage of one contract, seen through the journal."""

    def __init__(self, journal: StateJournal, address: str) -> None:
        self.journal = journal
        self.address = address

    def get(self, key: int) -> int:
        """Unpriced read."""
        return self.journal.get_storage(self.address, key)

    def load(self, key: int) -> Tuple[int, int]:
        """
        SLOAD.

        Returns:
            (value, gas_cost)
        """
        cold = self.journal.warm_slot(self.address, key)
        gas = GAS_COLD_SLOAD if cold else GAS_WARM_ACCESS
        return self.journal.get_storage(self.address, key), gas

    def store(self, key: int, value: int, gas_left: int) -> Tuple[int, int]:
        """
        SSTORE.

        Args:
            key: Storage slot
            value: New value
            gas_left: Gas remaining in the frame (EIP-2200 sentry check)

        Returns:
            (gas_cost, refund_delta); the refund delta may be negative

        Raises:
            OutOfGasError: If 2300 gas or less remains
        """
        if gas_left <= GAS_SSTORE_SENTRY:
            raise OutOfGasError("Out of gas: SSTORE requires more than the call stipend")

        gas = 0
        if self.journal.warm_slot(self.address, key):
            gas += GAS_COLD_SLOAD

        current = self.journal.get_storage(self.address, key)
        original = self.journal.get_original_storage(self.address, key)
        refund = 0

        if current == value:
            gas += GAS_WARM_ACCESS
        elif original == current:
            if original == 0:
                gas += GAS_SSTORE_SET
            else:
                gas += GAS_SSTORE_RESET
                if value == 0:
                    refund += REFUND_SSTORE_CLEARS
        else:
            gas += GAS_WARM_ACCESS
            if original != 0:
                if current == 0:
                    refund -= REFUND_SSTORE_CLEARS
                elif value == 0:
                    refund += REFUND_SSTORE_CLEARS
            if original == value:
                if original == 0:
                    refund += GAS_SSTORE_SET - GAS_WARM_ACCESS
                else:
                    refund += GAS_SSTORE_RESET - GAS_WARM_ACCESS

        self.journal.set_storage(self.address, key, value)
        return gas, refund


class TransientStorage:
    """EIP-1153 transient storage of one contract; cleared after the transaction."""

    def __init__(self, journal: StateJournal, address: str) -> None:
        self.journal = journal
        self.address = address

    def load(self, key: int) -> Tuple[int, int]:
        return self.journal.get_transient(self.address, key), GAS_TRANSIENT

    def store(self, key: int, value: int) -> int:
        self.journal.set_transient(self.address, key, value)
        return GAS_TRANSIENT
