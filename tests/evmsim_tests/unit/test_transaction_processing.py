"""
Unit tests for Transaction and ContractTransactionProcessor.

Coverage targets:
- Transaction validation, hashing and dict round trip
- Intrinsic gas accounting
- Processor routing between execute and call_static
- Default gas limit substitution
"""

import pytest

from evmsim.core.simulation_exceptions import InvalidTransactionError
from evmsim.core.transaction import Transaction, intrinsic_gas
from evmsim.core.vm import ContractTransactionProcessor, ExecutionStatus, execute_transaction

from sim_helpers import ALICE, BOB, STORE_42_CODE

CONTRACT = "0x" + "cc" * 20


class TestTransaction:
    def test_addresses_are_normalized(self):
        tx = Transaction(sender=ALICE.upper().replace("0X", "0x"), to=BOB[2:])
        assert tx.sender == ALICE
        assert tx.to == BOB
        assert not tx.is_create

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"sender": "0x1234"},
            {"sender": ALICE, "to": "nope"},
            {"sender": ALICE, "value": -1},
            {"sender": ALICE, "gas_limit": 2**256},
            {"sender": ALICE, "gas_price": True},
            {"sender": ALICE, "nonce": -1},
        ],
    )
    def test_invalid_fields(self, kwargs):
        with pytest.raises(InvalidTransactionError):
            Transaction(**kwargs)

    def test_hash_ignores_metadata(self):
        first = Transaction(sender=ALICE, to=BOB, value=1, metadata={"label": "a"})
        second = Transaction(sender=ALICE, to=BOB, value=1, metadata={"label": "b"})
        assert first.calculate_hash() == second.calculate_hash()
        assert first == second
        assert first.calculate_hash() != Transaction(sender=ALICE, to=BOB, value=2).calculate_hash()

    def test_dict_round_trip(self):
        tx = Transaction(sender=ALICE, to=None, value=3, data=b"\x00\x01", gas_limit=60_000, gas_price=2, nonce=4)
        assert Transaction.from_dict(tx.to_dict()) == tx

    def test_intrinsic_gas(self):
        assert intrinsic_gas(b"", False) == 21000
        assert intrinsic_gas(b"\x00\x01", False) == 21000 + 4 + 16
        assert intrinsic_gas(b"\x01" * 33, True) == 21000 + 33 * 16 + 32000 + 2 * 2
        assert Transaction(sender=ALICE, value=5, gas_limit=100, gas_price=3).max_cost == 305

    def test_with_nonce(self):
        tx = Transaction(sender=ALICE, to=BOB, metadata={"label": "x"})
        pinned = tx.with_nonce(7)
        assert pinned.nonce == 7
        assert pinned.metadata == {"label": "x"}


class TestProcessor:
    def test_process_commits(self, world_state, config):
        processor = ContractTransactionProcessor(world_state, config=config)
        outcome = processor.process(Transaction(sender=ALICE, to=BOB, value=10, gas_limit=21000))
        assert outcome.success
        assert world_state.get_balance(BOB) == 10

    def test_static_process_commits_nothing(self, world_state, config):
        world_state.import_accounts([{"address": CONTRACT, "code": "0x" + STORE_42_CODE.hex()}])
        processor = ContractTransactionProcessor(world_state, config=config)
        outcome = processor.process(Transaction(sender=ALICE, to=CONTRACT, gas_limit=100_000), static=True)
        assert outcome.success
        assert world_state.get_storage(CONTRACT, 0) == 0
        assert world_state.get_nonce(ALICE) == 0

    def test_zero_gas_limit_uses_default(self, world_state, config):
        processor = ContractTransactionProcessor(world_state, config=config)
        message = processor.build_message(Transaction(sender=ALICE, to=BOB, gas_limit=0))
        assert message.gas_limit == config.default_gas_limit

    def test_estimate_gas(self, world_state, config):
        processor = ContractTransactionProcessor(world_state, config=config)
        assert processor.estimate_gas(Transaction(sender=ALICE, to=BOB, value=1)) == 21000

    def test_execute_transaction_helper(self, world_state, config):
        outcome = execute_transaction(Transaction(sender=ALICE, to=BOB, value=2000), world_state, config)
        assert outcome.status == ExecutionStatus.REJECTED
        assert world_state.get_nonce(ALICE) == 0
