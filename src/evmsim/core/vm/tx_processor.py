"""
Transaction processor: the Execution Engine's entry point.

Turns agent-submitted Transactions into ExecutionMessages and routes them to
the bytecode executor, either as state-changing executions or read-only
static calls.
"""

from __future__ import annotations

from typing import Optional

from evmsim.core.config import ExecutionConfig
from evmsim.core.state.world_state import WorldState
from evmsim.core.structured_logger import get_structured_logger
from evmsim.core.transaction import Transaction
from evmsim.core.vm.evm.executor import EVMBytecodeExecutor
from evmsim.core.vm.executor import ExecutionMessage, ExecutionOutcome


class ContractTransactionProcessor:
    """Routes transactions to an EVMBytecodeExecutor bound to one WorldState."""

    def __init__(
        self,
        world_state: WorldState,
        executor: Optional[EVMBytecodeExecutor] = None,
        config: Optional[ExecutionConfig] = None,
    ) -> None:
        self.world_state = world_state
        self.config = config or (executor.config if executor is not None else ExecutionConfig())
        self.executor = executor or EVMBytecodeExecutor(world_state, self.config)
        self.logger = get_structured_logger()

    def process(self, tx: Transaction, static: bool = False) -> ExecutionOutcome:
        """
        Execute ``tx``.

        Args:
            tx: Transaction to execute
            static: Run as a read-only query (nothing is committed)
        """
        message = self.build_message(tx)
        if static:
            return self.executor.call_static(message)
        outcome = self.executor.execute(message)
        self.logger.debug(
            "Transaction processed",
            tx_hash=tx.calculate_hash(),
            status=outcome.status.value,
            gas_used=outcome.gas_used,
            reason=outcome.reason,
        )
        return outcome

    def build_message(self, tx: Transaction) -> ExecutionMessage:
        return ExecutionMessage(
            sender=tx.sender,
            to=tx.to,
            value=tx.value,
            gas_limit=tx.gas_limit if tx.gas_limit else self.config.default_gas_limit,
            data=tx.data,
            nonce=tx.nonce,
            gas_price=tx.gas_price,
        )

    def estimate_gas(self, tx: Transaction) -> int:
        return self.executor.estimate_gas(self.build_message(tx))


def execute_transaction(
    transaction: Transaction,
    world_state: WorldState,
    config: Optional[ExecutionConfig] = None,
) -> ExecutionOutcome:
    """
    Execute one transaction against ``world_state``.

    Preconditions that fail produce a REJECTED outcome with no state touched.
    Otherwise exactly one of SUCCESS, REVERT or ERROR is returned; on
    SUCCESS the full state diff has been applied, on REVERT/ERROR only the
    nonce bump and gas fee have.

    Raises:
        SimulationFatalError: If the store refuses the diff (state conflict)
    """
    return ContractTransactionProcessor(world_state, config=config).process(transaction)
