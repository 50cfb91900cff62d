"""
Execution Engine: EVM interpreter, bytecode executor and transaction processor.
"""

from evmsim.core.vm.executor import (
    ExecutionMessage,
    ExecutionOutcome,
    ExecutionStatus,
    HaltReason,
    RejectReason,
    decode_revert_reason,
    unpack_outcome,
)
from evmsim.core.vm.tx_processor import ContractTransactionProcessor, execute_transaction

__all__ = [
    "ContractTransactionProcessor",
    "ExecutionMessage",
    "ExecutionOutcome",
    "ExecutionStatus",
    "HaltReason",
    "RejectReason",
    "decode_revert_reason",
    "execute_transaction",
    "unpack_outcome",
]
