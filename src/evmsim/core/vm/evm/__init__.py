"""
Cancun-rules EVM: stack, memory, storage, opcodes, interpreter and precompiles.

``EVMBytecodeExecutor`` lives in ``evmsim.core.vm.evm.executor`` and is not
re-exported here: it depends on ``evmsim.core.vm.executor``, which in turn
imports this package's context module.
"""

from evmsim.core.vm.evm.context import BlockContext, CallContext, CallType, ExecutionContext, Log
from evmsim.core.vm.evm.interpreter import EVMInterpreter

__all__ = [
    "BlockContext",
    "CallContext",
    "CallType",
    "EVMInterpreter",
    "ExecutionContext",
    "Log",
]
