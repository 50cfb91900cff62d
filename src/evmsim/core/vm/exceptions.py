"""
Exceptional halts raised inside the EVM interpreter.

These never escape the Execution Engine: the frame that raised one is
unwound, its journal scope discarded, and the halt is reported as an
ERROR outcome carrying ``halt_reason``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class VMExecutionError(Exception):
    """Base class for exceptional halts of a call frame.

    Attributes:
        halt_reason: Machine-readable reason reported in the outcome
        consumes_all_gas: Whether the failing frame forfeits its remaining gas
    """

    halt_reason = "EXECUTION_ERROR"
    consumes_all_gas = True

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class OutOfGasError(VMExecutionError):
    """Out of gas: the frame tried to spend more than it had left."""

    halt_reason = "OUT_OF_GAS"


class StackUnderflowError(VMExecutionError):
    """Stack underflow."""

    halt_reason = "STACK_UNDERFLOW"


class StackOverflowError(VMExecutionError):
    """Stack overflow beyond 1024 items."""

    halt_reason = "STACK_OVERFLOW"


class InvalidJumpError(VMExecutionError):
    """Jump target is not a JUMPDEST."""

    halt_reason = "INVALID_JUMP"


class InvalidOpcodeError(VMExecutionError):
    """Undefined opcode or the designated INVALID instruction."""

    halt_reason = "INVALID_OPCODE"


class StaticCallViolationError(VMExecutionError):
    """State modification attempted inside a static call."""

    halt_reason = "STATIC_CALL_VIOLATION"


class CallDepthExceededError(VMExecutionError):
    """Nested call would exceed the maximum call depth."""

    halt_reason = "CALL_DEPTH_EXCEEDED"
    consumes_all_gas = False


class CodeSizeExceededError(VMExecutionError):
    """Deployed code or init code exceeds its size limit, or starts with 0xEF."""

    halt_reason = "CODE_SIZE_EXCEEDED"


class ReturnDataOutOfBoundsError(VMExecutionError):
    """RETURNDATACOPY reads past the end of the return data buffer."""

    halt_reason = "RETURN_DATA_OUT_OF_BOUNDS"


class MemoryLimitError(VMExecutionError):
    """Memory access out of bounds of the configured memory limit."""

    halt_reason = "MEMORY_LIMIT"


class CreateCollisionError(VMExecutionError):
    """CREATE/CREATE2 target already holds code, a nonce or storage."""

    halt_reason = "CREATE_COLLISION"


class PrecompileError(VMExecutionError):
    """Precompile failed or is not supported under the pinned rule set."""

    halt_reason = "PRECOMPILE_FAILURE"
