"""
Execution Engine result types.

Every transaction produces exactly one ExecutionOutcome. Per-transaction
failures are values, never exceptions: REJECTED (preconditions failed, no
state touched), REVERT (explicit revert, revert data preserved) and ERROR
(exceptional halt such as out-of-gas).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from evmsim.core.simulation_exceptions import ExecutionFailedError
from evmsim.core.state.state_diff import EMPTY_DIFF, StateDiff
from evmsim.core.vm.evm.context import Log

# Error(string) selector used by Solidity's require/revert
ERROR_STRING_SELECTOR = bytes.fromhex("08c379a0")
# Panic(uint256) selector used by Solidity's assert and checked arithmetic
PANIC_SELECTOR = bytes.fromhex("4e487b71")


class ExecutionStatus(Enum):
    SUCCESS = "success"
    REVERT = "revert"
    ERROR = "error"
    REJECTED = "rejected"


class HaltReason(str, Enum):
    """Why an ERROR outcome halted."""

    OUT_OF_GAS = "OUT_OF_GAS"
    STACK_UNDERFLOW = "STACK_UNDERFLOW"
    STACK_OVERFLOW = "STACK_OVERFLOW"
    INVALID_JUMP = "INVALID_JUMP"
    INVALID_OPCODE = "INVALID_OPCODE"
    STATIC_CALL_VIOLATION = "STATIC_CALL_VIOLATION"
    CALL_DEPTH_EXCEEDED = "CALL_DEPTH_EXCEEDED"
    CODE_SIZE_EXCEEDED = "CODE_SIZE_EXCEEDED"
    RETURN_DATA_OUT_OF_BOUNDS = "RETURN_DATA_OUT_OF_BOUNDS"
    MEMORY_LIMIT = "MEMORY_LIMIT"
    CREATE_COLLISION = "CREATE_COLLISION"
    PRECOMPILE_FAILURE = "PRECOMPILE_FAILURE"
    BALANCE_OVERFLOW = "BALANCE_OVERFLOW"
    EXECUTION_ERROR = "EXECUTION_ERROR"


class RejectReason(str, Enum):
    """Why a transaction failed its preconditions."""

    NONCE_TOO_LOW = "NONCE_TOO_LOW"
    NONCE_TOO_HIGH = "NONCE_TOO_HIGH"
    NONCE_OVERFLOW = "NONCE_OVERFLOW"
    SENDER_NOT_EOA = "SENDER_NOT_EOA"
    GAS_PRICE_BELOW_BASE_FEE = "GAS_PRICE_BELOW_BASE_FEE"
    INTRINSIC_GAS_TOO_LOW = "INTRINSIC_GAS_TOO_LOW"
    GAS_LIMIT_EXCEEDS_BLOCK = "GAS_LIMIT_EXCEEDS_BLOCK"
    INITCODE_TOO_LARGE = "INITCODE_TOO_LARGE"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"


@dataclass(frozen=True)
class ExecutionMessage:
    """Input to the bytecode executor, built from a Transaction."""

    sender: str
    to: Optional[str]
    value: int
    gas_limit: int
    data: bytes
    nonce: Optional[int] = None
    gas_price: int = 0

    @property
    def is_create(self) -> bool:
        return self.to is None


@dataclass(frozen=True)
class ExecutionOutcome:
    """
    Result of executing one transaction.

    Attributes:
        status: SUCCESS, REVERT, ERROR or REJECTED
        output: Return data on success, revert data on REVERT
        gas_used: Gas charged to the sender (after refunds)
        logs: Logs emitted, in order; empty unless SUCCESS
        state_diff: Changes committed (or, for static calls, that would be)
        reason: HaltReason for ERROR, RejectReason for REJECTED
        contract_address: Address of the contract created, if any
        gas_refund: Refund applied (capped at gas_used // 5 before refund)
        fee_paid: Wei paid by the sender for gas
        fee_burned: Base-fee portion of fee_paid, removed from circulation
    """

    status: ExecutionStatus
    output: bytes = b""
    gas_used: int = 0
    logs: Tuple[Log, ...] = ()
    state_diff: StateDiff = field(default=EMPTY_DIFF)
    reason: Optional[str] = None
    contract_address: Optional[str] = None
    gas_refund: int = 0
    fee_paid: int = 0
    fee_burned: int = 0

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    @property
    def is_rejected(self) -> bool:
        return self.status == ExecutionStatus.REJECTED

    @property
    def revert_reason(self) -> Optional[str]:
        if self.status != ExecutionStatus.REVERT:
            return None
        return decode_revert_reason(self.output)

    @classmethod
    def rejected(cls, reason: RejectReason) -> "ExecutionOutcome":
        return cls(status=ExecutionStatus.REJECTED, reason=reason.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "output": "0x" + self.output.hex(),
            "gas_used": self.gas_used,
            "logs": [log.to_dict() for log in self.logs],
            "state_diff": self.state_diff.to_dict(),
            "reason": self.reason,
            "revert_reason": self.revert_reason,
            "contract_address": self.contract_address,
            "gas_refund": self.gas_refund,
            "fee_paid": self.fee_paid,
            "fee_burned": self.fee_burned,
        }


def decode_revert_reason(output: bytes) -> Optional[str]:
    """Decode Solidity ``Error(string)`` / ``Panic(uint256)`` revert data."""
    if output[:4] == ERROR_STRING_SELECTOR and len(output) >= 68:
        offset = int.from_bytes(output[4:36], "big")
        start = 4 + offset
        length = int.from_bytes(output[start:start + 32], "big")
        raw = output[start + 32:start + 32 + length]
        return raw.decode("utf-8", errors="replace")
    if output[:4] == PANIC_SELECTOR and len(output) >= 36:
        return f"Panic(0x{int.from_bytes(output[4:36], 'big'):02x})"
    return None


def unpack_outcome(outcome: ExecutionOutcome) -> bytes:
    """
    Return the output of a successful outcome.

    Raises:
        ExecutionFailedError: For REVERT, ERROR and REJECTED outcomes; the
            exception carries the raw revert data and gas used
    """
    if outcome.success:
        return outcome.output

    if outcome.status == ExecutionStatus.REVERT:
        reason = outcome.revert_reason
        message = f"Execution reverted: {reason}" if reason else "Execution reverted"
    elif outcome.status == ExecutionStatus.ERROR:
        message = f"Execution halted: {outcome.reason}"
    else:
        message = f"Transaction rejected: {outcome.reason}"

    raise ExecutionFailedError(
        message,
        output=outcome.output,
        gas_used=outcome.gas_used,
        details={"status": outcome.status.value, "reason": outcome.reason},
    )
