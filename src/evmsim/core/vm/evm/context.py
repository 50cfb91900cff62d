"""
Execution contexts for the EVM interpreter.

- BlockContext: block metadata visible to bytecode
- ExecutionContext: one transaction's shared state (journal, call stack,
  gas totals, logs)
- CallContext: one call frame (stack, memory, pc, remaining gas)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from evmsim.core.constants import DEFAULT_TX_GAS_LIMIT, MAX_CALL_DEPTH
from evmsim.core.state.journal import StateJournal
from evmsim.core.state.world_state import BlockEnvironment, WorldState
from evmsim.core.vm.evm.memory import EVMMemory
from evmsim.core.vm.evm.stack import EVMStack
from evmsim.core.vm.exceptions import CallDepthExceededError, OutOfGasError


class CallType(Enum):
    CALL = "CALL"
    CALLCODE = "CALLCODE"
    DELEGATECALL = "DELEGATECALL"
    STATICCALL = "STATICCALL"
    CREATE = "CREATE"
    CREATE2 = "CREATE2"


@dataclass(frozen=True)
class BlockContext:
    number: int
    timestamp: int
    gas_limit: int
    coinbase: str
    prevrandao: int
    base_fee: int
    chain_id: int
    blob_base_fee: int = 1

    @classmethod
    def from_environment(cls, block: BlockEnvironment) -> "BlockContext":
        return cls(
            number=block.number,
            timestamp=block.timestamp,
            gas_limit=block.gas_limit,
            coinbase=block.coinbase,
            prevrandao=block.prevrandao,
            base_fee=block.base_fee,
            chain_id=block.chain_id,
        )


@dataclass(frozen=True)
class Log:
    """Event emitted by LOG0..LOG4."""

    address: str
    topics: Tuple[int, ...]
    data: bytes

    @property
    def topic0(self) -> Optional[int]:
        return self.topics[0] if self.topics else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "topics": ["0x%064x" % topic for topic in self.topics],
            "data": "0x" + self.data.hex(),
        }


@dataclass
class CallContext:
    """
    One call frame.

    ``gas`` is the gas remaining in the frame; ``gas_limit`` what it started
    with. ``code_address`` differs from ``address`` for DELEGATECALL and
    CALLCODE, where the callee's code runs against the caller's storage.
    """

    call_type: CallType
    depth: int
    address: str
    caller: str
    origin: str
    value: int
    gas: int
    code: bytes
    calldata: bytes
    static: bool = False
    code_address: Optional[str] = None
    stack: EVMStack = field(default_factory=EVMStack)
    memory: EVMMemory = field(default_factory=EVMMemory)
    pc: int = 0
    halted: bool = False
    reverted: bool = False
    output: bytes = b""
    return_data: bytes = b""
    jump_dests: frozenset = field(default=frozenset(), repr=False)

    def __post_init__(self) -> None:
        self.gas_limit = self.gas
        if self.code_address is None:
            self.code_address = self.address

    @property
    def gas_used(self) -> int:
        return self.gas_limit - self.gas

    def use_gas(self, amount: int) -> None:
        if amount > self.gas:
            available = self.gas
            self.gas = 0
            raise OutOfGasError(
                f"Out of gas: need {amount}, have {available}",
                details={"required": amount, "available": available},
            )
        self.gas -= amount

    def return_gas(self, amount: int) -> None:
        self.gas += amount


class ExecutionContext:
    """
    Shared state of one transaction's execution.

    All state reads and writes go through ``journal``; the context adds the
    call stack and transaction-level gas bookkeeping on top.
    """

    def __init__(
        self,
        block: BlockContext,
        tx_origin: str,
        tx_gas_price: int = 0,
        tx_gas_limit: int = DEFAULT_TX_GAS_LIMIT,
        tx_value: int = 0,
        journal: Optional[StateJournal] = None,
        max_call_depth: int = MAX_CALL_DEPTH,
        block_hash: Optional[Callable[[int], int]] = None,
    ) -> None:
        self.block = block
        self.tx_origin = tx_origin
        self.tx_gas_price = tx_gas_price
        self.tx_gas_limit = tx_gas_limit
        self.tx_value = tx_value
        self.journal = journal if journal is not None else StateJournal(WorldState())
        self.max_call_depth = max_call_depth
        self._block_hash = block_hash or self.journal.world_state.block_hash
        self.call_stack: List[CallContext] = []
        self.gas_used = 0

    # ==================== Call stack ====================

    def push_call(self, call: CallContext) -> None:
        """
        Enter a frame.

        Raises:
            CallDepthExceededError: If the stack already holds max_call_depth frames
        """
        if len(self.call_stack) >= self.max_call_depth:
            raise CallDepthExceededError(
                f"Call depth limit {self.max_call_depth} reached",
                details={"depth": len(self.call_stack)},
            )
        self.call_stack.append(call)

    def pop_call(self) -> Optional[CallContext]:
        return self.call_stack.pop() if self.call_stack else None

    @property
    def current_call(self) -> Optional[CallContext]:
        return self.call_stack[-1] if self.call_stack else None

    @property
    def depth(self) -> int:
        return len(self.call_stack)

    # ==================== Gas refunds & logs ====================

    @property
    def gas_refund(self) -> int:
        return self.journal.refund

    @gas_refund.setter
    def gas_refund(self, value: int) -> None:
        delta = value - self.journal.refund
        if delta > 0:
            self.journal.add_refund(delta)
        elif delta < 0:
            self.journal.sub_refund(-delta)

    @property
    def logs(self) -> List[Log]:
        return self.journal.logs

    def emit_log(self, log: Log) -> None:
        self.journal.add_log(log)

    # ==================== Access lists ====================

    def warm_address(self, address: str) -> bool:
        """Mark warm; returns True if the address was cold."""
        return self.journal.warm_address(address)

    def is_warm(self, address: str) -> bool:
        return self.journal.is_warm(address)

    @property
    def accessed_addresses(self) -> Set[str]:
        return self.journal.accessed_addresses

    # ==================== State ====================

    def get_balance(self, address: str) -> int:
        return self.journal.get_balance(address)

    def set_balance(self, address: str, balance: int) -> None:
        self.journal.set_balance(address, balance)

    def get_code(self, address: str) -> bytes:
        return self.journal.get_code(address)

    def get_nonce(self, address: str) -> int:
        return self.journal.get_nonce(address)

    def get_storage(self, address: str, key: int) -> int:
        return self.journal.get_storage(address, key)

    def block_hash(self, number: int) -> int:
        return self._block_hash(number)
