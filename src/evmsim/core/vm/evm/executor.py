"""
EVM bytecode executor: runs one transaction end to end.

Pipeline for ``execute``:
1. Validate preconditions (nonce, fee cap, intrinsic gas, block gas limit,
   init code size, funds). Any failure yields REJECTED with no state touched.
2. Open the transaction envelope: bump the sender nonce and escrow
   gas_limit * gas_price.
3. Run the top-level frame inside its own journal scope.
4. On SUCCESS keep the scope and apply the capped refund; on REVERT or ERROR
   discard the scope (execution writes and logs vanish) but keep the
   envelope, so the nonce bump and the fee for gas actually used still land.
5. Settle the fee (unused gas back to the sender, priority fee to the
   coinbase, base fee burned) and apply the journal's diff atomically.
"""

from __future__ import annotations

import sys
from typing import Optional

from evmsim.core.config import ExecutionConfig
from evmsim.core.constants import MAX_CODE_SIZE, MAX_INITCODE_SIZE, MAX_NONCE, MAX_REFUND_QUOTIENT
from evmsim.core.simulation_exceptions import ArithmeticBoundsError, ExecutionFailedError
from evmsim.core.state.journal import StateJournal
from evmsim.core.state.world_state import WorldState
from evmsim.core.structured_logger import get_structured_logger
from evmsim.core.transaction import intrinsic_gas
from evmsim.core.vm.evm.context import BlockContext, CallContext, CallType, ExecutionContext
from evmsim.core.vm.evm.interpreter import EVMInterpreter
from evmsim.core.vm.evm.interpreter_helpers import CODE_DEPOSIT_GAS, compute_create_address
from evmsim.core.vm.evm.precompiles import PRECOMPILE_ADDRESSES, EVMPrecompiles
from evmsim.core.vm.exceptions import (
    CodeSizeExceededError,
    CreateCollisionError,
    VMExecutionError,
)
from evmsim.core.vm.executor import (
    ExecutionMessage,
    ExecutionOutcome,
    ExecutionStatus,
    HaltReason,
    RejectReason,
)

# Python frames consumed per nested EVM call (execute -> dispatch -> _call -> _execute_subcall)
_FRAMES_PER_CALL = 6


class _FrameResult:
    __slots__ = ("success", "output", "gas_left", "halt_reason")

    def __init__(self, success: bool, output: bytes, gas_left: int, halt_reason: Optional[str] = None) -> None:
        self.success = success
        self.output = output
        self.gas_left = gas_left
        self.halt_reason = halt_reason

    @property
    def reverted(self) -> bool:
        return not self.success and self.halt_reason is None


class EVMBytecodeExecutor:
    """
    Executes transactions against a WorldState.

    ``execute`` commits, ``call_static`` never does.
    """

    def __init__(self, world_state: WorldState, config: Optional[ExecutionConfig] = None) -> None:
        self.world_state = world_state
        self.config = config or ExecutionConfig()
        self.logger = get_structured_logger()
        required = self.config.max_call_depth * _FRAMES_PER_CALL + 1000
        current = sys.getrecursionlimit()
        if current < required:
            self.logger.info(
                "Raising interpreter recursion limit for nested EVM calls",
                previous_limit=current,
                recursion_limit=required,
                max_call_depth=self.config.max_call_depth,
            )
            sys.setrecursionlimit(required)

    # ==================== Public API ====================

    def execute(self, message: ExecutionMessage) -> ExecutionOutcome:
        """Execute a transaction and commit its effects."""
        return self._run(message, commit=True)

    def call_static(self, message: ExecutionMessage) -> ExecutionOutcome:
        """
        Execute a read-only query.

        Nonce checks and gas pricing are skipped and nothing is committed;
        the outcome's state_diff shows what the call would have changed.
        """
        query = ExecutionMessage(
            sender=message.sender,
            to=message.to,
            value=message.value,
            gas_limit=message.gas_limit,
            data=message.data,
            nonce=None,
            gas_price=0,
        )
        return self._run(query, commit=False)

    def estimate_gas(self, message: ExecutionMessage) -> int:
        """
        Smallest gas limit at which ``message`` succeeds (binary search).

        Raises:
            ExecutionFailedError: If the call fails even at the block gas limit
        """
        upper = self.world_state.block.gas_limit
        probe = self.call_static(self._with_gas(message, upper))
        if not probe.success:
            raise ExecutionFailedError(
                f"Gas estimation failed: {probe.status.value} ({probe.reason})",
                output=probe.output,
                gas_used=probe.gas_used,
            )
        lower = intrinsic_gas(message.data, message.is_create) - 1
        while upper - lower > 1:
            middle = (upper + lower) // 2
            if self.call_static(self._with_gas(message, middle)).success:
                upper = middle
            else:
                lower = middle
        return upper

    @staticmethod
    def _with_gas(message: ExecutionMessage, gas_limit: int) -> ExecutionMessage:
        return ExecutionMessage(
            sender=message.sender,
            to=message.to,
            value=message.value,
            gas_limit=gas_limit,
            data=message.data,
            nonce=message.nonce,
            gas_price=message.gas_price,
        )

    # ==================== Validation ====================

    def _validate(self, message: ExecutionMessage, query: bool) -> Optional[RejectReason]:
        state = self.world_state
        block = state.block
        sender = state.get_account(message.sender)

        if sender.has_code:
            return RejectReason.SENDER_NOT_EOA
        if not query:
            if sender.nonce >= MAX_NONCE:
                return RejectReason.NONCE_OVERFLOW
            if message.nonce is not None and message.nonce < sender.nonce:
                return RejectReason.NONCE_TOO_LOW
            if message.nonce is not None and message.nonce > sender.nonce:
                return RejectReason.NONCE_TOO_HIGH
        if not query and message.gas_price < block.base_fee:
            return RejectReason.GAS_PRICE_BELOW_BASE_FEE
        if message.is_create and len(message.data) > MAX_INITCODE_SIZE:
            return RejectReason.INITCODE_TOO_LARGE
        if intrinsic_gas(message.data, message.is_create) > message.gas_limit:
            return RejectReason.INTRINSIC_GAS_TOO_LOW
        if message.gas_limit > block.gas_limit:
            return RejectReason.GAS_LIMIT_EXCEEDS_BLOCK
        if sender.balance < message.value + message.gas_limit * message.gas_price:
            return RejectReason.INSUFFICIENT_FUNDS
        return None

    # ==================== Execution ====================

    def _run(self, message: ExecutionMessage, commit: bool) -> ExecutionOutcome:
        reject = self._validate(message, query=not commit)
        if reject is not None:
            return ExecutionOutcome.rejected(reject)

        state = self.world_state
        block = state.block
        with state.transaction():
            journal = StateJournal(state)
            context = ExecutionContext(
                block=BlockContext.from_environment(block),
                tx_origin=message.sender,
                tx_gas_price=message.gas_price,
                tx_gas_limit=message.gas_limit,
                tx_value=message.value,
                journal=journal,
                max_call_depth=self.config.max_call_depth,
                block_hash=state.block_hash,
            )

            # Envelope: survives REVERT/ERROR
            sender_nonce = journal.get_nonce(message.sender)
            if commit:
                journal.increment_nonce(message.sender)
            journal.sub_balance(message.sender, message.gas_limit * message.gas_price)

            journal.warm_address(message.sender)
            journal.warm_address(block.coinbase)
            for address in PRECOMPILE_ADDRESSES:
                journal.warm_address(address)

            contract_address = None
            if message.is_create:
                contract_address = compute_create_address(message.sender, sender_nonce)
                target = contract_address
            else:
                target = message.to
            journal.warm_address(target)

            gas = message.gas_limit - intrinsic_gas(message.data, message.is_create)
            journal.enter_scope()
            if message.is_create:
                result = self._run_create(context, message, contract_address, gas)
            else:
                result = self._run_call(context, message, gas)

            if result.success:
                journal.commit_scope()
                gas_used = message.gas_limit - result.gas_left
                refund = min(journal.refund, gas_used // MAX_REFUND_QUOTIENT)
                gas_used -= refund
                status = ExecutionStatus.SUCCESS
                logs = tuple(journal.logs)
            else:
                journal.discard_scope()
                refund = 0
                logs = ()
                if result.reverted:
                    gas_used = message.gas_limit - result.gas_left
                    status = ExecutionStatus.REVERT
                else:
                    gas_used = message.gas_limit
                    status = ExecutionStatus.ERROR
                contract_address = None

            fee_paid = gas_used * message.gas_price
            fee_burned = gas_used * block.base_fee
            journal.add_balance(message.sender, (message.gas_limit - gas_used) * message.gas_price)
            if fee_paid > fee_burned:
                journal.add_balance(block.coinbase, fee_paid - fee_burned)

            diff = journal.to_diff()
            if commit:
                state.apply(diff)

        return ExecutionOutcome(
            status=status,
            output=result.output if status != ExecutionStatus.ERROR else b"",
            gas_used=gas_used,
            logs=logs,
            state_diff=diff,
            reason=result.halt_reason,
            contract_address=contract_address,
            gas_refund=refund,
            fee_paid=fee_paid,
            fee_burned=fee_burned,
        )

    def _run_frame(self, context: ExecutionContext, call: CallContext) -> _FrameResult:
        interpreter = EVMInterpreter(context)
        context.push_call(call)
        try:
            interpreter.execute(call)
        except VMExecutionError as exc:
            self.logger.debug(
                "Top-level frame halted",
                halt_reason=exc.halt_reason,
                error=exc.message,
            )
            return _FrameResult(False, b"", 0, exc.halt_reason)
        finally:
            context.pop_call()
        if call.reverted:
            return _FrameResult(False, call.output, call.gas)
        return _FrameResult(True, call.output, call.gas)

    def _run_call(self, context: ExecutionContext, message: ExecutionMessage, gas: int) -> _FrameResult:
        journal = context.journal
        try:
            journal.transfer(message.sender, message.to, message.value)
        except ArithmeticBoundsError:
            return _FrameResult(False, b"", 0, HaltReason.BALANCE_OVERFLOW.value)

        if message.to in PRECOMPILE_ADDRESSES:
            try:
                output, gas_used = EVMPrecompiles.execute_precompile(message.to, message.data, gas)
            except VMExecutionError as exc:
                return _FrameResult(False, b"", 0, exc.halt_reason)
            return _FrameResult(True, output, gas - gas_used)

        code = journal.get_code(message.to)
        if not code:
            return _FrameResult(True, b"", gas)

        call = CallContext(
            call_type=CallType.CALL,
            depth=0,
            address=message.to,
            caller=message.sender,
            origin=message.sender,
            value=message.value,
            gas=gas,
            code=code,
            calldata=message.data,
        )
        return self._run_frame(context, call)

    def _run_create(
        self,
        context: ExecutionContext,
        message: ExecutionMessage,
        contract_address: str,
        gas: int,
    ) -> _FrameResult:
        journal = context.journal
        if journal.has_collision(contract_address):
            return _FrameResult(False, b"", 0, CreateCollisionError.halt_reason)

        journal.mark_created(contract_address)
        journal.set_nonce(contract_address, 1)
        try:
            journal.transfer(message.sender, contract_address, message.value)
        except ArithmeticBoundsError:
            return _FrameResult(False, b"", 0, HaltReason.BALANCE_OVERFLOW.value)

        if not message.data:
            return _FrameResult(True, b"", gas)

        call = CallContext(
            call_type=CallType.CREATE,
            depth=0,
            address=contract_address,
            caller=message.sender,
            origin=message.sender,
            value=message.value,
            gas=gas,
            code=message.data,
            calldata=b"",
        )
        result = self._run_frame(context, call)
        if not result.success:
            return result

        code = result.output
        try:
            self._check_deployable(code)
            call.use_gas(CODE_DEPOSIT_GAS * len(code))
        except VMExecutionError as exc:
            return _FrameResult(False, b"", 0, exc.halt_reason)
        journal.set_code(contract_address, code)
        return _FrameResult(True, b"", call.gas)

    @staticmethod
    def _check_deployable(code: bytes) -> None:
        if len(code) > MAX_CODE_SIZE:
            raise CodeSizeExceededError(
                f"Contract code size {len(code)} exceeds limit {MAX_CODE_SIZE}",
                details={"size": len(code)},
            )
        if code[:1] == b"\xef":
            raise CodeSizeExceededError("Contract code starting with 0xEF is rejected (EIP-3541)")

