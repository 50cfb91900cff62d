"""
EVM bytecode interpreter (Cancun rules, no blob transactions).

Runs one call frame at a time. Nested CALL/CREATE instructions recurse into
``execute`` with a fresh CallContext; each nested frame gets its own journal
scope so that a failure unwinds only that frame's subtree.

Exceptional halts are raised as VMExecutionError subclasses. Inside nested
frames they are caught at the frame boundary and turned into a 0 pushed on
the parent's stack; at the top level they propagate to the executor.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Callable, Dict, Optional, Tuple

from evmsim.core.constants import (
    GAS_CALL_STIPEND,
    GAS_CALL_VALUE,
    GAS_COLD_ACCOUNT_ACCESS,
    GAS_COPY_WORD,
    GAS_EXP_BYTE,
    GAS_KECCAK256_WORD,
    GAS_LOG_DATA_BYTE,
    GAS_LOG_TOPIC,
    GAS_NEW_ACCOUNT,
    GAS_WARM_ACCESS,
    INITCODE_WORD_GAS,
    MAX_CODE_SIZE,
    MAX_INITCODE_SIZE,
    MAX_NONCE,
    UINT256_CEILING,
    UINT256_MAX,
)
from evmsim.core.primitives import (
    EMPTY_CODE_HASH,
    address_to_int,
    int_to_address,
    keccak256,
    sign_extend,
    to_signed,
    to_unsigned,
    word_count,
)
from evmsim.core.simulation_exceptions import ArithmeticBoundsError, InsufficientBalanceError
from evmsim.core.vm.evm.context import CallContext, CallType, ExecutionContext, Log
from evmsim.core.vm.evm.interpreter_helpers import (
    CODE_DEPOSIT_GAS,
    all_but_one_64th,
    compute_create2_address,
    compute_create_address,
    compute_jump_destinations,
)
from evmsim.core.vm.evm.opcodes import OPCODE_INFO, STATE_MODIFYING_OPCODES, Opcode, get_push_size
from evmsim.core.vm.evm.precompiles import EVMPrecompiles
from evmsim.core.vm.evm.storage import EVMStorage, TransientStorage
from evmsim.core.vm.exceptions import (
    CallDepthExceededError,
    CodeSizeExceededError,
    InvalidJumpError,
    InvalidOpcodeError,
    OutOfGasError,
    ReturnDataOutOfBoundsError,
    StackUnderflowError,
    StaticCallViolationError,
    VMExecutionError,
)

logger = logging.getLogger(__name__)

JUMP_DEST_CACHE_SIZE = 256


class EVMInterpreter:
    """
    Executes EVM bytecode against an ExecutionContext.

    Jump destination analysis is cached per bytecode across interpreter
    instances (LRU, JUMP_DEST_CACHE_SIZE entries).
    """

    _jump_dest_cache: "OrderedDict[bytes, frozenset]" = OrderedDict()
    _cache_hits = 0
    _cache_misses = 0

    def __init__(self, context: ExecutionContext) -> None:
        self.context = context
        self._dispatch: Dict[int, Callable[[CallContext], None]] = self._build_dispatch()

    # ==================== Jump destination cache ====================

    @classmethod
    def clear_cache(cls) -> None:
        cls._jump_dest_cache.clear()
        cls._cache_hits = 0
        cls._cache_misses = 0

    @classmethod
    def get_cache_stats(cls) -> Dict[str, int]:
        return {
            "hits": cls._cache_hits,
            "misses": cls._cache_misses,
            "size": len(cls._jump_dest_cache),
            "max_size": JUMP_DEST_CACHE_SIZE,
        }

    def _compute_jump_destinations(self, code: bytes) -> frozenset:
        cls = type(self)
        cached = cls._jump_dest_cache.get(code)
        if cached is not None:
            cls._jump_dest_cache.move_to_end(code)
            cls._cache_hits += 1
            return cached
        cls._cache_misses += 1
        destinations = compute_jump_destinations(code)
        cls._jump_dest_cache[code] = destinations
        if len(cls._jump_dest_cache) > JUMP_DEST_CACHE_SIZE:
            cls._jump_dest_cache.popitem(last=False)
        return destinations

    # ==================== Main loop ====================

    def execute(self, call: CallContext) -> CallContext:
        """
        Run ``call`` until it halts.

        Returns:
            The same CallContext with ``output``/``reverted`` set

        Raises:
            VMExecutionError: On an exceptional halt of this frame
        """
        code = call.code
        jump_dests = self._compute_jump_destinations(code) if code else frozenset()
        call.jump_dests = jump_dests
        dispatch = self._dispatch
        code_length = len(code)

        while not call.halted:
            if call.pc >= code_length:
                call.halted = True
                break
            opcode = code[call.pc]
            info = OPCODE_INFO.get(opcode)
            if info is None:
                raise InvalidOpcodeError(
                    f"Invalid opcode 0x{opcode:02x} at pc {call.pc}",
                    details={"opcode": opcode, "pc": call.pc},
                )
            if call.static and opcode in STATE_MODIFYING_OPCODES:
                raise StaticCallViolationError(
                    f"{info.name} not allowed in static context",
                    details={"opcode": info.name},
                )
            if len(call.stack) < info.inputs:
                raise StackUnderflowError(
                    f"Stack underflow: {info.name} needs {info.inputs} items",
                    details={"opcode": info.name, "pc": call.pc},
                )
            call.use_gas(info.gas)
            call.pc += 1
            dispatch[opcode](call)

        return call

    def _build_dispatch(self) -> Dict[int, Callable[[CallContext], None]]:
        table: Dict[int, Callable[[CallContext], None]] = {}
        for opcode in OPCODE_INFO:
            name = Opcode(opcode).name
            if name.startswith("PUSH") and name != "PUSH0":
                table[opcode] = self._op_push
            elif name.startswith("DUP"):
                table[opcode] = self._op_dup
            elif name.startswith("SWAP"):
                table[opcode] = self._op_swap
            elif name.startswith("LOG"):
                table[opcode] = self._op_log
            else:
                table[opcode] = getattr(self, f"_op_{name.lower()}")
        return table

    # ==================== Gas helpers ====================

    def _charge_memory(self, call: CallContext, offset: int, size: int) -> None:
        if size == 0:
            return
        if offset + size > call.memory.max_size:
            raise OutOfGasError(
                "Out of gas: memory expansion beyond limit",
                details={"offset": offset, "size": size},
            )
        call.use_gas(call.memory.expansion_cost(offset, size))

    def _charge_copy(self, call: CallContext, offset: int, size: int) -> None:
        self._charge_memory(call, offset, size)
        call.use_gas(GAS_COPY_WORD * word_count(size))

    def _access_cost(self, address: str) -> int:
        if self.context.warm_address(address):
            return GAS_COLD_ACCOUNT_ACCESS
        return GAS_WARM_ACCESS

    @staticmethod
    def _pop_address(call: CallContext) -> str:
        return int_to_address(call.stack.pop())

    # ==================== 0x00: arithmetic ====================

    def _op_stop(self, call: CallContext) -> None:
        call.halted = True

    def _op_add(self, call: CallContext) -> None:
        a, b = call.stack.pop(), call.stack.pop()
        call.stack.push(a + b)

    def _op_mul(self, call: CallContext) -> None:
        a, b = call.stack.pop(), call.stack.pop()
        call.stack.push(a * b)

    def _op_sub(self, call: CallContext) -> None:
        a, b = call.stack.pop(), call.stack.pop()
        call.stack.push(a - b)

    def _op_div(self, call: CallContext) -> None:
        a, b = call.stack.pop(), call.stack.pop()
        call.stack.push(a // b if b else 0)

    def _op_sdiv(self, call: CallContext) -> None:
        a, b = to_signed(call.stack.pop()), to_signed(call.stack.pop())
        if b == 0:
            call.stack.push(0)
            return
        sign = -1 if (a < 0) != (b < 0) else 1
        call.stack.push(to_unsigned(sign * (abs(a) // abs(b))))

    def _op_mod(self, call: CallContext) -> None:
        a, b = call.stack.pop(), call.stack.pop()
        call.stack.push(a % b if b else 0)

    def _op_smod(self, call: CallContext) -> None:
        a, b = to_signed(call.stack.pop()), to_signed(call.stack.pop())
        if b == 0:
            call.stack.push(0)
            return
        sign = -1 if a < 0 else 1
        call.stack.push(to_unsigned(sign * (abs(a) % abs(b))))

    def _op_addmod(self, call: CallContext) -> None:
        a, b, n = call.stack.pop(), call.stack.pop(), call.stack.pop()
        call.stack.push((a + b) % n if n else 0)

    def _op_mulmod(self, call: CallContext) -> None:
        a, b, n = call.stack.pop(), call.stack.pop(), call.stack.pop()
        call.stack.push((a * b) % n if n else 0)

    def _op_exp(self, call: CallContext) -> None:
        base, exponent = call.stack.pop(), call.stack.pop()
        call.use_gas(GAS_EXP_BYTE * ((exponent.bit_length() + 7) // 8))
        call.stack.push(pow(base, exponent, UINT256_CEILING))

    def _op_signextend(self, call: CallContext) -> None:
        byte_index, value = call.stack.pop(), call.stack.pop()
        call.stack.push(sign_extend(value, byte_index) if byte_index < 31 else value)

    # ==================== 0x10: comparison & bitwise ====================

    def _op_lt(self, call: CallContext) -> None:
        a, b = call.stack.pop(), call.stack.pop()
        call.stack.push(int(a < b))

    def _op_gt(self, call: CallContext) -> None:
        a, b = call.stack.pop(), call.stack.pop()
        call.stack.push(int(a > b))

    def _op_slt(self, call: CallContext) -> None:
        a, b = to_signed(call.stack.pop()), to_signed(call.stack.pop())
        call.stack.push(int(a < b))

    def _op_sgt(self, call: CallContext) -> None:
        a, b = to_signed(call.stack.pop()), to_signed(call.stack.pop())
        call.stack.push(int(a > b))

    def _op_eq(self, call: CallContext) -> None:
        a, b = call.stack.pop(), call.stack.pop()
        call.stack.push(int(a == b))

    def _op_iszero(self, call: CallContext) -> None:
        call.stack.push(int(call.stack.pop() == 0))

    def _op_and(self, call: CallContext) -> None:
        call.stack.push(call.stack.pop() & call.stack.pop())

    def _op_or(self, call: CallContext) -> None:
        call.stack.push(call.stack.pop() | call.stack.pop())

    def _op_xor(self, call: CallContext) -> None:
        call.stack.push(call.stack.pop() ^ call.stack.pop())

    def _op_not(self, call: CallContext) -> None:
        call.stack.push(UINT256_MAX ^ call.stack.pop())

    def _op_byte(self, call: CallContext) -> None:
        index, value = call.stack.pop(), call.stack.pop()
        call.stack.push((value >> (8 * (31 - index))) & 0xFF if index < 32 else 0)

    def _op_shl(self, call: CallContext) -> None:
        shift, value = call.stack.pop(), call.stack.pop()
        call.stack.push(value << shift if shift < 256 else 0)

    def _op_shr(self, call: CallContext) -> None:
        shift, value = call.stack.pop(), call.stack.pop()
        call.stack.push(value >> shift if shift < 256 else 0)

    def _op_sar(self, call: CallContext) -> None:
        shift, value = call.stack.pop(), to_signed(call.stack.pop())
        if shift >= 256:
            call.stack.push(UINT256_MAX if value < 0 else 0)
        else:
            call.stack.push(to_unsigned(value >> shift))

    def _op_keccak256(self, call: CallContext) -> None:
        offset, size = call.stack.pop(), call.stack.pop()
        self._charge_memory(call, offset, size)
        call.use_gas(GAS_KECCAK256_WORD * word_count(size))
        data = call.memory.load_range(offset, size)
        call.stack.push(int.from_bytes(keccak256(data), "big"))

    # ==================== 0x30: environment ====================

    def _op_address(self, call: CallContext) -> None:
        call.stack.push(address_to_int(call.address))

    def _op_balance(self, call: CallContext) -> None:
        address = self._pop_address(call)
        call.use_gas(self._access_cost(address))
        call.stack.push(self.context.get_balance(address))

    def _op_origin(self, call: CallContext) -> None:
        call.stack.push(address_to_int(call.origin))

    def _op_caller(self, call: CallContext) -> None:
        call.stack.push(address_to_int(call.caller))

    def _op_callvalue(self, call: CallContext) -> None:
        call.stack.push(call.value)

    def _op_calldataload(self, call: CallContext) -> None:
        offset = call.stack.pop()
        chunk = call.calldata[offset:offset + 32] if offset < len(call.calldata) else b""
        call.stack.push(int.from_bytes(chunk.ljust(32, b"\x00"), "big"))

    def _op_calldatasize(self, call: CallContext) -> None:
        call.stack.push(len(call.calldata))

    def _copy_to_memory(self, call: CallContext, source: bytes, dest: int, offset: int, size: int) -> None:
        self._charge_copy(call, dest, size)
        if size == 0:
            return
        chunk = source[offset:offset + size] if offset < len(source) else b""
        call.memory.store_range(dest, chunk.ljust(size, b"\x00"))

    def _op_calldatacopy(self, call: CallContext) -> None:
        dest, offset, size = call.stack.pop(), call.stack.pop(), call.stack.pop()
        self._copy_to_memory(call, call.calldata, dest, offset, size)

    def _op_codesize(self, call: CallContext) -> None:
        call.stack.push(len(call.code))

    def _op_codecopy(self, call: CallContext) -> None:
        dest, offset, size = call.stack.pop(), call.stack.pop(), call.stack.pop()
        self._copy_to_memory(call, call.code, dest, offset, size)

    def _op_gasprice(self, call: CallContext) -> None:
        call.stack.push(self.context.tx_gas_price)

    def _op_extcodesize(self, call: CallContext) -> None:
        address = self._pop_address(call)
        call.use_gas(self._access_cost(address))
        call.stack.push(len(self.context.get_code(address)))

    def _op_extcodecopy(self, call: CallContext) -> None:
        address = self._pop_address(call)
        dest, offset, size = call.stack.pop(), call.stack.pop(), call.stack.pop()
        call.use_gas(self._access_cost(address))
        self._copy_to_memory(call, self.context.get_code(address), dest, offset, size)

    def _op_returndatasize(self, call: CallContext) -> None:
        call.stack.push(len(call.return_data))

    def _op_returndatacopy(self, call: CallContext) -> None:
        dest, offset, size = call.stack.pop(), call.stack.pop(), call.stack.pop()
        if offset + size > len(call.return_data):
            raise ReturnDataOutOfBoundsError(
                "Return data read out of bounds",
                details={"offset": offset, "size": size, "available": len(call.return_data)},
            )
        self._copy_to_memory(call, call.return_data, dest, offset, size)

    def _op_extcodehash(self, call: CallContext) -> None:
        address = self._pop_address(call)
        call.use_gas(self._access_cost(address))
        journal = self.context.journal
        if not journal.account_exists(address) or journal.is_empty(address):
            call.stack.push(0)
            return
        code = journal.get_code(address)
        digest = keccak256(code) if code else EMPTY_CODE_HASH
        call.stack.push(int.from_bytes(digest, "big"))

    # ==================== 0x40: block ====================

    def _op_blockhash(self, call: CallContext) -> None:
        call.stack.push(self.context.block_hash(call.stack.pop()))

    def _op_coinbase(self, call: CallContext) -> None:
        call.stack.push(address_to_int(self.context.block.coinbase))

    def _op_timestamp(self, call: CallContext) -> None:
        call.stack.push(self.context.block.timestamp)

    def _op_number(self, call: CallContext) -> None:
        call.stack.push(self.context.block.number)

    def _op_prevrandao(self, call: CallContext) -> None:
        call.stack.push(self.context.block.prevrandao)

    def _op_gaslimit(self, call: CallContext) -> None:
        call.stack.push(self.context.block.gas_limit)

    def _op_chainid(self, call: CallContext) -> None:
        call.stack.push(self.context.block.chain_id)

    def _op_selfbalance(self, call: CallContext) -> None:
        call.stack.push(self.context.get_balance(call.address))

    def _op_basefee(self, call: CallContext) -> None:
        call.stack.push(self.context.block.base_fee)

    def _op_blobhash(self, call: CallContext) -> None:
        # No blob-carrying transactions: every index is out of range
        call.stack.pop()
        call.stack.push(0)

    def _op_blobbasefee(self, call: CallContext) -> None:
        call.stack.push(self.context.block.blob_base_fee)

    # ==================== 0x50: stack, memory, storage, flow ====================

    def _op_pop(self, call: CallContext) -> None:
        call.stack.pop()

    def _op_mload(self, call: CallContext) -> None:
        offset = call.stack.pop()
        self._charge_memory(call, offset, 32)
        call.stack.push(call.memory.load(offset))

    def _op_mstore(self, call: CallContext) -> None:
        offset, value = call.stack.pop(), call.stack.pop()
        self._charge_memory(call, offset, 32)
        call.memory.store(offset, value)

    def _op_mstore8(self, call: CallContext) -> None:
        offset, value = call.stack.pop(), call.stack.pop()
        self._charge_memory(call, offset, 1)
        call.memory.store_byte(offset, value)

    def _op_sload(self, call: CallContext) -> None:
        key = call.stack.pop()
        value, gas = EVMStorage(self.context.journal, call.address).load(key)
        call.use_gas(gas)
        call.stack.push(value)

    def _op_sstore(self, call: CallContext) -> None:
        key, value = call.stack.pop(), call.stack.pop()
        gas, refund = EVMStorage(self.context.journal, call.address).store(key, value, call.gas)
        call.use_gas(gas)
        if refund:
            self.context.gas_refund += refund

    def _jump(self, call: CallContext, destination: int) -> None:
        if destination not in call.jump_dests:
            raise InvalidJumpError(
                f"Invalid jump destination {destination}",
                details={"destination": destination},
            )
        call.pc = destination

    def _op_jump(self, call: CallContext) -> None:
        self._jump(call, call.stack.pop())

    def _op_jumpi(self, call: CallContext) -> None:
        destination, condition = call.stack.pop(), call.stack.pop()
        if condition:
            self._jump(call, destination)

    def _op_pc(self, call: CallContext) -> None:
        call.stack.push(call.pc - 1)

    def _op_msize(self, call: CallContext) -> None:
        call.stack.push(call.memory.size)

    def _op_gas(self, call: CallContext) -> None:
        call.stack.push(call.gas)

    def _op_jumpdest(self, call: CallContext) -> None:
        pass

    def _op_tload(self, call: CallContext) -> None:
        key = call.stack.pop()
        value, _ = TransientStorage(self.context.journal, call.address).load(key)
        call.stack.push(value)

    def _op_tstore(self, call: CallContext) -> None:
        key, value = call.stack.pop(), call.stack.pop()
        TransientStorage(self.context.journal, call.address).store(key, value)

    def _op_mcopy(self, call: CallContext) -> None:
        dest, src, size = call.stack.pop(), call.stack.pop(), call.stack.pop()
        self._charge_copy(call, max(dest, src), size)
        call.memory.copy(dest, src, size)

    def _op_push0(self, call: CallContext) -> None:
        call.stack.push(0)

    def _op_push(self, call: CallContext) -> None:
        size = get_push_size(call.code[call.pc - 1])
        data = call.code[call.pc:call.pc + size]
        call.stack.push(int.from_bytes(data.ljust(size, b"\x00"), "big"))
        call.pc += size

    def _op_dup(self, call: CallContext) -> None:
        call.stack.dup(call.code[call.pc - 1] - Opcode.DUP1 + 1)

    def _op_swap(self, call: CallContext) -> None:
        call.stack.swap(call.code[call.pc - 1] - Opcode.SWAP1 + 1)

    def _op_log(self, call: CallContext) -> None:
        topic_count = call.code[call.pc - 1] - Opcode.LOG0
        offset, size = call.stack.pop(), call.stack.pop()
        topics = tuple(call.stack.pop() for _ in range(topic_count))
        self._charge_memory(call, offset, size)
        call.use_gas(GAS_LOG_TOPIC * topic_count + GAS_LOG_DATA_BYTE * size)
        self.context.emit_log(
            Log(address=call.address, topics=topics, data=call.memory.load_range(offset, size))
        )

    # ==================== 0xf0: system ====================

    def _op_return(self, call: CallContext) -> None:
        offset, size = call.stack.pop(), call.stack.pop()
        self._charge_memory(call, offset, size)
        call.output = call.memory.load_range(offset, size)
        call.halted = True

    def _op_revert(self, call: CallContext) -> None:
        offset, size = call.stack.pop(), call.stack.pop()
        self._charge_memory(call, offset, size)
        call.output = call.memory.load_range(offset, size)
        call.reverted = True
        call.halted = True

    def _op_invalid(self, call: CallContext) -> None:
        raise InvalidOpcodeError(
            f"Designated INVALID instruction at pc {call.pc - 1}",
            details={"pc": call.pc - 1},
        )

    def _op_selfdestruct(self, call: CallContext) -> None:
        beneficiary = self._pop_address(call)
        journal = self.context.journal
        if self.context.warm_address(beneficiary):
            call.use_gas(GAS_COLD_ACCOUNT_ACCESS)
        balance = journal.get_balance(call.address)
        if balance and (not journal.account_exists(beneficiary) or journal.is_empty(beneficiary)):
            call.use_gas(GAS_NEW_ACCOUNT)

        if beneficiary != call.address:
            journal.transfer(call.address, beneficiary, balance)
        # EIP-6780: only contracts created in this transaction are removed
        if journal.is_created(call.address):
            journal.set_balance(call.address, 0)
            journal.mark_destroyed(call.address)
        call.halted = True

    # -------------------- CREATE / CREATE2 --------------------

    def _op_create(self, call: CallContext) -> None:
        value, offset, size = call.stack.pop(), call.stack.pop(), call.stack.pop()
        self._create(call, value, offset, size, salt=None)

    def _op_create2(self, call: CallContext) -> None:
        value, offset, size, salt = (
            call.stack.pop(),
            call.stack.pop(),
            call.stack.pop(),
            call.stack.pop(),
        )
        self._create(call, value, offset, size, salt=salt)

    def _create(self, call: CallContext, value: int, offset: int, size: int, salt: Optional[int]) -> None:
        if size > MAX_INITCODE_SIZE:
            raise CodeSizeExceededError(
                f"Init code size {size} exceeds limit {MAX_INITCODE_SIZE}",
                details={"size": size},
            )
        self._charge_memory(call, offset, size)
        call.use_gas(INITCODE_WORD_GAS * word_count(size))
        if salt is not None:
            call.use_gas(GAS_KECCAK256_WORD * word_count(size))
        init_code = call.memory.load_range(offset, size)
        call.return_data = b""

        journal = self.context.journal
        creator_nonce = journal.get_nonce(call.address)
        if (
            self.context.depth >= self.context.max_call_depth
            or journal.get_balance(call.address) < value
            or creator_nonce >= MAX_NONCE
        ):
            call.stack.push(0)
            return

        journal.increment_nonce(call.address)
        if salt is None:
            new_address = compute_create_address(call.address, creator_nonce)
        else:
            new_address = compute_create2_address(call.address, salt, init_code)
        self.context.warm_address(new_address)

        child_gas = all_but_one_64th(call.gas)
        call.use_gas(child_gas)

        if journal.has_collision(new_address):
            logger.debug(
                "CREATE collision at %s",
                new_address,
                extra={"event": "evm.create_collision"},
            )
            call.stack.push(0)
            return

        success, output, gas_left = self._execute_create(
            call,
            new_address,
            init_code,
            value,
            child_gas,
            CallType.CREATE if salt is None else CallType.CREATE2,
        )
        call.return_gas(gas_left)
        if success:
            call.stack.push(address_to_int(new_address))
        else:
            call.return_data = output
            call.stack.push(0)

    def _execute_create(
        self,
        call: CallContext,
        new_address: str,
        init_code: bytes,
        value: int,
        gas: int,
        call_type: CallType,
    ) -> Tuple[bool, bytes, int]:
        """
        Run init code for a new contract in its own journal scope.

        Returns:
            (success, revert_output, gas_left)
        """
        journal = self.context.journal
        journal.enter_scope()
        journal.mark_created(new_address)
        journal.set_nonce(new_address, 1)

        child = CallContext(
            call_type=call_type,
            depth=call.depth + 1,
            address=new_address,
            caller=call.address,
            origin=call.origin,
            value=value,
            gas=gas,
            code=init_code,
            calldata=b"",
        )
        try:
            journal.transfer(call.address, new_address, value)
            try:
                self.context.push_call(child)
            except CallDepthExceededError:
                journal.discard_scope()
                return False, b"", gas
            try:
                self.execute(child)
            finally:
                self.context.pop_call()

            if child.reverted:
                journal.discard_scope()
                return False, child.output, child.gas

            code = child.output
            if len(code) > MAX_CODE_SIZE:
                raise CodeSizeExceededError(
                    f"Contract code size {len(code)} exceeds limit {MAX_CODE_SIZE}",
                    details={"size": len(code)},
                )
            if code[:1] == b"\xef":
                raise CodeSizeExceededError("Contract code starting with 0xEF is rejected (EIP-3541)")
            child.use_gas(CODE_DEPOSIT_GAS * len(code))
            journal.set_code(new_address, code)
        except ArithmeticBoundsError:
            journal.discard_scope()
            return False, b"", gas
        except VMExecutionError as exc:
            journal.discard_scope()
            logger.debug(
                "Init code halted: %s",
                exc.message,
                extra={"event": "evm.create_failed", "halt_reason": exc.halt_reason},
            )
            return False, b"", 0

        journal.commit_scope()
        return True, b"", child.gas

    # -------------------- CALL family --------------------

    def _op_call(self, call: CallContext) -> None:
        self._call(call, CallType.CALL)

    def _op_callcode(self, call: CallContext) -> None:
        self._call(call, CallType.CALLCODE)

    def _op_delegatecall(self, call: CallContext) -> None:
        self._call(call, CallType.DELEGATECALL)

    def _op_staticcall(self, call: CallContext) -> None:
        self._call(call, CallType.STATICCALL)

    def _call(self, call: CallContext, call_type: CallType) -> None:
        stack = call.stack
        requested_gas = stack.pop()
        target = self._pop_address(call)
        value = stack.pop() if call_type in (CallType.CALL, CallType.CALLCODE) else 0
        args_offset, args_size = stack.pop(), stack.pop()
        ret_offset, ret_size = stack.pop(), stack.pop()

        if call_type == CallType.CALL and call.static and value:
            raise StaticCallViolationError("CALL with value not allowed in static context")

        # One expansion covering both regions, priced from the current size
        if args_size and ret_size:
            self._charge_memory(call, 0, max(args_offset + args_size, ret_offset + ret_size))
        else:
            self._charge_memory(call, args_offset, args_size)
            self._charge_memory(call, ret_offset, ret_size)
        call.memory.expand(ret_offset, ret_size)

        journal = self.context.journal
        cost = self._access_cost(target)
        if value:
            cost += GAS_CALL_VALUE
            if call_type == CallType.CALL and (
                not journal.account_exists(target) or journal.is_empty(target)
            ):
                cost += GAS_NEW_ACCOUNT
        call.use_gas(cost)

        child_gas = min(requested_gas, all_but_one_64th(call.gas))
        call.use_gas(child_gas)
        if value:
            child_gas += GAS_CALL_STIPEND

        calldata = call.memory.load_range(args_offset, args_size)
        call.return_data = b""

        if self.context.depth >= self.context.max_call_depth or (
            value and journal.get_balance(call.address) < value
        ):
            call.return_gas(child_gas)
            stack.push(0)
            return

        if call_type == CallType.CALL:
            child_address, caller, child_value = target, call.address, value
        elif call_type == CallType.CALLCODE:
            child_address, caller, child_value = call.address, call.address, value
        elif call_type == CallType.DELEGATECALL:
            child_address, caller, child_value = call.address, call.caller, call.value
        else:
            child_address, caller, child_value = target, call.address, 0

        success, output, gas_left = self._execute_subcall(
            call,
            call_type=call_type,
            address=child_address,
            code_address=target,
            caller=caller,
            value=child_value,
            transfer_value=value if call_type == CallType.CALL else 0,
            calldata=calldata,
            gas=child_gas,
            static=call.static or call_type == CallType.STATICCALL,
        )

        call.return_gas(gas_left)
        call.return_data = output
        if ret_size and output:
            call.memory.store_range(ret_offset, output[:ret_size])
        stack.push(1 if success else 0)

    def _execute_subcall(
        self,
        call: CallContext,
        call_type: CallType,
        address: str,
        code_address: str,
        caller: str,
        value: int,
        transfer_value: int,
        calldata: bytes,
        gas: int,
        static: bool,
    ) -> Tuple[bool, bytes, int]:
        """
        Run a nested message call in its own journal scope.

        Returns:
            (success, output, gas_left); output is the revert data on REVERT
        """
        journal = self.context.journal
        journal.enter_scope()
        try:
            if transfer_value:
                journal.transfer(call.address, address, transfer_value)

            if EVMPrecompiles.is_precompile(code_address):
                output, gas_used = EVMPrecompiles.execute_precompile(code_address, calldata, gas)
                journal.commit_scope()
                return True, output, gas - gas_used

            code = journal.get_code(code_address)
            if not code:
                journal.commit_scope()
                return True, b"", gas

            child = CallContext(
                call_type=call_type,
                depth=call.depth + 1,
                address=address,
                caller=caller,
                origin=call.origin,
                value=value,
                gas=gas,
                code=code,
                calldata=calldata,
                static=static,
                code_address=code_address,
            )
            try:
                self.context.push_call(child)
            except CallDepthExceededError:
                journal.discard_scope()
                return False, b"", gas
            try:
                self.execute(child)
            finally:
                self.context.pop_call()
        except (InsufficientBalanceError, ArithmeticBoundsError):
            journal.discard_scope()
            return False, b"", gas
        except VMExecutionError as exc:
            journal.discard_scope()
            logger.debug(
                "Nested call halted: %s",
                exc.message,
                extra={"event": "evm.subcall_failed", "halt_reason": exc.halt_reason},
            )
            return False, b"", 0

        if child.reverted:
            journal.discard_scope()
            return False, child.output, child.gas
        journal.commit_scope()
        return True, child.output, child.gas
