"""
EVM instruction set (Cancun).

``OPCODE_INFO`` holds the static part of each instruction's cost and its
stack arity; dynamic costs (memory growth, cold access, copies) are charged
by the interpreter.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict

from evmsim.core.constants import (
    GAS_BASE,
    GAS_BLOCKHASH,
    GAS_CREATE,
    GAS_EXP,
    GAS_HIGH,
    GAS_JUMPDEST,
    GAS_KECCAK256,
    GAS_LOG,
    GAS_LOW,
    GAS_MID,
    GAS_SELFDESTRUCT,
    GAS_TRANSIENT,
    GAS_VERY_LOW,
    GAS_ZERO,
)


class Opcode(IntEnum):
    # 0x00: stop and arithmetic
    STOP = 0x00
    ADD = 0x01
    MUL = 0x02
    SUB = 0x03
    DIV = 0x04
    SDIV = 0x05
    MOD = 0x06
    SMOD = 0x07
    ADDMOD = 0x08
    MULMOD = 0x09
    EXP = 0x0A
    SIGNEXTEND = 0x0B

    # 0x10: comparison and bitwise logic
    LT = 0x10
    GT = 0x11
    SLT = 0x12
    SGT = 0x13
    EQ = 0x14
    ISZERO = 0x15
    AND = 0x16
    OR = 0x17
    XOR = 0x18
    NOT = 0x19
    BYTE = 0x1A
    SHL = 0x1B
    SHR = 0x1C
    SAR = 0x1D

    KECCAK256 = 0x20

    # 0x30: environment
    ADDRESS = 0x30
    BALANCE = 0x31
    ORIGIN = 0x32
    CALLER = 0x33
    CALLVALUE = 0x34
    CALLDATALOAD = 0x35
    CALLDATASIZE = 0x36
    CALLDATACOPY = 0x37
    CODESIZE = 0x38
    CODECOPY = 0x39
    GASPRICE = 0x3A
    EXTCODESIZE = 0x3B
    EXTCODECOPY = 0x3C
    RETURNDATASIZE = 0x3D
    RETURNDATACOPY = 0x3E
    EXTCODEHASH = 0x3F

    # 0x40: block
    BLOCKHASH = 0x40
    COINBASE = 0x41
    TIMESTAMP = 0x42
    NUMBER = 0x43
    PREVRANDAO = 0x44
    GASLIMIT = 0x45
    CHAINID = 0x46
    SELFBALANCE = 0x47
    BASEFEE = 0x48
    BLOBHASH = 0x49
    BLOBBASEFEE = 0x4A

    # 0x50: stack, memory, storage and flow
    POP = 0x50
    MLOAD = 0x51
    MSTORE = 0x52
    MSTORE8 = 0x53
    SLOAD = 0x54
    SSTORE = 0x55
    JUMP = 0x56
    JUMPI = 0x57
    PC = 0x58
    MSIZE = 0x59
    GAS = 0x5A
    JUMPDEST = 0x5B
    TLOAD = 0x5C
    TSTORE = 0x5D
    MCOPY = 0x5E
    PUSH0 = 0x5F

    PUSH1 = 0x60
    PUSH2 = 0x61
    PUSH3 = 0x62
    PUSH4 = 0x63
    PUSH5 = 0x64
    PUSH6 = 0x65
    PUSH7 = 0x66
    PUSH8 = 0x67
    PUSH9 = 0x68
    PUSH10 = 0x69
    PUSH11 = 0x6A
    PUSH12 = 0x6B
    PUSH13 = 0x6C
    PUSH14 = 0x6D
    PUSH15 = 0x6E
    PUSH16 = 0x6F
    PUSH17 = 0x70
    PUSH18 = 0x71
    PUSH19 = 0x72
    PUSH20 = 0x73
    PUSH21 = 0x74
    PUSH22 = 0x75
    PUSH23 = 0x76
    PUSH24 = 0x77
    PUSH25 = 0x78
    PUSH26 = 0x79
    PUSH27 = 0x7A
    PUSH28 = 0x7B
    PUSH29 = 0x7C
    PUSH30 = 0x7D
    PUSH31 = 0x7E
    PUSH32 = 0x7F

    DUP1 = 0x80
    DUP2 = 0x81
    DUP3 = 0x82
    DUP4 = 0x83
    DUP5 = 0x84
    DUP6 = 0x85
    DUP7 = 0x86
    DUP8 = 0x87
    DUP9 = 0x88
    DUP10 = 0x89
    DUP11 = 0x8A
    DUP12 = 0x8B
    DUP13 = 0x8C
    DUP14 = 0x8D
    DUP15 = 0x8E
    DUP16 = 0x8F

    SWAP1 = 0x90
    SWAP2 = 0x91
    SWAP3 = 0x92
    SWAP4 = 0x93
    SWAP5 = 0x94
    SWAP6 = 0x95
    SWAP7 = 0x96
    SWAP8 = 0x97
    SWAP9 = 0x98
    SWAP10 = 0x99
    SWAP11 = 0x9A
    SWAP12 = 0x9B
    SWAP13 = 0x9C
    SWAP14 = 0x9D
    SWAP15 = 0x9E
    SWAP16 = 0x9F

    LOG0 = 0xA0
    LOG1 = 0xA1
    LOG2 = 0xA2
    LOG3 = 0xA3
    LOG4 = 0xA4

    # 0xf0: system
    CREATE = 0xF0
    CALL = 0xF1
    CALLCODE = 0xF2
    RETURN = 0xF3
    DELEGATECALL = 0xF4
    CREATE2 = 0xF5
    STATICCALL = 0xFA
    REVERT = 0xFD
    INVALID = 0xFE
    SELFDESTRUCT = 0xFF


@dataclass(frozen=True)
class OpcodeInfo:
    name: str
    inputs: int
    outputs: int
    gas: int


def _info(opcode: Opcode, inputs: int, outputs: int, gas: int) -> OpcodeInfo:
    return OpcodeInfo(opcode.name, inputs, outputs, gas)


# Static gas is the warm/base charge; access-list surcharges are dynamic.
OPCODE_INFO: Dict[int, OpcodeInfo] = {
    Opcode.STOP: _info(Opcode.STOP, 0, 0, GAS_ZERO),
    Opcode.ADD: _info(Opcode.ADD, 2, 1, GAS_VERY_LOW),
    Opcode.MUL: _info(Opcode.MUL, 2, 1, GAS_LOW),
    Opcode.SUB: _info(Opcode.SUB, 2, 1, GAS_VERY_LOW),
    Opcode.DIV: _info(Opcode.DIV, 2, 1, GAS_LOW),
    Opcode.SDIV: _info(Opcode.SDIV, 2, 1, GAS_LOW),
    Opcode.MOD: _info(Opcode.MOD, 2, 1, GAS_LOW),
    Opcode.SMOD: _info(Opcode.SMOD, 2, 1, GAS_LOW),
    Opcode.ADDMOD: _info(Opcode.ADDMOD, 3, 1, GAS_MID),
    Opcode.MULMOD: _info(Opcode.MULMOD, 3, 1, GAS_MID),
    Opcode.EXP: _info(Opcode.EXP, 2, 1, GAS_EXP),
    Opcode.SIGNEXTEND: _info(Opcode.SIGNEXTEND, 2, 1, GAS_LOW),
    Opcode.LT: _info(Opcode.LT, 2, 1, GAS_VERY_LOW),
    Opcode.GT: _info(Opcode.GT, 2, 1, GAS_VERY_LOW),
    Opcode.SLT: _info(Opcode.SLT, 2, 1, GAS_VERY_LOW),
    Opcode.SGT: _info(Opcode.SGT, 2, 1, GAS_VERY_LOW),
    Opcode.EQ: _info(Opcode.EQ, 2, 1, GAS_VERY_LOW),
    Opcode.ISZERO: _info(Opcode.ISZERO, 1, 1, GAS_VERY_LOW),
    Opcode.AND: _info(Opcode.AND, 2, 1, GAS_VERY_LOW),
    Opcode.OR: _info(Opcode.OR, 2, 1, GAS_VERY_LOW),
    Opcode.XOR: _info(Opcode.XOR, 2, 1, GAS_VERY_LOW),
    Opcode.NOT: _info(Opcode.NOT, 1, 1, GAS_VERY_LOW),
    Opcode.BYTE: _info(Opcode.BYTE, 2, 1, GAS_VERY_LOW),
    Opcode.SHL: _info(Opcode.SHL, 2, 1, GAS_VERY_LOW),
    Opcode.SHR: _info(Opcode.SHR, 2, 1, GAS_VERY_LOW),
    Opcode.SAR: _info(Opcode.SAR, 2, 1, GAS_VERY_LOW),
    Opcode.KECCAK256: _info(Opcode.KECCAK256, 2, 1, GAS_KECCAK256),
    Opcode.ADDRESS: _info(Opcode.ADDRESS, 0, 1, GAS_BASE),
    Opcode.BALANCE: _info(Opcode.BALANCE, 1, 1, GAS_ZERO),
    Opcode.ORIGIN: _info(Opcode.ORIGIN, 0, 1, GAS_BASE),
    Opcode.CALLER: _info(Opcode.CALLER, 0, 1, GAS_BASE),
    Opcode.CALLVALUE: _info(Opcode.CALLVALUE, 0, 1, GAS_BASE),
    Opcode.CALLDATALOAD: _info(Opcode.CALLDATALOAD, 1, 1, GAS_VERY_LOW),
    Opcode.CALLDATASIZE: _info(Opcode.CALLDATASIZE, 0, 1, GAS_BASE),
    Opcode.CALLDATACOPY: _info(Opcode.CALLDATACOPY, 3, 0, GAS_VERY_LOW),
    Opcode.CODESIZE: _info(Opcode.CODESIZE, 0, 1, GAS_BASE),
    Opcode.CODECOPY: _info(Opcode.CODECOPY, 3, 0, GAS_VERY_LOW),
    Opcode.GASPRICE: _info(Opcode.GASPRICE, 0, 1, GAS_BASE),
    Opcode.EXTCODESIZE: _info(Opcode.EXTCODESIZE, 1, 1, GAS_ZERO),
    Opcode.EXTCODECOPY: _info(Opcode.EXTCODECOPY, 4, 0, GAS_ZERO),
    Opcode.RETURNDATASIZE: _info(Opcode.RETURNDATASIZE, 0, 1, GAS_BASE),
    Opcode.RETURNDATACOPY: _info(Opcode.RETURNDATACOPY, 3, 0, GAS_VERY_LOW),
    Opcode.EXTCODEHASH: _info(Opcode.EXTCODEHASH, 1, 1, GAS_ZERO),
    Opcode.BLOCKHASH: _info(Opcode.BLOCKHASH, 1, 1, GAS_BLOCKHASH),
    Opcode.COINBASE: _info(Opcode.COINBASE, 0, 1, GAS_BASE),
    Opcode.TIMESTAMP: _info(Opcode.TIMESTAMP, 0, 1, GAS_BASE),
    Opcode.NUMBER: _info(Opcode.NUMBER, 0, 1, GAS_BASE),
    Opcode.PREVRANDAO: _info(Opcode.PREVRANDAO, 0, 1, GAS_BASE),
    Opcode.GASLIMIT: _info(Opcode.GASLIMIT, 0, 1, GAS_BASE),
    Opcode.CHAINID: _info(Opcode.CHAINID, 0, 1, GAS_BASE),
    Opcode.SELFBALANCE: _info(Opcode.SELFBALANCE, 0, 1, GAS_LOW),
    Opcode.BASEFEE: _info(Opcode.BASEFEE, 0, 1, GAS_BASE),
    Opcode.BLOBHASH: _info(Opcode.BLOBHASH, 1, 1, GAS_VERY_LOW),
    Opcode.BLOBBASEFEE: _info(Opcode.BLOBBASEFEE, 0, 1, GAS_BASE),
    Opcode.POP: _info(Opcode.POP, 1, 0, GAS_BASE),
    Opcode.MLOAD: _info(Opcode.MLOAD, 1, 1, GAS_VERY_LOW),
    Opcode.MSTORE: _info(Opcode.MSTORE, 2, 0, GAS_VERY_LOW),
    Opcode.MSTORE8: _info(Opcode.MSTORE8, 2, 0, GAS_VERY_LOW),
    Opcode.SLOAD: _info(Opcode.SLOAD, 1, 1, GAS_ZERO),
    Opcode.SSTORE: _info(Opcode.SSTORE, 2, 0, GAS_ZERO),
    Opcode.JUMP: _info(Opcode.JUMP, 1, 0, GAS_MID),
    Opcode.JUMPI: _info(Opcode.JUMPI, 2, 0, GAS_HIGH),
    Opcode.PC: _info(Opcode.PC, 0, 1, GAS_BASE),
    Opcode.MSIZE: _info(Opcode.MSIZE, 0, 1, GAS_BASE),
    Opcode.GAS: _info(Opcode.GAS, 0, 1, GAS_BASE),
    Opcode.JUMPDEST: _info(Opcode.JUMPDEST, 0, 0, GAS_JUMPDEST),
    Opcode.TLOAD: _info(Opcode.TLOAD, 1, 1, GAS_TRANSIENT),
    Opcode.TSTORE: _info(Opcode.TSTORE, 2, 0, GAS_TRANSIENT),
    Opcode.MCOPY: _info(Opcode.MCOPY, 3, 0, GAS_VERY_LOW),
    Opcode.PUSH0: _info(Opcode.PUSH0, 0, 1, GAS_BASE),
    Opcode.CREATE: _info(Opcode.CREATE, 3, 1, GAS_CREATE),
    Opcode.CALL: _info(Opcode.CALL, 7, 1, GAS_ZERO),
    Opcode.CALLCODE: _info(Opcode.CALLCODE, 7, 1, GAS_ZERO),
    Opcode.RETURN: _info(Opcode.RETURN, 2, 0, GAS_ZERO),
    Opcode.DELEGATECALL: _info(Opcode.DELEGATECALL, 6, 1, GAS_ZERO),
    Opcode.CREATE2: _info(Opcode.CREATE2, 4, 1, GAS_CREATE),
    Opcode.STATICCALL: _info(Opcode.STATICCALL, 6, 1, GAS_ZERO),
    Opcode.REVERT: _info(Opcode.REVERT, 2, 0, GAS_ZERO),
    Opcode.INVALID: _info(Opcode.INVALID, 0, 0, GAS_ZERO),
    Opcode.SELFDESTRUCT: _info(Opcode.SELFDESTRUCT, 1, 0, GAS_SELFDESTRUCT),
}

for _n in range(32):
    _push = Opcode(Opcode.PUSH1 + _n)
    OPCODE_INFO[_push] = _info(_push, 0, 1, GAS_VERY_LOW)
for _n in range(16):
    _dup = Opcode(Opcode.DUP1 + _n)
    OPCODE_INFO[_dup] = _info(_dup, _n + 1, _n + 2, GAS_VERY_LOW)
    _swap = Opcode(Opcode.SWAP1 + _n)
    OPCODE_INFO[_swap] = _info(_swap, _n + 2, _n + 2, GAS_VERY_LOW)
for _n in range(5):
    _log = Opcode(Opcode.LOG0 + _n)
    OPCODE_INFO[_log] = _info(_log, _n + 2, 0, GAS_LOG)

# Opcodes that modify state and are forbidden in a static context
STATE_MODIFYING_OPCODES = frozenset(
    {
        Opcode.SSTORE,
        Opcode.TSTORE,
        Opcode.CREATE,
        Opcode.CREATE2,
        Opcode.SELFDESTRUCT,
        Opcode.LOG0,
        Opcode.LOG1,
        Opcode.LOG2,
        Opcode.LOG3,
        Opcode.LOG4,
    }
)


def is_push(opcode: int) -> bool:
    return Opcode.PUSH1 <= opcode <= Opcode.PUSH32


def get_push_size(opcode: int) -> int:
    """Number of immediate bytes following a PUSH opcode (0 for anything else)."""
    if is_push(opcode):
        return opcode - Opcode.PUSH1 + 1
    return 0
