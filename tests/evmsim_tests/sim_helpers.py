"""
Shared addresses and hand-assembled bytecode for the evmsim tests.
"""

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
CAROL = "0x" + "c0" * 20
COINBASE = "0x" + "cb" * 20

# PUSH1 0 PUSH1 0 REVERT
REVERT_CODE = bytes.fromhex("60006000fd")
# PUSH1 0x2a PUSH1 0 SSTORE STOP
STORE_42_CODE = bytes.fromhex("602a60005500")
# PUSH1 0x2a PUSH1 0 MSTORE PUSH1 0x20 PUSH1 0 RETURN
RETURN_42_CODE = bytes.fromhex("602a60005260206000f3")
# PUSH1 1 PUSH1 0 PUSH1 0 LOG1 STOP
LOG_TOPIC_1_CODE = bytes.fromhex("600160006000a100")
# JUMPDEST PUSH1 0 JUMP
INFINITE_LOOP_CODE = bytes.fromhex("5b600056")


def deployer_for(runtime: bytes) -> bytes:
    """Init code that copies ``runtime`` to memory and returns it."""
    assert len(runtime) < 256
    return bytes.fromhex(f"60{len(runtime):02x}80600b6000396000f3") + runtime
