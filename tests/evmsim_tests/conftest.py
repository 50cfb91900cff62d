"""
Test configuration and fixtures
"""
import sys
from pathlib import Path

# Add project root and src to Python path
project_root = Path(__file__).parent.parent.parent
src_path = project_root / "src"

sys.path.insert(0, str(project_root))
sys.path.insert(0, str(src_path))
sys.path.insert(0, str(Path(__file__).parent))

import pytest

from evmsim.core.config import ExecutionConfig
from evmsim.core.state.world_state import BlockEnvironment, WorldState
from evmsim.core.vm.evm.executor import EVMBytecodeExecutor
from evmsim.core.vm.evm.interpreter import EVMInterpreter
from evmsim.core.vm.executor import ExecutionMessage

from sim_helpers import ALICE, BOB, COINBASE


@pytest.fixture(autouse=True)
def _clear_jump_cache():
    EVMInterpreter.clear_cache()
    yield


@pytest.fixture
def config():
    return ExecutionConfig(
        chain_id=31337,
        max_call_depth=1024,
        default_gas_limit=1_000_000,
        block_gas_limit=30_000_000,
        block_time=12,
        max_snapshots=64,
        snapshot_every_step=True,
        parallel_observe=False,
    )


@pytest.fixture
def world_state():
    state = WorldState(block=BlockEnvironment(coinbase=COINBASE))
    state.import_accounts(
        [
            {"address": ALICE, "balance": 1000},
            {"address": BOB, "balance": 0},
        ]
    )
    return state


@pytest.fixture
def executor(world_state, config):
    return EVMBytecodeExecutor(world_state, config)


@pytest.fixture
def message():
    """Factory for execution messages from ALICE."""

    def _make(to=BOB, value=0, gas_limit=100_000, data=b"", nonce=None, gas_price=0, sender=ALICE):
        return ExecutionMessage(
            sender=sender,
            to=to,
            value=value,
            gas_limit=gas_limit,
            data=data,
            nonce=nonce,
            gas_price=gas_price,
        )

    return _make
