"""
End-to-end scenario tests.

Coverage targets:
- Alice → Bob transfer followed by an overdraft that is rejected
- Value sent into a reverting contract: balances unchanged, nonce consumed
- Priced transactions: coinbase tip and base-fee burn
- Multi-agent YAML scenario run from file to report
"""

import pytest
import yaml

from evmsim.agents import ScriptedAgent, TransactionRequest
from evmsim.core.state.world_state import BlockEnvironment, WorldState
from evmsim.core.vm.executor import ExecutionStatus, RejectReason
from evmsim.simulation import Orchestrator, build_orchestrator, load_scenario

from sim_helpers import ALICE, BOB, COINBASE, REVERT_CODE, STORE_42_CODE, deployer_for

pytestmark = pytest.mark.integration

REVERTER = "0x" + "dd" * 20


def test_transfer_then_overdraft(world_state, config):
    alice = ScriptedAgent.from_sequence(
        "alice",
        [[TransactionRequest(to=BOB, value=400)], [TransactionRequest(to=BOB, value=700)]],
        ALICE,
    )
    report = Orchestrator(world_state=world_state, config=config, agents=[alice]).run(2)

    first, second = report.records
    assert first.outcome.status == ExecutionStatus.SUCCESS
    assert second.outcome.status == ExecutionStatus.REJECTED
    assert second.outcome.reason == RejectReason.INSUFFICIENT_FUNDS.value
    assert world_state.get_balance(ALICE) == 600
    assert world_state.get_balance(BOB) == 400
    assert world_state.get_nonce(ALICE) == 1
    assert report.total_balance == 1000


def test_value_into_reverting_contract(world_state, config):
    world_state.import_accounts([{"address": REVERTER, "code": "0x" + REVERT_CODE.hex()}])
    alice = ScriptedAgent("alice", {1: [TransactionRequest(to=REVERTER, value=50, gas_limit=50_000)]}, ALICE)
    report = Orchestrator(world_state=world_state, config=config, agents=[alice]).run(1)

    (record,) = report.records
    assert record.outcome.status == ExecutionStatus.REVERT
    assert record.outcome.gas_used > 21000
    assert world_state.get_balance(ALICE) == 1000
    assert world_state.get_balance(REVERTER) == 0
    assert world_state.get_nonce(ALICE) == 1


def test_priced_transfer_pays_tip_and_burns_base_fee(config):
    state = WorldState(block=BlockEnvironment(coinbase=COINBASE, base_fee=7))
    state.mint(ALICE, 10**9)
    alice = ScriptedAgent(
        "alice",
        {1: [TransactionRequest(to=BOB, value=1, gas_limit=21000, gas_price=10)]},
        ALICE,
    )
    Orchestrator(world_state=state, config=config, agents=[alice], include_admin=False).run(1)

    assert state.get_balance(ALICE) == 10**9 - 1 - 21000 * 10
    assert state.get_balance(COINBASE) == 21000 * 3
    assert state.total_balance() == 10**9 - 21000 * 7


def test_contract_deploy_and_scripted_calls(world_state, config):
    orchestrator = Orchestrator(world_state=world_state, config=config)
    contract = orchestrator.deploy_contract(ALICE, deployer_for(STORE_42_CODE))
    orchestrator.add_agent(ScriptedAgent("alice", {1: [TransactionRequest(to=contract, gas_limit=100_000)]}, ALICE))

    report = orchestrator.run(1)
    assert report.records[0].outcome.success
    assert world_state.get_storage(contract, 0) == 42


def test_multi_agent_yaml_scenario(tmp_path, config):
    document = {
        "name": "market",
        "steps": 6,
        "seed": 3,
        "block": {"coinbase": COINBASE},
        "accounts": [{"address": REVERTER, "name": "reverter", "code": "0x" + REVERT_CODE.hex()}],
        "agents": [
            {
                "name": "alice",
                "kind": "scripted",
                "address": ALICE,
                "balance": 1000,
                "script": {1: [{"to": "bob", "value": 400}], 2: [{"to": "reverter", "value": 50}]},
            },
            {"name": "bob", "kind": "passive", "address": BOB},
            {
                "name": "carol",
                "kind": "stochastic",
                "balance": 500,
                "recipients": ["alice", "bob"],
                "probability": 0.5,
                "max_value": 20,
            },
            {
                "name": "retrier",
                "kind": "reactive",
                "balance": 10,
                "initial": [{"to": "bob", "value": 100}],
                "on_failure": [{"to": "bob", "value": 5}],
            },
        ],
    }
    path = tmp_path / "market.yaml"
    path.write_text(yaml.safe_dump(document))

    first = build_orchestrator(load_scenario(path), config=config).run()
    second = build_orchestrator(load_scenario(path), config=config).run()

    assert not first.halted
    assert len(first.steps) == 6
    assert first.final_state_root == second.final_state_root
    assert first.total_balance == 1510
    assert first.steps[-1].block_number == 6

    statuses = {(record.agent, record.step): record.outcome.status for record in first.records}
    assert statuses[("alice", 1)] == ExecutionStatus.SUCCESS
    assert statuses[("alice", 2)] == ExecutionStatus.REVERT
    assert statuses[("retrier", 1)] == ExecutionStatus.REJECTED
    assert statuses[("retrier", 2)] == ExecutionStatus.SUCCESS
