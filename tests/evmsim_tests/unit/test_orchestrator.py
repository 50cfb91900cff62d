"""
Unit tests for the Orchestrator step loop.

Coverage targets:
- Collecting → Executing → Settled cycle and phase transitions
- Ordered records, per-step snapshots and state roots
- Failed transactions recorded without halting the run
- Fatal halts (invalid snapshot, agent faults) and the halted report
- Rollback, snapshot pruning and log delivery
- Parallel observation determinism and the wall-clock budget
"""

from dataclasses import replace

import pytest

from evmsim.agents import (
    Agent,
    EventFilter,
    PassiveAgent,
    ReactiveAgent,
    ScriptedAgent,
    StochasticAgent,
    TransactionRequest,
)
from evmsim.core.constants import ADMIN_AGENT_ADDRESS, ADMIN_AGENT_NAME
from evmsim.core.simulation_exceptions import (
    AgentRegistrationError,
    ExecutionFailedError,
    InvalidSnapshotError,
    StateError,
)
from evmsim.core.state.world_state import WorldState
from evmsim.core.vm.executor import ExecutionStatus, RejectReason
from evmsim.simulation import Orchestrator, SimulationPhase, run_simulation

from sim_helpers import ALICE, BOB, CAROL, LOG_TOPIC_1_CODE, RETURN_42_CODE, deployer_for

CONTRACT = "0x" + "cc" * 20


class ExplodingAgent(Agent):
    kind = "exploding"

    def observe(self, view, step):
        raise RuntimeError("strategy crashed")


def _transfer_script(*values):
    return ScriptedAgent.from_sequence("alice", [[TransactionRequest(to=BOB, value=v)] for v in values], ALICE)


@pytest.fixture
def orchestrator(world_state, config):
    return Orchestrator(
        world_state=world_state,
        config=config,
        agents=[_transfer_script(100, 200, 300), PassiveAgent("bob", BOB)],
    )


class TestStepLoop:
    def test_initial_phase_and_admin(self, orchestrator):
        assert orchestrator.phase == SimulationPhase.INITIALIZED
        assert orchestrator.registry.names()[0] == ADMIN_AGENT_NAME
        assert orchestrator.registry.get(ADMIN_AGENT_NAME).address == ADMIN_AGENT_ADDRESS

    def test_admin_can_be_left_out(self, world_state, config):
        orchestrator = Orchestrator(world_state=world_state, config=config, include_admin=False)
        assert len(orchestrator.registry) == 0

    def test_transfer_to_admin_runs_ecrecover(self, world_state, config):
        agent = ScriptedAgent.from_sequence("alice", [[TransactionRequest(to=ADMIN_AGENT_ADDRESS, value=1)]], ALICE)
        orchestrator = Orchestrator(world_state=world_state, config=config, agents=[agent])
        (record,) = orchestrator.step().records
        assert record.outcome.success
        assert record.outcome.gas_used == 21000 + 3000
        assert orchestrator.balance_of(ADMIN_AGENT_NAME) == 1

    def test_step_applies_and_settles(self, orchestrator, world_state):
        start_block = world_state.block.number
        result = orchestrator.step()

        assert orchestrator.phase == SimulationPhase.SETTLED
        assert result.step == 1
        assert result.block_number == start_block
        assert [record.agent for record in result.records] == ["alice"]
        assert result.records[0].outcome.success
        assert result.state_root == world_state.state_root()
        assert result.snapshot is not None
        assert world_state.block.number == start_block + 1
        assert orchestrator.snapshot_for(0) is not None
        assert orchestrator.balance_of("bob") == 100
        assert orchestrator.balance_of(BOB) == 100

    def test_run_reports_every_step(self, orchestrator):
        report = orchestrator.run(3)
        assert orchestrator.phase == SimulationPhase.FINISHED
        assert not report.halted
        assert [step.step for step in report.steps] == [1, 2, 3]
        assert report.transaction_count == 3
        assert report.balances["alice"] == 400
        assert report.balances["bob"] == 600
        assert report.status_counts()["success"] == 3
        assert report.to_dict()["final_state_root"] == report.final_state_root

    def test_failed_transaction_does_not_halt(self, world_state, config):
        agent = ScriptedAgent("alice", {1: [TransactionRequest(to=BOB, value=5000)], 2: [TransactionRequest(to=BOB, value=1)]}, ALICE)
        report = Orchestrator(world_state=world_state, config=config, agents=[agent]).run(2)
        assert not report.halted
        first = report.steps[0].records[0].outcome
        assert first.status == ExecutionStatus.REJECTED
        assert first.reason == RejectReason.INSUFFICIENT_FUNDS.value
        assert report.steps[0].failures == 1
        assert report.steps[1].records[0].outcome.success

    def test_execution_order_is_registration_then_request_order(self, world_state, config):
        world_state.mint(CAROL, 1000)
        first = ScriptedAgent("first", {1: [TransactionRequest(to=BOB, value=1), TransactionRequest(to=BOB, value=2)]}, ALICE)
        second = ScriptedAgent("second", {1: [TransactionRequest(to=BOB, value=3)]}, CAROL)
        result = Orchestrator(world_state=world_state, config=config, agents=[first, second]).step()
        assert [(r.agent, r.transaction.value, r.index) for r in result.records] == [
            ("first", 1, 0),
            ("first", 2, 1),
            ("second", 3, 2),
        ]

    def test_duplicate_agents_rejected(self, orchestrator):
        with pytest.raises(AgentRegistrationError):
            orchestrator.add_agent(PassiveAgent("bob"))

    def test_run_simulation_helper(self, world_state, config):
        report = run_simulation([_transfer_script(1)], steps=2, world_state=world_state, config=config)
        assert len(report.steps) == 2
        assert report.transaction_count == 1


class TestFatalHalts:
    def test_agent_fault_halts_run(self, world_state, config):
        orchestrator = Orchestrator(world_state=world_state, config=config, agents=[ExplodingAgent("boom")])
        report = orchestrator.run(3)
        assert report.halted
        assert report.fatal.step == 1
        assert report.fatal.error_type == "AgentError"
        assert report.steps == []
        assert orchestrator.phase == SimulationPhase.FINISHED

    def test_invalid_rollback_is_fatal(self, orchestrator):
        orchestrator.run(1)
        with pytest.raises(InvalidSnapshotError):
            orchestrator.rollback_to(7)
        assert orchestrator.fatal.error_type == "InvalidSnapshotError"
        with pytest.raises(StateError):
            orchestrator.step()
        assert orchestrator.run(2).steps[-1].step == 1

    def test_agent_with_bad_request_halts(self, world_state, config):
        agent = ScriptedAgent("alice", {1: [TransactionRequest(to=BOB, value=-1)]}, ALICE)
        report = Orchestrator(world_state=world_state, config=config, agents=[agent]).run(1)
        assert report.halted
        assert report.fatal.error_type == "AgentError"


class TestSnapshots:
    def test_rollback_restores_step_state(self, orchestrator, world_state):
        orchestrator.run(3)
        root_after_one = orchestrator.steps[0].state_root
        orchestrator.rollback_to(1)
        assert world_state.state_root() == root_after_one
        assert [step.step for step in orchestrator.steps] == [1]
        assert orchestrator.current_step == 1
        assert orchestrator.snapshot_for(2) is None

        result = orchestrator.step()
        assert result.step == 2
        assert orchestrator.balance_of("bob") == 300

    def test_rollback_to_initial_state(self, orchestrator, world_state):
        initial_root = world_state.state_root()
        orchestrator.run(2)
        orchestrator.rollback_to(0)
        assert world_state.state_root() == initial_root
        assert orchestrator.steps == []
        assert orchestrator.phase == SimulationPhase.RUNNING

    def test_old_snapshots_are_pruned(self, world_state, config):
        orchestrator = Orchestrator(
            world_state=world_state,
            config=replace(config, max_snapshots=2),
            agents=[_transfer_script(1, 1, 1, 1)],
        )
        orchestrator.run(4)
        assert orchestrator.snapshot_for(0) is not None
        assert orchestrator.snapshot_for(1) is None
        assert orchestrator.snapshot_for(2) is None
        assert orchestrator.snapshot_for(4) is not None
        assert world_state.snapshot_count == 3

    def test_snapshots_can_be_disabled(self, world_state, config):
        orchestrator = Orchestrator(
            world_state=world_state,
            config=replace(config, snapshot_every_step=False),
            agents=[_transfer_script(1)],
        )
        result = orchestrator.step()
        assert result.snapshot is None
        assert result.state_root == world_state.state_root()


class TestNotificationsAndLogs:
    def test_logs_delivered_to_matching_filters(self, world_state, config):
        world_state.import_accounts([{"address": CONTRACT, "code": "0x" + LOG_TOPIC_1_CODE.hex()}])
        caller = ScriptedAgent("caller", {1: [TransactionRequest(to=CONTRACT, gas_limit=100_000)]}, ALICE)
        listener = PassiveAgent("listener", BOB, event_filters=[EventFilter(address=CONTRACT, topic0=1)])
        deaf = PassiveAgent("deaf", CAROL, event_filters=[EventFilter(topic0=2)])
        orchestrator = Orchestrator(world_state=world_state, config=config, agents=[caller, listener, deaf])

        orchestrator.run(2)

        assert len(listener.received_logs) == 1
        assert listener.received_logs[0].address == CONTRACT
        assert deaf.received_logs == []
        assert len(orchestrator.read_logs()) == 1
        assert orchestrator.read_logs(since_step=1) == []
        assert orchestrator.read_logs(EventFilter(topic0=2)) == []

    def test_reactive_agent_sees_its_outcomes(self, world_state, config):
        agent = ReactiveAgent(
            "alice",
            initial=[TransactionRequest(to=BOB, value=5000)],
            on_failure=[TransactionRequest(to=BOB, value=10)],
            address=ALICE,
        )
        report = Orchestrator(world_state=world_state, config=config, agents=[agent]).run(3)
        statuses = [record.outcome.status for record in report.records]
        assert statuses == [ExecutionStatus.REJECTED, ExecutionStatus.SUCCESS]
        assert agent.outcomes_seen == 2
        assert report.balances["alice"] == 990


class TestDeterminism:
    def _stochastic_run(self, config, parallel):
        state = WorldState()
        agents = [
            StochasticAgent(f"agent{i}", [ALICE, BOB, CAROL], seed=i, probability=0.7, max_value=50)
            for i in range(4)
        ]
        for agent in agents:
            state.mint(agent.address, 500)
        orchestrator = Orchestrator(
            world_state=state,
            config=replace(config, parallel_observe=parallel),
            agents=agents,
        )
        return orchestrator.run(10)

    def test_parallel_observation_matches_sequential(self, config):
        sequential = self._stochastic_run(config, parallel=False)
        parallel = self._stochastic_run(config, parallel=True)
        assert sequential.final_state_root == parallel.final_state_root
        assert [r.transaction for r in sequential.records] == [r.transaction for r in parallel.records]

    def test_wall_clock_budget_stops_between_steps(self, world_state, config):
        orchestrator = Orchestrator(
            world_state=world_state,
            config=config,
            agents=[_transfer_script(1, 1, 1)],
            wall_clock_budget=1e-9,
        )
        report = orchestrator.run(3)
        assert len(report.steps) == 1
        assert report.stopped_reason == "wall_clock_budget"
        assert not report.halted


class TestOutOfLoopOperations:
    def test_deploy_and_static_call(self, orchestrator):
        address = orchestrator.deploy_contract(ALICE, deployer_for(RETURN_42_CODE))
        outcome = orchestrator.call_static(BOB, address)
        assert int.from_bytes(outcome.output, "big") == 42

    def test_failed_deploy_raises(self, orchestrator):
        with pytest.raises(ExecutionFailedError):
            orchestrator.deploy_contract(ALICE, bytes.fromhex("60006000fd"))
