"""
Unit tests for the agent layer.

Coverage targets:
- Agent identity and deterministic address derivation
- TransactionRequest conversion and validation
- Scripted, stochastic and reactive decision rules
- Event filters
- AgentRegistry uniqueness and build_agent definitions
"""

import pytest

from evmsim.agents import (
    AgentRegistry,
    EventFilter,
    PassiveAgent,
    ReactiveAgent,
    ScriptedAgent,
    StochasticAgent,
    TransactionRequest,
    build_agent,
    derive_agent_address,
)
from evmsim.core.simulation_exceptions import AgentError, AgentRegistrationError
from evmsim.core.transaction import Transaction
from evmsim.core.vm.evm.context import Log
from evmsim.core.vm.executor import ExecutionOutcome, ExecutionStatus
from evmsim.simulation.report import TransactionRecord

from sim_helpers import ALICE, BOB, CAROL


def _record(status):
    return TransactionRecord(
        step=1,
        index=0,
        agent="r",
        transaction=Transaction(sender=ALICE, to=BOB),
        outcome=ExecutionOutcome(status=status),
    )


class TestIdentity:
    def test_derived_address_is_stable(self):
        assert derive_agent_address("alice") == derive_agent_address("alice")
        assert derive_agent_address("alice") != derive_agent_address("bob")
        assert PassiveAgent("alice").address == derive_agent_address("alice")

    def test_explicit_address_is_normalized(self):
        agent = PassiveAgent("alice", ALICE.upper().replace("0X", "0x"))
        assert agent.address == ALICE
        assert agent.identity().name == "alice"
        assert agent.to_dict() == {"name": "alice", "address": ALICE, "kind": "passive"}

    @pytest.mark.parametrize("name,address", [("", None), ("x", "0x12")])
    def test_invalid_identity(self, name, address):
        with pytest.raises(AgentError):
            PassiveAgent(name, address)


class TestTransactionRequest:
    def test_to_transaction_fills_sender_and_default_gas(self):
        request = TransactionRequest(to=BOB, value=5, label="pay")
        tx = request.to_transaction(ALICE, default_gas_limit=50_000)
        assert tx.sender == ALICE
        assert tx.gas_limit == 50_000
        assert tx.metadata == {"label": "pay"}

    def test_from_dict(self):
        request = TransactionRequest.from_dict({"to": BOB, "value": "0x10", "data": "0x01", "gas_limit": 30000})
        assert request.value == 16
        assert request.data == b"\x01"
        assert request.gas_limit == 30000
        assert request.nonce is None

    def test_bad_target(self):
        with pytest.raises(AgentError):
            TransactionRequest(to="nowhere")


class TestScriptedAgent:
    def test_replays_script(self, world_state):
        request = TransactionRequest(to=BOB, value=1)
        agent = ScriptedAgent("s", {2: [request]})
        view = world_state.view()
        assert agent.observe(view, 1) == []
        assert agent.observe(view, 2) == [request]
        assert agent.last_step == 2

    def test_from_sequence_numbers_from_one(self, world_state):
        agent = ScriptedAgent.from_sequence("s", [[], [TransactionRequest(to=BOB)]])
        assert agent.observe(world_state.view(), 2)[0].to == BOB

    def test_rejects_step_zero(self):
        with pytest.raises(AgentError):
            ScriptedAgent("s", {0: []})


class TestStochasticAgent:
    def test_same_seed_same_choices(self, world_state):
        world_state.import_accounts([{"address": CAROL, "balance": 10**6}])
        first = StochasticAgent("x", [ALICE, BOB], seed=7, probability=0.5, max_value=100, address=CAROL)
        second = StochasticAgent("x", [ALICE, BOB], seed=7, probability=0.5, max_value=100, address=CAROL)
        view = world_state.view()
        assert [first.observe(view, s) for s in range(1, 30)] == [second.observe(view, s) for s in range(1, 30)]

    def test_value_capped_by_balance(self, world_state):
        world_state.import_accounts([{"address": CAROL, "balance": 5}])
        agent = StochasticAgent("x", [BOB], min_value=1, max_value=1000, address=CAROL)
        for step in range(1, 20):
            (request,) = agent.observe(world_state.view(), step)
            assert 1 <= request.value <= 5

    def test_skips_when_broke(self, world_state):
        agent = StochasticAgent("x", [BOB], min_value=1, max_value=3, address=CAROL)
        assert agent.observe(world_state.view(), 1) == []

    def test_zero_probability_never_sends(self, world_state):
        agent = StochasticAgent("x", [BOB], probability=0.0, address=ALICE)
        assert all(agent.observe(world_state.view(), step) == [] for step in range(1, 20))

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"recipients": []},
            {"recipients": [BOB], "probability": 1.5},
            {"recipients": [BOB], "min_value": 5, "max_value": 1},
            {"recipients": [BOB], "gas_price": 1},
        ],
    )
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(AgentError):
            StochasticAgent("x", **kwargs)


class TestReactiveAgent:
    def test_table_form(self, world_state):
        initial = TransactionRequest(to=BOB, value=1, label="initial")
        ok = TransactionRequest(to=BOB, value=2, label="ok")
        retry = TransactionRequest(to=BOB, value=3, label="retry")
        agent = ReactiveAgent("r", initial=[initial], on_success=[ok], on_failure=[retry])
        view = world_state.view()

        assert agent.observe(view, 1) == [initial]
        assert agent.observe(view, 2) == []
        agent.notify([_record(ExecutionStatus.REVERT)])
        assert agent.observe(view, 3) == [retry]
        assert agent.observe(view, 4) == []
        agent.notify([_record(ExecutionStatus.SUCCESS)])
        assert agent.observe(view, 5) == [ok]
        assert agent.outcomes_seen == 2

    def test_policy_form_sees_last_outcome(self, world_state):
        seen = []

        def policy(last_outcome, view, step):
            seen.append(None if last_outcome is None else last_outcome.status)
            return []

        agent = ReactiveAgent("r", policy=policy)
        agent.observe(world_state.view(), 1)
        agent.notify([_record(ExecutionStatus.ERROR)])
        agent.observe(world_state.view(), 2)
        assert seen == [None, ExecutionStatus.ERROR]


def test_event_filters_and_log_delivery():
    contract = "0x" + "cc" * 20
    agent = PassiveAgent("p", event_filters=[EventFilter(address=contract, topic0=1)])
    matching = Log(address=contract, topics=(1,), data=b"")
    assert agent.wants(matching)
    assert not agent.wants(Log(address=contract, topics=(2,), data=b""))
    assert not agent.wants(Log(address=BOB, topics=(1,), data=b""))
    assert EventFilter().matches(Log(address=BOB, topics=(), data=b""))
    agent.on_logs([matching])
    assert agent.received_logs == [matching]


class TestRegistry:
    def test_registration_order_and_lookup(self):
        registry = AgentRegistry()
        first = registry.register(PassiveAgent("b"))
        second = registry.register(PassiveAgent("a"))
        assert [agent.name for agent in registry] == ["b", "a"]
        assert registry.get("a") is second
        assert registry.by_address(first.address) is first
        assert "a" in registry
        assert len(registry) == 2

    def test_duplicates_rejected(self):
        registry = AgentRegistry()
        registry.register(PassiveAgent("a", ALICE))
        with pytest.raises(AgentRegistrationError):
            registry.register(PassiveAgent("a", BOB))
        with pytest.raises(AgentRegistrationError):
            registry.register(PassiveAgent("b", ALICE))

    def test_unknown_agent(self):
        with pytest.raises(AgentError):
            AgentRegistry().get("ghost")


class TestBuildAgent:
    def test_builds_each_kind(self):
        scripted = build_agent({"kind": "scripted", "name": "s", "script": {"1": [{"to": BOB, "value": 1}]}})
        assert isinstance(scripted, ScriptedAgent)
        assert scripted.script[1][0].value == 1

        stochastic = build_agent({"kind": "stochastic", "name": "x", "recipients": [BOB], "min_value": 2})
        assert isinstance(stochastic, StochasticAgent)
        assert stochastic.max_value == 2

        reactive = build_agent({"kind": "reactive", "name": "r", "initial": [{"to": BOB}]})
        assert isinstance(reactive, ReactiveAgent)

        passive = build_agent({"kind": "passive", "name": "p", "event_filters": [{"topic0": "0x1"}]})
        assert passive.event_filters == [EventFilter(topic0=1)]

    @pytest.mark.parametrize(
        "definition",
        [
            {"kind": "oracle", "name": "o"},
            {"kind": "scripted", "name": "s", "script": {"1": [{"to": BOB, "value": "lots"}]}},
            {"kind": "passive", "name": "p", "event_filters": [{"address": "0x12"}]},
        ],
    )
    def test_invalid_definitions(self, definition):
        with pytest.raises(AgentError):
            build_agent(definition)
