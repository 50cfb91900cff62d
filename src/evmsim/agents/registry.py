"""
Agent registry and construction from plain definitions.

Registration order is the deterministic order in which the orchestrator
polls agents each step.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from evmsim.agents.base import Agent, EventFilter, PassiveAgent, TransactionRequest
from evmsim.agents.reactive import ReactiveAgent
from evmsim.agents.scripted import ScriptedAgent
from evmsim.agents.stochastic import StochasticAgent
from evmsim.core.primitives import normalize_address
from evmsim.core.simulation_exceptions import AgentError, AgentRegistrationError
from evmsim.core.structured_logger import get_structured_logger


class AgentRegistry:
    """Agents keyed by name, with unique names and unique addresses."""

    def __init__(self) -> None:
        self._agents: Dict[str, Agent] = {}
        self._by_address: Dict[str, str] = {}
        self.logger = get_structured_logger()

    def register(self, agent: Agent) -> Agent:
        """
        Add ``agent`` at the end of the polling order.

        Raises:
            AgentRegistrationError: If the name or the address is taken
        """
        if agent.name in self._agents:
            raise AgentRegistrationError(
                f"Agent with name {agent.name!r} already exists in the simulation",
                details={"name": agent.name},
            )
        if agent.address in self._by_address:
            raise AgentRegistrationError(
                f"Agent with address {agent.address} already exists in the simulation",
                details={"address": agent.address, "registered_as": self._by_address[agent.address]},
            )
        self._agents[agent.name] = agent
        self._by_address[agent.address] = agent.name
        self.logger.debug("Agent registered", agent=agent.name, kind=agent.kind, address=agent.address)
        return agent

    def get(self, name: str) -> Agent:
        try:
            return self._agents[name]
        except KeyError:
            raise AgentError(f"Unknown agent {name!r}", details={"name": name}) from None

    def by_address(self, address: str) -> Optional[Agent]:
        name = self._by_address.get(normalize_address(address))
        return self._agents[name] if name is not None else None

    def names(self) -> List[str]:
        return list(self._agents)

    def __contains__(self, name: object) -> bool:
        return name in self._agents

    def __iter__(self) -> Iterator[Agent]:
        return iter(list(self._agents.values()))

    def __len__(self) -> int:
        return len(self._agents)


def _requests(entries: Any) -> List[TransactionRequest]:
    return [
        entry if isinstance(entry, TransactionRequest) else TransactionRequest.from_dict(entry)
        for entry in (entries or [])
    ]


def _build_passive(definition: Mapping[str, Any], common: Dict[str, Any]) -> Agent:
    return PassiveAgent(**common)


def _build_scripted(definition: Mapping[str, Any], common: Dict[str, Any]) -> Agent:
    script = {int(step): _requests(entries) for step, entries in (definition.get("script") or {}).items()}
    return ScriptedAgent(script=script, **common)


def _build_stochastic(definition: Mapping[str, Any], common: Dict[str, Any]) -> Agent:
    return StochasticAgent(
        recipients=definition.get("recipients") or [],
        seed=definition.get("seed", 0),
        probability=definition.get("probability", 1.0),
        min_value=definition.get("min_value", 1),
        max_value=definition.get("max_value", definition.get("min_value", 1)),
        gas_limit=definition.get("gas_limit"),
        gas_price=definition.get("gas_price", 0),
        **common,
    )


def _build_reactive(definition: Mapping[str, Any], common: Dict[str, Any]) -> Agent:
    return ReactiveAgent(
        initial=_requests(definition.get("initial")),
        on_success=_requests(definition.get("on_success")),
        on_failure=_requests(definition.get("on_failure")),
        **common,
    )


AGENT_BUILDERS: Dict[str, Callable[[Mapping[str, Any], Dict[str, Any]], Agent]] = {
    PassiveAgent.kind: _build_passive,
    ScriptedAgent.kind: _build_scripted,
    StochasticAgent.kind: _build_stochastic,
    ReactiveAgent.kind: _build_reactive,
}


def build_agent(definition: Mapping[str, Any]) -> Agent:
    """
    Construct an agent from a plain mapping.

    Required keys are ``name`` and ``kind``; ``address`` and
    ``event_filters`` are optional. Remaining keys are kind-specific.

    Raises:
        AgentError: For unknown kinds or malformed parameters
    """
    kind = definition.get("kind")
    builder = AGENT_BUILDERS.get(kind)
    if builder is None:
        raise AgentError(
            f"Unknown agent kind {kind!r}",
            details={"kind": kind, "supported": sorted(AGENT_BUILDERS)},
        )
    name = definition.get("name")
    try:
        common = {
            "name": name,
            "address": definition.get("address"),
            "event_filters": [
                entry if isinstance(entry, EventFilter) else EventFilter.from_dict(entry)
                for entry in (definition.get("event_filters") or [])
            ],
        }
        return builder(definition, common)
    except (ValueError, TypeError) as exc:
        raise AgentError(
            f"Invalid definition for agent {name!r}: {exc}",
            details={"kind": kind},
        ) from exc
