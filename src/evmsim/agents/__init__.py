"""
Simulation agents: autonomous actors that submit transactions each step.
"""

from evmsim.agents.base import (
    Agent,
    AgentIdentity,
    EventFilter,
    PassiveAgent,
    TransactionRequest,
    derive_agent_address,
)
from evmsim.agents.reactive import ReactiveAgent
from evmsim.agents.registry import AgentRegistry, build_agent
from evmsim.agents.scripted import ScriptedAgent
from evmsim.agents.stochastic import StochasticAgent

__all__ = [
    "Agent",
    "AgentIdentity",
    "AgentRegistry",
    "EventFilter",
    "PassiveAgent",
    "ReactiveAgent",
    "ScriptedAgent",
    "StochasticAgent",
    "TransactionRequest",
    "build_agent",
    "derive_agent_address",
]
