"""Agent that replays a predetermined, per-step transaction sequence."""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from evmsim.agents.base import Agent, EventFilter, TransactionRequest
from evmsim.core.simulation_exceptions import AgentError
from evmsim.core.state.world_state import StateView


class ScriptedAgent(Agent):
    """
    Submits ``script[step]`` at each step and nothing at steps the script omits.

    Steps are numbered from 1, matching the orchestrator.
    """

    kind = "scripted"

    def __init__(
        self,
        name: str,
        script: Mapping[int, Sequence[TransactionRequest]],
        address: Optional[str] = None,
        event_filters: Optional[Iterable[EventFilter]] = None,
    ) -> None:
        super().__init__(name, address, event_filters)
        self.script: Dict[int, List[TransactionRequest]] = {}
        for step, requests in script.items():
            if step < 1:
                raise AgentError(
                    f"Script for agent {name!r} has invalid step {step}",
                    details={"agent": name, "step": step},
                )
            self.script[int(step)] = list(requests)

    @classmethod
    def from_sequence(
        cls,
        name: str,
        steps: Sequence[Sequence[TransactionRequest]],
        address: Optional[str] = None,
    ) -> "ScriptedAgent":
        """Build from a list whose i-th entry holds the requests for step i + 1."""
        return cls(name, {index + 1: list(requests) for index, requests in enumerate(steps)}, address)

    @property
    def last_step(self) -> int:
        return max(self.script, default=0)

    def observe(self, view: StateView, step: int) -> List[TransactionRequest]:
        return list(self.script.get(step, ()))
