"""Agent whose decision depends on the most recent outcome it received."""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional, Sequence

from evmsim.agents.base import Agent, EventFilter, TransactionRequest
from evmsim.core.state.world_state import StateView
from evmsim.core.vm.executor import ExecutionOutcome

ReactivePolicy = Callable[[Optional[ExecutionOutcome], StateView, int], List[TransactionRequest]]


class ReactiveAgent(Agent):
    """
    Chooses its next requests from its last outcome.

    Either pass a ``policy`` callable ``(last_outcome, view, step) -> requests``
    or use the table form: ``initial`` is submitted while nothing has been
    received yet, then ``on_success`` or ``on_failure`` depending on whether
    the last outcome succeeded. An outcome is consumed by the first step that
    reacts to it, so the agent stays idle until its next submission settles.
    """

    kind = "reactive"

    def __init__(
        self,
        name: str,
        policy: Optional[ReactivePolicy] = None,
        initial: Sequence[TransactionRequest] = (),
        on_success: Sequence[TransactionRequest] = (),
        on_failure: Sequence[TransactionRequest] = (),
        address: Optional[str] = None,
        event_filters: Optional[Iterable[EventFilter]] = None,
    ) -> None:
        super().__init__(name, address, event_filters)
        self.policy = policy
        self.initial = list(initial)
        self.on_success = list(on_success)
        self.on_failure = list(on_failure)
        self.last_outcome: Optional[ExecutionOutcome] = None
        self.outcomes_seen = 0
        self._pending = False
        self._started = False

    def observe(self, view: StateView, step: int) -> List[TransactionRequest]:
        if self.policy is not None:
            return list(self.policy(self.last_outcome, view, step))

        if not self._started:
            self._started = True
            return list(self.initial)
        if not self._pending:
            return []
        self._pending = False
        if self.last_outcome is not None and self.last_outcome.success:
            return list(self.on_success)
        return list(self.on_failure)

    def notify(self, records) -> None:
        if not records:
            return
        self.last_outcome = records[-1].outcome
        self.outcomes_seen += len(records)
        self._pending = True
