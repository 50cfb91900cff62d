"""
Agent whose transfers are drawn from a seeded random policy.

All randomness comes from the agent's own ``random.Random`` instance, so a
run is reproducible given the seed, whether or not agents are observed in
parallel.
"""

from __future__ import annotations

import random
from typing import Iterable, List, Optional, Sequence

from evmsim.agents.base import Agent, EventFilter, TransactionRequest
from evmsim.core.primitives import normalize_address
from evmsim.core.simulation_exceptions import AgentError
from evmsim.core.state.world_state import StateView


class StochasticAgent(Agent):
    """
    Each step, with probability ``probability``, sends a transfer to a
    recipient chosen uniformly from ``recipients`` with a value drawn
    uniformly from ``[min_value, max_value]``.

    Values are capped to what the agent can afford at the current view, and
    the step is skipped when it cannot afford ``min_value``.
    """

    kind = "stochastic"

    def __init__(
        self,
        name: str,
        recipients: Sequence[str],
        seed: int = 0,
        probability: float = 1.0,
        min_value: int = 1,
        max_value: int = 1,
        gas_limit: Optional[int] = None,
        gas_price: int = 0,
        address: Optional[str] = None,
        event_filters: Optional[Iterable[EventFilter]] = None,
    ) -> None:
        super().__init__(name, address, event_filters)
        if not recipients:
            raise AgentError(f"Stochastic agent {name!r} needs at least one recipient")
        if not 0.0 <= probability <= 1.0:
            raise AgentError(
                f"Probability must be in [0, 1], got {probability}",
                details={"agent": name},
            )
        if min_value < 0 or max_value < min_value:
            raise AgentError(
                f"Invalid value range [{min_value}, {max_value}]",
                details={"agent": name},
            )
        if gas_price and gas_limit is None:
            raise AgentError(
                "A priced stochastic agent needs an explicit gas_limit",
                details={"agent": name},
            )
        self.recipients = [normalize_address(recipient) for recipient in recipients]
        self.seed = seed
        self.probability = probability
        self.min_value = min_value
        self.max_value = max_value
        self.gas_limit = gas_limit
        self.gas_price = gas_price
        self.rng = random.Random(seed)

    def observe(self, view: StateView, step: int) -> List[TransactionRequest]:
        # Draws happen unconditionally so the sequence does not depend on balances
        roll = self.rng.random()
        recipient = self.rng.choice(self.recipients)
        value = self.rng.randint(self.min_value, self.max_value)
        if roll >= self.probability:
            return []

        gas_limit = self.gas_limit or 0
        affordable = view.get_balance(self.address) - gas_limit * self.gas_price
        if affordable < self.min_value:
            return []
        return [
            TransactionRequest(
                to=recipient,
                value=min(value, affordable),
                gas_limit=self.gas_limit,
                gas_price=self.gas_price,
            )
        ]
