"""
Agent capability interface.

An agent is an autonomous actor that decides, once per step, which
transactions to submit. It sees the world only through a read-only
StateView and gets its outcomes back through ``notify``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Sequence

from evmsim.core.primitives import keccak256, normalize_address, parse_hex_bytes, parse_uint
from evmsim.core.simulation_exceptions import AgentError
from evmsim.core.state.world_state import StateView
from evmsim.core.transaction import Transaction
from evmsim.core.vm.evm.context import Log

if TYPE_CHECKING:
    from evmsim.simulation.report import TransactionRecord


def derive_agent_address(name: str) -> str:
    """Deterministic address for an agent that was not given one."""
    return "0x" + keccak256(f"evmsim.agent:{name}".encode("utf-8"))[12:].hex()


@dataclass(frozen=True)
class AgentIdentity:
    name: str
    address: str

    def __post_init__(self) -> None:
        if not self.name:
            raise AgentError("Agent name cannot be empty")
        try:
            object.__setattr__(self, "address", normalize_address(self.address))
        except ValueError as exc:
            raise AgentError(f"Invalid address for agent {self.name!r}: {exc}") from exc


@dataclass(frozen=True)
class TransactionRequest:
    """
    A transaction an agent wants submitted, minus the sender.

    The orchestrator fills in the sender (the agent's address) and a default
    gas limit when ``gas_limit`` is None.
    """

    to: Optional[str] = None
    value: int = 0
    data: bytes = b""
    gas_limit: Optional[int] = None
    gas_price: int = 0
    nonce: Optional[int] = None
    label: Optional[str] = None

    def __post_init__(self) -> None:
        if self.to is not None:
            try:
                object.__setattr__(self, "to", normalize_address(self.to))
            except ValueError as exc:
                raise AgentError(f"Invalid request target: {exc}") from exc
        object.__setattr__(self, "data", bytes(self.data))

    def to_transaction(self, sender: str, default_gas_limit: int) -> Transaction:
        metadata = {"label": self.label} if self.label else {}
        return Transaction(
            sender=sender,
            to=self.to,
            value=self.value,
            data=self.data,
            gas_limit=self.gas_limit if self.gas_limit is not None else default_gas_limit,
            gas_price=self.gas_price,
            nonce=self.nonce,
            metadata=metadata,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TransactionRequest":
        gas_limit = data.get("gas_limit")
        nonce = data.get("nonce")
        return cls(
            to=data.get("to"),
            value=parse_uint(data.get("value", 0)),
            data=parse_hex_bytes(data.get("data")),
            gas_limit=None if gas_limit is None else parse_uint(gas_limit),
            gas_price=parse_uint(data.get("gas_price", 0)),
            nonce=None if nonce is None else parse_uint(nonce),
            label=data.get("label"),
        )


@dataclass(frozen=True)
class EventFilter:
    """Matches logs by emitting address and/or first topic; None matches anything."""

    address: Optional[str] = None
    topic0: Optional[int] = None

    def __post_init__(self) -> None:
        if self.address is not None:
            object.__setattr__(self, "address", normalize_address(self.address))

    def matches(self, log: Log) -> bool:
        if self.address is not None and log.address != self.address:
            return False
        if self.topic0 is not None and log.topic0 != self.topic0:
            return False
        return True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EventFilter":
        topic0 = data.get("topic0")
        return cls(
            address=data.get("address"),
            topic0=None if topic0 is None else parse_uint(topic0),
        )


class Agent(ABC):
    """
    Base class for simulation agents.

    Subclasses implement ``observe``; it must not mutate world state (it only
    ever receives a StateView) and should be safe to call from a worker
    thread, since collection may run agents in parallel.
    """

    kind = "agent"

    def __init__(
        self,
        name: str,
        address: Optional[str] = None,
        event_filters: Optional[Iterable[EventFilter]] = None,
    ) -> None:
        self._identity = AgentIdentity(name=name, address=address or derive_agent_address(name))
        self.event_filters: List[EventFilter] = list(event_filters or [])
        self.received_logs: List[Log] = []

    @property
    def name(self) -> str:
        return self._identity.name

    @property
    def address(self) -> str:
        return self._identity.address

    def identity(self) -> AgentIdentity:
        return self._identity

    @abstractmethod
    def observe(self, view: StateView, step: int) -> List[TransactionRequest]:
        """Decide which transactions to submit at ``step``."""

    def notify(self, records: Sequence["TransactionRecord"]) -> None:
        """Receive the outcomes of this agent's own submissions for a step."""

    def wants(self, log: Log) -> bool:
        return any(event_filter.matches(log) for event_filter in self.event_filters)

    def on_logs(self, logs: Sequence[Log]) -> None:
        """Receive the logs of a settled step that match this agent's filters."""
        self.received_logs.extend(logs)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "address": self.address, "kind": self.kind}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, address={self.address!r})"


class PassiveAgent(Agent):
    """Holds an account but never submits anything."""

    kind = "passive"

    def observe(self, view: StateView, step: int) -> List[TransactionRequest]:
        return []
