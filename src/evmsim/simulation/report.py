"""
Simulation result records.

Per step the orchestrator exposes the ordered (agent, transaction, outcome)
records plus the snapshot handle and state root taken at the step boundary;
the run as a whole is summarised by a SimulationReport.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from evmsim.core.state.world_state import SnapshotHandle
from evmsim.core.transaction import Transaction
from evmsim.core.vm.executor import ExecutionOutcome, ExecutionStatus


@dataclass(frozen=True)
class TransactionRecord:
    """One applied transaction, in execution order within its step."""

    step: int
    index: int
    agent: str
    transaction: Transaction
    outcome: ExecutionOutcome

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "index": self.index,
            "agent": self.agent,
            "tx_hash": self.transaction.calculate_hash(),
            "transaction": self.transaction.to_dict(),
            "outcome": self.outcome.to_dict(),
        }


@dataclass
class StepResult:
    """Everything that happened in one Collecting → Executing → Settled cycle."""

    step: int
    block_number: int
    records: List[TransactionRecord] = field(default_factory=list)
    snapshot: Optional[SnapshotHandle] = None
    state_root: Optional[str] = None
    duration_ms: float = 0.0
    halted: bool = False

    @property
    def outcomes(self) -> List[ExecutionOutcome]:
        return [record.outcome for record in self.records]

    @property
    def failures(self) -> int:
        return sum(1 for record in self.records if not record.outcome.success)

    def status_counts(self) -> Dict[str, int]:
        return dict(Counter(record.outcome.status.value for record in self.records))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "block_number": self.block_number,
            "records": [record.to_dict() for record in self.records],
            "snapshot": self.snapshot.id if self.snapshot else None,
            "state_root": self.state_root,
            "duration_ms": round(self.duration_ms, 3),
            "halted": self.halted,
        }


@dataclass(frozen=True)
class FatalHalt:
    """Invariant violation that ended the run early."""

    step: int
    reason: str
    error_type: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "reason": self.reason,
            "error_type": self.error_type,
            "details": self.details,
        }


@dataclass
class SimulationReport:
    """Aggregate result of a run."""

    name: str
    steps: List[StepResult]
    final_state_root: str
    final_block: int
    total_balance: int
    fatal: Optional[FatalHalt] = None
    stopped_reason: Optional[str] = None
    balances: Dict[str, int] = field(default_factory=dict)

    @property
    def halted(self) -> bool:
        return self.fatal is not None

    @property
    def records(self) -> List[TransactionRecord]:
        return [record for step in self.steps for record in step.records]

    @property
    def transaction_count(self) -> int:
        return sum(len(step.records) for step in self.steps)

    def status_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in ExecutionStatus}
        for record in self.records:
            counts[record.outcome.status.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "steps": [step.to_dict() for step in self.steps],
            "transaction_count": self.transaction_count,
            "status_counts": self.status_counts(),
            "final_state_root": self.final_state_root,
            "final_block": self.final_block,
            "total_balance": self.total_balance,
            "balances": self.balances,
            "fatal": self.fatal.to_dict() if self.fatal else None,
            "stopped_reason": self.stopped_reason,
        }
