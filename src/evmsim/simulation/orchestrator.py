"""
Simulation orchestrator.

Drives the step loop ``Initialized → Running → (Collecting → Executing →
Settled)* → Finished``:

- Collecting: every agent is polled once, in registration order. Polling can
  run in a thread pool; results are always re-assembled in registration
  order, so parallelism never changes what executes.
- Executing: collected transactions are applied one at a time, in collection
  order, each to completion before the next starts.
- Settled: outcomes are recorded, the block advances, the state is
  snapshotted, agents are notified of their own outcomes and receive the
  step's logs that match their filters.

A transaction that is REJECTED, REVERTs or ERRORs is just a recorded
outcome. Only a fatal error (invalid snapshot handle, state conflict, or an
agent fault) ends the run early; the report then records where and why.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from evmsim.agents.base import Agent, EventFilter, PassiveAgent, TransactionRequest
from evmsim.agents.registry import AgentRegistry
from evmsim.core.config import ExecutionConfig
from evmsim.core.constants import ADMIN_AGENT_ADDRESS, ADMIN_AGENT_NAME
from evmsim.core.primitives import normalize_address
from evmsim.core.simulation_exceptions import (
    AgentError,
    InvalidSnapshotError,
    InvalidTransactionError,
    SimulationError,
    SimulationFatalError,
    StateError,
    get_error_context,
)
from evmsim.core.state.world_state import SnapshotHandle, WorldState
from evmsim.core.structured_logger import LogContext, PerformanceTimer, get_structured_logger
from evmsim.core.transaction import Transaction
from evmsim.core.vm.evm.context import Log
from evmsim.core.vm.executor import ExecutionOutcome, unpack_outcome
from evmsim.core.vm.tx_processor import ContractTransactionProcessor
from evmsim.simulation.report import FatalHalt, SimulationReport, StepResult, TransactionRecord

MAX_OBSERVE_WORKERS = 8


class SimulationPhase(Enum):
    INITIALIZED = "initialized"
    RUNNING = "running"
    COLLECTING = "collecting"
    EXECUTING = "executing"
    SETTLED = "settled"
    FINISHED = "finished"


class Orchestrator:
    """
    Owns the world state, the agents and the step loop.

    Args:
        world_state: State to simulate against (a fresh one if omitted)
        config: Execution settings
        agents: Agents to register, in polling order
        include_admin: Register the passive ``admin`` agent at 0x...01
        name: Label carried into the report
        planned_steps: Default step count for ``run()``
        wall_clock_budget: Seconds after which ``run()`` stops between steps

    Note:
        The ``admin`` address 0x...01 is also the ecrecover precompile, so a
        call or transfer sent to ``admin`` runs ecrecover and costs an extra
        3000 gas. Pass ``include_admin=False`` or use another recipient when
        gas figures matter.
    """

    def __init__(
        self,
        world_state: Optional[WorldState] = None,
        config: Optional[ExecutionConfig] = None,
        agents: Iterable[Agent] = (),
        include_admin: bool = True,
        name: str = "simulation",
        planned_steps: int = 0,
        wall_clock_budget: Optional[float] = None,
    ) -> None:
        self.world_state = world_state or WorldState()
        self.config = config or ExecutionConfig()
        self.processor = ContractTransactionProcessor(self.world_state, config=self.config)
        self.registry = AgentRegistry()
        self.name = name
        self.planned_steps = planned_steps
        self.wall_clock_budget = wall_clock_budget
        self.logger = get_structured_logger()

        self.phase = SimulationPhase.INITIALIZED
        self.current_step = 0
        self.steps: List[StepResult] = []
        self.fatal: Optional[FatalHalt] = None
        self.stopped_reason: Optional[str] = None
        self._snapshots: Dict[int, SnapshotHandle] = {}
        self._logs: List[Tuple[int, Log]] = []

        if include_admin:
            self.add_agent(PassiveAgent(ADMIN_AGENT_NAME, ADMIN_AGENT_ADDRESS))
        for agent in agents:
            self.add_agent(agent)

    # ==================== Setup ====================

    def add_agent(self, agent: Agent) -> Agent:
        """
        Register ``agent`` and materialise its account.

        Raises:
            AgentRegistrationError: If the name or address is already taken
        """
        self._require_between_steps("add agent")
        self.registry.register(agent)
        self.world_state.create_account(agent.address)
        return agent

    @property
    def agents(self) -> List[Agent]:
        return list(self.registry)

    def deploy_contract(
        self,
        deployer: str,
        init_code: bytes,
        value: int = 0,
        gas_limit: Optional[int] = None,
        gas_price: int = 0,
    ) -> str:
        """
        Deploy a contract outside the step loop.

        Returns:
            The new contract's address

        Raises:
            ExecutionFailedError: If the creation does not succeed
        """
        self._require_between_steps("deploy contract")
        tx = Transaction(
            sender=deployer,
            to=None,
            value=value,
            data=init_code,
            gas_limit=gas_limit or self.config.default_gas_limit,
            gas_price=gas_price,
        )
        outcome = self.processor.process(tx)
        unpack_outcome(outcome)
        self.logger.info(
            "Contract deployed",
            deployer=tx.sender,
            contract=outcome.contract_address,
            gas_used=outcome.gas_used,
        )
        return outcome.contract_address

    def call_static(
        self,
        sender: str,
        to: Optional[str],
        data: bytes = b"",
        value: int = 0,
        gas_limit: Optional[int] = None,
    ) -> ExecutionOutcome:
        """Run a read-only query against the current state; nothing is committed."""
        self._require_between_steps("run a static call")
        tx = Transaction(
            sender=sender,
            to=to,
            value=value,
            data=data,
            gas_limit=gas_limit or self.config.default_gas_limit,
        )
        return self.processor.process(tx, static=True)

    def read_logs(self, event_filter: Optional[EventFilter] = None, since_step: int = 0) -> List[Log]:
        """Logs from settled steps after ``since_step``, optionally filtered."""
        return [
            log
            for step, log in self._logs
            if step > since_step and (event_filter is None or event_filter.matches(log))
        ]

    # ==================== Step loop ====================

    def run(self, steps: Optional[int] = None) -> SimulationReport:
        """
        Run ``steps`` steps (default ``planned_steps``) and report.

        Fatal errors end the run early and are recorded in the report rather
        than raised.
        """
        count = self.planned_steps if steps is None else steps
        started = time.monotonic()
        with LogContext():
            self.logger.info(
                "Simulation starting",
                simulation=self.name,
                steps=count,
                agents=len(self.registry),
            )
            for executed in range(count):
                if self.fatal is not None:
                    break
                if (
                    executed
                    and self.wall_clock_budget is not None
                    and time.monotonic() - started >= self.wall_clock_budget
                ):
                    self.stopped_reason = "wall_clock_budget"
                    self.logger.warning(
                        "Wall-clock budget exhausted",
                        simulation=self.name,
                        budget_seconds=self.wall_clock_budget,
                        steps_completed=executed,
                    )
                    break
                try:
                    self.step()
                except (SimulationFatalError, AgentError):
                    break
            self.phase = SimulationPhase.FINISHED
            report = self.report()
            self.logger.info(
                "Simulation finished",
                simulation=self.name,
                steps=len(self.steps),
                transactions=report.transaction_count,
                halted=report.halted,
                state_root=report.final_state_root,
            )
        return report

    def step(self) -> StepResult:
        """
        Run one Collecting → Executing → Settled cycle.

        Raises:
            SimulationFatalError, AgentError: After recording the halt; the
                orchestrator accepts no further steps
        """
        if self.fatal is not None:
            raise StateError(
                "Simulation halted on a fatal error",
                details=self.fatal.to_dict(),
            )
        if self.phase == SimulationPhase.INITIALIZED:
            self._snapshots[0] = self.world_state.snapshot()
        self.phase = SimulationPhase.RUNNING

        step = self.current_step + 1
        result = StepResult(step=step, block_number=self.world_state.block.number)
        timer = PerformanceTimer(self.logger, "simulation.step")
        try:
            with timer:
                self.phase = SimulationPhase.COLLECTING
                collected = self._collect(step)

                self.phase = SimulationPhase.EXECUTING
                for index, (agent, tx) in enumerate(collected):
                    outcome = self.processor.process(tx)
                    result.records.append(TransactionRecord(step, index, agent.name, tx, outcome))
                    self.logger.transaction_applied(
                        step=step,
                        sender=tx.sender,
                        target=tx.to or outcome.contract_address,
                        status=outcome.status.value,
                        gas_used=outcome.gas_used,
                        reason=outcome.reason,
                    )

                self.phase = SimulationPhase.SETTLED
                self._settle(result)
        except (SimulationFatalError, AgentError) as exc:
            self._halt(step, exc, result)
            raise

        result.duration_ms = timer.duration_ms
        self.current_step = step
        self.steps.append(result)
        return result

    def _collect(self, step: int) -> List[Tuple[Agent, Transaction]]:
        view = self.world_state.view()
        agents = list(self.registry)
        if self.config.parallel_observe and len(agents) > 1:
            with ThreadPoolExecutor(max_workers=min(len(agents), MAX_OBSERVE_WORKERS)) as pool:
                batches = list(pool.map(lambda agent: self._observe(agent, view, step), agents))
        else:
            batches = [self._observe(agent, view, step) for agent in agents]

        collected = []
        for agent, requests in zip(agents, batches):
            for request in requests:
                collected.append((agent, self._to_transaction(agent, request)))
        return collected

    @staticmethod
    def _observe(agent: Agent, view, step: int) -> List[TransactionRequest]:
        try:
            requests = agent.observe(view, step)
        except SimulationError:
            raise
        except Exception as exc:
            raise AgentError(
                f"Agent {agent.name!r} failed to observe step {step}: {exc}",
                details={"agent": agent.name, "step": step, "error_type": type(exc).__name__},
            ) from exc
        return list(requests or [])

    def _to_transaction(self, agent: Agent, request: TransactionRequest) -> Transaction:
        try:
            return request.to_transaction(agent.address, self.config.default_gas_limit)
        except InvalidTransactionError as exc:
            raise AgentError(
                f"Agent {agent.name!r} produced an invalid transaction: {exc.message}",
                details={"agent": agent.name, **exc.details},
            ) from exc

    def _settle(self, result: StepResult) -> None:
        state = self.world_state
        state.advance_block(self.config.block_time)

        if self.config.snapshot_every_step:
            handle = state.snapshot()
            self._snapshots[result.step] = handle
            result.snapshot = handle
            self.logger.snapshot_taken(result.step, handle.id)
            self._prune_snapshots()
        result.state_root = state.state_root()

        by_agent: Dict[str, List[TransactionRecord]] = {}
        step_logs: List[Log] = []
        for record in result.records:
            by_agent.setdefault(record.agent, []).append(record)
            step_logs.extend(record.outcome.logs)
        for name, records in by_agent.items():
            self.registry.get(name).notify(records)

        self._logs.extend((result.step, log) for log in step_logs)
        if step_logs:
            for agent in self.registry:
                matching = [log for log in step_logs if agent.wants(log)]
                if matching:
                    agent.on_logs(matching)

        self.logger.step_settled(
            step=result.step,
            tx_count=len(result.records),
            failures=result.failures,
            state_root=result.state_root,
        )

    def _prune_snapshots(self) -> None:
        # Step 0 (the initial state) is never pruned
        kept = sorted(step for step in self._snapshots if step > 0)
        while len(kept) > self.config.max_snapshots:
            oldest = kept.pop(0)
            self.world_state.release(self._snapshots.pop(oldest))

    def _halt(self, step: int, exc: SimulationError, partial: StepResult) -> None:
        partial.halted = True
        if partial.records:
            self.steps.append(partial)
        self.fatal = FatalHalt(
            step=step,
            reason=exc.message,
            error_type=type(exc).__name__,
            details=dict(exc.details),
        )
        self.phase = SimulationPhase.FINISHED
        self.logger.fatal_halt(step, exc.message, **get_error_context(exc))

    # ==================== Rollback ====================

    def rollback_to(self, step: int) -> None:
        """
        Restore the state captured when ``step`` settled (0 is the initial state).

        Later step results, logs and snapshots are discarded. Agents keep
        their own strategy state.

        Raises:
            InvalidSnapshotError: If no snapshot is held for ``step``; this
                is fatal and halts the orchestrator
        """
        self._require_between_steps("roll back")
        handle = self._snapshots.get(step)
        try:
            if handle is None:
                raise InvalidSnapshotError(
                    f"No snapshot held for step {step}",
                    details={"step": step, "available": sorted(self._snapshots)},
                )
            self.world_state.restore(handle)
        except InvalidSnapshotError as exc:
            self._halt(self.current_step, exc, StepResult(step=self.current_step, block_number=0))
            raise

        for later in [s for s in self._snapshots if s > step]:
            del self._snapshots[later]
        self.steps = [result for result in self.steps if result.step <= step]
        self._logs = [(s, log) for s, log in self._logs if s <= step]
        self.current_step = step
        self.phase = SimulationPhase.SETTLED if step else SimulationPhase.RUNNING
        self.logger.info("Simulation rolled back", simulation=self.name, step=step)

    def snapshot_for(self, step: int) -> Optional[SnapshotHandle]:
        return self._snapshots.get(step)

    # ==================== Reporting ====================

    def report(self) -> SimulationReport:
        state = self.world_state
        return SimulationReport(
            name=self.name,
            steps=list(self.steps),
            final_state_root=state.state_root(),
            final_block=state.block.number,
            total_balance=state.total_balance(),
            fatal=self.fatal,
            stopped_reason=self.stopped_reason,
            balances={agent.name: state.get_balance(agent.address) for agent in self.registry},
        )

    def balance_of(self, address_or_agent: str) -> int:
        if address_or_agent in self.registry:
            return self.world_state.get_balance(self.registry.get(address_or_agent).address)
        return self.world_state.get_balance(normalize_address(address_or_agent))

    def _require_between_steps(self, operation: str) -> None:
        if self.phase in (SimulationPhase.COLLECTING, SimulationPhase.EXECUTING):
            raise StateError(
                f"Cannot {operation} while a step is in progress",
                details={"phase": self.phase.value},
            )


def run_simulation(
    agents: Sequence[Agent],
    steps: int,
    world_state: Optional[WorldState] = None,
    config: Optional[ExecutionConfig] = None,
) -> SimulationReport:
    """Convenience wrapper: build an orchestrator and run it."""
    return Orchestrator(world_state=world_state, config=config, agents=agents).run(steps)
