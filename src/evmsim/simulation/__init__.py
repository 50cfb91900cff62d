"""
Simulation orchestration: the step loop, scenario loading and reporting.
"""

from evmsim.simulation.orchestrator import Orchestrator, SimulationPhase, run_simulation
from evmsim.simulation.report import FatalHalt, SimulationReport, StepResult, TransactionRecord
from evmsim.simulation.scenario import ScenarioConfig, build_orchestrator, load_scenario, parse_scenario

__all__ = [
    "FatalHalt",
    "Orchestrator",
    "ScenarioConfig",
    "SimulationPhase",
    "SimulationReport",
    "StepResult",
    "TransactionRecord",
    "build_orchestrator",
    "load_scenario",
    "parse_scenario",
    "run_simulation",
]
