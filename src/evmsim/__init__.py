"""
evmsim - Deterministic EVM Simulation Engine

Runs smart-contract bytecode against a locally simulated EVM world state,
driven by a population of autonomous agents issuing transactions.

Main Components:
- Core: numeric/address primitives, world state store, configuration, logging
- VM: Cancun-rules EVM interpreter and transaction executor
- Agents: scripted, stochastic and reactive transaction-issuing actors
- Simulation: step orchestrator, scenario loading and result reporting

For detailed documentation, see: SPEC_FULL.md and DESIGN.md
"""

__version__ = "0.1.0"
__author__ = "evmsim Development Team"

__all__ = []
