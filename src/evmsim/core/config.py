"""
evmsim Configuration

Runtime settings are read from EVMSIM_* environment variables at import
time, with defaults taken from evmsim.core.constants. Executors and the
orchestrator receive an ExecutionConfig instance rather than reading these
globals directly, so tests can build configs without touching os.environ.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

from evmsim.core import constants
from evmsim.core.simulation_exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _get_int(env_var: str, default: int, minimum: int = 0) -> int:
    """Read an integer setting, rejecting malformed or out-of-range values."""
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        value = int(raw, 0)
    except ValueError:
        raise ConfigurationError(
            f"{env_var} must be an integer, got {raw!r}",
            details={"env_var": env_var},
        )
    if value < minimum:
        raise ConfigurationError(
            f"{env_var} must be >= {minimum}, got {value}",
            details={"env_var": env_var},
        )
    return value


def _get_bool(env_var: str, default: bool) -> bool:
    raw = os.getenv(env_var, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


CHAIN_ID = _get_int("EVMSIM_CHAIN_ID", constants.DEFAULT_CHAIN_ID, minimum=1)
MAX_CALL_DEPTH = _get_int("EVMSIM_MAX_CALL_DEPTH", constants.MAX_CALL_DEPTH, minimum=1)
DEFAULT_GAS_LIMIT = _get_int("EVMSIM_DEFAULT_GAS_LIMIT", constants.DEFAULT_TX_GAS_LIMIT, minimum=constants.TX_BASE_GAS)
BLOCK_GAS_LIMIT = _get_int("EVMSIM_BLOCK_GAS_LIMIT", constants.DEFAULT_BLOCK_GAS_LIMIT, minimum=constants.TX_BASE_GAS)
BLOCK_TIME_SECONDS = _get_int("EVMSIM_BLOCK_TIME", constants.DEFAULT_BLOCK_TIME_SECONDS)
MAX_SNAPSHOTS = _get_int("EVMSIM_MAX_SNAPSHOTS", constants.DEFAULT_MAX_SNAPSHOTS, minimum=1)
SNAPSHOT_EVERY_STEP = _get_bool("EVMSIM_SNAPSHOT_EVERY_STEP", True)
PARALLEL_OBSERVE = _get_bool("EVMSIM_PARALLEL_OBSERVE", False)
LOG_LEVEL = os.getenv("EVMSIM_LOG_LEVEL", "WARNING").strip().upper() or "WARNING"
LOG_DIR = os.getenv("EVMSIM_LOG_DIR", "").strip()

if LOG_LEVEL not in ("DEBUG", "INFO", "WARNING", "WARN", "ERROR", "CRITICAL"):
    raise ConfigurationError(f"EVMSIM_LOG_LEVEL has unknown level {LOG_LEVEL!r}")


@dataclass(frozen=True)
class ExecutionConfig:
    """
    Settings shared by the execution engine and the orchestrator.

    Attributes:
        chain_id: Value returned by CHAINID
        max_call_depth: Maximum nested call depth. Executors raise the
            process-wide recursion limit (sys.setrecursionlimit) so that this
            depth is reachable
        default_gas_limit: Gas limit used when a transaction request omits one
        block_gas_limit: Per-transaction ceiling (and GASLIMIT opcode value)
        block_time: Seconds added to the block timestamp per step
        max_snapshots: Snapshots retained by the orchestrator before pruning
        snapshot_every_step: Whether Settled takes a snapshot
        parallel_observe: Evaluate agent observe() calls in a thread pool
    """

    chain_id: int = CHAIN_ID
    max_call_depth: int = MAX_CALL_DEPTH
    default_gas_limit: int = DEFAULT_GAS_LIMIT
    block_gas_limit: int = BLOCK_GAS_LIMIT
    block_time: int = BLOCK_TIME_SECONDS
    max_snapshots: int = MAX_SNAPSHOTS
    snapshot_every_step: bool = SNAPSHOT_EVERY_STEP
    parallel_observe: bool = PARALLEL_OBSERVE

    def __post_init__(self) -> None:
        if self.max_call_depth < 1:
            raise ConfigurationError("max_call_depth must be at least 1")
        if self.default_gas_limit > self.block_gas_limit:
            raise ConfigurationError(
                "default_gas_limit cannot exceed block_gas_limit",
                details={
                    "default_gas_limit": self.default_gas_limit,
                    "block_gas_limit": self.block_gas_limit,
                },
            )

    @classmethod
    def from_env(cls) -> "ExecutionConfig":
        """Build a config from the EVMSIM_* environment variables."""
        return cls(
            chain_id=_get_int("EVMSIM_CHAIN_ID", constants.DEFAULT_CHAIN_ID, minimum=1),
            max_call_depth=_get_int("EVMSIM_MAX_CALL_DEPTH", constants.MAX_CALL_DEPTH, minimum=1),
            default_gas_limit=_get_int(
                "EVMSIM_DEFAULT_GAS_LIMIT", constants.DEFAULT_TX_GAS_LIMIT, minimum=constants.TX_BASE_GAS
            ),
            block_gas_limit=_get_int(
                "EVMSIM_BLOCK_GAS_LIMIT", constants.DEFAULT_BLOCK_GAS_LIMIT, minimum=constants.TX_BASE_GAS
            ),
            block_time=_get_int("EVMSIM_BLOCK_TIME", constants.DEFAULT_BLOCK_TIME_SECONDS),
            max_snapshots=_get_int("EVMSIM_MAX_SNAPSHOTS", constants.DEFAULT_MAX_SNAPSHOTS, minimum=1),
            snapshot_every_step=_get_bool("EVMSIM_SNAPSHOT_EVERY_STEP", True),
            parallel_observe=_get_bool("EVMSIM_PARALLEL_OBSERVE", False),
        )

    def with_overrides(self, **overrides: Optional[int]) -> "ExecutionConfig":
        """Return a copy with the non-None overrides applied."""
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **values)
