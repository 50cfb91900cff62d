"""
Simulation-specific exception hierarchy for evmsim.

Provides typed exceptions for state, transaction and orchestration failures
so callers can tell recoverable per-transaction problems apart from fatal
invariant violations that must halt a simulation run.

Per-transaction failures (rejected, reverted, halted transactions) are
reported as ExecutionOutcome values, not raised. The exceptions here cover
programming/configuration faults and the internal plumbing between the
World State Store and the Execution Engine.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class SimulationError(Exception):
    """Base exception for all simulation-related errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the simulation can carry on after this error
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable


# ==================== Validation Errors ====================


class ValidationError(SimulationError):
    """Raised when simulation input fails validation rules."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, recoverable: bool = True) -> None:
        super().__init__(message, details=details, recoverable=recoverable)


class InvalidTransactionError(ValidationError):
    """Raised when a transaction is structurally invalid.

    Examples: malformed address, negative value, oversized init code.
    """
    pass


class NonceError(ValidationError):
    """Raised when transaction nonce is invalid or out of sequence."""
    pass


class InsufficientBalanceError(ValidationError):
    """Raised when an account lacks sufficient balance for a debit.

    The World State never clamps a balance at zero; the engine receives this
    error and decides whether the transaction is rejected or the call fails.
    """

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
        balance: int = 0,
        required: int = 0,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.address = address
        self.balance = balance
        self.required = required


class ArithmeticBoundsError(ValidationError):
    """Raised when overflow-checked uint256 arithmetic leaves its range."""
    pass


# ==================== State Errors ====================


class StateError(SimulationError):
    """Raised when world state operations fail."""
    pass


class SimulationFatalError(StateError):
    """Raised when an internal invariant of the state store or orchestrator breaks.

    Not recoverable: the orchestrator halts the run and reports the step and
    reason at which it occurred.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details=details, recoverable=False)


class InvalidSnapshotError(SimulationFatalError):
    """Raised when restoring an unknown or invalidated snapshot handle."""
    pass


class StateConflictError(SimulationFatalError):
    """Raised when a state diff's pre-images do not match the current state.

    Applying the same diff twice is the common cause.
    """
    pass


# ==================== Scenario & Agent Errors ====================


class ScenarioError(SimulationError):
    """Raised when a scenario definition cannot be loaded or is invalid."""
    pass


class AgentError(SimulationError):
    """Raised when an agent misbehaves during collection."""
    pass


class AgentRegistrationError(AgentError):
    """Raised when an agent's name or address collides with a registered agent."""
    pass


# ==================== Execution Errors ====================


class ExecutionFailedError(SimulationError):
    """Raised when unpacking a non-successful execution outcome.

    Carries the raw revert output so callers can decode a revert reason.
    """

    def __init__(
        self,
        message: str,
        output: Optional[bytes] = None,
        gas_used: int = 0,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.output = output
        self.gas_used = gas_used


# ==================== Configuration Errors ====================


class ConfigurationError(SimulationError):
    """Raised when simulation configuration is invalid."""
    recoverable = False


# ==================== Utility Functions ====================


def is_fatal_error(exc: Exception) -> bool:
    """Check if an exception must halt a simulation run.

    Args:
        exc: The exception to check

    Returns:
        True if the error is an invariant violation
    """
    return isinstance(exc, SimulationFatalError)


def get_error_context(exc: Exception) -> Dict[str, Any]:
    """Extract error context from an exception for logging.

    Args:
        exc: The exception to extract context from

    Returns:
        Dictionary containing error type, message, and any additional details
    """
    context = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }

    if isinstance(exc, SimulationError):
        context["recoverable"] = exc.recoverable
        if exc.details:
            context["details"] = exc.details

    if isinstance(exc, InsufficientBalanceError):
        context["address"] = exc.address
        context["balance"] = exc.balance
        context["required"] = exc.required

    if isinstance(exc, ExecutionFailedError) and exc.output:
        context["output"] = "0x" + exc.output.hex()

    return context
