"""
evmsim Core Module

Core functionality for the simulation engine including:
- Numeric and address primitives
- World state store, journal and snapshots
- EVM interpreter and transaction execution
- Configuration, structured logging and the exception hierarchy

This package contains the fundamental building blocks of evmsim.
"""

__all__ = []
