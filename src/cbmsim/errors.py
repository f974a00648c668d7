"""
Custom exception classes and validation utilities for cbmsim.

This module provides:
1. Hierarchical exception classes for the failure categories of a run
2. Validation helpers for data handed back by the numerical kernel
3. Consistent error message formatting

Exception Hierarchy:
====================
CbmSimError (base) - Base exception for all cbmsim-specific errors
├── ConfigurationError - Invalid or inconsistent configuration parameters
├── CorruptStateError - Persisted state stream is truncated or malformed
├── PreconditionViolation - Operation invoked before its required prior step
├── OutputIOError - Output file could not be opened or written
└── KernelStepError - Kernel step failed or returned malformed export data

Severity:
=========
- CorruptStateError aborts the load; no partially built state is returned.
- PreconditionViolation and OutputIOError abort only the operation that
  raised them. The Control facade logs them and carries on.
- KernelStepError aborts the whole run. There is no mid-trial recovery.

Author: cbmsim developers
Date: October 2026
"""

from __future__ import annotations

from typing import Sized

# =============================================================================
# Exception Hierarchy
# =============================================================================


class CbmSimError(Exception):
    """Base exception for all cbmsim-specific errors.

    All custom exceptions in cbmsim inherit from this class, enabling
    code to catch simulator errors specifically.
    """


class ConfigurationError(CbmSimError, ValueError):
    """Invalid configuration parameters.

    Raised when configuration values are out of valid range or incompatible
    with each other.
    """


class CorruptStateError(CbmSimError):
    """Persisted state could not be read back.

    Raised when a state stream ends early, or when the sizes it declares do
    not match the configured zone count or cell counts.
    """


class PreconditionViolation(CbmSimError):
    """Operation invoked before a required prior step.

    Examples: saving a simulation before its state exists, initializing the
    state a second time, or using a released SimulationState.
    """


class OutputIOError(CbmSimError, OSError):
    """An output stream could not be opened or written."""


class KernelStepError(CbmSimError, RuntimeError):
    """The numerical kernel could not complete a timestep.

    Also raised when an exported spike or conductance array does not have
    the length configured for its cell population.
    """


# =============================================================================
# Validation Utilities
# =============================================================================


def check_export_length(name: str, array: Sized, expected: int) -> None:
    """Validate the length of an array exported by the kernel.

    Args:
        name: Human readable name of the export (e.g. "GO spikes")
        array: Exported array (tensor or sequence)
        expected: Configured number of cells for the population

    Raises:
        KernelStepError: If the length differs from ``expected``
    """
    actual = len(array)
    if actual != expected:
        raise KernelStepError(
            f"Kernel export '{name}' has length {actual}, expected {expected}. "
            f"Check that the kernel was built from the same connectivity parameters."
        )


def check_stream_shape(name: str, actual: tuple, expected: tuple) -> None:
    """Validate the shape of a tensor read back from a state stream.

    Raises:
        CorruptStateError: If the shapes differ
    """
    if tuple(actual) != tuple(expected):
        raise CorruptStateError(
            f"State field '{name}' has shape {tuple(actual)} in stream, "
            f"expected {tuple(expected)}"
        )


__all__ = [
    "CbmSimError",
    "ConfigurationError",
    "CorruptStateError",
    "PreconditionViolation",
    "OutputIOError",
    "KernelStepError",
    "check_export_length",
    "check_stream_shape",
]
