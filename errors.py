"""Exception types raised by the cell, gate and graph layers."""

from __future__ import annotations


class EvoCellError(Exception):
    """Base class for every error raised by this package."""


class MissingHistoryError(EvoCellError, LookupError):
    """Backward requested a step with no ledger entry or no seeded derivative."""


class DimensionMismatchError(EvoCellError, ValueError):
    """A vector length does not match the configured layer size."""

    def __init__(self, what: str, expected: int, actual: int):
        super().__init__(f"{what}: expected length {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class SubLayerError(EvoCellError, RuntimeError):
    """A gate's forward, backward or crossover could not produce a result."""


class NotSettledError(EvoCellError, RuntimeError):
    """A graph tick hit its sweep cap before every output neuron fired."""


class OwnershipError(EvoCellError, RuntimeError):
    """An owned object was touched from a thread that does not own it."""
