"""Exceptions raised by the NUMA placement library.

Two families exist:

- ``ConfigurationError`` and its subclasses signal a caller bug: a malformed
  topology, a malformed request, an inconsistent placement handed to the
  evaluator or an over-drawn memory ledger. They derive from ``ValueError``.
- ``PlacementFailedError`` is raised only by the fleet simulation when a VM
  cannot be placed. The planner itself reports "no plan" as ``None``.
"""


class NumaPlacementError(Exception):
    """Base exception for the package."""
    pass


class ConfigurationError(NumaPlacementError, ValueError):
    """Invalid input supplied by the caller."""
    pass


class InvalidTopologyError(ConfigurationError):
    """Malformed host topology (matrix shape, node references, unknown CPU)."""
    pass


class InvalidRequestError(ConfigurationError):
    """Malformed VM request or node resource snapshot."""
    pass


class PlacementInvariantError(ConfigurationError):
    """Placement handed to the evaluator is internally inconsistent."""
    pass


class LedgerError(ConfigurationError):
    """Memory ledger debit that cannot be satisfied."""
    pass


class PlacementFailedError(NumaPlacementError):
    """A VM of a simulated fleet could not be placed."""

    def __init__(self, vm_index: int, message: str):
        super().__init__(message)
        self.vm_index = vm_index
