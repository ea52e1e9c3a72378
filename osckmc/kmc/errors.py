"""
Exception hierarchy for the KMC engine.

Configuration and lattice errors are raised before a run starts. Runtime
invariant violations are guarded with assertions instead.
"""

from __future__ import annotations


class SimulationError(RuntimeError):
    """Base class for errors raised while a simulation is set up or running."""


class ParameterError(ValueError):
    """Invalid parameter value or parameter combination."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("Invalid simulation parameters: " + "; ".join(self.problems))


class LatticeError(ValueError):
    """Lattice cannot be built or addressed with the requested geometry."""


class OccupancyError(SimulationError):
    """A particle cannot be placed on the requested site."""
