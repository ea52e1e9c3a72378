"""KMC module for charge and exciton transport simulation."""

from .errors import LatticeError, OccupancyError, ParameterError, SimulationError
from .events import Event, EventQueue, EventType
from .lattice import Lattice, Site, SiteType
from .parameters import (
    Architecture,
    CorrelationKernel,
    DOSModel,
    HoppingModel,
    Parameters,
    RecombinationModel,
    TestMode,
)
from .particles import Particle, ParticleKind
from .rates import RateCalculator
from .simulator import OSCSimulator
from .statistics import RecombinationChannel, Statistics

__all__ = [
    "Lattice",
    "Site",
    "SiteType",
    "Particle",
    "ParticleKind",
    "Event",
    "EventQueue",
    "EventType",
    "RateCalculator",
    "Parameters",
    "TestMode",
    "Architecture",
    "DOSModel",
    "CorrelationKernel",
    "HoppingModel",
    "RecombinationModel",
    "RecombinationChannel",
    "Statistics",
    "OSCSimulator",
    "SimulationError",
    "ParameterError",
    "LatticeError",
    "OccupancyError",
]
