"""Analysis module for transport and disorder characterization."""

from .correlation import fit_correlation_length
from .diffusion import diffusion_length, fit_diffusion_coefficient, msd_from_transient
from .transport import average_transient, calculate_mobility, population_transient

__all__ = [
    "fit_diffusion_coefficient",
    "diffusion_length",
    "msd_from_transient",
    "fit_correlation_length",
    "calculate_mobility",
    "average_transient",
    "population_transient",
]
