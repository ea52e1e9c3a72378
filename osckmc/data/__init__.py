"""Data module containing material parameter presets."""

from .material_parameters import (
    MaterialParameters,
    PhaseParameters,
    get_parameters_for_material,
)

__all__ = [
    "MaterialParameters",
    "PhaseParameters",
    "get_parameters_for_material",
]
