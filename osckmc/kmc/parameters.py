"""
Input parameters for a single KMC simulation run.

This module defines the run parameter model, the enumerations that select
film architecture, disorder model, rate models and test mode, and the
cross-field validation performed before a run starts.
"""

from __future__ import annotations

import math
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

from ..data.material_parameters import (
    P3HT_PCBM_PARAMETERS,
    MaterialParameters,
    PhaseParameters,
    get_parameters_for_material,
)
from .errors import ParameterError

if TYPE_CHECKING:
    from ..settings.config import Settings


class TestMode(str, Enum):
    """Simulation test modes; each one defines its own stopping rule."""

    __test__ = False  # Not a pytest test class

    EXCITON_DIFFUSION = "exciton_diffusion"
    TIME_OF_FLIGHT = "tof"
    IQE = "iqe"
    DYNAMICS = "dynamics"
    STEADY_TRANSPORT = "steady_transport"
    FIXED_DURATION = "fixed_duration"


class Architecture(str, Enum):
    """Film architectures (donor/acceptor site layout)."""

    NEAT = "neat"
    BILAYER = "bilayer"
    RANDOM_BLEND = "random_blend"


class DOSModel(str, Enum):
    """Site energy distribution models."""

    NONE = "none"
    GAUSSIAN = "gaussian"
    EXPONENTIAL = "exponential"


class CorrelationKernel(str, Enum):
    """Smoothing kernels used to impart spatial correlation."""

    GAUSSIAN = "gaussian"
    POWER = "power"


class HoppingModel(str, Enum):
    """Polaron hopping and dissociation rate models."""

    MILLER_ABRAHAMS = "miller_abrahams"
    MARCUS = "marcus"


class RecombinationModel(str, Enum):
    """Polaron recombination prefactor models."""

    TUNNELING = "tunneling"
    LANGEVIN = "langevin"


class Parameters(BaseModel):
    """
    Complete parameter set of one simulation run.

    Distances are in nm, times in s, energies in eV, concentrations in
    cm^-3 and the internal potential in V. Negative internal potentials
    drive electrons toward z = 0 and holes toward z = height.
    """

    model_config = ConfigDict(validate_assignment=True, use_enum_values=False)

    # General
    random_seed: int | None = Field(default=None, description="Seed of the run's random stream")

    # Lattice
    length: int = Field(default=50, description="Lattice size in X direction", gt=0)
    width: int = Field(default=50, description="Lattice size in Y direction", gt=0)
    height: int = Field(default=50, description="Lattice size in Z direction", gt=0)
    unit_size: float = Field(default=1.0, description="Lattice constant (nm)", gt=0)
    x_periodic: bool = True
    y_periodic: bool = True
    z_periodic: bool = False

    # Physical conditions
    temperature: float = Field(default=300.0, description="Temperature (K)", gt=0)
    internal_potential: float = Field(default=0.0, description="Potential across film (V)")

    # Test mode and stopping rule
    test_mode: TestMode = TestMode.TIME_OF_FLIGHT
    n_tests: int = Field(default=1000, description="Number of test objects", gt=0)
    max_time: float | None = Field(default=None, description="Simulated time cap (s)", gt=0)

    # Film architecture
    architecture: Architecture = Architecture.NEAT
    thickness_acceptor: int = Field(default=0, description="Bilayer acceptor thickness", ge=0)
    acceptor_conc: float = Field(default=0.5, description="Random blend acceptor fraction", ge=0, le=1)
    phase_restriction: bool = False

    # Energetic disorder
    dos_model: DOSModel = DOSModel.GAUSSIAN
    correlated_disorder: bool = False
    correlation_length: float = Field(default=1.0, description="Disorder correlation length (nm)", gt=0)
    correlation_kernel: CorrelationKernel = CorrelationKernel.GAUSSIAN
    power_kernel_exponent: Literal[-1, -2] = -1

    # Rate models and cutoffs
    hopping_model: HoppingModel = HoppingModel.MILLER_ABRAHAMS
    recombination_model: RecombinationModel = RecombinationModel.TUNNELING
    r_polaron_recombination: float = Field(default=1e12, ge=0)
    capture_radius: float = Field(default=1.0, description="Recombination capture radius (nm)", gt=0)
    polaron_hopping_cutoff: float = Field(default=1.0, description="Polaron hop range (nm)", gt=0)
    fret_cutoff: float = Field(default=1.0, description="Exciton hop range (nm)", gt=0)
    exciton_dissociation_cutoff: float = Field(default=1.0, description="Dissociation range (nm)", gt=0)
    fret_triplet_annihilation: bool = False

    # Coulomb interactions
    coulomb_interactions: bool = True
    coulomb_cutoff: float = Field(default=15.0, description="Coulomb interaction range (nm)", gt=0)
    gaussian_delocalization: bool = False
    polaron_delocalization_length: float = Field(default=1.0, gt=0)

    # Transient sampling
    transient_start: float = Field(default=1e-10, gt=0)
    transient_end: float = Field(default=1e-4, gt=0)
    transient_pnts_per_decade: int = Field(default=10, gt=0)
    transient_linear_pnts: int = Field(default=100, description="Sample count of a linear grid", gt=1)
    transient_spacing: Literal["logarithmic", "linear"] = "logarithmic"

    # Time-of-flight test
    tof_polaron_type: Literal["electron", "hole"] = "electron"
    tof_initial_polarons: int = Field(default=10, gt=0)
    tof_placement: Literal["random", "energy"] = "random"
    tof_placement_energy: float = 0.0

    # Dynamics test
    dynamics_initial_exciton_conc: float = Field(default=1e18, gt=0)
    dynamics_extraction: bool = False

    # Exciton generation (exciton diffusion and IQE tests)
    exciton_generation_rate_donor: float = Field(default=1e21, ge=0)
    exciton_generation_rate_acceptor: float = Field(default=1e21, ge=0)
    iqe_time_cutoff: float = Field(default=1e-4, gt=0)

    # Steady transport test
    steady_carrier_density: float = Field(default=1e18, gt=0)
    n_equilibration_events: int = Field(default=100000, ge=0)

    # Material phases
    donor: PhaseParameters = Field(default_factory=lambda: P3HT_PCBM_PARAMETERS.donor)
    acceptor: PhaseParameters = Field(default_factory=lambda: P3HT_PCBM_PARAMETERS.acceptor)

    @property
    def material(self) -> MaterialParameters:
        """Donor/acceptor pair as a MaterialParameters instance."""
        return MaterialParameters(name="custom", donor=self.donor, acceptor=self.acceptor)

    @property
    def n_sites(self) -> int:
        """Total number of lattice sites."""
        return self.length * self.width * self.height

    @property
    def volume_cm3(self) -> float:
        """Film volume (cm^3)."""
        return self.n_sites * (1e-7 * self.unit_size) ** 3

    @property
    def kt(self) -> float:
        """Thermal energy (eV)."""
        return MaterialParameters.k_boltzmann * self.temperature

    @property
    def recalc_cutoff(self) -> float:
        """Distance within which particles need event recalculation after a change (nm)."""
        return max(
            self.polaron_hopping_cutoff,
            self.capture_radius,
            self.fret_cutoff,
            self.exciton_dissociation_cutoff,
        )

    def check_parameters(self) -> None:
        """
        Validate cross-field parameter rules.

        Raises:
            ParameterError: If any rule is violated. All problems are reported together.
        """
        problems: list[str] = []
        extent_nm = min(self.length, self.width, self.height) * self.unit_size

        if self.transient_end <= self.transient_start:
            problems.append("transient_end must be larger than transient_start")

        if self.correlated_disorder:
            if self.dos_model != DOSModel.GAUSSIAN:
                problems.append("correlated disorder requires the Gaussian DOS model")
            if self.correlation_length >= extent_nm / 2:
                problems.append(
                    f"correlation_length ({self.correlation_length} nm) must be smaller than half "
                    f"the smallest lattice extent ({extent_nm / 2} nm)"
                )
            if self.correlation_length < self.unit_size:
                problems.append("correlation_length must be at least one lattice unit")

        if self.architecture == Architecture.BILAYER and not 0 < self.thickness_acceptor < self.height:
            problems.append("bilayer thickness_acceptor must be between 1 and height - 1")
        if self.architecture == Architecture.RANDOM_BLEND and not 0 < self.acceptor_conc < 1:
            problems.append("random blend acceptor_conc must be between 0 and 1 (exclusive)")
        if self.phase_restriction and self.architecture == Architecture.NEAT:
            problems.append("phase restriction cannot be used with a neat film")

        for name in ("polaron_hopping_cutoff", "fret_cutoff", "exciton_dissociation_cutoff"):
            if getattr(self, name) < self.unit_size:
                problems.append(f"{name} must be at least one lattice unit")
        if self.coulomb_interactions and self.coulomb_cutoff < self.unit_size:
            problems.append("coulomb_cutoff must be at least one lattice unit")

        if self.test_mode == TestMode.TIME_OF_FLIGHT:
            if self.z_periodic:
                problems.append("the time-of-flight test requires a non-periodic z boundary")
            if self.tof_initial_polarons > self.length * self.width:
                problems.append("tof_initial_polarons cannot exceed the number of sites in one plane")
        if self.test_mode == TestMode.IQE:
            if self.z_periodic:
                problems.append("the IQE test requires a non-periodic z boundary")
            if self.architecture == Architecture.NEAT:
                problems.append("the IQE test requires a donor/acceptor architecture")
        if self.test_mode == TestMode.STEADY_TRANSPORT:
            if not self.z_periodic:
                problems.append("the steady transport test requires a periodic z boundary")
            if self.internal_potential == 0:
                problems.append("the steady transport test requires a non-zero internal potential")
            n_carriers = round(self.steady_carrier_density * self.volume_cm3)
            if not 0 < n_carriers <= self.n_sites:
                problems.append("steady_carrier_density must give between 1 and n_sites carriers")
        if self.test_mode == TestMode.DYNAMICS:
            if math.ceil(self.dynamics_initial_exciton_conc * self.volume_cm3) > self.n_sites:
                problems.append("dynamics_initial_exciton_conc exceeds one exciton per site")
        if self.test_mode == TestMode.FIXED_DURATION and self.max_time is None:
            problems.append("the fixed duration mode requires max_time")

        problems.extend(self.donor.validate("donor"))
        problems.extend(self.acceptor.validate("acceptor"))

        if problems:
            raise ParameterError(problems)

    @classmethod
    def from_settings(
        cls, settings: Settings, material: MaterialParameters | None = None, **overrides: object
    ) -> Parameters:
        """
        Build run parameters from the ambient settings.

        Args:
            settings: Project settings (lattice, temperature, seed).
            material: Material preset. If None, uses the preset named in settings.
            **overrides: Additional parameter values.

        Returns:
            Parameters instance.
        """
        material = material or get_parameters_for_material(settings.kmc.material)
        values: dict[str, object] = {
            "length": settings.kmc.lattice_size_x,
            "width": settings.kmc.lattice_size_y,
            "height": settings.kmc.lattice_size_z,
            "unit_size": settings.kmc.unit_size,
            "temperature": settings.kmc.temperature,
            "internal_potential": settings.kmc.internal_potential,
            "max_time": settings.kmc.simulation_time,
            "random_seed": settings.hardware.seed,
            "donor": material.donor,
            "acceptor": material.acceptor,
        }
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: Path | str) -> Parameters:
        """
        Load run parameters from a YAML file.

        A top-level 'material' key selects a preset for the donor and
        acceptor phases; explicit 'donor'/'acceptor' mappings override
        individual preset values.

        Args:
            path: YAML file path.

        Returns:
            Parameters instance.
        """
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        material = get_parameters_for_material(data.pop("material", "p3ht_pcbm"))
        for phase_name in ("donor", "acceptor"):
            base = getattr(material, phase_name)
            overrides = data.get(phase_name) or {}
            data[phase_name] = replace(base, **overrides)
        return cls.model_validate(data)
