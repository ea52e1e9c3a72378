"""
Physical parameters for donor/acceptor organic semiconductor blends.

This module contains representative parameters for KMC simulation of
charge and exciton transport in organic solar cell films. Each material
phase (donor or acceptor) carries its own energy levels, lifetimes, rate
prefactors and localization lengths.

References:
    - Heiber and Dhinojwala, Phys. Rev. Applied 2 (2014) 014008
    - Miller and Abrahams, Phys. Rev. 120 (1960) 745
    - Typical P3HT:PCBM and polyfluorene:PCBM literature values
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import ClassVar


@dataclass(frozen=True)
class PhaseParameters:
    """
    Physical parameters of one material phase.

    All energies in eV, rates in s^-1, lifetimes in s, inverse localization
    lengths in nm^-1.

    Attributes:
        homo: HOMO level (eV, positive below vacuum).
        lumo: LUMO level (eV, positive below vacuum).
        exciton_binding: Singlet exciton binding energy (eV).
        singlet_triplet_splitting: Singlet-triplet energy splitting (eV).
        singlet_lifetime: Singlet exciton lifetime (s).
        triplet_lifetime: Triplet exciton lifetime (s).
        r_singlet_hopping: FRET singlet hopping prefactor (s^-1).
        singlet_localization: Singlet inverse localization length (nm^-1).
        r_triplet_hopping: Dexter triplet hopping prefactor (s^-1).
        triplet_localization: Triplet inverse localization length (nm^-1).
        r_exciton_exciton_annihilation: Exciton-exciton annihilation prefactor (s^-1).
        r_exciton_polaron_annihilation: Exciton-polaron annihilation prefactor (s^-1).
        r_exciton_dissociation: Exciton dissociation prefactor (s^-1).
        r_isc: Intersystem crossing rate (s^-1).
        r_risc: Reverse intersystem crossing prefactor (s^-1).
        r_polaron_hopping: Polaron hopping attempt frequency (s^-1).
        polaron_localization: Polaron inverse localization length (nm^-1).
        reorganization: Marcus reorganization energy (eV).
        energy_stdev: Gaussian DOS standard deviation (eV).
        energy_urbach: Exponential DOS Urbach energy (eV).
        dielectric: Relative dielectric constant.
        mobility: Reference polaron mobility for Langevin recombination (cm^2/Vs).
    """

    # Energy levels
    homo: float = 5.0
    lumo: float = 3.0
    exciton_binding: float = 0.5
    singlet_triplet_splitting: float = 0.7

    # Exciton kinetics
    singlet_lifetime: float = 500e-12
    triplet_lifetime: float = 1e-6
    r_singlet_hopping: float = 1e12
    singlet_localization: float = 1.0
    r_triplet_hopping: float = 1e12
    triplet_localization: float = 2.0
    r_exciton_exciton_annihilation: float = 1e12
    r_exciton_polaron_annihilation: float = 1e12
    r_exciton_dissociation: float = 1e14
    r_isc: float = 1e8
    r_risc: float = 1e1

    # Polaron kinetics
    r_polaron_hopping: float = 1e12
    polaron_localization: float = 2.0
    reorganization: float = 0.2

    # Disorder
    energy_stdev: float = 0.075
    energy_urbach: float = 0.03

    # Dielectric and transport
    dielectric: float = 3.5
    mobility: float = 1e-3

    def validate(self, prefix: str) -> list[str]:
        """
        Check that every rate, lifetime and length is physically meaningful.

        Args:
            prefix: Name used in messages (e.g. 'donor').

        Returns:
            List of problem descriptions (empty when valid).
        """
        problems: list[str] = []
        strictly_positive = (
            "singlet_lifetime",
            "triplet_lifetime",
            "singlet_localization",
            "triplet_localization",
            "polaron_localization",
            "reorganization",
            "dielectric",
        )
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in strictly_positive and value <= 0:
                problems.append(f"{prefix}.{f.name} must be positive (got {value})")
            elif f.name.startswith("r_") and value < 0:
                problems.append(f"{prefix}.{f.name} must be non-negative (got {value})")
            elif f.name in ("energy_stdev", "energy_urbach", "mobility") and value < 0:
                problems.append(f"{prefix}.{f.name} must be non-negative (got {value})")
        return problems


@dataclass(frozen=True)
class MaterialParameters:
    """
    Parameters of a donor/acceptor material pair.

    Attributes:
        name: Preset name.
        donor: Donor phase parameters (site type 1).
        acceptor: Acceptor phase parameters (site type 2).
    """

    name: str = "p3ht_pcbm"
    donor: PhaseParameters = field(default_factory=PhaseParameters)
    acceptor: PhaseParameters = field(
        default_factory=lambda: PhaseParameters(
            homo=6.0,
            lumo=4.0,
            r_singlet_hopping=1e12,
            singlet_lifetime=500e-12,
        )
    )

    # Physical constants
    k_boltzmann: ClassVar[float] = 8.617333262e-5  # eV/K
    elementary_charge: ClassVar[float] = 1.602176634e-19  # C
    vacuum_permittivity: ClassVar[float] = 8.8541878128e-12  # F/m
    coulomb_constant: ClassVar[float] = 8.9875517923e9  # N m^2 / C^2

    def phase(self, site_type: int) -> PhaseParameters:
        """
        Get the phase parameters for a site type.

        Args:
            site_type: 1 for donor, 2 for acceptor.

        Returns:
            Matching PhaseParameters.
        """
        return self.donor if int(site_type) == 1 else self.acceptor

    @property
    def average_dielectric(self) -> float:
        """Mean relative dielectric constant of the two phases."""
        return (self.donor.dielectric + self.acceptor.dielectric) / 2


# Parameter sets for common material systems
P3HT_PCBM_PARAMETERS = MaterialParameters()

PFB_F8BT_PARAMETERS = MaterialParameters(
    name="pfb_f8bt",
    donor=PhaseParameters(
        homo=5.1,
        lumo=2.3,
        exciton_binding=0.6,
        singlet_lifetime=2e-9,
        r_singlet_hopping=5e11,
        energy_stdev=0.09,
    ),
    acceptor=PhaseParameters(
        homo=5.9,
        lumo=3.3,
        exciton_binding=0.6,
        singlet_lifetime=1.5e-9,
        r_singlet_hopping=5e11,
        energy_stdev=0.08,
    ),
)

NEAT_TRIPLET_HOST_PARAMETERS = MaterialParameters(
    name="neat_triplet_host",
    donor=PhaseParameters(
        singlet_triplet_splitting=0.1,  # Small splitting enables RISC
        r_isc=1e9,
        r_risc=1e7,
        triplet_lifetime=10e-6,
    ),
    acceptor=PhaseParameters(
        homo=6.0,
        lumo=4.0,
        singlet_triplet_splitting=0.1,
    ),
)


def get_parameters_for_material(material: str = "p3ht_pcbm") -> MaterialParameters:
    """
    Get parameters for a named material system.

    Args:
        material: Options: 'p3ht_pcbm', 'pfb_f8bt', 'neat_triplet_host'.

    Returns:
        MaterialParameters for the specified material system.

    Raises:
        ValueError: If the material name is not recognized.
    """
    material_params = {
        "p3ht_pcbm": P3HT_PCBM_PARAMETERS,
        "pfb_f8bt": PFB_F8BT_PARAMETERS,
        "neat_triplet_host": NEAT_TRIPLET_HOST_PARAMETERS,
    }

    if material not in material_params:
        raise ValueError(f"Unknown material: {material}. Available: {list(material_params.keys())}")

    return material_params[material]


def with_uniform_disorder(params: MaterialParameters, energy_stdev: float) -> MaterialParameters:
    """
    Copy a material pair with the same Gaussian disorder in both phases.

    Args:
        params: Base material parameters.
        energy_stdev: Standard deviation applied to donor and acceptor (eV).

    Returns:
        New MaterialParameters instance.
    """
    return replace(
        params,
        donor=replace(params.donor, energy_stdev=energy_stdev),
        acceptor=replace(params.acceptor, energy_stdev=energy_stdev),
    )
