"""
Rate calculations for KMC events.

This module computes the rate constants of every event type from local
energetics, distances and material parameters:

- Polaron hopping and exciton dissociation: Miller-Abrahams or Marcus
- Singlet exciton hopping and annihilation: Förster (FRET), (a/d)^6
- Triplet exciton hopping and annihilation: Dexter, exp(-2γ(d - a))
- Polaron recombination: tunneling with a fixed or Langevin prefactor
- Extraction at an electrode plane, exciton decay, ISC and RISC

It also tabulates the screened Coulomb pair energy and the electrode image
charge prefactor.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

import numpy as np
from scipy.special import erf

from ..data.material_parameters import MaterialParameters
from .parameters import HoppingModel, RecombinationModel

if TYPE_CHECKING:
    from ..data.material_parameters import PhaseParameters
    from .parameters import Parameters


class RateCalculator:
    """
    Calculate rates for all types of events in the KMC simulation.

    This class encapsulates the rate expressions and the constant tables
    derived from the run parameters.
    """

    def __init__(self, params: Parameters) -> None:
        """
        Initialize rate calculator.

        Args:
            params: Run parameters.
        """
        self.params = params
        self.unit_size = params.unit_size
        self.kt = params.kt
        self.material = params.material

        self.average_dielectric = self.material.average_dielectric
        self.coulomb_table = self._build_coulomb_table()
        # eV * nm
        self.image_prefactor = (
            MaterialParameters.elementary_charge
            / (16 * math.pi * self.average_dielectric * MaterialParameters.vacuum_permittivity)
        ) * 1e9
        self.recombination_prefactor = self._recombination_prefactor()

    def _build_coulomb_table(self) -> np.ndarray:
        max_dsq = int(math.floor((self.params.coulomb_cutoff / self.unit_size) ** 2 + 1e-9))
        table = np.zeros(max_dsq + 1)
        dsq = np.arange(1, max_dsq + 1)
        distance = self.unit_size * np.sqrt(dsq)
        table[1:] = (
            MaterialParameters.coulomb_constant * MaterialParameters.elementary_charge / self.average_dielectric
        ) / (1e-9 * distance)
        if self.params.gaussian_delocalization:
            table[1:] *= erf(distance / (self.params.polaron_delocalization_length * math.sqrt(2)))
        return table

    def _recombination_prefactor(self) -> float:
        if self.params.recombination_model == RecombinationModel.TUNNELING:
            return self.params.r_polaron_recombination
        # Langevin: q * (mu_e + mu_h) / (eps0 * eps_r), per site volume
        mobility_sum = (self.material.donor.mobility + self.material.acceptor.mobility) * 1e-4
        rate_constant = (
            MaterialParameters.elementary_charge
            * mobility_sum
            / (MaterialParameters.vacuum_permittivity * self.average_dielectric)
        )
        return rate_constant / (1e-9 * self.unit_size) ** 3

    def boltzmann_factor(self, delta_e: float) -> float:
        """Uphill penalty exp(-ΔE/kT) for ΔE > 0, else 1."""
        if delta_e > 0:
            return math.exp(-delta_e / self.kt)
        return 1.0

    def miller_abrahams(self, prefactor: float, localization: float, distance: float, delta_e: float) -> float:
        """
        Miller-Abrahams hopping rate.

        Args:
            prefactor: Attempt frequency (s^-1).
            localization: Inverse localization length (nm^-1).
            distance: Hop distance (nm).
            delta_e: Energy change (eV).

        Returns:
            Rate (s^-1).
        """
        return (
            prefactor
            * math.exp(-2.0 * localization * (distance - self.unit_size))
            * self.boltzmann_factor(delta_e)
        )

    def marcus(
        self, prefactor: float, localization: float, distance: float, delta_e: float, reorganization: float
    ) -> float:
        """
        Marcus hopping rate.

        Args:
            prefactor: Attempt frequency (s^-1).
            localization: Inverse localization length (nm^-1).
            distance: Hop distance (nm).
            delta_e: Energy change (eV).
            reorganization: Reorganization energy (eV).

        Returns:
            Rate (s^-1).
        """
        return (
            prefactor
            * math.exp(-2.0 * localization * (distance - self.unit_size))
            * math.exp(-((delta_e + reorganization) ** 2) / (4.0 * reorganization * self.kt))
        )

    def polaron_hop_rate(self, phase: PhaseParameters, distance: float, delta_e: float) -> float:
        """Polaron hop rate from a site of the given phase."""
        if self.params.hopping_model == HoppingModel.MILLER_ABRAHAMS:
            return self.miller_abrahams(phase.r_polaron_hopping, phase.polaron_localization, distance, delta_e)
        return self.marcus(
            phase.r_polaron_hopping, phase.polaron_localization, distance, delta_e, phase.reorganization
        )

    def dissociation_rate(self, phase: PhaseParameters, singlet: bool, distance: float, delta_e: float) -> float:
        """Exciton dissociation rate from a site of the given phase."""
        localization = phase.singlet_localization if singlet else phase.triplet_localization
        if self.params.hopping_model == HoppingModel.MILLER_ABRAHAMS:
            return self.miller_abrahams(phase.r_exciton_dissociation, localization, distance, delta_e)
        return self.marcus(phase.r_exciton_dissociation, localization, distance, delta_e, phase.reorganization)

    def fret_rate(self, prefactor: float, distance: float) -> float:
        """Förster transfer rate R * (a/d)^6."""
        return prefactor * (self.unit_size / distance) ** 6

    def dexter_rate(self, prefactor: float, localization: float, distance: float) -> float:
        """Dexter transfer rate R * exp(-2γ(d - a))."""
        return prefactor * math.exp(-2.0 * localization * (distance - self.unit_size))

    def exciton_hop_rate(self, phase: PhaseParameters, singlet: bool, distance: float, delta_e: float) -> float:
        """Singlet (FRET) or triplet (Dexter) exciton hop rate."""
        if singlet:
            return self.fret_rate(phase.r_singlet_hopping, distance) * self.boltzmann_factor(delta_e)
        return self.dexter_rate(
            phase.r_triplet_hopping, phase.triplet_localization, distance
        ) * self.boltzmann_factor(delta_e)

    def exciton_exciton_annihilation_rate(self, phase: PhaseParameters, singlet: bool, distance: float) -> float:
        """Annihilation rate of an exciton with a nearby exciton."""
        if singlet or self.params.fret_triplet_annihilation:
            return self.fret_rate(phase.r_exciton_exciton_annihilation, distance)
        return self.dexter_rate(phase.r_exciton_exciton_annihilation, phase.triplet_localization, distance)

    def exciton_polaron_annihilation_rate(self, phase: PhaseParameters, singlet: bool, distance: float) -> float:
        """Annihilation rate of an exciton with a nearby polaron."""
        if singlet or self.params.fret_triplet_annihilation:
            return self.fret_rate(phase.r_exciton_polaron_annihilation, distance)
        return self.dexter_rate(phase.r_exciton_polaron_annihilation, phase.triplet_localization, distance)

    def recombination_rate(self, phase: PhaseParameters, distance: float) -> float:
        """Electron-hole recombination rate at a given separation."""
        return self.recombination_prefactor * math.exp(
            -2.0 * phase.polaron_localization * (distance - self.unit_size)
        )

    def extraction_rate(self, phase: PhaseParameters, distance: float) -> float:
        """
        Extraction rate into an electrode plane.

        Args:
            phase: Phase of the polaron's site.
            distance: Distance from the site to the electrode plane (nm).

        Returns:
            Rate (s^-1); a site adjacent to the electrode is extracted at the full prefactor.
        """
        return phase.r_polaron_hopping * math.exp(
            -2.0 * phase.polaron_localization * (distance - 0.5 * self.unit_size)
        )

    def decay_rate(self, phase: PhaseParameters, singlet: bool) -> float:
        """Exciton decay rate 1/lifetime."""
        return 1.0 / (phase.singlet_lifetime if singlet else phase.triplet_lifetime)

    def isc_rate(self, phase: PhaseParameters) -> float:
        """Singlet to triplet intersystem crossing rate."""
        return phase.r_isc

    def risc_rate(self, phase: PhaseParameters) -> float:
        """Triplet to singlet reverse intersystem crossing rate."""
        return phase.r_risc * math.exp(-phase.singlet_triplet_splitting / self.kt)

    def pair_energy(self, distance_squared: int) -> float:
        """
        Coulomb energy magnitude of two unit charges.

        Args:
            distance_squared: Squared separation in lattice units.

        Returns:
            Energy (eV), zero beyond the Coulomb cutoff.
        """
        if distance_squared <= 0 or distance_squared >= len(self.coulomb_table):
            return 0.0
        return float(self.coulomb_table[distance_squared])

    def image_energy(self, z: int, height: int) -> float:
        """
        Image charge energy of a charge near both electrodes.

        Args:
            z: Site z coordinate.
            height: Lattice height.

        Returns:
            Energy (eV), always non-positive.
        """
        energy = 0.0
        cutoff = self.params.coulomb_cutoff
        for distance in (
            self.unit_size * (height - z - 0.5),
            self.unit_size * (z + 0.5),
        ):
            if distance - 1e-4 <= cutoff:
                energy -= self.image_prefactor / distance
        return energy

    def image_field(self, z: int, height: int, charge: int) -> float:
        """
        Field along z from the electrode images of a charge.

        The image of a charge at distance d from an electrode sits 2d away with
        opposite sign, so it pulls the charge toward that electrode.

        Args:
            z: Site z coordinate.
            height: Lattice height.
            charge: Charge sign of the particle at the site (-1, 0 or +1).

        Returns:
            Ez (V/cm).
        """
        field = 0.0
        cutoff = self.params.coulomb_cutoff
        # bottom electrode below the film, top electrode above it
        for distance, direction in (
            (self.unit_size * (z + 0.5), -1),
            (self.unit_size * (height - z - 0.5), 1),
        ):
            if distance - 1e-4 <= cutoff:
                # V/nm to V/cm
                field += direction * charge * self.image_prefactor / distance**2 * 1e7
        return field

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"RateCalculator(model={self.params.hopping_model.value}, "
            f"T={self.params.temperature:.1f} K, coulomb_entries={len(self.coulomb_table)})"
        )
