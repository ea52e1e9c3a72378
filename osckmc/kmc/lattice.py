"""
Lattice structure for KMC simulation.

This module defines the simple cubic lattice of a donor/acceptor film,
including site representation, periodic boundary handling and the
neighborhood queries used by the event calculation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import IntEnum
from functools import lru_cache
from typing import TYPE_CHECKING

from .errors import LatticeError

if TYPE_CHECKING:
    from collections.abc import Iterator

    import numpy as np

    from .particles import Particle, ParticleKind

Coords = tuple[int, int, int]


class SiteType(IntEnum):
    """Material phase of a lattice site."""

    UNASSIGNED = 0
    DONOR = 1
    ACCEPTOR = 2


@dataclass
class Site:
    """
    Represents a single lattice site.

    Attributes:
        position: 3D coordinates (x, y, z) of the site.
        site_type: Material phase of the site.
        energy: Energetic disorder offset of the site (eV).
        occupant: Particle currently on the site, if any.
    """

    position: Coords
    site_type: SiteType = SiteType.DONOR
    energy: float = 0.0
    occupant: Particle | None = None

    def is_occupied(self) -> bool:
        """Check if site holds a particle."""
        return self.occupant is not None


class Lattice:
    """
    3D simple cubic lattice of a thin film.

    Sites are stored in a flat list indexed with x varying fastest. The x and
    y directions are usually periodic; a non-periodic z direction is bounded by
    the electrode planes at z = -1 and z = height.

    Attributes:
        size: Tuple of (length, width, height) lattice dimensions.
        unit_size: Lattice constant (nm).
        sites: Flat list of Site objects.
    """

    def __init__(
        self,
        size: tuple[int, int, int],
        unit_size: float = 1.0,
        periodic: tuple[bool, bool, bool] = (True, True, False),
    ) -> None:
        """
        Initialize the lattice.

        Args:
            size: Lattice dimensions (length, width, height).
            unit_size: Lattice constant in nm.
            periodic: Periodic boundary flags for x, y and z.

        Raises:
            LatticeError: If a dimension or the unit size is not positive.
        """
        if min(size) <= 0:
            raise LatticeError(f"Lattice dimensions must be positive, got {size}")
        if unit_size <= 0:
            raise LatticeError(f"Unit size must be positive, got {unit_size}")

        self.size = size
        self.length, self.width, self.height = size
        self.unit_size = unit_size
        self.x_periodic, self.y_periodic, self.z_periodic = periodic
        self.n_sites = self.length * self.width * self.height

        self.sites: list[Site] = [
            Site(position=(ix, iy, iz))
            for iz in range(self.height)
            for iy in range(self.width)
            for ix in range(self.length)
        ]

    @property
    def volume(self) -> float:
        """Lattice volume (cm^3)."""
        return self.n_sites * (1e-7 * self.unit_size) ** 3

    def get_index(self, x: int, y: int, z: int) -> int:
        """Convert 3D coordinates to 1D index."""
        return x + y * self.length + z * self.length * self.width

    def get_coords(self, index: int) -> Coords:
        """Convert 1D index to 3D coordinates."""
        return self.sites[index].position

    def get_site(self, x: int, y: int, z: int) -> Site:
        """Get site at given coordinates."""
        return self.sites[self.get_index(x, y, z)]

    def check_coords(self, coords: Coords) -> None:
        """
        Validate that coordinates lie inside the lattice.

        Raises:
            LatticeError: If the coordinates are out of bounds.
        """
        x, y, z = coords
        if not (0 <= x < self.length and 0 <= y < self.width and 0 <= z < self.height):
            raise LatticeError(f"Coordinates {coords} are outside the lattice {self.size}")

    def offsets_within(self, cutoff: float) -> list[tuple[int, int, int, float]]:
        """
        Get all lattice offsets within a cutoff distance.

        Args:
            cutoff: Cutoff radius in nm.

        Returns:
            List of (dx, dy, dz, distance_nm) tuples in a fixed order, excluding
            the zero offset.
        """
        return _offsets_within(cutoff, self.unit_size)

    def destination(self, coords: Coords, offset: tuple[int, int, int]) -> Coords | None:
        """
        Apply an offset to coordinates with periodic wrapping.

        Args:
            coords: Starting coordinates.
            offset: (dx, dy, dz) offset in lattice units.

        Returns:
            Destination coordinates, or None if the move leaves a non-periodic boundary.
        """
        x, y, z = coords[0] + offset[0], coords[1] + offset[1], coords[2] + offset[2]
        if self.x_periodic:
            x %= self.length
        elif not 0 <= x < self.length:
            return None
        if self.y_periodic:
            y %= self.width
        elif not 0 <= y < self.width:
            return None
        if self.z_periodic:
            z %= self.height
        elif not 0 <= z < self.height:
            return None
        return (x, y, z)

    def neighbors_of(self, index: int, cutoff: float | None = None) -> list[int]:
        """
        Get indices of sites within a cutoff of a site.

        Args:
            index: Site index.
            cutoff: Cutoff radius in nm. Defaults to one lattice unit (6 nearest neighbors).

        Returns:
            List of neighboring site indices, honoring the boundary conditions.
        """
        cutoff = self.unit_size if cutoff is None else cutoff
        coords = self.get_coords(index)
        neighbors = []
        for dx, dy, dz, _ in self.offsets_within(cutoff):
            dest = self.destination(coords, (dx, dy, dz))
            if dest is not None:
                neighbors.append(self.get_index(*dest))
        return neighbors

    def _min_image(self, delta: int, extent: int, periodic: bool) -> int:
        if periodic and abs(delta) * 2 > extent:
            return delta - extent if delta > 0 else delta + extent
        return delta

    def calculate_delta(self, c1: Coords, c2: Coords) -> tuple[int, int, int]:
        """
        Minimum image displacement from c1 to c2 in lattice units.

        Returns:
            (dx, dy, dz) tuple.
        """
        return (
            self._min_image(c2[0] - c1[0], self.length, self.x_periodic),
            self._min_image(c2[1] - c1[1], self.width, self.y_periodic),
            self._min_image(c2[2] - c1[2], self.height, self.z_periodic),
        )

    def calculate_dz(self, c1: Coords, c2: Coords) -> int:
        """Minimum image z displacement from c1 to c2 in lattice units."""
        return self._min_image(c2[2] - c1[2], self.height, self.z_periodic)

    def distance_squared(self, c1: Coords, c2: Coords) -> int:
        """Squared minimum image distance between two sites in lattice units."""
        dx, dy, dz = self.calculate_delta(c1, c2)
        return dx * dx + dy * dy + dz * dz

    def distance(self, c1: Coords, c2: Coords) -> float:
        """Minimum image distance between two sites (nm)."""
        return self.unit_size * math.sqrt(self.distance_squared(c1, c2))

    def is_occupied(self, index: int, kind: ParticleKind | None = None) -> bool:
        """
        Check if a site is occupied.

        Args:
            index: Site index.
            kind: If given, only an occupant of this kind counts.

        Returns:
            True if the site holds a (matching) particle.
        """
        occupant = self.sites[index].occupant
        if occupant is None:
            return False
        return kind is None or occupant.kind == kind

    def occupant(self, index: int) -> Particle | None:
        """Get the particle on a site, if any."""
        return self.sites[index].occupant

    def set_occupant(self, index: int, particle: Particle) -> None:
        """Place a particle on an empty site."""
        assert self.sites[index].occupant is None, f"Site {index} is already occupied"
        self.sites[index].occupant = particle

    def clear_occupant(self, index: int) -> None:
        """Remove the particle from a site."""
        assert self.sites[index].occupant is not None, f"Site {index} is already empty"
        self.sites[index].occupant = None

    def set_energies(self, energies: np.ndarray) -> None:
        """Assign site energies from a flat array in site index order."""
        if len(energies) != self.n_sites:
            raise LatticeError(f"Expected {self.n_sites} energies, got {len(energies)}")
        for site, energy in zip(self.sites, energies):
            site.energy = float(energy)

    def get_energies(self) -> list[float]:
        """Get site energies in site index order."""
        return [site.energy for site in self.sites]

    def iter_plane(self, z: int) -> Iterator[int]:
        """Iterate over site indices of one z plane."""
        start = z * self.length * self.width
        yield from range(start, start + self.length * self.width)

    def count_sites(self, site_type: SiteType) -> int:
        """Count sites of one material phase."""
        return sum(1 for site in self.sites if site.site_type == site_type)

    def get_statistics(self) -> dict[str, int]:
        """
        Get lattice occupation statistics.

        Returns:
            Dictionary with site and occupancy counts.
        """
        return {
            "n_sites": self.n_sites,
            "n_donor_sites": self.count_sites(SiteType.DONOR),
            "n_acceptor_sites": self.count_sites(SiteType.ACCEPTOR),
            "n_occupied": sum(1 for site in self.sites if site.is_occupied()),
        }

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"Lattice(size={self.size}, unit_size={self.unit_size} nm, "
            f"periodic=({self.x_periodic}, {self.y_periodic}, {self.z_periodic}))"
        )


@lru_cache(maxsize=32)
def _offsets_within(cutoff: float, unit_size: float) -> list[tuple[int, int, int, float]]:
    reach = int(math.ceil(cutoff / unit_size))
    offsets = []
    for dx in range(-reach, reach + 1):
        for dy in range(-reach, reach + 1):
            for dz in range(-reach, reach + 1):
                if dx == dy == dz == 0:
                    continue
                distance = unit_size * math.sqrt(dx * dx + dy * dy + dz * dz)
                if distance <= cutoff + 1e-9:
                    offsets.append((dx, dy, dz, distance))
    return offsets
