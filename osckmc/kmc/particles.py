"""
Particle model for KMC simulation.

Electrons, holes and excitons share one tagged representation: a kind
discriminator selects the kind-specific event calculation while the
scheduler treats every particle alike.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .lattice import Coords


class ParticleKind(Enum):
    """Kinds of mobile objects in the film."""

    ELECTRON = "electron"
    HOLE = "hole"
    EXCITON = "exciton"


@dataclass(eq=False)
class Particle:
    """
    A live electron, hole or exciton.

    Attributes:
        id: Unique identifier within a run.
        kind: Particle kind.
        tag: Per-kind tag; an electron and hole from the same exciton share a tag.
        site: Current site index.
        coords: Current site coordinates.
        creation_time: Simulation time of creation (s).
        singlet: Spin state of an exciton (True for singlet).
        stamp: Version of the particle state; bumped whenever its scheduled event becomes stale.
        displacement: Unwrapped displacement since creation (lattice units).
        sample_displacement: Displacement at the previous transient sample (lattice units).
        immobilized: True when the particle has no candidate events.
        n_hops: Number of executed hops.
    """

    id: int
    kind: ParticleKind
    tag: int
    site: int
    coords: Coords
    creation_time: float
    singlet: bool = True
    stamp: int = 0
    displacement: list[int] = field(default_factory=lambda: [0, 0, 0])
    sample_displacement: list[int] = field(default_factory=lambda: [0, 0, 0])
    immobilized: bool = False
    n_hops: int = 0

    @property
    def charge(self) -> int:
        """Elementary charge sign (-1 electron, +1 hole, 0 exciton)."""
        if self.kind == ParticleKind.ELECTRON:
            return -1
        if self.kind == ParticleKind.HOLE:
            return 1
        return 0

    @property
    def is_polaron(self) -> bool:
        """Check if the particle is a charge carrier."""
        return self.kind != ParticleKind.EXCITON

    def invalidate(self) -> None:
        """Mark any scheduled event of this particle as stale."""
        self.stamp += 1

    def move(self, site: int, coords: Coords, offset: tuple[int, int, int]) -> None:
        """
        Move the particle to a new site.

        Args:
            site: Destination site index.
            coords: Destination coordinates.
            offset: Unwrapped hop offset (lattice units).
        """
        self.site = site
        self.coords = coords
        for axis in range(3):
            self.displacement[axis] += offset[axis]
        self.n_hops += 1

    def squared_displacement(self, unit_size: float) -> float:
        """Squared displacement since creation (nm^2)."""
        return unit_size**2 * sum(d * d for d in self.displacement)

    def sample_step(self) -> tuple[int, int, int]:
        """
        Displacement since the previous sample, then start a new sample interval.

        Returns:
            (dx, dy, dz) in lattice units.
        """
        step = tuple(d - s for d, s in zip(self.displacement, self.sample_displacement))
        self.sample_displacement = list(self.displacement)
        return step  # type: ignore[return-value]

    def reset_displacement(self) -> None:
        """Restart displacement tracking from the current site."""
        self.displacement = [0, 0, 0]
        self.sample_displacement = [0, 0, 0]

    def __repr__(self) -> str:
        """String representation."""
        spin = "" if self.is_polaron else (", singlet" if self.singlet else ", triplet")
        return f"Particle({self.kind.value} #{self.id}, tag={self.tag}, coords={self.coords}{spin})"
