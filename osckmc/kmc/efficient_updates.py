"""
Per-particle event calculation and local rescheduling for the KMC simulator.

Each live particle owns exactly one scheduled event: its candidate events are
enumerated from the local neighborhood, the waiting time is drawn from the
total rate and one candidate is selected with probability proportional to
its rate. After an event executes, only particles within the recalculation
cutoff of the changed sites are rescheduled. Coulomb changes beyond that
cutoff are neglected.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

from .events import Event, EventType
from .lattice import SiteType
from .particles import ParticleKind

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .lattice import Coords
    from .particles import Particle
    from .simulator import OSCSimulator

logger = logging.getLogger(__name__)


def calculate_coulomb(
    simulator: OSCSimulator, charge: int, coords: Coords, exclude: Particle | None = None
) -> float:
    """
    Electrostatic energy of a unit charge at a site.

    Args:
        simulator: Simulator instance.
        charge: -1 for an electron, +1 for a hole.
        coords: Site coordinates.
        exclude: Particle whose own charge is left out (the charge itself).

    Returns:
        Energy (eV) from the other polarons within the Coulomb cutoff, plus the
        electrode image charges for a non-periodic z direction.
    """
    params = simulator.params
    if not params.coulomb_interactions:
        return 0.0
    lattice = simulator.lattice
    rates = simulator.rate_calculator
    energy = 0.0
    for other in simulator.polarons.values():
        if other is exclude:
            continue
        pair = rates.pair_energy(lattice.distance_squared(coords, other.coords))
        energy += pair if other.charge == charge else -pair
    if not lattice.z_periodic and simulator.image_charges_enabled:
        energy += rates.image_energy(coords[2], lattice.height)
    return energy


def calculate_polaron_candidates(simulator: OSCSimulator, polaron: Particle) -> list[Event]:
    """
    Enumerate the candidate events of an electron or hole.

    Args:
        simulator: Simulator instance.
        polaron: Electron or hole.

    Returns:
        Candidate events with positive rates (hops, recombination, extraction).
    """
    params = simulator.params
    lattice = simulator.lattice
    rates = simulator.rate_calculator
    coords = polaron.coords
    site = lattice.sites[polaron.site]
    phase = simulator.material.phase(site.site_type)
    is_electron = polaron.kind == ParticleKind.ELECTRON

    hop_cutoff = params.polaron_hopping_cutoff
    candidate_cutoff = max(hop_cutoff, params.capture_radius)
    coulomb_i = calculate_coulomb(simulator, polaron.charge, coords, exclude=polaron)

    candidates: list[Event] = []
    for dx, dy, dz, distance in lattice.offsets_within(candidate_cutoff):
        dest = lattice.destination(coords, (dx, dy, dz))
        if dest is None or dest == coords:
            continue
        dest_index = lattice.get_index(*dest)
        dest_site = lattice.sites[dest_index]
        occupant = dest_site.occupant

        if occupant is not None:
            # Only electrons initiate recombination
            if is_electron and occupant.kind == ParticleKind.HOLE and distance <= params.capture_radius:
                rate = rates.recombination_rate(phase, distance)
                if rate > 0:
                    candidates.append(
                        Event(
                            EventType.POLARON_RECOMBINATION,
                            polaron.id,
                            polaron.stamp,
                            rate=rate,
                            dest_site=dest_index,
                            dest_coords=dest,
                            offset=(dx, dy, dz),
                            target_id=occupant.id,
                        )
                    )
            continue

        if distance > hop_cutoff:
            continue
        if params.phase_restriction and dest_site.site_type != site.site_type:
            continue

        delta_e = dest_site.energy - site.energy
        delta_e += calculate_coulomb(simulator, polaron.charge, dest, exclude=polaron) - coulomb_i
        potential_change = simulator.potential_change(coords, dest)
        delta_e += potential_change if is_electron else -potential_change
        if dest_site.site_type != site.site_type:
            dest_phase = simulator.material.phase(dest_site.site_type)
            if is_electron:
                delta_e -= dest_phase.lumo - phase.lumo
            else:
                delta_e += dest_phase.homo - phase.homo

        rate = rates.polaron_hop_rate(phase, distance, delta_e)
        if rate > 0:
            candidates.append(
                Event(
                    EventType.POLARON_HOP,
                    polaron.id,
                    polaron.stamp,
                    rate=rate,
                    dest_site=dest_index,
                    dest_coords=dest,
                    offset=(dx, dy, dz),
                )
            )

    if simulator.extraction_enabled and not lattice.z_periodic:
        x, y, z = coords
        if is_electron:
            distance = lattice.unit_size * (z + 0.5)
            electrode = (x, y, -1)
        else:
            distance = lattice.unit_size * (lattice.height - z - 0.5)
            electrode = (x, y, lattice.height)
        if distance <= hop_cutoff:
            rate = rates.extraction_rate(phase, distance)
            if rate > 0:
                candidates.append(
                    Event(
                        EventType.POLARON_EXTRACTION,
                        polaron.id,
                        polaron.stamp,
                        rate=rate,
                        dest_coords=electrode,
                        offset=(0, 0, electrode[2] - z),
                    )
                )
    return candidates


def _dissociation_energy(
    simulator: OSCSimulator, exciton: Particle, dest: Coords, offset: tuple[int, int, int]
) -> float:
    params = simulator.params
    lattice = simulator.lattice
    rates = simulator.rate_calculator
    coords = exciton.coords
    site = lattice.sites[exciton.site]
    dest_site = lattice.sites[lattice.get_index(*dest)]
    donor, acceptor = params.donor, params.acceptor

    pair = rates.pair_energy(offset[0] ** 2 + offset[1] ** 2 + offset[2] ** 2)
    potential_change = simulator.potential_change(coords, dest)
    delta_e = dest_site.energy - site.energy

    if site.site_type == SiteType.DONOR:
        # Electron transfers to the acceptor site, hole stays behind
        coulomb_final = (
            calculate_coulomb(simulator, 1, coords) + calculate_coulomb(simulator, -1, dest) - pair
        )
        delta_e += -(acceptor.lumo - donor.lumo) + coulomb_final + donor.exciton_binding + potential_change
        phase = donor
    else:
        # Hole transfers to the donor site, electron stays behind
        coulomb_final = (
            calculate_coulomb(simulator, -1, coords) + calculate_coulomb(simulator, 1, dest) - pair
        )
        delta_e += (donor.homo - acceptor.homo) + coulomb_final + acceptor.exciton_binding - potential_change
        phase = acceptor

    if not exciton.singlet:
        delta_e += phase.singlet_triplet_splitting
    return delta_e


def calculate_exciton_candidates(simulator: OSCSimulator, exciton: Particle) -> list[Event]:
    """
    Enumerate the candidate events of an exciton.

    Args:
        simulator: Simulator instance.
        exciton: Singlet or triplet exciton.

    Returns:
        Candidate events with positive rates (hops, dissociation, annihilation,
        decay, ISC/RISC).
    """
    params = simulator.params
    lattice = simulator.lattice
    rates = simulator.rate_calculator
    coords = exciton.coords
    site = lattice.sites[exciton.site]
    phase = simulator.material.phase(site.site_type)
    singlet = exciton.singlet

    def make(event_type: EventType, rate: float, **kwargs: object) -> Event:
        return Event(event_type, exciton.id, exciton.stamp, rate=rate, **kwargs)  # type: ignore[arg-type]

    candidates: list[Event] = []
    cutoff = max(params.fret_cutoff, params.exciton_dissociation_cutoff)
    for dx, dy, dz, distance in lattice.offsets_within(cutoff):
        offset = (dx, dy, dz)
        dest = lattice.destination(coords, offset)
        if dest is None or dest == coords:
            continue
        dest_index = lattice.get_index(*dest)
        dest_site = lattice.sites[dest_index]
        occupant = dest_site.occupant

        if occupant is not None:
            if distance > params.fret_cutoff:
                continue
            if occupant.kind == ParticleKind.EXCITON:
                # A triplet cannot annihilate a singlet
                if not singlet and occupant.singlet:
                    continue
                rate = rates.exciton_exciton_annihilation_rate(phase, singlet, distance)
                event_type = EventType.EXCITON_EXCITON_ANNIHILATION
            else:
                rate = rates.exciton_polaron_annihilation_rate(phase, singlet, distance)
                event_type = EventType.EXCITON_POLARON_ANNIHILATION
            if rate > 0:
                candidates.append(
                    make(
                        event_type,
                        rate,
                        dest_site=dest_index,
                        dest_coords=dest,
                        offset=offset,
                        target_id=occupant.id,
                    )
                )
            continue

        if dest_site.site_type != site.site_type and distance <= params.exciton_dissociation_cutoff:
            delta_e = _dissociation_energy(simulator, exciton, dest, offset)
            rate = rates.dissociation_rate(phase, singlet, distance, delta_e)
            if rate > 0:
                candidates.append(
                    make(
                        EventType.EXCITON_DISSOCIATION,
                        rate,
                        dest_site=dest_index,
                        dest_coords=dest,
                        offset=offset,
                    )
                )

        if distance <= params.fret_cutoff:
            delta_e = dest_site.energy - site.energy
            if dest_site.site_type != site.site_type:
                delta_e += simulator.exciton_energy(dest_site.site_type, singlet) - simulator.exciton_energy(
                    site.site_type, singlet
                )
            rate = rates.exciton_hop_rate(phase, singlet, distance, delta_e)
            if rate > 0:
                candidates.append(
                    make(EventType.EXCITON_HOP, rate, dest_site=dest_index, dest_coords=dest, offset=offset)
                )

    candidates.append(make(EventType.EXCITON_DECAY, rates.decay_rate(phase, singlet)))
    if singlet:
        rate = rates.isc_rate(phase)
        if rate > 0:
            candidates.append(make(EventType.EXCITON_INTERSYSTEM_CROSSING, rate))
    else:
        rate = rates.risc_rate(phase)
        if rate > 0:
            candidates.append(make(EventType.EXCITON_REVERSE_INTERSYSTEM_CROSSING, rate))
    return candidates


def select_event(simulator: OSCSimulator, candidates: list[Event]) -> Event:
    """
    Pick the next event among candidates and set its execution time.

    The waiting time is exponential with the total rate; each candidate is
    chosen with probability rate / total rate.

    Args:
        simulator: Simulator instance (provides the clock and random stream).
        candidates: Non-empty list of candidate events.

    Returns:
        The selected event with its absolute time set.
    """
    total_rate = math.fsum(event.rate for event in candidates)
    wait = -math.log(1.0 - simulator.rng.random()) / total_rate
    threshold = simulator.rng.random() * total_rate

    selected = candidates[-1]
    cumulative = 0.0
    for event in candidates:
        cumulative += event.rate
        if threshold < cumulative:
            selected = event
            break
    selected.time = simulator.time + wait
    return selected


def calculate_particle_event(simulator: OSCSimulator, particle: Particle) -> None:
    """
    Recalculate and schedule the next event of one particle.

    Any previously scheduled event of the particle becomes stale. A particle
    without candidates is flagged as immobilized and stays alive unscheduled.

    Args:
        simulator: Simulator instance.
        particle: Live particle.
    """
    particle.invalidate()
    if particle.is_polaron:
        candidates = calculate_polaron_candidates(simulator, particle)
    else:
        candidates = calculate_exciton_candidates(simulator, particle)

    if not candidates:
        if not particle.immobilized:
            particle.immobilized = True
            simulator.statistics.n_immobilized += 1
            logger.warning(f"{particle} has no possible events and is immobilized at t={simulator.time:.3e}s")
        return

    particle.immobilized = False
    event = select_event(simulator, candidates)
    assert event.time >= simulator.time, "Event scheduled before the current time"
    simulator.event_queue.push(event)
    logger.debug(f"Scheduled {event}")


def get_affected_particles(simulator: OSCSimulator, changed: Iterable[Coords]) -> list[Particle]:
    """
    Get live particles whose events depend on the changed sites.

    Args:
        simulator: Simulator instance.
        changed: Coordinates of sites whose occupancy or state changed.

    Returns:
        Affected particles in increasing id order.
    """
    lattice = simulator.lattice
    offsets = [(0, 0, 0)] + [
        (dx, dy, dz) for dx, dy, dz, _ in lattice.offsets_within(simulator.params.recalc_cutoff)
    ]
    affected: dict[int, Particle] = {}
    for coords in changed:
        for offset in offsets:
            dest = lattice.destination(coords, offset)
            if dest is None:
                continue
            occupant = lattice.sites[lattice.get_index(*dest)].occupant
            if occupant is not None:
                affected[occupant.id] = occupant
    return [affected[particle_id] for particle_id in sorted(affected)]


def update_events_after_execution(simulator: OSCSimulator, changed: Iterable[Coords]) -> None:
    """
    Reschedule every particle affected by an executed event.

    Args:
        simulator: Simulator instance.
        changed: Coordinates of the sites touched by the event.
    """
    for particle in get_affected_particles(simulator, changed):
        calculate_particle_event(simulator, particle)


def initialize_all_events(simulator: OSCSimulator) -> None:
    """Recalculate the events of every live particle in id order."""
    for particle_id in sorted(simulator.particles):
        calculate_particle_event(simulator, simulator.particles[particle_id])
