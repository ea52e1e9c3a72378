"""
Main KMC simulator for charge and exciton transport in organic solar cell films.

This module implements the event-driven simulation of one run: it builds the
lattice and its energetic disorder, seeds the particles of the selected test,
executes events from the global queue until the stopping rule is met and
exposes every aggregated observable.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from typing import TYPE_CHECKING

import numpy as np

from ..data.material_parameters import MaterialParameters
from .efficient_updates import (
    calculate_coulomb,
    initialize_all_events,
    select_event,
    update_events_after_execution,
)
from .energy_field import (
    generate_correlated_field,
    generate_exponential_energies,
    generate_gaussian_energies,
    measure_correlation,
)
from .errors import OccupancyError
from .events import Event, EventQueue, EventType
from .lattice import Lattice, SiteType
from .parameters import Architecture, DOSModel, TestMode
from .particles import Particle, ParticleKind
from .rates import RateCalculator
from .statistics import (
    RecombinationChannel,
    Statistics,
    TransientRecorder,
    calculate_mobility_data,
    calculate_transit_time_hist,
    transient_times,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from .lattice import Coords
    from .parameters import Parameters

logger = logging.getLogger(__name__)

STEADY_SAMPLE_INTERVAL = 100  # Events between steady-transport occupancy samples
MAX_PLACEMENT_ATTEMPTS = 1000

TOF_SERIES = ["counts", "energies", "velocities", "positions"]
DYNAMICS_SERIES = [
    "singlets",
    "triplets",
    "electrons",
    "holes",
    "exciton_energies",
    "electron_energies",
    "hole_energies",
    "exciton_msdv",
    "electron_msdv",
    "hole_msdv",
]


class OSCSimulator:
    """
    Kinetic Monte Carlo simulator of one organic solar cell film.

    Every live particle has exactly one scheduled event in the queue. Events of
    particles that changed state since scheduling are discarded when popped.

    Attributes:
        params: Run parameters.
        rng: Random generator; the only random stream of the run.
        lattice: Film lattice.
        rate_calculator: Rate model.
        event_queue: Global event queue.
        statistics: Aggregated observables.
        particles: Live particles by id.
        polarons: Live electrons and holes by id.
        time: Current simulation time (s).
        n_events_executed: Number of executed events.
    """

    def __init__(self, params: Parameters, seed: int | None = None) -> None:
        """
        Initialize the simulator and seed the initial particles of the test.

        Args:
            params: Run parameters; validated before anything is built.
            seed: Random seed overriding params.random_seed.

        Raises:
            ParameterError: If the parameters are invalid.
            LatticeError: If the lattice cannot be built.
        """
        params.check_parameters()
        self.params = params
        self.material: MaterialParameters = params.material
        self.rng = np.random.default_rng(params.random_seed if seed is None else seed)

        self.lattice = Lattice(
            (params.length, params.width, params.height),
            unit_size=params.unit_size,
            periodic=(params.x_periodic, params.y_periodic, params.z_periodic),
        )
        self.rate_calculator = RateCalculator(params)
        self.event_queue = EventQueue()
        self.statistics = Statistics((params.length, params.width))

        self.particles: dict[int, Particle] = {}
        self.polarons: dict[int, Particle] = {}
        self.time = 0.0
        self.n_events_executed = 0
        self._next_id = 0
        self._tag_counters = {kind: 0 for kind in ParticleKind}
        self._alive = {kind: 0 for kind in ParticleKind}

        mode = params.test_mode
        self.extraction_enabled = not params.z_periodic and (
            params.dynamics_extraction if mode == TestMode.DYNAMICS else mode != TestMode.STEADY_TRANSPORT
        )
        self.image_charges_enabled = mode != TestMode.TIME_OF_FLIGHT
        self.generation_enabled = mode in (TestMode.EXCITON_DIFFUSION, TestMode.IQE, TestMode.FIXED_DURATION)
        self._generation_stamp = 0
        self._generation_rate = 0.0
        self._last_generation_time = 0.0

        self.transient: TransientRecorder | None = None
        self.dos_correlation_data: list[tuple[float, float]] = []
        self.steady_equilibration_time = 0.0

        self.init()

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def init(self) -> None:
        """Build the film and its site energies, then seed the test particles."""
        params = self.params
        self._assign_site_types()
        self._assign_site_energies()

        self._donor_sites = [i for i, site in enumerate(self.lattice.sites) if site.site_type == SiteType.DONOR]
        self._acceptor_sites = [
            i for i, site in enumerate(self.lattice.sites) if site.site_type == SiteType.ACCEPTOR
        ]
        cell_volume = (1e-7 * params.unit_size) ** 3
        self._generation_rate = cell_volume * (
            params.exciton_generation_rate_donor * len(self._donor_sites)
            + params.exciton_generation_rate_acceptor * len(self._acceptor_sites)
        )

        logger.info(
            f"Initialized {self.lattice} with {len(self._donor_sites)} donor and "
            f"{len(self._acceptor_sites)} acceptor sites, test mode {params.test_mode.value}"
        )

        mode = params.test_mode
        if mode in (TestMode.TIME_OF_FLIGHT, TestMode.DYNAMICS):
            times = transient_times(
                params.transient_start,
                params.transient_end,
                params.transient_pnts_per_decade,
                params.transient_spacing,
                linear_pnts=params.transient_linear_pnts,
            )
            series = TOF_SERIES if mode == TestMode.TIME_OF_FLIGHT else DYNAMICS_SERIES
            self.transient = TransientRecorder(times, series)
            self._start_transient_cycle()
        elif mode == TestMode.STEADY_TRANSPORT:
            self._create_steady_holes()
        if self.generation_enabled:
            self._schedule_generation()

    def _assign_site_types(self) -> None:
        params = self.params
        if params.architecture == Architecture.NEAT:
            types = np.full(self.lattice.n_sites, SiteType.DONOR)
        elif params.architecture == Architecture.BILAYER:
            z = np.array([site.position[2] for site in self.lattice.sites])
            types = np.where(z < params.thickness_acceptor, SiteType.ACCEPTOR, SiteType.DONOR)
        else:
            draws = self.rng.random(self.lattice.n_sites)
            types = np.where(draws < params.acceptor_conc, SiteType.ACCEPTOR, SiteType.DONOR)
        for site, site_type in zip(self.lattice.sites, types):
            site.site_type = SiteType(int(site_type))

    def _assign_site_energies(self) -> None:
        params = self.params
        n_sites = self.lattice.n_sites
        is_acceptor = np.array([site.site_type == SiteType.ACCEPTOR for site in self.lattice.sites])

        if params.dos_model == DOSModel.NONE:
            energies = np.zeros(n_sites)
        elif params.dos_model == DOSModel.EXPONENTIAL:
            urbach = np.where(is_acceptor, params.acceptor.energy_urbach, params.donor.energy_urbach)
            energies = generate_exponential_energies(self.rng, n_sites, 1.0) * urbach
        else:
            stdev = np.where(is_acceptor, params.acceptor.energy_stdev, params.donor.energy_stdev)
            if params.correlated_disorder:
                standardized = generate_correlated_field(
                    self.rng,
                    self.lattice.size,
                    params.unit_size,
                    params.correlation_length,
                    params.correlation_kernel,
                    params.power_kernel_exponent,
                )
            else:
                standardized = generate_gaussian_energies(self.rng, n_sites, 1.0)
            energies = standardized * stdev
        self.lattice.set_energies(energies)

    def reassign_site_energies(self) -> None:
        """Redraw all site energies and reschedule every live particle."""
        self._assign_site_energies()
        self.calculate_all_events()
        logger.debug(f"Site energies reassigned at t={self.time:.3e}s")

    def calculate_all_events(self) -> None:
        """Recalculate the scheduled event of every live particle."""
        initialize_all_events(self)

    # ------------------------------------------------------------------
    # Energetics
    # ------------------------------------------------------------------

    def potential_change(self, c1: Coords, c2: Coords) -> float:
        """
        Change of the internal electrical potential between two sites (V).

        Hops across a periodic z boundary see the same per-layer drop as any
        other hop, so the field is uniform in a periodic film.
        """
        height = self.params.height
        step = self.params.internal_potential / (height if self.params.z_periodic else height + 1)
        return -step * self.lattice.calculate_dz(c1, c2)

    def exciton_energy(self, site_type: SiteType, singlet: bool) -> float:
        """Exciton energy level of a phase (eV)."""
        phase = self.material.phase(site_type)
        energy = phase.homo - phase.lumo - phase.exciton_binding
        return energy if singlet else energy - phase.singlet_triplet_splitting

    def get_internal_field(self) -> float:
        """Applied internal field (V/cm)."""
        return self.params.internal_potential / (1e-7 * self.params.height * self.params.unit_size)

    def field_at(self, coords: Coords, charge: int | None = None) -> tuple[float, float, float]:
        """
        Local electric field at a site.

        Args:
            coords: Site coordinates.
            charge: Charge sign whose electrode images are included. Defaults
                to the charge of the particle on the site (0 when empty).

        Returns:
            (Ex, Ey, Ez) in V/cm: the applied field along z plus the Coulomb
            field of the polarons within the Coulomb cutoff and, for a
            non-periodic z direction, the field of the charge's electrode images.
        """
        field = [0.0, 0.0, self.get_internal_field()]
        if not self.params.coulomb_interactions:
            return (field[0], field[1], field[2])
        if charge is None:
            occupant = self.lattice.occupant(self.lattice.get_index(*coords))
            charge = occupant.charge if occupant is not None else 0
        if charge and not self.lattice.z_periodic and self.image_charges_enabled:
            field[2] += self.rate_calculator.image_field(coords[2], self.lattice.height, charge)
        prefactor = MaterialParameters.coulomb_constant * MaterialParameters.elementary_charge / (
            self.material.average_dielectric
        )
        for other in self.polarons.values():
            if other.coords == coords:
                continue
            delta = self.lattice.calculate_delta(other.coords, coords)
            distance = self.params.unit_size * math.sqrt(sum(d * d for d in delta))
            if distance > self.params.coulomb_cutoff:
                continue
            # V/m to V/cm
            magnitude = other.charge * prefactor / (1e-9 * distance) ** 2 * 1e-2
            for axis in range(3):
                field[axis] += magnitude * self.params.unit_size * delta[axis] / distance
        return (field[0], field[1], field[2])

    # ------------------------------------------------------------------
    # Particle creation and removal
    # ------------------------------------------------------------------

    def _next_tag(self, kind: ParticleKind) -> int:
        self._tag_counters[kind] += 1
        return self._tag_counters[kind]

    def _add_particle(
        self, kind: ParticleKind, coords: Coords, tag: int, singlet: bool = True
    ) -> Particle:
        index = self.lattice.get_index(*coords)
        particle = Particle(
            id=self._next_id,
            kind=kind,
            tag=tag,
            site=index,
            coords=coords,
            creation_time=self.time,
            singlet=singlet,
        )
        self._next_id += 1
        self.lattice.set_occupant(index, particle)
        self.particles[particle.id] = particle
        if particle.is_polaron:
            self.polarons[particle.id] = particle
        self._alive[kind] += 1
        self.statistics.record_creation(kind)
        logger.debug(f"Created {particle} at t={self.time:.3e}s")
        return particle

    def _remove_particle(self, particle: Particle) -> None:
        self.lattice.clear_occupant(particle.site)
        del self.particles[particle.id]
        self.polarons.pop(particle.id, None)
        self._alive[particle.kind] -= 1
        assert self._alive[particle.kind] >= 0, "Negative live particle count"
        particle.invalidate()

    def _check_creation_site(self, coords: Coords, kind: ParticleKind) -> int:
        self.lattice.check_coords(coords)
        index = self.lattice.get_index(*coords)
        if self.lattice.is_occupied(index):
            raise OccupancyError(f"Cannot create {kind.value} at {coords}: site is occupied")
        if self.params.phase_restriction:
            site_type = self.lattice.sites[index].site_type
            if kind == ParticleKind.ELECTRON and site_type == SiteType.DONOR:
                raise OccupancyError(f"Cannot create electron at {coords}: donor site with phase restriction")
            if kind == ParticleKind.HOLE and site_type == SiteType.ACCEPTOR:
                raise OccupancyError(f"Cannot create hole at {coords}: acceptor site with phase restriction")
        return index

    def create_electron(self, coords: Coords) -> Particle:
        """
        Create an electron on an empty site and schedule its events.

        Args:
            coords: Site coordinates.

        Returns:
            The new electron.

        Raises:
            LatticeError: If the coordinates are outside the lattice.
            OccupancyError: If the site is occupied or forbidden for electrons.
        """
        self._check_creation_site(coords, ParticleKind.ELECTRON)
        particle = self._add_particle(ParticleKind.ELECTRON, coords, self._next_tag(ParticleKind.ELECTRON))
        update_events_after_execution(self, [coords])
        return particle

    def create_hole(self, coords: Coords) -> Particle:
        """
        Create a hole on an empty site and schedule its events.

        Args:
            coords: Site coordinates.

        Returns:
            The new hole.

        Raises:
            LatticeError: If the coordinates are outside the lattice.
            OccupancyError: If the site is occupied or forbidden for holes.
        """
        self._check_creation_site(coords, ParticleKind.HOLE)
        particle = self._add_particle(ParticleKind.HOLE, coords, self._next_tag(ParticleKind.HOLE))
        update_events_after_execution(self, [coords])
        return particle

    def create_exciton(self, coords: Coords, singlet: bool = True) -> Particle:
        """
        Create an exciton on an empty site and schedule its events.

        Args:
            coords: Site coordinates.
            singlet: Spin state of the new exciton.

        Returns:
            The new exciton.

        Raises:
            LatticeError: If the coordinates are outside the lattice.
            OccupancyError: If the site is occupied.
        """
        self._check_creation_site(coords, ParticleKind.EXCITON)
        particle = self._add_particle(
            ParticleKind.EXCITON, coords, self._next_tag(ParticleKind.EXCITON), singlet=singlet
        )
        update_events_after_execution(self, [coords])
        return particle

    def _random_empty_sites(self, candidates: list[int], count: int) -> list[int]:
        empty = [index for index in candidates if not self.lattice.is_occupied(index)]
        if len(empty) < count:
            raise OccupancyError(f"Only {len(empty)} free sites available for {count} particles")
        chosen = self.rng.choice(len(empty), size=count, replace=False)
        return [empty[i] for i in chosen]

    # ------------------------------------------------------------------
    # Test setup
    # ------------------------------------------------------------------

    def _allowed_sites(self, kind: ParticleKind, candidates: list[int]) -> list[int]:
        if not self.params.phase_restriction:
            return candidates
        forbidden = SiteType.DONOR if kind == ParticleKind.ELECTRON else SiteType.ACCEPTOR
        return [index for index in candidates if self.lattice.sites[index].site_type != forbidden]

    def _create_tof_cohort(self) -> None:
        params = self.params
        kind = ParticleKind.ELECTRON if params.tof_polaron_type == "electron" else ParticleKind.HOLE
        plane = params.height - 1 if kind == ParticleKind.ELECTRON else 0
        sites = self._allowed_sites(kind, list(self.lattice.iter_plane(plane)))
        if params.tof_placement == "energy":
            sites = [i for i in sites if not self.lattice.is_occupied(i)]
            sites.sort(key=lambda i: abs(self.lattice.sites[i].energy - params.tof_placement_energy))
            if len(sites) < params.tof_initial_polarons:
                raise OccupancyError("Not enough free sites for the time-of-flight carriers")
            chosen = sites[: params.tof_initial_polarons]
        else:
            chosen = self._random_empty_sites(sites, params.tof_initial_polarons)
        for index in chosen:
            self._add_particle(kind, self.lattice.get_coords(index), self._next_tag(kind))

    def _create_dynamics_excitons(self) -> None:
        params = self.params
        count = max(1, math.ceil(params.dynamics_initial_exciton_conc * self.lattice.volume))
        for index in self._random_empty_sites(list(range(self.lattice.n_sites)), count):
            self._add_particle(
                ParticleKind.EXCITON, self.lattice.get_coords(index), self._next_tag(ParticleKind.EXCITON)
            )

    def _create_steady_holes(self) -> None:
        count = round(self.params.steady_carrier_density * self.lattice.volume)
        logger.info(f"Creating {count} holes for the steady transport test")
        sites = self._allowed_sites(ParticleKind.HOLE, list(range(self.lattice.n_sites)))
        for index in self._random_empty_sites(sites, count):
            self._add_particle(ParticleKind.HOLE, self.lattice.get_coords(index), self._next_tag(ParticleKind.HOLE))
        self.calculate_all_events()

    def _start_transient_cycle(self) -> None:
        assert self.transient is not None
        self.transient.start_cycle(self.time)
        n_cycles = self.transient.n_cycles
        if n_cycles == 1 or n_cycles % 10 == 0:
            logger.info(f"Starting transient cycle {n_cycles} at t={self.time:.3e}s")
        if self.params.test_mode == TestMode.TIME_OF_FLIGHT:
            self._create_tof_cohort()
        else:
            self._create_dynamics_excitons()
        for particle in self.particles.values():
            particle.reset_displacement()
        self.calculate_all_events()

    def _end_transient_cycle(self) -> None:
        for particle_id in sorted(self.particles):
            particle = self.particles[particle_id]
            self._remove_particle(particle)
            self.statistics.record_cleared(particle.kind)
        if not self.check_finished():
            self.reassign_site_energies()
            self._start_transient_cycle()

    def _cohort_exhausted(self) -> bool:
        if self.params.test_mode == TestMode.TIME_OF_FLIGHT:
            kind = ParticleKind.ELECTRON if self.params.tof_polaron_type == "electron" else ParticleKind.HOLE
            return self._alive[kind] == 0
        return not self.particles

    def _schedule_generation(self) -> None:
        self._generation_stamp += 1
        if not self._generation_active():
            return
        event = Event(EventType.EXCITON_CREATION, None, self._generation_stamp, rate=self._generation_rate)
        self.event_queue.push(select_event(self, [event]))

    def _generation_active(self) -> bool:
        if not self.generation_enabled or self._generation_rate <= 0:
            return False
        if self.params.test_mode in (TestMode.EXCITON_DIFFUSION, TestMode.IQE):
            return self.get_n_excitons_created() < self.params.n_tests
        return True

    # ------------------------------------------------------------------
    # Event loop
    # ------------------------------------------------------------------

    def _is_current(self, event: Event) -> bool:
        if event.particle_id is None:
            return event.stamp == self._generation_stamp
        particle = self.particles.get(event.particle_id)
        return particle is not None and particle.stamp == event.stamp

    def execute_next_event(self) -> bool:
        """
        Pop and execute the earliest valid event.

        Returns:
            False if there was nothing left to execute, True otherwise.
        """
        event = self.event_queue.pop_valid(self._is_current)

        if self.transient is not None:
            if event is None:
                self._end_transient_cycle()
                return not self.check_finished()
            self._sample_transient(event.time)
            if event.time - self.transient.cycle_start > self.params.transient_end:
                self.time = max(self.time, self.transient.cycle_start + self.params.transient_end)
                self._end_transient_cycle()
                return True

        if event is None:
            return False

        assert event.time >= self.time, "Event time is earlier than the simulation clock"
        self.time = event.time

        changed = self._execute(event)
        self.statistics.record_event(event.event_type)
        self.n_events_executed += 1
        logger.debug(f"Executed {event}")

        update_events_after_execution(self, changed)

        if self.params.test_mode == TestMode.STEADY_TRANSPORT:
            self._update_steady_data()
        if self.transient is not None and self._cohort_exhausted():
            self._end_transient_cycle()
        return True

    def _execute(self, event: Event) -> list[Coords]:
        if event.event_type == EventType.EXCITON_CREATION:
            return self._execute_exciton_creation()

        particle = self.particles[event.particle_id]  # type: ignore[index]
        handlers: dict[EventType, Callable[[Particle, Event], list[Coords]]] = {
            EventType.POLARON_HOP: self._execute_hop,
            EventType.EXCITON_HOP: self._execute_hop,
            EventType.POLARON_EXTRACTION: self._execute_extraction,
            EventType.POLARON_RECOMBINATION: self._execute_recombination,
            EventType.EXCITON_DISSOCIATION: self._execute_dissociation,
            EventType.EXCITON_DECAY: self._execute_decay,
            EventType.EXCITON_INTERSYSTEM_CROSSING: self._execute_spin_flip,
            EventType.EXCITON_REVERSE_INTERSYSTEM_CROSSING: self._execute_spin_flip,
            EventType.EXCITON_EXCITON_ANNIHILATION: self._execute_exciton_annihilation,
            EventType.EXCITON_POLARON_ANNIHILATION: self._execute_polaron_annihilation,
        }
        return handlers[event.event_type](particle, event)

    def _execute_hop(self, particle: Particle, event: Event) -> list[Coords]:
        assert event.dest_site is not None and event.dest_coords is not None
        origin = particle.coords
        if (
            self.params.test_mode == TestMode.STEADY_TRANSPORT
            and particle.kind == ParticleKind.HOLE
            and self.n_events_executed >= self.params.n_equilibration_events
        ):
            self._record_transport_energy(particle, event)
        self.lattice.clear_occupant(particle.site)
        particle.move(event.dest_site, event.dest_coords, event.offset)
        self.lattice.set_occupant(event.dest_site, particle)
        if particle.kind == ParticleKind.EXCITON:
            hop_length = self.params.unit_size * math.sqrt(sum(d * d for d in event.offset))
            self.statistics.exciton_data.hop_distances.append(hop_length)
        return [origin, particle.coords]

    def _execute_extraction(self, particle: Particle, event: Event) -> list[Coords]:
        x, y, _ = particle.coords
        self.statistics.record_extraction(particle.kind, x, y)
        if self.params.test_mode == TestMode.TIME_OF_FLIGHT:
            self.statistics.transit_times.append(self.time - particle.creation_time)
        self._remove_particle(particle)
        return [particle.coords]

    def _execute_recombination(self, particle: Particle, event: Event) -> list[Coords]:
        hole = self.particles[event.target_id]  # type: ignore[index]
        self.statistics.record_recombination(geminate=particle.tag == hole.tag)
        self._remove_particle(particle)
        self._remove_particle(hole)
        return [particle.coords, hole.coords]

    def _execute_dissociation(self, particle: Particle, event: Event) -> list[Coords]:
        assert event.dest_coords is not None
        origin = particle.coords
        from_donor = self.lattice.sites[particle.site].site_type == SiteType.DONOR
        self.statistics.record_dissociation()
        self._remove_particle(particle)

        tag = max(self._tag_counters[ParticleKind.ELECTRON], self._tag_counters[ParticleKind.HOLE]) + 1
        self._tag_counters[ParticleKind.ELECTRON] = tag
        self._tag_counters[ParticleKind.HOLE] = tag
        electron_coords, hole_coords = (event.dest_coords, origin) if from_donor else (origin, event.dest_coords)
        self._add_particle(ParticleKind.ELECTRON, electron_coords, tag)
        self._add_particle(ParticleKind.HOLE, hole_coords, tag)
        return [origin, event.dest_coords]

    def _execute_decay(self, particle: Particle, event: Event) -> list[Coords]:
        data = self.statistics.exciton_data
        data.diffusion_distances.append(math.sqrt(particle.squared_displacement(self.params.unit_size)))
        data.lifetimes.append(self.time - particle.creation_time)
        self.statistics.record_decay(particle.singlet)
        self._remove_particle(particle)
        return [particle.coords]

    def _execute_spin_flip(self, particle: Particle, event: Event) -> list[Coords]:
        particle.singlet = event.event_type == EventType.EXCITON_REVERSE_INTERSYSTEM_CROSSING
        return [particle.coords]

    def _execute_exciton_annihilation(self, particle: Particle, event: Event) -> list[Coords]:
        target = self.particles[event.target_id]  # type: ignore[index]
        if particle.singlet:
            channel = RecombinationChannel.SINGLET_SINGLET if target.singlet else RecombinationChannel.SINGLET_TRIPLET
        else:
            channel = RecombinationChannel.TRIPLET_TRIPLET
            # The surviving triplet is promoted to a singlet with probability 1/4
            if self.rng.random() > 0.75:
                target.singlet = True
        self.statistics.record_annihilation(channel)
        self._remove_particle(particle)
        return [particle.coords, target.coords]

    def _execute_polaron_annihilation(self, particle: Particle, event: Event) -> list[Coords]:
        channel = RecombinationChannel.SINGLET_POLARON if particle.singlet else RecombinationChannel.TRIPLET_POLARON
        self.statistics.record_annihilation(channel)
        self._remove_particle(particle)
        return [particle.coords]

    def _execute_exciton_creation(self) -> list[Coords]:
        params = self.params
        donor_weight = params.exciton_generation_rate_donor * len(self._donor_sites)
        acceptor_weight = params.exciton_generation_rate_acceptor * len(self._acceptor_sites)
        if self.rng.random() * (donor_weight + acceptor_weight) < donor_weight:
            sites = self._donor_sites
        else:
            sites = self._acceptor_sites

        changed: list[Coords] = []
        for _ in range(MAX_PLACEMENT_ATTEMPTS):
            index = sites[int(self.rng.integers(len(sites)))]
            if not self.lattice.is_occupied(index):
                coords = self.lattice.get_coords(index)
                self._add_particle(ParticleKind.EXCITON, coords, self._next_tag(ParticleKind.EXCITON))
                self._last_generation_time = self.time
                changed.append(coords)
                break
        else:
            logger.warning(f"No free site found for exciton generation at t={self.time:.3e}s")
        self._schedule_generation()
        return changed

    def check_finished(self) -> bool:
        """
        Check the stopping rule of the selected test mode.

        Returns:
            True when the run is complete.
        """
        params = self.params
        if params.max_time is not None and self.time >= params.max_time:
            return True
        mode = params.test_mode
        if mode == TestMode.EXCITON_DIFFUSION:
            return self.get_n_excitons_created() >= params.n_tests and self._alive[ParticleKind.EXCITON] == 0
        if mode == TestMode.TIME_OF_FLIGHT:
            kind = ParticleKind.ELECTRON if params.tof_polaron_type == "electron" else ParticleKind.HOLE
            return self._alive[kind] == 0 and self.statistics.counters[kind].created >= params.n_tests
        if mode == TestMode.IQE:
            if self.get_n_excitons_created() < params.n_tests:
                return False
            return not self.particles or self.time - self._last_generation_time > params.iqe_time_cutoff
        if mode == TestMode.DYNAMICS:
            return not self.particles and self.get_n_excitons_created() >= params.n_tests
        if mode == TestMode.STEADY_TRANSPORT:
            return self.n_events_executed >= params.n_equilibration_events + params.n_tests
        return False

    def run(
        self,
        max_steps: int | None = None,
        callback: Callable[[OSCSimulator], None] | None = None,
        snapshot_interval: int = 1000,
        status_interval: int | None = None,
    ) -> dict[str, object]:
        """
        Run the simulation until the stopping rule is met.

        Args:
            max_steps: Optional cap on executed events.
            callback: Observer called every snapshot_interval events; it must not modify the simulator.
            snapshot_interval: Interval for calling callback.
            status_interval: Events between status log reports (None disables).

        Returns:
            Summary of the run statistics.
        """
        logger.info(f"Starting KMC simulation: test_mode={self.params.test_mode.value}, max_steps={max_steps}")

        while not self.check_finished():
            if max_steps is not None and self.n_events_executed >= max_steps:
                logger.info(f"Reached step limit: {max_steps}")
                break
            executed_before = self.n_events_executed
            if not self.execute_next_event():
                logger.warning(f"No events available at t={self.time:.3e}s, stopping simulation")
                break
            if self.n_events_executed == executed_before:
                continue
            if callback is not None and self.n_events_executed % snapshot_interval == 0:
                callback(self)
            if status_interval is not None and self.n_events_executed % status_interval == 0:
                self.output_status()

        logger.info(
            f"Simulation completed: {self.n_events_executed} events, t={self.time:.3e}s, "
            f"{len(self.particles)} particles alive"
        )
        return self.get_statistics()

    def output_status(self) -> None:
        """Log a status report of the running simulation."""
        counters = self.statistics.counters
        logger.info(f"Status at t={self.time:.3e}s after {self.n_events_executed} events:")
        for kind in ParticleKind:
            c = counters[kind]
            logger.info(
                f"  {kind.value}: created={c.created}, alive={self._alive[kind]}, collected={c.collected}, "
                f"recombined={c.recombined}, decayed={c.decayed}, dissociated={c.dissociated}, "
                f"annihilated={c.annihilated}, cleared={c.cleared}"
            )
        if self.transient is not None:
            logger.info(f"  transient cycles: {self.transient.n_cycles}")

    def get_statistics(self) -> dict[str, object]:
        """
        Get run statistics.

        Returns:
            Dictionary with time, event count, live populations and counters.
        """
        return {
            "time": self.time,
            "n_events_executed": self.n_events_executed,
            "alive": {kind.value: self._alive[kind] for kind in ParticleKind},
            "n_transient_cycles": self.get_n_transient_cycles(),
            **self.statistics.summary(),
        }

    # ------------------------------------------------------------------
    # Transient sampling
    # ------------------------------------------------------------------

    def _sample_transient(self, next_time: float) -> None:
        assert self.transient is not None
        bins = self.transient.pending_bins(next_time)
        if not bins:
            return
        if self.params.test_mode == TestMode.TIME_OF_FLIGHT:
            for index in bins:
                self._record_tof_bin(index)
        else:
            for index in bins:
                self._record_dynamics_bin(index)

    def _record_tof_bin(self, index: int) -> None:
        recorder = self.transient
        assert recorder is not None
        kind = ParticleKind.ELECTRON if self.params.tof_polaron_type == "electron" else ParticleKind.HOLE
        # Displacement toward the collecting electrode is positive
        direction = -1 if kind == ParticleKind.ELECTRON else 1
        interval = recorder.interval(index)
        to_cm = 1e-7 * self.params.unit_size
        for particle_id in sorted(self.polarons):
            particle = self.polarons[particle_id]
            if particle.kind != kind:
                continue
            step = particle.sample_step()
            recorder.add("counts", index, 1)
            recorder.add("energies", index, self.lattice.sites[particle.site].energy)
            recorder.add("velocities", index, direction * step[2] * to_cm / interval)
            recorder.add("positions", index, direction * particle.displacement[2] * self.params.unit_size)

    def _record_dynamics_bin(self, index: int) -> None:
        recorder = self.transient
        assert recorder is not None
        interval = recorder.interval(index)
        to_cm2 = (1e-7 * self.params.unit_size) ** 2
        names = {
            ParticleKind.EXCITON: ("exciton_energies", "exciton_msdv"),
            ParticleKind.ELECTRON: ("electron_energies", "electron_msdv"),
            ParticleKind.HOLE: ("hole_energies", "hole_msdv"),
        }
        for particle_id in sorted(self.particles):
            particle = self.particles[particle_id]
            if particle.kind == ParticleKind.EXCITON:
                recorder.add("singlets" if particle.singlet else "triplets", index, 1)
            else:
                recorder.add("electrons" if particle.kind == ParticleKind.ELECTRON else "holes", index, 1)
            energy_name, msdv_name = names[particle.kind]
            step = particle.sample_step()
            recorder.add(energy_name, index, self.lattice.sites[particle.site].energy)
            recorder.add(msdv_name, index, sum(d * d for d in step) * to_cm2 / interval)

    # ------------------------------------------------------------------
    # Steady transport
    # ------------------------------------------------------------------

    def _hole_energy(self, particle: Particle) -> float:
        site = self.lattice.sites[particle.site]
        return self.material.phase(site.site_type).homo + site.energy

    def _record_transport_energy(self, particle: Particle, event: Event) -> None:
        # Holes drift along -sign(V) in z
        weight = -math.copysign(1.0, self.params.internal_potential) * event.offset[2]
        stats = self.statistics
        stats.transport_energy_weighted_sum += self._hole_energy(particle) * weight
        stats.transport_energy_sum_of_weights += weight

    def _update_steady_data(self) -> None:
        params = self.params
        stats = self.statistics
        if self.n_events_executed == params.n_equilibration_events:
            self.steady_equilibration_time = self.time
            for particle in self.polarons.values():
                particle.reset_displacement()
            stats.transport_energy_weighted_sum = 0.0
            stats.transport_energy_sum_of_weights = 0.0
            logger.info(f"Equilibration phase complete at t={self.time:.3e}s")
        if self.n_events_executed < params.n_equilibration_events:
            return
        if (self.n_events_executed - params.n_equilibration_events) % STEADY_SAMPLE_INTERVAL == 0:
            for particle_id in sorted(self.polarons):
                particle = self.polarons[particle_id]
                energy = self._hole_energy(particle)
                energy_coulomb = energy + calculate_coulomb(self, particle.charge, particle.coords, exclude=particle)
                stats.update_histogram(stats.steady_doos, energy)
                stats.update_histogram(stats.steady_doos_coulomb, energy_coulomb)
                stats.steady_energy_sum += energy
                stats.steady_energy_sum_coulomb += energy_coulomb
                stats.steady_energy_count += 1
            stats.steady_doos_samples += 1

    def _average_hole_drift_cm(self) -> float:
        holes = [p for p in self.polarons.values() if p.kind == ParticleKind.HOLE]
        if not holes:
            return math.nan
        return sum(p.displacement[2] for p in holes) * 1e-7 * self.params.unit_size / len(holes)

    def get_steady_mobility(self) -> float:
        """Steady-state hole mobility from the average drift (cm^2/Vs)."""
        elapsed = self.time - self.steady_equilibration_time
        if elapsed <= 0 or self.get_internal_field() == 0:
            return math.nan
        return abs(self._average_hole_drift_cm()) / (elapsed * abs(self.get_internal_field()))

    def get_steady_current_density(self) -> float:
        """Steady-state current density (mA/cm^2)."""
        elapsed = self.time - self.steady_equilibration_time
        if elapsed <= 0:
            return math.nan
        density = self._alive[ParticleKind.HOLE] / self.lattice.volume
        return 1000 * MaterialParameters.elementary_charge * abs(self._average_hole_drift_cm()) / elapsed * density

    def get_steady_equilibration_energy(self) -> float:
        """Average occupied hole state energy after equilibration (eV)."""
        stats = self.statistics
        return stats.steady_energy_sum / stats.steady_energy_count if stats.steady_energy_count else math.nan

    def get_steady_equilibration_energy_coulomb(self) -> float:
        """Average occupied hole state energy including Coulomb interactions (eV)."""
        stats = self.statistics
        return stats.steady_energy_sum_coulomb / stats.steady_energy_count if stats.steady_energy_count else math.nan

    def get_steady_transport_energy(self) -> float:
        """Drift-weighted average energy of the sites holes hop from (eV)."""
        stats = self.statistics
        if stats.transport_energy_sum_of_weights == 0:
            return math.nan
        return stats.transport_energy_weighted_sum / stats.transport_energy_sum_of_weights

    def get_steady_dos(self) -> list[tuple[float, float]]:
        """Hole density of states of the film (states / (cm^3 eV))."""
        dos: Counter[int] = Counter()
        for site in self.lattice.sites:
            Statistics.update_histogram(dos, self.material.phase(site.site_type).homo + site.energy)
        return Statistics.histogram_density(dos, self.lattice.volume)

    def get_steady_doos(self) -> list[tuple[float, float]]:
        """Density of occupied hole states (states / (cm^3 eV))."""
        stats = self.statistics
        return stats.histogram_density(stats.steady_doos, stats.steady_doos_samples * self.lattice.volume)

    def get_steady_doos_coulomb(self) -> list[tuple[float, float]]:
        """Density of occupied hole states including Coulomb interactions."""
        stats = self.statistics
        return stats.histogram_density(stats.steady_doos_coulomb, stats.steady_doos_samples * self.lattice.volume)

    # ------------------------------------------------------------------
    # DOS correlation
    # ------------------------------------------------------------------

    def calculate_dos_correlation(self) -> list[tuple[float, float]]:
        """
        Measure the spatial correlation of the site energies.

        The cutoff radius grows by one lattice unit until the last correlation
        value drops below 0.01 or the cutoff reaches half the smallest lattice
        extent.

        Returns:
            List of (distance_nm, correlation) pairs.
        """
        unit = self.params.unit_size
        max_radius = min(self.lattice.size) * unit / 2
        energies = np.array(self.lattice.get_energies())
        cutoff = unit
        while True:
            data = measure_correlation(
                energies,
                self.lattice.size,
                (self.lattice.x_periodic, self.lattice.y_periodic, self.lattice.z_periodic),
                unit,
                cutoff,
            )
            if data[-1][1] <= 0.01:
                break
            if cutoff + unit > max_radius:
                logger.warning(f"DOS correlation still {data[-1][1]:.3f} at the largest radius {cutoff} nm")
                break
            cutoff += unit
        self.dos_correlation_data = data
        return data

    def get_dos_correlation_data(self) -> list[tuple[float, float]]:
        """Last measured DOS correlation data."""
        return self.dos_correlation_data

    # ------------------------------------------------------------------
    # Getters
    # ------------------------------------------------------------------

    def get_time(self) -> float:
        """Current simulation time (s)."""
        return self.time

    def get_n_events_executed(self) -> int:
        """Number of executed events."""
        return self.n_events_executed

    def get_n_alive(self, kind: ParticleKind) -> int:
        """Number of live particles of one kind."""
        return self._alive[kind]

    def get_n_electrons_created(self) -> int:
        """Number of electrons created."""
        return self.statistics.counters[ParticleKind.ELECTRON].created

    def get_n_electrons_collected(self) -> int:
        """Number of electrons extracted."""
        return self.statistics.counters[ParticleKind.ELECTRON].collected

    def get_n_electrons_recombined(self) -> int:
        """Number of electrons lost to recombination."""
        return self.statistics.counters[ParticleKind.ELECTRON].recombined

    def get_n_holes_created(self) -> int:
        """Number of holes created."""
        return self.statistics.counters[ParticleKind.HOLE].created

    def get_n_holes_collected(self) -> int:
        """Number of holes extracted."""
        return self.statistics.counters[ParticleKind.HOLE].collected

    def get_n_holes_recombined(self) -> int:
        """Number of holes lost to recombination."""
        return self.statistics.counters[ParticleKind.HOLE].recombined

    def get_n_excitons_created(self) -> int:
        """Number of excitons created."""
        return self.statistics.counters[ParticleKind.EXCITON].created

    def get_n_excitons_dissociated(self) -> int:
        """Number of excitons split into charge pairs."""
        return self.statistics.counters[ParticleKind.EXCITON].dissociated

    def get_n_singlet_excitons_recombined(self) -> int:
        """Number of singlet exciton decays."""
        return self.statistics.channels[RecombinationChannel.SINGLET_DECAY]

    def get_n_triplet_excitons_recombined(self) -> int:
        """Number of triplet exciton decays."""
        return self.statistics.channels[RecombinationChannel.TRIPLET_DECAY]

    def get_n_geminate_recombinations(self) -> int:
        """Number of geminate electron-hole recombinations."""
        return self.statistics.channels[RecombinationChannel.GEMINATE]

    def get_n_bimolecular_recombinations(self) -> int:
        """Number of bimolecular electron-hole recombinations."""
        return self.statistics.channels[RecombinationChannel.BIMOLECULAR]

    def get_n_singlet_polaron_annihilations(self) -> int:
        """Number of singlet-polaron annihilations."""
        return self.statistics.channels[RecombinationChannel.SINGLET_POLARON]

    def get_n_triplet_polaron_annihilations(self) -> int:
        """Number of triplet-polaron annihilations."""
        return self.statistics.channels[RecombinationChannel.TRIPLET_POLARON]

    def get_n_singlet_singlet_annihilations(self) -> int:
        """Number of singlet-singlet annihilations."""
        return self.statistics.channels[RecombinationChannel.SINGLET_SINGLET]

    def get_n_singlet_triplet_annihilations(self) -> int:
        """Number of singlet-triplet annihilations."""
        return self.statistics.channels[RecombinationChannel.SINGLET_TRIPLET]

    def get_n_triplet_triplet_annihilations(self) -> int:
        """Number of triplet-triplet annihilations."""
        return self.statistics.channels[RecombinationChannel.TRIPLET_TRIPLET]

    def get_n_cleared(self, kind: ParticleKind) -> int:
        """Number of particles of one kind removed at transient cycle ends."""
        return self.statistics.counters[kind].cleared

    def get_n_immobilized(self) -> int:
        """Number of times a particle became immobilized."""
        return self.statistics.n_immobilized

    def get_n_transient_cycles(self) -> int:
        """Number of transient cycles started."""
        return self.transient.n_cycles if self.transient is not None else 0

    def conservation_balance(self, kind: ParticleKind) -> int:
        """Particle balance residual of one kind; zero in a consistent run."""
        return self.statistics.conservation_balance(kind, self._alive[kind])

    def get_site_energies(self, site_type: SiteType | None = None) -> list[float]:
        """
        Get site energies.

        Args:
            site_type: If given, only sites of this phase.

        Returns:
            Site energies in site index order (eV).
        """
        return [
            site.energy for site in self.lattice.sites if site_type is None or site.site_type == site_type
        ]

    def get_charge_extraction_map(self, kind: ParticleKind) -> np.ndarray:
        """Extraction probability per electrode cell for electrons or holes."""
        if kind == ParticleKind.EXCITON:
            raise ValueError("Excitons are never extracted")
        return self.statistics.extraction_probability_map(kind)

    def get_exciton_diffusion_data(self) -> list[float]:
        """Diffusion distances of decayed excitons (nm)."""
        return self.statistics.exciton_data.diffusion_distances

    def get_exciton_lifetime_data(self) -> list[float]:
        """Lifetimes of decayed excitons (s)."""
        return self.statistics.exciton_data.lifetimes

    def get_exciton_hop_length_data(self) -> list[float]:
        """Lengths of executed exciton hops (nm)."""
        return self.statistics.exciton_data.hop_distances

    def get_transit_time_data(self) -> list[float]:
        """Time-of-flight transit times (s)."""
        return self.statistics.transit_times

    def calculate_mobility_data(self, transit_times: list[float] | None = None) -> list[float]:
        """Mobilities from transit times (cm^2/Vs)."""
        data = self.statistics.transit_times if transit_times is None else transit_times
        thickness_cm = 1e-7 * self.params.unit_size * self.params.height
        return calculate_mobility_data(data, thickness_cm, self.params.internal_potential)

    def calculate_transit_time_hist(
        self, transit_times: list[float] | None = None, counts: int | None = None
    ) -> list[tuple[float, float]]:
        """
        Histogram transit times on the transient grid.

        Args:
            transit_times: Transit times (default: this run's data).
            counts: Normalization count (default: number of transit times).

        Returns:
            List of (time, fraction) pairs.
        """
        if self.transient is None:
            raise ValueError("Transit time histograms need a transient test mode")
        data = self.statistics.transit_times if transit_times is None else transit_times
        counts = len(data) if counts is None else counts
        return calculate_transit_time_hist(
            data, counts, self.transient.times, self.params.transient_spacing
        )

    def _transient_series(self, name: str) -> list[float]:
        if self.transient is None or name not in self.transient.series:
            raise ValueError(f"No transient series '{name}' in test mode {self.params.test_mode.value}")
        return self.transient.get(name)

    def get_transient_times(self) -> list[float]:
        """Transient sample times relative to each cycle start (s)."""
        if self.transient is None:
            raise ValueError("No transient data in this test mode")
        return self.transient.times.tolist()

    def get_tof_transient_counts(self) -> list[float]:
        """Summed live carrier counts per sample."""
        return self._transient_series("counts")

    def get_tof_transient_energies(self) -> list[float]:
        """Summed carrier site energies per sample (eV)."""
        return self._transient_series("energies")

    def get_tof_transient_velocities(self) -> list[float]:
        """Summed carrier velocities toward the collector per sample (cm/s)."""
        return self._transient_series("velocities")

    def get_tof_transient_positions(self) -> list[float]:
        """Summed carrier displacements toward the collector per sample (nm)."""
        return self._transient_series("positions")

    def get_dynamics_transient_singlets(self) -> list[float]:
        """Summed singlet counts per sample."""
        return self._transient_series("singlets")

    def get_dynamics_transient_triplets(self) -> list[float]:
        """Summed triplet counts per sample."""
        return self._transient_series("triplets")

    def get_dynamics_transient_electrons(self) -> list[float]:
        """Summed electron counts per sample."""
        return self._transient_series("electrons")

    def get_dynamics_transient_holes(self) -> list[float]:
        """Summed hole counts per sample."""
        return self._transient_series("holes")

    def get_dynamics_exciton_energies(self) -> list[float]:
        """Summed exciton site energies per sample (eV)."""
        return self._transient_series("exciton_energies")

    def get_dynamics_electron_energies(self) -> list[float]:
        """Summed electron site energies per sample (eV)."""
        return self._transient_series("electron_energies")

    def get_dynamics_hole_energies(self) -> list[float]:
        """Summed hole site energies per sample (eV)."""
        return self._transient_series("hole_energies")

    def get_dynamics_exciton_msdv(self) -> list[float]:
        """Summed exciton squared displacement per sample interval over its duration (cm^2/s)."""
        return self._transient_series("exciton_msdv")

    def get_dynamics_electron_msdv(self) -> list[float]:
        """Summed electron squared displacement per sample interval over its duration (cm^2/s)."""
        return self._transient_series("electron_msdv")

    def get_dynamics_hole_msdv(self) -> list[float]:
        """Summed hole squared displacement per sample interval over its duration (cm^2/s)."""
        return self._transient_series("hole_msdv")

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"OSCSimulator(mode={self.params.test_mode.value}, t={self.time:.3e}s, "
            f"events={self.n_events_executed}, particles={len(self.particles)})"
        )
