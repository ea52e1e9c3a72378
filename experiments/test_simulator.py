"""
Tests for the KMC simulator.

Validates:
- Particle creation, tags and creation errors
- Single exciton decay with no charges present and the mean exciton lifetime
- Exciton-exciton and exciton-polaron annihilation, ISC and RISC
- Geminate pair recombination
- Diffusive motion in a film without disorder
- Time-of-flight extraction, transient cycles and determinism
- Exciton diffusion, IQE, dynamics and steady transport test modes
- Particle conservation in every mode and after every event
- Local field including electrode image charges
"""

from dataclasses import fields, replace

import numpy as np
import pytest

from osckmc.data.material_parameters import P3HT_PCBM_PARAMETERS
from osckmc.kmc import (
    Architecture,
    DOSModel,
    EventType,
    OSCSimulator,
    Parameters,
    ParticleKind,
    SiteType,
    TestMode,
)
from osckmc.kmc.efficient_updates import calculate_exciton_candidates
from osckmc.kmc.errors import LatticeError, OccupancyError, ParameterError

NO_ISC_DONOR = replace(P3HT_PCBM_PARAMETERS.donor, r_isc=0.0)
NO_ISC_ACCEPTOR = replace(P3HT_PCBM_PARAMETERS.acceptor, r_isc=0.0)


def _quiet_film(**overrides) -> Parameters:
    """Small periodic film without light, run until the queue empties."""
    values = {
        "length": 10,
        "width": 10,
        "height": 10,
        "z_periodic": True,
        "test_mode": TestMode.FIXED_DURATION,
        "max_time": 1e-3,
        "exciton_generation_rate_donor": 0.0,
        "exciton_generation_rate_acceptor": 0.0,
        "donor": NO_ISC_DONOR,
        "acceptor": NO_ISC_ACCEPTOR,
        "random_seed": 1,
    }
    values.update(overrides)
    return Parameters(**values)


def _tof_params(**overrides) -> Parameters:
    values = {
        "length": 10,
        "width": 10,
        "height": 10,
        "test_mode": TestMode.TIME_OF_FLIGHT,
        "n_tests": 20,
        "tof_initial_polarons": 10,
        "internal_potential": -2.0,
        "transient_end": 1e-6,
        "random_seed": 3,
    }
    values.update(overrides)
    return Parameters(**values)


def _assert_conserved(sim: OSCSimulator) -> None:
    for kind in ParticleKind:
        assert sim.conservation_balance(kind) == 0, f"Conservation violated for {kind.value}"


def test_invalid_parameters_rejected():
    """Invalid parameters are rejected before anything is built."""
    with pytest.raises(ParameterError):
        OSCSimulator(Parameters(test_mode=TestMode.FIXED_DURATION))

    print("✓ Invalid parameter test passed")


def test_creation_and_tags():
    """The first electron and hole share a tag; bad sites are rejected."""
    sim = OSCSimulator(_quiet_film())

    electron = sim.create_electron((4, 5, 5))
    hole = sim.create_hole((5, 5, 5))

    assert electron.tag == hole.tag == 1
    assert electron.charge == -1 and hole.charge == 1
    assert "cycle" not in {f.name for f in fields(electron)}
    assert sim.get_n_alive(ParticleKind.ELECTRON) == 1
    assert sim.lattice.occupant(hole.site) is hole
    assert len(sim.event_queue) >= 2

    with pytest.raises(OccupancyError):
        sim.create_exciton((5, 5, 5))
    with pytest.raises(LatticeError):
        sim.create_hole((10, 0, 0))

    print("✓ Creation and tag test passed")


def test_phase_restriction_on_creation():
    """With phase restriction, electrons cannot be created on donor sites."""
    sim = OSCSimulator(
        _quiet_film(architecture=Architecture.BILAYER, thickness_acceptor=5, phase_restriction=True)
    )

    assert sim.lattice.get_site(0, 0, 0).site_type == SiteType.ACCEPTOR
    assert sim.lattice.get_site(0, 0, 9).site_type == SiteType.DONOR
    with pytest.raises(OccupancyError):
        sim.create_electron((0, 0, 9))
    with pytest.raises(OccupancyError):
        sim.create_hole((0, 0, 0))
    sim.create_electron((0, 0, 0))

    print("✓ Phase restriction test passed")


def test_single_exciton_decay():
    """A lone singlet hops until it decays; nothing else happens."""
    sim = OSCSimulator(_quiet_film())
    sim.create_exciton((5, 5, 5))

    sim.run(max_steps=200000)

    hops = sim.statistics.event_counts[EventType.EXCITON_HOP]
    print(f"Exciton hops: {hops}, lifetime: {sim.get_exciton_lifetime_data()[0]:.3e} s")

    assert not sim.particles
    assert sim.get_n_excitons_created() == 1
    assert sim.get_n_singlet_excitons_recombined() == 1
    assert sim.get_n_excitons_dissociated() == 0
    assert len(sim.get_exciton_lifetime_data()) == 1
    assert len(sim.get_exciton_diffusion_data()) == 1
    assert len(sim.get_exciton_hop_length_data()) == hops
    assert all(length == pytest.approx(1.0) for length in sim.get_exciton_hop_length_data())
    assert sim.get_exciton_lifetime_data()[0] == pytest.approx(sim.time)
    _assert_conserved(sim)

    print("✓ Single exciton decay test passed")


def test_geminate_pair_recombination():
    """An electron and hole from the same tag recombine geminately."""
    sim = OSCSimulator(_quiet_film())
    sim.create_electron((4, 5, 5))
    sim.create_hole((5, 5, 5))

    sim.run(max_steps=2000000)

    assert not sim.particles
    assert sim.get_n_geminate_recombinations() == 1
    assert sim.get_n_bimolecular_recombinations() == 0
    assert sim.get_n_electrons_recombined() == 1
    assert sim.get_n_holes_recombined() == 1
    _assert_conserved(sim)

    print("✓ Geminate recombination test passed")


def test_zero_disorder_diffusion():
    """Without disorder or interactions, MSD grows linearly with hops and time."""
    sim = OSCSimulator(
        _quiet_film(
            length=30,
            width=30,
            height=30,
            dos_model=DOSModel.NONE,
            coulomb_interactions=False,
            random_seed=5,
        )
    )
    rng = np.random.default_rng(0)
    for index in rng.choice(sim.lattice.n_sites, size=100, replace=False):
        sim.create_hole(sim.lattice.get_coords(int(index)))

    sim.run(max_steps=50000)

    holes = list(sim.particles.values())
    msd = np.mean([hole.squared_displacement(1.0) for hole in holes])
    mean_hops = np.mean([hole.n_hops for hole in holes])
    hop_rate = 6 * P3HT_PCBM_PARAMETERS.donor.r_polaron_hopping

    print(f"MSD: {msd:.1f} nm^2 after {mean_hops:.1f} hops, t = {sim.time:.3e} s")
    print(f"MSD / t = {msd / sim.time:.3e} nm^2/s (expected {hop_rate:.3e})")

    assert sim.n_events_executed == 50000
    assert abs(msd / mean_hops - 1.0) < 0.3
    assert abs(msd / sim.time / hop_rate - 1.0) < 0.3
    _assert_conserved(sim)

    print("✓ Zero disorder diffusion test passed")


def test_time_of_flight_extraction():
    """ToF electrons are extracted once each and cycles repeat until n_tests carriers."""
    sim = OSCSimulator(_tof_params())
    sim.run(max_steps=1000000)

    created = sim.get_n_electrons_created()
    collected = sim.get_n_electrons_collected()
    cleared = sim.get_n_cleared(ParticleKind.ELECTRON)

    print(f"Created {created}, collected {collected}, cleared {cleared}")

    assert sim.check_finished()
    assert created == 20
    assert sim.get_n_transient_cycles() == 2
    assert collected + cleared == created
    assert collected > 0
    assert len(sim.get_transit_time_data()) == collected
    assert sim.statistics.electron_extraction_map.sum() == collected
    assert sim.get_n_holes_created() == 0
    assert sim.get_charge_extraction_map(ParticleKind.ELECTRON).sum() == pytest.approx(1.0)
    assert all(mobility > 0 for mobility in sim.calculate_mobility_data())

    times = sim.get_transient_times()
    assert len(sim.get_tof_transient_counts()) == len(times)
    assert len(sim.get_tof_transient_velocities()) == len(times)
    assert len(sim.calculate_transit_time_hist()) == len(times)
    _assert_conserved(sim)

    print("✓ Time-of-flight extraction test passed")


def test_determinism_and_clock():
    """The same seed reproduces a run exactly and the clock never runs backwards."""
    times: list[float] = []

    def record(sim: OSCSimulator) -> None:
        times.append(sim.time)

    first = OSCSimulator(_tof_params())
    first_stats = first.run(max_steps=5000, callback=record, snapshot_interval=1)
    second = OSCSimulator(_tof_params())
    second_stats = second.run(max_steps=5000)

    assert first_stats == second_stats
    assert first.time == second.time
    assert first.get_transit_time_data() == second.get_transit_time_data()
    assert len(times) > 0
    assert all(t0 <= t1 for t0, t1 in zip(times, times[1:]))

    third = OSCSimulator(_tof_params(random_seed=4))
    third.run(max_steps=5000)
    assert third.get_transit_time_data() != first.get_transit_time_data()

    print("✓ Determinism and clock test passed")


def test_exciton_diffusion_mode():
    """Generation stops after n_tests excitons and the run ends when they are gone."""
    sim = OSCSimulator(
        Parameters(
            length=10,
            width=10,
            height=10,
            test_mode=TestMode.EXCITON_DIFFUSION,
            n_tests=10,
            donor=NO_ISC_DONOR,
            acceptor=NO_ISC_ACCEPTOR,
            random_seed=2,
        )
    )
    sim.run(max_steps=2000000)

    assert sim.check_finished()
    assert sim.get_n_excitons_created() == 10
    assert sim.get_n_singlet_excitons_recombined() == 10
    assert len(sim.get_exciton_diffusion_data()) == 10
    assert all(distance >= 0 for distance in sim.get_exciton_diffusion_data())
    _assert_conserved(sim)

    print("✓ Exciton diffusion mode test passed")


def test_iqe_bilayer():
    """Excitons split at the interface and the charges leave through the electrodes or recombine."""
    sim = OSCSimulator(
        Parameters(
            length=10,
            width=10,
            height=10,
            test_mode=TestMode.IQE,
            architecture=Architecture.BILAYER,
            thickness_acceptor=5,
            internal_potential=-1.0,
            n_tests=5,
            donor=NO_ISC_DONOR,
            acceptor=NO_ISC_ACCEPTOR,
            random_seed=6,
        )
    )
    sim.run(max_steps=2000000)

    dissociated = sim.get_n_excitons_dissociated()
    print(
        f"Dissociated {dissociated}, electrons collected {sim.get_n_electrons_collected()}, "
        f"geminate {sim.get_n_geminate_recombinations()}"
    )

    assert sim.check_finished()
    assert sim.get_n_excitons_created() == 5
    assert sim.get_n_electrons_created() == dissociated
    assert sim.get_n_holes_created() == dissociated
    assert (
        sim.get_n_geminate_recombinations() + sim.get_n_bimolecular_recombinations()
        == sim.get_n_electrons_recombined()
    )
    _assert_conserved(sim)

    print("✓ IQE bilayer test passed")


def test_dynamics_cycles():
    """Dynamics runs one cohort per cycle and records every transient series."""
    sim = OSCSimulator(
        Parameters(
            length=10,
            width=10,
            height=10,
            test_mode=TestMode.DYNAMICS,
            architecture=Architecture.RANDOM_BLEND,
            acceptor_conc=0.5,
            dynamics_initial_exciton_conc=5e17,
            n_tests=3,
            transient_start=1e-13,
            transient_end=1e-9,
            donor=NO_ISC_DONOR,
            acceptor=NO_ISC_ACCEPTOR,
            random_seed=7,
        )
    )
    sim.run(max_steps=2000000)

    times = sim.get_transient_times()
    assert sim.check_finished()
    assert sim.get_n_transient_cycles() == 3
    assert sim.get_n_excitons_created() == 3
    assert not sim.particles
    for series in (
        sim.get_dynamics_transient_singlets(),
        sim.get_dynamics_transient_electrons(),
        sim.get_dynamics_exciton_msdv(),
    ):
        assert len(series) == len(times)
        assert all(value >= 0 for value in series)
    with pytest.raises(ValueError):
        sim.get_tof_transient_counts()
    _assert_conserved(sim)

    print("✓ Dynamics cycle test passed")


def test_steady_transport():
    """Holes drift through a periodic film and steady observables are collected."""
    sim = OSCSimulator(
        Parameters(
            length=10,
            width=10,
            height=10,
            z_periodic=True,
            internal_potential=0.5,
            test_mode=TestMode.STEADY_TRANSPORT,
            steady_carrier_density=1e19,
            n_equilibration_events=1000,
            n_tests=2000,
            random_seed=8,
        )
    )
    assert sim.get_n_alive(ParticleKind.HOLE) == 10

    sim.run()

    print(f"Steady mobility: {sim.get_steady_mobility():.3e} cm^2/Vs")

    assert sim.n_events_executed == 3000
    assert sim.get_steady_mobility() > 0
    assert sim.get_steady_current_density() > 0
    assert np.isfinite(sim.get_steady_equilibration_energy())
    assert np.isfinite(sim.get_steady_transport_energy())
    assert len(sim.get_steady_doos()) > 0
    occupied = dict(sim.statistics.steady_doos)
    dos = sim.get_steady_dos()
    assert len(dos) > 0
    assert sim.get_steady_dos() == dos
    assert dict(sim.statistics.steady_doos) == occupied
    assert not hasattr(sim.statistics, "steady_dos")
    assert sim.statistics.steady_doos_samples == 2000 // 100 + 1
    _assert_conserved(sim)

    print("✓ Steady transport test passed")


def test_reassign_site_energies_invalidates_events():
    """Redrawing energies reschedules every live particle."""
    sim = OSCSimulator(_quiet_film())
    hole = sim.create_hole((2, 2, 2))
    energies = sim.get_site_energies()
    stamp = hole.stamp

    sim.reassign_site_energies()

    assert hole.stamp > stamp
    assert sim.get_site_energies() != energies
    assert len(sim.get_site_energies(SiteType.DONOR)) == sim.lattice.n_sites

    print("✓ Site energy reassignment test passed")


def test_internal_and_local_field():
    """The applied field is V / thickness; a nearby hole adds its own field."""
    sim = OSCSimulator(_quiet_film(internal_potential=1.0))

    assert sim.get_internal_field() == pytest.approx(1e6)
    assert sim.field_at((5, 5, 6)) == (0.0, 0.0, pytest.approx(1e6))

    sim.create_hole((5, 5, 5))
    ex, ey, ez = sim.field_at((5, 5, 6))
    assert ex == pytest.approx(0.0)
    assert ey == pytest.approx(0.0)
    assert ez > 1e6

    print("✓ Field test passed")


def test_dos_correlation_measurement():
    """The DOS correlation of a correlated film starts at one and decays."""
    sim = OSCSimulator(_quiet_film(length=16, width=16, height=16, correlated_disorder=True, correlation_length=2.0))

    data = sim.calculate_dos_correlation()

    assert data[0] == (0.0, 1.0)
    assert data[-1][1] < data[2][1]
    assert sim.get_dos_correlation_data() is data

    print("✓ DOS correlation measurement test passed")


def test_immobilized_particle():
    """A particle with nowhere to go is flagged instead of scheduled."""
    sim = OSCSimulator(_quiet_film(length=1, width=1, height=1))
    hole = sim.create_hole((0, 0, 0))

    assert hole.immobilized
    assert sim.get_n_immobilized() == 1
    assert not sim.execute_next_event()
    assert sim.get_n_alive(ParticleKind.HOLE) == 1

    print("✓ Immobilized particle test passed")


def _static_donor(**overrides):
    """Donor phase whose excitons cannot hop, with fast annihilation and no spin flips."""
    values = {
        "r_singlet_hopping": 0.0,
        "r_triplet_hopping": 0.0,
        "r_exciton_exciton_annihilation": 1e16,
        "r_exciton_polaron_annihilation": 1e16,
        "r_isc": 0.0,
        "r_risc": 0.0,
    }
    values.update(overrides)
    return replace(NO_ISC_DONOR, **values)


def _static_excitons(**phase_overrides) -> Parameters:
    """Quiet neat film with static excitons."""
    return _quiet_film(donor=_static_donor(**phase_overrides))


def test_singlet_singlet_annihilation():
    """Two adjacent singlets annihilate; the partner survives as a singlet and later decays."""
    sim = OSCSimulator(_static_excitons())
    first = sim.create_exciton((4, 5, 5))
    second = sim.create_exciton((5, 5, 5))

    sim.run(max_steps=1)

    assert sim.get_n_singlet_singlet_annihilations() == 1
    assert sim.statistics.counters[ParticleKind.EXCITON].annihilated == 1
    assert sim.get_n_alive(ParticleKind.EXCITON) == 1
    survivor = next(iter(sim.particles.values()))
    assert survivor.id in (first.id, second.id)
    assert survivor.singlet
    _assert_conserved(sim)

    sim.run()

    assert not sim.particles
    assert sim.get_n_singlet_excitons_recombined() == 1
    _assert_conserved(sim)

    print("✓ Singlet-singlet annihilation test passed")


def test_singlet_triplet_annihilation_removes_singlet():
    """Only the singlet can start the annihilation, so the triplet is the survivor."""
    sim = OSCSimulator(_static_excitons())
    singlet = sim.create_exciton((4, 5, 5))
    triplet = sim.create_exciton((5, 5, 5), singlet=False)

    triplet_events = {event.event_type for event in calculate_exciton_candidates(sim, triplet)}
    singlet_events = {event.event_type for event in calculate_exciton_candidates(sim, singlet)}
    assert EventType.EXCITON_EXCITON_ANNIHILATION not in triplet_events
    assert EventType.EXCITON_EXCITON_ANNIHILATION in singlet_events

    sim.run(max_steps=1)

    assert sim.get_n_singlet_triplet_annihilations() == 1
    assert sim.get_n_singlet_singlet_annihilations() == 0
    assert list(sim.particles) == [triplet.id]
    assert not triplet.singlet
    _assert_conserved(sim)

    print("✓ Singlet-triplet annihilation test passed")


def test_triplet_triplet_annihilation_conversion():
    """A quarter of the triplets surviving triplet-triplet annihilation become singlets."""
    sim = OSCSimulator(_quiet_film(length=20, width=20, height=20, donor=_static_donor(), random_seed=11))
    n_pairs = 0
    for x in range(0, 18, 3):
        for y in range(0, 20, 2):
            for z in range(0, 20, 2):
                sim.create_exciton((x, y, z), singlet=False)
                sim.create_exciton((x + 1, y, z), singlet=False)
                n_pairs += 1

    sim.run(max_steps=n_pairs)

    singlets = sum(1 for particle in sim.particles.values() if particle.singlet)
    fraction = singlets / n_pairs
    print(f"Triplet-triplet annihilations: {n_pairs}, converted to singlets: {fraction:.3f}")

    assert sim.get_n_triplet_triplet_annihilations() == n_pairs
    assert sim.get_n_alive(ParticleKind.EXCITON) == n_pairs
    assert 0.18 < fraction < 0.32
    _assert_conserved(sim)

    print("✓ Triplet-triplet annihilation test passed")


@pytest.mark.parametrize("singlet", [True, False])
def test_exciton_polaron_annihilation(singlet):
    """An exciton next to a polaron is lost and the polaron survives."""
    sim = OSCSimulator(_static_excitons())
    sim.create_exciton((5, 5, 5), singlet=singlet)
    hole = sim.create_hole((4, 5, 5))

    sim.run(max_steps=1)

    if singlet:
        assert sim.get_n_singlet_polaron_annihilations() == 1
    else:
        assert sim.get_n_triplet_polaron_annihilations() == 1
    assert sim.get_n_alive(ParticleKind.EXCITON) == 0
    assert list(sim.particles) == [hole.id]
    assert sim.get_n_holes_recombined() == 0
    _assert_conserved(sim)

    print(f"✓ Exciton-polaron annihilation test passed (singlet={singlet})")


def test_intersystem_crossing_and_reverse():
    """ISC turns a singlet into a triplet; RISC turns a triplet back into a singlet."""
    sim = OSCSimulator(_static_excitons(r_isc=1e14))
    exciton = sim.create_exciton((5, 5, 5))

    sim.run(max_steps=1)

    assert sim.statistics.event_counts[EventType.EXCITON_INTERSYSTEM_CROSSING] == 1
    assert sim.particles[exciton.id] is exciton
    assert not exciton.singlet

    sim = OSCSimulator(_static_excitons(r_risc=1e13, singlet_triplet_splitting=0.1))
    exciton = sim.create_exciton((5, 5, 5), singlet=False)

    sim.run(max_steps=1)

    assert sim.statistics.event_counts[EventType.EXCITON_REVERSE_INTERSYSTEM_CROSSING] == 1
    assert exciton.singlet
    assert sim.get_n_alive(ParticleKind.EXCITON) == 1
    _assert_conserved(sim)

    print("✓ Intersystem crossing test passed")


def test_exciton_lifetime_distribution():
    """Independent singlets decay with the configured mean lifetime."""
    sim = OSCSimulator(_static_excitons(r_exciton_exciton_annihilation=0.0))
    lifetime = sim.params.donor.singlet_lifetime
    for x in range(10):
        for y in range(10):
            for z in (0, 3, 6):
                sim.create_exciton((x, y, z))

    sim.run()

    lifetimes = np.array(sim.get_exciton_lifetime_data())
    surviving = np.mean(lifetimes > lifetime)
    print(f"Mean decay time: {lifetimes.mean():.3e} s (lifetime {lifetime:.3e} s), survival at tau {surviving:.3f}")

    assert len(lifetimes) == 300
    assert sim.get_n_singlet_excitons_recombined() == 300
    assert lifetimes.mean() == pytest.approx(lifetime, rel=0.2)
    assert 0.25 < surviving < 0.49
    _assert_conserved(sim)

    print("✓ Exciton lifetime distribution test passed")


def test_conservation_after_every_event():
    """The particle balance and clock hold at every event of an IQE blend run."""
    sim = OSCSimulator(
        Parameters(
            length=10,
            width=10,
            height=10,
            test_mode=TestMode.IQE,
            architecture=Architecture.RANDOM_BLEND,
            acceptor_conc=0.5,
            internal_potential=-1.0,
            n_tests=5,
            donor=NO_ISC_DONOR,
            acceptor=NO_ISC_ACCEPTOR,
            random_seed=12,
        )
    )
    checkpoints = []

    def check(simulator: OSCSimulator) -> None:
        balances = [simulator.conservation_balance(kind) for kind in ParticleKind]
        assert balances == [0, 0, 0], f"Conservation violated after {simulator.n_events_executed} events"
        if checkpoints:
            assert simulator.time >= checkpoints[-1], "Clock went backwards"
        checkpoints.append(simulator.time)

    sim.run(max_steps=2000000, callback=check, snapshot_interval=1)

    print(
        f"Checked {len(checkpoints)} events: dissociated {sim.get_n_excitons_dissociated()}, "
        f"collected {sim.get_n_electrons_collected() + sim.get_n_holes_collected()}"
    )

    assert len(checkpoints) == sim.n_events_executed
    assert sim.get_n_excitons_dissociated() > 0
    _assert_conserved(sim)

    print("✓ Per-event conservation test passed")


def test_image_charge_field():
    """Next to an electrode a polaron feels the pull of its own image charges."""
    sim = OSCSimulator(_quiet_film(z_periodic=False))
    height = sim.params.height
    prefactor = sim.rate_calculator.image_prefactor
    # bottom image at 0.5 nm, top image at height - 0.5 nm
    expected = 1e7 * (-prefactor / 0.5**2 + prefactor / (height - 0.5) ** 2)

    assert sim.field_at((5, 5, 0)) == (0.0, 0.0, 0.0)

    hole = sim.create_hole((5, 5, 0))
    assert sim.field_at(hole.coords)[2] == pytest.approx(expected)
    assert sim.field_at(hole.coords, charge=-1)[2] == pytest.approx(-expected)
    assert sim.field_at(hole.coords, charge=0)[2] == 0.0

    periodic = OSCSimulator(_quiet_film())
    periodic.create_hole((5, 5, 0))
    assert periodic.field_at((5, 5, 0))[2] == 0.0

    print("✓ Image charge field test passed")
