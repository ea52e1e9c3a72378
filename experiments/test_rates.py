"""
Tests for the rate model.

Validates:
- Miller-Abrahams and Marcus hopping
- FRET and Dexter exciton transfer
- Extraction, decay and spin flip rates
- Coulomb table and image charge energies
"""

import math

import pytest

from osckmc.data.material_parameters import MaterialParameters
from osckmc.kmc.parameters import HoppingModel, Parameters, RecombinationModel
from osckmc.kmc.rates import RateCalculator


@pytest.fixture
def params():
    return Parameters(length=10, width=10, height=10, temperature=300.0)


@pytest.fixture
def rates(params):
    return RateCalculator(params)


def test_miller_abrahams(rates, params):
    """Downhill hops run at the attempt frequency, uphill ones pay a Boltzmann factor."""
    kt = params.kt

    assert rates.miller_abrahams(1e12, 2.0, 1.0, -0.1) == pytest.approx(1e12)
    assert rates.miller_abrahams(1e12, 2.0, 1.0, 0.1) == pytest.approx(1e12 * math.exp(-0.1 / kt))
    assert rates.miller_abrahams(1e12, 2.0, 2.0, 0.0) == pytest.approx(1e12 * math.exp(-4.0))

    print("✓ Miller-Abrahams test passed")


def test_marcus(rates, params):
    """Marcus rates peak when -ΔE equals the reorganization energy."""
    kt = params.kt
    expected = 1e12 * math.exp(-((0.1 + 0.2) ** 2) / (4 * 0.2 * kt))

    assert rates.marcus(1e12, 2.0, 1.0, 0.1, 0.2) == pytest.approx(expected)
    assert rates.marcus(1e12, 2.0, 1.0, -0.2, 0.2) == pytest.approx(1e12)
    assert rates.marcus(1e12, 2.0, 1.0, -0.2, 0.2) > rates.marcus(1e12, 2.0, 1.0, 0.0, 0.2)

    marcus_rates = RateCalculator(Parameters(length=10, width=10, height=10, hopping_model=HoppingModel.MARCUS))
    phase = marcus_rates.material.donor
    assert marcus_rates.polaron_hop_rate(phase, 1.0, -phase.reorganization) == pytest.approx(phase.r_polaron_hopping)

    print("✓ Marcus test passed")


def test_exciton_transfer(rates):
    """FRET falls off as (a/d)^6, Dexter exponentially."""
    donor = rates.material.donor

    assert rates.fret_rate(1e12, 2.0) == pytest.approx(1e12 / 64)
    assert rates.dexter_rate(1e12, 2.0, 1.0) == pytest.approx(1e12)
    assert rates.dexter_rate(1e12, 2.0, 2.0) == pytest.approx(1e12 * math.exp(-4.0))

    assert rates.exciton_hop_rate(donor, True, 1.0, 0.0) == pytest.approx(donor.r_singlet_hopping)
    assert rates.exciton_hop_rate(donor, False, 1.0, 0.0) == pytest.approx(donor.r_triplet_hopping)

    print("✓ Exciton transfer test passed")


def test_extraction_and_lifetimes(rates, params):
    """Sites next to an electrode extract at the full prefactor."""
    donor = rates.material.donor

    assert rates.extraction_rate(donor, 0.5) == pytest.approx(donor.r_polaron_hopping)
    assert rates.extraction_rate(donor, 1.5) == pytest.approx(
        donor.r_polaron_hopping * math.exp(-2 * donor.polaron_localization)
    )
    assert rates.decay_rate(donor, True) == pytest.approx(1 / donor.singlet_lifetime)
    assert rates.decay_rate(donor, False) == pytest.approx(1 / donor.triplet_lifetime)
    assert rates.isc_rate(donor) == donor.r_isc
    assert rates.risc_rate(donor) == pytest.approx(
        donor.r_risc * math.exp(-donor.singlet_triplet_splitting / params.kt)
    )

    print("✓ Extraction and lifetime test passed")


def test_recombination_prefactor():
    """Tunneling uses the fixed prefactor, Langevin the mobility sum."""
    tunneling = RateCalculator(Parameters(length=10, width=10, height=10, r_polaron_recombination=1e10))
    donor = tunneling.material.donor
    assert tunneling.recombination_rate(donor, 1.0) == pytest.approx(1e10)

    langevin = RateCalculator(
        Parameters(length=10, width=10, height=10, recombination_model=RecombinationModel.LANGEVIN)
    )
    material = langevin.material
    expected = (
        MaterialParameters.elementary_charge
        * (material.donor.mobility + material.acceptor.mobility)
        * 1e-4
        / (MaterialParameters.vacuum_permittivity * material.average_dielectric)
        / 1e-27
    )
    assert langevin.recombination_prefactor == pytest.approx(expected)

    print("✓ Recombination prefactor test passed")


def test_coulomb_table(rates, params):
    """Pair energies follow 1/r and vanish beyond the cutoff."""
    epsilon = rates.material.average_dielectric
    nearest = MaterialParameters.coulomb_constant * MaterialParameters.elementary_charge / epsilon / 1e-9

    assert rates.pair_energy(1) == pytest.approx(nearest)
    assert rates.pair_energy(4) == pytest.approx(nearest / 2)
    assert rates.pair_energy(0) == 0.0
    assert rates.pair_energy(int(params.coulomb_cutoff**2) + 1) == 0.0

    screened = RateCalculator(
        Parameters(length=10, width=10, height=10, gaussian_delocalization=True, polaron_delocalization_length=1.0)
    )
    assert screened.pair_energy(1) < rates.pair_energy(1)

    print("✓ Coulomb table test passed")


def test_image_energy(rates):
    """Image charges attract carriers toward both electrodes."""
    near = rates.image_energy(0, 10)
    middle = rates.image_energy(5, 10)

    assert near < 0
    assert middle < 0
    assert near < middle
    assert rates.image_energy(0, 10) == pytest.approx(rates.image_energy(9, 10))

    print("✓ Image energy test passed")
