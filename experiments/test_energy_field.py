"""
Tests for site energy disorder.

Validates:
- Reproducibility of uncorrelated and correlated fields
- Standardization of correlated fields
- Correlation length round trip through the measured correlation
- Lattice size check for the correlation length
"""

import math

import numpy as np
import pytest

from osckmc.kmc.energy_field import (
    find_correlation_length,
    generate_correlated_field,
    generate_exponential_energies,
    generate_gaussian_energies,
    measure_correlation,
)
from osckmc.kmc.errors import LatticeError
from osckmc.kmc.parameters import CorrelationKernel


def test_gaussian_reproducibility():
    """The same seed gives the same energies."""
    a = generate_gaussian_energies(np.random.default_rng(7), 1000, 0.075)
    b = generate_gaussian_energies(np.random.default_rng(7), 1000, 0.075)
    c = generate_gaussian_energies(np.random.default_rng(8), 1000, 0.075)

    assert np.array_equal(a, b)
    assert not np.array_equal(a, c)
    assert abs(np.std(a) - 0.075) < 0.01
    assert np.all(generate_gaussian_energies(np.random.default_rng(7), 10, 0.0) == 0)

    print("✓ Gaussian reproducibility test passed")


def test_exponential_tail():
    """Exponential energies lie below zero with mean -Urbach energy."""
    energies = generate_exponential_energies(np.random.default_rng(3), 20000, 0.03)

    assert np.all(energies <= 0)
    assert abs(np.mean(energies) + 0.03) < 0.003

    print("✓ Exponential tail test passed")


def test_correlated_field_standardized():
    """Correlated fields are reproducible with zero mean and unit variance."""
    shape = (12, 12, 12)
    a = generate_correlated_field(np.random.default_rng(1), shape, 1.0, 2.0)
    b = generate_correlated_field(np.random.default_rng(1), shape, 1.0, 2.0)

    assert a.shape == (12 * 12 * 12,)
    assert np.array_equal(a, b)
    assert abs(a.mean()) < 1e-9
    assert a.std() == pytest.approx(1.0)

    power = generate_correlated_field(np.random.default_rng(1), shape, 1.0, 2.0, CorrelationKernel.POWER, -2)
    assert power.std() == pytest.approx(1.0)

    print("✓ Correlated field standardization test passed")


def test_correlation_length_roundtrip():
    """The measured correlation of a generated field falls to 1/e near the requested length."""
    shape = (30, 30, 30)
    xi = 2.0
    field = generate_correlated_field(np.random.default_rng(11), shape, 1.0, xi)

    data = measure_correlation(field, shape, (True, True, True), 1.0, 5.0)
    measured = find_correlation_length(data)

    print(f"Requested ξ = {xi} nm, measured ξ = {measured:.3f} nm")

    assert data[0] == (0.0, 1.0)
    assert data[1] == (0.5, 1.0)
    assert abs(measured - xi) < 0.4, f"Measured correlation length {measured} too far from {xi}"
    assert abs(data[-1][1]) < 0.15, "Correlation should vanish far beyond ξ"

    print("✓ Correlation length roundtrip test passed")


def test_uncorrelated_field_has_no_correlation():
    """White noise shows no correlation beyond the first bins."""
    shape = (20, 20, 20)
    field = generate_gaussian_energies(np.random.default_rng(5), 8000, 1.0)

    data = measure_correlation(field, shape, (True, True, False), 1.0, 3.0)
    assert all(abs(value) < 0.05 for _, value in data[2:])
    assert math.isnan(find_correlation_length([(0.0, 1.0), (1.0, 0.9)]))

    print("✓ Uncorrelated field test passed")


def test_correlation_length_too_large():
    """A correlation length of half the lattice extent is rejected."""
    with pytest.raises(LatticeError):
        generate_correlated_field(np.random.default_rng(0), (10, 10, 20), 1.0, 5.0)

    print("✓ Correlation length check test passed")
