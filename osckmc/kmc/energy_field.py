"""
Site energy disorder for KMC simulation.

This module generates the per-site energetic disorder of the film:
uncorrelated Gaussian or exponential densities of states, and spatially
correlated Gaussian fields obtained by filtering white noise with a smoothing
kernel in frequency space. It also measures the spatial autocorrelation of an
energy field.

Site arrays are flat and follow the lattice index order (x fastest), which
corresponds to a (length, width, height) array in Fortran order.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from .errors import LatticeError
from .parameters import CorrelationKernel

logger = logging.getLogger(__name__)

CORRELATION_BIN_FRACTION = 0.5  # Correlation bins are half a lattice unit wide


def generate_gaussian_energies(rng: np.random.Generator, n_sites: int, stdev: float) -> np.ndarray:
    """
    Draw uncorrelated Gaussian site energies.

    Args:
        rng: Random generator of the run.
        n_sites: Number of sites.
        stdev: Standard deviation (eV).

    Returns:
        Array of site energies with zero mean.
    """
    if stdev == 0:
        return np.zeros(n_sites)
    return rng.normal(0.0, stdev, n_sites)


def generate_exponential_energies(rng: np.random.Generator, n_sites: int, urbach_energy: float) -> np.ndarray:
    """
    Draw site energies from an exponential tail below the transport level.

    Args:
        rng: Random generator of the run.
        n_sites: Number of sites.
        urbach_energy: Characteristic tail energy (eV).

    Returns:
        Array of non-positive site energies.
    """
    if urbach_energy == 0:
        return np.zeros(n_sites)
    return -rng.exponential(urbach_energy, n_sites)


def _kernel_spectrum(
    shape: tuple[int, int, int],
    unit_size: float,
    correlation_length: float,
    kernel: CorrelationKernel,
    exponent: int,
) -> np.ndarray:
    axes = []
    for n in shape:
        index = np.arange(n)
        axes.append(unit_size * np.minimum(index, n - index))
    dx, dy, dz = np.meshgrid(*axes, indexing="ij")
    r_squared = dx**2 + dy**2 + dz**2

    if kernel == CorrelationKernel.GAUSSIAN:
        # Self-convolution gives a correlation of exp(-r^2 / xi^2)
        real_space = np.exp(-2.0 * r_squared / correlation_length**2)
    else:
        real_space = (1.0 + r_squared / correlation_length**2) ** exponent
    return np.fft.rfftn(real_space)


def generate_correlated_field(
    rng: np.random.Generator,
    shape: tuple[int, int, int],
    unit_size: float,
    correlation_length: float,
    kernel: CorrelationKernel = CorrelationKernel.GAUSSIAN,
    exponent: int = -1,
) -> np.ndarray:
    """
    Generate a standardized, spatially correlated Gaussian field.

    White Gaussian noise is convolved with the smoothing kernel through FFTs on
    the periodic grid, then shifted and scaled to zero mean and unit variance.
    The same generator state and parameters always give the same field.

    Args:
        rng: Random generator of the run.
        shape: Lattice dimensions (length, width, height).
        unit_size: Lattice constant (nm).
        correlation_length: Distance where the correlation falls to 1/e (nm).
        kernel: Smoothing kernel.
        exponent: Power-law exponent for the power kernel (-1 or -2).

    Returns:
        Flat array in lattice index order.

    Raises:
        LatticeError: If the correlation length is not smaller than half the
            smallest lattice extent.
    """
    smallest_extent = min(shape) * unit_size
    if correlation_length >= smallest_extent / 2:
        raise LatticeError(
            f"Correlation length {correlation_length} nm requires a lattice larger than "
            f"{2 * correlation_length} nm in every direction (smallest extent is {smallest_extent} nm)"
        )

    noise = rng.standard_normal(shape)
    spectrum = _kernel_spectrum(shape, unit_size, correlation_length, kernel, exponent)
    field = np.fft.irfftn(np.fft.rfftn(noise) * spectrum, s=shape)

    std = field.std()
    if std == 0:
        return np.zeros(field.size)
    field = (field - field.mean()) / std
    return field.ravel(order="F")


def _shifted_pair(
    field: np.ndarray, offset: tuple[int, int, int], periodic: tuple[bool, bool, bool]
) -> tuple[np.ndarray, np.ndarray] | None:
    a = field
    b = field
    for axis, (d, is_periodic) in enumerate(zip(offset, periodic)):
        if d == 0:
            continue
        n = field.shape[axis]
        if is_periodic:
            b = np.roll(b, -d, axis=axis)
            continue
        if abs(d) >= n:
            return None
        slice_a = [slice(None)] * 3
        slice_b = [slice(None)] * 3
        if d > 0:
            slice_a[axis] = slice(0, n - d)
            slice_b[axis] = slice(d, n)
        else:
            slice_a[axis] = slice(-d, n)
            slice_b[axis] = slice(0, n + d)
        a = a[tuple(slice_a)]
        b = b[tuple(slice_b)]
    return a, b


def measure_correlation(
    energies: np.ndarray,
    shape: tuple[int, int, int],
    periodic: tuple[bool, bool, bool],
    unit_size: float,
    cutoff_radius: float,
) -> list[tuple[float, float]]:
    """
    Measure the spatial autocorrelation of site energies.

    Site pairs are binned by separation in steps of half a lattice unit. The
    value of each bin is sum(E_i * E_j) / ((count - 1) * variance), using
    energies relative to their mean. The first two bins (zero and half a unit)
    are fixed at 1.

    Args:
        energies: Flat site energies in lattice index order.
        shape: Lattice dimensions (length, width, height).
        periodic: Periodic boundary flags for x, y and z.
        unit_size: Lattice constant (nm).
        cutoff_radius: Largest separation to measure (nm).

    Returns:
        List of (distance_nm, correlation) pairs ordered by distance.
    """
    values = np.asarray(energies, dtype=float)
    deviations = values - values.mean()
    variance = deviations.var()
    field = deviations.reshape(shape, order="F")

    reach = int(math.ceil(cutoff_radius / unit_size))
    n_bins = int(math.ceil(cutoff_radius / (CORRELATION_BIN_FRACTION * unit_size))) + 1
    sums = np.zeros(n_bins)
    counts = np.zeros(n_bins, dtype=np.int64)

    for i in range(-reach, reach + 1):
        for j in range(-reach, reach + 1):
            for k in range(-reach, reach + 1):
                if i == j == k == 0:
                    continue
                bin_index = int(round(math.sqrt(i * i + j * j + k * k) / CORRELATION_BIN_FRACTION))
                if bin_index >= n_bins:
                    continue
                pair = _shifted_pair(field, (i, j, k), periodic)
                if pair is None:
                    continue
                a, b = pair
                sums[bin_index] += float(np.sum(a * b))
                counts[bin_index] += a.size

    data = [(0.0, 1.0), (CORRELATION_BIN_FRACTION * unit_size, 1.0)]
    for m in range(2, n_bins):
        if counts[m] > 1 and variance > 0:
            data.append((CORRELATION_BIN_FRACTION * unit_size * m, sums[m] / ((counts[m] - 1) * variance)))
    return data


def find_correlation_length(data: list[tuple[float, float]]) -> float:
    """
    Estimate where a measured correlation curve falls below 1/e.

    Args:
        data: (distance, correlation) pairs from measure_correlation.

    Returns:
        Linearly interpolated 1/e crossing distance (nm), or NaN if never crossed.
    """
    target = math.exp(-1)
    for (d0, c0), (d1, c1) in zip(data, data[1:]):
        if c0 >= target > c1:
            return d0 + (c0 - target) * (d1 - d0) / (c0 - c1)
    logger.warning("Measured correlation never drops below 1/e")
    return math.nan
