"""
Statistics aggregation for KMC simulation.

This module collects the observables of a run from executed events:
per-kind population counters, recombination/annihilation channel counts,
time-resolved transients sampled on a fixed time grid, transit times,
charge-extraction maps, exciton diffusion data and steady-transport energy
histograms. All updates are counter increments or appends in event
execution order.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

from .particles import ParticleKind

if TYPE_CHECKING:
    from .events import EventType

DOS_BIN_SIZE = 0.01  # eV


class RecombinationChannel(Enum):
    """Distinct loss channels of electrons, holes and excitons."""

    GEMINATE = "geminate"
    BIMOLECULAR = "bimolecular"
    SINGLET_POLARON = "singlet_polaron"
    TRIPLET_POLARON = "triplet_polaron"
    SINGLET_SINGLET = "singlet_singlet"
    SINGLET_TRIPLET = "singlet_triplet"
    TRIPLET_TRIPLET = "triplet_triplet"
    SINGLET_DECAY = "singlet_decay"
    TRIPLET_DECAY = "triplet_decay"


@dataclass
class KindCounters:
    """
    Lifetime counters of one particle kind.

    Attributes:
        created: Particles created.
        collected: Particles extracted at an electrode.
        recombined: Polarons lost to electron-hole recombination.
        decayed: Excitons lost to radiative/non-radiative decay.
        dissociated: Excitons split into an electron-hole pair.
        annihilated: Excitons lost to exciton-exciton or exciton-polaron annihilation.
        cleared: Particles removed at the end of a transient cycle.
    """

    created: int = 0
    collected: int = 0
    recombined: int = 0
    decayed: int = 0
    dissociated: int = 0
    annihilated: int = 0
    cleared: int = 0

    def removed(self) -> int:
        """Total number of particles no longer alive."""
        return self.collected + self.recombined + self.decayed + self.dissociated + self.annihilated + self.cleared


def transient_times(
    start: float,
    end: float,
    pnts_per_decade: int,
    spacing: str = "logarithmic",
    linear_pnts: int = 100,
) -> np.ndarray:
    """
    Build the transient sampling grid.

    Args:
        start: First sample time (s).
        end: Last sample time (s).
        pnts_per_decade: Points per decade of a logarithmic grid.
        spacing: 'logarithmic' or 'linear'.
        linear_pnts: Number of points of a linear grid, both ends included.

    Returns:
        Increasing array of sample times relative to the cycle start.
    """
    if spacing == "linear":
        return np.linspace(start, end, linear_pnts)
    step = 1.0 / pnts_per_decade
    n_points = int(math.floor((math.log10(end) - math.log10(start)) / step + 1e-9)) + 1
    return 10 ** (math.log10(start) + step * np.arange(n_points))


def transient_bin_edges(times: np.ndarray, spacing: str = "logarithmic") -> np.ndarray:
    """
    Bin edges halfway between neighboring sample times.

    Midpoints are taken in log10(t) for a logarithmic grid and in t for a
    linear grid. The outer edges lie half a spacing beyond the first and last
    sample times, so the bins tile the grid without overlap.

    Args:
        times: Sample times from transient_times().
        spacing: 'logarithmic' or 'linear'.

    Returns:
        Array of len(times) + 1 increasing edges (s).
    """
    coords = np.log10(times) if spacing == "logarithmic" else np.asarray(times, dtype=float)
    if len(coords) > 1:
        gaps = np.diff(coords)
        first_gap, last_gap = gaps[0], gaps[-1]
    else:
        # one decade, or the sample time itself on a linear axis
        first_gap = last_gap = 1.0 if spacing == "logarithmic" else float(coords[0])
        gaps = np.array([])
    edges = np.concatenate(
        ([coords[0] - first_gap / 2], coords[:-1] + gaps / 2, [coords[-1] + last_gap / 2])
    )
    return 10**edges if spacing == "logarithmic" else edges


class TransientRecorder:
    """
    Accumulator of time-resolved series sampled on a fixed grid.

    Each cycle is aligned to its own start time. Before an event at time t is
    applied, every bin whose time precedes t receives the state of the system
    as it was before the event. Sums accumulate over cycles; averaging is left
    to the caller.

    Attributes:
        times: Sample times relative to the cycle start (s).
        series: Accumulated sums per series name.
        next_index: Next bin to fill in the current cycle.
        cycle_start: Absolute start time of the current cycle (s).
        n_cycles: Number of cycles started.
    """

    def __init__(self, times: np.ndarray, names: list[str]) -> None:
        """
        Initialize recorder.

        Args:
            times: Sample grid from transient_times().
            names: Names of the recorded series.
        """
        self.times = times
        self.series: dict[str, np.ndarray] = {name: np.zeros(len(times)) for name in names}
        self.next_index = 0
        self.cycle_start = 0.0
        self.n_cycles = 0

    def start_cycle(self, time: float) -> None:
        """Align the grid to a new cycle starting at the given absolute time."""
        self.cycle_start = time
        self.next_index = 0
        self.n_cycles += 1

    def pending_bins(self, time: float) -> list[int]:
        """
        Bins to fill before an event at the given absolute time is applied.

        Args:
            time: Absolute time of the next event (s).

        Returns:
            Indices of bins whose time precedes the event, in order.
        """
        elapsed = time - self.cycle_start
        start = self.next_index
        while self.next_index < len(self.times) and self.times[self.next_index] < elapsed:
            self.next_index += 1
        return list(range(start, self.next_index))

    def interval(self, index: int) -> float:
        """Duration of the sampling interval ending at bin index (s)."""
        if index == 0:
            return float(self.times[0])
        return float(self.times[index] - self.times[index - 1])

    def add(self, name: str, index: int, value: float) -> None:
        """Add a value to one bin of a series."""
        self.series[name][index] += value

    @property
    def is_complete(self) -> bool:
        """Check if every bin of the current cycle has been filled."""
        return self.next_index >= len(self.times)

    def get(self, name: str) -> list[float]:
        """Accumulated sums of one series."""
        return self.series[name].tolist()


@dataclass
class ExcitonDiffusionData:
    """Per-exciton diffusion observables."""

    diffusion_distances: list[float] = field(default_factory=list)  # nm
    lifetimes: list[float] = field(default_factory=list)  # s
    hop_distances: list[float] = field(default_factory=list)  # nm


class Statistics:
    """
    Aggregated observables of one simulation run.

    Attributes:
        counters: Lifetime counters per particle kind.
        channels: Loss channel counts.
        event_counts: Executed events by type.
        n_immobilized: Particles that ended up with no candidate events.
        transit_times: Time-of-flight transit times (s).
        exciton_data: Exciton diffusion observables.
    """

    def __init__(self, extraction_map_shape: tuple[int, int]) -> None:
        """
        Initialize empty statistics.

        Args:
            extraction_map_shape: (length, width) of an electrode plane.
        """
        self.counters: dict[ParticleKind, KindCounters] = {kind: KindCounters() for kind in ParticleKind}
        self.channels: Counter[RecombinationChannel] = Counter()
        self.event_counts: Counter[EventType] = Counter()
        self.n_immobilized = 0

        self.electron_extraction_map = np.zeros(extraction_map_shape, dtype=np.int64)
        self.hole_extraction_map = np.zeros(extraction_map_shape, dtype=np.int64)
        self.transit_times: list[float] = []
        self.exciton_data = ExcitonDiffusionData()

        # Steady transport
        self.steady_doos: Counter[int] = Counter()
        self.steady_doos_coulomb: Counter[int] = Counter()
        self.steady_doos_samples = 0
        self.steady_energy_sum = 0.0
        self.steady_energy_sum_coulomb = 0.0
        self.steady_energy_count = 0
        self.transport_energy_weighted_sum = 0.0
        self.transport_energy_sum_of_weights = 0.0

    def record_creation(self, kind: ParticleKind) -> None:
        """Count a created particle."""
        self.counters[kind].created += 1

    def record_extraction(self, kind: ParticleKind, x: int, y: int) -> None:
        """
        Count a polaron extracted at an electrode.

        Args:
            kind: ELECTRON or HOLE.
            x: Lateral x coordinate of the extraction site.
            y: Lateral y coordinate of the extraction site.
        """
        self.counters[kind].collected += 1
        extraction_map = (
            self.electron_extraction_map if kind == ParticleKind.ELECTRON else self.hole_extraction_map
        )
        extraction_map[x, y] += 1

    def record_recombination(self, geminate: bool) -> None:
        """Count an electron-hole recombination."""
        self.counters[ParticleKind.ELECTRON].recombined += 1
        self.counters[ParticleKind.HOLE].recombined += 1
        self.channels[RecombinationChannel.GEMINATE if geminate else RecombinationChannel.BIMOLECULAR] += 1

    def record_decay(self, singlet: bool) -> None:
        """Count an exciton decay."""
        self.counters[ParticleKind.EXCITON].decayed += 1
        self.channels[RecombinationChannel.SINGLET_DECAY if singlet else RecombinationChannel.TRIPLET_DECAY] += 1

    def record_dissociation(self) -> None:
        """Count an exciton split into a charge pair."""
        self.counters[ParticleKind.EXCITON].dissociated += 1

    def record_annihilation(self, channel: RecombinationChannel) -> None:
        """Count an exciton lost to annihilation."""
        self.counters[ParticleKind.EXCITON].annihilated += 1
        self.channels[channel] += 1

    def record_cleared(self, kind: ParticleKind, count: int = 1) -> None:
        """Count particles removed at the end of a transient cycle."""
        self.counters[kind].cleared += count

    def record_event(self, event_type: EventType) -> None:
        """Count an executed event."""
        self.event_counts[event_type] += 1

    def conservation_balance(self, kind: ParticleKind, alive: int) -> int:
        """
        Residual of the particle balance for one kind.

        Args:
            kind: Particle kind.
            alive: Number of currently live particles of that kind.

        Returns:
            created - (alive + all removal counters); zero in a consistent run.
        """
        counters = self.counters[kind]
        return counters.created - alive - counters.removed()

    def extraction_probability_map(self, kind: ParticleKind) -> np.ndarray:
        """
        Charge extraction map normalized to the extraction probability.

        Args:
            kind: ELECTRON or HOLE.

        Returns:
            (length, width) array summing to 1, or zeros if nothing was collected.
        """
        counts = self.electron_extraction_map if kind == ParticleKind.ELECTRON else self.hole_extraction_map
        total = counts.sum()
        if total == 0:
            return np.zeros(counts.shape)
        return counts / total

    @staticmethod
    def update_histogram(histogram: Counter[int], energy: float, weight: float = 1.0) -> None:
        """Add an energy to a histogram keyed by bin number."""
        histogram[int(round(energy / DOS_BIN_SIZE))] += weight

    @staticmethod
    def histogram_density(histogram: Counter[int], norm: float) -> list[tuple[float, float]]:
        """
        Convert a bin-number histogram into (energy, density) pairs.

        Empty bins between the extremes are included with zero density.

        Args:
            histogram: Counts keyed by bin number.
            norm: Normalization divisor (samples * volume).

        Returns:
            List of (energy, counts / (norm * bin size)) pairs.
        """
        if not histogram or norm <= 0:
            return []
        low, high = min(histogram), max(histogram)
        return [
            (bin_index * DOS_BIN_SIZE, histogram.get(bin_index, 0) / (norm * DOS_BIN_SIZE))
            for bin_index in range(low, high + 1)
        ]

    def summary(self) -> dict[str, object]:
        """
        Get a summary of all counters.

        Returns:
            Dictionary of counters per kind, channel counts and event counts.
        """
        return {
            "counters": {kind.value: asdict(counts) for kind, counts in self.counters.items()},
            "channels": {channel.value: self.channels[channel] for channel in RecombinationChannel},
            "events": {event_type.value: count for event_type, count in self.event_counts.items()},
            "n_immobilized": self.n_immobilized,
            "n_transit_times": len(self.transit_times),
        }


def calculate_transit_time_hist(
    data: list[float], counts: int, times: np.ndarray, spacing: str = "logarithmic"
) -> list[tuple[float, float]]:
    """
    Histogram transit times on the transient grid.

    Each transit time is counted in at most one bin: the one whose edges,
    from transient_bin_edges(), enclose it. Times outside the grid are dropped.

    Args:
        data: Transit times (s).
        counts: Normalization count (usually the number of test carriers).
        times: Transient sample times (s).
        spacing: 'logarithmic' or 'linear', as used to build the grid.

    Returns:
        List of (time, fraction) pairs.
    """
    if counts <= 0:
        return [(float(t), 0.0) for t in times]
    n_in_bin, _ = np.histogram(np.asarray(data, dtype=float), bins=transient_bin_edges(times, spacing))
    return [(float(t), int(n) / counts) for t, n in zip(times, n_in_bin)]


def calculate_mobility_data(transit_times: list[float], thickness_cm: float, potential: float) -> list[float]:
    """
    Convert transit times into mobilities.

    Args:
        transit_times: Transit times (s).
        thickness_cm: Film thickness (cm).
        potential: Internal potential across the film (V).

    Returns:
        Mobilities d^2 / (|V| t) in cm^2/Vs.
    """
    if potential == 0:
        return [math.nan for _ in transit_times]
    return [thickness_cm**2 / (abs(potential) * t) for t in transit_times]
