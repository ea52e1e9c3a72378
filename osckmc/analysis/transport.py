"""
Charge transport analysis of time-of-flight and transient data.
"""

import numpy as np
import numpy.typing as npt


def calculate_mobility(mobilities: list[float]) -> dict[str, float]:
    """
    Summarize a list of single-carrier mobilities.

    Args:
        mobilities: Mobilities from transit times (cm²/Vs).

    Returns:
        Dictionary with 'mean', 'stdev' and 'count'.
    """
    values = np.asarray(mobilities, dtype=float)
    if len(values) == 0:
        return {"mean": float("nan"), "stdev": float("nan"), "count": 0}
    stdev = float(np.std(values, ddof=1)) if len(values) > 1 else 0.0
    return {"mean": float(np.mean(values)), "stdev": stdev, "count": len(values)}


def average_transient(
    sums: npt.NDArray[np.float64], counts: npt.NDArray[np.float64]
) -> npt.NDArray[np.float64]:
    """
    Convert summed transient series into per-particle averages.

    Args:
        sums: Series summed over particles and cycles.
        counts: Particle counts summed over cycles at each sample.

    Returns:
        Average per sample; zero where no particle was present.
    """
    sums = np.asarray(sums, dtype=float)
    counts = np.asarray(counts, dtype=float)
    return np.divide(sums, counts, out=np.zeros(len(sums)), where=counts > 0)


def population_transient(counts: npt.NDArray[np.float64], n_cycles: int, volume_cm3: float) -> npt.NDArray[np.float64]:
    """
    Convert summed particle counts into an average density per cycle.

    Args:
        counts: Particle counts summed over cycles.
        n_cycles: Number of transient cycles.
        volume_cm3: Film volume (cm³).

    Returns:
        Particle density (cm^-3) at each sample.
    """
    if n_cycles <= 0:
        raise ValueError("n_cycles must be positive")
    return np.asarray(counts, dtype=float) / (n_cycles * volume_cm3)
