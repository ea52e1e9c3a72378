"""
Exciton and carrier diffusion analysis.

Fit the diffusion coefficient from mean squared displacement data.
"""

import numpy as np
import numpy.typing as npt
from scipy.stats import linregress


def fit_diffusion_coefficient(
    times: npt.NDArray[np.float64], msd: npt.NDArray[np.float64], dimensions: int = 3
) -> dict[str, float]:
    """
    Fit the diffusion coefficient from the mean squared displacement.

    <r²>(t) = 2 d D t

    Args:
        times: Array of time points (s).
        msd: Mean squared displacement at each time (cm²).
        dimensions: Number of spatial dimensions d.

    Returns:
        Dictionary with 'diffusion_coefficient' (cm²/s), 'intercept' and 'r_squared'.
    """
    times = np.asarray(times, dtype=float)
    msd = np.asarray(msd, dtype=float)
    if len(times) < 2:
        raise ValueError("At least two points are needed to fit a diffusion coefficient")

    result = linregress(times, msd)

    return {
        "diffusion_coefficient": float(result.slope) / (2 * dimensions),  # type: ignore[attr-defined]
        "intercept": float(result.intercept),  # type: ignore[attr-defined]
        "r_squared": float(result.rvalue) ** 2,  # type: ignore[attr-defined]
    }


def diffusion_length(distances: list[float]) -> float:
    """
    Root mean square exciton diffusion distance.

    Args:
        distances: Distances between creation and decay sites (nm).

    Returns:
        sqrt(<r²>) in nm, or NaN if no data.
    """
    if not distances:
        return float("nan")
    values = np.asarray(distances, dtype=float)
    return float(np.sqrt(np.mean(values**2)))


def msd_from_transient(
    times: npt.NDArray[np.float64], msdv: npt.NDArray[np.float64], counts: npt.NDArray[np.float64]
) -> npt.NDArray[np.float64]:
    """
    Integrate a per-interval MSD velocity transient into the MSD.

    Args:
        times: Transient sample times (s).
        msdv: Summed squared displacement per interval divided by the interval (cm²/s).
        counts: Summed particle counts per sample.

    Returns:
        Cumulative mean squared displacement (cm²) at each sample time.
    """
    times = np.asarray(times, dtype=float)
    intervals = np.diff(np.concatenate(([0.0], times)))
    counts = np.asarray(counts, dtype=float)
    per_particle = np.divide(
        np.asarray(msdv, dtype=float), counts, out=np.zeros(len(times)), where=counts > 0
    )
    return np.cumsum(per_particle * intervals)
