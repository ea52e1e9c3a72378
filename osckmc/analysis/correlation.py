"""
Site energy correlation analysis.

Fit the correlation length ξ of a measured DOS correlation function.
"""

import numpy as np
import numpy.typing as npt
from scipy.optimize import curve_fit


def fit_correlation_length(
    data: list[tuple[float, float]], initial_guess: float | None = None
) -> dict[str, float]:
    """
    Fit a Gaussian correlation function to measured data.

    C(r) = exp(-r²/ξ²)

    Args:
        data: List of (distance_nm, correlation) pairs.
        initial_guess: Starting value for ξ (None = distance of the first point below 1/e).

    Returns:
        Dictionary with 'correlation_length' (nm) and its standard error.
    """
    distances = np.array([point[0] for point in data], dtype=float)
    values = np.array([point[1] for point in data], dtype=float)
    if len(distances) < 3:
        raise ValueError("At least three points are needed to fit a correlation length")

    def gaussian(r: npt.NDArray[np.float64], xi: float) -> npt.NDArray[np.float64]:
        return np.exp(-(r**2) / xi**2)

    if initial_guess is None:
        below = np.nonzero(values < np.exp(-1))[0]
        initial_guess = float(distances[below[0]]) if len(below) else float(distances[-1])

    popt, pcov = curve_fit(gaussian, distances, values, p0=[initial_guess])

    return {
        "correlation_length": float(abs(popt[0])),
        "correlation_length_error": float(np.sqrt(np.diag(pcov))[0]),
    }
