"""
Run KMC simulations of organic solar cell films.

This script runs one simulation per parameter file and analyzes the results.

Usage:
    python experiments/run_simulations.py experiments/configs/tof.yaml [more.yaml ...]
"""

import argparse
from pathlib import Path

import numpy as np

from osckmc.analysis import (
    average_transient,
    calculate_mobility,
    diffusion_length,
    fit_correlation_length,
)
from osckmc.kmc import OSCSimulator, Parameters, ParticleKind, TestMode
from osckmc.settings import settings

# Setup logging
logger = settings.setup_logging()


def run_from_config(config_path: Path) -> OSCSimulator:
    """
    Run one simulation described by a YAML parameter file.

    Args:
        config_path: Parameter file.

    Returns:
        The finished simulator.
    """
    logger.info(f"Loading parameters from {config_path}")
    params = Parameters.from_yaml(config_path)
    if params.random_seed is None:
        params = params.model_copy(update={"random_seed": settings.hardware.seed})

    simulator = OSCSimulator(params)

    def progress_callback(sim: OSCSimulator) -> None:
        """Callback to report progress."""
        logger.info(f"Step {sim.n_events_executed}, Time {sim.time:.2e}s, Particles {len(sim.particles)}")

    simulator.run(
        callback=progress_callback,
        snapshot_interval=100000,
        status_interval=settings.kmc.status_interval,
    )
    simulator.output_status()
    return simulator


def analyze(simulator: OSCSimulator, output_dir: Path) -> None:
    """Log the main observables of a finished run and save its data."""
    mode = simulator.params.test_mode

    if mode == TestMode.EXCITON_DIFFUSION:
        length = diffusion_length(simulator.get_exciton_diffusion_data())
        lifetimes = simulator.get_exciton_lifetime_data()
        logger.info(f"Exciton diffusion length: {length:.3f} nm")
        if lifetimes:
            logger.info(f"Mean exciton lifetime: {np.mean(lifetimes):.3e} s")

    elif mode == TestMode.TIME_OF_FLIGHT:
        mobility = calculate_mobility(simulator.calculate_mobility_data())
        logger.info(
            f"ToF mobility: {mobility['mean']:.3e} ± {mobility['stdev']:.3e} cm^2/Vs "
            f"from {mobility['count']} carriers"
        )
        times = np.array(simulator.get_transient_times())
        counts = np.array(simulator.get_tof_transient_counts())
        energies = average_transient(np.array(simulator.get_tof_transient_energies()), counts)
        velocities = average_transient(np.array(simulator.get_tof_transient_velocities()), counts)
        np.savetxt(
            output_dir / "tof_transients.csv",
            np.column_stack((times, counts, energies, velocities)),
            delimiter=",",
            header="time_s,counts,energy_eV,velocity_cm_s",
        )
        hist = simulator.calculate_transit_time_hist()
        np.savetxt(output_dir / "transit_time_hist.csv", np.array(hist), delimiter=",", header="time_s,fraction")

    elif mode == TestMode.IQE:
        created = simulator.get_n_excitons_created()
        collected = min(simulator.get_n_electrons_collected(), simulator.get_n_holes_collected())
        if created:
            logger.info(f"Internal quantum efficiency: {collected / created:.4f}")
        logger.info(
            f"Geminate recombinations: {simulator.get_n_geminate_recombinations()}, "
            f"bimolecular: {simulator.get_n_bimolecular_recombinations()}"
        )

    elif mode == TestMode.DYNAMICS:
        times = np.array(simulator.get_transient_times())
        n_cycles = simulator.get_n_transient_cycles()
        np.savetxt(
            output_dir / "dynamics_transients.csv",
            np.column_stack(
                (
                    times,
                    np.array(simulator.get_dynamics_transient_singlets()) / n_cycles,
                    np.array(simulator.get_dynamics_transient_triplets()) / n_cycles,
                    np.array(simulator.get_dynamics_transient_electrons()) / n_cycles,
                    np.array(simulator.get_dynamics_transient_holes()) / n_cycles,
                )
            ),
            delimiter=",",
            header="time_s,singlets,triplets,electrons,holes",
        )

    elif mode == TestMode.STEADY_TRANSPORT:
        logger.info(f"Steady mobility: {simulator.get_steady_mobility():.3e} cm^2/Vs")
        logger.info(f"Steady current density: {simulator.get_steady_current_density():.3e} mA/cm^2")
        logger.info(f"Equilibration energy: {simulator.get_steady_equilibration_energy():.4f} eV")
        logger.info(f"Transport energy: {simulator.get_steady_transport_energy():.4f} eV")
        np.savetxt(output_dir / "steady_doos.csv", np.array(simulator.get_steady_doos()), delimiter=",")

    if simulator.params.correlated_disorder:
        data = simulator.calculate_dos_correlation()
        fit = fit_correlation_length(data)
        logger.info(
            f"Measured correlation length: {fit['correlation_length']:.3f} nm "
            f"(requested {simulator.params.correlation_length} nm)"
        )

    for kind in ParticleKind:
        balance = simulator.conservation_balance(kind)
        if balance != 0:
            logger.error(f"Conservation violated for {kind.value}: residual {balance}")


def main() -> None:
    """Main execution."""
    parser = argparse.ArgumentParser(description="Run OSC KMC simulations")
    parser.add_argument("configs", nargs="+", type=Path, help="YAML parameter files")
    args = parser.parse_args()

    logger.info("Starting simulation runs")

    for config_path in args.configs:
        simulator = run_from_config(config_path)
        output_dir = settings.paths.results_dir / config_path.stem
        output_dir.mkdir(parents=True, exist_ok=True)
        analyze(simulator, output_dir)

    logger.info("Simulations completed")


if __name__ == "__main__":
    main()
