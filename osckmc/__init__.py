"""
OSC-KMC: Kinetic Monte Carlo simulation of charge and exciton transport in
disordered organic semiconductor devices.

This package provides the single-run simulation kernel (energetic disorder,
event scheduling, rate models, statistics) for organic solar cell and
organic photodetector films.
"""

__version__ = "0.1.0"
