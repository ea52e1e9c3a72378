"""
Configuration module using Pydantic Settings.

This module handles project-wide configuration: environment variables,
logging setup, default lattice and physical conditions for KMC runs,
output paths and the random seed.
"""

import logging
import sys
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogConfig(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Logging level")
    file: str = Field(default="logs/osckmc.log", description="Log file path")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate logging level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of {valid_levels}")
        return v.upper()


class KMCConfig(BaseSettings):
    """Default KMC simulation conditions."""

    # Lattice dimensions
    lattice_size_x: int = Field(default=50, description="Lattice size in X direction", gt=0)
    lattice_size_y: int = Field(default=50, description="Lattice size in Y direction", gt=0)
    lattice_size_z: int = Field(default=50, description="Lattice size in Z direction", gt=0)
    unit_size: float = Field(default=1.0, description="Lattice constant in nm", gt=0)

    # Physical conditions
    temperature: float = Field(default=300.0, description="Temperature in Kelvin", gt=0)
    internal_potential: float = Field(default=0.0, description="Potential across the film in V")
    material: str = Field(default="p3ht_pcbm", description="Material preset name")

    # Simulation limits
    simulation_time: float | None = Field(
        default=None, description="Simulated time cap in seconds", gt=0
    )
    status_interval: int = Field(
        default=100000, description="Events between progress reports", gt=0
    )


class PathConfig(BaseSettings):
    """Path configuration."""

    results_dir: Path = Field(default=Path("results"), description="Results directory")
    logs_dir: Path = Field(default=Path("logs"), description="Logs directory")

    @field_validator("results_dir", "logs_dir")
    @classmethod
    def create_dir_if_not_exists(cls, v: Path) -> Path:
        """Create directory if it doesn't exist."""
        v.mkdir(parents=True, exist_ok=True)
        return v


class HardwareConfig(BaseSettings):
    """Execution configuration."""

    seed: int | None = Field(default=None, description="Random seed for reproducibility")


class Settings(BaseSettings):
    """Main settings class combining all configuration sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Project metadata
    project_name: str = Field(default="osckmc", description="Project name")
    environment: Literal["development", "production", "testing"] = Field(
        default="development", description="Environment"
    )

    # Configuration sections
    log: LogConfig = Field(default_factory=LogConfig)
    kmc: KMCConfig = Field(default_factory=KMCConfig)
    paths: PathConfig = Field(default_factory=PathConfig)
    hardware: HardwareConfig = Field(default_factory=HardwareConfig)

    def setup_logging(self) -> logging.Logger:
        """
        Setup logging configuration.

        Returns:
            Configured logger instance.
        """
        log_path = Path(self.log.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logging.basicConfig(
            level=getattr(logging, self.log.level),
            format=self.log.format,
            handlers=[
                logging.FileHandler(self.log.file),
                logging.StreamHandler(sys.stdout),
            ],
        )

        logger = logging.getLogger(self.project_name)
        logger.info(f"Logging initialized at level {self.log.level}")
        logger.info(f"Environment: {self.environment}")

        return logger

    def model_dump_summary(self) -> dict[str, dict]:
        """
        Get a summary of all configuration settings.

        Returns:
            Dictionary containing all settings organized by section.
        """
        return {
            "project": {
                "name": self.project_name,
                "environment": self.environment,
            },
            "kmc": self.kmc.model_dump(),
            "paths": {k: str(v) for k, v in self.paths.model_dump().items()},
            "hardware": self.hardware.model_dump(),
            "log": self.log.model_dump(),
        }


# Global settings instance
settings = Settings()
