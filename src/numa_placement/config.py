"""Settings and logging setup for the NUMA placement library."""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_LOGGER = "numa_placement"

# Self-distance of a NUMA node in ACPI SLIT units
LOCAL_DISTANCE = 10


class PlacementSettings(BaseSettings):
    """Library defaults, overridable through ``NUMA_PLACEMENT_*`` variables."""

    # Expected distance of a node to itself
    local_distance: int = Field(default=LOCAL_DISTANCE, ge=0)

    # Interconnect throughput relative to local memory access
    interconnect_bandwidth_ratio: float = Field(default=0.5, gt=0.0, le=1.0)

    # Largest node subset the planner tries; None means every node
    max_plan_nodes: Optional[int] = Field(default=None, ge=1)

    # Logging
    log_level: str = "WARNING"
    log_file: Optional[str] = None

    model_config = SettingsConfigDict(
        env_prefix="NUMA_PLACEMENT_",
        env_file=".env",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> PlacementSettings:
    """Return the process-wide settings, read once from the environment."""
    return PlacementSettings()


def configure_logging(settings: Optional[PlacementSettings] = None) -> logging.Logger:
    """Attach a handler to the package logger unless one is already present.

    Messages go to ``settings.log_file`` when set, otherwise to stderr.
    """
    settings = settings or get_settings()
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(settings.log_level.upper())

    if not package_logger.handlers:
        if settings.log_file:
            handler = logging.FileHandler(settings.log_file)
        else:
            handler = logging.StreamHandler()
        formatter = logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s')
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    return package_logger
