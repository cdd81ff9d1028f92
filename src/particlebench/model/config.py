"""Per-step simulation configuration value objects."""

from __future__ import annotations

from dataclasses import dataclass

from particlebench.model.particles import NUM_PARTICLE_TYPES


def _check_active_type(active_type: int | None) -> None:
    if active_type is not None and not 0 <= active_type < NUM_PARTICLE_TYPES:
        raise ValueError(
            f"active_type must be None or in [0, {NUM_PARTICLE_TYPES}), got {active_type}"
        )


@dataclass(frozen=True)
class ChunkConfig:
    """The part of the configuration a worker needs to process one chunk."""

    gravity_on: bool = True
    collisions_on: bool = True
    wind_on: bool = True
    active_type: int | None = None

    def __post_init__(self) -> None:
        _check_active_type(self.active_type)


@dataclass(frozen=True)
class SimulationConfig:
    """Force toggles and type filter for one frame.

    ``active_type = None`` applies physics to every particle; otherwise only
    particles of that type are updated and the rest pass through unchanged.
    """

    gravity_on: bool = True
    collisions_on: bool = True
    wind_on: bool = True
    active_type: int | None = None
    num_particles: int = 0

    def __post_init__(self) -> None:
        _check_active_type(self.active_type)
        if self.num_particles < 0:
            raise ValueError(f"num_particles must be non-negative, got {self.num_particles}")

    def for_chunk(self) -> ChunkConfig:
        """Size-reduced copy sent with each chunk (drops ``num_particles``)."""
        return ChunkConfig(
            gravity_on=self.gravity_on,
            collisions_on=self.collisions_on,
            wind_on=self.wind_on,
            active_type=self.active_type,
        )

    @property
    def deterministic(self) -> bool:
        """True when no random turbulence is applied."""
        return not self.collisions_on
