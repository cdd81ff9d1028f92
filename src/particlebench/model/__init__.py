"""Domain model: particle buffer layout, particle categories, simulation config."""

from particlebench.model.config import ChunkConfig, SimulationConfig
from particlebench.model.particles import (
    NUM_PARTICLE_TYPES,
    PARTICLE_COLORS,
    PARTICLE_TYPES,
    STRIDE,
    BufferLayoutError,
    ParticleType,
    as_records,
    clone,
    initialize,
    particle_count,
    type_mask,
    validate_buffer,
    visible_positions,
)

__all__ = [
    "NUM_PARTICLE_TYPES",
    "PARTICLE_COLORS",
    "PARTICLE_TYPES",
    "STRIDE",
    "BufferLayoutError",
    "ChunkConfig",
    "ParticleType",
    "SimulationConfig",
    "as_records",
    "clone",
    "initialize",
    "particle_count",
    "type_mask",
    "validate_buffer",
    "visible_positions",
]
