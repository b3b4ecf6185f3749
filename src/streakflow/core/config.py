"""Configuration and settings for the flow mesh pipeline."""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StartMethod(str, Enum):
    """Multiprocessing start method for the delegated worker."""

    SPAWN = "spawn"  # Fresh interpreter, safe with JAX
    FORKSERVER = "forkserver"
    FORK = "fork"  # Fastest, but unsafe once JAX has started threads


class TraceSettings(BaseSettings):
    """Smoothing and particle tracing configuration."""

    model_config = SettingsConfigDict(env_prefix="FLOW_TRACE_")

    # Gaussian smoothing sigma (cells)
    smoothing: float = Field(default=10.0, gt=0)

    # Distance advanced per integration step (cells)
    segment_length: float = Field(default=10.0, gt=0)

    # Step cap; a line has at most vertices_per_line + 1 vertices
    vertices_per_line: int = Field(default=100, gt=0)

    # Multiplier applied to sampled velocities
    speed_scale: float = Field(default=0.1, gt=0)

    # Number of seeded lines per mesh
    lines_per_visualization: int = Field(default=4000, gt=0)

    # Traces stop below this speed (cells/s, after scaling)
    min_speed_threshold: float = Field(default=0.001, gt=0)

    # Smoothed cells with less kernel support than this become zero
    min_weight_threshold: float = Field(default=0.001, gt=0)


class MeshSettings(BaseSettings):
    """Ribbon mesh and cooperative scheduling configuration."""

    model_config = SettingsConfigDict(env_prefix="FLOW_MESH_")

    # Numerator of the per-segment display speed (distance / dt)
    distance_unit: float = Field(default=1.0, gt=0)

    # Work done between cooperative yields (milliseconds)
    processing_quantum_ms: float = Field(default=100.0, gt=0)


class WorkerSettings(BaseSettings):
    """Delegated worker process configuration."""

    model_config = SettingsConfigDict(env_prefix="FLOW_WORKER_")

    start_method: StartMethod = StartMethod.SPAWN

    # Seconds to wait for a fresh worker to report ready
    startup_timeout: float = Field(default=30.0, gt=0)

    # Seconds between checks of the reply pipe and cancellation token
    poll_interval: float = Field(default=0.05, gt=0)

    # Seconds to wait for a worker to acknowledge an abort
    abort_grace: float = Field(default=5.0, gt=0)


class Settings(BaseSettings):
    """Master configuration aggregating all subsystems."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        env_prefix="FLOW_",
        extra="ignore",
    )

    trace: TraceSettings = Field(default_factory=TraceSettings)
    mesh: MeshSettings = Field(default_factory=MeshSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)

    # Random seed shared by seeding and mesh phases (None = fresh entropy)
    seed: int | None = None

    # Run the pipeline in a worker process instead of the caller's thread
    use_worker: bool = False

    # Debug mode
    debug: bool = False


def get_settings() -> Settings:
    """Load settings from environment and .env file."""
    return Settings()
