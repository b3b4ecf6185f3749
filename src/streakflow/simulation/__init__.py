"""Particle tracing through velocity fields."""

from streakflow.simulation.tracer import (
    Streamline,
    TraceParams,
    TraceVertex,
    generate_batch,
    iter_streamlines,
    trace,
)

__all__ = [
    "Streamline",
    "TraceParams",
    "TraceVertex",
    "generate_batch",
    "iter_streamlines",
    "trace",
]
