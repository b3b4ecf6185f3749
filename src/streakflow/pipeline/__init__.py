"""Streamline mesh pipeline with local and worker-process execution.

Architecture:
┌─────────────────┐     ┌──────────────────┐     ┌─────────────────┐
│  VelocityGrid   │────▶│  smooth + sample │────▶│  trace lines    │
│  (u, v per cell)│     │  (GridField)     │     │  (chunked)      │
└─────────────────┘     └──────────────────┘     └─────────────────┘
                                                          │
                                                          ▼
                                                 ┌──────────────────┐
                                                 │  MeshBuilder     │
                                                 │  (chunked)       │
                                                 └──────────────────┘
                                                          │
                                                          ▼
                                                 ┌─────────────────┐
                                                 │  Mesh           │
                                                 │  (vertex/index) │
                                                 └─────────────────┘

The whole chain runs either on the caller's event loop
(MainFlowProcessor) or in a worker process (WorkerFlowProcessor).
"""

from streakflow.pipeline.data import FLOATS_PER_VERTEX, VERTEX_ATTRIBUTES, Mesh
from streakflow.pipeline.driver import (
    CancellationToken,
    PipelineDriver,
    PipelineStage,
    create_stream_lines_mesh,
)
from streakflow.pipeline.mesh import MeshBuilder, build_mesh
from streakflow.pipeline.processors import (
    FlowProcessor,
    MainFlowProcessor,
    WorkerFlowProcessor,
    compute_mesh,
    create_processor,
)

__all__ = [
    "FLOATS_PER_VERTEX",
    "VERTEX_ATTRIBUTES",
    "CancellationToken",
    "FlowProcessor",
    "MainFlowProcessor",
    "Mesh",
    "MeshBuilder",
    "PipelineDriver",
    "PipelineStage",
    "WorkerFlowProcessor",
    "build_mesh",
    "compute_mesh",
    "create_processor",
    "create_stream_lines_mesh",
]
