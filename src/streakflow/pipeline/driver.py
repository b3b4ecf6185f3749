"""Cooperative, cancellable mesh pipeline.

    IDLE -> SMOOTHING -> SAMPLING -> TRACING -> MESH_BUILDING -> DONE
      \\__________\\___________\\__________\\_____________-> CANCELLED

Tracing and mesh building work one line at a time. After each line the
driver looks at how long it has been running since it last gave up
control; past the processing quantum it awaits its ``rest`` primitive so
the event loop can run other tasks. The cancellation token is checked on
entry to every stage and before every line. A cancelled run raises
``MeshCancelled`` and never returns a partial mesh.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Self

import numpy as np

from streakflow.core.config import Settings, get_settings
from streakflow.core.errors import MeshCancelled
from streakflow.models.field import sample
from streakflow.models.grid import VelocityGrid, smooth
from streakflow.pipeline.data import Mesh
from streakflow.pipeline.mesh import MeshBuilder
from streakflow.simulation.tracer import Streamline, TraceParams, draw_seed, trace_with

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    """Driver states; DONE and CANCELLED are terminal."""

    IDLE = "idle"
    SMOOTHING = "smoothing"
    SAMPLING = "sampling"
    TRACING = "tracing"
    MESH_BUILDING = "mesh_building"
    DONE = "done"
    CANCELLED = "cancelled"


class CancellationToken:
    """One-shot, thread-safe cancellation flag.

    A token may carry a ``deadline`` on the ``clock`` timeline after which
    it reports cancelled on its own. Tokens made with ``child()`` are
    cancelled whenever their parent is, but cancelling a child leaves the
    parent alone.
    """

    def __init__(
        self,
        deadline: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        parent: "CancellationToken | None" = None,
    ):
        self._event = threading.Event()
        self._deadline = deadline
        self._clock = clock
        self._parent = parent

    @classmethod
    def with_timeout(cls, seconds: float, clock: Callable[[], float] = time.monotonic) -> Self:
        return cls(deadline=clock() + seconds, clock=clock)

    def child(self) -> "CancellationToken":
        return CancellationToken(clock=self._clock, parent=self)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            return True
        return self._parent is not None and self._parent.cancelled

    def raise_if_cancelled(self, stage: str | None = None) -> None:
        if self.cancelled:
            raise MeshCancelled(stage)


async def rest() -> None:
    """Yield control to the event loop for one iteration."""
    await asyncio.sleep(0)


class PipelineDriver:
    """Runs smoothing, sampling, tracing and mesh building for one call.

    Drivers are single-use: create one per computation.

    Args:
        settings: Pipeline settings; loaded from the environment if None.
        clock: Wall-clock source in seconds, used to meter the quantum.
        rest: Coroutine function awaited at every suspension point.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.perf_counter,
        rest: Callable[[], Awaitable[None]] = rest,
    ):
        self.settings = settings or get_settings()
        self.clock = clock
        self.rest = rest
        self.stage = PipelineStage.IDLE
        self.yields = 0
        self.lines_traced = 0
        self.lines_meshed = 0
        self._quantum = self.settings.mesh.processing_quantum_ms / 1000.0
        self._rest_time = 0.0

    def _enter(self, stage: PipelineStage, token: CancellationToken) -> None:
        token.raise_if_cancelled(stage.value)
        logger.debug("Pipeline stage: %s -> %s", self.stage.value, stage.value)
        self.stage = stage

    async def _checkpoint(self, token: CancellationToken) -> None:
        """Suspend if the quantum is used up, then check for cancellation."""
        now = self.clock()
        if now - self._rest_time > self._quantum:
            self._rest_time = now
            self.yields += 1
            await self.rest()
        token.raise_if_cancelled(self.stage.value)

    async def run(
        self,
        grid: VelocityGrid,
        smoothing: float,
        token: CancellationToken,
        rng: np.random.Generator,
    ) -> Mesh:
        """Compute the streamline mesh for ``grid``.

        Args:
            grid: Input velocity grid; not modified.
            smoothing: Gaussian sigma in cells.
            token: Checked at every stage entry and before every line.
            rng: Random source for seeds and per-line phase offsets.

        Returns:
            The finished mesh.

        Raises:
            MeshCancelled: If ``token`` was cancelled before completion.
            GridShapeError: If ``smoothing`` is not positive.
        """
        if self.stage is not PipelineStage.IDLE:
            raise RuntimeError(f"driver already used (stage {self.stage.value})")

        trace_settings = self.settings.trace
        lines: list[Streamline] = []

        try:
            self._enter(PipelineStage.SMOOTHING, token)
            smoothed = smooth(grid, smoothing, trace_settings.min_weight_threshold)

            self._enter(PipelineStage.SAMPLING, token)
            field = sample(smoothed)

            self._enter(PipelineStage.TRACING, token)
            params = TraceParams.from_settings(trace_settings, grid.cell_size)
            self._rest_time = self.clock()
            for _ in range(trace_settings.lines_per_visualization):
                await self._checkpoint(token)
                x0, y0 = draw_seed(rng, grid.columns, grid.rows)
                lines.append(trace_with(field, x0, y0, params))
                self.lines_traced += 1

            self._enter(PipelineStage.MESH_BUILDING, token)
            builder = MeshBuilder(rng, self.settings.mesh.distance_unit)
            for line in lines:
                await self._checkpoint(token)
                builder.add_line(line)
                self.lines_meshed += 1
            mesh = builder.build()

        except MeshCancelled:
            logger.info(
                "Mesh computation cancelled during %s (%d lines traced, %d meshed)",
                self.stage.value,
                self.lines_traced,
                self.lines_meshed,
            )
            self.stage = PipelineStage.CANCELLED
            raise
        finally:
            lines.clear()

        self.stage = PipelineStage.DONE
        logger.debug(
            "Mesh complete: %d vertices, %d triangles, %d yields",
            mesh.vertex_count,
            mesh.triangle_count,
            self.yields,
        )
        return mesh


def resolve_seed(seed: int | None) -> int:
    """Return ``seed``, or fresh entropy when it is None."""
    if seed is not None:
        return seed
    return int(np.random.SeedSequence().entropy)


async def create_stream_lines_mesh(
    grid: VelocityGrid,
    smoothing: float | None = None,
    token: CancellationToken | None = None,
    seed: int | None = None,
    settings: Settings | None = None,
) -> Mesh:
    """Run the full pipeline in the current thread.

    Args:
        grid: Input velocity grid.
        smoothing: Gaussian sigma in cells; settings default if None.
        token: Cancellation token; a fresh one if None.
        seed: Random seed; settings default, then fresh entropy, if None.
        settings: Pipeline settings.

    Returns:
        The streamline mesh.
    """
    settings = settings or get_settings()
    if smoothing is None:
        smoothing = settings.trace.smoothing
    rng = np.random.default_rng(resolve_seed(seed if seed is not None else settings.seed))
    driver = PipelineDriver(settings)
    return await driver.run(grid, smoothing, token or CancellationToken(), rng)
