"""Execution contexts for the mesh pipeline.

Both processors expose the same coroutine,
``create_stream_lines_mesh(grid, smoothing, token, seed)``, and return
byte-identical meshes for the same inputs and seed:

- MainFlowProcessor runs the pipeline on the caller's event loop.
- WorkerFlowProcessor runs it in a separate worker process, moving the
  grid there and the mesh buffers back through shared memory.
"""

import asyncio
import logging
import multiprocessing as mp
import time
from multiprocessing.connection import Connection
from multiprocessing.process import BaseProcess
from typing import Protocol

import numpy as np

from streakflow.core.config import Settings, get_settings
from streakflow.core.errors import DelegationError, GridShapeError, MeshCancelled
from streakflow.models.grid import VelocityGrid
from streakflow.pipeline.data import Mesh
from streakflow.pipeline.driver import CancellationToken, PipelineDriver, resolve_seed
from streakflow.pipeline.transfer import BufferHandle, adopt_array, export_array, release
from streakflow.pipeline.worker import OP_ABORT, OP_CLOSE, OP_MESH, OP_READY, worker_main

logger = logging.getLogger(__name__)


class FlowProcessor(Protocol):
    """Converts velocity grids into streamline meshes."""

    async def create_stream_lines_mesh(
        self,
        grid: VelocityGrid,
        smoothing: float | None = None,
        token: CancellationToken | None = None,
        seed: int | None = None,
    ) -> Mesh: ...

    def close(self) -> None: ...


class _ProcessorBase:
    settings: Settings

    def _prepare(self, smoothing: float | None, seed: int | None) -> tuple[float, int]:
        if smoothing is None:
            smoothing = self.settings.trace.smoothing
        if not smoothing > 0:
            raise GridShapeError(f"smoothing sigma must be positive, got {smoothing}")
        return smoothing, resolve_seed(seed if seed is not None else self.settings.seed)

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await asyncio.to_thread(self.close)


class MainFlowProcessor(_ProcessorBase):
    """Runs the pipeline in the caller's thread, yielding cooperatively."""

    def __init__(self, settings: Settings | None = None, **driver_kwargs):
        self.settings = settings or get_settings()
        self.driver_kwargs = driver_kwargs

    async def create_stream_lines_mesh(
        self,
        grid: VelocityGrid,
        smoothing: float | None = None,
        token: CancellationToken | None = None,
        seed: int | None = None,
    ) -> Mesh:
        smoothing, seed = self._prepare(smoothing, seed)
        driver = PipelineDriver(self.settings, **self.driver_kwargs)
        return await driver.run(
            grid,
            smoothing,
            token or CancellationToken(),
            np.random.default_rng(seed),
        )


class WorkerFlowProcessor(_ProcessorBase):
    """Runs the pipeline in a dedicated worker process.

    The worker is started on first use and restarted if it dies. Calls are
    serialized: one request is in flight at a time.

    Failure modes beyond the local processor's:
    - DelegationError when the worker cannot start, dies, or reports an error.
    - MeshCancelled when the token fires before a reply arrives; the worker
      is sent an abort and given ``abort_grace`` seconds to acknowledge it
      before being terminated.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._process: BaseProcess | None = None
        self._conn: Connection | None = None
        self._lock = asyncio.Lock()
        self._next_id = 0

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.is_alive()

    def _start(self) -> Connection:
        cfg = self.settings.worker
        ctx = mp.get_context(cfg.start_method.value)
        parent_conn, child_conn = ctx.Pipe(duplex=True)
        process = ctx.Process(
            target=worker_main,
            args=(child_conn, self.settings.model_dump_json()),
            name="streakflow-worker",
            daemon=True,
        )
        process.start()
        child_conn.close()

        try:
            ready = parent_conn.poll(cfg.startup_timeout)
            hello = parent_conn.recv() if ready else None
        except (EOFError, OSError) as exc:
            hello = None
            logger.warning("Worker pipe closed during startup: %s", exc)

        if not hello or hello.get("op") != OP_READY:
            process.terminate()
            process.join(1.0)
            parent_conn.close()
            raise DelegationError(
                f"worker did not become ready within {cfg.startup_timeout:.0f}s "
                f"(exit code {process.exitcode})"
            )

        logger.info("Started flow worker (pid %s)", hello.get("pid"))
        self._process = process
        self._conn = parent_conn
        return parent_conn

    def _terminate(self) -> None:
        if self._process is not None:
            logger.warning("Terminating flow worker (pid %s)", self._process.pid)
            self._process.terminate()
            self._process.join(1.0)
        if self._conn is not None:
            self._conn.close()
        self._process = None
        self._conn = None

    def _connection(self) -> Connection:
        if self._conn is not None and self.is_running:
            return self._conn
        if self._process is not None:
            logger.warning("Flow worker exited (code %s); restarting", self._process.exitcode)
            self._terminate()
        return self._start()

    def _exchange(
        self,
        request: dict,
        token: CancellationToken,
    ) -> tuple[dict, bool]:
        """Send a request and wait for its reply (blocking).

        Returns:
            The reply and whether an abort was sent while waiting.
        """
        cfg = self.settings.worker
        conn = self._connection()
        request_id = request["id"]

        try:
            conn.send(request)
        except (BrokenPipeError, OSError) as exc:
            self._terminate()
            raise DelegationError("could not send request to worker") from exc

        abort_sent_at: float | None = None
        while True:
            try:
                if conn.poll(cfg.poll_interval):
                    reply = conn.recv()
                    if reply.get("id") == request_id:
                        return reply, abort_sent_at is not None
                    logger.debug("Discarding stale worker reply %r", reply.get("id"))
                    release(reply.get("vertex"))
                    release(reply.get("index"))
                    continue
            except (EOFError, OSError) as exc:
                self._terminate()
                raise DelegationError("worker connection lost mid-call") from exc

            if not self.is_running:
                exitcode = self._process.exitcode if self._process else None
                self._terminate()
                raise DelegationError(f"worker died mid-call (exit code {exitcode})")

            if abort_sent_at is None:
                if token.cancelled:
                    logger.info("Aborting worker request %d", request_id)
                    try:
                        conn.send({"op": OP_ABORT, "id": request_id})
                    except (BrokenPipeError, OSError) as exc:
                        self._terminate()
                        raise DelegationError("worker connection lost while aborting") from exc
                    abort_sent_at = time.monotonic()
            elif time.monotonic() - abort_sent_at > cfg.abort_grace:
                self._terminate()
                raise MeshCancelled("delegation")

    async def create_stream_lines_mesh(
        self,
        grid: VelocityGrid,
        smoothing: float | None = None,
        token: CancellationToken | None = None,
        seed: int | None = None,
    ) -> Mesh:
        smoothing, seed = self._prepare(smoothing, seed)
        token = (token or CancellationToken()).child()

        async with self._lock:
            token.raise_if_cancelled("delegation")
            self._next_id += 1
            grid_handle = export_array(grid.data)
            request = {
                "op": OP_MESH,
                "id": self._next_id,
                "grid": grid_handle,
                "columns": grid.columns,
                "rows": grid.rows,
                "cell_size": grid.cell_size,
                "smoothing": smoothing,
                "seed": seed,
            }

            try:
                pending = asyncio.ensure_future(asyncio.to_thread(self._exchange, request, token))
                try:
                    reply, aborted = await asyncio.shield(pending)
                except asyncio.CancelledError:
                    # Host task cancelled: abort the worker and settle buffer ownership first
                    token.cancel()
                    try:
                        reply, _ = await pending
                    except (MeshCancelled, DelegationError):
                        pass
                    else:
                        release(reply.get("vertex"))
                        release(reply.get("index"))
                    raise
            finally:
                release(grid_handle)

        return self._unpack(reply, aborted)

    def _unpack(self, reply: dict, aborted: bool) -> Mesh:
        status = reply.get("status")
        vertex: BufferHandle | None = reply.get("vertex")
        index: BufferHandle | None = reply.get("index")

        if status == "ok" and not aborted:
            try:
                vertex_data = adopt_array(vertex)
            except BaseException:
                release(index)
                raise
            index_data = adopt_array(index)
            return Mesh(vertex_data=vertex_data, index_data=index_data)

        release(vertex)
        release(index)
        if status == "ok" or status == "cancelled":
            raise MeshCancelled("delegation")
        raise DelegationError("worker failed to build the mesh", remote_error=reply.get("error"))

    def close(self) -> None:
        """Shut the worker down."""
        if self._conn is not None and self.is_running:
            try:
                self._conn.send({"op": OP_CLOSE})
            except (BrokenPipeError, OSError) as exc:
                logger.warning("Could not ask flow worker to close: %s", exc)
            self._process.join(self.settings.worker.abort_grace)
        if self._process is not None and self._process.is_alive():
            self._terminate()
            return
        if self._conn is not None:
            self._conn.close()
        self._process = None
        self._conn = None


def create_processor(settings: Settings | None = None) -> FlowProcessor:
    """Pick the execution context configured by ``settings.use_worker``."""
    settings = settings or get_settings()
    if settings.use_worker:
        return WorkerFlowProcessor(settings)
    return MainFlowProcessor(settings)


async def compute_mesh(
    grid: VelocityGrid,
    smoothing: float | None = None,
    token: CancellationToken | None = None,
    seed: int | None = None,
    processor: FlowProcessor | None = None,
) -> Mesh:
    """Compute a streamline mesh with ``processor`` (local by default)."""
    if processor is not None:
        return await processor.create_stream_lines_mesh(grid, smoothing, token, seed)
    with MainFlowProcessor() as local:
        return await local.create_stream_lines_mesh(grid, smoothing, token, seed)
