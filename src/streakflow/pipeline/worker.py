"""Isolated worker process running the mesh pipeline.

Protocol (dicts over a duplex ``multiprocessing`` pipe):

    worker -> parent   {"op": "ready", "pid"}
    parent -> worker   {"op": "create_stream_lines_mesh", "id", "grid": BufferHandle,
                        "columns", "rows", "cell_size", "smoothing", "seed"}
    parent -> worker   {"op": "abort", "id"}
    parent -> worker   {"op": "close"}
    worker -> parent   {"id", "status": "ok", "vertex": BufferHandle, "index": BufferHandle}
                       {"id", "status": "cancelled"}
                       {"id", "status": "error", "error": str}

The worker adopts the grid segment as soon as it reads a request and
hands result segments back to the parent, which adopts them in turn.
"""

import asyncio
import logging
import os
from multiprocessing.connection import Connection

from streakflow.core.config import Settings
from streakflow.core.errors import MeshCancelled
from streakflow.models.grid import VelocityGrid
from streakflow.pipeline.driver import CancellationToken, create_stream_lines_mesh
from streakflow.pipeline.transfer import adopt_array, export_array, release

logger = logging.getLogger(__name__)

OP_READY = "ready"
OP_MESH = "create_stream_lines_mesh"
OP_ABORT = "abort"
OP_CLOSE = "close"


class PipeAbortToken(CancellationToken):
    """Token that turns abort messages for one request into cancellation.

    Checking the token drains pending messages from the pipe, so an abort
    sent while the pipeline runs is seen at the next checkpoint.
    """

    def __init__(self, conn: Connection, request_id: int):
        super().__init__()
        self.conn = conn
        self.request_id = request_id
        self.close_requested = False

    @property
    def cancelled(self) -> bool:
        while not self._event.is_set() and self.conn.poll():
            message = self.conn.recv()
            op = message.get("op")
            if op == OP_ABORT and message.get("id") == self.request_id:
                self.cancel()
            elif op == OP_CLOSE:
                self.close_requested = True
                self.cancel()
        return self._event.is_set()


def _handle_request(conn: Connection, message: dict, settings: Settings) -> bool:
    """Serve one mesh request. Returns False if the worker should exit."""
    request_id = message["id"]
    token = PipeAbortToken(conn, request_id)

    try:
        data = adopt_array(message["grid"])
        grid = VelocityGrid(data, message["columns"], message["rows"], message["cell_size"])
        mesh = asyncio.run(
            create_stream_lines_mesh(
                grid,
                smoothing=message["smoothing"],
                token=token,
                seed=message["seed"],
                settings=settings,
            )
        )
    except MeshCancelled:
        conn.send({"id": request_id, "status": "cancelled"})
        return not token.close_requested
    except Exception as exc:
        logger.exception("Worker request %d failed", request_id)
        conn.send({"id": request_id, "status": "error", "error": f"{type(exc).__name__}: {exc}"})
        return True

    vertex = export_array(mesh.vertex_data)
    index = export_array(mesh.index_data)
    try:
        conn.send({"id": request_id, "status": "ok", "vertex": vertex, "index": index})
    except (BrokenPipeError, OSError):
        release(vertex)
        release(index)
        raise
    return True


def worker_main(conn: Connection, settings_json: str) -> None:
    """Entry point of the worker process.

    Args:
        conn: Worker end of the duplex pipe.
        settings_json: Parent's settings, so both sides run identical parameters.
    """
    settings = Settings.model_validate_json(settings_json)
    conn.send({"op": OP_READY, "pid": os.getpid()})

    while True:
        try:
            message = conn.recv()
        except EOFError:
            break

        op = message.get("op")
        if op == OP_CLOSE:
            break
        if op == OP_ABORT:
            # The request already finished
            continue
        if op == OP_MESH:
            try:
                keep_running = _handle_request(conn, message, settings)
            except (BrokenPipeError, EOFError, OSError):
                break
            if not keep_running:
                break
        else:
            logger.warning("Worker ignoring unknown message op %r", op)

    conn.close()
