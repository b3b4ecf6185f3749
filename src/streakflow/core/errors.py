"""Exception taxonomy.

Cancellation is an outcome, not a failure, so ``MeshCancelled`` sits
outside the ``FlowError`` hierarchy.
"""


class FlowError(Exception):
    """Base class for failures raised by streakflow."""


class GridShapeError(FlowError, ValueError):
    """A grid's buffer does not match its declared shape."""


class DelegationError(FlowError):
    """The isolated worker could not complete a call.

    Raised when the worker is unreachable, dies mid-call, or reports a
    failure of its own. ``remote_error`` holds the worker's message when
    one was received.
    """

    def __init__(self, message: str, remote_error: str | None = None):
        super().__init__(message)
        self.remote_error = remote_error


class MeshCancelled(Exception):
    """The mesh computation was cancelled before it produced a result."""

    def __init__(self, stage: str | None = None):
        super().__init__(f"mesh computation cancelled during {stage or 'startup'}")
        self.stage = stage
