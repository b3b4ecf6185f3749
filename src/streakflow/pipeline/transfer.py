"""Moving arrays between processes through named shared memory.

Array payloads never travel through the pipe: the sender places the data
in a ``SharedMemory`` segment and passes a small ``BufferHandle``. Whoever
adopts the handle unlinks its name and uses the mapped data in place,
after which the handle is dead. ``release`` unlinks a segment that was
never adopted.
"""

import logging
from dataclasses import dataclass
from multiprocessing.shared_memory import SharedMemory

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BufferHandle:
    """Picklable reference to a 1-D array held in shared memory."""

    name: str
    dtype: str
    length: int

    @property
    def nbytes(self) -> int:
        return np.dtype(self.dtype).itemsize * self.length


def export_array(arr: np.ndarray) -> BufferHandle:
    """Place a flat copy of ``arr`` in a new shared memory segment.

    The caller gives up the returned handle by sending it to another
    process, or must ``release`` it.
    """
    arr = np.ascontiguousarray(arr).reshape(-1)
    # Zero-size segments are rejected by the OS
    shm = SharedMemory(create=True, size=max(arr.nbytes, 1))
    try:
        view = np.ndarray(arr.shape, dtype=arr.dtype, buffer=shm.buf)
        view[:] = arr
        del view
    except BaseException:
        shm.close()
        shm.unlink()
        raise
    shm.close()
    return BufferHandle(name=shm.name, dtype=arr.dtype.str, length=arr.size)


class _MappedArray(np.ndarray):
    """Owner of an adopted segment's data; the mapping closes with it."""


def adopt_array(handle: BufferHandle) -> np.ndarray:
    """Take ownership of a shared segment's data without copying it.

    The segment's name is unlinked straight away; the mapping stays valid
    for as long as the returned array (or any view of it) is alive.

    Raises:
        FileNotFoundError: If the segment was already adopted or released.
    """
    shm = SharedMemory(name=handle.name)
    shm.unlink()
    try:
        owner = np.ndarray(
            (handle.length,), dtype=np.dtype(handle.dtype), buffer=shm.buf
        ).view(_MappedArray)
    except BaseException:
        shm.close()
        raise
    # Closed by SharedMemory.__del__ once the last view of the data is gone
    owner._shm = shm
    return owner.view(np.ndarray)


def release(handle: BufferHandle | None) -> bool:
    """Unlink a segment nobody adopted.

    Returns:
        True if the segment still existed and was removed.
    """
    if handle is None:
        return False
    try:
        shm = SharedMemory(name=handle.name)
    except FileNotFoundError:
        return False
    shm.close()
    shm.unlink()
    logger.debug("Released unadopted buffer %s (%d bytes)", handle.name, handle.nbytes)
    return True
