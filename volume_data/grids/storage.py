"""
Payload Storage
===============

Backing stores for the raw voxel payload of a :py:class:`~volume_data.grids.volume.GridVolume`.

Two implementations share the :py:class:`VolumeStorage` interface:

- :py:class:`MemoryStorage` owns a writable in-memory buffer.
- :py:class:`MappedStorage` maps the payload region of a file with :py:class:`numpy.memmap`. The mapping is
  read-only by default; a writable mapping writes edits through to the file on :py:meth:`VolumeStorage.flush`.

Both expose the payload as a flat ``uint8`` numpy array through :py:attr:`VolumeStorage.data`.
"""
from abc import ABC, abstractmethod
from pathlib import Path

import numpy as np
from numpy.typing import NDArray

from volume_data.grids._types import AllocationFailure


class VolumeStorage(ABC):
    """
    Abstract payload store.

    Attributes
    ----------
    writable : bool
        Whether the payload may be modified in place.
    persistent : bool
        Whether the payload is backed by a file, so that flushing writes edits to disk.
    """

    writable: bool = False
    persistent: bool = False

    def __len__(self) -> int:
        return int(self.data.size)

    @property
    @abstractmethod
    def data(self) -> NDArray[np.uint8]:
        """The payload as a flat ``uint8`` array."""
        pass

    @property
    def closed(self) -> bool:
        return False

    def flush(self):
        """Push pending writes to the backing medium, if there is one."""
        pass

    def close(self):
        """Release the payload."""
        pass


class MemoryStorage(VolumeStorage):
    """
    Owned, writable in-memory payload.

    Parameters
    ----------
    size : int
        Payload size in bytes. The buffer is zero initialized unless ``payload`` is given.
    payload : bytes, optional
        Initial content; must contain exactly ``size`` bytes.
    """

    writable = True

    def __init__(self, size: int, payload: bytes | None = None):
        try:
            if payload is None:
                self._data = np.zeros(size, dtype=np.uint8)
            else:
                self._data = np.frombuffer(bytearray(payload), dtype=np.uint8)
        except (MemoryError, ValueError) as er:
            raise AllocationFailure(f"Failed to allocate a payload of {size} bytes: {er}") from er

        if self._data.size != size:
            raise ValueError(f"Payload holds {self._data.size} bytes, expected {size}.")

    def __repr__(self):
        return f"<MemoryStorage: {len(self)} bytes>"

    @property
    def data(self) -> NDArray[np.uint8]:
        if self._data is None:
            raise ValueError("Storage has been closed.")
        return self._data

    @property
    def closed(self) -> bool:
        return self._data is None

    def close(self):
        self._data = None


class MappedStorage(VolumeStorage):
    """
    Memory-mapped view of the payload region of a file.

    Parameters
    ----------
    path : str or pathlib.Path
        The file to map.
    offset : int
        Byte offset of the payload within the file.
    size : int
        Payload size in bytes.
    writable : bool, optional
        Map the file with write access. Edits are written through to disk on :py:meth:`flush`. Default is
        ``False``.
    """

    persistent = True

    def __init__(self, path: str | Path, offset: int, size: int, writable: bool = False):
        self.path = Path(path)
        self.writable = writable

        try:
            self._data = np.memmap(
                self.path, dtype=np.uint8, mode="r+" if writable else "r", offset=offset, shape=(size,)
            )
        except (OSError, ValueError, MemoryError) as er:
            raise AllocationFailure(f"Failed to map {size} bytes of {self.path}: {er}") from er

    def __repr__(self):
        mode = "rw" if self.writable else "ro"
        return f"<MappedStorage ({mode}): {self.path}>"

    @property
    def data(self) -> NDArray[np.uint8]:
        if self._data is None:
            raise ValueError("Storage has been closed.")
        return self._data

    @property
    def closed(self) -> bool:
        return self._data is None

    def flush(self):
        if self._data is not None and self.writable:
            self._data.flush()

    def close(self):
        # Dropping the last reference unmaps the file.
        self._data = None
