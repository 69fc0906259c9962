"""
VOL Container Format
====================

Reading and writing of the binary VOL grid container. The container is a fixed 48-byte little-endian header
followed by the raw voxel payload:

+--------------------+-----------------+----------------------------------------------------------+
| Field              | Type            | Meaning                                                  |
+====================+=================+==========================================================+
| ``magic``          | 3 bytes         | the literal ``b"VOL"``                                   |
+--------------------+-----------------+----------------------------------------------------------+
| ``version``        | ``uint8``       | format version, currently 3                              |
+--------------------+-----------------+----------------------------------------------------------+
| ``encoding``       | ``int32``       | :py:class:`~volume_data.grids._types.EncodingKind`       |
+--------------------+-----------------+----------------------------------------------------------+
| ``resolution``     | 3 x ``int32``   | lattice dimensions ``(nx, ny, nz)``                      |
+--------------------+-----------------+----------------------------------------------------------+
| ``channels``       | ``int32``       | 1, 2 or 3                                                |
+--------------------+-----------------+----------------------------------------------------------+
| ``bbox``           | 6 x ``float32`` | ``min.xyz`` followed by ``max.xyz``                      |
+--------------------+-----------------+----------------------------------------------------------+

The payload stores voxels with the channel axis varying fastest, then ``x``, ``y`` and ``z``.

Loading is a single blocking call: the header is parsed and validated, then the payload is either copied into
an owned buffer or mapped from the file, depending on the ``grid.storage`` configuration value.

Examples
--------
>>> write_null_volume("density.vol", EncodingKind.FLOAT32, 1, (11, 11, 11), [[0, 0, 0], [10, 10, 10]])
>>> volume = load_volume("density.vol", editable=True)
>>> volume.resolution
(11, 11, 11)
"""
import io
import os
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

import numpy as np

from volume_data.grids._types import (
    AxisAlignedBoundingBox,
    BoundingBoxLike,
    DomainShape,
    EncodingKind,
    FormatError,
    RangePolicy,
)
from volume_data.grids.codecs import get_codec
from volume_data.grids.storage import MappedStorage, MemoryStorage
from volume_data.grids.volume import GridVolume
from volume_data.utilities.config import vdparams
from volume_data.utilities.logging import mylog

VOL_MAGIC: bytes = b"VOL"
VOL_VERSION: int = 3

HEADER_DTYPE = np.dtype(
    [
        ("magic", "S3"),
        ("version", "u1"),
        ("encoding", "<i4"),
        ("resolution", "<i4", (3,)),
        ("channels", "<i4"),
        ("bbox", "<f4", (2, 3)),
    ]
)
""":py:class:`numpy.dtype`: Packed structured layout of the VOL header."""

HEADER_SIZE: int = HEADER_DTYPE.itemsize

STORAGE_MODES = ("auto", "memory", "mmap")


@dataclass(frozen=True)
class VolumeHeader:
    """Validated contents of a VOL header."""

    version: int
    encoding: EncodingKind
    resolution: tuple[int, int, int]
    channel_count: int
    bbox: AxisAlignedBoundingBox

    @property
    def payload_size(self) -> int:
        """Payload size in bytes implied by the header."""
        nx, ny, nz = self.resolution
        return nx * ny * nz * get_codec(self.encoding).voxel_size(self.channel_count)

    def to_bytes(self) -> bytes:
        header = np.zeros((), dtype=HEADER_DTYPE)
        header["magic"] = VOL_MAGIC
        header["version"] = self.version
        header["encoding"] = int(self.encoding)
        header["resolution"] = self.resolution
        header["channels"] = self.channel_count
        header["bbox"] = self.bbox.as_array()
        return header.tobytes()


def parse_header(data: bytes) -> VolumeHeader:
    """
    Parse and validate the 48 header bytes of a VOL container.

    Parameters
    ----------
    data : bytes
        The header bytes.

    Returns
    -------
    VolumeHeader
        The validated header.

    Raises
    ------
    FormatError
        If the header is truncated, the magic or version do not match, the encoding is unknown, the channel
        count is illegal for the encoding, the resolution is not positive, or the bounding box is degenerate.
    """
    if len(data) < HEADER_SIZE:
        raise FormatError(f"Truncated VOL header: expected {HEADER_SIZE} bytes, got {len(data)}.")

    header = np.frombuffer(data[:HEADER_SIZE], dtype=HEADER_DTYPE)[0]

    if bytes(header["magic"]) != VOL_MAGIC:
        raise FormatError(f"Bad magic {bytes(header['magic'])!r}; this is not a VOL container.")

    version = int(header["version"])
    if version != VOL_VERSION:
        raise FormatError(f"Unsupported VOL version {version}; only version {VOL_VERSION} is recognized.")

    codec = get_codec(int(header["encoding"]))
    channel_count = int(header["channels"])
    codec.validate_channels(channel_count)

    resolution = tuple(int(n) for n in header["resolution"])
    if any(n < 1 for n in resolution):
        raise FormatError(f"Invalid resolution {resolution}; every axis needs at least one node.")

    bbox = np.asarray(header["bbox"], dtype=np.float64)
    try:
        bbox = AxisAlignedBoundingBox(bbox[0], bbox[1])
    except ValueError as er:
        raise FormatError(f"Invalid bounding box in VOL header: {er}") from er

    return VolumeHeader(
        version=version,
        encoding=codec.KIND,
        resolution=resolution,
        channel_count=channel_count,
        bbox=bbox,
    )


def read_header(stream: BinaryIO) -> VolumeHeader:
    """Read and validate a VOL header from the current position of ``stream``."""
    return parse_header(stream.read(HEADER_SIZE))


def _resolve_storage_mode(storage: str | None, editable: bool, mappable: bool) -> str:
    if storage is None:
        storage = vdparams["grid", "storage"]
    if storage not in STORAGE_MODES:
        raise ValueError(f"Unknown storage mode {storage!r}; expected one of {STORAGE_MODES}.")

    if storage == "auto":
        storage = "memory" if editable else "mmap"
    if storage == "mmap" and not mappable:
        mylog.debug("Source is not a file on disk; falling back to in-memory storage.")
        storage = "memory"

    return storage


def load_volume(
    source: str | Path | BinaryIO,
    editable: bool = False,
    storage: str | None = None,
    range_policy: RangePolicy | str | None = None,
) -> GridVolume:
    """
    Load a VOL container.

    Parameters
    ----------
    source : str, pathlib.Path or binary file object
        The file to read. Streams are always copied into an owned buffer.
    editable : bool, optional
        Open the volume for in-place edits. Default is ``False``.
    storage : str, optional
        ``"memory"`` for an owned buffer, ``"mmap"`` for a memory mapping of the file (write-through when
        ``editable``), or ``"auto"`` to pick memory for editable volumes and a read-only mapping otherwise.
        Defaults to the ``grid.storage`` configuration value.
    range_policy : RangePolicy or str, optional
        Out-of-domain lookup policy forwarded to :py:class:`GridVolume`.

    Returns
    -------
    GridVolume
        The loaded volume.

    Raises
    ------
    FormatError
        If the header is invalid or the payload length does not match the header.
    AllocationFailure
        If the payload cannot be allocated or mapped.
    """
    if isinstance(source, (str, os.PathLike)):
        path = Path(source)
        with open(path, "rb") as fio:
            header = read_header(fio)
            mode = _resolve_storage_mode(storage, editable, mappable=True)

            payload_size = os.fstat(fio.fileno()).st_size - HEADER_SIZE
            _check_payload_size(header, payload_size, path)

            if mode == "memory":
                volume_storage = MemoryStorage(header.payload_size, payload=fio.read())
            else:
                volume_storage = None

        if volume_storage is None:
            volume_storage = MappedStorage(path, HEADER_SIZE, header.payload_size, writable=editable)
    else:
        path = None
        header = read_header(source)
        _resolve_storage_mode(storage, editable, mappable=False)

        payload = source.read()
        _check_payload_size(header, len(payload), "<stream>")
        volume_storage = MemoryStorage(header.payload_size, payload=payload)

    volume = GridVolume(
        header.resolution,
        header.channel_count,
        header.encoding,
        header.bbox,
        volume_storage,
        editable=editable,
        path=path,
        range_policy=range_policy,
    )
    mylog.info(f"Loaded {volume} from {path if path is not None else '<stream>'} ({volume_storage}).")

    return volume


def _check_payload_size(header: VolumeHeader, size: int, origin):
    if size != header.payload_size:
        raise FormatError(
            f"Payload of {origin} holds {size} bytes but the header declares {header.payload_size}."
        )


def volume_header(volume: GridVolume) -> VolumeHeader:
    """Build the header describing ``volume``."""
    return VolumeHeader(
        version=VOL_VERSION,
        encoding=volume.encoding,
        resolution=volume.resolution,
        channel_count=volume.channel_count,
        bbox=volume.bbox,
    )


def save_volume(volume: GridVolume, target: str | Path | BinaryIO):
    """
    Write ``volume`` as a VOL container.

    Parameters
    ----------
    volume : GridVolume
        The volume to write.
    target : str, pathlib.Path or binary file object
        The destination. When it is the file already mapped by ``volume``, pending edits are flushed in place
        instead of rewriting the file.
    """
    if isinstance(target, (str, os.PathLike)):
        target = Path(target)

        if (
            volume.path is not None
            and volume.storage.persistent
            and target.exists()
            and target.resolve() == volume.path.resolve()
        ):
            volume.flush()
            return

        with open(target, "wb") as fio:
            _write_volume(volume, fio)

        if volume.path is not None and target.resolve() == volume.path.resolve():
            volume.dirty = False
        mylog.info(f"Saved {volume} to {target}.")
    else:
        _write_volume(volume, target)


def _write_volume(volume: GridVolume, stream: BinaryIO):
    stream.write(volume_header(volume).to_bytes())
    stream.write(np.ascontiguousarray(volume.voxels).tobytes())


def write_null_volume(
    target: str | Path | BinaryIO,
    encoding: EncodingKind | int,
    channel_count: int,
    resolution: DomainShape,
    bbox: BoundingBoxLike,
):
    """
    Write a zero-initialized VOL container.

    Parameters
    ----------
    target : str, pathlib.Path or binary file object
        The destination.
    encoding : EncodingKind or int
        The per-voxel encoding.
    channel_count : int
        The declared channel count.
    resolution : array-like of int
        The lattice dimensions ``(nx, ny, nz)``.
    bbox : array-like
        The world-space extent.
    """
    with GridVolume.empty(resolution, channel_count, encoding, bbox, editable=False) as volume:
        save_volume(volume, target)


def volume_bytes(volume: GridVolume) -> bytes:
    """Serialize ``volume`` into an in-memory VOL container."""
    buffer = io.BytesIO()
    _write_volume(volume, buffer)
    return buffer.getvalue()
