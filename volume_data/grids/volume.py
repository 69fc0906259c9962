r"""
Grid Volume Module
==================

The :py:class:`GridVolume` is the in-memory representation of a VOL container: a resolution triple, a channel
count, an encoding, a world-space bounding box, and the payload storage holding the encoded voxels.

Mathematical Formalism
----------------------

A world point :math:`{\bf p}` is mapped to a continuous lattice coordinate

.. math::

    g_i = \frac{(p_i - b^{\rm min}_i)(N_i - 1)}{b^{\rm max}_i - b^{\rm min}_i},

so that the lattice nodes sit on the faces of the bounding box. Node :math:`(i, j, k)` lives at byte offset

.. math::

    \left((k N_y + j) N_x + i\right) \cdot s,

where :math:`s` is the voxel size of the encoding. Channels are the fastest varying axis.

Examples
--------
>>> volume = GridVolume.empty((11, 11, 11), 1, EncodingKind.FLOAT32, [[0, 0, 0], [10, 10, 10]])
>>> volume.set_voxel((1, 1, 1), 1337.0)
>>> volume.get_voxel((1, 1, 1))
array([1337.])
"""
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Collection

import h5py
import numpy as np
from numpy.typing import ArrayLike, NDArray

from volume_data.grids._types import (
    BoundingBoxLike,
    DomainShape,
    EncodingKind,
    FormatError,
    NotEditable,
    OutOfRange,
    RangePolicy,
    coerce_to_bounding_box,
    coerce_to_domain_shape,
)
from volume_data.grids.codecs import get_codec
from volume_data.grids.storage import MemoryStorage, VolumeStorage
from volume_data.utilities.config import vdparams
from volume_data.utilities.logging import VolumeLogDescriptor, devlog

if TYPE_CHECKING:
    import logging

    from volume_data.grids.codecs import Codec


class GridVolume:
    """
    A regular 3D lattice of encoded voxels.

    Parameters
    ----------
    resolution : array-like of int
        The lattice dimensions ``(nx, ny, nz)``; each must be at least 1.
    channel_count : int
        1 for scalars, 3 for colors / vectors, 2 for quantized directions.
    encoding : EncodingKind or int
        The per-voxel encoding.
    bbox : AxisAlignedBoundingBox or array-like
        The world-space extent of the lattice.
    storage : VolumeStorage
        The payload store. Its size must equal ``nx * ny * nz * voxel_size``.
    editable : bool, optional
        Allow in-place edits. Requires writable storage. Default is ``False``.
    path : str or pathlib.Path, optional
        The file the volume was loaded from, if any.
    range_policy : RangePolicy or str, optional
        Behavior for points outside of the bounding box. Defaults to the ``grid.out_of_range`` configuration
        value.

    Raises
    ------
    FormatError
        If the encoding is unknown, the channel count is illegal for the encoding, or the storage size does
        not match the declared lattice.

    Notes
    -----
    The payload is shared by every lookup and edit on the instance. Concurrent edits must be serialized by
    the caller; a lookup racing an edit may observe a partially written voxel.
    """

    logger: "logging.Logger" = VolumeLogDescriptor()

    def __init__(
        self,
        resolution: DomainShape,
        channel_count: int,
        encoding: EncodingKind | int,
        bbox: BoundingBoxLike,
        storage: VolumeStorage,
        editable: bool = False,
        path: str | Path | None = None,
        range_policy: RangePolicy | str | None = None,
    ):
        self.codec: "Codec" = get_codec(encoding)
        self.codec.validate_channels(int(channel_count))

        self.resolution: tuple[int, int, int] = coerce_to_domain_shape(resolution)
        self.channel_count: int = int(channel_count)
        self.bbox = coerce_to_bounding_box(bbox)
        self.path = Path(path) if path is not None else None

        if range_policy is None:
            range_policy = vdparams["grid", "out_of_range"]
        self.range_policy = RangePolicy(range_policy)

        if editable and not storage.writable:
            message = f"Cannot open {storage} as editable; the storage is read-only."
            storage.close()
            raise ValueError(message)
        self.editable: bool = bool(editable)
        self.dirty: bool = False

        if len(storage) != self.payload_size:
            raise FormatError(
                f"Payload holds {len(storage)} bytes but the header declares {self.payload_size} "
                f"({self.resolution} x {self.voxel_size} bytes)."
            )

        self._storage = storage
        nx, ny, nz = self.resolution
        self._voxels = storage.data.view(self.codec.DTYPE).reshape(
            nz, ny, nx, self.codec.stored_channels(self.channel_count)
        )

    def __repr__(self):
        return (
            f"<GridVolume: {self.resolution}, {self.channel_count} ch, {self.encoding.name}, "
            f"editable={self.editable}>"
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __del__(self):
        storage = getattr(self, "_storage", None)
        if storage is not None and not storage.closed:
            storage.close()

    # ------------------------------------------------------------------ #
    # Properties                                                          #
    # ------------------------------------------------------------------ #
    @property
    def encoding(self) -> EncodingKind:
        """The per-voxel encoding."""
        return self.codec.KIND

    @property
    def storage(self) -> VolumeStorage:
        return self._storage

    @property
    def voxel_size(self) -> int:
        """Size in bytes of one voxel."""
        return self.codec.voxel_size(self.channel_count)

    @property
    def value_channels(self) -> int:
        """Number of components in a decoded voxel (3 for quantized directions)."""
        return self.codec.value_channels(self.channel_count)

    @property
    def payload_size(self) -> int:
        """Expected payload size in bytes."""
        nx, ny, nz = self.resolution
        return nx * ny * nz * self.voxel_size

    @property
    def voxels(self) -> NDArray:
        """Raw encoded voxels as an ``(nz, ny, nx, stored_channels)`` view of the payload."""
        if self.closed:
            raise ValueError(f"{self} has been closed.")
        return self._voxels

    @property
    def closed(self) -> bool:
        return self._storage.closed

    @property
    def cell_size(self) -> NDArray[float]:
        """World-space spacing between adjacent lattice nodes along each axis.

        Axes with a single node report the full extent of the box.
        """
        intervals = np.maximum(np.asarray(self.resolution, dtype=np.float64) - 1, 1)
        return self.bbox.extent / intervals

    # ------------------------------------------------------------------ #
    # Addressing                                                          #
    # ------------------------------------------------------------------ #
    def world_to_lattice(self, points: ArrayLike) -> NDArray[np.float64]:
        """
        Map world points to continuous lattice coordinates.

        Parameters
        ----------
        points : array-like
            A single point of shape ``(3,)`` or a batch of shape ``(N, 3)``.

        Returns
        -------
        numpy.ndarray
            Lattice coordinates of the same shape, with the range policy applied: clamped into
            ``[0, N_i - 1]`` for :py:attr:`RangePolicy.CLAMP`.

        Raises
        ------
        OutOfRange
            If the policy is :py:attr:`RangePolicy.RAISE` and any point lies outside of the bounding box.
        """
        points = np.asarray(points, dtype=np.float64)
        if points.shape[-1] != 3:
            raise ValueError(f"Points must be 3-vectors, got trailing axis {points.shape[-1]}.")

        upper = np.asarray(self.resolution, dtype=np.float64) - 1
        g = (points - self.bbox.min) * upper / self.bbox.extent

        if self.range_policy is RangePolicy.RAISE:
            # NaN coordinates compare False and are reported as outside.
            outside = ~((points >= self.bbox.min) & (points <= self.bbox.max))
            if outside.any():
                raise OutOfRange(
                    f"Point(s) {points[outside.any(axis=-1)].tolist()} lie outside of {self.bbox}."
                )

        return np.clip(np.nan_to_num(g, nan=0.0), 0.0, upper)

    def _check_index(self, index: Collection[int]) -> tuple[int, int, int]:
        i, j, k = (int(n) for n in index)
        nx, ny, nz = self.resolution
        if not (0 <= i < nx and 0 <= j < ny and 0 <= k < nz):
            raise OutOfRange(f"Lattice index {(i, j, k)} is outside of resolution {self.resolution}.")
        return i, j, k

    def byte_offset(self, index: Collection[int]) -> int:
        """Byte offset of voxel ``(i, j, k)`` within the payload."""
        i, j, k = self._check_index(index)
        nx, ny, _ = self.resolution
        return ((k * ny + j) * nx + i) * self.voxel_size

    # ------------------------------------------------------------------ #
    # Voxel access                                                        #
    # ------------------------------------------------------------------ #
    def get_voxel(self, index: Collection[int]) -> NDArray[np.float64]:
        """Decode the voxel at lattice index ``(i, j, k)``."""
        i, j, k = self._check_index(index)
        return self.codec.decode_array(self.voxels[k, j, i])

    def set_voxel(self, index: Collection[int], value: ArrayLike):
        """
        Encode ``value`` and overwrite the voxel at lattice index ``(i, j, k)``.

        Only the bytes of that voxel are written.

        Raises
        ------
        NotEditable
            If the volume was not opened in editable mode.
        ValueError
            If ``value`` does not have one component per decoded channel.
        """
        if not self.editable:
            raise NotEditable(f"{self} was not opened in editable mode.")

        i, j, k = self._check_index(index)
        value = np.atleast_1d(np.asarray(value, dtype=np.float64))
        if value.shape != (self.value_channels,):
            raise ValueError(
                f"Expected a value with {self.value_channels} component(s), got shape {value.shape}."
            )

        self.voxels[k, j, i] = self.codec.encode_array(value)
        self.dirty = True
        devlog.debug(f"{self}: wrote voxel {(i, j, k)} = {value.tolist()}.")

    def decoded(self) -> NDArray[np.float64]:
        """Decode the full lattice into an ``(nz, ny, nx, value_channels)`` array."""
        return self.codec.decode_array(self.voxels)

    # ------------------------------------------------------------------ #
    # Lifecycle                                                           #
    # ------------------------------------------------------------------ #
    def flush(self):
        """Write pending edits through to a writable mapping and clear the dirty flag.

        Owned in-memory buffers have no backing file; their edits are only persisted by :py:meth:`save`.
        """
        if self.dirty and self._storage.persistent and self._storage.writable and not self.closed:
            self._storage.flush()
            self.logger.debug(f"Flushed {self}.")
            self.dirty = False

    def close(self):
        """Release the payload.

        Dirty writable mappings are always flushed first. Their edits share pages with the file, so they reach
        disk once the mapping is dropped regardless.
        """
        if self.closed:
            return

        self.flush()

        self._storage.close()
        self._voxels = None
        self.logger.debug(f"Closed {self}.")

    # ------------------------------------------------------------------ #
    # Construction                                                        #
    # ------------------------------------------------------------------ #
    @classmethod
    def empty(
        cls,
        resolution: DomainShape,
        channel_count: int,
        encoding: EncodingKind | int,
        bbox: BoundingBoxLike,
        editable: bool = True,
        **kwargs,
    ) -> "GridVolume":
        """
        Create a zero-initialized volume backed by an owned buffer.

        Parameters
        ----------
        resolution : array-like of int
            The lattice dimensions ``(nx, ny, nz)``.
        channel_count : int
            The declared channel count.
        encoding : EncodingKind or int
            The per-voxel encoding.
        bbox : array-like
            The world-space extent.
        editable : bool, optional
            Allow in-place edits. Default is ``True``.
        **kwargs
            Forwarded to :py:class:`GridVolume`.
        """
        codec = get_codec(encoding)
        codec.validate_channels(int(channel_count))
        nx, ny, nz = coerce_to_domain_shape(resolution)
        storage = MemoryStorage(nx * ny * nz * codec.voxel_size(int(channel_count)))

        return cls(resolution, channel_count, encoding, bbox, storage, editable=editable, **kwargs)

    @classmethod
    def from_array(
        cls,
        data: ArrayLike,
        bbox: BoundingBoxLike,
        encoding: EncodingKind | int = EncodingKind.FLOAT32,
        editable: bool = True,
        **kwargs,
    ) -> "GridVolume":
        """
        Encode a decoded numpy array into a new volume.

        Parameters
        ----------
        data : array-like
            Decoded values of shape ``(nz, ny, nx)`` for scalars or ``(nz, ny, nx, C)``. Quantized directions
            expect ``C == 3``.
        bbox : array-like
            The world-space extent.
        encoding : EncodingKind or int, optional
            The per-voxel encoding. Default is ``FLOAT32``.
        editable : bool, optional
            Allow in-place edits. Default is ``True``.
        **kwargs
            Forwarded to :py:class:`GridVolume`.
        """
        data = np.asarray(data, dtype=np.float64)
        if data.ndim == 3:
            data = data[..., np.newaxis]
        if data.ndim != 4:
            raise ValueError(f"Expected a (nz, ny, nx[, C]) array, got shape {data.shape}.")

        codec = get_codec(encoding)
        if codec.KIND is EncodingKind.QUANTIZED_DIRECTION:
            if data.shape[-1] != 3:
                raise ValueError(f"Quantized directions require 3 components, got {data.shape[-1]}.")
            channel_count = 2
        else:
            channel_count = data.shape[-1]

        nz, ny, nx = data.shape[:3]
        volume = cls.empty((nx, ny, nz), channel_count, codec.KIND, bbox, editable=True, **kwargs)
        volume.voxels[...] = codec.encode_array(data)
        volume.editable = bool(editable)

        return volume

    @classmethod
    def load(cls, source: str | Path | BinaryIO, editable: bool = False, **kwargs) -> "GridVolume":
        """Load a VOL container. See :py:func:`volume_data.grids.format.load_volume`."""
        from volume_data.grids.format import load_volume

        return load_volume(source, editable=editable, **kwargs)

    def save(self, target: str | Path | BinaryIO):
        """Write the volume as a VOL container. See :py:func:`volume_data.grids.format.save_volume`."""
        from volume_data.grids.format import save_volume

        save_volume(self, target)

    # ------------------------------------------------------------------ #
    # HDF5 interchange                                                    #
    # ------------------------------------------------------------------ #
    def to_hdf5(self, path: str | Path, dataset_name: str = "volume", overwrite: bool = False):
        """
        Write the decoded lattice to an HDF5 dataset.

        The dataset has shape ``(nz, ny, nx, value_channels)`` and carries the ``BBOX``, ``ENCODING`` and
        ``CHANNELS`` attributes needed to rebuild the volume with :py:meth:`from_hdf5`.

        Parameters
        ----------
        path : str or pathlib.Path
            The HDF5 file. It is created if it does not exist.
        dataset_name : str, optional
            Name of the dataset. Default is ``"volume"``.
        overwrite : bool, optional
            Replace an existing dataset of the same name. Default is ``False``.
        """
        with h5py.File(path, "a") as fo:
            if dataset_name in fo:
                if not overwrite:
                    raise ValueError(f"Dataset {dataset_name} already exists in {path}.")
                del fo[dataset_name]

            dataset = fo.create_dataset(dataset_name, data=self.decoded())
            dataset.attrs["BBOX"] = self.bbox.as_array()
            dataset.attrs["ENCODING"] = int(self.encoding)
            dataset.attrs["CHANNELS"] = self.channel_count

        self.logger.info(f"Wrote {self} to {path}[{dataset_name}].")

    @classmethod
    def from_hdf5(
        cls,
        path: str | Path,
        dataset_name: str = "volume",
        encoding: EncodingKind | int | None = None,
        editable: bool = True,
        **kwargs,
    ) -> "GridVolume":
        """
        Build a volume from an HDF5 dataset written by :py:meth:`to_hdf5`.

        Parameters
        ----------
        path : str or pathlib.Path
            The HDF5 file.
        dataset_name : str, optional
            Name of the dataset. Default is ``"volume"``.
        encoding : EncodingKind or int, optional
            Re-encode with this encoding instead of the one stored in the ``ENCODING`` attribute.
        editable : bool, optional
            Allow in-place edits. Default is ``True``.
        """
        with h5py.File(path, "r") as fo:
            dataset = fo[dataset_name]
            data = dataset[...]
            bbox = dataset.attrs["BBOX"]
            if encoding is None:
                encoding = int(dataset.attrs.get("ENCODING", EncodingKind.FLOAT32))

        return cls.from_array(data, bbox, encoding=encoding, editable=editable, **kwargs)
