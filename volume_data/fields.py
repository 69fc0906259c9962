"""
Volume Data Sources
===================

Capability-gated field interface consumed by the rendering pipeline. A :py:class:`VolumeDataSource` answers
point queries for one or more value kinds:

- :py:attr:`ValueKind.SCALAR`: a single float (densities, albedo channels, ...).
- :py:attr:`ValueKind.COLOR`: an RGB triple.
- :py:attr:`ValueKind.DIRECTION`: a 3-vector (fiber orientations, ...).

Callers check :py:meth:`VolumeDataSource.supports_lookups` / :py:meth:`VolumeDataSource.supports_edits` before
invoking the typed operations; an unsupported kind raises
:py:class:`~volume_data.grids._types.UnsupportedOperation` instead of returning a placeholder value.

Examples
--------
.. code-block:: python

    source = GridDataSource.from_file("density.vol", editable=True)

    if source.supports_float_lookups():
        sigma_t = source.lookup_float((0.5, 0.5, 0.5))

    source.edit_float((1, 1, 1), 1337.0)
"""
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

import numpy as np
from numpy.typing import ArrayLike, NDArray

from volume_data.grids._types import (
    AxisAlignedBoundingBox,
    EncodingKind,
    NotEditable,
    RangePolicy,
    UnsupportedOperation,
)
from volume_data.grids.editor import GridEditor
from volume_data.grids.sampler import GridSampler
from volume_data.grids.volume import GridVolume
from volume_data.utilities.logging import VolumeLogDescriptor

if TYPE_CHECKING:
    import logging


class ValueKind(str, Enum):
    """The value types a volume data source may provide."""

    SCALAR = "scalar"
    COLOR = "color"
    DIRECTION = "direction"

    @property
    def components(self) -> int:
        """Number of components of a value of this kind."""
        return 1 if self is ValueKind.SCALAR else 3


class VolumeDataSource(ABC):
    """
    Abstract base class for spatially varying volume parameters.

    Subclasses declare their capabilities through :py:attr:`lookup_kinds` and :py:attr:`edit_kinds` and implement
    the unchecked :py:meth:`_lookup` / :py:meth:`_edit` primitives. Capability and editability checks are done
    once, here, for every kind.
    """

    logger: "logging.Logger" = VolumeLogDescriptor()

    # ------------------------------------------------------------------ #
    # Capabilities                                                        #
    # ------------------------------------------------------------------ #
    @property
    @abstractmethod
    def lookup_kinds(self) -> frozenset[ValueKind]:
        """The value kinds this source can be queried for."""
        pass

    @property
    @abstractmethod
    def edit_kinds(self) -> frozenset[ValueKind]:
        """The value kinds this source can be edited with."""
        pass

    @property
    @abstractmethod
    def editable(self) -> bool:
        """Whether the source was opened for in-place edits."""
        pass

    @property
    @abstractmethod
    def bbox(self) -> AxisAlignedBoundingBox:
        """World-space extent of the source."""
        pass

    @property
    @abstractmethod
    def step_size(self) -> float:
        """Suggested ray-marching step size in world units."""
        pass

    def supports_lookups(self, kind: ValueKind | str) -> bool:
        return ValueKind(kind) in self.lookup_kinds

    def supports_edits(self, kind: ValueKind | str) -> bool:
        return ValueKind(kind) in self.edit_kinds

    # ------------------------------------------------------------------ #
    # Dispatch                                                            #
    # ------------------------------------------------------------------ #
    def lookup(self, kind: ValueKind | str, point: ArrayLike) -> float | NDArray[np.float64]:
        """
        Query the source at a world point.

        Parameters
        ----------
        kind : ValueKind or str
            The value kind to look up.
        point : array-like
            The world point, a 3-vector.

        Returns
        -------
        float or numpy.ndarray
            A float for :py:attr:`ValueKind.SCALAR`, otherwise a 3-vector.

        Raises
        ------
        UnsupportedOperation
            If the source does not provide lookups of ``kind``.
        """
        kind = ValueKind(kind)
        if kind not in self.lookup_kinds:
            raise UnsupportedOperation(f"{self} does not support {kind.value} lookups.")

        return self._lookup(kind, np.asarray(point, dtype=np.float64).reshape(3))

    def lookup_many(self, kind: ValueKind | str, points: ArrayLike) -> NDArray[np.float64]:
        """Query the source at a batch of ``(N, 3)`` world points, returning ``(N, components)`` values."""
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        return np.stack(
            [np.atleast_1d(self.lookup(kind, p)) for p in points]
        ).reshape(len(points), ValueKind(kind).components)

    def edit(self, kind: ValueKind | str, point: ArrayLike, value: float | ArrayLike):
        """
        Overwrite the source at a world point.

        Parameters
        ----------
        kind : ValueKind or str
            The value kind being written.
        point : array-like
            The world point, a 3-vector.
        value : float or array-like
            A float for :py:attr:`ValueKind.SCALAR`, otherwise a 3-vector.

        Raises
        ------
        UnsupportedOperation
            If the source does not provide edits of ``kind``.
        NotEditable
            If the source was opened read-only.
        """
        kind = ValueKind(kind)
        if kind not in self.edit_kinds:
            raise UnsupportedOperation(f"{self} does not support {kind.value} edits.")
        if not self.editable:
            raise NotEditable(f"{self} was not opened in editable mode.")

        value = np.atleast_1d(np.asarray(value, dtype=np.float64))
        if value.shape != (kind.components,):
            raise ValueError(
                f"A {kind.value} value needs {kind.components} component(s), got shape {value.shape}."
            )

        self._edit(kind, np.asarray(point, dtype=np.float64).reshape(3), value)

    @abstractmethod
    def _lookup(self, kind: ValueKind, point: NDArray[np.float64]) -> float | NDArray[np.float64]:
        pass

    @abstractmethod
    def _edit(self, kind: ValueKind, point: NDArray[np.float64], value: NDArray[np.float64]):
        pass

    # ------------------------------------------------------------------ #
    # Named operations                                                    #
    # ------------------------------------------------------------------ #
    def supports_float_lookups(self) -> bool:
        return self.supports_lookups(ValueKind.SCALAR)

    def supports_spectrum_lookups(self) -> bool:
        return self.supports_lookups(ValueKind.COLOR)

    def supports_vector_lookups(self) -> bool:
        return self.supports_lookups(ValueKind.DIRECTION)

    def supports_float_edits(self) -> bool:
        return self.supports_edits(ValueKind.SCALAR)

    def supports_spectrum_edits(self) -> bool:
        return self.supports_edits(ValueKind.COLOR)

    def supports_vector_edits(self) -> bool:
        return self.supports_edits(ValueKind.DIRECTION)

    def lookup_float(self, point: ArrayLike) -> float:
        return self.lookup(ValueKind.SCALAR, point)

    def lookup_spectrum(self, point: ArrayLike) -> NDArray[np.float64]:
        return self.lookup(ValueKind.COLOR, point)

    def lookup_vector(self, point: ArrayLike) -> NDArray[np.float64]:
        return self.lookup(ValueKind.DIRECTION, point)

    def edit_float(self, point: ArrayLike, value: float):
        self.edit(ValueKind.SCALAR, point, value)

    def edit_spectrum(self, point: ArrayLike, value: ArrayLike):
        self.edit(ValueKind.COLOR, point, value)

    def edit_vector(self, point: ArrayLike, value: ArrayLike):
        self.edit(ValueKind.DIRECTION, point, value)


class GridDataSource(VolumeDataSource):
    """
    Volume data source backed by a :py:class:`~volume_data.grids.volume.GridVolume`.

    Capabilities follow from the volume layout:

    - 1 channel: :py:attr:`ValueKind.SCALAR`.
    - 3 channels: :py:attr:`ValueKind.COLOR` and :py:attr:`ValueKind.DIRECTION`.
    - quantized directions: :py:attr:`ValueKind.DIRECTION`.

    Edits are offered for the same kinds as lookups; whether they succeed depends on :py:attr:`editable`.

    Parameters
    ----------
    volume : GridVolume
        The backing volume.
    """

    def __init__(self, volume: GridVolume):
        self.volume = volume
        self.sampler = GridSampler(volume)
        self.editor = GridEditor(volume)

        if volume.encoding is EncodingKind.QUANTIZED_DIRECTION:
            self._kinds = frozenset({ValueKind.DIRECTION})
        elif volume.channel_count == 3:
            self._kinds = frozenset({ValueKind.COLOR, ValueKind.DIRECTION})
        else:
            self._kinds = frozenset({ValueKind.SCALAR})

    def __repr__(self):
        return f"<GridDataSource: {self.volume}>"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @classmethod
    def from_file(
        cls,
        source: str | Path | BinaryIO,
        editable: bool = False,
        storage: str | None = None,
        range_policy: RangePolicy | str | None = None,
    ) -> "GridDataSource":
        """
        Open a VOL container as a data source.

        Parameters
        ----------
        source : str, pathlib.Path or binary file object
            The VOL container.
        editable : bool, optional
            Open for in-place edits. Default is ``False``.
        storage : str, optional
            Storage mode, see :py:func:`~volume_data.grids.format.load_volume`.
        range_policy : RangePolicy or str, optional
            Out-of-domain lookup policy.
        """
        volume = GridVolume.load(source, editable=editable, storage=storage, range_policy=range_policy)
        return cls(volume)

    @property
    def lookup_kinds(self) -> frozenset[ValueKind]:
        return self._kinds

    @property
    def edit_kinds(self) -> frozenset[ValueKind]:
        return self._kinds

    @property
    def editable(self) -> bool:
        return self.volume.editable

    @property
    def bbox(self) -> AxisAlignedBoundingBox:
        return self.volume.bbox

    @property
    def step_size(self) -> float:
        return float(np.min(self.volume.cell_size))

    def _lookup(self, kind: ValueKind, point: NDArray[np.float64]) -> float | NDArray[np.float64]:
        value = self.sampler.sample(point)
        if kind is ValueKind.SCALAR:
            return float(value[0])
        return value

    def lookup_many(self, kind: ValueKind | str, points: ArrayLike) -> NDArray[np.float64]:
        kind = ValueKind(kind)
        if kind not in self.lookup_kinds:
            raise UnsupportedOperation(f"{self} does not support {kind.value} lookups.")

        return self.sampler.sample_many(np.asarray(points, dtype=np.float64).reshape(-1, 3))

    def _edit(self, kind: ValueKind, point: NDArray[np.float64], value: NDArray[np.float64]):
        index = self.editor.edit(point, value)
        self.logger.debug(f"{self}: {kind.value} edit at {point.tolist()} -> voxel {index}.")

    def close(self):
        """Close the backing volume."""
        self.volume.close()
