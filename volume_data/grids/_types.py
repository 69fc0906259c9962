"""
Grid Types Module
=================

This module provides the error hierarchy, enumerations, and small value types used throughout the
:py:mod:`grids` module.

Notes
-----
Every failure raised by the grid machinery derives from :py:class:`VolumeDataError`. Format and capability
errors indicate corrupt input or a caller bug respectively and are never retried or swallowed internally; the
surrounding pipeline decides whether a given failure is fatal.

See Also
--------
- `numpy <https://numpy.org/>`_ : A fundamental package for scientific computing with Python.

"""
from enum import Enum, IntEnum
from typing import Any, Collection, Union

import numpy as np
from numpy.typing import NDArray

# Type Aliases for readability

DomainShape = Union[Collection[int], NDArray[int]]
"""
Alias for the resolution of a lattice, allowing it to be represented as a list, tuple,
or numpy array of integers.
"""

BoundingBoxLike = Union["AxisAlignedBoundingBox", NDArray[float], Collection[Collection[float]]]
"""
Alias for anything that can be coerced into an :py:class:`AxisAlignedBoundingBox`: the box itself
or a ``(2, 3)`` array-like of ``[min, max]`` corners.
"""


# ===================================== #
# Errors                                #
# ===================================== #
class VolumeDataError(Exception):
    """Base exception class for volume data errors."""

    pass


class UnsupportedOperation(VolumeDataError):
    """Raised when a typed lookup or edit is invoked on a source lacking that capability."""

    pass


class FormatError(VolumeDataError):
    """Raised when a VOL container is malformed (magic, version, encoding, or payload size)."""

    pass


class OutOfRange(VolumeDataError):
    """Raised when a point falls outside of the bounding box and the clamp policy is disabled."""

    pass


class NotEditable(VolumeDataError):
    """Raised when an edit is attempted on a volume opened read-only."""

    pass


class AllocationFailure(VolumeDataError):
    """Raised when the payload buffer cannot be allocated or mapped."""

    pass


# ===================================== #
# Enumerations                          #
# ===================================== #
class EncodingKind(IntEnum):
    """Per-voxel storage encoding, as written in the VOL header."""

    FLOAT32 = 1
    FLOAT16 = 2
    UINT8 = 3
    QUANTIZED_DIRECTION = 4


class RangePolicy(str, Enum):
    """Behavior of lookups and edits for points outside of the bounding box."""

    CLAMP = "clamp"
    RAISE = "raise"


# ===================================== #
# Bounding boxes                        #
# ===================================== #
class AxisAlignedBoundingBox:
    """
    World-space extent of a lattice.

    Parameters
    ----------
    bmin : array-like
        The minimum corner, length 3.
    bmax : array-like
        The maximum corner, length 3. Must be strictly greater than ``bmin`` along every axis.

    Notes
    -----
    The corners are rounded to single precision, the precision of the VOL header, so that a box survives a
    save / load round trip unchanged.

    Raises
    ------
    ValueError
        If either corner is not a 3-vector or the box is degenerate.
    """

    def __init__(self, bmin: Collection[float], bmax: Collection[float]):
        self.min = np.asarray(bmin, dtype=np.float32).astype(np.float64).reshape(-1)
        self.max = np.asarray(bmax, dtype=np.float32).astype(np.float64).reshape(-1)

        if self.min.shape != (3,) or self.max.shape != (3,):
            raise ValueError(
                f"Bounding box corners must be 3-vectors, got {self.min.shape} and {self.max.shape}."
            )
        if not np.all(self.min < self.max):
            raise ValueError(
                f"Bounding box is degenerate: min={self.min.tolist()}, max={self.max.tolist()}."
            )

    def __repr__(self):
        return f"<AxisAlignedBoundingBox: min={self.min.tolist()}, max={self.max.tolist()}>"

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, AxisAlignedBoundingBox):
            return NotImplemented
        return bool(np.array_equal(self.min, other.min) and np.array_equal(self.max, other.max))

    @property
    def extent(self) -> NDArray[float]:
        """The edge lengths of the box."""
        return self.max - self.min

    def contains(self, point: Collection[float]) -> bool:
        """Check whether ``point`` lies inside the (closed) box."""
        point = np.asarray(point, dtype=np.float64)
        return bool(np.all(point >= self.min) and np.all(point <= self.max))

    def as_array(self) -> NDArray[float]:
        """Return the box as a ``(2, 3)`` array of ``[min, max]``."""
        return np.stack([self.min, self.max])


def coerce_to_bounding_box(bbox: BoundingBoxLike) -> AxisAlignedBoundingBox:
    """
    Coerce any input to an :py:class:`AxisAlignedBoundingBox`.

    Parameters
    ----------
    bbox : Any
        An existing box or input that can be reshaped into a ``(2, 3)`` array of floats.

    Returns
    -------
    AxisAlignedBoundingBox
        The coerced bounding box.

    Raises
    ------
    ValueError
        If the input cannot be coerced into a valid bounding box.
    """
    if isinstance(bbox, AxisAlignedBoundingBox):
        return bbox

    try:
        bbox = np.asarray(bbox, dtype=np.float64).reshape(2, 3)
    except Exception as e:
        raise ValueError(f"Invalid bounding box: {e}")

    return AxisAlignedBoundingBox(bbox[0], bbox[1])


def coerce_to_domain_shape(domain_shape: Any) -> tuple[int, int, int]:
    """
    Coerce any input to a resolution triple of positive integers.

    Parameters
    ----------
    domain_shape : Any
        Input that can be coerced into a domain shape (list, tuple, or NumPy array of 3 integers).

    Returns
    -------
    tuple of int
        The ``(nx, ny, nz)`` resolution.

    Raises
    ------
    ValueError
        If the input cannot be coerced into a valid domain shape.
    """
    try:
        domain_shape = np.asarray(domain_shape, dtype=np.int64)
    except Exception as e:
        raise ValueError(f"Invalid domain shape: {e}")

    if domain_shape.shape != (3,):
        raise ValueError(
            f"Domain shape must contain exactly 3 entries, but got shape {domain_shape.shape}."
        )

    if (domain_shape <= 0).any():
        raise ValueError("All values in the domain shape must be positive integers.")

    return tuple(int(n) for n in domain_shape)
