r"""
Quantization Codecs
===================

Per-voxel encodings used by the VOL container. Each codec converts between decoded floating point values and
the raw bytes stored in a volume payload.

+--------------------------+--------------+------------------------------------------+---------------------+
| Encoding                 | Element size | Mapping                                  | Maximum error       |
+==========================+==============+==========================================+=====================+
| ``FLOAT32``              | 4            | IEEE-754 single precision                | 0                   |
+--------------------------+--------------+------------------------------------------+---------------------+
| ``FLOAT16``              | 2            | IEEE-754 half precision                  | :math:`2^{-11}|v|`  |
+--------------------------+--------------+------------------------------------------+---------------------+
| ``UINT8``                | 1            | ``round(255 * clamp(v, 0, 1))``          | 1/510               |
+--------------------------+--------------+------------------------------------------+---------------------+
| ``QUANTIZED_DIRECTION``  | 2 per voxel  | spherical angles, one byte each          | 1.4e-2              |
+--------------------------+--------------+------------------------------------------+---------------------+

The quantized direction encoding stores a unit vector :math:`(x, y, z)` as the polar angle
:math:`\theta = \arccos z \in [0, \pi]` and the azimuth :math:`\phi = \mathrm{atan2}(y, x) \in [0, 2\pi)`:

.. math::

    b_0 = \mathrm{round}\left(\frac{255\,\theta}{\pi}\right), \quad
    b_1 = \mathrm{round}\left(\frac{255\,\phi}{2\pi}\right).

The all-zero voxel therefore decodes to :math:`(0, 0, 1)`.

Examples
--------
>>> codec = get_codec(EncodingKind.UINT8)
>>> codec.encode([0.5])
b'\x80'
>>> codec.decode(b'\xff')
array([1.])
"""
from abc import ABC, abstractmethod
from typing import ClassVar

import numpy as np
from numpy.typing import ArrayLike, NDArray

from volume_data.grids._types import EncodingKind, FormatError


class Codec(ABC):
    """
    Abstract base class for per-voxel quantization codecs.

    Codecs operate on numpy arrays whose trailing axis holds the channels of a single voxel. The raw
    representation is an array of :py:attr:`DTYPE` with :py:meth:`stored_channels` entries per voxel, which
    is exactly the layout of the payload buffer.

    Attributes
    ----------
    KIND : EncodingKind
        The encoding identifier written in the VOL header.
    DTYPE : numpy.dtype
        The (little-endian) element type of the raw payload.
    MAX_ERROR : float
        Documented absolute error bound of a decode / encode round trip over the valid domain.
    """

    KIND: ClassVar[EncodingKind] = None
    DTYPE: ClassVar[np.dtype] = None
    MAX_ERROR: ClassVar[float] = 0.0

    def __repr__(self):
        return f"<{self.__class__.__name__}: {self.KIND.name}>"

    @property
    def element_size(self) -> int:
        """Size in bytes of a single stored element."""
        return np.dtype(self.DTYPE).itemsize

    def validate_channels(self, channel_count: int):
        """Check that ``channel_count`` is legal for this encoding.

        Raises
        ------
        FormatError
            If the channel count cannot be stored with this encoding.
        """
        if channel_count not in (1, 3):
            raise FormatError(
                f"Encoding {self.KIND.name} supports 1 or 3 channels, got {channel_count}."
            )

    def stored_channels(self, channel_count: int) -> int:
        """Number of raw elements stored per voxel."""
        return channel_count

    def value_channels(self, channel_count: int) -> int:
        """Number of decoded components produced per voxel."""
        return channel_count

    def voxel_size(self, channel_count: int) -> int:
        """Size in bytes of one voxel."""
        return self.stored_channels(channel_count) * self.element_size

    @abstractmethod
    def encode_array(self, values: ArrayLike) -> NDArray:
        """Encode decoded values (trailing channel axis) into raw elements."""
        pass

    @abstractmethod
    def decode_array(self, raw: NDArray) -> NDArray[np.float64]:
        """Decode raw elements (trailing channel axis) into ``float64`` values."""
        pass

    def encode(self, value: ArrayLike) -> bytes:
        """Encode a single voxel value into its on-disk bytes."""
        return self.encode_array(np.atleast_1d(np.asarray(value, dtype=np.float64))).tobytes()

    def decode(self, data: bytes) -> NDArray[np.float64]:
        """Decode the on-disk bytes of a single voxel."""
        raw = np.frombuffer(data, dtype=self.DTYPE)
        return self.decode_array(raw)


class Float32Codec(Codec):
    """Lossless IEEE-754 single precision storage."""

    KIND = EncodingKind.FLOAT32
    DTYPE = np.dtype("<f4")
    MAX_ERROR = 0.0

    def encode_array(self, values: ArrayLike) -> NDArray:
        return np.asarray(values, dtype=self.DTYPE)

    def decode_array(self, raw: NDArray) -> NDArray[np.float64]:
        return np.asarray(raw, dtype=np.float64)


class Float16Codec(Codec):
    """IEEE-754 half precision storage.

    The error bound is relative: values are reproduced to within half a unit in the last place of an
    11-bit significand.
    """

    KIND = EncodingKind.FLOAT16
    DTYPE = np.dtype("<f2")
    MAX_ERROR = 2.0**-11

    def encode_array(self, values: ArrayLike) -> NDArray:
        return np.asarray(values, dtype=np.float64).astype(self.DTYPE)

    def decode_array(self, raw: NDArray) -> NDArray[np.float64]:
        return np.asarray(raw, dtype=np.float64)


class UInt8Codec(Codec):
    """8-bit linear quantization of values in :math:`[0, 1]`."""

    KIND = EncodingKind.UINT8
    DTYPE = np.dtype("u1")
    MAX_ERROR = 1.0 / 510.0

    def encode_array(self, values: ArrayLike) -> NDArray:
        values = np.clip(np.asarray(values, dtype=np.float64), 0.0, 1.0)
        return np.rint(values * 255.0).astype(self.DTYPE)

    def decode_array(self, raw: NDArray) -> NDArray[np.float64]:
        return np.asarray(raw, dtype=np.float64) / 255.0


class QuantizedDirectionCodec(Codec):
    """Unit vectors stored as two bytes of spherical angles.

    The header declares 2 channels for this encoding; both share the single 2-byte voxel. Decoded values are
    Cartesian 3-vectors. Input vectors are normalized before encoding; the zero vector encodes to ``(0, 0)``.
    """

    KIND = EncodingKind.QUANTIZED_DIRECTION
    DTYPE = np.dtype("u1")
    MAX_ERROR = 1.4e-2

    # Lookup tables indexed by the stored byte.
    _THETA = np.arange(256, dtype=np.float64) * (np.pi / 255.0)
    _PHI = np.arange(256, dtype=np.float64) * (2.0 * np.pi / 255.0)
    _COS_THETA, _SIN_THETA = np.cos(_THETA), np.sin(_THETA)
    _COS_PHI, _SIN_PHI = np.cos(_PHI), np.sin(_PHI)

    def validate_channels(self, channel_count: int):
        if channel_count != 2:
            raise FormatError(
                f"Encoding {self.KIND.name} requires 2 channels, got {channel_count}."
            )

    def stored_channels(self, channel_count: int) -> int:
        return 2

    def value_channels(self, channel_count: int) -> int:
        return 3

    def encode_array(self, values: ArrayLike) -> NDArray:
        values = np.asarray(values, dtype=np.float64)
        if values.shape[-1] != 3:
            raise ValueError(f"Directions must be 3-vectors, got trailing axis {values.shape[-1]}.")

        norm = np.linalg.norm(values, axis=-1, keepdims=True)
        unit = np.divide(values, norm, out=np.zeros_like(values), where=norm > 0)

        theta = np.arccos(np.clip(unit[..., 2], -1.0, 1.0))
        phi = np.arctan2(unit[..., 1], unit[..., 0])
        phi = np.where(phi < 0, phi + 2.0 * np.pi, phi)

        # A zero vector has no direction; it maps onto the all-zero voxel.
        theta = np.where(norm[..., 0] > 0, theta, 0.0)

        raw = np.stack(
            [np.rint(theta / np.pi * 255.0), np.rint(phi / (2.0 * np.pi) * 255.0)], axis=-1
        )
        return np.clip(raw, 0, 255).astype(self.DTYPE)

    def decode_array(self, raw: NDArray) -> NDArray[np.float64]:
        raw = np.asarray(raw, dtype=np.intp)
        t, p = raw[..., 0], raw[..., 1]
        sin_theta = self._SIN_THETA[t]
        return np.stack(
            [sin_theta * self._COS_PHI[p], sin_theta * self._SIN_PHI[p], self._COS_THETA[t]],
            axis=-1,
        )


_CODECS: dict[EncodingKind, Codec] = {
    codec.KIND: codec
    for codec in (Float32Codec(), Float16Codec(), UInt8Codec(), QuantizedDirectionCodec())
}


def get_codec(kind: int | EncodingKind) -> Codec:
    """
    Look up the codec for an encoding identifier.

    Parameters
    ----------
    kind : int or EncodingKind
        The encoding identifier.

    Returns
    -------
    Codec
        The shared codec instance.

    Raises
    ------
    FormatError
        If ``kind`` is not a known encoding.
    """
    try:
        return _CODECS[EncodingKind(int(kind))]
    except (ValueError, KeyError):
        raise FormatError(f"Unknown volume encoding kind {kind!r}.")
