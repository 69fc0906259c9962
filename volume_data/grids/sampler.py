r"""
Grid Sampler
============

Read path of a :py:class:`~volume_data.grids.volume.GridVolume`: trilinear interpolation of the decoded
voxels bracketing a world point.

For a lattice coordinate :math:`{\bf g}` the lower corner is :math:`{\bf c} = \lfloor {\bf g} \rfloor` and the
weights are :math:`{\bf w} = {\bf g} - {\bf c}`. The sample is

.. math::

    f({\bf g}) = \sum_{\delta \in \{0, 1\}^3} \prod_i w_i^{\delta_i} (1 - w_i)^{1 - \delta_i}\,
    f({\bf c} + \delta).

On the upper face of an axis the lower corner is moved one node inwards and the weight becomes 1, so a
lattice-aligned point always reproduces the decoded node value exactly. Axes with a single node use that node
for both corners.

Directions are decoded to Cartesian vectors before blending and the blend is not renormalized.
"""
import numpy as np
from numpy.typing import ArrayLike, NDArray

from volume_data.grids.volume import GridVolume


class GridSampler:
    """
    Trilinear sampler over a :py:class:`GridVolume`.

    Parameters
    ----------
    volume : GridVolume
        The volume to sample. Lookups follow its range policy.
    """

    def __init__(self, volume: GridVolume):
        self.volume = volume

    def __repr__(self):
        return f"<GridSampler: {self.volume}>"

    def corners(self, g: NDArray[np.float64]) -> tuple[NDArray[np.intp], NDArray[np.float64]]:
        """
        Lower corner indices and interpolation weights for lattice coordinates.

        Parameters
        ----------
        g : numpy.ndarray
            In-domain lattice coordinates of shape ``(N, 3)``.

        Returns
        -------
        tuple of numpy.ndarray
            The ``(N, 3)`` lower corners and ``(N, 3)`` weights in :math:`[0, 1]`.
        """
        upper = np.asarray(self.volume.resolution, dtype=np.intp) - 1
        lower = np.minimum(np.floor(g).astype(np.intp), np.maximum(upper - 1, 0))
        return lower, g - lower

    def sample_many(self, points: ArrayLike) -> NDArray[np.float64]:
        """
        Interpolate the volume at a batch of world points.

        Parameters
        ----------
        points : array-like
            World points of shape ``(N, 3)``.

        Returns
        -------
        numpy.ndarray
            The ``(N, value_channels)`` interpolated values.

        Raises
        ------
        OutOfRange
            If a point lies outside of the bounding box and the volume's policy is ``raise``.
        """
        volume = self.volume
        g = volume.world_to_lattice(np.atleast_2d(points))
        lower, w = self.corners(g)

        nx, ny, nz = volume.resolution
        step = (np.asarray(volume.resolution) > 1).astype(np.intp)
        voxels = volume.voxels

        result = np.zeros((g.shape[0], volume.value_channels), dtype=np.float64)
        for dz in (0, 1):
            wz = w[:, 2] if dz else 1.0 - w[:, 2]
            k = lower[:, 2] + dz * step[2]
            for dy in (0, 1):
                wy = w[:, 1] if dy else 1.0 - w[:, 1]
                j = lower[:, 1] + dy * step[1]
                for dx in (0, 1):
                    wx = w[:, 0] if dx else 1.0 - w[:, 0]
                    i = lower[:, 0] + dx * step[0]

                    # Corners with zero weight are skipped so non-finite neighbors cannot leak in.
                    weight = wx * wy * wz
                    active = weight > 0
                    if not active.any():
                        continue
                    decoded = volume.codec.decode_array(voxels[k[active], j[active], i[active]])
                    result[active] += weight[active, np.newaxis] * decoded

        return result

    def sample(self, point: ArrayLike) -> NDArray[np.float64]:
        """Interpolate the volume at a single world point, returning ``value_channels`` components."""
        return self.sample_many(np.asarray(point, dtype=np.float64).reshape(1, 3))[0]
