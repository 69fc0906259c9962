"""
Grid Editor
===========

Write path of a :py:class:`~volume_data.grids.volume.GridVolume`. A world point is mapped to the nearest lattice
node, independently of the interpolation path, and exactly that voxel is overwritten through the codec.
"""
import numpy as np
from numpy.typing import ArrayLike

from volume_data.grids._types import NotEditable
from volume_data.grids.volume import GridVolume


class GridEditor:
    """
    Nearest-node editor over a :py:class:`GridVolume`.

    Parameters
    ----------
    volume : GridVolume
        The volume to edit. Must have been opened in editable mode for :py:meth:`edit` to succeed.
    """

    def __init__(self, volume: GridVolume):
        self.volume = volume

    def __repr__(self):
        return f"<GridEditor: {self.volume}>"

    def nearest_node(self, point: ArrayLike) -> tuple[int, int, int]:
        """
        The lattice index closest to a world point.

        Each axis is rounded independently, with halves rounded up. The volume's range policy applies to
        points outside of the bounding box.
        """
        g = self.volume.world_to_lattice(np.asarray(point, dtype=np.float64).reshape(3))
        upper = np.asarray(self.volume.resolution) - 1
        index = np.clip(np.floor(g + 0.5).astype(np.intp), 0, upper)
        return tuple(int(n) for n in index)

    def edit(self, point: ArrayLike, value: ArrayLike) -> tuple[int, int, int]:
        """
        Overwrite the voxel nearest to ``point`` with ``value``.

        Parameters
        ----------
        point : array-like
            The world point.
        value : array-like
            The decoded value, with one component per decoded channel.

        Returns
        -------
        tuple of int
            The lattice index that was written.

        Raises
        ------
        NotEditable
            If the volume was not opened in editable mode.
        OutOfRange
            If the point lies outside of the bounding box and the volume's policy is ``raise``.
        """
        if not self.volume.editable:
            raise NotEditable(f"{self.volume} was not opened in editable mode.")

        index = self.nearest_node(point)
        self.volume.set_voxel(index, value)
        return index
