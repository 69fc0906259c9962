"""
Grid Module
===========

Storage, encoding, and point queries for fields sampled on a regular 3D lattice.

.. rubric:: Core Classes

- :py:class:`~volume_data.grids.volume.GridVolume`: lattice metadata together with the encoded payload.
- :py:class:`~volume_data.grids.sampler.GridSampler`: trilinear interpolation at world points.
- :py:class:`~volume_data.grids.editor.GridEditor`: nearest-node voxel overwrites.
- :py:class:`~volume_data.grids.codecs.Codec`: per-voxel quantization codecs.
- :py:class:`~volume_data.grids.storage.VolumeStorage`: owned and memory-mapped payload stores.

The on-disk VOL container is handled by :py:mod:`volume_data.grids.format`.
"""
from volume_data.grids.codecs import get_codec
from volume_data.grids.editor import GridEditor
from volume_data.grids.format import load_volume, save_volume, write_null_volume
from volume_data.grids.sampler import GridSampler
from volume_data.grids.storage import MappedStorage, MemoryStorage, VolumeStorage
from volume_data.grids.volume import GridVolume
