"""
Tests for the GridVolume container, its payload storage and the HDF5 interchange.
"""
import os

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from volume_data.grids._types import (
    AllocationFailure,
    AxisAlignedBoundingBox,
    EncodingKind,
    FormatError,
    NotEditable,
    OutOfRange,
    RangePolicy,
)
from volume_data.grids.format import HEADER_SIZE, load_volume
from volume_data.grids.storage import MappedStorage, MemoryStorage
from volume_data.grids.volume import GridVolume

BBOX = [[0, 0, 0], [10, 10, 10]]


# ===================================== #
# Construction                          #
# ===================================== #
def test_empty():
    volume = GridVolume.empty((4, 3, 2), 3, EncodingKind.UINT8, BBOX)

    assert volume.resolution == (4, 3, 2)
    assert volume.voxel_size == 3
    assert volume.payload_size == 4 * 3 * 2 * 3
    assert volume.voxels.shape == (2, 3, 4, 3)
    assert volume.editable
    assert not volume.dirty
    assert np.all(volume.decoded() == 0)


def test_quantized_direction_layout():
    volume = GridVolume.empty((2, 2, 2), 2, EncodingKind.QUANTIZED_DIRECTION, BBOX)

    assert volume.voxel_size == 2
    assert volume.value_channels == 3
    assert volume.voxels.shape == (2, 2, 2, 2)
    assert_array_equal(volume.get_voxel((0, 0, 0)), [0, 0, 1])


def test_payload_size_mismatch():
    with pytest.raises(FormatError):
        GridVolume((2, 2, 2), 1, EncodingKind.FLOAT32, BBOX, MemoryStorage(31))


@pytest.mark.parametrize("resolution", [(0, 1, 1), (2, 2), (1, -1, 3)])
def test_invalid_resolution(resolution):
    with pytest.raises(ValueError):
        GridVolume.empty(resolution, 1, EncodingKind.FLOAT32, BBOX)


def test_degenerate_bbox():
    with pytest.raises(ValueError):
        GridVolume.empty((2, 2, 2), 1, EncodingKind.FLOAT32, [[0, 0, 0], [1, 1, 0]])


def test_editable_requires_writable_storage(null_grid):
    path = null_grid(EncodingKind.FLOAT32, 1)
    storage = MappedStorage(path, HEADER_SIZE, 11**3 * 4)

    with pytest.raises(ValueError):
        GridVolume((11, 11, 11), 1, EncodingKind.FLOAT32, BBOX, storage, editable=True)
    assert storage.closed


def test_from_array():
    data = np.arange(24, dtype=np.float64).reshape(2, 3, 4)
    volume = GridVolume.from_array(data, BBOX, editable=False)

    assert volume.resolution == (4, 3, 2)
    assert volume.channel_count == 1
    assert not volume.editable
    assert_array_equal(volume.decoded()[..., 0], data)
    assert volume.get_voxel((3, 2, 1))[0] == data[1, 2, 3]


def test_from_array_directions():
    data = np.zeros((1, 1, 2, 3))
    data[..., 2] = -1.0
    volume = GridVolume.from_array(data, BBOX, encoding=EncodingKind.QUANTIZED_DIRECTION)

    assert volume.channel_count == 2
    assert_allclose(volume.decoded(), data, atol=1e-12)

    with pytest.raises(ValueError):
        GridVolume.from_array(np.zeros((1, 1, 2)), BBOX, encoding=EncodingKind.QUANTIZED_DIRECTION)


# ===================================== #
# Addressing                            #
# ===================================== #
def test_world_to_lattice():
    volume = GridVolume.empty((11, 21, 3), 1, EncodingKind.FLOAT32, BBOX)
    assert_allclose(volume.world_to_lattice([5, 5, 5]), [5, 10, 1])
    assert_allclose(volume.world_to_lattice([[0, 0, 0], [10, 10, 10]]), [[0, 0, 0], [10, 20, 2]])
    assert_allclose(volume.cell_size, [1.0, 0.5, 5.0])


def test_world_to_lattice_clamps():
    volume = GridVolume.empty((11, 11, 11), 1, EncodingKind.FLOAT32, BBOX)
    assert_allclose(volume.world_to_lattice([-5, 12, 3]), [0, 10, 3])
    assert_allclose(volume.world_to_lattice([np.nan, 1, 1]), [0, 1, 1])


def test_world_to_lattice_raises():
    volume = GridVolume.empty((11, 1, 11), 1, EncodingKind.FLOAT32, BBOX, range_policy="raise")

    assert volume.range_policy is RangePolicy.RAISE
    assert_allclose(volume.world_to_lattice([10, 10, 0]), [10, 0, 0])
    with pytest.raises(OutOfRange):
        volume.world_to_lattice([10.5, 1, 1])
    # Single-node axes still respect the box.
    with pytest.raises(OutOfRange):
        volume.world_to_lattice([1, -1, 1])
    with pytest.raises(OutOfRange):
        volume.world_to_lattice([np.nan, 1, 1])


def test_byte_offset():
    volume = GridVolume.empty((4, 3, 2), 3, EncodingKind.FLOAT32, BBOX)
    assert volume.byte_offset((0, 0, 0)) == 0
    assert volume.byte_offset((1, 0, 0)) == 12
    assert volume.byte_offset((3, 2, 1)) == ((1 * 3 + 2) * 4 + 3) * 12

    with pytest.raises(OutOfRange):
        volume.byte_offset((4, 0, 0))


# ===================================== #
# Voxel access                          #
# ===================================== #
def test_set_voxel_touches_one_voxel():
    volume = GridVolume.empty((4, 3, 2), 3, EncodingKind.FLOAT32, BBOX)
    before = volume.storage.data.copy()

    volume.set_voxel((2, 1, 1), [1, 2, 3])

    offset = volume.byte_offset((2, 1, 1))
    changed = np.flatnonzero(volume.storage.data != before)
    assert changed.min() >= offset and changed.max() < offset + volume.voxel_size
    assert_array_equal(volume.get_voxel((2, 1, 1)), [1, 2, 3])
    assert volume.dirty


def test_set_voxel_read_only():
    volume = GridVolume.empty((2, 2, 2), 1, EncodingKind.FLOAT32, BBOX, editable=False)
    with pytest.raises(NotEditable):
        volume.set_voxel((0, 0, 0), 1.0)


def test_set_voxel_shape():
    volume = GridVolume.empty((2, 2, 2), 3, EncodingKind.UINT8, BBOX)
    with pytest.raises(ValueError):
        volume.set_voxel((0, 0, 0), 1.0)
    with pytest.raises(OutOfRange):
        volume.set_voxel((0, 2, 0), [1, 1, 1])


# ===================================== #
# Storage and lifecycle                 #
# ===================================== #
class TestStorage:
    def test_memory_storage(self):
        storage = MemoryStorage(8, payload=bytes(range(8)))
        assert storage.writable and not storage.persistent
        assert_array_equal(storage.data, np.arange(8))

        storage.close()
        assert storage.closed
        with pytest.raises(ValueError):
            _ = storage.data

    def test_memory_storage_size_mismatch(self):
        with pytest.raises(ValueError):
            MemoryStorage(8, payload=bytes(7))

    def test_mapping_missing_file(self, temp_dir):
        with pytest.raises(AllocationFailure):
            MappedStorage(os.path.join(temp_dir, "missing.vol"), HEADER_SIZE, 16)

    def test_read_only_mapping(self, null_grid):
        with load_volume(null_grid(EncodingKind.FLOAT32, 1)) as volume:
            assert isinstance(volume.storage, MappedStorage)
            assert not volume.voxels.flags.writeable
            with pytest.raises(NotEditable):
                volume.set_voxel((0, 0, 0), 1.0)

    def test_mapped_edits_persist(self, null_grid):
        path = null_grid(EncodingKind.FLOAT32, 1)

        volume = load_volume(path, editable=True, storage="mmap")
        volume.set_voxel((1, 1, 1), 1337.0)
        assert volume.dirty
        volume.close()
        assert volume.closed
        assert not volume.dirty

        with load_volume(path) as reloaded:
            assert reloaded.get_voxel((1, 1, 1))[0] == 1337.0

    def test_memory_edits_do_not_persist(self, null_grid):
        path = null_grid(EncodingKind.FLOAT32, 1)

        with load_volume(path, editable=True) as volume:
            assert isinstance(volume.storage, MemoryStorage)
            volume.set_voxel((1, 1, 1), 1337.0)
            volume.flush()
            # Owned buffers stay dirty until saved.
            assert volume.dirty

        with load_volume(path) as reloaded:
            assert reloaded.get_voxel((1, 1, 1))[0] == 0.0

    def test_save_in_place(self, null_grid):
        path = null_grid(EncodingKind.UINT8, 3)

        with load_volume(path, editable=True) as volume:
            volume.set_voxel((0, 0, 0), [1.0, 0.0, 1.0])
            volume.save(path)
            assert not volume.dirty

        with load_volume(path) as reloaded:
            assert_array_equal(reloaded.get_voxel((0, 0, 0)), [1, 0, 1])

    def test_flush_mapped(self, null_grid):
        path = null_grid(EncodingKind.FLOAT32, 1)

        with load_volume(path, editable=True, storage="mmap") as volume:
            volume.set_voxel((2, 0, 0), 2.5)
            volume.save(path)
            assert not volume.dirty

            with open(path, "rb") as fio:
                fio.seek(HEADER_SIZE + volume.byte_offset((2, 0, 0)))
                assert np.frombuffer(fio.read(4), dtype="<f4")[0] == 2.5

    def test_closed_volume(self):
        volume = GridVolume.empty((2, 2, 2), 1, EncodingKind.FLOAT32, BBOX)
        volume.close()
        volume.close()

        with pytest.raises(ValueError):
            _ = volume.voxels


# ===================================== #
# HDF5 interchange                      #
# ===================================== #
class TestHDF5:
    @pytest.mark.parametrize("encoding,channels", [(EncodingKind.FLOAT32, 1), (EncodingKind.UINT8, 3)])
    def test_round_trip(self, temp_dir, encoding, channels):
        rng = np.random.default_rng(7)
        data = rng.uniform(size=(3, 4, 5, channels))
        volume = GridVolume.from_array(data, [[-1, -1, -1], [1, 2, 3]], encoding=encoding)
        path = os.path.join(temp_dir, "volumes.h5")

        volume.to_hdf5(path, dataset_name="field")
        restored = GridVolume.from_hdf5(path, dataset_name="field")

        assert restored.resolution == volume.resolution
        assert restored.channel_count == volume.channel_count
        assert restored.encoding is encoding
        assert restored.bbox == AxisAlignedBoundingBox([-1, -1, -1], [1, 2, 3])
        assert_array_equal(restored.voxels, volume.voxels)

    def test_directions(self, temp_dir):
        volume = GridVolume.empty((2, 2, 2), 2, EncodingKind.QUANTIZED_DIRECTION, BBOX)
        volume.set_voxel((1, 1, 1), [1.0, 0.0, 0.0])
        path = os.path.join(temp_dir, "directions.h5")

        volume.to_hdf5(path)
        restored = GridVolume.from_hdf5(path)

        assert restored.channel_count == 2
        assert_array_equal(restored.voxels, volume.voxels)

    def test_re_encode(self, temp_dir):
        volume = GridVolume.from_array(np.full((2, 2, 2), 0.5), BBOX)
        path = os.path.join(temp_dir, "volumes.h5")
        volume.to_hdf5(path)

        restored = GridVolume.from_hdf5(path, encoding=EncodingKind.UINT8)
        assert restored.encoding is EncodingKind.UINT8
        assert np.all(restored.voxels == 128)

    def test_overwrite(self, temp_dir):
        volume = GridVolume.empty((2, 2, 2), 1, EncodingKind.FLOAT32, BBOX)
        path = os.path.join(temp_dir, "volumes.h5")
        volume.to_hdf5(path)

        with pytest.raises(ValueError):
            volume.to_hdf5(path)

        volume.set_voxel((0, 0, 0), 4.0)
        volume.to_hdf5(path, overwrite=True)
        assert GridVolume.from_hdf5(path).get_voxel((0, 0, 0))[0] == 4.0
