from volume_data.fields import GridDataSource, ValueKind, VolumeDataSource
from volume_data.grids._types import (
    AllocationFailure,
    AxisAlignedBoundingBox,
    EncodingKind,
    FormatError,
    NotEditable,
    OutOfRange,
    RangePolicy,
    UnsupportedOperation,
    VolumeDataError,
)
from volume_data.grids.format import load_volume, save_volume, write_null_volume
from volume_data.grids.volume import GridVolume
