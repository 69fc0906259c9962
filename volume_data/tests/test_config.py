"""
Tests for the YAML configuration layer and the loggers built from it.
"""
import logging
import os
import shutil

import pytest

from volume_data.grids._types import EncodingKind, RangePolicy
from volume_data.grids.volume import GridVolume
from volume_data.utilities.config import YAMLConfiguration, config_directory, vdparams
from volume_data.utilities.logging import devlog, mylog
from volume_data.utilities.types import AttrDict


@pytest.fixture()
def config_copy(temp_dir) -> YAMLConfiguration:
    path = os.path.join(temp_dir, "config.yaml")
    shutil.copy(config_directory, path)
    return YAMLConfiguration(path)


def test_defaults():
    assert vdparams["grid", "storage"] == "auto"
    assert vdparams["grid", "out_of_range"] == "clamp"
    assert set(vdparams.config.grid) == {"storage", "out_of_range"}


def test_dotted_keys():
    assert vdparams["grid.out_of_range"] == vdparams["grid", "out_of_range"]
    assert vdparams["logging.mylog.level"] == "INFO"

    with pytest.raises(KeyError):
        _ = vdparams["grid", "missing"]


def test_attribute_access():
    assert vdparams.config.grid.storage == "auto"
    assert isinstance(vdparams.config.logging.devlog, AttrDict)


def test_attr_dict_clean():
    nested = AttrDict({"a": {"b": {"c": 1}}})
    assert nested.a.b.c == 1

    cleaned = nested.clean()
    assert type(cleaned) is dict
    assert type(cleaned["a"]) is dict
    assert cleaned == {"a": {"b": {"c": 1}}}


def test_set_param(config_copy):
    config_copy.set_param("grid.out_of_range", "raise")
    assert config_copy["grid", "out_of_range"] == "raise"

    config_copy.set_param(["grid", "storage"], "mmap")
    assert YAMLConfiguration(config_copy.path)["grid", "storage"] == "mmap"

    # The packaged configuration is left alone.
    assert vdparams["grid", "out_of_range"] == "clamp"


def test_missing_file(temp_dir):
    with pytest.raises(FileNotFoundError):
        _ = YAMLConfiguration(os.path.join(temp_dir, "nope.yaml")).config


def test_default_range_policy():
    volume = GridVolume.empty((2, 2, 2), 1, EncodingKind.FLOAT32, [[0, 0, 0], [1, 1, 1]])
    assert volume.range_policy is RangePolicy(vdparams["grid", "out_of_range"])


def test_loggers():
    assert mylog.name == "volume_data"
    assert mylog.level == logging.INFO
    assert devlog.disabled == (not vdparams["logging", "devlog", "enabled"])

    logger = GridVolume.logger
    assert logger.name == "volume_data.GridVolume"
    assert logger is GridVolume.logger
    assert not logger.propagate
