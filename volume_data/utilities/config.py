"""volume_data configuration management / utilities."""
import operator
import os
import pathlib as pt
from functools import reduce
from typing import Any, Collection, Iterable, Mapping

import ruamel.yaml

from volume_data.utilities.types import AttrDict

config_directory = os.path.join(pt.Path(__file__).parents[1], "bin", "config.yaml")
""" str: The system directory where the ``volume_data`` configuration is stored.

The underlying ``.yaml`` file may be altered by the user to set configuration values.
"""

yaml = ruamel.yaml.YAML()


class YAMLConfiguration:
    """Generic YAML configuration class.

    Values may be read either through the attribute-style :py:attr:`config` view or
    by indexing with a key path:

    >>> vdparams["grid", "out_of_range"]
    'clamp'
    """

    def __init__(self, path: pt.Path | str):
        self.path: pt.Path = pt.Path(path)
        # :py:class:`pathlib.Path`: The path to the underlying yaml file.
        self._config: ruamel.yaml.CommentedMap | None = None

    def __getitem__(self, key: str | tuple[str, ...]) -> Any:
        if isinstance(key, str):
            key = key.split(".")

        return getFromDict(self.config, key)

    def __str__(self):
        return f"<YAMLConfiguration: {self.path}>"

    def __repr__(self):
        return self.__str__()

    @property
    def config(self):
        if self._config is None:
            self._config = self.load()

        return AttrDict(self._config)

    @classmethod
    def load_from_path(cls, path: pt.Path) -> dict:
        """Read the configuration dictionary from disk."""
        try:
            with open(path, "r") as cf:
                return yaml.load(cf)

        except FileNotFoundError as er:
            raise FileNotFoundError(
                f"Couldn't find the configuration file! Is it at {config_directory}? Error = {er.__repr__()}"
            )

    def load(self) -> dict:
        return self.__class__.load_from_path(self.path)

    def reload(self):
        """Reload the configuration file from disk."""
        self._config = None

    @classmethod
    def set_on_disk(cls, path: pt.Path | str, name: str | Collection[str], value: Any):
        _old = cls.load_from_path(path)

        if isinstance(name, str):
            name = name.split(".")
        else:
            name = list(name)

        setInDict(_old, name, value)

        with open(path, "w") as cf:
            yaml.dump(_old, cf)

    def set_param(self, name: str | Collection[str], value):
        """Persist a configuration value to disk and drop the cached copy."""
        self.__class__.set_on_disk(self.path, name, value)
        self.reload()


vdparams: YAMLConfiguration = YAMLConfiguration(config_directory)
""":py:class:`YAMLConfiguration`: The ``volume_data`` configuration object."""


def getFromDict(dataDict: Mapping, mapList: Iterable[str]) -> Any:
    """Fetch an object from a nested dictionary using a list of keys.

    Parameters
    ----------
    dataDict: dict
        The data dictionary to search.
    mapList: list
        The list of keys to follow.

    Returns
    -------
    Any
        The output value.
    """
    return reduce(operator.getitem, mapList, dataDict)


def setInDict(dataDict: Mapping, mapList: list[str], value: Any):
    """Set the value of an object from a nested dictionary using a list of keys.

    Parameters
    ----------
    dataDict: dict
        The data dictionary to search.
    mapList: list
        The list of keys to follow.
    value: Any
        The value to set the object to
    """
    getFromDict(dataDict, mapList[:-1])[mapList[-1]] = value
