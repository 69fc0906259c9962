"""Pytest configuration module for the `volume_data` package.

This configuration file provides the fixtures shared by the ``volume_data`` test suite.

Components
----------
1. **Custom Command-Line Options**:
   - `--tmp`: Sets a specific temporary directory to use. If not specified, a new
     temporary directory is generated and cleaned up after the test run.

2. **Fixtures**:
   - `temp_dir`: Manages temporary directory creation and cleanup. Returns a directory
     path, which is either user-specified or automatically generated.
   - `null_grid`: Factory writing zero-initialized VOL containers into `temp_dir`, mirroring
     the files a renderer would be handed by its scene loader.
"""
import os

import pytest

from volume_data.grids._types import EncodingKind
from volume_data.grids.format import write_null_volume

# The lattice used by the reference scenarios: 11 nodes per axis over [0, 10]^3, so that
# every integer world point is a lattice node.
UNIT_LATTICE = (11, 11, 11)
UNIT_BBOX = [[0, 0, 0], [10, 10, 10]]


def pytest_addoption(parser):
    """Add custom command-line options to pytest.

    Parameters
    ----------
    parser : pytest.Parser
        The pytest parser object to which options are added.
    """
    parser.addoption("--tmp", help="The temporary directory to use.", default=None)


@pytest.fixture()
def temp_dir(request) -> str:
    """Fixture to handle temporary directory management.

    If a directory is specified by the user, it will not be wiped after the test run;
    otherwise, a temporary directory is generated and removed after the test completes.

    Yields
    ------
    str
        The path to the temporary directory.
    """
    td = request.config.getoption("--tmp")

    if td is None:
        from tempfile import TemporaryDirectory

        td = TemporaryDirectory()

        yield td.name

        td.cleanup()
    else:
        td = os.path.abspath(td)
        os.makedirs(td, exist_ok=True)
        yield td


@pytest.fixture()
def null_grid(temp_dir):
    """Factory fixture writing a zero-initialized VOL container.

    Returns
    -------
    Callable
        ``null_grid(encoding, channels, resolution=UNIT_LATTICE, bbox=UNIT_BBOX, name=None) -> str``.
    """

    def _write(
        encoding: EncodingKind,
        channels: int,
        resolution=UNIT_LATTICE,
        bbox=UNIT_BBOX,
        name: str | None = None,
    ) -> str:
        if name is None:
            name = f"null_{EncodingKind(encoding).name.lower()}_{channels}.vol"
        path = os.path.join(temp_dir, name)
        write_null_volume(path, encoding, channels, resolution, bbox)
        return path

    return _write
