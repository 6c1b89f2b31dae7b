# tests/conftest.py

import pytest
import numpy as np

from alscatalog.config import CatalogConfig
from alscatalog.catalog.source import InMemorySource

from helpers import make_forest

@pytest.fixture
def forest_cloud():
    """A 100 x 100 stand at 2 points per unit area (20 000 points)."""
    return make_forest()

@pytest.fixture
def forest_source(forest_cloud):
    return InMemorySource(forest_cloud)

@pytest.fixture
def small_config():
    """Chunks of 25 with a 5 unit buffer: a 4 x 4 layout over the forest fixture."""
    return CatalogConfig(chunk_size=25.0, buffer_margin=5.0, output_resolution=1.0)

@pytest.fixture
def las_catalog(tmp_path, forest_cloud):
    """
    Fixture: Splits the forest fixture into a 2 x 2 catalog of LAS tiles written with laspy.
    Returns the catalog directory.
    """
    directory = tmp_path / "catalog"
    directory.mkdir()
    pc = forest_cloud
    for row, y_sel in enumerate((pc.y < 50.0, pc.y >= 50.0)):
        for col, x_sel in enumerate((pc.x < 50.0, pc.x >= 50.0)):
            pc.subset(y_sel & x_sel).to_file(directory / f"tile_{row}_{col}.las")
    return directory
