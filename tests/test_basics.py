# tests/test_basics.py
import numpy as np

from alscatalog import catalog, lidar, raster, config, exceptions

from helpers import make_forest

def test_imports():
    """Simple smoke test to ensure modules import correctly."""
    assert catalog is not None
    assert lidar is not None
    assert raster is not None
    assert config is not None
    assert exceptions is not None

def test_small_in_memory_run():
    """
    Module: catalog
    Function: run_catalog
    Test: a 2 x 2 layout over an in-memory stand returns every point once.
    """
    pc = make_forest(width=40, height=40, density=1.0)
    cfg = config.CatalogConfig(chunk_size=20.0, buffer_margin=4.0, denoise=False)

    report = catalog.run_catalog(catalog.InMemorySource(pc), cfg)

    assert report.planned == 4
    assert report.complete
    assert len(report.product) == len(pc)
    assert np.all(np.isfinite(report.product.get_field("height")))
