# tests/unit/test_raster.py

import rasterio
import numpy as np
import pytest
from rasterio.transform import from_origin

from alscatalog.raster import Raster, load, save
from alscatalog.lidar.rasterize import NODATA_VAL

from helpers import assert_grid_match, CRS

def _chm_raster(height=20, width=30):
    data = np.full((height, width), NODATA_VAL, dtype=np.float32)
    data[2:5, 3:8] = 12.5
    return Raster(
        data=data,
        transform=from_origin(1000.0, 2000.0, 1.0, 1.0),
        crs=CRS,
        nodata=NODATA_VAL,
        band_names={"chm": 1}
    )

def test_two_dimensional_data_is_promoted():
    r = _chm_raster()
    assert r.shape == (1, 20, 30)
    assert r.count == 1
    assert r.bounds == (1000.0, 1980.0, 1030.0, 2000.0)
    assert r.resolution == (1.0, 1.0)
    assert np.array(r).shape == (1, 20, 30)

def test_invalid_inputs_raise():
    with pytest.raises(TypeError):
        Raster(data=[[1, 2]], transform=from_origin(0, 0, 1, 1))
    with pytest.raises(ValueError):
        Raster(data=np.zeros(4), transform=from_origin(0, 0, 1, 1))
    with pytest.raises(TypeError):
        Raster(data=np.zeros((2, 2)), transform=(0, 1, 0, 0, 0, -1))

def test_valid_mask_and_band_lookup():
    r = _chm_raster()
    assert np.count_nonzero(r.valid_mask) == 15
    assert np.shares_memory(r.get_band("chm"), r.data)
    with pytest.raises(KeyError):
        r.get_band("dsm")
    with pytest.raises(IndexError):
        r.get_band(2)

def test_save_and_load_round_trip(tmp_path):
    r = _chm_raster()
    path = save(r, tmp_path / "nested" / "chm.tif")
    assert path.exists()

    with rasterio.open(path) as src:
        assert src.driver == "GTiff"
        assert src.profile["compress"] == "lzw"
        assert src.descriptions[0] == "chm"

    loaded = load(path)
    assert_grid_match(loaded, r)
    assert loaded.band_names == {"chm": 1}
    assert loaded == r

def test_small_rasters_are_written_untiled(tmp_path):
    r = Raster(data=np.ones((5, 5), dtype=np.float32), transform=from_origin(0, 5, 1, 1), crs=CRS)
    path = r.save(tmp_path / "small.tif")
    with rasterio.open(path) as src:
        assert not src.profile.get("tiled", False)
    assert Raster.from_file(path).shape == (1, 5, 5)

def test_load_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load(tmp_path / "missing.tif")
