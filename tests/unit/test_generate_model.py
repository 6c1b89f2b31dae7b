# tests/unit/test_generate_model.py

import numpy as np
import pytest

from alscatalog.lidar.layer import PointCloud
from alscatalog.lidar.normalize import build_ground_model
from alscatalog.lidar.rasterize import GridSpec
from alscatalog.lidar.generate_model import (
    ProductKind,
    dtm_product,
    dem_product,
    chm_product,
    metric_product,
    select_product_points,
    rasterize_product,
    terrain_grid,
    generate_dtm,
    generate_dsm,
    calculate_chm
)

from helpers import make_forest, ground_elevation

def test_presets():
    assert dtm_product().kind == ProductKind.TERRAIN
    assert chm_product().needs_height
    assert chm_product().clamp_min == 0.0
    assert not dem_product().needs_height
    assert metric_product("p95").name == "p95"
    assert metric_product("p95", field="z", name="zq95").name == "zq95"

def test_select_product_points():
    pc = make_forest(width=20, height=20)
    ground = select_product_points(pc, dem_product())
    assert set(ground.classification.tolist()) == {2}

    first = select_product_points(pc, metric_product("mean", first_returns_only=True))
    assert set(first.return_number.tolist()) == {1}

def test_terrain_grid_on_a_plane():
    pc = make_forest(width=40, height=40, density=4.0)
    model = build_ground_model(pc)
    grid = GridSpec.from_bounds((0, 0, 40, 40), 2.0)

    dtm = terrain_grid(model, grid)
    assert dtm.shape == (1, 20, 20)
    assert dtm.band_names == {"dtm": 1}

    cx = np.arange(20) * 2.0 + 1.0
    cy = 40.0 - (np.arange(20) * 2.0 + 1.0)
    qx, qy = np.meshgrid(cx, cy)
    expected = ground_elevation(qx, qy)
    # interior cells are inside the ground triangulation
    np.testing.assert_allclose(dtm.data[0, 2:-2, 2:-2], expected[2:-2, 2:-2], atol=1e-3)

def test_terrain_product_requires_model():
    grid = GridSpec.from_bounds((0, 0, 10, 10), 1.0)
    with pytest.raises(ValueError):
        rasterize_product(PointCloud.empty(), dtm_product(), grid)

def test_points_product_is_not_a_raster():
    from alscatalog.lidar.generate_model import points_product
    grid = GridSpec.from_bounds((0, 0, 10, 10), 1.0)
    with pytest.raises(ValueError):
        rasterize_product(PointCloud.empty(), points_product(), grid)

def test_single_cloud_generators():
    pc = make_forest(width=30, height=30)

    dsm = generate_dsm(pc, resolution=1.0)
    dtm = generate_dtm(pc, resolution=1.0)
    chm = calculate_chm(pc, resolution=1.0)

    assert dsm.shape == dtm.shape == chm.shape
    assert dsm.band_names == {"dsm": 1}
    assert chm.band_names == {"chm": 1}

    valid = chm.valid_mask
    assert valid.mean() > 0.7
    assert np.all(chm.data[0][valid] >= 0.0)
    assert np.all(chm.data[0][valid] <= 25.5)
    assert np.all(dsm.data[0][valid] >= dtm.data[0][valid] - 1.0)
