# tests/unit/test_rasterize.py

import numpy as np
import pytest

from alscatalog.lidar.layer import PointCloud
from alscatalog.lidar.rasterize import GridSpec, points_to_grid, NODATA_VAL

from helpers import make_points

def test_grid_shape_rounds_up():
    assert GridSpec.from_bounds((0, 0, 10, 10), 1.0).shape == (10, 10)
    assert GridSpec.from_bounds((0, 0, 10.5, 10), 1.0).shape == (10, 11)
    assert GridSpec.from_bounds((3, 3, 3, 3), 1.0).shape == (1, 1)
    with pytest.raises(ValueError):
        GridSpec.from_bounds((0, 0, 10, 10), 0.0)

def test_cell_index_folds_outer_edges():
    grid = GridSpec.from_bounds((0, 0, 10, 10), 1.0)
    rows, cols = grid.cell_index(np.array([0.0, 10.0, 5.0, 0.5]), np.array([10.0, 0.0, 5.0, 9.5]))
    assert rows.tolist() == [0, 9, 4, 0]
    assert cols.tolist() == [0, 9, 5, 0]

def test_window_for_aligned_extents():
    grid = GridSpec.from_bounds((0, 0, 10.5, 10), 1.0)
    w = grid.window_for((0, 0, 5, 5))
    assert (w.col_off, w.row_off, w.width, w.height) == (0, 5, 5, 5)

    east = grid.window_for((5, 0, 10.5, 5))
    assert (east.col_off, east.width) == (5, 6)

def test_points_to_grid_max_mean_count():
    grid = GridSpec.from_bounds((0, 0, 10, 10), 1.0, "EPSG:32619")
    pc = make_points([(0.5, 9.5, 3.0), (0.6, 9.4, 5.0), (9.5, 0.5, 1.0)])

    dsm = points_to_grid(pc, method="max", grid=grid)
    assert dsm.shape == (1, 10, 10)
    assert dsm.band_names == {"max": 1}
    assert dsm.data[0, 0, 0] == 5.0
    assert dsm.data[0, 9, 9] == 1.0
    assert np.count_nonzero(dsm.valid_mask) == 2
    assert dsm.data[0, 5, 5] == NODATA_VAL

    assert points_to_grid(pc, method="mean", grid=grid).data[0, 0, 0] == pytest.approx(4.0)
    assert points_to_grid(pc, method="count", grid=grid).data[0, 0, 0] == 2.0
    assert points_to_grid(pc, method="p50", grid=grid).data[0, 0, 0] == pytest.approx(4.0)

def test_points_to_grid_window_places_partial_grid():
    grid = GridSpec.from_bounds((0, 0, 10, 10), 1.0)
    pc = make_points([(2.5, 2.5, 7.0), (9.5, 9.5, 1.0)])

    part = points_to_grid(pc, grid=grid, window=grid.window_for((0, 0, 5, 5)))
    assert part.shape == (1, 5, 5)
    assert part.transform.c == 0.0
    assert part.transform.f == 5.0
    assert part.data[0, 2, 2] == 7.0
    assert np.count_nonzero(part.valid_mask) == 1

def test_nan_values_are_ignored():
    grid = GridSpec.from_bounds((0, 0, 2, 2), 1.0)
    pc = make_points([(0.5, 0.5, 1.0), (0.5, 0.6, 2.0)]).with_field("height", np.array([np.nan, 4.0]))
    out = points_to_grid(pc, field="height", grid=grid)
    assert out.data[0, 1, 0] == 4.0

def test_grid_from_resolution():
    pc = make_points([(0.0, 0.0, 1.0), (4.0, 2.0, 2.0)])
    out = points_to_grid(pc, resolution=1.0)
    assert out.shape == (1, 2, 4)
    assert out.crs is not None

    with pytest.raises(ValueError):
        points_to_grid(PointCloud.empty(), resolution=1.0)
    with pytest.raises(ValueError):
        points_to_grid(pc)

def test_grid_is_anchored_on_south_west_corner():
    grid = GridSpec.from_bounds((0, 0, 10, 9.5), 1.0)
    assert grid.shape == (10, 10)
    assert grid.top == 10.0
    assert grid.transform.f == 10.0

    south = grid.window_for((0, 0, 10, 5))
    north = grid.window_for((0, 5, 10, 9.5))
    assert (south.row_off, south.height) == (5, 5)
    assert (north.row_off, north.height) == (0, 5)

    rows, _ = grid.cell_index(np.array([1.0, 1.0]), np.array([4.99, 9.5]))
    assert rows.tolist() == [5, 0]

def test_clamp_keeps_window_edge_points():
    grid = GridSpec.from_bounds((0, 0, 10, 10), 1.0)
    pc = make_points([(2.5, 5.0, 7.0), (2.5, 2.5, 1.0)])
    window = grid.window_for((0, 0, 5, 5))

    dropped = points_to_grid(pc, grid=grid, window=window)
    assert np.count_nonzero(dropped.valid_mask) == 1

    clamped = points_to_grid(pc, grid=grid, window=window, clamp=True)
    assert np.count_nonzero(clamped.valid_mask) == 2
    assert clamped.data[0, 0, 2] == 7.0
