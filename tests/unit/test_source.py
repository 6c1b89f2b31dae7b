# tests/unit/test_source.py

import pickle

import numpy as np
import pytest

from alscatalog.exceptions import ConfigurationError
from alscatalog.lidar.layer import PointCloud
from alscatalog.catalog.extent import Extent
from alscatalog.catalog.tindex import TileIndex
from alscatalog.catalog.source import (
    InMemorySource,
    LasCatalogSource,
    ClassFilter,
    drop_return_zero,
    combine_predicates
)

from helpers import make_points

def test_in_memory_source_reads_closed_extent():
    pc = make_points([(0, 0, 1), (10, 10, 2), (10.5, 5, 3), (5, 5, 4)])
    source = InMemorySource(pc)
    assert source.extent.bounds == (0, 0, 10.5, 10)

    out = source.read(Extent(0, 0, 10, 10))
    assert sorted(out.z.tolist()) == [1, 2, 4]

def test_in_memory_source_index():
    pc = make_points([(0, 0, 1), (10, 10, 2)])
    tindex = InMemorySource(pc).index
    assert len(tindex) == 1
    assert tindex.point_count == 2
    assert tindex.density == pytest.approx(2 / 100)

    with pytest.raises(ValueError):
        InMemorySource(PointCloud.empty())

def test_predicates():
    pc = PointCloud(
        x=np.arange(5.0), y=np.arange(5.0), z=np.arange(5.0),
        classification=np.array([2, 5, 7, 2, 18]),
        return_number=np.array([1, 0, 1, 2, 1]),
        number_of_returns=np.array([1, 1, 1, 2, 1])
    )
    assert drop_return_zero(pc).tolist() == [True, False, True, True, True]
    assert ClassFilter(keep=(2,))(pc).tolist() == [True, False, False, True, False]
    assert ClassFilter(drop=(7, 18))(pc).tolist() == [True, True, False, True, False]

    combined = combine_predicates(drop_return_zero, None, ClassFilter(drop=(7, 18)))
    assert combined(pc).tolist() == [True, False, False, True, False]
    assert combine_predicates(None, None) is None
    assert combine_predicates(drop_return_zero) is drop_return_zero

    # predicates are shipped to worker processes
    restored = pickle.loads(pickle.dumps(combined))
    assert restored(pc).tolist() == combined(pc).tolist()

    source = InMemorySource(pc)
    assert source.read(source.extent, combined).x.tolist() == [0.0, 3.0]

def test_tile_index_from_directory(las_catalog, forest_cloud):
    tindex = TileIndex.from_directory(las_catalog)

    assert len(tindex) == 4
    assert tindex.point_count == len(forest_cloud)
    assert tindex.crs is not None and "32619" in tindex.crs
    assert tindex.extent.xmin == pytest.approx(forest_cloud.min_x, abs=1e-3)
    assert tindex.extent.ymax == pytest.approx(forest_cloud.max_y, abs=1e-3)
    assert tindex.density == pytest.approx(2.0, rel=0.1)

    gdf = tindex.to_geodataframe()
    assert len(gdf) == 4
    assert set(gdf["point_count"]) == {t.point_count for t in tindex}

    touching = tindex.tiles_touching(Extent(10, 10, 20, 20))
    assert [t.name for t in touching] == ["tile_0_0.las"]

def test_tile_index_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        TileIndex.from_directory(tmp_path / "missing")
    with pytest.raises(ConfigurationError):
        TileIndex.from_directory(tmp_path)
    with pytest.raises(FileNotFoundError):
        TileIndex.from_files([tmp_path / "missing.las"])

def test_las_catalog_source_matches_tiles(las_catalog):
    tindex = TileIndex.from_directory(las_catalog)
    source = LasCatalogSource(tindex, points_per_iteration=1000)
    reference = PointCloud.concat([PointCloud.from_file(t.path) for t in tindex])

    region = Extent(40, 40, 60, 60)
    out = source.read(region)
    expected = region.contains(reference.x, reference.y)
    assert len(out) == np.count_nonzero(expected)
    assert out.crs == tindex.crs

    only_ground = source.read(region, ClassFilter(keep=(2,)))
    assert set(only_ground.classification.tolist()) == {2}

    assert source.read(Extent(500, 500, 600, 600)).is_empty
