# tests/unit/test_layer.py

import pytest
import numpy as np

from alscatalog.lidar.layer import PointCloud

from helpers import make_points, make_forest

def test_defaults_and_immutability():
    pc = make_points([(0, 0, 1), (1, 1, 2)])
    assert pc.classification.tolist() == [0, 0]
    assert pc.return_number.tolist() == [1, 1]
    assert pc.number_of_returns.tolist() == [1, 1]

    with pytest.raises(ValueError):
        pc.z[0] = 10.0
    with pytest.raises(AttributeError):
        pc.z = np.zeros(2)

def test_caller_array_is_not_frozen():
    z = np.array([1.0, 2.0])
    PointCloud(x=np.zeros(2), y=np.zeros(2), z=z)
    z[0] = 5.0
    assert z[0] == 5.0

def test_length_mismatch_is_rejected():
    with pytest.raises(ValueError):
        PointCloud(x=np.zeros(3), y=np.zeros(2), z=np.zeros(3))
    with pytest.raises(ValueError):
        PointCloud(x=np.zeros(2), y=np.zeros(2), z=np.zeros(2), fields={"height": np.zeros(3)})

def test_with_field_returns_new_cloud():
    pc = make_points([(0, 0, 1), (1, 1, 2)])
    out = pc.with_field("height", np.array([0.5, 1.5]))
    assert "height" not in pc.fields
    assert out.get_field("height").tolist() == [0.5, 1.5]
    assert out.get_field("z").tolist() == [1.0, 2.0]

    with pytest.raises(ValueError):
        pc.with_field("z", np.zeros(2))
    with pytest.raises(KeyError):
        pc.get_field("intensity")

def test_subset_and_concat_fill_missing_fields():
    a = make_points([(0, 0, 1), (1, 1, 2)]).with_field("height", np.array([0.1, 0.2]))
    b = make_points([(2, 2, 3)])

    merged = PointCloud.concat([a, b])
    assert len(merged) == 3
    assert merged.x.tolist() == [0, 1, 2]
    assert merged.get_field("height")[:2].tolist() == [0.1, 0.2]
    assert np.isnan(merged.get_field("height")[2])

    assert len(merged.subset(merged.z > 1.5)) == 2
    assert PointCloud.concat([]).is_empty

def test_empty_cloud_bounds_are_nan():
    pc = PointCloud.empty(crs="EPSG:32619", field_names=["height"])
    assert pc.is_empty
    assert np.isnan(pc.min_x)
    assert "height" in pc.fields

def test_las_round_trip(tmp_path):
    pc = make_forest(width=20, height=20, density=1.0).with_field("height", np.linspace(0, 1, 400))
    path = pc.to_file(tmp_path / "points.las")
    assert path.exists()

    loaded = PointCloud.from_file(path)
    assert len(loaded) == len(pc)
    np.testing.assert_allclose(loaded.x, pc.x, atol=1e-3)
    np.testing.assert_allclose(loaded.z, pc.z, atol=1e-3)
    assert loaded.classification.tolist() == pc.classification.tolist()
    assert loaded.return_number.tolist() == pc.return_number.tolist()
    np.testing.assert_allclose(loaded.get_field("height"), pc.get_field("height"))

    chunks = list(PointCloud.iter_chunks(path, chunk_size=150))
    assert [len(c) for c in chunks] == [150, 150, 100]

def test_from_file_missing_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        PointCloud.from_file(tmp_path / "missing.las")
