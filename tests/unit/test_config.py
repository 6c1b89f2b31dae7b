# tests/unit/test_config.py

import json

import numpy as np
import pytest

from alscatalog.config import CatalogConfig, GroundAlgorithm, GroundFailurePolicy, ExecutorType
from alscatalog.exceptions import ConfigurationError

def test_defaults():
    config = CatalogConfig().validate()
    assert config.noise_above_threshold == 5.0
    assert config.noise_below_threshold == 2.0
    assert config.knn_k == 6
    assert config.ground_algorithm == GroundAlgorithm.TRIANGULATION
    assert config.on_ground_failure == GroundFailurePolicy.DROP
    assert config.executor == ExecutorType.PROCESS
    assert config.workers == 1

def test_enum_values_accept_strings():
    config = CatalogConfig(ground_algorithm="knn-idw", on_ground_failure="skip", executor="thread")
    assert config.ground_algorithm == GroundAlgorithm.KNN_IDW
    assert config.on_ground_failure == GroundFailurePolicy.SKIP
    assert config.executor == ExecutorType.THREAD

    with pytest.raises(ConfigurationError):
        CatalogConfig(ground_algorithm="kriging")

@pytest.mark.parametrize("overrides", [
    {"chunk_size": 0},
    {"chunk_size": float("nan")},
    {"buffer_margin": -1},
    {"noise_grid_resolution": 0},
    {"noise_above_threshold": -0.5},
    {"knn_k": 0},
    {"workers": 0},
    {"workers": 2.0},
    {"workers": True},
    {"chunk_size": True},
    {"output_resolution": -1.0},
    {"aggregation": "p101"},
    {"aggregation": "unknown"},
    {"normalize": True, "ground_classes": ()},
])
def test_invalid_values(overrides):
    with pytest.raises(ConfigurationError):
        CatalogConfig(**overrides).validate()

def test_numpy_scalars_are_accepted():
    config = CatalogConfig(chunk_size=np.float64(50.0), buffer_margin=np.int64(5), workers=np.int64(2)).validate()
    assert config.workers == 2

def test_raster_alignment():
    CatalogConfig(chunk_size=500, output_resolution=0.5).check_raster_alignment()
    CatalogConfig(chunk_size=30, output_resolution=0.1).check_raster_alignment()
    with pytest.raises(ConfigurationError):
        CatalogConfig(chunk_size=500, output_resolution=3.0).check_raster_alignment()

def test_overrides_ignore_none():
    config = CatalogConfig(chunk_size=250)
    out = config.with_overrides(chunk_size=None, buffer_margin=10.0)
    assert out.chunk_size == 250
    assert out.buffer_margin == 10.0
    assert config.buffer_margin == 20.0

def test_dict_and_json_round_trip(tmp_path):
    config = CatalogConfig(chunk_size=100, ground_algorithm="knn-idw", ground_classes=(2, 9))
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config.to_dict()))

    loaded = CatalogConfig.from_json(path)
    assert loaded == config

def test_unknown_keys_are_rejected(tmp_path):
    with pytest.raises(ConfigurationError):
        CatalogConfig.from_dict({"chunk_size": 100, "chunk_sise": 200})

    path = tmp_path / "bad.json"
    path.write_text("[1, 2]")
    with pytest.raises(ConfigurationError):
        CatalogConfig.from_json(path)

    with pytest.raises(FileNotFoundError):
        CatalogConfig.from_json(tmp_path / "missing.json")
