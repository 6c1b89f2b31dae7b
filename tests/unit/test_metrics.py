# tests/unit/test_metrics.py

import pickle

import numpy as np
import pytest

from alscatalog.lidar.metrics import Reducer, get_reducer, register_reducer, available_reducers

VALUES = np.array([1.0, 3.0, 5.0, 7.0])
RN = np.array([1, 1, 2, 1], dtype=np.uint8)
NR = np.array([1, 2, 2, 1], dtype=np.uint8)

@pytest.mark.parametrize("name, expected", [
    ("max", 7.0),
    ("min", 1.0),
    ("mean", 4.0),
    ("count", 4.0),
    ("p50", 4.0),
    ("p100", 7.0),
    ("std", np.std(VALUES)),
])
def test_builtin_reducers(name, expected):
    assert get_reducer(name)(VALUES, RN, NR) == pytest.approx(expected)

def test_cover_counts_first_returns_above_two():
    # first returns: 1, 3, 7 -> two above 2
    assert get_reducer("cover")(VALUES, RN, NR) == pytest.approx(2 / 3)

def test_first_mean_without_first_returns_is_nan():
    assert np.isnan(get_reducer("first_mean")(VALUES, np.full(4, 2), NR))

def test_unknown_and_out_of_range_names():
    with pytest.raises(KeyError):
        get_reducer("median-ish")
    with pytest.raises(KeyError):
        get_reducer("p120")

def test_callables_and_registry():
    def spread(values, rn, nr):
        return values.max() - values.min()

    reducer = get_reducer(spread)
    assert reducer.name == "spread"
    assert reducer(VALUES, RN, NR) == 6.0
    assert get_reducer(reducer) is reducer

    register_reducer("test_spread", spread)
    assert "test_spread" in available_reducers()
    with pytest.raises(ValueError):
        register_reducer("test_spread", spread)
    with pytest.raises(ValueError):
        register_reducer("p10", spread)

def test_percentile_reducers_are_picklable():
    reducer = pickle.loads(pickle.dumps(get_reducer("p95")))
    assert isinstance(reducer, Reducer)
    assert reducer(VALUES, RN, NR) == pytest.approx(np.percentile(VALUES, 95))
