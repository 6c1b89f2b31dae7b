# tests/unit/test_clean.py

import numpy as np
import pytest

from alscatalog.lidar.layer import PointCloud
from alscatalog.lidar.clean import deduplicate, filter_returns, denoise, cell_percentiles

from helpers import make_forest, make_points

def ten_points_with_one_duplicate():
    coords = [(i, 2.0 * i, 100.0 + i) for i in range(9)]
    coords.append(coords[3])
    return make_points(coords)

def test_single_duplicate_pair_is_reduced_to_one_point():
    pc = ten_points_with_one_duplicate()
    out = deduplicate(pc)

    assert len(pc) == 10
    assert len(out) == 9
    # first occurrences kept, original order preserved
    assert out.x.tolist() == list(range(9))

def test_points_differing_in_return_metadata_are_kept():
    pc = PointCloud(
        x=np.array([1.0, 1.0]), y=np.array([1.0, 1.0]), z=np.array([5.0, 5.0]),
        return_number=np.array([1, 2]), number_of_returns=np.array([2, 2])
    )
    assert len(deduplicate(pc)) == 2

def test_deduplicate_is_idempotent():
    base = make_forest(width=30, height=30, density=1.0)
    doubled = PointCloud.concat([base, base.subset(np.arange(0, len(base), 3))])

    once = deduplicate(doubled)
    twice = deduplicate(once)
    assert len(once) == len(base)
    assert once == twice

def test_filter_returns_drops_return_zero():
    pc = PointCloud(
        x=np.arange(4.0), y=np.arange(4.0), z=np.arange(4.0),
        return_number=np.array([0, 1, 2, 0]), number_of_returns=np.array([1, 2, 2, 1])
    )
    assert filter_returns(pc).x.tolist() == [1.0, 2.0]

def test_cell_percentiles_match_numpy():
    rng = np.random.default_rng(3)
    values = rng.normal(size=500)
    cells = rng.integers(0, 7, 500)

    (p_low, p_high), counts = cell_percentiles(values, cells, (0.1, 99.9))
    for cell in range(7):
        sel = cells == cell
        assert p_low[sel][0] == pytest.approx(np.percentile(values[sel], 0.1))
        assert p_high[sel][0] == pytest.approx(np.percentile(values[sel], 99.9))
        assert counts[sel][0] == np.count_nonzero(sel)

def test_denoise_removes_isolated_spikes():
    forest = make_forest(width=50, height=50)
    spikes = make_points([(12.0, 12.0, 2000.0), (37.0, 37.0, -900.0)], classification=np.array([5, 2]))
    pc = PointCloud.concat([forest, spikes])

    out = denoise(pc, resolution=5.0, above=5.0, below=2.0, min_points=3)
    assert out.z.max() < 1000.0
    assert out.z.min() > 0.0
    assert len(out) == len(forest)

def test_denoise_leaves_sparse_cells_untouched():
    pc = make_points([(0.5, 0.5, 0.0), (1.0, 1.0, 500.0)])
    assert len(denoise(pc, resolution=5.0, min_points=3)) == 2

def test_denoise_above_threshold_is_monotonic():
    # dense cells (~2000 points each) so the top percentile sits inside the data
    pc = make_forest(width=20, height=20, density=80.0, seed=7)
    removed = []
    for above in (0.0, 0.01, 0.1, 0.5, 1.0, 5.0, 50.0):
        out = denoise(pc, resolution=5.0, above=above, below=1e9, min_points=3)
        removed.append(len(pc) - len(out))

    assert removed[0] > 0
    assert all(a >= b for a, b in zip(removed, removed[1:]))
    assert removed[-1] == 0

def test_denoise_rejects_bad_resolution():
    with pytest.raises(ValueError):
        denoise(make_points([(0, 0, 0)]), resolution=0)
