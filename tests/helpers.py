# tests/helpers.py

import numpy as np
from alscatalog.lidar.layer import PointCloud
from alscatalog.raster.layer import Raster

GROUND_Z0 = 100.0
SLOPE_X = 0.05
SLOPE_Y = 0.02
CRS = "EPSG:32619"

def ground_elevation(x, y):
    """Synthetic terrain: a tilted plane."""
    return GROUND_Z0 + SLOPE_X * np.asarray(x) + SLOPE_Y * np.asarray(y)

def make_forest(
    xmin: float = 0.0,
    ymin: float = 0.0,
    width: float = 100.0,
    height: float = 100.0,
    density: float = 2.0,
    ground_share: float = 0.4,
    seed: int = 0,
    crs: str = CRS
) -> PointCloud:
    """
    Random ALS-like point cloud: ground returns (class 2) on the tilted plane and
    vegetation returns (class 5) between 0.5 and 25 units above it.
    """
    rng = np.random.default_rng(seed)
    n = int(width * height * density)
    x = rng.uniform(xmin, xmin + width, n)
    y = rng.uniform(ymin, ymin + height, n)
    is_ground = rng.random(n) < ground_share

    ground = ground_elevation(x, y)
    z = np.where(is_ground, ground, ground + rng.uniform(0.5, 25.0, n))
    classification = np.where(is_ground, 2, 5).astype(np.uint8)
    number_of_returns = rng.integers(1, 4, n).astype(np.uint8)
    return_number = rng.integers(1, number_of_returns.astype(np.int64) + 1).astype(np.uint8)

    return PointCloud(
        x=x, y=y, z=z,
        classification=classification,
        return_number=return_number,
        number_of_returns=number_of_returns,
        crs=crs
    )

def make_points(coords, classification=None, crs: str = CRS) -> PointCloud:
    """Builds a small point cloud from a list of (x, y, z) tuples."""
    arr = np.asarray(coords, dtype=np.float64).reshape(-1, 3)
    return PointCloud(x=arr[:, 0], y=arr[:, 1], z=arr[:, 2], classification=classification, crs=crs)

def sort_points(pc: PointCloud) -> PointCloud:
    """Canonical order (by x, y, z) to compare point sets regardless of order."""
    return pc.subset(np.lexsort((pc.z, pc.y, pc.x)))

def assert_same_points(a: PointCloud, b: PointCloud):
    """Two point sets hold the same points and fields, in any order."""
    assert len(a) == len(b), f"Point count mismatch: {len(a)} != {len(b)}"
    assert sort_points(a) == sort_points(b), "Point sets differ"

def assert_grid_match(r1: Raster, r2: Raster):
    """Strictly verify two rasters share the exact same grid."""
    assert r1.crs == r2.crs, \
        f"CRS mismatch: {r1.crs} != {r2.crs}"

    assert r1.shape == r2.shape, \
        f"Shape mismatch: {r1.shape} != {r2.shape}"

    assert np.allclose(np.array(r1.transform), np.array(r2.transform), atol=1e-9), \
        "Transform mismatch (Pixel alignment error)"
