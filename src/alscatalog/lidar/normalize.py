# src/alscatalog/lidar/normalize.py

"""
This module implements ground surface interpolation and height normalization.

Two interpolators are available:
    - triangulation: Delaunay triangulation of the ground points with linear
      interpolation inside each triangle. Queries outside the convex hull are
      answered by the knn-idw interpolator.
    - knn-idw: inverse-distance weighting of the k nearest ground points.
"""

from typing import Iterable, Optional
import logging

import numpy as np
from scipy.interpolate import LinearNDInterpolator
from scipy.spatial import cKDTree, QhullError

from alscatalog.config import GroundAlgorithm
from alscatalog.exceptions import GroundModelUndeterminedError

from .layer import PointCloud

log = logging.getLogger(__name__)

__all__ = [
    "GroundModel",
    "build_ground_model",
    "ground_points",
    "normalize_height",
    "HEIGHT_FIELD"
]

HEIGHT_FIELD = "height"

class GroundModel:
    """
    Interpolated ground surface built from (x, y, z) ground points.

    Calling the model with query coordinates returns the interpolated ground
    elevation at each of them.

    Args:
        gx, gy, gz (np.ndarray): Ground point coordinates.
        algorithm (GroundAlgorithm): Interpolation algorithm.
        k (int): Neighbour count for knn-idw (also used for the triangulation fallback).
        power (float): Distance power for knn-idw.
    """
    def __init__(
        self,
        gx: np.ndarray,
        gy: np.ndarray,
        gz: np.ndarray,
        algorithm: GroundAlgorithm = GroundAlgorithm.TRIANGULATION,
        k: int = 6,
        power: float = 2.0
    ):
        self.algorithm = GroundAlgorithm(algorithm)
        self.k = int(k)
        self.power = float(power)

        xy = np.column_stack((gx, gy))
        # Duplicate planimetric positions break the triangulation; keep the lowest z
        order = np.lexsort((gz, gy, gx))
        xy, gz = xy[order], np.asarray(gz)[order]
        unique = np.r_[True, np.any(np.diff(xy, axis=0) != 0, axis=1)]
        self._xy = xy[unique]
        self._z = gz[unique]

        self._tree = cKDTree(self._xy)
        self._linear = None
        if self.algorithm == GroundAlgorithm.TRIANGULATION:
            try:
                self._linear = LinearNDInterpolator(self._xy, self._z)
            except QhullError as e:
                raise GroundModelUndeterminedError(
                    f"Ground points are degenerate (collinear or coincident): {e}"
                ) from e

    def __len__(self) -> int:
        return len(self._z)

    def _knn_idw(self, qx: np.ndarray, qy: np.ndarray) -> np.ndarray:
        k = min(self.k, len(self._z))
        dist, idx = self._tree.query(np.column_stack((qx, qy)), k=k)
        if k == 1:
            dist = dist[:, np.newaxis]
            idx = idx[:, np.newaxis]

        values = self._z[idx]
        exact = dist == 0
        with np.errstate(divide="ignore"):
            weights = 1.0 / np.power(dist, self.power)
        # A query sitting on a ground point takes that point's elevation
        weights[exact.any(axis=1)] = 0.0
        weights[exact] = 1.0
        return np.sum(weights * values, axis=1) / np.sum(weights, axis=1)

    def __call__(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        if len(x) == 0:
            return np.empty(0, dtype=np.float64)

        if self._linear is None:
            return self._knn_idw(x, y)

        z = self._linear(x, y)
        outside = np.isnan(z)
        if np.any(outside):
            z[outside] = self._knn_idw(x[outside], y[outside])
        return z

    def __repr__(self) -> str:
        return f"<GroundModel algorithm={self.algorithm.value} points={len(self)}>"

def ground_points(pc: PointCloud, ground_classes: Iterable[int] = (2,)) -> PointCloud:
    """Returns the points whose classification is one of `ground_classes`."""
    return pc.subset(np.isin(pc.classification, np.asarray(list(ground_classes))))

def build_ground_model(
    pc: PointCloud,
    algorithm: GroundAlgorithm = GroundAlgorithm.TRIANGULATION,
    k: int = 6,
    power: float = 2.0,
    ground_classes: Iterable[int] = (2,),
    min_points: int = 3
    ) -> GroundModel:
    """
    Builds the ground surface of a point cloud from its ground-classified points.

    Args:
        pc (PointCloud): Points including ground returns.
        algorithm (GroundAlgorithm): Interpolation algorithm.
        k (int): Neighbour count for knn-idw.
        power (float): Distance power for knn-idw.
        ground_classes (Iterable[int]): Classification codes considered ground.
        min_points (int): Minimum distinct ground points required.

    Returns:
        GroundModel: Callable ground surface.

    Raises:
        GroundModelUndeterminedError: If fewer than `min_points` ground points are available.
    """
    ground = ground_points(pc, ground_classes)
    required = max(int(min_points), 3 if GroundAlgorithm(algorithm) == GroundAlgorithm.TRIANGULATION else 1)
    if len(ground) < required:
        raise GroundModelUndeterminedError(
            f"Ground model undetermined: {len(ground)} ground points, at least {required} required"
        )

    model = GroundModel(ground.x, ground.y, ground.z, algorithm=algorithm, k=k, power=power)
    if len(model) < required:
        raise GroundModelUndeterminedError(
            f"Ground model undetermined: {len(model)} distinct ground positions, at least {required} required"
        )
    log.debug(f"Built {model!r}")
    return model

def normalize_height(
    pc: PointCloud,
    model: Optional[GroundModel] = None,
    algorithm: GroundAlgorithm = GroundAlgorithm.TRIANGULATION,
    k: int = 6,
    power: float = 2.0,
    ground_classes: Iterable[int] = (2,),
    min_points: int = 3,
    field_name: str = HEIGHT_FIELD
    ) -> PointCloud:
    """
    Attaches a height-above-ground field computed as z minus the interpolated ground elevation.

    Args:
        pc (PointCloud): Points to normalize.
        model (Optional[GroundModel]): Prebuilt ground model. Built from `pc` when omitted.
        algorithm, k, power, ground_classes, min_points: See build_ground_model.
        field_name (str): Name of the attached field.

    Returns:
        PointCloud: New point cloud carrying the height field.
    """
    if pc.is_empty:
        return pc.with_field(field_name, np.empty(0))
    if model is None:
        model = build_ground_model(
            pc, algorithm=algorithm, k=k, power=power,
            ground_classes=ground_classes, min_points=min_points
        )
    return pc.with_field(field_name, pc.z - model(pc.x, pc.y))
