# src/alscatalog/lidar/clean.py

"""
This module implements point cleaning stages: duplicate removal, return
filtering and statistical outlier (noise) removal on a coarse grid.

Every stage takes a PointCloud and returns a new PointCloud.
"""

from typing import Optional, Tuple
import logging

import numpy as np

from .layer import PointCloud

log = logging.getLogger(__name__)

__all__ = [
    "deduplicate",
    "filter_returns",
    "cell_percentiles",
    "denoise"
]

def deduplicate(pc: PointCloud) -> PointCloud:
    """
    Removes exact duplicate points, keeping the first occurrence.

    Two points are duplicates when x, y, z, return_number and number_of_returns
    are all identical. The order of the surviving points is preserved, so the
    stage is idempotent.

    Args:
        pc (PointCloud): Input points.

    Returns:
        PointCloud: Points without duplicates.
    """
    if len(pc) < 2:
        return pc

    keys = np.column_stack((
        pc.x, pc.y, pc.z,
        pc.return_number.astype(np.float64),
        pc.number_of_returns.astype(np.float64)
    ))
    # np.unique reports the index of the first occurrence of every distinct row
    _, first_idx = np.unique(keys, axis=0, return_index=True)
    if len(first_idx) == len(pc):
        return pc

    keep = np.sort(first_idx)
    log.debug(f"Removed {len(pc) - len(keep)} duplicate points")
    return pc.subset(keep)

def filter_returns(pc: PointCloud) -> PointCloud:
    """Drops points with an invalid return number of 0."""
    mask = pc.return_number > 0
    if mask.all():
        return pc
    return pc.subset(mask)

def _cell_index(
    pc: PointCloud,
    bounds: Tuple[float, float, float, float],
    resolution: float
    ) -> np.ndarray:
    """Linear index of the grid cell holding each point (grid anchored on the lower-left corner of bounds)."""
    xmin, ymin, xmax, ymax = bounds
    ncols = int(np.floor((xmax - xmin) / resolution)) + 1
    nrows = int(np.floor((ymax - ymin) / resolution)) + 1
    cols = np.floor((pc.x - xmin) / resolution).astype(np.int64)
    rows = np.floor((pc.y - ymin) / resolution).astype(np.int64)
    # Points slightly outside the anchor bounds are folded into the border cells
    np.clip(cols, 0, ncols - 1, out=cols)
    np.clip(rows, 0, nrows - 1, out=rows)
    return rows * ncols + cols

def cell_percentiles(
    values: np.ndarray,
    cells: np.ndarray,
    quantiles: Tuple[float, ...]
    ) -> Tuple[np.ndarray, np.ndarray]:
    """
    Computes percentiles of `values` per cell, vectorised over all cells.

    Uses linear interpolation between order statistics, which matches
    numpy.percentile's default method.

    Args:
        values (np.ndarray): Values to summarize.
        cells (np.ndarray): Cell id of each value.
        quantiles (Tuple[float, ...]): Percentiles in [0, 100].

    Returns:
        Tuple[np.ndarray, np.ndarray]:
            - (len(quantiles), n) array of each point's cell percentiles.
            - (n,) array with the number of points in each point's cell.
    """
    n = len(values)
    order = np.lexsort((values, cells))
    sorted_cells = cells[order]
    sorted_vals = values[order]

    starts = np.flatnonzero(np.r_[True, sorted_cells[1:] != sorted_cells[:-1]])
    counts = np.diff(np.r_[starts, n])

    per_cell = np.empty((len(quantiles), len(starts)), dtype=np.float64)
    for i, q in enumerate(quantiles):
        pos = (counts - 1) * (q / 100.0)
        lo = np.floor(pos).astype(np.int64)
        hi = np.ceil(pos).astype(np.int64)
        v_lo = sorted_vals[starts + lo]
        v_hi = sorted_vals[starts + hi]
        per_cell[i] = v_lo + (pos - lo) * (v_hi - v_lo)

    # Map every point back to the statistics of its cell
    group = np.empty(n, dtype=np.int64)
    group[order] = np.repeat(np.arange(len(starts)), counts)
    return per_cell[:, group], counts[group]

def denoise(
    pc: PointCloud,
    resolution: float,
    above: float = 5.0,
    below: float = 2.0,
    min_points: int = 3,
    bounds: Optional[Tuple[float, float, float, float]] = None
    ) -> PointCloud:
    """
    Removes isolated high and low outliers using a coarse percentile grid.

    Steps:
        1. Overlays a grid of `resolution` sized cells anchored on `bounds`
           (the chunk's padded region) or on the points' own bounds.
        2. Computes the 99.9th and 0.1th percentile of z in every cell.
        3. Discards points more than `above` units over the 99.9th percentile,
           or more than `below` units under the 0.1th percentile of their cell.
        4. Cells holding fewer than `min_points` points are left untouched.

    Args:
        pc (PointCloud): Input points.
        resolution (float): Noise grid cell size.
        above (float): Tolerance above the upper percentile.
        below (float): Tolerance below the lower percentile.
        min_points (int): Minimum points in a cell for the filter to apply.
        bounds (Optional[Tuple]): Grid anchor as (xmin, ymin, xmax, ymax). Defaults to the points' bounds.

    Returns:
        PointCloud: Points without noise.
    """
    if resolution <= 0:
        raise ValueError(f"Noise grid resolution must be > 0, got {resolution}")
    if pc.is_empty:
        return pc

    if bounds is None:
        bounds = (pc.min_x, pc.min_y, pc.max_x, pc.max_y)

    cells = _cell_index(pc, bounds, resolution)
    (p_low, p_high), counts = cell_percentiles(pc.z, cells, (0.1, 99.9))

    too_high = pc.z > p_high + above
    too_low = pc.z < p_low - below
    keep = (counts < min_points) | ~(too_high | too_low)

    removed = len(pc) - int(np.count_nonzero(keep))
    if removed == 0:
        return pc
    log.debug(f"Denoise removed {removed} points ({np.count_nonzero(too_high & ~keep)} high, "
              f"{np.count_nonzero(too_low & ~keep)} low)")
    return pc.subset(keep)
