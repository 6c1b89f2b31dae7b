# src/alscatalog/lidar/rasterize.py

"""
This module implements functions to rasterize lidar point clouds onto a
global output grid, either as a whole or one window (chunk) at a time.
"""

from dataclasses import dataclass
from typing import Union, Optional, Tuple, Callable
import logging
import math

import numpy as np
from rasterio.transform import Affine
from rasterio.windows import Window
from rasterio.windows import transform as compute_window_transform
from numba import jit

from alscatalog.raster.layer import Raster

from .layer import PointCloud
from .metrics import Reducer, get_reducer, KERNEL_COUNT, KERNEL_MEAN

log = logging.getLogger(__name__)

__all__ = [
    "GridSpec",
    "points_to_grid",
    "NODATA_VAL"
]

NODATA_VAL = -9999.0

def _create_affine_transform(min_x: float, max_y: float, resolution: float) -> Affine:
    """
    Generates affine coordinate reference transforms for empty grids.

    Args:
        min_x (float): Minimum X coordinate of the grid.
        max_y (float): Maximum Y coordinate of the grid.
        resolution (float): Geographic units per pixel.

    Returns:
        Affine: Affine transformation object for georeferencing the raster grid.
    """
    # Translate spatial coordinates into discrete pixel space through a combination of scaling and translation
    return Affine.translation(min_x, max_y) * Affine.scale(resolution, -resolution)

@dataclass(frozen=True)
class GridSpec:
    """
    Wall-to-wall output grid covering a dataset extent.

    The grid is anchored on the extent's south-western corner, like the chunk
    tiling, so chunk cores sized in whole cells always start on a cell edge.
    Cells are half-open like chunk cores: a cell covers [left, right) in x and
    [bottom, top) in y, so points on a shared cell edge land in exactly one cell.

    Args:
        xmin (float): Western edge of the covered extent.
        ymin (float): Southern edge of the covered extent.
        xmax (float): Eastern edge of the covered extent.
        ymax (float): Northern edge of the covered extent.
        resolution (float): Cell size.
        width (int): Number of columns.
        height (int): Number of rows.
        crs (Optional[str]): Coordinate reference name.
    """
    xmin: float
    ymin: float
    xmax: float
    ymax: float
    resolution: float
    width: int
    height: int
    crs: Optional[str] = None

    @classmethod
    def from_bounds(
        cls,
        bounds: Tuple[float, float, float, float],
        resolution: float,
        crs: Optional[str] = None
        ) -> 'GridSpec':
        """Builds the grid covering (xmin, ymin, xmax, ymax); edge cells may extend past xmax / above ymax."""
        if resolution <= 0:
            raise ValueError(f"Resolution must be > 0, got {resolution}")
        xmin, ymin, xmax, ymax = bounds
        width = max(1, math.ceil((xmax - xmin) / resolution - 1e-9))
        height = max(1, math.ceil((ymax - ymin) / resolution - 1e-9))
        return cls(xmin, ymin, xmax, ymax, resolution, width, height, crs)

    @property
    def top(self) -> float:
        """Northern edge of the first row."""
        return self.ymin + self.height * self.resolution

    @property
    def transform(self) -> Affine:
        return _create_affine_transform(self.xmin, self.top, self.resolution)

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    @property
    def full_window(self) -> Window:
        return Window(col_off=0, row_off=0, width=self.width, height=self.height)

    def window_for(self, bounds: Tuple[float, float, float, float]) -> Window:
        """
        Window of the cells covering an extent aligned on the grid.

        Extents touching the covered extent's eastern or northern edge take the
        remaining columns / rows, so windows of a tiling always tile the grid.
        """
        xmin, ymin, xmax, ymax = bounds
        res = self.resolution
        col_off = int(round((xmin - self.xmin) / res))
        col_end = self.width if xmax >= self.xmax else int(round((xmax - self.xmin) / res))
        # row indices counted from the south, then flipped to raster order
        south_start = int(round((ymin - self.ymin) / res))
        south_end = self.height if ymax >= self.ymax else int(round((ymax - self.ymin) / res))
        return Window(col_off=col_off, row_off=self.height - south_end,
                      width=max(0, col_end - col_off), height=max(0, south_end - south_start))

    def cell_index(self, x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Returns (rows, cols) of the cells holding each point (may fall outside the grid)."""
        cols = np.floor((x - self.xmin) / self.resolution).astype(np.int64)
        south = np.floor((y - self.ymin) / self.resolution).astype(np.int64)
        # Points lying exactly on the northern or eastern edge belong to the border cells
        south[(south == self.height) & (y <= self.ymax)] = self.height - 1
        cols[(cols == self.width) & (x <= self.xmax)] = self.width - 1
        return self.height - 1 - south, cols

@jit(nopython=True, cache=True)
def _rasterize_chunk(
    grid: np.ndarray,
    counts: np.ndarray,
    rows: np.ndarray,
    cols: np.ndarray,
    z: np.ndarray,
    method_flag: int
    ):
    """
    Helper function to rasterize a chunk of points into the grid using explicit loops for numba optimization.

    Args:
        grid: 2D array representing the raster grid to update.
        counts: 2D array of points seen per cell.
        rows: Row indices for each point.
        cols: Column indices for each point.
        z: Values for each point.
        method_flag: Integer flag indicating the aggregation method (0=count, 1=max, 2=min, 3=mean).

    Returns:
        None (the grid is modified in place).
    """
    for i in range(len(rows)):
        r = rows[i]
        c = cols[i]
        # Count only increments the cell counter;
        # Max / Min keep the extreme value seen so far;
        # Mean accumulates a sum that is divided by the counter afterwards.
        if counts[r, c] == 0:
            if method_flag == 0:
                grid[r, c] = 0.0
            else:
                grid[r, c] = z[i]
        elif method_flag == 1:
            if z[i] > grid[r, c]:
                grid[r, c] = z[i]
        elif method_flag == 2:
            if z[i] < grid[r, c]:
                grid[r, c] = z[i]
        elif method_flag == 3:
            grid[r, c] += z[i]
        counts[r, c] += 1

def _reduce_by_cell(
    grid: np.ndarray,
    counts: np.ndarray,
    rows: np.ndarray,
    cols: np.ndarray,
    values: np.ndarray,
    return_number: np.ndarray,
    number_of_returns: np.ndarray,
    reducer: Reducer
    ):
    """Applies an arbitrary reducer cell by cell (grouping points with a stable sort)."""
    if len(rows) == 0:
        return
    width = grid.shape[1]
    lin = rows * width + cols
    order = np.argsort(lin, kind="stable")
    lin_sorted = lin[order]
    starts = np.flatnonzero(np.r_[True, lin_sorted[1:] != lin_sorted[:-1]])
    ends = np.r_[starts[1:], len(order)]

    for s, e in zip(starts, ends):
        idx = order[s:e]
        r, c = divmod(int(lin_sorted[s]), width)
        grid[r, c] = reducer(values[idx], return_number[idx], number_of_returns[idx])
        counts[r, c] = e - s

def points_to_grid(
    source: PointCloud,
    resolution: Optional[float] = None,
    crs: Optional[str] = None,
    method: Union[str, Callable, Reducer] = 'max',
    nodata: float = NODATA_VAL,
    field: str = 'z',
    grid: Optional[GridSpec] = None,
    window: Optional[Window] = None,
    clamp: bool = False
) -> Raster:
    """
    Rasterizes a point cloud onto a grid, aggregating the points of each cell with a reducer.

    This function can be used to create DSMs, CHMs, ground elevation grids,
    density maps or area-based metrics by choosing the field and the reducer.
    When `grid` and `window` are given, only the window is produced, positioned
    by its transform inside the global grid (this is how chunks build their
    partial grids).

    Args:
        source (PointCloud): Points to rasterize.
        resolution (Optional[float]): Cell size, used to build a grid on the points' bounds when `grid` is None.
        crs (Optional[str]): Coordinate reference of the output. Defaults to the grid's or the points' CRS.
        method (Union[str, Callable, Reducer]): Reducer name ('max', 'min', 'mean', 'count', 'std',
            'cover', 'p95', ...) or a callable over (values, return_number, number_of_returns).
        nodata (float): Filler value for cells without points.
        field (str): Point attribute to aggregate ('z', 'height', ...). NaN values are ignored.
        grid (Optional[GridSpec]): Global output grid.
        window (Optional[Window]): Part of the grid to produce. Defaults to the full grid.
        clamp (bool): The points are known to lie inside the window (e.g. a chunk core). Cells found
            one step outside it through floating point rounding on the window edges are clamped
            back in instead of being dropped.

    Returns:
        Raster: Geo-aligned single band raster named after the reducer.
    """
    reducer = get_reducer(method)

    if grid is None:
        if resolution is None:
            raise ValueError("Either 'grid' or 'resolution' must be provided")
        if source.is_empty:
            raise ValueError("Cannot derive a grid from an empty point cloud; pass 'grid' explicitly")
        grid = GridSpec.from_bounds(
            (source.min_x, source.min_y, source.max_x, source.max_y),
            resolution, crs or source.crs
        )
    if window is None:
        window = grid.full_window

    row_off, col_off = int(window.row_off), int(window.col_off)
    shape = (int(window.height), int(window.width))
    out = np.full(shape, nodata, dtype=np.float32)
    counts = np.zeros(shape, dtype=np.int64)

    values = np.asarray(source.get_field(field), dtype=np.float64) if len(source) else np.empty(0)
    usable = ~np.isnan(values)

    if np.any(usable) and shape[0] > 0 and shape[1] > 0:
        pc = source if usable.all() else source.subset(usable)
        values = values[usable]

        rows, cols = grid.cell_index(pc.x, pc.y)
        rows -= row_off
        cols -= col_off
        if clamp:
            np.clip(rows, 0, shape[0] - 1, out=rows)
            np.clip(cols, 0, shape[1] - 1, out=cols)
        valid_mask = (rows >= 0) & (rows < shape[0]) & (cols >= 0) & (cols < shape[1])
        if not valid_mask.all():
            log.debug(f"Ignoring {np.count_nonzero(~valid_mask)} points outside window {window}")
        rows = rows[valid_mask]
        cols = cols[valid_mask]
        values = values[valid_mask]

        work = np.zeros(shape, dtype=np.float64)
        if reducer.kernel is not None:
            _rasterize_chunk(work, counts, rows, cols, values, reducer.kernel)
            if reducer.kernel == KERNEL_MEAN:
                filled = counts > 0
                work[filled] = work[filled] / counts[filled]
            elif reducer.kernel == KERNEL_COUNT:
                work = counts.astype(np.float64)
        else:
            _reduce_by_cell(
                work, counts, rows, cols, values,
                pc.return_number[valid_mask], pc.number_of_returns[valid_mask],
                reducer
            )

        filled = counts > 0
        out[filled] = work[filled]
        # Reducers may yield NaN for cells with no qualifying points (e.g. no first returns)
        out[filled & np.isnan(out)] = nodata

    return Raster(
        # we initialize a Raster object with the final grid, affine transform, CRS, and nodata value
        data=out,
        transform=compute_window_transform(window, grid.transform),
        crs=crs or grid.crs,
        nodata=nodata,
        band_names={reducer.name: 1}
    )
