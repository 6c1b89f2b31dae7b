# src/alscatalog/catalog/merge.py

"""
This module consolidates per-chunk outputs into one product.

Points are concatenated in chunk id order, partial grids are placed at their
absolute window inside the full output grid. Both mergers verify that no two
chunk contributions overlap, which would mean the tiling is broken.
"""

from typing import Sequence, Optional, List, Tuple
import logging

import numpy as np

from alscatalog.exceptions import MergeOverlapDefect
from alscatalog.lidar.layer import PointCloud
from alscatalog.lidar.rasterize import GridSpec, NODATA_VAL
from alscatalog.raster.layer import Raster

from .extent import Extent, Chunk
from .processor import ChunkResult

log = logging.getLogger(__name__)

__all__ = [
    "check_core_overlaps",
    "merge_points",
    "merge_rasters"
]

def check_core_overlaps(chunks: Sequence[Chunk]):
    """
    Verifies that no two chunk cores share a region of positive area.

    Raises:
        MergeOverlapDefect: On the first overlapping pair.
    """
    ordered = sorted(chunks, key=lambda c: c.core.xmin)
    for i, a in enumerate(ordered):
        for b in ordered[i + 1:]:
            if b.core.xmin >= a.core.xmax:
                break
            if a.core.intersects(b.core):
                raise MergeOverlapDefect(
                    f"Cores of chunks {a.chunk_id} {a.core.bounds} and {b.chunk_id} {b.core.bounds} overlap"
                )

def _sorted(results: Sequence[ChunkResult]) -> List[ChunkResult]:
    ordered = sorted(results, key=lambda r: r.chunk.chunk_id)
    ids = [r.chunk.chunk_id for r in ordered]
    if len(set(ids)) != len(ids):
        raise MergeOverlapDefect(f"Chunk ids contributed more than once: {sorted(set(i for i in ids if ids.count(i) > 1))}")
    return ordered

def merge_points(results: Sequence[ChunkResult], crs: Optional[str] = None) -> PointCloud:
    """
    Concatenates the core points of successful chunks in chunk id order.

    Args:
        results (Sequence[ChunkResult]): Chunk outputs (any order).
        crs (Optional[str]): Coordinate reference of the merged set. Defaults to the first chunk's.

    Returns:
        PointCloud: Consolidated points. Fields missing from some chunks are NaN-filled.

    Raises:
        MergeOverlapDefect: If cores overlap or a chunk holds points outside its core.
    """
    ordered = _sorted(results)
    check_core_overlaps([r.chunk for r in ordered])

    clouds = []
    for r in ordered:
        if r.points is None or r.points.is_empty:
            continue
        inside = r.chunk.in_core(r.points.x, r.points.y)
        if not inside.all():
            raise MergeOverlapDefect(
                f"Chunk {r.chunk.chunk_id} contributes {np.count_nonzero(~inside)} points outside its core"
            )
        clouds.append(r.points)

    if crs is None and ordered:
        crs = ordered[0].chunk.core.crs
    if not clouds:
        return PointCloud.empty(crs=crs)

    merged = PointCloud.concat(clouds, crs=crs)
    log.info(f"Merged {len(merged)} points from {len(clouds)} chunks")
    return merged

def _window_of(raster: Raster, grid: GridSpec) -> Tuple[int, int, int, int]:
    res = grid.resolution
    t = raster.transform
    if not np.isclose(abs(t.a), res) or not np.isclose(abs(t.e), res):
        raise MergeOverlapDefect(f"Partial grid resolution {raster.resolution} does not match {res}")
    col_off = int(round((t.c - grid.xmin) / res))
    row_off = int(round((grid.top - t.f) / res))
    return row_off, col_off, raster.height, raster.width

def merge_rasters(
    results: Sequence[ChunkResult],
    extent: Optional[Extent] = None,
    resolution: Optional[float] = None,
    crs: Optional[str] = None,
    nodata: float = NODATA_VAL,
    grid: Optional[GridSpec] = None
    ) -> Raster:
    """
    Assembles partial grids into the full output grid.

    The full grid is anchored at (xmin, ymin) of the dataset extent like the
    chunk tiling and has ceil(width / resolution) x ceil(height / resolution)
    cells. Cells no chunk contributed keep the nodata sentinel.

    Args:
        results (Sequence[ChunkResult]): Chunk outputs (any order). Results without a raster are ignored.
        extent (Optional[Extent]): Dataset extent (ignored when `grid` is given).
        resolution (Optional[float]): Cell size (ignored when `grid` is given).
        crs (Optional[str]): Coordinate reference of the output.
        nodata (float): Sentinel for cells without data.
        grid (Optional[GridSpec]): Prebuilt output grid.

    Returns:
        Raster: The merged single band grid.

    Raises:
        MergeOverlapDefect: If a partial grid lands on cells already written or outside the grid.
    """
    if grid is None:
        if extent is None or resolution is None:
            raise ValueError("Either 'grid' or both 'extent' and 'resolution' must be provided")
        grid = GridSpec.from_bounds(extent.bounds, resolution, crs or extent.crs)

    out = np.full(grid.shape, nodata, dtype=np.float32)
    written = np.zeros(grid.shape, dtype=bool)
    band_names = {}

    placed = 0
    for r in _sorted(results):
        if r.raster is None:
            continue
        row_off, col_off, h, w = _window_of(r.raster, grid)
        if row_off < 0 or col_off < 0 or row_off + h > grid.height or col_off + w > grid.width:
            raise MergeOverlapDefect(
                f"Partial grid of chunk {r.chunk.chunk_id} falls outside the output grid"
            )
        target = (slice(row_off, row_off + h), slice(col_off, col_off + w))
        if written[target].any():
            raise MergeOverlapDefect(
                f"Partial grid of chunk {r.chunk.chunk_id} overlaps cells written by another chunk"
            )

        band = r.raster.data[0]
        if r.raster.nodata is not None and r.raster.nodata != nodata:
            band = np.where(band == r.raster.nodata, nodata, band)
        out[target] = band
        written[target] = True
        band_names = band_names or dict(r.raster.band_names)
        placed += 1

    log.info(f"Merged {placed} partial grids into a {grid.height}x{grid.width} raster")
    return Raster(
        data=out,
        transform=grid.transform,
        crs=crs or grid.crs,
        nodata=nodata,
        band_names=band_names
    )
