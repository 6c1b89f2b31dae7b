# src/alscatalog/catalog/planner.py

"""
This module splits a dataset extent into a wall-to-wall grid of chunks.

Chunk cores tile the extent exactly (no gap, no overlap). Each core is grown
by the buffer margin into a padded region, clipped to the dataset extent,
which is what the chunk processor actually loads.
"""

from typing import List, Optional, Sequence
import logging
import math
import numbers

import geopandas as gpd
from shapely.geometry import box

from alscatalog.config import CatalogConfig
from alscatalog.exceptions import ConfigurationError

from .extent import Extent, Chunk
from .tindex import TileIndex

log = logging.getLogger(__name__)

__all__ = [
    "plan_chunks",
    "plan_from_index",
    "chunks_to_geodataframe"
]

def _check_tiling(chunk_size: float, buffer_margin: float):
    for name, value in (("chunk_size", chunk_size), ("buffer_margin", buffer_margin)):
        if isinstance(value, bool) or not isinstance(value, numbers.Real) or not math.isfinite(value):
            raise ConfigurationError(f"{name} must be a finite number, got {value!r}")
    if chunk_size <= 0:
        raise ConfigurationError(f"chunk_size must be > 0, got {chunk_size}")
    if buffer_margin < 0:
        raise ConfigurationError(f"buffer_margin must be >= 0, got {buffer_margin}")

def plan_chunks(extent: Extent, chunk_size: float, buffer_margin: float) -> List[Chunk]:
    """
    Tiles an extent into chunks of `chunk_size` with a `buffer_margin` padding.

    The grid starts at (xmin, ymin). The last column and row are cut at the
    extent's maximum edges and own those edges, so every point of the extent
    falls into exactly one core. Chunks are returned in row-major order, row 0
    being the southern-most row.

    Args:
        extent (Extent): Dataset extent.
        chunk_size (float): Core edge length.
        buffer_margin (float): Padding around each core.

    Returns:
        List[Chunk]: Planned chunks, `chunk_id = row * ncols + col`.

    Raises:
        ConfigurationError: If chunk_size <= 0 or buffer_margin < 0.
    """
    _check_tiling(chunk_size, buffer_margin)

    # Header-derived extents drift by a few ulps; an exact multiple must not add an empty column
    ncols = max(1, math.ceil(extent.width / chunk_size - 1e-9))
    nrows = max(1, math.ceil(extent.height / chunk_size - 1e-9))

    chunks = []
    for row in range(nrows):
        y0 = extent.ymin + row * chunk_size
        y1 = extent.ymax if row == nrows - 1 else min(extent.ymin + (row + 1) * chunk_size, extent.ymax)
        for col in range(ncols):
            x0 = extent.xmin + col * chunk_size
            x1 = extent.xmax if col == ncols - 1 else min(extent.xmin + (col + 1) * chunk_size, extent.xmax)

            core = Extent(x0, y0, x1, y1, extent.crs)
            padded = core.buffer(buffer_margin).clip(extent)
            chunks.append(Chunk(
                chunk_id=row * ncols + col,
                row=row,
                col=col,
                core=core,
                padded=padded,
                buffer_margin=float(buffer_margin),
                closed_x=(col == ncols - 1),
                closed_y=(row == nrows - 1)
            ))

    log.debug(f"Planned {len(chunks)} chunks ({nrows} rows x {ncols} cols) over {extent.bounds}")
    return chunks

def plan_from_index(
    tindex: TileIndex,
    config: CatalogConfig,
    extent: Optional[Extent] = None
    ) -> List[Chunk]:
    """
    Plans the chunks of a catalog from its tile index.

    Args:
        tindex (TileIndex): Index of the catalog tiles.
        config (CatalogConfig): Provides chunk_size, buffer_margin and skip_empty.
        extent (Optional[Extent]): Region to plan. Defaults to the index extent.

    Returns:
        List[Chunk]: Planned chunks. With `skip_empty`, chunks whose padded region
        touches no tile are left out (the remaining chunks keep their ids).
    """
    config.validate()
    extent = extent or tindex.extent
    chunks = plan_chunks(extent, config.chunk_size, config.buffer_margin)

    if config.skip_empty and len(tindex) > 1:
        kept = [c for c in chunks if tindex.tiles_touching(c.padded)]
        if len(kept) != len(chunks):
            log.info(f"Skipping {len(chunks) - len(kept)} chunks outside the catalog tiles")
        chunks = kept

    log.info(f"Planned {len(chunks)} chunks of {config.chunk_size} (buffer {config.buffer_margin})")
    return chunks

def chunks_to_geodataframe(chunks: Sequence[Chunk], crs: Optional[str] = None, padded: bool = False) -> gpd.GeoDataFrame:
    """
    Exports the chunk layout as polygons (cores by default, padded regions on request).
    """
    if crs is None and chunks:
        crs = chunks[0].core.crs
    records = {
        "chunk_id": [c.chunk_id for c in chunks],
        "row": [c.row for c in chunks],
        "col": [c.col for c in chunks],
        "buffer": [c.buffer_margin for c in chunks],
    }
    geometry = [box(*(c.padded if padded else c.core).bounds) for c in chunks]
    return gpd.GeoDataFrame(records, geometry=geometry, crs=crs)
