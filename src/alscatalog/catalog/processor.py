# src/alscatalog/catalog/processor.py

"""
This module implements the per-chunk pipeline.

Each chunk is processed independently, with no shared state:
    1. Load the points of the padded region from the data source.
    2. Remove exact duplicates.
    3. Remove isolated high/low noise on a coarse percentile grid.
    4. Attach height above ground (optional).
    5. Strip the buffer, keeping only the points owned by the core.
    6. Build the chunk's partial grid for raster products.
"""

from dataclasses import dataclass, field
from typing import Optional, List
import logging

import numpy as np

from alscatalog.config import CatalogConfig, GroundFailurePolicy
from alscatalog.exceptions import ChunkLoadError, GroundModelUndeterminedError
from alscatalog.lidar.layer import PointCloud
from alscatalog.lidar.clean import deduplicate, denoise
from alscatalog.lidar.normalize import GroundModel, build_ground_model, normalize_height, HEIGHT_FIELD
from alscatalog.lidar.rasterize import GridSpec
from alscatalog.lidar.generate_model import ProductSpec, ProductKind, points_product, rasterize_product
from alscatalog.raster.layer import Raster

from .extent import Chunk
from .source import PointSource, Predicate, drop_return_zero, combine_predicates

log = logging.getLogger(__name__)

__all__ = [
    "ChunkStats",
    "ChunkResult",
    "process_chunk"
]

@dataclass
class ChunkStats:
    """
    Point counts through the stages of one chunk.

    Args:
        loaded: Points read from the padded region.
        duplicates_removed: Points removed by deduplication.
        noise_removed: Points removed by the noise filter.
        buffer_removed: Points removed when stripping the buffer.
        core_points: Points owned by the core after all stages.
    """
    loaded: int = 0
    duplicates_removed: int = 0
    noise_removed: int = 0
    buffer_removed: int = 0
    core_points: int = 0

@dataclass
class ChunkResult:
    """
    Output of one processed chunk.

    Args:
        chunk: The processed chunk.
        points: Core points (points products only).
        raster: Partial grid covering the core (raster products only).
        stats: Stage counters.
        warnings: Non-fatal issues (e.g. a skipped normalization).
    """
    chunk: Chunk
    points: Optional[PointCloud] = None
    raster: Optional[Raster] = None
    stats: ChunkStats = field(default_factory=ChunkStats)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.stats.core_points == 0 and self.raster is None

def _load(chunk: Chunk, source: PointSource, predicate: Optional[Predicate]) -> PointCloud:
    try:
        return source.read(chunk.padded, predicate)
    except Exception as e:
        raise ChunkLoadError(f"Failed to load points: {type(e).__name__}: {e}", chunk) from e

def _ground_model(pc: PointCloud, chunk: Chunk, config: CatalogConfig, warnings: List[str]) -> Optional[GroundModel]:
    try:
        return build_ground_model(
            pc,
            algorithm=config.ground_algorithm,
            k=config.knn_k,
            power=config.knn_power,
            ground_classes=config.ground_classes,
            min_points=config.min_ground_points
        )
    except GroundModelUndeterminedError as e:
        if config.on_ground_failure == GroundFailurePolicy.DROP:
            raise GroundModelUndeterminedError(e.args[0], chunk) from e
        msg = f"Chunk {chunk.chunk_id}: normalization skipped ({e.args[0]})"
        log.warning(msg)
        warnings.append(msg)
        return None

def process_chunk(
    chunk: Chunk,
    source: PointSource,
    config: CatalogConfig,
    product: Optional[ProductSpec] = None,
    grid: Optional[GridSpec] = None,
    predicate: Optional[Predicate] = None
    ) -> ChunkResult:
    """
    Runs the full pipeline on one chunk.

    Args:
        chunk (Chunk): Chunk to process.
        source (PointSource): Raw data source.
        config (CatalogConfig): Stage parameters.
        product (Optional[ProductSpec]): What to build. Defaults to the points product.
        grid (Optional[GridSpec]): Global output grid, required by raster products.
        predicate (Optional[Predicate]): Extra load filter, combined with drop_return_zero when enabled.

    Returns:
        ChunkResult: Core points or partial grid, with stage statistics.

    Raises:
        ChunkLoadError: If the data source fails.
        GroundModelUndeterminedError: If the ground model cannot be built and the policy is "drop".
    """
    product = product or points_product()
    if product.is_raster and grid is None:
        raise ValueError(f"Raster product '{product.name}' requires a grid")

    stats = ChunkStats()
    warnings: List[str] = []

    load_filter = combine_predicates(drop_return_zero if config.drop_return_zero else None, predicate)
    pc = _load(chunk, source, load_filter)
    stats.loaded = len(pc)

    if pc.is_empty:
        log.debug(f"Chunk {chunk.chunk_id}: no points in padded region")
        return ChunkResult(chunk=chunk, points=pc if not product.is_raster else None, stats=stats, warnings=warnings)

    if config.deduplicate:
        before = len(pc)
        pc = deduplicate(pc)
        stats.duplicates_removed = before - len(pc)

    if config.denoise:
        before = len(pc)
        pc = denoise(
            pc,
            resolution=config.noise_grid_resolution,
            above=config.noise_above_threshold,
            below=config.noise_below_threshold,
            min_points=config.noise_min_points,
            bounds=chunk.padded.bounds
        )
        stats.noise_removed = before - len(pc)

    wants_height = config.normalize or product.needs_height
    model = None
    if wants_height or product.kind == ProductKind.TERRAIN:
        model = _ground_model(pc, chunk, config, warnings)
    if wants_height:
        if model is not None:
            pc = normalize_height(pc, model=model)
        else:
            pc = pc.with_field(HEIGHT_FIELD, np.full(len(pc), np.nan))

    core = pc.subset(chunk.in_core(pc.x, pc.y))
    stats.buffer_removed = len(pc) - len(core)
    stats.core_points = len(core)

    raster = None
    if product.is_raster:
        if product.kind == ProductKind.TERRAIN and model is None:
            warnings.append(f"Chunk {chunk.chunk_id}: no ground model, terrain left empty")
        else:
            raster = rasterize_product(
                core,
                product,
                grid,
                window=grid.window_for(chunk.core.bounds),
                aggregation=config.aggregation,
                nodata=config.nodata,
                model=model,
                clamp=True
            )

    log.debug(f"Chunk {chunk.chunk_id}: {stats}")
    return ChunkResult(
        chunk=chunk,
        points=None if product.is_raster else core,
        raster=raster,
        stats=stats,
        warnings=warnings
    )
