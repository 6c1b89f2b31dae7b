# src/alscatalog/catalog/engine.py

"""
This module drives a catalog run: it plans the chunks, dispatches them to a
worker pool, collects successes and failures, and merges the results.

It serves as the core dispatch mechanism for catalog processing.
"""

import itertools
import logging
import threading
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, FIRST_COMPLETED, wait
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Optional, List, Dict, Tuple, Union, Sequence

import pandas as pd
from tqdm import tqdm

from alscatalog.config import CatalogConfig, ExecutorType
from alscatalog.exceptions import ChunkError, ConfigurationError
from alscatalog.lidar.layer import PointCloud
from alscatalog.lidar.rasterize import GridSpec
from alscatalog.lidar.generate_model import ProductSpec, points_product
from alscatalog.lidar.metrics import get_reducer
from alscatalog.raster.layer import Raster

from .extent import Extent, Chunk
from .merge import merge_points, merge_rasters
from .planner import plan_chunks, plan_from_index
from .processor import ChunkResult, ChunkStats, process_chunk
from .resources import check_worker_memory
from .source import PointSource, Predicate

log = logging.getLogger(__name__)

__all__ = [
    "ProcessingScope",
    "ChunkFailure",
    "CatalogReport",
    "run_catalog",
    "execute"
]

class ProcessingScope(Enum):
    """
    What a processing call operates on.

    Options:
        CHUNK: A single chunk, returning its ChunkResult.
        CATALOG: The whole catalog, planned, processed and merged.
    """
    CHUNK = "chunk"
    CATALOG = "catalog"

@dataclass(frozen=True)
class ChunkFailure:
    """
    Record of a chunk that could not be processed.

    Args:
        chunk_id: Failed chunk.
        kind: Exception class name (ChunkLoadError, GroundModelUndeterminedError, ...).
        message: Failure reason.
        bounds: Core extent of the chunk as (xmin, ymin, xmax, ymax).
    """
    chunk_id: int
    kind: str
    message: str
    bounds: Tuple[float, float, float, float]

@dataclass
class CatalogReport:
    """
    Outcome of a catalog run.

    Attributes:
        planned: Number of chunks planned.
        succeeded: Ids of chunks processed successfully.
        failed: Failure records of dropped chunks.
        cancelled: Ids of chunks never processed because the run was cancelled.
        warnings: Non-fatal issues reported by chunks.
        stats: Stage counters per successful chunk id.
        product: Merged product (None when discarded or not built).
        output_path: Where the product was written, if anywhere.
    """
    planned: int = 0
    succeeded: List[int] = field(default_factory=list)
    failed: List[ChunkFailure] = field(default_factory=list)
    cancelled: List[int] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    stats: Dict[int, ChunkStats] = field(default_factory=dict)
    product: Optional[Union[PointCloud, Raster]] = None
    output_path: Optional[Path] = None

    @property
    def complete(self) -> bool:
        return not self.failed and not self.cancelled and len(self.succeeded) == self.planned

    def summary(self) -> str:
        lines = [
            f"Chunks planned: {self.planned}",
            f"Succeeded: {len(self.succeeded)}",
            f"Failed: {len(self.failed)}",
            f"Cancelled: {len(self.cancelled)}",
        ]
        for f in self.failed:
            lines.append(f"  chunk {f.chunk_id} {f.bounds}: {f.kind}: {f.message}")
        if self.warnings:
            lines.append(f"Warnings: {len(self.warnings)}")
        if self.output_path is not None:
            lines.append(f"Output: {self.output_path}")
        return "\n".join(lines)

    def to_dataframe(self) -> pd.DataFrame:
        """One row per planned chunk that reached a final state, sorted by chunk id."""
        rows = []
        for cid in self.succeeded:
            s = self.stats.get(cid, ChunkStats())
            rows.append({
                "chunk_id": cid, "status": "succeeded", "kind": None, "message": None,
                "loaded": s.loaded, "duplicates_removed": s.duplicates_removed,
                "noise_removed": s.noise_removed, "buffer_removed": s.buffer_removed,
                "core_points": s.core_points,
            })
        for f in self.failed:
            rows.append({"chunk_id": f.chunk_id, "status": "failed", "kind": f.kind, "message": f.message})
        for cid in self.cancelled:
            rows.append({"chunk_id": cid, "status": "cancelled", "kind": None, "message": None})
        columns = ["chunk_id", "status", "kind", "message", "loaded", "duplicates_removed",
                   "noise_removed", "buffer_removed", "core_points"]
        df = pd.DataFrame(rows, columns=columns)
        return df.sort_values("chunk_id").reset_index(drop=True)

def _run_one(
    chunk: Chunk,
    source: PointSource,
    config: CatalogConfig,
    product: ProductSpec,
    grid: Optional[GridSpec],
    predicate: Optional[Predicate]
) -> Tuple[Optional[ChunkResult], Optional[ChunkFailure]]:
    """Worker entry point. Errors are turned into failure records so one chunk never aborts the run."""
    try:
        return process_chunk(chunk, source, config, product=product, grid=grid, predicate=predicate), None
    except ChunkError as e:
        log.error(f"{e}")
        return None, ChunkFailure(chunk.chunk_id, type(e).__name__, e.args[0], chunk.core.bounds)
    except Exception as e:
        log.exception(f"Unexpected error in chunk {chunk.chunk_id}")
        return None, ChunkFailure(chunk.chunk_id, type(e).__name__, str(e), chunk.core.bounds)

def _resolve_reducer(spec):
    try:
        return get_reducer(spec)
    except KeyError as e:
        raise ConfigurationError(e.args[0]) from e

def _make_pool(config: CatalogConfig):
    if config.executor == ExecutorType.THREAD:
        return ThreadPoolExecutor(max_workers=config.workers)
    return ProcessPoolExecutor(max_workers=config.workers)

def _iter_results(
    chunks: Sequence[Chunk],
    args: Tuple,
    config: CatalogConfig,
    cancel_event: Optional[threading.Event],
    cancelled: List[int]
):
    """Yields (result, failure) pairs as chunks complete, honouring cancellation."""
    def is_cancelled() -> bool:
        return cancel_event is not None and cancel_event.is_set()

    if is_cancelled():
        cancelled.extend(c.chunk_id for c in chunks)
        log.warning(f"Run cancelled before start, {len(chunks)} chunks not processed")
        return

    if config.workers == 1:
        for i, chunk in enumerate(chunks):
            if is_cancelled():
                cancelled.extend(c.chunk_id for c in chunks[i:])
                log.warning(f"Run cancelled, {len(chunks) - i} chunks not processed")
                return
            yield _run_one(chunk, *args)
        return

    queue = iter(chunks)
    max_in_flight = 2 * config.workers
    stopping = False
    with _make_pool(config) as pool:
        pending = {pool.submit(_run_one, c, *args): c for c in itertools.islice(queue, max_in_flight)}
        while pending:
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
            for fut in done:
                chunk = pending.pop(fut)
                try:
                    outcome = fut.result()
                except Exception as e:
                    # Worker crashes and (un)pickling errors surface here
                    log.error(f"Chunk {chunk.chunk_id} could not be executed: {e}")
                    outcome = None, ChunkFailure(chunk.chunk_id, type(e).__name__, str(e), chunk.core.bounds)
                yield outcome

            if stopping:
                continue
            if is_cancelled():
                stopping = True
                for fut, chunk in list(pending.items()):
                    if fut.cancel():
                        pending.pop(fut)
                        cancelled.append(chunk.chunk_id)
                cancelled.extend(c.chunk_id for c in queue)
                log.warning(f"Run cancelled, {len(cancelled)} chunks not processed")
                continue

            for c in itertools.islice(queue, max_in_flight - len(pending)):
                pending[pool.submit(_run_one, c, *args)] = c

def run_catalog(
    source: PointSource,
    config: Optional[CatalogConfig] = None,
    product: Optional[ProductSpec] = None,
    output: Optional[Union[str, Path]] = None,
    predicate: Optional[Predicate] = None,
    cancel_event: Optional[threading.Event] = None,
    extent: Optional[Extent] = None,
    chunks: Optional[Sequence[Chunk]] = None,
    progress: bool = False
) -> CatalogReport:
    """
    Processes a whole catalog chunk by chunk and merges the outputs.

    Args:
        source (PointSource): Raw data source.
        config (Optional[CatalogConfig]): Run parameters. Defaults to CatalogConfig().
        product (Optional[ProductSpec]): What to build. Defaults to the points product.
        output (Optional[Union[str, Path]]): Where to write the merged product (.tif for rasters, .las/.laz for points).
        predicate (Optional[Predicate]): Extra load filter applied to every chunk.
        cancel_event (Optional[threading.Event]): Set it to stop submitting chunks; the run returns a partial merge.
        extent (Optional[Extent]): Region to process. Defaults to the source extent.
        chunks (Optional[Sequence[Chunk]]): Pre-planned chunks. Planned from the source when omitted.
        progress (bool): Shows a progress bar over completed chunks.

    Returns:
        CatalogReport: Successes, failures, cancellations and the merged product.

    Raises:
        ConfigurationError: If the configuration is invalid (before any chunk runs).
        MergeOverlapDefect: If chunk contributions overlap when merging.
    """
    config = (config or CatalogConfig()).validate()
    product = product or points_product()
    if product.is_raster:
        if product.resolution is not None:
            config = config.with_overrides(output_resolution=product.resolution)
        config.check_raster_alignment()

    # Workers receive Reducer objects, never registry names: reducers registered in
    # this process do not exist in spawned workers
    config = config.with_overrides(aggregation=_resolve_reducer(config.aggregation))
    if product.aggregation is not None:
        product = replace(product, aggregation=_resolve_reducer(product.aggregation))

    extent = extent or source.extent
    tindex = source.index
    if chunks is None:
        if tindex is not None:
            chunks = plan_from_index(tindex, config, extent)
        else:
            chunks = plan_chunks(extent, config.chunk_size, config.buffer_margin)
    chunks = list(chunks)
    check_worker_memory(chunks, tindex, config.workers)

    grid = None
    if product.is_raster:
        grid = GridSpec.from_bounds(extent.bounds, config.output_resolution, extent.crs or source.crs)

    log.info(f"Processing {len(chunks)} chunks into '{product.name}' "
             f"with {config.workers} worker(s) ({config.executor.value})")

    report = CatalogReport(planned=len(chunks))
    results: List[ChunkResult] = []
    args = (source, config, product, grid, predicate)
    outcomes = _iter_results(chunks, args, config, cancel_event, report.cancelled)
    for result, failure in tqdm(outcomes, total=len(chunks), desc=f"Processing {product.name}", disable=not progress):
        if failure is not None:
            report.failed.append(failure)
            continue
        results.append(result)
        report.succeeded.append(result.chunk.chunk_id)
        report.stats[result.chunk.chunk_id] = result.stats
        report.warnings.extend(result.warnings)

    report.succeeded.sort()
    report.cancelled.sort()
    report.failed.sort(key=lambda f: f.chunk_id)

    if report.failed:
        log.warning(f"{len(report.failed)} of {report.planned} chunks failed")
    if config.require_all and report.failed:
        log.error("Merge discarded: require_all is set and some chunks failed")
        return report

    crs = extent.crs or source.crs
    if product.is_raster:
        report.product = merge_rasters(results, crs=crs, nodata=config.nodata, grid=grid)
    else:
        report.product = merge_points(results, crs=crs)

    if output is not None:
        if isinstance(report.product, Raster):
            report.output_path = report.product.save(output)
        else:
            report.output_path = report.product.to_file(output)

    log.info(f"Catalog run finished: {len(report.succeeded)} succeeded, "
             f"{len(report.failed)} failed, {len(report.cancelled)} cancelled")
    return report

def execute(
    scope: Union[ProcessingScope, str],
    source: PointSource,
    config: Optional[CatalogConfig] = None,
    product: Optional[ProductSpec] = None,
    chunk: Optional[Chunk] = None,
    **kwargs
) -> Union[ChunkResult, CatalogReport]:
    """
    Runs the pipeline on a single chunk or on the whole catalog.

    Args:
        scope (Union[ProcessingScope, str]): CHUNK or CATALOG.
        source (PointSource): Raw data source.
        config (Optional[CatalogConfig]): Run parameters.
        product (Optional[ProductSpec]): What to build.
        chunk (Optional[Chunk]): The chunk to process (CHUNK scope only).
        **kwargs: Passed to run_catalog (CATALOG scope) or process_chunk (CHUNK scope).

    Returns:
        ChunkResult for CHUNK scope, CatalogReport for CATALOG scope.
    """
    scope = ProcessingScope(scope)
    if scope == ProcessingScope.CATALOG:
        return run_catalog(source, config, product, **kwargs)

    if chunk is None:
        raise ValueError("ProcessingScope.CHUNK requires a chunk")
    config = (config or CatalogConfig()).validate()
    product = product or points_product()
    grid = kwargs.pop("grid", None)
    if product.is_raster and grid is None:
        resolution = product.resolution or config.output_resolution
        grid = GridSpec.from_bounds(source.extent.bounds, resolution, source.crs)
    return process_chunk(chunk, source, config, product=product, grid=grid, **kwargs)
