# src/alscatalog/catalog/source.py

"""
This module implements the raw data sources a chunk loads its padded region from,
plus the picklable load predicates applied while reading.
"""

from dataclasses import dataclass
from typing import Optional, Callable, Tuple
import logging

import laspy
import numpy as np

from alscatalog.lidar.layer import PointCloud

from .extent import Extent
from .tindex import TileIndex

log = logging.getLogger(__name__)

__all__ = [
    "Predicate",
    "PointSource",
    "LasCatalogSource",
    "InMemorySource",
    "drop_return_zero",
    "ClassFilter",
    "AllOf",
    "combine_predicates"
]

Predicate = Callable[[PointCloud], np.ndarray]

def drop_return_zero(pc: PointCloud) -> np.ndarray:
    """Keeps points with a valid (> 0) return number."""
    return pc.return_number > 0

@dataclass(frozen=True)
class ClassFilter:
    """
    Keeps or drops points by classification code.

    Args:
        keep (Optional[Tuple[int, ...]]): Only these codes are kept.
        drop (Optional[Tuple[int, ...]]): These codes are discarded (e.g. (7, 18) for ASPRS noise).
    """
    keep: Optional[Tuple[int, ...]] = None
    drop: Optional[Tuple[int, ...]] = None

    def __call__(self, pc: PointCloud) -> np.ndarray:
        mask = np.ones(len(pc), dtype=bool)
        if self.keep is not None:
            mask &= np.isin(pc.classification, np.asarray(self.keep))
        if self.drop is not None:
            mask &= ~np.isin(pc.classification, np.asarray(self.drop))
        return mask

@dataclass(frozen=True)
class AllOf:
    """Combines predicates: a point is kept when every predicate keeps it."""
    predicates: Tuple[Predicate, ...]

    def __call__(self, pc: PointCloud) -> np.ndarray:
        mask = np.ones(len(pc), dtype=bool)
        for predicate in self.predicates:
            mask &= np.asarray(predicate(pc), dtype=bool)
        return mask

def combine_predicates(*predicates: Optional[Predicate]) -> Optional[Predicate]:
    """Returns a single predicate (or None) from optional ones."""
    active = tuple(p for p in predicates if p is not None)
    if not active:
        return None
    if len(active) == 1:
        return active[0]
    return AllOf(active)

def _apply(pc: PointCloud, extent: Extent, predicate: Optional[Predicate]) -> PointCloud:
    mask = extent.contains(pc.x, pc.y)
    if predicate is not None:
        mask &= np.asarray(predicate(pc), dtype=bool)
    return pc if mask.all() else pc.subset(mask)

class PointSource:
    """
    Base class of raw point providers.

    Implementations return every point inside a closed extent, optionally
    filtered by a predicate. They must be picklable so they can be shipped to
    worker processes.
    """
    crs: Optional[str] = None

    @property
    def extent(self) -> Extent:
        raise NotImplementedError

    @property
    def index(self) -> Optional[TileIndex]:
        """Tile index used to plan and size chunks, if the source has one."""
        return None

    def read(self, extent: Extent, predicate: Optional[Predicate] = None) -> PointCloud:
        raise NotImplementedError

class LasCatalogSource(PointSource):
    """
    Streams the points of a LAS/LAZ catalog.

    Only tiles whose header extent touches the requested region are opened and
    they are read in fixed size point batches, so memory stays bounded by the
    region rather than by the tiles.

    Args:
        tindex (TileIndex): Index of the catalog files.
        points_per_iteration (int): Batch size used when streaming a file.
    """
    def __init__(self, tindex: TileIndex, points_per_iteration: int = 1_000_000):
        self.tindex = tindex
        self.crs = tindex.crs
        self.points_per_iteration = int(points_per_iteration)

    @property
    def extent(self) -> Extent:
        return self.tindex.extent

    @property
    def index(self) -> TileIndex:
        return self.tindex

    def read(self, extent: Extent, predicate: Optional[Predicate] = None) -> PointCloud:
        parts = []
        for tile in self.tindex.tiles_touching(extent):
            if tile.path is None:
                continue
            with laspy.open(tile.path) as reader:
                for batch in reader.chunk_iterator(self.points_per_iteration):
                    pc = PointCloud._from_las_points(batch, crs=self.crs)
                    pc = _apply(pc, extent, predicate)
                    if len(pc):
                        parts.append(pc)
        if not parts:
            return PointCloud.empty(crs=self.crs)
        log.debug(f"Read {sum(len(p) for p in parts)} points in {extent.bounds}")
        return PointCloud.concat(parts, crs=self.crs)

    def __repr__(self) -> str:
        return f"<LasCatalogSource tiles={len(self.tindex)}>"

class InMemorySource(PointSource):
    """
    Serves regions of a point cloud already held in memory.

    Args:
        pc (PointCloud): The full dataset.
        extent (Optional[Extent]): Dataset extent. Defaults to the points' bounds.
    """
    def __init__(self, pc: PointCloud, extent: Optional[Extent] = None):
        if extent is None:
            if pc.is_empty:
                raise ValueError("An empty point cloud needs an explicit extent")
            extent = Extent(pc.min_x, pc.min_y, pc.max_x, pc.max_y, pc.crs)
        self.pc = pc
        self.crs = pc.crs
        self._extent = extent

    @property
    def extent(self) -> Extent:
        return self._extent

    @property
    def index(self) -> TileIndex:
        return TileIndex.from_extents([self._extent], [len(self.pc)], crs=self.crs)

    def read(self, extent: Extent, predicate: Optional[Predicate] = None) -> PointCloud:
        return _apply(self.pc, extent, predicate)

    def __repr__(self) -> str:
        return f"<InMemorySource points={len(self.pc)} extent={self._extent.bounds}>"
