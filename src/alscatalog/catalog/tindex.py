# src/alscatalog/catalog/tindex.py

"""
This module implements the tile index of a lidar catalog: one record per LAS/LAZ
file holding its planimetric extent and point count, read from the file headers
only (no point is loaded).
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Union, Optional, List, Iterable, Sequence, Tuple
import logging

import laspy
import geopandas as gpd
from shapely.geometry import box

from alscatalog.exceptions import ConfigurationError

from .extent import Extent

log = logging.getLogger(__name__)

__all__ = [
    "Tile",
    "TileIndex"
]

LIDAR_SUFFIXES = (".las", ".laz")

@dataclass(frozen=True)
class Tile:
    """
    One file of the catalog.

    Args:
        path (Optional[Path]): Location of the LAS/LAZ file (None for synthetic tiles).
        extent (Extent): Header bounding box.
        point_count (int): Number of points declared by the header.
    """
    path: Optional[Path]
    extent: Extent
    point_count: int = 0

    @property
    def name(self) -> str:
        return self.path.name if self.path is not None else "<memory>"

def _header_crs(header) -> Optional[str]:
    try:
        crs = header.parse_crs()
    except Exception as e:
        log.debug(f"Could not parse CRS from header: {e}")
        return None
    return crs.to_string() if crs is not None else None

class TileIndex:
    """
    Collection of catalog tiles sharing one coordinate reference.

    Attributes:
        tiles (List[Tile]): Indexed tiles in insertion order.
        crs (Optional[str]): Coordinate reference name of the catalog.
    """
    def __init__(self, tiles: Sequence[Tile], crs: Optional[str] = None):
        if not tiles:
            raise ConfigurationError("A tile index needs at least one tile")
        self.tiles: List[Tile] = list(tiles)
        self.crs = crs

    @classmethod
    def from_files(cls, paths: Iterable[Union[str, Path]], crs: Optional[str] = None) -> 'TileIndex':
        """
        Indexes LAS/LAZ files by reading their headers.

        Args:
            paths (Iterable[Union[str, Path]]): Files to index.
            crs (Optional[str]): Coordinate reference name. Read from the first header carrying one when omitted.

        Returns:
            TileIndex: The catalog index.
        """
        tiles = []
        header_crs = None
        for p in paths:
            p = Path(p)
            if not p.exists():
                raise FileNotFoundError(f"Lidar file not found: {p}")
            try:
                with laspy.open(p) as reader:
                    h = reader.header
                    extent = Extent(float(h.x_min), float(h.y_min), float(h.x_max), float(h.y_max))
                    count = int(h.point_count)
                    if crs is None and header_crs is None:
                        header_crs = _header_crs(h)
            except laspy.errors.LaspyException as e:
                raise IOError(f"Failed to read lidar header of {p}: {e}") from e
            tiles.append(Tile(path=p, extent=extent, point_count=count))

        crs = crs or header_crs
        tiles = [Tile(t.path, Extent.from_bounds(t.extent.bounds, crs), t.point_count) for t in tiles]
        log.info(f"Indexed {len(tiles)} tiles ({sum(t.point_count for t in tiles)} points)")
        return cls(tiles, crs=crs)

    @classmethod
    def from_directory(
        cls,
        directory: Union[str, Path],
        pattern: str = "*",
        crs: Optional[str] = None
        ) -> 'TileIndex':
        """Indexes every .las/.laz file of a directory matching `pattern`."""
        directory = Path(directory)
        if not directory.is_dir():
            raise FileNotFoundError(f"Catalog directory not found: {directory}")
        paths = sorted(p for p in directory.glob(pattern) if p.suffix.lower() in LIDAR_SUFFIXES)
        if not paths:
            raise ConfigurationError(f"No .las/.laz files found in {directory}")
        return cls.from_files(paths, crs=crs)

    @classmethod
    def from_extents(
        cls,
        extents: Iterable[Union[Extent, Tuple[float, float, float, float]]],
        point_counts: Optional[Iterable[int]] = None,
        crs: Optional[str] = None
        ) -> 'TileIndex':
        """Builds an index of synthetic tiles (no files behind them), e.g. for in-memory sources."""
        extents = [e if isinstance(e, Extent) else Extent.from_bounds(e, crs) for e in extents]
        counts = list(point_counts) if point_counts is not None else [0] * len(extents)
        if len(counts) != len(extents):
            raise ValueError("point_counts must match extents")
        return cls([Tile(None, e, int(n)) for e, n in zip(extents, counts)], crs=crs)

    def __len__(self) -> int:
        return len(self.tiles)

    def __iter__(self):
        return iter(self.tiles)

    @property
    def extent(self) -> Extent:
        """Union of all tile extents."""
        total = self.tiles[0].extent
        for t in self.tiles[1:]:
            total = total.union(t.extent)
        return Extent.from_bounds(total.bounds, self.crs)

    @property
    def point_count(self) -> int:
        return sum(t.point_count for t in self.tiles)

    @property
    def density(self) -> float:
        """Mean points per unit area over the tiles' footprints (0.0 for degenerate footprints)."""
        area = sum(t.extent.area for t in self.tiles)
        if area <= 0:
            return 0.0
        return self.point_count / area

    def tiles_touching(self, extent: Extent) -> List[Tile]:
        """Tiles whose closed extent shares at least one point with `extent`."""
        return [t for t in self.tiles if t.extent.touches(extent)]

    def to_geodataframe(self) -> gpd.GeoDataFrame:
        """Exports tile footprints as polygons."""
        records = {
            "name": [t.name for t in self.tiles],
            "path": [str(t.path) if t.path is not None else None for t in self.tiles],
            "point_count": [t.point_count for t in self.tiles],
        }
        geometry = [box(*t.extent.bounds) for t in self.tiles]
        return gpd.GeoDataFrame(records, geometry=geometry, crs=self.crs)

    def __repr__(self) -> str:
        return f"<TileIndex tiles={len(self)} extent={self.extent.bounds} crs={self.crs}>"
