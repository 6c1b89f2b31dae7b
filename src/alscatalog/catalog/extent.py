# src/alscatalog/catalog/extent.py

"""
This module defines the spatial primitives of a catalog: axis-aligned extents
and the chunks (core + padded extents) derived from them.
"""

from dataclasses import dataclass
from typing import Optional, Tuple
import logging
import math

import numpy as np

log = logging.getLogger(__name__)

__all__ = [
    "Extent",
    "Chunk"
]

@dataclass(frozen=True)
class Extent:
    """
    Axis-aligned rectangle in a named horizontal coordinate reference.

    Args:
        xmin (float): Western edge.
        ymin (float): Southern edge.
        xmax (float): Eastern edge.
        ymax (float): Northern edge.
        crs (Optional[str]): Coordinate reference name (e.g. "EPSG:2959"). Carried, never transformed.
    """
    xmin: float
    ymin: float
    xmax: float
    ymax: float
    crs: Optional[str] = None

    def __post_init__(self):
        values = (self.xmin, self.ymin, self.xmax, self.ymax)
        if not all(math.isfinite(v) for v in values):
            raise ValueError(f"Extent bounds must be finite, got {values}")
        if self.xmax < self.xmin or self.ymax < self.ymin:
            raise ValueError(f"Extent is inverted: {values}")

    @classmethod
    def from_bounds(cls, bounds: Tuple[float, float, float, float], crs: Optional[str] = None) -> 'Extent':
        """Builds an Extent from a (xmin, ymin, xmax, ymax) tuple."""
        xmin, ymin, xmax, ymax = bounds
        return cls(float(xmin), float(ymin), float(xmax), float(ymax), crs)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return (self.xmin, self.ymin, self.xmax, self.ymax)

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    @property
    def area(self) -> float:
        return self.width * self.height

    def buffer(self, margin: float) -> 'Extent':
        """Returns the extent grown by `margin` on all four sides."""
        return Extent(
            self.xmin - margin, self.ymin - margin,
            self.xmax + margin, self.ymax + margin,
            self.crs
        )

    def clip(self, other: 'Extent') -> 'Extent':
        """
        Returns the intersection of this extent with `other`.

        Raises:
            ValueError: If the two extents do not touch.
        """
        xmin = max(self.xmin, other.xmin)
        ymin = max(self.ymin, other.ymin)
        xmax = min(self.xmax, other.xmax)
        ymax = min(self.ymax, other.ymax)
        if xmax < xmin or ymax < ymin:
            raise ValueError(f"Extents {self.bounds} and {other.bounds} do not intersect")
        return Extent(xmin, ymin, xmax, ymax, self.crs)

    def union(self, other: 'Extent') -> 'Extent':
        return Extent(
            min(self.xmin, other.xmin), min(self.ymin, other.ymin),
            max(self.xmax, other.xmax), max(self.ymax, other.ymax),
            self.crs or other.crs
        )

    def overlap_area(self, other: 'Extent') -> float:
        """Area shared by both extents (0.0 when they only touch or are disjoint)."""
        dx = min(self.xmax, other.xmax) - max(self.xmin, other.xmin)
        dy = min(self.ymax, other.ymax) - max(self.ymin, other.ymin)
        if dx <= 0 or dy <= 0:
            return 0.0
        return dx * dy

    def intersects(self, other: 'Extent') -> bool:
        """True when the extents share a region of positive area."""
        return self.overlap_area(other) > 0.0

    def touches(self, other: 'Extent') -> bool:
        """True when the closed extents share at least one point."""
        return (self.xmin <= other.xmax and other.xmin <= self.xmax and
                self.ymin <= other.ymax and other.ymin <= self.ymax)

    def contains(
        self,
        x: np.ndarray,
        y: np.ndarray,
        closed_x: bool = True,
        closed_y: bool = True
        ) -> np.ndarray:
        """
        Vectorised point-in-extent test.

        Minimum edges are always inclusive. Maximum edges are inclusive only when
        `closed_x` / `closed_y` is set, which lets neighbouring half-open extents
        share an edge without both claiming the points lying on it.

        Args:
            x (np.ndarray): X coordinates.
            y (np.ndarray): Y coordinates.
            closed_x (bool): Include points on the eastern edge.
            closed_y (bool): Include points on the northern edge.

        Returns:
            np.ndarray: Boolean mask, one entry per point.
        """
        x = np.asarray(x)
        y = np.asarray(y)
        in_x = (x >= self.xmin) & ((x <= self.xmax) if closed_x else (x < self.xmax))
        in_y = (y >= self.ymin) & ((y <= self.ymax) if closed_y else (y < self.ymax))
        return in_x & in_y

@dataclass(frozen=True)
class Chunk:
    """
    One cell of the catalog tiling.

    The core regions of all chunks partition the dataset extent; the padded
    region is the core expanded by the buffer margin (clipped to the dataset)
    and is only used to avoid edge artifacts while processing.

    Args:
        chunk_id (int): Row-major index in the tiling grid.
        row (int): Grid row, 0 being the southern-most row.
        col (int): Grid column, 0 being the western-most column.
        core (Extent): Region this chunk contributes to the merged product.
        padded (Extent): Region loaded for processing.
        buffer_margin (float): Margin used to build the padded region.
        closed_x (bool): Core owns its eastern edge (last column of the grid).
        closed_y (bool): Core owns its northern edge (last row of the grid).
    """
    chunk_id: int
    row: int
    col: int
    core: Extent
    padded: Extent
    buffer_margin: float = 0.0
    closed_x: bool = False
    closed_y: bool = False

    def in_core(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        """Mask of points owned by this chunk's core."""
        return self.core.contains(x, y, closed_x=self.closed_x, closed_y=self.closed_y)

    def in_padded(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        """Mask of points inside the padded (closed) region."""
        return self.padded.contains(x, y)

    def __repr__(self) -> str:
        return f"<Chunk id={self.chunk_id} row={self.row} col={self.col} core={self.core.bounds}>"
