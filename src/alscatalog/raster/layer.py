# src/alscatalog/raster/layer.py

"""
This module defines the in-memory raster grid produced by rasterizing and merging chunks.
"""

import logging
from pathlib import Path
from typing import Union, Optional, Dict, Any, Tuple

import numpy as np
import rasterio
from rasterio.transform import Affine
from rasterio.crs import CRS

log = logging.getLogger(__name__)

__all__ = ["Raster"]

class Raster:
    """
    In-memory "envelope" that synchronizes a pixel array with its georeferencing.

    Attributes:
        data (np.ndarray): The pixel array in (Bands, Height, Width) format.
        transform (Affine): The affine transform mapping (col, row) to coordinates.
        crs (Optional[CRS]): The Coordinate Reference System.
        nodata (float | int | None): The value representing cells without data.
        band_names (Dict[str, int]): Mapping of semantic names to 1-based band indices.
    """

    def __init__(
        self,
        data: np.ndarray,
        transform: Affine,
        crs: Optional[Union[str, CRS]] = None,
        nodata: Optional[Union[float, int]] = None,
        band_names: Optional[Dict[str, int]] = None
    ):
        """
        Initialize a Raster object.

        Args:
            data: Input array. Must be 2D (Height, Width) or 3D (Bands, Height, Width).
                  2D arrays are automatically promoted to 3D (1, Height, Width).
            transform: Geospatial transform (maps pixels to coordinates).
            crs: Coordinate Reference System (CRS object or any string rasterio understands).
            nodata: Value indicating no data.
            band_names: Optional mapping of names to band indices ('CHM': 1).

        Raises:
            TypeError: If data or transform have the wrong type.
            ValueError: If data is not 2D or 3D.
        """
        if not isinstance(data, np.ndarray):
            raise TypeError(f"Data must be numpy.ndarray, got {type(data)}")
        if data.ndim not in (2, 3):
            raise ValueError(f"Data must be 2D or 3D, got shape {data.shape}")
        if not isinstance(transform, Affine):
            raise TypeError(f"Transform must be rasterio.Affine, got {type(transform)}")

        # Enforce 3D structure (Bands, Height, Width)
        if data.ndim == 2:
            data = data[np.newaxis, :, :]

        if isinstance(crs, str):
            crs = CRS.from_user_input(crs)

        self._data = data
        self.transform = transform
        self.crs = crs
        self.nodata = nodata
        self.band_names = band_names or {}

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'Raster':
        """Load a Raster from disk into memory. See alscatalog.raster.io.load."""
        from .io import load
        return load(path)

    @property
    def data(self) -> np.ndarray:
        """Access the raw pixel data."""
        return self._data

    @property
    def width(self) -> int:
        return self._data.shape[2]

    @property
    def height(self) -> int:
        return self._data.shape[1]

    @property
    def count(self) -> int:
        return self._data.shape[0]

    @property
    def shape(self) -> Tuple[int, int, int]:
        """Returns (Bands, Height, Width)."""
        return self._data.shape

    @property
    def resolution(self) -> Tuple[float, float]:
        """Returns the (x, y) cell size in CRS units."""
        return (abs(self.transform.a), abs(self.transform.e))

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """Returns (left, bottom, right, top) in CRS units."""
        return rasterio.transform.array_bounds(self.height, self.width, self.transform)

    @property
    def valid_mask(self) -> np.ndarray:
        """Boolean (Height, Width) mask of cells holding data in the first band."""
        band = self._data[0]
        if self.nodata is None:
            return np.ones(band.shape, dtype=bool)
        if np.isnan(self.nodata):
            return ~np.isnan(band)
        return band != self.nodata

    @property
    def profile(self) -> Dict[str, Any]:
        """
        Generates a Rasterio-compliant profile based on current state.
        Properties like compression and tiling can be overridden when saving.
        """
        return {
            'driver': 'GTiff',
            'dtype': self._data.dtype,
            'nodata': self.nodata,
            'width': self.width,
            'height': self.height,
            'count': self.count,
            'crs': self.crs,
            'transform': self.transform,
            'compress': 'lzw',
            'tiled': True
        }

    def get_band(self, identifier: Union[int, str]) -> np.ndarray:
        """
        Retrieve a specific band by 1-based index or semantic name.

        Returns:
            np.ndarray: 2D array of the band.
        """
        if isinstance(identifier, str):
            if identifier not in self.band_names:
                raise KeyError(f"Band name '{identifier}' not found in {list(self.band_names.keys())}")
            idx = self.band_names[identifier]
        else:
            idx = identifier

        if not (1 <= idx <= self.count):
            raise IndexError(f"Band index {idx} out of range (1-{self.count})")

        return self._data[idx - 1]

    def save(self, path: Union[str, Path], **kwargs) -> Path:
        """Write the Raster to disk. See alscatalog.raster.io.save."""
        from .io import save
        return save(self, path, **kwargs)

    def __repr__(self) -> str:
        return (f"<Raster shape={self.shape} dtype={self._data.dtype} "
                f"crs={self.crs} bounds={self.bounds}>")

    def __eq__(self, other: object) -> bool:
        """Checks equality based on metadata and pixel data."""
        if not isinstance(other, Raster):
            return NotImplemented

        # Check metadata first (cheap)
        meta_eq = (
            self.transform == other.transform and
            self.crs == other.crs and
            self.shape == other.shape and
            (self.nodata == other.nodata or
             (self.nodata is not None and other.nodata is not None and
              np.isnan(self.nodata) and np.isnan(other.nodata)))
        )
        if not meta_eq:
            return False

        # Check data only if necessary (expensive)
        return np.array_equal(self._data, other.data, equal_nan=True)

    __hash__ = None

    def __array__(self, dtype=None, copy=None) -> np.ndarray:
        """Allows np.array(raster_obj) to work directly."""
        if dtype is not None:
            return self._data.astype(dtype)
        return self._data
