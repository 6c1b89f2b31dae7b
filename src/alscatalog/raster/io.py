# src/alscatalog/raster/io.py

"""
This module handles all disk-based operations for raster data (the raster sink).
"""

import logging
from pathlib import Path
from typing import Union, Optional, List

import rasterio

from .layer import Raster

log = logging.getLogger(__name__)

__all__ = [
    "load",
    "save"
]

def load(
    path: Union[str, Path],
    bands: Optional[Union[int, List[int]]] = None
) -> Raster:
    """
    Load a raster from disk into memory.

    Args:
        path: Path to raster file. All supported GDAL formats are accepted.
        bands: Specific band(s) to load (None=all, int=single, list=subset).

    Returns:
        Raster: In-memory Raster object
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Raster file not found: {path}")

    log.debug(f"Loading raster: {path.name}")

    try:
        with rasterio.open(path) as src:
            if bands is None:
                indices = list(src.indexes)
            elif isinstance(bands, int):
                indices = [bands]
            else:
                indices = list(bands)
            data = src.read(indices)

            band_names = {}
            for i, idx in enumerate(indices):
                desc = src.descriptions[idx - 1]
                if desc:
                    band_names[desc] = i + 1

            return Raster(
                data=data,
                transform=src.transform,
                crs=src.crs,
                nodata=src.nodata,
                band_names=band_names
            )

    except rasterio.RasterioIOError as e:
        raise IOError(f"Failed to read raster from {path}: {e}") from e

def save(
    raster: Raster,
    path: Union[str, Path],
    **profile_kwargs
) -> Path:
    """
    Write a Raster object to disk.

    Args:
        raster: Raster object to save
        path: Output file path. All supported GDAL formats are accepted.
        **profile_kwargs: Override default rasterio profile settings.

    Returns:
        Path: The written file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    profile = raster.profile.copy()
    profile.update(profile_kwargs)
    if profile.get('tiled') and (raster.width < 16 or raster.height < 16):
        # GeoTIFF internal tiles must be multiples of 16 pixels
        profile['tiled'] = False

    log.info(f"Saving raster {raster.shape} → {path}")

    try:
        with rasterio.open(path, 'w', **profile) as dst:
            dst.write(raster.data)

            if raster.band_names:
                for name, idx in raster.band_names.items():
                    if 1 <= idx <= raster.count:
                        dst.set_band_description(idx, name)

    except Exception as e:
        raise IOError(f"Failed to save raster to {path}: {e}") from e
    return path
