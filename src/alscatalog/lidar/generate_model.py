# src/alscatalog/lidar/generate_model.py

"""
This module describes the products a catalog run can build (consolidated points,
aggregated grids such as DSM/CHM/metrics, and interpolated terrain models) and
implements their generation for a single point cloud or a single chunk window.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union, Optional, Tuple, Callable
import logging

import numpy as np
from rasterio.windows import Window
from rasterio.windows import transform as compute_window_transform

from alscatalog.config import GroundAlgorithm
from alscatalog.raster.layer import Raster

from .layer import PointCloud
from .normalize import GroundModel, build_ground_model, normalize_height, HEIGHT_FIELD
from .rasterize import GridSpec, points_to_grid, NODATA_VAL

log = logging.getLogger(__name__)

__all__ = [
    "ProductKind",
    "ProductSpec",
    "points_product",
    "dtm_product",
    "dem_product",
    "dsm_product",
    "chm_product",
    "metric_product",
    "select_product_points",
    "rasterize_product",
    "terrain_grid",
    "generate_dtm",
    "generate_dsm",
    "calculate_chm"
]

class ProductKind(Enum):
    """
    Output product families.

    Options:
        POINTS: Consolidated, cleaned (and normalized) point set.
        GRID: Per-cell aggregation of a point attribute (DSM, CHM, metrics, density).
        TERRAIN: Ground model evaluated at every cell centre (TIN / IDW terrain model).
    """
    POINTS = "points"
    GRID = "grid"
    TERRAIN = "terrain"

@dataclass(frozen=True)
class ProductSpec:
    """
    Description of what a catalog run produces.

    Args:
        kind (ProductKind): Product family.
        name (str): Product name, used as band name of raster outputs.
        field (str): Point attribute aggregated by GRID products ('z', 'height', ...).
        aggregation (Optional[Union[str, Callable]]): Reducer for GRID products.
            None falls back to the run configuration's aggregation.
        resolution (Optional[float]): Cell size. None falls back to the configured output resolution.
        classes (Optional[Tuple[int, ...]]): Keep only these classification codes before aggregating.
        first_returns_only (bool): Keep only first returns before aggregating.
        clamp_min (Optional[float]): Lower bound applied to aggregated cell values.
    """
    kind: ProductKind = ProductKind.POINTS
    name: str = "points"
    field: str = "z"
    aggregation: Optional[Union[str, Callable]] = None
    resolution: Optional[float] = None
    classes: Optional[Tuple[int, ...]] = None
    first_returns_only: bool = False
    clamp_min: Optional[float] = None

    @property
    def is_raster(self) -> bool:
        return self.kind != ProductKind.POINTS

    @property
    def needs_height(self) -> bool:
        return self.kind == ProductKind.GRID and self.field == HEIGHT_FIELD

# Presets

def points_product() -> ProductSpec:
    """Cleaned, height-normalized point set."""
    return ProductSpec(kind=ProductKind.POINTS, name="points")

def dtm_product(resolution: Optional[float] = None) -> ProductSpec:
    """Digital terrain model interpolated from the ground model at cell centres."""
    return ProductSpec(kind=ProductKind.TERRAIN, name="dtm", resolution=resolution)

def dem_product(
    resolution: Optional[float] = None,
    aggregation: Union[str, Callable] = "mean",
    ground_classes: Tuple[int, ...] = (2,)
    ) -> ProductSpec:
    """Digital elevation model aggregated from ground-classified points only (cells without ground stay empty)."""
    return ProductSpec(
        kind=ProductKind.GRID, name="dem", field="z", aggregation=aggregation,
        resolution=resolution, classes=tuple(ground_classes)
    )

def dsm_product(resolution: Optional[float] = None, aggregation: Union[str, Callable] = "max") -> ProductSpec:
    """Digital surface model: highest elevation of all returns per cell."""
    return ProductSpec(kind=ProductKind.GRID, name="dsm", field="z", aggregation=aggregation, resolution=resolution)

def chm_product(resolution: Optional[float] = None, aggregation: Union[str, Callable] = "max") -> ProductSpec:
    """Canopy height model: highest height above ground of all returns per cell, floored at 0."""
    return ProductSpec(
        kind=ProductKind.GRID, name="chm", field=HEIGHT_FIELD, aggregation=aggregation,
        resolution=resolution, clamp_min=0.0
    )

def metric_product(
    aggregation: Union[str, Callable],
    resolution: Optional[float] = None,
    field: str = HEIGHT_FIELD,
    name: Optional[str] = None,
    first_returns_only: bool = False
    ) -> ProductSpec:
    """Area-based metric grid (e.g. 'p95', 'mean', 'cover') used as predictors by biomass models."""
    if name is None:
        name = aggregation if isinstance(aggregation, str) else getattr(aggregation, "__name__", "metric")
    return ProductSpec(
        kind=ProductKind.GRID, name=name, field=field, aggregation=aggregation,
        resolution=resolution, first_returns_only=first_returns_only
    )

# Generation

def select_product_points(pc: PointCloud, product: ProductSpec) -> PointCloud:
    """Applies the product's class and return filters."""
    mask = np.ones(len(pc), dtype=bool)
    if product.classes is not None:
        mask &= np.isin(pc.classification, np.asarray(product.classes))
    if product.first_returns_only:
        mask &= pc.return_number == 1
    return pc if mask.all() else pc.subset(mask)

def terrain_grid(
    model: GroundModel,
    grid: GridSpec,
    window: Optional[Window] = None,
    nodata: float = NODATA_VAL,
    name: str = "dtm"
    ) -> Raster:
    """
    Evaluates a ground model at the centre of every cell of a grid window.

    Args:
        model (GroundModel): Ground surface.
        grid (GridSpec): Global output grid.
        window (Optional[Window]): Part of the grid to produce. Defaults to the full grid.
        nodata (float): Sentinel for cells the model cannot answer.
        name (str): Band name.

    Returns:
        Raster: Terrain elevations for the window.
    """
    if window is None:
        window = grid.full_window
    height, width = int(window.height), int(window.width)
    res = grid.resolution

    cols = np.arange(int(window.col_off), int(window.col_off) + width)
    rows = np.arange(int(window.row_off), int(window.row_off) + height)
    cx = grid.xmin + (cols + 0.5) * res
    cy = grid.top - (rows + 0.5) * res
    qx, qy = np.meshgrid(cx, cy)

    z = model(qx.ravel(), qy.ravel()).reshape(height, width)
    z[np.isnan(z)] = nodata

    return Raster(
        data=z.astype(np.float32),
        transform=compute_window_transform(window, grid.transform),
        crs=grid.crs,
        nodata=nodata,
        band_names={name: 1}
    )

def rasterize_product(
    pc: PointCloud,
    product: ProductSpec,
    grid: GridSpec,
    window: Optional[Window] = None,
    aggregation: Union[str, Callable] = "max",
    nodata: float = NODATA_VAL,
    model: Optional[GroundModel] = None,
    clamp: bool = False
    ) -> Raster:
    """
    Builds one raster product for a point cloud (or a chunk's core points) on a grid window.

    Args:
        pc (PointCloud): Points contributing to the window.
        product (ProductSpec): GRID or TERRAIN product.
        grid (GridSpec): Global output grid.
        window (Optional[Window]): Part of the grid to produce.
        aggregation (Union[str, Callable]): Reducer used when the product does not name one.
        nodata (float): Sentinel for empty cells.
        model (Optional[GroundModel]): Ground model, required by TERRAIN products.
        clamp (bool): The points all lie inside the window (see points_to_grid).

    Returns:
        Raster: Partial (or full) grid.
    """
    if product.kind == ProductKind.TERRAIN:
        if model is None:
            raise ValueError("Terrain products require a ground model")
        return terrain_grid(model, grid, window, nodata=nodata, name=product.name)

    if product.kind != ProductKind.GRID:
        raise ValueError(f"Product '{product.name}' is not a raster product")

    raster = points_to_grid(
        select_product_points(pc, product),
        method=product.aggregation or aggregation,
        nodata=nodata,
        field=product.field,
        grid=grid,
        window=window,
        clamp=clamp
    )
    if product.clamp_min is not None:
        band = raster.data[0]
        valid = band != nodata
        band[valid] = np.maximum(band[valid], product.clamp_min)
    raster.band_names = {product.name: 1}
    return raster

def generate_dtm(
    pc: PointCloud,
    resolution: float,
    crs: Optional[str] = None,
    algorithm: GroundAlgorithm = GroundAlgorithm.TRIANGULATION,
    k: int = 6,
    power: float = 2.0,
    ground_classes: Tuple[int, ...] = (2,)
    ) -> Raster:
    """
    Interpolates the ground-classified points of a loaded point cloud into a terrain model.

    Args:
        pc (PointCloud): Fully loaded point cloud holding classified ground returns.
        resolution (float): Output pixel dimension sizing.
        crs (Optional[str]): Coordinate reference of the output.
        algorithm (GroundAlgorithm): Triangulation or knn-idw.
        k (int): Neighbour count for knn-idw.
        power (float): Distance power for knn-idw.
        ground_classes (Tuple[int, ...]): Classification codes considered ground.

    Returns:
        Raster: Terrain elevations covering the point cloud's bounds.
    """
    model = build_ground_model(pc, algorithm=algorithm, k=k, power=power, ground_classes=ground_classes)
    grid = GridSpec.from_bounds((pc.min_x, pc.min_y, pc.max_x, pc.max_y), resolution, crs or pc.crs)
    return terrain_grid(model, grid)

def generate_dsm(
    pc: PointCloud,
    resolution: float,
    crs: Optional[str] = None,
    method: Union[str, Callable] = "max"
    ) -> Raster:
    """Rasterizes the uppermost returns of a loaded point cloud into a surface model."""
    grid = GridSpec.from_bounds((pc.min_x, pc.min_y, pc.max_x, pc.max_y), resolution, crs or pc.crs)
    return rasterize_product(pc, dsm_product(resolution, method), grid)

def calculate_chm(
    pc: PointCloud,
    resolution: float,
    crs: Optional[str] = None,
    method: Union[str, Callable] = "max",
    algorithm: GroundAlgorithm = GroundAlgorithm.TRIANGULATION,
    k: int = 6,
    power: float = 2.0,
    ground_classes: Tuple[int, ...] = (2,)
    ) -> Raster:
    """
    Calculates the Canopy Height Model (CHM) of a loaded point cloud.

    Points are normalized against their own ground model (unless they already
    carry a height field) and the highest height per cell is kept.
    """
    if HEIGHT_FIELD not in pc.fields:
        pc = normalize_height(pc, algorithm=algorithm, k=k, power=power, ground_classes=ground_classes)
    grid = GridSpec.from_bounds((pc.min_x, pc.min_y, pc.max_x, pc.max_y), resolution, crs or pc.crs)
    return rasterize_product(pc, chm_product(resolution, method), grid)
