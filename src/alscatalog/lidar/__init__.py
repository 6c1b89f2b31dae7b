# src/alscatalog/lidar/__init__.py
#
# Copyright (c) The alscatalog project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The lidar subpackage provides the point-level building blocks of catalog processing,
including the point cloud data structure, cleaning stages, ground modelling and
height normalization, cell reducers and lidar-derived raster generation.
"""

# Data structure
from .layer import (
    PointCloud
)

# Cleaning
from .clean import (
    deduplicate,
    filter_returns,
    denoise
)

# Ground model and normalization
from .normalize import (
    GroundModel,
    build_ground_model,
    ground_points,
    normalize_height,
    HEIGHT_FIELD
)

# Cell reducers
from .metrics import (
    Reducer,
    register_reducer,
    get_reducer,
    available_reducers
)

# Rasterization and product generation
from .rasterize import (
    GridSpec,
    points_to_grid,
    NODATA_VAL
)
from .generate_model import (
    ProductKind,
    ProductSpec,
    points_product,
    dtm_product,
    dem_product,
    dsm_product,
    chm_product,
    metric_product,
    rasterize_product,
    generate_dtm,
    generate_dsm,
    calculate_chm
)

__all__ = [
    # Data structure
    "PointCloud",

    # Cleaning
    "deduplicate",
    "filter_returns",
    "denoise",

    # Ground model and normalization
    "GroundModel",
    "build_ground_model",
    "ground_points",
    "normalize_height",
    "HEIGHT_FIELD",

    # Cell reducers
    "Reducer",
    "register_reducer",
    "get_reducer",
    "available_reducers",

    # Rasterization and product generation
    "GridSpec",
    "points_to_grid",
    "NODATA_VAL",

    "ProductKind",
    "ProductSpec",
    "points_product",
    "dtm_product",
    "dem_product",
    "dsm_product",
    "chm_product",
    "metric_product",
    "rasterize_product",
    "generate_dtm",
    "generate_dsm",
    "calculate_chm",
]
