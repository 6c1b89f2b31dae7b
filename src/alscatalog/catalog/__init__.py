# src/alscatalog/catalog/__init__.py
#
# Copyright (c) The alscatalog project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The catalog subpackage provides tiled processing of lidar catalogs,
including tile indexing, data sources, chunk planning, per-chunk processing,
result merging and the parallel run engine.
"""

# Spatial primitives
from .extent import (
    Extent,
    Chunk
)

# Tile index and data sources
from .tindex import (
    Tile,
    TileIndex
)
from .source import (
    PointSource,
    LasCatalogSource,
    InMemorySource,
    drop_return_zero,
    ClassFilter,
    combine_predicates
)

# Planning
from .planner import (
    plan_chunks,
    plan_from_index,
    chunks_to_geodataframe
)

# Processing and merging
from .processor import (
    ChunkStats,
    ChunkResult,
    process_chunk
)
from .merge import (
    check_core_overlaps,
    merge_points,
    merge_rasters
)

# Resource management
from .resources import (
    MemoryEstimate,
    estimate_chunk_memory,
    check_worker_memory
)

# Engine operations
from .engine import (
    ProcessingScope,
    ChunkFailure,
    CatalogReport,
    run_catalog,
    execute
)

__all__ = [
    # Spatial primitives
    "Extent",
    "Chunk",

    # Tile index and data sources
    "Tile",
    "TileIndex",
    "PointSource",
    "LasCatalogSource",
    "InMemorySource",
    "drop_return_zero",
    "ClassFilter",
    "combine_predicates",

    # Planning
    "plan_chunks",
    "plan_from_index",
    "chunks_to_geodataframe",

    # Processing and merging
    "ChunkStats",
    "ChunkResult",
    "process_chunk",
    "check_core_overlaps",
    "merge_points",
    "merge_rasters",

    # Resource management
    "MemoryEstimate",
    "estimate_chunk_memory",
    "check_worker_memory",

    # Engine operations
    "ProcessingScope",
    "ChunkFailure",
    "CatalogReport",
    "run_catalog",
    "execute",
]
