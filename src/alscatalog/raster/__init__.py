# src/alscatalog/raster/__init__.py
#
# Copyright (c) The alscatalog project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The raster subpackage provides the in-memory raster grid produced by catalog runs
and its disk I/O.
"""
# Core data structure
from .layer import (
    Raster
)

# I/O operations
from .io import (
    load,
    save
)

__all__ = [
    # Core data structure
    "Raster",

    # I/O operations
    "load",
    "save",
]
