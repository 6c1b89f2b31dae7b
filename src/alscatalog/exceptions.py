# src/alscatalog/exceptions.py

"""
This module defines the error hierarchy shared by the catalog pipeline.

Configuration errors and merge defects abort a whole run, while chunk errors
are isolated to the chunk that raised them and collected into the run report.
"""

__all__ = [
    "CatalogError",
    "ConfigurationError",
    "ChunkError",
    "ChunkLoadError",
    "GroundModelUndeterminedError",
    "MergeOverlapDefect"
]

class CatalogError(Exception):
    """Base class for every error raised by alscatalog."""

class ConfigurationError(CatalogError, ValueError):
    """Invalid chunk size, buffer, threshold or product settings. Fatal before any chunk runs."""

class ChunkError(CatalogError):
    """
    Error confined to a single chunk.

    Args:
        message: Human readable reason.
        chunk: The Chunk being processed when the error happened (may be None
            when the error is raised outside of a chunk context).
    """
    def __init__(self, message: str, chunk=None):
        super().__init__(message)
        self.chunk = chunk

    def __reduce__(self):
        # keep the chunk when crossing process boundaries
        return (self.__class__, (self.args[0], self.chunk))

    def __str__(self) -> str:
        msg = super().__str__()
        if self.chunk is None:
            return msg
        c = self.chunk.core
        return (f"{msg} [chunk {self.chunk.chunk_id} "
                f"({c.xmin:.2f}, {c.ymin:.2f}, {c.xmax:.2f}, {c.ymax:.2f})]")

class ChunkLoadError(ChunkError):
    """The raw data source failed to deliver the points of a chunk's padded region."""

class GroundModelUndeterminedError(ChunkError):
    """Too few (or degenerate) ground points to interpolate a ground surface."""

class MergeOverlapDefect(CatalogError):
    """Two chunk contributions overlap in the merged product. Indicates a planner bug."""
