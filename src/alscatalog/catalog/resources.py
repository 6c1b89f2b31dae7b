# src/alscatalog/catalog/resources.py

"""
This module estimates the memory a catalog run needs before any chunk is loaded.

A chunk's footprint is its padded area times the catalog point density times
the bytes held per point (coordinates, attributes and the working copies made
by the cleaning stages). A run is safe when `workers` footprints fit in the
available system memory.
"""

import logging
import psutil
from dataclasses import dataclass
from typing import Sequence, Optional

from .extent import Chunk
from .tindex import TileIndex

log = logging.getLogger(__name__)

__all__ = [
    "MemoryEstimate",
    "estimate_chunk_memory",
    "check_worker_memory"
]

# x, y, z and height as float64, three uint8 attributes, two int64 sort/index buffers
BYTES_PER_POINT = 4 * 8 + 3 + 2 * 8
DEFAULT_SAFETY_FACTOR = 3.0
MIN_FREE_GB = 1.0

@dataclass(frozen=True)
class MemoryEstimate:
    """
    Estimation of memory requirements and safety for a catalog run.

    Args:
        per_chunk_bytes: Estimated bytes held by the largest chunk (with overhead)
        total_required_bytes: per_chunk_bytes times the number of concurrent workers
        available_system_bytes: Currently available system memory in bytes
        is_safe: Boolean indicating if the run is considered safe
        reason: Explanation for the safety assessment
    """
    per_chunk_bytes: int
    total_required_bytes: int
    available_system_bytes: int
    is_safe: bool
    reason: str

def estimate_chunk_memory(
    chunk: Chunk,
    density: float,
    safety_factor: float = DEFAULT_SAFETY_FACTOR
) -> int:
    """
    Estimated bytes needed to process one chunk.

    Args:
        chunk: Planned chunk (its padded area is what gets loaded).
        density: Points per unit area of the catalog.
        safety_factor: Multiplier accounting for intermediate copies.

    Returns:
        int: Estimated bytes.
    """
    points = chunk.padded.area * max(density, 0.0)
    return int(points * BYTES_PER_POINT * safety_factor)

def check_worker_memory(
    chunks: Sequence[Chunk],
    tindex: Optional[TileIndex],
    workers: int,
    safety_factor: float = DEFAULT_SAFETY_FACTOR,
    min_free_gb: float = MIN_FREE_GB
) -> MemoryEstimate:
    """
    Checks whether `workers` concurrent chunks fit in available memory.

    Logs a warning when the run is not considered safe. The check never blocks
    a run: memory pressure only degrades performance or triggers the OS killer,
    which the caller can avoid by lowering workers or chunk_size.
    """
    mem = psutil.virtual_memory()
    if tindex is None or not chunks:
        return MemoryEstimate(0, 0, mem.available, True, "No density information")

    per_chunk = max(estimate_chunk_memory(c, tindex.density, safety_factor) for c in chunks)
    total_required = per_chunk * max(1, int(workers))
    min_free_bytes = int(min_free_gb * (1024**3))
    is_safe = (total_required + min_free_bytes) <= mem.available

    reason = (f"Req: {total_required/1e9:.2f}GB ({workers} x {per_chunk/1e9:.2f}GB), "
              f"Avail: {mem.available/1e9:.2f}GB")
    if not is_safe:
        log.warning(f"Catalog run may exhaust memory. {reason}. Lower workers or chunk_size.")
    else:
        log.debug(f"Memory check passed. {reason}")

    return MemoryEstimate(per_chunk, total_required, mem.available, is_safe, reason)
