# src/alscatalog/config.py

"""
This module defines the configuration surface consumed by the chunk planner,
the chunk processor and the catalog engine.
"""

import json
import logging
import math
import numbers
from dataclasses import dataclass, fields, asdict, replace
from enum import Enum
from pathlib import Path
from typing import Union, Callable, Tuple, Dict, Any

from .exceptions import ConfigurationError

log = logging.getLogger(__name__)

__all__ = [
    "GroundAlgorithm",
    "GroundFailurePolicy",
    "ExecutorType",
    "CatalogConfig"
]

class GroundAlgorithm(Enum):
    """
    Ground surface interpolation algorithms.

    Options:
        TRIANGULATION: Delaunay triangulation with linear interpolation. Exact within the convex hull.
        KNN_IDW: Inverse-distance weighting of the k nearest ground points.
    """
    TRIANGULATION = "triangulation"
    KNN_IDW = "knn-idw"

class GroundFailurePolicy(Enum):
    """
    What to do with a chunk whose ground model cannot be determined.

    Options:
        DROP: Report the chunk as failed and leave it out of the merged product.
        SKIP: Keep the chunk, skip height normalization and record a warning.
    """
    DROP = "drop"
    SKIP = "skip"

class ExecutorType(Enum):
    """Worker pool flavour used when more than one worker is requested."""
    PROCESS = "process"
    THREAD = "thread"

_ENUM_FIELDS = {
    "ground_algorithm": GroundAlgorithm,
    "on_ground_failure": GroundFailurePolicy,
    "executor": ExecutorType,
}

def _is_real(value) -> bool:
    # bool is an int subclass but never a valid size
    return isinstance(value, numbers.Real) and not isinstance(value, bool)

@dataclass
class CatalogConfig:
    """
    Parameters for catalog chunking, point cleaning, normalization and rasterization.

    Tiling:
        chunk_size (float): Edge length of a chunk core region, in CRS units.
        buffer_margin (float): Padding added around each core while processing.
        skip_empty (bool): Drop chunks whose padded region touches no tile of the index.

    Cleaning:
        deduplicate (bool): Remove exact duplicate points.
        denoise (bool): Apply the coarse-grid percentile noise filter.
        drop_return_zero (bool): Discard points with return_number == 0 while loading.
        noise_above_threshold (float): Distance above the cell's 99.9th percentile beyond which points are noise.
        noise_below_threshold (float): Distance below the cell's 0.1th percentile beyond which points are noise.
        noise_grid_resolution (float): Cell size of the coarse noise grid.
        noise_min_points (int): Cells with fewer points pass unfiltered.

    Ground model:
        normalize (bool): Attach a height-above-ground field to every point.
        ground_algorithm (GroundAlgorithm): Interpolation algorithm for the ground surface.
        knn_k (int): Neighbour count for knn-idw.
        knn_power (float): Distance power for knn-idw.
        ground_classes (Tuple[int, ...]): Classification codes considered ground.
        min_ground_points (int): Minimum ground points required inside a padded region.
        on_ground_failure (GroundFailurePolicy): Drop the chunk or skip normalization.

    Rasterization:
        output_resolution (float): Final raster cell size.
        aggregation (Union[str, Callable]): Per-cell reducer name or callable.
        nodata (float): Sentinel for cells without contributing points.

    Execution:
        workers (int): Concurrent workers (1 runs inline).
        executor (ExecutorType): Process or thread pool when workers > 1.
        require_all (bool): Discard the merge if any chunk failed.
    """
    chunk_size: float = 500.0
    buffer_margin: float = 20.0
    skip_empty: bool = True

    deduplicate: bool = True
    denoise: bool = True
    drop_return_zero: bool = True
    noise_above_threshold: float = 5.0
    noise_below_threshold: float = 2.0
    noise_grid_resolution: float = 5.0
    noise_min_points: int = 3

    normalize: bool = True
    ground_algorithm: GroundAlgorithm = GroundAlgorithm.TRIANGULATION
    knn_k: int = 6
    knn_power: float = 2.0
    ground_classes: Tuple[int, ...] = (2,)
    min_ground_points: int = 3
    on_ground_failure: GroundFailurePolicy = GroundFailurePolicy.DROP

    output_resolution: float = 1.0
    aggregation: Union[str, Callable] = "max"
    nodata: float = -9999.0

    workers: int = 1
    executor: ExecutorType = ExecutorType.PROCESS
    require_all: bool = False

    def __post_init__(self):
        # Accept plain strings for enum options (JSON files, CLI flags)
        for name, enum_cls in _ENUM_FIELDS.items():
            value = getattr(self, name)
            if not isinstance(value, enum_cls):
                try:
                    setattr(self, name, enum_cls(value))
                except ValueError:
                    valid = [m.value for m in enum_cls]
                    raise ConfigurationError(f"Invalid {name} '{value}'. Must be one of: {valid}")
        self.ground_classes = tuple(int(c) for c in self.ground_classes)

    def validate(self) -> 'CatalogConfig':
        """
        Checks every value before any chunk runs.

        Returns:
            CatalogConfig: self, to allow chaining.

        Raises:
            ConfigurationError: On the first invalid value.
        """
        def _positive(name: str):
            value = getattr(self, name)
            if not _is_real(value) or not math.isfinite(value) or value <= 0:
                raise ConfigurationError(f"{name} must be a finite number > 0, got {value!r}")

        def _non_negative(name: str):
            value = getattr(self, name)
            if not _is_real(value) or not math.isfinite(value) or value < 0:
                raise ConfigurationError(f"{name} must be a finite number >= 0, got {value!r}")

        for name in ("chunk_size", "noise_grid_resolution", "output_resolution", "knn_power"):
            _positive(name)
        for name in ("buffer_margin", "noise_above_threshold", "noise_below_threshold"):
            _non_negative(name)

        for name in ("noise_min_points", "knn_k", "min_ground_points", "workers"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Integral) or value < 1:
                raise ConfigurationError(f"{name} must be an integer >= 1, got {value!r}")

        if self.normalize and not self.ground_classes:
            raise ConfigurationError("ground_classes cannot be empty when normalize is enabled")

        if not (isinstance(self.aggregation, str) or callable(self.aggregation)):
            raise ConfigurationError(f"aggregation must be a reducer name or a callable, got {self.aggregation!r}")
        if isinstance(self.aggregation, str):
            # Resolved lazily to avoid a circular import with the lidar subpackage
            from .lidar.metrics import get_reducer
            try:
                get_reducer(self.aggregation)
            except KeyError as e:
                raise ConfigurationError(str(e)) from e

        return self

    def check_raster_alignment(self):
        """
        Raster products need chunk cores aligned on the output grid so that no
        cell straddles two chunks.

        Raises:
            ConfigurationError: If chunk_size is not a multiple of output_resolution.
        """
        ratio = self.chunk_size / self.output_resolution
        if abs(ratio - round(ratio)) > 1e-9 * max(1.0, ratio):
            raise ConfigurationError(
                f"chunk_size ({self.chunk_size}) must be a multiple of "
                f"output_resolution ({self.output_resolution}) for raster products"
            )

    def with_overrides(self, **overrides) -> 'CatalogConfig':
        """Returns a copy with the given values replaced (None values are ignored)."""
        cleaned = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **cleaned)

    @classmethod
    def from_dict(cls, mapping: Dict[str, Any]) -> 'CatalogConfig':
        """
        Builds a config from a plain mapping, rejecting unknown keys.

        Raises:
            ConfigurationError: If the mapping holds keys that are not configuration values.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {unknown}")
        return cls(**mapping)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> 'CatalogConfig':
        """Loads a config from a JSON file holding a single object."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        try:
            mapping = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Malformed configuration file {path}: {e}") from e
        if not isinstance(mapping, dict):
            raise ConfigurationError(f"Configuration file {path} must hold a JSON object")
        log.debug(f"Loaded configuration from {path}")
        return cls.from_dict(mapping)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation (enum members become their values)."""
        out = asdict(self)
        for name in _ENUM_FIELDS:
            out[name] = getattr(self, name).value
        out["ground_classes"] = list(self.ground_classes)
        if callable(self.aggregation):
            # Reducer objects carry their registry name
            name = getattr(self.aggregation, "name", None) or getattr(self.aggregation, "__name__", None)
            out["aggregation"] = name or repr(self.aggregation)
        return out
