# src/alscatalog/lidar/metrics.py

"""
This module implements per-cell reducers used to aggregate points into raster cells.

A reducer receives the values of one cell together with the return metadata
of the same points and returns a single float. The most common reducers
(count, max, min, mean) are flagged so the rasterizer can run them through
its compiled kernel; every other reducer is applied cell by cell.
"""

import logging
import re
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict, Optional, Union

import numpy as np

log = logging.getLogger(__name__)

__all__ = [
    "Reducer",
    "register_reducer",
    "get_reducer",
    "available_reducers"
]

# Reducer callables take (values, return_number, number_of_returns)
ReduceFunc = Callable[[np.ndarray, np.ndarray, np.ndarray], float]

# Flags understood by the compiled kernel in rasterize.py
KERNEL_COUNT = 0
KERNEL_MAX = 1
KERNEL_MIN = 2
KERNEL_MEAN = 3

@dataclass(frozen=True)
class Reducer:
    """
    Named per-cell reduction.

    Args:
        name (str): Registry name, also used as band name in output rasters.
        func (ReduceFunc): Reduction over (values, return_number, number_of_returns).
        kernel (Optional[int]): Compiled kernel flag, or None for cell-by-cell evaluation.
    """
    name: str
    func: ReduceFunc
    kernel: Optional[int] = None

    def __call__(self, values, return_number, number_of_returns) -> float:
        return float(self.func(values, return_number, number_of_returns))

def _count(values, rn, nr):
    return len(values)

def _max(values, rn, nr):
    return np.max(values)

def _min(values, rn, nr):
    return np.min(values)

def _mean(values, rn, nr):
    return np.mean(values)

def _std(values, rn, nr):
    return np.std(values)

def _percentile(values, rn, nr, q: float = 95.0):
    return np.percentile(values, q)

def _cover(values, rn, nr, threshold: float = 2.0):
    # Share of first returns above the height threshold
    first = rn == 1
    if not np.any(first):
        return np.nan
    return np.count_nonzero(values[first] > threshold) / np.count_nonzero(first)

def _first_return_mean(values, rn, nr):
    first = rn == 1
    return np.mean(values[first]) if np.any(first) else np.nan

_REGISTRY: Dict[str, Reducer] = {
    "count": Reducer("count", _count, KERNEL_COUNT),
    "max": Reducer("max", _max, KERNEL_MAX),
    "min": Reducer("min", _min, KERNEL_MIN),
    "mean": Reducer("mean", _mean, KERNEL_MEAN),
    "std": Reducer("std", _std),
    "cover": Reducer("cover", _cover),
    "first_mean": Reducer("first_mean", _first_return_mean),
}

_PERCENTILE_PATTERN = re.compile(r"^p(\d+(?:\.\d+)?)$")

def register_reducer(name: str, func: ReduceFunc, overwrite: bool = False) -> Reducer:
    """
    Adds a named reducer to the registry.

    Reducers registered at module level stay picklable, which process pools require.

    Args:
        name (str): Registry name.
        func (ReduceFunc): Reduction over (values, return_number, number_of_returns).
        overwrite (bool): Replace an existing entry with the same name.

    Returns:
        Reducer: The registered reducer.
    """
    if name in _REGISTRY and not overwrite:
        raise ValueError(f"Reducer '{name}' is already registered")
    if _PERCENTILE_PATTERN.match(name):
        raise ValueError(f"Reducer names of the form 'p<q>' are reserved for percentiles: {name}")
    reducer = Reducer(name, func)
    _REGISTRY[name] = reducer
    log.debug(f"Registered reducer '{name}'")
    return reducer

def get_reducer(spec: Union[str, Callable, Reducer]) -> Reducer:
    """
    Resolves a reducer from a name, a callable or an existing Reducer.

    Names are registry entries or percentiles written as 'p<q>' (e.g. 'p95', 'p99.9').

    Raises:
        KeyError: If the name is unknown or the percentile is out of range.
    """
    if isinstance(spec, Reducer):
        return spec
    if callable(spec):
        return Reducer(getattr(spec, "__name__", "custom"), spec)

    if spec in _REGISTRY:
        return _REGISTRY[spec]

    match = _PERCENTILE_PATTERN.match(spec)
    if match:
        q = float(match.group(1))
        if not 0.0 <= q <= 100.0:
            raise KeyError(f"Percentile out of range in reducer '{spec}'")
        return Reducer(spec, partial(_percentile, q=q))

    raise KeyError(f"Unknown aggregation '{spec}'. Available: {available_reducers()} or 'p<q>'")

def available_reducers():
    return sorted(_REGISTRY)
