# src/alscatalog/lidar/layer.py

"""
This module defines the core data structure for lidar point clouds, along with methods for loading,
writing and immutable manipulation.
"""

from pathlib import Path
from dataclasses import dataclass, field
from typing import Union, Generator, Optional, Dict, Iterable, Sequence
import logging

import laspy
import numpy as np

log = logging.getLogger(__name__)

__all__ = [
    "PointCloud"
]

def _frozen(values, dtype) -> np.ndarray:
    """Returns a read-only view of `values` cast to `dtype` (the caller's array is left untouched)."""
    arr = np.asarray(values, dtype=dtype).view()
    arr.flags.writeable = False
    return arr

@dataclass(frozen=True)
class PointCloud:
    """
    Core data structure for holding LiDAR point cloud data.

    A PointCloud is an immutable value: every operation returns a new object and
    the underlying arrays are read-only, so point sets can be handed to parallel
    workers without any locking.

    Primary point cloud attributes:
        x (np.ndarray): X coordinates of points.
        y (np.ndarray): Y coordinates of points.
        z (np.ndarray): Z coordinates (elevation) of points.
        classification (np.ndarray): Point classifications (ground, vegetation, etc.).
        return_number (np.ndarray): Return number for each point (1 for first return, etc.).
        number_of_returns (np.ndarray): Total number of returns of the pulse each point belongs to.

    Secondary attributes:
        fields (Dict[str, np.ndarray]): Auxiliary per-point scalar fields keyed by name (e.g. "height").
        crs (Optional[str]): Coordinate reference name carried along with the points.
    """
    x: np.ndarray
    y: np.ndarray
    z: np.ndarray
    classification: Optional[np.ndarray] = None
    return_number: Optional[np.ndarray] = None
    number_of_returns: Optional[np.ndarray] = None
    fields: Dict[str, np.ndarray] = field(default_factory=dict)
    crs: Optional[str] = None

    def __post_init__(self):
        x = _frozen(self.x, np.float64)
        n = len(x)
        # Single returns of unclassified points unless told otherwise
        defaults = {
            "classification": np.zeros(n, dtype=np.uint8),
            "return_number": np.ones(n, dtype=np.uint8),
            "number_of_returns": np.ones(n, dtype=np.uint8),
        }
        object.__setattr__(self, "x", x)
        object.__setattr__(self, "y", _frozen(self.y, np.float64))
        object.__setattr__(self, "z", _frozen(self.z, np.float64))
        for name, default in defaults.items():
            values = getattr(self, name)
            object.__setattr__(self, name, _frozen(default if values is None else values, np.uint8))

        extra = {key: _frozen(val, np.float64) for key, val in self.fields.items()}
        object.__setattr__(self, "fields", extra)

        for name in ("y", "z", "classification", "return_number", "number_of_returns"):
            if len(getattr(self, name)) != n:
                raise ValueError(f"Attribute '{name}' has {len(getattr(self, name))} values, expected {n}")
        for key, val in extra.items():
            if len(val) != n:
                raise ValueError(f"Field '{key}' has {len(val)} values, expected {n}")

    @classmethod
    def empty(cls, crs: Optional[str] = None, field_names: Iterable[str] = ()) -> 'PointCloud':
        """Returns a point cloud holding no points."""
        none = np.empty(0, dtype=np.float64)
        return cls(x=none, y=none, z=none, fields={k: none for k in field_names}, crs=crs)

    @classmethod
    def _from_las_points(cls, las, crs: Optional[str] = None) -> 'PointCloud':
        # map laspy point attributes to our PointCloud structure
        # extra-byte dimensions (e.g. a height field written by a previous run) become auxiliary fields
        extra = {name: np.array(las[name], dtype=np.float64) for name in las.point_format.extra_dimension_names}
        return cls(
            x=np.array(las.x),
            y=np.array(las.y),
            z=np.array(las.z),
            classification=np.array(las.classification),
            return_number=np.array(las.return_number),
            number_of_returns=np.array(las.number_of_returns),
            fields=extra,
            crs=crs
        )

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        crs: Optional[str] = None
        ) -> 'PointCloud':
        """
        Loads the entirety of a LiDAR point cloud into memory.

        Args:
            path (Union[str, Path]): Target .las or .laz file.
            crs (Optional[str]): Coordinate reference name to attach to the points.

        Returns:
            PointCloud: Fully populated object.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Lidar file not found: {path}")

        with laspy.open(path) as fh:
            return cls._from_las_points(fh.read(), crs=crs)

    @classmethod
    def iter_chunks(
        cls,
        path: Union[str, Path],
        chunk_size: int = 1_000_000,
        crs: Optional[str] = None
        ) -> Generator['PointCloud', None, None]:
        """
        Iterates over a LiDAR file in chunks to maintain strict memory safety.

        Args:
            path (Union[str, Path]): Target .las or .laz file.
            chunk_size (int): Number of points to stream per chunk.
            crs (Optional[str]): Coordinate reference name to attach to the points.

        Yields:
            Generator[PointCloud, None, None]: Sequential point cloud fragments.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Lidar file not found: {path}")

        with laspy.open(path) as fh:
            for chunk in fh.chunk_iterator(chunk_size):
                yield cls._from_las_points(chunk, crs=crs)

    def to_file(self, path: Union[str, Path]) -> Path:
        """
        Writes the point cloud to a .las/.laz file.

        Auxiliary fields are stored as float64 extra-byte dimensions.

        Args:
            path (Union[str, Path]): Output file path.

        Returns:
            Path: The written file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        header = laspy.LasHeader(point_format=6, version="1.4")
        header.scales = np.array([0.001, 0.001, 0.001])
        if len(self):
            header.offsets = np.array([self.x.min(), self.y.min(), self.z.min()])
        for name in self.fields:
            header.add_extra_dim(laspy.ExtraBytesParams(name=name, type=np.float64))
        if self.crs:
            from pyproj import CRS
            header.add_crs(CRS.from_user_input(self.crs))

        las = laspy.LasData(header)
        las.x = self.x
        las.y = self.y
        las.z = self.z
        las.classification = self.classification
        las.return_number = self.return_number
        las.number_of_returns = self.number_of_returns
        for name, values in self.fields.items():
            las[name] = values

        log.info(f"Writing {len(self)} points to {path}")
        try:
            las.write(path)
        except Exception as e:
            raise IOError(f"Failed to write point cloud to {path}: {e}") from e
        return path

    # Immutable manipulation

    def __len__(self) -> int:
        return len(self.x)

    @property
    def is_empty(self) -> bool:
        return len(self.x) == 0

    @property
    def min_x(self) -> float:
        return float(self.x.min()) if len(self) else float("nan")

    @property
    def max_x(self) -> float:
        return float(self.x.max()) if len(self) else float("nan")

    @property
    def min_y(self) -> float:
        return float(self.y.min()) if len(self) else float("nan")

    @property
    def max_y(self) -> float:
        return float(self.y.max()) if len(self) else float("nan")

    def get_field(self, name: str) -> np.ndarray:
        """
        Retrieves a per-point attribute by name.

        Core attributes ('x', 'y', 'z', 'classification', 'return_number',
        'number_of_returns') are looked up first, then auxiliary fields.
        """
        if name in ("x", "y", "z", "classification", "return_number", "number_of_returns"):
            return getattr(self, name)
        if name not in self.fields:
            raise KeyError(f"Field '{name}' not found. Available: {list(self.fields)}")
        return self.fields[name]

    def subset(self, selector: np.ndarray) -> 'PointCloud':
        """
        Returns a new point cloud restricted to the selected points.

        Args:
            selector (np.ndarray): Boolean mask or integer index array.
        """
        return PointCloud(
            x=self.x[selector],
            y=self.y[selector],
            z=self.z[selector],
            classification=self.classification[selector],
            return_number=self.return_number[selector],
            number_of_returns=self.number_of_returns[selector],
            fields={k: v[selector] for k, v in self.fields.items()},
            crs=self.crs
        )

    def with_field(self, name: str, values: np.ndarray) -> 'PointCloud':
        """Returns a new point cloud carrying an additional (or replaced) auxiliary field."""
        if name in ("x", "y", "z", "classification", "return_number", "number_of_returns"):
            raise ValueError(f"'{name}' is a core attribute and cannot be attached as a field")
        fields = dict(self.fields)
        fields[name] = values
        return PointCloud(
            x=self.x, y=self.y, z=self.z,
            classification=self.classification,
            return_number=self.return_number,
            number_of_returns=self.number_of_returns,
            fields=fields,
            crs=self.crs
        )

    @classmethod
    def concat(cls, clouds: Sequence['PointCloud'], crs: Optional[str] = None) -> 'PointCloud':
        """
        Concatenates point clouds in the given order.

        Auxiliary fields missing from some inputs are filled with NaN for those points.
        """
        clouds = list(clouds)
        if crs is None:
            crs = next((pc.crs for pc in clouds if pc.crs), None)
        names = []
        for pc in clouds:
            names.extend(k for k in pc.fields if k not in names)
        if not clouds:
            return cls.empty(crs=crs)

        fields = {
            name: np.concatenate([
                pc.fields[name] if name in pc.fields else np.full(len(pc), np.nan)
                for pc in clouds
            ])
            for name in names
        }
        return cls(
            x=np.concatenate([pc.x for pc in clouds]),
            y=np.concatenate([pc.y for pc in clouds]),
            z=np.concatenate([pc.z for pc in clouds]),
            classification=np.concatenate([pc.classification for pc in clouds]),
            return_number=np.concatenate([pc.return_number for pc in clouds]),
            number_of_returns=np.concatenate([pc.number_of_returns for pc in clouds]),
            fields=fields,
            crs=crs
        )

    def __eq__(self, other: object) -> bool:
        """Checks equality of all attributes and fields (point order matters)."""
        if not isinstance(other, PointCloud):
            return NotImplemented
        if len(self) != len(other) or set(self.fields) != set(other.fields):
            return False
        core = ("x", "y", "z", "classification", "return_number", "number_of_returns")
        if not all(np.array_equal(getattr(self, n), getattr(other, n)) for n in core):
            return False
        return all(np.array_equal(v, other.fields[k], equal_nan=True) for k, v in self.fields.items())

    def __repr__(self) -> str:
        return f"<PointCloud points={len(self)} fields={list(self.fields)} crs={self.crs}>"
