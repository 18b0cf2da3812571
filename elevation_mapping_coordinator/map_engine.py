"""
Map-update engines.

The coordinator only depends on the engine interface below. ``SimpleElevationEngine``
is a small numpy engine so the node runs without an external mapping backend;
any other engine can be plugged in through the ``map_engine`` parameter
("package.module:ClassName").
"""

import importlib
import math
from typing import Any, Dict, Optional, Sequence

import numpy as np

from elevation_mapping_coordinator.geometry import transform_points
from elevation_mapping_coordinator.grid_map import GridMap


DEFAULT_ENGINE_CONFIG: Dict[str, Any] = {
    "resolution": 0.04,
    "map_length": 8.0,
    "sensor_noise_factor": 0.05,
    "initial_variance": 1000.0,
    "min_height": -math.inf,
    "max_height": math.inf,
}


class MapEngine:
    """
    Narrow interface the coordinator drives:
    - initialize(config)
    - input(points, rotation, translation, position_noise, orientation_noise)
    - move_to(position)
    - get_grid_map()
    - clear()

    Implementations need not be thread-safe; the map proxy serialises every call.
    """

    def initialize(self, config: Dict[str, Any]) -> None:
        raise NotImplementedError

    def input(
        self,
        points: np.ndarray,
        rotation: np.ndarray,
        translation: np.ndarray,
        position_noise: float,
        orientation_noise: float,
    ) -> None:
        raise NotImplementedError

    def move_to(self, position: Sequence[float]) -> None:
        raise NotImplementedError

    def get_grid_map(self) -> GridMap:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class SimpleElevationEngine(MapEngine):
    """
    Per-cell inverse-variance height fusion.

    Layers: ``elevation`` (NaN where unobserved), ``variance``, ``is_valid``.
    Point variance grows with range and with the pose uncertainty handed in
    by the coordinator:

        var = sensor_noise_factor * r^2 + position_noise^2 + (orientation_noise * r)^2
    """

    def __init__(self):
        self.config: Dict[str, Any] = dict(DEFAULT_ENGINE_CONFIG)
        self.resolution = float(self.config["resolution"])
        self.cell_n = 0
        self.center = np.zeros(2, dtype=np.float64)
        self._elevation: Optional[np.ndarray] = None
        self._variance: Optional[np.ndarray] = None
        self._valid: Optional[np.ndarray] = None

    def initialize(self, config: Dict[str, Any]) -> None:
        self.config.update({k: v for k, v in config.items() if k in DEFAULT_ENGINE_CONFIG})
        self.resolution = float(self.config["resolution"])
        self.cell_n = max(int(round(float(self.config["map_length"]) / self.resolution)), 1)
        self.center = np.zeros(2, dtype=np.float64)
        self._reset_layers()

    def _reset_layers(self) -> None:
        n = self.cell_n
        self._elevation = np.zeros((n, n), dtype=np.float64)
        self._variance = np.full((n, n), float(self.config["initial_variance"]), dtype=np.float64)
        self._valid = np.zeros((n, n), dtype=bool)

    def _invalidate(self, rows: slice, cols: slice) -> None:
        self._elevation[rows, cols] = 0.0
        self._variance[rows, cols] = float(self.config["initial_variance"])
        self._valid[rows, cols] = False

    def input(self, points, rotation, translation, position_noise, orientation_noise) -> None:
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        pts = pts[np.all(np.isfinite(pts), axis=1)]
        if pts.shape[0] == 0:
            return

        t = np.asarray(translation, dtype=np.float64).reshape(3)
        ranges = np.linalg.norm(pts, axis=1)
        world = transform_points(pts, rotation, t)

        # Height gate relative to the sensor
        rel_z = world[:, 2] - t[2]
        keep = (rel_z >= float(self.config["min_height"])) & (rel_z <= float(self.config["max_height"]))

        n = self.cell_n
        top = self.center + 0.5 * n * self.resolution
        i = np.floor((top[0] - world[:, 0]) / self.resolution).astype(np.int64)
        j = np.floor((top[1] - world[:, 1]) / self.resolution).astype(np.int64)
        keep &= (i >= 0) & (i < n) & (j >= 0) & (j < n)
        if not np.any(keep):
            return

        r = ranges[keep]
        var = (float(self.config["sensor_noise_factor"]) * r * r
               + float(position_noise) ** 2
               + (float(orientation_noise) * r) ** 2)
        w = 1.0 / np.maximum(var, 1e-9)
        flat = i[keep] * n + j[keep]
        sum_w = np.bincount(flat, weights=w, minlength=n * n).reshape(n, n)
        sum_wz = np.bincount(flat, weights=w * world[keep, 2], minlength=n * n).reshape(n, n)

        hit = sum_w > 0.0
        prior_w = np.where(self._valid, 1.0 / self._variance, 0.0)
        total_w = prior_w + sum_w
        fused_h = (prior_w * self._elevation + sum_wz)[hit] / total_w[hit]
        self._elevation[hit] = fused_h
        self._variance[hit] = 1.0 / total_w[hit]
        self._valid |= hit

    def move_to(self, position) -> None:
        target = np.array([float(position[0]), float(position[1])], dtype=np.float64)
        shift = np.round((target - self.center) / self.resolution).astype(np.int64)
        if not np.any(shift):
            return
        n = self.cell_n
        for axis in (0, 1):
            s = int(shift[axis])
            if s == 0:
                continue
            if abs(s) >= n:
                self._reset_layers()
                continue
            # Moving the map by +s cells along an axis moves stored cells to index + s.
            self._elevation = np.roll(self._elevation, s, axis=axis)
            self._variance = np.roll(self._variance, s, axis=axis)
            self._valid = np.roll(self._valid, s, axis=axis)
            stale = slice(0, s) if s > 0 else slice(n + s, n)
            if axis == 0:
                self._invalidate(stale, slice(None))
            else:
                self._invalidate(slice(None), stale)
        self.center = self.center + shift * self.resolution

    def get_grid_map(self) -> GridMap:
        n = self.cell_n
        return GridMap(
            resolution=self.resolution,
            size=(n, n),
            position=self.center,
            layers={
                "elevation": np.where(self._valid, self._elevation, np.nan),
                "variance": self._variance,
                "is_valid": self._valid.astype(np.float32),
            },
            basic_layers=["elevation"],
        )

    def clear(self) -> None:
        self._reset_layers()


def load_engine(spec: str) -> MapEngine:
    """Instantiate an engine from a ``"package.module:ClassName"`` string."""
    module_name, sep, class_name = spec.partition(":")
    if not sep or not module_name or not class_name:
        raise ValueError(f"Invalid map_engine '{spec}', expected 'package.module:ClassName'")
    module = importlib.import_module(module_name)
    return getattr(module, class_name)()
