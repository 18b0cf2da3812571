"""
2.5D grid map container.

Layers are float32 arrays of shape ``size = (nx, ny)``. Indexing follows the
grid_map convention: cell (0, 0) sits at the corner with maximum x and
maximum y, ``i`` grows towards -x and ``j`` towards -y. The map is always
stored unrolled (no circular-buffer start index).
"""

import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

# Fractional-cell slack when converting metric bounds to indices.
_INDEX_EPS = 1e-6


class GridMap:
    def __init__(
        self,
        frame_id: str = "map",
        resolution: float = 0.1,
        size: Tuple[int, int] = (0, 0),
        position: Sequence[float] = (0.0, 0.0),
        layers: Optional[Dict[str, np.ndarray]] = None,
        basic_layers: Optional[List[str]] = None,
    ):
        self.frame_id = frame_id
        self.resolution = float(resolution)
        self.size = (int(size[0]), int(size[1]))
        self.position = np.array([float(position[0]), float(position[1])], dtype=np.float64)
        self.basic_layers: List[str] = list(basic_layers) if basic_layers else []
        self._layers: Dict[str, np.ndarray] = {}
        for name, data in (layers or {}).items():
            self.add(name, data)

    # -----------------------------
    # Layers
    # -----------------------------

    @property
    def layers(self) -> List[str]:
        return list(self._layers.keys())

    @property
    def length(self) -> np.ndarray:
        return np.array(self.size, dtype=np.float64) * self.resolution

    def add(self, name: str, data=0.0) -> None:
        """Add or replace a layer; a scalar fills the whole grid."""
        if np.isscalar(data):
            arr = np.full(self.size, float(data), dtype=np.float32)
        else:
            arr = np.array(data, dtype=np.float32)
            if arr.shape != self.size:
                raise ValueError(f"Layer '{name}' has shape {arr.shape}, map size is {self.size}")
        self._layers[name] = arr

    def exists(self, name: str) -> bool:
        return name in self._layers

    def get(self, name: str) -> np.ndarray:
        return self._layers[name]

    def __getitem__(self, name: str) -> np.ndarray:
        return self._layers[name]

    def copy(self) -> "GridMap":
        return self.select(self.layers)

    def select(self, names: Iterable[str]) -> "GridMap":
        """Deep copy restricted to ``names``; unknown names are skipped."""
        out = GridMap(
            frame_id=self.frame_id,
            resolution=self.resolution,
            size=self.size,
            position=self.position,
        )
        for name in names:
            if name in self._layers:
                out._layers[name] = self._layers[name].copy()
        out.basic_layers = [b for b in self.basic_layers if b in out._layers]
        return out

    # -----------------------------
    # Geometry
    # -----------------------------

    def _top_corner(self) -> np.ndarray:
        return self.position + 0.5 * self.length

    def is_inside(self, position: Sequence[float]) -> bool:
        return self.index_of(position) is not None

    def index_of(self, position: Sequence[float]) -> Optional[Tuple[int, int]]:
        top = self._top_corner()
        i = int(math.floor((top[0] - float(position[0])) / self.resolution))
        j = int(math.floor((top[1] - float(position[1])) / self.resolution))
        if 0 <= i < self.size[0] and 0 <= j < self.size[1]:
            return i, j
        return None

    def position_of(self, i: int, j: int) -> np.ndarray:
        top = self._top_corner()
        return np.array([top[0] - (i + 0.5) * self.resolution, top[1] - (j + 0.5) * self.resolution])

    def cell_centers(self) -> Tuple[np.ndarray, np.ndarray]:
        """Cell-centre x coordinates along i and y coordinates along j."""
        top = self._top_corner()
        xs = top[0] - (np.arange(self.size[0], dtype=np.float64) + 0.5) * self.resolution
        ys = top[1] - (np.arange(self.size[1], dtype=np.float64) + 0.5) * self.resolution
        return xs, ys

    def _index_range(self, axis: int, lo: float, hi: float) -> Tuple[int, int]:
        top = self._top_corner()[axis]
        n = self.size[axis]
        start = int(math.floor((top - hi) / self.resolution + _INDEX_EPS))
        stop = int(math.ceil((top - lo) / self.resolution - _INDEX_EPS))
        start = min(max(start, 0), n)
        stop = min(max(stop, 0), n)
        return start, max(stop, start)

    def get_submap(self, position: Sequence[float], length: Sequence[float]) -> Tuple["GridMap", bool]:
        """
        Extract the part of the map covered by a rectangle.

        Never raises. The flag is True only when the rectangle lies fully
        inside the map; otherwise the clamped overlap is returned, which may
        have zero cells along one or both axes.

        :param position: requested centre (x, y)
        :param length: requested side lengths (x, y), metres
        :return: (submap, success)
        """
        center = np.array([float(position[0]), float(position[1])], dtype=np.float64)
        half = 0.5 * np.abs(np.array([float(length[0]), float(length[1])], dtype=np.float64))
        req_lo, req_hi = center - half, center + half
        map_lo = self.position - 0.5 * self.length
        map_hi = self.position + 0.5 * self.length
        tol = _INDEX_EPS * self.resolution
        inside = bool(np.all(req_lo >= map_lo - tol) and np.all(req_hi <= map_hi + tol))

        i0, i1 = self._index_range(0, max(req_lo[0], map_lo[0]), min(req_hi[0], map_hi[0]))
        j0, j1 = self._index_range(1, max(req_lo[1], map_lo[1]), min(req_hi[1], map_hi[1]))
        size = (i1 - i0, j1 - j0)

        if size[0] > 0 and size[1] > 0:
            top = self._top_corner()
            sub_position = (top[0] - 0.5 * (i0 + i1) * self.resolution,
                            top[1] - 0.5 * (j0 + j1) * self.resolution)
        else:
            sub_position = center
        sub = GridMap(frame_id=self.frame_id, resolution=self.resolution, size=size, position=sub_position)
        for name, data in self._layers.items():
            sub._layers[name] = data[i0:i1, j0:j1].copy()
        sub.basic_layers = list(self.basic_layers)

        return sub, inside and size[0] > 0 and size[1] > 0

    def to_points(self, layer: str = "elevation", valid_layer: Optional[str] = "is_valid") -> np.ndarray:
        """(N,3) cell-centre points of ``layer``; NaN cells and cells flagged invalid are skipped."""
        if layer not in self._layers:
            return np.empty((0, 3), dtype=np.float32)
        heights = self._layers[layer]
        mask = np.isfinite(heights)
        if valid_layer is not None and valid_layer in self._layers:
            mask &= self._layers[valid_layer] > 0.5
        xs, ys = self.cell_centers()
        ii, jj = np.nonzero(mask)
        return np.column_stack([xs[ii], ys[jj], heights[ii, jj]]).astype(np.float32)
