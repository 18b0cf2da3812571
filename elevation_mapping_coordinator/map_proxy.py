"""
Guarded access to the map engine and its cached grid map.

Two locks:
- mutation lock: serialises every engine call (engines are not thread-safe),
- map lock (reentrant): guards the cached snapshot read by publishers and services.

Lock order is always mutation -> map. ``input`` and the snapshot that follows
it run as one critical section, so a snapshot never mixes two mutations.
"""

import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Sequence

import numpy as np

from elevation_mapping_coordinator.grid_map import GridMap
from elevation_mapping_coordinator.map_engine import MapEngine


class MapProxy:
    def __init__(self, engine: MapEngine, frame_id: str = "map"):
        self._engine = engine
        self.frame_id = frame_id
        self._mutation_lock = threading.Lock()
        self._map_lock = threading.RLock()
        self._grid_map = GridMap(frame_id=frame_id)
        self._generation = 0
        self._initialized = False

    def initialize(self, config: Dict[str, Any]) -> None:
        with self._mutation_lock:
            self._engine.initialize(config)
            self._initialized = True
            self._refresh_locked()

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("MapProxy used before initialize()")

    def _refresh_locked(self) -> GridMap:
        # caller holds the mutation lock
        grid_map = self._engine.get_grid_map()
        grid_map.frame_id = self.frame_id
        with self._map_lock:
            self._grid_map = grid_map
            return grid_map.copy()

    def input(
        self,
        points: np.ndarray,
        rotation: np.ndarray,
        translation: np.ndarray,
        position_noise: float,
        orientation_noise: float,
    ) -> GridMap:
        """Fuse one scan and refresh the cached map; returns a copy of the new snapshot."""
        self._require_initialized()
        with self._mutation_lock:
            self._engine.input(points, rotation, translation, position_noise, orientation_noise)
            self._generation += 1
            return self._refresh_locked()

    def move_to(self, position: Sequence[float]) -> None:
        self._require_initialized()
        with self._mutation_lock:
            self._engine.move_to(position)

    def snapshot(self) -> GridMap:
        """Copy the engine's current layers into the cache and return a copy of it."""
        self._require_initialized()
        with self._mutation_lock:
            return self._refresh_locked()

    def clear(self) -> GridMap:
        self._require_initialized()
        with self._mutation_lock:
            self._engine.clear()
            self._generation += 1
            return self._refresh_locked()

    @contextmanager
    def read(self) -> Iterator[GridMap]:
        """Hold the map lock and yield the cached map. Do not keep references past the block."""
        with self._map_lock:
            yield self._grid_map

    def cached(self, layers: Optional[Sequence[str]] = None) -> GridMap:
        """Copy of the cached map, optionally restricted to ``layers``."""
        with self.read() as grid_map:
            return grid_map.copy() if layers is None else grid_map.select(layers)

    @property
    def generation(self) -> int:
        return self._generation
