import time

import numpy as np
import pytest

from elevation_mapping_coordinator.coordinator import ElevationMappingCoordinator, MapOutputs
from elevation_mapping_coordinator.grid_map import GridMap
from elevation_mapping_coordinator.map_engine import MapEngine
from elevation_mapping_coordinator.map_proxy import MapProxy
from elevation_mapping_coordinator.pose_filter import PoseFilter
from elevation_mapping_coordinator.transform_resolver import TransformLookupError, TransformResolver


# =============================================================================
# Fakes
# =============================================================================

class GenerationEngine(MapEngine):
    """
    Engine whose ``elevation`` layer holds the number of completed inputs.

    ``input`` rewrites the grid row by row and yields the GIL between rows, so an
    unguarded reader would observe a half-written map.
    """

    def __init__(self, size=(20, 20), resolution=0.5):
        self.size = size
        self.resolution = resolution
        self.generation = 0
        self.inputs = []
        self.moves = []
        self.config = None
        self.fail_next_input = False
        self._data = np.zeros(size, dtype=np.float32)

    def initialize(self, config):
        self.config = dict(config)

    def input(self, points, rotation, translation, position_noise, orientation_noise):
        self.inputs.append({
            "n_points": int(np.asarray(points).reshape(-1, 3).shape[0]),
            "rotation": np.array(rotation),
            "translation": np.array(translation),
            "position_noise": position_noise,
            "orientation_noise": orientation_noise,
        })
        if self.fail_next_input:
            self.fail_next_input = False
            self._data[0, :] = -1.0
            raise RuntimeError("engine exploded")
        self.generation += 1
        for row in range(self.size[0]):
            self._data[row, :] = self.generation
            time.sleep(0)

    def move_to(self, position):
        self.moves.append((float(position[0]), float(position[1])))
        time.sleep(0)

    def get_grid_map(self):
        return GridMap(
            frame_id="engine_frame",
            resolution=self.resolution,
            size=self.size,
            layers={"elevation": self._data, "variance": np.ones(self.size)},
            basic_layers=["elevation"],
        )

    def clear(self):
        self._data[:] = np.nan


class FakeTransformProvider:
    def __init__(self, quat=(0.0, 0.0, 0.0, 1.0), trans=(0.0, 0.0, 0.0)):
        self.quat = quat
        self.trans = trans
        self.fail = False
        self.calls = []

    def lookup(self, target_frame, source_frame, stamp, timeout_sec):
        self.calls.append((target_frame, source_frame, stamp, timeout_sec))
        if self.fail:
            raise TransformLookupError(
                f'"{source_frame}" passed to lookupTransform argument source_frame does not exist.')
        return self.quat, self.trans


class RecordingOutputs(MapOutputs):
    def __init__(self):
        self.maps = []
        self.recordable = []
        self.points = []
        self.alive = 0

    def publish_map(self, grid_map):
        self.maps.append(grid_map)

    def publish_recordable(self, grid_map):
        self.recordable.append(grid_map)

    def publish_points(self, grid_map):
        self.points.append(grid_map)

    def publish_alive(self):
        self.alive += 1


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def engine():
    return GenerationEngine()


@pytest.fixture
def map_proxy(engine):
    proxy = MapProxy(engine, frame_id="map")
    proxy.initialize({"resolution": 0.5})
    return proxy


@pytest.fixture
def provider():
    return FakeTransformProvider(trans=(1.0, 2.0, 0.5))


@pytest.fixture
def outputs():
    return RecordingOutputs()


@pytest.fixture
def coordinator(map_proxy, provider, outputs):
    return ElevationMappingCoordinator(
        map_proxy=map_proxy,
        pose_filter=PoseFilter(0.2, 0.2),
        transform_resolver=TransformResolver(provider, timeout_sec=1.0),
        outputs=outputs,
        map_frame="map",
    )


@pytest.fixture
def scan():
    """Small test point cloud in the sensor frame."""
    rng = np.random.default_rng(42)
    return rng.normal(size=(100, 3))
