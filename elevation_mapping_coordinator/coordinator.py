"""
Elevation mapping coordinator (transport-agnostic).

Pose callback
- move the map to the robot position
- update the low-pass pose filter (uncertainty estimate)

Point-cloud callback
- resolve sensor -> map transform (bounded wait), drop the scan on failure
- fuse the scan through the map proxy with the current uncertainty
- publish the full map + heartbeat, optionally the elevation point cloud

Throttled channel
- timer publishes only the elevation layer at a reduced rate

Services
- submap extraction, map clear, point-publishing toggle

The ROS node (elevation_mapping_node.py) owns transport and message conversion;
everything here is plain Python so it can be driven from tests.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from elevation_mapping_coordinator.grid_map import GridMap
from elevation_mapping_coordinator.map_proxy import MapProxy
from elevation_mapping_coordinator.pose_filter import PoseFilter
from elevation_mapping_coordinator.transform_resolver import TransformResolver


ELEVATION_LAYER = "elevation"

# Layers the engine does not compute; served zero-filled in submap responses.
SUBMAP_ZERO_LAYERS = (
    "horizontal_variance_x",
    "horizontal_variance_y",
    "horizontal_variance_xy",
    "time",
    "color",
    "lowest_scan_point",
    "sensor_x_at_lowest_scan",
    "sensor_y_at_lowest_scan",
    "sensor_z_at_lowest_scan",
)


def recordable_period(fps: float) -> Optional[float]:
    """Timer period for the throttled channel, None when disabled (fps <= 0)."""
    fps = float(fps)
    if fps <= 0.0:
        return None
    return 1.0 / (fps + 0.00001)


class MapOutputs:
    """Outbound channels. Default plug-in: drops everything."""
    def publish_map(self, grid_map: GridMap) -> None:
        pass

    def publish_recordable(self, grid_map: GridMap) -> None:
        pass

    def publish_points(self, grid_map: GridMap) -> None:
        pass

    def publish_alive(self) -> None:
        pass


class ElevationMappingCoordinator:
    def __init__(
        self,
        map_proxy: MapProxy,
        pose_filter: PoseFilter,
        transform_resolver: TransformResolver,
        outputs: Optional[MapOutputs] = None,
        map_frame: str = "map",
        enable_pointcloud_publishing: bool = False,
        logger: Any = None,
    ):
        self.map_proxy = map_proxy
        self.pose_filter = pose_filter
        self.transform_resolver = transform_resolver
        self.outputs = outputs if outputs is not None else MapOutputs()
        self.map_frame = map_frame
        self.enable_pointcloud_publishing = bool(enable_pointcloud_publishing)
        self.logger = logger if logger is not None else logging.getLogger(__name__)

        # Throughput and uncertainty logs share one 1 s throttle
        self._last_throughput_log = 0.0
        self._accepting = True
        self._inflight = 0
        self._inflight_cv = threading.Condition()

    # -----------------------------
    # Shutdown / drain
    # -----------------------------

    @contextmanager
    def _callback(self):
        with self._inflight_cv:
            accepted = self._accepting
            if accepted:
                self._inflight += 1
        if not accepted:
            yield False
            return
        try:
            yield True
        finally:
            with self._inflight_cv:
                self._inflight -= 1
                self._inflight_cv.notify_all()

    def shutdown(self) -> None:
        """Stop accepting callbacks; in-flight ones keep running."""
        with self._inflight_cv:
            self._accepting = False

    def drain(self, timeout_sec: Optional[float] = None) -> bool:
        """Wait for in-flight callbacks. Returns False on timeout."""
        with self._inflight_cv:
            return self._inflight_cv.wait_for(lambda: self._inflight == 0, timeout=timeout_sec)

    # -----------------------------
    # Callbacks
    # -----------------------------

    def on_pose(self, position: Sequence[float], orientation: Sequence[float]) -> None:
        """
        :param position: (x, y, z) in the map frame
        :param orientation: quaternion (x, y, z, w)
        """
        with self._callback() as accepted:
            if not accepted:
                return
            self.map_proxy.move_to((float(position[0]), float(position[1])))
            self.pose_filter.update(position, orientation)

    def on_point_cloud(self, points: np.ndarray, frame_id: str, stamp: Any) -> bool:
        """
        Process one scan.

        :param points: (N,3) points in ``frame_id``
        :param stamp: scan time, handed to the transform provider as is
        :return: True if the map was updated and published
        """
        with self._callback() as accepted:
            if not accepted:
                return False
            return self._process_point_cloud(points, frame_id, stamp)

    def _process_point_cloud(self, points: np.ndarray, frame_id: str, stamp: Any) -> bool:
        start = time.monotonic()
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)

        tf = self.transform_resolver.resolve(self.map_frame, frame_id, stamp)
        if not tf.ok:
            self.logger.error(tf.error)
            return False

        position_error, orientation_error = self.pose_filter.errors
        try:
            grid_map = self.map_proxy.input(
                points, tf.rotation, tf.translation, position_error, orientation_error)
        except Exception as ex:
            self.logger.error(f"Map update failed, dropping scan from '{frame_id}': {ex!r}")
            return False

        self.outputs.publish_map(grid_map)
        self.outputs.publish_alive()
        if self.enable_pointcloud_publishing:
            self.outputs.publish_points(grid_map)

        now = time.monotonic()
        if now - self._last_throughput_log >= 1.0:
            self._last_throughput_log = now
            self.logger.info(
                f"ElevationMap processed a point cloud ({points.shape[0]} points) in {now - start:.4f} sec."
            )
            self.logger.debug(f"positionError: {position_error:f} orientationError: {orientation_error:f}")
        return True

    def on_recordable_timer(self) -> None:
        with self._callback() as accepted:
            if not accepted:
                return
            with self.map_proxy.read() as cached:
                if not cached.exists(ELEVATION_LAYER):
                    return
                grid_map = cached.select([ELEVATION_LAYER])
            self.outputs.publish_recordable(grid_map)

    # -----------------------------
    # Services
    # -----------------------------

    def get_submap(
        self,
        position_x: float,
        position_y: float,
        length_x: float,
        length_y: float,
        layers: Optional[List[str]] = None,
    ) -> Tuple[GridMap, bool]:
        """
        Best-effort submap of the cached map; never raises.

        :return: (submap, success); success is False when the request leaves the map
            or the coordinator is shutting down (empty map then)
        """
        with self._callback() as accepted:
            if not accepted:
                return GridMap(frame_id=self.map_frame, position=(position_x, position_y)), False
            self.logger.debug(
                f"Elevation submap request: Position x={position_x:f}, y={position_y:f}, "
                f"Length x={length_x:f}, y={length_y:f}."
            )
            with self.map_proxy.read() as cached:
                submap, is_success = cached.get_submap((position_x, position_y), (length_x, length_y))

            for name in SUBMAP_ZERO_LAYERS:
                submap.add(name, 0.0)
            if layers:
                submap = submap.select(layers)
            return submap, is_success

    def clear_map(self) -> bool:
        with self._callback() as accepted:
            if not accepted:
                return False
            self.logger.info("Clearing map.")
            self.map_proxy.clear()
            return True

    def set_publish_point(self, enable: bool) -> Tuple[bool, bool]:
        """:return: (success, flag now in effect); unchanged and False after shutdown"""
        with self._callback() as accepted:
            if not accepted:
                return False, self.enable_pointcloud_publishing
            self.enable_pointcloud_publishing = bool(enable)
            return True, self.enable_pointcloud_publishing
