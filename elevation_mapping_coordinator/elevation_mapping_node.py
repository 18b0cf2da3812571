#!/usr/bin/env python3
"""
ROS 2 elevation mapping node.

Wires the transport-agnostic coordinator to ROS:
- Subscribes to a pose topic (PoseWithCovarianceStamped) and N point-cloud topics
- Looks up sensor -> map transforms through tf2 (bounded wait)
- Publishes the full map, a throttled elevation-only map, an optional
  elevation point cloud and an "alive" heartbeat
- Serves get_raw_submap, clear_map and set_publish_points
"""

from typing import Tuple

import rclpy
from rclpy.callback_groups import MutuallyExclusiveCallbackGroup, ReentrantCallbackGroup
from rclpy.duration import Duration
from rclpy.executors import ExternalShutdownException, MultiThreadedExecutor
from rclpy.node import Node
from rclpy.time import Time

import tf2_ros
from tf2_ros import TransformException

from geometry_msgs.msg import PoseWithCovarianceStamped
from grid_map_msgs.msg import GridMap as GridMapMsg
from grid_map_msgs.srv import GetGridMap
from sensor_msgs.msg import PointCloud2
from std_msgs.msg import Empty
from std_srvs.srv import Empty as EmptySrv
from std_srvs.srv import SetBool

from elevation_mapping_coordinator.coordinator import (
    ELEVATION_LAYER,
    ElevationMappingCoordinator,
    MapOutputs,
    recordable_period,
)
from elevation_mapping_coordinator.grid_map import GridMap
from elevation_mapping_coordinator.map_engine import DEFAULT_ENGINE_CONFIG, load_engine
from elevation_mapping_coordinator.map_proxy import MapProxy
from elevation_mapping_coordinator.pose_filter import PoseFilter
from elevation_mapping_coordinator.ros_conversions import (
    grid_map_to_msg,
    grid_map_to_point_cloud,
    point_cloud_to_scan,
)
from elevation_mapping_coordinator.transform_resolver import TransformLookupError, TransformResolver


# -----------------------------
# tf2 provider
# -----------------------------

class Tf2TransformProvider:
    """Adapts a tf2 buffer to the resolver's provider interface."""

    def __init__(self, node: Node):
        self.buffer = tf2_ros.Buffer()
        # Own spin thread: lookups block inside executor callbacks.
        self.listener = tf2_ros.TransformListener(self.buffer, node, spin_thread=True)

    def lookup(self, target_frame: str, source_frame: str, stamp, timeout_sec: float) -> Tuple[tuple, tuple]:
        try:
            tf = self.buffer.lookup_transform(
                target_frame,
                source_frame,
                Time.from_msg(stamp),
                timeout=Duration(seconds=timeout_sec),
            )
        except TransformException as ex:
            raise TransformLookupError(str(ex)) from ex
        q = tf.transform.rotation
        t = tf.transform.translation
        return (q.x, q.y, q.z, q.w), (t.x, t.y, t.z)


# -----------------------------
# Outbound channels
# -----------------------------

class RosMapOutputs(MapOutputs):
    """Serialises outside the map lock and stamps with wall clock at publish time."""

    def __init__(self, node: Node):
        self._node = node
        self.map_pub = node.create_publisher(GridMapMsg, 'elevation_map_raw', 1)
        self.recordable_pub = node.create_publisher(GridMapMsg, 'elevation_map_recordable', 1)
        self.point_pub = node.create_publisher(PointCloud2, 'elevation_map_points', 1)
        self.alive_pub = node.create_publisher(Empty, 'alive', 1)

    def _now(self):
        return self._node.get_clock().now().to_msg()

    def publish_map(self, grid_map: GridMap) -> None:
        self.map_pub.publish(grid_map_to_msg(grid_map, self._now()))

    def publish_recordable(self, grid_map: GridMap) -> None:
        self.recordable_pub.publish(grid_map_to_msg(grid_map, self._now(), layers=[ELEVATION_LAYER]))

    def publish_points(self, grid_map: GridMap) -> None:
        self.point_pub.publish(grid_map_to_point_cloud(grid_map, self._now(), ELEVATION_LAYER))

    def publish_alive(self) -> None:
        self.alive_pub.publish(Empty())


# -----------------------------
# ROS2 Node
# -----------------------------

class ElevationMappingNode(Node):
    def __init__(self):
        super().__init__('elevation_mapping')

        # Topics / frames
        self.declare_parameter('pointcloud_topics', ['points'])
        self.declare_parameter('pose_topic', 'pose')
        self.declare_parameter('map_frame', 'map')

        # Pose low-pass (uncertainty estimate)
        self.declare_parameter('position_lowpass_alpha', 0.2)
        self.declare_parameter('orientation_lowpass_alpha', 0.2)

        # Publishing
        self.declare_parameter('recordable_fps', 3.0)
        self.declare_parameter('enable_pointcloud_publishing', False)
        self.declare_parameter('tf_timeout_sec', 1.0)

        # Map engine
        self.declare_parameter(
            'map_engine', 'elevation_mapping_coordinator.map_engine:SimpleElevationEngine')
        for key, default in DEFAULT_ENGINE_CONFIG.items():
            self.declare_parameter(key, float(default))

        pointcloud_topics = list(self.get_parameter('pointcloud_topics').value)
        pose_topic = self.get_parameter('pose_topic').value
        self.map_frame = self.get_parameter('map_frame').value
        position_alpha = float(self.get_parameter('position_lowpass_alpha').value)
        orientation_alpha = float(self.get_parameter('orientation_lowpass_alpha').value)
        recordable_fps = float(self.get_parameter('recordable_fps').value)
        enable_points = bool(self.get_parameter('enable_pointcloud_publishing').value)
        tf_timeout = float(self.get_parameter('tf_timeout_sec').value)
        engine_spec = self.get_parameter('map_engine').value
        engine_config = {key: float(self.get_parameter(key).value) for key in DEFAULT_ENGINE_CONFIG}

        # Build map proxy + coordinator
        self.map_proxy = MapProxy(load_engine(engine_spec), frame_id=self.map_frame)
        self.map_proxy.initialize(engine_config)
        self.coordinator = ElevationMappingCoordinator(
            map_proxy=self.map_proxy,
            pose_filter=PoseFilter(position_alpha, orientation_alpha),
            transform_resolver=TransformResolver(Tf2TransformProvider(self), timeout_sec=tf_timeout),
            outputs=RosMapOutputs(self),
            map_frame=self.map_frame,
            enable_pointcloud_publishing=enable_points,
            logger=self.get_logger(),
        )

        # Point clouds may be processed in parallel; services and timer are serialised among themselves.
        scan_group = ReentrantCallbackGroup()
        misc_group = MutuallyExclusiveCallbackGroup()

        # Subscribers
        self.pose_sub = self.create_subscription(
            PoseWithCovarianceStamped, pose_topic, self._on_pose, 1, callback_group=misc_group)
        self.pointcloud_subs = [
            self.create_subscription(PointCloud2, topic, self._on_pointcloud, 1, callback_group=scan_group)
            for topic in pointcloud_topics
        ]

        # Services
        self.submap_srv = self.create_service(
            GetGridMap, 'get_raw_submap', self._get_submap, callback_group=misc_group)
        self.clear_srv = self.create_service(
            EmptySrv, 'clear_map', self._clear_map, callback_group=misc_group)
        self.publish_point_srv = self.create_service(
            SetBool, 'set_publish_points', self._set_publish_point, callback_group=misc_group)

        # Throttled (recordable) channel
        self.recordable_timer = None
        period = recordable_period(recordable_fps)
        if period is not None:
            self.recordable_timer = self.create_timer(
                period, self.coordinator.on_recordable_timer, callback_group=misc_group)

        self.get_logger().info(
            f"Subscribed to pose={pose_topic}, pointclouds={pointcloud_topics}; map_frame={self.map_frame}, "
            f"engine={engine_spec}, recordable_fps={recordable_fps}"
        )
        self.get_logger().info("[ElevationMapping] finish initialization")

    def _on_pose(self, msg: PoseWithCovarianceStamped):
        p = msg.pose.pose.position
        q = msg.pose.pose.orientation
        self.coordinator.on_pose((p.x, p.y, p.z), (q.x, q.y, q.z, q.w))

    def _on_pointcloud(self, msg: PointCloud2):
        # Malformed clouds count as empty scans; the engine still sees the call.
        points = point_cloud_to_scan(msg, self.get_logger())
        self.coordinator.on_point_cloud(points, msg.header.frame_id, msg.header.stamp)

    def _get_submap(self, request, response):
        submap, is_success = self.coordinator.get_submap(
            request.position_x,
            request.position_y,
            request.length_x,
            request.length_y,
            list(request.layers),
        )
        # GetGridMap has no success field: callers only get the (possibly partial) map,
        # the flag surfaces as this warning.
        if not is_success:
            self.get_logger().warning(
                f"Submap at ({request.position_x:.2f}, {request.position_y:.2f}) "
                f"exceeds the map; returning the overlapping part"
            )
        response.map = grid_map_to_msg(submap, self.get_clock().now().to_msg())
        return response

    def _clear_map(self, request, response):
        self.coordinator.clear_map()
        return response

    def _set_publish_point(self, request, response):
        response.success, enabled = self.coordinator.set_publish_point(request.data)
        response.message = f"enable_pointcloud_publishing={enabled}"
        return response


def main():
    rclpy.init()
    node = ElevationMappingNode()
    executor = MultiThreadedExecutor()
    executor.add_node(node)
    try:
        executor.spin()
    except (KeyboardInterrupt, ExternalShutdownException):
        pass
    # Stop taking new callbacks and let in-flight scans finish
    node.coordinator.shutdown()
    node.coordinator.drain(timeout_sec=2.0)
    executor.shutdown()
    node.destroy_node()
    if rclpy.ok():
        rclpy.shutdown()

if __name__ == '__main__':
    main()
