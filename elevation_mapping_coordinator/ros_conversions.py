"""Conversions between ROS 2 messages and the coordinator's numpy / GridMap types."""

from typing import Optional, Sequence

import numpy as np

from builtin_interfaces.msg import Time
from grid_map_msgs.msg import GridMap as GridMapMsg
from sensor_msgs.msg import PointCloud2
from sensor_msgs_py import point_cloud2
from std_msgs.msg import Float32MultiArray, Header, MultiArrayDimension

from elevation_mapping_coordinator.grid_map import GridMap


def layer_to_multiarray(data: np.ndarray) -> Float32MultiArray:
    """Column-major encoding used by grid_map_ros (dim 0 = columns, dim 1 = rows)."""
    rows, cols = data.shape
    msg = Float32MultiArray()
    msg.layout.dim = [
        MultiArrayDimension(label="column_index", size=int(cols), stride=int(rows * cols)),
        MultiArrayDimension(label="row_index", size=int(rows), stride=int(rows)),
    ]
    msg.layout.data_offset = 0
    msg.data = np.asarray(data, dtype=np.float32).ravel(order="F").tolist()
    return msg


def grid_map_to_msg(grid_map: GridMap, stamp: Time, layers: Optional[Sequence[str]] = None) -> GridMapMsg:
    names = grid_map.layers if layers is None else [n for n in layers if grid_map.exists(n)]

    msg = GridMapMsg()
    msg.header.frame_id = grid_map.frame_id
    msg.header.stamp = stamp
    msg.info.resolution = float(grid_map.resolution)
    msg.info.length_x = float(grid_map.length[0])
    msg.info.length_y = float(grid_map.length[1])
    msg.info.pose.position.x = float(grid_map.position[0])
    msg.info.pose.position.y = float(grid_map.position[1])
    msg.info.pose.position.z = 0.0
    msg.info.pose.orientation.w = 1.0
    msg.layers = list(names)
    msg.basic_layers = [b for b in grid_map.basic_layers if b in names]
    msg.data = [layer_to_multiarray(grid_map[n]) for n in names]
    msg.outer_start_index = 0
    msg.inner_start_index = 0
    return msg


def point_cloud_to_xyz(cloud: PointCloud2) -> np.ndarray:
    """
    Read x, y, z of a PointCloud2 as an (N,3) float64 array (NaN points skipped).

    Raises ValueError for clouds without readable x/y/z fields.
    """
    if cloud.width * cloud.height == 0:
        return np.empty((0, 3), dtype=np.float64)
    try:
        pts = point_cloud2.read_points_numpy(cloud, field_names=("x", "y", "z"), skip_nans=True)
    except (AssertionError, KeyError, TypeError) as ex:
        raise ValueError(f"Unreadable point cloud: {ex!r}") from ex
    return np.asarray(pts, dtype=np.float64).reshape(-1, 3)


def grid_map_to_point_cloud(grid_map: GridMap, stamp: Time, layer: str = "elevation") -> PointCloud2:
    header = Header()
    header.frame_id = grid_map.frame_id
    header.stamp = stamp
    return point_cloud2.create_cloud_xyz32(header, grid_map.to_points(layer))


def point_cloud_to_scan(cloud: PointCloud2, logger=None) -> np.ndarray:
    """Like point_cloud_to_xyz, but a malformed cloud becomes a zero-point scan."""
    try:
        return point_cloud_to_xyz(cloud)
    except ValueError as ex:
        if logger is not None:
            logger.warning(f"{ex}; treating as empty scan")
        return np.empty((0, 3), dtype=np.float64)
