"""Small rigid-transform helpers shared by the transform resolver and the engine."""

from typing import Sequence

import numpy as np
import gtsam


def pose_from_quaternion(quat_xyzw: Sequence[float], translation: Sequence[float]) -> gtsam.Pose3:
    """Build a Pose3 from a ROS-ordered (x, y, z, w) quaternion and a translation."""
    qx, qy, qz, qw = (float(v) for v in quat_xyzw)
    rot = gtsam.Rot3.Quaternion(qw, qx, qy, qz)
    t = np.array([float(translation[0]), float(translation[1]), float(translation[2])], dtype=float)
    return gtsam.Pose3(rot, t)

def rotation_matrix(pose: gtsam.Pose3) -> np.ndarray:
    return np.asarray(pose.rotation().matrix(), dtype=np.float64)

def translation_vector(pose: gtsam.Pose3) -> np.ndarray:
    return np.asarray(pose.translation(), dtype=np.float64).reshape(3)

def transform_points(points: np.ndarray, rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
    """Apply p' = R p + t to an (N,3) array."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    return (pts @ np.asarray(rotation, dtype=np.float64).T) + np.asarray(translation, dtype=np.float64)
