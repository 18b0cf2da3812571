"""Bounded-wait sensor -> map transform lookup.

The resolver is ROS-agnostic. It talks to a *provider* exposing

    lookup(target_frame, source_frame, stamp, timeout_sec) -> (quat_xyzw, translation_xyz)

which raises ``TransformLookupError`` when no transform is available in time.
The ROS node plugs in a tf2 buffer (see ``elevation_mapping_node.Tf2TransformProvider``).
"""

from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
import gtsam

from elevation_mapping_coordinator.geometry import pose_from_quaternion, rotation_matrix, translation_vector


class TransformLookupError(Exception):
    """Transform not available: timeout, unknown frame, disconnected tree or extrapolation."""


@dataclass
class TransformResult:
    target_frame: str
    source_frame: str
    pose: Optional[gtsam.Pose3] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.pose is not None

    @property
    def rotation(self) -> np.ndarray:
        return rotation_matrix(self.pose)

    @property
    def translation(self) -> np.ndarray:
        return translation_vector(self.pose)


class TransformResolver:
    def __init__(self, provider, timeout_sec: float = 1.0):
        self.provider = provider
        self.timeout_sec = float(timeout_sec)

    def resolve(
        self,
        target_frame: str,
        source_frame: str,
        stamp: Any,
        timeout_sec: Optional[float] = None,
    ) -> TransformResult:
        """
        Look up the transform that maps ``source_frame`` points into ``target_frame``.

        Never raises on lookup failure and never retries; the caller drops the scan.

        :param stamp: time of the data, passed through to the provider untouched
        :param timeout_sec: wait bound, defaults to the resolver's timeout
        """
        timeout = self.timeout_sec if timeout_sec is None else float(timeout_sec)
        try:
            quat, trans = self.provider.lookup(target_frame, source_frame, stamp, timeout)
        except TransformLookupError as ex:
            return TransformResult(target_frame, source_frame, error=str(ex) or type(ex).__name__)
        return TransformResult(target_frame, source_frame, pose=pose_from_quaternion(quat, trans))
