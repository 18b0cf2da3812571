"""
Low-pass pose filter used as a cheap localization-uncertainty estimate.

The filter keeps an exponential moving average of the incoming position and
orientation. The residual between the newest raw sample and the *updated*
average is reported as (position_error, orientation_error):

    smoothed = alpha * raw + (1 - alpha) * smoothed
    error    = || raw - smoothed ||

The orientation is handled as a plain 4-vector (x, y, z, w); it is never
renormalized, so the smoothed quaternion is not a unit quaternion in general.
"""

import threading
from typing import Sequence, Tuple

import numpy as np


class PoseFilter:
    def __init__(self, position_alpha: float = 0.2, orientation_alpha: float = 0.2):
        self.position_alpha = float(position_alpha)
        self.orientation_alpha = float(orientation_alpha)

        self._lowpass_position = np.zeros(3, dtype=np.float64)
        self._lowpass_orientation = np.array([0.0, 0.0, 0.0, 1.0], dtype=np.float64)
        # (position_error, orientation_error) replaced as a whole so readers never see a torn pair
        self._errors: Tuple[float, float] = (0.0, 0.0)
        self._lock = threading.Lock()

    def update(self, position: Sequence[float], orientation: Sequence[float]) -> Tuple[float, float]:
        """
        Feed one raw pose sample.

        :param position: raw (x, y, z)
        :param orientation: raw quaternion components (x, y, z, w)
        :return: (position_error, orientation_error) after the update
        """
        p = np.asarray(position, dtype=np.float64).reshape(3)
        q = np.asarray(orientation, dtype=np.float64).reshape(4)
        with self._lock:
            a_p = self.position_alpha
            a_q = self.orientation_alpha
            self._lowpass_position = a_p * p + (1.0 - a_p) * self._lowpass_position
            self._lowpass_orientation = a_q * q + (1.0 - a_q) * self._lowpass_orientation
            errors = (
                float(np.linalg.norm(p - self._lowpass_position)),
                float(np.linalg.norm(q - self._lowpass_orientation)),
            )
            self._errors = errors
        return errors

    @property
    def errors(self) -> Tuple[float, float]:
        return self._errors

    @property
    def smoothed_position(self) -> np.ndarray:
        return self._lowpass_position.copy()

    @property
    def smoothed_orientation(self) -> np.ndarray:
        return self._lowpass_orientation.copy()
