#!/usr/bin/env python3
# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
#
# This source code is licensed under the BSD-style license found in the
# LICENSE file in the root directory of this source tree.

"""Camera keyframe interpolation for the animated camera path.

The animation is defined by exactly two keyframes. Each frame of the path is produced by
slerping the keyframe rotations along the shortest arc, lerping the translations and the
focus distances, and keeping the scale of the first keyframe. Times outside [0, 1] are
extrapolated rather than clamped, so a frame step larger than one walks the camera past
the second keyframe.

Example:
    Interpolating halfway between two keyframes:

        >>> interpolator = KeyframeInterpolator(total_frames=10)
        >>> interpolator.set_keyframe(1, end_transform, focus_distance=15.0)
        >>> transform, focus = interpolator.slerp_camera(0.5)
"""

import json
import math

import numpy as np
from scipy.spatial.transform import Rotation as R

from camfarm.util.logger import Logger
from camfarm.util.matrix_operations import (
    compose_transform,
    decompose_transform,
    lerp,
)

NUM_KEYFRAMES = 2
GIMBAL_LOCK_TOL = 0.001

log = Logger(__name__)
log.logger.propagate = False


class Keyframe:

    """Camera pose and focus distance at one end of the animation.

    Attributes:
        transform (numpy 4x4 array): Affine pose (rotation, translation, uniform scale).
        focus_distance (float): Lens focus distance.
    """

    __slots__ = ["transform", "focus_distance"]

    def __init__(self, transform=None, focus_distance=0.0):
        if transform is None:
            transform = np.eye(4)
        transform = np.array(transform, dtype=float)
        if not log.check_shape(transform, (4, 4), "keyframe transform must be 4x4"):
            raise ValueError(f"Expected a 4x4 transform, got {transform.shape}")
        self.transform = transform
        self.focus_distance = float(focus_distance)

    def copy(self):
        return Keyframe(self.transform.copy(), self.focus_distance)

    def serialize(self):
        return {
            "transform": self.transform.tolist(),
            "focus_distance": self.focus_distance,
        }


def slerp(r0, r1, t):
    """Spherical linear interpolation between two rotations along the shortest arc.

    Unlike scipy's Slerp, t is not restricted to [0, 1]: values outside the range keep
    rotating at the same angular velocity.

    Args:
        r0 (scipy Rotation): Rotation at t = 0.
        r1 (scipy Rotation): Rotation at t = 1.
        t (float): Interpolation parameter.

    Returns:
        scipy Rotation: Interpolated rotation.
    """
    # as_rotvec picks the angle in [0, pi], i.e. the shortest arc
    delta = (r0.inv() * r1).as_rotvec()
    return r0 * R.from_rotvec(t * delta)


def rotation_to_euler(m):
    """Converts a rotation to Euler angles for display.

    The matrix is read in the engine's row-vector layout (basis axes along the rows), so
    numpy column-vector rotations should be transposed first.

    Args:
        m (numpy 3x3 array): Rotation matrix.

    Returns:
        numpy 1x3 array: Rotation about x, y and z in degrees.
    """
    m = np.asarray(m, dtype=float)
    if m[0][2] < -1 + GIMBAL_LOCK_TOL:
        x = math.atan2(m[1][0], m[2][0])
        y = math.pi / 2
        z = 0.0
    elif m[0][2] > 1 - GIMBAL_LOCK_TOL:
        x = math.atan2(-m[1][0], -m[2][0])
        y = -math.pi / 2
        z = 0.0
    else:
        y = -math.asin(m[0][2])
        inv = 1 / math.sqrt(1 - m[0][2] * m[0][2])
        z = math.atan2(m[0][1] * inv, m[0][0] * inv)
        x = math.atan2(m[1][2] * inv, m[2][2] * inv)
    return np.degrees([x, y, z])


class KeyframeInterpolator:

    """Interpolates the camera between the two animation keyframes.

    Attributes:
        keyframes (list[Keyframe]): Start (index 0) and end (index 1) keyframes.
        total_frames (int): Number of frames the animation is divided into.
    """

    def __init__(self, total_frames=10, json_file=None):
        self.total_frames = total_frames
        self.keyframes = [Keyframe() for _ in range(NUM_KEYFRAMES)]
        if json_file:
            self.load_from_json_file(json_file)

    def load_from_json_file(self, json_file):
        with open(json_file) as f:
            json_string = f.read()
        self.load_from_json_string(json_string)

    def load_from_json_string(self, json_string):
        json_obj = json.loads(json_string)
        keyframes = json_obj["keyframes"]
        if len(keyframes) != NUM_KEYFRAMES:
            raise ValueError(
                f"Expected {NUM_KEYFRAMES} keyframes, got {len(keyframes)}"
            )
        for step, keyframe in enumerate(keyframes):
            self.set_keyframe(
                step, keyframe["transform"], keyframe.get("focus_distance", 0.0)
            )

    def serialize(self):
        return {"keyframes": [keyframe.serialize() for keyframe in self.keyframes]}

    def save_to_file(self, filename):
        with open(filename, "w") as f:
            json.dump(self.serialize(), f, indent=2)

    def set_keyframe(self, step, transform, focus_distance=None):
        """Overwrites one keyframe in place.

        Args:
            step (int): Keyframe index, 0 or 1.
            transform (numpy 4x4 array): New camera pose.
            focus_distance (float, optional): New focus distance. Keeps the previous
                value if None.
        """
        if focus_distance is None:
            focus_distance = self.keyframes[step].focus_distance
        self.keyframes[step] = Keyframe(transform, focus_distance)

    def set_focus_distance(self, step, focus_distance):
        self.keyframes[step].focus_distance = float(focus_distance)

    def frame_time(self, frame, frame_step=1):
        return frame * frame_step / self.total_frames

    def slerp_camera(self, t):
        """Computes the camera pose and focus distance at normalized time t.

        Args:
            t (float): Normalized animation time. 0 is the first keyframe, 1 the second.

        Returns:
            tuple(numpy 4x4 array, float): Interpolated transform and focus distance.

        Raises:
            DegenerateRotationError: If a keyframe has a zero-length rotation column.
        """
        start, end = self.keyframes
        rot0, pos0, scale0 = decompose_transform(start.transform)
        rot1, pos1, _ = decompose_transform(end.transform)

        rotation = slerp(R.from_matrix(rot0), R.from_matrix(rot1), t)
        position = lerp(pos0, pos1, t)
        focus_distance = lerp(start.focus_distance, end.focus_distance, t)

        # The end keyframe's scale is ignored, the output always carries the start scale
        transform = compose_transform(rotation.as_matrix(), position, scale0)
        log.check_finite(transform, f"interpolated transform at t={t}")
        return transform, focus_distance

    def frame_camera(self, frame, frame_step=1):
        return self.slerp_camera(self.frame_time(frame, frame_step))

