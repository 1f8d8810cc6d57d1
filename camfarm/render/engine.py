#!/usr/bin/env python3
# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
#
# This source code is licensed under the BSD-style license found in the
# LICENSE file in the root directory of this source tree.

"""Seam between the farm and the render engine.

The render engine is opaque to the farm. The farm only needs to read and write the
camera path transform and the lens focus distance, and to hear about scene loads,
images, errors and progress. Engine bindings drive an EngineObserver; SceneCamera and
Engine here hold that state in process so the master runs without a live engine.

Transforms travel to workers in the engine's layout: 16 space-separated numbers in
row-vector order, i.e. the transpose of the numpy column-vector transforms used by
the interpolator, with the translation in the last row.
"""

import os

import numpy as np
from absl import logging


def serialize_transform(transform):
    """Formats a transform the way the engine prints a camera path xform.

    Args:
        transform (numpy 4x4 array): Column-vector affine transform.

    Returns:
        str: Space-separated row-vector entries.
    """
    values = np.asarray(transform, dtype=float).T.flatten()
    return " ".join(repr(float(v)) for v in values)


def deserialize_transform(transform_string):
    """Parses the output of serialize_transform back into a column-vector transform.

    Args:
        transform_string (str): Space-separated row-vector entries.

    Returns:
        numpy 4x4 array: Column-vector affine transform.
    """
    values = [float(v) for v in transform_string.split()]
    if len(values) != 16:
        raise ValueError(f"Expected 16 transform values, got {len(values)}")
    return np.array(values).reshape(4, 4).T


class EngineObserver:

    """Callbacks the engine raises while loading and rendering a scene.

    Subclasses override whichever events they care about; the defaults ignore them.
    """

    def on_scene_loaded(self, scene):
        pass

    def on_image(self, pass_name, image):
        pass

    def on_error(self, pass_name, message):
        pass

    def on_progress(self, pass_name, progress):
        pass


class SceneCamera:

    """Camera path transform and lens focus distance of the loaded scene.

    Attributes:
        transform (numpy 4x4 array): Current camera path transform.
        focus_distance (float): Current lens focus distance.
    """

    def __init__(self, transform=None, focus_distance=1.0):
        self.transform = np.eye(4) if transform is None else np.array(transform, float)
        self.focus_distance = float(focus_distance)

    def set_transform(self, transform):
        self.transform = np.array(transform, dtype=float)

    def set_focus_distance(self, focus_distance):
        self.focus_distance = float(focus_distance)

    def transform_string(self):
        return serialize_transform(self.transform)


class Engine:

    """In-process stand-in for the render engine's scene graph and observer fan-out.

    Attributes:
        camera (SceneCamera): Camera of the loaded scene.
        scene_path (str): Absolute path of the loaded scene, None before loading.
    """

    def __init__(self, camera=None):
        self.camera = camera or SceneCamera()
        self.scene_path = None
        self._observers = []

    def subscribe(self, observer):
        self._observers.append(observer)

    def load_scene(self, path):
        self.scene_path = os.path.abspath(path)
        logging.info(f"Loaded scene {self.scene_path}")
        for observer in self._observers:
            observer.on_scene_loaded(self)

    def publish_image(self, pass_name, image):
        for observer in self._observers:
            observer.on_image(pass_name, image)

    def publish_error(self, pass_name, message):
        for observer in self._observers:
            observer.on_error(pass_name, message)

    def publish_progress(self, pass_name, progress):
        for observer in self._observers:
            observer.on_progress(pass_name, progress)
