#!/usr/bin/env python3
# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
#
# This source code is licensed under the BSD-style license found in the
# LICENSE file in the root directory of this source tree.


""" Render master unit tests

Runs unit tests on the helpers render.py wires the farm together with, and on the
flag checks it validates inputs with

Example:
        $ python -m camfarm.test.test_render
"""

import json
import os
import signal
import tempfile
import unittest

import numpy as np
import zmq

import camfarm.render.glog_check as glog
from camfarm.render import config, render, setup
from camfarm.test.util.farm_tester import pose


class renderTest(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.scene_path = os.path.join(self.tmp_dir.name, "scene.bsa")
        with open(self.scene_path, "wb") as f:
            f.write(b"scene")

    def tearDown(self):
        self.tmp_dir.cleanup()

    def test_create_coordinator(self):
        coordinator = render.create_coordinator(self.scene_path, total_frames=6)
        self.assertEqual(coordinator.scene_path, os.path.abspath(self.scene_path))
        self.assertEqual(coordinator.frames_to_dispatch(), 7)
        for keyframe in coordinator.keyframes():
            np.testing.assert_array_equal(keyframe.transform, np.eye(4))

    def test_create_coordinator_with_keyframes(self):
        keyframes = os.path.join(self.tmp_dir.name, "keyframes.json")
        end = pose((0, 0.5, 0), (0, 0, -3))
        with open(keyframes, "w") as f:
            json.dump(
                {
                    "keyframes": [
                        {"transform": np.eye(4).tolist(), "focus_distance": 1.0},
                        {"transform": end.tolist(), "focus_distance": 2.0},
                    ]
                },
                f,
            )
        coordinator = render.create_coordinator(self.scene_path, keyframes)
        np.testing.assert_allclose(coordinator.keyframes()[1].transform, end)
        self.assertEqual(coordinator.keyframes()[1].focus_distance, 2.0)

    def test_toggle_farm_handler(self):
        coordinator = render.create_coordinator(self.scene_path)
        handler = render.toggle_farm_handler(coordinator)
        handler(signal.SIGINT, None)
        self.assertTrue(coordinator.farm_enabled)
        handler(signal.SIGINT, None)
        self.assertFalse(coordinator.farm_enabled)

    def test_shutdown(self):
        coordinator = render.create_coordinator(self.scene_path)
        context = zmq.Context()
        setup.shutdown_hooks.append(lambda: render.shutdown(coordinator, context))
        setup.run_shutdown_hooks()
        self.assertTrue(context.closed)
        self.assertFalse(coordinator.wait_until_enabled())
        self.assertEqual(setup.shutdown_hooks, [])


class glogCheckTest(unittest.TestCase):
    def test_extension(self):
        glog.check_extension("scene.BSZ", config.SCENE_EXTENSIONS)
        with self.assertRaises(SystemExit):
            glog.check_extension("scene.obj", config.SCENE_EXTENSIONS)

    def test_file_exists(self):
        with self.assertRaises(SystemExit):
            glog.check_file_exists(os.path.join(tempfile.gettempdir(), "no-such-file"))

    def test_comparisons(self):
        glog.check_gt(2, 1)
        glog.check_ne(config.COMMAND_PORT, config.IMAGE_PORT)
        with self.assertRaises(SystemExit):
            glog.check_gt(0, 0, "Total_frames must be > 0")
        with self.assertRaises(SystemExit):
            glog.check_ne(1, 1)


if __name__ == "__main__":
    unittest.main()
