#!/usr/bin/env python3
# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
#
# This source code is licensed under the BSD-style license found in the
# LICENSE file in the root directory of this source tree.


""" Dispatch coordinator unit tests

Runs unit tests on the DispatchCoordinator class without any sockets

Example:
        $ python -m camfarm.test.test_dispatch
"""

import math
import os
import tempfile
import threading
import unittest

import numpy as np

from camfarm.render.dispatch import DispatchCoordinator
from camfarm.render.engine import Engine, SceneCamera, deserialize_transform
from camfarm.test.util.farm_tester import pose, rotation_of


class dispatchCoordinatorTest(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.scene_path = os.path.join(self.tmp_dir.name, "scene.bsz")
        with open(self.scene_path, "wb") as f:
            f.write(b"scene contents")
        self.coordinator = DispatchCoordinator(self.scene_path, total_frames=10)
        self.coordinator.set_keyframe(0, np.eye(4), 5.0)
        self.coordinator.set_keyframe(1, pose((0, math.pi / 2, 0), (10, 0, 0)), 15.0)
        self.coordinator.set_farm_enabled(True)

    def tearDown(self):
        self.tmp_dir.cleanup()

    def test_sequential_frames_then_standby(self):
        frames = [
            self.coordinator.next_fragment("worker").frame
            for _ in range(self.coordinator.frames_to_dispatch())
        ]
        self.assertEqual(frames, list(range(11)))
        for _ in range(3):
            self.assertIsNone(self.coordinator.next_fragment("worker"))
        self.assertEqual(self.coordinator.current_frame, 13)

    def test_exhaustion_boundary(self):
        for _ in range(10):
            self.coordinator.next_fragment("worker")
        self.assertFalse(self.coordinator.is_exhausted())
        self.coordinator.next_fragment("worker")
        self.assertEqual(self.coordinator.current_frame, 10)
        self.assertTrue(self.coordinator.is_exhausted())

    def test_fragment_camera(self):
        for _ in range(5):
            self.coordinator.next_fragment("worker")
        fragment = self.coordinator.next_fragment("worker")
        self.assertEqual(fragment.frame, 5)
        self.assertAlmostEqual(fragment.focus_distance, 20.0)
        self.assertAlmostEqual(
            rotation_of(fragment.transform).magnitude(), math.radians(135)
        )
        np.testing.assert_allclose(
            deserialize_transform(fragment.transform_string),
            fragment.transform,
            atol=1e-12,
        )
        # the live camera follows the last dispatched frame
        camera = self.coordinator.camera
        np.testing.assert_allclose(camera.transform, fragment.transform)
        self.assertAlmostEqual(camera.focus_distance, 20.0)

    def test_ledger_records_assignment(self):
        self.coordinator.next_fragment("worker-a")
        self.coordinator.next_fragment("worker-b")
        self.assertEqual(self.coordinator.ledger[0].worker_id, "worker-a")
        self.assertEqual(self.coordinator.ledger[1].worker_id, "worker-b")
        self.assertNotEqual(self.coordinator.ledger[1].started_at, 0)

    def test_concurrent_requests_get_distinct_frames(self):
        frames = []
        frames_lock = threading.Lock()

        def request(worker_id):
            for _ in range(4):
                fragment = self.coordinator.next_fragment(worker_id)
                if fragment is not None:
                    with frames_lock:
                        frames.append(fragment.frame)

        threads = [
            threading.Thread(target=request, args=(f"worker-{i}",)) for i in range(4)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(sorted(frames), list(range(11)))

    def test_record_image(self):
        self.coordinator.next_fragment("worker")
        self.coordinator.record_image("0")
        self.assertTrue(self.coordinator.ledger[0].is_finished)
        self.assertEqual(self.coordinator.ledger.completed_count(), 1)
        self.assertFalse(self.coordinator.is_complete())

    def test_ledger_views(self):
        self.coordinator.next_fragment("worker-a")
        self.coordinator.next_fragment("worker-b")
        self.coordinator.record_image("0")
        self.assertEqual(self.coordinator.active_workers(), {"worker-b"})
        self.assertEqual(self.coordinator.completed_count(), 1)
        snapshot = self.coordinator.ledger_snapshot()
        self.assertEqual(len(snapshot), 10)
        self.assertTrue(snapshot[0].is_finished)

    def test_record_image_not_a_frame(self):
        self.coordinator.record_image("thumbnail")
        self.assertEqual(self.coordinator.ledger.completed_count(), 0)

    def test_undispatched_images_do_not_complete(self):
        for frame in range(100, 111):
            self.coordinator.record_image(str(frame))
        self.assertEqual(self.coordinator.completed_count(), 0)
        self.assertFalse(self.coordinator.is_complete())
        self.assertNotIn(100, self.coordinator.ledger)

    def test_record_image_out_of_range(self):
        self.coordinator.next_fragment("worker")
        self.coordinator.record_image("-1")
        self.coordinator.record_image("5")
        self.assertEqual(self.coordinator.completed_count(), 0)
        self.assertFalse(self.coordinator.ledger[5].is_finished)

    def test_complete(self):
        for frame in range(11):
            self.coordinator.next_fragment("worker")
            self.coordinator.record_image(str(frame))
        self.assertTrue(self.coordinator.is_complete())

    def test_scene(self):
        self.assertEqual(self.coordinator.read_scene(), b"scene contents")
        checksum = self.coordinator.scene_checksum()
        self.assertEqual(len(checksum), 64)
        self.assertEqual(checksum, checksum.upper())

    def test_farm_toggle(self):
        self.assertFalse(self.coordinator.toggle_farm())
        self.assertFalse(self.coordinator.farm_enabled)
        self.assertTrue(self.coordinator.toggle_farm())
        self.assertTrue(self.coordinator.wait_until_enabled())

    def test_wait_until_enabled_wakes_on_close(self):
        self.coordinator.set_farm_enabled(False)
        result = []
        waiter = threading.Thread(
            target=lambda: result.append(self.coordinator.wait_until_enabled())
        )
        waiter.start()
        self.coordinator.close()
        waiter.join(5)
        self.assertEqual(result, [False])

    def test_wait_until_enabled_wakes_on_enable(self):
        self.coordinator.set_farm_enabled(False)
        result = []
        waiter = threading.Thread(
            target=lambda: result.append(self.coordinator.wait_until_enabled())
        )
        waiter.start()
        self.coordinator.set_farm_enabled(True)
        waiter.join(5)
        self.assertEqual(result, [True])


class keyframeEditingTest(unittest.TestCase):
    def setUp(self):
        self.camera = SceneCamera(pose((0, 0, 0.3), (1, 2, 3)), focus_distance=4.0)
        self.coordinator = DispatchCoordinator(
            "scene.bsz", total_frames=4, camera=self.camera
        )

    def test_scene_loaded_resets_keyframes(self):
        engine = Engine(self.camera)
        engine.subscribe(self.coordinator)
        engine.load_scene("scene.bsz")
        self.assertEqual(self.coordinator.scene_path, os.path.abspath("scene.bsz"))
        for keyframe in self.coordinator.keyframes():
            np.testing.assert_allclose(keyframe.transform, self.camera.transform)
            self.assertEqual(keyframe.focus_distance, 4.0)

    def test_capture_and_jump(self):
        self.coordinator.capture_keyframe(1)
        self.assertEqual(self.coordinator.step, 1)
        self.camera.set_transform(np.eye(4))
        self.camera.set_focus_distance(1.0)

        self.coordinator.jump_to_keyframe(1)
        np.testing.assert_allclose(self.camera.transform, pose((0, 0, 0.3), (1, 2, 3)))
        self.assertEqual(self.camera.focus_distance, 4.0)

    def test_keyframes_are_copies(self):
        keyframes = self.coordinator.keyframes()
        keyframes[0].transform[0, 3] = 99
        self.assertEqual(self.coordinator.keyframes()[0].transform[0, 3], 0)

    def test_set_keyframe_focus(self):
        self.coordinator.set_keyframe_focus(0, 2.5)
        self.assertEqual(self.coordinator.keyframes()[0].focus_distance, 2.5)

    def test_preview_frames(self):
        end = pose((0, 0, 1.0), (4, 0, 0))
        self.coordinator.set_keyframe(0, np.eye(4), 1.0)
        self.coordinator.set_keyframe(1, end, 3.0)

        preview = list(self.coordinator.preview_frames())
        self.assertEqual([frame for frame, _, _ in preview], [1, 2, 3, 4])
        self.assertAlmostEqual(preview[1][2], 2.0)
        np.testing.assert_allclose(preview[-1][1], end, atol=1e-12)
        # playback ends on the second keyframe
        np.testing.assert_allclose(self.camera.transform, end)
        self.assertEqual(self.coordinator.step, 1)

    def test_load_keyframes(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            filename = os.path.join(tmp_dir, "keyframes.json")
            self.coordinator.set_keyframe(1, pose((0, 1, 0)), 8.0)
            self.coordinator.interpolator.save_to_file(filename)
            self.coordinator.reset_keyframes()
            self.coordinator.load_keyframes(filename)
        self.assertEqual(self.coordinator.keyframes()[1].focus_distance, 8.0)
        self.assertEqual(self.coordinator.total_frames, 4)

    def test_engine_events(self):
        images = []
        coordinator = DispatchCoordinator(
            "scene.bsz", image_sink=lambda name, image: images.append((name, image))
        )
        engine = Engine()
        engine.subscribe(coordinator)
        engine.publish_image("beauty", b"pixels")
        engine.publish_progress("beauty", 0.5)
        engine.publish_error("beauty", "out of memory")
        self.assertEqual(images, [("beauty", b"pixels")])
        self.assertEqual(coordinator.progress, 0.5)


if __name__ == "__main__":
    unittest.main()
