#!/usr/bin/env python3
# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
#
# This source code is licensed under the BSD-style license found in the
# LICENSE file in the root directory of this source tree.

"""Shared state of the render farm and the only interface to it.

The DispatchCoordinator owns the frame counter, the farm-enabled flag, the camera
keyframes and the worker ledger. The network channels hold a handle to it and never
keep dispatch state of their own; the GUI (or the command line front-end) edits
keyframes and toggles the farm through it; the render engine reports back to it as an
EngineObserver.

Frames are handed out in order starting at 0. The counter is bumped on every fragment
request, including those answered with standby, and frames 0 through total_frames
(inclusive) are dispatched before the farm reports standby.

Example:
    Dispatching by hand, without any sockets:

        >>> coordinator = DispatchCoordinator("scene.bsz", total_frames=10)
        >>> coordinator.set_farm_enabled(True)
        >>> fragment = coordinator.next_fragment("worker-0")
        >>> fragment.frame
        0
"""

import threading
from collections import namedtuple

from absl import logging

from camfarm.render import config
from camfarm.render.engine import EngineObserver, SceneCamera
from camfarm.render.ledger import WorkerLedger
from camfarm.util.anim import KeyframeInterpolator
from camfarm.util.system_util import file_sha256

Fragment = namedtuple(
    "Fragment", ["frame", "transform", "focus_distance", "transform_string"]
)


class DispatchState:

    """Frame counter and farm mode.

    Attributes:
        current_frame (int): Last frame number handed out, -1 before the first request.
        farm_enabled (bool): Whether frames are being handed out to workers.
        total_frames (int): Number of frames in the animation.
    """

    __slots__ = ["current_frame", "total_frames", "farm_enabled"]

    def __init__(self, total_frames=config.MAX_FRAMES):
        self.current_frame = -1
        self.total_frames = total_frames
        self.farm_enabled = False

    @property
    def exhausted(self):
        return self.current_frame >= self.total_frames


class DispatchCoordinator(EngineObserver):

    """Serializes access to the farm state shared by the channels, GUI and engine.

    Attributes:
        camera (SceneCamera): Live camera of the loaded scene.
        frame_step (int): Multiplier from frame index to animation time.
        image_sink (func: (str, _) -> void): Receives images the local engine renders.
        interpolator (KeyframeInterpolator): Camera keyframes and interpolation.
        ledger (WorkerLedger): Which worker took which frame and when.
        progress (float): Last progress reported by the local engine.
        scene_path (str): Scene file served to workers.
        state (DispatchState): Frame counter and farm mode.
        step (int): Keyframe currently being edited, 0 or 1.
    """

    def __init__(
        self,
        scene_path,
        total_frames=config.MAX_FRAMES,
        frame_step=config.FRAME_STEP,
        ledger_slots=config.MAX_WORKERS,
        camera=None,
        image_sink=None,
    ):
        """Creates the coordinator with both keyframes at the identity pose.

        Args:
            scene_path (str): Scene file served to workers.
            total_frames (int, optional): Number of frames in the animation.
            frame_step (int, optional): Multiplier from frame index to animation time.
            ledger_slots (int, optional): Slots pre-populated in the worker ledger.
            camera (SceneCamera, optional): Live camera of the loaded scene.
            image_sink (func: (str, _) -> void, optional): Receives images rendered
                by the local engine.
        """
        self.scene_path = scene_path
        self.frame_step = frame_step
        self.state = DispatchState(total_frames)
        self.interpolator = KeyframeInterpolator(total_frames)
        self.ledger = WorkerLedger(ledger_slots)
        self.camera = camera or SceneCamera()
        self.image_sink = image_sink
        self.step = 0
        self.progress = 0.0

        self._lock = threading.Lock()
        self._farm_changed = threading.Condition()
        self._closed = False

    """ Farm mode """

    @property
    def farm_enabled(self):
        return self.state.farm_enabled

    def set_farm_enabled(self, enabled):
        with self._farm_changed:
            self.state.farm_enabled = bool(enabled)
            self._farm_changed.notify_all()
        logging.info(f"Render farm {'enabled' if enabled else 'disabled'}")

    def toggle_farm(self):
        self.set_farm_enabled(not self.state.farm_enabled)
        return self.state.farm_enabled

    def wait_until_enabled(self):
        """Blocks until farm mode is on or the coordinator is closed.

        Returns:
            bool: True if farm mode is on, False if the coordinator was closed.
        """
        with self._farm_changed:
            self._farm_changed.wait_for(
                lambda: self.state.farm_enabled or self._closed
            )
            return not self._closed

    def close(self):
        with self._farm_changed:
            self._closed = True
            self._farm_changed.notify_all()

    """ Dispatch """

    @property
    def current_frame(self):
        return self.state.current_frame

    @property
    def total_frames(self):
        return self.state.total_frames

    def is_exhausted(self):
        return self.state.exhausted

    def read_scene(self):
        """Reads the scene file from disk. Not cached, so edits reach new workers."""
        with open(self.scene_path, "rb") as f:
            return f.read()

    def scene_checksum(self):
        return file_sha256(self.scene_path)

    def next_fragment(self, worker_id):
        """Hands out the next frame.

        Args:
            worker_id (str): Identity of the requesting worker.

        Returns:
            Fragment: Frame number and camera for it, or None once every frame is out.
        """
        with self._lock:
            self.state.current_frame += 1
            frame = self.state.current_frame
            if frame > self.state.total_frames:
                return None

            transform, focus_distance = self.interpolator.frame_camera(
                frame, self.frame_step
            )
            self.camera.set_transform(transform)
            self.camera.set_focus_distance(focus_distance)
            transform_string = self.camera.transform_string()
            self.ledger.assign(frame, worker_id)

        logging.debug(f"Frame {frame} -> {worker_id}: {transform_string}")
        return Fragment(frame, transform, focus_distance, transform_string)

    def record_image(self, identifier):
        """Marks the frame named by an uploaded image as finished.

        Images for frames that were never handed out leave the ledger untouched.

        Args:
            identifier (str): Frame identifier the worker sent with the image.
        """
        try:
            frame = int(identifier)
        except ValueError:
            logging.warning(f"Image {identifier!r} does not name a frame")
            return
        with self._lock:
            dispatched = (
                0 <= frame <= self.total_frames
                and frame in self.ledger
                and self.ledger[frame].is_assigned
            )
            if dispatched:
                self.ledger.mark_received(frame)
        if not dispatched:
            logging.warning(f"Image for frame {frame} was never dispatched")

    def frames_to_dispatch(self):
        return self.state.total_frames + 1

    def is_complete(self):
        return self.completed_count() >= self.frames_to_dispatch()

    """ Ledger views """

    def completed_count(self):
        with self._lock:
            return self.ledger.completed_count()

    def active_workers(self):
        with self._lock:
            return self.ledger.active_workers()

    def ledger_snapshot(self):
        """Copies of every ledger slot, safe to read while frames are dispatched."""
        with self._lock:
            return self.ledger.snapshot()

    """ Keyframes """

    def set_keyframe(self, step, transform, focus_distance=None):
        with self._lock:
            self.interpolator.set_keyframe(step, transform, focus_distance)
            self.step = step

    def set_keyframe_focus(self, step, focus_distance):
        with self._lock:
            self.interpolator.set_focus_distance(step, focus_distance)

    def capture_keyframe(self, step):
        """Stores the live camera as keyframe step."""
        with self._lock:
            self.interpolator.set_keyframe(
                step, self.camera.transform, self.camera.focus_distance
            )
            self.step = step

    def reset_keyframes(self):
        """Sets both keyframes to the live camera."""
        with self._lock:
            for step in range(len(self.interpolator.keyframes)):
                self.interpolator.set_keyframe(
                    step, self.camera.transform, self.camera.focus_distance
                )
            self.step = 0

    def jump_to_keyframe(self, step):
        """Moves the live camera to keyframe step and makes it the one being edited."""
        with self._lock:
            keyframe = self.interpolator.keyframes[step].copy()
            self.camera.set_transform(keyframe.transform)
            self.camera.set_focus_distance(keyframe.focus_distance)
            self.step = step

    def load_keyframes(self, json_file):
        with self._lock:
            self.interpolator.load_from_json_file(json_file)
        logging.info(f"Loaded keyframes from {json_file}")

    def keyframes(self):
        with self._lock:
            return [keyframe.copy() for keyframe in self.interpolator.keyframes]

    def preview_frames(self):
        """Plays the animation on the live camera, one frame per iteration.

        Uses a frame step of one, so the last frame lands exactly on keyframe 1, and
        leaves the camera on keyframe 1 when exhausted.

        Yields:
            tuple(int, numpy 4x4 array, float): Frame, transform and focus distance.
        """
        for frame in range(1, self.state.total_frames + 1):
            with self._lock:
                transform, focus_distance = self.interpolator.frame_camera(frame)
                self.camera.set_transform(transform)
                self.camera.set_focus_distance(focus_distance)
            yield frame, transform, focus_distance
        self.jump_to_keyframe(1)

    """ Engine events """

    def on_scene_loaded(self, scene):
        scene_path = getattr(scene, "scene_path", None)
        if scene_path:
            self.scene_path = scene_path
        self.reset_keyframes()
        logging.info(f"Scene loaded: {self.scene_path}")

    def on_image(self, pass_name, image):
        if self.image_sink is not None:
            self.image_sink(pass_name, image)

    def on_error(self, pass_name, message):
        logging.error(f"Engine error in {pass_name}: {message}")

    def on_progress(self, pass_name, progress):
        self.progress = float(progress)
