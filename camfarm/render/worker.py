#!/usr/bin/env python3
# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
#
# This source code is licensed under the BSD-style license found in the
# LICENSE file in the root directory of this source tree.

"""Consumption side of the render farm.

A worker connects to both channels of a master, fetches the scene if its cached copy
is stale and then renders frames until the master reports standby. Each frame is
rendered by an external command and the resulting image is uploaded to the image
channel under the frame number.

Example:
    To run a single worker against a master on 192.168.1.100:

        $ python -m camfarm.render.worker \
          --master=192.168.1.100 \
          --render_cmd="renderer -i {scene} -f {frame} -x '{transform}' -o {output}"

Attributes:
    FLAGS (absl.flags._flagvalues.FlagValues): Globally defined flags for worker.py.
"""

import os
import tempfile
import uuid
from collections import namedtuple

import zmq
from absl import app, flags, logging

import camfarm.render.glog_check as glog
from camfarm.render import config
from camfarm.render.network import Command, peer_name
from camfarm.util.system_util import file_sha256, run_command

FLAGS = flags.FLAGS

Job = namedtuple("Job", ["frame", "transform_string"])


class WorkerError(Exception):
    """Raised when the master replies with something the worker cannot use."""


def is_standby(frames):
    return len(frames) == 1 and frames[0] == config.STANDBY.encode("utf-8")


class Worker:

    """Client of the master's command and image channels.

    Attributes:
        commands (zmq.Socket): DEALER socket connected to the command channel.
        identity (bytes): Identity the command channel sees this worker as.
        images (zmq.Socket): REQ socket connected to the image channel.
        scene_cache (str): Local copy of the scene file.
    """

    def __init__(
        self,
        master=config.LOCALHOST,
        command_port=config.COMMAND_PORT,
        image_port=config.IMAGE_PORT,
        scene_cache=config.SCENE_CACHE_NAME,
        context=None,
        identity=None,
        timeout_ms=-1,
    ):
        """Connects to a master. Nothing is sent until the first request.

        Args:
            master (str, optional): Address of the master.
            command_port (int, optional): Port of the command channel.
            image_port (int, optional): Port of the image channel.
            scene_cache (str, optional): Where the scene file is cached.
            context (zmq.Context, optional): Context to create the sockets in.
            identity (bytes, optional): Command channel identity, a random UUID if None.
            timeout_ms (int, optional): Receive timeout. -1 waits forever.
        """
        self.context = context or zmq.Context.instance()
        self.identity = identity or uuid.uuid4().bytes
        self.scene_cache = scene_cache

        self.commands = self.context.socket(zmq.DEALER)
        self.commands.setsockopt(zmq.IDENTITY, self.identity)
        self.images = self.context.socket(zmq.REQ)
        for socket in (self.commands, self.images):
            socket.setsockopt(zmq.LINGER, 0)
            socket.setsockopt(zmq.RCVTIMEO, timeout_ms)
        self.commands.connect(config.endpoint(master, command_port))
        self.images.connect(config.endpoint(master, image_port))
        logging.info(f"Worker {peer_name(self.identity)} connected to {master}")

    def request(self, command):
        """Sends a command and returns the reply payload.

        Args:
            command (Command): Command to send.

        Returns:
            list[bytes]: Reply frames without the empty delimiter.
        """
        self.commands.send_multipart([b"", command.value.encode("utf-8")])
        frames = self.commands.recv_multipart()
        if frames and frames[0] == b"":
            frames = frames[1:]
        return frames

    def checksum(self):
        frames = self.request(Command.CHECKSUM)
        if is_standby(frames):
            return None
        return frames[0].decode("utf-8")

    def sync_scene(self):
        """Downloads the scene unless the cached copy matches the master's checksum.

        Returns:
            bool: False if the master is on standby, True once the cache is current.
        """
        checksum = self.checksum()
        if checksum is None:
            return False
        cached = os.path.isfile(self.scene_cache)
        if cached and file_sha256(self.scene_cache) == checksum:
            logging.info(f"Scene cache {self.scene_cache} is up to date")
            return True

        frames = self.request(Command.GET_BSZ)
        if is_standby(frames):
            return False
        if len(frames) != 2 or frames[0] != config.SCENE_HEADER.encode("utf-8"):
            raise WorkerError(f"Unexpected scene reply of {len(frames)} frame(s)")
        with open(self.scene_cache, "wb") as f:
            f.write(frames[1])
        logging.info(f"Downloaded scene ({len(frames[1])} bytes)")
        return True

    def request_fragment(self):
        """Asks for the next frame.

        Returns:
            Job: Frame number and camera transform, or None on standby.
        """
        frames = self.request(Command.GET_FRAGMENT)
        if is_standby(frames):
            return None
        if len(frames) != 3:
            raise WorkerError(f"Unexpected fragment reply of {len(frames)} frame(s)")
        frame = int(frames[0])
        trailer = frames[2].decode("utf-8")
        if trailer != f"{config.TRAILER_PREFIX}{frame}":
            raise WorkerError(f"Fragment trailer {trailer!r} does not match {frame}")
        return Job(frame, frames[1].decode("utf-8"))

    def upload(self, frame, image):
        self.images.send_multipart([str(frame).encode("utf-8"), image])
        reply = self.images.recv_string()
        if reply != config.IMAGE_ACK:
            raise WorkerError(f"Upload of frame {frame} rejected: {reply!r}")

    def run(self, render_fn):
        """Renders frames until the master reports standby.

        Args:
            render_fn (func: (str, int, str) -> bytes): Renders the cached scene at a
                frame with a camera transform and returns the encoded image.

        Returns:
            int: Number of frames rendered.
        """
        if not self.sync_scene():
            logging.info("Master is on standby")
            return 0

        rendered = 0
        while True:
            job = self.request_fragment()
            if job is None:
                break
            logging.info(f"Rendering frame {job.frame}")
            self.upload(job.frame, render_fn(self.scene_cache, *job))
            rendered += 1
        logging.info(f"Standby after {rendered} frame(s)")
        return rendered

    def close(self):
        self.commands.close(linger=0)
        self.images.close(linger=0)


def command_renderer(render_cmd, run_silently=False):
    """Wraps a shell command template as a render_fn.

    Args:
        render_cmd (str): Template with {scene}, {frame}, {transform} and {output}.
        run_silently (bool, optional): Whether or not to show the renderer's stdout.

    Returns:
        func: (str, int, str) -> bytes: Runs the command and reads back its image.
    """

    def render(scene, frame, transform_string):
        with tempfile.TemporaryDirectory() as tmp_dir:
            output = os.path.join(tmp_dir, f"{frame}{config.IMAGE_EXTENSION}")
            run_command(
                render_cmd.format(
                    scene=scene, frame=frame, transform=transform_string, output=output
                ),
                run_silently=run_silently,
            )
            with open(output, "rb") as f:
                return f.read()

    return render


def main_loop(argv):
    """Renders frames for the master until it reports standby.

    Args:
        argv (list[str]): List of arguments (used interally by abseil).
    """
    glog.check_ne(FLAGS.render_cmd, "", "Render_cmd cannot be empty")
    worker = Worker(
        FLAGS.master, FLAGS.command_port, FLAGS.image_port, FLAGS.scene_cache
    )
    try:
        worker.run(command_renderer(FLAGS.render_cmd))
    finally:
        worker.close()


if __name__ == "__main__":
    # Abseil entry point app.run() expects all flags to be already defined
    flags.DEFINE_string("master", None, "master IP")
    flags.DEFINE_integer("command_port", config.COMMAND_PORT, "master command port")
    flags.DEFINE_integer("image_port", config.IMAGE_PORT, "master image port")
    flags.DEFINE_string("scene_cache", config.SCENE_CACHE_NAME, "local scene copy")
    flags.DEFINE_string("render_cmd", "", "render command template")

    # Required FLAGS.
    flags.mark_flag_as_required("master")
    app.run(main_loop)
