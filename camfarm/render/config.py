#!/usr/bin/env python3
# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
#
# This source code is licensed under the BSD-style license found in the
# LICENSE file in the root directory of this source tree.

"""Constants used across the farm scripts.

Attributes:
    COMMAND_PORT (int): Port on master on which the command (router) channel binds.
    FRAME_STEP (int): Multiplier applied to a frame index before normalizing it to
        animation time when dispatching to the farm.
    IMAGE_ACK (str): Reply the image channel sends for every stored image.
    IMAGE_EXTENSION (str): Extension of images written by the image channel.
    IMAGE_PORT (int): Port on master on which the image (reply) channel binds.
    LOCALHOST (str): Default IP for localhost.
    MAX_FRAMES (int): Default number of frames in the animation.
    MAX_WORKERS (int): Default number of slots pre-populated in the worker ledger.
    NOT_ASSIGNED (str): Worker id shown for ledger slots nobody has claimed.
    PROGRESS_INTERVAL (float): Seconds between ledger polls when showing progress.
    SCENE_CACHE_NAME (str): Default path a worker caches the scene at.
    SCENE_EXTENSIONS (tuple[str]): Scene file extensions accepted by the engine.
    SCENE_HEADER (str): Frame sent ahead of the scene bytes in reply to getBsz.
    STANDBY (str): Reply sent once every frame has been dispatched.
    TRAILER_PREFIX (str): Prefix of the last frame of a getFragment reply.
"""

LOCALHOST = "127.0.0.1"
COMMAND_PORT = 8799
IMAGE_PORT = 8800

MAX_WORKERS = 10
MAX_FRAMES = 10
FRAME_STEP = 3

NOT_ASSIGNED = "not assigned"
STANDBY = "standby"
SCENE_HEADER = "Sending .bsz"
TRAILER_PREFIX = "ee: "
IMAGE_ACK = "ok"
IMAGE_EXTENSION = ".png"

SCENE_EXTENSIONS = (".bsz", ".bsa", ".bsx")
SCENE_CACHE_NAME = "scene.bsz"

PROGRESS_INTERVAL = 1.0


def endpoint(host, port):
    return f"tcp://{host}:{port}"
