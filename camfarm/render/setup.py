#!/usr/bin/env python3
# Copyright 2004-present Facebook. All Rights Reserved.

# This source code is licensed under the BSD-style license found in the
# LICENSE file in the root directory of this source tree.

"""Miscellaneous setup utility for the render farm master.

Defines the flags of render.py, installs termination handlers so the channels are torn
down on signals, and points absl logging at a log directory. setup.py cannot be run
standalone.

Attributes:
    FLAGS (absl.flags._flagvalues.FlagValues): Globally defined flags for render.py. Note that
        the FLAGS here do not directly relate to setup.py.
    flag_names (set[str]): Names of the flags defined by define_flags().
    shutdown_hooks (list[func: () -> void]): Run, in order, when the master terminates.
"""

import os
import signal
import sys
import traceback

from absl import flags, logging

from camfarm.render import config

FLAGS = flags.FLAGS
flag_names = set()
shutdown_hooks = []


def init_camfarm(gflags):
    """Sets up the environment with expected handlers.

    Args:
        gflags (absl.flags._flagvalues.FlagValues): Globally defined flags.
    """
    setup_termination_handlers()
    setup_logging_handler(gflags.log_dir)


# Create logging directory and setup logging handler
def setup_logging_handler(log_dir):
    """Sets up logging.

    Args:
        log_dir (str): Path to directory where logs should be saved.
    """
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        program_name = os.path.splitext(os.path.basename(sys.argv[0]))[0]
        logging.get_absl_handler().use_absl_log_file(program_name, log_dir)


def run_shutdown_hooks():
    while shutdown_hooks:
        hook = shutdown_hooks.pop(0)
        hook()


def terminate_handler():
    """Tears down the channels before terminating the program."""
    run_shutdown_hooks()
    logging.error("".join(traceback.format_stack()))
    sys.exit(0)


def sigterm_handler(signal, frame):
    """Handler for any catchable signal that terminates the program.

    Args:
        signal (signal.signal): Type of signal.
        frame (frame): Stack frame.
    """
    logging.error(f"Signal handler called with signal {signal}")
    terminate_handler()


def setup_termination_handlers(sigterm_handler=sigterm_handler):
    """Sets up a handler for all termination signals available on this OS.

    Args:
        sigterm_handler (func: (signal.signal, frame) -> void, optional): Function for handling
            termination signals.
    """
    signal_names = [
        "SIGHUP",  # terminate process: terminal line hangup
        "SIGINT",  # terminate process: interrupt program
        "SIGQUIT",  # create core image: quit program
        "SIGTERM",  # terminate process: software termination signal
    ]
    for signal_name in signal_names:
        if hasattr(signal, signal_name):
            signal.signal(getattr(signal, signal_name), sigterm_handler)


def define_flags():
    """Defines abseil flags for render."""
    if flag_names:
        return

    flags.DEFINE_string("scene", None, "scene file to distribute (.bsz, .bsa or .bsx)")
    flags.DEFINE_string("keyframes", "", "json file with the two camera keyframes")
    flags.DEFINE_string(
        "bind_address", config.LOCALHOST, "interface the channels bind on"
    )
    flags.DEFINE_integer(
        "command_port", config.COMMAND_PORT, "port of the command (router) channel"
    )
    flags.DEFINE_integer(
        "image_port", config.IMAGE_PORT, "port of the image (reply) channel"
    )
    flags.DEFINE_integer(
        "total_frames", config.MAX_FRAMES, "number of frames in the animation"
    )
    flags.DEFINE_integer(
        "frame_step",
        config.FRAME_STEP,
        "multiplier from frame index to animation time when dispatching",
    )
    flags.DEFINE_integer(
        "ledger_slots", config.MAX_WORKERS, "worker ledger slots shown in progress"
    )
    flags.DEFINE_string("output_dir", ".", "directory received images are written to")
    flags.DEFINE_boolean("farm", True, "start with farm mode enabled")

    flag_names.update(
        {
            "scene",
            "keyframes",
            "bind_address",
            "command_port",
            "image_port",
            "total_frames",
            "frame_step",
            "ledger_slots",
            "output_dir",
            "farm",
        }
    )
    flags.mark_flag_as_required("scene")


def log_flags():
    """Prints formatted list of flags and their values."""
    padding = max(len(flag_name) for flag_name in flag_names)
    sorted_flags = sorted(flag_names)
    for flag_name in sorted_flags:
        logging.info(f"{flag_name.ljust(padding)} = {FLAGS[flag_name].value}")
