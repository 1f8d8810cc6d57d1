#!/usr/bin/env python3
# Copyright 2004-present Facebook. All Rights Reserved.

# This source code is licensed under the BSD-style license found in the
# LICENSE file in the root directory of this source tree.

"""Entrypoint for the render farm master.

The master loads a scene, sets up the two camera keyframes and serves frames of the
camera animation to any number of workers. Workers connect on their own (see worker.py)
and the master only tracks progress until every frame image has come back.

Farm mode can be toggled at runtime by sending SIGUSR1 to the master. While it is off,
the command channel stops answering, so requests queue up until it is turned back on.

Example:
    To serve a scene on the default ports:

        $ python -m camfarm.render.render \
          --scene=/path/to/scene.bsz \
          --keyframes=/path/to/keyframes.json \
          --output_dir=/path/to/frames

    To serve to a LAN farm with a longer animation:

        $ python -m camfarm.render.render \
          --scene=/path/to/scene.bsz \
          --bind_address=0.0.0.0 \
          --total_frames=120 \
          --frame_step=1

Attributes:
    FLAGS (absl.flags._flagvalues.FlagValues): Globally defined flags for render.py.
"""

import os
import signal
import sys
import time

import colorama
import progressbar
import zmq
from absl import app, flags, logging

import camfarm.render.glog_check as glog
from camfarm.render import config, setup
from camfarm.render.dispatch import DispatchCoordinator
from camfarm.render.engine import Engine
from camfarm.render.network import CommandChannel, ImageChannel, start_channel

FLAGS = flags.FLAGS

colorama.init(autoreset=True)


def verify_inputs():
    """Verifies that all the command line flags are valid."""
    glog.check_extension(
        FLAGS.scene, config.SCENE_EXTENSIONS, "Scene must be a .bsz, .bsa or .bsx file"
    )
    glog.check_file_exists(FLAGS.scene)
    glog.check(FLAGS.bind_address, "Bind_address cannot be empty")
    if FLAGS.keyframes:
        glog.check_file_exists(FLAGS.keyframes)

    glog.check_gt(FLAGS.total_frames, 0, "Total_frames must be > 0")
    glog.check_gt(FLAGS.frame_step, 0, "Frame_step must be > 0")
    glog.check_ge(FLAGS.ledger_slots, 0, "Ledger_slots must be >= 0")
    glog.check_ne(
        FLAGS.command_port,
        FLAGS.image_port,
        "Command and image channels cannot share a port",
    )


def create_coordinator(
    scene,
    keyframes="",
    total_frames=config.MAX_FRAMES,
    frame_step=config.FRAME_STEP,
    ledger_slots=config.MAX_WORKERS,
):
    """Loads the scene and builds the coordinator that owns the farm state.

    Args:
        scene (str): Path to the scene file.
        keyframes (str, optional): Path to a keyframes json. Both keyframes start at
            the scene camera if empty.
        total_frames (int, optional): Number of frames in the animation.
        frame_step (int, optional): Multiplier from frame index to animation time.
        ledger_slots (int, optional): Slots pre-populated in the worker ledger.

    Returns:
        DispatchCoordinator: Coordinator subscribed to the engine's events.
    """
    engine = Engine()
    coordinator = DispatchCoordinator(
        scene,
        total_frames=total_frames,
        frame_step=frame_step,
        ledger_slots=ledger_slots,
        camera=engine.camera,
    )
    engine.subscribe(coordinator)
    engine.load_scene(scene)
    if keyframes:
        coordinator.load_keyframes(keyframes)
    return coordinator


def watch_progress(coordinator):
    """Displays a progress bar until every frame image has been received.

    Args:
        coordinator (DispatchCoordinator): Coordinator whose ledger is polled.
    """
    progress = "█"
    widgets = [
        f"{progress} ",
        "Frames:",
        progressbar.Bar(progress, "|", "|"),
        progressbar.Percentage(),
        " (Workers: ",
        progressbar.FormatLabel("0"),
        ") (",
        progressbar.FormatLabel("%(elapsed)s"),
        ")",
    ]
    num_frames = coordinator.frames_to_dispatch()
    bar = progressbar.ProgressBar(max_value=num_frames, widgets=widgets)
    bar.start()
    while not coordinator.is_complete():
        time.sleep(config.PROGRESS_INTERVAL)
        widgets[5] = str(len(coordinator.active_workers()))
        bar.update(min(coordinator.completed_count(), num_frames))
    bar.finish()

    for assignment in coordinator.ledger_snapshot():
        if assignment.is_assigned:
            logging.info(
                f"Frame {assignment.frame_index}: {assignment.worker_id} "
                f"({assignment.elapsed()}s)"
            )


def shutdown(coordinator, context):
    """Stops both channels. Blocked receives fail with ContextTerminated."""
    coordinator.close()
    context.term()


def toggle_farm_handler(coordinator):
    def handler(signal, frame):
        enabled = coordinator.toggle_farm()
        print(glog.yellow(f"Farm mode {'on' if enabled else 'off'}"))

    return handler


def main():
    """Serves the scene to workers until all frames have been rendered."""
    os.makedirs(FLAGS.output_dir, exist_ok=True)
    coordinator = create_coordinator(
        FLAGS.scene,
        FLAGS.keyframes,
        FLAGS.total_frames,
        FLAGS.frame_step,
        FLAGS.ledger_slots,
    )

    context = zmq.Context()
    channels = [
        CommandChannel(
            coordinator,
            FLAGS.command_port,
            bind_address=FLAGS.bind_address,
            context=context,
        ),
        ImageChannel(
            FLAGS.image_port,
            output_dir=FLAGS.output_dir,
            on_received=coordinator.record_image,
            bind_address=FLAGS.bind_address,
            context=context,
        ),
    ]
    try:
        threads = [start_channel(channel) for channel in channels]
    except zmq.ZMQError as e:
        logging.error(f"Failed to bind channels on {FLAGS.bind_address}: {e}")
        sys.exit(1)

    setup.shutdown_hooks.append(lambda: shutdown(coordinator, context))
    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, toggle_farm_handler(coordinator))

    coordinator.set_farm_enabled(FLAGS.farm)
    watch_progress(coordinator)

    setup.run_shutdown_hooks()
    for thread in threads:
        thread.join()
    print(glog.green(f"Rendered {coordinator.frames_to_dispatch()} frames"))


def main_loop(argv):
    """Validates and logs flags and serves the farm with them if determined to be valid.

    Args:
        argv (list[str]): List of arguments (used interally by abseil).
    """
    setup.init_camfarm(FLAGS)
    setup.log_flags()
    verify_inputs()
    main()


if __name__ == "__main__":
    # Abseil entry point app.run() expects all flags to be already defined
    setup.define_flags()
    app.run(main_loop)
