#!/usr/bin/env python3
# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
#
# This source code is licensed under the BSD-style license found in the
# LICENSE file in the root directory of this source tree.

"""Bookkeeping of which worker rendered which frame.

The ledger is purely observational: it is written by the dispatcher when a frame is
handed out and when its image arrives, and read by whatever displays farm progress. The
dispatch logic itself never consults it.
"""

import time
from copy import copy

from camfarm.render import config


class FrameAssignment:

    """Assignment metadata for a single frame slot.

    Attributes:
        frame_index (int): Frame this slot tracks.
        worker_id (str): Identity of the worker that claimed the frame.
        started_at (int): Unix seconds when the frame was handed out, 0 if never.
        finished_at (int): Unix seconds when the frame's image arrived, 0 if never.
    """

    __slots__ = ["frame_index", "worker_id", "started_at", "finished_at"]

    def __init__(self, frame_index, worker_id=config.NOT_ASSIGNED):
        self.frame_index = frame_index
        self.worker_id = worker_id
        self.started_at = 0
        self.finished_at = 0

    @property
    def is_assigned(self):
        return self.worker_id != config.NOT_ASSIGNED

    @property
    def is_finished(self):
        return self.finished_at != 0

    def elapsed(self, now=None):
        """Seconds spent on the frame so far, or in total once finished."""
        if not self.is_assigned:
            return 0
        end = self.finished_at if self.is_finished else now
        if end is None:
            end = int(time.time())
        return end - self.started_at

    def __repr__(self):
        return (
            f"FrameAssignment({self.frame_index}, {self.worker_id!r}, "
            f"started_at={self.started_at}, finished_at={self.finished_at})"
        )


class WorkerLedger:

    """Table of frame slots, pre-populated as unassigned.

    Attributes:
        num_slots (int): Number of slots created up front.
    """

    def __init__(self, num_slots=config.MAX_WORKERS, clock=time.time):
        """Creates num_slots unassigned entries for frames 0..num_slots-1.

        Args:
            num_slots (int, optional): Number of slots to pre-populate.
            clock (func: () -> float, optional): Wall clock returning unix seconds.
        """
        self.num_slots = num_slots
        self._clock = clock
        self._assignments = {
            frame: FrameAssignment(frame) for frame in range(num_slots)
        }

    def _now(self):
        return int(self._clock())

    def _slot(self, frame):
        # Frames past the pre-populated range get a slot on first use
        if frame not in self._assignments:
            self._assignments[frame] = FrameAssignment(frame)
        return self._assignments[frame]

    def assign(self, frame, worker_id):
        slot = self._slot(frame)
        slot.worker_id = worker_id
        slot.started_at = self._now()

    def mark_received(self, frame):
        self._slot(frame).finished_at = self._now()

    def __getitem__(self, frame):
        return self._assignments[frame]

    def __contains__(self, frame):
        return frame in self._assignments

    def __len__(self):
        return len(self._assignments)

    def __iter__(self):
        return iter(self.snapshot())

    def snapshot(self):
        """Copies of every slot, ordered by frame index."""
        return [copy(self._assignments[frame]) for frame in sorted(self._assignments)]

    def completed_count(self):
        return sum(1 for slot in self._assignments.values() if slot.is_finished)

    def active_workers(self):
        """Identities of workers holding a frame whose image has not arrived."""
        return {
            slot.worker_id
            for slot in self._assignments.values()
            if slot.is_assigned and not slot.is_finished
        }
