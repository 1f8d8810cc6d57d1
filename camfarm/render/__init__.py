#!/usr/bin/env python3
# Copyright 2004-present Facebook. All Rights Reserved.

# This source code is licensed under the BSD-style license found in the
# LICENSE file in the root directory of this source tree.

"""ZeroMQ based distributed frame render module.

A master serves one scene and a two-keyframe camera animation to a farm of workers.
Workers pull frames one at a time over the command channel, render them locally and
push the images back over the image channel. The master never pushes work, so workers
can join and leave at any time.

The current farm supports execution in:
    - Single node (i.e. master/worker are the same machine)
    - LAN farms (i.e. master binds on a LAN interface and workers connect to it)

To render, render.py serves as the entrypoint of the master and worker.py of each
worker.
"""
