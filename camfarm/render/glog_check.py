#!/usr/bin/env python3
# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
#
# This source code is licensed under the BSD-style license found in the
# LICENSE file in the root directory of this source tree.

"""Implementation of glog's CHECK functions for validating farm flags.

Provides a clean syntax that parallels the interface of CHECKs in C++. A failed check
prints a red message and exits with status 1. This file cannot be executed standalone
and is intended to be used as a utility for other scripts.

Example:
    A standard use of the glog_check functionality is for verifying FLAGS validity:

        1   import camfarm.render.glog_check as glog
        2   FLAGS = flags.FLAGS
        3   ...
        6   glog.check_gt(FLAGS.total_frames, 0, "total_frames must be positive")
"""

import os
import sys

from colorama import Fore, Style


def green(msg):
    return f"{Fore.GREEN}{Style.BRIGHT}{msg}{Style.RESET_ALL}"


def yellow(msg):
    return f"{Fore.YELLOW}{Style.BRIGHT}{msg}{Style.RESET_ALL}"


def red(msg):
    return f"{Fore.RED}{Style.BRIGHT}{msg}{Style.RESET_ALL}"


def _fail(message):
    print(red(message))
    sys.exit(1)


def check(condition, message=None):
    """Produces a message and exits if the condition does not hold.

    Args:
        condition (bool): The condition to be verified.
        message (str, optional): Text to be displayed if the condition fails.
    """
    if not condition:
        _fail(message)


def build_check_message(o1, o2, type, message=None):
    """Constructs failure message for validation.

    Args:
        o1 (comparable): Any comparable value.
        o2 (comparable): Any value comparable to o1.
        type (str): String representation of the comparison that failed.
        message (str, optional): Message to display if comparison fails.

    Returns:
        str: Failure message.
    """
    msg = f"Check failed: {o1} {type} {o2}"
    if message:
        msg += f". {message}"
    return msg


def check_ne(o1, o2, message=None):
    if o1 == o2:
        _fail(build_check_message(o1, o2, "==", message))


def check_ge(o1, o2, message=None):
    if o1 < o2:
        _fail(build_check_message(o1, o2, "<", message))


def check_gt(o1, o2, message=None):
    if o1 <= o2:
        _fail(build_check_message(o1, o2, "<=", message))


def check_file_exists(path, message=None):
    """Validates that path is an existing regular file.

    Args:
        path (str): Path on disk.
        message (str, optional): Message to display if the file is missing.
    """
    if not path or not os.path.isfile(path):
        msg = f"Check failed: no file at {path}"
        if message:
            msg += f". {message}"
        _fail(msg)


def check_extension(path, extensions, message=None):
    """Validates that path ends with one of the given extensions (case insensitive).

    Args:
        path (str): Path on disk.
        extensions (tuple[str]): Accepted extensions including the leading dot.
        message (str, optional): Message to display if the extension is not accepted.
    """
    _, ext = os.path.splitext(path or "")
    if ext.lower() not in extensions:
        msg = f"Check failed: {ext or 'no extension'} not in {', '.join(extensions)}"
        if message:
            msg += f". {message}"
        _fail(msg)
