#!/usr/bin/env python3
# Copyright 2004-present Facebook. All Rights Reserved.

# This source code is licensed under the BSD-style license found in the
# LICENSE file in the root directory of this source tree.

"""General systems utility used by the farm scripts.

Defines functions for abstracting away command line interfaces, namely running the
external render binary on a worker, and for hashing scene files.

Example:
    To render a frame with an arbitrary command line renderer:

        >>> from camfarm.util.system_util import run_command
        >>> run_command("renderer -i scene.bsz -o 3.png")
"""

import hashlib
import os
import subprocess
import sys

HASH_CHUNK_SIZE = 1 << 20


def file_sha256(filename):
    """Computes the SHA-256 digest of a file.

    Args:
        filename (str): Path to the file.

    Returns:
        str: Uppercase hex digest.
    """
    sha = hashlib.sha256()
    with open(filename, "rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            sha.update(chunk)
    return sha.hexdigest().upper()


def run_command(shell_string, run_silently=False, file_fn=None):
    """Run a shell command.

    Args:
        shell_string (str): Command to be run.
        run_silently (bool, optional): Whether or not to show stdout.
        file_fn (str, optional): Filename of where output should be saved.

    Returns:
        str: stdout from executing command.
    """
    try:
        if run_silently:
            with open(os.devnull, "w") as f:
                output = sh_buffered(shell_string, file=f)
        elif file_fn is not None:
            with open(file_fn, "w") as f:
                output = sh_buffered(shell_string, file=f)
        else:
            output = sh_buffered(shell_string)
        return output
    except Exception:
        if not run_silently:
            print(f"Failed to run program: {shell_string}")
        raise


def sh_buffered(arg, file=sys.stdout, use_shell=True):
    """Run a shell command with buffered output.

    Args:
        arg (str): Command to run.
        file (file, optional): File handler to write stdout to.
        use_shell (bool, optional): Whether or not to execute in a shell.

    Returns:
        str: stdout from executing command.
    """
    if file:
        print(f"$ {arg}", file=file)
    try:
        output = subprocess.check_output(arg, shell=use_shell, stderr=file)
    except subprocess.CalledProcessError as e:
        error = e.output.decode("utf-8")
        if error:
            print(error, file=sys.stderr)
        raise
    output = output.decode("utf-8")
    if file:
        print(output, file=file)
    return output.rstrip()
