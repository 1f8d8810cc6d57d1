#!/usr/bin/env python3
# Copyright 2004-present Facebook. All Rights Reserved.

# This source code is licensed under the BSD-style license found in the
# LICENSE file in the root directory of this source tree.

"""Affine transform helpers shared by the keyframe interpolator.

Transforms are 4x4 numpy arrays in column-vector form: the upper-left 3x3 block holds
rotation times per-axis scale and the last column holds the translation.
"""

import numpy as np
from scipy import linalg


class DegenerateRotationError(ValueError):
    """Raised when a rotation column has zero length and cannot be normalized."""


def is_unitary(matrix, atol=None):
    # a matrix M is unitary <=> the conjugate transpose H = the inverse of M <=> H * M = I
    if atol:
        return np.allclose(
            np.eye(len(matrix)), np.matmul(matrix, matrix.T.conj()), atol, atol
        )
    else:
        return np.allclose(np.eye(len(matrix)), np.matmul(matrix, matrix.T.conj()))


def is_approx(v1, v2, tol=0):
    return linalg.norm(v1 - v2) <= tol * min(linalg.norm(v1), linalg.norm(v2))


def normalize_columns(matrix):
    """Scales each column of a 3x3 block to unit length.

    Args:
        matrix (numpy 3x3 array): Rotation block, possibly carrying scale or drift.

    Returns:
        numpy 3x3 array: Copy of the block with unit-length columns.

    Raises:
        DegenerateRotationError: If any column has zero length.
    """
    matrix = np.asarray(matrix, dtype=float)
    lengths = linalg.norm(matrix, axis=0)
    if np.any(lengths == 0) or not np.all(np.isfinite(lengths)):
        raise DegenerateRotationError(
            f"Cannot normalize rotation with column lengths {lengths.tolist()}"
        )
    return matrix / lengths


def decompose_transform(transform):
    """Splits an affine transform into rotation, translation and scale.

    Args:
        transform (numpy 4x4 array): Affine camera pose.

    Returns:
        tuple(numpy 3x3 array, numpy 1x3 array, numpy 1x3 array): Column-normalized
            rotation, translation and per-column scale.
    """
    transform = np.asarray(transform, dtype=float)
    block = transform[:3, :3]
    rotation = normalize_columns(block)
    scale = linalg.norm(block, axis=0)
    translation = transform[:3, 3].copy()
    return rotation, translation, scale


def compose_transform(rotation, translation, scale):
    transform = np.eye(4)
    transform[:3, :3] = np.asarray(rotation) * np.asarray(scale)
    transform[:3, 3] = translation
    return transform


def lerp(a, b, t):
    return a + (b - a) * t
