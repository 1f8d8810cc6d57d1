#!/usr/bin/env python3
# Copyright 2004-present Facebook. All Rights Reserved.

# This source code is licensed under the BSD-style license found in the
# LICENSE file in the root directory of this source tree.

import logging

import numpy as np


class Logger:
    def __init__(self, name=None, level=logging.DEBUG):
        self.logger = logging.getLogger(name or "camfarm")
        self.logger.setLevel(level)

        # Modules re-imported under test would otherwise stack duplicate handlers
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setLevel(level)

            format = logging.Formatter(
                "%(asctime)s - %(name)s/%(levelname)s: %(message)s"
            )
            handler.setFormatter(format)

            self.logger.addHandler(handler)

    def check(self, condition, message=""):
        if not condition:
            self.logger.error("Failed condition: %s", message)
        return condition

    def check_shape(self, array, shape, message=""):
        actual = np.shape(array)
        return self.check(
            actual == tuple(shape), "shape {} == {}. {}".format(actual, shape, message)
        )

    def check_finite(self, array, message=""):
        return self.check(np.all(np.isfinite(array)), "all finite. {}".format(message))
