################################################################################
#
# Copyright (c) 2025 ByteDance Ltd. and/or its affiliates
#
# Permission is hereby granted, free of charge, to any person obtaining
# a copy of this software and associated documentation files
# (the "Software"), to deal in the Software without restriction,
# including without limitation the rights to use, copy, modify, merge,
# publish, distribute, sublicense, and/or sell copies of the Software,
# and to permit persons to whom the Software is furnished to do so,
# subject to the following conditions:
#
# The above copyright notice and this permission notice shall be
# included in all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND,
# EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF
# MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT.
# IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY
# CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION OF CONTRACT,
# TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN CONNECTION WITH THE
# SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.
#
################################################################################
from typing import Iterable, List

import numpy as np


class SampleStatistic:
    """Collects bandwidth samples and reduces them to a single reported value.

    The reduction is the median unless `use_mean` is set; it is chosen once per run
    through `RunConfig.use_mean`.
    """

    def __init__(self, use_mean: bool = False, samples: Iterable[float] = ()):
        self.use_mean = use_mean
        self._samples: List[float] = [float(x) for x in samples]

    def __call__(self, value: float):
        self.add(value)

    def add(self, value: float):
        self._samples.append(float(value))

    def __len__(self):
        return len(self._samples)

    @property
    def samples(self) -> List[float]:
        return list(self._samples)

    def median(self) -> float:
        self._check_not_empty()
        return float(np.median(self._samples))

    def mean(self) -> float:
        self._check_not_empty()
        return float(np.mean(self._samples))

    def value(self) -> float:
        return self.mean() if self.use_mean else self.median()

    def _check_not_empty(self):
        if not self._samples:
            raise ValueError("cannot reduce a statistic without samples")

    def __repr__(self):
        return f"SampleStatistic(use_mean={self.use_mean}, samples={self._samples})"
