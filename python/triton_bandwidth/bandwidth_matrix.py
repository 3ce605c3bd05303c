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
import math

import numpy as np


class BandwidthMatrix:
    """GB/s values indexed by (row, column) node index. Unmeasured cells are NaN."""

    def __init__(self, rows: int, cols: int):
        self.values = np.full((rows, cols), np.nan, dtype=np.float64)

    @property
    def shape(self):
        return self.values.shape

    def __getitem__(self, index):
        return self.values[index]

    def __setitem__(self, index, value: float):
        self.values[index] = value

    def measured(self):
        return self.values[~np.isnan(self.values)]

    def sum(self) -> float:
        return float(self.measured().sum())

    def format(self, title: str) -> str:
        rows, cols = self.values.shape
        lines = [f"{title} (GB/s):"]
        label = "Src\\Dst"
        header = f"{label:<9}|"
        for j in range(cols):
            header += f" {j:^7} |"
        lines.append(header)
        lines.append("-" * len(header))
        for i in range(rows):
            row_str = f" {i:<7}|"
            for j in range(cols):
                value = self.values[i, j]
                val_str = "  N/A  " if math.isnan(value) else f"{value:<7.2f}"
                row_str += f" {val_str} |"
            lines.append(row_str)
        lines.append("-" * len(header))
        if self.measured().size:
            lines.append(f"SUM {title} {self.sum():.2f}")
        return "\n".join(lines)

    def __str__(self):
        return self.format("memcpy")
