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

from triton_bandwidth.bandwidth_matrix import BandwidthMatrix


def test_unmeasured_cells_are_na():
    matrix = BandwidthMatrix(2, 2)
    matrix[0, 1] = 12.5
    assert math.isnan(matrix[0, 0])
    text = matrix.format("memcpy CE GPU(row) -> GPU(column) bandwidth")
    assert "N/A" in text
    assert "12.50" in text
    assert text.splitlines()[0] == "memcpy CE GPU(row) -> GPU(column) bandwidth (GB/s):"


def test_reductions_ignore_unmeasured():
    matrix = BandwidthMatrix(1, 3)
    matrix[0, 0] = 1.0
    matrix[0, 2] = 3.0
    assert matrix.sum() == 4.0
    assert sorted(matrix.measured().tolist()) == [1.0, 3.0]
    assert matrix.shape == (1, 3)


def test_empty_matrix_has_no_sum_line():
    text = BandwidthMatrix(1, 1).format("memcpy")
    assert "SUM" not in text
