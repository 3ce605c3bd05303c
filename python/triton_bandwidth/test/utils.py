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
import sys
from contextlib import redirect_stdout

import pytest
import torch


def bitwise_equal(x: torch.Tensor, y: torch.Tensor):
    return (torch.bitwise_xor(x.view(torch.int8), y.view(torch.int8)) == 0).all().item()


def assert_bitwise_equal(x: torch.Tensor, y: torch.Tensor):
    if not bitwise_equal(x, y):
        with redirect_stdout(sys.stderr):
            print(f"shape of x: {x.shape}")
            print(f"shape of y: {y.shape}")
            diff = (x.view(torch.int8) != y.view(torch.int8)).nonzero().flatten()
            print(f"{diff.numel()} byte(s) differ, first at {diff[:16].tolist()}")
        raise AssertionError("x and y are not bitwise equal")


def xorshift32(value: int) -> int:
    value ^= (value << 13) & 0xFFFFFFFF
    value ^= value >> 17
    value ^= (value << 5) & 0xFFFFFFFF
    return value


requires_cuda = pytest.mark.skipif(not torch.cuda.is_available(), reason="needs a CUDA device")
requires_multi_gpu = pytest.mark.skipif(not torch.cuda.is_available() or torch.cuda.device_count() < 2,
                                        reason="needs at least two CUDA devices")
