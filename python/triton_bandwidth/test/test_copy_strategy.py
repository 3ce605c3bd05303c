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
from types import SimpleNamespace

import pytest

from triton_bandwidth.config import MiB, RunConfig
from triton_bandwidth.copy_strategy import (
    BandwidthValue,
    ContextPreference,
    CopyKind,
    CopyStrategyCE,
    CopyStrategySM,
    make_copy_strategy,
)
from triton_bandwidth.kernels import ELEMENT_BYTES, THREADS_PER_BLOCK, sm_copy_size, total_thread_count

DEFAULT = 64 * MiB


def test_total_thread_count():
    assert total_thread_count(132) == 132 * THREADS_PER_BLOCK


def test_small_copy_keeps_whole_elements():
    assert sm_copy_size(1000, 108, DEFAULT) == 992
    assert sm_copy_size(15, 108, DEFAULT) == 0
    assert sm_copy_size(4 * MiB, 108, DEFAULT) == 4 * MiB


def test_large_copy_exact_multiple():
    # 2 SMs * 512 threads divides 64 MiB of 16-byte elements evenly
    assert sm_copy_size(64 * MiB, 2, DEFAULT) == 64 * MiB
    assert sm_copy_size(64 * MiB + 100, 2, DEFAULT) == 64 * MiB


def test_large_copy_truncates_to_thread_grid():
    threads = total_thread_count(3)
    nbytes = sm_copy_size(64 * MiB, 3, DEFAULT)
    assert nbytes == 2730 * threads * ELEMENT_BYTES
    assert nbytes <= 64 * MiB
    assert (nbytes // ELEMENT_BYTES) % threads == 0


@pytest.mark.parametrize("size", [1000, 4 * MiB, 64 * MiB, 64 * MiB + 12345, 256 * MiB + 7])
@pytest.mark.parametrize("num_sms", [1, 3, 108, 132])
def test_sm_copy_size_is_idempotent(size, num_sms):
    once = sm_copy_size(size, num_sms, DEFAULT)
    assert once <= size
    assert sm_copy_size(once, num_sms, DEFAULT) == once


def test_ce_adjusted_size_is_identity():
    strategy = CopyStrategyCE(loop_count=16)
    assert strategy.adjusted_size(12345) == 12345
    assert strategy.adjusted_size(64 * MiB, SimpleNamespace(multiprocessor_count=3)) == 64 * MiB


def test_sm_adjusted_size_uses_context_sms():
    strategy = CopyStrategySM(loop_count=16)
    context = SimpleNamespace(multiprocessor_count=3)
    assert strategy.adjusted_size(64 * MiB, context) == sm_copy_size(64 * MiB, 3, DEFAULT)


def test_sm_adjusted_size_needs_context():
    with pytest.raises(ValueError):
        CopyStrategySM(loop_count=16).adjusted_size(64 * MiB)


def test_make_copy_strategy():
    config = RunConfig(loop_count=7)
    ce = make_copy_strategy(CopyKind.CE, config)
    assert isinstance(ce, CopyStrategyCE)
    assert ce.loop_count == 7
    assert ce.ctx_preference == ContextPreference.PREFER_SRC
    assert ce.bandwidth_value == BandwidthValue.USE_FIRST

    sm = make_copy_strategy(CopyKind.SM, config, ContextPreference.PREFER_DST, BandwidthValue.TOTAL)
    assert isinstance(sm, CopyStrategySM)
    assert sm.ctx_preference == ContextPreference.PREFER_DST
    assert sm.bandwidth_value == BandwidthValue.TOTAL
    assert sm.default_buffer_size == config.default_buffer_size
