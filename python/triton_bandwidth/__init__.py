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
from triton_bandwidth.bandwidth_matrix import BandwidthMatrix
from triton_bandwidth.config import RunConfig, parse_nbytes
from triton_bandwidth.copy_strategy import (
    BandwidthValue,
    ContextPreference,
    CopyKind,
    CopyStrategyCE,
    CopyStrategySM,
    make_copy_strategy,
)
from triton_bandwidth.errors import (
    CudaError,
    FatalError,
    PatternMismatchError,
    TestcaseError,
    TestcaseNotFoundError,
    WaivedError,
)
from triton_bandwidth.memcpy_operation import MemcpyOperation
from triton_bandwidth.memory_node import DeviceNode, HostNode, MemoryNode
from triton_bandwidth.statistic import SampleStatistic
from triton_bandwidth.testcases import (
    ALL_TESTCASES,
    TestcaseResult,
    TestcaseStatus,
    find_testcase,
    list_testcases,
    register_testcase,
    run_testcase,
)

__all__ = [
    "BandwidthMatrix",
    "BandwidthValue",
    "ContextPreference",
    "CopyKind",
    "CopyStrategyCE",
    "CopyStrategySM",
    "CudaError",
    "DeviceNode",
    "FatalError",
    "HostNode",
    "MemcpyOperation",
    "MemoryNode",
    "PatternMismatchError",
    "RunConfig",
    "SampleStatistic",
    "TestcaseError",
    "TestcaseNotFoundError",
    "TestcaseResult",
    "TestcaseStatus",
    "WaivedError",
    "ALL_TESTCASES",
    "find_testcase",
    "list_testcases",
    "make_copy_strategy",
    "parse_nbytes",
    "register_testcase",
    "run_testcase",
]
