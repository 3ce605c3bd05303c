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
import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from cuda.bindings import driver as cuda

from triton_bandwidth.config import DEFAULT_BUFFER_SIZE_MIB, MiB, RunConfig
from triton_bandwidth.cuda_utils import DeviceContext, Stream
from triton_bandwidth.kernels import copy_kernel, sm_copy_size
from triton_bandwidth.memory_node import MemoryNode
from triton_bandwidth.utils import CUDA_CHECK


class ContextPreference(enum.Enum):
    PREFER_SRC = "src"
    PREFER_DST = "dst"


class BandwidthValue(enum.Enum):
    # report link 0 only, the sum of every link, or all bytes over the wall-clock span
    USE_FIRST = "first"
    SUM = "sum"
    TOTAL = "total"


class CopyKind(enum.Enum):
    CE = "ce"
    SM = "sm"


@dataclass(frozen=True)
class CopyStrategy(ABC):
    loop_count: int
    ctx_preference: ContextPreference = ContextPreference.PREFER_SRC
    bandwidth_value: BandwidthValue = BandwidthValue.USE_FIRST

    @abstractmethod
    def adjusted_size(self, size: int, context: Optional[DeviceContext] = None) -> int:
        """Bytes `copy` will really move for a `size`-byte request on `context`."""

    @abstractmethod
    def copy(self, dst: MemoryNode, src: MemoryNode, stream: Stream, size: int, loop_count: int) -> int:
        """Enqueue `loop_count` copies on `stream` and return the bytes moved per copy."""


@dataclass(frozen=True)
class CopyStrategyCE(CopyStrategy):
    """Copies through the copy engines with cuMemcpyAsync."""

    def adjusted_size(self, size: int, context: Optional[DeviceContext] = None) -> int:
        return size

    def copy(self, dst: MemoryNode, src: MemoryNode, stream: Stream, size: int, loop_count: int) -> int:
        stream.context.make_current()
        for _ in range(loop_count):
            CUDA_CHECK(cuda.cuMemcpyAsync(dst.data_ptr(), src.data_ptr(), size, stream.handle), "cuMemcpyAsync")
        return size


@dataclass(frozen=True)
class CopyStrategySM(CopyStrategy):
    """Copies with the triton copy kernels running on the SMs of the stream's device."""

    default_buffer_size: int = DEFAULT_BUFFER_SIZE_MIB * MiB

    def adjusted_size(self, size: int, context: Optional[DeviceContext] = None) -> int:
        if context is None:
            raise ValueError("SM copies need a device context")
        return sm_copy_size(size, context.multiprocessor_count, self.default_buffer_size)

    def copy(self, dst: MemoryNode, src: MemoryNode, stream: Stream, size: int, loop_count: int) -> int:
        with stream.activate():
            return copy_kernel(dst.buffer, src.buffer, size, stream.context.multiprocessor_count, loop_count,
                               self.default_buffer_size)


def make_copy_strategy(kind: CopyKind, config: RunConfig,
                       ctx_preference: ContextPreference = ContextPreference.PREFER_SRC,
                       bandwidth_value: BandwidthValue = BandwidthValue.USE_FIRST) -> CopyStrategy:
    if kind == CopyKind.CE:
        return CopyStrategyCE(config.loop_count, ctx_preference, bandwidth_value)
    return CopyStrategySM(config.loop_count, ctx_preference, bandwidth_value, config.default_buffer_size)
