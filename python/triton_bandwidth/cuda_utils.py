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
import functools
from contextlib import contextmanager

import torch
from cuda.bindings import driver as cuda

from triton_bandwidth.utils import CUDA_CHECK


@functools.lru_cache(maxsize=1)
def ensure_cuda_initialized():
    CUDA_CHECK(cuda.cuInit(0), "cuInit")
    return True


def get_device_count() -> int:
    ensure_cuda_initialized()
    return CUDA_CHECK(cuda.cuDeviceGetCount(), "cuDeviceGetCount")


def can_access_peer(device_id: int, peer_device_id: int) -> bool:
    dev = CUDA_CHECK(cuda.cuDeviceGet(device_id), "cuDeviceGet")
    peer_dev = CUDA_CHECK(cuda.cuDeviceGet(peer_device_id), "cuDeviceGet")
    return bool(CUDA_CHECK(cuda.cuDeviceCanAccessPeer(dev, peer_dev), "cuDeviceCanAccessPeer"))


class DeviceContext:
    """The retained primary context of one device.

    torch and triton also run on primary contexts, so making this context current keeps
    the driver, torch's current device and triton's launch target in agreement.
    """

    def __init__(self, device_id: int):
        ensure_cuda_initialized()
        self.device_id = device_id
        self.device = CUDA_CHECK(cuda.cuDeviceGet(device_id), "cuDeviceGet")
        self.handle = CUDA_CHECK(cuda.cuDevicePrimaryCtxRetain(self.device), "cuDevicePrimaryCtxRetain")
        self._retained = True

    @property
    def torch_device(self) -> torch.device:
        return torch.device("cuda", self.device_id)

    def make_current(self):
        torch.cuda.set_device(self.device_id)
        CUDA_CHECK(cuda.cuCtxSetCurrent(self.handle), "cuCtxSetCurrent")

    def _attribute(self, attribute) -> int:
        return CUDA_CHECK(cuda.cuDeviceGetAttribute(attribute, self.device), "cuDeviceGetAttribute")

    @functools.cached_property
    def multiprocessor_count(self) -> int:
        return self._attribute(cuda.CUdevice_attribute.CU_DEVICE_ATTRIBUTE_MULTIPROCESSOR_COUNT)

    @functools.cached_property
    def clock_rate_khz(self) -> int:
        return self._attribute(cuda.CUdevice_attribute.CU_DEVICE_ATTRIBUTE_CLOCK_RATE)

    def enable_peer_access(self, peer: "DeviceContext"):
        """Allow kernels running in this context to access `peer`'s memory."""
        self.make_current()
        err, = cuda.cuCtxEnablePeerAccess(peer.handle, 0)
        if err != cuda.CUresult.CUDA_ERROR_PEER_ACCESS_ALREADY_ENABLED:
            CUDA_CHECK(err, "cuCtxEnablePeerAccess")

    def release(self):
        if self._retained:
            self._retained = False
            CUDA_CHECK(cuda.cuDevicePrimaryCtxRelease(self.device), "cuDevicePrimaryCtxRelease")

    def __repr__(self):
        return f"DeviceContext(device_id={self.device_id})"


class Stream:
    """A non-blocking driver stream created in `context`."""

    def __init__(self, context: DeviceContext):
        self.context = context
        context.make_current()
        self.handle = CUDA_CHECK(cuda.cuStreamCreate(int(cuda.CUstream_flags.CU_STREAM_NON_BLOCKING)),
                                 "cuStreamCreate")
        self._torch_stream = None

    @property
    def torch_stream(self) -> torch.cuda.ExternalStream:
        if self._torch_stream is None:
            self._torch_stream = torch.cuda.ExternalStream(int(self.handle), device=self.context.torch_device)
        return self._torch_stream

    @contextmanager
    def activate(self):
        """Make the owning context current and route torch/triton launches to this stream."""
        self.context.make_current()
        with torch.cuda.stream(self.torch_stream):
            yield self

    def wait_event(self, event: "Event"):
        self.context.make_current()
        CUDA_CHECK(cuda.cuStreamWaitEvent(self.handle, event.handle, 0), "cuStreamWaitEvent")

    def synchronize(self):
        self.context.make_current()
        CUDA_CHECK(cuda.cuStreamSynchronize(self.handle), "cuStreamSynchronize")

    def destroy(self):
        self.context.make_current()
        self._torch_stream = None
        CUDA_CHECK(cuda.cuStreamDestroy(self.handle), "cuStreamDestroy")


class Event:
    """A timing event created in `context`."""

    def __init__(self, context: DeviceContext):
        self.context = context
        context.make_current()
        self.handle = CUDA_CHECK(cuda.cuEventCreate(int(cuda.CUevent_flags.CU_EVENT_DEFAULT)), "cuEventCreate")

    def record(self, stream: Stream):
        stream.context.make_current()
        CUDA_CHECK(cuda.cuEventRecord(self.handle, stream.handle), "cuEventRecord")

    def elapsed_ms(self, end: "Event") -> float:
        self.context.make_current()
        return float(CUDA_CHECK(cuda.cuEventElapsedTime(self.handle, end.handle), "cuEventElapsedTime"))

    def destroy(self):
        self.context.make_current()
        CUDA_CHECK(cuda.cuEventDestroy(self.handle), "cuEventDestroy")
