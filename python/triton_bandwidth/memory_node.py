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
import ctypes
import functools
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np
import torch
from cuda.bindings import driver as cuda

from triton_bandwidth.config import MiB, RunConfig
from triton_bandwidth.cuda_utils import DeviceContext, can_access_peer
from triton_bandwidth.errors import PatternMismatchError
from triton_bandwidth.nv_utils import set_optimal_cpu_affinity
from triton_bandwidth.utils import CUDA_CHECK, logger

PATTERN_CHUNK_BYTES = 2 * MiB
_MAX_REPORTED_MISMATCHES = 16


@functools.lru_cache(maxsize=8)
def xorshift_pattern(seed: int) -> np.ndarray:
    """The 2 MiB reference block: consecutive 32-bit xorshift states starting after `seed`."""
    value = seed & 0xFFFFFFFF
    words = []
    for _ in range(PATTERN_CHUNK_BYTES // 4):
        value ^= (value << 13) & 0xFFFFFFFF
        value ^= value >> 17
        value ^= (value << 5) & 0xFFFFFFFF
        words.append(value)
    pattern = np.array(words, dtype=np.uint32)
    pattern.setflags(write=False)
    return pattern


@functools.lru_cache(maxsize=8)
def _pinned_pattern(seed: int) -> torch.Tensor:
    return torch.from_numpy(xorshift_pattern(seed).view(np.uint8).copy()).pin_memory()


def mismatched_word_offsets(actual: torch.Tensor, expected: torch.Tensor) -> List[int]:
    """Byte offsets of every 4-byte word that differs between two uint8 CPU tensors."""
    nbytes = actual.numel()
    aligned = nbytes // 4 * 4
    diff = actual[:aligned].view(torch.int32) != expected[:aligned].view(torch.int32)
    offsets = (diff.nonzero().flatten() * 4).tolist()
    if aligned != nbytes and not torch.equal(actual[aligned:], expected[aligned:]):
        offsets.append(aligned)
    return offsets


class _DeviceArray:
    """A cuMemAlloc range seen by torch through the CUDA array interface."""

    def __init__(self, ptr: int, nbytes: int):
        self.__cuda_array_interface__ = {
            "shape": (nbytes, ),
            "typestr": "|u1",
            "data": (ptr, False),
            "strides": None,
            "version": 3,
        }


def alloc_host(nbytes: int) -> int:
    return int(CUDA_CHECK(cuda.cuMemHostAlloc(nbytes, cuda.CU_MEMHOSTALLOC_PORTABLE), "cuMemHostAlloc"))


def free_host(ptr: int):
    CUDA_CHECK(cuda.cuMemFreeHost(ptr), "cuMemFreeHost")


def alloc_device(nbytes: int) -> int:
    return int(CUDA_CHECK(cuda.cuMemAlloc(nbytes), "cuMemAlloc"))


def free_device(ptr: int):
    CUDA_CHECK(cuda.cuMemFree(ptr), "cuMemFree")


def host_tensor(ptr: int, nbytes: int) -> torch.Tensor:
    """Zero-copy uint8 view of `nbytes` of host memory at `ptr`."""
    array = np.ctypeslib.as_array((ctypes.c_uint8 * nbytes).from_address(ptr))
    return torch.from_numpy(array)


def device_tensor(ptr: int, nbytes: int, device: torch.device) -> torch.Tensor:
    return torch.as_tensor(_DeviceArray(ptr, nbytes), device=device)


class MemoryNode(ABC):
    """One buffer taking part in a copy, either side of a link."""

    def __init__(self, buffer_size: int):
        self.buffer_size = buffer_size
        self.buffer: Optional[torch.Tensor] = None

    @property
    @abstractmethod
    def context(self) -> Optional[DeviceContext]:
        ...

    @property
    @abstractmethod
    def node_index(self) -> int:
        ...

    @property
    @abstractmethod
    def node_string(self) -> str:
        ...

    def data_ptr(self) -> int:
        return self.buffer.data_ptr()

    def _activate(self):
        if self.context is not None:
            self.context.make_current()

    def _synchronize(self):
        if self.context is not None:
            torch.cuda.synchronize(self.context.torch_device)

    def fill_pattern(self, size: int, seed: int):
        pattern = _pinned_pattern(seed)
        self._activate()
        for offset in range(0, size, PATTERN_CHUNK_BYTES):
            nbytes = min(PATTERN_CHUNK_BYTES, size - offset)
            self.buffer[offset:offset + nbytes].copy_(pattern[:nbytes])
        self._synchronize()

    def verify_pattern(self, size: int, seed: int):
        """Check the first `size` bytes against the pattern of `seed`.

        Raises PatternMismatchError listing the byte offset of every corrupted word.
        """
        pattern = _pinned_pattern(seed)
        staging = None
        if self.context is not None:
            staging = torch.empty((PATTERN_CHUNK_BYTES, ), dtype=torch.uint8, pin_memory=True)
        self._activate()
        mismatches = []
        for offset in range(0, size, PATTERN_CHUNK_BYTES):
            nbytes = min(PATTERN_CHUNK_BYTES, size - offset)
            chunk = self.buffer[offset:offset + nbytes]
            if staging is not None:
                staging[:nbytes].copy_(chunk)
                chunk = staging[:nbytes]
            if not torch.equal(chunk, pattern[:nbytes]):
                mismatches.extend(offset + x for x in mismatched_word_offsets(chunk, pattern[:nbytes]))
        self._synchronize()

        if mismatches:
            for offset in mismatches[:_MAX_REPORTED_MISMATCHES]:
                logger.error(f"Invalid value when checking the pattern of {self.node_string} "
                             f"at offset [{offset}/{size}]")
            if len(mismatches) > _MAX_REPORTED_MISMATCHES:
                logger.error(f"... {len(mismatches) - _MAX_REPORTED_MISMATCHES} more mismatched words")
            raise PatternMismatchError(self.node_string, size, mismatches)

    @abstractmethod
    def close(self):
        """Free the allocation. Safe to call more than once."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        return f"{type(self).__name__}({self.node_string}, {self.buffer_size} bytes)"


class HostNode(MemoryNode):
    """Pinned host memory placed on the NUMA node of `target_device_id`.

    The memory is allocated by the driver rather than torch's pinned cache, so every
    node gets pages first-touched under its own CPU affinity and frees them on close.
    """

    def __init__(self, buffer_size: int, target_device_id: int, config: Optional[RunConfig] = None):
        super().__init__(buffer_size)
        if config is None or not config.disable_affinity:
            set_optimal_cpu_affinity(target_device_id)
        # the allocating context must outlive the allocation
        self._alloc_context = DeviceContext(target_device_id)
        try:
            self._alloc_context.make_current()
            self._ptr = alloc_host(buffer_size)
        except Exception:
            self._alloc_context.release()
            raise
        self.buffer = host_tensor(self._ptr, buffer_size)

    @property
    def context(self) -> Optional[DeviceContext]:
        return None

    @property
    def node_index(self) -> int:
        # the host is always the single row of a host/device matrix
        return 0

    @property
    def node_string(self) -> str:
        return "Host"

    def close(self):
        if self.buffer is None:
            return
        self.buffer = None
        try:
            self._alloc_context.make_current()
            free_host(self._ptr)
        finally:
            self._alloc_context.release()


class DeviceNode(MemoryNode):

    def __init__(self, buffer_size: int, device_id: int):
        super().__init__(buffer_size)
        self.device_id = device_id
        self._context = DeviceContext(device_id)
        try:
            self._context.make_current()
            self._ptr = alloc_device(buffer_size)
        except Exception:
            self._context.release()
            raise
        self.buffer = device_tensor(self._ptr, buffer_size, self._context.torch_device)

    @property
    def context(self) -> DeviceContext:
        return self._context

    @property
    def node_index(self) -> int:
        return self.device_id

    @property
    def node_string(self) -> str:
        return f"Device {self.device_id}"

    def enable_peer_access(self, peer: "DeviceNode") -> bool:
        """Let both devices access each other's memory. False if the hardware can't."""
        if not can_access_peer(self.device_id, peer.device_id):
            return False
        peer.context.enable_peer_access(self.context)
        self.context.enable_peer_access(peer.context)
        return True

    def close(self):
        if self.buffer is None:
            return
        self.buffer = None
        try:
            self._context.make_current()
            free_device(self._ptr)
        finally:
            self._context.release()
