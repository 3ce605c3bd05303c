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
from typing import Iterable, Optional

import torch
import triton
import triton.language as tl
from triton.language import core

# one element is a uint4, i.e. four int32 words
ELEMENT_BYTES = 16
THREADS_PER_BLOCK = 512
SIMPLE_COPY_BLOCK = 512
UNROLL = 12


@core.extern
def ld_acquire_sys(ptr, _semantic=None):
    return tl.inline_asm_elementwise(
        asm="ld.global.acquire.sys.b32 $0, [$1];",
        constraints=("=r,l"),
        args=[ptr],
        dtype=tl.int32,
        is_pure=False,
        pack=1,
        _semantic=_semantic,
    )


@core.extern
def clock64(_semantic=None):
    return tl.inline_asm_elementwise(
        asm="mov.u64 $0, %clock64;",
        constraints=("=l"),
        args=[],
        dtype=tl.int64,
        is_pure=False,
        pack=1,
        _semantic=_semantic,
    )


@triton.jit(do_not_specialize=["n_elements", "loop_count"])
def simple_copy_kernel(
    dst_ptr,
    src_ptr,
    n_elements,
    loop_count,
    BLOCK: tl.constexpr,
):
    pid = tl.program_id(axis=0)
    elems = pid.to(tl.int64) * BLOCK + tl.arange(0, BLOCK)
    offs = elems[:, None] * 4 + tl.arange(0, 4)[None, :]
    mask = (elems < n_elements)[:, None]
    for _ in range(loop_count):
        data = tl.load(src_ptr + offs, mask=mask, cache_modifier=".cg")
        tl.store(dst_ptr + offs, data, mask=mask, cache_modifier=".cg")


@triton.jit(do_not_specialize=["chunk_elements", "loop_count"])
def striding_copy_kernel(
    dst_ptr,
    src_ptr,
    chunk_elements,
    loop_count,
    UNROLL: tl.constexpr,
    UNROLL_POW2: tl.constexpr,
    BLOCK: tl.constexpr,
):
    """Every lane copies `chunk_elements` elements spaced `total_threads` apart.

    The main loop loads UNROLL elements per lane before storing any of them; rows
    UNROLL..UNROLL_POW2 of the tile are masked off.
    """
    pid = tl.program_id(axis=0)
    total_threads = tl.num_programs(axis=0) * BLOCK
    lanes = (pid * BLOCK + tl.arange(0, BLOCK)).to(tl.int64)
    words = tl.arange(0, 4)
    rows = tl.arange(0, UNROLL_POW2)
    row_mask = (rows < UNROLL)[:, None, None]
    big_chunk = chunk_elements // UNROLL * UNROLL
    for _ in range(loop_count):
        for row in range(0, big_chunk, UNROLL):
            elems = (row + rows)[:, None].to(tl.int64) * total_threads + lanes[None, :]
            offs = elems[:, :, None] * 4 + words[None, None, :]
            pipe = tl.load(src_ptr + offs, mask=row_mask)
            tl.store(dst_ptr + offs, pipe, mask=row_mask)
        for row in range(big_chunk, chunk_elements):
            elems = row.to(tl.int64) * total_threads + lanes
            offs = elems[:, None] * 4 + words[None, :]
            tl.store(dst_ptr + offs, tl.load(src_ptr + offs))


@triton.jit(do_not_specialize=["timeout_clocks"])
def spin_kernel(latch_ptr, timeout_clocks, USE_TIMEOUT: tl.constexpr):
    end_time = clock64() + timeout_clocks
    released = ld_acquire_sys(latch_ptr)
    while released == 0:
        released = ld_acquire_sys(latch_ptr)
        if USE_TIMEOUT:
            released = released | (clock64() > end_time).to(tl.int32)


def total_thread_count(num_sms: int) -> int:
    return num_sms * THREADS_PER_BLOCK


def sm_copy_size(size: int, num_sms: int, default_buffer_size: int) -> int:
    """Bytes the SM copy moves for a `size`-byte request.

    Below `default_buffer_size` the streaming kernel copies every whole element;
    otherwise the strided kernel truncates to a multiple of the thread grid.
    """
    size_in_elements = size // ELEMENT_BYTES
    if size < default_buffer_size:
        return size_in_elements * ELEMENT_BYTES
    threads = total_thread_count(num_sms)
    return threads * (size_in_elements // threads) * ELEMENT_BYTES


def _as_words(buffer: torch.Tensor, nbytes: int) -> torch.Tensor:
    return buffer.view(torch.uint8)[:nbytes].view(torch.int32)


def copy_kernel(dst: torch.Tensor, src: torch.Tensor, size: int, num_sms: int, loop_count: int,
                default_buffer_size: int) -> int:
    """Launch the SM copy on the current torch stream and return the bytes moved per iteration."""
    nbytes = sm_copy_size(size, num_sms, default_buffer_size)
    if nbytes == 0:
        return 0
    n_elements = nbytes // ELEMENT_BYTES
    dst_words = _as_words(dst, nbytes)
    src_words = _as_words(src, nbytes)
    if size < default_buffer_size:
        grid = (triton.cdiv(n_elements, SIMPLE_COPY_BLOCK), )
        simple_copy_kernel[grid](
            dst_words,
            src_words,
            n_elements,
            loop_count,
            BLOCK=SIMPLE_COPY_BLOCK,
            num_warps=SIMPLE_COPY_BLOCK // 32,
        )
    else:
        chunk_elements = n_elements // total_thread_count(num_sms)
        striding_copy_kernel[(num_sms, )](
            dst_words,
            src_words,
            chunk_elements,
            loop_count,
            UNROLL=UNROLL,
            UNROLL_POW2=triton.next_power_of_2(UNROLL),
            BLOCK=THREADS_PER_BLOCK,
            num_warps=THREADS_PER_BLOCK // 32,
        )
    return nbytes


def spin_kernel_timeout_clocks(clock_rate_khz: int, timeout_ms: Optional[int]) -> int:
    # kHz is clocks per millisecond
    if timeout_ms is None:
        return 0
    return clock_rate_khz * timeout_ms


def launch_spin_kernel(latch: torch.Tensor, clock_rate_khz: int, timeout_ms: Optional[int]):
    """Block the current torch stream until `latch` becomes non-zero or the timeout passes.

    `latch` is a one-element int32 tensor in pinned host memory; `timeout_ms=None`
    spins without bound.
    """
    spin_kernel[(1, )](
        latch,
        spin_kernel_timeout_clocks(clock_rate_khz, timeout_ms),
        USE_TIMEOUT=timeout_ms is not None,
        num_warps=1,
    )


def preload_kernels(contexts: Iterable, timeout_ms: Optional[int]):
    """Compile and load every kernel on every device before any stream gets blocked.

    Loading a module in the middle of a test can wait on work queued behind a spin
    kernel and deadlock.
    """
    latch = torch.ones((1, ), dtype=torch.int32, pin_memory=True)
    for ctx in contexts:
        ctx.make_current()
        nbytes = total_thread_count(ctx.multiprocessor_count) * ELEMENT_BYTES
        src = torch.zeros((nbytes, ), dtype=torch.uint8, device=ctx.torch_device)
        dst = torch.empty_like(src)
        copy_kernel(dst, src, nbytes, ctx.multiprocessor_count, 1, default_buffer_size=nbytes + 1)
        copy_kernel(dst, src, nbytes, ctx.multiprocessor_count, 1, default_buffer_size=nbytes)
        launch_spin_kernel(latch, ctx.clock_rate_khz, timeout_ms)
        torch.cuda.synchronize(ctx.torch_device)
