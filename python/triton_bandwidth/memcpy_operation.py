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
from typing import List, Optional, Sequence

import torch

from triton_bandwidth.config import RunConfig
from triton_bandwidth.copy_strategy import BandwidthValue, ContextPreference, CopyStrategy
from triton_bandwidth.cuda_utils import DeviceContext, Event, Stream
from triton_bandwidth.errors import FatalError
from triton_bandwidth.kernels import launch_spin_kernel
from triton_bandwidth.memory_node import MemoryNode
from triton_bandwidth.statistic import SampleStatistic
from triton_bandwidth.utils import logger

WARMUP_COUNT = 4
DST_SEED = 0xCAFEBABE
SRC_SEED = 0xBAADF00D


def select_context(src: MemoryNode, dst: MemoryNode, preference: ContextPreference) -> DeviceContext:
    """The context a link's copy is issued from: the preferred side, else whichever side has one."""
    if preference == ContextPreference.PREFER_SRC and src.context is not None:
        return src.context
    if dst.context is not None:
        return dst.context
    if src.context is not None:
        return src.context
    raise ValueError(f"no device context for {src.node_string} -> {dst.node_string}")


def bandwidth_bytes_per_sec(nbytes: int, loop_count: int, elapsed_ms: float) -> float:
    return nbytes * loop_count / (elapsed_ms * 1e-3)


def make_latch() -> torch.Tensor:
    # single writer (host), one reader per spin kernel
    return torch.zeros((1, ), dtype=torch.int32, pin_memory=True)


def destroy_all(resources) -> List[FatalError]:
    """Destroy every resource even if some fail; the failures are returned in order."""
    errors = []
    for resource in resources:
        if resource is None:
            continue
        try:
            resource.destroy()
        except FatalError as e:
            errors.append(e)
    return errors


class MemcpyOperation:
    """Runs concurrent copies over a list of links and reports their bandwidth in GB/s.

    Every link gets its own stream, held back by a spin kernel until all streams have
    their warm-up and timed copies queued; the host then flips one pinned flag so every
    link starts together.
    """

    def __init__(self, strategy: CopyStrategy, config: RunConfig):
        self.strategy = strategy
        self.config = config

    def run_pair(self, src: MemoryNode, dst: MemoryNode) -> float:
        return self.run([src], [dst])

    def run(self, src_nodes: Sequence[MemoryNode], dst_nodes: Sequence[MemoryNode]) -> float:
        if len(src_nodes) != len(dst_nodes) or not src_nodes:
            raise ValueError(f"expected matching non-empty node lists, got {len(src_nodes)} sources and "
                             f"{len(dst_nodes)} destinations")
        for src, dst in zip(src_nodes, dst_nodes):
            if src.buffer_size != dst.buffer_size:
                raise ValueError(f"{src.node_string} and {dst.node_string} have different buffer sizes")

        num_links = len(src_nodes)
        contexts = [select_context(s, d, self.strategy.ctx_preference) for s, d in zip(src_nodes, dst_nodes)]
        streams: List[Stream] = []
        start_events: List[Event] = []
        end_events: List[Event] = []
        total_end: Optional[Event] = None
        latch = make_latch()

        try:
            for ctx in contexts:
                streams.append(Stream(ctx))
                start_events.append(Event(ctx))
                end_events.append(Event(ctx))
            total_end = Event(contexts[0])

            # SM copies may truncate, so CE and SM sizes can differ
            adjusted_sizes = [
                self.strategy.adjusted_size(src.buffer_size, ctx) for src, ctx in zip(src_nodes, contexts)
            ]
            link_stats = [SampleStatistic(self.config.use_mean) for _ in range(num_links)]
            total_stat = SampleStatistic(self.config.use_mean)

            for n in range(self.config.sample_count):
                self._run_sample(n, src_nodes, dst_nodes, streams, start_events, end_events, total_end, latch,
                                 adjusted_sizes, link_stats, total_stat)
        except BaseException:
            latch.fill_(1)
            for err in destroy_all([total_end] + streams + start_events + end_events):
                logger.error(f"cleanup after a failed run: {err}")
            raise
        latch.fill_(1)
        errors = destroy_all([total_end] + streams + start_events + end_events)
        if errors:
            raise errors[0]

        if self.strategy.bandwidth_value == BandwidthValue.SUM:
            return sum(stat.value() for stat in link_stats) * 1e-9
        if self.strategy.bandwidth_value == BandwidthValue.TOTAL:
            return total_stat.value() * 1e-9
        return link_stats[0].value() * 1e-9

    def _run_sample(self, n, src_nodes, dst_nodes, streams, start_events, end_events, total_end, latch,
                    adjusted_sizes, link_stats, total_stat):
        strategy = self.strategy
        loop_count = strategy.loop_count
        total_bw = strategy.bandwidth_value == BandwidthValue.TOTAL

        latch.zero_()
        for src, dst, size in zip(src_nodes, dst_nodes, adjusted_sizes):
            dst.fill_pattern(size, DST_SEED)
            src.fill_pattern(size, SRC_SEED)

        for src, dst, stream in zip(src_nodes, dst_nodes, streams):
            with stream.activate():
                launch_spin_kernel(latch, stream.context.clock_rate_khz, self.config.spin_timeout_ms)
            strategy.copy(dst, src, stream, src.buffer_size, WARMUP_COUNT)

        # align every link's start to link 0
        start_events[0].record(streams[0])
        for stream, start in zip(streams[1:], start_events[1:]):
            stream.wait_event(start_events[0])
            start.record(stream)

        for i, (src, dst, stream) in enumerate(zip(src_nodes, dst_nodes, streams)):
            strategy.copy(dst, src, stream, src.buffer_size, loop_count)
            end_events[i].record(stream)
            if total_bw and i != 0:
                # stream 0 finishes last, so total_end marks the slowest link
                streams[0].wait_event(end_events[i])
        total_end.record(streams[0])

        latch.fill_(1)
        for stream in streams:
            stream.synchronize()

        if not self.config.skip_verification:
            for dst, size in zip(dst_nodes, adjusted_sizes):
                dst.verify_pattern(size, SRC_SEED)

        for i, (src, dst) in enumerate(zip(src_nodes, dst_nodes)):
            elapsed_ms = start_events[i].elapsed_ms(end_events[i])
            bandwidth = bandwidth_bytes_per_sec(adjusted_sizes[i], loop_count, elapsed_ms)
            link_stats[i](bandwidth)
            logger.info(f"\tSample {n}: {src.node_string} -> {dst.node_string}: {bandwidth * 1e-9:.2f} GB/s")

        if total_bw:
            elapsed_ms = start_events[0].elapsed_ms(total_end)
            bandwidth = bandwidth_bytes_per_sec(sum(adjusted_sizes), loop_count, elapsed_ms)
            total_stat(bandwidth)
            logger.info(f"\tSample {n}: Total Bandwidth : {bandwidth * 1e-9:.2f} GB/s")
