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
import functools
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from triton_bandwidth.bandwidth_matrix import BandwidthMatrix
from triton_bandwidth.config import RunConfig
from triton_bandwidth.copy_strategy import BandwidthValue, ContextPreference, CopyKind, make_copy_strategy
from triton_bandwidth.cuda_utils import get_device_count
from triton_bandwidth.errors import TestcaseNotFoundError, WaivedError
from triton_bandwidth.memcpy_operation import MemcpyOperation
from triton_bandwidth.memory_node import DeviceNode, HostNode

PREFER_SRC = ContextPreference.PREFER_SRC
PREFER_DST = ContextPreference.PREFER_DST


@dataclass(frozen=True)
class Testcase:
    key: str
    description: str
    title: str
    func: Callable[[RunConfig], BandwidthMatrix]
    min_devices: int = 1

    __test__ = False

    def filter(self, device_count: int) -> bool:
        return device_count >= self.min_devices


ALL_TESTCASES: Dict[str, Testcase] = {}


def register_testcase(key: str, description: str, title: str, min_devices: int = 1):

    def wrapper(func):
        assert key not in ALL_TESTCASES, f"duplicated testcase {key}"
        ALL_TESTCASES[key] = Testcase(key, description, title, func, min_devices)
        return func

    return wrapper


def _operation(kind: CopyKind, config: RunConfig, ctx_preference=PREFER_SRC,
               bandwidth_value=BandwidthValue.USE_FIRST) -> MemcpyOperation:
    return MemcpyOperation(make_copy_strategy(kind, config, ctx_preference, bandwidth_value), config)


def _other_devices(device_id: int, device_count: int) -> List[int]:
    return [d for d in range(device_count) if d != device_id]


def host_to_device_memcpy(kind: CopyKind, config: RunConfig) -> BandwidthMatrix:
    device_count = get_device_count()
    matrix = BandwidthMatrix(1, device_count)
    op = _operation(kind, config)
    for dev in range(device_count):
        with HostNode(config.buffer_size, dev, config) as host, DeviceNode(config.buffer_size, dev) as device:
            matrix[0, dev] = op.run_pair(host, device)
    return matrix


def device_to_host_memcpy(kind: CopyKind, config: RunConfig) -> BandwidthMatrix:
    device_count = get_device_count()
    matrix = BandwidthMatrix(1, device_count)
    op = _operation(kind, config)
    for dev in range(device_count):
        with HostNode(config.buffer_size, dev, config) as host, DeviceNode(config.buffer_size, dev) as device:
            matrix[0, dev] = op.run_pair(device, host)
    return matrix


def _host_device_bidirectional(kind: CopyKind, config: RunConfig, host_to_device: bool) -> BandwidthMatrix:
    device_count = get_device_count()
    matrix = BandwidthMatrix(1, device_count)
    op = _operation(kind, config)
    for dev in range(device_count):
        with ExitStack() as stack:
            host1 = stack.enter_context(HostNode(config.buffer_size, dev, config))
            host2 = stack.enter_context(HostNode(config.buffer_size, dev, config))
            device1 = stack.enter_context(DeviceNode(config.buffer_size, dev))
            device2 = stack.enter_context(DeviceNode(config.buffer_size, dev))
            if host_to_device:
                matrix[0, dev] = op.run([host1, device2], [device1, host2])
            else:
                matrix[0, dev] = op.run([device1, host2], [host1, device2])
    return matrix


def host_to_device_bidirectional_memcpy(kind: CopyKind, config: RunConfig) -> BandwidthMatrix:
    return _host_device_bidirectional(kind, config, host_to_device=True)


def device_to_host_bidirectional_memcpy(kind: CopyKind, config: RunConfig) -> BandwidthMatrix:
    return _host_device_bidirectional(kind, config, host_to_device=False)


def _device_pairs(kind: CopyKind, config: RunConfig, ctx_preference: ContextPreference, num_buffers: int,
                  links: Callable[[List[DeviceNode], List[DeviceNode]], Tuple[list, list]]) -> BandwidthMatrix:
    """Measure every ordered (device, peer) pair; pairs without peer access stay N/A.

    Waived when no pair has peer access at all.
    """
    device_count = get_device_count()
    matrix = BandwidthMatrix(device_count, device_count)
    op = _operation(kind, config, ctx_preference)
    for dev in range(device_count):
        for peer in _other_devices(dev, device_count):
            with ExitStack() as stack:
                dev_nodes = [stack.enter_context(DeviceNode(config.buffer_size, dev)) for _ in range(num_buffers)]
                peer_nodes = [stack.enter_context(DeviceNode(config.buffer_size, peer)) for _ in range(num_buffers)]
                if not dev_nodes[0].enable_peer_access(peer_nodes[0]):
                    continue
                src_nodes, dst_nodes = links(dev_nodes, peer_nodes)
                matrix[dev, peer] = op.run(src_nodes, dst_nodes)
    if not matrix.measured().size:
        raise WaivedError("no device pair supports peer access")
    return matrix


def device_to_device_memcpy_read(kind: CopyKind, config: RunConfig) -> BandwidthMatrix:
    return _device_pairs(kind, config, PREFER_DST, 1, lambda dev, peer: ([peer[0]], [dev[0]]))


def device_to_device_memcpy_write(kind: CopyKind, config: RunConfig) -> BandwidthMatrix:
    return _device_pairs(kind, config, PREFER_SRC, 1, lambda dev, peer: ([dev[0]], [peer[0]]))


def device_to_device_bidirectional_memcpy_read(kind: CopyKind, config: RunConfig) -> BandwidthMatrix:
    return _device_pairs(kind, config, PREFER_DST, 2, lambda dev, peer: ([peer[0], dev[1]], [dev[0], peer[1]]))


def device_to_device_bidirectional_memcpy_write(kind: CopyKind, config: RunConfig) -> BandwidthMatrix:
    return _device_pairs(kind, config, PREFER_SRC, 2, lambda dev, peer: ([dev[0], peer[1]], [peer[0], dev[1]]))


def _all_host(kind: CopyKind, config: RunConfig, to_host: bool, bidirectional: bool) -> BandwidthMatrix:
    """Every device copies to/from the host at once; the measured device's link comes first."""
    device_count = get_device_count()
    matrix = BandwidthMatrix(1, device_count)
    op = _operation(kind, config)
    for dev in range(device_count):
        with ExitStack() as stack:

            def host(d):
                return stack.enter_context(HostNode(config.buffer_size, d, config))

            def device(d):
                return stack.enter_context(DeviceNode(config.buffer_size, d))

            src_nodes, dst_nodes = [], []
            for d in [dev] + _other_devices(dev, device_count):
                if to_host:
                    src_nodes.append(device(d))
                    dst_nodes.append(host(d))
                else:
                    src_nodes.append(host(d))
                    dst_nodes.append(device(d))
            if bidirectional:
                for d in range(device_count):
                    if to_host:
                        src_nodes.append(host(d))
                        dst_nodes.append(device(d))
                    else:
                        src_nodes.append(device(d))
                        dst_nodes.append(host(d))
            matrix[0, dev] = op.run(src_nodes, dst_nodes)
    return matrix


def all_to_host_memcpy(kind: CopyKind, config: RunConfig) -> BandwidthMatrix:
    return _all_host(kind, config, to_host=True, bidirectional=False)


def all_to_host_bidirectional_memcpy(kind: CopyKind, config: RunConfig) -> BandwidthMatrix:
    return _all_host(kind, config, to_host=True, bidirectional=True)


def host_to_all_memcpy(kind: CopyKind, config: RunConfig) -> BandwidthMatrix:
    return _all_host(kind, config, to_host=False, bidirectional=False)


def host_to_all_bidirectional_memcpy(kind: CopyKind, config: RunConfig) -> BandwidthMatrix:
    return _all_host(kind, config, to_host=False, bidirectional=True)


def _one_device_fan(kind: CopyKind, config: RunConfig, ctx_preference: ContextPreference,
                    bandwidth_value: BandwidthValue, into_device: bool) -> BandwidthMatrix:
    """All peers copy into one device, or one device copies out to all peers, concurrently."""
    device_count = get_device_count()
    matrix = BandwidthMatrix(1, device_count)
    op = _operation(kind, config, ctx_preference, bandwidth_value)
    for dev in range(device_count):
        with ExitStack() as stack:
            src_nodes, dst_nodes = [], []
            for peer in _other_devices(dev, device_count):
                local = stack.enter_context(DeviceNode(config.buffer_size, dev))
                remote = stack.enter_context(DeviceNode(config.buffer_size, peer))
                if not local.enable_peer_access(remote):
                    continue
                if into_device:
                    src_nodes.append(remote)
                    dst_nodes.append(local)
                else:
                    src_nodes.append(local)
                    dst_nodes.append(remote)
            if src_nodes:
                matrix[0, dev] = op.run(src_nodes, dst_nodes)
    if not matrix.measured().size:
        raise WaivedError("no device pair supports peer access")
    return matrix


def all_to_one_write(kind: CopyKind, config: RunConfig) -> BandwidthMatrix:
    return _one_device_fan(kind, config, PREFER_SRC, BandwidthValue.SUM, into_device=True)


def all_to_one_read(kind: CopyKind, config: RunConfig) -> BandwidthMatrix:
    return _one_device_fan(kind, config, PREFER_DST, BandwidthValue.SUM, into_device=True)


def one_to_all_write(kind: CopyKind, config: RunConfig) -> BandwidthMatrix:
    return _one_device_fan(kind, config, PREFER_SRC, BandwidthValue.TOTAL, into_device=False)


def one_to_all_read(kind: CopyKind, config: RunConfig) -> BandwidthMatrix:
    return _one_device_fan(kind, config, PREFER_DST, BandwidthValue.TOTAL, into_device=False)


# (function, description, matrix title, min devices, kinds)
_PATTERNS = [
    (host_to_device_memcpy, "Host to device memcpy, measured one device at a time.",
     "memcpy {engine} CPU(row) -> GPU(column) bandwidth", 1, (CopyKind.CE, CopyKind.SM)),
    (device_to_host_memcpy, "Device to host memcpy, measured one device at a time.",
     "memcpy {engine} CPU(row) <- GPU(column) bandwidth", 1, (CopyKind.CE, CopyKind.SM)),
    (host_to_device_bidirectional_memcpy, "Host to device memcpy while a device to host copy runs on the same "
     "device. Only the host to device copy is reported.", "memcpy {engine} CPU(row) -> GPU(column) bandwidth", 1,
     (CopyKind.CE, )),
    (device_to_host_bidirectional_memcpy, "Device to host memcpy while a host to device copy runs on the same "
     "device. Only the device to host copy is reported.", "memcpy {engine} CPU(row) <- GPU(column) bandwidth", 1,
     (CopyKind.CE, )),
    (device_to_device_memcpy_read, "Every device reads from every peer, one pair at a time.",
     "memcpy {engine} GPU(row) <- GPU(column) bandwidth", 2, (CopyKind.CE, CopyKind.SM)),
    (device_to_device_memcpy_write, "Every device writes to every peer, one pair at a time.",
     "memcpy {engine} GPU(row) -> GPU(column) bandwidth", 2, (CopyKind.CE, CopyKind.SM)),
    (device_to_device_bidirectional_memcpy_read, "Two devices read from each other at the same time. "
     "The row device's read is reported.", "memcpy {engine} GPU(row) <- GPU(column) bandwidth", 2,
     (CopyKind.CE, CopyKind.SM)),
    (device_to_device_bidirectional_memcpy_write, "Two devices write to each other at the same time. "
     "The row device's write is reported.", "memcpy {engine} GPU(row) -> GPU(column) bandwidth", 2,
     (CopyKind.CE, CopyKind.SM)),
    (all_to_host_memcpy, "Every device copies to the host at once. Each column reports one device.",
     "memcpy {engine} CPU(row) <- GPU(column) bandwidth", 1, (CopyKind.CE, CopyKind.SM)),
    (all_to_host_bidirectional_memcpy, "Every device copies to and from the host at once. Each column reports "
     "one device's device to host copy.", "memcpy {engine} CPU(row) <- GPU(column) bandwidth", 1,
     (CopyKind.CE, CopyKind.SM)),
    (host_to_all_memcpy, "The host copies to every device at once. Each column reports one device.",
     "memcpy {engine} CPU(row) -> GPU(column) bandwidth", 1, (CopyKind.CE, CopyKind.SM)),
    (host_to_all_bidirectional_memcpy, "The host copies to and from every device at once. Each column reports "
     "one device's host to device copy.", "memcpy {engine} CPU(row) -> GPU(column) bandwidth", 1,
     (CopyKind.CE, CopyKind.SM)),
    (all_to_one_write, "Every peer writes to the column device at once. Reports the sum of all links.",
     "memcpy {engine} All GPUs -> GPU(column) total bandwidth", 2, (CopyKind.CE, CopyKind.SM)),
    (all_to_one_read, "The column device reads from every peer at once. Reports the sum of all links.",
     "memcpy {engine} All GPUs <- GPU(column) total bandwidth", 2, (CopyKind.CE, CopyKind.SM)),
    (one_to_all_write, "The column device writes to every peer at once. Reports all bytes over the time of the "
     "slowest link.", "memcpy {engine} GPU(column) -> All GPUs total bandwidth", 2, (CopyKind.CE, CopyKind.SM)),
    (one_to_all_read, "Every peer reads from the column device at once. Reports all bytes over the time of the "
     "slowest link.", "memcpy {engine} GPU(column) <- All GPUs total bandwidth", 2, (CopyKind.CE, CopyKind.SM)),
]


def _register_patterns():
    for kind in CopyKind:
        for func, description, title, min_devices, kinds in _PATTERNS:
            if kind not in kinds:
                continue
            register_testcase(
                f"{func.__name__}_{kind.value}",
                description,
                title.format(engine=kind.name),
                min_devices,
            )(functools.partial(func, kind))


_register_patterns()


class TestcaseStatus(enum.Enum):
    PASSED = "passed"
    WAIVED = "waived"
    ERROR = "error"

    __test__ = False


@dataclass
class TestcaseResult:
    selector: str
    status: TestcaseStatus
    key: Optional[str] = None
    matrix: Optional[BandwidthMatrix] = None
    message: Optional[str] = None

    __test__ = False


def list_testcases(registry: Optional[Dict[str, Testcase]] = None) -> Iterator[Tuple[int, str, str]]:
    registry = ALL_TESTCASES if registry is None else registry
    for index, testcase in enumerate(registry.values()):
        yield index, testcase.key, testcase.description


def find_testcase(selector: str, registry: Optional[Dict[str, Testcase]] = None) -> Testcase:
    """Resolve a testcase by key or by its index in the listing."""
    registry = ALL_TESTCASES if registry is None else registry
    try:
        index = int(selector)
    except ValueError:
        if selector not in registry:
            raise TestcaseNotFoundError(selector)
        return registry[selector]
    testcases = list(registry.values())
    if not 0 <= index < len(testcases):
        raise TestcaseNotFoundError(selector, f"Testcase index {selector} out of bound!")
    return testcases[index]


def run_testcase(selector: str, config: RunConfig, registry: Optional[Dict[str, Testcase]] = None,
                 device_count: Optional[int] = None) -> TestcaseResult:
    """Run one testcase. Unknown selectors and waived tests come back as results; data
    corruption and driver failures propagate."""
    try:
        testcase = find_testcase(selector, registry)
    except TestcaseNotFoundError as e:
        print(f"ERROR: {e}")
        return TestcaseResult(selector, TestcaseStatus.ERROR, message=str(e))

    if device_count is None:
        device_count = get_device_count()
    if not testcase.filter(device_count):
        print(f"Waiving {testcase.key}.\n")
        return TestcaseResult(selector, TestcaseStatus.WAIVED, key=testcase.key,
                              message=f"needs {testcase.min_devices} device(s), found {device_count}")

    print(f"Running {testcase.key}.")
    try:
        matrix = testcase.func(config)
    except WaivedError as e:
        print(f"Waiving {testcase.key}.\n")
        return TestcaseResult(selector, TestcaseStatus.WAIVED, key=testcase.key, message=str(e))

    print(matrix.format(testcase.title))
    print()
    return TestcaseResult(selector, TestcaseStatus.PASSED, key=testcase.key, matrix=matrix)
