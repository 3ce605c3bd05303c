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
import os
import subprocess
from threading import Lock

import torch
from cuda.bindings import driver as cuda

from triton_bandwidth.utils import CUDA_CHECK, logger

_HAS_PYNVML = False
try:
    import pynvml
    _HAS_PYNVML = True
except ImportError:
    _HAS_PYNVML = False
    pynvml = None

_PYNVML_INITIALIZED = False

_LOCK = Lock()


def ensure_nvml_initialized():
    global _PYNVML_INITIALIZED
    if not _PYNVML_INITIALIZED:
        with _LOCK:
            if not _PYNVML_INITIALIZED:
                pynvml.nvmlInit()
                _PYNVML_INITIALIZED = True


def with_pynvml():
    if _HAS_PYNVML:
        ensure_nvml_initialized()
    return _HAS_PYNVML


def nvsmi(attrs, device_id=0, dtype: type = int):
    attrs = ','.join(attrs)
    cmd = ['nvidia-smi', '-i', str(device_id), '--query-gpu=' + attrs, '--format=csv,noheader,nounits']
    out = subprocess.check_output(cmd)
    ret = [x.strip() for x in out.decode("utf-8").split(',')]
    return [dtype(x) for x in ret]


def gpu_uuid_string(uuid_bytes: bytes) -> str:
    """Format 16-byte CUuuid as NVML-style 'GPU-xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx'."""
    h = uuid_bytes.hex()
    return f"GPU-{h[0:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"


@functools.lru_cache()
def _get_nvml_gpu_uuid(device_id: int):
    try:
        uuid = torch.cuda.get_device_properties(device_id).uuid
        return "GPU-" + str(uuid)
    except Exception:
        dev = CUDA_CHECK(cuda.cuDeviceGet(device_id), "cuDeviceGet")
        cuuuid = CUDA_CHECK(cuda.cuDeviceGetUuid(dev), "cuDeviceGetUuid")
        return gpu_uuid_string(bytes(cuuuid.bytes))


def get_physical_gpu_uuid(gpu_index: int):
    if with_pynvml():
        handle = pynvml.nvmlDeviceGetHandleByIndex(gpu_index)
        uuid = pynvml.nvmlDeviceGetUUID(handle)
        return uuid.decode() if isinstance(uuid, bytes) else uuid
    return nvsmi(["uuid"], gpu_index, dtype=str)[0]


def get_physical_device_count():
    if with_pynvml():
        return pynvml.nvmlDeviceGetCount()
    return nvsmi(["count"], dtype=int)[0]


@functools.lru_cache()
def _get_pynvml_device_id(device_id: int):
    """Map a CUDA ordinal (which honours CUDA_VISIBLE_DEVICES) to the NVML index."""
    uuid = _get_nvml_gpu_uuid(device_id)
    uuid_map = {get_physical_gpu_uuid(i): i for i in range(get_physical_device_count())}
    return uuid_map.get(uuid, device_id)


def _get_gpu_numa_node(gpu_index=0):
    try:
        pci_id = nvsmi(["pci.bus_id"], gpu_index, dtype=str)[0]
        pci_address = pci_id.replace("00000000:", "").lower()  # "00000000:17:00.0" → "17:00.0"

        numa_node_path = f"/sys/bus/pci/devices/0000:{pci_address}/numa_node"
        with open(numa_node_path, "r") as f:
            numa_node = int(f.read().strip())

        return max(numa_node, 0)
    except Exception as e:
        logger.warning(f"cannot read NUMA node of GPU {gpu_index}: {e}")
        return 0


@functools.lru_cache()
def get_numa_node(gpu_index):
    gpu_index = _get_pynvml_device_id(gpu_index)
    try:
        if with_pynvml():
            return pynvml.nvmlDeviceGetNumaNodeId(pynvml.nvmlDeviceGetHandleByIndex(gpu_index))
    except Exception:
        pass
    return _get_gpu_numa_node(gpu_index)


def _parse_cpulist(cpulist: str):
    cpus = set()
    for part in cpulist.strip().split(","):
        if not part:
            continue
        if "-" in part:
            lo, hi = part.split("-")
            cpus.update(range(int(lo), int(hi) + 1))
        else:
            cpus.add(int(part))
    return cpus


def set_optimal_cpu_affinity(gpu_index: int):
    """Pin the calling thread to the CPUs closest to `gpu_index`, so pinned host memory
    is first-touched on the GPU's NUMA node."""
    nvml_index = _get_pynvml_device_id(gpu_index)
    if with_pynvml():
        try:
            pynvml.nvmlDeviceSetCpuAffinity(pynvml.nvmlDeviceGetHandleByIndex(nvml_index))
            return
        except pynvml.NVMLError as e:
            logger.info(f"nvmlDeviceSetCpuAffinity failed for GPU {gpu_index}: {e}, falling back to sysfs")

    numa_node = get_numa_node(gpu_index)
    try:
        with open(f"/sys/devices/system/node/node{numa_node}/cpulist", "r") as f:
            cpus = _parse_cpulist(f.read())
    except OSError as e:
        logger.warning(f"cannot read cpulist of NUMA node {numa_node}: {e}")
        return
    if cpus:
        os.sched_setaffinity(0, cpus)


@functools.lru_cache()
def get_device_name(device_id):
    dev = CUDA_CHECK(cuda.cuDeviceGet(device_id), "cuDeviceGet")
    name = CUDA_CHECK(cuda.cuDeviceGetName(256, dev), "cuDeviceGetName")
    return name.split(b"\0", 1)[0].decode() if isinstance(name, bytes) else str(name)


def get_driver_version():
    if with_pynvml():
        version = pynvml.nvmlSystemGetDriverVersion()
        return version.decode() if isinstance(version, bytes) else version
    return nvsmi(["driver_version"], dtype=str)[0]


def get_cuda_driver_version():
    return CUDA_CHECK(cuda.cuDriverGetVersion(), "cuDriverGetVersion")


__all__ = [
    "get_numa_node",
    "set_optimal_cpu_affinity",
    "get_device_name",
    "get_driver_version",
    "get_cuda_driver_version",
]
