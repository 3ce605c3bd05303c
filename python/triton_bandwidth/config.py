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
import dataclasses
from dataclasses import dataclass
from typing import Optional

from triton_bandwidth.utils import get_bool_env, get_int_env

MiB = 1024 * 1024

DEFAULT_BUFFER_SIZE_MIB = 64
DEFAULT_LOOP_COUNT = 16
DEFAULT_SAMPLE_COUNT = 3
DEFAULT_SPIN_TIMEOUT_MS = 10000


def parse_nbytes(nbytes: str):
    try:
        val = int(nbytes)
        return val
    except Exception:
        nbytes = nbytes.upper()
        # nbytes maybe 1k or 2M or 3g like this
        if nbytes.endswith("K"):
            return int(nbytes[:-1]) * 1024
        elif nbytes.endswith("M"):
            return int(nbytes[:-1]) * 1024 * 1024
        elif nbytes.endswith("G"):
            return int(nbytes[:-1]) * 1024 * 1024 * 1024
        else:
            raise ValueError(f"Unsupported nbytes format: {nbytes}")


@dataclass(frozen=True)
class RunConfig:
    """Global run parameters, read once at startup and passed to every component.

    `default_buffer_size` is the threshold below which SM copies use the streaming
    kernel instead of the strided one.
    """
    buffer_size: int = DEFAULT_BUFFER_SIZE_MIB * MiB
    loop_count: int = DEFAULT_LOOP_COUNT
    sample_count: int = DEFAULT_SAMPLE_COUNT
    skip_verification: bool = False
    use_mean: bool = False
    disable_affinity: bool = False
    verbose: bool = False
    spin_timeout_ms: Optional[int] = DEFAULT_SPIN_TIMEOUT_MS
    default_buffer_size: int = DEFAULT_BUFFER_SIZE_MIB * MiB

    def __post_init__(self):
        if self.buffer_size <= 0:
            raise ValueError(f"buffer_size must be positive, got {self.buffer_size}")
        if self.loop_count <= 0:
            raise ValueError(f"loop_count must be positive, got {self.loop_count}")
        if self.sample_count <= 0:
            raise ValueError(f"sample_count must be positive, got {self.sample_count}")
        if self.spin_timeout_ms is not None and self.spin_timeout_ms <= 0:
            raise ValueError(f"spin_timeout_ms must be positive or None, got {self.spin_timeout_ms}")

    @classmethod
    def from_env(cls, **overrides) -> "RunConfig":
        config = cls(
            buffer_size=get_int_env("TRITON_BW_BUFFER_SIZE_MIB", DEFAULT_BUFFER_SIZE_MIB) * MiB,
            loop_count=get_int_env("TRITON_BW_LOOP_COUNT", DEFAULT_LOOP_COUNT),
            sample_count=get_int_env("TRITON_BW_SAMPLES", DEFAULT_SAMPLE_COUNT),
            skip_verification=get_bool_env("TRITON_BW_SKIP_VERIFICATION", False),
            use_mean=get_bool_env("TRITON_BW_USE_MEAN", False),
            disable_affinity=get_bool_env("TRITON_BW_DISABLE_AFFINITY", False),
            verbose=get_bool_env("TRITON_BW_VERBOSE", False),
        )
        return dataclasses.replace(config, **overrides)

    def replace(self, **changes) -> "RunConfig":
        return dataclasses.replace(self, **changes)
