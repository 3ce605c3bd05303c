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
import logging
import os
from contextlib import contextmanager

from cuda.bindings import driver as cuda

from triton_bandwidth.errors import CudaError

logger = logging.getLogger("triton_bandwidth")
logger.setLevel(logging.INFO)
logger.propagate = False
formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

stream_handler = logging.StreamHandler()
stream_handler.setFormatter(formatter)
stream_handler.setLevel(logging.WARN)
logger.addHandler(stream_handler)


def set_verbose(verbose: bool):
    stream_handler.setLevel(logging.INFO if verbose else logging.WARN)


@contextmanager
def log_to_file(filename: str):
    handler = logging.FileHandler(filename)
    handler.setFormatter(formatter)
    handler.setLevel(logging.INFO)
    logger.addHandler(handler)
    try:
        yield
    finally:
        logger.removeHandler(handler)


def get_bool_env(env, default_value):
    env_value = os.getenv(env, str(default_value))
    env_value = env_value.lower()
    return env_value in ["1", "true", "on", "yes"]


def get_int_env(env, default_value):
    return int(os.getenv(env, str(default_value)))


def _error_name(err) -> str:
    name_err, name = cuda.cuGetErrorName(err)
    if name_err != cuda.CUresult.CUDA_SUCCESS:
        return "CUDA_ERROR_UNKNOWN"
    return name.decode() if isinstance(name, bytes) else str(name)


def CUDA_CHECK(err, call: str = "cuda call"):
    """Raise `CudaError` unless `err` is CUDA_SUCCESS.

    `err` may also be the whole tuple returned by a cuda-python call, in which case the
    remaining values are returned.
    """
    rest = ()
    if isinstance(err, tuple):
        err, *rest = err
    if err != cuda.CUresult.CUDA_SUCCESS:
        logger.error(f"{call} failed: {_error_name(err)} ({int(err)})")
        raise CudaError(call, int(err), _error_name(err))
    if not rest:
        return None
    return rest[0] if len(rest) == 1 else tuple(rest)
