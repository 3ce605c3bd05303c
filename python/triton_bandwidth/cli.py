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
import argparse
import contextlib
import sys

from triton_bandwidth.config import (
    DEFAULT_BUFFER_SIZE_MIB,
    DEFAULT_LOOP_COUNT,
    DEFAULT_SAMPLE_COUNT,
    MiB,
    RunConfig,
    parse_nbytes,
)
from triton_bandwidth.cuda_utils import DeviceContext, get_device_count
from triton_bandwidth.errors import FatalError
from triton_bandwidth.kernels import preload_kernels
from triton_bandwidth.nv_utils import get_cuda_driver_version, get_device_name, get_driver_version
from triton_bandwidth.testcases import ALL_TESTCASES, TestcaseStatus, list_testcases, run_testcase
from triton_bandwidth.utils import log_to_file, logger, set_verbose


def buffer_size_arg(text: str) -> int:
    """Buffer size in bytes: a bare number is MiB, otherwise a K/M/G size string."""
    if text.isdigit():
        return int(text) * MiB
    try:
        return parse_nbytes(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="triton-bandwidth",
        description="Measure copy bandwidth between host and devices and between devices.",
    )
    parser.add_argument("-b", "--bufferSize", type=buffer_size_arg, default=None,
                        help=f"Memcpy buffer size in MiB, or with a K/M/G suffix (default {DEFAULT_BUFFER_SIZE_MIB})")
    parser.add_argument("-l", "--list", action="store_true", help="List available testcases")
    parser.add_argument("-t", "--testcase", nargs="+", action="extend", default=[],
                        help="Testcase(s) to run, by name or index")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("-s", "--skipVerification", action="store_true", help="Skips data verification after copy")
    parser.add_argument("-d", "--disableAffinity", action="store_true",
                        help="Disable automatic CPU affinity control")
    parser.add_argument("-i", "--testSamples", type=int, default=None,
                        help=f"Iterations of the benchmark (default {DEFAULT_SAMPLE_COUNT})")
    parser.add_argument("-m", "--useMean", action="store_true", help="Use mean instead of median for results")
    parser.add_argument("--loopCount", type=int, default=None,
                        help=f"Iterations of memcpy to be performed within a test sample (default {DEFAULT_LOOP_COUNT})")
    parser.add_argument("--logFile", type=str, default=None, help="Also write the log to this file")
    return parser.parse_args(argv)


def print_testcases():
    for index, key, description in list_testcases():
        print(f"{index}, {key}:")
        print(f"\t{description}\n")


def print_devices(device_count: int):
    print(f"CUDA driver version: {get_cuda_driver_version()}")
    print(f"Driver Version: {get_driver_version()}")
    print()
    for device_id in range(device_count):
        print(f"Device {device_id}: {get_device_name(device_id)}")
    print()


def build_config(args) -> RunConfig:
    """Command line flags override TRITON_BW_* environment variables."""
    overrides = {}
    if args.bufferSize is not None:
        overrides["buffer_size"] = args.bufferSize
    if args.loopCount is not None:
        overrides["loop_count"] = args.loopCount
    if args.testSamples is not None:
        overrides["sample_count"] = args.testSamples
    for flag, field in [("skipVerification", "skip_verification"), ("useMean", "use_mean"),
                        ("disableAffinity", "disable_affinity"), ("verbose", "verbose")]:
        if getattr(args, flag):
            overrides[field] = True
    return RunConfig.from_env(**overrides)


def run(config: RunConfig, selectors) -> int:
    device_count = get_device_count()
    print_devices(device_count)

    if config.buffer_size < config.default_buffer_size:
        print("NOTE: You have chosen a buffer size that is smaller than the default buffer size. "
              f"It is suggested to use the default buffer size ({config.default_buffer_size // MiB}MB) "
              "to achieve maximal peak bandwidth.\n")

    contexts = [DeviceContext(device_id) for device_id in range(device_count)]
    try:
        preload_kernels(contexts, config.spin_timeout_ms)
    finally:
        for ctx in contexts:
            ctx.release()

    selectors = selectors or list(ALL_TESTCASES.keys())
    results = [run_testcase(selector, config, device_count=device_count) for selector in selectors]
    errors = [result for result in results if result.status == TestcaseStatus.ERROR]
    logger.info(f"{len(results)} testcase(s) run, {len(errors)} error(s)")
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    if args.list:
        print_testcases()
        return 0

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    set_verbose(config.verbose)

    log_context = log_to_file(args.logFile) if args.logFile else contextlib.nullcontext()
    with log_context:
        try:
            return run(config, args.testcase)
        except FatalError as e:
            logger.error(f"{e}")
            print(f"ERROR: {e}", file=sys.stderr)
            return 1


if __name__ == "__main__":
    sys.exit(main())
