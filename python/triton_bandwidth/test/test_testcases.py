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
import pytest

from triton_bandwidth.bandwidth_matrix import BandwidthMatrix
from triton_bandwidth.config import RunConfig
from triton_bandwidth.errors import TestcaseNotFoundError, WaivedError
from triton_bandwidth.testcases import (
    ALL_TESTCASES,
    Testcase,
    TestcaseStatus,
    find_testcase,
    list_testcases,
    run_testcase,
)
from triton_bandwidth.test.utils import requires_cuda


def _matrix(config):
    matrix = BandwidthMatrix(1, 1)
    matrix[0, 0] = 42.0
    return matrix


def _waived(config):
    raise WaivedError("no peer access")


@pytest.fixture
def registry():
    testcases = [
        Testcase("fake_ce", "fake copy", "memcpy CE fake bandwidth", _matrix),
        Testcase("fake_d2d_ce", "fake peer copy", "memcpy CE fake peer bandwidth", _matrix, min_devices=2),
        Testcase("fake_waived_ce", "waived inside the test", "memcpy CE fake bandwidth", _waived),
    ]
    return {testcase.key: testcase for testcase in testcases}


def test_catalogue():
    keys = list(ALL_TESTCASES)
    assert len(keys) == 30
    assert keys[0] == "host_to_device_memcpy_ce"
    assert keys.index("host_to_device_memcpy_sm") == 16
    assert "host_to_device_bidirectional_memcpy_ce" in keys
    assert "host_to_device_bidirectional_memcpy_sm" not in keys
    assert ALL_TESTCASES["device_to_device_memcpy_read_ce"].min_devices == 2
    assert ALL_TESTCASES["host_to_all_memcpy_sm"].min_devices == 1


def test_list_testcases_indices_follow_registration(registry):
    assert [(i, key) for i, key, _ in list_testcases(registry)] == [(0, "fake_ce"), (1, "fake_d2d_ce"),
                                                                    (2, "fake_waived_ce")]


def test_find_by_key_and_index(registry):
    assert find_testcase("fake_d2d_ce", registry).key == "fake_d2d_ce"
    assert find_testcase("1", registry).key == "fake_d2d_ce"


@pytest.mark.parametrize("selector", ["nope", "3", "-1"])
def test_find_unknown(registry, selector):
    with pytest.raises(TestcaseNotFoundError):
        find_testcase(selector, registry)


def test_run_passes(registry, capsys):
    result = run_testcase("fake_ce", RunConfig(), registry, device_count=1)
    assert result.status == TestcaseStatus.PASSED
    assert result.matrix[0, 0] == 42.0
    out = capsys.readouterr().out
    assert "Running fake_ce." in out
    assert "42.00" in out


def test_run_unknown_is_an_error_result(registry, capsys):
    result = run_testcase("missing", RunConfig(), registry, device_count=1)
    assert result.status == TestcaseStatus.ERROR
    assert "ERROR: Testcase missing not found!" in capsys.readouterr().out


def test_run_out_of_bound_index(registry):
    result = run_testcase("7", RunConfig(), registry, device_count=1)
    assert result.status == TestcaseStatus.ERROR
    assert "out of bound" in result.message


def test_run_waives_on_too_few_devices(registry, capsys):
    result = run_testcase("fake_d2d_ce", RunConfig(), registry, device_count=1)
    assert result.status == TestcaseStatus.WAIVED
    assert "Waiving fake_d2d_ce." in capsys.readouterr().out


def test_run_waived_inside_testcase(registry):
    result = run_testcase("fake_waived_ce", RunConfig(), registry, device_count=4)
    assert result.status == TestcaseStatus.WAIVED
    assert result.message == "no peer access"


def test_run_continues_after_error(registry):
    statuses = [run_testcase(s, RunConfig(), registry, device_count=1).status for s in ["missing", "fake_ce"]]
    assert statuses == [TestcaseStatus.ERROR, TestcaseStatus.PASSED]


@requires_cuda
def test_host_to_device_catalogue_entry(small_config):
    result = run_testcase("host_to_device_memcpy_ce", small_config)
    assert result.status == TestcaseStatus.PASSED
    assert result.matrix.shape[0] == 1
    assert (result.matrix.measured() > 0).all()


class _NoPeerDeviceNode:

    def __init__(self, buffer_size, device_id):
        self.device_id = device_id

    def enable_peer_access(self, peer):
        return False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return None


@pytest.mark.parametrize("key", ["device_to_device_memcpy_read_ce", "device_to_device_bidirectional_memcpy_write_sm",
                                 "all_to_one_write_ce", "one_to_all_read_sm"])
def test_peer_testcases_waived_without_peer_access(monkeypatch, key):
    import triton_bandwidth.testcases as testcases

    monkeypatch.setattr(testcases, "get_device_count", lambda: 2)
    monkeypatch.setattr(testcases, "DeviceNode", _NoPeerDeviceNode)
    result = run_testcase(key, RunConfig(), device_count=2)
    assert result.status == TestcaseStatus.WAIVED
    assert result.message == "no device pair supports peer access"
