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

from triton_bandwidth.config import MiB, RunConfig, parse_nbytes


@pytest.mark.parametrize("text, nbytes", [("4096", 4096), ("1k", 1024), ("64M", 64 * MiB), ("2g", 2 * 1024 * MiB)])
def test_parse_nbytes(text, nbytes):
    assert parse_nbytes(text) == nbytes


def test_parse_nbytes_rejects_unknown_suffix():
    with pytest.raises(ValueError):
        parse_nbytes("12T")


def test_defaults():
    config = RunConfig()
    assert config.buffer_size == 64 * MiB
    assert config.loop_count == 16
    assert config.sample_count == 3
    assert config.spin_timeout_ms == 10000
    assert not config.use_mean
    assert not config.skip_verification


@pytest.mark.parametrize("field", ["buffer_size", "loop_count", "sample_count", "spin_timeout_ms"])
def test_rejects_non_positive(field):
    with pytest.raises(ValueError):
        RunConfig(**{field: 0})


def test_spin_timeout_can_be_disabled():
    assert RunConfig(spin_timeout_ms=None).spin_timeout_ms is None


def test_from_env(monkeypatch):
    monkeypatch.setenv("TRITON_BW_BUFFER_SIZE_MIB", "8")
    monkeypatch.setenv("TRITON_BW_SAMPLES", "5")
    monkeypatch.setenv("TRITON_BW_USE_MEAN", "1")
    config = RunConfig.from_env(loop_count=2)
    assert config.buffer_size == 8 * MiB
    assert config.sample_count == 5
    assert config.use_mean
    assert config.loop_count == 2


def test_replace_keeps_config_frozen():
    config = RunConfig()
    other = config.replace(loop_count=4)
    assert other.loop_count == 4
    assert config.loop_count == 16
    with pytest.raises(Exception):
        config.loop_count = 1
