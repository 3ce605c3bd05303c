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
from typing import List, Optional


class FatalError(RuntimeError):
    """Errors that end the whole run. The runner never catches these."""


class CudaError(FatalError):

    def __init__(self, call: str, code: int, name: str):
        self.call = call
        self.code = code
        self.name = name
        super().__init__(f"{call} failed with {name} ({code})")


class PatternMismatchError(FatalError):

    def __init__(self, node_string: str, size: int, offsets: List[int]):
        self.node_string = node_string
        self.size = size
        self.offsets = offsets
        first = offsets[0] if offsets else None
        super().__init__(f"Invalid value when checking the pattern of {node_string}: "
                         f"{len(offsets)} mismatched word(s), first at offset [{first}/{size}]")


class TestcaseError(Exception):
    """Errors that only end the current test case."""

    __test__ = False


class WaivedError(TestcaseError):

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(reason or "not supported on this system")


class TestcaseNotFoundError(TestcaseError):

    def __init__(self, selector: str, message: Optional[str] = None):
        self.selector = selector
        super().__init__(message or f"Testcase {selector} not found!")
