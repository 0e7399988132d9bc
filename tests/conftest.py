"""
Shared test fixtures for veil-client tests.
"""

import pytest

from tests._controller_testkit import Harness, build_harness


@pytest.fixture
def harness() -> Harness:
    return build_harness()


@pytest.fixture
def make_harness():
    return build_harness
