"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for vcd_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from vcd_mock import MockVcdClient, MockVcdState  # noqa: E402

from vcd_provider.context import ProviderContext  # noqa: E402


@pytest.fixture
def mock_state() -> MockVcdState:
    """In-memory vCD with org 'myorg' and VDC 'myvdc'."""
    return MockVcdState()


@pytest.fixture
def mock_client(mock_state: MockVcdState) -> MockVcdClient:
    """Mock client bound to mock_state."""
    return MockVcdClient(mock_state)


@pytest.fixture
def context(mock_client: MockVcdClient) -> ProviderContext:
    """Provider context with fast task polling."""
    return ProviderContext(
        client=mock_client,
        default_org="myorg",
        default_vdc="myvdc",
        task_timeout_seconds=5,
        task_poll_initial_seconds=0.001,
        task_poll_max_seconds=0.01,
    )
