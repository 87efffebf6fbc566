"""vCD API Mock for Integration Testing.

This package provides a mock implementation of the vCD REST API surface
used by the provider, enabling lifecycle tests without a vCD installation.

Key Features:
- In-memory orgs, VDCs, disks and query references
- Task lifecycle simulation (running -> success/error)
- Error injection: rejected submissions, failed tasks, hung tasks,
  transport failures on lookup and on polling

Usage:
    from vcd_mock import MockVcdClient, MockVcdState

    state = MockVcdState()
    client = MockVcdClient(state)
    context = ProviderContext(client=client, default_org="myorg", default_vdc="myvdc")

    reconciler = LifecycleReconciler(DiskKind(), context)
    await reconciler.create(spec, resource_state)

    assert state.disk_by_name("disk1") is not None
"""

from .client import MockVcdClient
from .context import MockVcdContext
from .resources import MockDisk, MockTask, MockVcdState, MockVdc

__all__ = [
    "MockDisk",
    "MockTask",
    "MockVcdClient",
    "MockVcdContext",
    "MockVcdState",
    "MockVdc",
]
