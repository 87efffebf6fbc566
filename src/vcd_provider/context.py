"""Explicit provider context.

Replaces a process-wide session object: every lifecycle call receives the
context carrying the transport client, default scoping and task timing.
"""

from __future__ import annotations

from dataclasses import dataclass

from .client import VcdClient
from .config import Config
from .identity import IdentityMode


@dataclass(frozen=True)
class ProviderContext:
    """Handle threaded through every resolver, tracker and reconciler call."""

    client: VcdClient
    default_org: str
    default_vdc: str | None = None
    task_timeout_seconds: float = 600
    task_poll_initial_seconds: float = 1.0
    task_poll_max_seconds: float = 10.0
    identity_mode: IdentityMode | None = None

    @classmethod
    def from_config(cls, config: Config, client: VcdClient | None = None) -> ProviderContext:
        return cls(
            client=client if client is not None else VcdClient(config),
            default_org=config.org,
            default_vdc=config.vdc,
            task_timeout_seconds=config.task_timeout_seconds,
            task_poll_initial_seconds=config.task_poll_initial_seconds,
            task_poll_max_seconds=config.task_poll_max_seconds,
            identity_mode=IdentityMode(config.identity_mode) if config.identity_mode else None,
        )

    def org_for(self, org: str | None) -> str:
        return org or self.default_org

    def vdc_for(self, vdc: str | None) -> str | None:
        return vdc or self.default_vdc
