"""Persisted per-resource state.

ResourceState is the handle the reconciler reads and writes. It is owned by
the orchestration layer; StateStore is the JSON-file store the bundled CLI
uses in that role.

Fields:
    id / id_mode: LocalIdentifier, empty while the resource is absent
    href: RemoteLocator returned by vCD at creation
    attributes: mirror of the last-applied desired attributes, for diffing
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import MAX_STATE_FILE_SIZE_BYTES
from .identity import IdentityMode, LocalIdentifier

logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = 1


class StateStoreError(Exception):
    """Raised when the state file cannot be read or written."""

    pass


@dataclass
class ResourceState:
    """Local record of one resource instance."""

    id: str = ""
    id_mode: IdentityMode | None = None
    href: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def exists(self) -> bool:
        """Whether the resource is recorded as present."""
        return bool(self.id)

    @property
    def identifier(self) -> LocalIdentifier | None:
        if not self.id or self.id_mode is None:
            return None
        return LocalIdentifier(mode=self.id_mode, value=self.id)

    def commit(
        self,
        identifier: LocalIdentifier,
        href: str,
        attributes: dict[str, Any],
    ) -> None:
        """Record a successfully created resource in one step."""
        self.id = identifier.value
        self.id_mode = identifier.mode
        self.href = href
        self.attributes = dict(attributes)

    def clear(self) -> None:
        """Mark the resource absent."""
        self.id = ""
        self.id_mode = None
        self.href = ""
        self.attributes = {}

    def snapshot(self) -> ResourceState:
        return ResourceState(
            id=self.id,
            id_mode=self.id_mode,
            href=self.href,
            attributes=json.loads(json.dumps(self.attributes)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "id_mode": self.id_mode.value if self.id_mode else None,
            "href": self.href,
            "attributes": self.attributes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResourceState:
        mode = data.get("id_mode")
        return cls(
            id=data.get("id", ""),
            id_mode=IdentityMode(mode) if mode else None,
            href=data.get("href", ""),
            attributes=dict(data.get("attributes") or {}),
        )


class StateStore:
    """JSON-file state keyed by resource address (``<kind>.<name>``)."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._resources: dict[str, ResourceState] = {}

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> StateStore:
        """Load the state file; a missing file is an empty state.

        Raises:
            StateStoreError: If the file is too large or not valid state.
        """
        if not self._path.exists():
            self._resources = {}
            return self

        try:
            file_size = self._path.stat().st_size
        except OSError as e:
            raise StateStoreError(f"Failed to stat state file {self._path}: {e}") from e

        if file_size > MAX_STATE_FILE_SIZE_BYTES:
            raise StateStoreError(
                f"State file exceeds maximum size of {MAX_STATE_FILE_SIZE_BYTES} bytes: "
                f"{self._path}"
            )

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            raise StateStoreError(f"Failed to read state file {self._path}: {e}") from e
        except json.JSONDecodeError as e:
            raise StateStoreError(f"Invalid JSON in {self._path}: {e}") from e

        if not isinstance(raw, dict) or not isinstance(raw.get("resources", {}), dict):
            raise StateStoreError(f"State file must contain a 'resources' mapping: {self._path}")

        version = raw.get("version", STATE_FORMAT_VERSION)
        if version != STATE_FORMAT_VERSION:
            raise StateStoreError(f"Unsupported state format version {version}: {self._path}")

        try:
            self._resources = {
                address: ResourceState.from_dict(entry)
                for address, entry in raw.get("resources", {}).items()
            }
        except (TypeError, ValueError, AttributeError) as e:
            raise StateStoreError(f"Malformed resource entry in {self._path}: {e}") from e

        logger.debug(
            "Loaded state",
            extra={"path": str(self._path), "resources": len(self._resources)},
        )
        return self

    def save(self) -> None:
        """Write state atomically; absent resources are dropped."""
        payload = {
            "version": STATE_FORMAT_VERSION,
            "resources": {
                address: state.to_dict()
                for address, state in sorted(self._resources.items())
                if state.exists
            },
        }
        directory = self._path.parent if str(self._path.parent) else Path(".")
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=".vcd-state-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
                handle.write("\n")
            os.replace(tmp_name, self._path)
        except OSError as e:
            raise StateStoreError(f"Failed to write state file {self._path}: {e}") from e

    def get(self, address: str) -> ResourceState:
        """Return the (possibly empty) state handle for an address."""
        state = self._resources.get(address)
        if state is None:
            state = ResourceState()
            self._resources[address] = state
        return state

    def addresses(self) -> list[str]:
        return sorted(address for address, state in self._resources.items() if state.exists)
