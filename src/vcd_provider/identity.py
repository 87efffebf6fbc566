"""Local identifiers for provisioned resources.

An identifier is a tagged variant:

- LOCATOR: derived from the remote href. Stable and unique; the default for
  every kind that does not need backward compatibility.
- NAME: the resource name. Kept only for compatibility with state written by
  the earlier Terraform provider, which keyed disks by name. vCD does not
  enforce unique disk names within a VDC, so two disks with the same name
  would collide on this identifier; a warning is logged whenever one is
  assigned.

An identifier is assigned once at creation and is never recomputed from
mutable fields afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class IdentityMode(str, Enum):
    """How the local identifier is derived."""

    LOCATOR = "locator"
    NAME = "name"


@dataclass(frozen=True)
class LocalIdentifier:
    """Key under which local state tracks a resource."""

    mode: IdentityMode
    value: str

    @classmethod
    def from_locator(cls, href: str) -> LocalIdentifier:
        if not href:
            raise ValueError("Cannot derive an identifier from an empty locator")
        return cls(mode=IdentityMode.LOCATOR, value=href)

    @classmethod
    def from_name(cls, name: str, kind: str) -> LocalIdentifier:
        if not name:
            raise ValueError("Cannot derive an identifier from an empty name")
        logger.warning(
            "Assigning name-based identity; names are not guaranteed unique",
            extra={"kind": kind, "resource_name": name},
        )
        return cls(mode=IdentityMode.NAME, value=name)

    @classmethod
    def assign(cls, mode: IdentityMode, *, href: str, name: str, kind: str) -> LocalIdentifier:
        """Derive an identifier for a freshly created resource."""
        if mode == IdentityMode.NAME:
            return cls.from_name(name, kind)
        return cls.from_locator(href)

    def __str__(self) -> str:
        return self.value
