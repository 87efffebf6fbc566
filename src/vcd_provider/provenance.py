"""Lifecycle provenance tracking for audit.

Every lifecycle entry point (create, read, update, delete) emits exactly one
structured record answering:
- "What was done to which resource, and when?"
- "Which remote object did it touch?"
- "How did it end, and how long did it take?"

Records are logged as structured JSON through the standard logger so they
can be queried alongside the rest of the provider logs.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Version is set at build time or falls back to dev
PROVIDER_VERSION = os.environ.get("VCD_PROVIDER_VERSION", "dev")


@dataclass
class LifecycleProvenance:
    """Provenance record for one lifecycle operation."""

    # Timestamp
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Identity
    operation: str = ""  # create, read, update, delete
    kind: str = ""
    address: str = ""
    provider_version: str = PROVIDER_VERSION
    run_id: str = ""

    # Remote object
    identifier: str = ""
    href: str = ""

    # Outcome: created, updated, replacement_required, found, absent, deleted, failed
    outcome: str = ""
    changed_attributes: list[str] = field(default_factory=list)

    # Timing
    duration_seconds: float = 0.0

    # Error tracking
    error: str | None = None
    error_type: str | None = None

    def fail(self, error: Exception) -> None:
        self.outcome = "failed"
        self.error = str(error)
        self.error_type = type(error).__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


class ProvenanceLogger:
    """Logs provenance records for audit."""

    def __init__(self) -> None:
        self._run_id = os.environ.get("VCD_RUN_ID", "")

    def create_provenance(self, operation: str, kind: str, address: str) -> LifecycleProvenance:
        """Create a new provenance record for a lifecycle operation.

        Args:
            operation: Lifecycle entry point name.
            kind: Resource kind (Disk, Vdc).
            address: Resource address, ``<kind>.<name>``.

        Returns:
            Initialized provenance record.
        """
        return LifecycleProvenance(
            operation=operation,
            kind=kind,
            address=address,
            run_id=self._run_id,
        )

    def log_provenance(self, provenance: LifecycleProvenance) -> None:
        """Log a completed provenance record.

        Failed operations log at ERROR, replacements at WARNING.
        """
        log_level = logging.INFO
        if provenance.error:
            log_level = logging.ERROR
        elif provenance.outcome == "replacement_required":
            log_level = logging.WARNING

        logger.log(
            log_level,
            "Lifecycle provenance",
            extra={
                "provenance": provenance.to_dict(),
                # Flatten key fields for easier querying
                "operation": provenance.operation,
                "kind": provenance.kind,
                "address": provenance.address,
                "outcome": provenance.outcome,
                "href": provenance.href,
                "duration_seconds": provenance.duration_seconds,
            },
        )


# Global singleton for provenance logging
_provenance_logger: ProvenanceLogger | None = None


def get_provenance_logger() -> ProvenanceLogger:
    """Get the global provenance logger instance."""
    global _provenance_logger
    if _provenance_logger is None:
        _provenance_logger = ProvenanceLogger()
    return _provenance_logger
