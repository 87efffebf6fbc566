"""Resource definition loading with validation.

SECURITY: All file operations enforce size limits to prevent DoS attacks
via large files. Input validation is performed at the boundary.

A spec file holds one or more resources, as separate YAML documents, as a
top-level list, or under a ``resources`` key. Each resource is either flat:

    kind: Disk
    name: disk1
    size: 2048

or Kubernetes-style:

    apiVersion: vcd/v1
    kind: Disk
    metadata: {name: disk1}
    spec: {size: 2048}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import BaseResourceSpec, get_spec_class

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when spec loading or validation fails."""

    pass


@dataclass(frozen=True)
class ResourceDefinition:
    """One declared resource."""

    kind: str
    spec: BaseResourceSpec

    @property
    def address(self) -> str:
        return f"{self.kind.lower()}.{self.spec.name}"


def _format_validation_error(e: ValidationError) -> str:
    errors = []
    for error in e.errors():
        loc = ".".join(str(x) for x in error["loc"])
        msg = error["msg"]
        errors.append(f"  - {loc}: {msg}")
    return "\n".join(errors)


def parse_resource(raw: Any, source: str) -> ResourceDefinition:
    """Validate one resource mapping.

    Raises:
        SpecLoadError: If the mapping is malformed or fails validation.
    """
    if not isinstance(raw, dict):
        raise SpecLoadError(f"Resource must be a YAML mapping: {source}")

    kind = raw.get("kind")
    if not isinstance(kind, str) or not kind:
        raise SpecLoadError(f"Resource is missing 'kind': {source}")

    # Support both flat format and Kubernetes-style wrapper
    if "apiVersion" in raw and "spec" in raw:
        spec_data = raw.get("spec") or {}
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {source}")
        metadata = raw.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise SpecLoadError(f"Metadata section must be a mapping: {source}")
        spec_data = dict(spec_data)
        if "name" in metadata and "name" not in spec_data:
            spec_data["name"] = metadata["name"]
    else:
        spec_data = {key: value for key, value in raw.items() if key != "kind"}

    try:
        spec_class = get_spec_class(kind)
    except ValueError as e:
        raise SpecLoadError(f"{e} ({source})") from e

    try:
        spec = spec_class.model_validate(spec_data)
    except ValidationError as e:
        raise SpecLoadError(
            f"Validation failed for {kind} in {source}:\n{_format_validation_error(e)}"
        ) from e

    return ResourceDefinition(kind=kind, spec=spec)


def _iter_entries(documents: list[Any], source: str) -> list[Any]:
    entries: list[Any] = []
    for document in documents:
        if document is None:
            continue
        if isinstance(document, list):
            entries.extend(document)
        elif isinstance(document, dict) and "resources" in document and "kind" not in document:
            resources = document["resources"]
            if not isinstance(resources, list):
                raise SpecLoadError(f"'resources' must be a list: {source}")
            entries.extend(resources)
        else:
            entries.append(document)
    return entries


def load_resources(spec_path: Path) -> list[ResourceDefinition]:
    """Load and validate every resource in a spec file, in file order.

    Raises:
        SpecLoadError: If the file cannot be loaded or any resource is invalid.
    """
    if not spec_path.exists():
        raise SpecLoadError(f"Spec file not found: {spec_path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = spec_path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat spec file {spec_path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Spec file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {spec_path}"
        )

    try:
        content = spec_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SpecLoadError(f"Failed to read spec file {spec_path}: {e}") from e

    try:
        documents = list(yaml.safe_load_all(content))
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {spec_path}: {e}") from e

    entries = _iter_entries(documents, str(spec_path))
    if not entries:
        raise SpecLoadError(f"Spec file declares no resources: {spec_path}")

    definitions: list[ResourceDefinition] = []
    seen: set[str] = set()
    for index, entry in enumerate(entries):
        definition = parse_resource(entry, f"{spec_path}[{index}]")
        if definition.address in seen:
            raise SpecLoadError(f"Duplicate resource {definition.address} in {spec_path}")
        seen.add(definition.address)
        definitions.append(definition)

    logger.info(
        "Loaded resources from %s",
        spec_path,
        extra={"resources": [definition.address for definition in definitions]},
    )
    return definitions
