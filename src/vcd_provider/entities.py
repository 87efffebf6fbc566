"""vCD XML entities.

Read-side representations of the vCD documents the provider consumes:
Task, Disk, AdminVdc, Org, OrgList, query references and Error. Parsing is
namespace-tolerant: vCD emits the vcloud 1.5 namespace, but extension
documents and older appliances mix prefixes, so elements are matched on
their local name.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum

VCLOUD_NS = "http://www.vmware.com/vcloud/v1.5"

# Media types used when posting or following links
DISK_MEDIA_TYPE = "application/vnd.vmware.vcloud.disk+xml"
DISK_CREATE_PARAMS_MEDIA_TYPE = "application/vnd.vmware.vcloud.diskCreateParams+xml"
VDC_MEDIA_TYPE = "application/vnd.vmware.vcloud.vdc+xml"
CREATE_VDC_PARAMS_MEDIA_TYPE = "application/vnd.vmware.admin.createVdcParams+xml"
TASK_MEDIA_TYPE = "application/vnd.vmware.vcloud.task+xml"


class TaskState(str, Enum):
    """Abstract task lifecycle states."""

    SUBMITTED = "submitted"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# vCD task status attribute -> abstract state
TASK_STATUS_MAP: dict[str, TaskState] = {
    "queued": TaskState.SUBMITTED,
    "preRunning": TaskState.SUBMITTED,
    "running": TaskState.RUNNING,
    "success": TaskState.SUCCEEDED,
    "error": TaskState.FAILED,
    "aborted": TaskState.FAILED,
    "canceled": TaskState.FAILED,
}


def local_name(tag: str) -> str:
    """Strip the ``{namespace}`` prefix from an element tag."""
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag


def find_child(element: ET.Element, name: str) -> ET.Element | None:
    """Return the first direct child with the given local name."""
    for child in element:
        if local_name(child.tag) == name:
            return child
    return None


def find_children(element: ET.Element, name: str) -> list[ET.Element]:
    """Return all direct children with the given local name."""
    return [child for child in element if local_name(child.tag) == name]


def child_text(element: ET.Element, name: str) -> str | None:
    child = find_child(element, name)
    if child is None or child.text is None:
        return None
    return child.text.strip()


def _parse_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    return value.strip().lower() == "true"


def _parse_int(value: str | None) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


@dataclass(frozen=True)
class Link:
    """A ``<Link>`` element pointing at a related entity."""

    rel: str
    href: str
    type: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class Task:
    """A server-side asynchronous operation.

    Attributes:
        href: Locator of the task itself (used for polling).
        status: Raw vCD status (queued, running, success, error, ...).
        operation_name: Machine name of the operation (e.g. vdcCreateDisk).
        operation: Human readable description.
        owner_href: Locator of the object the task acts on.
        error_message: Remote diagnostic when the task failed.
    """

    href: str
    status: str
    operation_name: str | None = None
    operation: str | None = None
    owner_href: str | None = None
    owner_name: str | None = None
    error_message: str | None = None
    major_error_code: int | None = None
    minor_error_code: str | None = None

    @property
    def state(self) -> TaskState:
        # Unknown statuses are treated as still running; the tracker timeout bounds them
        return TASK_STATUS_MAP.get(self.status, TaskState.RUNNING)

    @property
    def is_terminal(self) -> bool:
        return self.state in (TaskState.SUCCEEDED, TaskState.FAILED)


@dataclass(frozen=True)
class Disk:
    """An independent disk."""

    href: str
    name: str
    size: int | None = None
    description: str | None = None
    status: int | None = None
    tasks: list[Task] = field(default_factory=list)


@dataclass(frozen=True)
class AdminVdc:
    """A virtual datacenter as seen through the admin API."""

    href: str
    name: str
    description: str | None = None
    is_enabled: bool | None = None
    allocation_model: str | None = None
    is_thin_provision: bool | None = None
    uses_fast_provisioning: bool | None = None
    status: int | None = None
    links: list[Link] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)

    def link(self, rel: str) -> Link | None:
        for link in self.links:
            if link.rel == rel:
                return link
        return None


@dataclass(frozen=True)
class Org:
    """An organization with links to its VDCs."""

    href: str
    name: str
    links: list[Link] = field(default_factory=list)

    def vdc_links(self) -> list[Link]:
        return [link for link in self.links if link.type == VDC_MEDIA_TYPE]


@dataclass(frozen=True)
class Reference:
    """A named reference (OrgList entry or query result reference)."""

    href: str
    name: str
    type: str | None = None


@dataclass(frozen=True)
class VcdErrorDocument:
    """The ``<Error>`` body vCD returns with 4xx/5xx responses."""

    message: str
    major_error_code: int | None = None
    minor_error_code: str | None = None


def parse_xml(content: bytes | str) -> ET.Element:
    """Parse a document body.

    Raises:
        ET.ParseError: If the body is not well-formed XML.
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return ET.fromstring(content)


def _parse_links(element: ET.Element) -> list[Link]:
    return [
        Link(
            rel=link.get("rel", ""),
            href=link.get("href", ""),
            type=link.get("type"),
            name=link.get("name"),
        )
        for link in find_children(element, "Link")
    ]


def _parse_tasks(element: ET.Element) -> list[Task]:
    tasks_element = find_child(element, "Tasks")
    if tasks_element is None:
        return []
    return [parse_task(task) for task in find_children(tasks_element, "Task")]


def parse_task(element: ET.Element) -> Task:
    """Parse a ``<Task>`` element."""
    if local_name(element.tag) != "Task":
        raise ValueError(f"Expected Task element, got {local_name(element.tag)}")

    owner = find_child(element, "Owner")
    error = find_child(element, "Error")

    return Task(
        href=element.get("href", ""),
        status=element.get("status", ""),
        operation_name=element.get("operationName"),
        operation=element.get("operation"),
        owner_href=owner.get("href") if owner is not None else None,
        owner_name=owner.get("name") if owner is not None else None,
        error_message=error.get("message") if error is not None else None,
        major_error_code=_parse_int(error.get("majorErrorCode")) if error is not None else None,
        minor_error_code=error.get("minorErrorCode") if error is not None else None,
    )


def parse_disk(element: ET.Element) -> Disk:
    """Parse a ``<Disk>`` element."""
    if local_name(element.tag) != "Disk":
        raise ValueError(f"Expected Disk element, got {local_name(element.tag)}")

    return Disk(
        href=element.get("href", ""),
        name=element.get("name", ""),
        size=_parse_int(element.get("size")),
        description=child_text(element, "Description"),
        status=_parse_int(element.get("status")),
        tasks=_parse_tasks(element),
    )


def parse_admin_vdc(element: ET.Element) -> AdminVdc:
    """Parse an ``<AdminVdc>`` (or plain ``<Vdc>``) element."""
    tag = local_name(element.tag)
    if tag not in ("AdminVdc", "Vdc"):
        raise ValueError(f"Expected AdminVdc element, got {tag}")

    return AdminVdc(
        href=element.get("href", ""),
        name=element.get("name", ""),
        description=child_text(element, "Description"),
        is_enabled=_parse_bool(child_text(element, "IsEnabled")),
        allocation_model=child_text(element, "AllocationModel"),
        is_thin_provision=_parse_bool(child_text(element, "IsThinProvision")),
        uses_fast_provisioning=_parse_bool(child_text(element, "UsesFastProvisioning")),
        status=_parse_int(element.get("status")),
        links=_parse_links(element),
        tasks=_parse_tasks(element),
    )


def parse_org(element: ET.Element) -> Org:
    """Parse an ``<Org>`` or ``<AdminOrg>`` element."""
    tag = local_name(element.tag)
    if tag not in ("Org", "AdminOrg"):
        raise ValueError(f"Expected Org element, got {tag}")
    return Org(
        href=element.get("href", ""),
        name=element.get("name", ""),
        links=_parse_links(element),
    )


def parse_references(element: ET.Element) -> list[Reference]:
    """Parse an ``<OrgList>`` or a ``format=references`` query result.

    Any direct child carrying both ``href`` and ``name`` is a reference.
    """
    references: list[Reference] = []
    for child in element:
        href = child.get("href")
        name = child.get("name")
        if href and name is not None:
            references.append(Reference(href=href, name=name, type=child.get("type")))
    return references


def parse_error_document(content: bytes | str) -> VcdErrorDocument | None:
    """Extract the diagnostic from a vCD ``<Error>`` body, if there is one."""
    try:
        element = parse_xml(content)
    except ET.ParseError:
        return None
    if local_name(element.tag) != "Error":
        return None
    return VcdErrorDocument(
        message=element.get("message", ""),
        major_error_code=_parse_int(element.get("majorErrorCode")),
        minor_error_code=element.get("minorErrorCode"),
    )


def first_task(tasks: list[Task]) -> Task | None:
    """Return the first task attached to an entity, if any."""
    return tasks[0] if tasks else None
