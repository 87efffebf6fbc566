"""Mock vCD client with the same surface as VcdClient.

Requests are routed on the href against MockVcdState. Responses are real
vCD XML elements so the provider's parsers run unchanged, and failures are
raised as the same azure-core exceptions VcdClient raises.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from vcd_provider.entities import (
    DISK_MEDIA_TYPE,
    TASK_MEDIA_TYPE,
    VCLOUD_NS,
    VDC_MEDIA_TYPE,
    Task,
    parse_task,
)
from vcd_provider.payloads import CreateVdcParams, DiskCreateParams

from .resources import MockDisk, MockTask, MockVcdState, MockVdc


def _el(tag: str, attrib: dict[str, str] | None = None, text: str | None = None) -> ET.Element:
    element = ET.Element(f"{{{VCLOUD_NS}}}{tag}", attrib or {})
    if text is not None:
        element.text = text
    return element


def _child(
    parent: ET.Element,
    tag: str,
    attrib: dict[str, str] | None = None,
    text: str | None = None,
) -> ET.Element:
    element = _el(tag, attrib, text)
    parent.append(element)
    return element


def _bool(value: bool) -> str:
    return "true" if value else "false"


def task_element(task: MockTask) -> ET.Element:
    element = _el(
        "Task",
        {
            "href": task.href,
            "type": TASK_MEDIA_TYPE,
            "status": task.status,
            "operationName": task.operation_name,
            "operation": f"{task.operation_name} {task.owner_name}",
        },
    )
    _child(element, "Owner", {"href": task.owner_href, "name": task.owner_name})
    if task.status == "error":
        _child(
            element,
            "Error",
            {
                "message": task.error_message or "",
                "majorErrorCode": "500",
                "minorErrorCode": "INTERNAL_SERVER_ERROR",
            },
        )
    return element


def disk_element(disk: MockDisk, task: MockTask | None = None) -> ET.Element:
    element = _el(
        "Disk",
        {"href": disk.href, "name": disk.name, "size": str(disk.size), "type": DISK_MEDIA_TYPE},
    )
    if disk.description is not None:
        _child(element, "Description", text=disk.description)
    if task is not None:
        tasks = _child(element, "Tasks")
        tasks.append(task_element(task))
    return element


def vdc_element(vdc: MockVdc, task: MockTask | None = None) -> ET.Element:
    element = _el("AdminVdc", {"href": vdc.href, "name": vdc.name, "status": "1"})
    _child(element, "Link", {"rel": "enable", "href": f"{vdc.href}/action/enable"})
    _child(element, "Link", {"rel": "disable", "href": f"{vdc.href}/action/disable"})
    if vdc.description is not None:
        _child(element, "Description", text=vdc.description)
    if task is not None:
        tasks = _child(element, "Tasks")
        tasks.append(task_element(task))
    _child(element, "AllocationModel", text=vdc.allocation_model)
    _child(element, "IsEnabled", text=_bool(vdc.is_enabled))
    _child(element, "IsThinProvision", text=_bool(vdc.is_thin_provision))
    _child(element, "UsesFastProvisioning", text=_bool(vdc.uses_fast_provisioning))
    return element


class MockVcdClient:
    """In-memory stand-in for VcdClient."""

    def __init__(self, state: MockVcdState | None = None) -> None:
        self.state = state or MockVcdState()
        self.closed = False

    @property
    def base_url(self) -> str:
        return self.state.base_url

    def close(self) -> None:
        self.closed = True

    # =========================================================================
    # Transport surface
    # =========================================================================

    def get(self, href: str, params: dict[str, str] | None = None) -> ET.Element:
        self.state.calls.append(("GET", href))
        if self.state.lookup_error is not None:
            raise self.state.lookup_error

        if href == "/org":
            return self._org_list()
        if href == "/query":
            return self._query(params or {})

        for name, org_href in self.state.orgs.items():
            if href == org_href:
                return self._org(name, org_href)

        if href in self.state.disks:
            return disk_element(self.state.disks[href])
        if href in self.state.vdcs:
            return vdc_element(self.state.vdcs[href])
        if href in self.state.tasks:
            return task_element(self.state.tasks[href])

        raise ResourceNotFoundError(message=f"No entity at {href}")

    def post(
        self,
        href: str,
        body: bytes | None = None,
        content_type: str | None = None,
    ) -> ET.Element | None:
        self.state.calls.append(("POST", href))
        error = self.state.take_submission_error()
        if error is not None:
            raise error
        if body is not None:
            self.state.payloads.append(body)

        if href.endswith("/disk"):
            return self._create_disk(href.removesuffix("/disk"), body or b"")
        if href.endswith("/vdcsparams"):
            return self._create_vdc(href.removesuffix("/vdcsparams"), body or b"")
        for action, enabled in (("/action/enable", True), ("/action/disable", False)):
            if href.endswith(action):
                vdc_href = href.removesuffix(action)
                vdc = self.state.vdcs.get(vdc_href)
                if vdc is None:
                    raise ResourceNotFoundError(message=f"No VDC at {vdc_href}")
                vdc.is_enabled = enabled
                return None

        raise ResourceNotFoundError(message=f"No POST handler for {href}")

    def delete(self, href: str, params: dict[str, str] | None = None) -> ET.Element | None:
        self.state.calls.append(("DELETE", href))
        self.state.delete_params.append(dict(params or {}))
        error = self.state.take_submission_error()
        if error is not None:
            raise error

        if href in self.state.disks:
            disk = self.state.disks[href]
            task = self.state.create_task(
                "vdcDeleteDisk",
                href,
                disk.name,
                on_success=lambda: self.state.remove_disk(href),
            )
            return task_element(task)

        if href in self.state.vdcs:
            vdc = self.state.vdcs[href]
            if vdc.is_enabled:
                error = HttpResponseError(message=f"VDC {vdc.name} must be disabled before delete")
                error.status_code = 400
                raise error
            task = self.state.create_task(
                "vdcDeleteVdc",
                href,
                vdc.name,
                on_success=lambda: self.state.remove_vdc(href),
            )
            return task_element(task)

        raise ResourceNotFoundError(message=f"No entity at {href}")

    def get_task(self, href: str) -> Task:
        self.state.calls.append(("GET", href))
        if self.state.poll_error is not None:
            raise self.state.poll_error
        task = self.state.tasks.get(href)
        if task is None:
            raise ResourceNotFoundError(message=f"No task at {href}")
        task.advance()
        return parse_task(task_element(task))

    # =========================================================================
    # Handlers
    # =========================================================================

    def _org_list(self) -> ET.Element:
        element = _el("OrgList")
        for name, href in self.state.orgs.items():
            _child(element, "Org", {"href": href, "name": name})
        return element

    def _org(self, name: str, href: str) -> ET.Element:
        element = _el("Org", {"href": href, "name": name})
        for vdc in self.state.org_vdcs(name):
            _child(
                element,
                "Link",
                {"rel": "down", "href": vdc.href, "name": vdc.name, "type": VDC_MEDIA_TYPE},
            )
        return element

    def _query(self, params: dict[str, str]) -> ET.Element:
        query_type = params.get("type", "")
        name = ""
        for condition in params.get("filter", "").split(";"):
            if condition.startswith("name=="):
                name = condition.removeprefix("name==")
        element = _el("References")
        href = self.state.references.get((query_type, name))
        if href is not None:
            _child(element, "Reference", {"href": href, "name": name})
        return element

    def _create_disk(self, vdc_href: str, body: bytes) -> ET.Element:
        if vdc_href not in self.state.vdcs:
            raise ResourceNotFoundError(message=f"No VDC at {vdc_href}")
        params = DiskCreateParams.from_xml(body)
        href = self.state.add_disk(
            params.disk.name,
            params.disk.size,
            params.disk.description,
            vdc_href=vdc_href,
        )
        disk = self.state.disks[href]
        task = self.state.create_task(
            "vdcCreateDisk",
            href,
            disk.name,
            on_failure=lambda: self.state.remove_disk(href),
        )
        return disk_element(disk, task)

    def _create_vdc(self, admin_org_href: str, body: bytes) -> ET.Element:
        org_name = next(
            (
                name
                for name, href in self.state.orgs.items()
                if href.replace("/api/org/", "/api/admin/org/") == admin_org_href
            ),
            None,
        )
        if org_name is None:
            raise ResourceNotFoundError(message=f"No admin org at {admin_org_href}")
        params = CreateVdcParams.from_xml(body)
        href = self.state.new_href("admin/vdc")
        vdc = MockVdc(
            href=href,
            name=params.name,
            org_name=org_name,
            is_enabled=params.is_enabled if params.is_enabled is not None else True,
            description=params.description,
            allocation_model=params.allocation_model,
            is_thin_provision=bool(params.is_thin_provision),
            uses_fast_provisioning=bool(params.uses_fast_provisioning),
        )
        self.state.vdcs[href] = vdc
        task = self.state.create_task(
            "vdcCreateVdc",
            href,
            vdc.name,
            on_failure=lambda: self.state.remove_vdc(href),
        )
        return vdc_element(vdc, task)
