"""Desired-state translation into vCD create payloads.

Every ``build_*`` function is pure: no I/O, deterministic for a given spec.
Optional fields are carried as ``None`` when the caller did not set them and
are then omitted from the XML entirely. An absent field must never reach
vCD as an empty string or zero, which would clear a server-side default.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, ClassVar

from .entities import (
    CREATE_VDC_PARAMS_MEDIA_TYPE,
    DISK_CREATE_PARAMS_MEDIA_TYPE,
    VCLOUD_NS,
    child_text,
    find_child,
    find_children,
    local_name,
    parse_xml,
)
from .errors import ResourceValidationError
from .models import DiskSpec, VdcSpec


def _qn(tag: str) -> str:
    return f"{{{VCLOUD_NS}}}{tag}"


def _sub(parent: ET.Element, tag: str, text: Any = None, **attrib: str) -> ET.Element:
    element = ET.SubElement(parent, _qn(tag), attrib)
    if text is not None:
        element.text = _format_value(text)
    return element


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _serialize(root: ET.Element) -> bytes:
    ET.register_namespace("", VCLOUD_NS)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def _optional(spec: Any, field_name: str) -> Any:
    """Value of an optional field, or None when the caller did not set it."""
    if not spec.is_set(field_name):
        return None
    return getattr(spec, field_name)


def _require(value: Any, field_name: str) -> Any:
    if value is None or value == "":
        raise ResourceValidationError(f"Required field '{field_name}' is missing")
    return value


# =============================================================================
# Independent Disk
# =============================================================================


@dataclass(frozen=True)
class DiskPayload:
    """The ``<Disk>`` element of a DiskCreateParams document."""

    name: str
    size: int
    description: str | None = None


@dataclass(frozen=True)
class DiskCreateParams:
    """Payload for ``POST <vdc>/disk``."""

    media_type: ClassVar[str] = DISK_CREATE_PARAMS_MEDIA_TYPE

    disk: DiskPayload

    def as_dict(self) -> dict[str, Any]:
        """Field view of the payload; absent optional fields have no key."""
        disk: dict[str, Any] = {"Name": self.disk.name, "Size": self.disk.size}
        if self.disk.description is not None:
            disk["Description"] = self.disk.description
        return {"Disk": disk}

    def to_xml(self) -> bytes:
        root = ET.Element(_qn("DiskCreateParams"))
        disk = _sub(root, "Disk", name=self.disk.name, size=str(self.disk.size))
        if self.disk.description is not None:
            _sub(disk, "Description", self.disk.description)
        return _serialize(root)

    @classmethod
    def from_xml(cls, content: bytes | str) -> DiskCreateParams:
        """Decode a DiskCreateParams document.

        A missing ``<Description>`` decodes to None; an empty one to "".
        """
        root = parse_xml(content)
        if local_name(root.tag) != "DiskCreateParams":
            raise ValueError(f"Expected DiskCreateParams, got {local_name(root.tag)}")
        disk = find_child(root, "Disk")
        if disk is None:
            raise ValueError("DiskCreateParams has no Disk element")
        description_element = find_child(disk, "Description")
        description = None
        if description_element is not None:
            description = description_element.text or ""
        return cls(
            disk=DiskPayload(
                name=disk.get("name", ""),
                size=int(disk.get("size", "0")),
                description=description,
            )
        )


def build_disk_create_params(spec: DiskSpec) -> DiskCreateParams:
    """Translate a disk spec into its create payload.

    Raises:
        ResourceValidationError: If a required field is missing.
    """
    return DiskCreateParams(
        disk=DiskPayload(
            name=_require(spec.name, "name"),
            size=_require(spec.size, "size"),
            description=_optional(spec, "description"),
        )
    )


# =============================================================================
# Virtual Datacenter
# =============================================================================


@dataclass(frozen=True)
class VdcReferences:
    """Remote references a VDC payload needs, resolved before translation."""

    provider_vdc_href: str
    storage_profile_hrefs: dict[str, str]
    network_pool_href: str | None = None


@dataclass(frozen=True)
class CapacityPayload:
    units: str
    allocated: int | None = None
    limit: int | None = None
    reserved: int | None = None


@dataclass(frozen=True)
class StorageProfilePayload:
    provider_href: str
    limit: int
    units: str = "MB"
    enabled: bool = True
    default: bool = False


@dataclass(frozen=True)
class CreateVdcParams:
    """Payload for ``POST <adminOrg>/vdcsparams``.

    Element order follows the CreateVdcParamsType schema sequence.
    """

    media_type: ClassVar[str] = CREATE_VDC_PARAMS_MEDIA_TYPE

    name: str
    allocation_model: str
    provider_vdc_href: str
    cpu: CapacityPayload
    memory: CapacityPayload
    storage_profiles: list[StorageProfilePayload] = field(default_factory=list)
    description: str | None = None
    nic_quota: int | None = None
    network_quota: int | None = None
    vm_quota: int | None = None
    is_enabled: bool | None = None
    memory_guaranteed: float | None = None
    cpu_guaranteed: float | None = None
    cpu_speed: int | None = None
    is_thin_provision: bool | None = None
    network_pool_href: str | None = None
    uses_fast_provisioning: bool | None = None

    def to_xml(self) -> bytes:
        root = ET.Element(_qn("CreateVdcParams"), {"name": self.name})
        if self.description is not None:
            _sub(root, "Description", self.description)
        _sub(root, "AllocationModel", self.allocation_model)

        capacity = _sub(root, "ComputeCapacity")
        for tag, value in (("Cpu", self.cpu), ("Memory", self.memory)):
            element = _sub(capacity, tag)
            _sub(element, "Units", value.units)
            for child_tag, child_value in (
                ("Allocated", value.allocated),
                ("Limit", value.limit),
                ("Reserved", value.reserved),
            ):
                if child_value is not None:
                    _sub(element, child_tag, child_value)

        for tag, value in (
            ("NicQuota", self.nic_quota),
            ("NetworkQuota", self.network_quota),
            ("VmQuota", self.vm_quota),
            ("IsEnabled", self.is_enabled),
        ):
            if value is not None:
                _sub(root, tag, value)

        for profile in self.storage_profiles:
            element = _sub(root, "VdcStorageProfile")
            _sub(element, "Enabled", profile.enabled)
            _sub(element, "Units", profile.units)
            _sub(element, "Limit", profile.limit)
            _sub(element, "Default", profile.default)
            _sub(element, "ProviderVdcStorageProfile", href=profile.provider_href)

        for tag, value in (
            ("ResourceGuaranteedMemory", self.memory_guaranteed),
            ("ResourceGuaranteedCpu", self.cpu_guaranteed),
            ("VCpuInMhz", self.cpu_speed),
            ("IsThinProvision", self.is_thin_provision),
        ):
            if value is not None:
                _sub(root, tag, value)

        if self.network_pool_href is not None:
            _sub(root, "NetworkPoolReference", href=self.network_pool_href)
        _sub(root, "ProviderVdcReference", href=self.provider_vdc_href)
        if self.uses_fast_provisioning is not None:
            _sub(root, "UsesFastProvisioning", self.uses_fast_provisioning)

        return _serialize(root)

    @classmethod
    def from_xml(cls, content: bytes | str) -> CreateVdcParams:
        """Decode a CreateVdcParams document; absent elements decode to None."""
        root = parse_xml(content)
        if local_name(root.tag) != "CreateVdcParams":
            raise ValueError(f"Expected CreateVdcParams, got {local_name(root.tag)}")

        def opt_int(name: str) -> int | None:
            text = child_text(root, name)
            return int(text) if text is not None else None

        def opt_float(name: str) -> float | None:
            text = child_text(root, name)
            return float(text) if text is not None else None

        def opt_bool(name: str) -> bool | None:
            text = child_text(root, name)
            return text == "true" if text is not None else None

        def capacity(tag: str) -> CapacityPayload:
            capacity_element = find_child(root, "ComputeCapacity")
            element = find_child(capacity_element, tag) if capacity_element is not None else None
            if element is None:
                raise ValueError(f"CreateVdcParams has no {tag} capacity")
            values = {
                name: int(text)
                for name, text in (
                    ("allocated", child_text(element, "Allocated")),
                    ("limit", child_text(element, "Limit")),
                    ("reserved", child_text(element, "Reserved")),
                )
                if text is not None
            }
            return CapacityPayload(units=child_text(element, "Units") or "", **values)

        def href_of(name: str) -> str | None:
            element = find_child(root, name)
            return element.get("href") if element is not None else None

        profiles = []
        for element in find_children(root, "VdcStorageProfile"):
            provider = find_child(element, "ProviderVdcStorageProfile")
            profiles.append(
                StorageProfilePayload(
                    provider_href=provider.get("href", "") if provider is not None else "",
                    limit=int(child_text(element, "Limit") or "0"),
                    units=child_text(element, "Units") or "MB",
                    enabled=child_text(element, "Enabled") == "true",
                    default=child_text(element, "Default") == "true",
                )
            )

        return cls(
            name=root.get("name", ""),
            description=child_text(root, "Description"),
            allocation_model=child_text(root, "AllocationModel") or "",
            provider_vdc_href=href_of("ProviderVdcReference") or "",
            cpu=capacity("Cpu"),
            memory=capacity("Memory"),
            storage_profiles=profiles,
            nic_quota=opt_int("NicQuota"),
            network_quota=opt_int("NetworkQuota"),
            vm_quota=opt_int("VmQuota"),
            is_enabled=opt_bool("IsEnabled"),
            memory_guaranteed=opt_float("ResourceGuaranteedMemory"),
            cpu_guaranteed=opt_float("ResourceGuaranteedCpu"),
            cpu_speed=opt_int("VCpuInMhz"),
            is_thin_provision=opt_bool("IsThinProvision"),
            network_pool_href=href_of("NetworkPoolReference"),
            uses_fast_provisioning=opt_bool("UsesFastProvisioning"),
        )


def _capacity(config: Any) -> CapacityPayload:
    return CapacityPayload(
        units=config.units,
        allocated=config.allocated,
        limit=config.limit,
        reserved=config.reserved,
    )


def build_vdc_create_params(spec: VdcSpec, refs: VdcReferences) -> CreateVdcParams:
    """Translate a VDC spec into its create payload.

    ``is_enabled`` has a model default and is always sent; the other optional
    elements are sent only when the caller set them.

    Raises:
        ResourceValidationError: If a required field or reference is missing.
    """
    profiles = []
    for profile in spec.storage_profiles:
        href = refs.storage_profile_hrefs.get(profile.provider)
        if not href:
            raise ResourceValidationError(
                f"No reference resolved for storage profile '{profile.provider}'"
            )
        profiles.append(
            StorageProfilePayload(
                provider_href=href,
                limit=profile.limit,
                units=profile.units,
                enabled=profile.enabled,
                # A lone profile is the default one
                default=profile.default or len(spec.storage_profiles) == 1,
            )
        )

    if spec.is_set("network_pool") and spec.network_pool and not refs.network_pool_href:
        raise ResourceValidationError(
            f"No reference resolved for network pool '{spec.network_pool}'"
        )

    return CreateVdcParams(
        name=_require(spec.name, "name"),
        allocation_model=_require(spec.allocation_model, "allocation_model"),
        provider_vdc_href=_require(refs.provider_vdc_href, "provider_vdc"),
        cpu=_capacity(spec.compute_capacity.cpu),
        memory=_capacity(spec.compute_capacity.memory),
        storage_profiles=profiles,
        description=_optional(spec, "description"),
        nic_quota=_optional(spec, "nic_quota"),
        network_quota=_optional(spec, "network_quota"),
        vm_quota=_optional(spec, "vm_quota"),
        is_enabled=spec.is_enabled,
        memory_guaranteed=_optional(spec, "memory_guaranteed"),
        cpu_guaranteed=_optional(spec, "cpu_guaranteed"),
        cpu_speed=_optional(spec, "cpu_speed"),
        is_thin_provision=_optional(spec, "is_thin_provision"),
        network_pool_href=refs.network_pool_href,
        uses_fast_provisioning=_optional(spec, "uses_fast_provisioning"),
    )
