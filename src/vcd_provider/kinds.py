"""Per-kind lifecycle capabilities.

The reconciler is generic; everything kind-specific lives behind the
ResourceKind interface:

- prepare: resolve scoping and creation references (blocking I/O)
- translate: pure spec -> payload translation
- submit_create / submit_delete / apply_in_place: blocking mutating calls
  that return the vCD Task to await
- resolve: fetch the live object by href
- observe: attributes refreshed from the live object on read
- attribute_policies: how a changed attribute is handled on update

All blocking methods are run by the reconciler in the default executor.
"""

from __future__ import annotations

import dataclasses
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar

from azure.core.exceptions import DecodeError

from .context import ProviderContext
from .entities import (
    AdminVdc,
    Disk,
    Task,
    first_task,
    parse_admin_vdc,
    parse_disk,
    parse_task,
)
from .errors import ResourceValidationError
from .identity import IdentityMode
from .models import BaseResourceSpec, DiskSpec, VdcSpec
from .payloads import (
    CreateVdcParams,
    DiskCreateParams,
    VdcReferences,
    build_disk_create_params,
    build_vdc_create_params,
)
from .resolver import (
    QUERY_NETWORK_POOL,
    QUERY_PROVIDER_VDC,
    QUERY_PROVIDER_VDC_STORAGE_PROFILE,
    admin_href,
    find_org,
    find_vdc,
    resolve,
    resolve_reference,
    vdc_link,
)

logger = logging.getLogger(__name__)


class AttributePolicy(str, Enum):
    """How a change to one attribute is reconciled."""

    FORCE_NEW = "force_new"  # destroy and recreate, upstream
    IN_PLACE = "in_place"  # remote update call
    LOCAL_ONLY = "local_only"  # mirror only, never sent to vCD


def completed_task(owner_href: str) -> Task:
    """Stand-in task for calls that vCD completed synchronously (204)."""
    return Task(href="", status="success", owner_href=owner_href)


def _decode_created(element: Any, parser: Any, what: str) -> Any:
    if element is None:
        raise DecodeError(message=f"vCD returned no {what} document")
    try:
        return parser(element)
    except ValueError as e:
        raise DecodeError(message=f"Unexpected response to {what} create: {e}") from e


def _owned_task(task: Task | None, owner_href: str) -> Task:
    if task is None:
        return completed_task(owner_href)
    if not task.owner_href:
        return dataclasses.replace(task, owner_href=owner_href)
    return task


class ResourceKind(ABC):
    """Capability interface implemented once per resource kind."""

    name: ClassVar[str]
    spec_class: ClassVar[type[BaseResourceSpec]]
    default_identity_mode: ClassVar[IdentityMode] = IdentityMode.LOCATOR
    attribute_policies: ClassVar[dict[str, AttributePolicy]] = {}

    def policy_for(self, attribute: str) -> AttributePolicy:
        # Undeclared attributes cannot be changed safely in place
        return self.attribute_policies.get(attribute, AttributePolicy.FORCE_NEW)

    def identity_mode(self, context: ProviderContext) -> IdentityMode:
        return context.identity_mode or self.default_identity_mode

    @abstractmethod
    def prepare(self, context: ProviderContext, spec: Any) -> Any:
        """Resolve scoping and references needed to create ``spec``."""

    @abstractmethod
    def translate(self, spec: Any, target: Any) -> Any:
        """Build the create payload. Must not perform I/O."""

    @abstractmethod
    def submit_create(self, context: ProviderContext, target: Any, payload: Any) -> Task:
        """Issue the create request and return its task."""

    @abstractmethod
    def resolve(self, context: ProviderContext, href: str) -> Any | None:
        """Return the live object, or None if it no longer exists."""

    @abstractmethod
    def observe(self, remote: Any) -> dict[str, Any]:
        """Attributes read back from the live object."""

    @abstractmethod
    def submit_delete(
        self,
        context: ProviderContext,
        remote: Any,
        spec: Any | None,
        attributes: dict[str, Any],
    ) -> Task:
        """Issue the delete request and return its task.

        ``attributes`` is the last-applied mirror, used when ``spec`` is None.
        """

    def apply_in_place(
        self,
        context: ProviderContext,
        remote: Any,
        changes: dict[str, Any],
    ) -> Task:
        """Apply IN_PLACE attribute changes to the live object."""
        raise ResourceValidationError(
            f"Cannot update {self.name} attributes in place: {sorted(changes)}"
        )


# =============================================================================
# Independent Disk
# =============================================================================


class DiskKind(ResourceKind):
    """Independent disks in an org VDC.

    Disks keep name-based identity by default for compatibility with state
    written by the earlier provider; set VCD_IDENTITY_MODE=locator to opt out.

    vCD can update a disk's size and description through a separate
    ``updateDisk`` action, but the earlier provider never called it and
    accepted the changes silently. Every attribute is FORCE_NEW here so a
    change is surfaced instead of ignored.
    """

    name = "Disk"
    spec_class = DiskSpec
    default_identity_mode = IdentityMode.NAME
    attribute_policies = {
        "org": AttributePolicy.FORCE_NEW,
        "vdc": AttributePolicy.FORCE_NEW,
        "name": AttributePolicy.FORCE_NEW,
        "size": AttributePolicy.FORCE_NEW,
        "description": AttributePolicy.FORCE_NEW,
    }

    def prepare(self, context: ProviderContext, spec: DiskSpec) -> str:
        vdc_name = context.vdc_for(spec.vdc)
        if not vdc_name:
            raise ResourceValidationError(
                f"Disk '{spec.name}' has no vdc and no default VDC is configured"
            )
        org = find_org(context.client, context.org_for(spec.org))
        return find_vdc(context.client, org, vdc_name).href

    def translate(self, spec: DiskSpec, target: str) -> DiskCreateParams:
        return build_disk_create_params(spec)

    def submit_create(
        self,
        context: ProviderContext,
        target: str,
        payload: DiskCreateParams,
    ) -> Task:
        element = context.client.post(
            f"{target}/disk",
            payload.to_xml(),
            content_type=payload.media_type,
        )
        disk = _decode_created(element, parse_disk, "Disk")
        return _owned_task(first_task(disk.tasks), disk.href)

    def resolve(self, context: ProviderContext, href: str) -> Disk | None:
        return resolve(context.client, href, parse_disk)

    def observe(self, remote: Disk) -> dict[str, Any]:
        observed: dict[str, Any] = {"name": remote.name}
        if remote.size is not None:
            observed["size"] = remote.size
        if remote.description is not None:
            observed["description"] = remote.description
        return observed

    def submit_delete(
        self,
        context: ProviderContext,
        remote: Disk,
        spec: DiskSpec | None,
        attributes: dict[str, Any],
    ) -> Task:
        element = context.client.delete(remote.href)
        return _owned_task(parse_task(element) if element is not None else None, remote.href)


# =============================================================================
# Virtual Datacenter
# =============================================================================


class VdcKind(ResourceKind):
    """Org VDCs, created through the admin API.

    ``is_enabled`` is toggled in place with the enable/disable actions.
    ``delete_force`` and ``delete_recursive`` only parameterize delete and are
    never sent on create.
    """

    name = "Vdc"
    spec_class = VdcSpec
    default_identity_mode = IdentityMode.LOCATOR
    attribute_policies = {
        "is_enabled": AttributePolicy.IN_PLACE,
        "delete_force": AttributePolicy.LOCAL_ONLY,
        "delete_recursive": AttributePolicy.LOCAL_ONLY,
    }

    def prepare(self, context: ProviderContext, spec: VdcSpec) -> tuple[str, VdcReferences]:
        client = context.client
        org = find_org(client, context.org_for(spec.org))
        provider_vdc_href = resolve_reference(client, QUERY_PROVIDER_VDC, spec.provider_vdc)

        storage_profile_hrefs = {
            profile.provider: resolve_reference(
                client, QUERY_PROVIDER_VDC_STORAGE_PROFILE, profile.provider
            )
            for profile in spec.storage_profiles
        }

        network_pool_href = None
        if spec.network_pool:
            network_pool_href = resolve_reference(client, QUERY_NETWORK_POOL, spec.network_pool)

        refs = VdcReferences(
            provider_vdc_href=provider_vdc_href,
            storage_profile_hrefs=storage_profile_hrefs,
            network_pool_href=network_pool_href,
        )
        return admin_href(org.href), refs

    def translate(self, spec: VdcSpec, target: tuple[str, VdcReferences]) -> CreateVdcParams:
        _, refs = target
        return build_vdc_create_params(spec, refs)

    def submit_create(
        self,
        context: ProviderContext,
        target: tuple[str, VdcReferences],
        payload: CreateVdcParams,
    ) -> Task:
        admin_org_href, _ = target
        element = context.client.post(
            f"{admin_org_href}/vdcsparams",
            payload.to_xml(),
            content_type=payload.media_type,
        )
        vdc = _decode_created(element, parse_admin_vdc, "AdminVdc")
        return _owned_task(first_task(vdc.tasks), vdc.href)

    def resolve(self, context: ProviderContext, href: str) -> AdminVdc | None:
        return resolve(context.client, href, parse_admin_vdc)

    def observe(self, remote: AdminVdc) -> dict[str, Any]:
        observed: dict[str, Any] = {"name": remote.name}
        for key, value in (
            ("description", remote.description),
            ("allocation_model", remote.allocation_model),
            ("is_enabled", remote.is_enabled),
            ("is_thin_provision", remote.is_thin_provision),
            ("uses_fast_provisioning", remote.uses_fast_provisioning),
        ):
            if value is not None:
                observed[key] = value
        return observed

    def _set_enabled(self, context: ProviderContext, vdc: AdminVdc, enabled: bool) -> None:
        action = "enable" if enabled else "disable"
        href = vdc_link(vdc, action) or f"{vdc.href}/action/{action}"
        logger.info(f"{action.capitalize()} VDC", extra={"href": vdc.href, "vdc": vdc.name})
        context.client.post(href)

    def apply_in_place(
        self,
        context: ProviderContext,
        remote: AdminVdc,
        changes: dict[str, Any],
    ) -> Task:
        unsupported = set(changes) - {"is_enabled"}
        if unsupported:
            raise ResourceValidationError(
                f"Cannot update VDC attributes in place: {sorted(unsupported)}"
            )
        self._set_enabled(context, remote, bool(changes["is_enabled"]))
        return completed_task(remote.href)

    def submit_delete(
        self,
        context: ProviderContext,
        remote: AdminVdc,
        spec: VdcSpec | None,
        attributes: dict[str, Any],
    ) -> Task:
        # vCD refuses to delete an enabled VDC
        if remote.is_enabled:
            self._set_enabled(context, remote, False)

        if spec is not None:
            force, recursive = spec.delete_force, spec.delete_recursive
        else:
            force = bool(attributes.get("delete_force", False))
            recursive = bool(attributes.get("delete_recursive", False))
        params = {"force": str(force).lower(), "recursive": str(recursive).lower()}
        element = context.client.delete(remote.href, params=params)
        return _owned_task(parse_task(element) if element is not None else None, remote.href)


KIND_REGISTRY: dict[str, ResourceKind] = {
    DiskKind.name: DiskKind(),
    VdcKind.name: VdcKind(),
}


def get_kind(name: str) -> ResourceKind:
    """Look up a resource kind by name.

    Raises:
        ValueError: If the kind is not registered.
    """
    kind = KIND_REGISTRY.get(name)
    if kind is None:
        raise ValueError(f"Unknown resource kind '{name}'. Valid kinds: {list(KIND_REGISTRY)}")
    return kind
