"""Remote handle resolution.

``resolve`` maps a stored href onto the live remote object and keeps the
three outcomes apart:

- found -> the parsed entity
- not found -> None, a normal reconciliation signal
- anything else (network, auth, 5xx, malformed body) -> TransportError

The name lookups below resolve scoping (org, vdc) and creation references.
They are never used in place of a stored href to find a managed resource.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections.abc import Callable
from typing import Any, TypeVar

from azure.core.exceptions import AzureError, ResourceNotFoundError

from .entities import AdminVdc, Org, Reference, parse_org, parse_references
from .errors import ResourceValidationError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# vCD query service record types used for creation references
QUERY_PROVIDER_VDC = "providerVdc"
QUERY_NETWORK_POOL = "networkPool"
QUERY_PROVIDER_VDC_STORAGE_PROFILE = "providerVdcStorageProfile"


def _transport_error(action: str, e: AzureError) -> TransportError:
    return TransportError(f"{action}: {e.message}", status_code=getattr(e, "status_code", None))


def resolve(client: Any, locator: str, parser: Callable[[ET.Element], T]) -> T | None:
    """Fetch the object behind ``locator``.

    An empty locator is NotFound: a failed create never stores one.

    Raises:
        TransportError: On any failure other than NotFound.
    """
    if not locator:
        return None

    try:
        element = client.get(locator)
    except ResourceNotFoundError:
        logger.info("Remote object not found", extra={"href": locator})
        return None
    except AzureError as e:
        raise _transport_error(f"Failed to resolve {locator}", e) from e

    try:
        return parser(element)
    except ValueError as e:
        raise TransportError(f"Unexpected document at {locator}: {e}") from e


def is_href(value: str) -> bool:
    return value.startswith(("http://", "https://"))


def admin_href(org_href: str) -> str:
    """Admin API href of an org (``/api/org/x`` -> ``/api/admin/org/x``)."""
    if "/api/admin/org/" in org_href:
        return org_href
    if "/api/org/" not in org_href:
        raise ResourceValidationError(f"Not an org href: {org_href}")
    return org_href.replace("/api/org/", "/api/admin/org/", 1)


def find_org(client: Any, name: str) -> Org:
    """Look up an org by name through the OrgList.

    Raises:
        ResourceValidationError: If no org has that name.
        TransportError: If the lookup failed.
    """
    try:
        references = parse_references(client.get("/org"))
    except AzureError as e:
        raise _transport_error("Failed to list orgs", e) from e

    for reference in references:
        if reference.name == name:
            org = resolve(client, reference.href, parse_org)
            if org is None:
                break
            return org

    raise ResourceValidationError(f"Org '{name}' not found")


def find_vdc(client: Any, org: Org, name: str) -> Reference:
    """Look up a VDC of ``org`` by name.

    Raises:
        ResourceValidationError: If the org has no VDC with that name.
    """
    for link in org.vdc_links():
        if link.name == name:
            return Reference(href=link.href, name=name, type=link.type)
    raise ResourceValidationError(f"VDC '{name}' not found in org '{org.name}'")


def find_reference(
    client: Any,
    query_type: str,
    name: str,
    filters: dict[str, str] | None = None,
) -> Reference | None:
    """Resolve a named entity through the vCD query service.

    Args:
        client: Transport client.
        query_type: Query record type, e.g. ``providerVdc``.
        name: Entity name to match.
        filters: Extra ``key==value`` conditions ANDed with the name.

    Returns:
        The reference, or None when nothing matched.

    Raises:
        ResourceValidationError: If the name is ambiguous.
        TransportError: If the query failed.
    """
    conditions = [f"name=={name}"]
    conditions.extend(f"{key}=={value}" for key, value in (filters or {}).items())
    params = {"type": query_type, "format": "references", "filter": ";".join(conditions)}

    try:
        references = parse_references(client.get("/query", params=params))
    except AzureError as e:
        raise _transport_error(f"Query for {query_type} '{name}' failed", e) from e

    matches = [reference for reference in references if reference.name == name]
    if len(matches) > 1:
        raise ResourceValidationError(
            f"{query_type} name '{name}' is ambiguous ({len(matches)} matches)"
        )
    return matches[0] if matches else None


def resolve_reference(
    client: Any,
    query_type: str,
    value: str,
    filters: dict[str, str] | None = None,
) -> str:
    """Return an href for ``value``, which may already be one.

    Raises:
        ResourceValidationError: If the name matches nothing.
    """
    if is_href(value):
        return value
    reference = find_reference(client, query_type, value, filters)
    if reference is None:
        raise ResourceValidationError(f"{query_type} '{value}' not found")
    return reference.href


def vdc_link(vdc: AdminVdc, rel: str) -> str | None:
    """Href of a VDC action link (``enable``, ``disable``, ``remove``)."""
    link = vdc.link(rel)
    return link.href if link is not None else None
