"""vCD REST client on the azure-core HTTP pipeline.

The client is a thin transport collaborator: it sends XML documents and
returns parsed elements. HTTP failures are raised as typed azure-core
exceptions so that callers can separate "not found" from everything else:

- 404 -> ResourceNotFoundError
- 401 -> ClientAuthenticationError
- 409 -> ResourceExistsError
- other non-success codes -> HttpResponseError
- unreadable body -> DecodeError
- connection failures -> ServiceRequestError / ServiceResponseError (raised
  by the transport itself)

The remote ``<Error message=...>`` text is used as the exception message so
the vCD diagnostic reaches the user unchanged.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from typing import Any

from azure.core import PipelineClient
from azure.core.exceptions import (
    ClientAuthenticationError,
    DecodeError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
)
from azure.core.pipeline import PipelineRequest
from azure.core.pipeline.policies import (
    HeadersPolicy,
    HttpLoggingPolicy,
    RedirectPolicy,
    RetryPolicy,
    SansIOHTTPPolicy,
    UserAgentPolicy,
)
from azure.core.rest import HttpRequest, HttpResponse

from .config import Config, TokenType
from .entities import Task, local_name, parse_error_document, parse_task, parse_xml

logger = logging.getLogger(__name__)

USER_AGENT = "vcd-provider/0.1.0"

VCLOUD_AUTH_HEADER = "x-vcloud-authorization"

ERROR_MAP: dict[int, type[HttpResponseError]] = {
    401: ClientAuthenticationError,
    404: ResourceNotFoundError,
    409: ResourceExistsError,
}

# Minor error code vCD uses for both missing and inaccessible entities
FORBIDDEN_MINOR_ERROR_CODE = "ACCESS_TO_RESOURCE_IS_FORBIDDEN"

# Only these are retried by the pipeline; a resent POST or DELETE may act twice
RETRYABLE_METHODS = frozenset({"GET", "HEAD"})


class VcdAuthPolicy(SansIOHTTPPolicy):
    """Attach the pre-issued API token to every request."""

    def __init__(self, token: str, token_type: TokenType) -> None:
        super().__init__()
        self._token = token
        self._token_type = token_type

    def on_request(self, request: PipelineRequest) -> None:
        if self._token_type == TokenType.BEARER:
            request.http_request.headers["Authorization"] = f"Bearer {self._token}"
        else:
            request.http_request.headers[VCLOUD_AUTH_HEADER] = self._token


class VcdClient:
    """Synchronous vCD API client.

    All methods block; async callers run them in an executor the same way
    Azure SDK pollers are driven.
    """

    def __init__(
        self,
        config: Config,
        *,
        transport: Any | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Validated provider configuration.
            transport: Optional azure-core HttpTransport (tests inject one).
        """
        self._config = config
        policies = [
            HeadersPolicy(
                base_headers={"Accept": f"application/*+xml;version={config.api_version}"}
            ),
            UserAgentPolicy(base_user_agent=USER_AGENT),
            RedirectPolicy(),
            RetryPolicy(retry_total=config.transport_retries),
            VcdAuthPolicy(config.auth_token, config.token_type),
            HttpLoggingPolicy(),
        ]
        kwargs: dict[str, Any] = {"policies": policies}
        if transport is not None:
            kwargs["transport"] = transport
        self._client = PipelineClient(base_url=config.api_base, **kwargs)

    @property
    def base_url(self) -> str:
        return self._config.api_base

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> VcdClient:
        self._client.__enter__()
        return self

    def __exit__(self, *exc_details: Any) -> None:
        self._client.__exit__(*exc_details)

    def url(self, href: str) -> str:
        """Resolve a relative API path (``/org``) against the API base."""
        return self._client.format_url(href)

    def get(self, href: str, params: dict[str, str] | None = None) -> ET.Element:
        """GET an entity.

        Raises:
            ResourceNotFoundError: If the entity does not exist.
            HttpResponseError: On any other error status.
        """
        request = HttpRequest("GET", self.url(href), params=params)
        response = self._send(request, expected=(200,), lookup=True)
        return self._decode(response)

    def post(
        self,
        href: str,
        body: bytes | None = None,
        content_type: str | None = None,
    ) -> ET.Element | None:
        """POST a document (or an action with no body).

        Returns:
            The parsed response document, or None for 204 No Content.
        """
        headers = {"Content-Type": content_type} if content_type else None
        request = HttpRequest("POST", self.url(href), headers=headers, content=body)
        response = self._send(request, expected=(200, 201, 202, 204))
        if response.status_code == 204 or not response.content:
            return None
        return self._decode(response)

    def delete(self, href: str, params: dict[str, str] | None = None) -> ET.Element | None:
        """DELETE an entity.

        Returns:
            The parsed Task document, or None for 204 No Content.
        """
        request = HttpRequest("DELETE", self.url(href), params=params)
        response = self._send(request, expected=(202, 204))
        if response.status_code == 204 or not response.content:
            return None
        return self._decode(response)

    def get_task(self, href: str) -> Task:
        """Fetch the current state of a task."""
        element = self.get(href)
        if local_name(element.tag) != "Task":
            raise DecodeError(message=f"Expected Task document at {href}, got {element.tag}")
        return parse_task(element)

    def _send(
        self,
        request: HttpRequest,
        *,
        expected: tuple[int, ...],
        lookup: bool = False,
    ) -> HttpResponse:
        options: dict[str, Any] = {"read_timeout": self._config.request_timeout_seconds}
        if request.method not in RETRYABLE_METHODS:
            options["retry_total"] = 0
        response = self._client.send_request(request, **options)
        if response.status_code in expected:
            return response

        error_doc = parse_error_document(response.content) if response.content else None
        message = error_doc.message if error_doc and error_doc.message else None
        if message is None:
            message = f"{request.method} {request.url} returned {response.status_code}"

        error_type = ERROR_MAP.get(response.status_code, HttpResponseError)
        if (
            lookup
            and response.status_code == 403
            and self._config.forbidden_as_not_found
            and error_doc is not None
            and error_doc.minor_error_code == FORBIDDEN_MINOR_ERROR_CODE
        ):
            error_type = ResourceNotFoundError

        logger.debug(
            "vCD request failed",
            extra={
                "method": request.method,
                "url": request.url,
                "status_code": response.status_code,
                "minor_error_code": error_doc.minor_error_code if error_doc else None,
            },
        )
        raise error_type(message=message, response=response)

    def _decode(self, response: HttpResponse) -> ET.Element:
        try:
            return parse_xml(response.content)
        except ET.ParseError as e:
            raise DecodeError(
                message=f"Malformed XML in response from {response.request.url}: {e}",
                response=response,
            ) from e
