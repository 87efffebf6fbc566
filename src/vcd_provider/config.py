"""Configuration management with validation.

Configuration is validated at construction time so that a misconfigured
provider fails before issuing any remote call.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class TokenType(str, Enum):
    """How the pre-issued API token is presented to vCD."""

    VCLOUD = "vcloud"  # x-vcloud-authorization header (legacy session token)
    BEARER = "bearer"  # Authorization: Bearer (API 30.0+)


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_API_VERSION = "32.0"

DEFAULT_TASK_TIMEOUT_SECONDS = 600
MIN_TASK_TIMEOUT_SECONDS = 10
MAX_TASK_TIMEOUT_SECONDS = 7200

DEFAULT_TASK_POLL_INITIAL_SECONDS = 1.0
DEFAULT_TASK_POLL_MAX_SECONDS = 10.0

DEFAULT_REQUEST_TIMEOUT_SECONDS = 60
DEFAULT_TRANSPORT_RETRIES = 3
MAX_TRANSPORT_RETRIES = 10

DEFAULT_STATE_FILE = "vcd-state.json"

# Security constraints - enforced limits to prevent abuse
MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max spec file
MAX_STATE_FILE_SIZE_BYTES = 10 * 1024 * 1024  # 10MB max state file
MAX_RESOURCE_NAME_LENGTH = 128

# Input validation patterns
VALID_API_VERSION_PATTERN = r"^[0-9]{1,2}\.[0-9]$"
VALID_ORG_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$"

# Identity mode names accepted in VCD_IDENTITY_MODE
IDENTITY_MODES = ("locator", "name")


@dataclass(frozen=True)
class Config:
    """Provider configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    url: str
    org: str
    auth_token: str = field(repr=False)

    # Scoping
    vdc: str | None = None

    # API
    api_version: str = DEFAULT_API_VERSION
    token_type: TokenType = TokenType.VCLOUD
    allow_insecure: bool = False

    # Timing
    task_timeout_seconds: int = DEFAULT_TASK_TIMEOUT_SECONDS
    task_poll_initial_seconds: float = DEFAULT_TASK_POLL_INITIAL_SECONDS
    task_poll_max_seconds: float = DEFAULT_TASK_POLL_MAX_SECONDS
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS

    # Transport
    transport_retries: int = DEFAULT_TRANSPORT_RETRIES

    # vCD answers 403 ACCESS_TO_RESOURCE_IS_FORBIDDEN for deleted entities on
    # some releases; when enabled that answer resolves as not found
    forbidden_as_not_found: bool = False

    # Identity override; None keeps each resource kind's default
    identity_mode: str | None = None

    # Local state
    state_file: Path = field(default_factory=lambda: Path(DEFAULT_STATE_FILE))

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        import re

        errors: list[str] = []

        if not self.url:
            errors.append("VCD_URL is required")
        elif not self.url.startswith(("https://", "http://")):
            errors.append(f"VCD_URL must be an http(s) URL: {self.url}")
        elif self.url.startswith("http://") and not self.allow_insecure:
            errors.append("VCD_URL must use https (set VCD_ALLOW_INSECURE=true to override)")

        if not self.org:
            errors.append("VCD_ORG is required")
        elif not re.match(VALID_ORG_NAME_PATTERN, self.org):
            errors.append(f"VCD_ORG must match pattern {VALID_ORG_NAME_PATTERN}: {self.org}")

        if not self.auth_token:
            errors.append("VCD_AUTH_TOKEN is required")

        if not re.match(VALID_API_VERSION_PATTERN, self.api_version):
            errors.append(f"VCD_API_VERSION must look like '32.0': {self.api_version}")

        # Timing validation
        if not (
            MIN_TASK_TIMEOUT_SECONDS <= self.task_timeout_seconds <= MAX_TASK_TIMEOUT_SECONDS
        ):
            errors.append(
                f"VCD_TASK_TIMEOUT must be between {MIN_TASK_TIMEOUT_SECONDS} "
                f"and {MAX_TASK_TIMEOUT_SECONDS} seconds"
            )

        if self.task_poll_initial_seconds <= 0:
            errors.append("VCD_TASK_POLL_INITIAL must be positive")
        elif self.task_poll_max_seconds < self.task_poll_initial_seconds:
            errors.append("VCD_TASK_POLL_MAX must be >= VCD_TASK_POLL_INITIAL")

        if self.request_timeout_seconds <= 0:
            errors.append("VCD_REQUEST_TIMEOUT must be positive")

        if not (0 <= self.transport_retries <= MAX_TRANSPORT_RETRIES):
            errors.append(f"VCD_TRANSPORT_RETRIES must be between 0 and {MAX_TRANSPORT_RETRIES}")

        if self.identity_mode is not None and self.identity_mode not in IDENTITY_MODES:
            errors.append(f"VCD_IDENTITY_MODE must be one of {list(IDENTITY_MODES)}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def api_base(self) -> str:
        """Base URL of the vCD API (``<url>/api``)."""
        base = self.url.rstrip("/")
        if base.endswith("/api"):
            return base
        return f"{base}/api"

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            VCD_URL: vCD endpoint, e.g. https://vcd.example.com
            VCD_ORG: Default organization for resources that omit ``org``
            VCD_VDC: Default VDC for resources that omit ``vdc``
            VCD_AUTH_TOKEN: Pre-issued API token (session setup is external)
            VCD_TOKEN_TYPE: One of vcloud, bearer (default: vcloud)
            VCD_API_VERSION: API version sent in Accept (default: 32.0)
            VCD_ALLOW_INSECURE: Allow plain http endpoints (default: false)
            VCD_TASK_TIMEOUT: Max seconds to await a task (default: 600)
            VCD_TASK_POLL_INITIAL: First poll delay in seconds (default: 1.0)
            VCD_TASK_POLL_MAX: Poll delay ceiling in seconds (default: 10.0)
            VCD_REQUEST_TIMEOUT: Per-request read timeout (default: 60)
            VCD_TRANSPORT_RETRIES: Transport-level retries (default: 3)
            VCD_FORBIDDEN_AS_NOT_FOUND: Treat 403 on lookup as not found (default: false)
            VCD_IDENTITY_MODE: locator or name (default: per resource kind)
            VCD_STATE_FILE: Local state file (default: vcd-state.json)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_token_type(value: str | None) -> TokenType:
            if not value:
                return TokenType.VCLOUD
            try:
                return TokenType(value.lower())
            except ValueError as e:
                valid = [t.value for t in TokenType]
                raise ConfigurationError(f"VCD_TOKEN_TYPE must be one of {valid}: {value}") from e

        return cls(
            url=os.environ.get("VCD_URL", ""),
            org=os.environ.get("VCD_ORG", ""),
            auth_token=os.environ.get("VCD_AUTH_TOKEN", ""),
            vdc=os.environ.get("VCD_VDC") or None,
            api_version=os.environ.get("VCD_API_VERSION", DEFAULT_API_VERSION),
            token_type=get_token_type(os.environ.get("VCD_TOKEN_TYPE")),
            allow_insecure=get_bool("VCD_ALLOW_INSECURE", False),
            task_timeout_seconds=get_int("VCD_TASK_TIMEOUT", DEFAULT_TASK_TIMEOUT_SECONDS),
            task_poll_initial_seconds=get_float(
                "VCD_TASK_POLL_INITIAL", DEFAULT_TASK_POLL_INITIAL_SECONDS
            ),
            task_poll_max_seconds=get_float("VCD_TASK_POLL_MAX", DEFAULT_TASK_POLL_MAX_SECONDS),
            request_timeout_seconds=get_int(
                "VCD_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS
            ),
            transport_retries=get_int("VCD_TRANSPORT_RETRIES", DEFAULT_TRANSPORT_RETRIES),
            forbidden_as_not_found=get_bool("VCD_FORBIDDEN_AS_NOT_FOUND", False),
            identity_mode=(os.environ.get("VCD_IDENTITY_MODE") or "").lower() or None,
            state_file=Path(os.environ.get("VCD_STATE_FILE", DEFAULT_STATE_FILE)),
        )
