"""Pydantic models for declared resources.

These models provide:
1. Type-safe YAML parsing
2. Validation at the boundary (fail fast, fail loudly)
3. Presence queries for optional fields via ``model_fields_set``: a field
   counts as set when the caller supplied it, whatever its value
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from .config import MAX_RESOURCE_NAME_LENGTH

# =============================================================================
# Base Models
# =============================================================================


class BaseResourceSpec(BaseModel):
    """Base resource specification with common fields."""

    model_config = {"extra": "forbid", "frozen": True, "populate_by_name": True}

    # Scoping; falls back to the provider default org when omitted
    org: str | None = None
    name: Annotated[str, Field(min_length=1, max_length=MAX_RESOURCE_NAME_LENGTH)]

    def is_set(self, field_name: str) -> bool:
        """Whether the caller explicitly supplied ``field_name``."""
        return field_name in self.model_fields_set

    def attribute_values(self) -> dict[str, Any]:
        """Flatten the spec into the attribute mirror kept in local state."""
        return self.model_dump(mode="json", by_alias=False)


# =============================================================================
# Independent Disk
# =============================================================================


class DiskSpec(BaseResourceSpec):
    """Independent disk specification.

    ``size`` is passed through to the vCD ``size`` attribute unchanged.
    """

    vdc: str | None = None
    size: Annotated[int, Field(gt=0)]
    description: str | None = None


# =============================================================================
# Virtual Datacenter
# =============================================================================

AllocationModel = Literal["AllocationVApp", "AllocationPool", "ReservationPool", "Flex"]


class CapacityConfig(BaseModel):
    """CPU or memory capacity block."""

    model_config = {"extra": "ignore", "frozen": True}

    units: str
    allocated: int | None = Field(None, ge=0)
    limit: int | None = Field(None, ge=0)
    reserved: int | None = Field(None, ge=0)


class ComputeCapacityConfig(BaseModel):
    """Compute capacity of a VDC."""

    model_config = {"extra": "forbid", "frozen": True}

    cpu: CapacityConfig = Field(default_factory=lambda: CapacityConfig(units="MHz"))
    memory: CapacityConfig = Field(default_factory=lambda: CapacityConfig(units="MB"))

    @field_validator("cpu")
    @classmethod
    def validate_cpu_units(cls, v: CapacityConfig) -> CapacityConfig:
        if v.units not in ("MHz", "GHz"):
            raise ValueError("cpu units must be MHz or GHz")
        return v

    @field_validator("memory")
    @classmethod
    def validate_memory_units(cls, v: CapacityConfig) -> CapacityConfig:
        if v.units not in ("MB", "GB"):
            raise ValueError("memory units must be MB or GB")
        return v


class StorageProfileConfig(BaseModel):
    """VDC storage profile backed by a provider VDC storage profile."""

    model_config = {"extra": "forbid", "frozen": True}

    provider: Annotated[str, Field(min_length=1)]
    limit: Annotated[int, Field(ge=0)]
    units: str = "MB"
    enabled: bool = True
    default: bool = False


class VdcSpec(BaseResourceSpec):
    """Virtual datacenter specification (admin API)."""

    description: str | None = None
    allocation_model: AllocationModel
    provider_vdc: Annotated[str, Field(min_length=1)]
    network_pool: str | None = None
    compute_capacity: ComputeCapacityConfig = Field(default_factory=ComputeCapacityConfig)
    storage_profiles: list[StorageProfileConfig] = Field(
        default_factory=list, alias="storage_profile"
    )
    nic_quota: int | None = Field(None, ge=0)
    network_quota: int | None = Field(None, ge=0)
    vm_quota: int | None = Field(None, ge=0)
    is_enabled: bool = True
    is_thin_provision: bool | None = None
    uses_fast_provisioning: bool | None = None
    memory_guaranteed: float | None = Field(None, ge=0, le=1)
    cpu_guaranteed: float | None = Field(None, ge=0, le=1)
    cpu_speed: int | None = Field(None, gt=0)

    # Applied at delete time only, never sent on create
    delete_force: bool = False
    delete_recursive: bool = False

    @field_validator("storage_profiles", mode="before")
    @classmethod
    def wrap_single_profile(cls, v: Any) -> Any:
        # A single ``storage_profile`` block is accepted as a one-element list
        if isinstance(v, dict):
            return [v]
        return v

    @model_validator(mode="after")
    def validate_storage_profiles(self) -> VdcSpec:
        if not self.storage_profiles:
            raise ValueError("at least one storage_profile is required")
        defaults = [p for p in self.storage_profiles if p.default]
        if len(self.storage_profiles) == 1 and not defaults:
            return self
        if len(defaults) != 1:
            raise ValueError("exactly one storage_profile must be marked default")
        return self


# =============================================================================
# Spec Registry
# =============================================================================

SPEC_REGISTRY: dict[str, type[BaseResourceSpec]] = {
    "Disk": DiskSpec,
    "Vdc": VdcSpec,
}


def get_spec_class(kind: str) -> type[BaseResourceSpec]:
    """Get the spec class for a resource kind.

    Raises:
        ValueError: If kind is not recognized.
    """
    spec_class = SPEC_REGISTRY.get(kind)
    if spec_class is None:
        valid_kinds = list(SPEC_REGISTRY.keys())
        raise ValueError(f"Unknown resource kind '{kind}'. Valid kinds: {valid_kinds}")
    return spec_class
