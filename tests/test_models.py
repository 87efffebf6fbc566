"""Tests for the Pydantic models."""

import pytest
from pydantic import ValidationError

from vcd_provider.models import DiskSpec, VdcSpec, get_spec_class


def vdc_data(**overrides: object) -> dict:
    data: dict = {
        "name": "vdc1",
        "allocation_model": "AllocationPool",
        "provider_vdc": "pvdc1",
        "storage_profile": {"provider": "gold", "limit": 10240},
    }
    data.update(overrides)
    return data


class TestDiskSpec:
    """Tests for DiskSpec model."""

    def test_valid_spec(self) -> None:
        """Test parsing a valid disk spec."""
        spec = DiskSpec.model_validate({"name": "disk1", "size": 2048, "vdc": "myvdc"})

        assert spec.name == "disk1"
        assert spec.size == 2048
        assert spec.org is None
        assert spec.description is None

    def test_presence_is_tracked(self) -> None:
        """An explicitly supplied empty description counts as set."""
        absent = DiskSpec(name="disk1", size=1)
        empty = DiskSpec(name="disk1", size=1, description="")

        assert not absent.is_set("description")
        assert empty.is_set("description")
        assert empty.description == ""

    def test_size_must_be_positive(self) -> None:
        """Zero-size disks are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            DiskSpec(name="disk1", size=0)

        assert "size" in str(exc_info.value)

    def test_name_required(self) -> None:
        """An empty name is rejected."""
        with pytest.raises(ValidationError):
            DiskSpec(name="", size=1)

    def test_unknown_field(self) -> None:
        """Test that unknown fields are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            DiskSpec.model_validate({"name": "disk1", "size": 1, "bus_type": "scsi"})

        assert "bus_type" in str(exc_info.value)

    def test_attribute_values(self) -> None:
        """The mirror includes every field, unset ones as None."""
        spec = DiskSpec(name="disk1", size=1024)

        assert spec.attribute_values() == {
            "org": None,
            "name": "disk1",
            "vdc": None,
            "size": 1024,
            "description": None,
        }

    def test_frozen(self) -> None:
        """Specs are immutable."""
        spec = DiskSpec(name="disk1", size=1)
        with pytest.raises(ValidationError):
            spec.size = 2  # type: ignore[misc]


class TestVdcSpec:
    """Tests for VdcSpec model."""

    def test_single_storage_profile_block(self) -> None:
        """A single storage_profile mapping becomes a one-element list."""
        spec = VdcSpec.model_validate(vdc_data())

        assert len(spec.storage_profiles) == 1
        assert spec.storage_profiles[0].provider == "gold"
        assert spec.storage_profiles[0].units == "MB"

    def test_defaults(self) -> None:
        """Delete options default off and the VDC defaults to enabled."""
        spec = VdcSpec.model_validate(vdc_data())

        assert spec.is_enabled is True
        assert spec.delete_force is False
        assert spec.delete_recursive is False
        assert spec.compute_capacity.cpu.units == "MHz"
        assert spec.compute_capacity.memory.units == "MB"
        assert not spec.is_set("vm_quota")

    def test_storage_profile_required(self) -> None:
        """At least one storage profile is required."""
        with pytest.raises(ValidationError) as exc_info:
            VdcSpec.model_validate(vdc_data(storage_profile=[]))

        assert "storage_profile" in str(exc_info.value)

    def test_one_default_among_many(self) -> None:
        """Several profiles need exactly one default."""
        profiles = [
            {"provider": "gold", "limit": 1},
            {"provider": "silver", "limit": 1},
        ]
        with pytest.raises(ValidationError) as exc_info:
            VdcSpec.model_validate(vdc_data(storage_profile=profiles))

        assert "default" in str(exc_info.value)

        profiles[1]["default"] = True
        spec = VdcSpec.model_validate(vdc_data(storage_profile=profiles))
        assert [p.default for p in spec.storage_profiles] == [False, True]

    def test_invalid_allocation_model(self) -> None:
        """Allocation models are a closed set."""
        with pytest.raises(ValidationError):
            VdcSpec.model_validate(vdc_data(allocation_model="Payg"))

    def test_invalid_cpu_units(self) -> None:
        """CPU capacity is in MHz or GHz."""
        capacity = {"cpu": {"units": "MB"}, "memory": {"units": "MB"}}
        with pytest.raises(ValidationError) as exc_info:
            VdcSpec.model_validate(vdc_data(compute_capacity=capacity))

        assert "cpu units" in str(exc_info.value)

    def test_guarantee_range(self) -> None:
        """Guarantees are fractions."""
        with pytest.raises(ValidationError):
            VdcSpec.model_validate(vdc_data(memory_guaranteed=1.5))


class TestGetSpecClass:
    """Tests for get_spec_class function."""

    def test_known_kinds(self) -> None:
        """Registered kinds map to their spec classes."""
        assert get_spec_class("Disk") is DiskSpec
        assert get_spec_class("Vdc") is VdcSpec

    def test_unknown_kind(self) -> None:
        """Test that unknown kind raises ValueError."""
        with pytest.raises(ValueError) as exc_info:
            get_spec_class("VApp")

        assert "Unknown resource kind" in str(exc_info.value)
