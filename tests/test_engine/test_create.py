"""Tests for the creation orchestrator."""

import pytest

from stratus.engine.create import (
    CREATION_STEPS,
    CreationOrchestrator,
    Phase,
    resolve_sizing,
    virtual_cpu_type,
)
from stratus.engine.tasks import TaskWaiter
from stratus.errors import (
    ConfigurationError,
    DuplicateDiskSlot,
    MediaNotSynchronized,
    NetworkNotFound,
    PartialCreation,
    RemoteTaskFailure,
)
from stratus.models.platform import ComputePolicy
from stratus.models.vm import SizingSpec


@pytest.fixture
def orchestrator(platform):
    return CreationOrchestrator(platform, TaskWaiter(platform, poll_interval=0.01))


class TestCreationSteps:
    """Test the step table."""

    def test_phase_order(self):
        phases = [step.phase for step in CREATION_STEPS]

        assert phases[0] == Phase.RESOLVE_ORIGIN
        assert phases.index(Phase.BIND_PLACEHOLDER_NETWORK) < phases.index(Phase.ALLOCATE)
        assert phases.index(Phase.ALLOCATE) < phases.index(Phase.UPDATE_NETWORK_PLAN)
        assert phases.index(Phase.APPLY_CUSTOMIZATION) < phases.index(Phase.APPLY_HOT_ADD)
        assert phases[-1] == Phase.POWER_ON

    def test_mutating_steps_refresh(self):
        """Test that every step from allocation on refreshes afterwards."""
        start = [step.phase for step in CREATION_STEPS].index(Phase.ALLOCATE)

        assert all(step.refresh_after for step in CREATION_STEPS[start:])
        assert not any(step.refresh_after for step in CREATION_STEPS[:start])


class TestSizingHelpers:
    """Test sizing resolution."""

    def test_explicit_values_win(self):
        policy = ComputePolicy(id="p", href="h", cpu_count=8, cores_per_socket=4, memory_mb=8192)

        assert resolve_sizing(SizingSpec(cpus=2, memory_mb=1024), policy) == (2, 4, 1024)

    def test_policy_fallback(self):
        policy = ComputePolicy(id="p", href="h", cpu_count=4, memory_mb=4096)

        assert resolve_sizing(SizingSpec(), policy) == (4, 1, 4096)

    def test_nothing_declared(self):
        assert resolve_sizing(SizingSpec(), None) == (None, None, None)

    def test_virtual_cpu_type(self):
        assert virtual_cpu_type("debian10_64Guest") == "VM64"
        assert virtual_cpu_type("windows9Guest") == "VM32"
        assert virtual_cpu_type(None) == "VM32"


@pytest.mark.asyncio
class TestCreateFromTemplate:
    """Test template-based creation."""

    async def test_template_creation(self, orchestrator, platform, spec_factory):
        """Test the plain template scenario end to end."""
        state = await orchestrator.create(spec_factory())

        instantiate = [args for name, args in platform.calls if name == "instantiate_vm"][0]
        params = instantiate[1]
        assert params.source.id == "tvm-1"
        assert params.network_section.connections[0].network == "none"
        assert params.power_on is False

        assert platform.mutations() == ["instantiate_vm", "update_network_section", "power_on"]
        assert platform.calls[-2][0] == "get_vm"
        power_on = [args for name, args in platform.calls if name == "power_on"][0]
        assert power_on[1] is False

        assert state.status_text == "POWERED_ON"
        assert len(state.networks) == 1
        assert state.networks[0].ip_allocation_mode == "DHCP"
        assert state.networks[0].is_primary
        assert state.networks[0].name == "eth0"

    async def test_refresh_after_each_mutation(self, orchestrator, platform, spec_factory):
        await orchestrator.create(spec_factory())

        names = [name for name, _ in platform.calls]
        for mutation in ("instantiate_vm", "update_network_section", "power_on"):
            following = names[names.index(mutation) + 1:]
            assert "get_vm" in following[:2]

    async def test_full_configuration(self, orchestrator, platform, spec_factory):
        spec = spec_factory(
            os_type="centos64Guest",
            sizing={"cpus": 4, "cores_per_socket": 2, "memory_mb": 4096,
                    "cpu_hot_add_enabled": True, "memory_hot_add_enabled": True},
            guest_properties={"role": "web"},
            customization={"enabled": True, "init_script": "echo hi", "number_of_auto_logons": 1},
            disks=[{"type": "internal", "size_mb": 1024}, {"type": "independent", "disk_id": "idisk-1"}],
        )

        state = await orchestrator.create(spec)

        assert platform.mutations() == [
            "instantiate_vm",
            "update_network_section",
            "update_os_type",
            "update_cpu",
            "update_memory",
            "update_guest_properties",
            "update_customization_section",
            "update_capabilities",
            "attach_disk",
            "add_internal_disk",
            "power_on",
        ]
        assert state.os_type == "centos64Guest"
        assert (state.resources.cpus, state.resources.cores_per_socket) == (4, 2)
        assert state.resources.memory_hot_add_enabled is True
        assert state.guest_property_map() == {"role": "web"}
        assert state.customization.enabled is True
        assert state.customization.number_of_auto_logons == 1
        assert state.customization.hostname == "web"
        assert [(d.slot, d.independent) for d in state.disks] == [
            ((0, 0), False), ((0, 1), False), ((0, 2), True),
        ]

    async def test_sizing_from_policy(self, orchestrator, platform, spec_factory):
        state = await orchestrator.create(spec_factory(sizing_policy_id="sizing-small"))

        assert (state.resources.cpus, state.resources.cores_per_socket) == (2, 1)
        assert state.resources.memory_mb == 2048
        assert state.sizing_policy_id == "sizing-small"

    async def test_forced_customization_single_power_on(self, orchestrator, platform, spec_factory):
        """Test that forced customization replaces the plain power on."""
        await orchestrator.create(spec_factory(customization={"enabled": True, "force": True}))

        power_calls = [args for name, args in platform.calls if name == "power_on"]
        assert len(power_calls) == 1
        assert power_calls[0][1] is True

    async def test_powered_off_declaration(self, orchestrator, platform, spec_factory):
        state = await orchestrator.create(spec_factory(power_on=False))

        assert "power_on" not in platform.mutations()
        assert state.status_text == "POWERED_OFF"


@pytest.mark.asyncio
class TestCreateFromMedia:
    """Test media-booted creation."""

    async def test_os_type_set_at_allocation(self, orchestrator, platform, spec_factory):
        spec = spec_factory(origin={"boot_media_id": "iso-1"}, os_type="debian10_64Guest")

        state = await orchestrator.create(spec)

        params = [args for name, args in platform.calls if name == "instantiate_vm"][0][1]
        assert params.boot_media.id == "iso-1"
        assert params.source is None
        assert params.virtual_cpu_type == "VM64"
        assert params.os_type == "debian10_64Guest"
        assert "update_os_type" not in platform.mutations()
        assert state.disks == ()

    async def test_unsynchronized_media_before_allocation(self, orchestrator, platform, spec_factory):
        with pytest.raises(MediaNotSynchronized):
            await orchestrator.create(spec_factory(origin={"boot_media_id": "iso-2"}))

        assert platform.mutations() == []


@pytest.mark.asyncio
class TestCreateFailures:
    """Test failure handling."""

    async def test_unknown_network_before_allocation(self, orchestrator, platform, spec_factory):
        with pytest.raises(NetworkNotFound):
            await orchestrator.create(spec_factory(networks=[{"kind": "vapp", "name": "dmz"}]))

        assert platform.vms == {}

    async def test_failure_after_allocation(self, orchestrator, platform, spec_factory):
        """Test that a later phase failure reports the created VM."""
        platform.fail["update_network_section"] = "network busy"

        with pytest.raises(PartialCreation) as exc_info:
            await orchestrator.create(spec_factory())

        error = exc_info.value
        assert error.remote_id in platform.vms
        assert error.phase == Phase.UPDATE_NETWORK_PLAN.value
        assert isinstance(error.__cause__, RemoteTaskFailure)
        assert "network busy" in str(error)

    async def test_failed_allocation_with_owner(self, orchestrator, platform, spec_factory):
        platform.fail["instantiate_vm"] = "clone failed"

        with pytest.raises(PartialCreation) as exc_info:
            await orchestrator.create(spec_factory())

        assert exc_info.value.phase == Phase.ALLOCATE.value
        assert exc_info.value.remote_id in platform.vms

    async def test_power_on_failure(self, orchestrator, platform, spec_factory):
        platform.fail["power_on"] = "host unavailable"

        with pytest.raises(PartialCreation) as exc_info:
            await orchestrator.create(spec_factory())

        assert exc_info.value.phase == Phase.POWER_ON.value


@pytest.mark.asyncio
class TestCreateDisks:
    """Test disk handling through the whole creation flow."""

    async def test_duplicate_slot_rejected_before_any_call(self, orchestrator, platform, spec_factory):
        spec = spec_factory(disks=[
            {"type": "internal", "size_mb": 1024, "bus_number": 1, "unit_number": 0},
            {"type": "internal", "size_mb": 2048, "bus_number": 1, "unit_number": 0},
        ])

        with pytest.raises(DuplicateDiskSlot):
            await orchestrator.create(spec)

        assert platform.calls == []
        assert platform.mutations() == []
        assert platform.vms == {}

    async def test_duplicate_independent_disk_rejected(self, orchestrator, platform, spec_factory):
        spec = spec_factory(disks=[
            {"type": "independent", "disk_id": "idisk-1"},
            {"type": "independent", "disk_id": "idisk-1"},
        ])

        with pytest.raises(ConfigurationError) as exc_info:
            await orchestrator.create(spec)

        assert "idisk-1" in str(exc_info.value)
        assert platform.calls == []

    async def test_data_disk_same_size_as_template_disk(self, orchestrator, platform, spec_factory):
        """Test that a declared disk is added even when it looks like the template disk."""
        state = await orchestrator.create(
            spec_factory(disks=[{"type": "internal", "bus_type": "scsi", "size_mb": 20480}])
        )

        assert "add_internal_disk" in platform.mutations()
        assert [(d.slot, d.bus_type, d.size_mb) for d in state.disks] == [
            ((0, 0), "scsi", 20480), ((0, 1), "scsi", 20480),
        ]

    async def test_disk_operation_order(self, orchestrator, platform, spec_factory):
        """Test that the template disk is replaced first and attaches run from the highest slot."""
        spec = spec_factory(disks=[
            {"type": "internal", "bus_type": "sata", "size_mb": 1024, "bus_number": 0, "unit_number": 0},
            {"type": "internal", "size_mb": 2048, "bus_number": 0, "unit_number": 1},
            {"type": "independent", "disk_id": "idisk-1", "bus_number": 1, "unit_number": 0},
        ])

        state = await orchestrator.create(spec)

        disk_calls = [(name, args) for name, args in platform.calls
                      if name in ("remove_internal_disk", "add_internal_disk", "attach_disk")]
        assert [name for name, _ in disk_calls] == [
            "remove_internal_disk", "attach_disk", "add_internal_disk", "add_internal_disk",
        ]
        added = [(args[1].bus_number, args[1].unit_number) for name, args in disk_calls
                 if name == "add_internal_disk"]
        assert added == [(0, 1), (0, 0)]
        assert [(d.slot, d.independent) for d in state.disks] == [
            ((0, 0), False), ((0, 1), False), ((1, 0), True),
        ]
        assert state.disks[0].size_mb == 1024
