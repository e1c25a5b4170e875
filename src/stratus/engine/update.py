"""Update reconciliation: diff a snapshot against a declaration and apply it."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from stratus.engine.create import policy_reference
from stratus.engine.customization import build_customization_section, customization_changed
from stratus.engine.disks import DiskPlan, DiskReconciler, align_disks, plan_disks
from stratus.engine.network import build_network_plan
from stratus.engine.reader import StateReader
from stratus.engine.tasks import TaskWaiter
from stratus.errors import ConfigurationError, PrimaryNICRequired, RequiresPowerOff
from stratus.models.state import ObservedNetwork, ObservedState
from stratus.models.vm import NetworkAttachment, VMSpec
from stratus.platform.base import PlatformClient


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Changeset:
    """Operations an update needs, each None or empty when unchanged."""
    capabilities: Optional[Tuple[bool, bool]] = None
    cpu: Optional[Tuple[int, int]] = None
    memory_mb: Optional[int] = None
    networks: Optional[Tuple[NetworkAttachment, ...]] = None
    guest_properties: Optional[Dict[str, str]] = None
    compute_policy: Optional[Tuple[Optional[str], Optional[str]]] = None
    customization: bool = False
    disks: DiskPlan = field(default_factory=DiskPlan)
    storage_profile: Optional[str] = None
    power: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.describe()

    def describe(self) -> List[str]:
        """Human readable list of pending changes."""
        lines = []
        if self.capabilities is not None:
            lines.append(f"hot-add: cpu={self.capabilities[0]} memory={self.capabilities[1]}")
        if self.cpu is not None:
            lines.append(f"cpu: {self.cpu[0]} ({self.cpu[1]} per socket)")
        if self.memory_mb is not None:
            lines.append(f"memory: {self.memory_mb}MB")
        if self.networks is not None:
            lines.append(f"networks: {len(self.networks)} NIC(s)")
        if self.guest_properties is not None:
            lines.append(f"guest properties: {len(self.guest_properties)} key(s)")
        if self.compute_policy is not None:
            lines.append(f"compute policy: sizing={self.compute_policy[0]} placement={self.compute_policy[1]}")
        if self.customization:
            lines.append("guest customization")
        for action, entry in self.disks.operations():
            lines.append(f"disk {action}: {entry.describe()}")
        if self.storage_profile is not None:
            lines.append(f"storage profile: {self.storage_profile}")
        if self.power is not None:
            lines.append(f"power: {self.power}")
        return lines


def requires_replacement(previous: ObservedState, spec: VMSpec) -> List[str]:
    """Attributes that cannot change without recreating the VM."""
    attributes = []
    if previous.name != spec.name:
        attributes.append("name")
    if previous.container != spec.container:
        attributes.append("container")
    return attributes


def _expected_network(index: int, attachment: NetworkAttachment, primary_index: int) -> ObservedNetwork:
    """What reading back an attachment after applying it yields."""
    disconnected = attachment.kind == "none" or attachment.ip_allocation_mode == "NONE"
    return ObservedNetwork(
        index=index,
        kind="none" if disconnected else attachment.kind,
        name=None if disconnected else attachment.name,
        ip_allocation_mode="NONE" if disconnected else attachment.ip_allocation_mode,
        ip=attachment.ip if attachment.ip_allocation_mode == "MANUAL" and not disconnected else None,
        mac=None if attachment.kind == "none" else attachment.mac,
        adapter_type=attachment.adapter_type,
        connected=False if attachment.kind == "none" else attachment.connected,
        is_primary=index == primary_index,
    )


def _network_differs(observed: ObservedNetwork, expected: ObservedNetwork) -> bool:
    if (observed.kind, observed.name, observed.ip_allocation_mode, observed.connected, observed.is_primary) != (
        expected.kind, expected.name, expected.ip_allocation_mode, expected.connected, expected.is_primary
    ):
        return True
    if expected.ip is not None and observed.ip != expected.ip:
        return True
    # MAC and adapter are platform-assigned unless declared
    if expected.mac is not None and (observed.mac or "").lower() != expected.mac.lower():
        return True
    if expected.adapter_type is not None and observed.adapter_type != expected.adapter_type:
        return True
    return False


def networks_changed(previous: ObservedState, spec: VMSpec) -> bool:
    if len(previous.networks) != len(spec.networks):
        return True
    primary_index = spec.primary_index
    return any(
        _network_differs(observed, _expected_network(i, attachment, primary_index))
        for i, (observed, attachment) in enumerate(zip(previous.networks, spec.networks))
    )


def _check_primary_nic(previous: ObservedState, spec: VMSpec, hot_nic_change: bool):
    """On a running VM the primary NIC must survive a network change."""
    old_primary = previous.primary_network
    if old_primary is None:
        return
    if not spec.networks:
        raise PrimaryNICRequired(f"removing all networks would remove primary NIC {old_primary.index} of a running VM")

    index = spec.primary_index
    new_primary = _expected_network(index, spec.networks[index], index)
    if (new_primary.kind, new_primary.name) == (old_primary.kind, old_primary.name):
        return
    if not any(n.is_primary for n in spec.networks):
        raise PrimaryNICRequired(
            f"primary NIC on {old_primary.name or 'none'} would be removed from a running VM; "
            "mark the NIC to keep as is_primary"
        )
    if not hot_nic_change:
        raise RequiresPowerOff("the primary NIC")


def compute_changeset(previous: ObservedState, spec: VMSpec, hot_nic_change: bool = False) -> Changeset:
    """Diff a snapshot against a declaration without any remote call.

    Raises:
        ConfigurationError: replace-only attribute changed, or a size and its
            hot-add capability changed together
        PrimaryNICRequired: the change drops the primary NIC of a running VM
        RequiresPowerOff: the change cannot be applied to a running VM
        DuplicateDiskSlot: two disks target the same slot
    """
    replaced = requires_replacement(previous, spec)
    if replaced:
        raise ConfigurationError(f"{', '.join(replaced)} cannot change after creation; recreate the VM")

    current = previous.resources
    sizing = spec.sizing
    powered = previous.is_powered_on

    capabilities = None
    cpu_hot_changed = sizing.cpu_hot_add_enabled != current.cpu_hot_add_enabled
    memory_hot_changed = sizing.memory_hot_add_enabled != current.memory_hot_add_enabled
    if cpu_hot_changed or memory_hot_changed:
        capabilities = (sizing.cpu_hot_add_enabled, sizing.memory_hot_add_enabled)

    cpu = None
    if sizing.cpus is not None:
        cores = sizing.cores_per_socket or current.cores_per_socket or 1
        if (sizing.cpus, cores) != (current.cpus, current.cores_per_socket):
            cpu = (sizing.cpus, cores)

    memory = None
    if sizing.memory_mb is not None and sizing.memory_mb != current.memory_mb:
        memory = sizing.memory_mb

    if memory is not None and memory_hot_changed:
        raise ConfigurationError("memory and memory_hot_add_enabled cannot change in the same update; split it in two")
    if cpu is not None and cpu_hot_changed:
        raise ConfigurationError("cpus and cpu_hot_add_enabled cannot change in the same update; split it in two")

    networks = tuple(spec.networks) if networks_changed(previous, spec) else None

    if powered:
        if capabilities is not None:
            raise RequiresPowerOff("hot-add capabilities")
        if cpu is not None and not current.cpu_hot_add_enabled:
            raise RequiresPowerOff("cpus")
        if memory is not None and not current.memory_hot_add_enabled:
            raise RequiresPowerOff("memory")
        if networks is not None:
            _check_primary_nic(previous, spec, hot_nic_change)

    guest_properties = None
    if dict(spec.guest_properties) != previous.guest_property_map():
        guest_properties = dict(spec.guest_properties)

    compute_policy = None
    sizing_policy = spec.sizing_policy_id or previous.sizing_policy_id
    placement_policy = spec.placement_policy_id or previous.placement_policy_id
    if (sizing_policy, placement_policy) != (previous.sizing_policy_id, previous.placement_policy_id):
        compute_policy = (sizing_policy, placement_policy)

    customization = customization_changed(previous.customization, spec.customization, spec.name)

    disks = plan_disks(*align_disks(previous.disks, spec.disks))

    storage_profile = None
    if spec.storage_profile and spec.storage_profile != previous.storage_profile:
        storage_profile = spec.storage_profile

    power = None
    force = spec.customization.enabled and spec.customization.force and customization
    if spec.power_on and force:
        power = "on-force-customization"
    elif spec.power_on and not powered:
        power = "on"
    elif not spec.power_on and powered:
        power = "off"

    return Changeset(
        capabilities=capabilities,
        cpu=cpu,
        memory_mb=memory,
        networks=networks,
        guest_properties=guest_properties,
        compute_policy=compute_policy,
        customization=customization,
        disks=disks,
        storage_profile=storage_profile,
        power=power,
    )


class UpdateReconciler:
    """Applies a changeset branch by branch, refreshing after each."""

    def __init__(self, platform: PlatformClient, waiter: TaskWaiter, hot_nic_change: bool = False):
        self.platform = platform
        self.waiter = waiter
        self.hot_nic_change = hot_nic_change
        self.reader = StateReader(platform)
        self.disks = DiskReconciler(platform, waiter)

    async def update(self, previous: ObservedState, spec: VMSpec) -> ObservedState:
        """Bring the VM from its previous snapshot to the declaration.

        All precondition checks happen before the first remote call.
        """
        changeset = compute_changeset(previous, spec, self.hot_nic_change)
        if changeset.is_empty:
            logger.debug(f"VM {spec.name} is up to date")
            return await self.reader.read(spec.container, previous.id)

        logger.info(f"Updating VM {spec.name}: {'; '.join(changeset.describe())}")
        vm_id = previous.id
        name = spec.name
        state = previous

        if changeset.capabilities is not None:
            cpu_hot, memory_hot = changeset.capabilities
            await self.waiter.run(
                f"set hot-add capabilities of {name}",
                self.platform.update_capabilities(vm_id, cpu_hot, memory_hot),
            )
            state = await self._refresh(spec, vm_id)

        if changeset.cpu is not None:
            cpus, cores = changeset.cpu
            await self.waiter.run(f"set {name} CPU to {cpus}x{cores}", self.platform.update_cpu(vm_id, cpus, cores))
            state = await self._refresh(spec, vm_id)

        if changeset.memory_mb is not None:
            await self.waiter.run(
                f"set {name} memory to {changeset.memory_mb}MB",
                self.platform.update_memory(vm_id, changeset.memory_mb),
            )
            state = await self._refresh(spec, vm_id)

        if changeset.networks is not None:
            topology = await self.platform.get_container(spec.container)
            plan = build_network_plan(changeset.networks, topology)
            await self.waiter.run(
                f"update network section of {name}",
                self.platform.update_network_section(vm_id, plan.to_section()),
            )
            state = await self._refresh(spec, vm_id)

        if changeset.guest_properties is not None:
            await self.waiter.run(
                f"set guest properties of {name}",
                self.platform.update_guest_properties(vm_id, changeset.guest_properties),
            )
            state = await self._refresh(spec, vm_id)

        if changeset.compute_policy is not None:
            await self._apply_compute_policy(vm_id, name, *changeset.compute_policy)
            state = await self._refresh(spec, vm_id)

        if changeset.customization:
            document = await self.platform.get_vm(spec.container, vm_id)
            section = build_customization_section(document.customization, spec.customization, name)
            await self.waiter.run(
                f"update guest customization of {name}",
                self.platform.update_customization_section(vm_id, section),
            )
            state = await self._refresh(spec, vm_id)

        if not changeset.disks.is_empty:
            await self.disks.apply(vm_id, spec.container, changeset.disks)
            state = await self._refresh(spec, vm_id)

        # Profile lookup depends on the datacenter state left by disk changes
        if changeset.storage_profile is not None:
            profile = await self.platform.get_storage_profile(spec.container, changeset.storage_profile)
            await self.waiter.run(
                f"set storage profile of {name} to {changeset.storage_profile}",
                self.platform.update_storage_profile(vm_id, profile),
            )
            state = await self._refresh(spec, vm_id)

        if changeset.power is not None:
            await self._apply_power(state, name, changeset.power)
            state = await self._refresh(spec, vm_id)

        return state

    async def _refresh(self, spec: VMSpec, vm_id: str) -> ObservedState:
        return await self.reader.read(spec.container, vm_id)

    async def _apply_compute_policy(self, vm_id: str, name: str,
                                    sizing_id: Optional[str], placement_id: Optional[str]):
        sizing = await self.platform.get_compute_policy(sizing_id) if sizing_id else None
        placement = await self.platform.get_compute_policy(placement_id) if placement_id else None
        await self.waiter.run(
            f"update compute policy of {name}",
            self.platform.update_compute_policy(vm_id, policy_reference(sizing), policy_reference(placement)),
        )

    async def _apply_power(self, state: ObservedState, name: str, power: str):
        if power == "off":
            await self.waiter.run(f"power off {name}", self.platform.undeploy(state.id))
            return
        force = power == "on-force-customization"
        if force and state.is_powered_on:
            await self.waiter.run(f"power off {name}", self.platform.undeploy(state.id))
        await self.waiter.run(
            f"power on {name}" + (" with forced customization" if force else ""),
            self.platform.power_on(state.id, force_customization=force),
        )
