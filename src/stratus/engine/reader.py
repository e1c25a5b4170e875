"""Reading the observed state of a VM."""

import logging

from stratus.engine.customization import observe_customization
from stratus.models.platform import (
    NONE_NETWORK,
    ContainerRecord,
    DiskSettings,
    NetworkConnection,
    VMDocument,
    bus_type_name,
    status_text,
)
from stratus.models.state import ObservedDisk, ObservedNetwork, ObservedState, ResourceAllocation
from stratus.platform.base import PlatformClient


logger = logging.getLogger(__name__)


def _network_kind(connection: NetworkConnection, topology: ContainerRecord) -> str:
    if connection.network == NONE_NETWORK:
        return "none"
    for network in topology.networks:
        if network.name == connection.network:
            return network.kind
    return "vapp"


def _observe_network(connection: NetworkConnection, primary_index: int,
                     topology: ContainerRecord) -> ObservedNetwork:
    kind = _network_kind(connection, topology)
    return ObservedNetwork(
        index=connection.index,
        kind=kind,
        name=None if kind == "none" else connection.network,
        ip_allocation_mode=connection.ip_allocation_mode,
        ip=connection.ip_address,
        mac=connection.mac_address,
        adapter_type=connection.adapter_type,
        connected=connection.is_connected,
        is_primary=connection.index == primary_index,
    )


def _observe_disk(disk: DiskSettings) -> ObservedDisk:
    independent = disk.independent_disk is not None
    return ObservedDisk(
        disk_id=disk.independent_disk.id if independent else disk.disk_id,
        independent=independent,
        name=disk.independent_disk.name if independent else None,
        bus_type=bus_type_name(disk.adapter_type),
        bus_number=disk.bus_number,
        unit_number=disk.unit_number,
        size_mb=disk.size_mb,
        storage_profile=disk.storage_profile.name if disk.storage_profile else None,
    )


def project(document: VMDocument, topology: ContainerRecord) -> ObservedState:
    """Map a VM document into the canonical snapshot.

    Network connections arrive in arbitrary order and are sorted by their
    connection index. Disks are sorted by slot.
    """
    section = document.network_section
    connections = sorted(section.connections, key=lambda c: c.index)
    disks = sorted(document.disks, key=lambda d: (d.bus_number, d.unit_number))

    return ObservedState(
        id=document.id,
        href=document.href,
        name=document.name,
        container=document.container,
        description=document.description,
        os_type=document.os_type,
        networks=tuple(_observe_network(c, section.primary_index, topology) for c in connections),
        disks=tuple(_observe_disk(d) for d in disks),
        customization=observe_customization(document.customization),
        resources=ResourceAllocation(
            cpus=document.num_cpus,
            cores_per_socket=document.cores_per_socket,
            memory_mb=document.memory_mb,
            cpu_hot_add_enabled=document.cpu_hot_add_enabled,
            memory_hot_add_enabled=document.memory_hot_add_enabled,
        ),
        storage_profile=document.storage_profile.name if document.storage_profile else None,
        sizing_policy_id=document.sizing_policy.id if document.sizing_policy else None,
        placement_policy_id=document.placement_policy.id if document.placement_policy else None,
        guest_properties=tuple(sorted(document.guest_properties.items())),
        status_code=document.status,
        status_text=status_text(document.status),
    )


class StateReader:
    """Reads a VM from the platform into an ObservedState.

    VMNotFound raised by the platform propagates unchanged so callers can
    treat the VM as deleted.
    """

    def __init__(self, platform: PlatformClient):
        self.platform = platform

    async def read(self, container: str, vm_id: str) -> ObservedState:
        document = await self.platform.get_vm(container, vm_id)
        topology = await self.platform.get_container(container)
        state = project(document, topology)
        logger.debug(f"Read VM {state.name} ({state.id}): {state.status_text}")
        return state
