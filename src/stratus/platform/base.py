"""Remote platform client interface."""

from abc import ABC, abstractmethod
from typing import Dict, Optional

from stratus.models.platform import (
    ComputePolicy,
    ContainerRecord,
    DiskSettings,
    GuestCustomizationSection,
    InstantiateParams,
    MediaRecord,
    NetworkConnectionSection,
    Reference,
    Task,
    TemplateRecord,
    VMDocument,
)


class PlatformClient(ABC):
    """Client interface the engine drives.

    Lookups raise NotFoundError when the object does not exist. Mutating
    calls return the platform Task for the submitted operation and must not
    wait for it; waiting is the engine's job.
    """

    # Lookups

    @abstractmethod
    async def get_template(self, template_id: str) -> TemplateRecord:
        """Get a template container with its child VMs."""
        pass

    @abstractmethod
    async def find_template_vm(self, template_id: str, vm_name: str) -> TemplateRecord:
        """Find a VM by name inside a template container."""
        pass

    @abstractmethod
    async def get_media(self, media_id: str) -> MediaRecord:
        pass

    @abstractmethod
    async def get_container(self, container: str) -> ContainerRecord:
        """Get a container and the networks attached to it."""
        pass

    @abstractmethod
    async def get_compute_policy(self, policy_id: str) -> ComputePolicy:
        pass

    @abstractmethod
    async def get_storage_profile(self, container: str, name: str) -> Reference:
        """Resolve a storage profile by name in the container's datacenter."""
        pass

    @abstractmethod
    async def get_independent_disk(self, disk_id: str) -> Reference:
        pass

    # Reads

    @abstractmethod
    async def get_vm(self, container: str, vm_id: str) -> VMDocument:
        """Read the full VM document, raising VMNotFound if it is gone."""
        pass

    @abstractmethod
    async def get_task(self, task_id: str) -> Task:
        pass

    # Mutations

    @abstractmethod
    async def instantiate_vm(self, container: str, params: InstantiateParams) -> Task:
        """Allocate a VM from a template or as an empty VM.

        The returned task carries the new VM id as owner id.
        """
        pass

    @abstractmethod
    async def update_network_section(self, vm_id: str, section: NetworkConnectionSection) -> Task:
        pass

    @abstractmethod
    async def update_os_type(self, vm_id: str, os_type: str) -> Task:
        pass

    @abstractmethod
    async def update_cpu(self, vm_id: str, cpus: int, cores_per_socket: int) -> Task:
        pass

    @abstractmethod
    async def update_memory(self, vm_id: str, memory_mb: int) -> Task:
        pass

    @abstractmethod
    async def update_guest_properties(self, vm_id: str, properties: Dict[str, str]) -> Task:
        """Replace all guest properties."""
        pass

    @abstractmethod
    async def update_customization_section(self, vm_id: str, section: GuestCustomizationSection) -> Task:
        pass

    @abstractmethod
    async def update_capabilities(self, vm_id: str, cpu_hot_add: bool, memory_hot_add: bool) -> Task:
        pass

    @abstractmethod
    async def update_compute_policy(self, vm_id: str, sizing_policy: Optional[Reference],
                                    placement_policy: Optional[Reference]) -> Task:
        pass

    @abstractmethod
    async def update_storage_profile(self, vm_id: str, profile: Reference) -> Task:
        pass

    @abstractmethod
    async def add_internal_disk(self, vm_id: str, disk: DiskSettings) -> Task:
        pass

    @abstractmethod
    async def resize_internal_disk(self, vm_id: str, disk: DiskSettings) -> Task:
        pass

    @abstractmethod
    async def remove_internal_disk(self, vm_id: str, disk_id: str) -> Task:
        pass

    @abstractmethod
    async def attach_disk(self, vm_id: str, disk: Reference, bus_number: int, unit_number: int) -> Task:
        pass

    @abstractmethod
    async def detach_disk(self, vm_id: str, disk: Reference) -> Task:
        pass

    @abstractmethod
    async def power_on(self, vm_id: str, force_customization: bool = False) -> Task:
        pass

    @abstractmethod
    async def undeploy(self, vm_id: str) -> Task:
        """Power off and undeploy the VM."""
        pass

    @abstractmethod
    async def remove_vm(self, vm_id: str) -> Task:
        pass
