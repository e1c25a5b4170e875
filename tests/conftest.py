"""Shared fixtures: an in-memory platform implementing the client contract."""

import itertools
from typing import Dict, List, Optional, Tuple

import pytest

from stratus.engine.lifecycle import VMEngine
from stratus.errors import NotFoundError, VMNotFound
from stratus.models.config import EngineConfig
from stratus.models.platform import (
    POWERED_OFF,
    POWERED_ON,
    ComputePolicy,
    ContainerNetwork,
    ContainerRecord,
    DiskSettings,
    GuestCustomizationSection,
    InstantiateParams,
    MediaRecord,
    NetworkConnectionSection,
    Reference,
    Task,
    TaskStatus,
    TemplateRecord,
    VMDocument,
)
from stratus.models.vm import VMSpec
from stratus.platform.base import PlatformClient


LOOKUPS = {
    "get_template", "find_template_vm", "get_media", "get_container", "get_compute_policy",
    "get_storage_profile", "get_independent_disk", "get_vm", "get_task",
}


class FakePlatform(PlatformClient):
    """Platform double whose tasks complete immediately.

    Every call is recorded in ``calls``. Setting ``fail[method] = message``
    makes that mutation's task end in error without applying it.
    Network connections are stored in reverse index order to mimic the
    platform returning them unordered.
    """

    def __init__(self):
        self.templates: Dict[str, TemplateRecord] = {}
        self.template_disks: List[DiskSettings] = [
            DiskSettings(disk_id="", adapter_type="4", size_mb=20480, bus_number=0, unit_number=0)
        ]
        self.media: Dict[str, MediaRecord] = {}
        self.containers: Dict[str, ContainerRecord] = {}
        self.policies: Dict[str, ComputePolicy] = {}
        self.storage_profiles: Dict[str, Reference] = {}
        self.independent_disks: Dict[str, Reference] = {}
        self.vms: Dict[str, VMDocument] = {}
        self.tasks: Dict[str, Task] = {}
        self.calls: List[Tuple[str, tuple]] = []
        self.fail: Dict[str, str] = {}
        self._ids = itertools.count(1)

    def mutations(self) -> List[str]:
        """Names of the mutating calls made so far, in order."""
        return [name for name, _ in self.calls if name not in LOOKUPS]

    def clear_calls(self):
        self.calls.clear()

    def _next(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _record(self, name: str, *args):
        self.calls.append((name, args))

    def _task(self, name: str, owner_id: Optional[str], apply=None) -> Task:
        task_id = self._next("task")
        if name in self.fail:
            task = Task(id=task_id, operation=name, status=TaskStatus.ERROR,
                        owner_id=owner_id, error_message=self.fail[name])
        else:
            if apply is not None:
                apply()
            task = Task(id=task_id, operation=name, status=TaskStatus.SUCCESS, owner_id=owner_id)
        self.tasks[task_id] = task
        return task

    def _vm(self, vm_id: str) -> VMDocument:
        if vm_id not in self.vms:
            raise VMNotFound(vm_id)
        return self.vms[vm_id]

    # Lookups

    async def get_template(self, template_id):
        self._record("get_template", template_id)
        if template_id not in self.templates:
            raise NotFoundError("template", template_id)
        return self.templates[template_id]

    async def find_template_vm(self, template_id, vm_name):
        self._record("find_template_vm", template_id, vm_name)
        template = await self.get_template(template_id)
        for child in template.children:
            if child.name == vm_name:
                return child
        raise NotFoundError("template VM", vm_name)

    async def get_media(self, media_id):
        self._record("get_media", media_id)
        if media_id not in self.media:
            raise NotFoundError("media", media_id)
        return self.media[media_id]

    async def get_container(self, container):
        self._record("get_container", container)
        if container not in self.containers:
            raise NotFoundError("container", container)
        return self.containers[container]

    async def get_compute_policy(self, policy_id):
        self._record("get_compute_policy", policy_id)
        if policy_id not in self.policies:
            raise NotFoundError("compute policy", policy_id)
        return self.policies[policy_id]

    async def get_storage_profile(self, container, name):
        self._record("get_storage_profile", container, name)
        if name not in self.storage_profiles:
            raise NotFoundError("storage profile", name)
        return self.storage_profiles[name]

    async def get_independent_disk(self, disk_id):
        self._record("get_independent_disk", disk_id)
        if disk_id not in self.independent_disks:
            raise NotFoundError("disk", disk_id)
        return self.independent_disks[disk_id]

    async def get_vm(self, container, vm_id):
        self._record("get_vm", container, vm_id)
        return self._vm(vm_id).model_copy(deep=True)

    async def get_task(self, task_id):
        self._record("get_task", task_id)
        return self.tasks[task_id]

    # Mutations

    async def instantiate_vm(self, container, params: InstantiateParams):
        self._record("instantiate_vm", container, params)
        vm_id = self._next("vm")
        from_template = params.source is not None
        self.vms[vm_id] = VMDocument(
            id=vm_id,
            href=f"https://platform.example/vm/{vm_id}",
            name=params.name,
            container=container,
            description=params.description,
            status=POWERED_OFF,
            os_type=params.os_type or ("ubuntu64Guest" if from_template else None),
            num_cpus=1,
            cores_per_socket=1,
            memory_mb=1024,
            network_section=params.network_section,
            disks=[
                d.model_copy(update={"disk_id": self._next("disk")}) for d in self.template_disks
            ] if from_template else [],
            customization=GuestCustomizationSection(computer_name=params.name),
            storage_profile=params.storage_profile,
            sizing_policy=params.sizing_policy,
            placement_policy=params.placement_policy,
        )
        # The VM exists even when the task fails afterwards
        return self._task("instantiate_vm", vm_id)

    async def update_network_section(self, vm_id, section: NetworkConnectionSection):
        self._record("update_network_section", vm_id, section)

        def apply():
            connections = []
            for c in section.connections:
                mac = c.mac_address or f"00:50:56:01:00:{c.index:02x}"
                connections.append(c.model_copy(update={"mac_address": mac}))
            connections.sort(key=lambda c: c.index, reverse=True)
            self._vm(vm_id).network_section = NetworkConnectionSection(
                primary_index=section.primary_index, connections=connections
            )
        return self._task("update_network_section", vm_id, apply)

    async def update_os_type(self, vm_id, os_type):
        self._record("update_os_type", vm_id, os_type)
        return self._task("update_os_type", vm_id, lambda: setattr(self._vm(vm_id), "os_type", os_type))

    async def update_cpu(self, vm_id, cpus, cores_per_socket):
        self._record("update_cpu", vm_id, cpus, cores_per_socket)

        def apply():
            vm = self._vm(vm_id)
            vm.num_cpus = cpus
            vm.cores_per_socket = cores_per_socket
        return self._task("update_cpu", vm_id, apply)

    async def update_memory(self, vm_id, memory_mb):
        self._record("update_memory", vm_id, memory_mb)
        return self._task("update_memory", vm_id, lambda: setattr(self._vm(vm_id), "memory_mb", memory_mb))

    async def update_guest_properties(self, vm_id, properties):
        self._record("update_guest_properties", vm_id, properties)
        return self._task(
            "update_guest_properties", vm_id,
            lambda: setattr(self._vm(vm_id), "guest_properties", dict(properties)),
        )

    async def update_customization_section(self, vm_id, section):
        self._record("update_customization_section", vm_id, section)
        return self._task(
            "update_customization_section", vm_id,
            lambda: setattr(self._vm(vm_id), "customization", section),
        )

    async def update_capabilities(self, vm_id, cpu_hot_add, memory_hot_add):
        self._record("update_capabilities", vm_id, cpu_hot_add, memory_hot_add)

        def apply():
            vm = self._vm(vm_id)
            vm.cpu_hot_add_enabled = cpu_hot_add
            vm.memory_hot_add_enabled = memory_hot_add
        return self._task("update_capabilities", vm_id, apply)

    async def update_compute_policy(self, vm_id, sizing_policy, placement_policy):
        self._record("update_compute_policy", vm_id, sizing_policy, placement_policy)

        def apply():
            vm = self._vm(vm_id)
            vm.sizing_policy = sizing_policy
            vm.placement_policy = placement_policy
        return self._task("update_compute_policy", vm_id, apply)

    async def update_storage_profile(self, vm_id, profile):
        self._record("update_storage_profile", vm_id, profile)
        return self._task(
            "update_storage_profile", vm_id,
            lambda: setattr(self._vm(vm_id), "storage_profile", profile),
        )

    async def add_internal_disk(self, vm_id, disk):
        self._record("add_internal_disk", vm_id, disk)
        new_disk = disk.model_copy(update={"disk_id": self._next("disk")})
        return self._task("add_internal_disk", vm_id, lambda: self._vm(vm_id).disks.append(new_disk))

    async def resize_internal_disk(self, vm_id, disk):
        self._record("resize_internal_disk", vm_id, disk)

        def apply():
            vm = self._vm(vm_id)
            vm.disks = [disk if d.disk_id == disk.disk_id else d for d in vm.disks]
        return self._task("resize_internal_disk", vm_id, apply)

    async def remove_internal_disk(self, vm_id, disk_id):
        self._record("remove_internal_disk", vm_id, disk_id)

        def apply():
            vm = self._vm(vm_id)
            vm.disks = [d for d in vm.disks if d.disk_id != disk_id]
        return self._task("remove_internal_disk", vm_id, apply)

    async def attach_disk(self, vm_id, disk, bus_number, unit_number):
        self._record("attach_disk", vm_id, disk, bus_number, unit_number)
        settings = DiskSettings(
            disk_id=disk.id, size_mb=10240, bus_number=bus_number,
            unit_number=unit_number, independent_disk=disk,
        )
        return self._task("attach_disk", vm_id, lambda: self._vm(vm_id).disks.append(settings))

    async def detach_disk(self, vm_id, disk):
        self._record("detach_disk", vm_id, disk)

        def apply():
            vm = self._vm(vm_id)
            vm.disks = [
                d for d in vm.disks
                if d.independent_disk is None or d.independent_disk.id != disk.id
            ]
        return self._task("detach_disk", vm_id, apply)

    async def power_on(self, vm_id, force_customization=False):
        self._record("power_on", vm_id, force_customization)
        return self._task("power_on", vm_id, lambda: setattr(self._vm(vm_id), "status", POWERED_ON))

    async def undeploy(self, vm_id):
        self._record("undeploy", vm_id)
        return self._task("undeploy", vm_id, lambda: setattr(self._vm(vm_id), "status", POWERED_OFF))

    async def remove_vm(self, vm_id):
        self._record("remove_vm", vm_id)
        return self._task("remove_vm", vm_id, lambda: self.vms.pop(vm_id))


@pytest.fixture
def platform():
    """Fake platform with one container, a template and catalog objects."""
    fake = FakePlatform()
    fake.containers["app"] = ContainerRecord(
        id="vapp-1",
        name="app",
        networks=[
            ContainerNetwork(name="eth0", kind="org"),
            ContainerNetwork(name="corp", kind="org"),
            ContainerNetwork(name="backend", kind="vapp"),
        ],
    )
    fake.templates["tpl-1"] = TemplateRecord(
        id="tpl-1",
        href="https://platform.example/vapptemplate/tpl-1",
        name="ubuntu",
        children=[
            TemplateRecord(id="tvm-1", href="https://platform.example/vm/tvm-1", name="web-01"),
            TemplateRecord(id="tvm-2", href="https://platform.example/vm/tvm-2", name="db-01"),
        ],
    )
    fake.templates["tpl-empty"] = TemplateRecord(
        id="tpl-empty", href="https://platform.example/vapptemplate/tpl-empty", name="empty",
    )
    fake.media["iso-1"] = MediaRecord(
        id="iso-1", href="https://platform.example/media/iso-1", name="debian.iso", is_synchronized=True,
    )
    fake.media["iso-2"] = MediaRecord(
        id="iso-2", href="https://platform.example/media/iso-2", name="pending.iso", is_synchronized=False,
    )
    fake.policies["sizing-small"] = ComputePolicy(
        id="sizing-small", href="https://platform.example/policy/sizing-small", name="small",
        cpu_count=2, memory_mb=2048,
    )
    fake.policies["placement-a"] = ComputePolicy(
        id="placement-a", href="https://platform.example/policy/placement-a", name="zone-a",
    )
    fake.storage_profiles["gold"] = Reference(id="sp-gold", href="https://platform.example/sp/gold", name="gold")
    fake.storage_profiles["silver"] = Reference(id="sp-silver", href="https://platform.example/sp/silver", name="silver")
    fake.independent_disks["idisk-1"] = Reference(id="idisk-1", href="https://platform.example/disk/idisk-1", name="data-1")
    fake.independent_disks["idisk-2"] = Reference(id="idisk-2", href="https://platform.example/disk/idisk-2", name="data-2")
    return fake


@pytest.fixture
def engine_config():
    return EngineConfig(task_poll_interval=0.01, task_timeout=5)


@pytest.fixture
def engine(platform, engine_config):
    return VMEngine(platform, engine_config)


@pytest.fixture
def spec_factory():
    """Build VMSpec instances from a minimal template-based declaration."""
    def make(**overrides) -> VMSpec:
        data = {
            "container": "app",
            "name": "web",
            "origin": {"template_id": "tpl-1", "vm_name_in_template": "web-01"},
            "networks": [{"kind": "org", "name": "eth0", "ip_allocation_mode": "DHCP", "is_primary": True}],
            "power_on": True,
        }
        data.update(overrides)
        return VMSpec(**data)
    return make
