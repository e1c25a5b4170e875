"""VM creation as an explicit state machine.

Each phase is a step in CREATION_STEPS. A step that mutates the VM declares
refresh_after, and the runner re-reads the VM before the next step so every
phase starts from authoritative remote state. The context carried between
steps is immutable and replaced at each transition.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from stratus.engine.customization import build_customization_section
from stratus.engine.disks import DiskReconciler, check_declared_disks
from stratus.engine.network import NetworkPlan, build_network_plan, placeholder_section
from stratus.engine.origin import OriginResolver, ResolvedOrigin
from stratus.engine.reader import StateReader
from stratus.engine.tasks import TaskWaiter
from stratus.errors import PartialCreation, RemoteTaskFailure
from stratus.models.platform import (
    ComputePolicy,
    InstantiateParams,
    NetworkConnectionSection,
    Reference,
)
from stratus.models.state import ObservedState
from stratus.models.vm import SizingSpec, VMSpec
from stratus.platform.base import PlatformClient


logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """Creation phases, in execution order."""
    RESOLVE_ORIGIN = "resolve_origin"
    RESOLVE_PLACEMENT = "resolve_placement"
    BIND_PLACEHOLDER_NETWORK = "bind_placeholder_network"
    ALLOCATE = "allocate"
    UPDATE_NETWORK_PLAN = "update_network_plan"
    SET_OS_TYPE = "set_os_type"
    APPLY_SIZING = "apply_sizing"
    APPLY_GUEST_PROPERTIES = "apply_guest_properties"
    APPLY_CUSTOMIZATION = "apply_customization"
    APPLY_HOT_ADD = "apply_hot_add"
    RECONCILE_DISKS = "reconcile_disks"
    POWER_ON = "power_on"


@dataclass(frozen=True)
class CreationContext:
    """Everything known about the VM being created at a given phase."""
    spec: VMSpec
    origin: Optional[ResolvedOrigin] = None
    network_plan: Optional[NetworkPlan] = None
    initial_section: Optional[NetworkConnectionSection] = None
    sizing_policy: Optional[ComputePolicy] = None
    placement_policy: Optional[ComputePolicy] = None
    storage_profile: Optional[Reference] = None
    vm_id: Optional[str] = None
    state: Optional[ObservedState] = None


@dataclass(frozen=True)
class Step:
    phase: Phase
    handler: str
    refresh_after: bool = False


CREATION_STEPS: Tuple[Step, ...] = (
    Step(Phase.RESOLVE_ORIGIN, "_resolve_origin"),
    Step(Phase.RESOLVE_PLACEMENT, "_resolve_placement"),
    Step(Phase.BIND_PLACEHOLDER_NETWORK, "_bind_placeholder_network"),
    Step(Phase.ALLOCATE, "_allocate", refresh_after=True),
    Step(Phase.UPDATE_NETWORK_PLAN, "_update_network_plan", refresh_after=True),
    Step(Phase.SET_OS_TYPE, "_set_os_type", refresh_after=True),
    Step(Phase.APPLY_SIZING, "_apply_sizing", refresh_after=True),
    Step(Phase.APPLY_GUEST_PROPERTIES, "_apply_guest_properties", refresh_after=True),
    Step(Phase.APPLY_CUSTOMIZATION, "_apply_customization", refresh_after=True),
    Step(Phase.APPLY_HOT_ADD, "_apply_hot_add", refresh_after=True),
    Step(Phase.RECONCILE_DISKS, "_reconcile_disks", refresh_after=True),
    Step(Phase.POWER_ON, "_power_on", refresh_after=True),
)


def policy_reference(policy: Optional[ComputePolicy]) -> Optional[Reference]:
    if policy is None:
        return None
    return Reference(id=policy.id, href=policy.href, name=policy.name)


def resolve_sizing(sizing: SizingSpec, policy: Optional[ComputePolicy]):
    """CPU, cores per socket and memory to apply.

    Explicit values win over the sizing policy. Cores per socket defaults to
    1 when only a CPU count is known.
    """
    cpus = sizing.cpus
    cores = sizing.cores_per_socket
    memory = sizing.memory_mb
    if policy is not None:
        cpus = cpus if cpus is not None else policy.cpu_count
        cores = cores if cores is not None else policy.cores_per_socket
        memory = memory if memory is not None else policy.memory_mb
    if cpus is not None and cores is None:
        cores = 1
    return cpus, cores, memory


def virtual_cpu_type(os_type: Optional[str]) -> str:
    return "VM64" if os_type and "64" in os_type else "VM32"


class CreationOrchestrator:
    """Creates a VM from a declaration, one phase at a time."""

    def __init__(self, platform: PlatformClient, waiter: TaskWaiter):
        self.platform = platform
        self.waiter = waiter
        self.resolver = OriginResolver(platform)
        self.reader = StateReader(platform)
        self.disks = DiskReconciler(platform, waiter)

    async def create(self, spec: VMSpec) -> ObservedState:
        """Run every creation phase.

        Raises:
            DuplicateDiskSlot: two disks share a slot, before any remote call
            PartialCreation: a phase failed after the VM was allocated
        """
        check_declared_disks(spec.disks)
        ctx = CreationContext(spec=spec)
        for step in CREATION_STEPS:
            ctx = await self._run_step(step, ctx)
        logger.info(f"VM {spec.name} created as {ctx.vm_id}: {ctx.state.status_text}")
        return ctx.state

    async def _run_step(self, step: Step, ctx: CreationContext) -> CreationContext:
        logger.debug(f"VM {ctx.spec.name}: phase {step.phase.value}")
        handler = getattr(self, step.handler)
        try:
            ctx, mutated = await handler(ctx)
            if step.refresh_after and mutated:
                ctx = replace(ctx, state=await self.reader.read(ctx.spec.container, ctx.vm_id))
        except PartialCreation:
            raise
        except Exception as e:
            if ctx.vm_id is None:
                raise
            logger.warning(f"VM {ctx.spec.name} ({ctx.vm_id}) failed in phase {step.phase.value}: {e}")
            raise PartialCreation(ctx.vm_id, step.phase.value, str(e)) from e
        return ctx

    # Steps before allocation

    async def _resolve_origin(self, ctx: CreationContext):
        origin = await self.resolver.resolve(ctx.spec.origin)
        return replace(ctx, origin=origin), False

    async def _resolve_placement(self, ctx: CreationContext):
        spec = ctx.spec
        topology = await self.platform.get_container(spec.container)
        plan = build_network_plan(spec.networks, topology)

        sizing_policy = placement_policy = storage_profile = None
        if spec.sizing_policy_id:
            sizing_policy = await self.platform.get_compute_policy(spec.sizing_policy_id)
        if spec.placement_policy_id:
            placement_policy = await self.platform.get_compute_policy(spec.placement_policy_id)
        if spec.storage_profile:
            storage_profile = await self.platform.get_storage_profile(spec.container, spec.storage_profile)

        return replace(
            ctx,
            network_plan=plan,
            sizing_policy=sizing_policy,
            placement_policy=placement_policy,
            storage_profile=storage_profile,
        ), False

    async def _bind_placeholder_network(self, ctx: CreationContext):
        return replace(ctx, initial_section=placeholder_section()), False

    async def _allocate(self, ctx: CreationContext):
        spec = ctx.spec
        origin = ctx.origin
        params = InstantiateParams(
            name=spec.name,
            description=spec.description,
            source=origin.source_reference(),
            boot_media=origin.media_reference(),
            os_type=None if origin.is_template else spec.os_type,
            virtual_cpu_type=None if origin.is_template else virtual_cpu_type(spec.os_type),
            network_section=ctx.initial_section,
            storage_profile=ctx.storage_profile,
            sizing_policy=policy_reference(ctx.sizing_policy),
            placement_policy=policy_reference(ctx.placement_policy),
            accept_all_eulas=spec.origin.accept_all_eulas,
            power_on=False,
        )
        try:
            task = await self.waiter.run(
                f"allocate VM {spec.name}", self.platform.instantiate_vm(spec.container, params)
            )
        except RemoteTaskFailure as e:
            if e.owner_id:
                raise PartialCreation(e.owner_id, Phase.ALLOCATE.value, str(e)) from e
            raise
        logger.info(f"Allocated VM {spec.name} as {task.owner_id}")
        return replace(ctx, vm_id=task.owner_id), True

    # Steps after allocation

    async def _update_network_plan(self, ctx: CreationContext):
        await self.waiter.run(
            f"update network section of {ctx.spec.name}",
            self.platform.update_network_section(ctx.vm_id, ctx.network_plan.to_section()),
        )
        return ctx, True

    async def _set_os_type(self, ctx: CreationContext):
        os_type = ctx.spec.os_type
        if not ctx.origin.is_template or not os_type or os_type == ctx.state.os_type:
            return ctx, False
        await self.waiter.run(
            f"set OS type of {ctx.spec.name} to {os_type}",
            self.platform.update_os_type(ctx.vm_id, os_type),
        )
        return ctx, True

    async def _apply_sizing(self, ctx: CreationContext):
        cpus, cores, memory = resolve_sizing(ctx.spec.sizing, ctx.sizing_policy)
        current = ctx.state.resources
        mutated = False
        if cpus is not None and (cpus, cores) != (current.cpus, current.cores_per_socket):
            await self.waiter.run(
                f"set {ctx.spec.name} CPU to {cpus}x{cores}",
                self.platform.update_cpu(ctx.vm_id, cpus, cores),
            )
            mutated = True
        if memory is not None and memory != current.memory_mb:
            await self.waiter.run(
                f"set {ctx.spec.name} memory to {memory}MB",
                self.platform.update_memory(ctx.vm_id, memory),
            )
            mutated = True
        return ctx, mutated

    async def _apply_guest_properties(self, ctx: CreationContext):
        properties = dict(ctx.spec.guest_properties)
        if properties == ctx.state.guest_property_map():
            return ctx, False
        await self.waiter.run(
            f"set guest properties of {ctx.spec.name}",
            self.platform.update_guest_properties(ctx.vm_id, properties),
        )
        return ctx, True

    async def _apply_customization(self, ctx: CreationContext):
        if not ctx.spec.customization.enabled:
            return ctx, False
        document = await self.platform.get_vm(ctx.spec.container, ctx.vm_id)
        section = build_customization_section(document.customization, ctx.spec.customization, ctx.spec.name)
        await self.waiter.run(
            f"update guest customization of {ctx.spec.name}",
            self.platform.update_customization_section(ctx.vm_id, section),
        )
        return ctx, True

    async def _apply_hot_add(self, ctx: CreationContext):
        sizing = ctx.spec.sizing
        current = ctx.state.resources
        if (sizing.cpu_hot_add_enabled, sizing.memory_hot_add_enabled) == (
            current.cpu_hot_add_enabled, current.memory_hot_add_enabled
        ):
            return ctx, False
        await self.waiter.run(
            f"set hot-add capabilities of {ctx.spec.name}",
            self.platform.update_capabilities(
                ctx.vm_id, sizing.cpu_hot_add_enabled, sizing.memory_hot_add_enabled
            ),
        )
        return ctx, True

    async def _reconcile_disks(self, ctx: CreationContext):
        # Internal disks present now came with the origin, never from the declaration
        plan = self.disks.plan(ctx.state.disks, ctx.spec.disks, match_by_size=False)
        if plan.is_empty:
            return ctx, False
        await self.disks.apply(ctx.vm_id, ctx.spec.container, plan)
        return ctx, True

    async def _power_on(self, ctx: CreationContext):
        if not ctx.spec.power_on:
            return ctx, False
        customization = ctx.spec.customization
        force = customization.enabled and customization.force
        await self.waiter.run(
            f"power on {ctx.spec.name}" + (" with forced customization" if force else ""),
            self.platform.power_on(ctx.vm_id, force_customization=force),
        )
        return ctx, True
