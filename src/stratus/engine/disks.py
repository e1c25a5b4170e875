"""Disk reconciliation planning and execution."""

import logging
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from stratus.engine.tasks import TaskWaiter
from stratus.errors import ConfigurationError, DuplicateDiskSlot
from stratus.models.platform import DiskSettings, bus_type_code
from stratus.models.state import ObservedDisk
from stratus.models.vm import IndependentDiskSpec, InternalDiskSpec
from stratus.platform.base import PlatformClient


logger = logging.getLogger(__name__)

MAX_BUS_NUMBER = 3
MAX_UNIT_NUMBER = 15

Slot = Tuple[int, int]


@dataclass(frozen=True)
class DiskEntry:
    """Normalized disk: either side of a plan comparison.

    For independent disks disk_id is the independent disk identity; for
    internal disks it is the platform disk id once the disk exists.
    """
    independent: bool
    bus_number: int
    unit_number: int
    disk_id: Optional[str] = None
    bus_type: str = "sata"
    size_mb: Optional[int] = None
    storage_profile: Optional[str] = None

    @property
    def slot(self) -> Slot:
        return (self.bus_number, self.unit_number)

    def describe(self) -> str:
        kind = f"independent disk {self.disk_id}" if self.independent else f"internal disk {self.size_mb}MB"
        return f"{kind} at bus {self.bus_number} unit {self.unit_number}"


@dataclass(frozen=True)
class DiskPlan:
    """Disk operations in execution order: detach, resize, then attach."""
    detach: Tuple[DiskEntry, ...] = ()
    resize: Tuple[DiskEntry, ...] = ()
    attach: Tuple[DiskEntry, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.detach or self.resize or self.attach)

    def operations(self) -> List[Tuple[str, DiskEntry]]:
        return (
            [("detach", e) for e in self.detach]
            + [("resize", e) for e in self.resize]
            + [("attach", e) for e in self.attach]
        )


def next_slot(taken: Iterable[Slot], bus_number: Optional[int] = None) -> Slot:
    """Next free slot after the highest one in use.

    Unit 15 rolls over to unit 0 of the next bus. With no disks the first
    slot is bus 0 unit 0.
    """
    taken = list(taken)
    if bus_number is not None:
        units = [unit for bus, unit in taken if bus == bus_number]
        if not units:
            return (bus_number, 0)
        if max(units) >= MAX_UNIT_NUMBER:
            raise ConfigurationError(f"no free unit left on bus {bus_number}")
        return (bus_number, max(units) + 1)

    if not taken:
        return (0, 0)
    bus = max(b for b, _ in taken)
    unit = max(u for b, u in taken if b == bus)
    if unit >= MAX_UNIT_NUMBER:
        bus, unit = bus + 1, 0
    else:
        unit += 1
    if bus > MAX_BUS_NUMBER:
        raise ConfigurationError("no free disk slot left on the VM")
    return (bus, unit)


def check_unique_slots(entries: Iterable[Optional[DiskEntry]]):
    """Raise DuplicateDiskSlot if two entries share a bus/unit pair."""
    seen: Set[Slot] = set()
    for entry in entries:
        if entry is None:
            continue
        if entry.slot in seen:
            raise DuplicateDiskSlot(*entry.slot)
        seen.add(entry.slot)


def check_declared_disks(desired: Sequence[object]):
    """Reject a disk list that reuses an explicit slot or an independent disk.

    Raises:
        DuplicateDiskSlot: two declarations name the same bus/unit pair
        ConfigurationError: an independent disk is declared twice
    """
    slots: Set[Slot] = set()
    disk_ids: Set[str] = set()
    for disk in desired:
        if isinstance(disk, IndependentDiskSpec):
            if disk.disk_id in disk_ids:
                raise ConfigurationError(f"independent disk {disk.disk_id} is declared more than once")
            disk_ids.add(disk.disk_id)
        if disk.bus_number is not None and disk.unit_number is not None:
            slot = (disk.bus_number, disk.unit_number)
            if slot in slots:
                raise DuplicateDiskSlot(*slot)
            slots.add(slot)


def _unchanged(previous: DiskEntry, desired: DiskEntry) -> bool:
    if previous.independent != desired.independent or previous.slot != desired.slot:
        return False
    if previous.independent:
        return previous.disk_id == desired.disk_id
    return (
        previous.bus_type == desired.bus_type
        and previous.size_mb == desired.size_mb
        and (desired.storage_profile is None or desired.storage_profile == previous.storage_profile)
    )


def _resizable(previous: DiskEntry, desired: DiskEntry) -> bool:
    return (
        not previous.independent
        and not desired.independent
        and previous.slot == desired.slot
        and previous.bus_type == desired.bus_type
    )


def plan_disks(previous: Sequence[Optional[DiskEntry]],
               desired: Sequence[Optional[DiskEntry]]) -> DiskPlan:
    """Compare previous and desired disks position by position.

    Attaches are ordered by descending (bus, unit) so the platform's
    sequential slot allocation does not collide on adjacent units.
    """
    check_unique_slots(desired)

    detach: List[DiskEntry] = []
    resize: List[DiskEntry] = []
    attach: List[DiskEntry] = []

    for position in range(max(len(previous), len(desired))):
        old = previous[position] if position < len(previous) else None
        new = desired[position] if position < len(desired) else None

        if old is None and new is None:
            continue
        if old is None:
            attach.append(new)
        elif new is None:
            detach.append(old)
        elif _unchanged(old, new):
            continue
        elif _resizable(old, new):
            resize.append(replace(new, disk_id=old.disk_id))
        else:
            detach.append(old)
            attach.append(new)

    attach.sort(key=lambda e: e.slot, reverse=True)
    return DiskPlan(detach=tuple(detach), resize=tuple(resize), attach=tuple(attach))


def entry_from_observed(disk: ObservedDisk) -> DiskEntry:
    return DiskEntry(
        independent=disk.independent,
        bus_number=disk.bus_number,
        unit_number=disk.unit_number,
        disk_id=disk.disk_id,
        bus_type=disk.bus_type,
        size_mb=disk.size_mb,
        storage_profile=disk.storage_profile,
    )


def align_disks(observed: Sequence[ObservedDisk],
                desired: Sequence[object],
                match_by_size: bool = True) -> Tuple[List[Optional[DiskEntry]], List[Optional[DiskEntry]]]:
    """Pair observed disks with declared ones for plan_disks.

    Independent disks match by identity, internal disks by slot, or for
    internal disks declared without a slot, by bus type and size, newest
    slot first. With match_by_size off, slotless internal disks never match
    and are always added. Observed independent disks that match nothing are
    appended for detachment. Observed internal disks that match nothing are
    left in place.
    """
    check_declared_disks(desired)

    current = [entry_from_observed(d) for d in observed]
    matched: Set[int] = set()
    previous: List[Optional[DiskEntry]] = [None] * len(desired)
    slots: List[Optional[Slot]] = [None] * len(desired)

    def claim(predicate, newest_first: bool = False) -> Optional[int]:
        order = sorted(range(len(current)), key=lambda i: current[i].slot, reverse=newest_first)
        for i in order:
            if i not in matched and predicate(current[i]):
                matched.add(i)
                return i
        return None

    for position, disk in enumerate(desired):
        if isinstance(disk, IndependentDiskSpec):
            i = claim(lambda e: e.independent and e.disk_id == disk.disk_id)
        elif disk.bus_number is not None and disk.unit_number is not None:
            slot = (disk.bus_number, disk.unit_number)
            i = claim(lambda e: not e.independent and e.slot == slot)
        else:
            continue
        if i is not None:
            previous[position] = current[i]
        if disk.bus_number is not None and disk.unit_number is not None:
            slots[position] = (disk.bus_number, disk.unit_number)
        elif i is not None:
            slots[position] = current[i].slot

    for position, disk in enumerate(desired):
        if match_by_size and isinstance(disk, InternalDiskSpec) and slots[position] is None:
            # Declared disks are added after the ones the origin brought in
            i = claim(lambda e: (
                not e.independent
                and e.bus_type == disk.bus_type
                and e.size_mb == disk.size_mb
                and (disk.bus_number is None or e.bus_number == disk.bus_number)
            ), newest_first=True)
            if i is not None:
                previous[position] = current[i]
                slots[position] = current[i].slot

    taken = [e.slot for e in current] + [s for s in slots if s is not None]
    for position, disk in enumerate(desired):
        if slots[position] is None:
            slot = next_slot(taken, disk.bus_number)
            slots[position] = slot
            taken.append(slot)

    targets: List[Optional[DiskEntry]] = []
    for disk, (bus, unit) in zip(desired, slots):
        if isinstance(disk, IndependentDiskSpec):
            targets.append(DiskEntry(independent=True, bus_number=bus, unit_number=unit, disk_id=disk.disk_id))
        else:
            targets.append(DiskEntry(
                independent=False,
                bus_number=bus,
                unit_number=unit,
                bus_type=disk.bus_type,
                size_mb=disk.size_mb,
                storage_profile=disk.storage_profile,
            ))

    untouched = [e for i, e in enumerate(current) if i not in matched and not e.independent]
    check_unique_slots(targets + untouched)

    for i, entry in enumerate(current):
        if i not in matched and entry.independent:
            previous.append(entry)
            targets.append(None)

    return previous, targets


class DiskReconciler:
    """Executes disk plans one task at a time."""

    def __init__(self, platform: PlatformClient, waiter: TaskWaiter):
        self.platform = platform
        self.waiter = waiter

    def plan(self, observed: Sequence[ObservedDisk], desired: Sequence[object],
             match_by_size: bool = True) -> DiskPlan:
        previous, targets = align_disks(observed, desired, match_by_size)
        return plan_disks(previous, targets)

    async def apply(self, vm_id: str, container: str, plan: DiskPlan):
        """Run every operation of the plan sequentially."""
        for action, entry in plan.operations():
            if action == "detach":
                await self._detach(vm_id, entry)
            elif action == "resize":
                await self._resize(vm_id, container, entry)
            else:
                await self._attach(vm_id, container, entry)

    async def _attach(self, vm_id: str, container: str, entry: DiskEntry):
        if entry.independent:
            disk = await self.platform.get_independent_disk(entry.disk_id)
            await self.waiter.run(
                f"attach {entry.describe()}",
                self.platform.attach_disk(vm_id, disk, entry.bus_number, entry.unit_number),
            )
            return
        settings = await self._settings(container, entry)
        await self.waiter.run(f"add {entry.describe()}", self.platform.add_internal_disk(vm_id, settings))

    async def _detach(self, vm_id: str, entry: DiskEntry):
        if entry.independent:
            disk = await self.platform.get_independent_disk(entry.disk_id)
            await self.waiter.run(f"detach {entry.describe()}", self.platform.detach_disk(vm_id, disk))
            return
        await self.waiter.run(
            f"remove {entry.describe()}", self.platform.remove_internal_disk(vm_id, entry.disk_id)
        )

    async def _resize(self, vm_id: str, container: str, entry: DiskEntry):
        settings = await self._settings(container, entry)
        await self.waiter.run(f"resize {entry.describe()}", self.platform.resize_internal_disk(vm_id, settings))

    async def _settings(self, container: str, entry: DiskEntry) -> DiskSettings:
        profile = None
        if entry.storage_profile:
            profile = await self.platform.get_storage_profile(container, entry.storage_profile)
        return DiskSettings(
            disk_id=entry.disk_id or "",
            adapter_type=bus_type_code(entry.bus_type),
            size_mb=entry.size_mb or 0,
            bus_number=entry.bus_number,
            unit_number=entry.unit_number,
            storage_profile=profile,
            override_vm_default=profile is not None,
        )
