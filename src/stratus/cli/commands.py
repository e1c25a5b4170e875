"""CLI command implementations."""

import asyncio
from pathlib import Path
from typing import Dict

from rich.console import Console
from rich.table import Table

from stratus.engine.config import ConfigManager
from stratus.engine.update import compute_changeset
from stratus.errors import ConfigurationError
from stratus.models.state import ObservedState
from stratus.models.vm import VMSpec


console = Console()


def _origin_label(spec: VMSpec) -> str:
    origin = spec.origin
    if origin.template_id:
        if origin.vm_name_in_template:
            return f"template {origin.template_id}/{origin.vm_name_in_template}"
        return f"template {origin.template_id}"
    return f"media {origin.boot_media_id}"


def _load(config_dir: Path) -> ConfigManager:
    manager = ConfigManager(config_dir)
    asyncio.run(manager.load())
    return manager


def validate_config(config_dir: Path):
    """Load every declaration and print a summary."""
    manager = _load(config_dir)
    render_vm_specs(manager.vms)
    console.print(f"[green]✓[/green] Configuration is valid ({len(manager.vms)} VM(s))")


def render_vm_specs(vms: Dict[str, VMSpec]):
    table = Table(title="Virtual Machines")
    table.add_column("Name", style="cyan")
    table.add_column("Container")
    table.add_column("Origin")
    table.add_column("CPU")
    table.add_column("Memory")
    table.add_column("NICs")
    table.add_column("Disks")
    table.add_column("Power")

    for name, spec in sorted(vms.items()):
        sizing = spec.sizing
        table.add_row(
            name,
            spec.container,
            _origin_label(spec),
            str(sizing.cpus) if sizing.cpus is not None else "-",
            f"{sizing.memory_mb}MB" if sizing.memory_mb is not None else "-",
            str(len(spec.networks)),
            str(len(spec.disks)),
            "[green]on[/green]" if spec.power_on else "[dim]off[/dim]",
        )

    console.print(table)


def show_plan(config_dir: Path, name: str, state_file: Path):
    """Print the changes an update would apply, without remote calls."""
    manager = _load(config_dir)
    spec = manager.get_vm_spec(name)
    if spec is None:
        raise ConfigurationError(f"VM {name} is not declared in {config_dir}")

    previous = manager.load_snapshot(state_file)
    changeset = compute_changeset(previous, spec, manager.config.engine.hot_nic_change)

    if changeset.is_empty:
        console.print(f"[green]✓[/green] VM {name} is up to date")
        return

    console.print(f"[bold]VM {name}[/bold] ({previous.id}) pending changes:")
    for line in changeset.describe():
        console.print(f"  [yellow]~[/yellow] {line}")


def show_snapshot(state_file: Path):
    """Render a saved snapshot."""
    state = ConfigManager(state_file.parent).load_snapshot(state_file)
    render_snapshot(state)


def render_snapshot(state: ObservedState):
    status_style = "green" if state.is_powered_on else "yellow"
    console.print(f"[bold]{state.name}[/bold] in {state.container}")
    console.print(f"  ID: {state.id}")
    console.print(f"  Status: [{status_style}]{state.status_text}[/{status_style}]")
    if state.os_type:
        console.print(f"  OS type: {state.os_type}")
    resources = state.resources
    console.print(f"  CPU: {resources.cpus or '-'} ({resources.cores_per_socket or '-'} per socket)")
    console.print(f"  Memory: {resources.memory_mb or '-'}MB")
    if state.storage_profile:
        console.print(f"  Storage profile: {state.storage_profile}")

    if state.networks:
        table = Table(title="Networks")
        table.add_column("Index")
        table.add_column("Kind")
        table.add_column("Network", style="cyan")
        table.add_column("Mode")
        table.add_column("IP")
        table.add_column("MAC")
        table.add_column("Connected")
        table.add_column("Primary")
        for network in state.networks:
            table.add_row(
                str(network.index),
                network.kind,
                network.name or "-",
                network.ip_allocation_mode,
                network.ip or "-",
                network.mac or "-",
                "yes" if network.connected else "no",
                "[green]✓[/green]" if network.is_primary else "",
            )
        console.print(table)

    if state.disks:
        table = Table(title="Disks")
        table.add_column("Disk", style="cyan")
        table.add_column("Type")
        table.add_column("Bus")
        table.add_column("Slot")
        table.add_column("Size")
        table.add_column("Storage profile")
        for disk in state.disks:
            table.add_row(
                disk.name or disk.disk_id,
                "independent" if disk.independent else "internal",
                disk.bus_type,
                f"{disk.bus_number}:{disk.unit_number}",
                f"{disk.size_mb}MB",
                disk.storage_profile or "-",
            )
        console.print(table)
