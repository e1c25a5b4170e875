"""Exceptions raised by the VM lifecycle engine."""

from typing import Optional


class StratusError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(StratusError):
    """Declaration is invalid and must be fixed by the caller. Never retried."""


class NotFoundError(StratusError):
    """A referenced remote object does not exist."""

    def __init__(self, kind: str, identifier: str, message: Optional[str] = None):
        self.kind = kind
        self.identifier = identifier
        super().__init__(message or f"{kind} {identifier!r} not found")


class NetworkNotFound(NotFoundError):
    """Network is missing from the container or is not of the declared kind."""

    def __init__(self, name: str, kind: str):
        self.network_kind = kind
        super().__init__("network", name, f"{kind} network {name!r} is not attached to the container")


class VMNotFound(NotFoundError):
    """The VM itself is gone; callers treat the resource as deleted."""

    def __init__(self, identifier: str):
        super().__init__("VM", identifier)


class PreconditionFailed(StratusError):
    """A precondition on live platform state does not hold."""


class MediaNotSynchronized(PreconditionFailed):
    """Boot media is not yet synchronized in its catalog."""

    def __init__(self, media_id: str):
        self.media_id = media_id
        super().__init__(f"media {media_id!r} is not synchronized in the catalog")


class PrimaryNICRequired(PreconditionFailed):
    """The change would leave a powered-on VM without its primary NIC."""


class DuplicateDiskSlot(PreconditionFailed):
    """Two disks target the same (bus number, unit number) slot."""

    def __init__(self, bus_number: int, unit_number: int):
        self.bus_number = bus_number
        self.unit_number = unit_number
        super().__init__(f"disk slot bus={bus_number} unit={unit_number} is used more than once")


class RequiresPowerOff(PreconditionFailed):
    """The attribute cannot be changed while the VM is powered on."""

    def __init__(self, attribute: str):
        self.attribute = attribute
        super().__init__(f"changing {attribute} requires the VM to be powered off")


class PartialCreation(StratusError):
    """The VM exists remotely but a later creation step failed.

    Carries the remote identity so the caller can issue a best-effort delete
    or re-drive the remaining steps.
    """

    def __init__(self, remote_id: str, phase: str, message: str):
        self.remote_id = remote_id
        self.phase = phase
        super().__init__(f"VM {remote_id} created but phase {phase} failed: {message}")


class RemoteTaskFailure(StratusError):
    """A platform task finished in error, or could not be submitted."""

    def __init__(self, operation: str, message: str, task_id: Optional[str] = None,
                 owner_id: Optional[str] = None):
        self.operation = operation
        self.task_id = task_id
        self.owner_id = owner_id
        super().__init__(f"{operation}: {message}")
