"""Documents exchanged with the remote platform client."""

from enum import Enum
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field


# Reserved network name for a disconnected NIC
NONE_NETWORK = "none"

# Disk controller adapter codes
BUS_TYPE_CODES = {
    "sata": "6",
    "scsi": "4",
    "nvme": "7",
}

VM_STATUS_TEXT = {
    -1: "FAILED_CREATION",
    0: "UNRESOLVED",
    1: "RESOLVED",
    2: "DEPLOYED",
    3: "SUSPENDED",
    4: "POWERED_ON",
    5: "WAITING_FOR_INPUT",
    6: "UNKNOWN",
    7: "UNRECOGNIZED",
    8: "POWERED_OFF",
    9: "INCONSISTENT_STATE",
    10: "MIXED",
}

POWERED_ON = 4
POWERED_OFF = 8


def bus_type_code(name: str) -> str:
    """Map a bus type name to its adapter code, defaulting to SATA."""
    return BUS_TYPE_CODES.get(name.lower(), BUS_TYPE_CODES["sata"])


def bus_type_name(code: str) -> str:
    """Map an adapter code back to its bus type name, defaulting to SATA."""
    for name, value in BUS_TYPE_CODES.items():
        if value == code:
            return name
    return "sata"


def status_text(code: int) -> str:
    return VM_STATUS_TEXT.get(code, "UNKNOWN")


class TaskStatus(str, Enum):
    """Remote task states."""
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCESS, TaskStatus.ERROR, TaskStatus.ABORTED)


class Task(BaseModel):
    """Asynchronous handle for a submitted mutating operation."""
    id: str
    operation: str = ""
    status: TaskStatus = TaskStatus.QUEUED
    owner_id: Optional[str] = Field(None, description="Object the task acts on or created")
    error_message: Optional[str] = None


class Reference(BaseModel):
    """Link to a remote object."""
    id: str = ""
    href: str = ""
    name: str = ""


class NetworkConnection(BaseModel):
    """One NIC entry of a network connection section."""
    index: int
    network: str
    is_connected: bool = False
    ip_allocation_mode: str = "NONE"
    ip_address: Optional[str] = None
    mac_address: Optional[str] = None
    adapter_type: Optional[str] = None


class NetworkConnectionSection(BaseModel):
    primary_index: int = 0
    connections: List[NetworkConnection] = Field(default_factory=list)


class DiskSettings(BaseModel):
    """One disk as reported in the VM hardware section."""
    disk_id: str = ""
    adapter_type: str = BUS_TYPE_CODES["sata"]
    size_mb: int = 0
    bus_number: int = 0
    unit_number: int = 0
    storage_profile: Optional[Reference] = None
    override_vm_default: bool = False
    independent_disk: Optional[Reference] = Field(
        None, description="Set when the slot holds an independent disk"
    )


class GuestCustomizationSection(BaseModel):
    """Platform guest customization section."""
    enabled: bool = False
    change_sid: bool = False
    admin_password_enabled: bool = True
    admin_password_auto: bool = True
    admin_password: str = ""
    reset_password_required: bool = False
    admin_auto_logon_enabled: bool = False
    admin_auto_logon_count: int = 0
    join_domain_enabled: bool = False
    use_org_settings: bool = False
    domain_name: str = ""
    domain_user_name: str = ""
    domain_user_password: str = ""
    machine_object_ou: str = ""
    customization_script: str = ""
    computer_name: str = ""


class ComputePolicy(BaseModel):
    """Sizing or placement policy."""
    id: str
    href: str
    name: str = ""
    cpu_count: Optional[int] = None
    cores_per_socket: Optional[int] = None
    memory_mb: Optional[int] = None


class TemplateRecord(BaseModel):
    """A template container, or one VM inside it."""
    id: str
    href: str
    name: str = ""
    children: List["TemplateRecord"] = Field(default_factory=list)


class MediaRecord(BaseModel):
    id: str
    href: str
    name: str = ""
    is_synchronized: bool = False


class ContainerNetwork(BaseModel):
    name: str
    kind: Literal["org", "vapp", "none"]


class ContainerRecord(BaseModel):
    """Container (vApp) with its attached network topology."""
    id: str
    name: str
    networks: List[ContainerNetwork] = Field(default_factory=list)


class InstantiateParams(BaseModel):
    """Body of a VM allocation request."""
    name: str
    description: str = ""
    source: Optional[Reference] = Field(None, description="Template VM to clone")
    boot_media: Optional[Reference] = None
    os_type: Optional[str] = None
    virtual_cpu_type: Optional[str] = None
    network_section: NetworkConnectionSection
    storage_profile: Optional[Reference] = None
    sizing_policy: Optional[Reference] = None
    placement_policy: Optional[Reference] = None
    accept_all_eulas: bool = True
    power_on: bool = False


class VMDocument(BaseModel):
    """Full configuration document of a VM as returned by the platform."""
    id: str
    href: str
    name: str
    container: str
    description: str = ""
    status: int = POWERED_OFF
    os_type: Optional[str] = None
    num_cpus: Optional[int] = None
    cores_per_socket: Optional[int] = None
    memory_mb: Optional[int] = None
    cpu_hot_add_enabled: bool = False
    memory_hot_add_enabled: bool = False
    network_section: NetworkConnectionSection = Field(default_factory=NetworkConnectionSection)
    disks: List[DiskSettings] = Field(default_factory=list)
    customization: Optional[GuestCustomizationSection] = None
    guest_properties: Dict[str, str] = Field(default_factory=dict)
    storage_profile: Optional[Reference] = None
    sizing_policy: Optional[Reference] = None
    placement_policy: Optional[Reference] = None
