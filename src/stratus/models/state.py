"""Observed state snapshot of a remote VM.

Instances are only ever produced by reading the platform. They are frozen;
every refresh yields a new snapshot that replaces the previous one.
"""

from typing import Literal, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field

from stratus.models.platform import POWERED_ON


class ObservedNetwork(BaseModel):
    """One NIC, in connection index order."""
    index: int
    kind: Literal["org", "vapp", "none"]
    name: Optional[str] = None
    ip_allocation_mode: str = "NONE"
    ip: Optional[str] = None
    mac: Optional[str] = None
    adapter_type: Optional[str] = None
    connected: bool = False
    is_primary: bool = False

    model_config = ConfigDict(frozen=True)


class ObservedDisk(BaseModel):
    disk_id: str
    independent: bool = False
    name: Optional[str] = None
    bus_type: str = "sata"
    bus_number: int = 0
    unit_number: int = 0
    size_mb: int = 0
    storage_profile: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def slot(self) -> Tuple[int, int]:
        return (self.bus_number, self.unit_number)


class ObservedCustomization(BaseModel):
    """Guest customization as last applied."""
    enabled: bool = False
    change_sid: bool = False
    allow_local_admin_password: bool = True
    auto_generate_password: bool = True
    must_change_password_on_first_login: bool = False
    number_of_auto_logons: int = 0
    join_domain: bool = False
    join_org_domain: bool = False
    domain_name: Optional[str] = None
    domain_user: Optional[str] = None
    organizational_unit: Optional[str] = None
    init_script: Optional[str] = None
    hostname: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class ResourceAllocation(BaseModel):
    cpus: Optional[int] = None
    cores_per_socket: Optional[int] = None
    memory_mb: Optional[int] = None
    cpu_hot_add_enabled: bool = False
    memory_hot_add_enabled: bool = False

    model_config = ConfigDict(frozen=True)


class ObservedState(BaseModel):
    """Canonical snapshot of a VM, the input to every later diff."""
    id: str
    href: str
    name: str
    container: str
    description: str = ""
    os_type: Optional[str] = None
    networks: Tuple[ObservedNetwork, ...] = ()
    disks: Tuple[ObservedDisk, ...] = ()
    customization: ObservedCustomization = Field(default_factory=ObservedCustomization)
    resources: ResourceAllocation = Field(default_factory=ResourceAllocation)
    storage_profile: Optional[str] = None
    sizing_policy_id: Optional[str] = None
    placement_policy_id: Optional[str] = None
    guest_properties: Tuple[Tuple[str, str], ...] = ()
    status_code: int
    status_text: str

    model_config = ConfigDict(frozen=True)

    @property
    def is_powered_on(self) -> bool:
        return self.status_code == POWERED_ON

    @property
    def primary_network(self) -> Optional[ObservedNetwork]:
        for network in self.networks:
            if network.is_primary:
                return network
        return None

    @property
    def independent_disks(self) -> Tuple[ObservedDisk, ...]:
        return tuple(d for d in self.disks if d.independent)

    def guest_property_map(self):
        return dict(self.guest_properties)
