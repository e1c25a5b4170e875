"""VM declaration models."""

from typing import Annotated, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class OriginSpec(BaseModel):
    """Source material: a template (optionally a named inner VM) or boot media."""
    template_id: Optional[str] = None
    vm_name_in_template: Optional[str] = None
    boot_media_id: Optional[str] = None
    accept_all_eulas: bool = True

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def is_template(self) -> bool:
        return self.template_id is not None


class SizingSpec(BaseModel):
    """CPU and memory sizing."""
    cpus: Optional[int] = Field(None, ge=1)
    cores_per_socket: Optional[int] = Field(None, ge=1)
    memory_mb: Optional[int] = Field(None, ge=4)
    cpu_hot_add_enabled: bool = False
    memory_hot_add_enabled: bool = False

    model_config = ConfigDict(extra="forbid", frozen=True)


class NetworkAttachment(BaseModel):
    """One NIC of the VM, by position."""
    kind: Literal["org", "vapp", "none"]
    name: Optional[str] = None
    ip_allocation_mode: Literal["DHCP", "POOL", "MANUAL", "NONE"] = "DHCP"
    ip: Optional[str] = None
    mac: Optional[str] = None
    adapter_type: Optional[str] = None
    connected: bool = True
    is_primary: bool = False

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("ip_allocation_mode", mode="before")
    @classmethod
    def normalize_mode(cls, v):
        """Accept lowercase allocation modes."""
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_name_and_ip(self):
        """Name is required for attached networks, IP for manual allocation."""
        if self.kind == "none":
            return self
        if not self.name:
            raise ValueError(f"network name is required for a {self.kind} network")
        if self.ip_allocation_mode == "MANUAL" and not self.ip:
            raise ValueError("ip is required when ip_allocation_mode is MANUAL")
        return self


class InternalDiskSpec(BaseModel):
    """Disk whose lifecycle is bound to the VM."""
    type: Literal["internal"] = "internal"
    bus_type: Literal["sata", "scsi", "nvme"] = "sata"
    bus_number: Optional[int] = Field(None, ge=0, le=3)
    unit_number: Optional[int] = Field(None, ge=0, le=15)
    size_mb: int = Field(..., ge=1)
    storage_profile: Optional[str] = None

    model_config = ConfigDict(extra="forbid", frozen=True)


class IndependentDiskSpec(BaseModel):
    """Pre-existing disk attached by bus/unit position."""
    type: Literal["independent"] = "independent"
    disk_id: str
    bus_number: Optional[int] = Field(None, ge=0, le=3)
    unit_number: Optional[int] = Field(None, ge=0, le=15)

    model_config = ConfigDict(extra="forbid", frozen=True)


DiskAttachment = Annotated[
    Union[InternalDiskSpec, IndependentDiskSpec], Field(discriminator="type")
]


class DomainJoinSpec(BaseModel):
    enabled: bool = False
    use_org_settings: bool = False
    domain_name: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    organizational_unit: Optional[str] = None

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def check_consistency(self):
        """Domain fields only make sense when the join is enabled."""
        explicit = [self.domain_name, self.user, self.password, self.organizational_unit]
        if not self.enabled and any(v is not None for v in explicit):
            raise ValueError("domain join fields are set but domain join is not enabled")
        return self


class CustomizationSpec(BaseModel):
    """Guest OS customization."""
    enabled: bool = False
    force: bool = False
    change_sid: Optional[bool] = None
    allow_local_admin_password: Optional[bool] = None
    auto_generate_password: Optional[bool] = None
    admin_password: Optional[str] = None
    must_change_password_on_first_login: Optional[bool] = None
    number_of_auto_logons: Optional[int] = Field(None, ge=0)
    domain_join: Optional[DomainJoinSpec] = None
    init_script: Optional[str] = None
    hostname: Optional[str] = None

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def check_password_policy(self):
        """Admin password is either auto-generated or explicit, never both."""
        if self.auto_generate_password and self.admin_password is not None:
            raise ValueError("auto_generate_password and admin_password are mutually exclusive")
        if self.auto_generate_password is False and self.admin_password is None:
            raise ValueError("admin_password is required when auto_generate_password is false")
        return self


class VMSpec(BaseModel):
    """Desired state of a VM inside a container."""
    container: str = Field(..., description="Container (vApp) name")
    name: str = Field(..., description="VM name")
    description: str = ""
    origin: OriginSpec
    os_type: Optional[str] = None
    sizing: SizingSpec = Field(default_factory=SizingSpec)
    storage_profile: Optional[str] = None
    sizing_policy_id: Optional[str] = None
    placement_policy_id: Optional[str] = None
    networks: List[NetworkAttachment] = Field(default_factory=list)
    disks: List[DiskAttachment] = Field(default_factory=list)
    customization: CustomizationSpec = Field(default_factory=CustomizationSpec)
    guest_properties: Dict[str, str] = Field(default_factory=dict)
    power_on: bool = True

    model_config = ConfigDict(extra="ignore", frozen=True)

    @model_validator(mode="after")
    def check_single_primary(self):
        """At most one NIC may be flagged primary."""
        primaries = [n for n in self.networks if n.is_primary]
        if len(primaries) > 1:
            raise ValueError("at most one network may be marked is_primary")
        return self

    @property
    def primary_index(self) -> int:
        """Position of the primary NIC, 0 when none is flagged."""
        for index, network in enumerate(self.networks):
            if network.is_primary:
                return index
        return 0

    @property
    def hostname(self) -> str:
        return self.customization.hostname or self.name
