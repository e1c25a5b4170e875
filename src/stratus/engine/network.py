"""Network connection plan construction.

Everything here is pure: the container topology is passed in by the caller,
so plans can be built and checked without a live platform.
"""

import ipaddress
import logging
from dataclasses import dataclass
from typing import Sequence, Tuple

from stratus.errors import ConfigurationError, NetworkNotFound
from stratus.models.platform import (
    NONE_NETWORK,
    ContainerRecord,
    NetworkConnection,
    NetworkConnectionSection,
)
from stratus.models.vm import NetworkAttachment


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanEntry:
    """One NIC of a plan; index is the stable connection index."""
    index: int
    kind: str
    connection: NetworkConnection
    is_primary: bool


@dataclass(frozen=True)
class NetworkPlan:
    entries: Tuple[PlanEntry, ...]
    primary_index: int

    def to_section(self) -> NetworkConnectionSection:
        return NetworkConnectionSection(
            primary_index=self.primary_index,
            connections=[entry.connection for entry in self.entries],
        )

    def __len__(self):
        return len(self.entries)


def placeholder_section() -> NetworkConnectionSection:
    """Single disconnected NIC used when allocating a VM.

    The platform rejects allocation requests with an empty network section.
    """
    return NetworkConnectionSection(
        primary_index=0,
        connections=[
            NetworkConnection(
                index=0,
                network=NONE_NETWORK,
                is_connected=False,
                ip_allocation_mode="NONE",
                ip_address="any",
            )
        ],
    )


def resolve_primary_index(attachments: Sequence[NetworkAttachment]) -> int:
    """Position of the attachment flagged primary, defaulting to 0."""
    primaries = [i for i, a in enumerate(attachments) if a.is_primary]
    if len(primaries) > 1:
        raise ConfigurationError("at most one network may be marked is_primary")
    return primaries[0] if primaries else 0


def check_topology(attachment: NetworkAttachment, topology: ContainerRecord):
    """Raise NetworkNotFound unless the named network exists with the declared kind."""
    for network in topology.networks:
        if network.name == attachment.name and network.kind == attachment.kind:
            return
    raise NetworkNotFound(attachment.name, attachment.kind)


def _connection(index: int, attachment: NetworkAttachment) -> NetworkConnection:
    if attachment.kind == "none":
        # IP and MAC are meaningless without a network
        return NetworkConnection(
            index=index,
            network=NONE_NETWORK,
            is_connected=False,
            ip_allocation_mode="NONE",
            adapter_type=attachment.adapter_type,
        )

    mode = attachment.ip_allocation_mode
    ip = None
    if mode == "MANUAL":
        try:
            ip = str(ipaddress.ip_address(attachment.ip))
        except ValueError as e:
            raise ConfigurationError(f"network {index}: invalid ip {attachment.ip!r}") from e

    return NetworkConnection(
        index=index,
        network=NONE_NETWORK if mode == "NONE" else attachment.name,
        is_connected=attachment.connected,
        ip_allocation_mode=mode,
        ip_address=ip,
        mac_address=attachment.mac,
        adapter_type=attachment.adapter_type,
    )


def build_network_plan(attachments: Sequence[NetworkAttachment],
                       topology: ContainerRecord) -> NetworkPlan:
    """Convert ordered attachments into a connection plan.

    Exactly one entry of a non-empty plan is primary.
    """
    for attachment in attachments:
        if attachment.kind != "none":
            check_topology(attachment, topology)

    primary_index = resolve_primary_index(attachments)
    entries = tuple(
        PlanEntry(
            index=index,
            kind=attachment.kind,
            connection=_connection(index, attachment),
            is_primary=index == primary_index,
        )
        for index, attachment in enumerate(attachments)
    )
    logger.debug(f"Built network plan for {topology.name}: {len(entries)} NIC(s), primary {primary_index}")
    return NetworkPlan(entries=entries, primary_index=primary_index)
