"""
Host network adapters that external switches can bind to.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from common.exceptions import NotFoundError
from ..core.gateway import Document, Gateway, select

EXTERNAL_PORT_CLASS = "Msvm_ExternalEthernetPort"

OPERATIONAL_STATUS_OK = 2


@dataclass(frozen=True)
class PhysicalAdapter:
    """An Msvm_ExternalEthernetPort."""
    device_id: str
    name: str
    path: str
    mac_address: Optional[str] = None
    enabled_state: Optional[int] = None
    operational_status: List[int] = field(default_factory=list)
    speed_bps: Optional[int] = None
    is_bound: bool = False

    @classmethod
    def from_document(cls, document: Document) -> "PhysicalAdapter":
        return cls(
            device_id=document.require_str("DeviceID"),
            name=document.require_str("ElementName"),
            path=document.path,
            mac_address=document.get_str("PermanentAddress"),
            enabled_state=document.get_int("EnabledState"),
            operational_status=document.get_int_list("OperationalStatus"),
            speed_bps=document.get_int("Speed"),
            is_bound=bool(document.get_bool("IsBound")),
        )

    @property
    def is_up(self) -> bool:
        return OPERATIONAL_STATUS_OK in self.operational_status

    @property
    def speed_mbps(self) -> Optional[int]:
        return self.speed_bps // 1_000_000 if self.speed_bps is not None else None


def list_physical_adapters(gateway: Gateway) -> List[PhysicalAdapter]:
    return [PhysicalAdapter.from_document(d) for d in gateway.query(select(EXTERNAL_PORT_CLASS))]


def find_physical_adapter(gateway: Gateway, adapter_id: str) -> PhysicalAdapter:
    """
    Look up an adapter by DeviceID, falling back to its name.

    Raises:
        NotFoundError: No adapter matches
    """
    document = gateway.query_first(select(EXTERNAL_PORT_CLASS, DeviceID=adapter_id))
    if document is None:
        document = gateway.query_first(select(EXTERNAL_PORT_CLASS, ElementName=adapter_id))
    if document is None:
        raise NotFoundError(
            f"Physical network adapter '{adapter_id}' not found",
            code="ADAPTER_NOT_FOUND",
            details={"adapter_id": adapter_id},
            recoverable=False,
        )
    return PhysicalAdapter.from_document(document)
