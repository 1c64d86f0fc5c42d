"""
Virtual switches.

A switch's type is not stored anywhere; it follows from the host ports
attached to it. An external port means External, a host (management OS)
port alone means Internal, and no host port means Private.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from common.exceptions import SwitchNotFoundError
from ..core.gateway import Document, associators, select
from ..core.service import SWITCH_MANAGEMENT_SERVICE, ServiceClient
from ..core.validation import ValidationIssue, check_name, ensure_valid
from ..core.vm_lifecycle import VM_CLASS
from .physical_adapter import EXTERNAL_PORT_CLASS, find_physical_adapter

logger = logging.getLogger(__name__)

SWITCH_CLASS = "Msvm_VirtualEthernetSwitch"
SWITCH_SETTINGS_CLASS = "Msvm_VirtualEthernetSwitchSettingData"
PORT_ALLOCATION_CLASS = "Msvm_EthernetPortAllocationSettingData"
INTERNAL_PORT_CLASS = "Msvm_InternalEthernetPort"
HOST_SYSTEM_CAPTION = "Hosting Computer System"

MIN_BANDWIDTH_WEIGHT = 1
MAX_BANDWIDTH_WEIGHT = 100


class SwitchType(Enum):
    PRIVATE = 0    # VMs only
    INTERNAL = 1   # VMs and the host
    EXTERNAL = 2   # Bridged to a physical adapter

    @classmethod
    def from_code(cls, code: Optional[int]) -> "SwitchType":
        try:
            return cls(code)
        except ValueError:
            return cls.PRIVATE

    @classmethod
    def from_ports(cls, has_external_port: bool, has_internal_port: bool) -> "SwitchType":
        if has_external_port:
            return cls.EXTERNAL
        if has_internal_port:
            return cls.INTERNAL
        return cls.PRIVATE

    @property
    def code(self) -> int:
        return self.value


class BandwidthReservationMode(Enum):
    NONE = 0
    DEFAULT = 1
    WEIGHT = 2
    ABSOLUTE = 3

    @classmethod
    def from_code(cls, code: Optional[int]) -> "BandwidthReservationMode":
        try:
            return cls(code)
        except ValueError:
            return cls.NONE

    @property
    def code(self) -> int:
        return self.value


@dataclass(frozen=True)
class VirtualSwitch:
    name: str
    id: str
    switch_type: SwitchType
    path: str
    settings_path: str
    notes: Optional[str] = None
    iov_preferred: bool = False
    bandwidth_reservation_mode: BandwidthReservationMode = BandwidthReservationMode.NONE
    default_flow_minimum_bandwidth_absolute: Optional[int] = None
    default_flow_minimum_bandwidth_weight: Optional[int] = None
    has_internal_port: bool = False

    @property
    def allow_management_os(self) -> bool:
        return self.has_internal_port

    @classmethod
    def from_documents(
        cls,
        switch: Document,
        settings: Document,
        host_ports: List[Document],
    ) -> "VirtualSwitch":
        resources = [r for port in host_ports for r in port.get_str_list("HostResource")]
        has_external = any(EXTERNAL_PORT_CLASS in r for r in resources)
        has_internal = any(INTERNAL_PORT_CLASS in r or VM_CLASS in r for r in resources)

        notes = settings.get("Notes")
        if isinstance(notes, list):
            notes = "\n".join(notes) or None

        return cls(
            name=switch.require_str("ElementName"),
            id=switch.require_str("Name"),
            switch_type=SwitchType.from_ports(has_external, has_internal),
            path=switch.path,
            settings_path=settings.path,
            notes=notes,
            iov_preferred=bool(settings.get_bool("IOVPreferred")),
            bandwidth_reservation_mode=BandwidthReservationMode.from_code(
                settings.get_int("BandwidthReservationMode")),
            default_flow_minimum_bandwidth_absolute=settings.get_int(
                "DefaultFlowMinimumBandwidthAbsolute"),
            default_flow_minimum_bandwidth_weight=settings.get_int(
                "DefaultFlowMinimumBandwidthWeight"),
            has_internal_port=has_internal,
        )


@dataclass(frozen=True)
class VirtualSwitchSettings:
    """Settings for a new virtual switch."""
    name: str
    switch_type: SwitchType = SwitchType.PRIVATE
    notes: Optional[str] = None
    external_adapter_id: Optional[str] = None
    allow_management_os: bool = False
    iov_enabled: bool = False
    packet_direct_enabled: bool = False
    bandwidth_mode: BandwidthReservationMode = BandwidthReservationMode.NONE
    bandwidth_weight: Optional[int] = None
    bandwidth_absolute_mbps: Optional[int] = None

    @classmethod
    def private(cls, name: str, **kwargs) -> "VirtualSwitchSettings":
        return cls(name=name, switch_type=SwitchType.PRIVATE, **kwargs)

    @classmethod
    def internal(cls, name: str, **kwargs) -> "VirtualSwitchSettings":
        return cls(name=name, switch_type=SwitchType.INTERNAL, allow_management_os=True, **kwargs)

    @classmethod
    def external(
        cls,
        name: str,
        adapter_id: str,
        allow_management_os: bool = True,
        **kwargs,
    ) -> "VirtualSwitchSettings":
        return cls(
            name=name,
            switch_type=SwitchType.EXTERNAL,
            external_adapter_id=adapter_id,
            allow_management_os=allow_management_os,
            **kwargs,
        )

    def validate(self) -> List[ValidationIssue]:
        return validate_switch_settings(self)

    def ensure_valid(self) -> None:
        ensure_valid(self.validate())


def validate_switch_settings(settings: VirtualSwitchSettings) -> List[ValidationIssue]:
    issues = check_name(settings.name)
    external = settings.switch_type is SwitchType.EXTERNAL

    if external and not settings.external_adapter_id:
        issues.append(ValidationIssue(
            "external_adapter", "External switches require a physical adapter"))
    if not external and settings.external_adapter_id:
        issues.append(ValidationIssue(
            "external_adapter", "a physical adapter is only valid for External switches"))
    if settings.switch_type is SwitchType.PRIVATE and settings.allow_management_os:
        issues.append(ValidationIssue(
            "allow_management_os", "Private switches are not visible to the host"))

    if settings.bandwidth_weight is not None and not (
        MIN_BANDWIDTH_WEIGHT <= settings.bandwidth_weight <= MAX_BANDWIDTH_WEIGHT
    ):
        issues.append(ValidationIssue(
            "bandwidth_weight",
            f"must be between {MIN_BANDWIDTH_WEIGHT} and {MAX_BANDWIDTH_WEIGHT}"))
    if settings.bandwidth_mode is BandwidthReservationMode.WEIGHT and settings.bandwidth_weight is None:
        issues.append(ValidationIssue(
            "bandwidth_weight", "required for weight-based bandwidth mode"))
    if settings.bandwidth_mode is BandwidthReservationMode.ABSOLUTE and settings.bandwidth_absolute_mbps is None:
        issues.append(ValidationIssue(
            "bandwidth_absolute_mbps", "required for absolute bandwidth mode"))

    if settings.iov_enabled and not external:
        issues.append(ValidationIssue("iov_enabled", "SR-IOV requires an External switch"))
    if settings.packet_direct_enabled and not external:
        issues.append(ValidationIssue(
            "packet_direct_enabled", "Packet Direct requires an External switch"))

    return issues


class SwitchManager(ServiceClient):
    """List, create and delete virtual switches."""

    service_class = SWITCH_MANAGEMENT_SERVICE

    def list_switches(self) -> List[VirtualSwitch]:
        return [self._build(d) for d in self._gateway.query(select(SWITCH_CLASS))]

    def get_switch(self, name: str) -> VirtualSwitch:
        document = self._gateway.query_first(select(SWITCH_CLASS, ElementName=name))
        if document is None:
            raise SwitchNotFoundError(name)
        return self._build(document)

    def get_switch_by_id(self, switch_id: str) -> VirtualSwitch:
        document = self._gateway.query_first(select(SWITCH_CLASS, Name=switch_id))
        if document is None:
            raise SwitchNotFoundError(switch_id)
        return self._build(document)

    def switch_settings(self, switch_id: str) -> Document:
        """
        The switch's Msvm_VirtualEthernetSwitchSettingData.

        Raises:
            SwitchNotFoundError: No settings exist for the id
        """
        settings = self._gateway.query_first(
            select(SWITCH_SETTINGS_CLASS, VirtualSystemIdentifier=switch_id)
        )
        if settings is None:
            raise SwitchNotFoundError(switch_id)
        return settings

    def _build(self, document: Document) -> VirtualSwitch:
        settings = self.switch_settings(document.require_str("Name"))
        ports = self._gateway.query(associators(settings.path, PORT_ALLOCATION_CLASS))
        return VirtualSwitch.from_documents(document, settings, ports)

    def create_switch(self, settings: VirtualSwitchSettings) -> VirtualSwitch:
        """
        Create a virtual switch.

        Raises:
            ValidationError: If settings are invalid
            NotFoundError: The external adapter does not exist
        """
        settings.ensure_valid()
        logger.info(f"Creating {settings.switch_type.name.lower()} switch: {settings.name}")

        system = self._gateway.spawn_instance(SWITCH_SETTINGS_CLASS)
        system.put("ElementName", settings.name)
        if settings.notes:
            system.put("Notes", [settings.notes])
        system.put("IOVPreferred", settings.iov_enabled)
        system.put("BandwidthReservationMode", settings.bandwidth_mode.code)
        if settings.packet_direct_enabled:
            system.put("PacketDirectEnabled", True)

        ports = []
        if settings.switch_type is SwitchType.EXTERNAL:
            adapter = find_physical_adapter(self._gateway, settings.external_adapter_id)
            ports.append(self._host_port(f"{settings.name}_External", adapter.path))
        if settings.allow_management_os:
            host = self._gateway.query_first(select(VM_CLASS, Caption=HOST_SYSTEM_CAPTION))
            if host is None:
                raise SwitchNotFoundError(HOST_SYSTEM_CAPTION)
            ports.append(self._host_port(f"{settings.name}_Internal", host.path))

        out_params = self.invoke(
            "DefineSystem",
            operation="CreateSwitch",
            SystemSettings=system,
            ResourceSettings=ports,
        )
        switch = self._build(self.resolve(out_params, "ResultingSystem"))
        if self._apply_bandwidth_defaults(switch, settings):
            switch = self.get_switch_by_id(switch.id)
        logger.info(f"Created switch {switch.name} ({switch.id})")
        return switch

    def _host_port(self, name: str, host_resource: str) -> Document:
        port = self._gateway.spawn_instance(PORT_ALLOCATION_CLASS)
        port.put("ElementName", name)
        port.put("HostResource", [host_resource])
        return port

    def _apply_bandwidth_defaults(self, switch: VirtualSwitch, settings: VirtualSwitchSettings) -> bool:
        if settings.bandwidth_weight is None and settings.bandwidth_absolute_mbps is None:
            return False
        document = self._gateway.get_object(switch.settings_path)
        if settings.bandwidth_weight is not None:
            document.put("DefaultFlowMinimumBandwidthWeight", settings.bandwidth_weight)
        if settings.bandwidth_absolute_mbps is not None:
            document.put(
                "DefaultFlowMinimumBandwidthAbsolute",
                settings.bandwidth_absolute_mbps * 1_000_000,
            )
        self.invoke(
            "ModifySystemSettings",
            operation="ConfigureSwitchBandwidth",
            SystemSettings=document,
        )
        return True

    def delete_switch(self, switch: VirtualSwitch) -> None:
        logger.info(f"Deleting switch: {switch.name}")
        self.invoke("DestroySystem", operation="DeleteSwitch", AffectedSystem=switch.path)
