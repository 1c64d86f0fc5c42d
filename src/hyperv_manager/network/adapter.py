"""
VM network adapters.

Adding an adapter and connecting it to a switch are separate steps: an
adapter may exist without a connection. Connecting adds an Ethernet port
allocation whose parent is the adapter and whose host resource is the
switch.
"""

from __future__ import annotations

import logging
import string
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from common.exceptions import OperationFailedError
from ..core.gateway import Document, associators, same_path
from ..core.service import ServiceClient
from ..core.validation import ValidationIssue, ensure_valid
from ..core.vm_lifecycle import VirtualMachine
from .switch import PORT_ALLOCATION_CLASS, VirtualSwitch

logger = logging.getLogger(__name__)

ADAPTER_CLASS = "Msvm_SyntheticEthernetPortSettingData"
ADAPTER_SUBTYPE = "Microsoft:Hyper-V:Synthetic Ethernet Port"
CONNECTION_SUBTYPE = "Microsoft:Hyper-V:Ethernet Connection"
VLAN_SETTINGS_CLASS = "Msvm_EthernetSwitchPortVlanSettingData"
SECURITY_SETTINGS_CLASS = "Msvm_EthernetSwitchPortSecuritySettingData"
BANDWIDTH_SETTINGS_CLASS = "Msvm_EthernetSwitchPortBandwidthSettingData"

MAX_VLAN_ID = 4094
VLAN_ACCESS_MODE = 1
MBPS = 1_000_000
MB = 1024 * 1024


class PortMirroringMode(Enum):
    NONE = 0
    SOURCE = 1
    DESTINATION = 2

    @classmethod
    def from_code(cls, code: Optional[int]) -> "PortMirroringMode":
        try:
            return cls(code)
        except ValueError:
            return cls.NONE

    @property
    def code(self) -> int:
        return self.value


@dataclass(frozen=True)
class BandwidthSettings:
    minimum_mbps: Optional[int] = None
    maximum_mbps: Optional[int] = None
    burst_mb: Optional[int] = None


def normalize_mac(mac: str) -> str:
    """Strip colon and dash separators and upper-case a MAC address."""
    return mac.replace(":", "").replace("-", "").upper()


@dataclass(frozen=True)
class NetworkAdapterSettings:
    """
    Settings for a new synthetic network adapter.

    A MAC address makes the adapter static; without one Hyper-V assigns
    a dynamic address. ``switch_name`` is used by HyperVManager to connect
    the adapter once added.
    """
    name: Optional[str] = None
    mac_address: Optional[str] = None
    switch_name: Optional[str] = None
    vlan_id: Optional[int] = None
    mac_spoofing: bool = False
    dhcp_guard: bool = False
    router_guard: bool = False
    port_mirroring: PortMirroringMode = PortMirroringMode.NONE
    bandwidth: Optional[BandwidthSettings] = None

    @property
    def dynamic_mac(self) -> bool:
        return not self.mac_address

    @property
    def has_security_features(self) -> bool:
        return (
            self.mac_spoofing or self.dhcp_guard or self.router_guard
            or self.port_mirroring is not PortMirroringMode.NONE
        )

    def validate(self) -> List[ValidationIssue]:
        return validate_adapter_settings(self)

    def ensure_valid(self) -> None:
        ensure_valid(self.validate())


def validate_adapter_settings(settings: NetworkAdapterSettings) -> List[ValidationIssue]:
    issues = []
    if settings.mac_address:
        mac = normalize_mac(settings.mac_address)
        if len(mac) != 12 or any(c not in string.hexdigits for c in mac):
            issues.append(ValidationIssue(
                "mac_address", "must be 12 hexadecimal digits"))

    if settings.vlan_id is not None and not 0 <= settings.vlan_id <= MAX_VLAN_ID:
        issues.append(ValidationIssue("vlan_id", f"must be between 0 and {MAX_VLAN_ID}"))

    bandwidth = settings.bandwidth
    if bandwidth is not None:
        if (bandwidth.minimum_mbps is not None and bandwidth.maximum_mbps is not None
                and bandwidth.minimum_mbps > bandwidth.maximum_mbps):
            issues.append(ValidationIssue(
                "bandwidth", "minimum must not exceed maximum"))
        for value in (bandwidth.minimum_mbps, bandwidth.maximum_mbps, bandwidth.burst_mb):
            if value is not None and value < 0:
                issues.append(ValidationIssue("bandwidth", "values must not be negative"))
                break

    return issues


@dataclass(frozen=True)
class NetworkAdapter:
    instance_id: str
    name: Optional[str]
    path: str
    mac_address: Optional[str] = None
    static_mac: bool = False
    switch_id: Optional[str] = None
    connection_path: Optional[str] = None

    @classmethod
    def from_document(
        cls,
        document: Document,
        switch_id: Optional[str] = None,
        connection_path: Optional[str] = None,
    ) -> "NetworkAdapter":
        return cls(
            instance_id=document.require_str("InstanceID"),
            name=document.get_str("ElementName"),
            path=document.path,
            mac_address=document.get_str("Address") or None,
            static_mac=bool(document.get_bool("StaticMacAddress")),
            switch_id=switch_id,
            connection_path=connection_path,
        )

    @property
    def dynamic_mac(self) -> bool:
        return not self.static_mac

    @property
    def is_connected(self) -> bool:
        return self.switch_id is not None


class NetworkAdapterManager(ServiceClient):
    """Adds network adapters to VMs and connects them to switches."""

    def add_adapter(self, vm: VirtualMachine, settings: NetworkAdapterSettings) -> NetworkAdapter:
        """
        Add a synthetic network adapter, unconnected.

        Raises:
            ValidationError: If settings are invalid
            OperationFailedError: The new adapter could not be found afterwards
        """
        settings.ensure_valid()
        settings_path = vm.settings_document().path

        adapter = self._gateway.spawn_instance(ADAPTER_CLASS)
        adapter.put("ResourceSubType", ADAPTER_SUBTYPE)
        if settings.name:
            adapter.put("ElementName", settings.name)
        adapter.put("StaticMacAddress", not settings.dynamic_mac)
        if settings.mac_address:
            adapter.put("Address", normalize_mac(settings.mac_address))

        logger.info(f"Adding network adapter to VM {vm.name}")
        out_params = self.invoke(
            "AddResourceSettings",
            operation="AddNetworkAdapter",
            AffectedConfiguration=settings_path,
            ResourceSettings=[adapter],
        )

        created = out_params.get_str_list("ResultingResourceSettings")
        if created:
            return NetworkAdapter.from_document(self._gateway.get_object(created[0]))

        adapters = self._gateway.query(associators(settings_path, ADAPTER_CLASS))
        if not adapters:
            raise OperationFailedError("AddNetworkAdapter", 0, "new adapter not found")
        return NetworkAdapter.from_document(adapters[-1])

    def list_adapters(self, vm: VirtualMachine) -> List[NetworkAdapter]:
        """Adapters on the VM, each with the id of the switch it is connected to."""
        settings_path = vm.settings_document().path
        connections = self._gateway.query(associators(settings_path, PORT_ALLOCATION_CLASS))

        adapters = []
        for document in self._gateway.query(associators(settings_path, ADAPTER_CLASS)):
            connection = self._connection_for(connections, document.path)
            switch_id = None
            connection_path = None
            if connection is not None:
                connection_path = connection.path
                switch_id = self._switch_id(connection)
            adapters.append(NetworkAdapter.from_document(document, switch_id, connection_path))
        return adapters

    def connect(
        self,
        vm: VirtualMachine,
        adapter: NetworkAdapter,
        switch: VirtualSwitch,
        settings: Optional[NetworkAdapterSettings] = None,
    ) -> NetworkAdapter:
        """
        Connect an adapter to a switch and apply port features from ``settings``.

        Returns:
            The adapter with its connection filled in
        """
        settings_path = vm.settings_document().path

        connection = self._gateway.spawn_instance(PORT_ALLOCATION_CLASS)
        connection.put("ResourceSubType", CONNECTION_SUBTYPE)
        connection.put("Parent", adapter.path)
        connection.put("HostResource", [switch.settings_path])

        logger.info(f"Connecting adapter {adapter.name or adapter.instance_id} to switch {switch.name}")
        out_params = self.invoke(
            "AddResourceSettings",
            operation="ConnectNetworkAdapter",
            AffectedConfiguration=settings_path,
            ResourceSettings=[connection],
        )

        created = out_params.get_str_list("ResultingResourceSettings")
        if created:
            connection_path = created[0]
        else:
            found = self._connection_for(
                self._gateway.query(associators(settings_path, PORT_ALLOCATION_CLASS)),
                adapter.path,
            )
            if found is None:
                raise OperationFailedError("ConnectNetworkAdapter", 0, "new connection not found")
            connection_path = found.path

        if settings is not None:
            self._apply_port_features(connection_path, settings)

        return NetworkAdapter(
            instance_id=adapter.instance_id,
            name=adapter.name,
            path=adapter.path,
            mac_address=adapter.mac_address,
            static_mac=adapter.static_mac,
            switch_id=switch.id,
            connection_path=connection_path,
        )

    def _connection_for(self, connections: List[Document], adapter_path: str) -> Optional[Document]:
        for connection in connections:
            if same_path(connection.get_str("Parent"), adapter_path):
                return connection
        return None

    def _switch_id(self, connection: Document) -> Optional[str]:
        host_resources = connection.get_str_list("HostResource")
        if not host_resources:
            return None
        target = self._gateway.get_object(host_resources[0])
        # Switch settings carry the id in VirtualSystemIdentifier, the switch itself in Name
        return target.get_str("VirtualSystemIdentifier") or target.get_str("Name")

    def _apply_port_features(self, connection_path: str, settings: NetworkAdapterSettings) -> None:
        features = []

        if settings.vlan_id:
            vlan = self._gateway.spawn_instance(VLAN_SETTINGS_CLASS)
            vlan.put("AccessVlanId", settings.vlan_id)
            vlan.put("OperationMode", VLAN_ACCESS_MODE)
            features.append(vlan)

        if settings.has_security_features:
            security = self._gateway.spawn_instance(SECURITY_SETTINGS_CLASS)
            security.put("AllowMacSpoofing", settings.mac_spoofing)
            security.put("EnableDhcpGuard", settings.dhcp_guard)
            security.put("EnableRouterGuard", settings.router_guard)
            security.put("MonitorMode", settings.port_mirroring.code)
            features.append(security)

        bandwidth = settings.bandwidth
        if bandwidth is not None:
            document = self._gateway.spawn_instance(BANDWIDTH_SETTINGS_CLASS)
            if bandwidth.minimum_mbps is not None:
                document.put("Reservation", bandwidth.minimum_mbps * MBPS)
            if bandwidth.maximum_mbps is not None:
                document.put("Limit", bandwidth.maximum_mbps * MBPS)
            if bandwidth.burst_mb is not None:
                document.put("BurstSize", bandwidth.burst_mb * MB)
            features.append(document)

        if not features:
            return

        logger.debug(f"Applying {len(features)} port feature(s) to {connection_path}")
        self.invoke(
            "AddFeatureSettings",
            operation="ConfigurePortFeatures",
            AffectedConfiguration=connection_path,
            FeatureSettings=features,
        )
