"""Virtual switches, host adapters and VM network adapters."""

from .adapter import (
    BandwidthSettings,
    NetworkAdapter,
    NetworkAdapterManager,
    NetworkAdapterSettings,
    PortMirroringMode,
    normalize_mac,
    validate_adapter_settings,
)
from .physical_adapter import PhysicalAdapter, find_physical_adapter, list_physical_adapters
from .switch import (
    BandwidthReservationMode,
    SwitchManager,
    SwitchType,
    VirtualSwitch,
    VirtualSwitchSettings,
    validate_switch_settings,
)

__all__ = [
    "BandwidthSettings",
    "NetworkAdapter",
    "NetworkAdapterManager",
    "NetworkAdapterSettings",
    "PortMirroringMode",
    "normalize_mac",
    "validate_adapter_settings",
    "PhysicalAdapter",
    "find_physical_adapter",
    "list_physical_adapters",
    "BandwidthReservationMode",
    "SwitchManager",
    "SwitchType",
    "VirtualSwitch",
    "VirtualSwitchSettings",
    "validate_switch_settings",
]
