#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Gateway Models - Device, fault, statistics and connectivity records
===================================================================
All records are frozen dataclasses. The registry swaps whole objects on every
change, so a reference handed to a caller never changes underneath it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Final, FrozenSet, Mapping, Optional, Tuple

# =========================
# Vocabularies
# =========================
SEVERITY_CRITICAL: Final[str] = "critical"
SEVERITY_MAJOR: Final[str] = "major"
SEVERITY_MINOR: Final[str] = "minor"
SEVERITY_WARNING: Final[str] = "warning"
SEVERITY_INFO: Final[str] = "info"

# Highest first
SEVERITIES: Final[Tuple[str, ...]] = (
    SEVERITY_CRITICAL, SEVERITY_MAJOR, SEVERITY_MINOR, SEVERITY_WARNING, SEVERITY_INFO,
)

FAULT_ACTIVE: Final[str] = "active"
FAULT_ACKNOWLEDGED: Final[str] = "acknowledged"
FAULT_RESOLVED: Final[str] = "resolved"
FAULT_EXPIRED: Final[str] = "expired"

FAULT_STATUSES: Final[Tuple[str, ...]] = (
    FAULT_ACTIVE, FAULT_ACKNOWLEDGED, FAULT_RESOLVED, FAULT_EXPIRED,
)
ACTIVE_FAULT_STATUSES: Final[FrozenSet[str]] = frozenset({FAULT_ACTIVE, FAULT_ACKNOWLEDGED})

# Allowed forward moves; resolved and expired are terminal
FAULT_TRANSITIONS: Final[Mapping[str, FrozenSet[str]]] = MappingProxyType({
    FAULT_ACTIVE: frozenset({FAULT_ACKNOWLEDGED, FAULT_RESOLVED, FAULT_EXPIRED}),
    FAULT_ACKNOWLEDGED: frozenset({FAULT_RESOLVED, FAULT_EXPIRED}),
    FAULT_RESOLVED: frozenset(),
    FAULT_EXPIRED: frozenset(),
})

CONNECTION_CONNECTED: Final[str] = "connected"
CONNECTION_DISCONNECTED: Final[str] = "disconnected"
CONNECTION_UNKNOWN: Final[str] = "unknown"

UNKNOWN_BUCKET: Final[str] = "Unknown"

# CWMP fault code -> severity, as reported by the ACS
_CWMP_FAULT_SEVERITY: Final[Tuple[Tuple[str, str], ...]] = (
    ("9001", SEVERITY_WARNING),   # Request denied
    ("9002", SEVERITY_MAJOR),     # Internal error
    ("9003", SEVERITY_MINOR),     # Invalid arguments
    ("9004", SEVERITY_MAJOR),     # Resources exceeded
    ("9005", SEVERITY_MINOR),     # Invalid parameter name
    ("9006", SEVERITY_MINOR),     # Invalid parameter type
    ("9007", SEVERITY_MINOR),     # Invalid parameter value
    ("9008", SEVERITY_WARNING),   # Attempt to set non-writable parameter
    ("9009", SEVERITY_WARNING),   # Notification request rejected
    ("9010", SEVERITY_MAJOR),     # Download failure
    ("9011", SEVERITY_MAJOR),     # Upload failure
    ("9012", SEVERITY_CRITICAL),  # File transfer authentication failure
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC copy of ts. Naive values are taken to be UTC already."""
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def severity_rank(severity: str) -> int:
    """0 for critical, growing as severity drops. Unknown values sort last."""
    try:
        return SEVERITIES.index(severity)
    except ValueError:
        return len(SEVERITIES)


def severity_for_fault_code(code: str) -> str:
    for needle, severity in _CWMP_FAULT_SEVERITY:
        if needle in code:
            return severity
    return SEVERITY_INFO


def can_transition(current: str, target: str) -> bool:
    return target in FAULT_TRANSITIONS.get(current, frozenset())


# =========================
# Errors
# =========================
class RegistryError(Exception):
    """Base class for registry failures"""


class NotFoundError(RegistryError, KeyError):
    """Device or fault absent for an operation that requires it"""

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key

    def __str__(self) -> str:
        # KeyError would repr() the message
        return str(self.args[0])


class InvalidArgumentError(RegistryError, ValueError):
    """Rejected input such as an empty identifier"""


class AlreadyInTerminalStateError(RegistryError):
    """Fault cannot move from its current status to the requested one"""

    def __init__(self, fault_id: str, current: str, requested: str):
        super().__init__(f"fault {fault_id} is already {current}; cannot mark {requested}")
        self.fault_id = fault_id
        self.current = current
        self.requested = requested


# =========================
# Device
# =========================
@dataclass(frozen=True)
class DeviceIdentity:
    """Identifying information reported by the CPE"""
    manufacturer: str = ""
    oui: str = ""
    product_class: str = ""
    serial_number: str = ""
    model_name: str = ""
    software_version: str = ""
    hardware_version: str = ""
    ip_address: str = ""
    external_ip_address: str = ""


@dataclass(frozen=True)
class DeviceStatus:
    online: bool = False
    last_seen: Optional[datetime] = None
    connection_status: str = CONNECTION_UNKNOWN
    error_count: int = 0


@dataclass(frozen=True)
class Parameter:
    """Single TR-069 data model parameter"""
    path: str
    value: Any = None
    xtype: str = "xsd:string"
    writable: bool = False
    last_update: Optional[datetime] = None


@dataclass(frozen=True)
class Device:
    """TR-069 CPE device as held by the registry"""
    id: str
    identity: DeviceIdentity = field(default_factory=DeviceIdentity)
    status: DeviceStatus = field(default_factory=DeviceStatus)
    tags: FrozenSet[str] = frozenset()
    parameters: Mapping[str, Parameter] = field(default_factory=dict)
    last_inform: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", frozenset(self.tags))
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))


# =========================
# Fault
# =========================
@dataclass(frozen=True)
class FaultAction:
    """Who moved a fault forward, and when"""
    actor: str
    at: datetime


@dataclass(frozen=True)
class Fault:
    """Alarm raised against a device"""
    id: str
    device_id: str = ""
    device_serial: str = ""
    device_model: str = ""
    channel: str = ""
    code: str = ""
    message: str = ""
    detail: str = ""
    severity: str = SEVERITY_INFO
    status: str = FAULT_ACTIVE
    timestamp: Optional[datetime] = None
    expiry: Optional[datetime] = None
    retries: int = 0
    tags: Tuple[str, ...] = ()
    acknowledged: Optional[FaultAction] = None
    resolved: Optional[FaultAction] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", tuple(self.tags))

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_FAULT_STATUSES


# =========================
# Statistics / connectivity
# =========================
@dataclass(frozen=True)
class DeviceStats:
    total_devices: int = 0
    online_devices: int = 0
    offline_devices: int = 0
    devices_by_vendor: Mapping[str, int] = field(default_factory=dict)
    devices_by_model: Mapping[str, int] = field(default_factory=dict)
    active_faults: int = 0
    critical_faults: int = 0
    computed_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "devices_by_vendor", MappingProxyType(dict(self.devices_by_vendor)))
        object.__setattr__(self, "devices_by_model", MappingProxyType(dict(self.devices_by_model)))


@dataclass(frozen=True)
class ConnectivityStatus:
    """Reachability of the three ACS subsystems"""
    cwmp_connected: bool = False
    nbi_connected: bool = False
    fs_connected: bool = False
    last_check: Optional[datetime] = None
    last_error: Optional[str] = None


# =========================
# Serialization
# =========================
def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts else None


def _action_to_dict(action: Optional[FaultAction]) -> Optional[Dict[str, Any]]:
    if action is None:
        return None
    return {"actor": action.actor, "at": action.at.isoformat()}


def device_to_dict(device: Device, *, with_parameters: bool = True) -> Dict[str, Any]:
    ident = device.identity
    out: Dict[str, Any] = {
        "id": device.id,
        "manufacturer": ident.manufacturer,
        "oui": ident.oui,
        "product_class": ident.product_class,
        "serial_number": ident.serial_number,
        "model_name": ident.model_name,
        "software_version": ident.software_version,
        "hardware_version": ident.hardware_version,
        "ip_address": ident.ip_address,
        "external_ip_address": ident.external_ip_address,
        "online": device.status.online,
        "last_seen": _iso(device.status.last_seen),
        "connection_status": device.status.connection_status,
        "error_count": device.status.error_count,
        "last_inform": _iso(device.last_inform),
        "tags": sorted(device.tags),
    }
    if with_parameters:
        out["parameters"] = {
            path: {
                "value": p.value,
                "type": p.xtype,
                "writable": p.writable,
                "last_update": _iso(p.last_update),
            }
            for path, p in sorted(device.parameters.items())
        }
    return out


def fault_to_dict(fault: Fault) -> Dict[str, Any]:
    return {
        "id": fault.id,
        "device_id": fault.device_id,
        "device_serial": fault.device_serial,
        "device_model": fault.device_model,
        "channel": fault.channel,
        "code": fault.code,
        "message": fault.message,
        "detail": fault.detail,
        "severity": fault.severity,
        "status": fault.status,
        "timestamp": _iso(fault.timestamp),
        "expiry": _iso(fault.expiry),
        "retries": fault.retries,
        "tags": list(fault.tags),
        "acknowledged": _action_to_dict(fault.acknowledged),
        "resolved": _action_to_dict(fault.resolved),
    }


def stats_to_dict(stats: DeviceStats) -> Dict[str, Any]:
    return {
        "total_devices": stats.total_devices,
        "online_devices": stats.online_devices,
        "offline_devices": stats.offline_devices,
        "devices_by_vendor": dict(stats.devices_by_vendor),
        "devices_by_model": dict(stats.devices_by_model),
        "active_faults": stats.active_faults,
        "critical_faults": stats.critical_faults,
        "computed_at": _iso(stats.computed_at),
    }


def status_to_dict(status: ConnectivityStatus) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "cwmp_connected": status.cwmp_connected,
        "nbi_connected": status.nbi_connected,
        "fs_connected": status.fs_connected,
        "last_check": _iso(status.last_check),
    }
    if status.last_error:
        out["last_error"] = status.last_error
    return out
