#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Device Filter - Predicates used to narrow device and fault listings
"""
from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from gateway_models import Device, Fault, InvalidArgumentError

_IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def _parse_ip(value: str) -> Optional[_IPAddress]:
    try:
        return ipaddress.ip_address(value.strip())
    except ValueError:
        return None


@dataclass(frozen=True)
class IPRange:
    """Inclusive address range; both ends must be the same IP version"""
    start_ip: str
    end_ip: str

    def __post_init__(self) -> None:
        start, end = _parse_ip(self.start_ip), _parse_ip(self.end_ip)
        if start is None or end is None:
            raise InvalidArgumentError(f"invalid IP range bounds: {self.start_ip!r} - {self.end_ip!r}")
        if start.version != end.version:
            raise InvalidArgumentError(f"IP range mixes versions: {self.start_ip} - {self.end_ip}")
        if start > end:
            raise InvalidArgumentError(f"IP range start is after end: {self.start_ip} > {self.end_ip}")

    @classmethod
    def from_cidr(cls, cidr: str) -> "IPRange":
        try:
            net = ipaddress.ip_network(cidr.strip(), strict=False)
        except ValueError as e:
            raise InvalidArgumentError(f"invalid network: {cidr!r}") from e
        return cls(str(net.network_address), str(net.broadcast_address))

    def contains(self, ip: str) -> bool:
        addr = _parse_ip(ip) if ip else None
        if addr is None:
            return False
        start = ipaddress.ip_address(self.start_ip.strip())
        end = ipaddress.ip_address(self.end_ip.strip())
        if addr.version != start.version:
            return False
        return start <= addr <= end


@dataclass(frozen=True)
class DeviceFilter:
    """Listing criteria; None/empty fields impose no constraint"""
    manufacturer: str = ""
    model_name: str = ""
    product_class: str = ""
    online: Optional[bool] = None
    tags: Tuple[str, ...] = ()
    ip_range: Optional[IPRange] = None
    search: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", tuple(self.tags))


@dataclass(frozen=True)
class FaultFilter:
    device_id: str = ""
    severity: str = ""
    status: str = ""
    channel: str = ""


def _matches_search(device: Device, needle: str) -> bool:
    needle = needle.lower()
    ident = device.identity
    haystack = (device.id, ident.serial_number, ident.manufacturer, ident.model_name, ident.ip_address)
    return any(needle in field.lower() for field in haystack)


def matches_filter(device: Device, flt: Optional[DeviceFilter]) -> bool:
    """True iff the device satisfies every criterion set on the filter.

    Strings compare exactly (case-sensitive). All listed tags must be present.
    """
    if flt is None:
        return True

    ident = device.identity

    if flt.ip_range is not None and not flt.ip_range.contains(ident.ip_address):
        return False

    if flt.manufacturer and ident.manufacturer != flt.manufacturer:
        return False

    if flt.model_name and ident.model_name != flt.model_name:
        return False

    if flt.product_class and ident.product_class != flt.product_class:
        return False

    if flt.online is not None and device.status.online != flt.online:
        return False

    for tag in flt.tags:
        if tag not in device.tags:
            return False

    if flt.search and not _matches_search(device, flt.search):
        return False

    return True


def matches_fault_filter(fault: Fault, flt: Optional[FaultFilter]) -> bool:
    if flt is None:
        return True
    if flt.device_id and fault.device_id != flt.device_id:
        return False
    if flt.status and fault.status != flt.status:
        return False
    if flt.severity and fault.severity != flt.severity:
        return False
    if flt.channel and fault.channel != flt.channel:
        return False
    return True
