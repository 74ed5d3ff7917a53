#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Device Registry - In-memory device/fault store with a statistics cache
======================================================================
- Devices and faults live in separate maps, each behind its own reader/writer lock
- Every mutation invalidates the statistics cache before releasing its write lock
- Statistics are recomputed lazily, at most once per freshness window
- ACS connectivity status is tracked alongside, overwritten by an external poller

Lock order: devices -> faults -> stats. Only recomputation takes both map locks.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Dict, Final, Iterable, Iterator, List, Optional

from device_filter import DeviceFilter, FaultFilter, matches_fault_filter, matches_filter
from gateway_models import (
    CONNECTION_CONNECTED, CONNECTION_DISCONNECTED, FAULT_ACKNOWLEDGED, FAULT_EXPIRED,
    FAULT_RESOLVED, FAULT_STATUSES, SEVERITIES, SEVERITY_CRITICAL, UNKNOWN_BUCKET,
    AlreadyInTerminalStateError, ConnectivityStatus, Device, DeviceStats, Fault, FaultAction,
    InvalidArgumentError, NotFoundError, can_transition, utcnow,
)

STATS_TTL_SECONDS: Final[float] = 60.0

TAG_ADD: Final[str] = "add"
TAG_REMOVE: Final[str] = "remove"
TAG_REPLACE: Final[str] = "replace"
TAG_OPERATIONS: Final[tuple[str, ...]] = (TAG_ADD, TAG_REMOVE, TAG_REPLACE)


# =========================
# Locking
# =========================
class ReadWriteLock:
    """Many readers or a single writer. A waiting writer holds off new readers.

    Not reentrant: a thread must not take the read side twice.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


# =========================
# Stats cache
# =========================
class StatsCache:
    """Holds the last computed DeviceStats and decides when it is stale.

    Recomputation runs without the cache lock held, so readers are only
    blocked for the swap itself.
    """

    def __init__(self, compute: Callable[[], DeviceStats], ttl: float = STATS_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self._compute = compute
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[DeviceStats] = None
        self._computed_at: Optional[float] = None  # None means invalid
        self._generation = 0

    @property
    def ttl(self) -> float:
        return self._ttl

    def _fresh_locked(self) -> bool:
        if self._snapshot is None or self._computed_at is None:
            return False
        return (self._clock() - self._computed_at) < self._ttl

    def is_fresh(self) -> bool:
        with self._lock:
            return self._fresh_locked()

    def invalidate(self) -> None:
        with self._lock:
            self._computed_at = None
            self._generation += 1

    def get(self) -> DeviceStats:
        with self._lock:
            if self._fresh_locked():
                return self._snapshot  # type: ignore[return-value]
            generation = self._generation

        stats = self._compute()

        with self._lock:
            # An invalidation that raced the computation leaves the cache stale
            if self._generation == generation:
                self._snapshot = stats
                self._computed_at = self._clock()
        logging.debug("Stats recomputed: %d devices, %d active faults",
                      stats.total_devices, stats.active_faults)
        return stats


# =========================
# Status tracker
# =========================
class StatusTracker:
    """Latest ACS connectivity snapshot"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._status = ConnectivityStatus()

    def update(self, status: ConnectivityStatus) -> ConnectivityStatus:
        stamped = replace(status, last_check=utcnow())
        with self._lock:
            self._status = stamped
        if status.last_error:
            logging.warning("ACS status: cwmp=%s nbi=%s fs=%s error=%s", status.cwmp_connected,
                            status.nbi_connected, status.fs_connected, status.last_error)
        return stamped

    def read(self) -> ConnectivityStatus:
        with self._lock:
            return self._status


# =========================
# Registry
# =========================
def _compute_stats(devices: Iterable[Device], faults: Iterable[Fault]) -> DeviceStats:
    total = online = 0
    by_vendor: Counter[str] = Counter()
    by_model: Counter[str] = Counter()
    for d in devices:
        total += 1
        if d.status.online:
            online += 1
        by_vendor[d.identity.manufacturer or UNKNOWN_BUCKET] += 1
        by_model[d.identity.model_name or UNKNOWN_BUCKET] += 1

    active = critical = 0
    for f in faults:
        if f.is_active:
            active += 1
            if f.severity == SEVERITY_CRITICAL:
                critical += 1

    return DeviceStats(
        total_devices=total,
        online_devices=online,
        offline_devices=total - online,
        devices_by_vendor=by_vendor,
        devices_by_model=by_model,
        active_faults=active,
        critical_faults=critical,
        computed_at=utcnow(),
    )


class DeviceRegistry:
    """Authoritative in-process copy of devices and faults pulled from the ACS.

    Construct one per process and share it by reference.
    """

    def __init__(self, stats_ttl: float = STATS_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self._devices: Dict[str, Device] = {}
        self._devices_lock = ReadWriteLock()
        self._faults: Dict[str, Fault] = {}
        self._faults_lock = ReadWriteLock()
        self._stats = StatsCache(self._recompute_stats, ttl=stats_ttl, clock=clock)
        self._status = StatusTracker()

    # -------- Devices --------

    def upsert_device(self, device: Device) -> None:
        if not device.id:
            raise InvalidArgumentError("device id must not be empty")
        with self._devices_lock.write_locked():
            self._devices[device.id] = device
            self._stats.invalidate()
        logging.debug("Device upserted: %s", device.id)

    def get_device(self, device_id: str) -> Optional[Device]:
        with self._devices_lock.read_locked():
            return self._devices.get(device_id)

    def get_device_by_serial(self, serial: str) -> Optional[Device]:
        """First device (in insertion order) reporting this serial number"""
        if not serial:
            return None
        with self._devices_lock.read_locked():
            for device in self._devices.values():
                if device.identity.serial_number == serial:
                    return device
        return None

    def list_devices(self) -> List[Device]:
        with self._devices_lock.read_locked():
            return list(self._devices.values())

    def list_devices_filtered(self, flt: Optional[DeviceFilter]) -> List[Device]:
        with self._devices_lock.read_locked():
            return [d for d in self._devices.values() if matches_filter(d, flt)]

    def device_count(self) -> int:
        with self._devices_lock.read_locked():
            return len(self._devices)

    def remove_device(self, device_id: str) -> None:
        if not device_id:
            return
        with self._devices_lock.write_locked():
            removed = self._devices.pop(device_id, None)
            self._stats.invalidate()
        if removed is not None:
            logging.debug("Device removed: %s", device_id)

    def set_device_online(self, device_id: str, online: bool) -> None:
        with self._devices_lock.write_locked():
            device = self._devices.get(device_id)
            if device is None:
                return
            status = replace(
                device.status,
                online=online,
                last_seen=utcnow(),
                connection_status=CONNECTION_CONNECTED if online else CONNECTION_DISCONNECTED,
            )
            self._devices[device_id] = replace(device, status=status)
            self._stats.invalidate()
        logging.debug("Device %s is now %s", device_id, "online" if online else "offline")

    def update_device_tags(self, device_id: str, tags: Iterable[str], operation: str = TAG_ADD) -> Device:
        if operation not in TAG_OPERATIONS:
            raise InvalidArgumentError(f"invalid tag operation: {operation!r}")
        tags = frozenset(t for t in tags if t)
        with self._devices_lock.write_locked():
            device = self._devices.get(device_id)
            if device is None:
                raise NotFoundError("device", device_id)
            if operation == TAG_ADD:
                new_tags = device.tags | tags
            elif operation == TAG_REMOVE:
                new_tags = device.tags - tags
            else:
                new_tags = tags
            updated = replace(device, tags=new_tags)
            self._devices[device_id] = updated
            self._stats.invalidate()
        logging.debug("Device %s tags %s: %s", device_id, operation, sorted(updated.tags))
        return updated

    # -------- Faults --------

    def upsert_fault(self, fault: Fault) -> None:
        if not fault.id:
            raise InvalidArgumentError("fault id must not be empty")
        if fault.severity not in SEVERITIES:
            raise InvalidArgumentError(f"unknown fault severity: {fault.severity!r}")
        if fault.status not in FAULT_STATUSES:
            raise InvalidArgumentError(f"unknown fault status: {fault.status!r}")
        with self._faults_lock.write_locked():
            self._faults[fault.id] = fault
            self._stats.invalidate()
        logging.debug("Fault upserted: %s (%s/%s)", fault.id, fault.severity, fault.status)

    def get_fault(self, fault_id: str) -> Optional[Fault]:
        with self._faults_lock.read_locked():
            return self._faults.get(fault_id)

    def list_faults(self, flt: Optional[FaultFilter] = None) -> List[Fault]:
        with self._faults_lock.read_locked():
            return [f for f in self._faults.values() if matches_fault_filter(f, flt)]

    def list_faults_for_device(self, device_id: str) -> List[Fault]:
        with self._faults_lock.read_locked():
            return [f for f in self._faults.values() if f.device_id == device_id]

    def list_active_faults(self) -> List[Fault]:
        with self._faults_lock.read_locked():
            return [f for f in self._faults.values() if f.is_active]

    def fault_count(self) -> int:
        with self._faults_lock.read_locked():
            return len(self._faults)

    def _advance_fault(self, fault_id: str, target: str,
                       change: Callable[[Fault], Fault]) -> Fault:
        with self._faults_lock.write_locked():
            fault = self._faults.get(fault_id)
            if fault is None:
                raise NotFoundError("fault", fault_id)
            if not can_transition(fault.status, target):
                logging.warning("Fault %s: rejected %s -> %s", fault_id, fault.status, target)
                raise AlreadyInTerminalStateError(fault_id, fault.status, target)
            updated = change(fault)
            self._faults[fault_id] = updated
            self._stats.invalidate()
        logging.info("Fault %s -> %s", fault_id, target)
        return updated

    def acknowledge_fault(self, fault_id: str, actor: str) -> Fault:
        """Mark a fault acknowledged. Re-acknowledging is rejected."""
        return self._advance_fault(fault_id, FAULT_ACKNOWLEDGED, lambda f: replace(
            f, status=FAULT_ACKNOWLEDGED, acknowledged=FaultAction(actor=actor, at=utcnow())))

    def resolve_fault(self, fault_id: str, actor: str) -> Fault:
        return self._advance_fault(fault_id, FAULT_RESOLVED, lambda f: replace(
            f, status=FAULT_RESOLVED, resolved=FaultAction(actor=actor, at=utcnow())))

    def expire_fault(self, fault_id: str) -> Fault:
        return self._advance_fault(fault_id, FAULT_EXPIRED, lambda f: replace(
            f, status=FAULT_EXPIRED, expiry=utcnow()))

    # -------- Statistics --------

    def _recompute_stats(self) -> DeviceStats:
        with self._devices_lock.read_locked(), self._faults_lock.read_locked():
            return _compute_stats(self._devices.values(), self._faults.values())

    def get_stats(self) -> DeviceStats:
        return self._stats.get()

    @property
    def stats_cache(self) -> StatsCache:
        return self._stats

    # -------- ACS connectivity --------

    def get_status(self) -> ConnectivityStatus:
        return self._status.read()

    def set_status(self, status: ConnectivityStatus) -> ConnectivityStatus:
        return self._status.update(status)
