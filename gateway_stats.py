#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Gateway Stats - Breakdowns layered over the cached registry statistics
"""
from __future__ import annotations

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, Final, Iterable, List, Mapping, Sequence, Tuple

from gateway_models import (
    CONNECTION_CONNECTED, CONNECTION_DISCONNECTED, CONNECTION_UNKNOWN, FAULT_ACKNOWLEDGED,
    FAULT_ACTIVE, SEVERITIES, ConnectivityStatus, Device, Fault,
)

RECENT_FAULTS_LIMIT: Final[int] = 10

# (bucket name, upper bound); anything beyond the last bound is "older"
LAST_SEEN_BUCKETS: Final[Tuple[Tuple[str, timedelta], ...]] = (
    ("last5min", timedelta(minutes=5)),
    ("last30min", timedelta(minutes=30)),
    ("last1hour", timedelta(hours=1)),
    ("last24hour", timedelta(hours=24)),
)


def severity_counts(faults: Iterable[Fault]) -> Dict[str, int]:
    counts = {sev: 0 for sev in SEVERITIES}
    for f in faults:
        if f.severity in counts:
            counts[f.severity] += 1
    return counts


def fault_summary(faults: Sequence[Fault]) -> Dict[str, Any]:
    """Totals and histograms for a set of faults, newest first in `recent`"""
    by_severity: Counter[str] = Counter()
    by_channel: Counter[str] = Counter()
    by_device: Counter[str] = Counter()
    active = acknowledged = 0

    for f in faults:
        if f.status == FAULT_ACTIVE:
            active += 1
        elif f.status == FAULT_ACKNOWLEDGED:
            acknowledged += 1
        by_severity[f.severity] += 1
        by_channel[f.channel] += 1
        by_device[f.device_id] += 1

    recent = sorted(
        faults,
        key=lambda f: f.timestamp.timestamp() if f.timestamp else float("-inf"),
        reverse=True,
    )[:RECENT_FAULTS_LIMIT]

    return {
        "total": len(faults),
        "active": active,
        "acknowledged": acknowledged,
        "by_severity": dict(by_severity),
        "by_channel": dict(by_channel),
        "by_device": dict(by_device),
        "recent": recent,
    }


def device_breakdown(devices: Iterable[Device], now: datetime) -> Dict[str, Any]:
    vendor_models: Dict[str, Dict[str, int]] = defaultdict(dict)
    connection: Dict[str, int] = {
        CONNECTION_CONNECTED: 0,
        CONNECTION_DISCONNECTED: 0,
        CONNECTION_UNKNOWN: 0,
    }
    last_seen: Dict[str, int] = {name: 0 for name, _ in LAST_SEEN_BUCKETS}
    last_seen["older"] = 0

    for d in devices:
        ident = d.identity
        if ident.manufacturer and ident.model_name:
            models = vendor_models[ident.manufacturer]
            models[ident.model_name] = models.get(ident.model_name, 0) + 1

        connection[d.status.connection_status] = connection.get(d.status.connection_status, 0) + 1

        if d.status.last_seen is None:
            continue
        age = now - d.status.last_seen
        for name, bound in LAST_SEEN_BUCKETS:
            if age <= bound:
                last_seen[name] += 1
                break
        else:
            last_seen["older"] += 1

    return {
        "vendor_models": dict(vendor_models),
        "connection_status": connection,
        "last_seen_distribution": last_seen,
    }


def top_entries(histogram: Mapping[str, int], limit: int) -> List[Dict[str, Any]]:
    ranked = sorted(histogram.items(), key=lambda kv: (-kv[1], kv[0]))
    return [{"name": k, "count": v} for k, v in ranked[:max(0, limit)]]


def overall_state(status: ConnectivityStatus) -> str:
    if status.cwmp_connected and status.nbi_connected:
        return "operational"
    return "degraded"
