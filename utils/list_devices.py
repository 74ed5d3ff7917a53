#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Utility to list devices (and optionally active faults) from a running gateway
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import argparse
from typing import Any, Dict, List, Optional

import httpx

DEFAULT_BASE_URL = "http://localhost:8080"


def fetch_devices(client: httpx.Client, api_prefix: str = "/api/v1",
                  params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Walk every page of /devices and return the combined list"""
    query = dict(params or {})
    query.setdefault("page_size", 100)
    page, devices = 1, []
    while True:
        query["page"] = page
        r = client.get(f"{api_prefix}/devices", params=query)
        r.raise_for_status()
        body = r.json()
        devices.extend(body["devices"])
        if not body["devices"] or len(devices) >= body["total"]:
            return devices
        page += 1


def fetch_active_faults(client: httpx.Client, api_prefix: str = "/api/v1") -> List[Dict[str, Any]]:
    r = client.get(f"{api_prefix}/stats/faults")
    r.raise_for_status()
    return r.json()["recent"]


def format_device(d: Dict[str, Any]) -> List[str]:
    lines = [f"  {d['id']}:"]
    lines.append(f"    vendor: {d['manufacturer']}")
    lines.append(f"    model: {d['model_name']}")
    lines.append(f"    serial: {d['serial_number']}")
    lines.append(f"    online: {d['online']}")
    lines.append(f"    ip: {d['ip_address']}")
    if d["tags"]:
        lines.append(f"    tags: {', '.join(d['tags'])}")
    lines.append(f"    last_seen: {d['last_seen']}")
    return lines


def main(argv=None):
    parser = argparse.ArgumentParser(description="List devices")
    parser.add_argument("--url", default=DEFAULT_BASE_URL, help="Gateway base URL")
    parser.add_argument("--api-prefix", default="/api/v1")
    parser.add_argument("--manufacturer", default="")
    parser.add_argument("--tags", default="", help="Comma separated, all must match")
    parser.add_argument("--online", choices=["true", "false"], default=None)
    parser.add_argument("--search", default="")
    parser.add_argument("--faults", "-f", action="store_true", help="Also show recent active faults")

    args = parser.parse_args(argv)

    params = {k: v for k, v in {
        "manufacturer": args.manufacturer,
        "tags": args.tags,
        "online": args.online,
        "search": args.search,
    }.items() if v}

    try:
        with httpx.Client(base_url=args.url, timeout=10.0) as client:
            devices = fetch_devices(client, args.api_prefix, params)
            faults = fetch_active_faults(client, args.api_prefix) if args.faults else []
    except httpx.HTTPError as e:
        print(f"Request failed: {e}", file=sys.stderr)
        return 1

    print(f"\n=== Devices ({len(devices)}) ===")
    if not devices:
        print("  (no devices)")
    for d in devices:
        print("\n".join(format_device(d)))

    if args.faults:
        print("\n=== Recent Active Faults ===")
        if not faults:
            print("  (no faults)")
        for f in faults:
            print(f"  {f['id']}: [{f['severity']}] {f['device_id']} {f['code']} {f['message']} ({f['status']})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
