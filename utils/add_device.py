#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Utility to add a device to a running gateway
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import argparse
from typing import Any, Dict, List

import httpx


def build_payload(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "serial_number": args.serial or args.device_id,
        "manufacturer": args.manufacturer,
        "oui": args.oui,
        "product_class": args.product_class,
        "model_name": args.model,
        "ip_address": args.ip,
        "online": args.online,
        "tags": [t.strip() for t in args.tags.split(",") if t.strip()],
    }


def put_device(client: httpx.Client, device_id: str, payload: Dict[str, Any],
               api_prefix: str = "/api/v1") -> Dict[str, Any]:
    r = client.put(f"{api_prefix}/devices/{device_id}", json=payload)
    r.raise_for_status()
    return r.json()["device"]


def parse_args(argv: List[str] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Add device to the gateway registry")
    parser.add_argument("device_id", help="Device identifier")
    parser.add_argument("--url", default="http://localhost:8080", help="Gateway base URL")
    parser.add_argument("--api-prefix", default="/api/v1")
    parser.add_argument("--serial", "-s", default="", help="Serial number (defaults to the id)")
    parser.add_argument("--manufacturer", "-m", default="")
    parser.add_argument("--oui", default="")
    parser.add_argument("--product-class", default="")
    parser.add_argument("--model", default="")
    parser.add_argument("--ip", default="")
    parser.add_argument("--tags", "-t", default="", help="Comma separated tags")
    parser.add_argument("--online", action="store_true", help="Mark the device online")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    try:
        with httpx.Client(base_url=args.url, timeout=10.0) as client:
            device = put_device(client, args.device_id, build_payload(args), args.api_prefix)
    except httpx.HTTPError as e:
        print(f"Request failed: {e}", file=sys.stderr)
        return 1

    print(f"Device {device['id']} registered (serial {device['serial_number']})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
