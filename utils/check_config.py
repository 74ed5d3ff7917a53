#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Show the settings the gateway would start with for a given command line
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from gateway_server import parse_args, sanitized_settings


def main(argv=None):
    # Same flags as the server, so `check_config.py --config x.json --port 9000` previews the merge
    settings = parse_args(argv)

    print("\n=== Effective Gateway Settings ===\n")
    for name, value in sanitized_settings(settings).items():
        print(f"  {name}: {value}")

    print(f"\n  acs_username: {'(set)' if settings.acs_username else '(empty)'}")
    print(f"  acs_password: {'(set)' if settings.acs_password else '(empty)'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
