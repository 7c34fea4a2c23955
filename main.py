#!/usr/bin/env python3
"""
tunnelctl - Main Entrypoint

USAGE:
    python main.py -c ./client.ini
    python main.py --config_dir ./conf.d
    python main.py -s <encrypted address> -t <token>
    python main.py tcp -s 203.0.113.5:7000 -l 22 -r 6000 -n ssh
"""

from __future__ import annotations

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from tunnelctl.cli import main


if __name__ == "__main__":
    sys.exit(main())
