#!/usr/bin/env python3
"""
Entry point for rbdvol CLI tool.
"""

import sys

from rbd_volume.cli.cli import main

if __name__ == "__main__":
    sys.exit(main())
