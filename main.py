#!/usr/bin/env python3
"""
Entry point script for running Blanket Watch without installing it.
"""

import sys

from blanket_watch.main import main

if __name__ == "__main__":
    sys.exit(main())
