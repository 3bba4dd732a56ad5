#!/usr/bin/env python3
"""Inspect and repair metadata journals.

Run ``journal_tool.py -h`` for the command reference.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from mdjournal.cli import main


if __name__ == "__main__":
    sys.exit(main())
