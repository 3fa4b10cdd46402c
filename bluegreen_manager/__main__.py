"""
Blue-green manager entry point for ``python -m bluegreen_manager``.
"""

import sys

from bluegreen_manager.cli import main

if __name__ == "__main__":
    sys.exit(main())
