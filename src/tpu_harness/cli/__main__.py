"""
Main entry point for the TPU Harness CLI when run as a module.

This allows running the CLI via:
    python -m tpu_harness.cli
"""

import sys

from . import main

if __name__ == '__main__':
    sys.exit(main())
