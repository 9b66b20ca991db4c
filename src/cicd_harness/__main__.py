# Este archivo permite ejecutar el arnés como módulo Python usando: python -m cicd_harness

"""
Entry point for running the harness as a Python module.

Usage:
    python -m cicd_harness [test|serve|pipeline|mcp]
"""
import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
