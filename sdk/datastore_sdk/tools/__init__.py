"""
Command-line tools for the Datastore SDK.

This module provides:
- cli: Read, write, query and inspect keys from a shell

Invariants:
    - Output is JSON on stdout; diagnostics go to stderr
    - Failures exit with a non-zero code
"""

from .cli import DatastoreCLI, format_path, parse_path

__all__ = ["DatastoreCLI", "format_path", "parse_path"]
