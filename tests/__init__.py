"""
Datastore SDK Test Suite.

This package contains:
- unit/: Unit tests (no I/O)
- integration/: Client and transport tests against in-memory fakes
- fakes.py: In-memory transport emulating the store
"""
