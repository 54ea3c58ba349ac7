"""
sync-spine - distributed sync scheduling primitives.

- syncspine.core: key-value store, errors, logging, settings
- syncspine.core.scheduling: leader-elected scheduler, locks, retry policy
- syncspine.cli: ``sync-spine`` command line
"""

__version__ = "0.1.0"
