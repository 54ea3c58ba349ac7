"""``sync-spine`` command line interface."""

from syncspine.cli.app import app

__all__ = ["app"]
