"""
Schema migrations for the state store.

Applied automatically when a StateStore is opened; see runner.py for the
module naming convention.
"""

from .runner import MigrationRunner, get_all_migrations

__all__ = ["MigrationRunner", "get_all_migrations"]
