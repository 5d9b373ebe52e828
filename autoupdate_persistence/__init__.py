"""
Auto-update persistence module.

This module contains the database implementation for intents, the upgrade
ledger and upgrade leases. Currently supports SQLite, but can be extended to
PostgreSQL, MySQL, etc.

The persistence layer depends on autoupdate_common for domain models and
interfaces, and is used by the server, the engine's controller and the
admin CLI.
"""

from .sqlite_repository import SQLiteAutoUpdateRepository

__all__ = ["SQLiteAutoUpdateRepository"]
