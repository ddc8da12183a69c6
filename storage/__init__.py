"""
Storage Package.

This package manages all data persistence.

Modules:
- database: Async engine and session management
- models/: Declarative base and mixins
- repositories/: Base repository and repository exceptions
"""

from storage.database import (
    DatabaseConfig,
    Database,
    create_schema,
    drop_schema,
)

__all__ = [
    "DatabaseConfig",
    "Database",
    "create_schema",
    "drop_schema",
]
