"""Database module for RadLIMS."""

from radlims.db.database import (
    DatabaseConfig,
    get_database,
    get_session,
    set_database,
)
from radlims.db.models import Base, HistoryEntry, Lab, ModificationEntry, Sample

__all__ = [
    # Database configuration
    "DatabaseConfig",
    "get_database",
    "set_database",
    "get_session",
    # Base
    "Base",
    # Models
    "Lab",
    "Sample",
    "HistoryEntry",
    "ModificationEntry",
]
