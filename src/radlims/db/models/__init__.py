"""SQLAlchemy ORM models for the RadLIMS schema."""

from radlims.db.models.lab import Base, Lab
from radlims.db.models.sample import HistoryEntry, ModificationEntry, Sample

__all__ = [
    # Base
    "Base",
    # Models
    "Lab",
    "Sample",
    "HistoryEntry",
    "ModificationEntry",
]
