"""Repository pattern implementation for RadLIMS database access.

Repositories:
    - BaseRepository: Primary-key lookup for all models
    - LabRepository: Inspection office registry lookups
    - SampleRepository: Lab-scoped sample queries and ledger reads
"""

from radlims.db.repositories.base import BaseRepository
from radlims.db.repositories.lab import LabRepository
from radlims.db.repositories.sample import SampleRepository

__all__ = [
    # Base
    "BaseRepository",
    # Repositories
    "LabRepository",
    "SampleRepository",
]
