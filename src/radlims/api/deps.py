"""FastAPI dependency injection functions.

Provides database sessions, repositories, the acting identity and the
workflow services for API endpoints.
"""

from collections.abc import AsyncGenerator
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from radlims.core.auth.identity import Identity
from radlims.core.auth.jwt import verify_identity_token
from radlims.core.events import EventBus, event_bus
from radlims.core.logging import bind_actor
from radlims.core.workflow.engine import WorkflowEngine
from radlims.core.workflow.ledger import AuditLedger
from radlims.db.database import get_database, get_session
from radlims.db.repositories.lab import LabRepository
from radlims.db.repositories.sample import SampleRepository


# ---------------------------------------------------------------------------
# Session dependency, the single source of request-scoped sessions
# ---------------------------------------------------------------------------
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get async database session for reads within a request."""
    async for session in get_session():
        yield session


# ---------------------------------------------------------------------------
# Repository factories
# ---------------------------------------------------------------------------
async def get_sample_repo(
    session: AsyncSession = Depends(get_db_session),
) -> SampleRepository:
    """Get sample repository instance."""
    return SampleRepository(session)


async def get_lab_repo(
    session: AsyncSession = Depends(get_db_session),
) -> LabRepository:
    """Get lab repository instance."""
    return LabRepository(session)


# ---------------------------------------------------------------------------
# Workflow services
# ---------------------------------------------------------------------------
def get_event_bus(request: Request) -> EventBus:
    """Event bus of the running application (process-wide bus by default)."""
    return getattr(request.app.state, "event_bus", event_bus)


def get_workflow_engine(bus: EventBus = Depends(get_event_bus)) -> WorkflowEngine:
    """Workflow engine committing through its own sessions.

    Writes do not share the request session: each commit is a transaction
    whose first statement is the conditional update.
    """
    return WorkflowEngine(get_database().session_factory, event_bus=bus)


def get_audit_ledger(
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> AuditLedger:
    return engine.ledger


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------
async def get_current_identity(
    authorization: Optional[str] = Header(None),
) -> Identity:
    """Extract the acting identity from the Bearer token.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    identity = verify_identity_token(authorization.split(" ", 1)[1])
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    bind_actor(identity)
    return identity


def visible_labs(identity: Identity) -> Optional[frozenset[str]]:
    """Labs whose samples identity may read; None means every lab."""
    if identity.is_super_admin:
        return None
    return identity.assigned_labs
