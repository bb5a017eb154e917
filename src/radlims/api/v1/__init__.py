"""RadLIMS API v1 endpoints."""

from radlims.api.v1.labs import router as labs_router
from radlims.api.v1.samples import router as samples_router
from radlims.api.v1.websocket import router as websocket_router

__all__ = [
    "labs_router",
    "samples_router",
    "websocket_router",
]
