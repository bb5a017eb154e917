"""WebSocket live view of lab-scoped sample queues.

Each connection owns one live-view subscription for the labs of its identity
and receives a ``snapshot`` message whenever a committed write changes them.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from radlims.core.auth.identity import Identity
from radlims.core.auth.jwt import verify_identity_token
from radlims.core.live_view import LiveViewSubscription, LiveViewSynchronizer
from radlims.core.logging import bind_actor
from radlims.db.database import get_database
from radlims.db.repositories.lab import LabRepository

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["websocket"])


@dataclass
class WSConnection:
    """Represents a WebSocket connection.

    Attributes:
        websocket: The FastAPI WebSocket instance
        identity: Authenticated principal of the connection
        connected_at: Timestamp when the connection was established
        subscription: Live-view subscription feeding the connection
        pump_task: Task forwarding snapshots to the client
        last_heartbeat: Timestamp of the last received ping
    """

    websocket: WebSocket
    identity: Identity
    connected_at: datetime
    subscription: Optional[LiveViewSubscription] = None
    pump_task: Optional[asyncio.Task] = None
    last_heartbeat: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ConnectionManager:
    """Manages live-view WebSocket connections.

    Attributes:
        _connections: Mapping of connection IDs to WSConnection instances
        _synchronizer: Live view synchronizer providing subscriptions
        _heartbeat_interval: Seconds between cleanup checks
        _heartbeat_timeout: Seconds before a connection is considered stale
        _cleanup_task: Background task for connection cleanup
    """

    def __init__(
        self,
        synchronizer: Optional[LiveViewSynchronizer] = None,
        heartbeat_interval: int = 30,
        heartbeat_timeout: int = 90,
    ):
        self._connections: dict[str, WSConnection] = {}
        self._synchronizer = synchronizer
        self._heartbeat_interval = heartbeat_interval
        self._heartbeat_timeout = heartbeat_timeout
        self._cleanup_task: asyncio.Task | None = None

    def configure(
        self,
        synchronizer: LiveViewSynchronizer,
        heartbeat_interval: Optional[int] = None,
        heartbeat_timeout: Optional[int] = None,
    ) -> None:
        """Bind the synchronizer and heartbeat settings at startup."""
        self._synchronizer = synchronizer
        if heartbeat_interval is not None:
            self._heartbeat_interval = heartbeat_interval
        if heartbeat_timeout is not None:
            self._heartbeat_timeout = heartbeat_timeout

    async def start(self) -> None:
        """Launch the loop that closes stale connections."""
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self) -> None:
        """Stop the cleanup loop and release every connection."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        for connection_id in list(self._connections):
            await self.disconnect(connection_id)

    async def connect(
        self,
        websocket: WebSocket,
        connection_id: str,
        identity: Identity,
        labs: frozenset[str],
    ) -> WSConnection:
        """Accept a connection and start streaming the snapshots of labs.

        If the subscription cannot be opened the connection is forgotten and
        the socket closed with 1011 before the error propagates.

        Raises:
            RuntimeError: If no synchronizer is configured
        """
        if self._synchronizer is None:
            raise RuntimeError("live view synchronizer is not configured")

        await websocket.accept()
        conn = WSConnection(
            websocket=websocket,
            identity=identity,
            connected_at=datetime.now(timezone.utc),
        )
        self._connections[connection_id] = conn

        try:
            conn.subscription = await self._synchronizer.subscribe(labs)
        except Exception:
            logger.exception("ws_subscribe_failed", connection_id=connection_id)
            await self.disconnect(connection_id)
            await websocket.close(code=1011, reason="Live view unavailable")
            raise

        conn.pump_task = asyncio.create_task(self._pump(connection_id, conn))
        logger.info(
            "ws_connected",
            connection_id=connection_id,
            user_id=identity.user_id,
            labs=sorted(labs),
        )
        return conn

    async def _pump(self, connection_id: str, conn: WSConnection) -> None:
        try:
            async for snapshot in conn.subscription:
                await conn.websocket.send_json(snapshot.to_message())
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.debug("ws_send_failed", connection_id=connection_id, exc_info=True)
            await self.disconnect(connection_id)

    async def disconnect(self, connection_id: str) -> None:
        """Close the subscription of a connection and forget it."""
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return
        if conn.subscription is not None:
            conn.subscription.close()
        if conn.pump_task is not None and conn.pump_task is not asyncio.current_task():
            conn.pump_task.cancel()
            try:
                await conn.pump_task
            except asyncio.CancelledError:
                pass
        logger.info("ws_disconnected", connection_id=connection_id)

    async def send(self, connection_id: str, message: dict[str, Any]) -> None:
        conn = self._connections.get(connection_id)
        if conn is None:
            return
        try:
            await conn.websocket.send_json(message)
        except Exception:
            await self.disconnect(connection_id)

    def update_heartbeat(self, connection_id: str) -> None:
        """Record a ping so the connection is not treated as stale."""
        if connection_id in self._connections:
            self._connections[connection_id].last_heartbeat = datetime.now(timezone.utc)

    async def close_stale(self) -> list[str]:
        """Close connections whose last ping is older than the timeout."""
        now = datetime.now(timezone.utc)
        stale = [
            conn_id
            for conn_id, conn in self._connections.items()
            if (now - conn.last_heartbeat).total_seconds() > self._heartbeat_timeout
        ]
        for conn_id in stale:
            conn = self._connections.get(conn_id)
            if conn is None:
                continue
            try:
                await conn.websocket.close(code=4002, reason="Heartbeat timeout")
            except Exception:
                logger.debug("ws_close_failed", connection_id=conn_id, exc_info=True)
            await self.disconnect(conn_id)
        return stale

    async def _cleanup_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._heartbeat_interval)
                stale = await self.close_stale()
                if stale:
                    logger.info("ws_stale_closed", count=len(stale))
            except asyncio.CancelledError:
                break
            except Exception:
                logger.debug("ws_cleanup_error", exc_info=True)

    def get_connection_count(self) -> int:
        return len(self._connections)

    def get_subscribed_labs(self, connection_id: str) -> frozenset[str]:
        conn = self._connections.get(connection_id)
        if conn is None or conn.subscription is None:
            return frozenset()
        return conn.subscription.labs


# Process-wide connection manager, configured in the application lifespan
manager = ConnectionManager()


async def _labs_for(identity: Identity) -> frozenset[str]:
    if not identity.is_super_admin:
        return identity.assigned_labs
    async with get_database().session() as session:
        return await LabRepository(session).active_codes()


@router.websocket("/ws/samples")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str | None = Query(None),
):
    """WebSocket endpoint for the live sample view.

    Requires an identity token in the ``token`` query parameter. If it is
    missing or invalid the connection is closed with code 4001.

    Message Protocol:
        Client -> Server:
            - {"type": "ping"}

        Server -> Client:
            - {"type": "snapshot", "sequence": ..., "labs": [...], "counts": {...},
               "by_status": {...}}
            - {"type": "pong"}
            - {"type": "error", "message": "..."}
    """
    identity = verify_identity_token(token) if token else None
    if identity is None:
        # Accept first so the close frame reaches the client through proxies
        await websocket.accept()
        await websocket.send_json({
            "type": "error",
            "message": "Authentication required" if not token else "Invalid or expired token",
        })
        await websocket.close(code=4001, reason="Authentication failed")
        return

    bind_actor(identity)
    connection_id = str(uuid.uuid4())
    labs = await _labs_for(identity)
    try:
        await manager.connect(websocket, connection_id, identity, labs)
    except Exception:
        logger.warning("ws_connect_failed", connection_id=connection_id)
        return

    try:
        while True:
            data = await websocket.receive_json()
            message_type = data.get("type") if isinstance(data, dict) else None

            if message_type == "ping":
                manager.update_heartbeat(connection_id)
                await manager.send(connection_id, {"type": "pong"})
            else:
                await manager.send(connection_id, {
                    "type": "error",
                    "message": f"Unknown message type: {message_type}",
                })

    except WebSocketDisconnect:
        await manager.disconnect(connection_id)
    except Exception:
        logger.exception("ws_connection_error", connection_id=connection_id)
        await manager.disconnect(connection_id)


__all__ = [
    "router",
    "ConnectionManager",
    "WSConnection",
    "manager",
]
