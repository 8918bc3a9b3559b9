# Secure Vault - FastAPI Backend
#
# REST API for the desktop UI plus a WebSocket that pushes session events
# (auto-lock, data-loss warning) so the UI can react without polling.

import asyncio
import logging
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..core import EventSeverity, EventType, get_audit_logger
from ..vault.session import SessionEvent, get_session_manager
from .security import get_session_token, initialize_session_token, token_matches
from .transfer_routes import router as transfer_router
from .vault_routes import router as vault_router

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Secure Vault API",
    description="Local password and TOTP vault",
    version=__version__,
)

_allowed_origins = [
    "http://localhost:3000", "http://127.0.0.1:3000",
    "http://localhost:8000", "http://127.0.0.1:8000",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(vault_router)
app.include_router(transfer_router)


class ConnectionManager:
    """WebSocket clients receiving session events."""

    def __init__(self):
        self.active_connections: List[WebSocket] = []
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: dict):
        dead_connections = []
        for connection in self.active_connections:
            try:
                await connection.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                dead_connections.append(connection)
        for connection in dead_connections:
            self.disconnect(connection)

    def publish(self, event: SessionEvent):
        """Session listener; may be called from the auto-lock timer thread."""
        if self.loop is None or self.loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(
            self.broadcast({"type": f"vault.{event.value}"}), self.loop
        )


manager = ConnectionManager()


@app.on_event("startup")
async def startup_event():
    """Create the session token and hook session events to the WebSocket."""
    initialize_session_token()
    manager.loop = asyncio.get_running_loop()
    get_session_manager().add_listener(manager.publish)

    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="Secure Vault API server starting (session token initialized)",
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Lock the vault so the key does not outlive the server."""
    session = get_session_manager()
    session.remove_listener(manager.publish)
    session.lock()
    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_STOP,
        severity=EventSeverity.INFO,
        message="Secure Vault API server shutting down",
    )


@app.get("/api/session")
async def get_session():
    """
    Session token for the UI.

    Unprotected by necessity: the UI calls it once on load. The token is
    random, changes on every restart and the server binds to localhost.
    """
    return {"session_token": get_session_token()}


@app.get("/api")
async def api_info():
    return {"name": "Secure Vault API", "version": __version__, "status": "operational"}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = None):
    """Session events: {"type": "vault.auto_locked" | "vault.locked" | ...}."""
    if not token_matches(token):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await manager.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)


def start_api_server(host: str = "127.0.0.1", port: int = 8000):
    """
    Start the FastAPI server.

    Args:
        host: Host to bind to (default: localhost only)
        port: Port to listen on
    """
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    start_api_server()
