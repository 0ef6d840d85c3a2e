"""
One live event-channel connection.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from ..models import Principal


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    JOINED = "joined"
    DISCONNECTED = "disconnected"


class EventTransport(Protocol):
    """Anything that can push a JSON object to the client (a FastAPI WebSocket)."""

    async def send_json(self, data: Any, mode: str = "text") -> None: ...


@dataclass(eq=False)
class Connection:
    """
    A connection owned by exactly one principal.

    `dispatch_lock` serialises inbound event handling for this connection;
    `send_lock` serialises writes to the transport. They are separate so a
    handler holding the dispatch lock can still fan out to its own socket.
    """

    principal: Principal
    transport: EventTransport
    connection_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: ConnectionState = ConnectionState.CONNECTING
    connected_at: float = field(default_factory=time.time)
    dispatch_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def principal_id(self) -> int:
        return self.principal.id

    @property
    def is_open(self) -> bool:
        return self.state is not ConnectionState.DISCONNECTED

    async def send(self, event: dict[str, Any]) -> None:
        if not self.is_open:
            raise ConnectionError(f"Connection {self.connection_id} is closed")
        async with self.send_lock:
            await self.transport.send_json(event)
