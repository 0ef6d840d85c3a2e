"""
WebSocket transport for the real-time event channel.

The bearer credential is checked once, at handshake. A rejected handshake is
accepted and immediately closed with an application close code so browser
clients can read the reason; no connection state is created for it.
"""

import time
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from ..auth.dependencies import authenticate_token, extract_bearer_token
from ..error_types import ErrorMessages, ErrorType
from ..exceptions import (
    EventValidationError,
    InvalidOrExpiredCredentialError,
    PersistenceUnavailableError,
    PrincipalInactiveError,
    TaskHubError,
)
from ..structured_logging.enhanced_logging_config import bind_request_context, clear_request_context, get_logger
from .connection import Connection
from .events import OutboundEvent, build_event

logger = get_logger(__name__)

CLOSE_UNAUTHORIZED = 4401
CLOSE_FORBIDDEN = 4403
CLOSE_TRY_AGAIN_LATER = 1013

BEARER_SUBPROTOCOL = "bearer"


def extract_handshake_token(websocket: WebSocket) -> tuple[str | None, str | None]:
    """
    Find the credential on a handshake request.

    Checked in order: `Authorization: Bearer` header, the
    `Sec-WebSocket-Protocol: bearer, <token>` pair, then `?token=`.

    Returns:
        (token, subprotocol to echo back on accept)
    """
    token = extract_bearer_token(websocket.headers.get("authorization"))
    if token:
        return token, None

    offered = [p.strip() for p in websocket.scope.get("subprotocols", []) if p and p.strip()]
    if offered and offered[0].lower() == BEARER_SUBPROTOCOL and len(offered) > 1:
        return offered[1], offered[0]

    return websocket.query_params.get("token") or None, None


def close_code_for(error: TaskHubError) -> tuple[int, str]:
    """Map a handshake failure to a close code and reason."""
    if isinstance(error, PrincipalInactiveError):
        return CLOSE_FORBIDDEN, "inactive"
    if isinstance(error, PersistenceUnavailableError):
        return CLOSE_TRY_AGAIN_LATER, "try_again_later"
    if isinstance(error, InvalidOrExpiredCredentialError) and error.reason == "expired":
        return CLOSE_UNAUTHORIZED, "jwt_expired"
    return CLOSE_UNAUTHORIZED, "unauthorized"


async def _reject(websocket: WebSocket, error: TaskHubError, subprotocol: str | None) -> None:
    code, reason = close_code_for(error)
    logger.info("WebSocket handshake rejected", close_code=code, reason=reason, error_type=error.error_type.value)
    await websocket.accept(subprotocol=subprotocol)
    await websocket.close(code=code, reason=reason)


async def _send_rate_limit_error(container: Any, connection: Connection) -> None:
    info = container.rate_limiter.get_message_rate_limit_info(connection.connection_id)
    retry_in = max(0, int(info["reset_time"] - time.time()))
    await container.event_router.send_error_payload(
        connection,
        ErrorType.RATE_LIMIT_EXCEEDED,
        f"Message rate limit exceeded. Limit: {info['max_attempts']} messages per minute. "
        f"Try again in {retry_in} seconds.",
        user_friendly=ErrorMessages.TOO_MANY_REQUESTS,
        details={"rate_limit_info": info, "retryable": True},
    )


async def _receive_frame(websocket: WebSocket) -> str:
    """
    Read the next frame as text.

    Binary frames are accepted when they hold UTF-8.

    Raises:
        WebSocketDisconnect: The client went away
        EventValidationError: The frame carries no decodable text
    """
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(code=message.get("code", 1000), reason=message.get("reason"))

    text = message.get("text")
    if text is not None:
        return text

    raw = message.get("bytes")
    if raw is None:
        raise EventValidationError("Empty WebSocket frame", error_type=ErrorType.INVALID_FORMAT)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise EventValidationError("Binary frame is not valid UTF-8", error_type=ErrorType.INVALID_FORMAT) from e


async def _message_loop(websocket: WebSocket, connection: Connection, container: Any) -> None:
    """Receive, rate limit, validate and dispatch until the client goes away."""
    router = container.event_router
    while True:
        try:
            data = await _receive_frame(websocket)
        except WebSocketDisconnect as e:
            logger.info("WebSocket disconnected", connection_id=connection.connection_id, close_code=e.code)
            return
        except EventValidationError as e:
            await router.send_error(connection, e)
            continue

        if not container.rate_limiter.check_message_rate_limit(connection.connection_id):
            await _send_rate_limit_error(container, connection)
            continue

        try:
            event = container.message_validator.parse_and_validate(data)
        except EventValidationError as e:
            await router.send_error(connection, e)
            continue

        try:
            await router.dispatch(connection, event)
        except WebSocketDisconnect:
            logger.info("WebSocket disconnected during dispatch", connection_id=connection.connection_id)
            return
        except RuntimeError as e:
            if "not connected" in str(e) or "close message has been sent" in str(e):
                logger.warning("WebSocket connection lost", connection_id=connection.connection_id, error=str(e))
                return
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            # Reason: one bad event must not end the session
            logger.error(
                "Error handling WebSocket event",
                connection_id=connection.connection_id,
                event_kind=event.type,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            await router.send_error_payload(
                connection,
                ErrorType.INTERNAL_ERROR,
                "Internal server error",
                user_friendly=ErrorMessages.INTERNAL_ERROR,
                details={"event": event.type, "retryable": False},
            )


async def handle_websocket_connection(websocket: WebSocket, container: Any) -> None:
    """
    Run one event-channel session from handshake to disconnect.

    Args:
        websocket: The un-accepted WebSocket
        container: ApplicationContainer providing services
    """
    token, subprotocol = extract_handshake_token(websocket)
    try:
        principal = await authenticate_token(token, container.token_service, container.persistence)
    except TaskHubError as e:
        await _reject(websocket, e, subprotocol)
        return

    await websocket.accept(subprotocol=subprotocol)
    connection = Connection(principal=principal, transport=websocket)
    bind_request_context(user_id=str(principal.id), connection_id=connection.connection_id)

    try:
        await container.presence_service.on_connect(connection)
        await connection.send(
            build_event(
                OutboundEvent.WELCOME,
                {
                    "message": "Connected to TaskHub",
                    "connection_id": connection.connection_id,
                    "principal": connection.principal.public_dict(),
                },
                principal_id=principal.id,
            )
        )
        await _message_loop(websocket, connection, container)
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected before session start", connection_id=connection.connection_id)
    finally:
        await container.presence_service.on_disconnect(connection.connection_id)
        container.rate_limiter.remove_connection_message_data(connection.connection_id)
        clear_request_context()
        logger.info("WebSocket session closed", connection_id=connection.connection_id, principal_id=principal.id)
