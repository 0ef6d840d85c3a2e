"""
Authentication dependencies for TaskHub.

The primary gate (get_current_principal) verifies the bearer credential and
re-reads the principal so deactivation since issuance is caught. Role and
ownership guards are composable dependencies layered on top of it.
"""

from typing import TYPE_CHECKING, Any

from fastapi import Depends, Request

from ..error_types import ErrorMessages
from ..exceptions import (
    AuthorizationDeniedError,
    ErrorContext,
    InvalidOrExpiredCredentialError,
    PrincipalInactiveError,
    UnauthenticatedError,
)
from ..models import Principal, Role
from ..structured_logging.enhanced_logging_config import bind_request_context, get_logger

if TYPE_CHECKING:
    from ..persistence.protocols import PersistenceGateway
    from .token_service import TokenService

logger = get_logger(__name__)


def get_container(request: Request) -> Any:
    """Get the application container from app state."""
    return request.app.state.container


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the credential from an `Authorization: Bearer <token>` header, or None."""
    if not authorization:
        return None
    scheme, _, credential = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not credential.strip():
        return None
    return credential.strip()


async def authenticate_token(
    token: str | None,
    token_service: "TokenService",
    persistence: "PersistenceGateway",
) -> Principal:
    """
    Resolve a bearer credential to an active principal.

    Shared by the HTTP gate and the event-channel handshake.

    Raises:
        UnauthenticatedError: No credential
        InvalidOrExpiredCredentialError: Signature/expiry failure, or the principal no longer exists
        PrincipalInactiveError: The principal has been deactivated
    """
    principal_id = token_service.verify_access_token(token)
    principal = await persistence.find_principal_by_id(principal_id)
    if principal is None:
        raise InvalidOrExpiredCredentialError(reason="unknown_principal", context=ErrorContext(user_id=principal_id))
    if not principal.is_active:
        raise PrincipalInactiveError(principal_id=principal_id, context=ErrorContext(user_id=principal_id))
    return principal


async def get_current_principal(
    request: Request,
    container: Any = Depends(get_container),
) -> Principal:
    """Primary authentication gate for protected HTTP routes. Fails closed."""
    token = extract_bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise UnauthenticatedError(context=ErrorContext(metadata={"path": request.url.path}))

    principal = await authenticate_token(token, container.token_service, container.persistence)
    request.state.principal = principal
    bind_request_context(user_id=str(principal.id))
    return principal


def require_role(*roles: Role):
    """Dependency factory: the principal's role must be one of `roles`."""
    allowed = frozenset(roles)

    async def _require_role(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise AuthorizationDeniedError(
                context=ErrorContext(user_id=principal.id),
                details={"role": principal.role.value, "required": sorted(role.value for role in allowed)},
            )
        return principal

    return _require_role


def require_admin_or_owner(user_id_field: str = "user_id"):
    """
    Dependency factory: admins pass; anyone else must own the resource.

    Ownership is read from the path parameter, then the query string, then
    the JSON body field named `user_id_field`.
    """

    async def _require_admin_or_owner(
        request: Request,
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if principal.role == Role.ADMIN:
            return principal

        owner: Any = request.path_params.get(user_id_field) or request.query_params.get(user_id_field)
        if owner is None and request.headers.get("content-type", "").startswith("application/json"):
            try:
                body = await request.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                owner = body.get(user_id_field)

        if owner is not None and str(owner) == str(principal.id):
            return principal

        raise AuthorizationDeniedError(
            ErrorMessages.ACCESS_DENIED,
            context=ErrorContext(user_id=principal.id, metadata={"field": user_id_field}),
        )

    return _require_admin_or_owner
