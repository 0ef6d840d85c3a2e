"""
Authentication endpoints for TaskHub.

Registration and login issue an access/refresh pair, refresh mints a new
access token from a registered refresh token, logout revokes it. Password
hashing and verification run in a worker thread so argon2 never blocks the
event loop.
"""

import asyncio
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field, field_validator

from ..error_types import ErrorMessages
from ..exceptions import ErrorContext, EventValidationError, UnauthenticatedError
from ..models import Principal
from ..structured_logging.enhanced_logging_config import get_logger
from .argon2_utils import hash_password, verify_password
from .dependencies import get_container, get_current_principal
from .password_policy import validate_password_strength

logger = get_logger(__name__)

auth_router = APIRouter(prefix="/auth", tags=["auth"])

USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


@lru_cache(maxsize=1)
def _placeholder_hash() -> str:
    return hash_password("placeholder-password-for-unknown-accounts")


def _check_password(password: str, hashed: str | None) -> bool:
    """Always pays for one argon2 verification, even when there is no stored hash."""
    if not hashed:
        verify_password(password, _placeholder_hash())
        return False
    return verify_password(password, hashed)


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=255, description="Username or email")
    password: str = Field(..., min_length=1)

    @field_validator("username")
    @classmethod
    def strip_username(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Username cannot be blank")
        return v


class LoginResponse(BaseModel):
    user: dict[str, Any]
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=1)
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)

    @field_validator("username", "email", mode="before")
    @classmethod
    def normalize_identifier(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("password")
    @classmethod
    def check_strength(cls, v: str) -> str:
        return validate_password_strength(v)


class RegisterResponse(LoginResponse):
    message: str = "User registered successfully"


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)

    @field_validator("new_password")
    @classmethod
    def check_strength(cls, v: str) -> str:
        return validate_password_strength(v)


class RefreshRequest(BaseModel):
    token: str = Field(..., min_length=1, description="Refresh token")


class RefreshResponse(BaseModel):
    access_token: str
    refresh_token: str | None = None
    token_type: str = "bearer"


@auth_router.post("/login", response_model=LoginResponse)
async def login_user(request: LoginRequest, container: Any = Depends(get_container)) -> LoginResponse:
    """
    Authenticate a principal and return an access/refresh token pair.

    Unknown users, wrong passwords and deactivated accounts all get the same
    401 so the response does not reveal which check failed.
    """
    logger.info("Login attempt", username=request.username)

    principal = await container.persistence.find_principal_by_login(request.username)
    stored_hash = principal.password_hash if principal is not None else None
    password_ok = await asyncio.to_thread(_check_password, request.password, stored_hash)
    if principal is None or not principal.is_active or not password_ok:
        raise UnauthenticatedError(
            ErrorMessages.INVALID_CREDENTIALS,
            context=ErrorContext(metadata={"username": request.username, "operation": "login_user"}),
        )

    pair = container.token_service.issue_token_pair(principal.id)
    logger.info("Login successful", principal_id=principal.id)
    return LoginResponse(
        user=principal.public_dict(),
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
    )


@auth_router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register_user(request: RegisterRequest, container: Any = Depends(get_container)) -> RegisterResponse:
    """
    Create an active MEMBER account and sign it in.

    Usernames and emails are stored lower-cased; a taken value answers 409.
    """
    logger.info("Registration attempt", username=request.username)

    password_hash = await asyncio.to_thread(hash_password, request.password)
    principal = await container.persistence.create_principal(
        request.username,
        request.email,
        password_hash,
        first_name=request.first_name,
        last_name=request.last_name,
    )

    pair = container.token_service.issue_token_pair(principal.id)
    logger.info("User registered successfully", principal_id=principal.id, username=principal.username)
    return RegisterResponse(
        user=principal.public_dict(),
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
    )


@auth_router.post("/refresh", response_model=RefreshResponse)
async def refresh_access_token(request: RefreshRequest, container: Any = Depends(get_container)) -> RefreshResponse:
    """
    Exchange a refresh token for a new access token.

    The refresh token is only included in the response when rotation is
    enabled; otherwise clients keep using the one they have.
    """
    result = await container.token_service.refresh(request.token, container.persistence.find_principal_by_id)
    return RefreshResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token if result.rotated else None,
    )


@auth_router.post("/logout")
async def logout_user(request: RefreshRequest, container: Any = Depends(get_container)) -> dict[str, str]:
    """Revoke a refresh token. Revoking an unknown token is not an error."""
    container.token_service.revoke(request.token)
    return {"message": "Logout successful"}


@auth_router.post("/change-password")
async def change_password(
    request: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
    container: Any = Depends(get_container),
) -> dict[str, Any]:
    """
    Replace the caller's password.

    Every refresh token held by the principal is revoked, so other sessions
    have to sign in again once their access tokens expire.
    """
    if not await asyncio.to_thread(_check_password, request.current_password, principal.password_hash):
        raise EventValidationError(
            ErrorMessages.INCORRECT_PASSWORD,
            field="current_password",
            context=ErrorContext(user_id=principal.id, metadata={"operation": "change_password"}),
        )

    password_hash = await asyncio.to_thread(hash_password, request.new_password)
    await container.persistence.update_principal_password(principal.id, password_hash)
    revoked = container.token_service.revoke_all(principal.id)
    logger.info("Password changed", principal_id=principal.id, refresh_tokens_revoked=revoked)
    return {"message": "Password changed successfully", "refresh_tokens_revoked": revoked}


@auth_router.get("/me", response_model=dict[str, Any])
async def get_current_principal_info(
    http_request: Request,
    principal: Principal = Depends(get_current_principal),
) -> dict[str, Any]:
    """Return the authenticated principal."""
    logger.debug("Current principal requested", path=http_request.url.path, principal_id=principal.id)
    return principal.public_dict()
