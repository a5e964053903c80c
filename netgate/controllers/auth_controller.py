"""
Auth controller — login, token refresh, logout, own profile & password.

Login and refresh are PUBLIC.  Logout works with or without a bearer
token; the refresh token in the body is what identifies the session.
"""

from fastapi import APIRouter, Depends, Request

from netgate.core.errors import AccessError
from netgate.dependencies import (
    client_hints,
    get_coordinator,
    get_current_user,
    oauth2_scheme,
    request_context,
)
from netgate.schemas import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    RefreshTokenRequest,
    TokenResponse,
    UserOut,
    UserProfileUpdate,
)
from netgate.services.access_coordinator import AccessCoordinator
from netgate.services.session_manager import UserIdentity

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Authenticate, admit this device under the quota and open network access."""
    result = await coordinator.login(
        body.identifier,
        body.password,
        client_hints(request, body.mac_address),
        request_context(request),
    )
    return LoginResponse(
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        refresh_expires_at=result.tokens.refresh_expires_at,
        user_id=result.user.id,
        device_id=result.device.id,
        new_device=result.created,
        network_enforced=result.enforced,
    )


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    body: RefreshTokenRequest,
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Exchange a refresh token for a new pair; the old one stops working."""
    tokens = await coordinator.refresh(body.refresh_token)
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        refresh_expires_at=tokens.refresh_expires_at,
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    body: LogoutRequest | None = None,
    token: str | None = Depends(oauth2_scheme),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Cut network access for the session's device and revoke the session."""
    actor_id = None
    if token:
        try:
            actor_id = (await coordinator.validate_bearer(token)).id
        except AccessError:
            # Neither an expired token nor a deactivated account may block a logout.
            actor_id = None
    await coordinator.logout(
        body.refresh_token if body else None,
        actor_id=actor_id,
        context=request_context(request),
    )
    return MessageResponse(detail="Logged out successfully")


@router.get("/me", response_model=UserOut)
async def me(
    user: UserIdentity = Depends(get_current_user),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    return UserOut.model_validate(await coordinator.users.get(user.id))


@router.patch("/me", response_model=UserOut)
async def update_me(
    body: UserProfileUpdate,
    request: Request,
    user: UserIdentity = Depends(get_current_user),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Only the fields present in the body are written."""
    updated = await coordinator.update_profile(user, body.changes(), request_context(request))
    return UserOut.model_validate(updated)


@router.put("/password", response_model=MessageResponse)
async def change_password(
    body: ChangePasswordRequest,
    request: Request,
    user: UserIdentity = Depends(get_current_user),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Change the password; every session of the account is revoked."""
    await coordinator.change_password(
        user, body.current_password, body.new_password, request_context(request),
    )
    return MessageResponse(detail="Password changed, please log in again")
