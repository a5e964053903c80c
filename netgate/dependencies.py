"""
Request-scoped dependencies for the routers.

- ``get_coordinator``: the single ``AccessCoordinator`` built in
  ``create_app`` and stored on ``app.state``.
- ``get_current_user``: bearer token → ``UserIdentity`` (signature,
  expiry and the user still being active).
- ``require_admin``: same, plus the admin flag.
- ``request_context`` / ``client_hints``: what the audit log and the
  fingerprint resolver get to know about the caller.
"""

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from netgate.core.errors import AdminRequired, TokenInvalid
from netgate.services.access_coordinator import AccessCoordinator
from netgate.services.audit import RequestContext
from netgate.services.fingerprint import ClientHints
from netgate.services.session_manager import UserIdentity

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_coordinator(request: Request) -> AccessCoordinator:
    return request.app.state.coordinator


def client_address(request: Request) -> str:
    return request.client.host if request.client else "127.0.0.1"


def request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=client_address(request),
        user_agent=request.headers.get("user-agent"),
    )


def client_hints(request: Request, hardware_address: str | None = None) -> ClientHints:
    return ClientHints(
        address=client_address(request),
        user_agent=request.headers.get("user-agent", ""),
        hardware_address=hardware_address,
    )


async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    coordinator: AccessCoordinator = Depends(get_coordinator),
) -> UserIdentity:
    if not token:
        raise TokenInvalid("Not authenticated")
    return await coordinator.validate_bearer(token)


async def require_admin(user: UserIdentity = Depends(get_current_user)) -> UserIdentity:
    if not user.is_admin:
        raise AdminRequired()
    return user
