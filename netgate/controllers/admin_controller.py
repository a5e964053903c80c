"""
Admin controller — account deactivation / purge and network-wide actions.

Every route depends on ``require_admin``.
Controllers are THIN — they delegate to the coordinator and return schemas.
"""

import uuid

from fastapi import APIRouter, Depends, Request

from netgate.dependencies import get_coordinator, request_context, require_admin
from netgate.schemas import (
    DeactivationReportOut,
    DisconnectAllOut,
    GrantOut,
    NetworkInitOut,
    UsageReportOut,
)
from netgate.services.access_coordinator import AccessCoordinator
from netgate.services.session_manager import UserIdentity

router = APIRouter(prefix="/api/admin", tags=["Admin"])


# ── Users ────────────────────────────────────────────────────────────
@router.post("/users/{user_id}/deactivate", response_model=DeactivationReportOut)
async def deactivate_user(
    user_id: uuid.UUID,
    request: Request,
    admin: UserIdentity = Depends(require_admin),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Disable the account, take all its devices offline and revoke its sessions."""
    report = await coordinator.admin_deactivate_user(user_id, admin.id, request_context(request))
    return DeactivationReportOut.model_validate(report)


@router.delete("/users/{user_id}", response_model=DeactivationReportOut)
async def purge_user(
    user_id: uuid.UUID,
    request: Request,
    admin: UserIdentity = Depends(require_admin),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Hard delete, including devices, sessions and connection history."""
    report = await coordinator.admin_purge_user(user_id, admin.id, request_context(request))
    return DeactivationReportOut.model_validate(report)


# ── Network ──────────────────────────────────────────────────────────
@router.post("/network/disconnect-all", response_model=DisconnectAllOut)
async def disconnect_all(
    request: Request,
    admin: UserIdentity = Depends(require_admin),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    report = await coordinator.admin_disconnect_all(admin.id, request_context(request))
    return DisconnectAllOut(
        revoked=report.firewall.succeeded,
        failed=report.firewall.failed_count,
        devices_deactivated=report.devices_deactivated,
        connections_closed=report.connections_closed,
        firewall_error=report.firewall_error,
    )


@router.get("/network/grants", response_model=list[GrantOut])
async def list_grants(
    admin: UserIdentity = Depends(require_admin),  # noqa: ARG001
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """What the firewall currently lets through, read back from the host."""
    grants = await coordinator.list_grants()
    return [GrantOut(mac_address=g.identity, ip_address=g.address) for g in grants]


@router.post("/network/initialize", response_model=NetworkInitOut)
async def initialize_network(
    request: Request,
    admin: UserIdentity = Depends(require_admin),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Rebuild the base policy and re-grant every active device."""
    report = await coordinator.initialize_network(admin.id, request_context(request))
    return NetworkInitOut.model_validate(report)


@router.post("/network/collect-usage", response_model=UsageReportOut)
async def collect_usage(
    admin: UserIdentity = Depends(require_admin),  # noqa: ARG001
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    return UsageReportOut.model_validate(await coordinator.collect_usage())
