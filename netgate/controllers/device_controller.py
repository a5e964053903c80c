"""
Device controller — the caller's own devices.

Admins may address any device by id; everyone else gets 404 for a
device that is not theirs.
"""

import uuid

from fastapi import APIRouter, Depends, Query, Request

from netgate.dependencies import get_coordinator, get_current_user, request_context
from netgate.schemas import (
    ConnectionOut,
    ConnectionPageOut,
    DeviceOut,
    DeviceRenameRequest,
    DeviceRevocationOut,
    DeviceTrafficOut,
)
from netgate.services.access_coordinator import AccessCoordinator
from netgate.services.session_manager import UserIdentity

router = APIRouter(prefix="/api/devices", tags=["Devices"])


@router.get("", response_model=list[DeviceOut])
async def list_devices(
    active_only: bool = Query(False),
    user: UserIdentity = Depends(get_current_user),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    devices = await coordinator.list_devices(user, active_only=active_only)
    return [DeviceOut.model_validate(d) for d in devices]


@router.get("/{device_id}", response_model=DeviceOut)
async def get_device(
    device_id: uuid.UUID,
    user: UserIdentity = Depends(get_current_user),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    return DeviceOut.model_validate(await coordinator.get_device(device_id, user))


@router.patch("/{device_id}", response_model=DeviceOut)
async def rename_device(
    device_id: uuid.UUID,
    body: DeviceRenameRequest,
    request: Request,
    user: UserIdentity = Depends(get_current_user),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    device = await coordinator.rename_device(device_id, body.device_name, user, request_context(request))
    return DeviceOut.model_validate(device)


@router.post("/{device_id}/disconnect", response_model=DeviceRevocationOut)
async def disconnect_device(
    device_id: uuid.UUID,
    request: Request,
    user: UserIdentity = Depends(get_current_user),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Cut network access and sign the device out."""
    result = await coordinator.disconnect_device(device_id, user, request_context(request))
    return DeviceRevocationOut.model_validate(result)


@router.delete("/{device_id}", response_model=DeviceRevocationOut)
async def delete_device(
    device_id: uuid.UUID,
    request: Request,
    user: UserIdentity = Depends(get_current_user),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Permanently remove the device record and its connection history."""
    result = await coordinator.delete_device(device_id, user, request_context(request))
    return DeviceRevocationOut.model_validate(result)


@router.get("/{device_id}/connections", response_model=ConnectionPageOut)
async def device_connections(
    device_id: uuid.UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: UserIdentity = Depends(get_current_user),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    history = await coordinator.device_history(device_id, user, page=page, limit=limit)
    return ConnectionPageOut(
        items=[ConnectionOut.model_validate(c) for c in history.items],
        total=history.total,
        page=history.page,
        limit=history.limit,
        pages=history.pages,
    )


@router.get("/{device_id}/traffic", response_model=DeviceTrafficOut)
async def device_traffic(
    device_id: uuid.UUID,
    user: UserIdentity = Depends(get_current_user),
    coordinator: AccessCoordinator = Depends(get_coordinator),
):
    """Live firewall counters for the device's current address."""
    return DeviceTrafficOut.model_validate(await coordinator.device_traffic(device_id, user))
