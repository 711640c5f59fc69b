"""Endpoints de dispositivos (``/api/devices``).

Cambiar el estado publica ``turn_on``/``turn_off`` al broker principal.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..deps import get_command_publisher, get_device_service, server_error
from ..mqtt.publisher import DeviceCommandPublisher
from ..schemas import DeviceIn, DeviceStatusIn, dump
from ..services import DeviceService
from ..services.devices import STATUS_ACTIVE, STATUS_INACTIVE, command_for_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/devices", tags=["devices"])

_VALID_STATUSES = (STATUS_ACTIVE, STATUS_INACTIVE)


@router.get("")
def list_devices(service: DeviceService = Depends(get_device_service)):
    return service.get_all()


@router.get("/{device_id}")
def get_device(device_id: str, service: DeviceService = Depends(get_device_service)):
    device = service.get_by_id(device_id)
    if device is None:
        raise HTTPException(status_code=404, detail={"message": "Device not found"})
    return device


@router.post("", status_code=status.HTTP_201_CREATED)
def create_device(body: DeviceIn, service: DeviceService = Depends(get_device_service)):
    if body.status not in _VALID_STATUSES:
        raise HTTPException(status_code=400, detail={"message": "status must be 'active' or 'inactive'"})
    try:
        return service.create(dump(body))
    except Exception as e:
        logger.exception("[API] Creating device failed")
        raise server_error("Error creating device", e)


@router.put("/{device_id}/status")
def update_device_status(
    device_id: str,
    body: DeviceStatusIn,
    service: DeviceService = Depends(get_device_service),
    publisher: DeviceCommandPublisher = Depends(get_command_publisher),
):
    new_status = body.status.strip().lower()
    if new_status not in _VALID_STATUSES:
        raise HTTPException(status_code=400, detail={"message": "status must be 'active' or 'inactive'"})

    device = service.update_status(device_id, new_status)
    if device is None:
        raise HTTPException(status_code=404, detail={"message": "Device not found"})

    published = publisher.publish_command(device["deviceName"], command_for_status(new_status))
    if not published:
        logger.warning("[API] Command for %s was not delivered", device["deviceName"])
    return {"device": device, "commandPublished": published}


@router.delete("/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_device(device_id: str, service: DeviceService = Depends(get_device_service)):
    if not service.delete(device_id):
        raise HTTPException(status_code=404, detail={"message": "Device not found"})
    return Response(status_code=status.HTTP_204_NO_CONTENT)
