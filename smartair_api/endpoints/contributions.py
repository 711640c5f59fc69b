"""Endpoints de contribuciones ciudadanas (``/api/contributions``)."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Query, UploadFile

from .. import ngsi
from ..deps import get_contributed_data_service, get_user_service, server_error
from ..services import ContributedDataService, UserService, ValidationResult, validate_json, validate_payload
from ..services.contributions import new_contribution_id
from .downloads import attachment_name, json_attachment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/contributions", tags=["contributions"])

MAX_UPLOAD_BYTES = 1024 * 1024


def _public_list(docs):
    return [ngsi.to_public(d) for d in docs]


def _resolve_user_id(users: UserService, email: Optional[str]) -> Optional[str]:
    if not email or not email.strip():
        return None
    user = users.get_by_email(email)
    if user is None:
        logger.warning("[CONTRIB] No registered user for %s, storing as anonymous", email)
        return None
    return user["id"]


def _save(
    result: ValidationResult,
    service: ContributedDataService,
    user_id: Optional[str],
) -> dict:
    if not result.is_valid:
        logger.info("[CONTRIB] Validation failed: %s", "; ".join(result.errors))
        raise HTTPException(
            status_code=400,
            detail={"message": "Data is not valid NGSI-LD AirQualityObserved", "errors": result.errors},
        )

    contribution_id = new_contribution_id()
    try:
        if result.data_list:
            ids = service.insert_many(result.data_list, contribution_id, user_id)
            return {
                "message": f"Saved {len(ids)} records",
                "count": len(ids),
                "ids": ids,
                "contributionId": contribution_id,
                "skipped": result.errors,
            }
        entity_id = service.insert(result.data, contribution_id, user_id)
    except Exception as e:
        logger.exception("[CONTRIB] Saving contribution failed")
        raise server_error("Error saving contribution", e)
    return {"message": "Data saved", "id": entity_id, "contributionId": contribution_id}


@router.post("")
def submit_contribution(
    payload: Any = Body(...),
    email: Optional[str] = Query(None),
    service: ContributedDataService = Depends(get_contributed_data_service),
    users: UserService = Depends(get_user_service),
):
    """Contribución enviada como JSON (objeto o array)."""
    return _save(validate_payload(payload), service, _resolve_user_id(users, email))


@router.post("/upload")
async def upload_contribution(
    file: UploadFile = File(...),
    email: Optional[str] = Form(None),
    name: Optional[str] = Form(None),
    service: ContributedDataService = Depends(get_contributed_data_service),
    users: UserService = Depends(get_user_service),
):
    """Contribución como archivo ``.json`` (máx. 1 MB)."""
    if not file.filename:
        raise HTTPException(status_code=400, detail={"message": "File is required"})
    if not file.filename.lower().endswith(".json"):
        raise HTTPException(status_code=400, detail={"message": "File must be a .json file"})

    content = await file.read(MAX_UPLOAD_BYTES + 1)
    if not content:
        raise HTTPException(status_code=400, detail={"message": "File is empty"})
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail={"message": "File must not exceed 1MB"})

    logger.info("[CONTRIB] Upload %s (%d bytes) from %s", file.filename, len(content), name or email or "anonymous")

    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail={"message": "File must be UTF-8 encoded JSON"})

    return _save(validate_json(text), service, _resolve_user_id(users, email))


@router.get("")
def list_contributions(
    limit: Optional[int] = Query(None, ge=1),
    service: ContributedDataService = Depends(get_contributed_data_service),
):
    if limit is not None:
        return _public_list(service.get_latest_n(limit))
    return _public_list(service.get_all())


@router.get("/stations")
def contributed_stations(service: ContributedDataService = Depends(get_contributed_data_service)):
    stations = service.get_distinct_stations()
    return {"stations": stations, "total": len(stations)}


@router.get("/stations/info")
def contributed_stations_info(service: ContributedDataService = Depends(get_contributed_data_service)):
    return service.get_stations_info()


@router.get("/station/{station_id}")
def contributions_by_station(
    station_id: str,
    service: ContributedDataService = Depends(get_contributed_data_service),
):
    if not station_id.strip():
        raise HTTPException(status_code=400, detail={"message": "stationId is required"})
    data = _public_list(service.get_by_station(station_id))
    return {"stationId": station_id, "total": len(data), "data": data}


@router.get("/public")
def public_contributions(
    service: ContributedDataService = Depends(get_contributed_data_service),
    users: UserService = Depends(get_user_service),
):
    """Resumen de los últimos 7 días; no expone emails ni userIds."""
    docs = service.get_last_7_days()
    user_ids = {d.get("userId") for d in docs if d.get("userId")}
    return service.get_public_summary(users.names_by_id(sorted(user_ids)), docs)


@router.get("/list")
def list_contribution_ids(
    email: Optional[str] = Query(None),
    service: ContributedDataService = Depends(get_contributed_data_service),
    users: UserService = Depends(get_user_service),
):
    user_id = None
    if email:
        user = users.get_by_email(email)
        if user is None:
            raise HTTPException(status_code=404, detail={"message": f"User not found: {email}"})
        user_id = user["id"]

    contributions = service.get_all_contribution_ids(user_id)
    return {"total": len(contributions), "contributions": contributions}


@router.get("/{contribution_id}/latest")
def latest_by_contribution(
    contribution_id: str,
    limit: int = Query(5, ge=1),
    service: ContributedDataService = Depends(get_contributed_data_service),
):
    data = service.get_latest_n_by_contribution_id(contribution_id, limit)
    if not data:
        raise HTTPException(status_code=404, detail={"message": "Contribution not found"})
    return _public_list(data)


@router.get("/{contribution_id}/download")
def download_contribution(
    contribution_id: str,
    service: ContributedDataService = Depends(get_contributed_data_service),
):
    data = service.get_by_contribution_id(contribution_id)
    if not data:
        raise HTTPException(status_code=404, detail={"message": "Contribution not found"})
    return json_attachment(_public_list(data), attachment_name("contribution", contribution_id))
