"""
Location endpoints
==================

POST /api/v1/location/update                      -- driver posts a position
GET  /api/v1/location/rides/{ride_id}/history     -- newest-first samples
GET  /api/v1/location/rides/{ride_id}/current     -- newest sample
WS   /api/v1/location/rides/{ride_id}/live        -- live channel

Live channel protocol
---------------------
* The principal comes from the gateway headers.  A request without one is
  refused with 1008; a caller who may not read the ride's location is
  closed with 1008 right after the handshake.
* On accept the server sends ``{"type": "subscribed", "ride_id": ...}``.
* Every recorded sample arrives as ``{"type": "location-update", ...}``.
* The ride's driver may also send ``{"type": "location-update", latitude,
  longitude, speed?, heading?}`` over the socket instead of POSTing.
"""

import json
import logging

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from carpool.api.dependencies import (
    get_location_relay,
    get_principal,
    principal_from_headers,
)
from carpool.api.middleware import limiter
from carpool.api.schemas import (
    LocationHistoryResponse,
    LocationSampleResponse,
    LocationUpdateRequest,
)
from carpool.config import settings
from carpool.domain.entities import Principal
from carpool.domain.errors import CarpoolError
from carpool.services.location import LocationRelay

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/location", tags=["location"])

POLICY_VIOLATION = 1008


def _sample_response(sample) -> LocationSampleResponse:
    return LocationSampleResponse(
        latitude=sample.latitude,
        longitude=sample.longitude,
        speed=sample.speed,
        heading=sample.heading,
        timestamp=sample.recorded_at,
    )


@router.post(
    "/update",
    status_code=201,
    response_model=LocationSampleResponse,
    summary="Record the driver's position",
)
@limiter.limit(settings.rate_limit)
async def update_location(
    request: Request,
    body: LocationUpdateRequest,
    principal: Principal = Depends(get_principal),
    relay: LocationRelay = Depends(get_location_relay),
):
    update = await relay.record_sample(
        principal.user_id,
        body.ride_id,
        body.latitude,
        body.longitude,
        speed=body.speed,
        heading=body.heading,
    )
    return LocationSampleResponse(
        latitude=update.latitude,
        longitude=update.longitude,
        speed=update.speed,
        heading=update.heading,
        timestamp=update.timestamp,
    )


@router.get(
    "/rides/{ride_id}/history",
    response_model=LocationHistoryResponse,
    summary="Location history, newest first",
)
@limiter.limit(settings.rate_limit)
async def location_history(
    request: Request,
    ride_id: int,
    limit: int = Query(settings.location_history_window, ge=1),
    principal: Principal = Depends(get_principal),
    relay: LocationRelay = Depends(get_location_relay),
):
    samples = await relay.history(ride_id, principal.user_id, limit)
    return LocationHistoryResponse(locations=[_sample_response(s) for s in samples])


@router.get(
    "/rides/{ride_id}/current",
    response_model=LocationSampleResponse,
    summary="Most recent location",
)
@limiter.limit(settings.rate_limit)
async def current_location(
    request: Request,
    ride_id: int,
    principal: Principal = Depends(get_principal),
    relay: LocationRelay = Depends(get_location_relay),
):
    return _sample_response(await relay.current(ride_id, principal.user_id))


@router.websocket("/rides/{ride_id}/live")
async def live_location(
    websocket: WebSocket,
    ride_id: int,
    relay: LocationRelay = Depends(get_location_relay),
):
    principal = principal_from_headers(websocket.headers)
    if principal is None:
        await websocket.close(code=POLICY_VIOLATION)
        return

    await websocket.accept()
    try:
        await relay.join(ride_id, principal, websocket)
    except CarpoolError as exc:
        await websocket.close(code=POLICY_VIOLATION, reason=exc.code)
        return

    try:
        await websocket.send_json({"type": "subscribed", "ride_id": ride_id})
        while True:
            try:
                data = await websocket.receive_json()
            except json.JSONDecodeError:
                await websocket.send_json(
                    {"type": "error", "error": "invalid_operation", "detail": "Invalid JSON"}
                )
                continue
            await _handle_client_message(websocket, relay, principal, ride_id, data)
    except WebSocketDisconnect:
        pass
    finally:
        relay.leave(ride_id, websocket)


async def _handle_client_message(
    websocket: WebSocket,
    relay: LocationRelay,
    principal: Principal,
    ride_id: int,
    data,
) -> None:
    if not isinstance(data, dict) or data.get("type") != "location-update":
        await websocket.send_json(
            {"type": "error", "error": "invalid_operation", "detail": "Unknown message"}
        )
        return
    try:
        body = LocationUpdateRequest(ride_id=ride_id, **{
            k: data.get(k) for k in ("latitude", "longitude", "speed", "heading")
        })
        await relay.record_sample(
            principal.user_id,
            ride_id,
            body.latitude,
            body.longitude,
            speed=body.speed,
            heading=body.heading,
        )
    except ValidationError:
        await websocket.send_json(
            {"type": "error", "error": "invalid_operation", "detail": "Invalid sample"}
        )
    except CarpoolError as exc:
        await websocket.send_json(
            {"type": "error", "error": exc.code, "detail": exc.detail}
        )
