"""
Admin / observability endpoints
===============================

GET /api/v1/admin/health    -- simple health check
GET /api/v1/admin/channels  -- open live channels and their subscriber counts
"""

from fastapi import APIRouter, Depends, Request

from carpool.api.dependencies import get_channel_registry
from carpool.api.middleware import limiter
from carpool.api.schemas import ChannelsResponse, HealthResponse
from carpool.realtime.channels import ChannelRegistry

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/channels",
    response_model=ChannelsResponse,
    summary="Live channels open on this process",
)
@limiter.limit("100/minute")
async def get_channels(
    request: Request,
    registry: ChannelRegistry = Depends(get_channel_registry),
):
    return ChannelsResponse(channels=registry.snapshot())


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
