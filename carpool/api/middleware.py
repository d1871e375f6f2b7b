"""Rate limiting (slowapi) and the JSON handler for domain errors."""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from carpool.config import settings
from carpool.domain.errors import CarpoolError


def get_user_or_ip(request: Request) -> str:
    """Rate limit per gateway-resolved user when present, otherwise per IP."""
    user_id = request.headers.get("X-User-Id")
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(key_func=get_user_or_ip, enabled=settings.rate_limit_enabled)


async def carpool_error_handler(request: Request, exc: CarpoolError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content={"error": exc.code, "detail": exc.detail},
    )
