import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

# Limit strings per tier, filled from Settings by configure_limiter
_tiers = {
    "api": "100 per 15 minutes",
    "auth": "10 per 15 minutes",
    "otp": "5 per 15 minutes",
}


def _tier(name: str):
    return lambda: _tiers[name]


# Counters live in process memory, per client IP
limiter = Limiter(key_func=get_remote_address)

# Every /api route carries api_limit; auth and OTP routes stack their own tier on top.
# Limits are attached per route so they do not depend on middleware route lookup.
api_limit = limiter.shared_limit(_tier("api"), scope="api")
auth_limit = limiter.shared_limit(_tier("auth"), scope="auth")
otp_limit = limiter.shared_limit(_tier("otp"), scope="otp")


def configure_limiter(settings):
    _tiers.update({
        "api": settings.api_rate_limit,
        "auth": settings.auth_rate_limit,
        "otp": settings.otp_rate_limit,
    })
    limiter.enabled = settings.rate_limit_enabled
    limiter.reset()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)} on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=429,
        content={"message": "Too many requests, please try again later."},
    )
