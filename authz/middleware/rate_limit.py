"""
Rate limiting for the administrative and emergency endpoints.

Limits are counted per authenticated user. The token is only peeked at here;
verification still happens in the auth dependency, so a forged subject can at
worst exhaust its own bucket.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from jose import JWTError, jwt
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from authz.exception_handlers import create_error_response
from authz.exceptions import ErrorCode

logger = logging.getLogger(__name__)


def user_or_address(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            subject = jwt.get_unverified_claims(token).get("sub")
        except JWTError:
            subject = None
        if subject:
            return f"user:{subject}"
    return f"addr:{get_remote_address(request)}"


limiter = Limiter(
    key_func=user_or_address,
    storage_uri="memory://",
    headers_enabled=True,
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(f"Rate limit hit on {request.url.path} for {user_or_address(request)}: {exc.detail}")
    response = create_error_response(
        status_code=429,
        message=f"Rate limit exceeded: {exc.detail}",
        error_code=ErrorCode.RATE_LIMIT_EXCEEDED,
        path=request.url.path,
    )
    return request.app.state.limiter._inject_headers(response, request.state.view_rate_limit)


def configure_rate_limiting(app):
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
