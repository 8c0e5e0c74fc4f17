"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error mapping) lives here; every sub-router
imports what it needs from this package.
"""

import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from huntschedule.services.errors import BookingError, ErrorCode, ErrorKind

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
if IS_TEST_ENV:
    limiter = Limiter(key_func=get_remote_address)

    def no_op_limit(*args, **kwargs):
        """No-op decorator for test mode - doesn't apply any rate limiting."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = lambda *args, **kwargs: no_op_limit()
else:
    limiter = Limiter(key_func=get_remote_address)

# ---------------------------------------------------------------------------
# Booking error -> HTTP status
# ---------------------------------------------------------------------------
STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.UNAVAILABLE: 503,
}


def http_error(error: BookingError) -> HTTPException:
    """Translate a booking error into an HTTPException carrying its code and params."""
    status_code = 403 if error.code == ErrorCode.NOT_AUTHORIZED else STATUS_BY_KIND.get(error.kind, 400)
    return HTTPException(
        status_code=status_code,
        detail={"code": error.code, "message": error.message, "params": error.params},
    )


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from huntschedule.api.routes.requests import router as requests_router  # noqa: E402
from huntschedule.api.routes.points import router as points_router  # noqa: E402
from huntschedule.api.routes.claims import router as claims_router  # noqa: E402
from huntschedule.api.routes.catalog import router as catalog_router  # noqa: E402
from huntschedule.api.routes.characters import router as characters_router  # noqa: E402

router = APIRouter()
router.include_router(requests_router)
router.include_router(points_router)
router.include_router(claims_router)
router.include_router(catalog_router)
router.include_router(characters_router)
