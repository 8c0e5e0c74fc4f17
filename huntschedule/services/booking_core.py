"""
Booking core: the stable, transport-independent entry points.

Each operation runs in its own session and transaction. On success the
transaction commits and the caller gets ServiceResult.ok(data); on any
failure it rolls back completely and the caller gets ServiceResult.fail()
with kind not_found, validation, conflict or unavailable. Nothing expected
escapes as an exception.
"""

from typing import Awaitable, Callable, Optional
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from huntschedule.database import db
from huntschedule.services import point_service, request_service, respawn_copy_service
from huntschedule.services.character_validator import TibiaDataValidator
from huntschedule.services.conflict_arbiter import RequestDraft
from huntschedule.services.context import CallerContext
from huntschedule.services.errors import BookingError, ErrorCode, ServiceResult, UnavailableError
import logging

logger = logging.getLogger(__name__)

Operation = Callable[[AsyncSession], Awaitable]


# PostgreSQL aborts one side of a deadlock or serialization failure; the work is safe to retry
RETRYABLE_SQLSTATES = {"40P01", "40001"}


def _sqlstate(error: Exception) -> Optional[str]:
    orig = getattr(error, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def is_retryable(error: Exception) -> bool:
    return isinstance(error, DBAPIError) and _sqlstate(error) in RETRYABLE_SQLSTATES


def _is_unavailable(error: Exception) -> bool:
    if isinstance(error, (OperationalError, InterfaceError, ConnectionError, OSError)):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


async def run_operation(
    name: str,
    operation: Operation,
    session_factory: Optional[async_sessionmaker] = None,
) -> ServiceResult:
    """
    Run one core operation as a single unit of work.

    Args:
        name: Operation name used in log lines
        operation: Coroutine function taking the session and returning the result data
        session_factory: Session maker to use (defaults to db.AsyncSessionLocal)

    Returns:
        ServiceResult
    """
    factory = session_factory or db.AsyncSessionLocal
    try:
        async with factory() as session:
            try:
                data = await operation(session)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    except BookingError as e:
        logger.info(f"{name} failed: {e.kind}/{e.code} {e.params}")
        return ServiceResult.fail(e)
    except Exception as e:
        if is_retryable(e):
            logger.warning(f"{name} aborted by the database, retryable: {e}")
            return ServiceResult.fail(
                UnavailableError(
                    ErrorCode.TRANSACTION_RETRY,
                    "The operation collided with a concurrent change, please retry",
                    {"sqlstate": _sqlstate(e)},
                )
            )
        if not _is_unavailable(e):
            raise
        logger.error(f"{name} failed, storage unavailable: {e}")
        return ServiceResult.fail(
            UnavailableError(ErrorCode.STORAGE_UNAVAILABLE, "Storage is temporarily unavailable, please retry")
        )
    return ServiceResult.ok(data)


async def create_request(
    caller: CallerContext,
    draft: RequestDraft,
    validator: Optional[TibiaDataValidator] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> ServiceResult:
    return await run_operation(
        "create_request",
        lambda session: request_service.create_request(session, caller, draft, validator),
        session_factory,
    )


async def approve_request(
    caller: CallerContext, request_id: int, session_factory: Optional[async_sessionmaker] = None
) -> ServiceResult:
    return await run_operation(
        "approve_request",
        lambda session: request_service.approve_request(session, caller, request_id),
        session_factory,
    )


async def reject_request(
    caller: CallerContext,
    request_id: int,
    reason: Optional[str] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> ServiceResult:
    return await run_operation(
        "reject_request",
        lambda session: request_service.reject_request(session, caller, request_id, reason),
        session_factory,
    )


async def cancel_request(
    caller: CallerContext, request_id: int, session_factory: Optional[async_sessionmaker] = None
) -> ServiceResult:
    return await run_operation(
        "cancel_request",
        lambda session: request_service.cancel_request(session, caller, request_id),
        session_factory,
    )


async def list_requests(
    server_id: Optional[int] = None,
    period_id: Optional[int] = None,
    status: Optional[str] = None,
    user_id: Optional[int] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> ServiceResult:
    return await run_operation(
        "list_requests",
        lambda session: request_service.list_requests(
            session, server_id=server_id, period_id=period_id, status=status, user_id=user_id
        ),
        session_factory,
    )


async def debit_points(
    caller: CallerContext,
    user_id: int,
    amount: int,
    reason: str,
    related_request_id: Optional[int] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> ServiceResult:
    """Admin debit outside of a request flow."""

    async def _debit(session: AsyncSession):
        caller.require_admin("debit points")
        return await point_service.debit(
            session, user_id, amount, reason, related_request_id=related_request_id, admin_id=caller.user_id
        )

    return await run_operation("debit_points", _debit, session_factory)


async def credit_points(
    caller: CallerContext,
    user_id: int,
    amount: int,
    reason: str,
    related_request_id: Optional[int] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> ServiceResult:
    """Admin credit outside of a request flow."""

    async def _credit(session: AsyncSession):
        caller.require_admin("credit points")
        return await point_service.credit(
            session, user_id, amount, reason, related_request_id=related_request_id, admin_id=caller.user_id
        )

    return await run_operation("credit_points", _credit, session_factory)


async def copy_respawns(
    caller: CallerContext,
    source_server_id: int,
    target_server_id: int,
    overwrite_existing: bool = False,
    session_factory: Optional[async_sessionmaker] = None,
) -> ServiceResult:
    async def _copy(session: AsyncSession):
        caller.require_admin("copy respawns")
        return await respawn_copy_service.copy_respawns(
            session, source_server_id, target_server_id, overwrite_existing
        )

    return await run_operation("copy_respawns", _copy, session_factory)
