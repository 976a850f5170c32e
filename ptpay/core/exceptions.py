from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError


class PTPayrollError(Exception):
    """Base class for domain failures surfaced to the caller."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PTPayrollError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(PTPayrollError):
    status_code = status.HTTP_404_NOT_FOUND


class PermissionDeniedError(PTPayrollError):
    status_code = status.HTTP_403_FORBIDDEN


class InvalidTransitionError(PTPayrollError):
    """The session is not in a state that allows the requested move."""

    status_code = status.HTTP_409_CONFLICT


class DuplicateError(PTPayrollError):
    status_code = status.HTTP_409_CONFLICT


class ProfileMissingError(PTPayrollError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class PartialBatchError(PTPayrollError):
    """Raised on demand by a bulk result that finished with failed items.

    The batch itself has already run to completion; ``outcomes`` holds the
    per-item entries so callers can report them.
    """

    status_code = status.HTTP_207_MULTI_STATUS

    def __init__(self, message: str, outcomes: list[dict[str, Any]]):
        super().__init__(message)
        self.outcomes = outcomes


class ConsistencyWarning(UserWarning):
    """A payment was approved but its package counter could not be updated.

    Never raised. Logged and returned on the approval outcome so the
    package reconciliation report can pick the package up later.
    """

    def __init__(self, session_id: Any, package_id: Any, reason: str):
        super().__init__(f"session {session_id}: package {package_id} not updated ({reason})")
        self.session_id = session_id
        self.package_id = package_id
        self.reason = reason

    def as_dict(self) -> dict[str, str]:
        return {
            "session_id": str(self.session_id),
            "package_id": str(self.package_id),
            "reason": self.reason,
        }


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_encoder(exc.errors()), "message": "Validation Error", "request_id": request_id},
    )

async def integrity_exception_handler(request: Request, exc: IntegrityError):
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": "Database conflict. A record with this identifier likely already exists.", "request_id": request_id},
    )

async def domain_exception_handler(request: Request, exc: PTPayrollError):
    request_id = getattr(request.state, "request_id", None)
    content: dict[str, Any] = {"detail": exc.message, "success": False, "request_id": request_id}
    if isinstance(exc, PartialBatchError):
        content["outcomes"] = jsonable_encoder(exc.outcomes)
    return JSONResponse(status_code=exc.status_code, content=content)
