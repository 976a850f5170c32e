from typing import Annotated, Optional
import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ptpay.auth import dependencies
from ptpay.core.responses import BatchResponse, StandardResponse
from ptpay.database import get_db
from ptpay.models.user import User
from ptpay.routers.pt_sessions import serialize_session
from ptpay.services.payment_approval_service import PaymentApprovalService

router = APIRouter()


class ApprovePaymentRequest(BaseModel):
    amount: Optional[float] = Field(default=None, gt=0, allow_inf_nan=False)


class BulkApproveRequest(BaseModel):
    session_ids: Optional[list[uuid.UUID]] = None
    # Fail the request with 207 when any session could not be approved
    strict: bool = False


@router.get("/pending", response_model=StandardResponse)
async def list_pending_approvals(
    current_user: Annotated[User, Depends(dependencies.get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    _ = current_user
    return StandardResponse(data=await PaymentApprovalService.list_pending_approvals(db))


@router.post("/{session_id}/approve", response_model=StandardResponse)
async def approve_payment(
    session_id: uuid.UUID,
    request: ApprovePaymentRequest,
    current_user: Annotated[User, Depends(dependencies.get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    outcome = await PaymentApprovalService.approve_payment(db, session_id, current_user, amount=request.amount)
    data = serialize_session(outcome.session)
    data["warning"] = outcome.warning.as_dict() if outcome.warning else None
    return StandardResponse(message=f"Payment of ${outcome.amount:.2f} approved", data=data)


@router.post("/bulk-approve", response_model=BatchResponse)
async def bulk_approve_payments(
    request: BulkApproveRequest,
    current_user: Annotated[User, Depends(dependencies.get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    result = await PaymentApprovalService.bulk_approve_payment(db, current_user, session_ids=request.session_ids)
    if request.strict:
        result.raise_for_errors()
    return BatchResponse(
        message=f"Approved {len(result.approved)} payments totalling ${result.total_amount:.2f}",
        data=result.as_dict(),
        errors=result.errors,
        warnings=result.warnings,
    )


@router.get("/reconciliation", response_model=StandardResponse)
async def reconcile_package_usage(
    current_user: Annotated[User, Depends(dependencies.get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    _ = current_user
    mismatches = await PaymentApprovalService.reconcile_package_usage(db)
    return StandardResponse(data=mismatches, message=f"{len(mismatches)} package(s) out of sync")
