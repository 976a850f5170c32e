from typing import Annotated
import uuid

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ptpay.auth import dependencies
from ptpay.core.responses import BatchResponse, StandardResponse
from ptpay.database import get_db
from ptpay.models.enums import ADMIN_ROLES
from ptpay.models.user import User
from ptpay.services.payslip_automation_service import PayslipAutomationService
from ptpay.services.payslip_ledger_service import PayslipLedgerService
from ptpay.services.payslip_service import PayslipService, serialize_payslip

router = APIRouter()


class PayslipGenerateRequest(BaseModel):
    coach_id: uuid.UUID
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)


class PeriodRequest(BaseModel):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)


class AutomationRunRequest(BaseModel):
    month: int | None = Field(default=None, ge=1, le=12)
    year: int | None = Field(default=None, ge=2000, le=2100)


class DeductionCreate(BaseModel):
    description: str = Field(..., max_length=200)
    amount: float = Field(..., gt=0, allow_inf_nan=False)


class CPFUpdate(BaseModel):
    amount: float = Field(..., ge=0, allow_inf_nan=False)


@router.post("/generate", response_model=StandardResponse)
async def generate_payslip(
    request: PayslipGenerateRequest,
    current_user: Annotated[User, Depends(dependencies.get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    payslip = await PayslipService.generate_payslip(
        db, request.coach_id, request.month, request.year, actor_id=current_user.id
    )
    return StandardResponse(
        message=f"Payslip generated for {request.month}/{request.year}",
        data=serialize_payslip(payslip),
    )


@router.post("/bulk-generate", response_model=BatchResponse)
async def bulk_generate_payslips(
    request: PeriodRequest,
    current_user: Annotated[User, Depends(dependencies.get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    result = await PayslipAutomationService.bulk_generate(
        db, request.month, request.year, actor_id=current_user.id
    )
    return BatchResponse(
        message=f"Created {result.created} payslips, skipped {result.skipped}",
        data=result.as_dict(),
        errors=result.errors,
    )


@router.get("/", response_model=StandardResponse)
async def list_payslips(
    month: int,
    year: int,
    current_user: Annotated[User, Depends(dependencies.get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    _ = current_user
    rows = await PayslipService.list_for_period(db, month, year)
    return StandardResponse(data=[serialize_payslip(payslip, user) for payslip, user in rows])


@router.get("/overview", response_model=StandardResponse)
async def payslip_overview(
    month: int,
    year: int,
    current_user: Annotated[User, Depends(dependencies.get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    _ = current_user
    return StandardResponse(data=await PayslipService.period_overview(db, month, year))


@router.get("/me", response_model=StandardResponse)
async def my_payslips(
    current_user: Annotated[User, Depends(dependencies.get_current_coach)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    payslips = await PayslipService.list_for_coach(db, current_user.id)
    return StandardResponse(data=[serialize_payslip(p) for p in payslips])


@router.get("/automation/status", response_model=StandardResponse)
async def get_payslip_automation_status(
    current_user: Annotated[User, Depends(dependencies.get_current_admin)],
):
    _ = current_user
    return StandardResponse(data=PayslipAutomationService.status())


@router.post("/automation/run", response_model=StandardResponse)
async def run_payslip_automation(
    request: AutomationRunRequest,
    current_user: Annotated[User, Depends(dependencies.get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    if (request.month is None) != (request.year is None):
        raise HTTPException(status_code=400, detail="month and year must be provided together")
    summary = await PayslipAutomationService.run(
        db, month=request.month, year=request.year, actor_id=current_user.id, reason="manual"
    )
    return StandardResponse(message="Payslip automation run completed", data=summary)


@router.get("/{payslip_id}", response_model=StandardResponse)
async def get_payslip(
    payslip_id: uuid.UUID,
    current_user: Annotated[User, Depends(dependencies.get_current_coach)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    payslip = await PayslipService.get_payslip(db, payslip_id)
    if current_user.role not in ADMIN_ROLES and payslip.user_id != current_user.id:
        raise HTTPException(status_code=403, detail="Cannot view other user's payslip")
    return StandardResponse(data=serialize_payslip(payslip))


@router.patch("/{payslip_id}/status", response_model=StandardResponse)
async def toggle_payslip_status(
    payslip_id: uuid.UUID,
    current_user: Annotated[User, Depends(dependencies.get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    payslip = await PayslipLedgerService.toggle_status(db, payslip_id, current_user.id)
    return StandardResponse(message=f"Payslip marked as {payslip.status.value}", data=serialize_payslip(payslip))


@router.post("/{payslip_id}/deductions", response_model=StandardResponse)
async def add_payslip_deduction(
    payslip_id: uuid.UUID,
    request: DeductionCreate,
    current_user: Annotated[User, Depends(dependencies.get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    payslip = await PayslipLedgerService.add_deduction(
        db, payslip_id, request.description, request.amount, current_user.id
    )
    return StandardResponse(message="Deduction added", data=serialize_payslip(payslip))


@router.patch("/{payslip_id}/cpf", response_model=StandardResponse)
async def update_payslip_cpf(
    payslip_id: uuid.UUID,
    request: CPFUpdate,
    current_user: Annotated[User, Depends(dependencies.get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    payslip = await PayslipLedgerService.update_cpf(db, payslip_id, request.amount, current_user.id)
    return StandardResponse(message="CPF contribution updated", data=serialize_payslip(payslip))


@router.delete("/{payslip_id}", response_model=StandardResponse)
async def delete_payslip(
    payslip_id: uuid.UUID,
    current_user: Annotated[User, Depends(dependencies.get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await PayslipService.delete_payslip(db, payslip_id, current_user.id)
    return StandardResponse(message="Payslip deleted")
