import asyncio
import logging
from datetime import datetime, timedelta, timezone
import uuid

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from ptpay.config import settings
from ptpay.auth import router as auth_router
from ptpay.routers.pt_sessions import router as pt_sessions_router
from ptpay.routers.payments import router as payments_router
from ptpay.routers.payslips import router as payslips_router
from ptpay.routers.earnings import router as earnings_router
from ptpay.core import exceptions
from ptpay.database import AsyncSessionLocal
from ptpay.services.payslip_automation_service import PayslipAutomationService
from ptpay.services.timezone_service import get_gym_timezone

logger = logging.getLogger(__name__)
payslip_scheduler_task: asyncio.Task | None = None

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json"
)

# CORS must be added before other middleware
configured_origins = [str(origin).rstrip("/") for origin in settings.BACKEND_CORS_ORIGINS]
default_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
allow_origins = configured_origins if settings.APP_ENV == "production" else list(dict.fromkeys([*default_origins, *configured_origins]))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def attach_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response

# Exception Handlers
app.add_exception_handler(RequestValidationError, exceptions.validation_exception_handler)  # type: ignore
app.add_exception_handler(IntegrityError, exceptions.integrity_exception_handler)  # type: ignore
app.add_exception_handler(exceptions.PTPayrollError, exceptions.domain_exception_handler)  # type: ignore

# Routers
app.include_router(auth_router.router, prefix=f"{settings.API_V1_STR}/auth", tags=["Auth"])
app.include_router(pt_sessions_router, prefix=f"{settings.API_V1_STR}/pt-sessions", tags=["PT Sessions"])
app.include_router(payments_router, prefix=f"{settings.API_V1_STR}/payments", tags=["Payments"])
app.include_router(payslips_router, prefix=f"{settings.API_V1_STR}/payslips", tags=["Payslips"])
app.include_router(earnings_router, prefix=f"{settings.API_V1_STR}/earnings", tags=["Earnings"])

@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.get("/healthz")
async def healthz():
    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.exception("Health check failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="database unavailable",
        ) from exc
    return {"status": "ok", "database": "ok"}


def _seconds_until_next_run(now_utc: datetime) -> float:
    now_local = now_utc.astimezone(get_gym_timezone())
    target_local = now_local.replace(
        hour=settings.PAYSLIP_AUTO_HOUR_LOCAL,
        minute=settings.PAYSLIP_AUTO_MINUTE_LOCAL,
        second=0,
        microsecond=0,
    )
    if now_local >= target_local:
        target_local += timedelta(days=1)
    return max((target_local.astimezone(timezone.utc) - now_utc).total_seconds(), 1.0)


async def _run_payslip_scheduler_once() -> None:
    now_utc = datetime.now(timezone.utc)
    if not PayslipAutomationService.is_generation_day(now_utc):
        return
    # Overlapping runs are harmless: existing payslips are skipped.
    async with AsyncSessionLocal() as db:
        summary = await PayslipAutomationService.run(db, reason="scheduled_monthly")
    logger.info(
        "Payslip scheduler run complete: period=%02d/%s coaches=%s created=%s skipped=%s errors=%s",
        summary["month"],
        summary["year"],
        summary["coaches_scanned"],
        summary["created"],
        summary["skipped"],
        len(summary["errors"]),
    )


async def _payslip_scheduler_loop() -> None:
    while True:
        delay = _seconds_until_next_run(datetime.now(timezone.utc))
        await asyncio.sleep(delay)
        try:
            await _run_payslip_scheduler_once()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Payslip scheduler iteration failed")


@app.on_event("startup")
async def startup_payslip_scheduler() -> None:
    global payslip_scheduler_task
    _validate_security_settings()
    if not settings.PAYSLIP_AUTO_ENABLED:
        logger.info("Payslip auto scheduler disabled by config")
        return
    if payslip_scheduler_task and not payslip_scheduler_task.done():
        return
    payslip_scheduler_task = asyncio.create_task(_payslip_scheduler_loop())
    logger.info(
        "Payslip scheduler started (day=%s hour=%s minute=%s tz=%s)",
        settings.PAYSLIP_AUTO_DAY,
        settings.PAYSLIP_AUTO_HOUR_LOCAL,
        settings.PAYSLIP_AUTO_MINUTE_LOCAL,
        settings.GYM_TIMEZONE,
    )


@app.on_event("shutdown")
async def shutdown_payslip_scheduler() -> None:
    global payslip_scheduler_task
    if payslip_scheduler_task and not payslip_scheduler_task.done():
        payslip_scheduler_task.cancel()
        try:
            await payslip_scheduler_task
        except asyncio.CancelledError:
            pass
    payslip_scheduler_task = None


def _validate_security_settings() -> None:
    if settings.APP_ENV != "production":
        return

    errors: list[str] = []
    if len(settings.SECRET_KEY.strip()) < 24:
        errors.append("SECRET_KEY must be at least 24 characters in production.")
    if not settings.BACKEND_CORS_ORIGINS:
        errors.append("BACKEND_CORS_ORIGINS must be explicitly configured in production.")
    if not 1 <= settings.PAYSLIP_AUTO_DAY <= 28:
        errors.append("PAYSLIP_AUTO_DAY must be between 1 and 28.")

    if errors:
        raise RuntimeError("; ".join(errors))
