from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache, partial
from typing import Any

from fastapi import Body, Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from db import PersistError, PostgresStore
from mailer import alert_admin
from models import Transaction
from payhero import PayHeroError, send_stk_push
from payments import PaymentService
from settings import Settings, get_settings, validate_settings
from worker import BackgroundWorker

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("planledger")


class ApiResponse(BaseModel):
    success: bool
    message: str
    data: Any = None


class CallbackTransaction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    external_reference: str = Field(
        min_length=1,
        validation_alias=AliasChoices("external_reference", "ExternalReference"),
    )
    amount: int = Field(validation_alias=AliasChoices("amount", "Amount"))
    phone_number: str = Field(
        default="",
        validation_alias=AliasChoices("phone_number", "Phone", "PhoneNumber"),
    )
    status: str = Field(default="", validation_alias=AliasChoices("status", "Status"))
    created_at: Any = Field(default=None, validation_alias=AliasChoices("created_at", "CreatedAt"))
    mpesa_receipt_number: str = Field(
        default="",
        validation_alias=AliasChoices("mpesa_receipt_number", "MpesaReceiptNumber"),
    )
    checkout_request_id: str = Field(
        default="",
        validation_alias=AliasChoices("checkout_request_id", "CheckoutRequestID"),
    )
    merchant_request_id: str = Field(
        default="",
        validation_alias=AliasChoices("merchant_request_id", "MerchantRequestID"),
    )
    result_code: int = Field(default=0, validation_alias=AliasChoices("result_code", "ResultCode"))
    result_description: str = Field(
        default="",
        validation_alias=AliasChoices("result_description", "ResultDesc"),
    )


class StkRequest(BaseModel):
    external_reference: str = Field(min_length=1)
    amount: int
    phone_number: str = Field(min_length=1)


class PlanStatusResponse(BaseModel):
    user_id: str
    plan: str
    plan_name: str
    price: str
    duration: str
    expiry_timestamp: int
    expire_duration: int
    is_active: bool
    seconds_remaining: int


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def _transaction_from_callback(payload: dict[str, Any], received_at: datetime) -> Transaction:
    body = payload.get("response", payload)
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid request body.")
    try:
        callback = CallbackTransaction.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail="Invalid request body.") from exc
    created_at = _parse_timestamp(callback.created_at)
    if created_at is None:
        if callback.created_at is not None:
            logger.warning(
                "Unparseable created_at %r for %s; using receive time.",
                callback.created_at,
                callback.external_reference,
            )
        created_at = received_at
    return Transaction(
        external_reference=callback.external_reference,
        amount=callback.amount,
        phone_number=callback.phone_number,
        status=callback.status,
        created_at=created_at,
        updated_at=received_at,
        mpesa_receipt_number=callback.mpesa_receipt_number,
        checkout_request_id=callback.checkout_request_id,
        merchant_request_id=callback.merchant_request_id,
        result_code=callback.result_code,
        result_description=callback.result_description,
    )


@lru_cache(maxsize=1)
def get_payments() -> PaymentService:
    settings = get_settings()
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is not set.")
    store = PostgresStore(settings.database_url, timeout_seconds=settings.callback_timeout_seconds)
    worker = BackgroundWorker(
        max_queue=settings.reconcile_queue_size,
        workers=settings.reconcile_workers,
    )
    service = PaymentService(
        store,
        settings.plans,
        worker,
        timeout_seconds=settings.callback_timeout_seconds,
        alert=partial(alert_admin, settings),
    )
    service.start()
    return service


@asynccontextmanager
async def lifespan(_: FastAPI):
    validate_settings(get_settings())
    yield
    if get_payments.cache_info().currsize:
        get_payments().shutdown()


app = FastAPI(title="Plan Ledger Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_settings().cors_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.get("/api/health")
def health_check() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/callback", response_model=ApiResponse)
def payment_callback(
    payload: dict[str, Any] = Body(...),
    payments: PaymentService = Depends(get_payments),
) -> ApiResponse:
    tx = _transaction_from_callback(payload, payments.clock())
    try:
        result = payments.record_callback(tx)
    except PersistError as exc:
        raise HTTPException(status_code=500, detail="Failed to store transaction.") from exc

    if result.duplicate:
        return ApiResponse(
            success=False,
            message=f"A transaction with reference {tx.external_reference} already exists",
            data={"duplicate": True},
        )
    reconcile = result.reconcile
    return ApiResponse(
        success=True,
        message="Transaction stored successfully",
        data={
            "external_reference": tx.external_reference,
            "plan_applied": bool(reconcile and reconcile.applied),
            "reason": reconcile.reason.value if reconcile and reconcile.reason else None,
        },
    )


@app.get("/api/transactions", response_model=ApiResponse)
def list_transactions(payments: PaymentService = Depends(get_payments)) -> ApiResponse:
    try:
        transactions = payments.list_and_reconcile()
    except PersistError as exc:
        raise HTTPException(status_code=500, detail="Failed to load transactions.") from exc
    return ApiResponse(
        success=True,
        message="Transactions retrieved successfully",
        data={
            "transactions": [tx.to_dict() for tx in transactions],
            "count": len(transactions),
        },
    )


@app.get("/api/transactions/{external_reference}", response_model=ApiResponse)
def get_transaction(
    external_reference: str,
    payments: PaymentService = Depends(get_payments),
) -> ApiResponse | JSONResponse:
    try:
        tx = payments.lookup_by_reference(external_reference)
    except PersistError as exc:
        raise HTTPException(status_code=500, detail="Failed to load transaction.") from exc
    if tx is None:
        return JSONResponse(
            status_code=404,
            content=ApiResponse(success=False, message="Transaction not found").model_dump(),
        )
    return ApiResponse(
        success=True,
        message="Transaction retrieved successfully",
        data=tx.to_dict(),
    )


@app.post("/api/payments/stk", response_model=ApiResponse)
def send_stk(
    payload: StkRequest,
    payments: PaymentService = Depends(get_payments),
    settings: Settings = Depends(get_settings),
) -> ApiResponse:
    if payload.amount not in settings.plans:
        raise HTTPException(status_code=400, detail="Unsupported amount.")
    try:
        existing = payments.ledger.find_by_reference(payload.external_reference)
    except PersistError as exc:
        raise HTTPException(status_code=500, detail="Failed to check reference.") from exc
    if existing is not None:
        raise HTTPException(
            status_code=409,
            detail=f"A transaction with reference {payload.external_reference} already exists",
        )
    try:
        gateway = send_stk_push(
            settings,
            external_reference=payload.external_reference,
            amount=payload.amount,
            phone_number=payload.phone_number,
        )
    except PayHeroError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    return ApiResponse(
        success=True,
        message="STK push sent successfully",
        data={"external_reference": payload.external_reference, "data": gateway},
    )


@app.get("/api/users/{user_id}/plan", response_model=PlanStatusResponse)
def plan_status(user_id: str, payments: PaymentService = Depends(get_payments)) -> PlanStatusResponse:
    try:
        user = payments.store.get_user_by_id(user_id)
    except PersistError as exc:
        raise HTTPException(status_code=500, detail="Failed to load user.") from exc
    if user is None:
        raise HTTPException(status_code=404, detail="User not found.")
    now = int(payments.clock().timestamp())
    is_active = user.expiry_timestamp > now
    return PlanStatusResponse(
        user_id=user.id,
        plan=user.plan,
        plan_name=user.plan_name,
        price=user.price,
        duration=user.duration,
        expiry_timestamp=user.expiry_timestamp,
        expire_duration=user.expire_duration,
        is_active=is_active,
        seconds_remaining=max(user.expiry_timestamp - now, 0) if is_active else 0,
    )
