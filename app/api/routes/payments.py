"""
Payment routes: quotes, order preparation, confirmation (webhook + polling),
cancellation, user status updates and order history.
"""
from fastapi import APIRouter, Body, Depends, Header, Query
from pydantic import BaseModel

from app.api.deps import get_coordinator, get_payment_service
from app.services.auth.identity import get_current_user_id
from app.services.payments.confirmation import PaymentConfirmationCoordinator
from app.services.payments.service import PaymentService
from app.services.pricing.service import list_category_quotes, quote

router = APIRouter(prefix="/payments", tags=["payments"])


class PrepareRequest(BaseModel):
    product_type: str  # document / chat / credit
    category: str | None = None
    duration_minutes: int | None = None
    unit: str | None = None


class ConfirmRequest(BaseModel):
    gateway_payment_id: str | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


class StatusUpdateRequest(BaseModel):
    order_id: str
    status: str


@router.get("/quote")
def get_quote(
    product_type: str | None = None,
    category: str | None = None,
    duration_minutes: int | None = None,
    unit: str | None = None,
) -> dict:
    """Single quote, or every option for a category when product_type is omitted."""
    if product_type is None and category:
        return {"quotes": [q.model_dump() for q in list_category_quotes(category)]}
    product_quote = quote(product_type or "", category=category, duration_minutes=duration_minutes, unit=unit)
    return {"quote": product_quote.model_dump()}


@router.post("/prepare")
def prepare_payment(
    body: PrepareRequest = Body(...),
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
) -> dict:
    prepared = service.prepare_payment(
        user_id,
        body.product_type,
        category=body.category,
        duration_minutes=body.duration_minutes,
        unit=body.unit,
    )
    return {"success": True, **prepared.to_dict()}


@router.post("/webhook")
def payment_webhook(
    payload: dict = Body(...),
    x_webhook_secret: str | None = Header(default=None),
    coordinator: PaymentConfirmationCoordinator = Depends(get_coordinator),
) -> dict:
    """Gateway push. Answers success only after the transition is committed."""
    outcome = coordinator.handle_webhook(x_webhook_secret, payload)
    return {"success": True, **outcome.to_dict()}


@router.post("/{payment_id}/confirm")
def confirm_payment(
    payment_id: str,
    body: ConfirmRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    coordinator: PaymentConfirmationCoordinator = Depends(get_coordinator),
) -> dict:
    gateway_payment_id = body.gateway_payment_id if body else None
    outcome = coordinator.poll(payment_id, user_id=user_id, gateway_payment_id=gateway_payment_id)
    return {"success": outcome.confirmed, **outcome.to_dict()}


@router.post("/{payment_id}/cancel")
def cancel_payment(
    payment_id: str,
    body: CancelRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
) -> dict:
    reason = body.reason if body else None
    return {"success": True, **service.cancel_payment(payment_id, user_id, reason=reason)}


@router.put("/status")
def update_status(
    body: StatusUpdateRequest = Body(...),
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
) -> dict:
    return {"success": True, **service.update_status_by_user(body.order_id, user_id, body.status)}


@router.get("/orders")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: str | None = None,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
) -> dict:
    return service.list_orders(user_id, page=page, limit=limit, status=status)


@router.get("/orders/{order_id}")
def get_order(
    order_id: str,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
) -> dict:
    return service.get_order_detail(order_id, user_id)
