"""
Operator routes, guarded by X-Admin-Key.
"""
from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.services.auth.identity import require_admin
from app.services.payments.ledger import OrderPaymentLedger
from app.services.sessions.extension import SessionExtensionService
from app.services.sessions.service import SessionService

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class OrderStatusRequest(BaseModel):
    status: str


class ExtendRequest(BaseModel):
    seconds: int = Field(gt=0)


@router.put("/orders/{order_id}/status")
def set_order_status(
    order_id: str,
    body: OrderStatusRequest = Body(...),
    db: Session = Depends(get_db),
) -> dict:
    """E.g. REFUNDED after a refund was issued at the gateway. Order and payment change together."""
    result = OrderPaymentLedger(db).update_status(order_id, body.status, source="admin")
    db.commit()
    return {"order_id": result.order.id, "order_status": result.order.status, "payment_status": result.payment.status}


@router.post("/sessions/expire")
def expire_sessions(db: Session = Depends(get_db)) -> dict:
    closed = SessionService(db).expire_stale()
    db.commit()
    return {"expired": closed}


@router.post("/sessions/{session_id}/extend")
def extend_session(
    session_id: str,
    body: ExtendRequest = Body(...),
    db: Session = Depends(get_db),
) -> dict:
    session = SessionExtensionService(db).extend_session(session_id, body.seconds)
    return {"success": True, "session": SessionService.to_dict(session)}
