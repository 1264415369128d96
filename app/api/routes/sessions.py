"""
Session routes: creation (one-shot / interactive), state, time use, regeneration
and time-credit purchases.
"""
import logging

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field

from app.api.deps import (
    get_artifact_service,
    get_credit_service,
    get_extension_service,
    get_session_factory,
    get_session_service,
)
from app.core.errors import ArtifactGenerationFailure, ValidationFailure
from app.models.session import SessionMode
from app.services.artifacts.service import ArtifactService
from app.services.auth.identity import get_current_user_id
from app.services.credits.service import TimeCreditService
from app.services.sessions.extension import SessionExtensionService
from app.services.sessions.factory import SessionFactory
from app.services.sessions.service import SessionService

router = APIRouter(tags=["sessions"])
logger = logging.getLogger(__name__)


class CreateSessionRequest(BaseModel):
    mode: str = SessionMode.INTERACTIVE
    category: str
    form_type: str | None = None
    user_input: str | None = None
    user_data: dict | None = None
    payment_id: str | None = None
    gateway_payment_id: str | None = None
    duration_minutes: int | None = None
    use_free_allowance: bool = False


class InteractionRequest(BaseModel):
    role: str = Field(pattern="^(user|assistant)$")
    content: str = Field(min_length=1)
    elapsed_seconds: int = Field(default=0, ge=0)


class PurchaseCreditRequest(BaseModel):
    unit: str
    payment_id: str
    session_id: str | None = None
    gateway_payment_id: str | None = None


@router.post("/sessions")
def create_session(
    body: CreateSessionRequest = Body(...),
    user_id: str = Depends(get_current_user_id),
    factory: SessionFactory = Depends(get_session_factory),
    artifacts: ArtifactService = Depends(get_artifact_service),
) -> dict:
    if body.mode == SessionMode.ONE_SHOT:
        creation = factory.create_one_shot_session(
            user_id,
            body.category,
            body.user_input,
            body.user_data,
            body.payment_id,
            gateway_payment_id=body.gateway_payment_id,
            form_type=body.form_type,
        )
        response = {"success": True, **creation.to_dict()}
        if artifacts.artifact_for_session(creation.session.id) is None:
            try:
                artifact = artifacts.generate_for_session(creation.session)
            except ArtifactGenerationFailure:
                # Session stays committed; retry generation in the background
                _enqueue_regeneration(creation.session.id)
                raise
            response["artifact_id"] = artifact.id
        return response
    if body.mode == SessionMode.INTERACTIVE:
        creation = factory.create_interactive_session(
            user_id,
            body.category,
            form_type=body.form_type,
            duration_minutes=body.duration_minutes,
            payment_id=body.payment_id,
            gateway_payment_id=body.gateway_payment_id,
            use_free_allowance=body.use_free_allowance,
            user_input=body.user_input,
            user_data=body.user_data,
        )
        return {"success": True, **creation.to_dict()}
    raise ValidationFailure(f"unknown session mode: {body.mode}", code="INVALID_MODE")


@router.get("/sessions/{session_id}")
def get_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    sessions: SessionService = Depends(get_session_service),
) -> dict:
    session = sessions.get_owned_session(session_id, user_id)
    data = SessionService.to_dict(session)
    data["needs_payment_prompt"] = sessions.is_live(session) and sessions.needs_payment_prompt(session)
    return data


@router.post("/sessions/{session_id}/interactions")
def record_interaction(
    session_id: str,
    body: InteractionRequest = Body(...),
    user_id: str = Depends(get_current_user_id),
    sessions: SessionService = Depends(get_session_service),
) -> dict:
    session = sessions.get_owned_session(session_id, user_id)
    if body.elapsed_seconds:
        session = sessions.consume_time(session, body.elapsed_seconds)
    elif not sessions.is_live(session):
        raise ValidationFailure("session is no longer active", code="SESSION_EXPIRED")
    sessions.record_interaction(session, body.role, body.content)
    sessions.db.commit()
    data = SessionService.to_dict(session)
    data["needs_payment_prompt"] = sessions.needs_payment_prompt(session)
    return data


@router.post("/sessions/{session_id}/regenerate")
def regenerate_artifact(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    sessions: SessionService = Depends(get_session_service),
    artifacts: ArtifactService = Depends(get_artifact_service),
) -> dict:
    session = sessions.get_owned_session(session_id, user_id)
    artifact = artifacts.regenerate(session)
    return {"success": True, "artifact": ArtifactService.to_dict(artifact)}


@router.post("/credits/purchase")
def purchase_credit(
    body: PurchaseCreditRequest = Body(...),
    user_id: str = Depends(get_current_user_id),
    extension: SessionExtensionService = Depends(get_extension_service),
) -> dict:
    purchase = extension.purchase_credit(
        user_id,
        body.unit,
        body.payment_id,
        session_id=body.session_id,
        gateway_payment_id=body.gateway_payment_id,
    )
    return {"success": True, **purchase.to_dict()}


@router.get("/credits/today")
def credits_today(
    user_id: str = Depends(get_current_user_id),
    credits: TimeCreditService = Depends(get_credit_service),
) -> dict:
    return credits.summary(user_id)


def _enqueue_regeneration(session_id: str) -> None:
    from app.workers.tasks.regenerate_artifact import regenerate_artifact

    try:
        regenerate_artifact.delay(session_id)
    except Exception:
        logger.exception("regenerate_artifact_enqueue_failed", extra={"session_id": session_id})
