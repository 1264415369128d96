"""
Per-request service wiring. Every service gets the request's DB session;
nothing business-related is a module-level singleton.
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.services.artifacts.service import ArtifactService
from app.services.credits.service import TimeCreditService
from app.services.generation.base import ContentGenerator
from app.services.generation.factory import get_content_generator
from app.services.payments.confirmation import PaymentConfirmationCoordinator
from app.services.payments.gateway import PortOneGateway
from app.services.payments.service import PaymentService
from app.services.result_tokens.service import ResultTokenService
from app.services.results.service import ResultService
from app.services.sessions.extension import SessionExtensionService
from app.services.sessions.factory import SessionFactory
from app.services.sessions.service import SessionService


def get_gateway() -> PortOneGateway:
    return PortOneGateway()


def get_generator() -> ContentGenerator:
    return get_content_generator()


def get_token_service() -> ResultTokenService:
    return ResultTokenService()


def get_coordinator(
    db: Session = Depends(get_db),
    gateway: PortOneGateway = Depends(get_gateway),
) -> PaymentConfirmationCoordinator:
    return PaymentConfirmationCoordinator(db, gateway)


def get_payment_service(
    db: Session = Depends(get_db),
    tokens: ResultTokenService = Depends(get_token_service),
) -> PaymentService:
    return PaymentService(db, tokens=tokens)


def get_session_factory(
    db: Session = Depends(get_db),
    coordinator: PaymentConfirmationCoordinator = Depends(get_coordinator),
    tokens: ResultTokenService = Depends(get_token_service),
) -> SessionFactory:
    return SessionFactory(db, coordinator, tokens)


def get_session_service(db: Session = Depends(get_db)) -> SessionService:
    return SessionService(db)


def get_extension_service(
    db: Session = Depends(get_db),
    coordinator: PaymentConfirmationCoordinator = Depends(get_coordinator),
) -> SessionExtensionService:
    return SessionExtensionService(db, coordinator)


def get_credit_service(db: Session = Depends(get_db)) -> TimeCreditService:
    return TimeCreditService(db)


def get_artifact_service(
    db: Session = Depends(get_db),
    generator: ContentGenerator = Depends(get_generator),
) -> ArtifactService:
    return ArtifactService(db, generator)


def get_result_service(
    db: Session = Depends(get_db),
    artifacts: ArtifactService = Depends(get_artifact_service),
    tokens: ResultTokenService = Depends(get_token_service),
) -> ResultService:
    return ResultService(db, artifacts, tokens)
