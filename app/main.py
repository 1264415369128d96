"""
Main FastAPI application for the session billing API.
Serves payments, sessions, credits, results, admin, health and metrics.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import admin, health, payments, results, sessions
from app.core.config import settings
from app.core.errors import BillingError
from app.core.logging import configure_logging
from app.utils.metrics import router as metrics_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Session Billing API",
    description="Payment-gated sessions, time credits and result tokens",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    level = logging.WARNING if exc.status_code >= 500 else logging.INFO
    logger.log(
        level,
        "request_failed",
        extra={"path": request.url.path, "method": request.method, "status_code": exc.status_code,
               "error_code": exc.code},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(payments.router)
app.include_router(sessions.router)
app.include_router(results.router)
app.include_router(admin.router)
app.include_router(metrics_router)
