import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.db import settings
from app.errors import MeteringError
from app.observability import RequestLoggingMiddleware, request_context
from app.routers import (
    commissions,
    credits,
    features,
    invoices,
    subscriptions,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="WoofAdaar Metering API")

ALLOWED_ORIGINS = [
    # Dev - Next
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    # Prod
    "https://woofadaar.com",
    "https://www.woofadaar.com",
]

cors_origins = settings.CORS_ALLOWED_ORIGINS_LIST or ALLOWED_ORIGINS

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_methods=["*"], allow_headers=["*"], allow_credentials=True,
)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(MeteringError)
async def metering_error_handler(request: Request, exc: MeteringError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "validation_error", "message": "Invalid request", "errors": errors},
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error %s", request_context(request))
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "internal_error", "message": "Internal server error"},
    )


@app.get("/health")
def health(): return {"ok": True}

app.include_router(features.router)
app.include_router(credits.router)
app.include_router(commissions.router)
app.include_router(subscriptions.router)
app.include_router(invoices.router)
