from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from inventa.api.responses import respond
from inventa.api.routers import audit_logs, consumables, notifications, procurements, requests, stocks, usage_reports
from inventa.core.errors import ValidationError
from inventa.core.logging import configure_logging
from inventa.db.session import engine
from inventa.schemas.common import Health, Outcome


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    try:
        yield
    finally:
        await engine.dispose()


app = FastAPI(title="Inventa Consumables API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]
    return respond(Outcome.failure(ValidationError("invalid input", detail={"errors": errors})))


app.include_router(consumables.router)
app.include_router(requests.router)
app.include_router(procurements.router)
app.include_router(usage_reports.router)
app.include_router(stocks.router)
app.include_router(notifications.router)
app.include_router(audit_logs.router)


@app.get("/health", response_model=Health)
async def health() -> Health:
    return Health(status="ok", time=datetime.now(timezone.utc))
