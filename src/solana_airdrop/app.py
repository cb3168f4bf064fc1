"""
FastAPI app exposing the airdrop endpoint.

POST /api/airdrop {"walletAddress": "..."} sends the configured amount of the
token to that wallet. OPTIONS answers CORS pre-flight; anything else is 405.
Every response carries the CORS headers.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool

from .airdrop import AirdropOutcome, AirdropService, OutcomeKind
from .config import Settings
from .project_constants import AIRDROP_ROUTE, CORS_HEADERS

log = logging.getLogger(__name__)


class AirdropResponse(BaseModel):
    """Response envelope shared by every outcome of the airdrop endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    status: str = Field(..., description="sent | test | rejected | failed")
    message: str
    signature: str | None = None
    wallet_address: str | None = Field(None, alias="walletAddress")
    mode: str | None = None
    error: str | None = Field(None, description="Machine-readable error code")
    details: str | None = None
    retryable: bool | None = None

    @classmethod
    def from_outcome(cls, outcome: AirdropOutcome) -> "AirdropResponse":
        if outcome.kind is OutcomeKind.SENT:
            return cls(success=True, status="sent", message=outcome.message,
                       signature=outcome.signature)
        if outcome.kind is OutcomeKind.TEST_MODE:
            return cls(success=True, status="test", message=outcome.message,
                       walletAddress=outcome.wallet_address, mode="test")
        return cls(
            success=False,
            status="rejected" if outcome.kind.http_status < 500 else "failed",
            message=outcome.message,
            error=outcome.kind.value,
            signature=outcome.signature,
            details=outcome.details,
            retryable=outcome.retryable,
        )


def _json(status_code: int, body: AirdropResponse) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content=body.model_dump(by_alias=True, exclude_none=True)
    )


def create_app(
    settings: Settings | None = None, service: AirdropService | None = None
) -> FastAPI:
    if service is None:
        service = AirdropService.from_settings(settings or Settings.from_env())
    settings = service.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        service.close()

    app = FastAPI(title="solana-airdrop", lifespan=lifespan)
    app.state.service = service

    # Starlette's CORSMiddleware skips requests without an Origin header and
    # answers pre-flight itself with a body; these headers go on every response.
    @app.middleware("http")
    async def add_cors_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.api_route(
        AIRDROP_ROUTE, methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    )
    async def airdrop(request: Request) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=200)
        if request.method != "POST":
            return _json(
                405,
                AirdropResponse(success=False, status="rejected",
                                message="Method not allowed", error="method_not_allowed"),
            )

        wallet_address = await _read_wallet_address(request)
        outcome = await run_in_threadpool(service.claim, wallet_address)
        return _json(outcome.kind.http_status, AirdropResponse.from_outcome(outcome))

    @app.get("/healthz")
    def healthz() -> dict[str, Any]:
        operator = service.operator
        return {
            "ok": not settings.missing() and service.config_error is None,
            "mode": "test" if settings.test_mode else settings.mode,
            "operator": str(operator) if operator else None,
            "token_mint": settings.token_mint,
            "claims": len(service.claims),
        }

    return app


async def _read_wallet_address(request: Request) -> object:
    body = await request.body()
    if not body:
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        log.debug("Airdrop request body is not JSON")
        return None
    if not isinstance(payload, dict):
        return None
    return payload.get("walletAddress")
