from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings
from .errors import ClaimError, ConfigError
from .payment import PaymentStore
from .rpc import RpcClient
from .schemas import ClaimResponse, ErrorResponse, parse_claim_request
from .service import ClaimService
from .signer import SecretProvider

log = logging.getLogger("server")


def error_response(code: str, message: str, status_code: int) -> JSONResponse:
    body = ErrorResponse(error=code, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def create_app(
    settings: Optional[Settings] = None,
    secret_provider: Optional[SecretProvider] = None,
    rpc_factory: Optional[Callable[[], RpcClient]] = None,
    payment_store: Optional[PaymentStore] = None,
    allowed_origins: Optional[list[str]] = None,
) -> FastAPI:
    app = FastAPI(title="Solana Token Claim API", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or ["*"],
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["*"],
    )

    service: Optional[ClaimService] = None
    try:
        if settings is None:
            settings = Settings.from_env()
        service = ClaimService(
            settings,
            secret_provider=secret_provider,
            rpc_factory=rpc_factory,
            payment_store=payment_store,
        )
    except ConfigError as e:
        # keep serving; every claim answers SERVER_MISCONFIGURED
        log.error("Claim service disabled: %s", e.message)
    app.state.claim_service = service

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 405:
            return error_response("METHOD_NOT_ALLOWED", "Use POST instead.", 405)
        code = "NOT_FOUND" if exc.status_code == 404 else "SERVER_ERROR"
        return error_response(code, str(exc.detail), exc.status_code)

    async def read_body(request: Request) -> Any:
        raw = await request.body()
        if not raw:
            return {}
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def run_claim(body: Any, paid: Optional[bool]) -> JSONResponse:
        try:
            claim_request = parse_claim_request(body, paid=paid)
            svc = app.state.claim_service
            if svc is None:
                raise ConfigError("Missing env vars")
            built = svc.handle(claim_request)
            return JSONResponse(
                ClaimResponse(
                    tx=built.encoded,
                    lastValidBlockHeight=built.last_valid_block_height,
                ).model_dump()
            )
        except ClaimError as e:
            if e.status_code >= 500:
                log.error("Claim failed: %s %s", e.code, e.message)
            else:
                log.info("Claim rejected: %s %s", e.code, e.message)
            return error_response(e.code, e.message, e.status_code)
        except Exception as e:
            log.exception("Unhandled claim error")
            return error_response("SERVER_ERROR", str(e) or e.__class__.__name__, 500)

    @app.post("/api/claim")
    async def claim(request: Request) -> JSONResponse:
        body = await read_body(request)
        return await run_in_threadpool(run_claim, body, None)

    @app.post("/api/transfer-tokens")
    async def transfer_tokens(request: Request) -> JSONResponse:
        body = await read_body(request)
        return await run_in_threadpool(run_claim, body, True)

    @app.get("/healthz")
    async def healthz() -> dict:
        return {"ok": True, "configured": app.state.claim_service is not None}

    return app

