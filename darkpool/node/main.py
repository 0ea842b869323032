"""
Dark Pool Node HTTP API

FastAPI surface over DarkPoolService. Every response uses the envelope

    {"ok": true,  "result": ...}
    {"ok": false, "error": "..."}

Sealed order payloads travel hex-encoded in ``encryptedData``.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Query, status
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..constants import NODE_VERSION
from ..exceptions import InputRejected
from ..logger import get_logger
from ..service import DarkPoolService, IntakeResult, IntakeStatus

logger = get_logger(__name__)

HTTP_STATUS_BY_INTAKE = {
    IntakeStatus.ACCEPTED: status.HTTP_200_OK,
    IntakeStatus.REJECTED: status.HTTP_400_BAD_REQUEST,
    IntakeStatus.WINDOW_EXPIRED: status.HTTP_410_GONE,
    IntakeStatus.VERIFICATION_FAILED: status.HTTP_403_FORBIDDEN,
    IntakeStatus.TIMELOCK_NOT_ELAPSED: status.HTTP_409_CONFLICT,
    IntakeStatus.SETTLEMENT_FAILED: status.HTTP_502_BAD_GATEWAY,
    IntakeStatus.ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _require(body: Dict[str, Any], *fields: str) -> None:
    missing = [f for f in fields if body.get(f) in (None, "")]
    if missing:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, f"Missing required fields: {', '.join(missing)}")


def _respond(result: IntakeResult) -> JSONResponse:
    return JSONResponse(status_code=HTTP_STATUS_BY_INTAKE[result.status], content=result.to_dict())


def create_app(
    service: DarkPoolService,
    start_scheduler: bool = True,
    cors_origins: Optional[list] = None,
) -> FastAPI:
    """
    Build the HTTP app for a service.

    Args:
        service: The wired dark pool service
        start_scheduler: Run the epoch scheduler for the lifetime of the app
        cors_origins: Allowed CORS origins (default: any)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_scheduler:
            await service.start()
        logger.info("Dark pool node ready, engine key %s...", service.engine_public_key[:18])
        yield
        if start_scheduler:
            await service.stop()

    app = FastAPI(
        title="Dark Pool Node",
        description="Commit-reveal matching engine and state channel ledger.",
        version=NODE_VERSION,
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.detail})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"ok": False, "error": "Internal Server Error"})

    # ------------------------------------------------------------------
    # Engine / orders
    # ------------------------------------------------------------------

    @app.get("/api/engine/public-key")
    async def engine_public_key():
        return {"ok": True, "result": {"public_key": service.engine_public_key}}

    @app.post("/api/orders/commit")
    async def commit_order(body: dict = Body(...)):
        _require(body, "commitment", "timestamp", "trader")
        return _respond(service.commit(body["commitment"], body["timestamp"], body["trader"]))

    @app.post("/api/orders/reveal")
    async def reveal_order(body: dict = Body(...)):
        _require(body, "commitment", "encryptedData")
        data = body["encryptedData"]
        if not isinstance(data, str):
            raise HTTPException(status.HTTP_400_BAD_REQUEST, "encryptedData must be a hex string")
        try:
            ciphertext = bytes.fromhex(data[2:] if data.startswith("0x") else data)
        except ValueError:
            raise HTTPException(status.HTTP_400_BAD_REQUEST, "encryptedData is not valid hex")
        nonce = body.get("nonce", 0)
        if isinstance(nonce, bool) or not isinstance(nonce, int):
            raise HTTPException(status.HTTP_400_BAD_REQUEST, "nonce must be an integer")
        return _respond(service.reveal(body["commitment"], ciphertext, nonce))

    @app.post("/api/orders/cancel")
    async def cancel_order(body: dict = Body(...)):
        _require(body, "commitment", "trader")
        return _respond(service.cancel(body["commitment"], body["trader"]))

    @app.get("/api/orders/{commitment}")
    async def order_status(commitment: str):
        order_state = service.order_status(commitment)
        if order_state is None:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "Order not found")
        return {"ok": True, "result": {"commitment": commitment.lower(), "status": order_state}}

    @app.get("/api/orderbook/status")
    async def orderbook_status():
        return {"ok": True, "result": service.orderbook_status()}

    @app.get("/api/matches")
    async def recent_matches(count: int = Query(default=50, ge=1, le=1000)):
        return {"ok": True, "result": service.recent_matches(count)}

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    @app.post("/api/channels/open")
    async def open_channel(body: dict = Body(...)):
        _require(body, "participant", "initialBalance", "collateral")
        return _respond(service.open_channel(body["participant"], body["initialBalance"], body["collateral"]))

    @app.post("/api/channels/update")
    async def update_channel(body: dict = Body(...)):
        _require(body, "participant", "newBalance", "signature", "nonce", "timestamp")
        return _respond(service.update_channel(
            body["participant"], body["newBalance"], body["signature"], body["nonce"], body["timestamp"],
        ))

    @app.post("/api/channels/close")
    async def close_channel(body: dict = Body(...)):
        _require(body, "participant", "finalBalance", "signature", "nonce", "timestamp")
        return _respond(service.close_channel(
            body["participant"], body["finalBalance"], body["signature"], body["nonce"], body["timestamp"],
        ))

    @app.post("/api/channels/emergency/request")
    async def request_emergency_withdraw(body: dict = Body(...)):
        _require(body, "participant")
        return _respond(service.request_emergency_withdraw(body["participant"], body.get("reason", "")))

    @app.post("/api/channels/emergency/execute")
    async def execute_emergency_withdraw(body: dict = Body(...)):
        _require(body, "participant")
        return _respond(service.execute_emergency_withdraw(body["participant"]))

    @app.get("/api/channels/stats")
    async def channel_stats():
        return {"ok": True, "result": service.channel_stats()}

    @app.get("/api/channels/{participant}")
    async def get_channel(participant: str):
        try:
            channel = service.channel(participant)
        except InputRejected:
            raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid participant address")
        if channel is None:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "Channel not found")
        channel["emergency_request"] = service.emergency_request(participant)
        return {"ok": True, "result": channel}

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @app.get("/api/health")
    async def health():
        return {"ok": True, "result": service.health()}

    return app
