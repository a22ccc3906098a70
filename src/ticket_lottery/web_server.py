"""FastAPI gateway dispatching lottery requests into the engine."""

from __future__ import annotations

import asyncio
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from fastapi import FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ticket_lottery import __version__
from ticket_lottery.lottery.engine import LotteryEngine
from ticket_lottery.lottery.errors import (
    InvalidRequestError,
    LotteryError,
    NotAParticipantError,
    NotWinnerError,
    PaymentFailureError,
    RoundNotFoundError,
    StoreWriteError,
)
from ticket_lottery.lottery.operator import RoundOperator
from ticket_lottery.utils.logger import get_logger

logger = get_logger(__name__)

CALLER_HEADER = "X-Caller-Identity"

STORE_EVENTS = ("round_update", "pool_update", "config_update")


class InitializeRequest(BaseModel):
    ticket_price: int
    round_duration: int


class BuyTicketRequest(BaseModel):
    count: int


def error_status(exc: LotteryError) -> int:
    if isinstance(exc, RoundNotFoundError):
        return 404
    if isinstance(exc, InvalidRequestError):
        return 400
    if isinstance(exc, (NotAParticipantError, NotWinnerError)):
        return 403
    if isinstance(exc, PaymentFailureError):
        return 502
    if isinstance(exc, StoreWriteError):
        return 500
    return 409


def require_caller(caller: Optional[str]) -> str:
    if not caller or not caller.strip():
        raise HTTPException(status_code=401, detail=f"{CALLER_HEADER} header is required")
    return caller.strip()


class LotteryWebServer:
    """HTTP and WebSocket gateway for the lottery engine."""

    def __init__(
        self,
        config: Dict[str, Any],
        engine: LotteryEngine,
        operator: Optional[RoundOperator] = None,
    ) -> None:
        self.config = config
        self.engine = engine
        self.operator = operator

        self.app = FastAPI(
            title="Ticket Lottery API",
            description="Recurring ticketed lottery: rounds, tickets, draws and payouts",
            version=__version__,
        )

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._broadcast_queue: Optional[asyncio.Queue[Tuple[str, Dict[str, Any] | None]]] = None
        self._broadcast_task: Optional[asyncio.Task[None]] = None
        self._ws_lock = asyncio.Lock()
        self._listeners_registered = False
        self._websockets: Set[WebSocket] = set()

        self._setup_middleware()
        self._setup_error_handlers()
        self._setup_routes()

    # ------------------------------------------------------------------
    # FastAPI scaffolding
    # ------------------------------------------------------------------
    def _setup_middleware(self) -> None:
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_error_handlers(self) -> None:
        @self.app.exception_handler(LotteryError)
        async def lottery_error_handler(request: Request, exc: LotteryError) -> JSONResponse:
            status = error_status(exc)
            body: Dict[str, Any] = {"error": type(exc).__name__, "detail": str(exc), "fatal": exc.fatal}
            if isinstance(exc, PaymentFailureError):
                body["round_id"] = exc.round_id
                body["amount"] = exc.amount
                body["reserved_tickets"] = exc.tickets
                logger.error("%s %s aborted after reservation: %s", request.method, request.url.path, exc)
            elif exc.fatal:
                logger.error("%s %s failed: %s", request.method, request.url.path, exc)
            else:
                logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
            return JSONResponse(status_code=status, content=body)

    def _setup_routes(self) -> None:  # noqa: C901 - routing setup intentionally verbose
        engine = self.engine

        # ------------------------------------------------------------------
        # Health & status
        # ------------------------------------------------------------------
        @self.app.get("/api/health")
        async def health_check() -> Dict[str, Any]:
            ledger_health: Dict[str, Any] = {"status": "unknown"}
            probe = getattr(engine.ledger, "health_check", None)
            if probe is not None:
                ledger_health = await probe()
            return {
                "status": "ok",
                "timestamp": datetime.utcnow().isoformat(),
                "components": {
                    "engine": engine.store.phase.name,
                    "operator": self.operator.get_status() if self.operator else {"status": "disabled"},
                    "ledger": ledger_health,
                },
            }

        # ------------------------------------------------------------------
        # Lottery configuration
        # ------------------------------------------------------------------
        @self.app.post("/api/lottery/initialize")
        async def initialize(request: InitializeRequest) -> Dict[str, Any]:
            await engine.initialize(request.ticket_price, request.round_duration)
            return {"status": "initialized", "config": engine.get_configuration()}

        @self.app.get("/api/lottery/config")
        async def get_configuration() -> Dict[str, Any]:
            return {"config": engine.get_configuration()}

        # ------------------------------------------------------------------
        # Rounds
        # ------------------------------------------------------------------
        @self.app.post("/api/rounds")
        async def start_round() -> Dict[str, Any]:
            round_id = await engine.start_round()
            return {"status": "started", "round_id": round_id, "round": engine.get_round(round_id).to_dict()}

        @self.app.get("/api/rounds")
        async def list_rounds() -> Dict[str, Any]:
            rounds = [item.to_dict() for item in engine.list_rounds()]
            return {"rounds": rounds, "total": len(rounds)}

        @self.app.get("/api/rounds/{round_id}")
        async def get_round(round_id: int) -> Dict[str, Any]:
            return {"round": engine.get_round(round_id).to_dict()}

        @self.app.post("/api/rounds/{round_id}/tickets")
        async def buy_ticket(
            round_id: int,
            request: BuyTicketRequest,
            caller: Optional[str] = Header(None, alias=CALLER_HEADER),
        ) -> Dict[str, Any]:
            receipt = await engine.buy_ticket(require_caller(caller), round_id, request.count)
            return {"status": "purchased", "receipt": asdict(receipt)}

        @self.app.post("/api/rounds/{round_id}/close")
        async def close_round(round_id: int) -> Dict[str, Any]:
            closed = await engine.close_round(round_id)
            return {"status": "closed", "round": closed.to_dict()}

        @self.app.post("/api/rounds/{round_id}/claim")
        async def claim(
            round_id: int,
            caller: Optional[str] = Header(None, alias=CALLER_HEADER),
        ) -> Dict[str, Any]:
            receipt = await engine.claim(require_caller(caller), round_id)
            return {"status": "paid", "receipt": asdict(receipt)}

        @self.app.delete("/api/rounds/{round_id}")
        async def delete_round(round_id: int) -> Dict[str, Any]:
            await engine.delete_round(round_id)
            return {"status": "deleted", "round_id": round_id}

        # ------------------------------------------------------------------
        # Players & wallets
        # ------------------------------------------------------------------
        @self.app.get("/api/players/{caller}/participations")
        async def get_participations(caller: str) -> Dict[str, Any]:
            views = engine.get_participations(caller)
            return {"caller": caller, "participations": [asdict(view) for view in views]}

        @self.app.post("/api/faucet")
        async def faucet(caller: Optional[str] = Header(None, alias=CALLER_HEADER)) -> Dict[str, Any]:
            amount = await engine.faucet(require_caller(caller))
            return {"status": "funded", "amount": amount}

        @self.app.get("/api/wallet/{identity}")
        async def wallet_balance(identity: str) -> Dict[str, Any]:
            return {"identity": identity, "balance": await engine.wallet_balance(identity)}

        # ------------------------------------------------------------------
        # WebSocket endpoint
        # ------------------------------------------------------------------
        @self.app.websocket("/ws/lottery")
        async def websocket_endpoint(websocket: WebSocket) -> None:
            await websocket.accept()
            async with self._ws_lock:
                self._websockets.add(websocket)
            logger.info("WebSocket client connected (%s total)", len(self._websockets))
            try:
                await websocket.send_json({"type": "snapshot", "payload": self._build_snapshot()})
                while True:
                    try:
                        await websocket.receive_text()
                    except WebSocketDisconnect:
                        break
            finally:
                async with self._ws_lock:
                    self._websockets.discard(websocket)
                logger.info("WebSocket client disconnected (%s remaining)", len(self._websockets))

    # ------------------------------------------------------------------
    # Lifecycle management
    # ------------------------------------------------------------------
    async def start(self, host: str = "0.0.0.0", port: int = 6080) -> None:
        import uvicorn

        logger.info("Starting lottery web server on %s:%s", host, port)
        self._loop = asyncio.get_running_loop()
        if self._broadcast_queue is None:
            self._broadcast_queue = asyncio.Queue()
        self._register_store_listeners()
        if self._broadcast_task is None:
            self._broadcast_task = asyncio.create_task(self._broadcast_loop(), name="lottery-web-broadcast")

        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        server = uvicorn.Server(config)
        try:
            await server.serve()
        finally:
            logger.info("Lottery web server stopped")

    async def stop(self) -> None:
        logger.info("Stopping lottery web server")
        if self._broadcast_task:
            self._broadcast_task.cancel()
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass
            self._broadcast_task = None
        async with self._ws_lock:
            for websocket in list(self._websockets):
                try:
                    await websocket.close(code=1001, reason="Server shutdown")
                except RuntimeError as exc:
                    logger.debug("Error closing websocket: %s", exc)
            self._websockets.clear()

    # ------------------------------------------------------------------
    # Store listeners & broadcasting
    # ------------------------------------------------------------------
    def _register_store_listeners(self) -> None:
        if self._listeners_registered:
            return
        for event in STORE_EVENTS:
            self.engine.store.add_listener(event, lambda payload, evt=event: self._enqueue_broadcast(evt, payload))
        self._listeners_registered = True

    def _enqueue_broadcast(self, event_type: str, payload: Dict[str, Any] | None) -> None:
        if not self._broadcast_queue or not self._loop:
            return
        try:
            self._loop.call_soon_threadsafe(self._broadcast_queue.put_nowait, (event_type, payload))
        except RuntimeError:  # pragma: no cover - loop already closing
            logger.debug("Failed to enqueue broadcast for %s", event_type)

    async def _broadcast_loop(self) -> None:
        assert self._broadcast_queue is not None
        while True:
            try:
                event_type, payload = await self._broadcast_queue.get()
                await self._broadcast_to_clients(event_type, payload)
            except asyncio.CancelledError:
                break
            except Exception as exc:  # pragma: no cover - keep broadcasting
                logger.exception("Broadcast loop error: %s", exc)

    async def _broadcast_to_clients(self, event_type: str, payload: Dict[str, Any] | None) -> None:
        message = {"type": event_type, "payload": payload, "timestamp": datetime.utcnow().isoformat()}
        async with self._ws_lock:
            if not self._websockets:
                return
            to_remove: List[WebSocket] = []
            for websocket in self._websockets:
                try:
                    await websocket.send_json(message)
                except (RuntimeError, WebSocketDisconnect) as exc:
                    logger.debug("WebSocket send failed: %s", exc)
                    to_remove.append(websocket)
            for websocket in to_remove:
                self._websockets.discard(websocket)

    def _build_snapshot(self) -> Dict[str, Any]:
        current = self.engine.current_round()
        return {
            "config": self.engine.get_configuration(),
            "round": current.to_dict() if current else None,
            "operator": self.operator.get_status() if self.operator else None,
        }
