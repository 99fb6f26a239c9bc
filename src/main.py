"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000

ROLE=api serves HTTP only; any other role also runs the account
watchers and, when SETTLEMENT is enabled, the settlement scheduler.
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from src.ou_chain.infrastructure.jupiter_oracle import JupiterOracle
from src.ou_chain.infrastructure.solana_ledger import build_ledger
from src.ou_common.database import engine
from src.ou_common.errors import AppError, InternalError
from src.ou_common.redis_client import close_redis, get_redis
from src.ou_common.response import error_response
from src.ou_game.api.router import router as game_router
from src.ou_gateway.middleware.request_log import RequestLogMiddleware
from src.ou_scheduler.engine.settlement_scheduler import SettlementScheduler
from src.ou_settlement.application.service import build_settlement_engine
from src.ou_watcher.engine.watchers import BuyWatcher, RedeemWatcher, SellWatcher

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB + Redis, build the engine, start background loops."""
    # Startup
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    redis = await get_redis()
    await redis.ping()

    ledger = build_ledger()
    oracle = JupiterOracle(
        httpx.AsyncClient(timeout=10.0), redis=redis, cache_ttl=settings.PRICE_CACHE_TTL
    )
    settlement = build_settlement_engine(ledger, oracle)

    loops: list = []
    if settings.ROLE != "api":
        loops += [
            BuyWatcher(settlement, settings.WATCHER_INTERVAL),
            SellWatcher(settlement, settings.WATCHER_INTERVAL),
            RedeemWatcher(settlement, settings.WATCHER_INTERVAL),
        ]
        if settings.SETTLEMENT:
            loops.append(
                SettlementScheduler(
                    settlement,
                    settings.SCHEDULER_INTERVAL,
                    settings.SETTLE_GUARD_RELEASE_DELAY,
                )
            )
    for loop in loops:
        await loop.start()
    logger.info("Started role=%s background_loops=%d", settings.ROLE, len(loops))

    yield

    # Shutdown
    for loop in loops:
        await loop.stop()
    await oracle.close()
    await ledger.close()
    await engine.dispose()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)


def _error_json(request: Request, exc: AppError) -> JSONResponse:
    resp = error_response(exc.code, exc.message)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return _error_json(request, exc)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_json(request, InternalError())


app.include_router(game_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
