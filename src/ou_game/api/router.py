"""ou_game REST endpoints.

GET  /games                : ended games, page/limit/search
GET  /games/fighting       : active games, page/limit/search
GET  /games/positions      : a wallet's buys and sells in active games
GET  /games/{game_id}      : one game (public projection)
POST /games/start          : open a game on a token contract
POST /games/buy|sell|redeem : apply the transfers of a signature
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.ou_common.database import get_db_session
from src.ou_common.response import ApiResponse, success_response
from src.ou_game.application.schemas import (
    GameOut,
    OperationOut,
    SignatureRequest,
    StartGameRequest,
)
from src.ou_game.application.service import GameApplicationService
from src.ou_settlement.application.dispatch import submit_buy, submit_redeem, submit_sell
from src.ou_settlement.application.service import get_settlement_engine
from src.ou_settlement.engine.engine import SettlementEngine

router = APIRouter(prefix="/games", tags=["games"])

_service = GameApplicationService()


def _respond(request: Request, data: object) -> ApiResponse:
    resp = success_response(data)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.get("")
async def list_games(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str | None = Query(None, max_length=100),
) -> ApiResponse:
    result = await _service.list_games(db, True, search, page, limit)
    return _respond(request, result.model_dump())


@router.get("/fighting")
async def list_fighting_games(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str | None = Query(None, max_length=100),
) -> ApiResponse:
    result = await _service.list_games(db, False, search, page, limit)
    return _respond(request, result.model_dump())


@router.get("/positions")
async def get_positions(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    solana_wallet: str = Query(..., min_length=32, max_length=44),
) -> ApiResponse:
    result = await _service.get_positions(db, solana_wallet)
    return _respond(request, [p.model_dump() for p in result])


@router.get("/{game_id}")
async def get_game(
    game_id: int,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    result = await _service.get_game(db, game_id)
    return _respond(request, result.model_dump())


@router.post("/start", status_code=status.HTTP_201_CREATED)
async def start_game(
    body: StartGameRequest,
    request: Request,
    engine: Annotated[SettlementEngine, Depends(get_settlement_engine)],
) -> ApiResponse:
    game = await engine.start(body.contract, body.signature)
    return _respond(request, GameOut.from_domain(game).model_dump())


@router.post("/buy", status_code=status.HTTP_201_CREATED)
async def buy(
    body: SignatureRequest,
    request: Request,
    engine: Annotated[SettlementEngine, Depends(get_settlement_engine)],
) -> ApiResponse:
    results = await submit_buy(engine, body.signature)
    return _respond(request, [OperationOut.from_result(r).model_dump() for r in results])


@router.post("/sell", status_code=status.HTTP_201_CREATED)
async def sell(
    body: SignatureRequest,
    request: Request,
    engine: Annotated[SettlementEngine, Depends(get_settlement_engine)],
) -> ApiResponse:
    results = await submit_sell(engine, body.signature)
    return _respond(request, [OperationOut.from_result(r).model_dump() for r in results])


@router.post("/redeem", status_code=status.HTTP_201_CREATED)
async def redeem(
    body: SignatureRequest,
    request: Request,
    engine: Annotated[SettlementEngine, Depends(get_settlement_engine)],
) -> ApiResponse:
    results = await submit_redeem(engine, body.signature)
    return _respond(request, [OperationOut.from_result(r).model_dump() for r in results])
