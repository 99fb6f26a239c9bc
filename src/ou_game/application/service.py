"""GameApplicationService: read-side composition for the games API.

All methods are read-only; the caller (router) passes the db session.
State-changing operations go through the SettlementEngine instead.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from src.ou_common.errors import GameNotFound
from src.ou_common.response import PageMeta
from src.ou_game.application.schemas import (
    BuyOut,
    GameListResponse,
    GameOut,
    GamePositions,
    SellOut,
)
from src.ou_game.domain.repository import GameRepositoryProtocol
from src.ou_game.infrastructure.persistence import GameRepository


class GameApplicationService:
    def __init__(self, repo: GameRepositoryProtocol | None = None) -> None:
        self._repo: GameRepositoryProtocol = repo or GameRepository()

    async def list_games(
        self,
        db: AsyncSession,
        ended: bool,
        search: str | None,
        page: int,
        limit: int,
    ) -> GameListResponse:
        games, total = await self._repo.list_games(db, ended, search, page, limit)
        return GameListResponse(
            meta=PageMeta.build(total, page, limit),
            data=[GameOut.from_domain(g) for g in games],
        )

    async def get_game(self, db: AsyncSession, game_id: int) -> GameOut:
        game = await self._repo.get_game(db, game_id)
        if game is None:
            raise GameNotFound(game_id)
        return GameOut.from_domain(game)

    async def get_positions(self, db: AsyncSession, wallet: str) -> list[GamePositions]:
        """Buys and sells of `wallet` in active games, grouped by game."""
        buys, sells = await self._repo.list_wallet_transactions(db, wallet)
        grouped: dict[int, GamePositions] = {}
        for b in buys:
            grouped.setdefault(
                b.game_id, GamePositions(game_id=b.game_id, buys=[], sells=[])
            ).buys.append(BuyOut.from_domain(b))
        for s in sells:
            grouped.setdefault(
                s.game_id, GamePositions(game_id=s.game_id, buys=[], sells=[])
            ).sells.append(SellOut.from_domain(s))
        return [grouped[game_id] for game_id in sorted(grouped)]
