# src/ou_game/domain/repository.py
"""Repository Protocol: dependency inversion for testability.

Unit tests inject an in-memory fake that conforms to this Protocol.
Infrastructure layer provides the real implementation.
"""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.ou_game.domain.models import (
    BuyTransaction,
    ClaimTransaction,
    Game,
    GameKeypairs,
    SellTransaction,
)


class GameRepositoryProtocol(Protocol):
    # --- games ---

    async def get_game(
        self, db: AsyncSession, game_id: int, for_update: bool = False
    ) -> Game | None: ...

    async def get_latest_active_game(
        self, db: AsyncSession, for_update: bool = False
    ) -> Game | None: ...

    async def get_active_game_by_contract(
        self, db: AsyncSession, contract: str
    ) -> Game | None: ...

    async def get_game_by_initiator_signature(
        self, db: AsyncSession, signature: str
    ) -> Game | None: ...

    async def insert_game(
        self, db: AsyncSession, game: Game, keypairs: GameKeypairs
    ) -> Game: ...

    async def update_game(self, db: AsyncSession, game: Game) -> None: ...

    async def get_keypairs(self, db: AsyncSession, game_id: int) -> GameKeypairs: ...

    async def list_games(
        self,
        db: AsyncSession,
        ended: bool,
        search: str | None,
        page: int,
        limit: int,
    ) -> tuple[list[Game], int]: ...

    async def list_active_games(self, db: AsyncSession) -> list[Game]: ...

    async def list_redeemable_games(self, db: AsyncSession) -> list[Game]: ...

    async def list_games_to_settle(
        self, db: AsyncSession, started_before: datetime
    ) -> list[Game]: ...

    # --- transaction records (idempotency ledger) ---

    async def buy_exists(self, db: AsyncSession, signature: str) -> bool: ...

    async def sell_exists(self, db: AsyncSession, signature: str) -> bool: ...

    async def claim_exists(self, db: AsyncSession, signature: str) -> bool: ...

    async def insert_buy(self, db: AsyncSession, tx: BuyTransaction) -> BuyTransaction: ...

    async def insert_sell(self, db: AsyncSession, tx: SellTransaction) -> SellTransaction: ...

    async def insert_claim(self, db: AsyncSession, tx: ClaimTransaction) -> ClaimTransaction: ...

    async def has_buy(self, db: AsyncSession, game_id: int) -> bool: ...

    async def latest_signature(
        self, db: AsyncSession, kind: str, game_id: int, side: str
    ) -> str | None: ...

    async def list_wallet_transactions(
        self, db: AsyncSession, wallet: str
    ) -> tuple[list[BuyTransaction], list[SellTransaction]]: ...
