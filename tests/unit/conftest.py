"""Shared fixtures for engine, watcher and scheduler tests.

The record store is an in-memory repository that hands out copies, so
a Game mutated inside a failed operation never leaks back into storage
(mirrors a rolled-back transaction).
"""

import copy
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.keypair import Keypair
from sqlalchemy.exc import IntegrityError

from src.ou_chain.domain.keypairs import encode_keypair
from src.ou_game.domain.models import (
    BuyTransaction,
    ClaimTransaction,
    Game,
    GameKeypairs,
    SellTransaction,
)
from src.ou_settlement.engine.engine import SettlementEngine

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
MASTER = "MasterWa11et1111111111111111111111111111111"


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class _FakeTransaction:
    async def __aenter__(self) -> None:
        return None

    async def __aexit__(self, *exc: Any) -> bool:
        return False


class FakeSession:
    def begin(self) -> _FakeTransaction:
        return _FakeTransaction()

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, *exc: Any) -> bool:
        return False


def fake_session_factory() -> FakeSession:
    return FakeSession()


def _duplicate(signature: str) -> IntegrityError:
    return IntegrityError("INSERT", {"signature": signature}, Exception("duplicate key"))


class InMemoryGameRepository:
    def __init__(self) -> None:
        self.games: dict[int, Game] = {}
        self.keypairs: dict[int, GameKeypairs] = {}
        self.buys: list[BuyTransaction] = []
        self.sells: list[SellTransaction] = []
        self.claims: list[ClaimTransaction] = []

    async def get_game(self, db: Any, game_id: int, for_update: bool = False) -> Game | None:
        game = self.games.get(game_id)
        return copy.deepcopy(game) if game else None

    async def get_latest_active_game(self, db: Any, for_update: bool = False) -> Game | None:
        active = [g for g in self.games.values() if g.time_ended is None]
        return copy.deepcopy(max(active, key=lambda g: g.id)) if active else None

    async def get_active_game_by_contract(self, db: Any, contract: str) -> Game | None:
        for g in self.games.values():
            if g.contract_address == contract and g.time_ended is None:
                return copy.deepcopy(g)
        return None

    async def get_game_by_initiator_signature(self, db: Any, signature: str) -> Game | None:
        for g in self.games.values():
            if g.initiator_signature == signature:
                return copy.deepcopy(g)
        return None

    async def insert_game(self, db: Any, game: Game, keypairs: GameKeypairs) -> Game:
        if await self.get_game_by_initiator_signature(db, game.initiator_signature):
            raise _duplicate(game.initiator_signature)
        game.id = len(self.games) + 1
        game.created_at = game.time_started
        keypairs.game_id = game.id
        self.games[game.id] = copy.deepcopy(game)
        self.keypairs[game.id] = keypairs
        return game

    async def update_game(self, db: Any, game: Game) -> None:
        self.games[game.id] = copy.deepcopy(game)

    async def get_keypairs(self, db: Any, game_id: int) -> GameKeypairs:
        return self.keypairs[game_id]

    async def list_games(
        self, db: Any, ended: bool, search: str | None, page: int, limit: int
    ) -> tuple[list[Game], int]:
        games = [g for g in self.games.values() if (g.time_ended is not None) == ended]
        return games[(page - 1) * limit : page * limit], len(games)

    async def list_active_games(self, db: Any) -> list[Game]:
        return [copy.deepcopy(g) for g in self.games.values() if g.time_ended is None]

    async def list_redeemable_games(self, db: Any) -> list[Game]:
        return [
            copy.deepcopy(g)
            for g in self.games.values()
            if g.settled_at is not None and g.claimable_winning_pot > 0
        ]

    async def list_games_to_settle(self, db: Any, started_before: datetime) -> list[Game]:
        return [
            copy.deepcopy(g)
            for g in self.games.values()
            if g.time_started <= started_before and g.settled_at is None
        ]

    async def buy_exists(self, db: Any, signature: str) -> bool:
        return any(b.solana_tx_signature == signature for b in self.buys)

    async def sell_exists(self, db: Any, signature: str) -> bool:
        return any(s.burn_tx_signature == signature for s in self.sells)

    async def claim_exists(self, db: Any, signature: str) -> bool:
        return any(c.burn_tx_signature == signature for c in self.claims)

    async def has_buy(self, db: Any, game_id: int) -> bool:
        return any(b.game_id == game_id for b in self.buys)

    async def insert_buy(self, db: Any, tx: BuyTransaction) -> BuyTransaction:
        if await self.buy_exists(db, tx.solana_tx_signature):
            raise _duplicate(tx.solana_tx_signature)
        tx.id = len(self.buys) + 1
        self.buys.append(tx)
        return tx

    async def insert_sell(self, db: Any, tx: SellTransaction) -> SellTransaction:
        if await self.sell_exists(db, tx.burn_tx_signature):
            raise _duplicate(tx.burn_tx_signature)
        tx.id = len(self.sells) + 1
        self.sells.append(tx)
        return tx

    async def insert_claim(self, db: Any, tx: ClaimTransaction) -> ClaimTransaction:
        if await self.claim_exists(db, tx.burn_tx_signature):
            raise _duplicate(tx.burn_tx_signature)
        tx.id = len(self.claims) + 1
        self.claims.append(tx)
        return tx

    async def latest_signature(
        self, db: Any, kind: str, game_id: int, side: str
    ) -> str | None:
        if kind == "buy":
            rows = [b.solana_tx_signature for b in self.buys if b.game_id == game_id and b.side == side]
        elif kind == "sell":
            rows = [s.burn_tx_signature for s in self.sells if s.game_id == game_id and s.side == side]
        else:
            rows = [c.burn_tx_signature for c in self.claims if c.game_id == game_id and c.side == side]
        return rows[-1] if rows else None

    async def list_wallet_transactions(
        self, db: Any, wallet: str
    ) -> tuple[list[BuyTransaction], list[SellTransaction]]:
        active = {g.id for g in self.games.values() if g.time_ended is None}
        return (
            [b for b in self.buys if b.solana_wallet_address == wallet and b.game_id in active],
            [s for s in self.sells if s.solana_wallet_address == wallet and s.game_id in active],
        )


def make_game(**kwargs: Any) -> Game:
    defaults: dict[str, Any] = dict(
        id=None,
        initiator="Initiator1111111111111111111111111111111111",
        initiator_signature="init-sig",
        creation_signature="create-sig",
        contract_address="Token11111111111111111111111111111111111111",
        token_name="Goat",
        token_symbol="GOAT",
        token_decimals=6,
        time_started=T0,
        time_ended=None,
        price_start=Decimal("0.0001"),
        price_end=Decimal("0.0001"),
        usd_start=Decimal("0.02"),
        usd_end=Decimal("0.02"),
        over_pot_address="OverPot",
        under_pot_address="UnderPot",
        over_mint_address="OverMint",
        under_mint_address="UnderMint",
        over_price=1_000_000,
        under_price=1_000_000,
    )
    defaults.update(kwargs)
    return Game(**defaults)


def make_keypairs() -> GameKeypairs:
    return GameKeypairs(
        game_id=0,
        over_pot_secret=encode_keypair(Keypair()),
        under_pot_secret=encode_keypair(Keypair()),
        over_mint_secret=encode_keypair(Keypair()),
        under_mint_secret=encode_keypair(Keypair()),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_factory():
    return fake_session_factory


@pytest.fixture
def repo() -> InMemoryGameRepository:
    return InMemoryGameRepository()


@pytest.fixture
def ledger() -> AsyncMock:
    ledger = AsyncMock()
    ledger.master_address = MASTER
    ledger.associated_token_address = MagicMock(
        side_effect=lambda owner, mint: f"ata:{owner}:{mint}"
    )
    ledger.mint_claim_tokens.return_value = "mint-sig"
    ledger.pay_out_sale.return_value = "payout-sig"
    ledger.transfer_from_pot.return_value = "claim-sig"
    ledger.merge_pots_and_burn.return_value = "settle-sig"
    ledger.validate_burn.return_value = True
    return ledger


@pytest.fixture
def oracle() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def engine(
    repo: InMemoryGameRepository, ledger: AsyncMock, oracle: AsyncMock, clock: FakeClock
) -> SettlementEngine:
    return SettlementEngine(
        fake_session_factory,
        repo,
        ledger,
        oracle,
        retry_base_delay=0,
        clock=clock,
    )


@pytest.fixture
def add_game(repo: InMemoryGameRepository):
    """Insert a game into the in-memory store and return the stored copy."""

    async def _add(**kwargs: Any) -> Game:
        kwargs.setdefault("initiator_signature", f"init-sig-{len(repo.games) + 1}")
        return await repo.insert_game(None, make_game(**kwargs), make_keypairs())

    return _add
