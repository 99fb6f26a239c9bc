"""Account watchers: poll the pots of eligible games and feed the engine.

Each watcher keeps a WatchRegistry in sync with the games it cares
about. On every tick it checks the balance of each watched address;
when a balance moved, it fetches the address's signatures back to the
(game, side) cursor, replays them oldest first and applies every
transfer that lands on the address.
"""

import asyncio
import contextlib
import logging

from src.ou_common.enums import Side
from src.ou_common.errors import AppError, TransactionSignatureAlreadyExists
from src.ou_game.domain.models import Game
from src.ou_settlement.engine.engine import SettlementEngine
from src.ou_watcher.engine.registry import WatchedPair, WatchRegistry

logger = logging.getLogger(__name__)


class AccountWatcher:
    name = "account"
    record_kind = ""

    def __init__(self, engine: SettlementEngine, interval: float = 1.0) -> None:
        self._engine = engine
        self._interval = interval
        self.registry = WatchRegistry()
        self._games: dict[int, Game] = {}
        self._balances: dict[str, int] = {}
        self._task: asyncio.Task[None] | None = None
        self._running = False

    # --- hooks ---

    async def eligible_games(self) -> list[Game]:
        raise NotImplementedError

    def watched_pair(self, game: Game) -> WatchedPair:
        raise NotImplementedError

    async def balance(self, address: str) -> int:
        raise NotImplementedError

    async def transfers_to(self, signature: str, address: str) -> list[tuple[str, int]]:
        """(owner, amount) for every transfer in `signature` landing on `address`."""
        raise NotImplementedError

    async def apply(
        self, game: Game, side: Side, owner: str, amount: int, signature: str
    ) -> None:
        raise NotImplementedError

    # --- loop ---

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("[listener] %s watcher started", self.name)

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        logger.info("[listener] %s watcher stopped", self.name)

    async def _run(self) -> None:
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[listener] %s tick failed", self.name)
            await asyncio.sleep(self._interval)

    async def sync(self) -> None:
        games = {game.id: game for game in await self.eligible_games()}
        for game_id in self.registry.game_ids() - games.keys():
            pair = self.registry.remove(game_id)
            for side in Side:
                self._balances.pop(pair.address(side), None)
            logger.info("[listener] %s stopped watching game %s", self.name, game_id)
        for game_id, game in games.items():
            if self.registry.add(game_id, self.watched_pair(game)):
                logger.info("[listener] %s watching game %s", self.name, game_id)
        self._games = games

    async def tick(self) -> None:
        await self.sync()
        for game_id, pair in self.registry.items():
            game = self._games[game_id]
            for side in Side:
                address = pair.address(side)
                current = await self.balance(address)
                if self._balances.get(address) == current:
                    continue
                await self.process(game, side, address)
                self._balances[address] = current

    async def _cursor(self, game: Game, side: Side) -> str | None:
        async with self._engine.session_factory() as db:
            async with db.begin():
                return await self._engine.repo.latest_signature(
                    db, self.record_kind, game.id, side.value
                )

    async def process(self, game: Game, side: Side, address: str) -> None:
        cursor = await self._cursor(game, side)
        signatures = await self._engine.ledger.get_signatures_for_address(address, until=cursor)
        # ledger returns newest first
        for signature in reversed(signatures):
            try:
                for owner, amount in await self.transfers_to(signature, address):
                    await self.apply(game, side, owner, amount, signature)
            except TransactionSignatureAlreadyExists:
                # records are keyed by signature: a second transfer in it is never applied
                logger.warning(
                    "[listener] %s: %s already recorded, transfer to %s on game %s not applied",
                    self.name, signature, address, game.id,
                )
            except AppError as e:
                logger.info(
                    "[listener] %s skipped %s on game %s: %s", self.name, signature, game.id, e.message
                )
            except Exception:
                logger.exception(
                    "[listener] %s failed on %s for game %s", self.name, signature, game.id
                )


class BuyWatcher(AccountWatcher):
    """Native transfers into the pots of active games."""

    name = "buy"
    record_kind = "buy"

    async def eligible_games(self) -> list[Game]:
        async with self._engine.session_factory() as db:
            async with db.begin():
                return await self._engine.repo.list_active_games(db)

    def watched_pair(self, game: Game) -> WatchedPair:
        return WatchedPair(over=game.over_pot_address, under=game.under_pot_address)

    async def balance(self, address: str) -> int:
        return await self._engine.ledger.get_balance(address)

    async def transfers_to(self, signature: str, address: str) -> list[tuple[str, int]]:
        transfers = await self._engine.ledger.get_sol_transfers(signature)
        return [(t.source, t.lamports) for t in transfers if t.destination == address]

    async def apply(
        self, game: Game, side: Side, owner: str, amount: int, signature: str
    ) -> None:
        await self._engine.buy(owner, side, signature, amount, game_id=game.id)


class _PotTokenWatcher(AccountWatcher):
    """Claim-token transfers into the pots' own token accounts."""

    def watched_pair(self, game: Game) -> WatchedPair:
        ledger = self._engine.ledger
        return WatchedPair(
            over=ledger.associated_token_address(game.over_pot_address, game.over_mint_address),
            under=ledger.associated_token_address(game.under_pot_address, game.under_mint_address),
        )

    async def balance(self, address: str) -> int:
        return await self._engine.ledger.get_token_account_balance(address)

    async def transfers_to(self, signature: str, address: str) -> list[tuple[str, int]]:
        transfers = await self._engine.ledger.get_token_transfers(signature)
        return [(t.owner, t.amount) for t in transfers if t.destination == address]


class SellWatcher(_PotTokenWatcher):
    name = "sell"
    record_kind = "sell"

    async def eligible_games(self) -> list[Game]:
        async with self._engine.session_factory() as db:
            async with db.begin():
                return await self._engine.repo.list_active_games(db)

    async def apply(
        self, game: Game, side: Side, owner: str, amount: int, signature: str
    ) -> None:
        await self._engine.sell(owner, side, signature, amount, game_id=game.id)


class RedeemWatcher(_PotTokenWatcher):
    """Settled games with a claimable pot left."""

    name = "redeem"
    record_kind = "claim"

    async def eligible_games(self) -> list[Game]:
        async with self._engine.session_factory() as db:
            async with db.begin():
                return await self._engine.repo.list_redeemable_games(db)

    async def _cursor(self, game: Game, side: Side) -> str | None:
        """Latest claim, else settlement: sells on the same account are never replayed."""
        claimed = await super()._cursor(game, side)
        if claimed is not None:
            return claimed
        if game.settlement_signature is not None:
            return game.settlement_signature
        async with self._engine.session_factory() as db:
            async with db.begin():
                return await self._engine.repo.latest_signature(db, "sell", game.id, side.value)

    async def apply(
        self, game: Game, side: Side, owner: str, amount: int, signature: str
    ) -> None:
        await self._engine.redeem(game.id, owner, amount, signature)
