"""SettlementEngine: owns the start/buy/sell/redeem/settle state transitions.

Each buy/sell/redeem runs in one record-store transaction with the game
row locked FOR UPDATE. The follow-up ledger call (mint or payout) is made
inside that transaction and its signature is persisted with the record,
so a failed ledger call rolls the mutation back.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.ou_chain.domain.gateway import LedgerGateway, PriceOracle
from src.ou_chain.domain.keypairs import encode_keypair, public_address
from src.ou_common.clock import Clock, utc_now
from src.ou_common.enums import Side
from src.ou_common.errors import (
    GameAlreadyActive,
    GameIsNotEnded,
    GameNotFound,
    InvalidSignatureForInitiateGame,
    InvalidTransaction,
    LedgerRetryExhausted,
    NoActiveGame,
    NoClaimableSolInGame,
    SignatureAlreadyInitiated,
    TransactionSignatureAlreadyExists,
    TransientLedgerError,
    ZeroGameTokenSupply,
)
from src.ou_common.lamports import floor_int
from src.ou_game.domain.models import (
    BuyTransaction,
    ClaimTransaction,
    Game,
    GameKeypairs,
    SellTransaction,
)
from src.ou_game.domain.repository import GameRepositoryProtocol
from src.ou_settlement.domain.accounting import (
    INITIAL_TOKEN_PRICE,
    apply_buy,
    apply_merge,
    apply_redeem,
    apply_sell,
    quote_buy,
    quote_sell,
    redeem_payout,
    winning_side,
)
from src.ou_settlement.domain.inflight import InFlightGuard
from src.ou_settlement.domain.invariants import verify_game_invariants
from src.ou_settlement.domain.models import OperationResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SettlementEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repo: GameRepositoryProtocol,
        ledger: LedgerGateway,
        oracle: PriceOracle,
        *,
        game_duration: timedelta = timedelta(minutes=60),
        network_fee: int = 5000,
        initiate_lamports: int = 100_000_000,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.1,
        clock: Clock = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._repo = repo
        self._ledger = ledger
        self._oracle = oracle
        self.game_duration = game_duration
        self._network_fee = network_fee
        self._initiate_lamports = initiate_lamports
        self._retry_attempts = retry_attempts
        self._retry_base_delay = retry_base_delay
        self._clock = clock
        self.starts = InFlightGuard("starts")
        self.buys = InFlightGuard("buys")
        self.sells = InFlightGuard("sells")
        self.redeems = InFlightGuard("redeems")

    @property
    def ledger(self) -> LedgerGateway:
        return self._ledger

    @property
    def repo(self) -> GameRepositoryProtocol:
        return self._repo

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    async def _with_retry(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Re-run fn from the top on transient ledger errors, with exponential backoff."""
        for attempt in range(1, self._retry_attempts + 1):
            try:
                return await fn()
            except TransientLedgerError as e:
                if attempt == self._retry_attempts:
                    logger.error(
                        "%s: transient ledger error, giving up after %d attempts: %s",
                        operation, attempt, e,
                    )
                    raise LedgerRetryExhausted(operation, attempt) from e
                delay = self._retry_base_delay * 2 ** (attempt - 1)
                logger.warning(
                    "%s: transient ledger error (attempt %d/%d), retrying in %.2fs: %s",
                    operation, attempt, self._retry_attempts, delay, e,
                )
                await asyncio.sleep(delay)
        raise LedgerRetryExhausted(operation, self._retry_attempts)

    async def _active_game(self, db: AsyncSession, game_id: int | None) -> Game:
        if game_id is None:
            game = await self._repo.get_latest_active_game(db, for_update=True)
        else:
            game = await self._repo.get_game(db, game_id, for_update=True)
        if game is None or not game.is_active:
            raise NoActiveGame()
        return game

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    async def start(self, contract: str, signature: str) -> Game:
        """Open a new game on `contract`, paid for by the transfer in `signature`."""
        with self.starts.hold(signature):
            async with self._session_factory() as db:
                async with db.begin():
                    if await self._repo.get_game_by_initiator_signature(db, signature):
                        raise SignatureAlreadyInitiated(signature)
                    if await self._repo.get_active_game_by_contract(db, contract):
                        raise GameAlreadyActive(contract)

            source = await self._ledger.find_transfer_source(
                signature, self._ledger.master_address, self._initiate_lamports
            )
            if source is None:
                raise InvalidSignatureForInitiateGame(signature, contract)

            metadata = await self._oracle.get_token_metadata(contract)
            price = await self._oracle.get_token_price(contract, metadata.decimals)

            accounts = await self._with_retry(
                "create_game_accounts", self._ledger.create_game_accounts
            )
            logger.info(
                "Game accounts created: contract=%s over_pot=%s under_pot=%s signature=%s",
                contract,
                public_address(accounts.over_pot),
                public_address(accounts.under_pot),
                accounts.signature,
            )

            game = Game(
                id=None,
                initiator=source.source,
                initiator_signature=signature,
                creation_signature=accounts.signature,
                contract_address=contract,
                token_name=metadata.name,
                token_symbol=metadata.symbol,
                token_decimals=metadata.decimals,
                time_started=self._clock(),
                time_ended=None,
                price_start=price.sol,
                price_end=price.sol,
                usd_start=price.usd,
                usd_end=price.usd,
                over_pot_address=public_address(accounts.over_pot),
                under_pot_address=public_address(accounts.under_pot),
                over_mint_address=public_address(accounts.over_mint),
                under_mint_address=public_address(accounts.under_mint),
                over_price=INITIAL_TOKEN_PRICE,
                under_price=INITIAL_TOKEN_PRICE,
            )
            keypairs = GameKeypairs(
                game_id=0,
                over_pot_secret=encode_keypair(accounts.over_pot),
                under_pot_secret=encode_keypair(accounts.under_pot),
                over_mint_secret=encode_keypair(accounts.over_mint),
                under_mint_secret=encode_keypair(accounts.under_mint),
            )
            async with self._session_factory() as db:
                try:
                    async with db.begin():
                        game = await self._repo.insert_game(db, game, keypairs)
                except IntegrityError as e:
                    if "uq_games_active_contract" in str(e.orig):
                        raise GameAlreadyActive(contract) from e
                    raise SignatureAlreadyInitiated(signature) from e

        logger.info("Game %s started on %s by %s", game.id, contract, game.initiator)
        return game

    # ------------------------------------------------------------------
    # buy
    # ------------------------------------------------------------------

    async def buy(
        self,
        owner: str,
        side: Side,
        signature: str,
        lamports: int,
        game_id: int | None = None,
    ) -> OperationResult | None:
        """Mint claim tokens for a deposit of `lamports` into the `side` pot."""
        if owner == self._ledger.master_address:
            return None
        with self.buys.hold(signature):
            return await self._with_retry(
                "buy", lambda: self._buy_once(owner, side, signature, lamports, game_id)
            )

    async def _buy_once(
        self,
        owner: str,
        side: Side,
        signature: str,
        lamports: int,
        game_id: int | None,
    ) -> OperationResult | None:
        async with self._session_factory() as db:
            try:
                async with db.begin():
                    if await self._repo.buy_exists(db, signature):
                        raise TransactionSignatureAlreadyExists(signature)

                    game = await self._active_game(db, game_id)
                    if owner in game.internal_addresses():
                        return None

                    keypairs = await self._repo.get_keypairs(db, game.id)
                    token_price = game.price(side)
                    quote = quote_buy(game, side, lamports)
                    apply_buy(game, side, lamports, quote)
                    verify_game_invariants(game)

                    logger.info(
                        "Minting %s token: game=%s owner=%s lamports=%d tokens=%d",
                        side.value, game.id, owner, lamports, quote.tokens,
                    )
                    minted = await self._ledger.mint_claim_tokens(
                        owner, keypairs.mint(side), quote.tokens
                    )
                    logger.info("Minted %s token: game=%s signature=%s", side.value, game.id, minted)

                    record = await self._repo.insert_buy(
                        db,
                        BuyTransaction(
                            game_id=game.id,
                            solana_wallet_address=owner,
                            solana_tx_signature=signature,
                            mint_tx_signature=minted,
                            side=side.value,
                            token_price=token_price,
                            total_in_solana=lamports,
                            tokens_received=quote.tokens,
                            fees=quote.fee,
                        ),
                    )
                    await self._repo.update_game(db, game)
            except IntegrityError as e:
                raise TransactionSignatureAlreadyExists(signature) from e

        return OperationResult(game=game, transaction=record, payout_signature=minted)

    # ------------------------------------------------------------------
    # sell
    # ------------------------------------------------------------------

    async def sell(
        self,
        owner: str,
        side: Side,
        signature: str,
        amount: int,
        game_id: int | None = None,
    ) -> OperationResult | None:
        """Pay out `amount` claim tokens returned to the `side` pot, less fee and tax."""
        if owner == self._ledger.master_address:
            return None
        with self.sells.hold(signature):
            return await self._with_retry(
                "sell", lambda: self._sell_once(owner, side, signature, amount, game_id)
            )

    async def _sell_once(
        self,
        owner: str,
        side: Side,
        signature: str,
        amount: int,
        game_id: int | None,
    ) -> OperationResult | None:
        async with self._session_factory() as db:
            try:
                async with db.begin():
                    if await self._repo.sell_exists(db, signature):
                        raise TransactionSignatureAlreadyExists(signature)

                    game = await self._active_game(db, game_id)
                    if owner in game.internal_addresses():
                        return None
                    if amount <= 0 or amount > game.outstanding(side):
                        raise InvalidTransaction(
                            signature,
                            f"sell of {amount} exceeds outstanding {side.value} supply",
                        )

                    keypairs = await self._repo.get_keypairs(db, game.id)
                    token_price = game.price(side)
                    quote = quote_sell(game, side, amount, self._clock(), self.game_duration)
                    logger.info(
                        "Selling %s token: game=%s owner=%s amount=%d tax=%.4f payout=%d"
                        " redistribution=%d",
                        side.value, game.id, owner, amount, float(quote.tax),
                        quote.payout, quote.redistribution,
                    )
                    apply_sell(game, side, amount, quote, self._network_fee)
                    verify_game_invariants(game)

                    paid = await self._ledger.pay_out_sale(
                        source_pot=keypairs.pot(side),
                        target_pot=game.pot_address(side.other),
                        owner=owner,
                        redistribution=quote.redistribution,
                        payout=max(quote.payout - self._network_fee, 0),
                        memo=f"goatPotMoving_{game.id}",
                    )
                    logger.info("Transferred sell proceeds: game=%s signature=%s", game.id, paid)

                    record = await self._repo.insert_sell(
                        db,
                        SellTransaction(
                            game_id=game.id,
                            solana_wallet_address=owner,
                            burn_tx_signature=signature,
                            solana_tx_signature=paid,
                            side=side.value,
                            token_price=token_price,
                            sell_token_amount=amount,
                            sol_received=quote.payout,
                            fees=quote.fee,
                            progressive_fees=floor_int(quote.sol_value) - quote.fee - quote.payout,
                        ),
                    )
                    await self._repo.update_game(db, game)
            except IntegrityError as e:
                raise TransactionSignatureAlreadyExists(signature) from e

        return OperationResult(game=game, transaction=record, payout_signature=paid)

    # ------------------------------------------------------------------
    # redeem
    # ------------------------------------------------------------------

    async def redeem(
        self, game_id: int, owner: str, amount: int, signature: str
    ) -> OperationResult:
        """Pay the pro-rata share of the claimable pot for burned winning tokens."""
        with self.redeems.hold(signature):
            return await self._with_retry(
                "redeem", lambda: self._redeem_once(game_id, owner, amount, signature)
            )

    async def _redeem_once(
        self, game_id: int, owner: str, amount: int, signature: str
    ) -> OperationResult:
        async with self._session_factory() as db:
            try:
                async with db.begin():
                    game = await self._repo.get_game(db, game_id, for_update=True)
                    if game is None:
                        raise GameNotFound(game_id)
                    if game.time_ended is None:
                        raise GameIsNotEnded(game_id)
                    if game.settled_at is None:
                        raise GameIsNotEnded(game_id, "is not settled yet")
                    if game.claimable_winning_pot < 1:
                        raise NoClaimableSolInGame(game_id)
                    if await self._repo.claim_exists(db, signature):
                        raise TransactionSignatureAlreadyExists(signature)
                    # a sell returns tokens to the same pot account
                    if await self._repo.sell_exists(db, signature):
                        raise TransactionSignatureAlreadyExists(signature)

                    side = winning_side(game.price_start, game.price_end)
                    supply = game.outstanding(side)
                    if supply == 0:
                        raise ZeroGameTokenSupply(game_id, side.value)
                    if amount <= 0 or amount > supply:
                        raise InvalidTransaction(
                            signature, f"redeem of {amount} exceeds {side.value} supply {supply}"
                        )

                    await self._validate_burn(signature, owner, game.mint_address(side), amount)

                    payout = redeem_payout(amount, supply, game.claimable_winning_pot)
                    apply_redeem(game, side, amount, payout)
                    verify_game_invariants(game)

                    keypairs = await self._repo.get_keypairs(db, game.id)
                    claimed = await self._ledger.transfer_from_pot(
                        keypairs.pot(side),
                        owner,
                        max(payout - self._network_fee, 0),
                        memo=f"goatClaim_{game.id}",
                    )
                    logger.info(
                        "Redeemed %s token: game=%s owner=%s amount=%d payout=%d signature=%s",
                        side.value, game.id, owner, amount, payout, claimed,
                    )

                    record = await self._repo.insert_claim(
                        db,
                        ClaimTransaction(
                            game_id=game.id,
                            solana_wallet_address=owner,
                            target_solana_wallet_address=owner,
                            burn_tx_signature=signature,
                            solana_tx_signature=claimed,
                            side=side.value,
                            claim_token_amount=amount,
                            sol_received=payout,
                            fees=self._network_fee,
                        ),
                    )
                    await self._repo.update_game(db, game)
            except IntegrityError as e:
                raise TransactionSignatureAlreadyExists(signature) from e

        return OperationResult(game=game, transaction=record, payout_signature=claimed)

    async def _validate_burn(self, signature: str, owner: str, mint: str, amount: int) -> None:
        try:
            valid = await self._ledger.validate_burn(signature, owner, mint, amount)
        except TransientLedgerError:
            raise
        except Exception as e:
            raise InvalidTransaction(signature, str(e)) from e
        if not valid:
            raise InvalidTransaction(signature, "Invalid transaction signature")

    # ------------------------------------------------------------------
    # settle
    # ------------------------------------------------------------------

    async def settle(self, game_id: int) -> None:
        """End an overdue game and merge the losing pot into the winning pot.

        Progress is persisted in three steps (ended, winner fixed, merge
        recorded) so a failed attempt is picked up again by the scheduler
        and resumes with the winner chosen the first time.
        """
        now = self._clock()
        async with self._session_factory() as db:
            async with db.begin():
                game = await self._repo.get_game(db, game_id, for_update=True)
                if game is None:
                    logger.warning("[settlement] game %s not found", game_id)
                    return
                if game.settled_at is not None:
                    return
                if now - game.time_started < self.game_duration:
                    return
                if game.time_ended is None:
                    game.time_ended = now
                    logger.info("[settlement] game %s ended", game_id)
                if not await self._repo.has_buy(db, game_id):
                    game.settled_at = now
                    await self._repo.update_game(db, game)
                    logger.info("[settlement] game %s doesn't have buyer, skipping", game_id)
                    return
                await self._repo.update_game(db, game)

        try:
            winner = await self._fix_winner(game)
            await self._merge(game_id, winner)
        except Exception:
            logger.exception("[settlement] failed to settle game %s", game_id)

    async def _fix_winner(self, game: Game) -> Side:
        if game.winning_side is not None:
            return Side(game.winning_side)
        price = await self._oracle.get_token_price(game.contract_address, game.token_decimals)
        async with self._session_factory() as db:
            async with db.begin():
                locked = await self._repo.get_game(db, game.id, for_update=True)
                if locked.winning_side is not None:
                    return Side(locked.winning_side)
                winner = winning_side(locked.price_start, price.sol)
                locked.price_end = price.sol
                locked.usd_end = price.usd
                locked.winning_side = winner.value
                await self._repo.update_game(db, locked)
        logger.info(
            "[settlement] game %s winner=%s price_start=%s price_end=%s",
            game.id, winner.value, game.price_start, price.sol,
        )
        return winner

    async def _merge(self, game_id: int, winner: Side) -> None:
        async with self._session_factory() as db:
            async with db.begin():
                game = await self._repo.get_game(db, game_id)
                keypairs = await self._repo.get_keypairs(db, game_id)
        loser = winner.other
        memo = f"goatSettle_{game_id}"
        logger.info(
            "[settlement] transfer from loser %s to winner %s and burn both tokens: game=%s",
            game.pot_address(loser), game.pot_address(winner), game_id,
        )
        signature = await self._with_retry(
            "settle",
            lambda: self._ledger.merge_pots_and_burn(
                winner_pot=keypairs.pot(winner),
                winner_mint=game.mint_address(winner),
                loser_pot=keypairs.pot(loser),
                loser_mint=game.mint_address(loser),
                memo=memo,
            ),
        )
        async with self._session_factory() as db:
            async with db.begin():
                game = await self._repo.get_game(db, game_id, for_update=True)
                apply_merge(game, winner)
                game.settled_at = self._clock()
                game.settlement_signature = signature
                verify_game_invariants(game)
                await self._repo.update_game(db, game)
        logger.info("[settlement] game %s settled: signature=%s", game_id, signature)
