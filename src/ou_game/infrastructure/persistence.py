"""GameRepository: concrete implementation of GameRepositoryProtocol.

All queries use raw text() SQL (no ORM).
asyncpg NULL parameter pattern: CAST(:param AS TYPE) IS NULL required for None values.
Secret key material is only ever read through get_keypairs().
"""

from datetime import datetime

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.ou_game.domain.models import (
    BuyTransaction,
    ClaimTransaction,
    Game,
    GameKeypairs,
    SellTransaction,
)

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_GAME_COLUMNS = """
    id, initiator, initiator_signature, creation_signature,
    contract_address, token_name, token_symbol, token_decimals,
    time_started, time_ended,
    price_start, price_end, usd_start, usd_end,
    over_pot_address, under_pot_address, over_mint_address, under_mint_address,
    total_pot, over_pot, under_pot,
    over_token_minted, over_token_burnt, under_token_minted, under_token_burnt,
    over_price, under_price, buy_fee, sell_fee, claimable_winning_pot,
    winning_side, settled_at, settlement_signature,
    created_at, updated_at
"""

_GET_GAME_SQL = text(f"SELECT {_GAME_COLUMNS} FROM games WHERE id = :game_id")

_GET_GAME_FOR_UPDATE_SQL = text(
    f"SELECT {_GAME_COLUMNS} FROM games WHERE id = :game_id FOR UPDATE"
)

_LATEST_ACTIVE_SQL = text(f"""
    SELECT {_GAME_COLUMNS} FROM games
    WHERE time_ended IS NULL
    ORDER BY id DESC
    LIMIT 1
""")

_LATEST_ACTIVE_FOR_UPDATE_SQL = text(f"""
    SELECT {_GAME_COLUMNS} FROM games
    WHERE time_ended IS NULL
    ORDER BY id DESC
    LIMIT 1
    FOR UPDATE
""")

_ACTIVE_BY_CONTRACT_SQL = text(f"""
    SELECT {_GAME_COLUMNS} FROM games
    WHERE contract_address = :contract AND time_ended IS NULL
    LIMIT 1
""")

_BY_INITIATOR_SIGNATURE_SQL = text(
    f"SELECT {_GAME_COLUMNS} FROM games WHERE initiator_signature = :signature"
)

_INSERT_GAME_SQL = text("""
    INSERT INTO games (
        initiator, initiator_signature, creation_signature,
        contract_address, token_name, token_symbol, token_decimals,
        time_started, price_start, price_end, usd_start, usd_end,
        over_pot_address, under_pot_address, over_mint_address, under_mint_address,
        over_price, under_price
    ) VALUES (
        :initiator, :initiator_signature, :creation_signature,
        :contract_address, :token_name, :token_symbol, :token_decimals,
        :time_started, :price_start, :price_end, :usd_start, :usd_end,
        :over_pot_address, :under_pot_address, :over_mint_address, :under_mint_address,
        :over_price, :under_price
    )
    RETURNING id, created_at, updated_at
""")

_INSERT_KEYPAIRS_SQL = text("""
    INSERT INTO game_keypairs
        (game_id, over_pot_secret, under_pot_secret, over_mint_secret, under_mint_secret)
    VALUES
        (:game_id, :over_pot_secret, :under_pot_secret, :over_mint_secret, :under_mint_secret)
""")

_GET_KEYPAIRS_SQL = text("""
    SELECT game_id, over_pot_secret, under_pot_secret, over_mint_secret, under_mint_secret
    FROM game_keypairs
    WHERE game_id = :game_id
""")

_UPDATE_GAME_SQL = text("""
    UPDATE games SET
        time_ended = :time_ended,
        price_end = :price_end,
        usd_end = :usd_end,
        total_pot = :total_pot,
        over_pot = :over_pot,
        under_pot = :under_pot,
        over_token_minted = :over_token_minted,
        over_token_burnt = :over_token_burnt,
        under_token_minted = :under_token_minted,
        under_token_burnt = :under_token_burnt,
        over_price = :over_price,
        under_price = :under_price,
        buy_fee = :buy_fee,
        sell_fee = :sell_fee,
        claimable_winning_pot = :claimable_winning_pot,
        winning_side = :winning_side,
        settled_at = :settled_at,
        settlement_signature = :settlement_signature,
        updated_at = NOW()
    WHERE id = :id
""")

_GAME_FILTER = """
    WHERE (time_ended IS NOT NULL) = :ended
      AND (
          CAST(:search AS TEXT) IS NULL
          OR token_name ILIKE CAST(:search AS TEXT)
          OR token_symbol ILIKE CAST(:search AS TEXT)
          OR contract_address ILIKE CAST(:search AS TEXT)
      )
"""

_LIST_GAMES_SQL = text(f"""
    SELECT {_GAME_COLUMNS} FROM games
    {_GAME_FILTER}
    ORDER BY id DESC
    LIMIT :limit OFFSET :offset
""")

_COUNT_GAMES_SQL = text(f"SELECT COUNT(*) FROM games {_GAME_FILTER}")

_LIST_ACTIVE_SQL = text(f"""
    SELECT {_GAME_COLUMNS} FROM games
    WHERE time_ended IS NULL
    ORDER BY id
""")

_LIST_REDEEMABLE_SQL = text(f"""
    SELECT {_GAME_COLUMNS} FROM games
    WHERE settled_at IS NOT NULL AND claimable_winning_pot > 0
    ORDER BY id
""")

# Overdue and either still running or ended without a recorded merge.
_LIST_TO_SETTLE_SQL = text(f"""
    SELECT {_GAME_COLUMNS} FROM games
    WHERE time_started <= :started_before
      AND settled_at IS NULL
    ORDER BY id
""")

_BUY_EXISTS_SQL = text(
    "SELECT 1 FROM buy_transactions WHERE solana_tx_signature = :signature"
)
_SELL_EXISTS_SQL = text(
    "SELECT 1 FROM sell_transactions WHERE burn_tx_signature = :signature"
)
_CLAIM_EXISTS_SQL = text(
    "SELECT 1 FROM claim_transactions WHERE burn_tx_signature = :signature"
)
_HAS_BUY_SQL = text("SELECT 1 FROM buy_transactions WHERE game_id = :game_id LIMIT 1")

_INSERT_BUY_SQL = text("""
    INSERT INTO buy_transactions
        (game_id, solana_wallet_address, solana_tx_signature, mint_tx_signature,
         side, token_price, total_in_solana, tokens_received, fees)
    VALUES
        (:game_id, :solana_wallet_address, :solana_tx_signature, :mint_tx_signature,
         :side, :token_price, :total_in_solana, :tokens_received, :fees)
    RETURNING id, created_at
""")

_INSERT_SELL_SQL = text("""
    INSERT INTO sell_transactions
        (game_id, solana_wallet_address, burn_tx_signature, solana_tx_signature,
         side, token_price, sell_token_amount, sol_received, fees, progressive_fees)
    VALUES
        (:game_id, :solana_wallet_address, :burn_tx_signature, :solana_tx_signature,
         :side, :token_price, :sell_token_amount, :sol_received, :fees, :progressive_fees)
    RETURNING id, created_at
""")

_INSERT_CLAIM_SQL = text("""
    INSERT INTO claim_transactions
        (game_id, solana_wallet_address, target_solana_wallet_address,
         burn_tx_signature, solana_tx_signature, side,
         claim_token_amount, sol_received, fees)
    VALUES
        (:game_id, :solana_wallet_address, :target_solana_wallet_address,
         :burn_tx_signature, :solana_tx_signature, :side,
         :claim_token_amount, :sol_received, :fees)
    RETURNING id, created_at
""")

# Cursor column per record kind: the input signature seen on the watched address.
_LATEST_SIGNATURE_SQL = {
    "buy": text("""
        SELECT solana_tx_signature AS signature FROM buy_transactions
        WHERE game_id = :game_id AND side = :side
        ORDER BY id DESC LIMIT 1
    """),
    "sell": text("""
        SELECT burn_tx_signature AS signature FROM sell_transactions
        WHERE game_id = :game_id AND side = :side
        ORDER BY id DESC LIMIT 1
    """),
    "claim": text("""
        SELECT burn_tx_signature AS signature FROM claim_transactions
        WHERE game_id = :game_id AND side = :side
        ORDER BY id DESC LIMIT 1
    """),
}

_WALLET_BUYS_SQL = text("""
    SELECT b.id, b.game_id, b.solana_wallet_address, b.solana_tx_signature,
           b.mint_tx_signature, b.side, b.token_price, b.total_in_solana,
           b.tokens_received, b.fees, b.created_at
    FROM buy_transactions b
    JOIN games g ON g.id = b.game_id
    WHERE b.solana_wallet_address = :wallet AND g.time_ended IS NULL
    ORDER BY b.id
""")

_WALLET_SELLS_SQL = text("""
    SELECT s.id, s.game_id, s.solana_wallet_address, s.burn_tx_signature,
           s.solana_tx_signature, s.side, s.token_price, s.sell_token_amount,
           s.sol_received, s.fees, s.progressive_fees, s.created_at
    FROM sell_transactions s
    JOIN games g ON g.id = s.game_id
    WHERE s.solana_wallet_address = :wallet AND g.time_ended IS NULL
    ORDER BY s.id
""")

# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_game(row: object) -> Game:
    return Game(**dict(row._mapping))  # type: ignore[attr-defined]


def _row_to_buy(row: object) -> BuyTransaction:
    return BuyTransaction(**dict(row._mapping))  # type: ignore[attr-defined]


def _row_to_sell(row: object) -> SellTransaction:
    return SellTransaction(**dict(row._mapping))  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class GameRepository:
    """Concrete repository: callers own the transaction boundary."""

    async def get_game(
        self, db: AsyncSession, game_id: int, for_update: bool = False
    ) -> Game | None:
        sql = _GET_GAME_FOR_UPDATE_SQL if for_update else _GET_GAME_SQL
        result = await db.execute(sql, {"game_id": game_id})
        row = result.fetchone()
        return _row_to_game(row) if row else None

    async def get_latest_active_game(
        self, db: AsyncSession, for_update: bool = False
    ) -> Game | None:
        sql = _LATEST_ACTIVE_FOR_UPDATE_SQL if for_update else _LATEST_ACTIVE_SQL
        result = await db.execute(sql)
        row = result.fetchone()
        return _row_to_game(row) if row else None

    async def get_active_game_by_contract(
        self, db: AsyncSession, contract: str
    ) -> Game | None:
        result = await db.execute(_ACTIVE_BY_CONTRACT_SQL, {"contract": contract})
        row = result.fetchone()
        return _row_to_game(row) if row else None

    async def get_game_by_initiator_signature(
        self, db: AsyncSession, signature: str
    ) -> Game | None:
        result = await db.execute(_BY_INITIATOR_SIGNATURE_SQL, {"signature": signature})
        row = result.fetchone()
        return _row_to_game(row) if row else None

    async def insert_game(
        self, db: AsyncSession, game: Game, keypairs: GameKeypairs
    ) -> Game:
        result = await db.execute(
            _INSERT_GAME_SQL,
            {
                "initiator": game.initiator,
                "initiator_signature": game.initiator_signature,
                "creation_signature": game.creation_signature,
                "contract_address": game.contract_address,
                "token_name": game.token_name,
                "token_symbol": game.token_symbol,
                "token_decimals": game.token_decimals,
                "time_started": game.time_started,
                "price_start": game.price_start,
                "price_end": game.price_end,
                "usd_start": game.usd_start,
                "usd_end": game.usd_end,
                "over_pot_address": game.over_pot_address,
                "under_pot_address": game.under_pot_address,
                "over_mint_address": game.over_mint_address,
                "under_mint_address": game.under_mint_address,
                "over_price": game.over_price,
                "under_price": game.under_price,
            },
        )
        row = result.fetchone()
        game.id = row.id  # type: ignore[union-attr]
        game.created_at = row.created_at  # type: ignore[union-attr]
        game.updated_at = row.updated_at  # type: ignore[union-attr]
        keypairs.game_id = game.id
        await db.execute(
            _INSERT_KEYPAIRS_SQL,
            {
                "game_id": game.id,
                "over_pot_secret": keypairs.over_pot_secret,
                "under_pot_secret": keypairs.under_pot_secret,
                "over_mint_secret": keypairs.over_mint_secret,
                "under_mint_secret": keypairs.under_mint_secret,
            },
        )
        return game

    async def update_game(self, db: AsyncSession, game: Game) -> None:
        await db.execute(
            _UPDATE_GAME_SQL,
            {
                "id": game.id,
                "time_ended": game.time_ended,
                "price_end": game.price_end,
                "usd_end": game.usd_end,
                "total_pot": game.total_pot,
                "over_pot": game.over_pot,
                "under_pot": game.under_pot,
                "over_token_minted": game.over_token_minted,
                "over_token_burnt": game.over_token_burnt,
                "under_token_minted": game.under_token_minted,
                "under_token_burnt": game.under_token_burnt,
                "over_price": game.over_price,
                "under_price": game.under_price,
                "buy_fee": game.buy_fee,
                "sell_fee": game.sell_fee,
                "claimable_winning_pot": game.claimable_winning_pot,
                "winning_side": game.winning_side,
                "settled_at": game.settled_at,
                "settlement_signature": game.settlement_signature,
            },
        )

    async def get_keypairs(self, db: AsyncSession, game_id: int) -> GameKeypairs:
        result = await db.execute(_GET_KEYPAIRS_SQL, {"game_id": game_id})
        row = result.fetchone()
        if row is None:
            raise LookupError(f"No keypairs stored for game {game_id}")
        return GameKeypairs(**dict(row._mapping))

    async def list_games(
        self,
        db: AsyncSession,
        ended: bool,
        search: str | None,
        page: int,
        limit: int,
    ) -> tuple[list[Game], int]:
        params = {
            "ended": ended,
            "search": f"%{search}%" if search else None,
        }
        total = (await db.execute(_COUNT_GAMES_SQL, params)).scalar_one()
        result = await db.execute(
            _LIST_GAMES_SQL,
            {**params, "limit": limit, "offset": (page - 1) * limit},
        )
        return [_row_to_game(row) for row in result.fetchall()], total

    async def list_active_games(self, db: AsyncSession) -> list[Game]:
        result = await db.execute(_LIST_ACTIVE_SQL)
        return [_row_to_game(row) for row in result.fetchall()]

    async def list_redeemable_games(self, db: AsyncSession) -> list[Game]:
        result = await db.execute(_LIST_REDEEMABLE_SQL)
        return [_row_to_game(row) for row in result.fetchall()]

    async def list_games_to_settle(
        self, db: AsyncSession, started_before: datetime
    ) -> list[Game]:
        result = await db.execute(_LIST_TO_SETTLE_SQL, {"started_before": started_before})
        return [_row_to_game(row) for row in result.fetchall()]

    # --- transaction records ---

    async def buy_exists(self, db: AsyncSession, signature: str) -> bool:
        result = await db.execute(_BUY_EXISTS_SQL, {"signature": signature})
        return result.fetchone() is not None

    async def sell_exists(self, db: AsyncSession, signature: str) -> bool:
        result = await db.execute(_SELL_EXISTS_SQL, {"signature": signature})
        return result.fetchone() is not None

    async def claim_exists(self, db: AsyncSession, signature: str) -> bool:
        result = await db.execute(_CLAIM_EXISTS_SQL, {"signature": signature})
        return result.fetchone() is not None

    async def has_buy(self, db: AsyncSession, game_id: int) -> bool:
        result = await db.execute(_HAS_BUY_SQL, {"game_id": game_id})
        return result.fetchone() is not None

    async def insert_buy(self, db: AsyncSession, tx: BuyTransaction) -> BuyTransaction:
        result = await db.execute(
            _INSERT_BUY_SQL,
            {
                "game_id": tx.game_id,
                "solana_wallet_address": tx.solana_wallet_address,
                "solana_tx_signature": tx.solana_tx_signature,
                "mint_tx_signature": tx.mint_tx_signature,
                "side": tx.side,
                "token_price": tx.token_price,
                "total_in_solana": tx.total_in_solana,
                "tokens_received": tx.tokens_received,
                "fees": tx.fees,
            },
        )
        row = result.fetchone()
        tx.id, tx.created_at = row.id, row.created_at  # type: ignore[union-attr]
        return tx

    async def insert_sell(self, db: AsyncSession, tx: SellTransaction) -> SellTransaction:
        result = await db.execute(
            _INSERT_SELL_SQL,
            {
                "game_id": tx.game_id,
                "solana_wallet_address": tx.solana_wallet_address,
                "burn_tx_signature": tx.burn_tx_signature,
                "solana_tx_signature": tx.solana_tx_signature,
                "side": tx.side,
                "token_price": tx.token_price,
                "sell_token_amount": tx.sell_token_amount,
                "sol_received": tx.sol_received,
                "fees": tx.fees,
                "progressive_fees": tx.progressive_fees,
            },
        )
        row = result.fetchone()
        tx.id, tx.created_at = row.id, row.created_at  # type: ignore[union-attr]
        return tx

    async def insert_claim(self, db: AsyncSession, tx: ClaimTransaction) -> ClaimTransaction:
        result = await db.execute(
            _INSERT_CLAIM_SQL,
            {
                "game_id": tx.game_id,
                "solana_wallet_address": tx.solana_wallet_address,
                "target_solana_wallet_address": tx.target_solana_wallet_address,
                "burn_tx_signature": tx.burn_tx_signature,
                "solana_tx_signature": tx.solana_tx_signature,
                "side": tx.side,
                "claim_token_amount": tx.claim_token_amount,
                "sol_received": tx.sol_received,
                "fees": tx.fees,
            },
        )
        row = result.fetchone()
        tx.id, tx.created_at = row.id, row.created_at  # type: ignore[union-attr]
        return tx

    async def latest_signature(
        self, db: AsyncSession, kind: str, game_id: int, side: str
    ) -> str | None:
        result = await db.execute(
            _LATEST_SIGNATURE_SQL[kind], {"game_id": game_id, "side": side}
        )
        row = result.fetchone()
        return row.signature if row else None

    async def list_wallet_transactions(
        self, db: AsyncSession, wallet: str
    ) -> tuple[list[BuyTransaction], list[SellTransaction]]:
        buys = await db.execute(_WALLET_BUYS_SQL, {"wallet": wallet})
        sells = await db.execute(_WALLET_SELLS_SQL, {"wallet": wallet})
        return (
            [_row_to_buy(row) for row in buys.fetchall()],
            [_row_to_sell(row) for row in sells.fetchall()],
        )
