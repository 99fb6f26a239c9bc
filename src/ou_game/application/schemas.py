"""Pydantic schemas for ou_game API requests and responses.

GameOut is the public projection of a game: fee accumulators and key
material are never part of it. Lamport amounts are ints; token prices
(Decimal) are rendered as strings to keep full precision.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from src.ou_common.lamports import lamports_to_display
from src.ou_common.response import PageMeta
from src.ou_game.domain.models import BuyTransaction, Game, SellTransaction
from src.ou_settlement.domain.models import OperationResult

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class StartGameRequest(BaseModel):
    contract: str = Field(..., min_length=32, max_length=44)
    signature: str = Field(..., min_length=64, max_length=100)


class SignatureRequest(BaseModel):
    signature: str = Field(..., min_length=64, max_length=100)


# ---------------------------------------------------------------------------
# Game
# ---------------------------------------------------------------------------


class GameOut(BaseModel):
    id: int
    initiator: str
    contract_address: str
    token_name: str | None
    token_symbol: str | None
    token_decimals: int
    time_started: datetime
    time_ended: datetime | None
    price_start: str
    price_end: str
    usd_start: str
    usd_end: str
    over_pot_address: str
    under_pot_address: str
    over_mint_address: str
    under_mint_address: str
    total_pot: int
    total_pot_display: str
    over_pot: int
    under_pot: int
    over_token_minted: int
    over_token_burnt: int
    under_token_minted: int
    under_token_burnt: int
    over_price: int
    under_price: int
    claimable_winning_pot: int
    winning_side: str | None
    settled_at: datetime | None
    created_at: datetime | None

    @classmethod
    def from_domain(cls, g: Game) -> "GameOut":
        return cls(
            id=g.id,
            initiator=g.initiator,
            contract_address=g.contract_address,
            token_name=g.token_name,
            token_symbol=g.token_symbol,
            token_decimals=g.token_decimals,
            time_started=g.time_started,
            time_ended=g.time_ended,
            price_start=str(g.price_start),
            price_end=str(g.price_end),
            usd_start=str(g.usd_start),
            usd_end=str(g.usd_end),
            over_pot_address=g.over_pot_address,
            under_pot_address=g.under_pot_address,
            over_mint_address=g.over_mint_address,
            under_mint_address=g.under_mint_address,
            total_pot=g.total_pot,
            total_pot_display=lamports_to_display(g.total_pot),
            over_pot=g.over_pot,
            under_pot=g.under_pot,
            over_token_minted=g.over_token_minted,
            over_token_burnt=g.over_token_burnt,
            under_token_minted=g.under_token_minted,
            under_token_burnt=g.under_token_burnt,
            over_price=g.over_price,
            under_price=g.under_price,
            claimable_winning_pot=g.claimable_winning_pot,
            winning_side=g.winning_side,
            settled_at=g.settled_at,
            created_at=g.created_at,
        )


class GameListResponse(BaseModel):
    meta: PageMeta
    data: list[GameOut]


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class BuyOut(BaseModel):
    id: int | None
    game_id: int
    solana_wallet_address: str
    solana_tx_signature: str
    mint_tx_signature: str
    side: str
    token_price: int
    total_in_solana: int
    tokens_received: int
    created_at: datetime | None

    @classmethod
    def from_domain(cls, tx: BuyTransaction) -> "BuyOut":
        return cls(
            id=tx.id,
            game_id=tx.game_id,
            solana_wallet_address=tx.solana_wallet_address,
            solana_tx_signature=tx.solana_tx_signature,
            mint_tx_signature=tx.mint_tx_signature,
            side=tx.side,
            token_price=tx.token_price,
            total_in_solana=tx.total_in_solana,
            tokens_received=tx.tokens_received,
            created_at=tx.created_at,
        )


class SellOut(BaseModel):
    id: int | None
    game_id: int
    solana_wallet_address: str
    burn_tx_signature: str
    solana_tx_signature: str
    side: str
    token_price: int
    sell_token_amount: int
    sol_received: int
    created_at: datetime | None

    @classmethod
    def from_domain(cls, tx: SellTransaction) -> "SellOut":
        return cls(
            id=tx.id,
            game_id=tx.game_id,
            solana_wallet_address=tx.solana_wallet_address,
            burn_tx_signature=tx.burn_tx_signature,
            solana_tx_signature=tx.solana_tx_signature,
            side=tx.side,
            token_price=tx.token_price,
            sell_token_amount=tx.sell_token_amount,
            sol_received=tx.sol_received,
            created_at=tx.created_at,
        )


class GamePositions(BaseModel):
    game_id: int
    buys: list[BuyOut]
    sells: list[SellOut]


class OperationOut(BaseModel):
    game_id: int
    transaction_id: int | None
    payout_signature: str

    @classmethod
    def from_result(cls, result: OperationResult) -> "OperationOut":
        return cls(
            game_id=result.game.id,
            transaction_id=result.transaction.id,
            payout_signature=result.payout_signature,
        )
