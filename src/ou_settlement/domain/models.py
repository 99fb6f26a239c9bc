"""Domain models for ou_settlement."""

from dataclasses import dataclass

from src.ou_game.domain.models import (
    BuyTransaction,
    ClaimTransaction,
    Game,
    SellTransaction,
)


@dataclass
class OperationResult:
    """Outcome of an applied buy, sell or redeem."""

    game: Game
    transaction: BuyTransaction | SellTransaction | ClaimTransaction
    payout_signature: str
