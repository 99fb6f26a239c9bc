"""Pot and claim-token accounting: pure functions over the Game record.

Every amount is an int in lamports (or claim-token base units). Ratios
stay exact as Fraction until an explicit floor or half-up rounding.
The apply_* functions mutate the Game in place; the caller persists it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from fractions import Fraction

from src.ou_common.enums import Side
from src.ou_common.lamports import LAMPORTS_PER_SOL, floor_int, round_half_up
from src.ou_game.domain.models import Game

CLAIM_TOKEN_DECIMALS = 9
INITIAL_TOKEN_PRICE = 1_000_000  # 0.001 SOL, scaled by 1e9
FEE_RATE = Fraction(1, 100)
MAX_PROGRESSIVE_TAX = Fraction(99, 100)


@dataclass(frozen=True)
class BuyQuote:
    tokens: int
    fee: int


@dataclass(frozen=True)
class SellQuote:
    sol_value: Fraction
    fee: int
    tax: Fraction
    payout: int           # lamports owed to the seller before the network fee
    redistribution: int   # lamports moved to the other side's pot


def calculate(lamports: int, price: int, decimals: int = CLAIM_TOKEN_DECIMALS) -> int:
    """Claim tokens minted for a deposit.

    floor((lamports * 0.99 / 1e9) / (price / 10**decimals) * 10**decimals)
    """
    scale = 10 ** decimals
    return (lamports * 99 * scale * scale) // (100 * LAMPORTS_PER_SOL * price)


def recompute_claimable(game: Game) -> None:
    game.claimable_winning_pot = game.total_pot - (game.buy_fee + game.sell_fee)


def recompute_prices(game: Game) -> None:
    """price = pot / outstanding * 1e9; a side with no outstanding supply keeps its price."""
    over_outstanding = game.outstanding(Side.OVER)
    under_outstanding = game.outstanding(Side.UNDER)
    if under_outstanding > 0:
        game.under_price = round_half_up(
            Fraction(game.under_pot * LAMPORTS_PER_SOL, under_outstanding)
        )
    if over_outstanding > 0:
        game.over_price = round_half_up(
            Fraction(game.over_pot * LAMPORTS_PER_SOL, over_outstanding)
        )


def quote_buy(game: Game, side: Side, lamports: int) -> BuyQuote:
    return BuyQuote(
        tokens=calculate(lamports, game.price(side)),
        fee=round_half_up(lamports * FEE_RATE),
    )


def apply_buy(game: Game, side: Side, lamports: int, quote: BuyQuote) -> None:
    if side is Side.OVER:
        game.over_pot += lamports
        game.over_token_minted += quote.tokens
    else:
        game.under_pot += lamports
        game.under_token_minted += quote.tokens
    game.total_pot = game.over_pot + game.under_pot
    game.buy_fee += quote.fee
    recompute_claimable(game)


def progressive_tax(elapsed: timedelta, window: timedelta) -> Fraction:
    """Linear ramp from 0 at game start to 0.99 at the end of the window."""
    elapsed = min(max(elapsed, timedelta(0)), window)
    ratio = Fraction(elapsed // timedelta(microseconds=1), window // timedelta(microseconds=1))
    return ratio * MAX_PROGRESSIVE_TAX


def quote_sell(
    game: Game, side: Side, amount: int, now: datetime, window: timedelta
) -> SellQuote:
    sol_value = Fraction(game.price(side) * amount, LAMPORTS_PER_SOL)
    fee = round_half_up(sol_value * FEE_RATE)
    nett = sol_value - fee
    tax = progressive_tax(now - game.time_started, window)
    return SellQuote(
        sol_value=sol_value,
        fee=fee,
        tax=tax,
        payout=floor_int((1 - tax) * nett),
        redistribution=floor_int(2 * tax * nett / 3),
    )


def apply_sell(
    game: Game, side: Side, amount: int, quote: SellQuote, network_fee: int
) -> None:
    if side is Side.OVER:
        game.over_token_burnt += amount
        game.over_pot -= quote.redistribution + network_fee
        game.under_pot += quote.redistribution
    else:
        game.under_token_burnt += amount
        game.under_pot -= quote.redistribution + network_fee
        game.over_pot += quote.redistribution
    game.total_pot = game.over_pot + game.under_pot
    game.sell_fee += quote.fee
    recompute_prices(game)
    recompute_claimable(game)


def winning_side(price_start: Decimal, price_end: Decimal) -> Side:
    """Over wins only on a strict rise; a flat or falling price goes to under."""
    return Side.OVER if price_end > price_start else Side.UNDER


def apply_merge(game: Game, winner: Side) -> None:
    if winner is Side.OVER:
        game.over_pot += game.under_pot
        game.under_pot = 0
    else:
        game.under_pot += game.over_pot
        game.over_pot = 0
    game.total_pot = game.over_pot + game.under_pot


def redeem_payout(amount: int, supply: int, claimable: int) -> int:
    """Pro-rata share of the claimable pot: floor(amount / supply * claimable)."""
    return (amount * claimable) // supply


def apply_redeem(game: Game, side: Side, amount: int, payout: int) -> None:
    if side is Side.OVER:
        game.over_token_burnt += amount
    else:
        game.under_token_burnt += amount
    game.claimable_winning_pot -= payout
