"""Resolve a submitted signature to engine calls.

Used by the POST /games/buy|sell|redeem endpoints: the transfers of the
signature are matched against the pots of every eligible game and each
match is applied through the SettlementEngine.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from src.ou_chain.domain.models import SolTransfer, TokenTransfer
from src.ou_common.enums import Side
from src.ou_common.errors import NoValidTransfer, TransactionSignatureAlreadyExists
from src.ou_game.domain.models import Game
from src.ou_settlement.domain.models import OperationResult
from src.ou_settlement.engine.engine import SettlementEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferMatch:
    game: Game
    side: Side
    owner: str
    amount: int


def match_sol_transfers(transfers: list[SolTransfer], games: list[Game]) -> list[TransferMatch]:
    matches = []
    for game in games:
        for transfer in transfers:
            for side in Side:
                if transfer.destination == game.pot_address(side):
                    matches.append(TransferMatch(game, side, transfer.source, transfer.lamports))
    return matches


def match_token_transfers(
    transfers: list[TokenTransfer],
    games: list[Game],
    pot_accounts: dict[tuple[int, Side], str],
) -> list[TransferMatch]:
    """`pot_accounts` maps (game id, side) to the pot's token account for that side's mint."""
    matches = []
    for game in games:
        for transfer in transfers:
            for side in Side:
                if transfer.destination == pot_accounts[(game.id, side)]:
                    matches.append(TransferMatch(game, side, transfer.owner, transfer.amount))
    return matches


def pot_token_accounts(engine: SettlementEngine, games: list[Game]) -> dict[tuple[int, Side], str]:
    return {
        (game.id, side): engine.ledger.associated_token_address(
            game.pot_address(side), game.mint_address(side)
        )
        for game in games
        for side in Side
    }


async def _games(engine: SettlementEngine, redeemable: bool) -> list[Game]:
    async with engine.session_factory() as db:
        async with db.begin():
            if redeemable:
                return await engine.repo.list_redeemable_games(db)
            return await engine.repo.list_active_games(db)


async def _apply_each(
    label: str,
    signature: str,
    matches: list[TransferMatch],
    apply: Callable[[TransferMatch], Awaitable[OperationResult | None]],
) -> list[OperationResult]:
    """Records are keyed by signature, so only the first transfer of a signature is applied."""
    results: list[OperationResult] = []
    for m in matches:
        try:
            result = await apply(m)
        except TransactionSignatureAlreadyExists:
            if not results:
                raise
            logger.warning(
                "%s: dropped extra transfer in %s: game=%s side=%s owner=%s amount=%d",
                label, signature, m.game.id, m.side.value, m.owner, m.amount,
            )
            continue
        if result:
            results.append(result)
    return results


async def submit_buy(engine: SettlementEngine, signature: str) -> list[OperationResult]:
    games = await _games(engine, redeemable=False)
    transfers = await engine.ledger.get_sol_transfers(signature)
    matches = match_sol_transfers(transfers, games)
    if not matches:
        raise NoValidTransfer()

    return await _apply_each(
        "buy",
        signature,
        matches,
        lambda m: engine.buy(m.owner, m.side, signature, m.amount, game_id=m.game.id),
    )


async def submit_sell(engine: SettlementEngine, signature: str) -> list[OperationResult]:
    games = await _games(engine, redeemable=False)
    transfers = await engine.ledger.get_token_transfers(signature)
    matches = match_token_transfers(transfers, games, pot_token_accounts(engine, games))
    if not matches:
        raise NoValidTransfer()

    return await _apply_each(
        "sell",
        signature,
        matches,
        lambda m: engine.sell(m.owner, m.side, signature, m.amount, game_id=m.game.id),
    )


async def submit_redeem(engine: SettlementEngine, signature: str) -> list[OperationResult]:
    games = await _games(engine, redeemable=True)
    transfers = await engine.ledger.get_token_transfers(signature)
    matches = match_token_transfers(transfers, games, pot_token_accounts(engine, games))
    if not matches:
        raise NoValidTransfer()

    return await _apply_each(
        "redeem",
        signature,
        matches,
        lambda m: engine.redeem(m.game.id, m.owner, m.amount, signature),
    )
