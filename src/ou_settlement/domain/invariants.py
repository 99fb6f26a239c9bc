"""Game invariant verification after each mutation."""

import logging

from src.ou_common.enums import Side
from src.ou_game.domain.models import Game

logger = logging.getLogger(__name__)


def verify_game_invariants(game: Game) -> None:
    """Verify critical game invariants. Raises AssertionError if violated.

    INV-1: over_pot + under_pot == total_pot
    INV-2: outstanding supply >= 0 on both sides
    INV-3: over_price, under_price >= 0
    INV-4: claimable_winning_pot >= 0
    """
    assert game.over_pot + game.under_pot == game.total_pot, (
        f"INV-1 violated: over_pot({game.over_pot}) + under_pot({game.under_pot})"
        f" != total_pot({game.total_pot})"
    )
    for side in Side:
        outstanding = game.outstanding(side)
        assert outstanding >= 0, f"INV-2 violated: {side.value} outstanding={outstanding}"
    assert game.over_price >= 0 and game.under_price >= 0, (
        f"INV-3 violated: over_price={game.over_price}, under_price={game.under_price}"
    )
    assert game.claimable_winning_pot >= 0, (
        f"INV-4 violated: claimable_winning_pot={game.claimable_winning_pot}"
    )

    logger.debug(
        "Invariants OK: game=%s, total_pot=%d", game.id, game.total_pot
    )
