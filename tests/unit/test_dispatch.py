"""Unit tests for submitted-signature dispatch (POST buy/sell/redeem)."""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.ou_chain.domain.models import SolTransfer, TokenTransfer
from src.ou_common.enums import Side
from src.ou_common.errors import NoValidTransfer, TransactionSignatureAlreadyExists
from src.ou_settlement.application.dispatch import (
    match_sol_transfers,
    match_token_transfers,
    submit_buy,
    submit_redeem,
    submit_sell,
)

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def fake_engine(session_factory, repo, ledger) -> MagicMock:
    engine = MagicMock()
    engine.session_factory = session_factory
    engine.repo = repo
    engine.ledger = ledger
    engine.buy = AsyncMock(side_effect=lambda *a, **kw: ("bought", a, kw))
    engine.sell = AsyncMock(side_effect=lambda *a, **kw: ("sold", a, kw))
    engine.redeem = AsyncMock(side_effect=lambda *a: ("redeemed", a))
    return engine


class TestMatching:
    async def test_sol_transfer_to_either_pot(self, add_game) -> None:
        game = await add_game()
        matches = match_sol_transfers(
            [
                SolTransfer("A", "UnderPot", 5),
                SolTransfer("B", "Nowhere", 9),
                SolTransfer("C", "OverPot", 7),
            ],
            [game],
        )
        assert [(m.side, m.owner, m.amount) for m in matches] == [
            (Side.UNDER, "A", 5),
            (Side.OVER, "C", 7),
        ]

    async def test_token_transfer_needs_pot_account_of_matching_mint(self, add_game) -> None:
        game = await add_game()
        accounts = {(game.id, Side.OVER): "overAta", (game.id, Side.UNDER): "underAta"}
        matches = match_token_transfers(
            [TokenTransfer("A", "src", "overAta", 3), TokenTransfer("A", "src", "OverPot", 3)],
            [game],
            accounts,
        )
        assert [(m.side, m.owner, m.amount) for m in matches] == [(Side.OVER, "A", 3)]


class TestSubmit:
    async def test_buy_applies_each_match(self, fake_engine, add_game, ledger) -> None:
        game = await add_game()
        ledger.get_sol_transfers.return_value = [SolTransfer("W", "OverPot", 1_000)]

        results = await submit_buy(fake_engine, "sig-1")

        assert len(results) == 1
        fake_engine.buy.assert_awaited_once_with("W", Side.OVER, "sig-1", 1_000, game_id=game.id)

    async def test_buy_without_match(self, fake_engine, add_game, ledger) -> None:
        await add_game()
        ledger.get_sol_transfers.return_value = [SolTransfer("W", "Nowhere", 1_000)]
        with pytest.raises(NoValidTransfer):
            await submit_buy(fake_engine, "sig-1")
        fake_engine.buy.assert_not_awaited()

    async def test_buy_ignores_ended_games(self, fake_engine, add_game, ledger) -> None:
        await add_game(time_ended=T0)
        ledger.get_sol_transfers.return_value = [SolTransfer("W", "OverPot", 1_000)]
        with pytest.raises(NoValidTransfer):
            await submit_buy(fake_engine, "sig-1")

    async def test_internal_transfer_yields_no_result(self, fake_engine, add_game, ledger) -> None:
        await add_game()
        fake_engine.buy.side_effect = None
        fake_engine.buy.return_value = None
        ledger.get_sol_transfers.return_value = [SolTransfer("OverPot", "UnderPot", 1)]
        assert await submit_buy(fake_engine, "sig-1") == []

    async def test_sell_matches_pot_token_account(self, fake_engine, add_game, ledger) -> None:
        game = await add_game()
        ledger.get_token_transfers.return_value = [
            TokenTransfer("Seller", "ata:Seller:UnderMint", "ata:UnderPot:UnderMint", 42),
        ]

        results = await submit_sell(fake_engine, "burn-1")

        assert len(results) == 1
        fake_engine.sell.assert_awaited_once_with(
            "Seller", Side.UNDER, "burn-1", 42, game_id=game.id
        )

    async def test_redeem_uses_redeemable_games(self, fake_engine, add_game, ledger) -> None:
        await add_game()
        settled = await add_game(
            contract_address="Other", time_ended=T0, settled_at=T0, claimable_winning_pot=1
        )
        ledger.get_token_transfers.return_value = [
            TokenTransfer("Holder", "ata:Holder:OverMint", "ata:OverPot:OverMint", 8),
        ]

        results = await submit_redeem(fake_engine, "burn-2")

        assert results == [("redeemed", (settled.id, "Holder", 8, "burn-2"))]

    async def test_redeem_without_redeemable_game(self, fake_engine, add_game, ledger) -> None:
        await add_game()
        ledger.get_token_transfers.return_value = [
            TokenTransfer("Holder", "ata:Holder:OverMint", "ata:OverPot:OverMint", 8),
        ]
        with pytest.raises(NoValidTransfer):
            await submit_redeem(fake_engine, "burn-2")

    async def test_second_deposit_in_signature_is_logged_not_minted(
        self, engine, add_game, repo, ledger, caplog
    ) -> None:
        game = await add_game()
        ledger.get_sol_transfers.return_value = [
            SolTransfer("W", "OverPot", 1_000),
            SolTransfer("W", "UnderPot", 2_000),
        ]

        with caplog.at_level("WARNING"):
            results = await submit_buy(engine, "sig-1")

        assert [r.transaction.side for r in results] == ["over"]
        assert ledger.mint_claim_tokens.await_count == 1
        assert repo.games[game.id].under_pot == 0
        assert "dropped extra transfer in sig-1" in caplog.text

    async def test_replayed_signature_still_conflicts(self, engine, add_game, ledger) -> None:
        await add_game()
        ledger.get_sol_transfers.return_value = [SolTransfer("W", "OverPot", 1_000)]
        await submit_buy(engine, "sig-1")

        with pytest.raises(TransactionSignatureAlreadyExists):
            await submit_buy(engine, "sig-1")
