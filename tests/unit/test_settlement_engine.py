"""Unit tests for SettlementEngine with an in-memory record store and mocked ledger."""
import copy
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from solders.keypair import Keypair
from sqlalchemy.exc import IntegrityError

from src.ou_chain.domain.keypairs import public_address
from src.ou_chain.domain.models import GameAccounts, SolTransfer, TokenMetadata, TokenPrice
from src.ou_common.enums import Side
from src.ou_common.errors import (
    GameAlreadyActive,
    GameIsNotEnded,
    InvalidSignatureForInitiateGame,
    InvalidTransaction,
    LedgerRetryExhausted,
    NoActiveGame,
    NoClaimableSolInGame,
    RouteNotFound,
    SignatureAlreadyInitiated,
    TransactionSignatureAlreadyExists,
    TransientLedgerError,
    ZeroGameTokenSupply,
)
from src.ou_game.domain.models import BuyTransaction, SellTransaction

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
MASTER = "MasterWa11et1111111111111111111111111111111"

ONE_SOL = 1_000_000_000


# ---------------------------------------------------------------------------
# start
# ---------------------------------------------------------------------------


class TestStart:
    @pytest.fixture(autouse=True)
    def _chain(self, ledger, oracle) -> None:
        ledger.find_transfer_source.return_value = SolTransfer("Initiator", MASTER, 100_000_000)
        oracle.get_token_metadata.return_value = TokenMetadata("Goat", "GOAT", 6)
        oracle.get_token_price.return_value = TokenPrice(Decimal("0.0001"), Decimal("0.02"))
        self.accounts = GameAccounts(Keypair(), Keypair(), Keypair(), Keypair(), "create-sig")
        ledger.create_game_accounts.return_value = self.accounts

    async def test_persists_game_after_creation(self, engine, repo, ledger, oracle) -> None:
        game = await engine.start("Contract", "init-1")

        assert game.id == 1
        assert game.initiator == "Initiator"
        assert game.over_price == game.under_price == 1_000_000
        assert game.price_start == Decimal("0.0001")
        assert game.over_pot_address == public_address(self.accounts.over_pot)
        assert game.creation_signature == "create-sig"
        ledger.find_transfer_source.assert_awaited_once_with("init-1", MASTER, 100_000_000)
        oracle.get_token_price.assert_awaited_once_with("Contract", 6)
        assert repo.keypairs[1].pot(Side.UNDER).pubkey() == self.accounts.under_pot.pubkey()

    async def test_rejects_reused_signature(self, engine, add_game, ledger) -> None:
        await add_game(initiator_signature="init-1", time_ended=T0)
        with pytest.raises(SignatureAlreadyInitiated):
            await engine.start("Other", "init-1")
        ledger.find_transfer_source.assert_not_awaited()

    async def test_rejects_contract_with_active_game(self, engine, add_game) -> None:
        await add_game(contract_address="Contract")
        with pytest.raises(GameAlreadyActive):
            await engine.start("Contract", "init-2")

    async def test_concurrent_start_on_contract_maps_to_game_already_active(
        self, engine, repo
    ) -> None:
        repo.insert_game = AsyncMock(side_effect=IntegrityError(
            "INSERT", {}, Exception('duplicate key value violates unique constraint "uq_games_active_contract"')
        ))
        with pytest.raises(GameAlreadyActive):
            await engine.start("Contract", "init-1")

    async def test_concurrent_start_with_same_signature(self, engine, repo) -> None:
        repo.insert_game = AsyncMock(side_effect=IntegrityError(
            "INSERT", {}, Exception('duplicate key value violates unique constraint "uq_games_initiator_signature"')
        ))
        with pytest.raises(SignatureAlreadyInitiated):
            await engine.start("Contract", "init-1")

    async def test_missing_fee_transfer(self, engine, repo, ledger) -> None:
        ledger.find_transfer_source.return_value = None
        with pytest.raises(InvalidSignatureForInitiateGame):
            await engine.start("Contract", "init-1")
        ledger.create_game_accounts.assert_not_awaited()
        assert repo.games == {}

    async def test_route_not_found_propagates(self, engine, repo, ledger, oracle) -> None:
        oracle.get_token_price.side_effect = RouteNotFound("Contract", "SOL")
        with pytest.raises(RouteNotFound):
            await engine.start("Contract", "init-1")
        ledger.create_game_accounts.assert_not_awaited()
        assert repo.games == {}

    async def test_account_creation_failure_persists_nothing(self, engine, repo, ledger) -> None:
        ledger.create_game_accounts.side_effect = TransientLedgerError("expired")
        with pytest.raises(LedgerRetryExhausted):
            await engine.start("Contract", "init-1")
        assert ledger.create_game_accounts.await_count == 3
        assert repo.games == {}
        assert len(engine.starts) == 0


# ---------------------------------------------------------------------------
# buy
# ---------------------------------------------------------------------------


class TestBuy:
    async def test_mints_and_records(self, engine, add_game, repo, ledger) -> None:
        await add_game()
        result = await engine.buy("Buyer", Side.OVER, "sig-1", ONE_SOL)

        assert result.payout_signature == "mint-sig"
        assert result.transaction.tokens_received == 990_000_000_000
        assert result.transaction.fees == 10_000_000
        assert result.transaction.token_price == 1_000_000
        stored = repo.games[1]
        assert stored.over_pot == ONE_SOL
        assert stored.total_pot == ONE_SOL
        assert stored.over_token_minted == 990_000_000_000
        assert stored.claimable_winning_pot == 990_000_000
        owner, mint, amount = ledger.mint_claim_tokens.await_args.args
        assert (owner, amount) == ("Buyer", 990_000_000_000)
        assert mint.pubkey() == repo.keypairs[1].mint(Side.OVER).pubkey()

    async def test_same_signature_applies_once(self, engine, add_game, repo, ledger) -> None:
        await add_game()
        await engine.buy("Buyer", Side.OVER, "sig-1", ONE_SOL)
        after_first = copy.deepcopy(repo.games[1])

        with pytest.raises(TransactionSignatureAlreadyExists):
            await engine.buy("Buyer", Side.OVER, "sig-1", ONE_SOL)

        assert repo.games[1] == after_first
        assert len(repo.buys) == 1
        assert ledger.mint_claim_tokens.await_count == 1

    async def test_signature_in_flight_is_rejected(self, engine, add_game, repo) -> None:
        await add_game()
        with engine.buys.hold("sig-1"):
            with pytest.raises(TransactionSignatureAlreadyExists):
                await engine.buy("Buyer", Side.OVER, "sig-1", ONE_SOL)
        assert repo.buys == []

    @pytest.mark.parametrize("owner", [MASTER, "OverPot", "UnderPot", "OverMint", "UnderMint"])
    async def test_internal_transfers_are_ignored(self, engine, add_game, repo, ledger, owner) -> None:
        game = await add_game()
        before = copy.deepcopy(repo.games[game.id])

        assert await engine.buy(owner, Side.UNDER, "sig-1", ONE_SOL) is None

        assert repo.games[game.id] == before
        assert repo.buys == []
        ledger.mint_claim_tokens.assert_not_awaited()

    async def test_no_game(self, engine) -> None:
        with pytest.raises(NoActiveGame):
            await engine.buy("Buyer", Side.OVER, "sig-1", ONE_SOL)

    async def test_ended_game_is_not_bought(self, engine, add_game) -> None:
        game = await add_game(time_ended=T0 + timedelta(minutes=60))
        with pytest.raises(NoActiveGame):
            await engine.buy("Buyer", Side.OVER, "sig-1", ONE_SOL, game_id=game.id)

    async def test_targets_given_game(self, engine, add_game, repo) -> None:
        first = await add_game(contract_address="A")
        await add_game(contract_address="B")
        await engine.buy("Buyer", Side.UNDER, "sig-1", ONE_SOL, game_id=first.id)
        assert repo.games[first.id].under_pot == ONE_SOL
        assert repo.games[2].under_pot == 0

    async def test_transient_error_retries_from_top(self, engine, add_game, repo, ledger) -> None:
        await add_game()
        ledger.mint_claim_tokens.side_effect = [TransientLedgerError("expired"), "mint-sig"]

        result = await engine.buy("Buyer", Side.OVER, "sig-1", ONE_SOL)

        assert result.payout_signature == "mint-sig"
        assert ledger.mint_claim_tokens.await_count == 2
        assert repo.games[1].over_pot == ONE_SOL
        assert len(repo.buys) == 1

    async def test_retry_exhaustion_surfaces_and_releases_guard(
        self, engine, add_game, repo, ledger
    ) -> None:
        await add_game()
        before = copy.deepcopy(repo.games[1])
        ledger.mint_claim_tokens.side_effect = TransientLedgerError("expired")

        with pytest.raises(LedgerRetryExhausted):
            await engine.buy("Buyer", Side.OVER, "sig-1", ONE_SOL)

        assert ledger.mint_claim_tokens.await_count == 3
        assert repo.games[1] == before
        assert "sig-1" not in engine.buys

    async def test_other_errors_propagate_without_retry(self, engine, add_game, ledger) -> None:
        await add_game()
        ledger.mint_claim_tokens.side_effect = RuntimeError("boom")
        with pytest.raises(RuntimeError):
            await engine.buy("Buyer", Side.OVER, "sig-1", ONE_SOL)
        assert ledger.mint_claim_tokens.await_count == 1

    async def test_unique_index_violation_maps_to_already_exists(self, engine, add_game, repo) -> None:
        await add_game()
        repo.insert_buy = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("dup")))
        with pytest.raises(TransactionSignatureAlreadyExists):
            await engine.buy("Buyer", Side.OVER, "sig-1", ONE_SOL)


# ---------------------------------------------------------------------------
# sell
# ---------------------------------------------------------------------------


@pytest.fixture
async def funded_game(add_game):
    return await add_game(
        over_pot=ONE_SOL, under_pot=ONE_SOL, total_pot=2 * ONE_SOL,
        over_token_minted=990_000_000_000, under_token_minted=990_000_000_000,
        buy_fee=20_000_000,
    )


class TestSell:
    async def test_half_window_sell(self, engine, funded_game, repo, ledger, clock) -> None:
        clock.advance(minutes=30)
        result = await engine.sell("Seller", Side.OVER, "burn-1", 100_000_000_000)

        ledger.pay_out_sale.assert_awaited_once()
        kwargs = ledger.pay_out_sale.await_args.kwargs
        assert kwargs["target_pot"] == "UnderPot"
        assert kwargs["owner"] == "Seller"
        assert kwargs["redistribution"] == 32_670_000
        assert kwargs["payout"] == 49_995_000 - 5000
        assert kwargs["memo"] == f"goatPotMoving_{funded_game.id}"

        stored = repo.games[funded_game.id]
        assert stored.over_pot == ONE_SOL - 32_675_000
        assert stored.under_pot == ONE_SOL + 32_670_000
        assert stored.over_pot + stored.under_pot == stored.total_pot
        assert stored.over_token_burnt == 100_000_000_000
        assert result.transaction.sol_received == 49_995_000
        assert result.transaction.burn_tx_signature == "burn-1"
        assert result.payout_signature == "payout-sig"

    async def test_same_burn_signature_applies_once(self, engine, funded_game, repo, ledger) -> None:
        await engine.sell("Seller", Side.UNDER, "burn-1", 1_000_000_000)
        after_first = copy.deepcopy(repo.games[funded_game.id])
        with pytest.raises(TransactionSignatureAlreadyExists):
            await engine.sell("Seller", Side.UNDER, "burn-1", 1_000_000_000)
        assert repo.games[funded_game.id] == after_first
        assert ledger.pay_out_sale.await_count == 1

    async def test_amount_above_outstanding_rejected(self, engine, funded_game, repo) -> None:
        with pytest.raises(InvalidTransaction):
            await engine.sell("Seller", Side.OVER, "burn-1", 990_000_000_001)
        assert repo.sells == []

    async def test_internal_owner_ignored(self, engine, funded_game, ledger) -> None:
        assert await engine.sell("UnderPot", Side.OVER, "burn-1", 1_000) is None
        assert await engine.sell(MASTER, Side.OVER, "burn-2", 1_000) is None
        ledger.pay_out_sale.assert_not_awaited()

    async def test_requires_active_game(self, engine, add_game) -> None:
        await add_game(time_ended=T0)
        with pytest.raises(NoActiveGame):
            await engine.sell("Seller", Side.OVER, "burn-1", 1_000)


class TestPotConservation:
    async def test_mixed_sequence_keeps_pots_balanced(self, engine, add_game, repo, clock) -> None:
        game = await add_game()
        steps = [
            ("buy", Side.OVER, 3 * ONE_SOL),
            ("buy", Side.UNDER, 2 * ONE_SOL),
            ("sell", Side.OVER, 500_000_000_000),
            ("buy", Side.OVER, 123_456_789),
            ("sell", Side.UNDER, 700_000_000_000),
            ("sell", Side.OVER, 1_000_000_000_000),
        ]
        for i, (kind, side, amount) in enumerate(steps):
            clock.advance(minutes=7)
            if kind == "buy":
                await engine.buy(f"wallet-{i}", side, f"sig-{i}", amount)
            else:
                await engine.sell(f"wallet-{i}", side, f"sig-{i}", amount)
            g = repo.games[game.id]
            assert g.over_pot + g.under_pot == g.total_pot
            assert g.outstanding(Side.OVER) >= 0
            assert g.outstanding(Side.UNDER) >= 0


# ---------------------------------------------------------------------------
# redeem
# ---------------------------------------------------------------------------


@pytest.fixture
async def settled_game(add_game):
    return await add_game(
        time_ended=T0 + timedelta(minutes=60),
        settled_at=T0 + timedelta(minutes=61),
        price_start=Decimal("0.0001"),
        price_end=Decimal("0.0002"),
        winning_side="over",
        over_pot=ONE_SOL, total_pot=ONE_SOL,
        over_token_minted=500,
        claimable_winning_pot=ONE_SOL,
    )


class TestRedeem:
    async def test_pays_pro_rata_share(self, engine, settled_game, repo, ledger) -> None:
        result = await engine.redeem(settled_game.id, "Holder", 100, "burn-r")

        pot, destination, lamports = ledger.transfer_from_pot.await_args.args
        assert destination == "Holder"
        assert lamports == 200_000_000 - 5000
        assert pot.pubkey() == repo.keypairs[settled_game.id].pot(Side.OVER).pubkey()
        assert ledger.transfer_from_pot.await_args.kwargs["memo"] == f"goatClaim_{settled_game.id}"
        ledger.validate_burn.assert_awaited_once_with("burn-r", "Holder", "OverMint", 100)

        stored = repo.games[settled_game.id]
        assert stored.claimable_winning_pot == 800_000_000
        assert stored.over_token_burnt == 100
        assert result.transaction.sol_received == 200_000_000

    async def test_duplicate_burn_signature(self, engine, settled_game, ledger) -> None:
        await engine.redeem(settled_game.id, "Holder", 100, "burn-r")
        with pytest.raises(TransactionSignatureAlreadyExists):
            await engine.redeem(settled_game.id, "Holder", 100, "burn-r")
        assert ledger.transfer_from_pot.await_count == 1

    async def test_signature_recorded_as_sell_is_rejected(self, engine, settled_game, repo, ledger) -> None:
        repo.sells.append(SellTransaction(
            game_id=settled_game.id, solana_wallet_address="Holder", burn_tx_signature="sell-a",
            solana_tx_signature="payout-sig", side="over", token_price=1_000_000,
            sell_token_amount=100, sol_received=1, fees=0, progressive_fees=0,
        ))
        with pytest.raises(TransactionSignatureAlreadyExists):
            await engine.redeem(settled_game.id, "Holder", 100, "sell-a")
        assert repo.claims == []
        assert repo.games[settled_game.id].claimable_winning_pot == ONE_SOL
        ledger.transfer_from_pot.assert_not_awaited()

    async def test_active_game_not_redeemable(self, engine, add_game) -> None:
        game = await add_game(claimable_winning_pot=ONE_SOL)
        with pytest.raises(GameIsNotEnded):
            await engine.redeem(game.id, "Holder", 1, "burn-r")

    async def test_unsettled_game_not_redeemable(self, engine, add_game) -> None:
        game = await add_game(time_ended=T0, claimable_winning_pot=ONE_SOL, over_token_minted=5)
        with pytest.raises(GameIsNotEnded, match="settled"):
            await engine.redeem(game.id, "Holder", 1, "burn-r")

    async def test_empty_claimable_pot(self, engine, add_game) -> None:
        game = await add_game(time_ended=T0, settled_at=T0, claimable_winning_pot=0)
        with pytest.raises(NoClaimableSolInGame):
            await engine.redeem(game.id, "Holder", 1, "burn-r")

    async def test_winner_recomputed_from_prices(self, engine, add_game, ledger) -> None:
        # prices fell: under wins, and no under token is outstanding
        game = await add_game(
            time_ended=T0, settled_at=T0,
            price_start=Decimal("0.0002"), price_end=Decimal("0.0001"),
            winning_side="over",
            over_token_minted=500, claimable_winning_pot=ONE_SOL,
        )
        with pytest.raises(ZeroGameTokenSupply):
            await engine.redeem(game.id, "Holder", 100, "burn-r")
        ledger.transfer_from_pot.assert_not_awaited()

    async def test_invalid_burn(self, engine, settled_game, repo, ledger) -> None:
        ledger.validate_burn.return_value = False
        with pytest.raises(InvalidTransaction):
            await engine.redeem(settled_game.id, "Holder", 100, "burn-r")
        assert repo.games[settled_game.id].claimable_winning_pot == ONE_SOL

    async def test_burn_lookup_error_is_invalid_transaction(self, engine, settled_game, ledger) -> None:
        ledger.validate_burn.side_effect = ValueError("bad signature")
        with pytest.raises(InvalidTransaction, match="bad signature"):
            await engine.redeem(settled_game.id, "Holder", 100, "burn-r")

    async def test_amount_above_supply(self, engine, settled_game) -> None:
        with pytest.raises(InvalidTransaction):
            await engine.redeem(settled_game.id, "Holder", 501, "burn-r")


# ---------------------------------------------------------------------------
# settle
# ---------------------------------------------------------------------------


def _buy_record(game_id: int) -> BuyTransaction:
    return BuyTransaction(
        game_id=game_id, solana_wallet_address="Buyer", solana_tx_signature=f"buy-{game_id}",
        mint_tx_signature="m", side="over", token_price=1_000_000,
        total_in_solana=ONE_SOL, tokens_received=1, fees=0,
    )


@pytest.fixture
async def running_game(add_game, repo):
    game = await add_game(
        over_pot=700_000_000, under_pot=300_000_000, total_pot=ONE_SOL,
        over_token_minted=10, under_token_minted=10,
    )
    repo.buys.append(_buy_record(game.id))
    return game


class TestSettle:
    async def test_noop_before_window_elapses(self, engine, running_game, repo, clock, ledger) -> None:
        clock.advance(minutes=59)
        await engine.settle(running_game.id)
        assert repo.games[running_game.id].time_ended is None
        ledger.merge_pots_and_burn.assert_not_awaited()

    async def test_game_without_buys_ends_without_chain_leg(
        self, engine, add_game, repo, clock, ledger, oracle
    ) -> None:
        game = await add_game()
        clock.advance(minutes=60)
        await engine.settle(game.id)

        stored = repo.games[game.id]
        assert stored.time_ended == clock.now
        assert stored.settled_at == clock.now
        ledger.merge_pots_and_burn.assert_not_awaited()
        oracle.get_token_price.assert_not_awaited()

    async def test_merges_loser_into_winner(self, engine, running_game, repo, clock, ledger, oracle) -> None:
        oracle.get_token_price.return_value = TokenPrice(Decimal("0.0002"), Decimal("0.04"))
        clock.advance(minutes=61)

        await engine.settle(running_game.id)

        stored = repo.games[running_game.id]
        assert stored.over_pot == ONE_SOL
        assert stored.under_pot == 0
        assert stored.total_pot == ONE_SOL
        assert stored.winning_side == "over"
        assert stored.price_end == Decimal("0.0002")
        assert stored.usd_end == Decimal("0.04")
        assert stored.settlement_signature == "settle-sig"
        assert stored.settled_at is not None
        kwargs = ledger.merge_pots_and_burn.await_args.kwargs
        assert kwargs["winner_mint"] == "OverMint"
        assert kwargs["loser_mint"] == "UnderMint"
        assert kwargs["memo"] == f"goatSettle_{running_game.id}"

    async def test_flat_price_goes_to_under(self, engine, running_game, repo, clock, oracle) -> None:
        oracle.get_token_price.return_value = TokenPrice(Decimal("0.0001"), Decimal("0.02"))
        clock.advance(minutes=61)
        await engine.settle(running_game.id)
        stored = repo.games[running_game.id]
        assert stored.winning_side == "under"
        assert stored.under_pot == ONE_SOL

    async def test_failed_merge_is_swallowed_and_resumable(
        self, engine, running_game, repo, clock, ledger, oracle
    ) -> None:
        oracle.get_token_price.return_value = TokenPrice(Decimal("0.0002"), Decimal("0.04"))
        ledger.merge_pots_and_burn.side_effect = RuntimeError("rpc down")
        clock.advance(minutes=61)

        await engine.settle(running_game.id)

        stored = repo.games[running_game.id]
        assert stored.time_ended is not None
        assert stored.winning_side == "over"
        assert stored.settled_at is None
        assert stored.over_pot == 700_000_000

        # price has since fallen; the retry keeps the winner fixed the first time
        oracle.get_token_price.return_value = TokenPrice(Decimal("0.00001"), Decimal("0.002"))
        ledger.merge_pots_and_burn.side_effect = None
        await engine.settle(running_game.id)

        stored = repo.games[running_game.id]
        assert stored.settled_at is not None
        assert stored.over_pot == ONE_SOL
        assert oracle.get_token_price.await_count == 1

    async def test_settled_game_is_left_alone(self, engine, running_game, repo, clock, ledger, oracle) -> None:
        oracle.get_token_price.return_value = TokenPrice(Decimal("0.0002"), Decimal("0.04"))
        clock.advance(minutes=61)
        await engine.settle(running_game.id)
        await engine.settle(running_game.id)
        assert ledger.merge_pots_and_burn.await_count == 1
