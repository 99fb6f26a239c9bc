"""Domain models for ou_game: pure dataclasses, no business logic.

Game holds only public state. Secret key material lives in GameKeypairs,
loaded separately and never serialised.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from solders.keypair import Keypair

from src.ou_chain.domain.keypairs import decode_keypair
from src.ou_common.enums import Side


@dataclass
class Game:
    id: int | None
    initiator: str
    initiator_signature: str
    creation_signature: str
    contract_address: str
    token_name: str | None
    token_symbol: str | None
    token_decimals: int
    time_started: datetime
    time_ended: datetime | None
    price_start: Decimal                # token price in SOL
    price_end: Decimal
    usd_start: Decimal
    usd_end: Decimal
    over_pot_address: str
    under_pot_address: str
    over_mint_address: str
    under_mint_address: str
    total_pot: int = 0                  # lamports
    over_pot: int = 0                   # lamports
    under_pot: int = 0                  # lamports
    over_token_minted: int = 0
    over_token_burnt: int = 0
    under_token_minted: int = 0
    under_token_burnt: int = 0
    over_price: int = 0                 # lamports per claim token, x1e9
    under_price: int = 0                # lamports per claim token, x1e9
    buy_fee: int = 0                    # lamports, never serialised
    sell_fee: int = 0                   # lamports, never serialised
    claimable_winning_pot: int = 0      # lamports
    winning_side: str | None = None
    settled_at: datetime | None = None
    settlement_signature: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.time_ended is None

    def pot(self, side: Side) -> int:
        return self.over_pot if side is Side.OVER else self.under_pot

    def price(self, side: Side) -> int:
        return self.over_price if side is Side.OVER else self.under_price

    def outstanding(self, side: Side) -> int:
        if side is Side.OVER:
            return self.over_token_minted - self.over_token_burnt
        return self.under_token_minted - self.under_token_burnt

    def pot_address(self, side: Side) -> str:
        return self.over_pot_address if side is Side.OVER else self.under_pot_address

    def mint_address(self, side: Side) -> str:
        return self.over_mint_address if side is Side.OVER else self.under_mint_address

    def internal_addresses(self) -> set[str]:
        return {
            self.over_pot_address,
            self.under_pot_address,
            self.over_mint_address,
            self.under_mint_address,
        }


@dataclass
class GameKeypairs:
    """base58-encoded secret keys for the two pots and two claim-token mints."""

    game_id: int
    over_pot_secret: str
    under_pot_secret: str
    over_mint_secret: str
    under_mint_secret: str

    def pot(self, side: Side) -> Keypair:
        return decode_keypair(self.over_pot_secret if side is Side.OVER else self.under_pot_secret)

    def mint(self, side: Side) -> Keypair:
        return decode_keypair(
            self.over_mint_secret if side is Side.OVER else self.under_mint_secret
        )

    def __repr__(self) -> str:
        return f"GameKeypairs(game_id={self.game_id}, secrets=<redacted>)"


@dataclass
class BuyTransaction:
    game_id: int
    solana_wallet_address: str
    solana_tx_signature: str           # incoming transfer (idempotency key)
    mint_tx_signature: str             # outgoing claim-token mint
    side: str
    token_price: int
    total_in_solana: int               # lamports deposited
    tokens_received: int
    fees: int
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class SellTransaction:
    game_id: int
    solana_wallet_address: str
    burn_tx_signature: str             # incoming claim-token transfer (idempotency key)
    solana_tx_signature: str           # outgoing payout
    side: str
    token_price: int
    sell_token_amount: int
    sol_received: int
    fees: int
    progressive_fees: int
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class ClaimTransaction:
    game_id: int
    solana_wallet_address: str
    target_solana_wallet_address: str
    burn_tx_signature: str             # incoming claim-token burn (idempotency key)
    solana_tx_signature: str           # outgoing payout
    side: str
    claim_token_amount: int
    sol_received: int
    fees: int
    id: int | None = None
    created_at: datetime | None = None
