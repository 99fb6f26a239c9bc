"""Gateway Protocols: dependency inversion for the ledger and the price oracle.

The settlement engine, watchers and API only talk to these Protocols.
Unit tests inject AsyncMock objects; infrastructure provides the Solana
RPC and Jupiter implementations.
"""

from typing import Protocol

from solders.keypair import Keypair

from src.ou_chain.domain.models import (
    GameAccounts,
    Quote,
    SolTransfer,
    TokenMetadata,
    TokenPrice,
    TokenTransfer,
)


class LedgerGateway(Protocol):
    @property
    def master_address(self) -> str: ...

    def associated_token_address(self, owner: str, mint: str) -> str: ...

    async def find_transfer_source(
        self, signature: str, destination: str, min_lamports: int
    ) -> SolTransfer | None: ...

    async def get_sol_transfers(self, signature: str) -> list[SolTransfer]: ...

    async def get_token_transfers(self, signature: str) -> list[TokenTransfer]: ...

    async def get_signatures_for_address(
        self, address: str, until: str | None = None
    ) -> list[str]: ...

    async def get_balance(self, address: str) -> int: ...

    async def get_token_account_balance(self, address: str) -> int: ...

    async def create_game_accounts(self) -> GameAccounts: ...

    async def mint_claim_tokens(self, owner: str, mint: Keypair, amount: int) -> str: ...

    async def pay_out_sale(
        self,
        source_pot: Keypair,
        target_pot: str,
        owner: str,
        redistribution: int,
        payout: int,
        memo: str,
    ) -> str: ...

    async def transfer_from_pot(
        self, pot: Keypair, destination: str, lamports: int, memo: str
    ) -> str: ...

    async def merge_pots_and_burn(
        self,
        winner_pot: Keypair,
        winner_mint: str,
        loser_pot: Keypair,
        loser_mint: str,
        memo: str,
    ) -> str: ...

    async def validate_burn(
        self, signature: str, owner: str, mint: str, amount: int
    ) -> bool: ...


class PriceOracle(Protocol):
    async def quote(self, input_mint: str, output_mint: str, amount: int) -> Quote: ...

    async def get_prices(self, tokens: list[str], vs_token: str) -> dict[str, float]: ...

    async def get_token_metadata(self, mint: str) -> TokenMetadata: ...

    async def get_token_price(self, mint: str, decimals: int) -> TokenPrice: ...
