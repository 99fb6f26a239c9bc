"""Domain models for ou_chain: pure dataclasses describing ledger and oracle data."""

from dataclasses import dataclass, field
from decimal import Decimal

from solders.keypair import Keypair


@dataclass(frozen=True)
class SolTransfer:
    """A native-currency transfer parsed out of a confirmed transaction."""

    source: str
    destination: str
    lamports: int


@dataclass(frozen=True)
class TokenTransfer:
    """An SPL token transfer; `owner` is the wallet owning the source account."""

    owner: str
    source: str
    destination: str
    amount: int
    mint: str | None = None


@dataclass
class GameAccounts:
    """Keypairs generated for a new game plus the creation transaction signature."""

    over_pot: Keypair
    under_pot: Keypair
    over_mint: Keypair
    under_mint: Keypair
    signature: str


@dataclass(frozen=True)
class TokenMetadata:
    name: str | None
    symbol: str | None
    decimals: int


@dataclass(frozen=True)
class TokenPrice:
    """Price of one whole token, in SOL and in USD."""

    sol: Decimal
    usd: Decimal


@dataclass(frozen=True)
class Quote:
    in_amount: int
    out_amount: int
    route: list[dict] = field(default_factory=list)
