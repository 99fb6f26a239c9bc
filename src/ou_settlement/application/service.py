# src/ou_settlement/application/service.py
from datetime import timedelta

from config.settings import settings
from src.ou_chain.domain.gateway import LedgerGateway, PriceOracle
from src.ou_common.database import async_session_factory
from src.ou_game.infrastructure.persistence import GameRepository
from src.ou_settlement.engine.engine import SettlementEngine

_engine: SettlementEngine | None = None


def build_settlement_engine(ledger: LedgerGateway, oracle: PriceOracle) -> SettlementEngine:
    global _engine  # noqa: PLW0603
    _engine = SettlementEngine(
        async_session_factory,
        GameRepository(),
        ledger,
        oracle,
        game_duration=timedelta(minutes=settings.GAME_DURATION_MINUTES),
        network_fee=settings.NETWORK_FEE_LAMPORTS,
        initiate_lamports=settings.SOLANA_INITIATE_LAMPORTS,
        retry_attempts=settings.LEDGER_RETRY_ATTEMPTS,
        retry_base_delay=settings.LEDGER_RETRY_BASE_DELAY,
    )
    return _engine


def get_settlement_engine() -> SettlementEngine:
    if _engine is None:
        raise RuntimeError("Settlement engine is not initialised")
    return _engine
