"""003: create buy_transactions table

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE buy_transactions (
            id                      BIGSERIAL       PRIMARY KEY,
            game_id                 BIGINT          NOT NULL REFERENCES games (id),
            solana_wallet_address   VARCHAR(44)     NOT NULL,
            solana_tx_signature     VARCHAR(100)    NOT NULL,
            mint_tx_signature       VARCHAR(100)    NOT NULL,
            side                    VARCHAR(5)      NOT NULL,
            token_price             BIGINT          NOT NULL,
            total_in_solana         BIGINT          NOT NULL,
            tokens_received         BIGINT          NOT NULL,
            fees                    BIGINT          NOT NULL,
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_buy_transactions_signature UNIQUE (solana_tx_signature),
            CONSTRAINT ck_buy_transactions_side      CHECK (side IN ('over', 'under')),
            CONSTRAINT ck_buy_transactions_amount    CHECK (total_in_solana > 0)
        );
    """)
    op.execute("CREATE INDEX idx_buy_transactions_game_side ON buy_transactions (game_id, side, id);")
    op.execute("CREATE INDEX idx_buy_transactions_wallet ON buy_transactions (solana_wallet_address);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS buy_transactions CASCADE;")
