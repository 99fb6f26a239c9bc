"""004: create sell_transactions table

Revision ID: 004
Revises: 003
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE sell_transactions (
            id                      BIGSERIAL       PRIMARY KEY,
            game_id                 BIGINT          NOT NULL REFERENCES games (id),
            solana_wallet_address   VARCHAR(44)     NOT NULL,
            burn_tx_signature       VARCHAR(100)    NOT NULL,
            solana_tx_signature     VARCHAR(100)    NOT NULL,
            side                    VARCHAR(5)      NOT NULL,
            token_price             BIGINT          NOT NULL,
            sell_token_amount       BIGINT          NOT NULL,
            sol_received            BIGINT          NOT NULL,
            fees                    BIGINT          NOT NULL,
            progressive_fees        BIGINT          NOT NULL DEFAULT 0,
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_sell_transactions_signature UNIQUE (burn_tx_signature),
            CONSTRAINT ck_sell_transactions_side      CHECK (side IN ('over', 'under')),
            CONSTRAINT ck_sell_transactions_amount    CHECK (sell_token_amount > 0)
        );
    """)
    op.execute("CREATE INDEX idx_sell_transactions_game_side ON sell_transactions (game_id, side, id);")
    op.execute("CREATE INDEX idx_sell_transactions_wallet ON sell_transactions (solana_wallet_address);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS sell_transactions CASCADE;")
