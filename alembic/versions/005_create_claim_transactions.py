"""005: create claim_transactions table

Revision ID: 005
Revises: 004
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE claim_transactions (
            id                              BIGSERIAL       PRIMARY KEY,
            game_id                         BIGINT          NOT NULL REFERENCES games (id),
            solana_wallet_address           VARCHAR(44)     NOT NULL,
            target_solana_wallet_address    VARCHAR(44)     NOT NULL,
            burn_tx_signature               VARCHAR(100)    NOT NULL,
            solana_tx_signature             VARCHAR(100)    NOT NULL,
            side                            VARCHAR(5)      NOT NULL,
            claim_token_amount              BIGINT          NOT NULL,
            sol_received                    BIGINT          NOT NULL,
            fees                            BIGINT          NOT NULL DEFAULT 0,
            created_at                      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_claim_transactions_signature UNIQUE (burn_tx_signature),
            CONSTRAINT ck_claim_transactions_side      CHECK (side IN ('over', 'under')),
            CONSTRAINT ck_claim_transactions_amount    CHECK (claim_token_amount > 0)
        );
    """)
    op.execute(
        "CREATE INDEX idx_claim_transactions_game_side ON claim_transactions (game_id, side, id);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS claim_transactions CASCADE;")
