"""002: create game_keypairs table

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE game_keypairs (
            game_id             BIGINT          PRIMARY KEY REFERENCES games (id),
            over_pot_secret     VARCHAR(128)    NOT NULL,
            under_pot_secret    VARCHAR(128)    NOT NULL,
            over_mint_secret    VARCHAR(128)    NOT NULL,
            under_mint_secret   VARCHAR(128)    NOT NULL,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW()
        );
    """)
    op.execute(
        "COMMENT ON TABLE game_keypairs IS"
        " 'base58 secret keys of pot and mint accounts; never exposed by the API';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS game_keypairs CASCADE;")
