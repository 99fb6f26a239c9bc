"""001: create games table and the updated_at trigger function

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE OR REPLACE FUNCTION fn_touch_updated_at()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = NOW();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TABLE games (
            id                      BIGSERIAL       PRIMARY KEY,
            initiator               VARCHAR(44)     NOT NULL,
            initiator_signature     VARCHAR(100)    NOT NULL,
            creation_signature      VARCHAR(100)    NOT NULL,
            contract_address        VARCHAR(44)     NOT NULL,
            token_name              VARCHAR(255),
            token_symbol            VARCHAR(64),
            token_decimals          SMALLINT        NOT NULL,
            time_started            TIMESTAMPTZ     NOT NULL,
            time_ended              TIMESTAMPTZ,
            price_start             NUMERIC(38, 18) NOT NULL,
            price_end               NUMERIC(38, 18) NOT NULL,
            usd_start               NUMERIC(38, 18) NOT NULL,
            usd_end                 NUMERIC(38, 18) NOT NULL,
            over_pot_address        VARCHAR(44)     NOT NULL,
            under_pot_address       VARCHAR(44)     NOT NULL,
            over_mint_address       VARCHAR(44)     NOT NULL,
            under_mint_address      VARCHAR(44)     NOT NULL,
            total_pot               BIGINT          NOT NULL DEFAULT 0,
            over_pot                BIGINT          NOT NULL DEFAULT 0,
            under_pot               BIGINT          NOT NULL DEFAULT 0,
            over_token_minted       BIGINT          NOT NULL DEFAULT 0,
            over_token_burnt        BIGINT          NOT NULL DEFAULT 0,
            under_token_minted      BIGINT          NOT NULL DEFAULT 0,
            under_token_burnt       BIGINT          NOT NULL DEFAULT 0,
            over_price              BIGINT          NOT NULL DEFAULT 0,
            under_price             BIGINT          NOT NULL DEFAULT 0,
            buy_fee                 BIGINT          NOT NULL DEFAULT 0,
            sell_fee                BIGINT          NOT NULL DEFAULT 0,
            claimable_winning_pot   BIGINT          NOT NULL DEFAULT 0,
            winning_side            VARCHAR(5),
            settled_at              TIMESTAMPTZ,
            settlement_signature    VARCHAR(100),
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_games_initiator_signature  UNIQUE (initiator_signature),
            CONSTRAINT ck_games_pot_sum              CHECK (over_pot + under_pot = total_pot),
            CONSTRAINT ck_games_over_supply_gte_0    CHECK (over_token_minted >= over_token_burnt),
            CONSTRAINT ck_games_under_supply_gte_0   CHECK (under_token_minted >= under_token_burnt),
            CONSTRAINT ck_games_prices_gte_0         CHECK (over_price >= 0 AND under_price >= 0),
            CONSTRAINT ck_games_claimable_gte_0      CHECK (claimable_winning_pot >= 0),
            CONSTRAINT ck_games_winning_side CHECK (
                winning_side IS NULL OR winning_side IN ('over', 'under')
            ),
            CONSTRAINT ck_games_settled_after_end CHECK (
                settled_at IS NULL OR time_ended IS NOT NULL
            )
        );
    """)
    # one running game per contract
    op.execute("""
        CREATE UNIQUE INDEX uq_games_active_contract
            ON games (contract_address) WHERE time_ended IS NULL;
    """)
    op.execute("CREATE INDEX idx_games_unsettled ON games (time_started) WHERE settled_at IS NULL;")
    op.execute("""
        CREATE TRIGGER trg_games_updated_at
            BEFORE UPDATE ON games
            FOR EACH ROW EXECUTE FUNCTION fn_touch_updated_at();
    """)
    op.execute("COMMENT ON TABLE games IS 'One over/under round per row; public state only';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS games CASCADE;")
    op.execute("DROP FUNCTION IF EXISTS fn_touch_updated_at();")
