"""006: create settlement_records table

Revision ID: 006
Revises: 005
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "006"
down_revision: Union[str, None] = "005"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # No FK to wagers: a replaced wager set deletes rows, records are history
    op.execute("""
        CREATE TABLE settlement_records (
            id          BIGSERIAL   PRIMARY KEY,
            wager_id    BIGINT      NOT NULL,
            round_id    BIGINT      NOT NULL REFERENCES rounds (id),
            user_id     VARCHAR(64) NOT NULL,
            outcome_id  VARCHAR(32) NOT NULL,
            payout      BIGINT      NOT NULL,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_settlement_records_wager_id UNIQUE (wager_id),
            CONSTRAINT ck_settlement_records_payout_gte_0 CHECK (payout >= 0)
        );
    """)
    op.execute("""
        CREATE INDEX idx_settlement_records_user_round
        ON settlement_records (user_id, round_id DESC);
    """)
    op.execute("COMMENT ON TABLE settlement_records IS 'One row per settled wager — wager_id is the dedup key';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS settlement_records CASCADE;")
