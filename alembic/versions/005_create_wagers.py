"""005: create wagers table

Revision ID: 005
Revises: 004
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE wagers (
            id          BIGSERIAL   PRIMARY KEY,
            round_id    BIGINT      NOT NULL REFERENCES rounds (id),
            user_id     VARCHAR(64) NOT NULL,
            outcome_id  VARCHAR(32) NOT NULL,
            amount      BIGINT      NOT NULL,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_wagers_amount_gt_0 CHECK (amount > 0)
        );
    """)
    op.execute("CREATE INDEX idx_wagers_round_user ON wagers (round_id, user_id);")
    op.execute("CREATE INDEX idx_wagers_user_round ON wagers (user_id, round_id DESC);")
    op.execute("COMMENT ON TABLE wagers IS 'Stakes on one outcome of one round — whole coins';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS wagers CASCADE;")
