"""004: create rounds table

Revision ID: 004
Revises: 003
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE rounds (
            id          BIGSERIAL   PRIMARY KEY,
            status      VARCHAR(10) NOT NULL DEFAULT 'OPEN',
            opened_at   TIMESTAMPTZ NOT NULL,
            closes_at   TIMESTAMPTZ NOT NULL,
            outcome_id  VARCHAR(32),
            settled_at  TIMESTAMPTZ,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_rounds_status CHECK (status IN ('OPEN', 'CLOSED')),
            CONSTRAINT ck_rounds_window CHECK (closes_at > opened_at),
            CONSTRAINT ck_rounds_closed_has_outcome CHECK (
                status = 'OPEN' OR (outcome_id IS NOT NULL AND settled_at IS NOT NULL)
            )
        );
    """)
    # At most one OPEN round; create_round relies on this for ON CONFLICT
    op.execute("""
        CREATE UNIQUE INDEX uq_rounds_single_open
        ON rounds (status)
        WHERE status = 'OPEN';
    """)
    op.execute("CREATE INDEX idx_rounds_opened_at ON rounds (opened_at DESC, id DESC);")
    op.execute("""
        CREATE INDEX idx_rounds_settled_at
        ON rounds (settled_at DESC)
        WHERE status = 'CLOSED';
    """)
    op.execute("COMMENT ON TABLE rounds IS 'Betting rounds — OPEN to CLOSED exactly once';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS rounds CASCADE;")
