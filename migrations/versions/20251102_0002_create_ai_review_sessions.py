"""Create the ai_review_sessions table."""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20251102_0002"
down_revision: Union[str, None] = "20251101_0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "ai_review_sessions",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("note_id", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("mode", sa.String(length=32), nullable=False),
        sa.Column("difficulty", sa.String(length=16), nullable=True),
        sa.Column("generated_questions", sa.JSON(), server_default=sa.text("'[]'"), nullable=False),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("model_version", sa.String(length=128), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("questions_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("session_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ("note_id",),
            ("notes.id",),
            name="fk_ai_review_sessions_note_id_notes",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_ai_review_sessions_note_id_requested_at",
        "ai_review_sessions",
        ["note_id", "requested_at"],
    )
    op.create_index(
        "ix_ai_review_sessions_user_id_requested_at",
        "ai_review_sessions",
        ["user_id", "requested_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_ai_review_sessions_user_id_requested_at", table_name="ai_review_sessions")
    op.drop_index("ix_ai_review_sessions_note_id_requested_at", table_name="ai_review_sessions")
    op.drop_table("ai_review_sessions")
