"""Create folders, notes and questions with scheduling columns."""

from typing import List, Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20251101_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _scheduling_columns() -> List[sa.Column]:
    return [
        sa.Column("repetition", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("interval", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("ease_factor", sa.Float(), server_default=sa.text("2.5"), nullable=False),
        sa.Column("next_review", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_review", sa.DateTime(timezone=True), nullable=True),
        sa.Column("history", sa.JSON(), server_default=sa.text("'[]'"), nullable=False),
    ]


def _timestamp_columns() -> List[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            server_onupdate=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "folders",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        *_scheduling_columns(),
        *_timestamp_columns(),
    )
    op.create_index("ix_folders_user_id", "folders", ["user_id"])

    op.create_table(
        "notes",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("folder_id", sa.String(length=36), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("content_plain_text", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), server_default=sa.text("'active'"), nullable=False),
        *_scheduling_columns(),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(
            ("folder_id",),
            ("folders.id",),
            name="fk_notes_folder_id_folders",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_notes_user_id_next_review", "notes", ["user_id", "next_review"])

    op.create_table(
        "questions",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("note_id", sa.String(length=36), nullable=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("answer", sa.Text(), nullable=False),
        sa.Column("time_stamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        *_scheduling_columns(),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(
            ("note_id",),
            ("notes.id",),
            name="fk_questions_note_id_notes",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_questions_note_id", "questions", ["note_id"])
    op.create_index("ix_questions_user_id_next_review", "questions", ["user_id", "next_review"])


def downgrade() -> None:
    op.drop_index("ix_questions_user_id_next_review", table_name="questions")
    op.drop_index("ix_questions_note_id", table_name="questions")
    op.drop_table("questions")
    op.drop_index("ix_notes_user_id_next_review", table_name="notes")
    op.drop_table("notes")
    op.drop_index("ix_folders_user_id", table_name="folders")
    op.drop_table("folders")
