"""Add note summary and key takeaways to AI review sessions."""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20251103_0003"
down_revision: Union[str, None] = "20251102_0002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("ai_review_sessions", sa.Column("summary", sa.Text(), nullable=True))
    op.add_column(
        "ai_review_sessions",
        sa.Column("key_takeaways", sa.JSON(), server_default=sa.text("'[]'"), nullable=False),
    )


def downgrade() -> None:
    op.drop_column("ai_review_sessions", "key_takeaways")
    op.drop_column("ai_review_sessions", "summary")
