from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20260301_0001"
down_revision = None
branch_labels = None
depends_on = None

GALLERY_VIEW = """
CREATE OR REPLACE VIEW gallery_entries AS
SELECT
    c.id,
    c.participant_id,
    c.completed_date,
    c.duration_text,
    c.comment,
    (SELECT count(*) FROM votes v WHERE v.completion_id = c.id)::int AS vote_count,
    (SELECT count(*) FROM photo_comments pc WHERE pc.completion_id = c.id)::int AS comment_count,
    (SELECT count(*) FROM completion_images ci WHERE ci.completion_id = c.id)::int AS image_count,
    c.event_year,
    p.full_name,
    p.bib_number,
    (SELECT ci.image_url FROM completion_images ci
      WHERE ci.completion_id = c.id AND ci.is_starred
      ORDER BY ci.display_order LIMIT 1) AS starred_image_url,
    c.created_at
FROM completions c
JOIN participants p ON p.id = c.participant_id
WHERE EXISTS (SELECT 1 FROM completion_images ci WHERE ci.completion_id = c.id)
"""

def upgrade() -> None:
    op.create_table(
        "participants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column("postal_address", sa.Text(), nullable=True),
        sa.Column("bib_number", sa.Integer(), nullable=False),
        sa.Column("has_completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("event_year", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("user_id", "event_year", name="uq_participant_identity_year"),
        sa.UniqueConstraint("bib_number", "event_year", name="uq_participant_bib_year"),
    )
    op.create_index("ix_participants_user_id", "participants", ["user_id"])
    op.create_index("ix_participants_event_year", "participants", ["event_year"])

    op.create_table(
        "completions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("participant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("completed_date", sa.Date(), nullable=False),
        sa.Column("duration_text", sa.String(length=50), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("vote_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("comment_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("image_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("event_year", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("participant_id", "event_year", name="uq_completion_one_per_year"),
    )
    op.create_index("ix_completions_participant_id", "completions", ["participant_id"])
    op.create_index("ix_completions_event_year", "completions", ["event_year"])

    op.create_table(
        "completion_images",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("completion_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("completions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("participant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_year", sa.Integer(), nullable=False),
        sa.Column("storage_key", sa.Text(), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=False),
        sa.Column("is_starred", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("caption", sa.String(length=200), nullable=True),
        sa.Column("byte_size", sa.Integer(), nullable=False),
        sa.Column("width", sa.Integer(), nullable=False),
        sa.Column("height", sa.Integer(), nullable=False),
        sa.Column("uploaded_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("display_order >= 0", name="ck_completion_images_order_nonneg"),
        sa.CheckConstraint("byte_size > 0", name="ck_completion_images_size_positive"),
    )
    op.create_index("ix_completion_images_completion_id", "completion_images", ["completion_id"])
    op.create_index("ix_completion_images_participant_id", "completion_images", ["participant_id"])
    op.create_index("ix_completion_images_storage_key", "completion_images", ["storage_key"], unique=True)

    op.create_table(
        "votes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("completion_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("completions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("voter_participant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_year", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("completion_id", "voter_participant_id", name="uq_vote_once_per_voter"),
    )
    op.create_index("ix_votes_completion_id", "votes", ["completion_id"])
    op.create_index("ix_votes_voter_participant_id", "votes", ["voter_participant_id"])

    op.create_table(
        "photo_comments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("completion_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("completions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("participant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("comment_text", sa.Text(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_photo_comments_completion_id", "photo_comments", ["completion_id"])
    op.create_index("ix_photo_comments_participant_id", "photo_comments", ["participant_id"])

    op.execute(GALLERY_VIEW)

def downgrade() -> None:
    op.execute("DROP VIEW IF EXISTS gallery_entries")
    op.drop_table("photo_comments")
    op.drop_table("votes")
    op.drop_table("completion_images")
    op.drop_table("completions")
    op.drop_table("participants")
