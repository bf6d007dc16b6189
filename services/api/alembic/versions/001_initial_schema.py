"""Initial schema with notes, itineraries, generation_usage

Revision ID: 001_initial_schema
Revises: 
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Notes table (owned by the notes service, mirrored here for ownership checks)
    op.create_table(
        "notes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("note_text", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notes_user_id", "notes", ["user_id"])

    # Itineraries table
    op.create_table(
        "itineraries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("note_id", sa.String(36), sa.ForeignKey("notes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("request_id", sa.String(64), nullable=False),
        sa.Column("route_geojson", postgresql.JSONB, nullable=True),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("total_distance_km", sa.Float, nullable=True),
        sa.Column("total_duration_h", sa.Float, nullable=True),
        sa.Column("progress", sa.Integer, nullable=True),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("error_code", sa.String(40), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("note_id", "version", name="uq_itineraries_note_version"),
        sa.UniqueConstraint("user_id", "request_id", name="uq_itineraries_user_request"),
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="ck_itineraries_status",
        ),
    )
    op.create_index("ix_itineraries_note_id", "itineraries", ["note_id"])

    # At most one running generation per user
    op.create_index(
        "uq_itineraries_user_running",
        "itineraries",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'running'"),
    )

    # Generation usage table (spend cap)
    op.create_table(
        "generation_usage",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("itinerary_id", sa.String(36), sa.ForeignKey("itineraries.id", ondelete="SET NULL"), nullable=True),
        sa.Column("model", sa.String(100), nullable=True),
        sa.Column("prompt_tokens", sa.Integer, nullable=False, server_default="0"),
        sa.Column("completion_tokens", sa.Integer, nullable=False, server_default="0"),
        sa.Column("estimated_cost_usd", sa.Float, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_generation_usage_user_created", "generation_usage", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_generation_usage_user_created", table_name="generation_usage")
    op.drop_table("generation_usage")
    op.drop_index("uq_itineraries_user_running", table_name="itineraries")
    op.drop_index("ix_itineraries_note_id", table_name="itineraries")
    op.drop_table("itineraries")
    op.drop_index("ix_notes_user_id", table_name="notes")
    op.drop_table("notes")
