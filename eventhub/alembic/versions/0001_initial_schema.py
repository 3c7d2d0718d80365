"""Initial EventHub schema."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("api_token", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("api_token"),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("location", sa.String(length=200), nullable=False),
        sa.Column("date_time", sa.DateTime(), nullable=False),
        sa.Column(
            "category", sa.String(length=16), nullable=False, server_default="other"
        ),
        sa.Column(
            "status", sa.String(length=16), nullable=False, server_default="upcoming"
        ),
        sa.Column("creator_id", sa.String(length=36), nullable=False),
        sa.Column("creator_name", sa.String(length=50), nullable=False),
        sa.Column(
            "attendee_count", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("max_attendees", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_modified", sa.DateTime(), nullable=False),
        sa.CheckConstraint("attendee_count >= 0", name="ck_events_attendee_count"),
        sa.CheckConstraint(
            "max_attendees IS NULL OR max_attendees >= 1",
            name="ck_events_max_attendees",
        ),
        sa.ForeignKeyConstraint(
            ["creator_id"],
            ["users.id"],
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_events_date_time", "events", ["date_time"])
    op.create_index("ix_events_creator_id", "events", ["creator_id"])

    op.create_table(
        "event_attendees",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("joined_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["event_id"],
            ["events.id"],
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "event_id", "user_id", name="uq_event_attendees_event_user"
        ),
    )
    op.create_index("ix_event_attendees_user_id", "event_attendees", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_event_attendees_user_id", table_name="event_attendees")
    op.drop_table("event_attendees")
    op.drop_index("ix_events_creator_id", table_name="events")
    op.drop_index("ix_events_date_time", table_name="events")
    op.drop_table("events")
    op.drop_table("users")
