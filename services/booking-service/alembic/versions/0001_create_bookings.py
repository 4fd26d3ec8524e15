from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

BOOKING_STATUSES = (
    "PENDING_PAYMENT",
    "CONFIRMED",
    "IN_PROGRESS",
    "COMPLETED",
    "CANCELLED",
    "EXPIRED",
    "NO_SHOW",
)


def upgrade():
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("venue_id", sa.String(), nullable=False),
        sa.Column("coach_id", sa.String(), nullable=True),
        sa.Column("sport", sa.String(), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("payments", sa.JSON(), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*BOOKING_STATUSES, name="booking_status", native_enum=False, length=20),
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("verification_token", sa.String(length=36), nullable=True),
        sa.Column("qr_code", sa.Text(), nullable=True),
        sa.Column("participant_name", sa.String(), nullable=True),
        sa.Column("participant_user_id", sa.String(), nullable=True),
        sa.Column("participant_age", sa.Integer(), nullable=True),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.UniqueConstraint("verification_token", name="uq_bookings_verification_token"),
    )
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index("ix_bookings_expires_at", "bookings", ["expires_at"], unique=False)
    op.create_index("ix_bookings_venue_id_date", "bookings", ["venue_id", "date"], unique=False)
    op.create_index("ix_bookings_coach_id_date", "bookings", ["coach_id", "date"], unique=False)

    op.create_table(
        "slot_guards",
        sa.Column("key", sa.String(length=200), primary_key=True),
        sa.Column("touched_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade():
    op.drop_table("slot_guards")
    op.drop_index("ix_bookings_coach_id_date", table_name="bookings")
    op.drop_index("ix_bookings_venue_id_date", table_name="bookings")
    op.drop_index("ix_bookings_expires_at", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_user_id", table_name="bookings")
    op.drop_table("bookings")
