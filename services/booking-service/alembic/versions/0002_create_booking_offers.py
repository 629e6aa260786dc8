from alembic import op
import sqlalchemy as sa

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "booking_offers",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("booking_id", sa.String(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("provider_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("resolution_reason", sa.String(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("booking_id", "provider_id", name="uq_booking_offers_booking_provider"),
    )
    op.create_index("ix_booking_offers_booking_id", "booking_offers", ["booking_id"], unique=False)
    op.create_index("ix_booking_offers_provider_id", "booking_offers", ["provider_id"], unique=False)
    op.create_index("ix_booking_offers_status", "booking_offers", ["status"], unique=False)

def downgrade():
    op.drop_index("ix_booking_offers_status", table_name="booking_offers")
    op.drop_index("ix_booking_offers_provider_id", table_name="booking_offers")
    op.drop_index("ix_booking_offers_booking_id", table_name="booking_offers")
    op.drop_table("booking_offers")
