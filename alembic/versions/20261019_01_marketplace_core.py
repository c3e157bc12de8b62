"""Marketplace core tables.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


UUID = postgresql.UUID(as_uuid=True)

offer_status_enum = sa.Enum("ACTIVE", "SOLD_OUT", "EXPIRED", "CANCELLED", name="offer_status_enum")
order_status_enum = sa.Enum(
    "PENDING_PAYMENT",
    "CONFIRMED",
    "READY_FOR_PICKUP",
    "COMPLETED",
    "CANCELLED",
    "NO_SHOW",
    name="order_status_enum",
)
payment_status_enum = sa.Enum("PENDING", "APPROVED", "REFUSED", "REFUNDED", name="payment_status_enum")
payment_method_enum = sa.Enum("PIX", "CREDIT_CARD", name="payment_method_enum")
event_type_enum = sa.Enum(
    "STATE_CHANGE",
    "PAYMENT_UPDATE",
    "REFUND_REQUESTED",
    "REFUND_FAILED",
    "PAYMENT_INITIATION_FAILED",
    "CREDIT_GRANTED",
    name="order_state_event_type_enum",
)
actor_type_enum = sa.Enum(
    "SYSTEM", "CONSUMER", "RESTAURANT", "GATEWAY", "SCHEDULER", name="order_state_actor_type_enum"
)
transaction_status_enum = sa.Enum("PENDING", "PROCESSED", "PAID", name="transaction_status_enum")
recipient_type_enum = sa.Enum("CONSUMER", "RESTAURANT", name="notification_recipient_type_enum")
notification_type_enum = sa.Enum(
    "ORDER_CONFIRMED",
    "NEW_ORDER",
    "ORDER_CANCELLED",
    "PAYMENT_REFUSED",
    "NO_SHOW_WARNING",
    "ACCOUNT_BLOCKED",
    "ORDER_NO_SHOW",
    "PICKUP_REMINDER",
    "REVIEW_REQUEST",
    "PAYOUT_SENT",
    "LOW_RATING_ALERT",
    name="notification_type_enum",
)
payment_notification_status_enum = sa.Enum(
    "RECEIVED", "PROCESSED", "IGNORED", "FAILED", name="payment_notification_status_enum"
)


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
        )
    return columns


def upgrade() -> None:
    op.create_table(
        "restaurants",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("tax_id", sa.String(14), nullable=False, unique=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("address", sa.String(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("is_approved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("average_rating", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_ratings", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_restaurants_email", "restaurants", ["email"], unique=True)

    op.create_table(
        "consumers",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("tax_id", sa.String(11), nullable=True),
        sa.Column("failed_pickups", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("blocked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("credit_balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_consumers_email", "consumers", ["email"], unique=True)
    op.create_index("ix_consumers_blocked_until", "consumers", ["blocked_until"])

    op.create_table(
        "offers",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("restaurant_id", UUID, sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("package_type", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("available_quantity", sa.Integer(), nullable=False),
        sa.Column("original_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("promotional_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_percent", sa.Numeric(5, 2), nullable=False),
        sa.Column("pickup_start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("pickup_end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_vegetarian", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_vegan", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", offer_status_enum, nullable=False, server_default="ACTIVE"),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("available_quantity >= 0", name="ck_offers_available_non_negative"),
        sa.CheckConstraint("available_quantity <= quantity", name="ck_offers_available_within_quantity"),
    )
    op.create_index("ix_offers_restaurant_id", "offers", ["restaurant_id"])
    op.create_index("ix_offers_status_pickup_end", "offers", ["status", "pickup_end_time"])

    op.create_table(
        "orders",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("consumer_id", UUID, sa.ForeignKey("consumers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("offer_id", UUID, sa.ForeignKey("offers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("restaurant_id", UUID, sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("original_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("promotional_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("platform_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("restaurant_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method", payment_method_enum, nullable=False),
        sa.Column("payment_status", payment_status_enum, nullable=False, server_default="PENDING"),
        sa.Column("payment_id", sa.String(64), nullable=True, unique=True),
        sa.Column("payment_checkout_url", sa.Text(), nullable=True),
        sa.Column("pix_qr_code", sa.Text(), nullable=True),
        sa.Column("pickup_code", sa.String(16), nullable=False, unique=True),
        sa.Column("qr_code_data_url", sa.Text(), nullable=True),
        sa.Column("status", order_status_enum, nullable=False, server_default="PENDING_PAYMENT"),
        sa.Column("pickup_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("quantity > 0", name="ck_orders_quantity_positive"),
    )
    op.create_index("ix_orders_consumer_id", "orders", ["consumer_id"])
    op.create_index("ix_orders_offer_id", "orders", ["offer_id"])
    op.create_index("ix_orders_restaurant_id", "orders", ["restaurant_id"])
    op.create_index("ix_orders_status_created_at", "orders", ["status", "created_at"])

    op.create_table(
        "order_state_events",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("order_id", UUID, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_type", event_type_enum, nullable=False),
        sa.Column("actor_type", actor_type_enum, nullable=True),
        sa.Column("actor_id", sa.String(255), nullable=True),
        sa.Column("from_status", sa.String(64), nullable=True),
        sa.Column("to_status", sa.String(64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("ix_order_state_events_order_id", "order_state_events", ["order_id"])

    op.create_table(
        "transactions",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("order_id", UUID, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("restaurant_id", UUID, sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("platform_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("restaurant_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", transaction_status_enum, nullable=False, server_default="PENDING"),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_transactions_restaurant_id", "transactions", ["restaurant_id"])
    op.create_index("ix_transactions_status_processed_at", "transactions", ["status", "processed_at"])

    op.create_table(
        "notifications",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("recipient_type", recipient_type_enum, nullable=False),
        sa.Column("recipient_id", UUID, nullable=False),
        sa.Column("type", notification_type_enum, nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("related_id", UUID, nullable=True),
        sa.Column("dedup_key", sa.String(255), nullable=False, unique=True),
        sa.Column("deliver_after", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(updated=False),
    )
    op.create_index(
        "ix_notifications_recipient", "notifications", ["recipient_type", "recipient_id", "deliver_after"]
    )

    op.create_table(
        "payment_notifications",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("kind", sa.String(64), nullable=False),
        sa.Column("payment_id", sa.String(64), nullable=True),
        sa.Column("action", sa.String(64), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", payment_notification_status_enum, nullable=False, server_default="RECEIVED"),
        sa.Column("outcome", sa.String(64), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_payment_notifications_payment_id", "payment_notifications", ["payment_id"])

    op.create_table(
        "reviews",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("order_id", UUID, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("consumer_id", UUID, sa.ForeignKey("consumers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("restaurant_id", UUID, sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        *_timestamps(updated=False),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating_range"),
    )
    op.create_index("ix_reviews_restaurant_id", "reviews", ["restaurant_id"])


def downgrade() -> None:
    for table in (
        "reviews",
        "payment_notifications",
        "notifications",
        "transactions",
        "order_state_events",
        "orders",
        "offers",
        "consumers",
        "restaurants",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum in (
        payment_notification_status_enum,
        notification_type_enum,
        recipient_type_enum,
        transaction_status_enum,
        actor_type_enum,
        event_type_enum,
        payment_method_enum,
        payment_status_enum,
        order_status_enum,
        offer_status_enum,
    ):
        enum.drop(bind, checkfirst=True)
