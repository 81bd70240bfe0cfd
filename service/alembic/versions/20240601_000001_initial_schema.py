"""Initial schema

Revision ID: 001
Revises:
Create Date: 2024-06-01 00:00:01

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enum types (create_type=False so create_table does not repeat them)
    actor_role = postgresql.ENUM("merchant", "admin", name="actor_role", create_type=False)
    actor_role.create(op.get_bind(), checkfirst=True)

    api_key_status = postgresql.ENUM("active", "revoked", name="api_key_status", create_type=False)
    api_key_status.create(op.get_bind(), checkfirst=True)

    currency = postgresql.ENUM("RWF", "USD", "EUR", name="currency", create_type=False)
    currency.create(op.get_bind(), checkfirst=True)

    payment_intent_status = postgresql.ENUM(
        "pending",
        "completed",
        "failed",
        "cancelled",
        "expired",
        "refunded",
        "partially_refunded",
        name="payment_intent_status",
        create_type=False,
    )
    payment_intent_status.create(op.get_bind(), checkfirst=True)

    payment_method = postgresql.ENUM(
        "card",
        "cash",
        "mobile_money",
        "bank_transfer",
        "irembo_pay",
        name="payment_method",
        create_type=False,
    )
    payment_method.create(op.get_bind(), checkfirst=True)

    transaction_status = postgresql.ENUM(
        "success", "failed", "refunded", name="transaction_status", create_type=False
    )
    transaction_status.create(op.get_bind(), checkfirst=True)

    refund_status = postgresql.ENUM(
        "pending", "approved", "rejected", name="refund_status", create_type=False
    )
    refund_status.create(op.get_bind(), checkfirst=True)

    # Create merchants table
    op.create_table(
        "merchants",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("webhook_url", sa.String(2048), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_merchants_name", "merchants", ["name"])
    op.create_index("ix_merchants_is_active", "merchants", ["is_active"])

    # Create api_keys table
    op.create_table(
        "api_keys",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("key_prefix", sa.String(32), nullable=False),
        sa.Column("key_hash", sa.String(256), nullable=False, unique=True),
        sa.Column("role", actor_role, nullable=False),
        sa.Column(
            "merchant_id",
            sa.Uuid,
            sa.ForeignKey("merchants.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("label", sa.String(128), nullable=True),
        sa.Column("scopes", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("status", api_key_status, nullable=False, server_default="active"),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_api_keys_key_prefix", "api_keys", ["key_prefix"])
    op.create_index("ix_api_keys_merchant_id", "api_keys", ["merchant_id"])

    # Create payment_intents table
    op.create_table(
        "payment_intents",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "merchant_id",
            sa.Uuid,
            sa.ForeignKey("merchants.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("items", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("amount", sa.Numeric(19, 4), nullable=False),
        sa.Column("currency", currency, nullable=False),
        sa.Column("status", payment_intent_status, nullable=False, server_default="pending"),
        sa.Column("refunded_amount", sa.Numeric(19, 4), nullable=False, server_default="0"),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.Uuid, nullable=True),
        sa.Column("version_id", sa.Integer, nullable=False),
    )
    op.create_index("ix_payment_intents_merchant_id", "payment_intents", ["merchant_id"])
    op.create_index("ix_payment_intents_status", "payment_intents", ["status"])
    op.create_index("ix_payment_intents_created_at", "payment_intents", ["created_at"])
    op.create_index("ix_payment_intents_expires_at", "payment_intents", ["expires_at"])

    # Create transactions table
    op.create_table(
        "transactions",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "payment_intent_id",
            sa.Uuid,
            sa.ForeignKey("payment_intents.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "parent_transaction_id",
            sa.Uuid,
            sa.ForeignKey("transactions.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("amount", sa.Numeric(19, 4), nullable=False),
        sa.Column("currency", currency, nullable=False),
        sa.Column("payment_method", payment_method, nullable=False),
        sa.Column("status", transaction_status, nullable=False),
        sa.Column(
            "confirmed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("confirmed_by", sa.Uuid, nullable=False),
        sa.Column("confirmed_by_role", actor_role, nullable=False),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default="{}"),
    )
    op.create_index("ix_transactions_payment_intent_id", "transactions", ["payment_intent_id"])
    op.create_index(
        "ix_transactions_parent_transaction_id", "transactions", ["parent_transaction_id"]
    )
    op.create_index("ix_transactions_status", "transactions", ["status"])
    op.create_index("ix_transactions_confirmed_at", "transactions", ["confirmed_at"])

    # Create refunds table
    op.create_table(
        "refunds",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "transaction_id",
            sa.Uuid,
            sa.ForeignKey("transactions.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("status", refund_status, nullable=False, server_default="pending"),
        sa.Column("amount", sa.Numeric(19, 4), nullable=False),
        sa.Column("currency", currency, nullable=False),
        sa.Column("reason", sa.String(500), nullable=False),
        sa.Column("rejected_reason", sa.String(500), nullable=True),
        sa.Column(
            "requested_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("requested_by", sa.Uuid, nullable=False),
        sa.Column("approved_by", sa.Uuid, nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.Uuid, nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer, nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_refunds_amount_positive"),
    )
    op.create_index("ix_refunds_transaction_id", "refunds", ["transaction_id"])
    op.create_index("ix_refunds_status", "refunds", ["status"])
    op.create_index("ix_refunds_requested_at", "refunds", ["requested_at"])


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table("refunds")
    op.drop_table("transactions")
    op.drop_table("payment_intents")
    op.drop_table("api_keys")
    op.drop_table("merchants")

    # Drop enum types
    op.execute("DROP TYPE IF EXISTS refund_status")
    op.execute("DROP TYPE IF EXISTS transaction_status")
    op.execute("DROP TYPE IF EXISTS payment_method")
    op.execute("DROP TYPE IF EXISTS payment_intent_status")
    op.execute("DROP TYPE IF EXISTS currency")
    op.execute("DROP TYPE IF EXISTS api_key_status")
    op.execute("DROP TYPE IF EXISTS actor_role")
