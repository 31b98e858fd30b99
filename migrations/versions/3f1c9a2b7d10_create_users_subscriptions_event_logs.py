from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "3f1c9a2b7d10"
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("subscription_id", sa.String(length=64), nullable=False),
        sa.Column("customer_email", sa.String(length=255), nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("plan_type", sa.String(length=128), nullable=False, server_default=sa.text("''")),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'incomplete'")),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    # ON CONFLICT (subscription_id) relies on this unique index
    op.create_index("ix_subscriptions_subscription_id", "subscriptions", ["subscription_id"], unique=True)
    op.create_index("ix_subscriptions_customer_email", "subscriptions", ["customer_email"], unique=False)
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"], unique=False)
    op.create_index("ix_subscriptions_current_period_end", "subscriptions", ["current_period_end"], unique=False)
    op.create_index("ix_subscriptions_created_at", "subscriptions", ["created_at"], unique=False)
    op.create_index(
        "ix_subscriptions_email_status_created",
        "subscriptions",
        ["customer_email", "status", "created_at"],
        unique=False,
    )

    op.create_table(
        "billing_event_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("delivery_id", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=80), nullable=False),
        sa.Column("subscription_id", sa.String(length=64), nullable=True),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.Column("signature_valid", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("notes", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_billing_event_logs_delivery_id", "billing_event_logs", ["delivery_id"], unique=False)
    op.create_index("ix_billing_event_logs_type", "billing_event_logs", ["type"], unique=False)
    op.create_index("ix_billing_event_logs_subscription_id", "billing_event_logs", ["subscription_id"], unique=False)

def downgrade():
    op.drop_index("ix_billing_event_logs_subscription_id", table_name="billing_event_logs")
    op.drop_index("ix_billing_event_logs_type", table_name="billing_event_logs")
    op.drop_index("ix_billing_event_logs_delivery_id", table_name="billing_event_logs")
    op.drop_table("billing_event_logs")

    op.drop_index("ix_subscriptions_email_status_created", table_name="subscriptions")
    op.drop_index("ix_subscriptions_created_at", table_name="subscriptions")
    op.drop_index("ix_subscriptions_current_period_end", table_name="subscriptions")
    op.drop_index("ix_subscriptions_status", table_name="subscriptions")
    op.drop_index("ix_subscriptions_customer_email", table_name="subscriptions")
    op.drop_index("ix_subscriptions_subscription_id", table_name="subscriptions")
    op.drop_table("subscriptions")

    op.drop_table("users")
