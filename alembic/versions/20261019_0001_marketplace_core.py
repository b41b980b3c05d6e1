"""create catalog, identity, order and audit tables"""
from alembic import op
import sqlalchemy as sa

revision = "20261019_0001_marketplace_core"
down_revision = None
branch_labels = None
depends_on = None

ORDER_STATUSES = (
    "pending",
    "paid",
    "preparing",
    "shipped",
    "delivered",
    "cancelled",
    "failed",
    "refunded",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "vendors",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_vendors"),
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("vendor_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(length=500), nullable=True),
        sa.Column("unit_amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("is_purchasable", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("unit_amount >= 0", name="ck_products_non_negative_unit_amount"),
        sa.ForeignKeyConstraint(["vendor_id"], ["vendors.id"], name="fk_products_vendor_id_vendors"),
        sa.PrimaryKeyConstraint("id", name="pk_products"),
    )
    op.create_index("ix_products_vendor_id", "products", ["vendor_id"])

    op.create_table(
        "identities",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("is_guest", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("migrated_to_id", sa.Integer(), nullable=True),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_provider", sa.String(length=50), nullable=True),
        sa.Column("external_subject", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("display_name", sa.String(length=200), nullable=True),
        sa.Column("vendor_id", sa.Integer(), nullable=True),
        sa.Column("shipping_name", sa.String(length=200), nullable=True),
        sa.Column("postal_code", sa.String(length=20), nullable=True),
        sa.Column("prefecture", sa.String(length=100), nullable=True),
        sa.Column("city", sa.String(length=200), nullable=True),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["migrated_to_id"], ["identities.id"], name="fk_identities_migrated_to_id_identities"
        ),
        sa.ForeignKeyConstraint(["vendor_id"], ["vendors.id"], name="fk_identities_vendor_id_vendors"),
        sa.PrimaryKeyConstraint("id", name="pk_identities"),
        sa.UniqueConstraint(
            "external_provider", "external_subject", name="uq_identities_external_subject"
        ),
    )
    op.create_index("ix_identities_migrated_to_id", "identities", ["migrated_to_id"])

    op.create_table(
        "auth_sessions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("identity_id", sa.Integer(), nullable=False),
        sa.Column("prefix", sa.String(length=32), nullable=False),
        sa.Column("token_hash", sa.String(length=128), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["identity_id"], ["identities.id"], name="fk_auth_sessions_identity_id_identities"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_auth_sessions"),
        sa.UniqueConstraint("token_hash", name="uq_auth_sessions_token_hash"),
    )
    op.create_index("ix_auth_sessions_identity_id", "auth_sessions", ["identity_id"])

    op.create_table(
        "consultations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("identity_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("answers_json", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["identity_id"], ["identities.id"], name="fk_consultations_identity_id_identities"
        ),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_consultations_product_id_products"),
        sa.PrimaryKeyConstraint("id", name="pk_consultations"),
    )
    op.create_index("ix_consultations_identity_id", "consultations", ["identity_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("order_id", sa.String(length=40), nullable=False),
        sa.Column("checkout_attempt_id", sa.String(length=64), nullable=False),
        sa.Column("gateway_session_id", sa.String(length=255), nullable=True),
        sa.Column("gateway_payment_ref", sa.String(length=255), nullable=True),
        sa.Column("buyer_id", sa.Integer(), nullable=False),
        sa.Column("vendor_id", sa.Integer(), nullable=False),
        sa.Column("consultation_id", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("total_amount", sa.Integer(), nullable=False),
        sa.Column("status", sa.Enum(*ORDER_STATUSES, name="orderstatus"), nullable=False),
        sa.Column("shipping_snapshot", sa.JSON(), nullable=True),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("total_amount >= 0", name="ck_orders_non_negative_total"),
        sa.ForeignKeyConstraint(["buyer_id"], ["identities.id"], name="fk_orders_buyer_id_identities"),
        sa.ForeignKeyConstraint(["vendor_id"], ["vendors.id"], name="fk_orders_vendor_id_vendors"),
        sa.ForeignKeyConstraint(
            ["consultation_id"], ["consultations.id"], name="fk_orders_consultation_id_consultations"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_orders"),
        sa.UniqueConstraint("order_id", name="uq_orders_order_id"),
        sa.UniqueConstraint("gateway_session_id", "vendor_id", name="uq_orders_gateway_session_vendor"),
    )
    op.create_index("ix_orders_checkout_attempt_id", "orders", ["checkout_attempt_id"])
    op.create_index("ix_orders_gateway_session_id", "orders", ["gateway_session_id"])
    op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
    op.create_index("ix_orders_vendor_status", "orders", ["vendor_id", "status"])
    op.create_index("ix_orders_status_created_at", "orders", ["status", "created_at"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(length=200), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_amount", sa.Integer(), nullable=False),
        sa.Column("line_amount", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_positive_quantity"),
        sa.ForeignKeyConstraint(
            ["order_id"], ["orders.id"], name="fk_order_items_order_id_orders", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_order_items_product_id_products"),
        sa.PrimaryKeyConstraint("id", name="pk_order_items"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_audit_logs"),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"])
    op.create_index("ix_audit_logs_at", "audit_logs", ["at"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_order_items_order_id", table_name="order_items")
    op.drop_table("order_items")
    for name in (
        "ix_orders_status_created_at",
        "ix_orders_vendor_status",
        "ix_orders_buyer_id",
        "ix_orders_gateway_session_id",
        "ix_orders_checkout_attempt_id",
    ):
        op.drop_index(name, table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_consultations_identity_id", table_name="consultations")
    op.drop_table("consultations")
    op.drop_index("ix_auth_sessions_identity_id", table_name="auth_sessions")
    op.drop_table("auth_sessions")
    op.drop_index("ix_identities_migrated_to_id", table_name="identities")
    op.drop_table("identities")
    op.drop_index("ix_products_vendor_id", table_name="products")
    op.drop_table("products")
    op.drop_table("vendors")
    sa.Enum(name="orderstatus").drop(op.get_bind(), checkfirst=True)
