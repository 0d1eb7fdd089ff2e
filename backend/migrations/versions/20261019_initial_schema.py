"""Initial wareledger schema

Revision ID: 20261019_initial_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


MONEY = sa.Numeric(18, 4)
QTY = sa.Numeric(18, 6)
RATE = sa.Numeric(9, 4)


def _now():
    return sa.text("(CURRENT_TIMESTAMP)")


def upgrade():
    # ------------------------------------------------------------------ catalog
    op.create_table(
        "units",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("base_unit_id", sa.Integer(), nullable=True),
        sa.Column("operator", sa.String(1), nullable=True),
        sa.Column("operation_value", QTY, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["base_unit_id"], ["units.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("units", schema=None) as batch_op:
        batch_op.create_index("ix_units_base_unit_id", ["base_unit_id"], unique=False)

    op.create_table(
        "taxes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("rate", RATE, nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "warehouses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "variants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(16), nullable=False, server_default="standard"),
        sa.Column("is_batch", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_variant", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("track_inventory", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("allow_oversell", sa.Boolean(), nullable=True),
        sa.Column("cost", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("price", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("profit_margin", RATE, nullable=True),
        sa.Column("margin_type", sa.String(16), nullable=True),
        sa.Column("tax_id", sa.Integer(), nullable=True),
        sa.Column("tax_method", sa.String(16), nullable=False, server_default="exclusive"),
        sa.Column("unit_id", sa.Integer(), nullable=False),
        sa.Column("purchase_unit_id", sa.Integer(), nullable=True),
        sa.Column("sale_unit_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.ForeignKeyConstraint(["tax_id"], ["taxes.id"]),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"]),
        sa.ForeignKeyConstraint(["purchase_unit_id"], ["units.id"]),
        sa.ForeignKeyConstraint(["sale_unit_id"], ["units.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_name", ["name"], unique=False)

    op.create_table(
        "product_variants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("item_code", sa.String(64), nullable=True),
        sa.Column("additional_cost", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("additional_price", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("qty", QTY, nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["variants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("item_code"),
        sa.UniqueConstraint("product_id", "variant_id", name="uq_product_variants_product_variant"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("product_variants", schema=None) as batch_op:
        batch_op.create_index("ix_product_variants_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_product_variants_variant_id", ["variant_id"], unique=False)

    op.create_table(
        "product_batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("batch_no", sa.String(64), nullable=False),
        sa.Column("expired_date", sa.Date(), nullable=True),
        sa.Column("qty", QTY, nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "batch_no", name="uq_product_batches_product_batch_no"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("product_batches", schema=None) as batch_op:
        batch_op.create_index("ix_product_batches_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_product_batches_expired_date", ["expired_date"], unique=False)

    op.create_table(
        "combo_components",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("combo_product_id", sa.Integer(), nullable=False),
        sa.Column("component_product_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=True),
        sa.Column("qty", QTY, nullable=False, server_default=sa.text("1")),
        sa.Column("unit_price", MONEY, nullable=True),
        sa.ForeignKeyConstraint(["combo_product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["component_product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["variants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "combo_product_id", "component_product_id", "variant_id", name="uq_combo_components_member"
        ),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("combo_components", schema=None) as batch_op:
        batch_op.create_index("ix_combo_components_combo_product_id", ["combo_product_id"], unique=False)
        batch_op.create_index("ix_combo_components_component_product_id", ["component_product_id"], unique=False)

    # ---------------------------------------------------------------- customers
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("points", QTY, nullable=False, server_default=sa.text("0")),
        sa.Column("deposit", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customers", schema=None) as batch_op:
        batch_op.create_index("ix_customers_active", ["is_active"], unique=False)

    op.create_table(
        "gift_cards",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("card_no", sa.String(64), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("expense", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("expired_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("card_no"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("gift_cards", schema=None) as batch_op:
        batch_op.create_index("ix_gift_cards_customer_id", ["customer_id"], unique=False)

    # --------------------------------------------------------------- promotions
    op.create_table(
        "discounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("applies_to", sa.String(16), nullable=False, server_default="ALL"),
        sa.Column("product_ids", sa.Text(), nullable=True),
        sa.Column("type", sa.String(16), nullable=False, server_default="percentage"),
        sa.Column("value", MONEY, nullable=False),
        sa.Column("valid_from", sa.Date(), nullable=True),
        sa.Column("valid_till", sa.Date(), nullable=True),
        sa.Column("minimum_qty", QTY, nullable=True),
        sa.Column("maximum_qty", QTY, nullable=True),
        sa.Column("days", sa.String(64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("discounts", schema=None) as batch_op:
        batch_op.create_index("ix_discounts_is_active", ["is_active"], unique=False)

    op.create_table(
        "discount_plans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(16), nullable=False, server_default="generic"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("discount_plans", schema=None) as batch_op:
        batch_op.create_index("ix_discount_plans_is_active", ["is_active"], unique=False)

    op.create_table(
        "discount_plan_discounts",
        sa.Column("discount_plan_id", sa.Integer(), nullable=False),
        sa.Column("discount_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["discount_plan_id"], ["discount_plans.id"]),
        sa.ForeignKeyConstraint(["discount_id"], ["discounts.id"]),
        sa.PrimaryKeyConstraint("discount_plan_id", "discount_id"),
    )

    op.create_table(
        "discount_plan_customers",
        sa.Column("discount_plan_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["discount_plan_id"], ["discount_plans.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("discount_plan_id", "customer_id"),
    )

    op.create_table(
        "coupons",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("type", sa.String(16), nullable=False, server_default="percentage"),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("minimum_amount", MONEY, nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expired_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
        sqlite_autoincrement=True,
    )

    # ---------------------------------------------------------------- registers
    op.create_table(
        "cash_registers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("warehouse_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="OPEN"),
        sa.Column("open_key", sa.Integer(), nullable=True),
        sa.Column("cash_in_hand", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("cash_sales", MONEY, nullable=True),
        sa.Column("cash_outflows", MONEY, nullable=True),
        sa.Column("closing_balance", MONEY, nullable=True),
        sa.Column("actual_cash", MONEY, nullable=True),
        sa.Column("variance", MONEY, nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "warehouse_id", "open_key", name="uq_cash_registers_one_open"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cash_registers", schema=None) as batch_op:
        batch_op.create_index("ix_cash_registers_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_cash_registers_warehouse_id", ["warehouse_id"], unique=False)
        batch_op.create_index("ix_cash_registers_status", ["status"], unique=False)
        batch_op.create_index("ix_cash_registers_opened_at", ["opened_at"], unique=False)

    op.create_table(
        "cash_outflows",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cash_register_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.ForeignKeyConstraint(["cash_register_id"], ["cash_registers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cash_outflows", schema=None) as batch_op:
        batch_op.create_index("ix_cash_outflows_cash_register_id", ["cash_register_id"], unique=False)

    # ---------------------------------------------------------------- documents
    op.create_table(
        "documents",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(32), nullable=False),
        sa.Column("reference_no", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="DRAFT"),
        sa.Column("payment_status", sa.String(16), nullable=True),
        sa.Column("warehouse_id", sa.Integer(), nullable=True),
        sa.Column("from_warehouse_id", sa.Integer(), nullable=True),
        sa.Column("to_warehouse_id", sa.Integer(), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("supplier_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("cash_register_id", sa.Integer(), nullable=True),
        sa.Column("return_of_document_id", sa.Integer(), nullable=True),
        sa.Column("source_document_id", sa.Integer(), nullable=True),
        sa.Column("coupon_code", sa.String(64), nullable=True),
        sa.Column("coupon_id", sa.Integer(), nullable=True),
        sa.Column("order_tax_rate", RATE, nullable=False, server_default=sa.text("0")),
        sa.Column("order_discount_type", sa.String(16), nullable=True),
        sa.Column("order_discount_value", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("shipping_cost", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("item_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_qty", QTY, nullable=False, server_default=sa.text("0")),
        sa.Column("total_discount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("total_tax", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("total_price", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("order_discount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("coupon_discount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("order_tax", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("grand_total", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("paid_amount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column("pending_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by_user_id", sa.Integer(), nullable=True),
        sa.Column("delete_reason", sa.String(255), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"]),
        sa.ForeignKeyConstraint(["from_warehouse_id"], ["warehouses.id"]),
        sa.ForeignKeyConstraint(["to_warehouse_id"], ["warehouses.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["cash_register_id"], ["cash_registers.id"]),
        sa.ForeignKeyConstraint(["return_of_document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["source_document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["coupon_id"], ["coupons.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reference_no"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("documents", schema=None) as batch_op:
        batch_op.create_index(
            "ix_documents_type_status_created", ["document_type", "status", "created_at"], unique=False
        )
        batch_op.create_index("ix_documents_status", ["status"], unique=False)
        batch_op.create_index("ix_documents_warehouse_id", ["warehouse_id"], unique=False)
        batch_op.create_index("ix_documents_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_documents_cash_register_id", ["cash_register_id"], unique=False)
        batch_op.create_index("ix_documents_return_of_document_id", ["return_of_document_id"], unique=False)
        batch_op.create_index("ix_documents_created_at", ["created_at"], unique=False)

    op.create_table(
        "document_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=True),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("unit_id", sa.Integer(), nullable=True),
        sa.Column("qty", QTY, nullable=False),
        sa.Column("fulfilled_qty", QTY, nullable=False, server_default=sa.text("0")),
        sa.Column("return_qty", QTY, nullable=False, server_default=sa.text("0")),
        sa.Column("unit_price", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("discount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("promo_discount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("tax_rate", RATE, nullable=False, server_default=sa.text("0")),
        sa.Column("tax_method", sa.String(16), nullable=False, server_default="exclusive"),
        sa.Column("subtotal", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("tax", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("total", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("action", sa.String(1), nullable=True),
        sa.Column("role", sa.String(16), nullable=True),
        sa.Column("is_packing", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_delivered", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("return_of_line_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["variants.id"]),
        sa.ForeignKeyConstraint(["batch_id"], ["product_batches.id"]),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"]),
        sa.ForeignKeyConstraint(["return_of_line_id"], ["document_lines.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_id", "line_no", name="uq_document_lines_doc_line_no"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("document_lines", schema=None) as batch_op:
        batch_op.create_index("ix_document_lines_document_id", ["document_id"], unique=False)
        batch_op.create_index("ix_document_lines_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_document_lines_return_of_line_id", ["return_of_line_id"], unique=False)

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_type", name="uq_document_sequences_type"),
        sqlite_autoincrement=True,
    )

    # ------------------------------------------------------------------- ledger
    op.create_table(
        "stock_levels",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("warehouse_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=True),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("variant_key", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("batch_key", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("qty", QTY, nullable=False, server_default=sa.text("0")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["variants.id"]),
        sa.ForeignKeyConstraint(["batch_id"], ["product_batches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "warehouse_id", "variant_key", "batch_key", name="uq_stock_levels_key"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_levels", schema=None) as batch_op:
        batch_op.create_index("ix_stock_levels_product_warehouse", ["product_id", "warehouse_id"], unique=False)
        batch_op.create_index("ix_stock_levels_warehouse_id", ["warehouse_id"], unique=False)

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("stock_level_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("warehouse_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=True),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("quantity_delta", QTY, nullable=False),
        sa.Column("balance_after", QTY, nullable=False),
        sa.Column("reason", sa.String(32), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=True),
        sa.Column("document_line_id", sa.Integer(), nullable=True),
        sa.Column("reversal_of_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.ForeignKeyConstraint(["stock_level_id"], ["stock_levels.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["variants.id"]),
        sa.ForeignKeyConstraint(["batch_id"], ["product_batches.id"]),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["document_line_id"], ["document_lines.id"]),
        sa.ForeignKeyConstraint(["reversal_of_id"], ["stock_movements.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_movements", schema=None) as batch_op:
        batch_op.create_index(
            "ix_stock_movements_key", ["product_id", "warehouse_id", "variant_id", "batch_id"], unique=False
        )
        batch_op.create_index("ix_stock_movements_document", ["document_id", "document_line_id"], unique=False)
        batch_op.create_index("ix_stock_movements_stock_level_id", ["stock_level_id"], unique=False)
        batch_op.create_index("ix_stock_movements_reason", ["reason"], unique=False)
        batch_op.create_index("ix_stock_movements_occurred_at", ["occurred_at"], unique=False)

    # ------------------------------------------------------------------ payments
    op.create_table(
        "installment_plans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=True),
        sa.Column("price", MONEY, nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("down_payment", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("months", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_reference", sa.String(64), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("cash_register_id", sa.Integer(), nullable=True),
        sa.Column("method", sa.String(32), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("change", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default="COMPLETED"),
        sa.Column("reversal_of_id", sa.Integer(), nullable=True),
        sa.Column("reversed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reversal_reason", sa.String(255), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["cash_register_id"], ["cash_registers.id"]),
        sa.ForeignKeyConstraint(["reversal_of_id"], ["payments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_reference"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("payments", schema=None) as batch_op:
        batch_op.create_index("ix_payments_document_status", ["document_id", "status"], unique=False)
        batch_op.create_index("ix_payments_register_method", ["cash_register_id", "method"], unique=False)
        batch_op.create_index("ix_payments_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_payments_method", ["method"], unique=False)
        batch_op.create_index("ix_payments_status", ["status"], unique=False)
        batch_op.create_index("ix_payments_reversal_of_id", ["reversal_of_id"], unique=False)
        batch_op.create_index("ix_payments_paid_at", ["paid_at"], unique=False)

    op.create_table(
        "installments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("payment_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["plan_id"], ["installment_plans.id"]),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("installments", schema=None) as batch_op:
        batch_op.create_index("ix_installments_plan_id", ["plan_id"], unique=False)

    op.create_table(
        "payment_details",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_id", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(32), nullable=False),
        sa.Column("cheque_no", sa.String(64), nullable=True),
        sa.Column("card_type", sa.String(16), nullable=True),
        sa.Column("card_last4", sa.String(4), nullable=True),
        sa.Column("card_holder", sa.String(128), nullable=True),
        sa.Column("gift_card_id", sa.Integer(), nullable=True),
        sa.Column("paypal_transaction_id", sa.String(128), nullable=True),
        sa.Column("bank_reference", sa.String(128), nullable=True),
        sa.Column("points", QTY, nullable=True),
        sa.Column("installment_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"]),
        sa.ForeignKeyConstraint(["gift_card_id"], ["gift_cards.id"]),
        sa.ForeignKeyConstraint(["installment_id"], ["installments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("payment_details", schema=None) as batch_op:
        batch_op.create_index("ix_payment_details_gift_card_id", ["gift_card_id"], unique=False)

    op.create_table(
        "reward_points",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("entry_type", sa.String(16), nullable=False),
        sa.Column("points", QTY, nullable=False),
        sa.Column("deducted_points", QTY, nullable=False, server_default=sa.text("0")),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("document_id", sa.Integer(), nullable=True),
        sa.Column("payment_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("reward_points", schema=None) as batch_op:
        batch_op.create_index("ix_reward_points_customer_type", ["customer_id", "entry_type"], unique=False)
        batch_op.create_index("ix_reward_points_expired_at", ["expired_at"], unique=False)
        batch_op.create_index("ix_reward_points_document_id", ["document_id"], unique=False)
        batch_op.create_index("ix_reward_points_payment_id", ["payment_id"], unique=False)

    op.create_table(
        "coupon_redemptions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("coupon_id", sa.Integer(), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("amount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.ForeignKeyConstraint(["coupon_id"], ["coupons.id"]),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("coupon_id", "document_id", name="uq_coupon_redemptions_coupon_document"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("coupon_redemptions", schema=None) as batch_op:
        batch_op.create_index("ix_coupon_redemptions_coupon_id", ["coupon_id"], unique=False)
        batch_op.create_index("ix_coupon_redemptions_document_id", ["document_id"], unique=False)

    # -------------------------------------------------------------------- audit
    op.create_table(
        "engine_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("event_category", sa.String(32), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("warehouse_id", sa.Integer(), nullable=True),
        sa.Column("document_id", sa.Integer(), nullable=True),
        sa.Column("payment_id", sa.Integer(), nullable=True),
        sa.Column("cash_register_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"]),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"]),
        sa.ForeignKeyConstraint(["cash_register_id"], ["cash_registers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("engine_events", schema=None) as batch_op:
        batch_op.create_index("ix_engine_events_entity", ["entity_type", "entity_id"], unique=False)
        batch_op.create_index("ix_engine_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_engine_events_event_category", ["event_category"], unique=False)
        batch_op.create_index("ix_engine_events_actor_user_id", ["actor_user_id"], unique=False)
        batch_op.create_index("ix_engine_events_warehouse_id", ["warehouse_id"], unique=False)
        batch_op.create_index("ix_engine_events_document_id", ["document_id"], unique=False)
        batch_op.create_index("ix_engine_events_payment_id", ["payment_id"], unique=False)
        batch_op.create_index("ix_engine_events_cash_register_id", ["cash_register_id"], unique=False)
        batch_op.create_index("ix_engine_events_occurred_at", ["occurred_at"], unique=False)


def downgrade():
    for table in (
        "engine_events",
        "coupon_redemptions",
        "reward_points",
        "payment_details",
        "installments",
        "payments",
        "installment_plans",
        "stock_movements",
        "stock_levels",
        "document_sequences",
        "document_lines",
        "documents",
        "cash_outflows",
        "cash_registers",
        "coupons",
        "discount_plan_customers",
        "discount_plan_discounts",
        "discount_plans",
        "discounts",
        "gift_cards",
        "customers",
        "combo_components",
        "product_batches",
        "product_variants",
        "products",
        "variants",
        "warehouses",
        "taxes",
        "units",
    ):
        op.drop_table(table)
