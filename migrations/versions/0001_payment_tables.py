"""payment tables

Carts, orders, payment sessions/responses, audit and error logs.
The unique indexes on paymentresponse and orders are what keeps one order per payment.

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


revision: str = "0001_payment_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "cart",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("cart_token", sa.String(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("currency", sa.String(), nullable=False, server_default="MXN"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_cart_cart_token", "cart", ["cart_token"], unique=True)
    op.create_index("ix_cart_user_id", "cart", ["user_id"])

    op.create_table(
        "cartitem",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("cart_id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False, server_default=""),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_cartitem_cart_id", "cartitem", ["cart_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_number", sa.String(), nullable=False),
        sa.Column("transaction_reference", sa.String(), nullable=False),
        sa.Column("payment_response_id", sa.Integer(), nullable=True, unique=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("cart_id", sa.Integer(), nullable=True),
        sa.Column("billing_information_id", sa.Integer(), nullable=True),
        sa.Column("microsoft_account_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("payment_status", sa.String(), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("tax_cents", sa.Integer(), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(), nullable=False),
        sa.Column("payment_method", sa.String(), nullable=False),
        sa.Column("payment_gateway", sa.String(), nullable=False),
        sa.Column("auth_code", sa.String(), nullable=True),
        sa.Column("folio", sa.String(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_orders_order_number", "orders", ["order_number"], unique=True)
    op.create_index("ix_orders_transaction_reference", "orders", ["transaction_reference"], unique=True)
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_cart_id", "orders", ["cart_id"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    op.create_table(
        "paymentsession",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_reference", sa.String(length=64), nullable=False),
        sa.Column("cart_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("billing_information_id", sa.Integer(), nullable=True),
        sa.Column("microsoft_account_id", sa.Integer(), nullable=True),
        sa.Column("payment_method", sa.String(), nullable=False),
        sa.Column("provider_url", sa.String(), nullable=False),
        sa.Column("form_html", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_paymentsession_transaction_reference", "paymentsession", ["transaction_reference"], unique=True)
    op.create_index("ix_paymentsession_cart_id", "paymentsession", ["cart_id"])
    op.create_index("ix_paymentsession_user_id", "paymentsession", ["user_id"])
    op.create_index("ix_paymentsession_created_at", "paymentsession", ["created_at"])
    op.create_index("ix_paymentsession_expires_at", "paymentsession", ["expires_at"])

    text_columns = [
        "provider_response", "auth_code", "folio_cpagos", "cd_response", "cd_error", "nb_error",
        "ds_trans_id", "eci", "cavv", "trans_status", "response_code", "response_description",
        "card_type", "card_last_four", "card_name", "voucher", "voucher_comercio", "voucher_cliente",
        "provider_time",
    ]
    op.create_table(
        "paymentresponse",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_reference", sa.String(), nullable=False),
        sa.Column("payload_hash", sa.String(length=64), nullable=False),
        sa.Column("payment_session_id", sa.Integer(), nullable=True),
        sa.Column("cart_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True, unique=True),
        sa.Column("payment_status", sa.String(), nullable=False),
        sa.Column("gateway", sa.String(), nullable=False),
        sa.Column("match_rule", sa.String(), nullable=True),
        *[sa.Column(name, sa.String(), nullable=False, server_default="") for name in text_columns],
        sa.Column("amount_cents", sa.Integer(), nullable=True),
        sa.Column("raw_xml_response", sa.Text(), nullable=False, server_default=""),
        sa.Column("provider_date", sa.DateTime(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("extra_data", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_paymentresponse_transaction_reference", "paymentresponse", ["transaction_reference"])
    op.create_index("ix_paymentresponse_payload_hash", "paymentresponse", ["payload_hash"], unique=True)
    op.create_index("ix_paymentresponse_payment_session_id", "paymentresponse", ["payment_session_id"])

    op.create_table(
        "auditlog",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event", sa.String(), nullable=False),
        sa.Column("reference", sa.String(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("ip", sa.String(), nullable=True),
        sa.Column("detail", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_auditlog_event", "auditlog", ["event"])
    op.create_index("ix_auditlog_reference", "auditlog", ["reference"])
    op.create_index("ix_auditlog_user_id", "auditlog", ["user_id"])

    op.create_table(
        "error_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("endpoint", sa.String(), nullable=True),
        sa.Column("method", sa.String(), nullable=True),
        sa.Column("error_kind", sa.String(), nullable=True),
        sa.Column("reference", sa.String(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("stack_trace", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_error_logs_user_id", "error_logs", ["user_id"])
    op.create_index("ix_error_logs_error_kind", "error_logs", ["error_kind"])
    op.create_index("ix_error_logs_reference", "error_logs", ["reference"])


def downgrade() -> None:
    for table in ("error_logs", "auditlog", "paymentresponse", "paymentsession", "order_items", "orders", "cartitem", "cart"):
        op.drop_table(table)
