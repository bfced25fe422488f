"""create affiliate engine tables

Revision ID: a1f0c2d4e6b8
Revises:
Create Date: 2026-10-01 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "a1f0c2d4e6b8"
down_revision = None
branch_labels = None
depends_on = None


JSON_TYPE = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")


def upgrade():
    op.create_table(
        "offers",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("shop_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("commission_type", sa.String(), nullable=False, server_default="percentage"),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(), nullable=False, server_default="USD"),
        sa.Column("attribution_window_days", sa.Integer(), nullable=True),
        sa.Column("selling_subscriptions", sa.String(), nullable=False, server_default="no"),
        sa.Column("subscription_max_payments", sa.Integer(), nullable=True),
        sa.Column("subscription_rebill_commission_type", sa.String(), nullable=True),
        sa.Column("subscription_rebill_commission_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_offers_id", "offers", ["id"])
    op.create_index("ix_offers_shop", "offers", ["shop_id"])

    op.create_table(
        "affiliates",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("shop_id", sa.String(), nullable=False),
        sa.Column("affiliate_number", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("offer_id", sa.Integer(), nullable=True),
        sa.Column("payout_terms_days", sa.Integer(), nullable=True),
        sa.Column("payout_method", sa.String(), nullable=True),
        sa.Column("payout_identifier", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["offer_id"], ["offers.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("shop_id", "affiliate_number", name="uq_affiliates_shop_number"),
        sa.UniqueConstraint("shop_id", "email", name="uq_affiliates_shop_email"),
    )
    op.create_index("ix_affiliates_id", "affiliates", ["id"])
    op.create_index("ix_affiliates_offer_id", "affiliates", ["offer_id"])
    op.create_index("ix_affiliates_shop_status", "affiliates", ["shop_id", "status"])

    op.create_table(
        "affiliate_links",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("shop_id", sa.String(), nullable=False),
        sa.Column("affiliate_id", sa.Integer(), nullable=False),
        sa.Column("destination_url", sa.String(), nullable=False),
        sa.Column("coupon_code", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["affiliate_id"], ["affiliates.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("shop_id", "coupon_code", name="uq_affiliate_links_shop_coupon"),
    )
    op.create_index("ix_affiliate_links_id", "affiliate_links", ["id"])
    op.create_index("ix_affiliate_links_affiliate_id", "affiliate_links", ["affiliate_id"])

    op.create_table(
        "clicks",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("shop_id", sa.String(), nullable=False),
        sa.Column("affiliate_id", sa.Integer(), nullable=False),
        sa.Column("link_id", sa.Integer(), nullable=True),
        sa.Column("landing_url", sa.Text(), nullable=False, server_default=""),
        sa.Column("ip_hash", sa.String(length=64), nullable=False),
        sa.Column("user_agent_hash", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["affiliate_id"], ["affiliates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["link_id"], ["affiliate_links.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "ix_clicks_fingerprint",
        "clicks",
        ["shop_id", "ip_hash", "user_agent_hash", "created_at"],
    )
    op.create_index("ix_clicks_affiliate_created", "clicks", ["affiliate_id", "created_at"])

    op.create_table(
        "order_attributions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("shop_id", sa.String(), nullable=False),
        sa.Column("order_id", sa.String(), nullable=False),
        sa.Column("order_number", sa.String(), nullable=True),
        sa.Column("affiliate_id", sa.Integer(), nullable=False),
        sa.Column("click_id", sa.String(length=64), nullable=True),
        sa.Column("attribution_type", sa.String(), nullable=False),
        sa.Column("order_total", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(), nullable=False, server_default="USD"),
        sa.Column("customer_ref", sa.String(), nullable=True),
        sa.Column("order_created_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["affiliate_id"], ["affiliates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["click_id"], ["clicks.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("order_id", name="uq_order_attributions_order"),
    )
    op.create_index("ix_order_attributions_id", "order_attributions", ["id"])
    op.create_index("ix_order_attributions_affiliate", "order_attributions", ["affiliate_id"])
    op.create_index("ix_order_attributions_shop_created", "order_attributions", ["shop_id", "created_at"])

    op.create_table(
        "subscription_attributions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("shop_id", sa.String(), nullable=False),
        sa.Column("order_attribution_id", sa.Integer(), nullable=False),
        sa.Column("affiliate_id", sa.Integer(), nullable=False),
        sa.Column("selling_plan_id", sa.String(), nullable=False),
        sa.Column("payments_made", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_payments", sa.Integer(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["order_attribution_id"], ["order_attributions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["affiliate_id"], ["affiliates.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "order_attribution_id",
            "selling_plan_id",
            name="uq_subscription_attributions_origin_plan",
        ),
    )
    op.create_index("ix_subscription_attributions_id", "subscription_attributions", ["id"])
    op.create_index(
        "ix_subscription_attributions_affiliate_plan",
        "subscription_attributions",
        ["affiliate_id", "selling_plan_id", "active"],
    )

    op.create_table(
        "subscription_payments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("subscription_attribution_id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.String(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("commissioned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["subscription_attribution_id"],
            ["subscription_attributions.id"],
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("order_id", name="uq_subscription_payments_order"),
        sa.UniqueConstraint(
            "subscription_attribution_id",
            "sequence",
            name="uq_subscription_payments_sequence",
        ),
    )
    op.create_index("ix_subscription_payments_id", "subscription_payments", ["id"])
    op.create_index(
        "ix_subscription_payments_subscription_attribution_id",
        "subscription_payments",
        ["subscription_attribution_id"],
    )

    op.create_table(
        "commissions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("shop_id", sa.String(), nullable=False),
        sa.Column("affiliate_id", sa.Integer(), nullable=False),
        sa.Column("order_attribution_id", sa.Integer(), nullable=False),
        sa.Column("subscription_attribution_id", sa.Integer(), nullable=True),
        sa.Column("order_id", sa.String(), nullable=False),
        sa.Column("rebill_sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(), nullable=False, server_default="USD"),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("eligible_date", sa.DateTime(), nullable=False),
        sa.Column("rule_snapshot", JSON_TYPE, nullable=False),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("reversed_at", sa.DateTime(), nullable=True),
        sa.Column("reversal_reason", sa.Text(), nullable=True),
        sa.Column("clawback_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["affiliate_id"], ["affiliates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["order_attribution_id"], ["order_attributions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["subscription_attribution_id"],
            ["subscription_attributions.id"],
            ondelete="SET NULL",
        ),
        sa.UniqueConstraint(
            "order_attribution_id",
            "rebill_sequence",
            name="uq_commissions_attribution_sequence",
        ),
    )
    op.create_index("ix_commissions_id", "commissions", ["id"])
    op.create_index("ix_commissions_shop_status", "commissions", ["shop_id", "status"])
    op.create_index("ix_commissions_affiliate_status", "commissions", ["affiliate_id", "status"])
    op.create_index("ix_commissions_order", "commissions", ["order_id"])

    op.create_table(
        "fraud_flags",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("shop_id", sa.String(), nullable=False),
        sa.Column("affiliate_id", sa.Integer(), nullable=False),
        sa.Column("commission_id", sa.Integer(), nullable=True),
        sa.Column("flag_type", sa.String(), nullable=False),
        sa.Column("score", sa.Numeric(6, 2), nullable=False, server_default="0"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["affiliate_id"], ["affiliates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["commission_id"], ["commissions.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_fraud_flags_id", "fraud_flags", ["id"])
    op.create_index("ix_fraud_flags_commission_resolved", "fraud_flags", ["commission_id", "resolved"])
    op.create_index("ix_fraud_flags_shop_resolved", "fraud_flags", ["shop_id", "resolved"])

    op.create_table(
        "payout_runs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("shop_id", sa.String(), nullable=False),
        sa.Column("period_start", sa.DateTime(), nullable=False),
        sa.Column("period_end", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="draft"),
        sa.Column("payout_reference", sa.String(), nullable=True),
        sa.Column("provider_status", sa.String(), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_payout_runs_id", "payout_runs", ["id"])
    op.create_index("ix_payout_runs_shop_status", "payout_runs", ["shop_id", "status"])

    op.create_table(
        "payout_run_commissions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("payout_run_id", sa.Integer(), nullable=False),
        sa.Column("commission_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["payout_run_id"], ["payout_runs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["commission_id"], ["commissions.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("payout_run_id", "commission_id", name="uq_payout_run_commissions_link"),
    )
    op.create_index("ix_payout_run_commissions_id", "payout_run_commissions", ["id"])
    op.create_index("ix_payout_run_commissions_payout_run_id", "payout_run_commissions", ["payout_run_id"])
    op.create_index("ix_payout_run_commissions_commission_id", "payout_run_commissions", ["commission_id"])

    op.create_table(
        "postback_templates",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("shop_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("trigger_event", sa.String(), nullable=False),
        sa.Column("base_url", sa.String(), nullable=False),
        sa.Column("param_mappings", JSON_TYPE, nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_postback_templates_id", "postback_templates", ["id"])
    op.create_index(
        "ix_postback_templates_shop_event",
        "postback_templates",
        ["shop_id", "trigger_event", "active"],
    )

    op.create_table(
        "postback_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("shop_id", sa.String(), nullable=False),
        sa.Column("commission_id", sa.Integer(), nullable=False),
        sa.Column("postback_template_id", sa.Integer(), nullable=False),
        sa.Column("event", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("response_code", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["commission_id"], ["commissions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["postback_template_id"], ["postback_templates.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_postback_logs_id", "postback_logs", ["id"])
    op.create_index("ix_postback_logs_commission_id", "postback_logs", ["commission_id"])
    op.create_index(
        "ix_postback_logs_shop_status",
        "postback_logs",
        ["shop_id", "status", "last_attempt_at"],
    )

    op.alter_column("offers", "commission_type", server_default=None)
    op.alter_column("offers", "amount", server_default=None)
    op.alter_column("offers", "currency", server_default=None)
    op.alter_column("offers", "selling_subscriptions", server_default=None)
    op.alter_column("affiliates", "status", server_default=None)
    op.alter_column("commissions", "status", server_default=None)
    op.alter_column("commissions", "currency", server_default=None)
    op.alter_column("payout_runs", "status", server_default=None)


def downgrade():
    op.drop_index("ix_postback_logs_shop_status", table_name="postback_logs")
    op.drop_index("ix_postback_logs_commission_id", table_name="postback_logs")
    op.drop_index("ix_postback_logs_id", table_name="postback_logs")
    op.drop_table("postback_logs")
    op.drop_index("ix_postback_templates_shop_event", table_name="postback_templates")
    op.drop_index("ix_postback_templates_id", table_name="postback_templates")
    op.drop_table("postback_templates")
    op.drop_index("ix_payout_run_commissions_commission_id", table_name="payout_run_commissions")
    op.drop_index("ix_payout_run_commissions_payout_run_id", table_name="payout_run_commissions")
    op.drop_index("ix_payout_run_commissions_id", table_name="payout_run_commissions")
    op.drop_table("payout_run_commissions")
    op.drop_index("ix_payout_runs_shop_status", table_name="payout_runs")
    op.drop_index("ix_payout_runs_id", table_name="payout_runs")
    op.drop_table("payout_runs")
    op.drop_index("ix_fraud_flags_shop_resolved", table_name="fraud_flags")
    op.drop_index("ix_fraud_flags_commission_resolved", table_name="fraud_flags")
    op.drop_index("ix_fraud_flags_id", table_name="fraud_flags")
    op.drop_table("fraud_flags")
    op.drop_index("ix_commissions_order", table_name="commissions")
    op.drop_index("ix_commissions_affiliate_status", table_name="commissions")
    op.drop_index("ix_commissions_shop_status", table_name="commissions")
    op.drop_index("ix_commissions_id", table_name="commissions")
    op.drop_table("commissions")
    op.drop_index(
        "ix_subscription_payments_subscription_attribution_id",
        table_name="subscription_payments",
    )
    op.drop_index("ix_subscription_payments_id", table_name="subscription_payments")
    op.drop_table("subscription_payments")
    op.drop_index("ix_subscription_attributions_affiliate_plan", table_name="subscription_attributions")
    op.drop_index("ix_subscription_attributions_id", table_name="subscription_attributions")
    op.drop_table("subscription_attributions")
    op.drop_index("ix_order_attributions_shop_created", table_name="order_attributions")
    op.drop_index("ix_order_attributions_affiliate", table_name="order_attributions")
    op.drop_index("ix_order_attributions_id", table_name="order_attributions")
    op.drop_table("order_attributions")
    op.drop_index("ix_clicks_affiliate_created", table_name="clicks")
    op.drop_index("ix_clicks_fingerprint", table_name="clicks")
    op.drop_table("clicks")
    op.drop_index("ix_affiliate_links_affiliate_id", table_name="affiliate_links")
    op.drop_index("ix_affiliate_links_id", table_name="affiliate_links")
    op.drop_table("affiliate_links")
    op.drop_index("ix_affiliates_shop_status", table_name="affiliates")
    op.drop_index("ix_affiliates_offer_id", table_name="affiliates")
    op.drop_index("ix_affiliates_id", table_name="affiliates")
    op.drop_table("affiliates")
    op.drop_index("ix_offers_shop", table_name="offers")
    op.drop_index("ix_offers_id", table_name="offers")
    op.drop_table("offers")
