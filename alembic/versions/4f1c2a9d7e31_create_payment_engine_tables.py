"""create_payment_engine_tables

Revision ID: 4f1c2a9d7e31
Revises:
Create Date: 2026-10-19 09:12:47.318204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f1c2a9d7e31'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _enum(length: int = 32) -> sa.String:
    # Enums are stored as their string values
    return sa.String(length=length)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
    ]


def _payment_link_columns() -> list[sa.Column]:
    return [
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('type', _enum(), nullable=False),
        sa.Column('payment_method_type', _enum(), nullable=False),
        sa.Column('status', _enum(), nullable=False),
        sa.Column('currency', _enum(), nullable=False),
        sa.Column('customer_email', sa.String(), nullable=False),
        sa.Column('customer_name', sa.String(), nullable=True),
        sa.Column('caller_name', sa.String(), nullable=True),
        sa.Column('setter_name', sa.String(), nullable=True),
        sa.Column('product_name', sa.String(), nullable=False),
        sa.Column('tva_rate', sa.Numeric(precision=10, scale=4), nullable=False),
        sa.Column('extra_tax_rate', sa.Numeric(precision=10, scale=4), nullable=False),
        sa.Column('eur_to_ron_rate', sa.Numeric(precision=10, scale=4), nullable=True),
        sa.Column('total_amount_to_pay', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('total_amount_to_pay_in_cents', sa.BigInteger(), nullable=False),
        sa.Column('deposit_amount', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('deposit_amount_in_cents', sa.BigInteger(), nullable=True),
        sa.Column('remaining_amount_to_pay', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('remaining_amount_to_pay_in_cents', sa.BigInteger(), nullable=True),
        sa.Column('installment_amount_to_pay', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('installment_amount_to_pay_in_cents', sa.BigInteger(), nullable=True),
        sa.Column('remaining_installment_amount_to_pay', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('remaining_installment_amount_to_pay_in_cents', sa.BigInteger(), nullable=True),
        sa.Column('installments_count', sa.Integer(), nullable=True),
        sa.Column('first_payment_date_after_deposit', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('stripe_payment_intent_id', sa.String(), nullable=True),
        sa.Column('stripe_client_secret', sa.String(), nullable=True),
        sa.Column('tbi_order_id', sa.String(), nullable=True),
        sa.Column('billing_data', sa.JSON(), nullable=True),
        sa.Column('contract_id', sa.Uuid(), nullable=False),
        sa.Column('created_by_id', sa.Uuid(), nullable=False),
        *_timestamps(),
    ]


def _order_columns() -> list[sa.Column]:
    return [
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('type', _enum(), nullable=False),
        sa.Column('status', _enum(), nullable=False),
        sa.Column('payment_link_id', sa.Uuid(), nullable=False),
        sa.Column('subscription_id', sa.Uuid(), nullable=True),
        sa.Column('stripe_payment_intent_id', sa.String(), nullable=True),
        sa.Column('billing_data', sa.JSON(), nullable=True),
        sa.Column('customer_email', sa.String(), nullable=False),
        sa.Column('customer_name', sa.String(), nullable=True),
        sa.Column('product_name', sa.String(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    ]


def _subscription_columns() -> list[sa.Column]:
    return [
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('status', _enum(), nullable=False),
        sa.Column('payment_method_type', _enum(), nullable=False),
        sa.Column('membership_id', sa.Uuid(), nullable=False),
        sa.Column('parent_order_id', sa.Uuid(), nullable=False),
        sa.Column('customer_email', sa.String(), nullable=False),
        sa.Column('customer_name', sa.String(), nullable=True),
        sa.Column('product_name', sa.String(), nullable=False),
        sa.Column('currency', _enum(), nullable=False),
        sa.Column('installment_amount_to_pay_in_cents', sa.BigInteger(), nullable=False),
        sa.Column('remaining_payments', sa.Integer(), nullable=False),
        sa.Column('next_payment_date', sa.DateTime(), nullable=True),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('payment_failure_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_payment_failure_reason', sa.String(), nullable=True),
        sa.Column('last_payment_attempt_date', sa.DateTime(), nullable=True),
        sa.Column('scheduled_cancellation_date', sa.DateTime(), nullable=True),
        sa.Column('update_payment_token', sa.String(), nullable=True),
        sa.Column('update_payment_token_expires_at', sa.DateTime(), nullable=True),
        sa.Column('stripe_customer_id', sa.String(), nullable=True),
        sa.Column('stripe_payment_method_id', sa.String(), nullable=True),
        *_timestamps(),
    ]


def upgrade() -> None:
    # Reference data
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('role', sa.String(), nullable=False, server_default='staff'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )
    op.create_table(
        'products',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('membership_duration_months', sa.Integer(), nullable=False),
        sa.Column('is_deposit_amount_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('min_deposit_amount', sa.Numeric(precision=10, scale=2), nullable=False, server_default='0'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'product_installments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False),
        sa.Column('price_per_installment', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'product_extensions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('extension_months', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('min_deposit_amount', sa.Numeric(precision=10, scale=2), nullable=False, server_default='0'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'extension_installments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('extension_id', sa.Uuid(), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False),
        sa.Column('price_per_installment', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['extension_id'], ['product_extensions.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'settings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('key', sa.String(), nullable=False),
        sa.Column('value', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key'),
    )
    op.create_table(
        'payment_settings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('label', sa.String(), nullable=False),
        sa.Column('currency', _enum(), nullable=False),
        sa.Column('tva_rate', sa.Numeric(precision=10, scale=4), nullable=False),
        sa.Column('extra_tax_rate', sa.Numeric(precision=10, scale=4), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'first_payment_date_after_deposit_options',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('label', sa.String(), nullable=False),
        sa.Column('value', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'contracts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    # Product purchase flow
    op.create_table(
        'product_payment_links',
        *_payment_link_columns(),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('product_installment_id', sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['product_installment_id'], ['product_installments.id'], ),
        sa.ForeignKeyConstraint(['contract_id'], ['contracts.id'], ),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tbi_order_id'),
    )
    op.create_index(
        op.f('ix_product_payment_links_stripe_payment_intent_id'),
        'product_payment_links',
        ['stripe_payment_intent_id'],
        unique=False,
    )
    op.create_table(
        'product_orders',
        *_order_columns(),
        sa.ForeignKeyConstraint(['payment_link_id'], ['product_payment_links.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_payment_intent_id'),
    )
    op.create_table(
        'memberships',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('parent_order_id', sa.Uuid(), nullable=False),
        sa.Column('customer_email', sa.String(), nullable=False),
        sa.Column('customer_name', sa.String(), nullable=True),
        sa.Column('product_name', sa.String(), nullable=False),
        sa.Column('status', _enum(), nullable=False),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=False),
        sa.Column('delayed_start_date', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['parent_order_id'], ['product_orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('parent_order_id'),
    )
    op.create_table(
        'product_subscriptions',
        *_subscription_columns(),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.ForeignKeyConstraint(['membership_id'], ['memberships.id'], ),
        sa.ForeignKeyConstraint(['parent_order_id'], ['product_orders.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('parent_order_id'),
    )

    # Extension flow
    op.create_table(
        'extension_payment_links',
        *_payment_link_columns(),
        sa.Column('extension_id', sa.Uuid(), nullable=False),
        sa.Column('extension_installment_id', sa.Uuid(), nullable=True),
        sa.Column('membership_id', sa.Uuid(), nullable=False),
        sa.ForeignKeyConstraint(['extension_id'], ['product_extensions.id'], ),
        sa.ForeignKeyConstraint(['extension_installment_id'], ['extension_installments.id'], ),
        sa.ForeignKeyConstraint(['membership_id'], ['memberships.id'], ),
        sa.ForeignKeyConstraint(['contract_id'], ['contracts.id'], ),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tbi_order_id'),
    )
    op.create_index(
        op.f('ix_extension_payment_links_stripe_payment_intent_id'),
        'extension_payment_links',
        ['stripe_payment_intent_id'],
        unique=False,
    )
    op.create_table(
        'extension_orders',
        *_order_columns(),
        sa.Column('membership_id', sa.Uuid(), nullable=False),
        sa.ForeignKeyConstraint(['payment_link_id'], ['extension_payment_links.id'], ),
        sa.ForeignKeyConstraint(['membership_id'], ['memberships.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_payment_intent_id'),
    )
    op.create_table(
        'extension_subscriptions',
        *_subscription_columns(),
        sa.Column('extension_id', sa.Uuid(), nullable=False),
        sa.ForeignKeyConstraint(['membership_id'], ['memberships.id'], ),
        sa.ForeignKeyConstraint(['parent_order_id'], ['extension_orders.id'], ),
        sa.ForeignKeyConstraint(['extension_id'], ['product_extensions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('parent_order_id'),
    )


def downgrade() -> None:
    op.drop_table('extension_subscriptions')
    op.drop_table('extension_orders')
    op.drop_index(op.f('ix_extension_payment_links_stripe_payment_intent_id'), table_name='extension_payment_links')
    op.drop_table('extension_payment_links')
    op.drop_table('product_subscriptions')
    op.drop_table('memberships')
    op.drop_table('product_orders')
    op.drop_index(op.f('ix_product_payment_links_stripe_payment_intent_id'), table_name='product_payment_links')
    op.drop_table('product_payment_links')
    op.drop_table('contracts')
    op.drop_table('first_payment_date_after_deposit_options')
    op.drop_table('payment_settings')
    op.drop_table('settings')
    op.drop_table('extension_installments')
    op.drop_table('product_extensions')
    op.drop_table('product_installments')
    op.drop_table('products')
    op.drop_table('users')
