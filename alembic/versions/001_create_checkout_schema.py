"""Create checkout schema

Revision ID: 001_checkout
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

# revision identifiers
revision = '001_checkout'
down_revision = None
branch_labels = None
depends_on = None


def _id():
    return sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()'))


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False)


def _updated_at():
    return sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False)


def _fk(name, target, ondelete, nullable=True):
    return sa.Column(name, UUID(as_uuid=True), sa.ForeignKey(target, ondelete=ondelete), nullable=nullable)


def _address_columns(prefix):
    return [
        sa.Column(f'{prefix}address_1', sa.String(255), nullable=True),
        sa.Column(f'{prefix}address_2', sa.String(255), nullable=True),
        sa.Column(f'{prefix}city', sa.String(100), nullable=True),
        sa.Column(f'{prefix}state', sa.String(100), nullable=True),
        sa.Column(f'{prefix}postal_code', sa.String(20), nullable=True),
        sa.Column(f'{prefix}country', sa.String(2), nullable=True),
    ]


def upgrade():
    """Create tenant, catalog, customer funnel and order tables"""

    # ====================
    # TENANTS & GATEWAYS
    # ====================
    op.create_table(
        'tenants',
        _id(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('subdomain', sa.String(100), unique=True, nullable=False),
        sa.Column('status', sa.String(20), server_default='active', nullable=False),
        sa.Column('settings', JSONB, server_default='{}', nullable=False),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        'gateways',
        _id(),
        _fk('tenant_id', 'tenants.id', 'CASCADE', nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('gateway_type', sa.String(50), nullable=False),
        sa.Column('gateway_token', sa.String(100), nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('priority', sa.Integer, server_default='0', nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        _created_at(),
    )
    op.create_index('ix_gateways_tenant_id', 'gateways', ['tenant_id'])

    # ====================
    # CATALOG
    # ====================
    op.create_table(
        'campaigns',
        _id(),
        _fk('tenant_id', 'tenants.id', 'CASCADE', nullable=False),
        sa.Column('display_id', sa.Integer, nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('currency', sa.String(3), server_default='USD', nullable=False),
        sa.Column('status', sa.String(20), server_default='active', nullable=False),
        sa.Column('must_agree_tos', sa.Boolean, server_default='false', nullable=False),
        sa.Column('preauth_only', sa.Boolean, server_default='false', nullable=False),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint('tenant_id', 'display_id', name='uq_campaigns_tenant_display_id'),
    )
    op.create_index('ix_campaigns_tenant_id', 'campaigns', ['tenant_id'])

    op.create_table(
        'products',
        _id(),
        _fk('tenant_id', 'tenants.id', 'CASCADE', nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('sku', sa.String(100), nullable=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('price', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('shipping_cost', sa.Numeric(12, 2), nullable=True),
        sa.Column('image_url', sa.String(500), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        _created_at(),
    )
    op.create_index('ix_products_tenant_id', 'products', ['tenant_id'])

    op.create_table(
        'campaign_products',
        _id(),
        _fk('campaign_id', 'campaigns.id', 'CASCADE', nullable=False),
        _fk('product_id', 'products.id', 'SET NULL'),
        _fk('gateway_id', 'gateways.id', 'SET NULL'),
        sa.Column('display_id', sa.Integer, nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('offer_type', sa.String(20), server_default='standard', nullable=False),
        sa.Column('billing_type', sa.String(20), server_default='one_time', nullable=False),
        sa.Column('price_override', sa.Numeric(12, 2), nullable=True),
        sa.Column('ship_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('discount_type', sa.String(20), server_default='none', nullable=False),
        sa.Column('discount_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('trial_enabled', sa.Boolean, server_default='false', nullable=False),
        sa.Column('trial_days', sa.Integer, nullable=True),
        sa.Column('trial_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('position', sa.Integer, server_default='0', nullable=False),
        _created_at(),
        sa.UniqueConstraint('campaign_id', 'display_id', name='uq_campaign_products_campaign_display_id'),
    )
    op.create_index('ix_campaign_products_campaign_id', 'campaign_products', ['campaign_id'])

    op.create_table(
        'campaign_coupons',
        _id(),
        _fk('campaign_id', 'campaigns.id', 'CASCADE', nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('discount_type', sa.String(20), server_default='fixed', nullable=False),
        sa.Column('discount_value', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('min_order_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('max_uses', sa.Integer, nullable=True),
        sa.Column('uses_per_customer', sa.Integer, nullable=True),
        sa.Column('current_uses', sa.Integer, server_default='0', nullable=False),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        _created_at(),
        sa.UniqueConstraint('campaign_id', 'code', name='uq_campaign_coupons_campaign_code'),
        sa.CheckConstraint('current_uses >= 0', name='ck_campaign_coupons_current_uses'),
    )
    op.create_index('ix_campaign_coupons_campaign_id', 'campaign_coupons', ['campaign_id'])

    op.create_table(
        'campaign_shipping_options',
        _id(),
        _fk('campaign_id', 'campaigns.id', 'CASCADE', nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('carrier', sa.String(100), nullable=True),
        sa.Column('method', sa.String(100), nullable=True),
        sa.Column('base_cost', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('per_item_cost', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('free_threshold', sa.Numeric(12, 2), nullable=True),
        sa.Column('estimated_days_min', sa.Integer, nullable=True),
        sa.Column('estimated_days_max', sa.Integer, nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('position', sa.Integer, server_default='0', nullable=False),
    )
    op.create_index('ix_campaign_shipping_options_campaign_id', 'campaign_shipping_options', ['campaign_id'])

    op.create_table(
        'campaign_sales_tax',
        _id(),
        _fk('campaign_id', 'campaigns.id', 'CASCADE', nullable=False),
        sa.Column('country_code', sa.String(2), nullable=False),
        sa.Column('state_code', sa.String(10), nullable=True),
        sa.Column('tax_rate', sa.Numeric(7, 4), nullable=False),
        sa.Column('tax_name', sa.String(100), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
    )
    op.create_index('ix_campaign_sales_tax_lookup', 'campaign_sales_tax', ['campaign_id', 'country_code'])

    op.create_table(
        'campaign_custom_fields',
        _id(),
        _fk('campaign_id', 'campaigns.id', 'CASCADE', nullable=False),
        sa.Column('field_name', sa.String(100), nullable=False),
        sa.Column('field_label', sa.String(200), nullable=False),
        sa.Column('field_type', sa.String(20), server_default='text', nullable=False),
        sa.Column('placeholder', sa.String(200), nullable=True),
        sa.Column('is_required', sa.Boolean, server_default='false', nullable=False),
        sa.Column('options', JSONB, nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('position', sa.Integer, server_default='0', nullable=False),
    )
    op.create_index('ix_campaign_custom_fields_campaign_id', 'campaign_custom_fields', ['campaign_id'])

    op.create_table(
        'campaign_terms_of_service',
        _id(),
        _fk('campaign_id', 'campaigns.id', 'CASCADE', nullable=False),
        sa.Column('version', sa.Integer, server_default='1', nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('effective_date', sa.Date, nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
    )
    op.create_index('ix_campaign_terms_of_service_campaign_id', 'campaign_terms_of_service', ['campaign_id'])

    op.create_table(
        'campaign_analytics',
        _id(),
        _fk('campaign_id', 'campaigns.id', 'CASCADE', nullable=False),
        sa.Column('metric_date', sa.Date, nullable=False),
        sa.Column('orders_count', sa.Integer, server_default='0', nullable=False),
        sa.Column('orders_value', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.UniqueConstraint('campaign_id', 'metric_date', name='uq_campaign_analytics_campaign_date'),
    )

    # ====================
    # CUSTOMER FUNNEL
    # ====================
    op.create_table(
        'customers',
        _id(),
        _fk('tenant_id', 'tenants.id', 'CASCADE', nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('phone', sa.String(30), nullable=True),
        sa.Column('status', sa.String(20), server_default='prospect', nullable=False),
        _fk('source_campaign_id', 'campaigns.id', 'SET NULL'),
        _fk('source_offer_id', 'campaign_products.id', 'SET NULL'),
        sa.Column('utm_source', sa.String(255), nullable=True),
        sa.Column('utm_medium', sa.String(255), nullable=True),
        sa.Column('utm_campaign', sa.String(255), nullable=True),
        sa.Column('utm_content', sa.String(255), nullable=True),
        sa.Column('utm_term', sa.String(255), nullable=True),
        sa.Column('session_id', sa.String(100), nullable=True),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.Text, nullable=True),
        sa.Column('referrer', sa.Text, nullable=True),
        *_address_columns('ship_'),
        sa.Column('bill_same_as_ship', sa.Boolean, server_default='true', nullable=False),
        *_address_columns('bill_'),
        sa.Column('checkout_totals', JSONB, nullable=True),
        sa.Column('decline_count', sa.Integer, server_default='0', nullable=False),
        sa.Column('last_decline_reason', sa.Text, nullable=True),
        sa.Column('last_decline_code', sa.String(50), nullable=True),
        sa.Column('converted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('first_order_id', UUID(as_uuid=True), nullable=True),
        sa.Column('lifetime_value', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('total_orders', sa.Integer, server_default='0', nullable=False),
        sa.Column('custom_fields', JSONB, server_default='{}', nullable=False),
        sa.Column('metadata', JSONB, server_default='{}', nullable=False),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint('tenant_id', 'email', name='uq_customers_tenant_email'),
    )
    op.create_index('ix_customers_tenant_id', 'customers', ['tenant_id'])
    op.create_index('ix_customers_status', 'customers', ['status'])

    op.create_table(
        'customer_status_history',
        _id(),
        _fk('customer_id', 'customers.id', 'CASCADE', nullable=False),
        sa.Column('from_status', sa.String(20), nullable=True),
        sa.Column('to_status', sa.String(20), nullable=False),
        sa.Column('reason', sa.String(255), nullable=True),
        _created_at(),
    )
    op.create_index('ix_customer_status_history_customer_id', 'customer_status_history', ['customer_id'])

    op.create_table(
        'customer_addresses',
        _id(),
        _fk('customer_id', 'customers.id', 'CASCADE', nullable=False),
        sa.Column('address_type', sa.String(20), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('address_1', sa.String(255), nullable=False),
        sa.Column('address_2', sa.String(255), nullable=True),
        sa.Column('city', sa.String(100), nullable=False),
        sa.Column('state', sa.String(100), nullable=True),
        sa.Column('postal_code', sa.String(20), nullable=False),
        sa.Column('country', sa.String(2), nullable=False),
        sa.Column('is_default', sa.Boolean, server_default='false', nullable=False),
        _created_at(),
    )
    op.create_index('ix_customer_addresses_customer_id', 'customer_addresses', ['customer_id'])

    op.create_table(
        'customer_payment_methods',
        _id(),
        _fk('customer_id', 'customers.id', 'CASCADE', nullable=False),
        sa.Column('payment_method_token', sa.String(100), nullable=False),
        sa.Column('card_type', sa.String(30), nullable=True),
        sa.Column('last_four', sa.String(4), nullable=True),
        sa.Column('exp_month', sa.Integer, nullable=True),
        sa.Column('exp_year', sa.Integer, nullable=True),
        sa.Column('is_default', sa.Boolean, server_default='true', nullable=False),
        _created_at(),
    )
    op.create_index('ix_customer_payment_methods_customer_id', 'customer_payment_methods', ['customer_id'])

    # ====================
    # ORDERS & TRANSACTIONS
    # ====================
    op.create_table(
        'orders',
        _id(),
        _fk('tenant_id', 'tenants.id', 'CASCADE', nullable=False),
        sa.Column('display_id', sa.Integer, nullable=False),
        sa.Column('order_number', sa.String(30), nullable=False),
        _fk('customer_id', 'customers.id', 'RESTRICT', nullable=False),
        _fk('campaign_id', 'campaigns.id', 'SET NULL'),
        _fk('gateway_id', 'gateways.id', 'SET NULL'),
        sa.Column('status', sa.String(20), server_default='processing', nullable=False),
        sa.Column('payment_status', sa.String(20), server_default='paid', nullable=False),
        sa.Column('fulfillment_status', sa.String(20), server_default='unfulfilled', nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('shipping_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('tax_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('total', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), server_default='USD', nullable=False),
        sa.Column('coupon_code', sa.String(50), nullable=True),
        sa.Column('shipping_option_id', UUID(as_uuid=True), nullable=True),
        sa.Column('shipping_address', JSONB, server_default='{}', nullable=False),
        sa.Column('billing_address', JSONB, server_default='{}', nullable=False),
        sa.Column('metadata', JSONB, server_default='{}', nullable=False),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint('tenant_id', 'display_id', name='uq_orders_tenant_display_id'),
    )
    op.create_index('ix_orders_tenant_id', 'orders', ['tenant_id'])
    op.create_index('ix_orders_order_number', 'orders', ['order_number'])
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])

    op.create_table(
        'order_items',
        _id(),
        _fk('order_id', 'orders.id', 'CASCADE', nullable=False),
        _fk('offer_id', 'campaign_products.id', 'SET NULL'),
        _fk('product_id', 'products.id', 'SET NULL'),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('sku', sa.String(100), nullable=True),
        sa.Column('quantity', sa.Integer, server_default='1', nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('total', sa.Numeric(12, 2), nullable=False),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'transactions',
        _id(),
        _fk('tenant_id', 'tenants.id', 'CASCADE', nullable=False),
        _fk('customer_id', 'customers.id', 'CASCADE', nullable=False),
        _fk('order_id', 'orders.id', 'SET NULL'),
        _fk('gateway_id', 'gateways.id', 'SET NULL'),
        sa.Column('transaction_type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), server_default='USD', nullable=False),
        sa.Column('gateway_transaction_token', sa.String(100), nullable=True),
        sa.Column('response_code', sa.String(50), nullable=True),
        sa.Column('response_message', sa.Text, nullable=True),
        sa.Column('avs_result', sa.String(20), nullable=True),
        sa.Column('cvv_result', sa.String(20), nullable=True),
        sa.Column('error_detail', JSONB, nullable=True),
        _created_at(),
    )
    op.create_index('ix_transactions_tenant_id', 'transactions', ['tenant_id'])
    op.create_index('ix_transactions_customer_id', 'transactions', ['customer_id'])


def downgrade():
    """Drop checkout tables"""
    for table in [
        'transactions',
        'order_items',
        'orders',
        'customer_payment_methods',
        'customer_addresses',
        'customer_status_history',
        'customers',
        'campaign_analytics',
        'campaign_terms_of_service',
        'campaign_custom_fields',
        'campaign_sales_tax',
        'campaign_shipping_options',
        'campaign_coupons',
        'campaign_products',
        'products',
        'campaigns',
        'gateways',
        'tenants',
    ]:
        op.drop_table(table)
