"""initial workshop schema

Revision ID: w0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the workshop schema from scratch:
- users, settings, document_sequences
- catalog: categories, inventory_items, service_categories, services
- stock ledger: stock_movements, shop_usages
- customers, vehicles
- job cards and their lines: job_cards, job_services, job_parts, job_manual_entries
- billing: invoices, payments
- retail: pos_sales, pos_sale_items
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'w0001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated: bool = True):
    cols = [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]
    if updated:
        cols.append(
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                      server_default=sa.text('CURRENT_TIMESTAMP'))
        )
    return cols


def upgrade():
    # ============================================================================
    # users / settings / document_sequences
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False, server_default='technician'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('updated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['updated_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key', name='uq_settings_key'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('prefix', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('prefix', name='uq_document_sequences_prefix'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # catalog
    # ============================================================================
    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_categories_name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'inventory_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('cost_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('selling_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reorder_level', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('unit', sa.String(length=16), nullable=False, server_default='pcs'),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_inventory_items_sku'),
        sa.UniqueConstraint('barcode', name='uq_inventory_items_barcode'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_items_category_id', 'inventory_items', ['category_id'])
    op.create_index('ix_inventory_items_active_name', 'inventory_items', ['is_active', 'name'])

    op.create_table(
        'service_categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_service_categories_name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'services',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('base_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['category_id'], ['service_categories.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('category_id', 'name', name='uq_services_category_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_services_category_id', 'services', ['category_id'])
    op.create_index('ix_services_active_name', 'services', ['is_active', 'name'])

    # ============================================================================
    # stock ledger: append-only movements plus daily shop consumption
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=True),
        sa.Column('reference', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_item_id', 'stock_movements', ['item_id'])
    op.create_index('ix_stock_movements_user_id', 'stock_movements', ['user_id'])
    op.create_index('ix_stock_movements_item_created', 'stock_movements', ['item_id', 'created_at'])
    op.create_index('ix_stock_movements_type_created', 'stock_movements', ['type', 'created_at'])

    op.create_table(
        'shop_usages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False, server_default='shop_floor'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_shop_usages_item_id', 'shop_usages', ['item_id'])
    op.create_index('ix_shop_usages_reason', 'shop_usages', ['reason'])
    op.create_index('ix_shop_usages_created', 'shop_usages', ['created_at'])

    # ============================================================================
    # customers / vehicles
    # ============================================================================
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_customers_name', 'customers', ['name'])
    op.create_index('ix_customers_phone', 'customers', ['phone'])

    op.create_table(
        'vehicles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('registration_number', sa.String(length=32), nullable=False),
        sa.Column('make', sa.String(length=64), nullable=True),
        sa.Column('model', sa.String(length=64), nullable=True),
        sa.Column('color', sa.String(length=32), nullable=True),
        sa.Column('year', sa.Integer(), nullable=True),
        sa.Column('vin', sa.String(length=32), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('registration_number', name='uq_vehicles_registration'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_vehicles_customer_id', 'vehicles', ['customer_id'])

    # ============================================================================
    # job cards
    # ============================================================================
    op.create_table(
        'job_cards',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_number', sa.String(length=32), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('vehicle_id', sa.Integer(), nullable=False),
        sa.Column('assigned_to_id', sa.Integer(), nullable=True),
        sa.Column('odometer', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('actual_total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['vehicle_id'], ['vehicles.id'], ),
        sa.ForeignKeyConstraint(['assigned_to_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('job_number', name='uq_job_cards_job_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_job_cards_customer_id', 'job_cards', ['customer_id'])
    op.create_index('ix_job_cards_vehicle_id', 'job_cards', ['vehicle_id'])
    op.create_index('ix_job_cards_assigned_to_id', 'job_cards', ['assigned_to_id'])
    op.create_index('ix_job_cards_status_created', 'job_cards', ['status', 'created_at'])

    op.create_table(
        'job_services',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_card_id', sa.Integer(), nullable=False),
        sa.Column('service_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['job_card_id'], ['job_cards.id'], ),
        sa.ForeignKeyConstraint(['service_id'], ['services.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_job_services_job_card_id', 'job_services', ['job_card_id'])
    op.create_index('ix_job_services_service_id', 'job_services', ['service_id'])

    op.create_table(
        'job_parts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_card_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['job_card_id'], ['job_cards.id'], ),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_job_parts_job_card_id', 'job_parts', ['job_card_id'])
    op.create_index('ix_job_parts_item_id', 'job_parts', ['item_id'])

    op.create_table(
        'job_manual_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_card_id', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=16), nullable=False, server_default='other'),
        sa.Column('estimated_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('actual_cost_cents', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['job_card_id'], ['job_cards.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_job_manual_entries_job_card_id', 'job_manual_entries', ['job_card_id'])

    # ============================================================================
    # invoices / payments
    # ============================================================================
    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=32), nullable=False),
        sa.Column('job_card_id', sa.Integer(), nullable=False),
        sa.Column('services_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('parts_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('labor_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('parts_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        *_timestamps(updated=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['job_card_id'], ['job_cards.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['cancelled_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_number', name='uq_invoices_invoice_number'),
        sa.UniqueConstraint('job_card_id', name='uq_invoices_job_card_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoices_job_card_id', 'invoices', ['job_card_id'])
    op.create_index('ix_invoices_status_created', 'invoices', ['status', 'created_at'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('change_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('received_by_user_id', sa.Integer(), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['received_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payments_invoice_id', 'payments', ['invoice_id'])
    op.create_index('ix_payments_created', 'payments', ['created_at'])

    # ============================================================================
    # retail sales
    # ============================================================================
    op.create_table(
        'pos_sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_number', sa.String(length=32), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('cashier_user_id', sa.Integer(), nullable=True),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('change_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(updated=False),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_by_user_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['cashier_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['refunded_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_number', name='uq_pos_sales_sale_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_pos_sales_customer_id', 'pos_sales', ['customer_id'])
    op.create_index('ix_pos_sales_cashier_user_id', 'pos_sales', ['cashier_user_id'])
    op.create_index('ix_pos_sales_status_created', 'pos_sales', ['status', 'created_at'])

    op.create_table(
        'pos_sale_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['sale_id'], ['pos_sales.id'], ),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_pos_sale_items_sale_id', 'pos_sale_items', ['sale_id'])
    op.create_index('ix_pos_sale_items_item_id', 'pos_sale_items', ['item_id'])


def downgrade():
    for table in (
        'pos_sale_items', 'pos_sales',
        'payments', 'invoices',
        'job_manual_entries', 'job_parts', 'job_services', 'job_cards',
        'vehicles', 'customers',
        'shop_usages', 'stock_movements',
        'services', 'service_categories', 'inventory_items', 'categories',
        'document_sequences', 'settings', 'users',
    ):
        op.drop_table(table)
