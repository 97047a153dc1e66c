"""Chifa settlement schema: tenants, drawer sessions, tender ledger, Chifa claims

Revision ID: 20261019_chifa_settlement
Revises:
Create Date: 2026-10-19

This migration adds:
1. Pharmacies (tenants) and hashed actor tokens
2. Per-pharmacy document sequences
3. Cash drawers, drawer sessions (one open per drawer) and cash movements
4. POS sales and sale lines (tender ledger)
5. Chifa bordereaux, invoices, invoice lines and rejections
6. Append-only ledger events
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_chifa_settlement'
down_revision = None
branch_labels = None
depends_on = None


NOW = sa.text('(CURRENT_TIMESTAMP)')


def upgrade():
    # ==========================================================================
    # 1. TENANCY
    # ==========================================================================
    op.create_table('pharmacies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('pharmacies', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_pharmacies_code'), ['code'], unique=True)

    op.create_table('actor_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('pharmacy_id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=False),
        sa.Column('actor_display_name', sa.String(length=160), nullable=False),
        sa.Column('is_employee', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['pharmacy_id'], ['pharmacies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('actor_tokens', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_actor_tokens_pharmacy_id'), ['pharmacy_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_actor_tokens_actor_id'), ['actor_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_actor_tokens_token_hash'), ['token_hash'], unique=True)

    # ==========================================================================
    # 2. DOCUMENT SEQUENCES
    # ==========================================================================
    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('pharmacy_id', sa.Integer(), nullable=False),
        sa.Column('sequence_type', sa.String(length=64), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['pharmacy_id'], ['pharmacies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pharmacy_id', 'sequence_type', name='uq_doc_sequences_pharmacy_type'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('document_sequences', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_document_sequences_pharmacy_id'), ['pharmacy_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_document_sequences_sequence_type'), ['sequence_type'], unique=False)

    # ==========================================================================
    # 3. DRAWERS, SESSIONS, MOVEMENTS
    # ==========================================================================
    op.create_table('cash_drawers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('pharmacy_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['pharmacy_id'], ['pharmacies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pharmacy_id', 'code', name='uq_cash_drawers_pharmacy_code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cash_drawers', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cash_drawers_pharmacy_id'), ['pharmacy_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_cash_drawers_is_active'), ['is_active'], unique=False)

    op.create_table('cash_drawer_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('pharmacy_id', sa.Integer(), nullable=False),
        sa.Column('drawer_id', sa.Integer(), nullable=False),
        sa.Column('session_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='open'),
        sa.Column('opened_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('opened_by', sa.String(length=64), nullable=False),
        sa.Column('opened_by_name', sa.String(length=160), nullable=True),
        sa.Column('opening_balance_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('opening_notes', sa.Text(), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_by', sa.String(length=64), nullable=True),
        sa.Column('closed_by_name', sa.String(length=160), nullable=True),
        sa.Column('counted_cash_cents', sa.BigInteger(), nullable=True),
        sa.Column('counted_cards_cents', sa.BigInteger(), nullable=True),
        sa.Column('counted_cheques_cents', sa.BigInteger(), nullable=True),
        sa.Column('system_cash_cents', sa.BigInteger(), nullable=True),
        sa.Column('system_cards_cents', sa.BigInteger(), nullable=True),
        sa.Column('system_cheques_cents', sa.BigInteger(), nullable=True),
        sa.Column('system_chifa_cents', sa.BigInteger(), nullable=True),
        sa.Column('variance_cash_cents', sa.BigInteger(), nullable=True),
        sa.Column('variance_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['pharmacy_id'], ['pharmacies.id'], ),
        sa.ForeignKeyConstraint(['drawer_id'], ['cash_drawers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pharmacy_id', 'session_number', name='uq_cash_sessions_pharmacy_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cash_drawer_sessions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cash_drawer_sessions_pharmacy_id'), ['pharmacy_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_cash_drawer_sessions_drawer_id'), ['drawer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_cash_drawer_sessions_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_cash_drawer_sessions_opened_at'), ['opened_at'], unique=False)

    # At most one open session per drawer, enforced by the database
    op.create_index(
        'uq_cash_sessions_one_open_per_drawer',
        'cash_drawer_sessions',
        ['drawer_id'],
        unique=True,
        sqlite_where=sa.text("status = 'open'"),
        postgresql_where=sa.text("status = 'open'"),
    )

    op.create_table('cash_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('pharmacy_id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('actor_id', sa.String(length=64), nullable=False),
        sa.Column('actor_name', sa.String(length=160), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['pharmacy_id'], ['pharmacies.id'], ),
        sa.ForeignKeyConstraint(['session_id'], ['cash_drawer_sessions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cash_movements', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cash_movements_pharmacy_id'), ['pharmacy_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_cash_movements_session_id'), ['session_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_cash_movements_movement_type'), ['movement_type'], unique=False)
        batch_op.create_index('ix_cash_movements_session_occurred', ['session_id', 'occurred_at'], unique=False)

    # ==========================================================================
    # 4. TENDER LEDGER
    # ==========================================================================
    op.create_table('pos_sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('pharmacy_id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('sale_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('customer_name', sa.String(length=160), nullable=True),
        sa.Column('subtotal_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('discount_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('chifa_total_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('patient_total_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('paid_cash_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('paid_card_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('paid_cheque_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('paid_mobile_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('paid_credit_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('change_given_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('created_by_name', sa.String(length=160), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voided_by', sa.String(length=64), nullable=True),
        sa.Column('void_reason', sa.String(length=255), nullable=True),
        sa.Column('returned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('returned_by', sa.String(length=64), nullable=True),
        sa.Column('return_reason', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['pharmacy_id'], ['pharmacies.id'], ),
        sa.ForeignKeyConstraint(['session_id'], ['cash_drawer_sessions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pharmacy_id', 'sale_number', name='uq_pos_sales_pharmacy_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('pos_sales', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_pos_sales_pharmacy_id'), ['pharmacy_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_pos_sales_session_id'), ['session_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_pos_sales_status'), ['status'], unique=False)
        batch_op.create_index('ix_pos_sales_session_status', ['session_id', 'status'], unique=False)

    op.create_table('pos_sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.BigInteger(), nullable=False),
        sa.Column('line_total_cents', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['pos_sales.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('pos_sale_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_pos_sale_lines_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_pos_sale_lines_product_id'), ['product_id'], unique=False)

    # ==========================================================================
    # 5. CHIFA CLAIMS
    # ==========================================================================
    op.create_table('chifa_bordereaux',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('pharmacy_id', sa.Integer(), nullable=False),
        sa.Column('bordereau_number', sa.String(length=64), nullable=False),
        sa.Column('insurance_type', sa.String(length=16), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=True),
        sa.Column('period_end', sa.Date(), nullable=True),
        sa.Column('invoice_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_tarif_reference_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_chifa_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_patient_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_majoration_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='submitted'),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('submitted_by', sa.String(length=64), nullable=True),
        sa.Column('amount_paid_cents', sa.BigInteger(), nullable=True),
        sa.Column('payment_date', sa.Date(), nullable=True),
        sa.Column('payment_reference', sa.String(length=64), nullable=True),
        sa.Column('rejection_total_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['pharmacy_id'], ['pharmacies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pharmacy_id', 'bordereau_number', name='uq_chifa_bordereaux_pharmacy_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('chifa_bordereaux', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_chifa_bordereaux_pharmacy_id'), ['pharmacy_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_chifa_bordereaux_insurance_type'), ['insurance_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_chifa_bordereaux_status'), ['status'], unique=False)

    op.create_table('chifa_invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('pharmacy_id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('invoice_date', sa.Date(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('replaces_invoice_id', sa.Integer(), nullable=True),
        sa.Column('insured_number', sa.String(length=32), nullable=False),
        sa.Column('insured_name', sa.String(length=160), nullable=False),
        sa.Column('insured_rank', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('beneficiary_name', sa.String(length=160), nullable=True),
        sa.Column('beneficiary_relationship', sa.String(length=64), nullable=True),
        sa.Column('insurance_type', sa.String(length=16), nullable=False, server_default='CNAS'),
        sa.Column('is_chronic', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('chronic_code', sa.String(length=16), nullable=True),
        sa.Column('prescriber_name', sa.String(length=160), nullable=True),
        sa.Column('prescriber_specialty', sa.String(length=120), nullable=True),
        sa.Column('prescription_date', sa.Date(), nullable=True),
        sa.Column('prescription_number', sa.String(length=64), nullable=True),
        sa.Column('treatment_duration', sa.Integer(), nullable=True),
        sa.Column('total_tarif_reference_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_chifa_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_patient_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_majoration_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('grand_total_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('bordereau_id', sa.Integer(), nullable=True),
        sa.Column('rejection_code', sa.String(length=16), nullable=True),
        sa.Column('rejection_reason', sa.String(length=255), nullable=True),
        sa.Column('rejection_date', sa.Date(), nullable=True),
        sa.Column('paid_date', sa.Date(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['pharmacy_id'], ['pharmacies.id'], ),
        sa.ForeignKeyConstraint(['sale_id'], ['pos_sales.id'], ),
        sa.ForeignKeyConstraint(['replaces_invoice_id'], ['chifa_invoices.id'], ),
        sa.ForeignKeyConstraint(['bordereau_id'], ['chifa_bordereaux.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pharmacy_id', 'invoice_number', name='uq_chifa_invoices_pharmacy_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('chifa_invoices', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_chifa_invoices_pharmacy_id'), ['pharmacy_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_chifa_invoices_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_chifa_invoices_replaces_invoice_id'), ['replaces_invoice_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_chifa_invoices_insured_number'), ['insured_number'], unique=False)
        batch_op.create_index(batch_op.f('ix_chifa_invoices_insurance_type'), ['insurance_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_chifa_invoices_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_chifa_invoices_bordereau_id'), ['bordereau_id'], unique=False)
        batch_op.create_index('ix_chifa_invoices_pharmacy_status', ['pharmacy_id', 'status'], unique=False)
        batch_op.create_index('ix_chifa_invoices_pharmacy_date', ['pharmacy_id', 'invoice_date'], unique=False)

    op.create_table('chifa_invoice_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('product_barcode', sa.String(length=64), nullable=True),
        sa.Column('cnas_code', sa.String(length=64), nullable=True),
        sa.Column('batch_number', sa.String(length=64), nullable=True),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.BigInteger(), nullable=False),
        sa.Column('tarif_reference_cents', sa.BigInteger(), nullable=True),
        sa.Column('purchase_price_cents', sa.BigInteger(), nullable=True),
        sa.Column('reimbursement_rate', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_local_product', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('chifa_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('patient_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('majoration_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('line_total_cents', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['invoice_id'], ['chifa_invoices.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('chifa_invoice_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_chifa_invoice_lines_invoice_id'), ['invoice_id'], unique=False)

    op.create_table('chifa_rejections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('pharmacy_id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('bordereau_id', sa.Integer(), nullable=True),
        sa.Column('rejection_date', sa.Date(), nullable=False),
        sa.Column('rejection_code', sa.String(length=16), nullable=True),
        sa.Column('rejection_motif', sa.String(length=255), nullable=False),
        sa.Column('rejected_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('invoice_high_water_id', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('corrected_invoice_id', sa.Integer(), nullable=True),
        sa.Column('new_bordereau_id', sa.Integer(), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_by', sa.String(length=64), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['pharmacy_id'], ['pharmacies.id'], ),
        sa.ForeignKeyConstraint(['invoice_id'], ['chifa_invoices.id'], ),
        sa.ForeignKeyConstraint(['bordereau_id'], ['chifa_bordereaux.id'], ),
        sa.ForeignKeyConstraint(['corrected_invoice_id'], ['chifa_invoices.id'], ),
        sa.ForeignKeyConstraint(['new_bordereau_id'], ['chifa_bordereaux.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('chifa_rejections', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_chifa_rejections_pharmacy_id'), ['pharmacy_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_chifa_rejections_invoice_id'), ['invoice_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_chifa_rejections_bordereau_id'), ['bordereau_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_chifa_rejections_status'), ['status'], unique=False)
        batch_op.create_index('ix_chifa_rejections_pharmacy_status', ['pharmacy_id', 'status'], unique=False)

    # ==========================================================================
    # 6. LEDGER
    # ==========================================================================
    op.create_table('ledger_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('pharmacy_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('event_category', sa.String(length=32), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=True),
        sa.Column('session_id', sa.Integer(), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('amount_cents', sa.BigInteger(), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['pharmacy_id'], ['pharmacies.id'], ),
        sa.ForeignKeyConstraint(['session_id'], ['cash_drawer_sessions.id'], ),
        sa.ForeignKeyConstraint(['sale_id'], ['pos_sales.id'], ),
        sa.ForeignKeyConstraint(['invoice_id'], ['chifa_invoices.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('ledger_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_ledger_events_pharmacy_id'), ['pharmacy_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_event_category'), ['event_category'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_session_id'), ['session_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_invoice_id'), ['invoice_id'], unique=False)
        batch_op.create_index('ix_ledger_events_pharmacy_occurred', ['pharmacy_id', 'occurred_at'], unique=False)


def downgrade():
    op.drop_table('ledger_events')
    op.drop_table('chifa_rejections')
    op.drop_table('chifa_invoice_lines')
    op.drop_table('chifa_invoices')
    op.drop_table('chifa_bordereaux')
    op.drop_table('pos_sale_lines')
    op.drop_table('pos_sales')
    op.drop_table('cash_movements')
    op.drop_index('uq_cash_sessions_one_open_per_drawer', table_name='cash_drawer_sessions')
    op.drop_table('cash_drawer_sessions')
    op.drop_table('cash_drawers')
    op.drop_table('document_sequences')
    op.drop_table('actor_tokens')
    op.drop_table('pharmacies')
