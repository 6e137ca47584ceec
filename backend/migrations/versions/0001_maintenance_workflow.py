"""maintenance workflow, approvals, payments and audit tables

Revision ID: 0001_maintenance_workflow
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_maintenance_workflow'
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str, nullable: bool = True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    op.create_table('maintenance_workflows',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('machine_serial', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('origin_branch_id', sa.Integer(), nullable=False),
        sa.Column('center_branch_id', sa.Integer(), nullable=False),
        sa.Column('technician_id', sa.Integer(), nullable=True),
        sa.Column('technician_name', sa.String(length=128), nullable=True),
        sa.Column('customer_id', sa.String(length=64), nullable=True),
        sa.Column('customer_name', sa.String(length=128), nullable=True),
        sa.Column('resolution', sa.String(length=32), nullable=True),
        sa.Column('total_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rejection_flag', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_by', sa.Integer(), nullable=False),
        _ts('assigned_at'),
        _ts('started_at'),
        _ts('completed_at'),
        _ts('returned_at'),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
    )
    op.create_index('ix_maintenance_workflows_machine_serial', 'maintenance_workflows', ['machine_serial'])
    op.create_index('ix_maintenance_workflows_status', 'maintenance_workflows', ['status'])
    op.create_index('ix_maintenance_workflows_technician_id', 'maintenance_workflows', ['technician_id'])
    op.create_index('ix_maintenance_workflows_center_status', 'maintenance_workflows', ['center_branch_id', 'status'])
    op.create_index('ix_maintenance_workflows_origin_status', 'maintenance_workflows', ['origin_branch_id', 'status'])

    op.create_table('maintenance_workflow_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('workflow_id', sa.Integer(), sa.ForeignKey('maintenance_workflows.id'), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('from_status', sa.String(length=32), nullable=False),
        sa.Column('to_status', sa.String(length=32), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('performed_by', sa.Integer(), nullable=False),
        sa.Column('performed_by_name', sa.String(length=128), nullable=True),
        _ts('performed_at', nullable=False),
        sa.UniqueConstraint('workflow_id', 'sequence', name='uq_workflow_log_sequence'),
    )
    op.create_index('ix_maintenance_workflow_logs_workflow_performed', 'maintenance_workflow_logs', ['workflow_id', 'performed_at'])

    op.create_table('maintenance_approval_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('workflow_id', sa.Integer(), sa.ForeignKey('maintenance_workflows.id'), nullable=False),
        sa.Column('machine_serial', sa.String(length=64), nullable=False),
        sa.Column('origin_branch_id', sa.Integer(), nullable=False),
        sa.Column('center_branch_id', sa.Integer(), nullable=False),
        sa.Column('total_cost_cents', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('requested_by', sa.Integer(), nullable=False),
        sa.Column('responded_by', sa.Integer(), nullable=True),
        sa.Column('responded_by_name', sa.String(length=128), nullable=True),
        _ts('responded_at'),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
    )
    op.create_index(
        'uq_approval_pending_per_workflow', 'maintenance_approval_requests', ['workflow_id'], unique=True,
        sqlite_where=sa.text("status = 'PENDING'"),
        postgresql_where=sa.text("status = 'PENDING'"),
    )
    op.create_index('ix_approval_requests_origin_status', 'maintenance_approval_requests', ['origin_branch_id', 'status'])
    op.create_index('ix_approval_requests_center_status', 'maintenance_approval_requests', ['center_branch_id', 'status'])

    op.create_table('maintenance_approval_parts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('approval_request_id', sa.Integer(),
                  sa.ForeignKey('maintenance_approval_requests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
    )
    op.create_index('ix_maintenance_approval_parts_approval_request_id', 'maintenance_approval_parts', ['approval_request_id'])

    op.create_table('maintenance_pending_payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('workflow_id', sa.Integer(), sa.ForeignKey('maintenance_workflows.id'), nullable=False),
        sa.Column('approval_request_id', sa.Integer(), sa.ForeignKey('maintenance_approval_requests.id'),
                  nullable=False, unique=True),
        sa.Column('machine_serial', sa.String(length=64), nullable=False),
        sa.Column('customer_id', sa.String(length=64), nullable=True),
        sa.Column('debtor_branch_id', sa.Integer(), nullable=False),
        sa.Column('creditor_branch_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('parts_details', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('receipt_number', sa.String(length=64), nullable=True, unique=True),
        sa.Column('payment_place', sa.String(length=16), nullable=True),
        sa.Column('paid_by', sa.Integer(), nullable=True),
        sa.Column('paid_by_name', sa.String(length=128), nullable=True),
        _ts('paid_at'),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
    )
    op.create_index('ix_maintenance_pending_payments_workflow_id', 'maintenance_pending_payments', ['workflow_id'])
    op.create_index('ix_pending_payments_debtor_status', 'maintenance_pending_payments', ['debtor_branch_id', 'status'])
    op.create_index('ix_pending_payments_creditor_status', 'maintenance_pending_payments', ['creditor_branch_id', 'status'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity', sa.String(length=64), nullable=True),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('scope_snapshot', sa.JSON(), nullable=False),
        sa.Column('meta', sa.JSON(), nullable=False),
        _ts('created_at', nullable=False),
    )
    op.create_index('ix_audit_logs_actor_user_id', 'audit_logs', ['actor_user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('maintenance_pending_payments')
    op.drop_table('maintenance_approval_parts')
    op.drop_index('uq_approval_pending_per_workflow', table_name='maintenance_approval_requests')
    op.drop_table('maintenance_approval_requests')
    op.drop_table('maintenance_workflow_logs')
    op.drop_table('maintenance_workflows')
