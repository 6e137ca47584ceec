from __future__ import annotations
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Boolean, DateTime, ForeignKey, Text, Index, UniqueConstraint
from app.models.base import Base
from app.utils.clock import utcnow


class WorkflowInstance(Base):
    """One machine's passage through the maintenance center."""
    __tablename__ = 'maintenance_workflows'
    # Status constants
    STATUS_RECEIVED_AT_CENTER = 'RECEIVED_AT_CENTER'
    STATUS_ASSIGNED = 'ASSIGNED'
    STATUS_UNDER_INSPECTION = 'UNDER_INSPECTION'
    STATUS_AWAITING_APPROVAL = 'AWAITING_APPROVAL'
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_REPAIR_APPROVED = 'REPAIR_APPROVED'
    STATUS_REJECTED = 'REJECTED'
    STATUS_REPAIRED = 'REPAIRED'
    STATUS_SCRAPPED = 'SCRAPPED'
    STATUS_RETURNED_AS_IS = 'RETURNED_AS_IS'
    STATUS_READY_FOR_RETURN = 'READY_FOR_RETURN'
    STATUS_RETURNED = 'RETURNED'
    ALL_STATUSES = (
        STATUS_RECEIVED_AT_CENTER, STATUS_ASSIGNED, STATUS_UNDER_INSPECTION, STATUS_AWAITING_APPROVAL,
        STATUS_IN_PROGRESS, STATUS_REPAIR_APPROVED, STATUS_REJECTED, STATUS_REPAIRED, STATUS_SCRAPPED,
        STATUS_RETURNED_AS_IS, STATUS_READY_FOR_RETURN, STATUS_RETURNED,
    )
    # Resolution states double as COMPLETE targets
    RESOLUTIONS = (STATUS_REPAIRED, STATUS_SCRAPPED, STATUS_RETURNED_AS_IS)
    # Statuses shown on the center board (everything before hand-back)
    OPEN_STATUSES = ALL_STATUSES[:-1]

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    machine_serial: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_RECEIVED_AT_CENTER, index=True)
    origin_branch_id: Mapped[int] = mapped_column(Integer, nullable=False)
    center_branch_id: Mapped[int] = mapped_column(Integer, nullable=False)
    technician_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    technician_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    customer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    resolution: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    total_cost_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejection_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    returned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    logs: Mapped[List['TransitionLogEntry']] = relationship(
        'TransitionLogEntry',
        back_populates='workflow',
        order_by='TransitionLogEntry.sequence',
    )

    # Every UPDATE checks and bumps the row version; a lost race raises StaleDataError.
    __mapper_args__ = {'version_id_col': version}
    __table_args__ = (
        Index('ix_maintenance_workflows_center_status', 'center_branch_id', 'status'),
        Index('ix_maintenance_workflows_origin_status', 'origin_branch_id', 'status'),
    )


class TransitionLogEntry(Base):
    """Append-only audit trail of workflow transitions."""
    __tablename__ = 'maintenance_workflow_logs'
    ACTION_ASSIGN = 'ASSIGN'
    ACTION_INSPECT = 'INSPECT'
    ACTION_REQUEST_APPROVAL = 'REQUEST_APPROVAL'
    ACTION_APPROVE = 'APPROVE'
    ACTION_REJECT = 'REJECT'
    ACTION_COMPLETE = 'COMPLETE'
    ACTION_RETURN = 'RETURN'
    ALL_ACTIONS = (
        ACTION_ASSIGN, ACTION_INSPECT, ACTION_REQUEST_APPROVAL, ACTION_APPROVE,
        ACTION_REJECT, ACTION_COMPLETE, ACTION_RETURN,
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    workflow_id: Mapped[int] = mapped_column(ForeignKey('maintenance_workflows.id'), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    from_status: Mapped[str] = mapped_column(String(32), nullable=False)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    performed_by: Mapped[int] = mapped_column(Integer, nullable=False)
    performed_by_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    performed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    workflow: Mapped[WorkflowInstance] = relationship('WorkflowInstance', back_populates='logs')

    __table_args__ = (
        UniqueConstraint('workflow_id', 'sequence', name='uq_workflow_log_sequence'),
        Index('ix_maintenance_workflow_logs_workflow_performed', 'workflow_id', 'performed_at'),
    )


__all__ = ['WorkflowInstance', 'TransitionLogEntry']
