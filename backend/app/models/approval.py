from __future__ import annotations
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, DateTime, ForeignKey, Text, Index, text
from app.models.base import Base
from app.utils.clock import utcnow


class ApprovalRequest(Base):
    __tablename__ = 'maintenance_approval_requests'
    # Status lifecycle: PENDING -> APPROVED | PENDING -> REJECTED (both terminal)
    STATUS_PENDING = 'PENDING'
    STATUS_APPROVED = 'APPROVED'
    STATUS_REJECTED = 'REJECTED'
    ALL_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)
    DECISION_APPROVE = 'APPROVE'
    DECISION_REJECT = 'REJECT'
    DECISIONS = (DECISION_APPROVE, DECISION_REJECT)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    workflow_id: Mapped[int] = mapped_column(ForeignKey('maintenance_workflows.id'), nullable=False)
    machine_serial: Mapped[str] = mapped_column(String(64), nullable=False)
    origin_branch_id: Mapped[int] = mapped_column(Integer, nullable=False)
    center_branch_id: Mapped[int] = mapped_column(Integer, nullable=False)
    total_cost_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requested_by: Mapped[int] = mapped_column(Integer, nullable=False)
    responded_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    responded_by_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    parts: Mapped[List['ApprovalPart']] = relationship(
        'ApprovalPart',
        back_populates='approval_request',
        order_by='ApprovalPart.position',
        cascade='all, delete-orphan',
    )

    __table_args__ = (
        # At most one PENDING request per workflow instance
        Index(
            'uq_approval_pending_per_workflow', 'workflow_id', unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'"),
        ),
        Index('ix_approval_requests_origin_status', 'origin_branch_id', 'status'),
        Index('ix_approval_requests_center_status', 'center_branch_id', 'status'),
    )


class ApprovalPart(Base):
    __tablename__ = 'maintenance_approval_parts'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    approval_request_id: Mapped[int] = mapped_column(ForeignKey('maintenance_approval_requests.id', ondelete='CASCADE'), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    approval_request: Mapped[ApprovalRequest] = relationship('ApprovalRequest', back_populates='parts')

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_cost_cents


__all__ = ['ApprovalRequest', 'ApprovalPart']
