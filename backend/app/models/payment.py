from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, DateTime, ForeignKey, JSON, Index
from app.models.base import Base
from app.utils.clock import utcnow


class PendingPayment(Base):
    __tablename__ = 'maintenance_pending_payments'
    # Status lifecycle: PENDING -> PAID (terminal, exactly once)
    STATUS_PENDING = 'PENDING'
    STATUS_PAID = 'PAID'
    ALL_STATUSES = (STATUS_PENDING, STATUS_PAID)
    PLACE_DAMEN = 'DAMEN'
    PLACE_BANK = 'BANK'
    PLACE_POST = 'POST'
    PAYMENT_PLACES = (PLACE_DAMEN, PLACE_BANK, PLACE_POST)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    workflow_id: Mapped[int] = mapped_column(ForeignKey('maintenance_workflows.id'), nullable=False, index=True)
    approval_request_id: Mapped[int] = mapped_column(ForeignKey('maintenance_approval_requests.id'), nullable=False, unique=True)
    machine_serial: Mapped[str] = mapped_column(String(64), nullable=False)
    customer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    debtor_branch_id: Mapped[int] = mapped_column(Integer, nullable=False)
    creditor_branch_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    parts_details: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING)
    receipt_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    payment_place: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    paid_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    paid_by_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_pending_payments_debtor_status', 'debtor_branch_id', 'status'),
        Index('ix_pending_payments_creditor_status', 'creditor_branch_id', 'status'),
    )


__all__ = ['PendingPayment']
