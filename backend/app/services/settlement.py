from __future__ import annotations
"""Inter-branch settlement of approved repair costs.

A payment is opened when a branch approves paid parts: the origin branch
(debtor) owes the maintenance center (creditor). Settling records the receipt
exactly once. ``fold_summary`` is a pure function over payment rows so the
reporting numbers can be checked without a database.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.errors import AlreadySettled, ConcurrentModification, NotFound, ReceiptNumberConflict, ValidationError
from app.models.payment import PendingPayment
from app.models.workflow import WorkflowInstance
from app.services.policy import Actor
from app.utils.clock import utcnow, as_utc
from app.utils.validation import optional_text, validate_choice

logger = logging.getLogger(__name__)

PERIODS = ('day', 'month', 'quarter', 'year')
SCOPE_DEBTOR = 'debtor'
SCOPE_CREDITOR = 'creditor'
SCOPE_ALL = 'all'
SCOPES = (SCOPE_DEBTOR, SCOPE_CREDITOR, SCOPE_ALL)


def open_payment(session: Session, request, wf: WorkflowInstance, now: Optional[datetime] = None) -> PendingPayment:
    now = now or utcnow()
    payment = PendingPayment(
        workflow_id=wf.id,
        approval_request_id=request.id,
        machine_serial=wf.machine_serial,
        customer_id=wf.customer_id,
        debtor_branch_id=wf.origin_branch_id,
        creditor_branch_id=wf.center_branch_id,
        amount_cents=request.total_cost_cents,
        parts_details=[
            {'name': p.name, 'quantity': p.quantity, 'unit_cost_cents': p.unit_cost_cents}
            for p in request.parts
        ],
        status=PendingPayment.STATUS_PENDING,
        created_at=now,
        updated_at=now,
    )
    session.add(payment)
    return payment


def period_bounds(period: str, at: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Half-open UTC window ``[start, end)`` of the calendar period containing ``at``."""
    period = validate_choice(period, PERIODS, 'period')
    at = as_utc(at or utcnow())
    day = at.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == 'day':
        return day, day + timedelta(days=1)
    if period == 'month':
        first_month = at.month
        span = 1
    elif period == 'quarter':
        first_month = 3 * ((at.month - 1) // 3) + 1
        span = 3
    else:
        first_month = 1
        span = 12
    start = day.replace(month=first_month, day=1)
    month_index = first_month - 1 + span
    end = start.replace(year=start.year + month_index // 12, month=month_index % 12 + 1)
    return start, end


def fold_summary(payments: Iterable[Any], start: datetime, end: datetime) -> Dict[str, Any]:
    """Count and sum payments created inside ``[start, end)`` per status."""
    start, end = as_utc(start), as_utc(end)
    groups: Dict[str, Dict[str, int]] = {s: {'count': 0, 'amount_cents': 0} for s in PendingPayment.ALL_STATUSES}
    for p in payments:
        created = as_utc(p.created_at)
        if created is None or not (start <= created < end):
            continue
        bucket = groups.setdefault(p.status, {'count': 0, 'amount_cents': 0})
        bucket['count'] += 1
        bucket['amount_cents'] += int(p.amount_cents)
    total = {
        'count': sum(g['count'] for g in groups.values()),
        'amount_cents': sum(g['amount_cents'] for g in groups.values()),
    }
    return {'groups': groups, 'total': total}


class SettlementLedger:
    def __init__(self, session: Session, default_place: str = PendingPayment.PLACE_DAMEN):
        self.session = session
        self.default_place = default_place

    def get(self, payment_id: int) -> PendingPayment:
        payment = self.session.get(PendingPayment, payment_id)
        if payment is None:
            raise NotFound(f'Payment {payment_id} not found')
        return payment

    def settle(self, payment_id: int, receipt_number: Any, payment_place: Optional[str], actor: Actor) -> PendingPayment:
        receipt = optional_text(receipt_number, 'receipt_number', max_len=64)
        if not receipt:
            raise ValidationError('receipt_number required', {'field': 'receipt_number'})
        place = validate_choice(payment_place or self.default_place, PendingPayment.PAYMENT_PLACES, 'payment_place')
        payment = self.get(payment_id)
        if payment.status == PendingPayment.STATUS_PAID:
            raise AlreadySettled(
                f'Payment {payment_id} already settled',
                {'receipt_number': payment.receipt_number, 'same_receipt': payment.receipt_number == receipt},
            )
        clash = self.session.execute(
            select(PendingPayment.id).where(
                PendingPayment.receipt_number == receipt,
                PendingPayment.id != payment.id,
            )
        ).first()
        if clash is not None:
            raise ReceiptNumberConflict(
                f'Receipt {receipt} already used',
                {'receipt_number': receipt, 'payment_id': clash.id},
            )
        now = utcnow()
        payment.status = PendingPayment.STATUS_PAID
        payment.receipt_number = receipt
        payment.payment_place = place
        payment.paid_by = actor.user_id
        payment.paid_by_name = actor.name
        payment.paid_at = now
        payment.updated_at = now
        wf = self.session.get(WorkflowInstance, payment.workflow_id)
        if wf is not None:
            # Bumps the workflow row version so settlement serializes with transitions.
            wf.updated_at = now
        try:
            self.session.commit()
        except StaleDataError:
            self.session.rollback()
            raise ConcurrentModification(f'Workflow {payment.workflow_id} was modified concurrently; re-read and retry')
        except IntegrityError:
            self.session.rollback()
            raise ReceiptNumberConflict(f'Receipt {receipt} already used', {'receipt_number': receipt})
        logger.info('payment %s settled receipt=%s place=%s by=%s', payment.id, receipt, place, actor.user_id)
        return payment

    def list_query(
        self,
        status: Optional[str] = None,
        debtor_branch_id: Optional[int] = None,
        creditor_branch_id: Optional[int] = None,
        branch_ids: Optional[List[int]] = None,
    ):
        q = self.session.query(PendingPayment)
        if status:
            q = q.filter(PendingPayment.status == validate_choice(status, PendingPayment.ALL_STATUSES))
        if debtor_branch_id is not None:
            q = q.filter(PendingPayment.debtor_branch_id == debtor_branch_id)
        if creditor_branch_id is not None:
            q = q.filter(PendingPayment.creditor_branch_id == creditor_branch_id)
        if branch_ids:
            q = q.filter(
                (PendingPayment.debtor_branch_id.in_(branch_ids)) | (PendingPayment.creditor_branch_id.in_(branch_ids))
            )
        return q

    def summary(
        self,
        scope: str = SCOPE_ALL,
        period: str = 'month',
        branch_id: Optional[int] = None,
        at: Optional[datetime] = None,
        branch_ids: Optional[List[int]] = None,
    ) -> Dict[str, Any]:
        scope = validate_choice(scope, SCOPES, 'scope')
        start, end = period_bounds(period, at)
        q = select(PendingPayment).where(PendingPayment.created_at >= start, PendingPayment.created_at < end)
        if branch_id is not None:
            if scope == SCOPE_DEBTOR:
                q = q.where(PendingPayment.debtor_branch_id == branch_id)
            elif scope == SCOPE_CREDITOR:
                q = q.where(PendingPayment.creditor_branch_id == branch_id)
            else:
                q = q.where(
                    (PendingPayment.debtor_branch_id == branch_id) | (PendingPayment.creditor_branch_id == branch_id)
                )
        if branch_ids:
            q = q.where(
                (PendingPayment.debtor_branch_id.in_(branch_ids)) | (PendingPayment.creditor_branch_id.in_(branch_ids))
            )
        payments = self.session.execute(q).scalars().all()
        folded = fold_summary(payments, start, end)
        return {
            'scope': scope,
            'period': period,
            'branch_id': branch_id,
            'start': start,
            'end': end,
            **folded,
        }


__all__ = [
    'PERIODS', 'SCOPES', 'open_payment', 'period_bounds', 'fold_summary', 'SettlementLedger',
]
