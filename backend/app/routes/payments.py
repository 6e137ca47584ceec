from __future__ import annotations
from datetime import datetime
from flask import Blueprint, request, current_app
from app.decorators.auth import require_permissions
from app.decorators.audit import audit_log
from app.errors import ValidationError
from app.utils.listing import (
    make_cached_list_response, make_cached_item_response, handle_conditional, apply_pagination, item_etag,
)
from app.utils.sorting import apply_multi_sort
from app.utils.validation import require_int
from app.utils.clock import as_utc, isoformat_z
from app.services.policy import assert_branch_access, current_actor, current_branch_ids
from app.services.settlement import SettlementLedger
from app.models.payment import PendingPayment
from app.routes.serializers import payment_json
from app import get_db

pay_bp = Blueprint('payments', __name__)

SORTABLE = {
    'id': PendingPayment.id,
    'status': PendingPayment.status,
    'amount_cents': PendingPayment.amount_cents,
    'created_at': PendingPayment.created_at,
    'paid_at': PendingPayment.paid_at,
}


def _ledger() -> SettlementLedger:
    return SettlementLedger(get_db(), default_place=current_app.config['DEFAULT_PAYMENT_PLACE'])


def _int_arg(name):
    raw = request.args.get(name)
    return require_int(raw, name) if raw not in (None, '') else None


@pay_bp.get('')
@require_permissions('PAY.READ')
def list_payments():
    branch_id = _int_arg('branch_id')
    center_branch_id = _int_arg('center_branch_id')
    if branch_id is not None or center_branch_id is not None:
        assert_branch_access(branch_id, center_branch_id)
    q = _ledger().list_query(
        status=request.args.get('status') or None,
        debtor_branch_id=branch_id,
        creditor_branch_id=center_branch_id,
        branch_ids=current_branch_ids(),
    )
    q = apply_multi_sort(q, request.args.get('sort'), SORTABLE, PendingPayment.id, default='-created_at')
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    rows_json = [payment_json(p) for p in rows]
    latest_ts = max((as_utc(p.updated_at) for p in rows), default=None)
    resp, etag = make_cached_list_response(rows_json, total, limit, offset, latest_ts)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    return resp


@pay_bp.get('/summary')
@require_permissions('RPT.READ')
def summary():
    branch_id = _int_arg('branch_id')
    if branch_id is not None:
        assert_branch_access(branch_id)
    at_raw = request.args.get('at')
    at = None
    if at_raw:
        try:
            at = datetime.fromisoformat(at_raw.replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError('at must be an ISO 8601 timestamp', {'field': 'at'})
    result = _ledger().summary(
        scope=request.args.get('scope') or 'all',
        period=request.args.get('period') or 'month',
        branch_id=branch_id,
        at=at,
        branch_ids=current_branch_ids(),
    )
    result['start'] = isoformat_z(result['start'])
    result['end'] = isoformat_z(result['end'])
    return result


@pay_bp.route('/<int:payment_id>', methods=['GET', 'HEAD'])
@require_permissions('PAY.READ')
def get_payment(payment_id: int):
    p = _ledger().get(payment_id)
    assert_branch_access(p.debtor_branch_id, p.creditor_branch_id)
    etag = item_etag('payment', p.id, p.status)
    cond = handle_conditional(etag, p.updated_at)
    if cond:
        return cond
    return make_cached_item_response(payment_json(p), etag, p.updated_at)


def _prefetch_payment(payment_id):
    if payment_id is None:
        return {}
    p = get_db().get(PendingPayment, payment_id)
    if not p:
        return {}
    return {'status': p.status, 'receipt_number': p.receipt_number}


@pay_bp.put('/<int:payment_id>/settle')
@require_permissions('PAY.SETTLE')
@audit_log('PAY.SETTLE', entity='PendingPayment', entity_id_key='id', diff_keys=['status', 'receipt_number'],
           pre_fetch=lambda a, kw: _prefetch_payment(kw.get('payment_id')),
           meta_keys=['amount_cents', 'payment_place', 'debtor_branch_id'])
def settle(payment_id: int):
    data = request.get_json(silent=True) or {}
    ledger = _ledger()
    p = ledger.get(payment_id)
    # The owing branch records its own receipt
    assert_branch_access(p.debtor_branch_id)
    p = ledger.settle(payment_id, data.get('receipt_number'), data.get('payment_place'), current_actor())
    return payment_json(p)
