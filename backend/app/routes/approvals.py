from __future__ import annotations
from flask import Blueprint, request
from app.decorators.auth import require_permissions
from app.decorators.audit import audit_log
from app.utils.listing import (
    make_cached_list_response, make_cached_item_response, handle_conditional, apply_pagination, item_etag,
)
from app.utils.sorting import apply_multi_sort
from app.utils.validation import require_int
from app.utils.clock import as_utc
from app.services.policy import assert_branch_access, current_actor, current_branch_ids
from app.services.approvals import ApprovalService
from app.models.approval import ApprovalRequest
from app.routes.serializers import approval_json, workflow_json, payment_json, log_json
from app import get_db

apr_bp = Blueprint('approvals', __name__)

SORTABLE = {
    'id': ApprovalRequest.id,
    'status': ApprovalRequest.status,
    'total_cost_cents': ApprovalRequest.total_cost_cents,
    'created_at': ApprovalRequest.created_at,
    'updated_at': ApprovalRequest.updated_at,
}


def _int_arg(name):
    raw = request.args.get(name)
    return require_int(raw, name) if raw not in (None, '') else None


@apr_bp.get('')
@require_permissions('APR.READ')
def list_approvals():
    service = ApprovalService(get_db())
    branch_id = _int_arg('branch_id')
    if branch_id is not None:
        assert_branch_access(branch_id)
    q = service.list_query(
        status=request.args.get('status') or None,
        branch_id=branch_id,
        branch_ids=current_branch_ids(),
    )
    q = apply_multi_sort(q, request.args.get('sort'), SORTABLE, ApprovalRequest.id, default='-created_at')
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    rows_json = [approval_json(r) for r in rows]
    latest_ts = max((as_utc(r.updated_at) for r in rows), default=None)
    resp, etag = make_cached_list_response(rows_json, total, limit, offset, latest_ts)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    return resp


@apr_bp.get('/pending-count')
@require_permissions('APR.READ')
def pending_count():
    branch_id = _int_arg('branch_id')
    if branch_id is not None:
        assert_branch_access(branch_id)
    count = ApprovalService(get_db()).pending_count(branch_id, current_branch_ids())
    return {'branch_id': branch_id, 'pending': count}


@apr_bp.route('/<int:approval_id>', methods=['GET', 'HEAD'])
@require_permissions('APR.READ')
def get_approval(approval_id: int):
    req = ApprovalService(get_db()).get(approval_id)
    assert_branch_access(req.origin_branch_id, req.center_branch_id)
    etag = item_etag('approval', req.id, f'{req.status}|{as_utc(req.updated_at).isoformat()}')
    cond = handle_conditional(etag, req.updated_at)
    if cond:
        return cond
    return make_cached_item_response(approval_json(req), etag, req.updated_at)


def _decision_response(result):
    body = approval_json(result.approval_request)
    body['workflow'] = workflow_json(result.workflow)
    body['log_entry'] = log_json(result.log_entry)
    if result.payment is not None:
        body['payment'] = payment_json(result.payment)
    return body


def _prefetch_approval(approval_id):
    if approval_id is None:
        return {}
    req = get_db().get(ApprovalRequest, approval_id)
    if not req:
        return {}
    return {'status': req.status, 'rejection_reason': req.rejection_reason}


@apr_bp.post('/<int:approval_id>/approve')
@require_permissions('APR.RESOLVE')
@audit_log('APR.REQUEST.APPROVE', entity='ApprovalRequest', entity_id_key='id', diff_keys=['status'],
           pre_fetch=lambda a, kw: _prefetch_approval(kw.get('approval_id')), meta_keys=['assignment_id', 'total_cost_cents'])
def approve(approval_id: int):
    service = ApprovalService(get_db())
    req = service.get(approval_id)
    # Only the branch that owns the machine decides
    assert_branch_access(req.origin_branch_id)
    result = service.resolve(approval_id, ApprovalRequest.DECISION_APPROVE, current_actor())
    return _decision_response(result)


@apr_bp.post('/<int:approval_id>/reject')
@require_permissions('APR.RESOLVE')
@audit_log('APR.REQUEST.REJECT', entity='ApprovalRequest', entity_id_key='id', diff_keys=['status', 'rejection_reason'],
           pre_fetch=lambda a, kw: _prefetch_approval(kw.get('approval_id')), meta_keys=['assignment_id'])
def reject(approval_id: int):
    data = request.get_json(silent=True) or {}
    service = ApprovalService(get_db())
    req = service.get(approval_id)
    assert_branch_access(req.origin_branch_id)
    result = service.resolve(approval_id, ApprovalRequest.DECISION_REJECT, current_actor(), reason=data.get('reason'))
    return _decision_response(result)
