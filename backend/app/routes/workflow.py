from __future__ import annotations
from flask import Blueprint, request, abort
from app.decorators.auth import require_permissions
from app.decorators.audit import audit_log
from app.utils.listing import (
    make_cached_list_response, make_cached_item_response, handle_conditional, apply_pagination, item_etag,
)
from app.utils.sorting import apply_multi_sort
from app.utils.filters import apply_filters, parse_bool
from app.utils.validation import require_int
from app.utils.clock import as_utc
from app.errors import ValidationError
from app.constants.permissions import TRANSITION_ACTION_PERMISSIONS
from app.services.policy import (
    assert_branch_access, current_actor, current_branch_ids, filter_query_by_branches, has_permissions,
)
from app.services.workflow import WorkflowEngine
from app.models.workflow import WorkflowInstance as WI, TransitionLogEntry as Log
from app.routes.serializers import workflow_json, log_json, approval_json, payment_json
from app import get_db

workflow_bp = Blueprint('workflow', __name__)

# Decided by the origin branch; everything else by either side.
_ORIGIN_ONLY_ACTIONS = (Log.ACTION_APPROVE, Log.ACTION_REJECT)

SORTABLE = {
    'id': WI.id,
    'status': WI.status,
    'machine_serial': WI.machine_serial,
    'technician_id': WI.technician_id,
    'created_at': WI.created_at,
    'updated_at': WI.updated_at,
}


def _filter_specs(actor_id: int):
    return {
        'status': {
            'coerce': str,
            'validate': lambda v: v in WI.ALL_STATUSES,
            'op': lambda q, v: q.filter(WI.status == v),
        },
        'technician_id': {'coerce': int, 'op': lambda q, v: q.filter(WI.technician_id == v)},
        'mine': {'coerce': parse_bool, 'op': lambda q, v: q.filter(WI.technician_id == actor_id) if v else q},
        'rejection_flag': {'coerce': parse_bool, 'op': lambda q, v: q.filter(WI.rejection_flag == v)},
        'machine_serial': {'coerce': str, 'op': lambda q, v: q.filter(WI.machine_serial.ilike(f'%{v}%'))},
        'origin_branch_id': {'coerce': int, 'op': lambda q, v: q.filter(WI.origin_branch_id == v)},
        'center_branch_id': {'coerce': int, 'op': lambda q, v: q.filter(WI.center_branch_id == v)},
    }


@workflow_bp.get('')
@require_permissions('MNT.READ')
def list_workflows():
    session = get_db()
    actor = current_actor()
    q = session.query(WI)
    q = filter_query_by_branches(q, [WI.origin_branch_id, WI.center_branch_id], list(actor.branch_ids))
    q = apply_filters(q, _filter_specs(actor.user_id), request.args)
    q = apply_multi_sort(q, request.args.get('sort'), SORTABLE, WI.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    rows_json = [workflow_json(wf) for wf in rows]
    latest_ts = max((as_utc(wf.updated_at) for wf in rows), default=None)
    resp, etag = make_cached_list_response(rows_json, total, limit, offset, latest_ts)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    return resp


@workflow_bp.post('')
@require_permissions('MNT.MANAGE')
@audit_log('MNT.WORKFLOW.CREATE', entity='WorkflowInstance', entity_id_key='id',
           meta_keys=['machine_serial', 'origin_branch_id', 'center_branch_id', 'status'])
def create_workflow():
    data = request.get_json(silent=True) or {}
    origin = require_int(data.get('origin_branch_id'), 'origin_branch_id')
    center = require_int(data.get('center_branch_id'), 'center_branch_id')
    assert_branch_access(origin, center)
    engine = WorkflowEngine(get_db())
    wf = engine.create(
        data.get('machine_serial'),
        origin,
        center,
        current_actor(),
        customer_id=data.get('customer_id'),
        customer_name=data.get('customer_name'),
        technician_id=data.get('technician_id'),
        technician_name=data.get('technician_name'),
    )
    return workflow_json(wf, engine.allowed_actions(wf.status)), 201


@workflow_bp.get('/board')
@require_permissions('MNT.READ')
def board():
    """Kanban view: open machines per status at a center."""
    center_raw = request.args.get('center_branch_id')
    center = require_int(center_raw, 'center_branch_id') if center_raw else None
    if center is not None:
        assert_branch_access(center)
    counts = WorkflowEngine(get_db()).status_counts(center, current_branch_ids())
    return {
        'center_branch_id': center,
        'columns': [{'status': s, 'count': counts[s]} for s in WI.OPEN_STATUSES],
        'total': sum(counts.values()),
    }


def _load_scoped(engine: WorkflowEngine, workflow_id: int) -> WI:
    wf = engine.get(workflow_id)
    assert_branch_access(wf.origin_branch_id, wf.center_branch_id)
    return wf


@workflow_bp.route('/<int:workflow_id>', methods=['GET', 'HEAD'])
@require_permissions('MNT.READ')
def get_workflow(workflow_id: int):
    engine = WorkflowEngine(get_db())
    wf = _load_scoped(engine, workflow_id)
    etag = item_etag('workflow', wf.id, wf.version)
    cond = handle_conditional(etag, wf.updated_at)
    if cond:
        return cond
    return make_cached_item_response(workflow_json(wf, engine.allowed_actions(wf.status)), etag, wf.updated_at)


@workflow_bp.get('/<int:workflow_id>/logs')
@require_permissions('MNT.READ')
def list_logs(workflow_id: int):
    engine = WorkflowEngine(get_db())
    _load_scoped(engine, workflow_id)
    return {'data': [log_json(e) for e in engine.logs(workflow_id)]}


def _transition_meta(data, rv, args, kwargs):
    entry = data.get('log_entry') or {}
    return {
        'action': entry.get('action'),
        'from_status': entry.get('from_status'),
        'to_status': entry.get('to_status'),
        'version': (data.get('workflow') or {}).get('version'),
    }


@workflow_bp.post('/<int:workflow_id>/transition')
@require_permissions()
@audit_log('MNT.WORKFLOW.TRANSITION', entity='WorkflowInstance', entity_id_arg='workflow_id', meta_builder=_transition_meta)
def transition(workflow_id: int):
    data = request.get_json(silent=True) or {}
    action = data.get('action')
    if not isinstance(action, str) or not action:
        raise ValidationError('action required', {'field': 'action', 'allowed': list(Log.ALL_ACTIONS)})
    code = TRANSITION_ACTION_PERMISSIONS.get(action)
    if code and not has_permissions(code):
        abort(403, description=f'Missing permission: {code}')
    engine = WorkflowEngine(get_db())
    wf = engine.get(workflow_id)
    if action in _ORIGIN_ONLY_ACTIONS:
        assert_branch_access(wf.origin_branch_id)
    else:
        assert_branch_access(wf.origin_branch_id, wf.center_branch_id)
    expected_raw = data.get('expected_version')
    expected = require_int(expected_raw, 'expected_version') if expected_raw is not None else None
    payload = data.get('payload') or {}
    if not isinstance(payload, dict):
        raise ValidationError('payload must be an object', {'field': 'payload'})
    result = engine.transition(workflow_id, action, payload, current_actor(), expected_version=expected)
    body = {
        'workflow': workflow_json(result.workflow, engine.allowed_actions(result.workflow.status)),
        'log_entry': log_json(result.log_entry),
    }
    if result.approval_request is not None:
        body['approval_request'] = approval_json(result.approval_request)
    if result.payment is not None:
        body['payment'] = payment_json(result.payment)
    return body
