from datetime import timedelta
import pytest
from sqlalchemy import func, select
from app import get_db
from app.errors import (
    ApprovalPending, ConcurrentModification, DuplicatePendingApproval, InvalidTransition, NotFound, ValidationError,
)
from app.models.approval import ApprovalRequest
from app.models.payment import PendingPayment
from app.models.workflow import WorkflowInstance as WI, TransitionLogEntry as Log
from app.services.workflow import TRANSITIONS, WorkflowEngine
from app.utils.clock import as_utc, utcnow
from tests.test_lifecycle_helpers import (
    PARTS_130, TO_AWAITING, TO_INSPECTION, actor, drive, engine_workflow, new_serial,
)

ZERO_COST = [('REQUEST_APPROVAL', {'parts': []})]

PATHS = {
    'RECEIVED_AT_CENTER': [],
    'ASSIGNED': TO_INSPECTION[:1],
    'UNDER_INSPECTION': TO_INSPECTION,
    'AWAITING_APPROVAL': TO_AWAITING,
    'IN_PROGRESS': TO_INSPECTION + ZERO_COST,
    'REPAIR_APPROVED': TO_AWAITING + [('APPROVE', {})],
    'REJECTED': TO_AWAITING + [('REJECT', {'reason': 'too expensive'})],
    'REPAIRED': TO_INSPECTION + ZERO_COST + [('COMPLETE', {})],
    'SCRAPPED': TO_INSPECTION + ZERO_COST + [('COMPLETE', {'resolution': 'SCRAPPED'})],
    'RETURNED_AS_IS': TO_INSPECTION + ZERO_COST + [('COMPLETE', {'resolution': 'RETURNED_AS_IS'})],
    'READY_FOR_RETURN': TO_INSPECTION + ZERO_COST + [('COMPLETE', {}), ('RETURN', {})],
    'RETURNED': TO_INSPECTION + ZERO_COST + [('COMPLETE', {}), ('RETURN', {}), ('RETURN', {})],
}

VALID_PAYLOADS = {
    'ASSIGN': {'technician_id': 9},
    'INSPECT': {},
    'REQUEST_APPROVAL': {'parts': PARTS_130},
    'APPROVE': {},
    'REJECT': {},
    'COMPLETE': {'resolution': 'REPAIRED'},
    'RETURN': {},
}


def _snapshot(wf_id):
    session = get_db()
    wf = session.get(WI, wf_id)
    return (
        wf.status,
        wf.version,
        wf.total_cost_cents,
        session.scalar(select(func.count(Log.id)).where(Log.workflow_id == wf_id)),
        session.scalar(select(func.count(ApprovalRequest.id)).where(ApprovalRequest.workflow_id == wf_id)),
        session.scalar(select(func.count(PendingPayment.id)).where(PendingPayment.workflow_id == wf_id)),
    )


def test_create_starts_received_without_log(app_context):
    engine, wf = engine_workflow(customer_id='C-1', customer_name='Acme')
    assert wf.status == 'RECEIVED_AT_CENTER'
    assert wf.version == 1
    assert wf.total_cost_cents == 0
    assert not wf.rejection_flag
    assert engine.logs(wf.id) == []


def test_create_with_technician_assigns_immediately(app_context):
    engine, wf = engine_workflow(technician_id=5, technician_name='Sam')
    assert wf.status == 'ASSIGNED'
    assert wf.technician_id == 5
    assert wf.assigned_at is not None
    logs = engine.logs(wf.id)
    assert [(e.sequence, e.action, e.from_status, e.to_status) for e in logs] == [
        (1, 'ASSIGN', 'RECEIVED_AT_CENTER', 'ASSIGNED')
    ]


def test_create_requires_serial(app_context):
    engine = WorkflowEngine(get_db())
    with pytest.raises(ValidationError):
        engine.create('   ', 1, 2, actor())


def test_full_paid_repair_lifecycle(app_context):
    engine, wf = engine_workflow()
    result = drive(engine, wf.id, TO_AWAITING)
    assert result.workflow.status == 'AWAITING_APPROVAL'
    request = result.approval_request
    assert request.total_cost_cents == 130
    assert [(p.name, p.quantity, p.unit_cost_cents) for p in request.parts] == [('Fuser', 2, 50), ('Roller', 1, 30)]

    approved = engine.transition(wf.id, 'APPROVE', {}, actor(user_id=3, name='Branch'))
    assert approved.workflow.status == 'REPAIR_APPROVED'
    assert approved.workflow.total_cost_cents == 130
    assert approved.payment.amount_cents == 130
    assert approved.payment.status == 'PENDING'

    done = engine.transition(wf.id, 'COMPLETE', {'notes': 'new fuser'}, actor())
    assert done.workflow.status == 'REPAIRED'
    assert done.workflow.resolution == 'REPAIRED'
    assert done.workflow.completed_at is not None

    drive(engine, wf.id, [('RETURN', {}), ('RETURN', {'notes': 'picked up'})])
    final = engine.get(wf.id)
    assert final.status == 'RETURNED'
    assert final.returned_at is not None
    logs = engine.logs(wf.id)
    assert [e.sequence for e in logs] == list(range(1, len(logs) + 1))
    assert [e.to_status for e in logs] == [
        'ASSIGNED', 'UNDER_INSPECTION', 'AWAITING_APPROVAL', 'REPAIR_APPROVED', 'REPAIRED',
        'READY_FOR_RETURN', 'RETURNED',
    ]
    # Each entry chains from the previous one
    for prev, cur in zip(logs, logs[1:]):
        assert cur.from_status == prev.to_status
        assert as_utc(cur.performed_at) >= as_utc(prev.performed_at)


def test_zero_cost_request_skips_approval(app_context):
    engine, wf = engine_workflow()
    drive(engine, wf.id, TO_INSPECTION)
    result = engine.transition(wf.id, 'REQUEST_APPROVAL', {'parts': [{'name': 'Screw', 'quantity': 3, 'unit_cost_cents': 0}]}, actor())
    assert result.workflow.status == 'IN_PROGRESS'
    assert result.approval_request is None
    session = get_db()
    assert session.scalar(select(func.count(ApprovalRequest.id)).where(ApprovalRequest.workflow_id == wf.id)) == 0
    done = engine.transition(wf.id, 'COMPLETE', {}, actor())
    assert done.workflow.status == 'REPAIRED'


def test_complete_from_inspection_without_parts(app_context):
    engine, wf = engine_workflow()
    drive(engine, wf.id, TO_INSPECTION)
    result = engine.transition(wf.id, 'COMPLETE', {'resolution': 'SCRAPPED'}, actor())
    assert result.workflow.status == 'SCRAPPED'


def test_started_at_only_stamped_on_first_inspection(app_context):
    engine, wf = engine_workflow()
    drive(engine, wf.id, TO_AWAITING + [('REJECT', {})])
    first_started = as_utc(engine.get(wf.id).started_at)
    engine.transition(wf.id, 'INSPECT', {'notes': 'second look'}, actor())
    assert as_utc(engine.get(wf.id).started_at) == first_started


def test_reassign_during_inspection(app_context):
    engine, wf = engine_workflow(technician_id=5)
    engine.transition(wf.id, 'INSPECT', {}, actor())
    result = engine.transition(wf.id, 'ASSIGN', {'technician_id': 6, 'technician_name': 'Ali'}, actor())
    assert result.workflow.status == 'ASSIGNED'
    assert result.workflow.technician_id == 6
    assert result.log_entry.details == 'Assigned technician Ali'


def test_rejected_machine_can_only_complete_as_scrapped_or_returned(app_context):
    engine, wf = engine_workflow()
    drive(engine, wf.id, PATHS['REJECTED'])
    before = _snapshot(wf.id)
    with pytest.raises(InvalidTransition):
        engine.transition(wf.id, 'COMPLETE', {'resolution': 'REPAIRED'}, actor())
    assert _snapshot(wf.id) == before
    result = engine.transition(wf.id, 'COMPLETE', {'resolution': 'RETURNED_AS_IS'}, actor())
    assert result.workflow.status == 'RETURNED_AS_IS'


@pytest.mark.parametrize('status', list(PATHS))
def test_only_table_edges_succeed(app_context, status):
    engine, wf = engine_workflow()
    drive(engine, wf.id, PATHS[status])
    assert engine.get(wf.id).status == status
    for action in Log.ALL_ACTIONS:
        if TRANSITIONS.can(status, action):
            continue
        before = _snapshot(wf.id)
        expected = InvalidTransition
        if status == 'AWAITING_APPROVAL' and action == 'REQUEST_APPROVAL':
            expected = DuplicatePendingApproval
        elif status == 'AWAITING_APPROVAL' and action == 'COMPLETE':
            expected = ApprovalPending
        with pytest.raises(expected) as exc:
            engine.transition(wf.id, action, VALID_PAYLOADS[action], actor())
        if expected is InvalidTransition:
            assert exc.value.current_status == status
            assert exc.value.action == action
        assert _snapshot(wf.id) == before


def test_unknown_action_is_invalid(app_context):
    engine, wf = engine_workflow()
    with pytest.raises(InvalidTransition) as exc:
        engine.transition(wf.id, 'TELEPORT', {}, actor())
    assert exc.value.details == {'current_status': 'RECEIVED_AT_CENTER', 'action': 'TELEPORT'}


def test_assign_requires_technician(app_context):
    engine, wf = engine_workflow()
    before = _snapshot(wf.id)
    with pytest.raises(ValidationError):
        engine.transition(wf.id, 'ASSIGN', {}, actor())
    assert _snapshot(wf.id) == before


def test_expected_version_mismatch(app_context):
    engine, wf = engine_workflow(technician_id=5)
    stale = wf.version - 1
    before = _snapshot(wf.id)
    with pytest.raises(ConcurrentModification) as exc:
        engine.transition(wf.id, 'INSPECT', {}, actor(), expected_version=stale)
    assert exc.value.details['current_version'] == wf.version
    assert _snapshot(wf.id) == before
    ok = engine.transition(wf.id, 'INSPECT', {}, actor(), expected_version=wf.version)
    assert ok.workflow.status == 'UNDER_INSPECTION'


def test_missing_workflow(app_context):
    with pytest.raises(NotFound):
        WorkflowEngine(get_db()).transition(987654, 'ASSIGN', {'technician_id': 1}, actor())


def test_log_timestamps_never_go_backwards(app_context):
    now = utcnow()
    session = get_db()
    engine = WorkflowEngine(session, clock=lambda: now)
    wf = engine.create(new_serial(), 1, 2, actor(), technician_id=5)
    skewed = WorkflowEngine(session, clock=lambda: now - timedelta(hours=1))
    result = skewed.transition(wf.id, 'INSPECT', {}, actor())
    first, second = engine.logs(wf.id)
    assert as_utc(second.performed_at) == as_utc(first.performed_at)
    assert result.log_entry.sequence == 2


def test_status_counts_for_board(app_context):
    center = 4242
    engine = WorkflowEngine(get_db())
    engine.create(new_serial(), 1, center, actor())
    engine.create(new_serial(), 1, center, actor(), technician_id=3)
    wf = engine.create(new_serial(), 1, center, actor(), technician_id=3)
    drive(engine, wf.id, PATHS['RETURNED'][1:])
    counts = engine.status_counts(center)
    assert counts['RECEIVED_AT_CENTER'] == 1
    assert counts['ASSIGNED'] == 1
    assert 'RETURNED' not in counts
    assert sum(counts.values()) == 2
