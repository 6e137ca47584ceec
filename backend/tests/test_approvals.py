import pytest
from sqlalchemy import func, select
from app import get_db
from app.errors import AlreadyResolved, DuplicatePendingApproval, NotFound, ValidationError
from app.models.approval import ApprovalRequest
from app.models.payment import PendingPayment
from app.services.approvals import ApprovalService
from app.utils.validation import PartLine
from tests.test_lifecycle_helpers import (
    PARTS_130, TO_AWAITING, TO_INSPECTION, actor, drive, engine_workflow, new_branches,
)


def _payments_for(wf_id):
    return get_db().scalar(select(func.count(PendingPayment.id)).where(PendingPayment.workflow_id == wf_id))


def find_pending_id(wf_id):
    return get_db().scalar(
        select(ApprovalRequest.id).where(ApprovalRequest.workflow_id == wf_id, ApprovalRequest.status == 'PENDING')
    )


def _awaiting(origin=1, center=2):
    engine, wf = engine_workflow(origin=origin, center=center)
    result = drive(engine, wf.id, TO_AWAITING)
    return engine, wf, result.approval_request


def test_request_approval_with_part_lines(app_context):
    engine, wf = engine_workflow()
    drive(engine, wf.id, TO_INSPECTION)
    service = ApprovalService(get_db(), engine)
    result = service.request_approval(
        wf.id, [PartLine('Drum', 1, 200), PartLine('Belt', 2, 25)], actor(), notes='worn drum',
    )
    request = result.approval_request
    assert result.workflow.status == 'AWAITING_APPROVAL'
    assert request.status == 'PENDING'
    assert request.total_cost_cents == 250
    assert request.notes == 'worn drum'
    assert request.origin_branch_id == wf.origin_branch_id
    assert [p.position for p in request.parts] == [0, 1]


def test_request_total_must_match_parts(app_context):
    engine, wf = engine_workflow()
    drive(engine, wf.id, TO_INSPECTION)
    service = ApprovalService(get_db(), engine)
    with pytest.raises(ValidationError) as exc:
        service.request_approval(wf.id, PARTS_130, actor(), total_cost_cents=120)
    assert exc.value.details['computed'] == 130
    assert engine.get(wf.id).status == 'UNDER_INSPECTION'
    ok = service.request_approval(wf.id, PARTS_130, actor(), total_cost_cents=130)
    assert ok.approval_request.total_cost_cents == 130


def test_duplicate_pending_request_rejected(app_context):
    engine, wf, request = _awaiting()
    service = ApprovalService(get_db(), engine)
    with pytest.raises(DuplicatePendingApproval):
        service.request_approval(wf.id, PARTS_130, actor())
    pending = get_db().scalar(
        select(func.count(ApprovalRequest.id)).where(
            ApprovalRequest.workflow_id == wf.id, ApprovalRequest.status == 'PENDING'
        )
    )
    assert pending == 1


def test_approve_opens_single_payment(app_context):
    engine, wf, request = _awaiting()
    service = ApprovalService(get_db(), engine)
    branch = actor(user_id=30, name='Branch Manager')
    result = service.resolve(request.id, 'APPROVE', branch)
    assert result.workflow.status == 'REPAIR_APPROVED'
    assert result.workflow.total_cost_cents == 130
    assert request.status == 'APPROVED'
    assert request.responded_by == 30
    assert request.responded_by_name == 'Branch Manager'
    payment = result.payment
    assert payment.status == 'PENDING'
    assert payment.amount_cents == 130
    assert payment.debtor_branch_id == wf.origin_branch_id
    assert payment.creditor_branch_id == wf.center_branch_id
    assert payment.approval_request_id == request.id
    assert payment.parts_details == [
        {'name': 'Fuser', 'quantity': 2, 'unit_cost_cents': 50},
        {'name': 'Roller', 'quantity': 1, 'unit_cost_cents': 30},
    ]

    with pytest.raises(AlreadyResolved) as exc:
        service.resolve(request.id, 'APPROVE', branch)
    assert exc.value.details['status'] == 'APPROVED'
    with pytest.raises(AlreadyResolved):
        service.resolve(request.id, 'REJECT', branch, reason='changed mind')
    assert _payments_for(wf.id) == 1
    assert engine.get(wf.id).status == 'REPAIR_APPROVED'


def test_reject_sets_sticky_flag(app_context):
    engine, wf, request = _awaiting()
    service = ApprovalService(get_db(), engine)
    result = service.resolve(request.id, 'REJECT', actor(user_id=30), reason='  too expensive ')
    assert result.workflow.status == 'REJECTED'
    assert result.workflow.rejection_flag
    assert request.status == 'REJECTED'
    assert request.rejection_reason == 'too expensive'
    assert result.payment is None
    assert _payments_for(wf.id) == 0

    # Re-inspect and get a cheaper quote approved; the flag stays.
    drive(engine, wf.id, [('INSPECT', {}), ('REQUEST_APPROVAL', {'parts': [PARTS_130[1]]})])
    second = find_pending_id(wf.id)
    approved = service.resolve(second, 'APPROVE', actor(user_id=30))
    assert approved.workflow.status == 'REPAIR_APPROVED'
    assert approved.workflow.rejection_flag
    assert approved.workflow.total_cost_cents == 30


def test_reject_without_reason_is_allowed(app_context):
    engine, wf, request = _awaiting()
    result = ApprovalService(get_db(), engine).resolve(request.id, 'REJECT', actor())
    assert result.workflow.status == 'REJECTED'
    assert request.rejection_reason is None


def test_rejected_machine_can_request_again_directly(app_context):
    engine, wf, request = _awaiting()
    service = ApprovalService(get_db(), engine)
    service.resolve(request.id, 'REJECT', actor())
    again = service.request_approval(wf.id, [{'name': 'Roller', 'quantity': 1, 'unit_cost_cents': 30}], actor())
    assert again.workflow.status == 'AWAITING_APPROVAL'
    assert again.approval_request.id != request.id


def test_resolve_validation(app_context):
    engine, wf, request = _awaiting()
    service = ApprovalService(get_db(), engine)
    with pytest.raises(ValidationError):
        service.resolve(request.id, 'MAYBE', actor())
    with pytest.raises(NotFound):
        service.resolve(10 ** 7, 'APPROVE', actor())
    assert request.status == 'PENDING'


def test_pending_count_and_listing(app_context):
    origin, center = new_branches()
    _, _, first = _awaiting(origin, center)
    _awaiting(origin, center)
    engine, _, resolved = _awaiting(origin, center)
    service = ApprovalService(get_db(), engine)
    service.resolve(resolved.id, 'APPROVE', actor())
    assert service.pending_count(branch_id=origin) == 2
    assert service.pending_count(branch_id=center) == 0
    assert service.pending_count(branch_ids=[origin]) == 2
    pending = service.list_query(status='PENDING', branch_id=origin).all()
    assert {r.id for r in pending} >= {first.id}
    assert len(pending) == 2
    assert service.list_query(status='APPROVED', branch_id=origin).count() == 1
    # Center staff see the requests they raised.
    assert service.list_query(branch_ids=[center]).count() == 3
    with pytest.raises(ValidationError):
        service.list_query(status='UNKNOWN')
