from __future__ import annotations
"""Branch approval of paid repair parts.

Module level helpers run inside the workflow engine's unit of work; they never
commit. ``ApprovalService`` is the public face used by routes: it validates
the request and funnels every decision through ``WorkflowEngine.transition`` so
the approval, the workflow status and the log entry change together.
"""
import logging
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from app.errors import AlreadyResolved, NotFound, ValidationError
from app.models.approval import ApprovalRequest, ApprovalPart
from app.models.payment import PendingPayment
from app.models.workflow import WorkflowInstance, TransitionLogEntry
from app.services.policy import Actor
from app.services.settlement import open_payment
from app.utils.clock import utcnow
from app.utils.validation import PartLine, optional_text, validate_choice

logger = logging.getLogger(__name__)


def find_pending(session: Session, workflow_id: int) -> Optional[ApprovalRequest]:
    q = select(ApprovalRequest).where(
        ApprovalRequest.workflow_id == workflow_id,
        ApprovalRequest.status == ApprovalRequest.STATUS_PENDING,
    )
    return session.execute(q).scalars().first()


def open_request(
    session: Session,
    wf: WorkflowInstance,
    parts: Sequence[PartLine],
    total_cost_cents: int,
    actor: Actor,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ApprovalRequest:
    now = now or utcnow()
    request = ApprovalRequest(
        workflow_id=wf.id,
        machine_serial=wf.machine_serial,
        origin_branch_id=wf.origin_branch_id,
        center_branch_id=wf.center_branch_id,
        total_cost_cents=total_cost_cents,
        notes=notes,
        status=ApprovalRequest.STATUS_PENDING,
        requested_by=actor.user_id,
        created_at=now,
        updated_at=now,
    )
    request.parts = [
        ApprovalPart(position=idx, name=p.name, quantity=p.quantity, unit_cost_cents=p.unit_cost_cents)
        for idx, p in enumerate(parts)
    ]
    session.add(request)
    return request


def close_request(
    session: Session,
    request: ApprovalRequest,
    wf: WorkflowInstance,
    decision: str,
    actor: Actor,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[PendingPayment]:
    """Resolve a PENDING request. Approval books the cost and opens the payment."""
    if request.status != ApprovalRequest.STATUS_PENDING:
        raise AlreadyResolved(
            f'Approval request {request.id} already {request.status}',
            {'approval_id': request.id, 'status': request.status},
        )
    now = now or utcnow()
    request.responded_by = actor.user_id
    request.responded_by_name = actor.name
    request.responded_at = now
    request.updated_at = now
    if decision == ApprovalRequest.DECISION_APPROVE:
        request.status = ApprovalRequest.STATUS_APPROVED
        wf.total_cost_cents = (wf.total_cost_cents or 0) + request.total_cost_cents
        return open_payment(session, request, wf, now=now)
    request.status = ApprovalRequest.STATUS_REJECTED
    request.rejection_reason = reason
    # Sticky: stays set through later re-inspection and approval.
    wf.rejection_flag = True
    return None


class ApprovalService:
    def __init__(self, session: Session, engine=None):
        if engine is None:
            from app.services.workflow import WorkflowEngine
            engine = WorkflowEngine(session)
        self.session = session
        self.engine = engine

    def get(self, approval_id: int) -> ApprovalRequest:
        request = self.session.get(ApprovalRequest, approval_id)
        if request is None:
            raise NotFound(f'Approval request {approval_id} not found')
        return request

    def request_approval(
        self,
        instance_id: int,
        parts: Iterable[Union[PartLine, Mapping[str, Any]]],
        actor: Actor,
        notes: Optional[str] = None,
        total_cost_cents: Optional[int] = None,
        expected_version: Optional[int] = None,
    ):
        payload = {
            'parts': [p.to_dict() if isinstance(p, PartLine) else p for p in (parts or [])],
            'notes': notes,
            'total_cost_cents': total_cost_cents,
        }
        return self.engine.transition(
            instance_id, TransitionLogEntry.ACTION_REQUEST_APPROVAL, payload, actor, expected_version=expected_version,
        )

    def resolve(self, approval_id: int, decision: str, actor: Actor, reason: Optional[str] = None):
        decision = validate_choice(decision, ApprovalRequest.DECISIONS, 'decision')
        reason = optional_text(reason, 'reason')
        request = self.get(approval_id)
        if request.status != ApprovalRequest.STATUS_PENDING:
            raise AlreadyResolved(
                f'Approval request {approval_id} already {request.status}',
                {'approval_id': approval_id, 'status': request.status},
            )
        action = (
            TransitionLogEntry.ACTION_APPROVE
            if decision == ApprovalRequest.DECISION_APPROVE
            else TransitionLogEntry.ACTION_REJECT
        )
        result = self.engine.transition(
            request.workflow_id, action, {'approval_id': request.id, 'reason': reason}, actor,
        )
        logger.info('approval %s %s by=%s', request.id, request.status, actor.user_id)
        return result

    def list_query(self, status: Optional[str] = None, branch_id: Optional[int] = None, branch_ids: Optional[List[int]] = None):
        q = self.session.query(ApprovalRequest)
        if status:
            q = q.filter(ApprovalRequest.status == validate_choice(status, ApprovalRequest.ALL_STATUSES))
        if branch_id is not None:
            q = q.filter(ApprovalRequest.origin_branch_id == branch_id)
        if branch_ids:
            q = q.filter(
                (ApprovalRequest.origin_branch_id.in_(branch_ids)) | (ApprovalRequest.center_branch_id.in_(branch_ids))
            )
        return q

    def pending_count(self, branch_id: Optional[int] = None, branch_ids: Optional[List[int]] = None) -> int:
        q = select(func.count(ApprovalRequest.id)).where(ApprovalRequest.status == ApprovalRequest.STATUS_PENDING)
        if branch_id is not None:
            q = q.where(ApprovalRequest.origin_branch_id == branch_id)
        if branch_ids:
            q = q.where(ApprovalRequest.origin_branch_id.in_(branch_ids))
        return int(self.session.execute(q).scalar() or 0)


__all__ = ['find_pending', 'open_request', 'close_request', 'ApprovalService']
