from __future__ import annotations
"""Maintenance workflow engine.

Single authority for a machine's status at the maintenance center. Every
status change goes through ``WorkflowEngine.transition`` which:

1. runs the action specific guards and picks the target state,
2. checks the ``(status, action, target)`` edge against ``TRANSITIONS``,
3. mutates the instance and appends exactly one ``TransitionLogEntry``,
4. commits; the row version column turns a lost race into
   ``ConcurrentModification``.

Steps 1 and 2 never touch the instance, so a rejected transition leaves no
trace. Approval requests and pending payments are opened/closed from inside
the same unit of work (see ``app.services.approvals`` and
``app.services.settlement``).
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.errors import (
    ApprovalPending, AlreadyResolved, ConcurrentModification, DuplicatePendingApproval,
    InvalidTransition, NotFound, ValidationError,
)
from app.models.approval import ApprovalRequest
from app.models.payment import PendingPayment
from app.models.workflow import WorkflowInstance as WI, TransitionLogEntry as Log
from app.services.approvals import find_pending, open_request, close_request
from app.services.policy import Actor
from app.utils.clock import utcnow, as_utc
from app.utils.fsm import Transition, TransitionTable
from app.utils.validation import optional_text, parse_parts, parts_total, require_int, validate_choice

logger = logging.getLogger(__name__)

_RESOLUTIONS = WI.RESOLUTIONS
_REJECTED_RESOLUTIONS = (WI.STATUS_SCRAPPED, WI.STATUS_RETURNED_AS_IS)

TRANSITIONS = TransitionTable(
    [
        Transition(WI.STATUS_RECEIVED_AT_CENTER, Log.ACTION_ASSIGN, WI.STATUS_ASSIGNED),
        Transition(WI.STATUS_ASSIGNED, Log.ACTION_ASSIGN, WI.STATUS_ASSIGNED),
        Transition(WI.STATUS_UNDER_INSPECTION, Log.ACTION_ASSIGN, WI.STATUS_ASSIGNED),
        Transition(WI.STATUS_ASSIGNED, Log.ACTION_INSPECT, WI.STATUS_UNDER_INSPECTION),
        Transition(WI.STATUS_REJECTED, Log.ACTION_INSPECT, WI.STATUS_UNDER_INSPECTION),
        Transition(WI.STATUS_UNDER_INSPECTION, Log.ACTION_REQUEST_APPROVAL, WI.STATUS_AWAITING_APPROVAL),
        Transition(WI.STATUS_UNDER_INSPECTION, Log.ACTION_REQUEST_APPROVAL, WI.STATUS_IN_PROGRESS),
        Transition(WI.STATUS_REJECTED, Log.ACTION_REQUEST_APPROVAL, WI.STATUS_AWAITING_APPROVAL),
        Transition(WI.STATUS_REJECTED, Log.ACTION_REQUEST_APPROVAL, WI.STATUS_IN_PROGRESS),
        Transition(WI.STATUS_AWAITING_APPROVAL, Log.ACTION_APPROVE, WI.STATUS_REPAIR_APPROVED),
        Transition(WI.STATUS_AWAITING_APPROVAL, Log.ACTION_REJECT, WI.STATUS_REJECTED),
    ]
    + [
        Transition(source, Log.ACTION_COMPLETE, resolution)
        for source in (WI.STATUS_UNDER_INSPECTION, WI.STATUS_IN_PROGRESS, WI.STATUS_REPAIR_APPROVED)
        for resolution in _RESOLUTIONS
    ]
    + [Transition(WI.STATUS_REJECTED, Log.ACTION_COMPLETE, resolution) for resolution in _REJECTED_RESOLUTIONS]
    + [Transition(resolution, Log.ACTION_RETURN, WI.STATUS_READY_FOR_RETURN) for resolution in _RESOLUTIONS]
    + [Transition(WI.STATUS_READY_FOR_RETURN, Log.ACTION_RETURN, WI.STATUS_RETURNED)]
)


class TransitionResult(NamedTuple):
    workflow: WI
    log_entry: Log
    approval_request: Optional[ApprovalRequest] = None
    payment: Optional[PendingPayment] = None


class _Outcome(NamedTuple):
    details: Optional[str]
    approval_request: Optional[ApprovalRequest] = None
    payment: Optional[PendingPayment] = None


# A handler validates, returns the target state and a deferred mutation.
_Plan = Tuple[str, Callable[[], _Outcome]]


class WorkflowEngine:
    def __init__(self, session: Session, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock
        self._handlers: Dict[str, Callable[[WI, Mapping[str, Any], Actor, datetime], _Plan]] = {
            Log.ACTION_ASSIGN: self._plan_assign,
            Log.ACTION_INSPECT: self._plan_inspect,
            Log.ACTION_REQUEST_APPROVAL: self._plan_request_approval,
            Log.ACTION_APPROVE: self._plan_approve,
            Log.ACTION_REJECT: self._plan_reject,
            Log.ACTION_COMPLETE: self._plan_complete,
            Log.ACTION_RETURN: self._plan_return,
        }
        # Guards that outrank the edge check.
        self._guards: Dict[str, Callable[[WI], None]] = {
            Log.ACTION_REQUEST_APPROVAL: self._guard_no_duplicate_request,
            Log.ACTION_COMPLETE: self._guard_not_awaiting_decision,
        }

    # ---------- Reads ---------- #

    def get(self, instance_id: int) -> WI:
        wf = self.session.get(WI, instance_id)
        if wf is None:
            raise NotFound(f'Workflow {instance_id} not found')
        return wf

    def logs(self, instance_id: int) -> List[Log]:
        self.get(instance_id)
        q = select(Log).where(Log.workflow_id == instance_id).order_by(Log.performed_at.asc(), Log.sequence.asc())
        return list(self.session.execute(q).scalars())

    def status_counts(self, center_branch_id: Optional[int] = None, branch_ids: Optional[List[int]] = None) -> Dict[str, int]:
        """Open machines per status (center board); zero-filled in canonical order."""
        q = select(WI.status, func.count(WI.id)).where(WI.status.in_(WI.OPEN_STATUSES))
        if center_branch_id is not None:
            q = q.where(WI.center_branch_id == center_branch_id)
        if branch_ids:
            q = q.where((WI.center_branch_id.in_(branch_ids)) | (WI.origin_branch_id.in_(branch_ids)))
        counts = {status: 0 for status in WI.OPEN_STATUSES}
        for status, count in self.session.execute(q.group_by(WI.status)).all():
            counts[status] = int(count)
        return counts

    @staticmethod
    def allowed_actions(status: str) -> List[str]:
        return TRANSITIONS.actions_from(status)

    # ---------- Writes ---------- #

    def create(
        self,
        machine_serial: str,
        origin_branch_id: int,
        center_branch_id: int,
        actor: Actor,
        customer_id: Optional[str] = None,
        customer_name: Optional[str] = None,
        technician_id: Optional[int] = None,
        technician_name: Optional[str] = None,
    ) -> WI:
        serial = optional_text(machine_serial, 'machine_serial', max_len=64)
        if not serial:
            raise ValidationError('machine_serial required', {'field': 'machine_serial'})
        now = self.clock()
        wf = WI(
            machine_serial=serial,
            status=WI.STATUS_RECEIVED_AT_CENTER,
            origin_branch_id=require_int(origin_branch_id, 'origin_branch_id'),
            center_branch_id=require_int(center_branch_id, 'center_branch_id'),
            customer_id=optional_text(customer_id, 'customer_id', max_len=64),
            customer_name=optional_text(customer_name, 'customer_name', max_len=128),
            created_by=actor.user_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(wf)
        try:
            self.session.flush()
            if technician_id is not None:
                payload = {'technician_id': technician_id, 'technician_name': technician_name}
                self._apply(wf, Log.ACTION_ASSIGN, payload, actor)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info('workflow %s received serial=%s origin=%s center=%s by=%s',
                    wf.id, wf.machine_serial, wf.origin_branch_id, wf.center_branch_id, actor.user_id)
        return wf

    def transition(
        self,
        instance_id: int,
        action: str,
        payload: Optional[Mapping[str, Any]] = None,
        actor: Optional[Actor] = None,
        expected_version: Optional[int] = None,
    ) -> TransitionResult:
        if actor is None:
            raise ValidationError('actor required')
        wf = self.get(instance_id)
        if expected_version is not None and wf.version != expected_version:
            raise ConcurrentModification(
                f'Workflow {instance_id} changed (version {wf.version}, expected {expected_version})',
                {'current_version': wf.version, 'expected_version': expected_version},
            )
        try:
            result = self._apply(wf, action, dict(payload or {}), actor)
            self.session.commit()
        except StaleDataError:
            self.session.rollback()
            logger.warning('workflow %s concurrent modification on %s by=%s', instance_id, action, actor.user_id)
            raise ConcurrentModification(f'Workflow {instance_id} was modified concurrently; re-read and retry')
        except IntegrityError as e:
            self.session.rollback()
            if 'maintenance_approval_requests' in str(e.orig):
                raise DuplicatePendingApproval(f'Workflow {instance_id} already has a pending approval request')
            raise ConcurrentModification(f'Workflow {instance_id} was modified concurrently; re-read and retry')
        except Exception:
            self.session.rollback()
            raise
        logger.info('workflow %s %s: %s -> %s by=%s', wf.id, action,
                    result.log_entry.from_status, result.log_entry.to_status, actor.user_id)
        return result

    def _apply(self, wf: WI, action: str, payload: Mapping[str, Any], actor: Actor) -> TransitionResult:
        handler = self._handlers.get(action)
        if handler is None:
            raise InvalidTransition(wf.status, str(action), f'Unknown action {action}')
        source = wf.status
        guard = self._guards.get(action)
        if guard is not None:
            guard(wf)
        if not TRANSITIONS.can(source, action):
            raise InvalidTransition(source, action)
        now = self.clock()
        target, mutate = handler(wf, payload, actor, now)
        TRANSITIONS.assert_edge(source, action, target)
        # Nothing has been written before this line.
        outcome = mutate()
        wf.status = target
        wf.updated_at = now
        entry = self._append_log(wf, action, source, target, outcome.details, actor, now)
        return TransitionResult(wf, entry, outcome.approval_request, outcome.payment)

    def _append_log(self, wf: WI, action: str, source: str, target: str, details: Optional[str], actor: Actor, now: datetime) -> Log:
        last = self.session.execute(
            select(Log.sequence, Log.performed_at)
            .where(Log.workflow_id == wf.id)
            .order_by(Log.sequence.desc())
            .limit(1)
        ).first()
        performed_at = now
        if last is not None and as_utc(last.performed_at) > as_utc(now):
            # Clock went backwards; keep the log ordered by time.
            performed_at = as_utc(last.performed_at)
        entry = Log(
            workflow_id=wf.id,
            sequence=(last.sequence + 1) if last is not None else 1,
            action=action,
            from_status=source,
            to_status=target,
            details=details,
            performed_by=actor.user_id,
            performed_by_name=actor.name,
            performed_at=performed_at,
        )
        self.session.add(entry)
        return entry

    # ---------- Action handlers ---------- #

    def _plan_assign(self, wf: WI, payload, actor: Actor, now: datetime) -> _Plan:
        technician_id = require_int(payload.get('technician_id'), 'technician_id', minimum=1)
        technician_name = optional_text(payload.get('technician_name'), 'technician_name', max_len=128)

        def mutate():
            wf.technician_id = technician_id
            wf.technician_name = technician_name
            wf.assigned_at = now
            return _Outcome(f'Assigned technician {technician_name or technician_id}')
        return WI.STATUS_ASSIGNED, mutate

    def _plan_inspect(self, wf: WI, payload, actor: Actor, now: datetime) -> _Plan:
        notes = optional_text(payload.get('notes'), 'notes')

        def mutate():
            if wf.started_at is None:
                wf.started_at = now
            return _Outcome(notes or 'Inspection started')
        return WI.STATUS_UNDER_INSPECTION, mutate

    def _guard_no_duplicate_request(self, wf: WI) -> None:
        if find_pending(self.session, wf.id) is not None:
            raise DuplicatePendingApproval(
                f'Workflow {wf.id} already has a pending approval request',
                {'workflow_id': wf.id},
            )

    def _guard_not_awaiting_decision(self, wf: WI) -> None:
        if find_pending(self.session, wf.id) is not None:
            raise ApprovalPending(f'Workflow {wf.id} is waiting for branch approval', {'workflow_id': wf.id})

    def _plan_request_approval(self, wf: WI, payload, actor: Actor, now: datetime) -> _Plan:
        parts = parse_parts(payload.get('parts'))
        total = parts_total(parts)
        claimed = payload.get('total_cost_cents')
        if claimed is not None and require_int(claimed, 'total_cost_cents', minimum=0) != total:
            raise ValidationError(
                'total_cost_cents does not match parts',
                {'field': 'total_cost_cents', 'computed': total},
            )
        notes = optional_text(payload.get('notes'), 'notes')
        if total == 0:
            # No paid parts: approval is skipped and the repair may be completed right away.
            def mutate_free():
                return _Outcome('No paid parts; approval skipped')
            return WI.STATUS_IN_PROGRESS, mutate_free

        def mutate():
            request = open_request(self.session, wf, parts, total, actor, notes=notes, now=now)
            return _Outcome(f'Approval requested: {len(parts)} part(s), total {total}', approval_request=request)
        return WI.STATUS_AWAITING_APPROVAL, mutate

    def _pending_for_decision(self, wf: WI, payload, action: str) -> ApprovalRequest:
        pending = find_pending(self.session, wf.id)
        if pending is None:
            raise InvalidTransition(wf.status, action, f'No pending approval request for workflow {wf.id}')
        approval_id = payload.get('approval_id')
        if approval_id is not None and require_int(approval_id, 'approval_id') != pending.id:
            raise AlreadyResolved(f'Approval request {approval_id} is not pending', {'approval_id': approval_id})
        return pending

    def _plan_approve(self, wf: WI, payload, actor: Actor, now: datetime) -> _Plan:
        pending = self._pending_for_decision(wf, payload, Log.ACTION_APPROVE)

        def mutate():
            payment = close_request(self.session, pending, wf, ApprovalRequest.DECISION_APPROVE, actor, now=now)
            return _Outcome(f'Approved {pending.total_cost_cents} by branch', approval_request=pending, payment=payment)
        return WI.STATUS_REPAIR_APPROVED, mutate

    def _plan_reject(self, wf: WI, payload, actor: Actor, now: datetime) -> _Plan:
        pending = self._pending_for_decision(wf, payload, Log.ACTION_REJECT)
        reason = optional_text(payload.get('reason'), 'reason')

        def mutate():
            close_request(self.session, pending, wf, ApprovalRequest.DECISION_REJECT, actor, reason=reason, now=now)
            return _Outcome('Rejected by branch' + (f': {reason}' if reason else ''), approval_request=pending)
        return WI.STATUS_REJECTED, mutate

    def _plan_complete(self, wf: WI, payload, actor: Actor, now: datetime) -> _Plan:
        resolution = validate_choice(payload.get('resolution') or WI.STATUS_REPAIRED, _RESOLUTIONS, 'resolution')
        notes = optional_text(payload.get('notes'), 'notes')

        def mutate():
            wf.resolution = resolution
            wf.completed_at = now
            return _Outcome(f'Completed: {resolution}' + (f' ({notes})' if notes else ''))
        return resolution, mutate

    def _plan_return(self, wf: WI, payload, actor: Actor, now: datetime) -> _Plan:
        notes = optional_text(payload.get('notes'), 'notes')
        if wf.status == WI.STATUS_READY_FOR_RETURN:
            def mutate_returned():
                wf.returned_at = now
                return _Outcome(notes or 'Returned to origin branch')
            return WI.STATUS_RETURNED, mutate_returned

        def mutate():
            return _Outcome(notes or 'Ready for return')
        return WI.STATUS_READY_FOR_RETURN, mutate


__all__ = ['TRANSITIONS', 'TransitionResult', 'WorkflowEngine']
