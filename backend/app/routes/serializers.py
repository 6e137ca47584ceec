from __future__ import annotations
from typing import Optional
from app.models.workflow import WorkflowInstance, TransitionLogEntry
from app.models.approval import ApprovalRequest
from app.models.payment import PendingPayment
from app.utils.clock import isoformat_z


def workflow_json(wf: WorkflowInstance, allowed_actions: Optional[list] = None):
    body = {
        'id': wf.id,
        'machine_serial': wf.machine_serial,
        'status': wf.status,
        'origin_branch_id': wf.origin_branch_id,
        'center_branch_id': wf.center_branch_id,
        'technician_id': wf.technician_id,
        'technician_name': wf.technician_name,
        'customer_id': wf.customer_id,
        'customer_name': wf.customer_name,
        'resolution': wf.resolution,
        'total_cost_cents': wf.total_cost_cents,
        'rejection_flag': bool(wf.rejection_flag),
        'created_by': wf.created_by,
        'assigned_at': isoformat_z(wf.assigned_at),
        'started_at': isoformat_z(wf.started_at),
        'completed_at': isoformat_z(wf.completed_at),
        'returned_at': isoformat_z(wf.returned_at),
        'created_at': isoformat_z(wf.created_at),
        'updated_at': isoformat_z(wf.updated_at),
        'version': wf.version,
    }
    if allowed_actions is not None:
        body['allowed_actions'] = allowed_actions
    return body


def log_json(entry: TransitionLogEntry):
    return {
        'id': entry.id,
        'workflow_id': entry.workflow_id,
        'sequence': entry.sequence,
        'action': entry.action,
        'from_status': entry.from_status,
        'to_status': entry.to_status,
        'details': entry.details,
        'performed_by': entry.performed_by,
        'performed_by_name': entry.performed_by_name,
        'performed_at': isoformat_z(entry.performed_at),
    }


def approval_json(req: ApprovalRequest):
    return {
        'id': req.id,
        'assignment_id': req.workflow_id,
        'machine_serial': req.machine_serial,
        'origin_branch_id': req.origin_branch_id,
        'center_branch_id': req.center_branch_id,
        'requested_parts': [
            {
                'name': p.name,
                'quantity': p.quantity,
                'unit_cost_cents': p.unit_cost_cents,
                'line_total_cents': p.line_total_cents,
            }
            for p in req.parts
        ],
        'total_cost_cents': req.total_cost_cents,
        'notes': req.notes,
        'status': req.status,
        'rejection_reason': req.rejection_reason,
        'requested_by': req.requested_by,
        'responded_by': req.responded_by,
        'responded_by_name': req.responded_by_name,
        'responded_at': isoformat_z(req.responded_at),
        'created_at': isoformat_z(req.created_at),
        'updated_at': isoformat_z(req.updated_at),
    }


def payment_json(p: PendingPayment):
    return {
        'id': p.id,
        'assignment_id': p.workflow_id,
        'approval_request_id': p.approval_request_id,
        'machine_serial': p.machine_serial,
        'customer_id': p.customer_id,
        'debtor_branch_id': p.debtor_branch_id,
        'creditor_branch_id': p.creditor_branch_id,
        'amount_cents': p.amount_cents,
        'parts_details': list(p.parts_details or []),
        'status': p.status,
        'receipt_number': p.receipt_number,
        'payment_place': p.payment_place,
        'paid_by': p.paid_by,
        'paid_by_name': p.paid_by_name,
        'paid_at': isoformat_z(p.paid_at),
        'created_at': isoformat_z(p.created_at),
        'updated_at': isoformat_z(p.updated_at),
    }


__all__ = ['workflow_json', 'log_json', 'approval_json', 'payment_json']
