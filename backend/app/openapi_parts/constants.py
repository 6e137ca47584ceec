"""Centralized constants for the OpenAPI spec builder.

Tests depend on deterministic ordering and content.
"""
from typing import Any, Dict, List, Tuple

# Resource registry: (SchemaName, collection path, id param, service code, sort param component)
RESOURCES: List[Tuple[str, str, str, str, str]] = [
    ("WorkflowInstance", "/workflow", "workflow_id", "MNT", "SortWorkflowParam"),
    ("ApprovalRequest", "/approvals", "approval_id", "APR", "SortApprovalsParam"),
    ("PendingPayment", "/payments", "payment_id", "PAY", "SortPaymentsParam"),
]

# State-changing endpoints below a single resource.
ACTION_REGISTRY: Dict[str, List[Dict[str, Any]]] = {
    "WorkflowInstance": [
        {"action": "transition", "method": "post", "summary": "Apply a workflow action", "permission": None},
    ],
    "ApprovalRequest": [
        {"action": "approve", "method": "post", "summary": "Approve requested parts", "permission": "APR.RESOLVE"},
        {"action": "reject", "method": "post", "summary": "Reject requested parts", "permission": "APR.RESOLVE"},
    ],
    "PendingPayment": [
        {"action": "settle", "method": "put", "summary": "Record payment receipt", "permission": "PAY.SETTLE"},
    ],
}

# Read-only endpoints outside the list/single pattern: path -> (summary, permission)
EXTRA_READS: Dict[str, Tuple[str, str]] = {
    "/workflow/board": ("Open machines per status (kanban)", "MNT.READ"),
    "/workflow/{workflow_id}/logs": ("Transition log of one workflow", "MNT.READ"),
    "/approvals/pending-count": ("Pending approvals per branch", "APR.READ"),
    "/payments/summary": ("Payment totals per status for a period", "RPT.READ"),
}

# Query filters documented per collection.
LIST_FILTERS: Dict[str, List[Tuple[str, str]]] = {
    "/workflow": [
        ("status", "string"), ("technician_id", "integer"), ("mine", "boolean"), ("rejection_flag", "boolean"),
        ("machine_serial", "string"), ("origin_branch_id", "integer"), ("center_branch_id", "integer"),
    ],
    "/approvals": [("status", "string"), ("branch_id", "integer")],
    "/payments": [("status", "string"), ("branch_id", "integer"), ("center_branch_id", "integer")],
}

SORT_DETAILS = {
    "SortWorkflowParam": "Multi-field sort (id,status,machine_serial,technician_id,created_at,updated_at). Prefix - for desc",
    "SortApprovalsParam": "Multi-field sort (id,status,total_cost_cents,created_at,updated_at). Prefix - for desc",
    "SortPaymentsParam": "Multi-field sort (id,status,amount_cents,created_at,paid_at). Prefix - for desc",
}

__all__ = [
    "RESOURCES",
    "ACTION_REGISTRY",
    "EXTRA_READS",
    "LIST_FILTERS",
    "SORT_DETAILS",
]
