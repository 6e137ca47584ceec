"""Central enum-like definitions to avoid typos in permission/service strings.
Extend cautiously; never rename codes silently. Tokens issued by the
authentication subsystem carry these codes in the ``perms`` claim.
"""
from __future__ import annotations
from typing import List, Dict

SERVICES = ['MNT', 'APR', 'PAY', 'RPT']

SERVICE_ACTIONS = {
    'MNT': ['READ', 'MANAGE', 'INSPECT'],
    'APR': ['READ', 'RESOLVE'],
    'PAY': ['READ', 'SETTLE'],
    'RPT': ['READ'],
}


def build_all_permission_codes() -> List[str]:
    codes: List[str] = []
    for svc, actions in SERVICE_ACTIONS.items():
        for act in actions:
            codes.append(f"{svc}.{act}")
    return codes

ALL_PERMISSION_CODES = build_all_permission_codes()

# Permission needed per workflow transition action, on top of a valid token.
TRANSITION_ACTION_PERMISSIONS: Dict[str, str] = {
    'ASSIGN': 'MNT.MANAGE',
    'INSPECT': 'MNT.INSPECT',
    'REQUEST_APPROVAL': 'MNT.INSPECT',
    'APPROVE': 'APR.RESOLVE',
    'REJECT': 'APR.RESOLVE',
    'COMPLETE': 'MNT.INSPECT',
    'RETURN': 'MNT.MANAGE',
}

ROLE_PRESETS: Dict[str, List[str]] = {
    # Works machines at the center
    'Technician': ['MNT.READ', 'MNT.INSPECT'],
    # Receives, assigns and hands machines back
    'CenterManager': ['MNT.READ', 'MNT.MANAGE', 'MNT.INSPECT', 'APR.READ', 'PAY.READ', 'RPT.READ'],
    # Owns the machine: approves costs and pays for them
    'BranchManager': ['MNT.READ', 'APR.READ', 'APR.RESOLVE', 'PAY.READ', 'PAY.SETTLE', 'RPT.READ'],
    'Accountant': ['PAY.READ', 'PAY.SETTLE', 'RPT.READ'],
    'Owner': ['*'],
}


def expand_preset(role_name: str) -> List[str]:
    """Resolve a preset to concrete codes ('*' means every known code)."""
    codes = ROLE_PRESETS[role_name]
    if '*' in codes:
        return list(ALL_PERMISSION_CODES)
    return list(codes)


__all__ = ['SERVICES', 'SERVICE_ACTIONS', 'ALL_PERMISSION_CODES', 'TRANSITION_ACTION_PERMISSIONS', 'ROLE_PRESETS', 'build_all_permission_codes', 'expand_preset']
