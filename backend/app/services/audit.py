from __future__ import annotations
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session
from app.models.audit import AuditLog
from app.services.policy import Actor


def record_audit(
    session: Session,
    actor: Actor,
    action: str,
    entity: Optional[str] = None,
    entity_id: Optional[Any] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Stage an audit row for ``actor``; the caller commits.

    action: dotted code, e.g. MNT.WORKFLOW.TRANSITION, APR.REQUEST.APPROVE, PAY.SETTLE
    scope_snapshot keeps the branch scope the actor held at the time, so a later
    change of the actor's branches does not rewrite history.
    """
    log = AuditLog(
        actor_user_id=actor.user_id,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        scope_snapshot={'branch_ids': list(actor.branch_ids), 'name': actor.name},
        meta=dict(meta or {}),
    )
    session.add(log)
    return log


__all__ = ['record_audit']
