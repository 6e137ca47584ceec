from __future__ import annotations
"""Audit logging decorator for mutating route handlers.

Usage examples:

@audit_log('MNT.WORKFLOW.CREATE', entity='WorkflowInstance', entity_id_key='id', meta_keys=['machine_serial'])
def create_workflow():
    ... return {'id': wf.id, 'machine_serial': wf.machine_serial}, 201

@audit_log('PAY.SETTLE', entity='PendingPayment', entity_id_key='id', diff_keys=['status'],
           pre_fetch=lambda a, kw: _prefetch_payment(kw.get('payment_id')))
def settle_payment(payment_id): ...

Parameters:
  action: required audit action code
  entity: optional entity label
  entity_id_key: key in the returned JSON object whose value becomes entity_id.
  entity_id_arg: path parameter to use for entity_id when entity_id_key is absent.
  meta_keys: keys projected from the returned JSON into meta.
  meta_builder: callable (data, rv, args, kwargs) -> meta dict; overrides meta_keys.
  diff_keys / pre_fetch: snapshot taken before the handler runs; changed keys land in meta['changes'].

Only successful handler returns are audited. Domain errors propagate before this
point, so a rejected transition never produces an audit row.
"""

import logging
from functools import wraps
from typing import Any, Callable, Dict, Iterable, Optional

from app.services.audit import record_audit
from app.services.policy import current_actor
from app import get_db

logger = logging.getLogger(__name__)


def _extract_payload(rv: Any):
    """Return the JSON-able dict from a dict / (dict, status) / (dict, status, headers) return."""
    if isinstance(rv, tuple) and rv:
        return rv[0]
    return rv


def _diff(before: Dict[str, Any], after: Dict[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    changes = {}
    for k in keys:
        if k in before and k in after and before.get(k) != after.get(k):
            changes[k] = {'before': before.get(k), 'after': after.get(k)}
    return changes


def _entity_id(data: Dict[str, Any], kwargs: dict, key: Optional[str], arg: Optional[str]):
    if key and key in data:
        return data.get(key)
    if arg and arg in kwargs:
        return kwargs.get(arg)
    return None


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    keys = list(meta_keys or ())

    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before = pre_fetch(args, kwargs) if (diff_keys and pre_fetch) else None
            rv = fn(*args, **kwargs)
            data = _extract_payload(rv)
            if not isinstance(data, dict):
                data = {}
            entity_id = _entity_id(data, kwargs, entity_id_key, entity_id_arg)
            if meta_builder:
                meta = meta_builder(data, rv, args, kwargs)
            else:
                meta = {k: data[k] for k in keys if k in data}
            changes = _diff(before, data, diff_keys) if isinstance(before, dict) else {}
            if changes:
                meta['changes'] = changes
            session = get_db()
            try:
                record_audit(session, current_actor(), action, entity, entity_id, meta)
                session.commit()
            except Exception:
                # the handler's own change is already committed
                session.rollback()
                logger.exception('audit write failed action=%s entity=%s id=%s', action, entity, entity_id)
            return rv
        return wrapper
    return outer
