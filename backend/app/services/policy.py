from __future__ import annotations
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Set, Tuple
from flask import abort
from flask_jwt_extended import get_jwt, get_jwt_identity
from sqlalchemy import or_


@dataclass(frozen=True)
class Actor:
    """Authenticated caller passed explicitly into every service call."""
    user_id: int
    name: Optional[str] = None
    branch_ids: Tuple[int, ...] = ()
    perms: FrozenSet[str] = field(default_factory=frozenset)


def current_permissions() -> Set[str]:
    claims = get_jwt()
    return set(claims.get('perms', []))


def has_permissions(*codes: str) -> bool:
    perms = current_permissions()
    return all(c in perms for c in codes)


def current_branch_ids():
    claims = get_jwt()
    return [int(b) for b in (claims.get('branch_ids') or [])]


def current_actor() -> Actor:
    claims = get_jwt()
    return Actor(
        user_id=int(get_jwt_identity()),
        name=claims.get('name'),
        branch_ids=tuple(current_branch_ids()),
        perms=frozenset(claims.get('perms', [])),
    )


def filter_query_by_branches(query, branch_columns, branch_ids):
    """Return query filtered to rows where any of the given branch columns is in scope."""
    if not branch_ids:
        return query
    return query.filter(or_(*[col.in_(branch_ids) for col in branch_columns]))


def assert_branch_access(*branch_ids: Optional[int]):
    """403 unless the caller's branch scope covers at least one of branch_ids."""
    scope = current_branch_ids()
    if not scope:
        return  # No scoping
    if not any(b in scope for b in branch_ids if b is not None):
        abort(403, description='Branch access denied')


__all__ = [
    'Actor', 'current_permissions', 'has_permissions', 'current_branch_ids', 'current_actor',
    'filter_query_by_branches', 'assert_branch_access',
]
