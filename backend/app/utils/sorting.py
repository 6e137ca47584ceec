from __future__ import annotations
from typing import List, Optional, Tuple
from app.errors import ValidationError


def parse_sort(sort_expr: Optional[str], allowed) -> List[Tuple[str, bool]]:
    """``'-created_at,id'`` -> ``[('created_at', True), ('id', False)]``; unknown keys are a ValidationError."""
    keys: List[Tuple[str, bool]] = []
    for token in (t.strip() for t in (sort_expr or '').split(',')):
        if not token:
            continue
        desc = token.startswith('-')
        key = token.lstrip('-')
        if key not in allowed:
            raise ValidationError(f'Invalid sort field {key}', {'field': 'sort', 'allowed': sorted(allowed)})
        keys.append((key, desc))
    return keys


def apply_multi_sort(query, sort_expr: Optional[str], allowed: dict, tie_breaker, default: Optional[str] = None):
    """Order ``query`` by a comma separated sort expression.

    allowed maps public field names to columns; ``default`` applies when the
    caller sent nothing. The tie breaker keeps pages stable.
    """
    keys = parse_sort(sort_expr or default, allowed)
    clauses = [allowed[key].desc() if desc else allowed[key].asc() for key, desc in keys]
    clauses.append(tie_breaker.asc())
    return query.order_by(*clauses)
