from __future__ import annotations
"""Reusable validation helpers for request payloads.

Boundary parsing happens once here; services receive typed values and never
re-parse free-form JSON.
"""
from typing import Any, Iterable, List, NamedTuple, Optional
from app.errors import ValidationError


class PartLine(NamedTuple):
    name: str
    quantity: int
    unit_cost_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_cost_cents

    def to_dict(self):
        return {'name': self.name, 'quantity': self.quantity, 'unit_cost_cents': self.unit_cost_cents}


def validate_choice(value: Any, allowed: Iterable[str], field_name: str = 'status') -> str:
    """Validate that value is inside allowed.

    Returns the value (to enable inline usage) or raises ValidationError.
    """
    allowed = tuple(allowed)
    if value not in allowed:
        raise ValidationError(f"{field_name} invalid", {'field': field_name, 'allowed': list(allowed)})
    return value


def require_int(value: Any, field_name: str, minimum: Optional[int] = None) -> int:
    # bool is an int subclass; a JSON true is never a valid count or amount
    if isinstance(value, bool):
        raise ValidationError(f'{field_name} must be int', {'field': field_name})
    try:
        out = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field_name} must be int', {'field': field_name})
    if isinstance(value, float) and value != out:
        raise ValidationError(f'{field_name} must be int', {'field': field_name})
    if minimum is not None and out < minimum:
        raise ValidationError(f'{field_name} must be >= {minimum}', {'field': field_name})
    return out


def optional_text(value: Any, field_name: str, max_len: int = 2000) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f'{field_name} must be a string', {'field': field_name})
    value = value.strip()
    if len(value) > max_len:
        raise ValidationError(f'{field_name} too long', {'field': field_name})
    return value or None


def parse_parts(raw: Any) -> List[PartLine]:
    """Parse ``[{name, quantity, unit_cost_cents}, ...]`` preserving order."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError('parts must be a list', {'field': 'parts'})
    parts: List[PartLine] = []
    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(f'parts[{idx}] must be an object', {'field': f'parts[{idx}]'})
        name = optional_text(item.get('name'), f'parts[{idx}].name', max_len=128)
        if not name:
            raise ValidationError(f'parts[{idx}].name required', {'field': f'parts[{idx}].name'})
        quantity = require_int(item.get('quantity'), f'parts[{idx}].quantity', minimum=1)
        unit_cost = require_int(item.get('unit_cost_cents'), f'parts[{idx}].unit_cost_cents', minimum=0)
        parts.append(PartLine(name, quantity, unit_cost))
    return parts


def parts_total(parts: Iterable[PartLine]) -> int:
    return sum(p.line_total_cents for p in parts)


__all__ = ['PartLine', 'validate_choice', 'require_int', 'optional_text', 'parse_parts', 'parts_total']
