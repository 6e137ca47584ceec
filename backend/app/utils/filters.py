from __future__ import annotations
from typing import Any, Dict
from app.errors import ValidationError


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ('1', 'true', 'yes', 'on'):
        return True
    if text in ('0', 'false', 'no', 'off'):
        return False
    raise ValueError(value)


def apply_filters(query, specs: Dict[str, Dict[str, Any]], params: Dict[str, Any]):
    """Generic query-string filter builder.

    specs: { param_name: { 'op': callable(query, value)->query, 'coerce': type/func, 'validate': callable(optional) } }
    Empty values are ignored; a value that fails coercion or validation is a ValidationError.
    """
    for name, meta in specs.items():
        val = params.get(name)
        if val is None or val == '':
            continue
        if 'coerce' in meta:
            try:
                val = meta['coerce'](val)
            except (TypeError, ValueError):
                raise ValidationError(f'{name} invalid', {'field': name})
        if 'validate' in meta and not meta['validate'](val):
            raise ValidationError(f'{name} invalid', {'field': name})
        query = meta['op'](query, val)
    return query
