from __future__ import annotations
from flask import current_app, has_app_context

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def _limits():
    if has_app_context():
        cfg = current_app.config
        return int(cfg.get('PAGINATION_DEFAULT_LIMIT', DEFAULT_LIMIT)), int(cfg.get('PAGINATION_MAX_LIMIT', MAX_LIMIT))
    return DEFAULT_LIMIT, MAX_LIMIT


def normalize_pagination(limit_raw, offset_raw):
    default_limit, max_limit = _limits()
    try:
        limit = int(limit_raw) if limit_raw is not None else default_limit
        offset = int(offset_raw) if offset_raw is not None else 0
    except ValueError:
        raise ValueError('limit/offset must be int')
    limit = max(1, min(limit, max_limit))
    offset = max(0, offset)
    return limit, offset
