from __future__ import annotations
"""List/detail response helpers with cheap-polling validators.

Every list carries an ETag derived from ids, pagination and the newest
``updated_at``; detail reads carry an ETag derived from id and row version.
``handle_conditional`` answers If-None-Match / If-Modified-Since with 304.
"""
import hashlib
from datetime import datetime, timedelta
from email.utils import format_datetime, parsedate_to_datetime
from typing import Any, Dict, Iterable, Optional, Tuple

from flask import make_response, request
from sqlalchemy.orm import Query

from app.config.pagination import normalize_pagination
from app.errors import ValidationError
from app.utils.clock import as_utc, isoformat_z

# HTTP dates have second resolution
IMS_SLACK = timedelta(seconds=1)


def _second(dt: Optional[datetime]) -> Optional[datetime]:
    return as_utc(dt).replace(microsecond=0) if isinstance(dt, datetime) else None


def apply_pagination(q: Query) -> Tuple[Query, int, int, int]:
    try:
        limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        raise ValidationError(str(e), {'field': 'limit/offset'})
    total = q.count()
    return q.offset(offset).limit(limit), total, limit, offset


def _digest(*parts: Any) -> str:
    return hashlib.sha256('|'.join(str(p) for p in parts).encode()).hexdigest()[:32]


def compute_etag(ids: Iterable[Any], total: int, limit: int, offset: int, latest_ts: Optional[str] = '') -> str:
    return _digest(list(ids), total, limit, offset, latest_ts or '')


def item_etag(entity: str, entity_id: Any, version: Any) -> str:
    return _digest(entity, entity_id, version)


def build_list_payload(rows: list, total: int, limit: int, offset: int) -> Dict[str, Any]:
    page = {'total': total, 'limit': limit, 'offset': offset, 'returned': len(rows)}
    return {'data': rows, 'pagination': page}


def _with_validators(resp, etag: str, last_modified: Optional[datetime]):
    resp.headers['ETag'] = etag
    if last_modified is not None:
        resp.headers['Last-Modified'] = format_datetime(last_modified, usegmt=True)
        resp.headers['X-Last-Modified-ISO'] = isoformat_z(last_modified)
    return resp


def make_cached_list_response(rows: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime] = None):
    last_modified = _second(latest_ts)
    etag = compute_etag([r.get('id') for r in rows], total, limit, offset,
                        isoformat_z(last_modified) if last_modified else '')
    resp = make_response(build_list_payload(rows, total, limit, offset))
    return _with_validators(resp, etag, last_modified), etag


def make_cached_item_response(payload: Dict[str, Any], etag: str, latest_ts: Optional[datetime] = None):
    return _with_validators(make_response(payload), etag, _second(latest_ts))


def _http_or_iso_date(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return as_utc(datetime.fromisoformat(raw.replace('Z', '+00:00')))
    except ValueError:
        pass
    try:
        return as_utc(parsedate_to_datetime(raw))
    except (TypeError, ValueError, IndexError):
        return None


def _etag_matches(header: Optional[str], etag: str) -> bool:
    if not header:
        return False
    for candidate in header.split(','):
        candidate = candidate.strip()
        if candidate == '*':
            return True
        if candidate.startswith('W/'):
            candidate = candidate[2:]
        if candidate.strip('"') == etag:
            return True
    return False


def handle_conditional(etag_value: str, latest_ts: Optional[datetime]):
    """Return a 304 response when the client's copy is current, else None.

    If-None-Match wins when present (a list of tags, weak tags or ``*``);
    If-Modified-Since is only consulted without it.
    """
    last_modified = _second(latest_ts)
    inm = request.headers.get('If-None-Match')
    if inm:
        fresh = _etag_matches(inm, etag_value)
    else:
        since = _http_or_iso_date(request.headers.get('If-Modified-Since'))
        fresh = since is not None and last_modified is not None and last_modified <= _second(since) + IMS_SLACK
    if fresh:
        return _with_validators(make_response('', 304), etag_value, last_modified)
    return None


__all__ = [
    'apply_pagination', 'compute_etag', 'build_list_payload', 'make_cached_list_response',
    'item_etag', 'make_cached_item_response', 'handle_conditional',
]
