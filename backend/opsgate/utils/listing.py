from __future__ import annotations
from typing import Optional, Tuple
from flask import request, abort, make_response
from opsgate.config.pagination import normalize_pagination


def pagination_args() -> Tuple[int, int]:
    try:
        return normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))


def build_list_payload(rows: list, total: int, limit: int, offset: int):
    return {
        'data': rows,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }


def version_etag(scope: str, version: int) -> str:
    return f'{scope}-v{version}'


def _header_token(name: str) -> Optional[str]:
    raw = request.headers.get(name)
    if not raw:
        return None
    raw = raw.strip()
    if raw.startswith('W/'):
        raw = raw[2:]
    return raw.strip('"')


def if_none_match() -> Optional[str]:
    return _header_token('If-None-Match')


def if_match_version() -> Optional[int]:
    """Integer version from If-Match ("3", "\\"3\\"", "request-v3"), or None when absent."""
    token = _header_token('If-Match')
    if token is None or token == '*':
        return None
    digits = token.rsplit('-v', 1)[-1]
    try:
        return int(digits)
    except ValueError:
        abort(400, description='If-Match must carry a version number')


def not_modified(etag_value: str):
    resp = make_response('', 304)
    resp.headers['ETag'] = f'"{etag_value}"'
    return resp
