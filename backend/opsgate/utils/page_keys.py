from __future__ import annotations
"""Page path <-> storage key encoding for PCS entries.

Paths are stored as flat keys: segments joined by '_'. A segment may itself
contain '_' or '%', so both are escaped first ('%' -> '%25', '_' -> '%5F').
After escaping, '_' only ever appears as a separator, which makes the mapping
injective and exactly reversible:

    /warehouse/invoices  -> warehouse_invoices
    /a_b/c               -> a%5Fb_c
    /a/b_c               -> a_b%5Fc
"""
import re
from typing import List

from opsgate.errors import ValidationError

SEPARATOR = '_'
_UNESCAPES = {'%25': '%', '%5F': SEPARATOR}
_ESCAPE_RE = re.compile('%25|%5F')


def normalize_page_path(path: str) -> str:
    """Return canonical form of path or raise ValidationError.

    Canonical: leading '/', no empty segments, no trailing slash.
    """
    if not isinstance(path, str) or not path.strip():
        raise ValidationError('page path required')
    path = path.strip()
    if not path.startswith('/'):
        raise ValidationError(f'page path must start with "/": {path}')
    segments = path.split('/')[1:]
    if path != '/' and any(s == '' for s in segments[:-1]):
        raise ValidationError(f'page path has empty segment: {path}')
    if segments and segments[-1] == '' and len(segments) > 1:
        segments = segments[:-1]
    return '/' + '/'.join(segments)


def _escape(segment: str) -> str:
    return segment.replace('%', '%25').replace(SEPARATOR, '%5F')


def _unescape(segment: str) -> str:
    return _ESCAPE_RE.sub(lambda m: _UNESCAPES[m.group(0)], segment)


def encode_page_key(path: str) -> str:
    path = normalize_page_path(path)
    segments: List[str] = path.split('/')[1:]
    return SEPARATOR.join(_escape(s) for s in segments)


def decode_page_key(key: str) -> str:
    return '/' + '/'.join(_unescape(s) for s in key.split(SEPARATOR))


__all__ = ['normalize_page_path', 'encode_page_key', 'decode_page_key']
