from __future__ import annotations
"""Audit logging decorator for administrative route handlers.

Usage examples:

@audit_log('PCS.GRANT', entity='PermissionEntry', entity_id_arg='user_id', meta_keys=['page'])
def grant_page(user_id): ...

@audit_log('PCS.BULK', entity='PermissionEntry',
           meta_builder=lambda data, rv, args, kwargs: {'count': len(data.get('data', []))})
def bulk_update(): ...

Parameters:
  action: required audit action code (e.g. PCS.REPLACE)
  entity: optional entity label (User, PermissionEntry)
  entity_id_key: key in the returned JSON object whose value becomes entity_id.
  entity_id_arg: name of the path parameter to use for entity_id (fallback if entity_id_key absent).
  meta_keys: list of keys to project from returned JSON into meta dict (shallow copy).
  meta_builder: callable returning a meta dict; receives (data, original_return_value, args, kwargs).

Flask view functions return dict, (dict, status) or (dict, status, headers);
the first element is inspected, the view's return value is passed through.
Only successful (2xx) responses are audited.
"""
import logging
from functools import wraps
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from opsgate.services.audit import add_audit
from opsgate import get_db

logger = logging.getLogger(__name__)


def _extract_payload(rv: Any):
    """Return (data, status) where data is the JSON-able dict for inspection."""
    if isinstance(rv, tuple) and rv:
        status = rv[1] if len(rv) > 1 and isinstance(rv[1], int) else 200
        return rv[0], status
    return rv, 200


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            rv = fn(*args, **kwargs)
            data, status = _extract_payload(rv)
            if status >= 300:
                return rv
            if not isinstance(data, dict):
                data = {}
            entity_id = None
            if entity_id_key and entity_id_key in data:
                entity_id = data.get(entity_id_key)
            elif entity_id_arg and entity_id_arg in kwargs:
                entity_id = kwargs.get(entity_id_arg)
            meta = None
            if meta_builder:
                meta = meta_builder(data, rv, args, kwargs)
            elif meta_keys:
                meta = {k: data.get(k) for k in meta_keys if k in data}
            session = get_db()
            add_audit(action, entity, entity_id, meta)
            try:
                session.commit()
            except SQLAlchemyError:
                # the audited change is already committed; do not turn it into an error response
                session.rollback()
                logger.exception('failed to persist audit entry %s', action)
            return rv
        return wrapper
    return outer
