from __future__ import annotations
from typing import Any, Dict, Optional
from flask_jwt_extended import get_jwt_identity, get_jwt
from opsgate import get_db
from opsgate.models.audit import AuditLog


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[str] = None,
              meta: Optional[Dict[str, Any]] = None, ctx=None):
    """Add an administrative audit row to the current DB session.

    Parameters:
      action: short action code e.g. PCS.GRANT, PCS.REPLACE, USER.ROLE.SET
      entity: optional entity name (User, PermissionEntry, ...)
      entity_id: optional primary key string
      meta: additional JSON-safe dictionary (will be shallow copied)
      ctx: explicit SessionContext; when omitted the actor comes from the request JWT
    """
    session = get_db()
    if ctx is not None:
        actor, role = ctx.user_id, ctx.role.value
    else:
        actor, role = None, None
        try:
            ident = get_jwt_identity()
            actor = int(ident) if ident is not None else None
            role = (get_jwt() or {}).get('role')
        except RuntimeError:
            pass  # no JWT context (scripts, tests without auth)
    log = AuditLog(
        actor_user_id=actor or 0,
        actor_role=role,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta=dict(meta or {}),
    )
    session.add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log
