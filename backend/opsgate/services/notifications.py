from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, func

from opsgate.constants.roles import Role, STATUS_ACTIVE
from opsgate.errors import NotFound
from opsgate.models.authz import RoleRecord
from opsgate.models.notification import Notification


def user_ids_with_role(session, role: Role) -> List[int]:
    stmt = select(RoleRecord.user_id).where(RoleRecord.role == role.value, RoleRecord.status == STATUS_ACTIVE)
    return list(session.execute(stmt).scalars())


def notify(session, recipient_ids: Iterable[int], type_: str, message: str,
           request_id: Optional[int] = None, data: Optional[Dict[str, Any]] = None) -> List[Notification]:
    """Add one notification per distinct recipient to the session (no commit)."""
    out = []
    for rid in sorted(set(recipient_ids)):
        n = Notification(recipient_id=rid, type=type_, message=message, request_id=request_id, data=dict(data or {}))
        session.add(n)
        out.append(n)
    return out


def notify_roles(session, roles: Iterable[Role], type_: str, message: str, **kwargs) -> List[Notification]:
    recipients = []
    for role in roles:
        recipients.extend(user_ids_with_role(session, role))
    return notify(session, recipients, type_, message, **kwargs)


def list_for(session, user_id: int, unread_only: bool = False, limit: int = 50, offset: int = 0) -> Tuple[List[Notification], int]:
    stmt = select(Notification).where(Notification.recipient_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.status == Notification.STATUS_UNREAD)
    total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = session.execute(
        stmt.order_by(Notification.id.desc()).offset(offset).limit(limit)
    ).scalars().all()
    return rows, total


def mark_read(session, user_id: int, notification_id: int) -> Notification:
    n = session.get(Notification, notification_id)
    if n is None or n.recipient_id != user_id:
        raise NotFound('notification not found')
    if n.status != Notification.STATUS_READ:
        n.status = Notification.STATUS_READ
        n.read_at = datetime.now(timezone.utc)
        session.commit()
    return n


__all__ = ['user_ids_with_role', 'notify', 'notify_roles', 'list_for', 'mark_read']
