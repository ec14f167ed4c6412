from __future__ import annotations
"""Permission Control System store.

One PermissionEntry row per principal holds page overrides keyed by the
collision-free encoding from utils.page_keys. Every committed change is
published to the hub as a full immutable snapshot under "pcs/<user_id>".

Writes are optimistic: read version, compare-and-set UPDATE guarded by that
version, retry a few times on conflict. Creation relies on the primary key so
that concurrent first calls produce exactly one row.
"""
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional

from sqlalchemy import select, update, insert
from sqlalchemy.exc import IntegrityError

from opsgate import get_db
from opsgate.constants.pages import CATALOG_PATHS, LANDING_PAGE, default_pages_for
from opsgate.constants.roles import Role
from opsgate.errors import ConcurrentUpdate, NotFound, ValidationError
from opsgate.models.authz import PermissionEntry, RoleRecord, User
from opsgate.services.realtime import hub as default_hub, Subscription
from opsgate.utils.page_keys import encode_page_key, decode_page_key, normalize_page_path

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3
NOTE_DEFAULTS = 'Role-based default permissions - Admin can modify via PCS'


def channel(user_id: int) -> str:
    return f'pcs/{user_id}'


@dataclass(frozen=True)
class PermissionSnapshot:
    """Immutable view of a PCS entry. pages maps page paths (decoded) to flags."""
    user_id: int
    role: Optional[str]
    version: int
    pages: Mapping[str, bool] = field(default_factory=lambda: MappingProxyType({}))
    note: Optional[str] = None
    updated_by: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: PermissionEntry) -> 'PermissionSnapshot':
        pages = {decode_page_key(k): bool(v) for k, v in (entry.pages or {}).items()}
        pages[LANDING_PAGE] = True
        return cls(
            user_id=entry.user_id,
            role=entry.role,
            version=entry.version,
            pages=MappingProxyType(pages),
            note=entry.note,
            updated_by=entry.updated_by,
        )

    def to_json(self):
        return {
            'user_id': self.user_id,
            'role': self.role,
            'version': self.version,
            'pages': dict(sorted(self.pages.items())),
            'note': self.note,
            'updated_by': self.updated_by,
        }


def _encode_pages(pages: Mapping[str, bool]) -> Dict[str, bool]:
    out = {encode_page_key(p): bool(v) for p, v in pages.items()}
    out[encode_page_key(LANDING_PAGE)] = True
    return out


def _template_pages(role) -> Dict[str, bool]:
    try:
        role = Role.parse(role)
    except ValueError:
        return {LANDING_PAGE: True}
    return {p: True for p in default_pages_for(role)}


def effective_pages(role, stored: Mapping[str, bool]) -> FrozenSet[str]:
    """Role template with stored overrides applied on top. Admin sees the whole catalog."""
    if role == Role.ADMIN.value or role == Role.ADMIN:
        return frozenset(CATALOG_PATHS)
    granted = set(_template_pages(role))
    for path, flag in stored.items():
        if flag:
            granted.add(path)
        else:
            granted.discard(path)
    granted.add(LANDING_PAGE)
    return frozenset(granted)


class PermissionStore:
    def __init__(self, session=None, hub=None):
        self.session = session or get_db()
        self.hub = hub or default_hub

    # --- reads ---
    def _load(self, user_id: int) -> Optional[PermissionEntry]:
        stmt = select(PermissionEntry).where(PermissionEntry.user_id == user_id).execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def get(self, user_id: int) -> Optional[PermissionSnapshot]:
        entry = self._load(user_id)
        return PermissionSnapshot.from_entry(entry) if entry is not None else None

    def subscribe(self, user_id: int) -> Subscription:
        return self.hub.subscribe(channel(user_id))

    def _publish(self, snapshot: PermissionSnapshot):
        self.hub.publish(channel(snapshot.user_id), snapshot, version=snapshot.version)

    # --- idempotent initialization ---
    def ensure_entry(self, user_id: int, role, actor: str = 'system') -> PermissionSnapshot:
        """Return the principal's PCS entry, creating it from the role template if absent."""
        entry = self._load(user_id)
        if entry is not None:
            return PermissionSnapshot.from_entry(entry)
        return self._insert_or_fetch(user_id, role, actor)

    def _insert_or_fetch(self, user_id: int, role, actor: str) -> PermissionSnapshot:
        role_value = role.value if isinstance(role, Role) else (str(role) if role is not None else None)
        stmt = insert(PermissionEntry).values(
            user_id=user_id,
            pages=_encode_pages(_template_pages(role_value)),
            role=role_value,
            version=1,
            note=NOTE_DEFAULTS,
            initialized_by=str(actor),
            updated_by=str(actor),
        )
        try:
            self.session.execute(stmt)
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            winner = self._load(user_id)
            if winner is None:
                raise
            logger.info('PCS entry for %s created concurrently; using existing record', user_id)
            return PermissionSnapshot.from_entry(winner)
        snapshot = self.get(user_id)
        logger.info('initialized PCS entry for %s from %s template', user_id, role_value)
        self._publish(snapshot)
        return snapshot

    # --- administrative writes ---
    def _write(self, user_id: int, mutate: Callable[[Dict[str, bool], PermissionEntry], Dict[str, bool]],
               actor: str, note: Optional[str] = None, role: Optional[str] = None) -> PermissionSnapshot:
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            entry = self._load(user_id)
            if entry is None:
                raise NotFound(f'no PCS entry for user {user_id}')
            current = {decode_page_key(k): bool(v) for k, v in (entry.pages or {}).items()}
            new_pages = mutate(current, entry)
            values = {
                'pages': _encode_pages(new_pages),
                'version': entry.version + 1,
                'updated_by': str(actor),
            }
            if note is not None:
                values['note'] = note
            if role is not None:
                values['role'] = role
            result = self.session.execute(
                update(PermissionEntry)
                .where(PermissionEntry.user_id == user_id, PermissionEntry.version == entry.version)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                self.session.commit()
                snapshot = self.get(user_id)
                self._publish(snapshot)
                return snapshot
            self.session.rollback()
            logger.info('PCS write for %s lost version race (attempt %s)', user_id, attempt)
        raise ConcurrentUpdate(f'PCS entry for user {user_id} is being modified concurrently')

    def grant(self, user_id: int, path: str, actor: str) -> PermissionSnapshot:
        path = normalize_page_path(path)

        def mutate(pages, _entry):
            pages[path] = True
            return pages
        return self._write(user_id, mutate, actor)

    def revoke(self, user_id: int, path: str, actor: str) -> PermissionSnapshot:
        path = normalize_page_path(path)
        if path == LANDING_PAGE:
            raise ValidationError('the landing page cannot be revoked')

        def mutate(pages, _entry):
            # explicit False so the role template cannot re-grant it
            pages[path] = False
            return pages
        return self._write(user_id, mutate, actor)

    def replace(self, user_id: int, pages: Mapping[str, bool], actor: str) -> PermissionSnapshot:
        """Replace the whole map. Template pages left out are stored as explicit denials."""
        requested = {normalize_page_path(p): bool(v) for p, v in (pages or {}).items()}

        def mutate(_current, entry):
            out = {p: False for p in _template_pages(entry.role)}
            out.update(requested)
            return out
        return self._write(user_id, mutate, actor, note='Updated via PCS')

    def reset_to_defaults(self, user_id: int, actor: str, role=None) -> PermissionSnapshot:
        """Drop every override. With role, the entry is re-templated for that role."""
        role_value = Role.parse(role).value if role is not None else None

        def mutate(_current, entry):
            return _template_pages(role_value or entry.role)
        return self._write(user_id, mutate, actor, note='Reset to role defaults', role=role_value)

    def bulk_update(self, updates: Iterable[Mapping], actor: str) -> List[PermissionSnapshot]:
        """Apply several replace() calls; each entry is committed on its own."""
        out = []
        for item in updates:
            try:
                user_id = int(item['user_id'])
            except (KeyError, TypeError, ValueError):
                raise ValidationError('each update needs an integer user_id')
            out.append(self.replace(user_id, item.get('pages') or {}, actor))
        return out

    def matrix(self) -> List[dict]:
        """Every user with role record and stored PCS map (admin matrix view)."""
        rows = self.session.execute(
            select(User, RoleRecord, PermissionEntry)
            .outerjoin(RoleRecord, RoleRecord.user_id == User.id)
            .outerjoin(PermissionEntry, PermissionEntry.user_id == User.id)
            .order_by(User.id)
        ).all()
        out = []
        for user, record, entry in rows:
            snap = PermissionSnapshot.from_entry(entry) if entry is not None else None
            out.append({
                'user_id': user.id,
                'email': user.email,
                'name': user.name,
                'role': record.role if record else None,
                'department': record.department if record else None,
                'status': record.status if record else None,
                'version': snap.version if snap else None,
                'pages': dict(sorted(snap.pages.items())) if snap else {},
                'effective': sorted(effective_pages(record.role if record else None, snap.pages if snap else {})),
            })
        return out


__all__ = ['PermissionSnapshot', 'PermissionStore', 'channel', 'effective_pages']
