from __future__ import annotations
"""Identity & role resolution.

resolve() never returns "no role": a directory miss or a directory failure
falls back to the configured fixture table, and from there to the
minimal-privilege default role. This favours availability over strict
fail-closed behaviour; IDENTITY_FAIL_CLOSED switches fallback records to the
'restricted' status, which the evaluator limits to the landing page.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Any, Mapping, FrozenSet

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from opsgate import get_db
from opsgate.constants.roles import Role, DEFAULT_DEPARTMENTS, STATUS_ACTIVE, STATUS_RESTRICTED
from opsgate.errors import AuthResolutionFailure
from opsgate.models.authz import RoleRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    id: int
    email: str
    display_name: str = ''

    @property
    def fallback_name(self) -> str:
        if self.display_name:
            return self.display_name
        if self.email and '@' in self.email:
            return self.email.split('@')[0]
        return 'User'


@dataclass(frozen=True)
class SessionContext:
    """Explicit per-session identity threaded into evaluator and engine calls."""
    user_id: int
    email: str
    name: str
    role: Role
    department: str
    status: str = STATUS_ACTIVE

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_restricted(self) -> bool:
        return self.status == STATUS_RESTRICTED

    @classmethod
    def from_record(cls, principal: Principal, record: RoleRecord) -> 'SessionContext':
        return cls(
            user_id=principal.id,
            email=principal.email,
            name=record.name,
            role=Role.parse(record.role),
            department=record.department,
            status=record.status,
        )

    @classmethod
    def from_claims(cls, identity, claims: Mapping[str, Any]) -> 'SessionContext':
        return cls(
            user_id=int(identity),
            email=claims.get('email', ''),
            name=claims.get('name', ''),
            role=Role.parse(claims['role']),
            department=claims.get('department', ''),
            status=claims.get('status', STATUS_ACTIVE),
        )

    def claims(self) -> Dict[str, Any]:
        return {
            'email': self.email,
            'name': self.name,
            'role': self.role.value,
            'department': self.department,
            'status': self.status,
        }


@dataclass(frozen=True)
class FallbackEntry:
    role: Role
    department: str
    name: Optional[str] = None
    principals: FrozenSet[str] = field(default_factory=frozenset)


class FallbackTable:
    """Deterministic role table keyed by role identifier.

    Fixture shape:
        {"roles": {"WarehouseStaff": {"department": "...", "name": "...",
                                       "principals": ["someone@example.com", "17"]}}}
    Principals are matched by lower-cased email or by id.
    """

    def __init__(self, entries: Optional[Dict[Role, FallbackEntry]] = None):
        self.entries = dict(entries or {})
        self._index: Dict[str, FallbackEntry] = {}
        for entry in self.entries.values():
            for ident in entry.principals:
                self._index[ident.strip().lower()] = entry

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> 'FallbackTable':
        entries: Dict[Role, FallbackEntry] = {}
        for raw_role, conf in (data.get('roles') or {}).items():
            role = Role.parse(raw_role)
            entries[role] = FallbackEntry(
                role=role,
                department=conf.get('department') or DEFAULT_DEPARTMENTS[role],
                name=conf.get('name'),
                principals=frozenset(str(p) for p in conf.get('principals') or []),
            )
        return cls(entries)

    @classmethod
    def from_file(cls, path: Optional[str]) -> 'FallbackTable':
        if not path or not os.path.exists(path):
            logger.warning('identity fallback file not found (%s); only the default role applies', path)
            return cls()
        with open(path, 'r', encoding='utf-8') as fh:
            return cls.from_mapping(json.load(fh))

    def match(self, principal: Principal) -> Optional[FallbackEntry]:
        for ident in (principal.email, str(principal.id)):
            if ident and ident.strip().lower() in self._index:
                return self._index[ident.strip().lower()]
        return None


class IdentityResolver:
    def __init__(self, session=None, fallback: Optional[FallbackTable] = None,
                 default_role: Role = Role.DATA_ENTRY, fail_closed: bool = False, store=None):
        self.session = session or get_db()
        self.fallback = fallback or FallbackTable()
        self.default_role = Role.parse(default_role)
        self.fail_closed = fail_closed
        self._store = store

    @classmethod
    def from_config(cls, config: Mapping[str, Any], session=None, store=None) -> 'IdentityResolver':
        return cls(
            session=session,
            fallback=FallbackTable.from_file(config.get('IDENTITY_FALLBACK_FILE')),
            default_role=config.get('IDENTITY_DEFAULT_ROLE', Role.DATA_ENTRY.value),
            fail_closed=bool(config.get('IDENTITY_FAIL_CLOSED', False)),
            store=store,
        )

    @property
    def store(self):
        if self._store is None:
            from opsgate.services.pcs import PermissionStore
            self._store = PermissionStore(session=self.session)
        return self._store

    def resolve(self, principal: Principal) -> RoleRecord:
        try:
            record = self._lookup(principal.id)
        except SQLAlchemyError as exc:
            self.session.rollback()
            failure = AuthResolutionFailure(principal.id, exc)
            logger.warning('%s; using fallback role mapping', failure)
            record = self._fallback_record(principal, restricted=self.fail_closed)
        else:
            if record is None:
                record = self._create(principal)
        self._initialize_permissions(principal, record)
        return record

    def _lookup(self, user_id: int) -> Optional[RoleRecord]:
        stmt = select(RoleRecord).where(RoleRecord.user_id == user_id).execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def _fallback_record(self, principal: Principal, restricted: bool = False) -> RoleRecord:
        entry = self.fallback.match(principal)
        if entry is None:
            logger.warning('no fallback entry for principal %s; assigning %s', principal.id, self.default_role.value)
            role, department, name = self.default_role, DEFAULT_DEPARTMENTS[self.default_role], None
        else:
            role, department, name = entry.role, entry.department, entry.name
        return RoleRecord(
            user_id=principal.id,
            role=role.value,
            department=department,
            status=STATUS_RESTRICTED if restricted else STATUS_ACTIVE,
            name=name or principal.fallback_name,
        )

    def _create(self, principal: Principal) -> RoleRecord:
        record = self._fallback_record(principal)
        self.session.add(record)
        try:
            self.session.commit()
        except IntegrityError:
            # another session created the record first
            self.session.rollback()
            winner = self._lookup(principal.id)
            if winner is not None:
                return winner
            logger.warning('could not persist role record for principal %s; using it unsaved', principal.id)
            return record
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.warning('%s; using fallback role mapping', AuthResolutionFailure(principal.id, exc))
            return self._fallback_record(principal, restricted=self.fail_closed)
        logger.info('created role record for principal %s as %s', principal.id, record.role)
        return record

    def _initialize_permissions(self, principal: Principal, record: RoleRecord):
        if record.role == Role.ADMIN.value:
            return
        try:
            self.store.ensure_entry(principal.id, record.role, actor='system')
        except Exception as exc:
            self.session.rollback()
            logger.warning('failed to initialize PCS permissions for %s: %s', principal.id, exc)


__all__ = ['Principal', 'SessionContext', 'FallbackEntry', 'FallbackTable', 'IdentityResolver']
