from __future__ import annotations
"""Approval workflow engine.

Material and packing-material requests pass two gates (Head of Operations,
then Main Director); distributor requests pass a single gate that either
approver may decide. Every transition is one DB transaction:

    guarded UPDATE ... WHERE id=? AND status=? AND version=?
    + audit row + side effect (PurchasePreparation, notifications)

A rowcount of 0 means another session moved the request first; the loser
re-reads and gets the error that matches the new state. Approver queues are
published to the hub after every commit as full snapshots, versioned by the
newest audit row id.
"""
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import select, update, func, or_, and_

from opsgate import get_db
from opsgate.constants.roles import Role, APPROVER_ROLES
from opsgate.errors import AlreadyTerminal, ConcurrentUpdate, InvalidTransition, NotFound, PermissionDenied, ValidationError
from opsgate.models.requests import ApprovalRequest, RequestAuditEntry, REQUEST_CLASSES
from opsgate.models.procurement import PurchasePreparation
from opsgate.services import notifications
from opsgate.services.identity import SessionContext
from opsgate.services.realtime import hub as default_hub, Subscription
from opsgate.utils.fsm import Rule, TransitionValidator

logger = logging.getLogger(__name__)

HO = Role.HEAD_OF_OPERATIONS
MD = Role.MAIN_DIRECTOR

ACTION_SUBMIT = 'submit'
ACTION_APPROVE = 'approve'
ACTION_REJECT = 'reject'
DECISIONS = (ACTION_APPROVE, ACTION_REJECT)

EFFECT_NOTIFY_MD = 'notify_md'
EFFECT_PURCHASE_PREPARATION = 'purchase_preparation'

TWO_STAGE = TransitionValidator({
    (ApprovalRequest.STATUS_PENDING_HO, ACTION_APPROVE): Rule(frozenset({HO}), ApprovalRequest.STATUS_FORWARDED_TO_MD, side_effect=EFFECT_NOTIFY_MD),
    (ApprovalRequest.STATUS_PENDING_HO, ACTION_REJECT): Rule(frozenset({HO}), ApprovalRequest.STATUS_REJECTED, requires_reason=True),
    (ApprovalRequest.STATUS_FORWARDED_TO_MD, ACTION_APPROVE): Rule(frozenset({MD}), ApprovalRequest.STATUS_APPROVED, side_effect=EFFECT_PURCHASE_PREPARATION),
    (ApprovalRequest.STATUS_FORWARDED_TO_MD, ACTION_REJECT): Rule(frozenset({MD}), ApprovalRequest.STATUS_REJECTED, requires_reason=True),
}, terminal=ApprovalRequest.TERMINAL_STATUSES, initial=ApprovalRequest.STATUS_PENDING_HO)

SINGLE_STAGE = TransitionValidator({
    (ApprovalRequest.STATUS_PENDING, ACTION_APPROVE): Rule(APPROVER_ROLES, ApprovalRequest.STATUS_APPROVED),
    (ApprovalRequest.STATUS_PENDING, ACTION_REJECT): Rule(APPROVER_ROLES, ApprovalRequest.STATUS_REJECTED, requires_reason=True),
}, terminal=ApprovalRequest.TERMINAL_STATUSES, initial=ApprovalRequest.STATUS_PENDING)

MACHINES: Mapping[str, TransitionValidator] = {
    'material': TWO_STAGE,
    'packing_material': TWO_STAGE,
    'distributor': SINGLE_STAGE,
}

# Page a principal needs to open a request of that domain; None = any signed-in principal
CREATE_PAGES: Mapping[str, Optional[str]] = {
    'material': '/warehouse/raw-materials/request',
    'packing_material': '/warehouse/packing-materials/request',
    'distributor': None,
}

# Roles that see every request; everyone else sees their own
OVERSIGHT_ROLES = frozenset({Role.ADMIN, Role.READ_ONLY_ADMIN, HO, MD})

DOMAIN_LABELS = {
    'material': 'Raw material request',
    'packing_material': 'Packing material request',
    'distributor': 'Distributor request',
}


def queue_channel(role: Role) -> str:
    return f'queue/{Role.parse(role).value}'


@dataclass(frozen=True)
class QueueSnapshot:
    role: str
    version: int
    requests: Tuple[Dict[str, Any], ...]

    def to_json(self):
        return {'role': self.role, 'version': self.version, 'data': list(self.requests)}


def validate_items(items) -> List[Dict[str, Any]]:
    if not isinstance(items, list) or not items:
        raise ValidationError('items must be a non-empty list')
    out = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f'item {idx} must be an object')
        name = item.get('name')
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(f'item {idx}: name required')
        qty = item.get('quantity')
        if isinstance(qty, bool) or not isinstance(qty, (int, float)) or not math.isfinite(qty) or qty <= 0:
            raise ValidationError(f'item {idx}: quantity must be a positive number')
        clean = dict(item)
        clean['name'] = name.strip()
        out.append(clean)
    return out


class ApprovalEngine:
    def __init__(self, session=None, hub=None, evaluator_factory=None):
        self.session = session or get_db()
        self.hub = hub or default_hub
        self.evaluator_factory = evaluator_factory

    # --- reads ---
    def _load(self, request_id: int) -> Optional[ApprovalRequest]:
        stmt = select(ApprovalRequest).where(ApprovalRequest.id == request_id).execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def get(self, ctx: SessionContext, request_id: int) -> ApprovalRequest:
        req = self._load(request_id)
        if req is None:
            raise NotFound(f'request {request_id} not found')
        if ctx.role not in OVERSIGHT_ROLES and req.requested_by != ctx.user_id:
            raise PermissionDenied('not your request')
        return req

    def _visible(self, ctx: SessionContext, stmt, mine: bool):
        if mine or ctx.role not in OVERSIGHT_ROLES:
            stmt = stmt.where(ApprovalRequest.requested_by == ctx.user_id)
        return stmt

    def _page(self, stmt, limit: int, offset: int) -> Tuple[List[ApprovalRequest], int]:
        total = self.session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        rows = self.session.execute(
            stmt.order_by(ApprovalRequest.created_at.desc(), ApprovalRequest.id.desc()).offset(offset).limit(limit)
        ).scalars().all()
        return rows, total

    def list_requests(self, ctx: SessionContext, domain: Optional[str] = None, status: Optional[str] = None,
                      mine: bool = False, limit: int = 50, offset: int = 0) -> Tuple[List[ApprovalRequest], int]:
        stmt = select(ApprovalRequest)
        if domain is not None:
            if domain not in MACHINES:
                raise ValidationError(f'unknown domain {domain}')
            stmt = stmt.where(ApprovalRequest.domain == domain)
        if status is not None:
            if status not in ApprovalRequest.ALL_STATUSES:
                raise ValidationError(f'unknown status {status}')
            stmt = stmt.where(ApprovalRequest.status == status)
        return self._page(self._visible(ctx, stmt, mine), limit, offset)

    def history(self, ctx: SessionContext, domain: Optional[str] = None, mine: bool = False,
                limit: int = 50, offset: int = 0) -> Tuple[List[ApprovalRequest], int]:
        """Decided (approved or rejected) requests, newest first."""
        stmt = select(ApprovalRequest).where(ApprovalRequest.status.in_(ApprovalRequest.TERMINAL_STATUSES))
        if domain is not None:
            stmt = stmt.where(ApprovalRequest.domain == domain)
        return self._page(self._visible(ctx, stmt, mine), limit, offset)

    def queue(self, role: Role) -> List[ApprovalRequest]:
        """Requests currently waiting for a decision by role, oldest first."""
        role = Role.parse(role)
        clauses = []
        for domain, machine in MACHINES.items():
            states = machine.expected_actor_states(role)
            if states:
                clauses.append(and_(ApprovalRequest.domain == domain, ApprovalRequest.status.in_(sorted(states))))
        if not clauses:
            return []
        stmt = (
            select(ApprovalRequest)
            .where(or_(*clauses))
            .order_by(ApprovalRequest.created_at.asc(), ApprovalRequest.id.asc())
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalars().all()

    def _watermark(self) -> int:
        return self.session.execute(select(func.max(RequestAuditEntry.id))).scalar() or 0

    def queue_snapshot(self, role: Role) -> QueueSnapshot:
        role = Role.parse(role)
        version = self._watermark()
        rows = self.queue(role)
        return QueueSnapshot(role.value, version, tuple(r.to_json() for r in rows))

    def subscribe_queue(self, role: Role) -> Subscription:
        """Live queue of role; the current snapshot is delivered immediately."""
        role = Role.parse(role)
        key = queue_channel(role)
        if self.hub.last(key) is None:
            snap = self.queue_snapshot(role)
            self.hub.publish(key, snap, version=snap.version)
        return self.hub.subscribe(key)

    def _publish_queues(self):
        for role in sorted(APPROVER_ROLES, key=lambda r: r.value):
            snap = self.queue_snapshot(role)
            self.hub.publish(queue_channel(role), snap, version=snap.version)

    # --- writes ---
    def _check_create_rights(self, ctx: SessionContext, domain: str):
        page = CREATE_PAGES[domain]
        if page is None or ctx.is_admin:
            return
        if self.evaluator_factory is not None:
            evaluator = self.evaluator_factory(ctx)
            allowed = evaluator.has_page_permission(page)
        else:
            from opsgate.services.pcs import PermissionStore
            from opsgate.services.policy import PermissionEvaluator
            evaluator = PermissionEvaluator(ctx, hub=self.hub, store_factory=lambda: PermissionStore(self.session, self.hub))
            try:
                allowed = evaluator.has_page_permission(page)
            finally:
                evaluator.close()
        if not allowed:
            raise PermissionDenied(f'{page} permission required to create {domain} requests', page=page)

    def create_request(self, ctx: SessionContext, domain: str, items, priority: str = 'normal',
                       notes: Optional[str] = None) -> ApprovalRequest:
        if domain not in MACHINES:
            raise ValidationError(f'unknown domain {domain}')
        clean_items = validate_items(items)
        priority = priority or 'normal'
        if priority not in ApprovalRequest.PRIORITIES:
            raise ValidationError(f'priority must be one of {", ".join(ApprovalRequest.PRIORITIES)}')
        self._check_create_rights(ctx, domain)
        machine = MACHINES[domain]
        req = REQUEST_CLASSES[domain](
            items=clean_items,
            requested_by=ctx.user_id,
            requested_by_name=ctx.name,
            requested_by_role=ctx.role.value,
            priority=priority,
            notes=notes,
            status=machine.initial,
            version=1,
        )
        try:
            self.session.add(req)
            self.session.flush()
            self.session.add(RequestAuditEntry(
                request_id=req.id, actor_id=ctx.user_id, actor_role=ctx.role.value,
                action=ACTION_SUBMIT, from_status=None, to_status=machine.initial, comments=notes,
            ))
            recipients = (HO,) if machine is TWO_STAGE else (HO, MD)
            notifications.notify_roles(
                self.session, recipients, 'request_submitted',
                f'{DOMAIN_LABELS[domain]} #{req.id} from {ctx.name} awaits approval',
                request_id=req.id, data={'domain': domain, 'priority': priority},
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info('request %s (%s) submitted by %s', req.id, domain, ctx.user_id)
        self._publish_queues()
        return self._load(req.id)

    def approve(self, ctx: SessionContext, request_id: int, comments: Optional[str] = None,
                expected_version: Optional[int] = None) -> ApprovalRequest:
        return self.transition(ctx, request_id, ACTION_APPROVE, comments=comments, expected_version=expected_version)

    def reject(self, ctx: SessionContext, request_id: int, reason: Optional[str], comments: Optional[str] = None,
               expected_version: Optional[int] = None) -> ApprovalRequest:
        return self.transition(ctx, request_id, ACTION_REJECT, comments=comments, reason=reason,
                               expected_version=expected_version)

    def transition(self, ctx: SessionContext, request_id: int, action: str, comments: Optional[str] = None,
                   reason: Optional[str] = None, expected_version: Optional[int] = None) -> ApprovalRequest:
        if action not in DECISIONS:
            raise ValidationError(f'unknown action {action}')
        req = self._load(request_id)
        if req is None:
            raise NotFound(f'request {request_id} not found')
        machine = MACHINES[req.domain]
        try:
            rule = machine.assert_can_transition(req.status, action, ctx.role)
        except (AlreadyTerminal, InvalidTransition) as exc:
            logger.info('request %s: %s by %s refused: %s', request_id, action, ctx.role.value, exc.description)
            raise
        if expected_version is not None and req.version != expected_version:
            raise ConcurrentUpdate(f'request {request_id} changed (version {req.version}, expected {expected_version})')
        if rule.requires_reason and not (reason or '').strip():
            raise ValidationError('a reason is required to reject a request')

        source_status, source_version = req.status, req.version
        try:
            result = self.session.execute(
                update(ApprovalRequest)
                .where(
                    ApprovalRequest.id == request_id,
                    ApprovalRequest.status == source_status,
                    ApprovalRequest.version == source_version,
                )
                .values(status=rule.target, version=source_version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.session.rollback()
                return self._lost_race(ctx, request_id, action)
            self.session.add(RequestAuditEntry(
                request_id=request_id, actor_id=ctx.user_id, actor_role=ctx.role.value, action=action,
                from_status=source_status, to_status=rule.target,
                comments=comments, reason=(reason or '').strip() or None,
            ))
            self._apply_side_effects(ctx, req, rule, reason)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info('request %s: %s -> %s by %s (%s)', request_id, source_status, rule.target, ctx.user_id, ctx.role.value)
        self._publish_queues()
        return self._load(request_id)

    def _lost_race(self, ctx: SessionContext, request_id: int, action: str):
        current = self._load(request_id)
        if current is None:
            raise NotFound(f'request {request_id} not found')
        logger.info('request %s: %s by %s lost to a concurrent decision', request_id, action, ctx.user_id)
        # raises AlreadyTerminal / InvalidTransition for the state the winner left behind
        MACHINES[current.domain].assert_can_transition(current.status, action, ctx.role)
        raise ConcurrentUpdate(f'request {request_id} was modified concurrently')

    def _apply_side_effects(self, ctx: SessionContext, req: ApprovalRequest, rule: Rule, reason: Optional[str]):
        label = DOMAIN_LABELS[req.domain]
        if rule.side_effect == EFFECT_PURCHASE_PREPARATION:
            self.session.add(PurchasePreparation(
                request_id=req.id,
                request_domain=req.domain,
                lines=[dict(i) for i in (req.items or [])],
                approved_by=ctx.user_id,
            ))
        if rule.side_effect == EFFECT_NOTIFY_MD:
            notifications.notify_roles(
                self.session, (MD,), 'request_forwarded',
                f'{label} #{req.id} forwarded by {ctx.name} for final approval',
                request_id=req.id, data={'domain': req.domain},
            )
        if rule.target == ApprovalRequest.STATUS_FORWARDED_TO_MD:
            type_, message = 'request_forwarded', f'{label} #{req.id} approved by Head of Operations, awaiting Main Director'
        elif rule.target == ApprovalRequest.STATUS_APPROVED:
            type_, message = 'request_approved', f'{label} #{req.id} approved'
        else:
            type_, message = 'request_rejected', f'{label} #{req.id} rejected: {reason}'
        notifications.notify(
            self.session, [req.requested_by], type_, message,
            request_id=req.id, data={'domain': req.domain, 'status': rule.target},
        )


def preparations(session=None, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> Tuple[List[PurchasePreparation], int]:
    session = session or get_db()
    stmt = select(PurchasePreparation)
    if status is not None:
        stmt = stmt.where(PurchasePreparation.status == status)
    total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = session.execute(stmt.order_by(PurchasePreparation.id.desc()).offset(offset).limit(limit)).scalars().all()
    return rows, total


__all__ = [
    'ApprovalEngine', 'QueueSnapshot', 'TWO_STAGE', 'SINGLE_STAGE', 'MACHINES', 'CREATE_PAGES',
    'queue_channel', 'validate_items', 'preparations',
]
