from __future__ import annotations
"""Permission evaluation for a live session.

A PermissionEvaluator wraps one SessionContext and the latest PermissionSnapshot
of that principal. Snapshots pushed by the store replace the in-memory state in
a single reference swap, so a check never observes a half-applied update. When
no push arrives the evaluator re-reads the store every PCS_REFRESH_SECONDS; a
failed re-read keeps the last known state.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional

from flask import current_app
from flask_jwt_extended import get_jwt, get_jwt_identity
from sqlalchemy.exc import SQLAlchemyError

from opsgate.constants.pages import LANDING_PAGE, PAGE_CATALOG, Page
from opsgate.errors import ValidationError
from opsgate.services.identity import SessionContext
from opsgate.services.pcs import PermissionSnapshot, PermissionStore, channel, effective_pages
from opsgate.services.realtime import hub as default_hub
from opsgate.utils.page_keys import normalize_page_path

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_SECONDS = 30


@dataclass(frozen=True)
class _State:
    snapshot: Optional[PermissionSnapshot]
    granted: FrozenSet[str]
    loaded_at: float

    @property
    def version(self) -> int:
        return self.snapshot.version if self.snapshot is not None else 0


class PermissionEvaluator:
    def __init__(self, ctx: SessionContext, snapshot: Optional[PermissionSnapshot] = None, *,
                 hub=None, store_factory: Optional[Callable[[], PermissionStore]] = None,
                 refresh_seconds: float = DEFAULT_REFRESH_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ctx = ctx
        self.hub = hub or default_hub
        self.store_factory = store_factory or (lambda: PermissionStore(hub=self.hub))
        self.refresh_seconds = refresh_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self.subscription = None
        if ctx.is_admin or ctx.is_restricted:
            self._state = _State(None, frozenset({LANDING_PAGE}), clock())
            return
        # subscribe before the initial read so no push between the two is lost
        self.subscription = self.hub.subscribe(channel(ctx.user_id), replay=False)
        if snapshot is None:
            snapshot = self._load()
        self._state = self._build(snapshot)

    def _build(self, snapshot: Optional[PermissionSnapshot]) -> _State:
        if snapshot is None:
            return _State(None, frozenset({LANDING_PAGE}), self.clock())
        return _State(snapshot, effective_pages(self.ctx.role, snapshot.pages), self.clock())

    def _load(self) -> Optional[PermissionSnapshot]:
        try:
            return self.store_factory().ensure_entry(self.ctx.user_id, self.ctx.role)
        except SQLAlchemyError as exc:
            logger.warning('PCS read failed for %s: %s; keeping last known permissions', self.ctx.user_id, exc)
            return None

    def _swap(self, snapshot: PermissionSnapshot) -> bool:
        new_state = self._build(snapshot)
        with self._lock:
            if self._state.snapshot is not None and snapshot.version < self._state.version:
                return False
            self._state = new_state
        return True

    @property
    def snapshot(self) -> Optional[PermissionSnapshot]:
        return self._state.snapshot

    def sync(self):
        """Apply a pushed snapshot if one arrived, else re-read once the refresh interval elapsed."""
        if self.subscription is None:
            return
        changed, snap = self.subscription.poll()
        if changed and snap is not None:
            self._swap(snap)
            return
        state = self._state
        if self.clock() - state.loaded_at < self.refresh_seconds:
            return
        fresh = self._load()
        if fresh is not None:
            self._swap(fresh)
        else:
            with self._lock:
                self._state = _State(self._state.snapshot, self._state.granted, self.clock())

    def has_page_permission(self, path: str) -> bool:
        if self.ctx.is_admin:
            return True
        try:
            path = normalize_page_path(path)
        except ValidationError:
            return False
        if path == LANDING_PAGE:
            return True
        if self.ctx.is_restricted:
            return False
        self.sync()
        return path in self._state.granted

    def accessible_pages(self) -> List[Page]:
        if self.ctx.is_admin:
            return list(PAGE_CATALOG)
        self.sync()
        granted = self._state.granted if not self.ctx.is_restricted else frozenset({LANDING_PAGE})
        pages = [p for p in PAGE_CATALOG if p.path in granted]
        if not any(p.path == LANDING_PAGE for p in pages):
            pages.insert(0, Page(LANDING_PAGE, 'Dashboard', 'General'))
        return pages

    def permissions(self) -> List[str]:
        """Sorted effective grants, landing page included."""
        if self.ctx.is_admin:
            return sorted(p.path for p in PAGE_CATALOG)
        self.sync()
        if self.ctx.is_restricted:
            return [LANDING_PAGE]
        return sorted(self._state.granted)

    def close(self):
        if self.subscription is not None:
            self.subscription.cancel()
            self.subscription = None


class EvaluatorRegistry:
    """Live evaluators keyed by user id, one per signed-in principal."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: Dict[int, PermissionEvaluator] = {}

    def get(self, ctx: SessionContext, **kwargs) -> PermissionEvaluator:
        with self._lock:
            existing = self._items.get(ctx.user_id)
            if existing is not None and existing.ctx == ctx:
                return existing
        evaluator = PermissionEvaluator(ctx, **kwargs)
        with self._lock:
            current = self._items.get(ctx.user_id)
            if current is not None and current.ctx == ctx:
                evaluator.close()
                return current
            self._items[ctx.user_id] = evaluator
        if current is not None:
            current.close()
        return evaluator

    def drop(self, user_id: int):
        with self._lock:
            evaluator = self._items.pop(user_id, None)
        if evaluator is not None:
            evaluator.close()

    def reset(self):
        with self._lock:
            items, self._items = self._items, {}
        for evaluator in items.values():
            evaluator.close()

    def __len__(self):
        with self._lock:
            return len(self._items)


evaluators = EvaluatorRegistry()


def current_context() -> SessionContext:
    """SessionContext of the JWT on the current request (caller verified the token)."""
    return SessionContext.from_claims(get_jwt_identity(), get_jwt())


def current_evaluator() -> PermissionEvaluator:
    refresh = float(current_app.config.get('PCS_REFRESH_SECONDS', DEFAULT_REFRESH_SECONDS))
    return evaluators.get(current_context(), refresh_seconds=refresh)


__all__ = ['PermissionEvaluator', 'EvaluatorRegistry', 'evaluators', 'current_context', 'current_evaluator']
