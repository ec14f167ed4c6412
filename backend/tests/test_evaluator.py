from sqlalchemy.exc import OperationalError
from opsgate import get_db
from opsgate.constants.pages import LANDING_PAGE, PAGE_CATALOG
from opsgate.constants.roles import Role, STATUS_RESTRICTED
from opsgate.services.pcs import PermissionStore
from opsgate.services.policy import EvaluatorRegistry, PermissionEvaluator
from opsgate.services.realtime import SnapshotHub
from tests.test_utils_seed import ensure_user, ctx_for


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _evaluator(ctx, **kwargs):
    return PermissionEvaluator(ctx, store_factory=lambda: PermissionStore(get_db()), **kwargs)


def test_landing_page_always_granted_for_every_role():
    for i, role in enumerate(Role):
        user = ensure_user(f'u{i}@example.com', role=role)
        ev = _evaluator(ctx_for(user, role))
        assert ev.has_page_permission(LANDING_PAGE), role
        ev.close()


def test_admin_sees_whole_catalog_without_entry():
    user = ensure_user('admin@example.com', role=Role.ADMIN)
    ev = _evaluator(ctx_for(user, Role.ADMIN))
    assert ev.has_page_permission('/anything/at/all')
    assert len(ev.accessible_pages()) == len(PAGE_CATALOG)
    assert PermissionStore(get_db()).get(user.id) is None


def test_non_admin_denied_outside_grants():
    user = ensure_user('ds@example.com', role=Role.DATA_ENTRY)
    ev = _evaluator(ctx_for(user, Role.DATA_ENTRY))
    assert ev.has_page_permission('/data-entry')
    assert not ev.has_page_permission('/warehouse/invoices')
    assert not ev.has_page_permission('not-a-path')
    paths = [p.path for p in ev.accessible_pages()]
    assert paths[0] == LANDING_PAGE
    assert '/data-entry' in paths and '/warehouse/invoices' not in paths
    ev.close()


def test_grant_during_open_session_applies_without_relogin():
    user = ensure_user('u2@example.com', role=Role.DATA_ENTRY)
    ev = _evaluator(ctx_for(user, Role.DATA_ENTRY))
    assert not ev.has_page_permission('/warehouse/invoices')
    PermissionStore(get_db()).grant(user.id, '/warehouse/invoices', actor='admin')
    assert ev.has_page_permission('/warehouse/invoices')
    PermissionStore(get_db()).revoke(user.id, '/data-entry', actor='admin')
    assert not ev.has_page_permission('/data-entry')
    ev.close()


def test_stale_snapshot_never_replaces_newer_one():
    user = ensure_user('ds@example.com', role=Role.DATA_ENTRY)
    store = PermissionStore(get_db())
    ev = _evaluator(ctx_for(user, Role.DATA_ENTRY))
    old = ev.snapshot
    store.grant(user.id, '/reports', actor='admin')
    assert ev.has_page_permission('/reports')
    assert ev._swap(old) is False
    assert ev.has_page_permission('/reports')
    ev.close()


def test_refresh_failure_keeps_last_snapshot():
    user = ensure_user('ds@example.com', role=Role.DATA_ENTRY)
    clock = FakeClock()
    calls = {'n': 0}

    class FlakyStore:
        def ensure_entry(self, user_id, role):
            calls['n'] += 1
            if calls['n'] > 1:
                raise OperationalError('SELECT pcs_entries', {}, Exception('db down'))
            return PermissionStore(get_db()).ensure_entry(user_id, role)

    ev = PermissionEvaluator(ctx_for(user, Role.DATA_ENTRY), store_factory=FlakyStore, refresh_seconds=30, clock=clock)
    assert ev.has_page_permission('/data-entry')
    clock.now += 31
    assert ev.has_page_permission('/data-entry')
    assert calls['n'] == 2
    # failed refresh restarts the interval instead of retrying on every check
    assert ev.has_page_permission('/data-entry')
    assert calls['n'] == 2
    ev.close()


def test_periodic_refresh_picks_up_missed_changes():
    user = ensure_user('ds@example.com', role=Role.DATA_ENTRY)
    clock = FakeClock()
    ev = _evaluator(ctx_for(user, Role.DATA_ENTRY), refresh_seconds=30, clock=clock)
    # simulate a lost push: drop the subscription and change the store
    ev.subscription.cancel()
    PermissionStore(get_db()).grant(user.id, '/reports', actor='admin')
    assert not ev.has_page_permission('/reports')
    clock.now += 30
    assert ev.has_page_permission('/reports')


def test_restricted_session_limited_to_landing_page():
    user = ensure_user('ho@example.com', role=Role.HEAD_OF_OPERATIONS)
    ev = _evaluator(ctx_for(user, Role.HEAD_OF_OPERATIONS, status=STATUS_RESTRICTED))
    assert ev.has_page_permission(LANDING_PAGE)
    assert not ev.has_page_permission('/approvals')
    assert [p.path for p in ev.accessible_pages()] == [LANDING_PAGE]
    assert ev.permissions() == [LANDING_PAGE]


def test_registry_reuses_and_drops_evaluators():
    user = ensure_user('ds@example.com', role=Role.DATA_ENTRY)
    ctx = ctx_for(user, Role.DATA_ENTRY)
    reg = EvaluatorRegistry()
    factory = lambda: PermissionStore(get_db())
    first = reg.get(ctx, store_factory=factory)
    assert reg.get(ctx, store_factory=factory) is first
    promoted = ctx_for(user, Role.WAREHOUSE_STAFF)
    second = reg.get(promoted, store_factory=factory)
    assert second is not first
    assert first.subscription is None
    reg.drop(user.id)
    assert len(reg) == 0
    assert second.subscription is None


def test_change_published_by_another_worker_arrives_on_refresh():
    user = ensure_user('ds@example.com', role=Role.DATA_ENTRY)
    clock = FakeClock()
    ev = _evaluator(ctx_for(user, Role.DATA_ENTRY), refresh_seconds=30, clock=clock)
    # a second process has its own hub; its publish never reaches this one
    PermissionStore(get_db(), hub=SnapshotHub()).grant(user.id, '/reports', actor='admin')
    assert not ev.has_page_permission('/reports')
    clock.now += 30
    assert ev.has_page_permission('/reports')
    ev.close()
