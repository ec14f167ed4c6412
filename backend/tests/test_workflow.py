import pytest
from sqlalchemy.orm import Session
import opsgate
from opsgate import get_db
from opsgate.constants.roles import Role
from opsgate.errors import AlreadyTerminal, ConcurrentUpdate, InvalidTransition, NotFound, PermissionDenied, ValidationError
from opsgate.models.notification import Notification
from opsgate.models.procurement import PurchasePreparation
from opsgate.models.requests import ApprovalRequest, RequestAuditEntry
from opsgate.services.workflow import ApprovalEngine, queue_channel
from opsgate.services.realtime import hub
from tests.test_utils_seed import ensure_user, ctx_for

ITEMS = [{'name': 'Sugar', 'quantity': 50, 'unit': 'kg'}, {'name': 'Cocoa', 'quantity': 12.5, 'unit': 'kg'}]


@pytest.fixture()
def actors():
    out = {}
    for key, email, role in (
        ('staff', 'warehouse@example.com', Role.WAREHOUSE_STAFF),
        ('ho', 'ho@example.com', Role.HEAD_OF_OPERATIONS),
        ('md', 'director@example.com', Role.MAIN_DIRECTOR),
        ('clerk', 'clerk@example.com', Role.DATA_ENTRY),
        ('admin', 'admin@example.com', Role.ADMIN),
    ):
        out[key] = ctx_for(ensure_user(email, role=role), role)
    return out


def _engine():
    return ApprovalEngine(get_db())


def _audit(request_id):
    return get_db().query(RequestAuditEntry).filter_by(request_id=request_id).order_by(RequestAuditEntry.id).all()


def test_material_request_two_stage_approval(actors):
    engine = _engine()
    r1 = engine.create_request(actors['staff'], 'material', ITEMS, priority='high', notes='monthly restock')
    assert r1.status == 'pending_ho' and r1.version == 1
    assert isinstance(r1, ApprovalRequest) and r1.domain == 'material'

    r1 = engine.approve(actors['ho'], r1.id, comments='ok for budget')
    assert r1.status == 'forwarded_to_md'
    assert get_db().query(PurchasePreparation).count() == 0

    r1 = engine.approve(actors['md'], r1.id)
    assert r1.status == 'approved' and r1.version == 3
    preps = get_db().query(PurchasePreparation).all()
    assert len(preps) == 1
    assert preps[0].request_id == r1.id
    assert preps[0].status == 'pending_supplier_assignment'
    assert preps[0].lines == ITEMS
    assert preps[0].approved_by == actors['md'].user_id

    trail = [(a.action, a.from_status, a.to_status) for a in _audit(r1.id)]
    assert trail == [
        ('submit', None, 'pending_ho'),
        ('approve', 'pending_ho', 'forwarded_to_md'),
        ('approve', 'forwarded_to_md', 'approved'),
    ]


def test_rejected_request_is_terminal(actors):
    engine = _engine()
    r2 = engine.create_request(actors['staff'], 'packing_material', ITEMS)
    r2 = engine.reject(actors['ho'], r2.id, reason='insufficient budget')
    assert r2.status == 'rejected'
    assert _audit(r2.id)[-1].reason == 'insufficient budget'

    before = len(_audit(r2.id))
    with pytest.raises(AlreadyTerminal):
        engine.approve(actors['md'], r2.id)
    with pytest.raises(AlreadyTerminal):
        engine.reject(actors['ho'], r2.id, reason='again')
    assert engine.get(actors['ho'], r2.id).status == 'rejected'
    assert len(_audit(r2.id)) == before


def test_reject_requires_reason(actors):
    engine = _engine()
    req = engine.create_request(actors['staff'], 'material', ITEMS)
    with pytest.raises(ValidationError):
        engine.reject(actors['ho'], req.id, reason='   ')
    assert engine.get(actors['ho'], req.id).status == 'pending_ho'


def test_wrong_actor_or_state_is_invalid(actors):
    engine = _engine()
    req = engine.create_request(actors['staff'], 'material', ITEMS)
    for ctx in (actors['md'], actors['staff'], actors['admin']):
        with pytest.raises(InvalidTransition):
            engine.approve(ctx, req.id)
    engine.approve(actors['ho'], req.id)
    with pytest.raises(InvalidTransition):
        engine.approve(actors['ho'], req.id)
    assert engine.get(actors['md'], req.id).version == 2
    with pytest.raises(ValidationError):
        engine.transition(actors['md'], req.id, 'escalate')
    with pytest.raises(NotFound):
        engine.approve(actors['md'], 9999)


def test_distributor_request_single_stage(actors):
    engine = _engine()
    req = engine.create_request(actors['clerk'], 'distributor', [{'name': 'Biscuits', 'quantity': 40}])
    assert req.status == 'pending'
    req = engine.approve(actors['md'], req.id)
    assert req.status == 'approved'
    assert get_db().query(PurchasePreparation).count() == 0
    with pytest.raises(AlreadyTerminal):
        engine.reject(actors['ho'], req.id, reason='late')


def test_concurrent_approvals_only_one_commits(actors, monkeypatch):
    engine = _engine()
    req = engine.create_request(actors['staff'], 'material', ITEMS)
    real_load = engine._load
    calls = {'n': 0}

    def load_then_lose(request_id):
        obj = real_load(request_id)
        calls['n'] += 1
        if calls['n'] == 1:
            # another worker decides between our read and our guarded update
            with Session(opsgate.db_engine, expire_on_commit=False) as other:
                ApprovalEngine(other).approve(actors['ho'], request_id)
        return obj

    monkeypatch.setattr(engine, '_load', load_then_lose)
    with pytest.raises((InvalidTransition, AlreadyTerminal)):
        engine.approve(actors['ho'], req.id)
    monkeypatch.undo()

    current = _engine().get(actors['ho'], req.id)
    assert current.status == 'forwarded_to_md' and current.version == 2
    assert [a.action for a in _audit(req.id)] == ['submit', 'approve']


def test_stale_expected_version_is_rejected(actors):
    engine = _engine()
    req = engine.create_request(actors['staff'], 'material', ITEMS)
    with pytest.raises(ConcurrentUpdate):
        engine.approve(actors['ho'], req.id, expected_version=7)
    assert engine.approve(actors['ho'], req.id, expected_version=1).status == 'forwarded_to_md'


def test_create_validation_and_rights(actors):
    engine = _engine()
    with pytest.raises(ValidationError):
        engine.create_request(actors['staff'], 'material', [])
    with pytest.raises(ValidationError):
        engine.create_request(actors['staff'], 'material', [{'name': 'Sugar', 'quantity': 0}])
    with pytest.raises(ValidationError):
        engine.create_request(actors['staff'], 'material', [{'quantity': 3}])
    with pytest.raises(ValidationError):
        engine.create_request(actors['staff'], 'spaceship', ITEMS)
    with pytest.raises(ValidationError):
        engine.create_request(actors['staff'], 'material', ITEMS, priority='whenever')
    with pytest.raises(PermissionDenied):
        engine.create_request(actors['clerk'], 'material', ITEMS)
    assert engine.create_request(actors['admin'], 'material', ITEMS).status == 'pending_ho'
    assert get_db().query(ApprovalRequest).count() == 1


def test_queues_follow_transitions(actors):
    engine = _engine()
    mat = engine.create_request(actors['staff'], 'material', ITEMS)
    dist = engine.create_request(actors['clerk'], 'distributor', [{'name': 'Juice', 'quantity': 6}])
    assert [r.id for r in engine.queue(Role.HEAD_OF_OPERATIONS)] == [mat.id, dist.id]
    assert [r.id for r in engine.queue(Role.MAIN_DIRECTOR)] == [dist.id]
    assert engine.queue(Role.WAREHOUSE_STAFF) == []

    sub = engine.subscribe_queue(Role.MAIN_DIRECTOR)
    first = sub.wait(timeout=1)
    assert [r['id'] for r in first.requests] == [dist.id]

    engine.approve(actors['ho'], mat.id)
    latest = sub.latest()
    assert latest.version > first.version
    assert {r['id'] for r in latest.requests} == {mat.id, dist.id}
    assert [r['id'] for r in hub.last(queue_channel(Role.HEAD_OF_OPERATIONS)).requests] == [dist.id]
    sub.cancel()


def test_notifications_reach_each_stage(actors):
    engine = _engine()
    req = engine.create_request(actors['staff'], 'material', ITEMS)
    engine.approve(actors['ho'], req.id)
    engine.reject(actors['md'], req.id, reason='supplier unavailable')

    def types_for(ctx):
        rows = get_db().query(Notification).filter_by(recipient_id=ctx.user_id).order_by(Notification.id).all()
        return [n.type for n in rows]

    assert types_for(actors['ho']) == ['request_submitted']
    assert types_for(actors['md']) == ['request_forwarded']
    assert types_for(actors['staff']) == ['request_forwarded', 'request_rejected']


def test_listing_visibility_and_history(actors):
    engine = _engine()
    mine = engine.create_request(actors['staff'], 'material', ITEMS)
    other = engine.create_request(actors['clerk'], 'distributor', [{'name': 'Tea', 'quantity': 3}])
    engine.reject(actors['ho'], other.id, reason='duplicate')

    rows, total = engine.list_requests(actors['staff'])
    assert total == 1 and rows[0].id == mine.id
    with pytest.raises(PermissionDenied):
        engine.get(actors['staff'], other.id)

    rows, total = engine.list_requests(actors['ho'], domain='distributor')
    assert [r.id for r in rows] == [other.id]
    rows, total = engine.history(actors['md'])
    assert [r.id for r in rows] == [other.id]
    with pytest.raises(ValidationError):
        engine.list_requests(actors['ho'], status='lost')


def test_non_finite_quantities_are_rejected(actors):
    engine = _engine()
    for qty in (float('nan'), float('inf'), float('-inf')):
        with pytest.raises(ValidationError):
            engine.create_request(actors['staff'], 'material', [{'name': 'Sugar', 'quantity': qty}])
    assert get_db().query(ApprovalRequest).count() == 0
