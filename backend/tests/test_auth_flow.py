from opsgate import get_db
from opsgate.constants.roles import Role, STATUS_INACTIVE
from opsgate.models.authz import User, RoleRecord, PermissionEntry
from opsgate.services.policy import evaluators
from tests.test_utils_seed import ensure_user, login_headers


def test_login_and_me(client):
    # Seed a user manually; the fallback fixture maps this address to WarehouseStaff
    session = get_db()
    u = User(name='T', email='warehouse@example.com', password_hash='')
    u.set_password('pw')
    session.add(u)
    session.commit()

    resp = client.post('/iam/auth/login', json={'email': 'warehouse@example.com', 'password': 'pw'})
    assert resp.status_code == 200, resp.get_json()
    body = resp.get_json()
    assert body['user']['role'] == 'WarehouseStaff'
    token = body['access_token']

    me = client.get('/iam/auth/me', headers={'Authorization': f'Bearer {token}'})
    assert me.status_code == 200
    body = me.get_json()
    assert body['email'] == 'warehouse@example.com'
    assert body['department'] == 'WarehouseOperations'
    assert '/dashboard' in body['pages']
    assert '/warehouse/raw-materials/request' in body['pages']
    # first login created the role record and the PCS entry
    assert session.query(RoleRecord).filter_by(user_id=u.id).one().role == 'WarehouseStaff'
    assert session.get(PermissionEntry, u.id) is not None


def test_unknown_principal_gets_default_role(client):
    ensure_user('stranger@example.com')
    headers = login_headers(client, 'stranger@example.com')
    body = client.get('/iam/auth/me', headers=headers).get_json()
    assert body['role'] == 'DataEntry'
    assert '/data-entry' in body['pages']
    assert '/approvals' not in body['pages']


def test_login_rejections(client):
    ensure_user('t2@example.com')
    assert client.post('/iam/auth/login', json={'email': 't2@example.com'}).status_code == 400
    assert client.post('/iam/auth/login', json={'email': 't2@example.com', 'password': 'nope'}).status_code == 401
    assert client.post('/iam/auth/login', json={'email': 'ghost@example.com', 'password': 'pw'}).status_code == 401


def test_inactive_role_record_cannot_login(client):
    ensure_user('gone@example.com', role=Role.WAREHOUSE_STAFF, status=STATUS_INACTIVE)
    resp = client.post('/iam/auth/login', json={'email': 'gone@example.com', 'password': 'pw'})
    assert resp.status_code == 403
    assert resp.get_json()['error']['status'] == 403


def test_disabled_account_cannot_login(client):
    u = ensure_user('disabled@example.com')
    u.is_active = False
    get_db().commit()
    assert client.post('/iam/auth/login', json={'email': 'disabled@example.com', 'password': 'pw'}).status_code == 403


def test_me_requires_token(client):
    assert client.get('/iam/auth/me').status_code == 401


def test_logout_drops_live_evaluator(client):
    ensure_user('ho@example.com')
    headers = login_headers(client, 'ho@example.com')
    assert client.get('/pcs/me', headers=headers).status_code == 200
    assert len(evaluators) == 1
    resp = client.post('/iam/auth/logout', headers=headers)
    assert resp.status_code == 200
    assert len(evaluators) == 0
