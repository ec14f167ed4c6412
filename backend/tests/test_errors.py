from opsgate.constants.roles import Role
from tests.test_utils_seed import seed_actor


def test_unknown_path_returns_error_json(client):
    resp = client.get('/non-existent-path')
    # Flask default 404 should be wrapped by error handler
    assert resp.status_code == 404
    body = resp.get_json()
    assert 'error' in body
    assert body['error']['status'] == 404
    assert 'detail' in body['error']


def test_domain_error_shape(client, app_instance):
    _, headers = seed_actor(app_instance, 'ho@example.com', Role.HEAD_OF_OPERATIONS)
    resp = client.get('/requests/424242', headers=headers)
    assert resp.status_code == 404
    body = resp.get_json()
    assert body['error']['title'] == 'Not Found'
    assert 'not found' in body['error']['detail']


def test_internal_error_shape(client, app_instance, monkeypatch):
    _, headers = seed_actor(app_instance, 'admin@example.com', Role.ADMIN)
    # Monkeypatch after token issue so auth works; only break user listing
    import opsgate.routes.iam as iam_mod

    class BoomSession:
        def execute(self, *a, **k):
            raise RuntimeError('explode')

    monkeypatch.setattr(iam_mod, 'get_db', lambda: BoomSession())
    resp = client.get('/iam/users', headers=headers)
    assert resp.status_code == 500
    body = resp.get_json()
    assert body['error']['status'] == 500
    assert body['error']['title'] == 'Internal Server Error'
    assert body['error']['detail'] == 'Unexpected error'
