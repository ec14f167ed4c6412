from opsgate.constants.roles import Role
from tests.test_utils_seed import seed_actor


def test_notifications_follow_the_request(client, app_instance):
    _, staff = seed_actor(app_instance, 'warehouse@example.com', Role.WAREHOUSE_STAFF)
    _, ho = seed_actor(app_instance, 'ho@example.com', Role.HEAD_OF_OPERATIONS)
    req = client.post('/requests', json={'domain': 'packing_material', 'items': [{'name': 'Boxes', 'quantity': 300}]},
                      headers=staff).get_json()

    inbox = client.get('/notifications', headers=ho).get_json()
    assert inbox['pagination']['total'] == 1
    note = inbox['data'][0]
    assert note['type'] == 'request_submitted'
    assert note['request_id'] == req['id']
    assert note['status'] == 'unread'
    assert note['data'] == {'domain': 'packing_material', 'priority': 'normal'}

    client.post(f"/requests/{req['id']}/reject", json={'reason': 'stock is enough'}, headers=ho)
    mine = client.get('/notifications?unread=1', headers=staff).get_json()['data']
    assert [n['type'] for n in mine] == ['request_rejected']
    assert 'stock is enough' in mine[0]['message']


def test_mark_read(client, app_instance):
    _, staff = seed_actor(app_instance, 'warehouse@example.com', Role.WAREHOUSE_STAFF)
    _, ho = seed_actor(app_instance, 'ho@example.com', Role.HEAD_OF_OPERATIONS)
    client.post('/requests', json={'domain': 'material', 'items': [{'name': 'Salt', 'quantity': 1}]}, headers=staff)
    note_id = client.get('/notifications', headers=ho).get_json()['data'][0]['id']

    assert client.post(f'/notifications/{note_id}/read', headers=staff).status_code == 404
    resp = client.post(f'/notifications/{note_id}/read', headers=ho)
    assert resp.status_code == 200
    assert resp.get_json()['status'] == 'read'
    assert resp.get_json()['read_at']
    assert client.get('/notifications?unread=true', headers=ho).get_json()['data'] == []
