from tests.test_lifecycle_helpers import ALL_PERMS, jwt_headers


def test_unknown_path_returns_error_json(client):
    resp = client.get('/non-existent-path')
    # Flask default 404 should be wrapped by error handler
    assert resp.status_code == 404
    body = resp.get_json()
    assert 'error' in body
    assert body['error']['status'] == 404
    assert 'detail' in body['error']
    assert 'kind' not in body['error']


def test_domain_not_found_carries_kind(app_context):
    client = app_context.test_client()
    headers = jwt_headers(1, ALL_PERMS)
    resp = client.get('/workflow/424242424', headers=headers)
    assert resp.status_code == 404
    err = resp.get_json()['error']
    assert err == {'status': 404, 'title': 'Not Found', 'detail': 'Workflow 424242424 not found', 'kind': 'NotFound'}


def test_internal_error_shape(app_context, monkeypatch):
    client = app_context.test_client()
    headers = jwt_headers(1, ALL_PERMS)
    import app.routes.workflow as workflow_mod

    class BoomEngine:
        def __init__(self, *a, **k):
            raise RuntimeError('explode')

    monkeypatch.setattr(workflow_mod, 'WorkflowEngine', BoomEngine)
    resp = client.get('/workflow/board', headers=headers)
    assert resp.status_code == 500
    body = resp.get_json()
    assert body['error']['status'] == 500
    assert body['error']['title'] == 'Internal Server Error'
    assert 'explode' not in body['error']['detail']


def test_healthz(client):
    resp = client.get('/healthz')
    assert resp.status_code == 200
    assert resp.get_json() == {'status': 'ok'}
