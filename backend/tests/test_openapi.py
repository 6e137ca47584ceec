def test_openapi_spec_available(client):
    resp = client.get('/openapi.json')
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['openapi'].startswith('3.')
    for path in ('/workflow', '/workflow/{workflow_id}/transition', '/approvals/{approval_id}/approve',
                 '/payments/{payment_id}/settle', '/payments/summary', '/workflow/board'):
        assert path in body['paths'], path


def test_docs_page(client):
    resp = client.get('/docs')
    assert resp.status_code == 200
    assert b'Redoc' in resp.data or b'redoc' in resp.data


def test_sort_parameter_components_and_usage(client):
    spec = client.get('/openapi.json').get_json()
    comps = spec['components']['parameters']
    path_map = {
        '/workflow': 'SortWorkflowParam',
        '/approvals': 'SortApprovalsParam',
        '/payments': 'SortPaymentsParam',
    }
    for p, comp in path_map.items():
        assert comp in comps, f"Missing parameter component: {comp}"
        params = spec['paths'][p]['get'].get('parameters', [])
        assert any(pr.get('$ref', '').endswith(comp) for pr in params), f"{p} missing ref to {comp}"


def test_list_caching_headers_documented(client):
    spec = client.get('/openapi.json').get_json()
    for p in ['/workflow', '/approvals', '/payments']:
        get_op = spec['paths'][p]['get']
        hdrs = get_op['responses']['200'].get('headers', {})
        for h in ['ETag', 'Last-Modified', 'X-Last-Modified-ISO']:
            assert h in hdrs, f"{p} missing header doc {h}"


def test_operations_declare_permissions(client):
    spec = client.get('/openapi.json').get_json()
    ops = spec['paths']['/workflow/{workflow_id}/transition']['post']
    assert ops['x-action-permissions']['APPROVE'] == 'APR.RESOLVE'
    assert ops['requestBody']['content']['application/json']['schema']['$ref'].endswith('TransitionRequest')
    assert spec['paths']['/payments/{payment_id}/settle']['put']['x-required-permissions'] == ['PAY.SETTLE']
    assert '409' in spec['paths']['/approvals/{approval_id}/approve']['post']['responses']
    op_ids = [od['operationId'] for ops in spec['paths'].values() for od in ops.values() if 'operationId' in od]
    assert len(op_ids) == len(set(op_ids))
