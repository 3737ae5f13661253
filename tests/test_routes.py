import json
from unittest.mock import MagicMock
from urllib.parse import urlsplit

import pytest
import requests

from projectstore.exceptions import CatalogLoadError, GatewayUnavailableError
from projectstore.models import DeviceValue, PaymentRecord
from projectstore.source import CatalogSource


def location(response):
    parts = urlsplit(response.headers['Location'])
    return parts.path + (f'?{parts.query}' if parts.query else '')


def owned(client):
    projects = client.get('/api/projects').get_json()['projects']
    return {p['id'] for p in projects if p['owned']}


def start_purchase(client, project_id='P1', email='buyer@example.com'):
    response = client.post(f'/buy/{project_id}', data={'email': email})
    assert response.status_code == 200
    with client.session_transaction() as sess:
        pending = json.loads(sess['pending_purchases'])
    return next(ref for ref, tx in pending.items() if tx['project_id'] == project_id)


@pytest.fixture
def verifier(store):
    verifier = MagicMock()
    verifier.verify.return_value = False
    store.reconciler.verifier = verifier
    return verifier


def test_shop_lists_active_projects_and_issues_device_cookie(client):
    response = client.get('/')
    body = response.get_data(as_text=True)

    assert response.status_code == 200
    assert 'Fraud Detection System' in body
    assert 'Bridge Load Analysis' not in body
    assert 'device_id=' in response.headers.get('Set-Cookie', '')


def test_shop_filters_by_query_and_school(client):
    body = client.get('/?q=MARKETING').get_data(as_text=True)
    assert 'Customer Loyalty in Retail' in body
    assert 'Fraud Detection System' not in body

    body = client.get('/', query_string={'school': 'SCHOOL OF BUSINESS STUDIES'}).get_data(as_text=True)
    assert 'Customer Loyalty in Retail' in body
    assert 'Hostel Booking Portal' not in body


def test_catalog_failure_shows_banner_and_no_projects(client, store):
    store.source = MagicMock()
    store.source.fetch.side_effect = CatalogLoadError('offline')
    with pytest.raises(CatalogLoadError):
        store.refresh_catalog()

    body = client.get('/').get_data(as_text=True)

    assert 'Failed to load projects. Please refresh the page.' in body
    assert 'project-card' not in body
    assert client.get('/api/projects').status_code == 503


def test_buy_form_for_unowned_project(client):
    response = client.get('/buy/P1')
    assert response.status_code == 200
    assert 'name="email"' in response.get_data(as_text=True)


def test_buy_unknown_project_is_404(client):
    assert client.get('/buy/P3').status_code == 404


def test_invalid_email_returns_to_form(client):
    response = client.post('/buy/P1', data={'email': 'not-an-email'})

    assert response.status_code == 302
    assert location(response) == '/buy/P1'
    with client.session_transaction() as sess:
        assert 'pending_purchases' not in sess


def test_checkout_page_configures_widget(client):
    response = client.post('/buy/P1', data={'email': 'buyer@example.com'})
    body = response.get_data(as_text=True)

    assert 'pk_test_123' in body
    assert '300000' in body
    assert 'PRJ_' in body


def test_gateway_unavailable_is_reported(client, store):
    store.checkout.key_resolver = MagicMock(resolve=MagicMock(side_effect=GatewayUnavailableError('no key')))

    response = client.post('/buy/P1', data={'email': 'buyer@example.com'})

    assert location(response) == '/'
    with client.session_transaction() as sess:
        assert ('danger', 'no key') in sess['_flashes']


def test_callback_path_entitles_and_shows_download_screen(client, app, verifier):
    reference = start_purchase(client)

    response = client.post(f'/purchase/{reference}/complete')
    assert location(response) == '/purchase/success'

    screen = client.get('/purchase/success').get_data(as_text=True)
    assert reference in screen
    assert 'drive.google.com/uc?export=download&amp;id=abc123' in screen or \
        'drive.google.com/uc?export=download\\u0026id=abc123' in screen
    assert owned(client) == {'P1'}
    verifier.verify.assert_not_called()
    assert PaymentRecord.query.filter_by(reference=reference).one().verified is False


def test_owned_project_buy_goes_straight_to_download(client, store):
    reference = start_purchase(client)
    client.post(f'/purchase/{reference}/complete')
    store.checkout.key_resolver = MagicMock()

    response = client.get('/buy/P1')

    assert response.status_code == 302
    assert response.headers['Location'] == 'https://drive.google.com/uc?export=download&id=abc123'
    store.checkout.key_resolver.resolve.assert_not_called()


def test_entitlement_survives_a_new_browser_session(client, app):
    reference = start_purchase(client)
    client.post(f'/purchase/{reference}/complete')
    device_id = client.get_cookie('device_id').value

    fresh = app.test_client()
    fresh.set_cookie('device_id', device_id)
    assert owned(fresh) == {'P1'}
    assert owned(app.test_client()) == set()


def test_cancel_leaves_project_unowned(client):
    reference = start_purchase(client)

    response = client.post(f'/purchase/{reference}/cancel')

    assert location(response) == '/'
    assert owned(client) == set()
    with client.session_transaction() as sess:
        assert 'pending_purchases' not in sess


def test_pending_project_is_shown_as_processing(client):
    start_purchase(client, 'P2')
    assert 'Processing...' in client.get('/').get_data(as_text=True)


def test_failed_return_verification_strips_params_once(client, verifier):
    response = client.get('/?reference=R&project=P1')

    assert response.status_code == 302
    assert location(response) == '/'
    verifier.verify.assert_called_once_with('R')
    assert owned(client) == set()
    assert DeviceValue.query.count() == 0

    client.get(location(response))
    verifier.verify.assert_called_once_with('R')


def test_verified_return_entitles(client, verifier):
    verifier.verify.return_value = True

    response = client.get('/?reference=R2&project=P2&school=all')

    assert location(response) == '/purchase/success'
    assert owned(client) == {'P2'}
    assert PaymentRecord.query.filter_by(reference='R2').one().verified is True


def test_return_with_only_one_param_is_ignored(client, verifier):
    response = client.get('/?reference=R')

    assert response.status_code == 200
    verifier.verify.assert_not_called()


def test_download_requires_ownership(client):
    response = client.get('/download/P1')
    assert location(response) == '/buy/P1'


def test_download_again_without_session_expires(client):
    response = client.get('/download-again')

    assert location(response) == '/'
    with client.session_transaction() as sess:
        assert ('danger', 'Download session expired. Please purchase again.') in sess['_flashes']


def test_download_again_after_purchase(client):
    client.post(f'/purchase/{start_purchase(client, "P4")}/complete')

    response = client.get('/download-again')

    assert response.headers['Location'] == 'https://drive.google.com/uc?export=download&id=jkl012'


def test_api_config(client, store):
    assert client.get('/api/config').get_json() == {'PAYSTACK_PUBLIC_KEY': 'pk_test_123'}

    store.checkout.key_resolver = MagicMock(resolve=MagicMock(side_effect=GatewayUnavailableError('none')))
    assert client.get('/api/config').status_code == 503


def test_api_verify(client, store):
    store.paystack_verifier = MagicMock(verify=MagicMock(return_value=True))

    assert client.post('/api/verify', json={'reference': 'R1'}).get_json() == {'verified': True}
    assert client.post('/api/verify', json={}).status_code == 400
    assert client.post('/api/verify', data='junk').status_code == 400


def test_api_projects_filters(client):
    data = client.get('/api/projects', query_string={'department': 'Department of Computer Science'}).get_json()

    assert [p['id'] for p in data['projects']] == ['P1', 'P4']
    assert data['schools'][0]['name'] == 'SCHOOL OF APPLIED SCIENCE AND TECHNOLOGY'


def test_check_catalog_command(app, store):
    store.source = MagicMock()
    store.source.fetch.return_value = json.dumps({'projects': [
        {'id': 'J1', 'name': 'Brand Audit', 'category': 'Department of Marketing', 'driveId': 'x1'},
        {'id': 'J2', 'name': 'Broken'},
    ]})

    result = app.test_cli_runner().invoke(args=['projectstore', 'check-catalog'])

    assert result.exit_code == 0
    assert 'Loaded 1 projects (1 rows skipped).' in result.output
    assert 'SCHOOL OF BUSINESS STUDIES' in result.output


def test_check_catalog_command_reports_failure(app, store):
    store.source = MagicMock()
    store.source.fetch.side_effect = CatalogLoadError('offline')

    result = app.test_cli_runner().invoke(args=['projectstore', 'check-catalog'])

    assert result.exit_code != 0
    assert 'Catalog could not be loaded' in result.output


def test_payments_command(client, app):
    client.post(f'/purchase/{start_purchase(client)}/complete')

    result = app.test_cli_runner().invoke(args=['projectstore', 'payments', '--email', 'buyer@example.com'])

    assert result.exit_code == 0
    assert 'P1' in result.output
    assert '3000' in result.output


def test_abandoned_checkout_gives_the_buy_link_back(client):
    reference = start_purchase(client)
    body = client.get('/').get_data(as_text=True)
    assert 'Processing...' in body
    assert 'href="/buy/P1">Start again</a>' in body

    with client.session_transaction() as sess:
        pending = json.loads(sess['pending_purchases'])
        pending[reference]['created_at'] = 0
        sess['pending_purchases'] = json.dumps(pending)

    body = client.get('/').get_data(as_text=True)
    assert 'Processing...' not in body
    assert '<a class="buy-btn" href="/buy/P1">Buy Now</a>' in body


def test_starting_again_replaces_the_pending_attempt(client):
    first = start_purchase(client)
    second = start_purchase(client)

    with client.session_transaction() as sess:
        assert list(json.loads(sess['pending_purchases'])) == [second]
    assert first != second


def test_catalog_outage_is_fetched_once_per_backoff_window(client, store, app):
    http = MagicMock()
    http.get.side_effect = requests.exceptions.ConnectTimeout('down')
    store.source = CatalogSource('https://catalog.test/projects.json', retries=2, http=http)
    store.loaded = False

    body = client.get('/').get_data(as_text=True)
    assert 'Failed to load projects. Please refresh the page.' in body
    assert http.get.call_count == 3

    client.get('/')
    client.get('/buy/P1')
    assert http.get.call_count == 3

    store.failed_at -= app.config['CATALOG_RETRY_BACKOFF'] + 1
    client.get('/')
    assert http.get.call_count == 6


def test_verified_return_for_unlisted_project_is_not_owned(client, verifier):
    verifier.verify.return_value = True

    response = client.get('/?reference=R9&project=NOT-LISTED')

    assert location(response) == '/'
    assert DeviceValue.query.count() == 0
    assert PaymentRecord.query.filter_by(reference='R9').one().project_id == 'NOT-LISTED'
