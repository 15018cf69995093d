import pytest

from app import create_app
from config import TestingConfig
from conftest import ADMIN_EMAIL, GUEST_EMAIL, PASSWORD, login
from models import db, Host, Order, User


class MockConfig(TestingConfig):
    DATA_BACKEND = 'mock'


def test_health_and_root(client):
    r = client.get('/health')
    assert r.status_code == 200
    assert r.get_json()['data']['status'] == 'healthy'
    assert client.get('/').get_json()['success'] is True


def test_status_lists_routes(client):
    r = client.get('/api/status')
    assert r.status_code == 200
    body = r.get_json()
    assert body['success'] is True
    assert body['data']['status'] == 'healthy'
    assert body['data']['backend'] == 'live'
    assert 'POST /api/orders' in body['data']['routes']
    assert 'GET /api/client/<int:host_id>/<int:ref_id>' in body['data']['routes']


def test_unknown_route_uses_envelope(client):
    r = client.get('/api/nope')
    assert r.status_code == 404
    assert r.get_json()['success'] is False


class TestProducts:

    def test_create_and_filter(self, client):
        r = client.post('/api/products', json={'name': 'Café', 'price': 2.5, 'category': 'boissons'})
        assert r.status_code == 201
        client.post('/api/products', json={'name': 'Croissant', 'price': '1.80', 'category': 'viennoiseries'})

        products = client.get('/api/products?category=boissons').get_json()['data']
        assert [p['name'] for p in products] == ['Café']
        assert len(client.get('/api/products').get_json()['data']) == 2

    def test_missing_fields(self, client):
        r = client.post('/api/products', json={'name': 'Café'})
        assert r.status_code == 400
        assert r.get_json() == {'success': False, 'error': 'Name, price, and category are required'}


class TestOrders:

    def test_total_is_computed(self, client, users):
        r = client.post('/api/orders', json={
            'userId': users['guest'].id,
            'items': [{'price': 2.5, 'quantity': 2}, {'price': 1.8, 'quantity': 1}],
        })
        assert r.status_code == 201
        data = r.get_json()['data']
        assert data['total'] == 6.80
        assert data['orderNumber'].startswith('ORD-')
        assert data['status'] == 'pending'
        assert len(data['items']) == 2

    def test_filters(self, client, users):
        guest_id = users['guest'].id
        client.post('/api/orders', json={'userId': guest_id, 'items': [{'price': 3, 'quantity': 1}]})
        assert len(client.get(f'/api/orders?userId={guest_id}').get_json()['data']) == 1
        assert client.get('/api/orders?status=completed').get_json()['data'] == []

    @pytest.mark.parametrize('payload', [{}, {'userId': 1}, {'userId': 1, 'items': []}])
    def test_requires_user_and_items(self, client, payload):
        r = client.post('/api/orders', json=payload)
        assert r.status_code == 400
        assert r.get_json()['error'] == 'userId and items are required'

    def test_unknown_user(self, client):
        r = client.post('/api/orders', json={'userId': 42, 'items': [{'price': 1, 'quantity': 1}]})
        assert r.status_code == 404

    def test_fractional_quantity_is_rejected(self, client, users):
        r = client.post('/api/orders', json={'userId': users['guest'].id, 'items': [{'price': 2, 'quantity': 1.5}]})
        assert r.status_code == 400
        assert r.get_json()['error'] == 'Item 0 quantity must be a whole number'
        assert Order.query.count() == 0


class TestUsers:

    def test_short_password(self, client):
        r = client.post('/api/users', json={'email': 'a@b.com', 'password': '12345'})
        assert r.status_code == 400
        assert r.get_json()['error'] == 'Password must be at least 6 characters long'

    def test_create_never_returns_password(self, client):
        r = client.post('/api/users', json={'email': 'New@Example.test', 'password': '123456', 'name': 'Nina'})
        assert r.status_code == 201
        data = r.get_json()['data']
        assert data['email'] == 'new@example.test'
        assert data['role'] == 'client'
        assert 'password' not in data and 'passwordHash' not in data
        assert User.query.filter_by(email='new@example.test').first().check_password('123456')

    def test_duplicate_email(self, client, users):
        r = client.post('/api/users', json={'email': GUEST_EMAIL, 'password': 'another1'})
        assert r.status_code == 409
        assert r.get_json()['error'] == 'User with this email already exists'

    def test_host_user_needs_a_host_once_hosts_exist(self, client, host):
        r = client.post('/api/users', json={'email': 'boss@hotel.test', 'password': '123456', 'role': 'host'})
        assert r.status_code == 400
        r = client.post('/api/users', json={'email': 'boss@hotel.test', 'password': '123456',
                                            'role': 'host', 'hostId': 999})
        assert r.status_code == 400
        r = client.post('/api/users', json={'email': 'boss@hotel.test', 'password': '123456',
                                            'role': 'host', 'hostId': host.id})
        assert r.status_code == 201
        assert r.get_json()['data']['hostId'] == host.id

    def test_admin_updates_and_deletes(self, client, users, admin_headers):
        guest_id = users['guest'].id
        r = client.put(f'/api/users/{guest_id}', json={'name': 'Marie S.'}, headers=admin_headers)
        assert r.get_json()['data']['name'] == 'Marie S.'
        r = client.delete(f'/api/users/{guest_id}', headers=admin_headers)
        assert r.status_code == 200
        assert db.session.get(User, guest_id) is None

    def test_only_admin_updates_users(self, client, users, guest_headers):
        r = client.put(f"/api/users/{users['admin'].id}", json={'role': 'client'}, headers=guest_headers)
        assert r.status_code == 403


class TestLogin:

    def test_missing_fields(self, client):
        r = client.post('/api/auth/login', json={'email': ADMIN_EMAIL})
        assert r.status_code == 400
        assert r.get_json()['error'] == 'Email and password are required'

    def test_wrong_password(self, client, users):
        r = client.post('/api/auth/login', json={'email': ADMIN_EMAIL, 'password': 'wrong-one'})
        assert r.status_code == 401
        assert r.get_json()['success'] is False

    def test_token_identifies_the_caller(self, client, users):
        headers = login(client, ADMIN_EMAIL.upper(), PASSWORD)
        me = client.get('/api/auth/me', headers=headers).get_json()['data']
        assert me['email'] == ADMIN_EMAIL
        assert me['role'] == 'admin'

    def test_me_requires_token(self, client):
        assert client.get('/api/auth/me').status_code == 401
        bad = {'Authorization': 'Bearer not-a-token'}
        assert client.get('/api/auth/me', headers=bad).status_code == 401


class TestHosts:

    def test_create_and_list(self, client):
        r = client.post('/api/hosts', json={'name': 'Le Gourmet', 'email': 'Contact@Gourmet.test'})
        assert r.status_code == 201
        assert r.get_json()['data']['email'] == 'contact@gourmet.test'
        assert [h['name'] for h in client.get('/api/hosts').get_json()['data']] == ['Le Gourmet']

    def test_existing_email_updates_the_name(self, client, host):
        r = client.post('/api/hosts', json={'name': 'Hôtel du Lac & Spa', 'email': host.email})
        assert r.status_code == 200
        assert Host.query.count() == 1
        assert Host.query.one().name == 'Hôtel du Lac & Spa'

    def test_password_creates_the_host_login(self, client):
        r = client.post('/api/hosts', json={'name': 'Auberge', 'email': 'auberge@test.fr', 'password': 'auberge1'})
        host_id = r.get_json()['data']['hostId']
        user = User.query.filter_by(email='auberge@test.fr').one()
        assert user.role == 'host'
        assert user.host_id == host_id

    def test_missing_fields(self, client):
        r = client.post('/api/hosts', json={'name': 'Sans email'})
        assert r.status_code == 400
        assert r.get_json()['error'] == 'Name and email are required'


class TestSites:

    def test_admin_creates_site(self, client, host, admin_headers):
        r = client.post('/api/sites', json={'name': 'Annexe', 'hostId': host.id}, headers=admin_headers)
        assert r.status_code == 201
        assert r.get_json()['data']['hostId'] == host.id

    def test_host_must_exist(self, client, admin_headers):
        r = client.post('/api/sites', json={'name': 'Annexe', 'hostId': 999}, headers=admin_headers)
        assert r.status_code == 400

    def test_host_user_cannot_create_sites(self, client, host, host_headers):
        r = client.post('/api/sites', json={'name': 'Annexe', 'hostId': host.id}, headers=host_headers)
        assert r.status_code == 403


def test_clients_require_fields(client, host):
    r = client.post('/api/clients', json={'name': 'Jean'})
    assert r.status_code == 400
    assert r.get_json()['error'] == 'Name, email, and hostId are required'

    r = client.post('/api/clients', json={'name': 'Jean', 'email': 'jean@test.fr', 'hostId': host.id})
    assert r.status_code == 201
    assert client.get(f'/api/clients?hostId={host.id}').get_json()['data'][0]['nom'] == 'Jean'


class TestMockBackend:

    @pytest.fixture
    def mock_client(self):
        app = create_app(MockConfig)
        with app.app_context():
            yield app.test_client()

    def test_reads_are_served_from_mock_data(self, mock_client):
        assert mock_client.get('/api/status').get_json()['data']['backend'] == 'mock'
        products = mock_client.get('/api/products?category=boissons').get_json()['data']
        assert [p['name'] for p in products] == ['Café Expresso']
        assert mock_client.get('/api/hosts').get_json()['data'][0]['name'] == 'Restaurant Le Gourmet'

    def test_mock_create_still_validates(self, mock_client):
        r = mock_client.post('/api/users', json={'email': 'a@b.com', 'password': '12345'})
        assert r.status_code == 400
        r = mock_client.post('/api/orders', json={'userId': '1', 'items': [{'price': 2.5, 'quantity': 2}]})
        assert r.status_code == 201
        assert r.get_json()['data']['total'] == 5.0

    def test_mock_login(self, mock_client):
        r = mock_client.post('/api/auth/login', json={'email': 'admin@orderspot.com', 'password': 'admin123'})
        assert r.status_code == 200
        r = mock_client.post('/api/auth/login', json={'email': 'admin@orderspot.com', 'password': 'nope'})
        assert r.status_code == 401

    def test_mock_login_token_opens_protected_routes(self, mock_client):
        r = mock_client.post('/api/auth/login', json={'email': 'admin@orderspot.com', 'password': 'admin123'})
        token = r.get_json()['data']['token']
        me = mock_client.get('/api/auth/me', headers={'Authorization': f'Bearer {token}'}).get_json()['data']
        assert me['id'] == 1
        assert me['email'] == 'admin@orderspot.com'
        assert me['role'] == 'admin'


def test_unknown_backend_fails_at_startup():
    class Broken(TestingConfig):
        DATA_BACKEND = 'memory'

    with pytest.raises(ValueError):
        create_app(Broken)
