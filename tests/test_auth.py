"""Tests for registration, login and token handling."""

from tests.conftest import bearer, register


class TestRegister:
    def test_register(self, client):
        data = register(client)
        assert data['user']['email'] == 'investor@example.com'
        assert data['user']['role'] == 'user'
        assert 'password_hash' not in data['user']
        assert data['access_token']

    def test_duplicate(self, client):
        register(client)
        response = client.post('/auth/register', json={'email': 'investor@example.com', 'password': 'password123'})
        assert response.status_code == 409
        assert response.get_json() == {'error': 'Email already registered'}

    def test_short_password(self, client):
        response = client.post('/auth/register', json={'email': 'a@example.com', 'password': 'short'})
        assert response.status_code == 400
        assert 'at least 8' in response.get_json()['error']

    def test_invalid_email(self, client):
        response = client.post('/auth/register', json={'email': 'nope', 'password': 'password123'})
        assert response.status_code == 400

    def test_no_body(self, client):
        response = client.post('/auth/register')
        assert response.status_code == 400
        assert response.get_json() == {'error': 'No data provided'}


class TestLogin:
    def test_login(self, client):
        register(client)
        response = client.post('/auth/login', json={'email': 'Investor@Example.com', 'password': 'password123'})
        assert response.status_code == 200
        data = response.get_json()
        assert data['user']['last_login'] is not None

        me = client.get('/auth/me', headers=bearer(data['access_token']))
        assert me.get_json()['user']['email'] == 'investor@example.com'

    def test_wrong_password(self, client):
        register(client)
        response = client.post('/auth/login', json={'email': 'investor@example.com', 'password': 'wrong-password'})
        assert response.status_code == 401
        assert response.get_json() == {'error': 'Invalid email or password'}

    def test_unknown_user(self, client):
        response = client.post('/auth/login', json={'email': 'ghost@example.com', 'password': 'password123'})
        assert response.status_code == 401

    def test_missing_fields(self, client):
        response = client.post('/auth/login', json={'email': 'investor@example.com'})
        assert response.status_code == 400


class TestTokens:
    def test_missing_token(self, client):
        response = client.get('/auth/me')
        assert response.status_code == 401
        assert 'error' in response.get_json()

    def test_garbage_token(self, client):
        response = client.get('/portfolios', headers=bearer('not.a.token'))
        assert response.status_code == 401
        assert 'error' in response.get_json()

    def test_deleted_user_token(self, client, auth_headers, admin_headers):
        me = client.get('/auth/me', headers=auth_headers).get_json()['user']
        client.delete(f"/admin/users/{me['id']}", headers=admin_headers)
        response = client.get('/auth/me', headers=auth_headers)
        assert response.status_code == 401


class TestHealth:
    def test_health(self, client):
        assert client.get('/health').get_json() == {'status': 'ok'}
