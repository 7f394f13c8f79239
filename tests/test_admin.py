"""Tests for admin-only endpoints and admin seeding."""

from init_db import seed_admin
from models import db
from store import PortfolioStore


class TestAdminAccess:
    def test_regular_user_forbidden(self, client, auth_headers):
        for path in ('/admin/users', '/admin/portfolios', '/admin/stats'):
            response = client.get(path, headers=auth_headers)
            assert response.status_code == 403
            assert response.get_json() == {'error': 'Admin access required'}

    def test_requires_token(self, client):
        assert client.get('/admin/users').status_code == 401


class TestAdminUsers:
    def test_list_users(self, client, auth_headers, other_headers, admin_headers):
        data = client.get('/admin/users?limit=2&page=1', headers=admin_headers).get_json()
        assert data['pagination']['total'] == 3
        assert data['pagination']['pages'] == 2
        assert len(data['users']) == 2

    def test_search(self, client, auth_headers, other_headers, admin_headers):
        data = client.get('/admin/users?search=other', headers=admin_headers).get_json()
        assert [u['email'] for u in data['users']] == ['other@example.com']

    def test_change_role(self, client, auth_headers, admin_headers):
        user_id = client.get('/auth/me', headers=auth_headers).get_json()['user']['id']

        response = client.put(f'/admin/users/{user_id}/role', json={'role': 'admin'}, headers=admin_headers)

        assert response.status_code == 200
        assert response.get_json()['user']['role'] == 'admin'
        # Promotion takes effect without a new token
        assert client.get('/admin/stats', headers=auth_headers).status_code == 200

    def test_invalid_role(self, client, auth_headers, admin_headers):
        user_id = client.get('/auth/me', headers=auth_headers).get_json()['user']['id']
        response = client.put(f'/admin/users/{user_id}/role', json={'role': 'owner'}, headers=admin_headers)
        assert response.status_code == 400

    def test_delete_user(self, client, auth_headers, portfolio_id, admin_headers):
        user_id = client.get('/auth/me', headers=auth_headers).get_json()['user']['id']

        assert client.delete(f'/admin/users/{user_id}', headers=admin_headers).status_code == 200
        assert client.get('/admin/portfolios', headers=admin_headers).get_json()['count'] == 0

    def test_cannot_delete_self(self, client, admin_headers):
        admin_id = client.get('/auth/me', headers=admin_headers).get_json()['user']['id']
        response = client.delete(f'/admin/users/{admin_id}', headers=admin_headers)
        assert response.status_code == 400

    def test_delete_missing_user(self, client, admin_headers):
        assert client.delete('/admin/users/9999', headers=admin_headers).status_code == 404


class TestAdminOverview:
    def test_portfolios_and_stats(self, client, auth_headers, portfolio_id, admin_headers):
        client.post(f'/portfolios/{portfolio_id}/assets',
                    json={'symbol': 'MSFT', 'quantity': 2, 'purchase_price': 250}, headers=auth_headers)

        portfolios = client.get('/admin/portfolios', headers=admin_headers).get_json()
        assert portfolios['count'] == 1
        assert portfolios['portfolios'][0]['owner_email'] == 'investor@example.com'
        assert portfolios['portfolios'][0]['total_value'] == 600.0

        stats = client.get('/admin/stats', headers=admin_headers).get_json()
        assert stats['total_users'] == 2
        assert stats['total_admins'] == 1
        assert stats['total_assets'] == 1
        assert stats['total_gain_loss'] == 100.0


class TestSeedAdmin:
    def test_creates_then_reuses(self, app):
        with app.app_context():
            store = PortfolioStore(db.session)
            user, created = seed_admin(store, 'boss@example.com', 'bosspassword', bcrypt_rounds=4)
            again, created_again = seed_admin(store, 'boss@example.com', 'ignored-password', bcrypt_rounds=4)

            assert created and not created_again
            assert again.id == user.id
            assert user.is_admin
            assert user.check_password('bosspassword')

    def test_promotes_existing_user(self, app):
        with app.app_context():
            store = PortfolioStore(db.session)
            store.create_user('boss@example.com', 'password123', bcrypt_rounds=4)
            user, created = seed_admin(store, 'boss@example.com', 'whatever1', bcrypt_rounds=4)
            assert not created
            assert user.role == 'admin'
