"""Shared test fixtures for the Portfolio Tracker test suite."""

import pytest

from app import create_app
from errors import OCRError
from init_db import seed_admin
from models import db
from price_lookup import PriceLookup
from store import PortfolioStore

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite://',
    'JWT_SECRET_KEY': 'test-secret-key-that-is-long-enough-for-hs256',
    'BCRYPT_ROUNDS': 4,
    'SYMBOLS_FILE': None,
    'LOG_LEVEL': 'WARNING',
}


class FakeQuoteProvider:
    """Stands in for YahooFinanceProvider; prices keyed by symbol."""

    def __init__(self, prices=None, histories=None):
        self.prices = dict(prices or {})
        self.histories = dict(histories or {})
        self.calls = []

    def last_price(self, symbol):
        self.calls.append(symbol)
        if symbol == 'BOOM':
            raise RuntimeError('provider exploded')
        return self.prices.get(symbol)

    def quote(self, symbol):
        price = self.prices.get(symbol)
        if price is None:
            return None
        return {
            'symbol': symbol,
            'name': f'{symbol} Inc.',
            'price': price,
            'change': 0.0,
            'changePercent': 0.0,
            'currency': 'USD',
        }

    def history(self, symbol, period):
        return self.histories.get(symbol, [])

    def search(self, query):
        return [
            {'symbol': symbol, 'name': f'{symbol} Inc.', 'type': 'EQUITY', 'exchange': 'NMS'}
            for symbol in sorted(self.prices)
            if query.upper() in symbol
        ]


class FakeOCREngine:
    """Returns canned text instead of running easyocr."""

    def __init__(self, text='', fail=False):
        self.text = text
        self.fail = fail
        self.calls = 0

    def recognize_text(self, content):
        self.calls += 1
        if self.fail:
            raise OCRError('No text found')
        return self.text


@pytest.fixture
def quote_provider():
    return FakeQuoteProvider(prices={'AAPL': 150.0, 'MSFT': 300.0, 'SCHD': 28.0, 'EWZ': 31.0})


@pytest.fixture
def price_lookup(quote_provider):
    lookup = PriceLookup(provider=quote_provider, ttl=60, timeout=2, max_workers=2)
    yield lookup
    lookup.shutdown()


@pytest.fixture
def ocr_engine():
    return FakeOCREngine()


@pytest.fixture
def app(price_lookup, ocr_engine):
    app = create_app(TEST_CONFIG, price_lookup=price_lookup, ocr_engine=ocr_engine)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    with app.app_context():
        yield PortfolioStore(db.session)


def register(client, email='investor@example.com', password='password123', name='Investor'):
    response = client.post('/auth/register', json={'email': email, 'password': password, 'name': name})
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def bearer(token):
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def auth_headers(client):
    return bearer(register(client)['access_token'])


@pytest.fixture
def other_headers(client):
    return bearer(register(client, email='other@example.com', name='Other')['access_token'])


@pytest.fixture
def admin_headers(app, client):
    with app.app_context():
        seed_admin(PortfolioStore(db.session), 'admin@example.com', 'adminpass123', bcrypt_rounds=4)
    response = client.post('/auth/login', json={'email': 'admin@example.com', 'password': 'adminpass123'})
    assert response.status_code == 200
    return bearer(response.get_json()['access_token'])


@pytest.fixture
def portfolio_id(client, auth_headers):
    response = client.post('/portfolios', json={'name': 'Retirement'}, headers=auth_headers)
    assert response.status_code == 201
    return response.get_json()['portfolio']['id']
