"""Tests for quote, history and search endpoints."""

from datetime import date


class TestQuote:
    def test_quote(self, client):
        data = client.get('/quote/aapl').get_json()
        assert data['symbol'] == 'AAPL'
        assert data['price'] == 150.0

    def test_unknown_symbol(self, client):
        response = client.get('/quote/NOPE')
        assert response.status_code == 404
        assert response.get_json() == {'error': 'Symbol NOPE not found'}


class TestHistory:
    def test_history(self, client, quote_provider):
        quote_provider.histories['MSFT'] = [(date(2025, 1, 2), 420.123456), (date(2025, 1, 3), 421.0)]
        data = client.get('/prices/msft/history?period=1m').get_json()
        assert data['symbol'] == 'MSFT'
        assert data['period'] == '1m'
        assert data['history'] == [
            {'date': '2025-01-02', 'price': 420.1235},
            {'date': '2025-01-03', 'price': 421.0},
        ]

    def test_bad_period(self, client):
        response = client.get('/prices/MSFT/history?period=7d')
        assert response.status_code == 400
        assert 'Unsupported period' in response.get_json()['error']


class TestSearch:
    def test_search(self, client):
        data = client.get('/search?q=MS').get_json()
        assert [r['symbol'] for r in data['results']] == ['MSFT']

    def test_empty_query(self, client):
        assert client.get('/search?q=').get_json() == {'results': []}
