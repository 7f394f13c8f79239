"""Tests for the OCR and text parsing endpoints."""

import io

from PIL import Image

from app import create_app
from ocr_engine import OCREngine
from tests.conftest import TEST_CONFIG, FakeOCREngine, bearer, register
from tests.test_ocr_engine import FakeReader, box, png_bytes


def upload(filename='screenshot.png', content=b'fake image bytes'):
    return {'image': (io.BytesIO(content), filename)}


class TestProcessImage:
    def test_extracts_fields(self, client, auth_headers, ocr_engine):
        ocr_engine.text = "Apple US0378331005\n25 shares @ $180.10"
        response = client.post('/ocr/process', data=upload(), content_type='multipart/form-data',
                               headers=auth_headers)
        assert response.status_code == 200
        result = response.get_json()['ocrResult']
        assert result['isins'] == ['US0378331005']
        assert result['quantities'] == [25.0]
        assert result['prices'] == [180.1]
        assert result['confidence'] == 0.8

    def test_ocr_failure(self, client, auth_headers, ocr_engine):
        ocr_engine.fail = True
        response = client.post('/ocr/process', data=upload(), content_type='multipart/form-data',
                               headers=auth_headers)
        assert response.status_code == 200
        data = response.get_json()
        assert data['error'] == 'No text extracted'
        assert data['ocrResult']['isins'] == []
        assert data['ocrResult']['text'] == ''

    def test_no_image(self, client, auth_headers):
        response = client.post('/ocr/process', data={}, content_type='multipart/form-data', headers=auth_headers)
        assert response.status_code == 400
        assert response.get_json() == {'error': 'No image provided'}

    def test_wrong_extension(self, client, auth_headers, ocr_engine):
        response = client.post('/ocr/process', data=upload('statement.pdf'), content_type='multipart/form-data',
                               headers=auth_headers)
        assert response.status_code == 400
        assert 'Unsupported file type' in response.get_json()['error']
        assert ocr_engine.calls == 0

    def test_requires_auth(self, client):
        response = client.post('/ocr/process', data=upload(), content_type='multipart/form-data')
        assert response.status_code == 401

    def test_too_large(self, price_lookup):
        app = create_app(dict(TEST_CONFIG, MAX_CONTENT_LENGTH=1024), price_lookup=price_lookup,
                         ocr_engine=FakeOCREngine('AAPL 1'))
        client = app.test_client()
        headers = bearer(register(client)['access_token'])

        response = client.post('/ocr/process', data=upload(content=b'x' * 4096),
                               content_type='multipart/form-data', headers=headers)

        assert response.status_code == 413
        assert 'File too large' in response.get_json()['error']

    def test_oversized_image(self, price_lookup, monkeypatch):
        engine = OCREngine()
        engine._reader = FakeReader([(box(0, 0, 40, 20), 'AAPL', 0.9)])
        monkeypatch.setattr(Image, 'MAX_IMAGE_PIXELS', 1000)
        app = create_app(TEST_CONFIG, price_lookup=price_lookup, ocr_engine=engine)
        client = app.test_client()
        headers = bearer(register(client)['access_token'])

        response = client.post('/ocr/process', data=upload(content=png_bytes((200, 60))),
                               content_type='multipart/form-data', headers=headers)

        assert response.status_code == 200
        assert response.get_json()['error'] == 'No text extracted'
        assert engine._reader.images == []


class TestProcessText:
    def test_manual_confidence(self, client, auth_headers):
        response = client.post('/ocr/process-text', json={'text': 'AAPL 100 shares\nGOOGL 50 shares'},
                               headers=auth_headers)
        result = response.get_json()['ocrResult']
        assert result['quantities'] == [100.0, 50.0]
        assert result['isins'] == []
        assert result['confidence'] == 1.0

    def test_blank_text(self, client, auth_headers):
        response = client.post('/ocr/process-text', json={'text': '   '}, headers=auth_headers)
        assert response.status_code == 400
        assert response.get_json() == {'error': 'Text is required'}


class TestDetectAssets:
    def test_from_text(self, client, auth_headers):
        text = "AAPL 10 150.00\nAAPL 20 160.00\nXYZ123 42"
        data = client.post('/ocr/detect-assets', json={'text': text}, headers=auth_headers).get_json()
        assert data['count'] == 1
        assert data['assets'] == [{'symbol': 'AAPL', 'name': 'AAPL Inc.', 'quantity': 10.0, 'purchasePrice': 150.0}]
        assert data['text'] == text

    def test_from_image(self, client, auth_headers, ocr_engine):
        ocr_engine.text = "SCHD Arca 27.50 +0.03 10 0.30"
        data = client.post('/ocr/detect-assets', data=upload(), content_type='multipart/form-data',
                           headers=auth_headers).get_json()
        assert [a['symbol'] for a in data['assets']] == ['SCHD']

    def test_nothing_detected(self, client, auth_headers):
        data = client.post('/ocr/detect-assets', json={'text': 'Account overview'}, headers=auth_headers).get_json()
        assert data == {'assets': [], 'count': 0, 'text': 'Account overview'}

    def test_ocr_failure(self, client, auth_headers, ocr_engine):
        ocr_engine.fail = True
        response = client.post('/ocr/detect-assets', data=upload(), content_type='multipart/form-data',
                               headers=auth_headers)
        assert response.status_code == 200
        assert response.get_json()['error'] == 'No text extracted'
        assert response.get_json()['count'] == 0


class TestHistory:
    def test_history_is_per_user(self, client, auth_headers, other_headers):
        client.post('/ocr/process-text', json={'text': '5 shares'}, headers=auth_headers)
        client.post('/ocr/detect-assets', json={'text': 'AAPL 1'}, headers=auth_headers)

        mine = client.get('/ocr/history', headers=auth_headers).get_json()
        theirs = client.get('/ocr/history', headers=other_headers).get_json()

        assert [entry['action'] for entry in mine['history']] == ['detect_assets', 'ocr_process_text']
        assert theirs['count'] == 0

    def test_history_limit(self, client, auth_headers):
        for _ in range(55):
            client.post('/ocr/process-text', json={'text': '1 share'}, headers=auth_headers)
        assert client.get('/ocr/history', headers=auth_headers).get_json()['count'] == 50
