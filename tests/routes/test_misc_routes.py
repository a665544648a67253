import io

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from conftest import auth_headers
from zenzone.core import config
from zenzone.main import app
from zenzone.routes import upload_routes
from zenzone.services import moderation


def test_health_reports_realtime_rooms() -> None:
    with TestClient(app) as client:
        response = client.get('/api/health')

    assert response.status_code == 200
    assert response.json()['status'] == 'ok'
    assert response.json()['realtimeRooms'] == 0


def test_sentiment_endpoint(student) -> None:
    with TestClient(app) as client:
        response = client.post('/api/sentiment', json={'text': 'I want to die'}, headers=auth_headers(student))
        empty = client.post('/api/sentiment', json={'text': '  '}, headers=auth_headers(student))
        anonymous = client.post('/api/sentiment', json={'text': 'hello'})

    assert response.status_code == 200
    assert response.json()['crisisFlag'] is True
    assert empty.status_code == 400
    assert empty.json()['code'] == 'ValidationError'
    assert anonymous.status_code == 401


def test_upload_stores_file(student, tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(config, 'UPLOAD_DIR', str(tmp_path))

    with TestClient(app) as client:
        response = client.post(
            '/api/upload',
            files={'file': ('notes.txt', b'session notes', 'text/plain')},
            headers=auth_headers(student),
        )

    assert response.status_code == 200
    body = response.json()
    assert body['name'] == 'notes.txt'
    assert body['type'].startswith('text/plain')
    assert body['size'] == len(b'session notes')
    assert body['fileUrl'].startswith('/uploads/')
    stored = tmp_path / body['fileUrl'].rsplit('/', 1)[1]
    assert stored.read_bytes() == b'session notes'


def test_upload_rejects_large_files(student, tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(config, 'UPLOAD_DIR', str(tmp_path))
    monkeypatch.setattr(config, 'MAX_UPLOAD_BYTES', 4)

    with TestClient(app) as client:
        response = client.post(
            '/api/upload',
            files={'file': ('big.bin', b'0123456789', 'application/octet-stream')},
            headers=auth_headers(student),
        )

    assert response.status_code == 400
    assert list(tmp_path.iterdir()) == []


class _FailingStream:
    def __init__(self) -> None:
        self.reads = 0

    def read(self, size: int = -1) -> bytes:
        self.reads += 1
        if self.reads > 1:
            raise OSError('connection reset')
        return b'partial'


def test_save_upload_stops_reading_past_the_limit(tmp_path) -> None:
    source = io.BytesIO(b'x' * (upload_routes.CHUNK_SIZE * 3))
    target = tmp_path / 'big.bin'

    with pytest.raises(HTTPException) as exception_info:
        upload_routes.save_upload(source, target, limit=10)

    assert exception_info.value.status_code == 400
    assert source.tell() == upload_routes.CHUNK_SIZE
    assert not target.exists()


def test_save_upload_removes_partial_file_on_read_error(tmp_path) -> None:
    target = tmp_path / 'broken.bin'

    with pytest.raises(OSError):
        upload_routes.save_upload(_FailingStream(), target, limit=1024)

    assert not target.exists()


def test_save_upload_returns_size(tmp_path) -> None:
    target = tmp_path / 'ok.txt'

    assert upload_routes.save_upload(io.BytesIO(b'hello'), target, limit=5) == 5
    assert target.read_bytes() == b'hello'


def test_moderation_endpoint(student, monkeypatch) -> None:
    requested = {}

    def fake_analyze(text, attributes, languages):
        requested.update(text=text, attributes=attributes, languages=languages)
        return {'TOXICITY': 0.8}

    monkeypatch.setattr(config, 'PERSPECTIVE_API_KEY', 'test-key')
    monkeypatch.setattr(moderation, 'analyze_text', fake_analyze)

    with TestClient(app) as client:
        response = client.post(
            '/api/moderation/perspective',
            json={'text': 'you are awful', 'attributes': ['TOXICITY']},
            headers=auth_headers(student),
        )
        missing = client.post('/api/moderation/perspective', json={'text': ''}, headers=auth_headers(student))

    assert response.status_code == 200
    assert response.json() == {'scores': {'TOXICITY': 0.8}, 'action': 'warn', 'thresholds': {'BLOCK': 0.9, 'WARN': 0.75}}
    assert requested == {'text': 'you are awful', 'attributes': ['TOXICITY'], 'languages': ('en',)}
    assert missing.status_code == 400


def test_moderation_endpoint_without_key(student, monkeypatch) -> None:
    monkeypatch.setattr(config, 'PERSPECTIVE_API_KEY', '')

    with TestClient(app) as client:
        response = client.post('/api/moderation/perspective', json={'text': 'hello'}, headers=auth_headers(student))

    assert response.status_code == 503
    assert response.json() == {'error': 'Perspective not configured on server', 'code': 'ServiceUnavailable'}
