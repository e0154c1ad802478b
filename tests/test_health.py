"""
Tests for narration-pipeline service health and endpoints.
"""
import pytest
from app import app


@pytest.fixture
def client():
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client


def test_health_endpoint(client):
    """Test health check returns healthy status."""
    response = client.get('/health')
    assert response.status_code == 200
    data = response.get_json()
    assert data['status'] == 'healthy'
    assert data['service'] == 'narration-pipeline'
    assert 'version' in data
    assert 'timestamp' in data
    assert 'engines' in data['voice']


def test_schedule_requires_input(client):
    """Test schedule endpoint requires durations or weights."""
    response = client.post('/api/timeline/schedule', json={})
    assert response.status_code == 400
    assert 'error' in response.get_json()


def test_schedule_from_durations(client):
    """Test exact schedule for short segments floors every scene."""
    response = client.post('/api/timeline/schedule', json={
        'durations_ms': [1000] * 8
    })
    assert response.status_code == 200
    schedule = response.get_json()['schedule']
    assert schedule['sceneFrames'] == [96] * 8
    assert schedule['voiceStartFrame'] == 15
    assert schedule['totalFrames'] == 15 + 240 + 30
    assert schedule['timingSource'] == 'exact'


def test_schedule_from_weights(client):
    """Test weighted schedule uses the nominal composition length."""
    response = client.post('/api/timeline/schedule', json={
        'weights': [15] * 8,
        'nominal_frames': 1380
    })
    assert response.status_code == 200
    schedule = response.get_json()['schedule']
    assert schedule['sceneFrames'] == [183] * 8
    assert schedule['totalFrames'] == 1380
    assert schedule['timingSource'] == 'weighted'


def test_schedule_rejects_negative_durations(client):
    """Test invalid durations return 400."""
    response = client.post('/api/timeline/schedule', json={
        'durations_ms': [1000, -5]
    })
    assert response.status_code == 400


def test_split_sums_to_total(client):
    """Test proportional split keeps the exact total."""
    response = client.post('/api/narration/split', json={
        'segments': ['one', 'one two', 'one two three'],
        'total_duration_ms': 10001
    })
    assert response.status_code == 200
    data = response.get_json()
    assert sum(data['segment_durations_ms']) == 10001
    assert data['segment_durations_ms'][:2] == [1666, 3333]


def test_split_requires_fields(client):
    """Test split endpoint requires segments and total."""
    response = client.post('/api/narration/split', json={'segments': ['a']})
    assert response.status_code == 400


def test_run_requires_page(client):
    """Test run endpoint requires a page record."""
    response = client.post('/api/narration/run', json={})
    assert response.status_code == 400


def test_run_rejects_invalid_page(client):
    """Test run endpoint validates the page record."""
    response = client.post('/api/narration/run', json={'page': {'title': 'No url'}})
    assert response.status_code == 400
    assert response.get_json()['error'] == 'invalid page'


def test_run_rejects_unknown_engine(client):
    """Test run endpoint rejects an unknown voice engine."""
    response = client.post('/api/narration/run', json={
        'page': {'url': 'https://acme.io'},
        'voice_engine': 'not-an-engine'
    })
    assert response.status_code == 400
