"""Shared fixtures for record store tests."""
import boto3
import pytest
from moto import mock_aws

from storage.connection import ConnectionCache, create_table
from storage.record_store import BookingStore, EventStore

TABLE_NAME = 'test-event-bookings'
DATABASE_URI = f'dynamodb:///{TABLE_NAME}?region=us-east-1'


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake AWS credentials so nothing reaches a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def database_uri(monkeypatch, aws_credentials):
    """Point DATABASE_URI at the mock table."""
    monkeypatch.setenv('DATABASE_URI', DATABASE_URI)
    return DATABASE_URI


@pytest.fixture
def dynamodb_resource(aws_credentials):
    """Create a mock DynamoDB table for testing."""
    with mock_aws():
        resource = boto3.resource('dynamodb', region_name='us-east-1')
        create_table(resource, TABLE_NAME)
        yield resource


@pytest.fixture
def connection(dynamodb_resource, database_uri):
    """Connection established through a fresh ConnectionCache."""
    cache = ConnectionCache()
    yield cache.acquire()
    cache.reset()


@pytest.fixture
def event_store(connection):
    return EventStore(connection)


@pytest.fixture
def booking_store(connection, event_store):
    return BookingStore(connection, event_store=event_store)


@pytest.fixture
def valid_event_data():
    """Field values for a valid event."""
    return {
        'title': 'React Conference 2024',
        'description': 'A comprehensive conference about React and modern web development',
        'overview': 'Join us for an exciting day of learning',
        'image': 'https://example.com/image.jpg',
        'venue': 'Tech Convention Center',
        'location': 'San Francisco, CA',
        'date': '2024-12-15',
        'time': '09:00',
        'mode': 'hybrid',
        'audience': 'Developers and Tech Enthusiasts',
        'agenda': ['Opening Keynote', 'Workshop Sessions', 'Networking'],
        'organizer': 'Tech Events Inc',
        'tags': ['react', 'javascript', 'web-development'],
    }
