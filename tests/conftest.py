"""Shared fixtures: mocked AWS resources and catalog helpers."""
from datetime import date, timedelta

import boto3
import pytest
from moto import mock_aws

from processor.event_processor import generate_event_id, normalize_title
from processor.models import CanonicalEvent
from storage.asset_store import S3AssetStore
from storage.dynamodb_manager import DynamoDBManager

TABLE_NAME = 'test-event-catalog'
CACHE_TABLE_NAME = 'test-image-cache'
BUCKET_NAME = 'test-event-images'


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so boto3 never reaches a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def aws():
    with mock_aws():
        yield


@pytest.fixture
def catalog_table(aws):
    """Create a mock catalog table."""
    dynamodb = boto3.resource('dynamodb', region_name='us-east-1')
    table = dynamodb.create_table(
        TableName=TABLE_NAME,
        KeySchema=[{'AttributeName': 'event_id', 'KeyType': 'HASH'}],
        AttributeDefinitions=[{'AttributeName': 'event_id', 'AttributeType': 'S'}],
        BillingMode='PAY_PER_REQUEST'
    )
    yield table


@pytest.fixture
def cache_table(aws):
    """Create a mock keyword image cache table."""
    dynamodb = boto3.resource('dynamodb', region_name='us-east-1')
    table = dynamodb.create_table(
        TableName=CACHE_TABLE_NAME,
        KeySchema=[{'AttributeName': 'cache_key', 'KeyType': 'HASH'}],
        AttributeDefinitions=[{'AttributeName': 'cache_key', 'AttributeType': 'S'}],
        BillingMode='PAY_PER_REQUEST'
    )
    yield table


@pytest.fixture
def asset_bucket(aws):
    s3 = boto3.client('s3', region_name='us-east-1')
    s3.create_bucket(Bucket=BUCKET_NAME)
    yield s3


@pytest.fixture
def store(catalog_table):
    """DynamoDBManager bound to the mock catalog table."""
    return DynamoDBManager(TABLE_NAME)


@pytest.fixture
def asset_store(asset_bucket):
    return S3AssetStore(BUCKET_NAME, base_url='https://cdn.example.com', s3_client=asset_bucket)


def future_date(days: int = 7) -> str:
    return (date.today() + timedelta(days=days)).isoformat()


def past_date(days: int) -> str:
    return (date.today() - timedelta(days=days)).isoformat()


def make_event(title='Toddler Time', event_date=None, source='Library', **overrides) -> CanonicalEvent:
    """Build a canonical event with a consistent identity key."""
    event_date = event_date or future_date()
    fields = dict(
        event_id=generate_event_id(title, event_date, source),
        title=title,
        normalized_title=normalize_title(title),
        event_date=event_date,
        start_time='10:00',
        end_time='11:00',
        location='Central Library',
        address='330 Park Blvd, San Diego, CA 92101',
        description='Songs and stories for toddlers',
        category='Kids',
        source=source,
        external_url='https://library.example.com/events/toddler-time',
    )
    fields.update(overrides)
    return CanonicalEvent(**fields)


def set_image(table, event_id: str, url: str, image_type: str = 'image', fingerprint: str = None):
    """Write image fields straight into the table, bypassing the store."""
    expression = 'SET image_url = :url, image_type = :type'
    values = {':url': url, ':type': image_type}
    if fingerprint:
        expression += ', image_fingerprint = :fp'
        values[':fp'] = fingerprint
    table.update_item(
        Key={'event_id': event_id},
        UpdateExpression=expression,
        ExpressionAttributeValues=values
    )
