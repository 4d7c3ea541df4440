"""Shared fixtures: fake AWS credentials and a mocked single-table store."""
import os

import boto3
import pytest
from moto import mock_aws

from processor.models import Group, Source, SourceKind
from storage.dynamodb_store import DynamoDBStore

TABLE_NAME = 'test-hashrun-sync'


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Keep boto3 away from real credentials and regions."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def dynamodb_table():
    """Create a mock DynamoDB table for testing."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')
        table = dynamodb.create_table(
            TableName=TABLE_NAME,
            KeySchema=[
                {'AttributeName': 'pk', 'KeyType': 'HASH'},
                {'AttributeName': 'sk', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'pk', 'AttributeType': 'S'},
                {'AttributeName': 'sk', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )
        yield table


@pytest.fixture
def store(dynamodb_table):
    """Create DynamoDBStore instance with mock table."""
    return DynamoDBStore(TABLE_NAME)


@pytest.fixture
def groups():
    return [
        Group(id='g-nych3', short_name='NYCH3', full_name='New York City Hash House Harriers', aliases={'NYC'}),
        Group(id='g-bfm', short_name='BFM', full_name="Ben Franklin Mob H3", aliases={'Ben Franklin Mob'}),
        Group(id='g-philly', short_name='Philly H3', full_name='Philadelphia Hash House Harriers'),
    ]


@pytest.fixture
def source():
    return Source(
        id='src-1',
        kind=SourceKind.ICAL_FEED,
        url='https://example.com/calendar.ics',
        name='Example calendar',
        trust_level=5,
    )
