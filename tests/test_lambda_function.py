"""Integration tests for Lambda handler."""
import json
import logging
import os
import sys
from unittest.mock import Mock, patch

import pytest

from lambda_function import JsonFormatter, lambda_handler, setup_logging
from pipeline.dispatch import BatchResult
from processor.models import HealthStatus, ScrapeOutcome, SourceNotFoundError


@pytest.fixture
def mock_env():
    """Set up environment variables for testing."""
    env_vars = {
        'TABLE_NAME': 'test-hashrun-sync',
        'LOG_LEVEL': 'INFO',
        'DAYS_AHEAD': '60',
        'TIMEOUT_SECONDS': '20',
        'BASELINE_WINDOW': '5'
    }
    with patch.dict(os.environ, env_vars):
        os.environ.pop('QUEUE_URL', None)
        yield env_vars


@pytest.fixture
def mock_context():
    """Create a mock Lambda context."""
    context = Mock()
    context.function_name = 'test-function'
    context.memory_limit_in_mb = 512
    context.invoked_function_arn = 'arn:aws:lambda:us-east-1:123456789012:function:test-function'
    context.aws_request_id = 'test-request-id'
    return context


@pytest.fixture
def outcome():
    return ScrapeOutcome(
        source_id='src-1',
        success=True,
        scrape_log_id='log-1',
        events_found=5,
        created=4,
        skipped=1,
        unmatched=['UnknownTag'],
        health_status=HealthStatus.DEGRADED
    )


class TestLambdaHandler:
    """Test cases for Lambda handler."""

    @patch('lambda_function.DynamoDBStore')
    @patch('lambda_function.ScrapeOrchestrator')
    def test_single_source_scrape(self, mock_orchestrator_class, mock_store_class, mock_env, mock_context, outcome):
        """Test scraping one source by id."""
        mock_orchestrator = Mock()
        mock_orchestrator.scrape_source.return_value = outcome
        mock_orchestrator_class.return_value = mock_orchestrator

        response = lambda_handler({'sourceId': 'src-1', 'days': 30, 'force': True}, mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['message'] == 'Scrape completed'
        assert body['outcome']['created'] == 4
        assert body['outcome']['health_status'] == 'DEGRADED'
        assert 'duration_seconds' in body

        mock_store_class.assert_called_once_with(table_name='test-hashrun-sync')
        mock_orchestrator_class.assert_called_once_with(
            mock_store_class.return_value, baseline_window=5, timeout=20, default_days=60
        )
        mock_orchestrator.scrape_source.assert_called_once_with('src-1', days=30, force=True)

    @patch('lambda_function.DynamoDBStore')
    @patch('lambda_function.ScrapeOrchestrator')
    def test_failed_scrape_still_returns_200(self, mock_orchestrator_class, mock_store_class, mock_env, mock_context):
        """Test that a recorded scrape failure is reported, not raised."""
        mock_orchestrator_class.return_value.scrape_source.return_value = ScrapeOutcome(
            source_id='src-1', success=False, errors=['HTTP 503'], health_status=HealthStatus.FAILING
        )

        response = lambda_handler({'sourceId': 'src-1'}, mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['message'] == 'Scrape failed'
        assert body['outcome']['errors'] == ['HTTP 503']

    @patch('lambda_function.DynamoDBStore')
    @patch('lambda_function.ScrapeOrchestrator')
    def test_unknown_source(self, mock_orchestrator_class, mock_store_class, mock_env, mock_context):
        """Test that an unknown source id gives 404."""
        mock_orchestrator_class.return_value.scrape_source.side_effect = SourceNotFoundError('missing')

        response = lambda_handler({'sourceId': 'missing'}, mock_context)

        assert response['statusCode'] == 404
        body = json.loads(response['body'])
        assert body['message'] == 'Source not found'
        assert body['source_id'] == 'missing'

    @patch('lambda_function.DynamoDBStore')
    @patch('lambda_function.ScrapeOrchestrator')
    @patch('lambda_function.scrape_due_sources')
    def test_scheduled_batch(
        self,
        mock_scrape_due,
        mock_orchestrator_class,
        mock_store_class,
        mock_env,
        mock_context
    ):
        """Test the default scheduled run over due sources."""
        mock_scrape_due.return_value = BatchResult(
            results=[{'source_id': 'a', 'success': True}, {'source_id': 'b', 'skipped': True}],
            succeeded=1,
            skipped=1
        )

        response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['message'] == 'Batch scrape completed'
        assert body['succeeded'] == 1
        assert body['skipped'] == 1
        assert len(body['results']) == 2
        mock_scrape_due.assert_called_once_with(
            mock_store_class.return_value, mock_orchestrator_class.return_value, days=None
        )

    @patch('lambda_function.DynamoDBStore')
    @patch('lambda_function.ScrapeOrchestrator')
    @patch('lambda_function.scrape_due_sources')
    def test_batch_failure(self, mock_scrape_due, mock_orchestrator_class, mock_store_class, mock_env, mock_context):
        """Test error handling when the batch itself raises."""
        mock_scrape_due.side_effect = Exception('DynamoDB error')

        response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['message'] == 'Scrape run failed'
        assert 'DynamoDB error' in body['error']
        assert body['error_type'] == 'Exception'
        assert 'duration_seconds' in body

    @patch('lambda_function.DynamoDBStore')
    @patch('lambda_function.ScrapeOrchestrator')
    def test_dispatch_requires_queue_url(self, mock_orchestrator_class, mock_store_class, mock_env, mock_context):
        """Test dispatch mode without a configured queue."""
        response = lambda_handler({'mode': 'dispatch'}, mock_context)

        assert response['statusCode'] == 500
        assert json.loads(response['body'])['message'] == 'QUEUE_URL is not configured'

    @patch('lambda_function.DynamoDBStore')
    @patch('lambda_function.ScrapeOrchestrator')
    @patch('lambda_function.SqsDispatcher')
    def test_dispatch_mode(
        self,
        mock_dispatcher_class,
        mock_orchestrator_class,
        mock_store_class,
        mock_env,
        mock_context
    ):
        """Test fan-out of due sources to SQS."""
        mock_dispatcher_class.return_value.dispatch_due.return_value = BatchResult(succeeded=3)
        queue_url = 'https://sqs.us-east-1.amazonaws.com/123456789012/scrape-jobs'

        with patch.dict(os.environ, {'QUEUE_URL': queue_url}):
            response = lambda_handler({'mode': 'dispatch', 'days': 14}, mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['message'] == 'Dispatch completed'
        assert body['succeeded'] == 3
        mock_dispatcher_class.assert_called_once_with(queue_url, mock_store_class.return_value)
        mock_dispatcher_class.return_value.dispatch_due.assert_called_once_with(days=14)

    @patch('lambda_function.DynamoDBStore')
    @patch('lambda_function.ScrapeOrchestrator')
    def test_sqs_records(self, mock_orchestrator_class, mock_store_class, mock_env, mock_context, outcome):
        """Test that only jobs that raised are reported for redelivery."""
        mock_orchestrator = mock_orchestrator_class.return_value
        mock_orchestrator.scrape_source.side_effect = [
            outcome,
            SourceNotFoundError('gone'),
            Exception('Throttled'),
        ]
        event = {'Records': [
            {'messageId': 'm1', 'body': json.dumps({'source_id': 'src-1', 'days': 30})},
            {'messageId': 'm2', 'body': json.dumps({'source_id': 'gone'})},
            {'messageId': 'm3', 'body': json.dumps({'source_id': 'src-3', 'force': True})},
        ]}

        response = lambda_handler(event, mock_context)

        assert response == {'batchItemFailures': [{'itemIdentifier': 'm3'}]}
        mock_orchestrator.scrape_source.assert_any_call('src-1', days=30, force=False)
        mock_orchestrator.scrape_source.assert_any_call('src-3', days=None, force=True)

    @patch('lambda_function.DynamoDBStore')
    @patch('lambda_function.ScrapeOrchestrator')
    def test_malformed_sqs_body_is_retried(self, mock_orchestrator_class, mock_store_class, mock_env, mock_context):
        """Test that an unreadable job body is reported as a failure."""
        response = lambda_handler({'Records': [{'messageId': 'm1', 'body': 'not json'}]}, mock_context)

        assert response == {'batchItemFailures': [{'itemIdentifier': 'm1'}]}
        mock_orchestrator_class.return_value.scrape_source.assert_not_called()

    @patch('lambda_function.DynamoDBStore')
    @patch('lambda_function.ScrapeOrchestrator')
    @patch('lambda_function.setup_logging')
    def test_logging_output(
        self,
        mock_setup_logging,
        mock_orchestrator_class,
        mock_store_class,
        mock_env,
        mock_context,
        outcome,
        caplog
    ):
        """Test that logging output is generated correctly."""
        mock_orchestrator_class.return_value.scrape_source.return_value = outcome

        with caplog.at_level(logging.INFO, logger='lambda_function'):
            response = lambda_handler({'sourceId': 'src-1'}, mock_context)

        assert response['statusCode'] == 200
        log_messages = [record.message for record in caplog.records]
        assert any('Lambda execution started' in msg for msg in log_messages)
        mock_setup_logging.assert_called_once_with('INFO')


class TestSetupLogging:
    """Test cases for logging setup."""

    def test_setup_logging_default_level(self):
        """Test logging setup with default INFO level."""
        setup_logging()
        assert logging.getLogger().level == logging.INFO

    def test_setup_logging_debug_level(self):
        """Test logging setup with DEBUG level."""
        setup_logging('DEBUG')
        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_unknown_level_falls_back(self):
        """Test that an unknown level name falls back to INFO."""
        setup_logging('CHATTY')
        assert logging.getLogger().level == logging.INFO


class TestJsonFormatter:
    """Test cases for the JSON log formatter."""

    def test_extra_fields_are_included(self):
        record = logging.LogRecord('scraper.ical_feed', logging.INFO, __file__, 1, 'Fetched %d events', (3,), None)
        record.source_id = 'src-1'

        data = json.loads(JsonFormatter().format(record))

        assert data['message'] == 'Fetched 3 events'
        assert data['level'] == 'INFO'
        assert data['logger'] == 'scraper.ical_feed'
        assert data['source_id'] == 'src-1'
        assert 'args' not in data

    def test_exception_is_formatted(self):
        try:
            raise ValueError('bad row')
        except ValueError:
            record = logging.LogRecord('x', logging.ERROR, __file__, 1, 'failed', None, sys.exc_info())

        data = json.loads(JsonFormatter().format(record))

        assert 'ValueError: bad row' in data['exception']
