"""AWS Lambda handler for HashRun Sync."""
import json
import logging
import os
import time
from typing import Dict, Any, List

from pipeline.dispatch import SqsDispatcher, scrape_due_sources
from pipeline.scrape import ScrapeOrchestrator
from processor.models import SourceNotFoundError
from storage.dynamodb_store import DynamoDBStore


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    RESERVED = set(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'asctime'}

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including fields passed via extra=."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in self.RESERVED and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': json.dumps(body, default=str)}


def _handle_sqs_records(records: List[Dict[str, Any]], orchestrator: ScrapeOrchestrator, logger) -> Dict[str, Any]:
    """
    Run one scrape per queued job.

    Only jobs whose scrape raised are reported back for redelivery; a scrape that
    completed as FAILED is already recorded and is not retried.
    """
    failures = []
    for record in records:
        message_id = record.get('messageId')
        try:
            job = json.loads(record['body'])
            orchestrator.scrape_source(job['source_id'], days=job.get('days'), force=job.get('force', False))
        except SourceNotFoundError as e:
            logger.warning(f"Dropping job for unknown source {e}", extra={'message_id': message_id})
        except Exception as e:
            logger.error(
                f"Scrape job {message_id} failed: {str(e)}",
                extra={'message_id': message_id, 'error_type': type(e).__name__},
                exc_info=True
            )
            failures.append({'itemIdentifier': message_id})
    return {'batchItemFailures': failures}


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for HashRun Sync.

    The payload selects the mode:
      - SQS event (``Records``): one scrape per queued job
      - ``{"sourceId": ..., "days": ..., "force": ...}``: scrape one source
      - ``{"mode": "dispatch"}`` with QUEUE_URL set: queue every due source
      - anything else (e.g. EventBridge schedule): scrape due sources in sequence

    Args:
        event: Invocation payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and JSON body, or batchItemFailures for SQS
    """
    # Read configuration from environment variables
    table_name = os.environ.get('TABLE_NAME', 'hashrun-sync')
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    days_ahead = int(os.environ.get('DAYS_AHEAD', '90'))
    timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '30'))
    baseline_window = int(os.environ.get('BASELINE_WINDOW', '10'))
    queue_url = os.environ.get('QUEUE_URL')

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    event = event or {}
    start_time = time.time()
    logger.info(
        "Lambda execution started",
        extra={
            'table_name': table_name,
            'days_ahead': days_ahead,
            'timeout_seconds': timeout_seconds
        }
    )

    try:
        store = DynamoDBStore(table_name=table_name)
        orchestrator = ScrapeOrchestrator(
            store,
            baseline_window=baseline_window,
            timeout=timeout_seconds,
            default_days=days_ahead
        )

        if 'Records' in event:
            result = _handle_sqs_records(event['Records'], orchestrator, logger)
            logger.info(
                f"Processed {len(event['Records'])} queued jobs",
                extra={'failed_jobs': len(result['batchItemFailures'])}
            )
            return result

        if event.get('sourceId'):
            try:
                outcome = orchestrator.scrape_source(
                    event['sourceId'],
                    days=event.get('days'),
                    force=bool(event.get('force', False))
                )
            except SourceNotFoundError:
                logger.warning(f"Source not found: {event['sourceId']}")
                return _response(404, {'message': 'Source not found', 'source_id': event['sourceId']})
            return _response(200, {
                'message': 'Scrape completed' if outcome.success else 'Scrape failed',
                'outcome': outcome.to_dict(),
                'duration_seconds': round(time.time() - start_time, 2)
            })

        if event.get('mode') == 'dispatch':
            if not queue_url:
                return _response(500, {'message': 'QUEUE_URL is not configured'})
            batch = SqsDispatcher(queue_url, store).dispatch_due(days=event.get('days'))
            return _response(200, {
                'message': 'Dispatch completed',
                **batch.to_dict(),
                'duration_seconds': round(time.time() - start_time, 2)
            })

        batch = scrape_due_sources(store, orchestrator, days=event.get('days'))
        duration = time.time() - start_time
        logger.info(
            "Lambda execution completed successfully",
            extra={
                'duration_seconds': round(duration, 2),
                'succeeded': batch.succeeded,
                'failed': batch.failed,
                'skipped': batch.skipped
            }
        )
        return _response(200, {
            'message': 'Batch scrape completed',
            **batch.to_dict(),
            'duration_seconds': round(duration, 2)
        })

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _response(500, {
            'message': 'Scrape run failed',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })
