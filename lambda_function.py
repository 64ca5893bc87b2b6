"""AWS Lambda handler for event catalog sync and image maintenance."""
import base64
import json
import logging
import time
from typing import Dict, Any, Optional, Tuple

from scheduler.config import ConfigurationError, Settings
from scheduler.tasks import DEFAULT_TASK, InvalidRequestError, TASKS, run_task

# Attributes every LogRecord has; anything else came in through ``extra``
RESERVED_ATTRS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'asctime'}

# Leave time to log and return before Lambda kills the invocation
TIME_MARGIN_SECONDS = 10


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in RESERVED_ATTRS and not key.startswith('_'):
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


def parse_request(event: Dict[str, Any]) -> Tuple[str, Dict[str, Any], bool]:
    """
    Extract the task name and parameters from a trigger payload.

    Scheduled rules pass ``{"task": ...}`` as constant input. API Gateway
    requests carry the task in the query string or a JSON body.

    Returns:
        Tuple of (task name, parameters, whether the request is manual)

    Raises:
        InvalidRequestError: If an API request body is not valid JSON
    """
    event = event or {}
    manual = 'httpMethod' in event or 'requestContext' in event

    if not manual:
        params = {'sources': event['sources']} if event.get('sources') else {}
        return event.get('task') or DEFAULT_TASK, params, False

    params = dict(event.get('queryStringParameters') or {})
    body = event.get('body')
    if body:
        if event.get('isBase64Encoded'):
            body = base64.b64decode(body).decode('utf-8')
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            raise InvalidRequestError(f"Request body is not valid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise InvalidRequestError("Request body must be a JSON object")
        params.update(payload)

    name = params.pop('task', None) or DEFAULT_TASK
    return name, params, True


def remaining_budget(context: Any) -> Optional[float]:
    """Seconds the task may run, or None outside Lambda."""
    get_remaining = getattr(context, 'get_remaining_time_in_millis', None)
    if get_remaining is None:
        return None
    return max(get_remaining() / 1000.0 - TIME_MARGIN_SECONDS, 0.0)


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json'},
        'body': json.dumps(body, default=str)
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function.

    Args:
        event: EventBridge scheduled payload or API Gateway request
        context: Lambda context object

    Returns:
        Response dict with statusCode and the task's structured result
    """
    start_time = time.time()

    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error(f"Invalid configuration: {e}")
        return _response(500, {'message': 'Invalid configuration', 'error': str(e)})

    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    try:
        task_name, params, manual = parse_request(event)
    except InvalidRequestError as e:
        logger.warning(f"Rejected request: {e}")
        return _response(400, {'message': 'Invalid request', 'error': str(e)})

    if task_name not in TASKS:
        logger.warning(f"Unknown task requested: {task_name}")
        return _response(400, {
            'message': f"Unknown task '{task_name}'",
            'available_tasks': sorted(TASKS)
        })

    time_budget = remaining_budget(context)
    logger.info(
        f"Lambda execution started",
        extra={
            'task': task_name,
            'trigger': 'manual' if manual else 'scheduled',
            'time_budget': time_budget,
            **settings.summary()
        }
    )

    try:
        result = run_task(task_name, settings, time_budget, params)
    except InvalidRequestError as e:
        logger.warning(f"Rejected request: {e}")
        return _response(400, {'message': 'Invalid request', 'error': str(e)})
    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Task {task_name} failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _response(500, {
            'message': f"Task {task_name} failed",
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })

    duration = time.time() - start_time
    logger.info(
        f"Lambda execution completed",
        extra={'task': task_name, 'duration_seconds': round(duration, 2)}
    )
    return _response(200, {
        'message': f"Task {task_name} completed",
        'task': task_name,
        'result': result,
        'duration_seconds': round(duration, 2)
    })
