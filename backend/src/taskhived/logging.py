"""
Logging utilities for Lambda handlers and the pipeline.
"""
import logging
import json

from .config import config

# Configure logger
logger = logging.getLogger('taskhived')
logger.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))

# Add handler if not already configured
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logger.addHandler(handler)

# Only these Cognito claims are written to the logs
LOGGED_CLAIMS = ('sub', 'cognito:groups')


def _redact_claims(event: dict) -> dict:
    try:
        claims = event['requestContext']['authorizer']['claims']
    except (KeyError, TypeError):
        return event
    context = dict(event['requestContext'])
    context['authorizer'] = {'claims': {k: v for k, v in claims.items() if k in LOGGED_CLAIMS}}
    return dict(event, requestContext=context)


def log_event(event: dict) -> None:
    """Log incoming Lambda event without body, headers or personal claims."""
    try:
        safe_event = {k: v for k, v in event.items() if k not in ['body', 'headers']}
        logger.info(f"Lambda event: {json.dumps(_redact_claims(safe_event), default=str)}")
    except Exception as e:
        logger.warning(f"Could not log event: {e}")


def log_transition(task_id: str, old_status: str, new_status: str, actor: str = None, **details) -> None:
    """One line per task state change, e.g. ``Task t1: submitted -> completed by worker-1 {"score": 4}``."""
    message = f"Task {task_id}: {old_status} -> {new_status}"
    if actor:
        message += f" by {actor}"
    if details:
        message += f" {json.dumps(details, default=str)}"
    logger.info(message)
