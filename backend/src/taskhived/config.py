"""
Configuration module for Lambda handlers.
Loads all environment variables needed by the verification and payout backend.
"""
import os
from decimal import Decimal


class Config:
    """Centralized configuration from environment variables."""

    # AWS Region
    AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')

    # DynamoDB Tables
    TASKS_TABLE = os.environ.get('TASKS_TABLE', '')
    USER_PROFILES_TABLE = os.environ.get('USER_PROFILES_TABLE', '')
    TRANSACTIONS_TABLE = os.environ.get('TRANSACTIONS_TABLE', '')

    # S3 Buckets
    ATTACHMENTS_BUCKET = os.environ.get('ATTACHMENTS_BUCKET', '')
    PRESIGNED_URL_EXPIRATION = int(os.environ.get('PRESIGNED_URL_EXPIRATION', '3600'))
    FILE_UPLOAD_TIMEOUT_SECONDS = float(os.environ.get('FILE_UPLOAD_TIMEOUT_SECONDS', '10'))

    # SQS Queues
    SCORING_QUEUE_URL = os.environ.get('SCORING_QUEUE_URL', '')

    # 'sync' scores inside the submit request, 'queued' hands off to the scoring worker
    SUBMISSION_MODE = os.environ.get('SUBMISSION_MODE', 'sync')

    # AI Scoring Configuration
    SCORING_BACKEND = os.environ.get('SCORING_BACKEND', 'openai')
    OPENAI_API_KEY = os.environ.get('OPENAI_API_KEY', '')
    OPENAI_BASE_URL = os.environ.get('OPENAI_BASE_URL', '') or None
    OPENAI_MODEL = os.environ.get('OPENAI_MODEL', 'gpt-4o-mini')
    SAGEMAKER_ENDPOINT_NAME = os.environ.get('SAGEMAKER_ENDPOINT_NAME', '')
    AI_SCORING_TIMEOUT_SECONDS = float(os.environ.get('AI_SCORING_TIMEOUT_SECONDS', '15'))

    # Secondary (admin-triggered) re-score pass mark, 0-5 scale
    RESCORE_VERIFY_THRESHOLD = Decimal(os.environ.get('RESCORE_VERIFY_THRESHOLD', '3'))

    # Submissions stuck in flight longer than this are routed to human review
    STALE_SUBMISSION_MINUTES = int(os.environ.get('STALE_SUBMISSION_MINUTES', '15'))

    # Wallet limits
    CURRENCY = os.environ.get('CURRENCY', 'USD')
    MIN_WITHDRAWAL = Decimal(os.environ.get('MIN_WITHDRAWAL', '10.00'))
    MAX_WITHDRAWAL = Decimal(os.environ.get('MAX_WITHDRAWAL', '5000.00'))
    MAX_DEPOSIT = Decimal(os.environ.get('MAX_DEPOSIT', '10000.00'))

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()


config = Config()
