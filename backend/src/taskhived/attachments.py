"""
S3 storage for submission attachments.
Uploads are best-effort: a failed upload never aborts a submission.
"""
import base64
import binascii
import re
from datetime import datetime
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import config
from .logging import logger

ATTACHMENT_PREFIX = 'task-submissions/'

_s3_client = None


def get_s3_client():
    """Get or create the S3 client, bounded by the upload timeout."""
    global _s3_client
    if _s3_client is None:
        _s3_client = boto3.client(
            's3',
            region_name=config.AWS_REGION,
            config=BotoConfig(
                signature_version='s3v4',
                connect_timeout=config.FILE_UPLOAD_TIMEOUT_SECONDS,
                read_timeout=config.FILE_UPLOAD_TIMEOUT_SECONDS,
                retries={'max_attempts': 1}
            )
        )
    return _s3_client


def safe_filename(name: str) -> str:
    """Strip directory parts and anything outside [A-Za-z0-9._-]."""
    name = (name or 'attachment').replace('\\', '/').rsplit('/', 1)[-1]
    name = re.sub(r'[^A-Za-z0-9._-]', '_', name).strip('.')
    return name or 'attachment'


def build_attachment_key(task_id: str, filename: str, now: datetime) -> str:
    """
    Build the S3 key for a submission file, keyed by task and upload time.

    e.g. task-submissions/<taskId>-1718000000000-report.pdf
    """
    millis = int(now.timestamp() * 1000)
    return f"{ATTACHMENT_PREFIX}{task_id}-{millis}-{safe_filename(filename)}"


class S3AttachmentStore:
    """Puts submission files into the attachments bucket."""

    def __init__(self, client=None, bucket: str = None):
        self._client = client
        self.bucket = bucket or config.ATTACHMENTS_BUCKET

    @property
    def client(self):
        if self._client is None:
            self._client = get_s3_client()
        return self._client

    def store(self, task_id: str, attachment: dict, now: datetime) -> Optional[str]:
        """
        Upload a base64 attachment ``{name, content, contentType}``.

        Returns:
            The S3 key, or None if the file could not be stored
        """
        if not attachment:
            return None

        if not self.bucket:
            logger.warning(f"No ATTACHMENTS_BUCKET configured, dropping attachment for task {task_id}")
            return None

        try:
            body = base64.b64decode(attachment.get('content') or '', validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            logger.error(f"File processing error for task {task_id}: {e}")
            return None

        key = build_attachment_key(task_id, attachment.get('name'), now)
        params = {'Bucket': self.bucket, 'Key': key, 'Body': body}
        if attachment.get('contentType'):
            params['ContentType'] = attachment['contentType']

        try:
            self.client.put_object(**params)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"File upload error for task {task_id}: {e}")
            return None

        logger.info(f"Stored attachment for task {task_id} at s3://{self.bucket}/{key}")
        return key

    def generate_presigned_url(self, key: str, expiration: int = None) -> Optional[str]:
        """
        Generate a presigned download URL for an attachment.

        Returns the original key if no bucket is configured or signing fails.
        """
        if not key:
            return key

        if not self.bucket:
            logger.warning("No ATTACHMENTS_BUCKET configured, returning original key")
            return key

        try:
            url = self.client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket, 'Key': key},
                ExpiresIn=expiration or config.PRESIGNED_URL_EXPIRATION
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error generating presigned URL for {key}: {e}")
            return key
        return url
