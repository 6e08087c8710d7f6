"""
S3-compatible object storage for report verification images and profile pictures.

Objects are referenced by opaque keys; nothing here interprets their content.
"""

import logging
import uuid
from typing import Any, Dict, Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

ATTACHMENT_PREFIX = "pireps/"
PROFILE_PREFIX = "profiles/"

_ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}


class ObjectStore:
    """Thin wrapper around a boto3 S3 client (lazy-loaded)."""

    def __init__(
        self,
        bucket: str,
        endpoint_url: str = "",
        access_key: str = "",
        secret_key: str = "",
        client=None,
    ):
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.access_key = access_key
        self.secret_key = secret_key
        self._client = client

    def get_client(self):
        if self._client is None:
            self._client = boto3.client(
                's3',
                endpoint_url=self.endpoint_url or None,
                aws_access_key_id=self.access_key or None,
                aws_secret_access_key=self.secret_key or None,
                config=Config(signature_version='s3v4'),
                region_name='us-east-1',
            )
        return self._client

    def _presigned_upload(self, prefix: str, pilot_id: str, filename: str, expiration: int) -> Dict[str, Any]:
        extension = ''
        if '.' in filename:
            extension = '.' + filename.rsplit('.', 1)[1].lower()
        if extension not in _ALLOWED_EXTENSIONS:
            return {
                'success': False,
                'error': f"Unsupported file type '{extension or filename}'",
                'status_code': 400,
            }

        object_key = f"{prefix}{pilot_id}/{uuid.uuid4().hex}{extension}"
        try:
            url = self.get_client().generate_presigned_url(
                'put_object',
                Params={'Bucket': self.bucket, 'Key': object_key},
                ExpiresIn=expiration,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Presigned upload URL failed for %s: %s", object_key, e)
            return {'success': False, 'error': str(e), 'status_code': 502}

        return {
            'success': True,
            'key': object_key,
            'upload_url': url,
            'expires_in': expiration,
        }

    def attachment_upload(
        self,
        pilot_id: str,
        filename: str,
        expiration: int = 900,
    ) -> Dict[str, Any]:
        """
        Presigned PUT URL for a report verification image.

        Args:
            pilot_id: Pilot filing the report
            filename: Original file name (only the extension is kept)
            expiration: URL validity in seconds (default 15 min)

        Returns:
            Dict with the object key to store on the report and the upload URL
        """
        return self._presigned_upload(ATTACHMENT_PREFIX, pilot_id, filename, expiration)

    def profile_upload(self, pilot_id: str, filename: str, expiration: int = 900) -> Dict[str, Any]:
        """Presigned PUT URL for a profile picture; the key is then set via the profile update."""
        return self._presigned_upload(PROFILE_PREFIX, pilot_id, filename, expiration)

    def delete_object(self, object_key: Optional[str]) -> Dict[str, Any]:
        """Delete an object. Best-effort: failures are logged and returned."""
        if not object_key:
            return {'success': True, 'deleted': False}
        try:
            self.get_client().delete_object(Bucket=self.bucket, Key=object_key)
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to delete object %s: %s", object_key, e)
            return {'success': False, 'error': str(e)}
        logger.info("Deleted object %s", object_key)
        return {'success': True, 'deleted': True}
