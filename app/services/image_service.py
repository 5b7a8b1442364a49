import logging
from typing import Optional
from urllib.parse import urlparse

from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class ImageService:
    """Releases uploaded event images stored in S3"""

    def __init__(self, s3_client, bucket: Optional[str]):
        self.s3 = s3_client
        self.bucket = bucket

    @property
    def enabled(self) -> bool:
        return self.s3 is not None and bool(self.bucket)

    def object_key(self, image: str) -> Optional[str]:
        """
        Object key for an image reference.

        Accepts s3://bucket/key, HTTPS URLs (virtual-hosted or path-style) and
        bare keys.
        """
        if not image:
            return None

        parsed = urlparse(image)
        key = parsed.path if parsed.scheme else image
        key = key.lstrip("/")

        # Path-style URLs carry the bucket as their first segment
        bucket, _, rest = key.partition("/")
        if parsed.scheme in ("http", "https") and bucket == self.bucket and rest:
            key = rest

        return key or None

    def delete_image(self, image: str) -> bool:
        """Delete the object behind an event image; True if a delete was issued"""
        key = self.object_key(image)
        if key is None or not self.enabled:
            return False

        try:
            self.s3.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.warning("Failed to delete image %s from %s: %s", key, self.bucket, e)
            return False

        logger.info("Deleted image %s from %s", key, self.bucket)
        return True
