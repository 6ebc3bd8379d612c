#!/usr/bin/env python3
"""
Read-only access to credentials kept in the cluster config bucket
"""

import logging

from .retry import RetryPolicy, NO_RETRY

logger = logging.getLogger(__name__)


class S3BlobStore:
    """Reads small text objects (join token, API token) from S3"""

    def __init__(self, s3_client, bucket: str, retry_policy: RetryPolicy = NO_RETRY):
        self.s3 = s3_client
        self.bucket = bucket
        self.retry_policy = retry_policy

    def read(self, key: str) -> str:
        """Return the object body as stripped UTF-8 text"""
        response = self.retry_policy.call(
            self.s3.get_object, operation=f"s3_get[{key}]", Bucket=self.bucket, Key=key
        )
        body = response["Body"]
        try:
            return body.read().decode("utf-8").strip()
        finally:
            body.close()
