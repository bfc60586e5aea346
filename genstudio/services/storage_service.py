# FILE: genstudio/services/storage_service.py
import asyncio
import json
import logging
from typing import Optional, Protocol

import boto3
from botocore.exceptions import ClientError

from genstudio.core import config

logger = logging.getLogger("genstudio.storage")

_BUCKET_EXISTS_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}
_BUCKET_MISSING_CODES = {"404", "NoSuchBucket", "NotFound"}
# Gateways without the public access block API (MinIO, older Ceph)
_NO_ACCESS_BLOCK_CODES = {"NotImplemented", "NoSuchPublicAccessBlockConfiguration", "MethodNotAllowed"}


def _error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))


def public_read_policy(bucket: str) -> str:
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [{
            "Sid": "PublicReadGetObject",
            "Effect": "Allow",
            "Principal": "*",
            "Action": "s3:GetObject",
            "Resource": f"arn:aws:s3:::{bucket}/*",
        }],
    })


class ObjectStorage(Protocol):
    async def ensure_bucket(self, name: str) -> None: ...

    async def put_object(self, bucket: str, path: str, data: bytes, content_type: str) -> None: ...

    def get_public_url(self, bucket: str, path: str) -> str: ...


class S3ObjectStorage:
    """S3-compatible storage (AWS, MinIO, Supabase S3 gateway) via boto3.

    Buckets created here are public-read, since artifacts are handed out by URL.
    """

    def __init__(
        self,
        client=None,
        public_base_url: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
    ):
        self.endpoint_url = endpoint_url if endpoint_url is not None else config.STORAGE_ENDPOINT_URL
        self.region = region or config.STORAGE_REGION
        self.client = client or boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            region_name=self.region,
            aws_access_key_id=config.STORAGE_ACCESS_KEY_ID,
            aws_secret_access_key=config.STORAGE_SECRET_ACCESS_KEY,
        )
        self.public_base_url = (public_base_url if public_base_url is not None else config.STORAGE_PUBLIC_BASE_URL).rstrip("/")

    def _create_bucket(self, name: str) -> bool:
        params = {"Bucket": name}
        # us-east-1 rejects an explicit LocationConstraint; every other region requires one
        if self.region and self.region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        try:
            self.client.create_bucket(**params)
            return True
        except ClientError as e:
            if _error_code(e) in _BUCKET_EXISTS_CODES:
                return False
            raise

    def _make_public(self, name: str) -> None:
        try:
            self.client.delete_public_access_block(Bucket=name)
        except ClientError as e:
            if _error_code(e) not in _NO_ACCESS_BLOCK_CODES:
                raise
        self.client.put_bucket_policy(Bucket=name, Policy=public_read_policy(name))

    async def ensure_bucket(self, name: str) -> None:
        """Idempotent create. An existing bucket is not an error."""
        def _ensure():
            try:
                self.client.head_bucket(Bucket=name)
                return False
            except ClientError as e:
                if _error_code(e) not in _BUCKET_MISSING_CODES:
                    raise
            if not self._create_bucket(name):
                return False
            self._make_public(name)
            return True

        created = await asyncio.to_thread(_ensure)
        if created:
            logger.info(f"Created public bucket {name} in {self.region}")

    async def put_object(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        def _put():
            self.client.put_object(Bucket=bucket, Key=path, Body=data, ContentType=content_type)

        await asyncio.to_thread(_put)
        logger.info(f"Uploaded {path} to bucket {bucket} ({len(data)} bytes)")

    def get_public_url(self, bucket: str, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{bucket}/{path}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{bucket}/{path}"
        if self.region and self.region != "us-east-1":
            return f"https://{bucket}.s3.{self.region}.amazonaws.com/{path}"
        return f"https://{bucket}.s3.amazonaws.com/{path}"
