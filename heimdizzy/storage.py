"""Object storage and CDN clients.

Both wrap blocking `boto3` clients and run each call in the default executor
so the event loop keeps servicing subprocesses and notifications.
"""

import asyncio
from collections.abc import Callable
import functools
import logging
import os
import time
from typing import Any, TypeVar

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import StorageConfig
from .exceptions import DeploymentError, PublishError

__all__ = ["ObjectStore", "Cdn", "StoredObject"]

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")

_NOT_FOUND_CODES = {"404", "NoSuchBucket", "NotFound"}
_ALREADY_OWNED_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}


async def _in_executor(func: Callable[..., _T], *args: Any, **kwargs: Any) -> _T:
    return await asyncio.get_running_loop().run_in_executor(
        None, functools.partial(func, *args, **kwargs)
    )


def _error_code(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Code", ""))


class StoredObject:
    """Key and size of an object written to the store."""

    def __init__(self, key: str, size: int) -> None:
        """Initialize StoredObject."""
        self.key = key
        self.size = size

    def __repr__(self) -> str:
        return f"StoredObject({self.key!r}, {self.size})"


class ObjectStore:
    """An S3 compatible bucket."""

    def __init__(
        self,
        storage: StorageConfig,
        environ: dict[str, str] | None = None,
        client: Any | None = None,
    ) -> None:
        """Initialize ObjectStore, falling back to MinIO or AWS credentials."""
        self.bucket = storage.bucket
        env = environ if environ is not None else os.environ
        self._client = client or self._create_client(storage, env)

    @staticmethod
    def _create_client(storage: StorageConfig, env: Any) -> Any:
        endpoint = storage.endpoint or env.get("MINIO_ENDPOINT")
        access_key = (
            storage.access_key_id
            or env.get("MINIO_ACCESS_KEY")
            or env.get("AWS_ACCESS_KEY_ID")
        )
        secret_key = (
            storage.secret_access_key
            or env.get("MINIO_SECRET_KEY")
            or env.get("AWS_SECRET_ACCESS_KEY")
        )
        addressing = "path" if storage.force_path_style else "auto"
        return boto3.client(
            "s3",
            region_name=storage.region,
            endpoint_url=endpoint,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=BotoConfig(s3={"addressing_style": addressing}),
        )

    async def ensure_bucket(self) -> None:
        """Create the bucket if it does not exist."""
        try:
            await _in_executor(self._client.head_bucket, Bucket=self.bucket)
            _LOGGER.debug("Bucket %s exists", self.bucket)
            return
        except ClientError as err:
            if _error_code(err) not in _NOT_FOUND_CODES:
                raise PublishError(f"Failed to check bucket: {err}") from err
        except BotoCoreError as err:
            raise PublishError(f"Failed to check bucket: {err}") from err

        _LOGGER.info("Creating bucket %s", self.bucket)
        try:
            await _in_executor(self._client.create_bucket, Bucket=self.bucket)
        except ClientError as err:
            if _error_code(err) not in _ALREADY_OWNED_CODES:
                raise PublishError(f"Failed to create bucket: {err}") from err
        except BotoCoreError as err:
            raise PublishError(f"Failed to create bucket: {err}") from err

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str = "application/octet-stream",
        metadata: dict[str, str] | None = None,
        cache_control: str | None = None,
    ) -> StoredObject:
        """Write an object, replacing any existing object at the key."""
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": body,
            "ContentType": content_type,
            "ContentLength": len(body),
            "Metadata": metadata or {},
        }
        if cache_control:
            kwargs["CacheControl"] = cache_control
        try:
            await _in_executor(self._client.put_object, **kwargs)
        except (ClientError, BotoCoreError) as err:
            raise PublishError(f"Failed to upload {key}: {err}") from err
        return StoredObject(key, len(body))


class Cdn:
    """A CloudFront distribution."""

    def __init__(self, region: str = "us-east-1", client: Any | None = None) -> None:
        """Initialize Cdn."""
        self._client = client or boto3.client("cloudfront", region_name=region)

    async def create_invalidation(self, distribution_id: str, paths: list[str]) -> str:
        """Invalidate cached paths and return the invalidation id."""
        try:
            response = await _in_executor(
                self._client.create_invalidation,
                DistributionId=distribution_id,
                InvalidationBatch={
                    "Paths": {"Quantity": len(paths), "Items": paths},
                    "CallerReference": f"heimdizzy-{int(time.time() * 1000)}",
                },
            )
        except (ClientError, BotoCoreError) as err:
            raise DeploymentError(f"CloudFront invalidation failed: {err}") from err
        return str(response.get("Invalidation", {}).get("Id", ""))
