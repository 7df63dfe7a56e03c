"""The S3 side of the fallback hand-off: one ``<prefix>/latest.json`` object."""

from __future__ import annotations

import json
import logging
from typing import Any

import aioboto3

from ..config import SyncConfig

logger = logging.getLogger("linkwatch.sync.s3")

LATEST = "latest.json"


class HandoffBucket:
    """Publishes and reads the latest snapshot in an S3-compatible bucket (AWS S3, R2, MinIO).

    The remote fallback runner only ever reads ``latest_key``, so each export
    replaces the previous object instead of adding a new one.
    """

    def __init__(self, config: SyncConfig) -> None:
        self._bucket = config.s3_bucket
        self.latest_key = f"{config.prefix.strip('/')}/{LATEST}"
        self._session = aioboto3.Session(
            aws_access_key_id=config.s3_access_key or None,
            aws_secret_access_key=config.s3_secret_key or None,
            region_name=config.s3_region,
        )
        self._client_kwargs: dict[str, str] = {}
        if config.s3_endpoint_url:
            self._client_kwargs["endpoint_url"] = config.s3_endpoint_url

    @property
    def location(self) -> str:
        return f"s3://{self._bucket}/{self.latest_key}"

    async def put_latest(self, body: bytes, exported_at: str) -> str:
        """Replace the latest snapshot with ``body`` (already encoded JSON). Returns the key."""
        async with self._session.client("s3", **self._client_kwargs) as s3:
            await s3.put_object(
                Bucket=self._bucket,
                Key=self.latest_key,
                Body=body,
                ContentType="application/json",
                CacheControl="no-cache",
                Metadata={"exported-at": exported_at},
            )
        logger.debug("Published %s (%d bytes)", self.location, len(body))
        return self.latest_key

    async def get_latest(self) -> dict[str, Any] | None:
        """The last published payload, or None if nothing was exported yet."""
        async with self._session.client("s3", **self._client_kwargs) as s3:
            try:
                resp = await s3.get_object(Bucket=self._bucket, Key=self.latest_key)
            except s3.exceptions.NoSuchKey:
                logger.info("No snapshot at %s yet", self.location)
                return None
            body = await resp["Body"].read()
        return json.loads(body)
