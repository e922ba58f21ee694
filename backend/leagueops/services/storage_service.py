"""S3-compatible blob store for results, replays and daily batch manifests.

Usage:
    store = BlobStore.from_settings(settings)
    url = await store.signed_put_url(result_path(season, league, match))
    data = await store.get_json("results/s1/L1/M1.json")
"""

import json
import logging
from typing import Any, Optional

from botocore.exceptions import ClientError

from leagueops.config import Settings

logger = logging.getLogger("leagueops.storage")


def result_path(season_id: str | None, league_id: str, match_id: str) -> str:
    return f"results/{season_id or 'unknown'}/{league_id}/{match_id}.json"


def replay_path(season_id: str | None, league_id: str, match_id: str) -> str:
    return f"replays/{season_id or 'unknown'}/{league_id}/{match_id}.json"


def batch_path(day: str) -> str:
    return f"batches/{day}/batch.json"


class BlobStore:
    """Async S3 client using aioboto3.

    Signed URLs let the external worker read its batch and upload results
    without holding storage credentials.
    """

    def __init__(
        self,
        endpoint_url: str,
        access_key_id: str,
        secret_access_key: str,
        bucket: str,
        region: str = "auto",
        url_ttl_seconds: int = 21600,
    ):
        self.endpoint_url = endpoint_url or None
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.bucket = bucket
        self.region = region
        self.url_ttl_seconds = url_ttl_seconds
        self._session = None

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["BlobStore"]:
        if not settings.storage_enabled:
            logger.info("Blob storage disabled (STORAGE_BUCKET not set)")
            return None
        return cls(
            endpoint_url=settings.STORAGE_ENDPOINT_URL,
            access_key_id=settings.STORAGE_ACCESS_KEY_ID,
            secret_access_key=settings.STORAGE_SECRET_ACCESS_KEY,
            bucket=settings.STORAGE_BUCKET,
            region=settings.STORAGE_REGION,
            url_ttl_seconds=settings.SIGNED_URL_TTL_SECONDS,
        )

    def _client(self):
        if self._session is None:
            import aioboto3
            self._session = aioboto3.Session()
        return self._session.client(
            "s3",
            endpoint_url=self.endpoint_url,
            region_name=self.region,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
        )

    async def signed_get_url(self, key: str) -> str:
        async with self._client() as client:
            return await client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.url_ttl_seconds,
            )

    async def signed_put_url(self, key: str, content_type: str = "application/json") -> str:
        async with self._client() as client:
            return await client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=self.url_ttl_seconds,
            )

    async def put_json(self, key: str, payload: Any) -> None:
        body = json.dumps(payload, default=str).encode("utf-8")
        async with self._client() as client:
            await client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType="application/json",
            )
        logger.debug("Uploaded %s (%d bytes)", key, len(body))

    async def get_json(self, key: str, bucket: str | None = None) -> Optional[dict]:
        """Download and parse a JSON object. Returns None if the key is missing."""
        try:
            async with self._client() as client:
                response = await client.get_object(Bucket=bucket or self.bucket, Key=key)
                body = await response["Body"].read()
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in ("NoSuchKey", "404", "NotFound"):
                logger.warning("Object not found: %s", key)
                return None
            raise
        return json.loads(body.decode("utf-8"))
