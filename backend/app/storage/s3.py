"""S3 / Cloudflare R2 object store. boto3 is blocking, so every call runs in a worker thread."""

import asyncio
import logging
from typing import Any, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.config import Settings
from app.errors import InfrastructureError
from app.storage.gateway import ObjectNotFound, ObjectStoreGateway

log = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})
# DeleteObjects accepts at most 1000 keys per request
_DELETE_BATCH = 1000


def _is_not_found(exc: ClientError) -> bool:
    err = exc.response.get("Error", {}) if exc.response else {}
    if str(err.get("Code", "")) in _NOT_FOUND_CODES:
        return True
    status = (exc.response or {}).get("ResponseMetadata", {}).get("HTTPStatusCode")
    return status == 404


class S3ObjectStore(ObjectStoreGateway):
    """Gateway over a single bucket."""

    def __init__(self, bucket: str, client: Any) -> None:
        self.bucket = bucket
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3ObjectStore":
        """Build the boto3 client for the configured endpoint (R2 uses region 'auto')."""
        if not settings.s3_bucket:
            raise ValueError("GORZ_S3_BUCKET is required for the s3 storage backend")
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url or None,
            region_name=settings.s3_region or None,
            aws_access_key_id=settings.s3_access_key_id or None,
            aws_secret_access_key=settings.s3_secret_access_key or None,
        )
        log.info("S3 object store bucket=%s endpoint=%s", settings.s3_bucket, settings.s3_endpoint_url or "default")
        return cls(settings.s3_bucket, client)

    async def _call(self, op: str, **kwargs: Any) -> Any:
        method = getattr(self._client, op)
        try:
            return await asyncio.to_thread(method, **kwargs)
        except ClientError:
            raise
        except BotoCoreError as e:
            log.warning("S3 %s failed: %s", op, e)
            raise InfrastructureError(f"Object store {op} failed") from e

    async def exists(self, path: str) -> bool:
        try:
            await self._call("head_object", Bucket=self.bucket, Key=path)
            return True
        except ClientError as e:
            if _is_not_found(e):
                return False
            log.warning("S3 head_object failed key=%s: %s", path, e)
            raise InfrastructureError("Object store head failed") from e

    async def signed_get_url(
        self,
        path: str,
        expires_in: int,
        disposition: Optional[str] = None,
    ) -> str:
        params = {"Bucket": self.bucket, "Key": path}
        if disposition:
            params["ResponseContentDisposition"] = disposition
        # Presigning is local (no network) but stays off the loop for symmetry with boto3 I/O
        return await asyncio.to_thread(
            self._client.generate_presigned_url,
            "get_object",
            Params=params,
            ExpiresIn=int(expires_in),
        )

    async def signed_put_url(
        self,
        path: str,
        expires_in: int,
        content_type: Optional[str] = None,
    ) -> str:
        params = {"Bucket": self.bucket, "Key": path}
        if content_type:
            params["ContentType"] = content_type
        return await asyncio.to_thread(
            self._client.generate_presigned_url,
            "put_object",
            Params=params,
            ExpiresIn=int(expires_in),
        )

    async def get_object(self, path: str) -> bytes:
        try:
            resp = await self._call("get_object", Bucket=self.bucket, Key=path)
        except ClientError as e:
            if _is_not_found(e):
                raise ObjectNotFound(path) from e
            raise InfrastructureError("Object store get failed") from e
        return await asyncio.to_thread(resp["Body"].read)

    async def put_object(
        self,
        path: str,
        body: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        try:
            await self._call("put_object", Bucket=self.bucket, Key=path, Body=body, ContentType=content_type)
        except ClientError as e:
            raise InfrastructureError("Object store put failed") from e

    async def delete_object(self, path: str) -> None:
        try:
            await self._call("delete_object", Bucket=self.bucket, Key=path)
        except ClientError as e:
            if _is_not_found(e):
                return
            raise InfrastructureError("Object store delete failed") from e

    async def list_objects(self, prefix: str) -> List[str]:
        keys: List[str] = []
        token: Optional[str] = None
        while True:
            kwargs = {"Bucket": self.bucket, "Prefix": prefix}
            if token:
                kwargs["ContinuationToken"] = token
            try:
                resp = await self._call("list_objects_v2", **kwargs)
            except ClientError as e:
                raise InfrastructureError("Object store list failed") from e
            keys.extend(obj["Key"] for obj in resp.get("Contents", []) or [])
            token = resp.get("NextContinuationToken")
            if not resp.get("IsTruncated") or not token:
                break
        return keys

    async def delete_prefix(self, prefix: str) -> int:
        keys = await self.list_objects(prefix)
        for i in range(0, len(keys), _DELETE_BATCH):
            part = keys[i : i + _DELETE_BATCH]
            try:
                await self._call(
                    "delete_objects",
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in part], "Quiet": True},
                )
            except ClientError as e:
                raise InfrastructureError("Object store bulk delete failed") from e
            log.info("S3 bulk deleted %d objects under %s", len(part), prefix)
        return len(keys)
