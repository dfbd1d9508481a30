"""External storage handler that puts recordings into an S3 bucket.

Registered with the storage router when ``s3.enabled`` is set. It only
claims uploads whose ``requested_storage`` context matches its ``claim`` tag,
so a single deployment can serve both the media library and the bucket.

Object keys follow ``{prefix}/{folder}/{uuid}{ext}``; the folder segment is
omitted when the caller did not supply one.
"""
import logging
import re
import uuid
from pathlib import Path, PurePosixPath
from typing import Optional

import boto3

from .schemas import FileMeta, StorageResult, UploadContext

logger = logging.getLogger(__name__)

PROVIDER = "s3"

_SEGMENT_RE = re.compile(r"[^A-Za-z0-9._\-]+")


def _clean_segment(value: str) -> str:
    return _SEGMENT_RE.sub("-", value).strip("-.")


class S3StorageHandler:
    """Storage handler backed by ``s3:PutObject`` via boto3's managed upload.

    Args:
        bucket:                Target bucket.
        prefix:                Key prefix for all recordings.
        claim:                 ``requested_storage`` value this handler claims.
        public_base_url:       Base URL for locators (e.g. a CDN in front of
                               the bucket). Defaults to the virtual-hosted
                               S3 URL.
        region_name:           AWS region.
        aws_access_key_id:     AWS access key. ``None`` → default credential chain.
        aws_secret_access_key: AWS secret access key.
        aws_session_token:     Optional temporary-credential session token.
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "recordings",
        claim: str = PROVIDER,
        public_base_url: Optional[str] = None,
        region_name: str = "us-east-1",
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        aws_session_token: Optional[str] = None,
    ) -> None:
        if not bucket:
            raise ValueError("bucket must not be empty")
        self._bucket = bucket
        self._prefix = "/".join(_clean_segment(p) for p in prefix.split("/") if _clean_segment(p))
        self._claim = claim
        self._public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self._region = region_name
        self._access_key = aws_access_key_id
        self._secret_key = aws_secret_access_key
        self._session_token = aws_session_token
        self._client: Optional[object] = None

    @property
    def bucket(self) -> str:
        return self._bucket

    def _get_client(self) -> object:
        """Return a cached boto3 s3 client."""
        if self._client is None:
            kwargs: dict = {"region_name": self._region}
            if self._access_key and self._secret_key:
                kwargs["aws_access_key_id"]     = self._access_key
                kwargs["aws_secret_access_key"] = self._secret_key
            if self._session_token:
                kwargs["aws_session_token"] = self._session_token
            self._client = boto3.client("s3", **kwargs)
        return self._client

    def object_key(self, context: UploadContext, file_meta: FileMeta) -> str:
        ext = PurePosixPath(file_meta.name).suffix.lower()
        parts = [self._prefix] if self._prefix else []
        parts.extend(s for s in (_clean_segment(p) for p in context.folder.split("/")) if s)
        parts.append(f"{uuid.uuid4().hex}{ext}")
        return "/".join(parts)

    def object_url(self, key: str) -> str:
        if self._public_base_url:
            return f"{self._public_base_url}/{key}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"

    def __call__(self, path: Path, context: UploadContext, file_meta: FileMeta) -> Optional[StorageResult]:
        if context.requested_storage != self._claim:
            return None

        key = self.object_key(context, file_meta)
        extra_args = {"ContentType": file_meta.type} if file_meta.type else {}

        logger.debug("[s3] uploading %s to s3://%s/%s", path, self._bucket, key)
        self._get_client().upload_file(str(path), self._bucket, key, ExtraArgs=extra_args)

        url = self.object_url(key)
        return StorageResult(
            provider=PROVIDER,
            locator=url,
            raw={
                "bucket": self._bucket,
                "key": key,
                "url": url,
                "folder": context.folder,
            },
        )
