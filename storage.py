import asyncio
import logging
import os
from typing import List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from config import Settings
from errors import UploadError
from playlist import PLAYLIST_NAME
from schema import Rung, RungUrl

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/MP2T",
    ".m2ts": "video/MP2T",
}


def get_s3_client(settings: Settings):
    if not settings.aws_access_key or not settings.aws_secret_access_key:
        raise ValueError(
            "AWS credentials not found. Please set AWS_ACCESS_KEY and AWS_SECRET_ACCESS_KEY in .env file"
        )

    client_kwargs = {
        "aws_access_key_id": settings.aws_access_key,
        "aws_secret_access_key": settings.aws_secret_access_key,
        "region_name": settings.aws_region,
    }
    if settings.aws_session_token:
        client_kwargs["aws_session_token"] = settings.aws_session_token
    if settings.s3_endpoint_url:
        # MinIO and other S3-compatible endpoints only do path-style addressing.
        client_kwargs["endpoint_url"] = settings.s3_endpoint_url
        client_kwargs["config"] = BotoConfig(s3={"addressing_style": "path"}, signature_version="s3v4")

    return boto3.client("s3", **client_kwargs)


class ObjectStorage:
    """Upload primitive shared by the rung uploads and the master playlist."""

    def __init__(self, client, bucket: str, prefix: str = "", region: str = "ap-south-2",
                 public_base_url: Optional[str] = None):
        self.client = client
        self.bucket = bucket
        self.prefix = prefix
        self.region = region
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStorage":
        return cls(
            get_s3_client(settings),
            bucket=settings.output_bucket,
            prefix=settings.output_prefix,
            region=settings.aws_region,
            public_base_url=settings.s3_public_base_url,
        )

    def key_for(self, job_id: str, *parts: str) -> str:
        return f"{self.prefix}{job_id}/" + "/".join(parts)

    def object_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def upload_file(self, local_path: str, key: str) -> str:
        extra = {}
        content_type = CONTENT_TYPES.get(os.path.splitext(local_path)[1].lower())
        if content_type:
            extra["ContentType"] = content_type

        try:
            self.client.upload_file(str(local_path), self.bucket, key, ExtraArgs=extra or None)
        except (BotoCoreError, ClientError, OSError) as e:
            raise UploadError(f"Upload error for {local_path}: {e}") from e
        return self.object_url(key)


async def upload_rungs(rungs: List[Rung], job_id: str, storage: ObjectStorage,
                       concurrency: int = 8) -> List[RungUrl]:
    """
    Upload every file of every rung directory, returning each rung's playlist URL.

    All uploads are awaited even after a failure, so no thread is still
    reading a rung directory once this returns or raises.
    """
    slots = asyncio.Semaphore(concurrency)

    async def upload_one(local_path: str, key: str) -> str:
        async with slots:
            return await asyncio.to_thread(storage.upload_file, local_path, key)

    files = []
    playlist_index = []
    for rung in rungs:
        try:
            names = sorted(os.listdir(rung.dir))
        except OSError as e:
            raise UploadError(f"Cannot read output directory for {rung.name}: {e}") from e
        if PLAYLIST_NAME not in names:
            raise UploadError(f"No playlist produced for {rung.name}")

        for name in names:
            local_path = os.path.join(rung.dir, name)
            if not os.path.isfile(local_path):
                continue
            if name == PLAYLIST_NAME:
                playlist_index.append(len(files))
            files.append((local_path, storage.key_for(job_id, rung.name, name)))

    logger.info("[%s] Uploading %d files across %d rungs", job_id, len(files), len(rungs))
    results = await asyncio.gather(
        *(upload_one(local_path, key) for local_path, key in files),
        return_exceptions=True,
    )

    for result in results:
        if isinstance(result, UploadError):
            raise result
        if isinstance(result, Exception):
            raise UploadError(str(result)) from result

    return [
        RungUrl(rung=rung.height, url=results[index])
        for rung, index in zip(rungs, playlist_index)
    ]
