from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from mailtimeline.domain.errors import BlobStoreError
from mailtimeline.infrastructure.attachments.store import blob_key
from mailtimeline.infrastructure.settings import Settings


@dataclass(frozen=True)
class S3StoreConfig:
    endpoint: Optional[str]
    region: str
    access_key: Optional[str]
    secret_key: Optional[str]
    bucket: str
    prefix: str = "email-attachments"
    use_ssl: bool = False
    force_path_style: bool = True
    url_expiry_seconds: int = 3600


class S3BlobStore:
    def __init__(self, cfg: S3StoreConfig, client=None) -> None:
        self.cfg = cfg
        if client is None:
            s3_cfg = Config(s3={"addressing_style": "path"} if cfg.force_path_style else {})
            client = boto3.client(
                "s3",
                endpoint_url=cfg.endpoint,
                aws_access_key_id=cfg.access_key,
                aws_secret_access_key=cfg.secret_key,
                region_name=cfg.region,
                use_ssl=cfg.use_ssl,
                config=s3_cfg,
            )
        self.client = client

    def put(self, *, account_id: str, message_id: str, part_id: str, data: bytes, media_type: str) -> str:
        key = blob_key(self.cfg.prefix, account_id, message_id, part_id, data)
        try:
            self.client.put_object(Bucket=self.cfg.bucket, Key=key, Body=data, ContentType=media_type)
        except (BotoCoreError, ClientError) as e:
            raise BlobStoreError(f"S3 put failed for {key}: {e}", storage_ref=key) from e
        logger.debug(f"Stored {len(data)} bytes at s3://{self.cfg.bucket}/{key}")
        return key

    def get(self, storage_ref: str) -> bytes:
        try:
            resp = self.client.get_object(Bucket=self.cfg.bucket, Key=storage_ref)
            return resp["Body"].read()
        except (BotoCoreError, ClientError) as e:
            raise BlobStoreError(f"S3 get failed for {storage_ref}: {e}", storage_ref=storage_ref) from e

    def url_for(self, storage_ref: str) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.cfg.bucket, "Key": storage_ref},
                ExpiresIn=self.cfg.url_expiry_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise BlobStoreError(f"Cannot presign {storage_ref}: {e}", storage_ref=storage_ref) from e


def s3_store_from_settings(settings: Settings) -> S3BlobStore:
    cfg = S3StoreConfig(
        endpoint=settings.s3_endpoint,
        region=settings.s3_region,
        access_key=settings.s3_access_key.get_secret_value() if settings.s3_access_key else None,
        secret_key=settings.s3_secret_key.get_secret_value() if settings.s3_secret_key else None,
        bucket=settings.s3_bucket,
        prefix=settings.s3_prefix,
        use_ssl=settings.s3_use_ssl,
        force_path_style=settings.s3_force_path_style,
    )
    return S3BlobStore(cfg)
