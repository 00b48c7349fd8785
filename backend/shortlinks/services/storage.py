"""S3 / MinIO storage for rendered QR codes.

Objects live under ``qr-codes/{link_key}.{format}``. Reads go out as
presigned GET URLs so the bucket itself can stay private.
"""

from urllib.parse import urlparse, urlunparse

import boto3
from botocore.config import Config

from shortlinks.core.config import settings


PRESIGN_DOWNLOAD_EXPIRES = 900  # 15 min

CONTENT_TYPES = {
    "svg": "image/svg+xml",
    "png": "image/png",
}


def _get_s3_client():  # type: ignore[no-untyped-def]
    config_kwargs: dict = {
        "signature_version": "s3v4",
        "connect_timeout": 5,
        "read_timeout": 10,
        "retries": {"max_attempts": 2},
    }
    if settings.S3_ENDPOINT_URL:
        config_kwargs["s3"] = {"addressing_style": "path"}
    kwargs: dict = {
        "service_name": "s3",
        "region_name": settings.AWS_REGION,
        "config": Config(**config_kwargs),
    }
    if settings.S3_ENDPOINT_URL:
        kwargs["endpoint_url"] = settings.S3_ENDPOINT_URL
    if settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
        kwargs["aws_access_key_id"] = settings.AWS_ACCESS_KEY_ID
        kwargs["aws_secret_access_key"] = settings.AWS_SECRET_ACCESS_KEY

    return boto3.client(**kwargs)


def _rewrite_presigned_url(url: str) -> str:
    """Swap scheme+netloc to S3_PUBLIC_ENDPOINT so browsers can reach MinIO."""
    if not settings.S3_PUBLIC_ENDPOINT:
        return url
    public = urlparse(settings.S3_PUBLIC_ENDPOINT)
    parsed = urlparse(url)
    return urlunparse(parsed._replace(scheme=public.scheme, netloc=public.netloc))


def build_qr_key(link_key: str, fmt: str) -> str:
    return f"qr-codes/{link_key}.{fmt}"


def put_object(key: str, body: bytes, content_type: str) -> None:
    client = _get_s3_client()
    client.put_object(
        Bucket=settings.S3_BUCKET,
        Key=key,
        Body=body,
        ContentType=content_type,
    )


def presign_get(
    key: str,
    expires: int = PRESIGN_DOWNLOAD_EXPIRES,
) -> str:
    """Generate a presigned GET URL for downloading from S3."""
    client = _get_s3_client()
    url = client.generate_presigned_url(
        "get_object",
        Params={
            "Bucket": settings.S3_BUCKET,
            "Key": key,
        },
        ExpiresIn=expires,
    )
    return _rewrite_presigned_url(url)


class S3QrStorage:
    """Adapter the link manager uses to persist rendered codes."""

    def save(self, link_key: str, fmt: str, body: bytes) -> str:
        key = build_qr_key(link_key, fmt)
        put_object(key, body, CONTENT_TYPES.get(fmt, "application/octet-stream"))
        return key

    def url(self, key: str) -> str:
        return presign_get(key)
