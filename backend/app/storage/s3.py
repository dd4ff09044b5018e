import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class S3Config:
    endpoint_url: str
    access_key_id: str
    secret_access_key: str
    bucket: str
    region: str
    use_ssl: bool
    public_base_url: Optional[str] = None


def get_s3_config() -> Optional[S3Config]:
    endpoint = (os.environ.get("S3_ENDPOINT_URL") or "").strip()
    access = (os.environ.get("S3_ACCESS_KEY_ID") or "").strip()
    secret = (os.environ.get("S3_SECRET_ACCESS_KEY") or "").strip()
    bucket = (os.environ.get("S3_BUCKET") or "").strip()
    region = (os.environ.get("S3_REGION") or "us-east-1").strip() or "us-east-1"
    use_ssl_raw = (os.environ.get("S3_USE_SSL") or "").strip().lower()
    use_ssl = use_ssl_raw not in {"0", "false", "no"}
    public_base = (os.environ.get("S3_PUBLIC_BASE_URL") or "").strip().rstrip("/") or None

    if not endpoint or not access or not secret or not bucket:
        return None
    return S3Config(
        endpoint_url=endpoint,
        access_key_id=access,
        secret_access_key=secret,
        bucket=bucket,
        region=region,
        use_ssl=use_ssl,
        public_base_url=public_base,
    )


def s3_enabled() -> bool:
    return get_s3_config() is not None


def _client():
    import boto3
    from botocore.config import Config

    cfg = get_s3_config()
    if not cfg:
        raise RuntimeError("S3 not configured")

    # Force v4 signatures so MinIO works consistently.
    bc = Config(signature_version="s3v4", s3={"addressing_style": "path"})
    return boto3.client(
        "s3",
        endpoint_url=cfg.endpoint_url,
        aws_access_key_id=cfg.access_key_id,
        aws_secret_access_key=cfg.secret_access_key,
        region_name=cfg.region,
        use_ssl=cfg.use_ssl,
        config=bc,
    )


def _content_disposition(disposition: str, filename: Optional[str]) -> str:
    disp = "inline"
    if (disposition or "").lower().startswith("attachment"):
        disp = "attachment"
    safe_name = (filename or "document").replace("\n", " ").replace("\r", " ").replace('"', "").strip() or "document"
    return f'{disp}; filename="{safe_name}"'


def put_bytes(*, key: str, data: bytes, content_type: str, filename: Optional[str] = None) -> str:
    cfg = get_s3_config()
    if not cfg:
        raise RuntimeError("S3 not configured")
    c = _client()
    params = {
        "Bucket": cfg.bucket,
        "Key": key,
        "Body": data or b"",
        "ContentType": content_type or "application/octet-stream",
    }
    if filename:
        params["ContentDisposition"] = _content_disposition("inline", filename)
    res = c.put_object(**params)
    etag = (res.get("ETag") or "").strip('"')  # ETag is often quoted.
    return etag


def upload_bytes(*, key: str, data: bytes, content_type: str, filename: Optional[str] = None) -> dict:
    """
    Store an object and return `{"key", "etag", "url"}`.

    `url` is the bucket-qualified `s3://` locator; callers that need a browser URL
    should prefer `get_public_url(key)` and fall back to this one.
    """
    cfg = get_s3_config()
    if not cfg:
        raise RuntimeError("S3 not configured")
    etag = put_bytes(key=key, data=data, content_type=content_type, filename=filename)
    return {"key": key, "etag": etag, "url": f"s3://{cfg.bucket}/{key}"}


def get_public_url(key: str) -> Optional[str]:
    cfg = get_s3_config()
    if not cfg or not cfg.public_base_url:
        return None
    return f"{cfg.public_base_url}/{(key or '').lstrip('/')}"


def key_from_url(url: Optional[str]) -> Optional[str]:
    """
    Recover the object key from a stored document URL (`s3://bucket/key` or
    `<S3_PUBLIC_BASE_URL>/key`). Returns None for foreign URLs.
    """
    raw = (url or "").strip()
    if not raw:
        return None
    cfg = get_s3_config()
    if not cfg:
        return None
    prefix = f"s3://{cfg.bucket}/"
    if raw.startswith(prefix):
        return raw[len(prefix):] or None
    if cfg.public_base_url and raw.startswith(cfg.public_base_url + "/"):
        return raw[len(cfg.public_base_url) + 1:] or None
    return None


def presign_get(
    *,
    key: str,
    filename: str,
    content_type: str,
    disposition: str,
    expires_seconds: int = 300,
) -> str:
    """
    Create a short-lived, signed URL for viewing/downloading stored documents.
    """
    cfg = get_s3_config()
    if not cfg:
        raise RuntimeError("S3 not configured")
    c = _client()

    cd = _content_disposition(disposition, filename)
    ct = (content_type or "application/octet-stream").strip() or "application/octet-stream"

    return c.generate_presigned_url(
        ClientMethod="get_object",
        Params={
            "Bucket": cfg.bucket,
            "Key": key,
            "ResponseContentDisposition": cd,
            "ResponseContentType": ct,
        },
        ExpiresIn=max(30, min(int(expires_seconds), 3600)),
    )
