import pytest

from backend.app.storage import s3


@pytest.fixture
def s3_env(monkeypatch):
    monkeypatch.setenv("S3_ENDPOINT_URL", "http://minio:9000")
    monkeypatch.setenv("S3_ACCESS_KEY_ID", "key")
    monkeypatch.setenv("S3_SECRET_ACCESS_KEY", "secret")
    monkeypatch.setenv("S3_BUCKET", "pos-docs")
    monkeypatch.delenv("S3_PUBLIC_BASE_URL", raising=False)


class _FakeS3Client:
    def __init__(self):
        self.put_calls = []
        self.presign_calls = []

    def put_object(self, **params):
        self.put_calls.append(params)
        return {"ETag": '"abc123"'}

    def generate_presigned_url(self, **params):
        self.presign_calls.append(params)
        return "https://minio/signed"


def test_s3_disabled_without_env(monkeypatch):
    for name in ("S3_ENDPOINT_URL", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "S3_BUCKET"):
        monkeypatch.delenv(name, raising=False)
    assert s3.s3_enabled() is False
    assert s3.get_public_url("pos/x.pdf") is None
    assert s3.key_from_url("s3://pos-docs/pos/x.pdf") is None
    with pytest.raises(RuntimeError):
        s3.upload_bytes(key="k", data=b"", content_type="application/pdf")


def test_upload_bytes_returns_locator(s3_env, monkeypatch):
    client = _FakeS3Client()
    monkeypatch.setattr(s3, "_client", lambda: client)
    out = s3.upload_bytes(key="pos/receipts/2025/R-2025-000001.pdf", data=b"%PDF", content_type="application/pdf", filename="R-2025-000001.pdf")
    assert out == {
        "key": "pos/receipts/2025/R-2025-000001.pdf",
        "etag": "abc123",
        "url": "s3://pos-docs/pos/receipts/2025/R-2025-000001.pdf",
    }
    params = client.put_calls[0]
    assert params["Bucket"] == "pos-docs"
    assert params["ContentType"] == "application/pdf"
    assert params["ContentDisposition"] == 'inline; filename="R-2025-000001.pdf"'


def test_public_url_and_key_round_trip(s3_env, monkeypatch):
    monkeypatch.setenv("S3_PUBLIC_BASE_URL", "https://cdn.example/docs/")
    url = s3.get_public_url("/pos/invoices/2025/I-2025-000001.pdf")
    assert url == "https://cdn.example/docs/pos/invoices/2025/I-2025-000001.pdf"
    assert s3.key_from_url(url) == "pos/invoices/2025/I-2025-000001.pdf"
    assert s3.key_from_url("s3://pos-docs/pos/a.pdf") == "pos/a.pdf"
    assert s3.key_from_url("s3://other-bucket/pos/a.pdf") is None
    assert s3.key_from_url("https://elsewhere.example/a.pdf") is None


def test_presign_get_clamps_expiry(s3_env, monkeypatch):
    client = _FakeS3Client()
    monkeypatch.setattr(s3, "_client", lambda: client)
    url = s3.presign_get(key="pos/a.pdf", filename='a"b.pdf', content_type="", disposition="attachment", expires_seconds=99999)
    assert url == "https://minio/signed"
    call = client.presign_calls[0]
    assert call["ExpiresIn"] == 3600
    assert call["Params"]["ResponseContentDisposition"] == 'attachment; filename="ab.pdf"'
    assert call["Params"]["ResponseContentType"] == "application/octet-stream"
