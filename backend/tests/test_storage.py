import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from datahall.errors import StorageUnavailable
from datahall.storage import FileMetadata, LocalStorage, S3Storage, build_object_key

META = FileMetadata(user_id=4, file_name="Q3 report (final).pdf", file_type="application/pdf")


class FakeS3Client:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def _record(self, name, kwargs):
        self.calls.append((name, kwargs))
        if self.error is not None:
            raise self.error

    def put_object(self, **kwargs):
        self._record("put_object", kwargs)

    def delete_object(self, **kwargs):
        self._record("delete_object", kwargs)

    def list_objects_v2(self, **kwargs):
        self._record("list_objects_v2", kwargs)
        return {"Contents": [{"Key": "4/abc_report.pdf"}]}

    def generate_presigned_url(self, **kwargs):
        self._record("generate_presigned_url", kwargs)
        return "https://s3.example.com/signed"


def test_object_key_is_namespaced_and_sanitized():
    key = build_object_key(META)
    assert key.startswith("4/")
    assert key.endswith("_Q3_report_final_.pdf")


def test_s3_upload_and_sign():
    client = FakeS3Client()
    storage = S3Storage("docs", client=client)

    key = storage.upload(b"%PDF", META)
    assert client.calls[0][1]["Bucket"] == "docs"
    assert client.calls[0][1]["Key"] == key
    assert client.calls[0][1]["ContentType"] == "application/pdf"

    assert storage.generate_signed_url(key, 60) == "https://s3.example.com/signed"
    assert client.calls[-1][1]["ExpiresIn"] == 60
    assert storage.list("4/") == ["4/abc_report.pdf"]


@pytest.mark.parametrize(
    "error",
    [
        EndpointConnectionError(endpoint_url="http://minio:9000"),
        ClientError({"Error": {"Code": "SlowDown", "Message": "Reduce your request rate"}}, "PutObject"),
    ],
)
def test_s3_failures_become_retryable_storage_errors(error):
    storage = S3Storage("docs", client=FakeS3Client(error=error))

    with pytest.raises(StorageUnavailable) as excinfo:
        storage.upload(b"%PDF", META)
    assert excinfo.value.retryable is True
    assert excinfo.value.code == "STORAGE_UNAVAILABLE"


def test_local_storage_roundtrip(tmp_path):
    storage = LocalStorage(tmp_path, "http://files.local/", secret="unit-secret")

    key = storage.upload(b"hello", META)
    assert storage.list() == [key]
    assert storage.list("5/") == []

    url = storage.generate_signed_url(key, 30)
    assert url.startswith("http://files.local/files/signed/")
    assert storage.open_signed(url.rsplit("/", 1)[-1]).read_bytes() == b"hello"

    storage.delete(key)
    assert storage.list() == []


def test_local_signed_token_is_tamper_proof(tmp_path):
    storage = LocalStorage(tmp_path, "http://files.local", secret="unit-secret")
    key = storage.upload(b"hello", META)
    token = storage.generate_signed_url(key, 30).rsplit("/", 1)[-1]

    other = LocalStorage(tmp_path, "http://files.local", secret="another-secret")
    with pytest.raises(ValueError):
        other.open_signed(token)


def test_local_storage_refuses_paths_outside_the_bucket(tmp_path):
    storage = LocalStorage(tmp_path, "http://files.local", secret="unit-secret")
    with pytest.raises(ValueError):
        storage.delete("../../etc/passwd")
