"""
Tests for inkpipe/utils/object_store.py
"""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from inkpipe.errors import ExtractionFailure, TransientIOError
from inkpipe.utils.object_store import MAX_PRESIGNED_GET_EXPIRY, ObjectStoreClient


def _client_error(code, operation="GetObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def s3():
    with patch("inkpipe.utils.object_store.boto3") as mock_boto3:
        client = MagicMock()
        mock_boto3.client.return_value = client
        yield client


def _store(**kwargs):
    defaults = dict(bucket="inkpipe", public_base_url="https://files.example.com/", upload_url_expiry=900)
    defaults.update(kwargs)
    return ObjectStoreClient(**defaults)


@pytest.mark.unit
class TestUploadUrl:
    def test_presigns_put(self, s3):
        s3.generate_presigned_url.return_value = "https://signed"

        assert _store().create_upload_url("uploads/u/k.jpg", "image/jpeg") == "https://signed"

        s3.generate_presigned_url.assert_called_once_with(
            "put_object",
            Params={"Bucket": "inkpipe", "Key": "uploads/u/k.jpg", "ContentType": "image/jpeg"},
            ExpiresIn=900,
        )

    def test_failure_is_transient(self, s3):
        s3.generate_presigned_url.side_effect = _client_error("AccessDenied", "PutObject")
        with pytest.raises(TransientIOError):
            _store().create_upload_url("k", "image/jpeg")

    def test_endpoint_passed_to_boto(self):
        with patch("inkpipe.utils.object_store.boto3") as mock_boto3:
            _store(endpoint_url="https://acct.r2.cloudflarestorage.com", region="auto")
        kwargs = mock_boto3.client.call_args.kwargs
        assert kwargs["endpoint_url"] == "https://acct.r2.cloudflarestorage.com"
        assert kwargs["region_name"] == "auto"


@pytest.mark.unit
class TestPublicUrl:
    def test_public_host(self, s3):
        assert _store().public_url("uploads/u/k.jpg") == "https://files.example.com/uploads/u/k.jpg"
        s3.generate_presigned_url.assert_not_called()

    def test_private_bucket_signed_get(self, s3):
        s3.generate_presigned_url.return_value = "https://signed-get"
        assert _store(public_base_url=None).public_url("k") == "https://signed-get"
        assert s3.generate_presigned_url.call_args.kwargs["ExpiresIn"] == MAX_PRESIGNED_GET_EXPIRY


@pytest.mark.unit
class TestReads:
    def test_get_bytes(self, s3):
        body = MagicMock()
        body.read.return_value = b"data"
        s3.get_object.return_value = {"Body": body}
        assert _store().get_bytes("k") == b"data"

    @pytest.mark.parametrize("code", ["NoSuchKey", "404"])
    def test_missing_object_is_terminal(self, s3, code):
        s3.get_object.side_effect = _client_error(code)
        with pytest.raises(ExtractionFailure):
            _store().get_bytes("k")

    def test_server_error_is_transient(self, s3):
        s3.get_object.side_effect = _client_error("InternalError")
        with pytest.raises(TransientIOError):
            _store().get_bytes("k")

    def test_connection_error_is_transient(self, s3):
        s3.download_file.side_effect = EndpointConnectionError(endpoint_url="https://s3")
        with pytest.raises(TransientIOError):
            _store().download_to("k", "/tmp/x")

    def test_download_to(self, s3):
        assert _store().download_to("k", "/tmp/x") == "/tmp/x"
        s3.download_file.assert_called_once_with("inkpipe", "k", "/tmp/x")


@pytest.mark.unit
def test_put_bytes_failure_is_transient(s3):
    s3.put_object.side_effect = EndpointConnectionError(endpoint_url="https://s3")
    with pytest.raises(TransientIOError):
        _store().put_bytes("k", b"x", "text/plain")
