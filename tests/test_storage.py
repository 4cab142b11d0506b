"""
Tests for the S3 artifact store adapter.
"""

import io

import boto3
import pytest
from botocore.config import Config
from botocore.response import StreamingBody
from botocore.stub import Stubber

from proof_worker.configuration import ProofSettings
from proof_worker.exceptions import StorageError
from proof_worker.storage import ArtifactStore


@pytest.fixture
def s3_client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        config=Config(signature_version="s3v4"),
    )


class TestArtifactStore:
    def test_upload_puts_object(self, s3_client):
        store = ArtifactStore(client=s3_client)
        with Stubber(s3_client) as stubber:
            stubber.add_response(
                "put_object",
                {},
                {"Bucket": "proofs", "Key": "O1/v1/proof.pdf", "Body": b"%PDF", "ContentType": "application/pdf"},
            )
            store.upload("proofs", "O1/v1/proof.pdf", b"%PDF")
            stubber.assert_no_pending_responses()

    def test_upload_error_is_raised(self, s3_client):
        store = ArtifactStore(client=s3_client)
        with Stubber(s3_client) as stubber:
            stubber.add_client_error("put_object", "AccessDenied", "denied", http_status_code=403)

            with pytest.raises(StorageError) as excinfo:
                store.upload("proofs", "O1/v1/proof.pdf", b"%PDF")

        assert excinfo.value.status_code == 403
        assert "AccessDenied" in excinfo.value.body

    def test_download_reads_body(self, s3_client):
        store = ArtifactStore(client=s3_client)
        body = StreamingBody(io.BytesIO(b"image"), len(b"image"))
        with Stubber(s3_client) as stubber:
            stubber.add_response("get_object", {"Body": body}, {"Bucket": "mockups", "Key": "O1/a.jpg"})

            assert store.download("mockups", "O1/a.jpg") == b"image"

    def test_download_missing_object(self, s3_client):
        store = ArtifactStore(client=s3_client)
        with Stubber(s3_client) as stubber:
            stubber.add_client_error("get_object", "NoSuchKey", "missing", http_status_code=404)

            with pytest.raises(StorageError) as excinfo:
                store.download("mockups", "O1/a.jpg")

        assert excinfo.value.status_code == 404

    def test_signed_url(self, s3_client):
        store = ArtifactStore(client=s3_client)

        url = store.create_signed_url("proofs", "O1/v1/proof.pdf", 86400)

        assert "O1/v1/proof.pdf" in url
        assert "X-Amz-Expires=86400" in url
        assert "X-Amz-Signature=" in url

    def test_default_client_signs_with_sigv4(self):
        store = ArtifactStore(settings=ProofSettings(s3_region_name="us-east-1"))

        url = store.create_signed_url("proofs", "O1/v1/proof.pdf", 3600)

        assert "X-Amz-Expires=3600" in url
