"""Tests for inkpipe/api/uploads.py"""

from unittest.mock import patch

import pytest

from inkpipe.config import settings
from inkpipe.errors import TransientIOError
from inkpipe.models import FileRecord, ProcessingLog, UserUsage


def _complete_body(key, name="receipt.jpg", content_type="image/jpeg"):
    return {
        "storageKey": key,
        "publicUrl": f"https://files.example.com/{key}",
        "originalName": name,
        "contentType": content_type,
    }


@pytest.mark.integration
class TestUploadUrl:
    def test_returns_presigned_url_and_key(self, client):
        response = client.post("/upload-url", json={"filename": "receipt.jpg", "contentType": "image/jpeg"})
        assert response.status_code == 200
        data = response.json()
        assert data["storageKey"].startswith("uploads/user/")
        assert data["storageKey"].endswith("-receipt.jpg")
        assert data["storageKey"] in data["uploadUrl"]
        assert data["publicUrl"] == f"https://files.example.com/{data['storageKey']}"

    def test_filename_is_sanitized(self, client):
        response = client.post("/upload-url", json={"filename": "my receipt (1).jpg", "contentType": "image/jpeg"})
        assert response.json()["storageKey"].endswith("-my_receipt__1_.jpg")

    def test_missing_fields_rejected(self, client):
        response = client.post("/upload-url", json={"filename": "receipt.jpg"})
        assert response.status_code == 422

    def test_requires_auth_when_enabled(self, client, auth_enabled):
        response = client.post("/upload-url", json={"filename": "receipt.jpg", "contentType": "image/jpeg"})
        assert response.status_code == 401

    def test_quota_exceeded(self, client, db_session, monkeypatch):
        monkeypatch.setattr(settings, "enable_usage_quota", True)
        db_session.add(UserUsage(user_id="user", token_usage=100, max_token_usage=100))
        db_session.commit()

        response = client.post("/upload-url", json={"filename": "receipt.jpg", "contentType": "image/jpeg"})

        assert response.status_code == 429
        data = response.json()
        assert data["remaining"] == 0
        assert data["limit"] == 100
        assert "Credits limit exceeded" in data["detail"]

    def test_quota_ignored_when_disabled(self, client, db_session):
        db_session.add(UserUsage(user_id="user", token_usage=500, max_token_usage=100))
        db_session.commit()
        response = client.post("/upload-url", json={"filename": "receipt.jpg", "contentType": "image/jpeg"})
        assert response.status_code == 200

    def test_object_store_outage_is_503(self, client, fake_store):
        with patch.object(fake_store, "create_upload_url", side_effect=TransientIOError("S3 down")):
            response = client.post("/upload-url", json={"filename": "receipt.jpg", "contentType": "image/jpeg"})
        assert response.status_code == 503
        assert response.json()["detail"] == "S3 down"


@pytest.mark.integration
class TestUploadComplete:
    def test_creates_pending_record(self, client, db_session):
        response = client.post("/upload-complete", json=_complete_body("uploads/user/abc-receipt.jpg"))
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "pending"

        record = db_session.get(FileRecord, data["fileId"])
        assert record.owner_id == "user"
        assert record.media_type == "image/jpeg"
        assert record.extracted_text is None
        assert record.error is None

        logs = db_session.query(ProcessingLog).filter(ProcessingLog.file_id == record.id).all()
        assert [log.step_name for log in logs] == ["record_upload"]

    def test_retry_is_idempotent(self, client, db_session):
        body = _complete_body("uploads/user/abc-receipt.jpg")
        first = client.post("/upload-complete", json=body).json()
        second = client.post("/upload-complete", json=body).json()

        assert first["fileId"] == second["fileId"]
        assert db_session.query(FileRecord).count() == 1

    def test_retry_does_not_reset_progress(self, client, db_session, make_file):
        record = make_file(status="completed", storage_key="uploads/user/done.jpg", extracted_text="done", tokens_used=1)

        response = client.post("/upload-complete", json=_complete_body("uploads/user/done.jpg"))

        assert response.json() == {"fileId": record.id, "status": "completed"}

    def test_key_outside_own_prefix_forbidden(self, client, db_session):
        response = client.post("/upload-complete", json=_complete_body("uploads/someone-else/abc-receipt.jpg"))
        assert response.status_code == 403
        assert db_session.query(FileRecord).count() == 0

    def test_key_owned_by_other_user_forbidden(self, client, make_file):
        make_file(owner_id="intruder", storage_key="uploads/user/stolen.jpg")
        response = client.post("/upload-complete", json=_complete_body("uploads/user/stolen.jpg"))
        assert response.status_code == 403

    def test_public_url_defaults_to_store_url(self, client, db_session):
        body = _complete_body("uploads/user/abc-receipt.jpg")
        del body["publicUrl"]
        data = client.post("/upload-complete", json=body).json()
        record = db_session.get(FileRecord, data["fileId"])
        assert record.public_url == "https://files.example.com/uploads/user/abc-receipt.jpg"


@pytest.mark.integration
class TestUploadText:
    def test_markdown_note_completed_immediately(self, client, db_session, fake_store):
        response = client.post("/upload-text", json={"name": "notes.md", "content": "# Hi"})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["text"] == "# Hi"

        record = db_session.get(FileRecord, data["fileId"])
        assert record.extracted_text == "# Hi"
        assert record.tokens_used == 0
        assert record.media_type == "text/markdown"
        assert fake_store.objects[record.storage_key] == b"# Hi"
        assert fake_store.content_types[record.storage_key] == "text/markdown"

    def test_plain_text(self, client, db_session):
        data = client.post("/upload-text", json={"name": "todo.txt", "content": "milk"}).json()
        assert db_session.get(FileRecord, data["fileId"]).media_type == "text/plain"

    def test_status_endpoint_sees_text(self, client):
        data = client.post("/upload-text", json={"name": "notes.md", "content": "# Hi"}).json()
        status = client.get(f"/files/{data['fileId']}/status").json()
        assert status == {"id": data["fileId"], "status": "completed", "text": "# Hi"}

    def test_blank_content_rejected(self, client, db_session):
        response = client.post("/upload-text", json={"name": "notes.md", "content": "   "})
        assert response.status_code == 400
        assert db_session.query(FileRecord).count() == 0
