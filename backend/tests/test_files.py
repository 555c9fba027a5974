import io

from fastapi import status

from fileshare.core.errors import StorageFailure
from fileshare.models.shared_file import SharedFile
from fileshare.services import blob_store as blob_store_module
from fileshare.services.blob_store import LocalBlobStore, get_blob_store
from fileshare.services.share_registry import ShareRegistry


def upload(client, headers, name="notes.txt", content=b"hello world", mime="text/plain", **form):
    files = {"file": (name, io.BytesIO(content), mime)}
    return client.post("/files", files=files, data=form, headers=headers)


def test_report_pdf_scenario(client, auth_headers):
    """Password-protected upload: info, rejected download, then successful download."""
    content = bytes(range(256)) * 3 + b"x" * 232
    assert len(content) == 1000

    r = upload(client, auth_headers, "report.pdf", content, "application/pdf", password="secret", expiresIn="24")
    assert r.status_code == status.HTTP_200_OK
    created = r.json()
    assert created["originalName"] == "report.pdf"
    assert created["size"] == 1000
    assert created["expiresAt"] is not None
    token = created["shareToken"]
    assert created["shareLink"] == f"http://testserver/files/{token}/content"
    assert "internalName" not in created

    r = client.get(f"/files/{token}")
    assert r.status_code == status.HTTP_200_OK
    info = r.json()
    assert info["hasPassword"] is True
    assert info["downloadCount"] == 0
    assert info["uploadedBy"] == "Owner"
    assert info["mimeType"] == "application/pdf"
    assert "password" not in info

    r = client.get(f"/files/{token}/content")
    assert r.status_code == status.HTTP_401_UNAUTHORIZED
    assert r.json()["detail"] == "Password required"

    r = client.get(f"/files/{token}/content", params={"password": "secret"})
    assert r.status_code == status.HTTP_200_OK
    assert r.content == content
    assert 'filename="report.pdf"' in r.headers["content-disposition"]

    r = client.get(f"/files/{token}")
    assert r.json()["downloadCount"] == 1


def test_wrong_password_is_rejected_and_not_counted(client, auth_headers):
    token = upload(client, auth_headers, password="secret").json()["shareToken"]

    r = client.get(f"/files/{token}/content", params={"password": "Secret"})
    assert r.status_code == status.HTTP_401_UNAUTHORIZED
    assert r.json()["detail"] == "Incorrect password"

    assert client.get(f"/files/{token}").json()["downloadCount"] == 0


def test_round_trip_without_password(client, auth_headers):
    content = b"\x00\x01binary\xffpayload" * 100
    token = upload(client, auth_headers, "blob.bin", content, "application/octet-stream").json()["shareToken"]

    r = client.get(f"/files/{token}/content")
    assert r.status_code == status.HTTP_200_OK
    assert r.content == content
    assert r.headers["content-type"].startswith("application/octet-stream")


def test_download_counter_increments_per_download(client, auth_headers):
    token = upload(client, auth_headers).json()["shareToken"]
    for _ in range(5):
        assert client.get(f"/files/{token}/content").status_code == status.HTTP_200_OK
    assert client.get(f"/files/{token}").json()["downloadCount"] == 5


def test_unicode_filename_is_encoded_in_disposition(client, auth_headers):
    token = upload(client, auth_headers, "отчёт 2026.txt").json()["shareToken"]
    r = client.get(f"/files/{token}/content")
    assert r.status_code == status.HTTP_200_OK
    disposition = r.headers["content-disposition"]
    assert disposition.startswith("attachment;")
    assert "filename*=UTF-8''%D0%BE%D1%82%D1%87%D1%91%D1%82%202026.txt" in disposition


def test_upload_without_file_is_rejected(client, auth_headers):
    r = client.post("/files", data={"password": "secret"}, headers=auth_headers)
    assert r.status_code == status.HTTP_400_BAD_REQUEST
    assert r.json()["detail"] == "No file uploaded"


def test_upload_with_bad_expiry_is_rejected(client, auth_headers, blob_store):
    r = upload(client, auth_headers, expiresIn="tomorrow")
    assert r.status_code == status.HTTP_400_BAD_REQUEST
    assert list(blob_store.base_path.iterdir()) == []


def test_upload_with_out_of_range_expiry_is_rejected(client, auth_headers, blob_store):
    r = upload(client, auth_headers, expiresIn="100000000")
    assert r.status_code == status.HTTP_400_BAD_REQUEST
    assert list(blob_store.base_path.iterdir()) == []


def test_upload_with_overlong_name_is_rejected(client, auth_headers, blob_store):
    r = upload(client, auth_headers, name="n" * 300 + ".txt")
    assert r.status_code == status.HTTP_400_BAD_REQUEST
    assert "too long" in r.json()["detail"]
    assert list(blob_store.base_path.iterdir()) == []
    assert client.get("/files/mine", headers=auth_headers).json()["files"] == []


def test_upload_never_expires(client, auth_headers):
    r = upload(client, auth_headers, expiresIn="never")
    assert r.status_code == status.HTTP_200_OK
    assert r.json()["expiresAt"] is None


def test_upload_too_large(client, auth_headers, tmp_path):
    small = LocalBlobStore(tmp_path / "small", max_bytes=10)
    client.app.dependency_overrides[get_blob_store] = lambda: small

    r = upload(client, auth_headers, content=b"x" * 11)
    assert r.status_code == status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    assert list(small.base_path.iterdir()) == []

    r = client.get("/files/mine", headers=auth_headers)
    assert r.json()["files"] == []


def test_expired_link_is_gone(client, auth_headers):
    token = upload(client, auth_headers, expiresIn="0").json()["shareToken"]

    r = client.get(f"/files/{token}")
    assert r.status_code == status.HTTP_410_GONE
    assert r.json()["detail"] == "File has expired"

    r = client.get(f"/files/{token}/content")
    assert r.status_code == status.HTTP_410_GONE


def test_expiry_is_checked_before_password(client, auth_headers):
    token = upload(client, auth_headers, password="secret", expiresIn="0").json()["shareToken"]
    r = client.get(f"/files/{token}/content")
    assert r.status_code == status.HTTP_410_GONE


def test_unknown_token(client):
    assert client.get("/files/does-not-exist").status_code == status.HTTP_404_NOT_FOUND
    r = client.get("/files/does-not-exist/content", params={"password": "guess"})
    assert r.status_code == status.HTTP_404_NOT_FOUND
    assert r.json()["detail"] == "File not found"


def test_inactive_record_is_hidden(client, auth_headers, db_session):
    created = upload(client, auth_headers).json()
    token = created["shareToken"]

    record = db_session.query(SharedFile).filter(SharedFile.share_token == token).one()
    record.is_active = False
    db_session.commit()

    assert client.get(f"/files/{token}").status_code == status.HTTP_404_NOT_FOUND
    assert client.get(f"/files/{token}/content").status_code == status.HTTP_404_NOT_FOUND
    assert client.get("/files/mine", headers=auth_headers).json()["files"] == []

    # Owner can still clean it up.
    r = client.delete(f"/files/{created['id']}", headers=auth_headers)
    assert r.status_code == status.HTTP_200_OK


def test_missing_blob_yields_not_found_without_counting(client, auth_headers, db_session, blob_store):
    token = upload(client, auth_headers).json()["shareToken"]
    record = db_session.query(SharedFile).filter(SharedFile.share_token == token).one()
    (blob_store.base_path / record.internal_name).unlink()

    r = client.get(f"/files/{token}/content")
    assert r.status_code == status.HTTP_404_NOT_FOUND
    assert r.json()["detail"] == "File not found on disk"

    db_session.refresh(record)
    assert record.download_count == 0


def test_list_mine_newest_first_without_internal_paths(client, auth_headers, login):
    first = upload(client, auth_headers, "first.txt", b"1").json()
    second = upload(client, auth_headers, "second.txt", b"22", password="pw").json()

    other = login("other@example.com")
    upload(client, other, "theirs.txt")

    r = client.get("/files/mine", headers=auth_headers)
    assert r.status_code == status.HTTP_200_OK
    files = r.json()["files"]
    assert [f["id"] for f in files] == [second["id"], first["id"]]
    for f in files:
        assert "internalName" not in f
        assert "internal_name" not in f
        assert "password" not in f
        assert f["shareLink"] == f"http://testserver/files/{f['shareToken']}/content"
    assert files[0]["hasPassword"] is True
    assert files[1]["hasPassword"] is False
    assert files[0]["size"] == 2


def test_delete_removes_blob_and_record(client, auth_headers, db_session, blob_store):
    created = upload(client, auth_headers).json()
    record = db_session.query(SharedFile).filter(SharedFile.id == created["id"]).one()
    internal_name = record.internal_name
    assert blob_store.exists(internal_name)

    r = client.delete(f"/files/{created['id']}", headers=auth_headers)
    assert r.status_code == status.HTTP_200_OK
    assert r.json() == {"ok": True, "id": created["id"]}

    assert not blob_store.exists(internal_name)
    db_session.expire_all()
    assert db_session.query(SharedFile).filter(SharedFile.id == created["id"]).first() is None
    assert client.get(f"/files/{created['shareToken']}").status_code == status.HTTP_404_NOT_FOUND

    r = client.delete(f"/files/{created['id']}", headers=auth_headers)
    assert r.status_code == status.HTTP_404_NOT_FOUND


def test_delete_is_owner_only(client, auth_headers, login):
    created = upload(client, auth_headers).json()
    intruder = login("intruder@example.com")

    r = client.delete(f"/files/{created['id']}", headers=intruder)
    assert r.status_code == status.HTTP_404_NOT_FOUND
    assert client.get(f"/files/{created['shareToken']}").status_code == status.HTTP_200_OK


def test_delete_with_malformed_id_is_not_found(client, auth_headers):
    for file_id in ("abc", "1.5", "0", "-3", "9" * 30):
        r = client.delete(f"/files/{file_id}", headers=auth_headers)
        assert r.status_code == status.HTTP_404_NOT_FOUND, file_id
        assert r.json() == {"detail": "File not found"}


def test_delete_keeps_record_when_blob_delete_fails(client, auth_headers, db_session, blob_store, monkeypatch):
    created = upload(client, auth_headers).json()

    def broken_delete(internal_name):
        raise StorageFailure(detail="disk on fire")

    monkeypatch.setattr(blob_store, "delete", broken_delete)
    r = client.delete(f"/files/{created['id']}", headers=auth_headers)
    assert r.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert r.json()["detail"] == "Storage unavailable"
    assert "disk on fire" not in r.text

    db_session.expire_all()
    assert db_session.query(SharedFile).filter(SharedFile.id == created["id"]).first() is not None


def test_failed_registration_cleans_up_blob(client, auth_headers, blob_store, monkeypatch):
    def broken_create(self, **kwargs):
        raise StorageFailure("Upload failed", detail="db down")

    monkeypatch.setattr(ShareRegistry, "create", broken_create)
    r = upload(client, auth_headers)
    assert r.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert r.json()["detail"] == "Upload failed"
    assert list(blob_store.base_path.iterdir()) == []


def test_authenticated_endpoints_require_token(client):
    assert upload(client, {}).status_code == status.HTTP_401_UNAUTHORIZED
    assert client.get("/files/mine").status_code == status.HTTP_401_UNAUTHORIZED
    assert client.delete("/files/1").status_code == status.HTTP_401_UNAUTHORIZED

    bad = {"Authorization": "Bearer not-a-jwt"}
    r = client.get("/files/mine", headers=bad)
    assert r.status_code == status.HTTP_401_UNAUTHORIZED
    assert r.headers.get("www-authenticate") == "Bearer"


def test_security_headers_on_download(client, auth_headers):
    token = upload(client, auth_headers).json()["shareToken"]
    r = client.get(f"/files/{token}/content")
    assert r.headers["x-content-type-options"] == "nosniff"
    assert "x-request-id" in r.headers


def test_failed_count_releases_blob_handle(client, auth_headers, monkeypatch):
    token = upload(client, auth_headers).json()["shareToken"]

    handles = []

    def tracking_open(*args, **kwargs):
        fh = open(*args, **kwargs)
        handles.append(fh)
        return fh

    def broken_increment(self, token):
        raise StorageFailure("Download failed", detail="db down")

    monkeypatch.setattr(blob_store_module, "open", tracking_open, raising=False)
    monkeypatch.setattr(ShareRegistry, "increment_download_count", broken_increment)

    r = client.get(f"/files/{token}/content")
    assert r.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert len(handles) == 1
    assert handles[0].closed
