import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch, AsyncMock, MagicMock
from supabase import PostgrestAPIError, StorageException

from services.file_service.app.main import app
from services.file_service.app import actions
from core.models import FileDocument, UserDocument
from core.session import require_current_user
from core.config import settings

ACTIONS = "services.file_service.app.actions"

OWNER = UserDocument(id="user-1", email="owner@example.com", full_name="Owner One", account_id="acct-1", files=["f-0"])
OTHER = UserDocument(id="user-2", email="friend@example.com", full_name="Friend Two", account_id="acct-2")


def make_file(file_id="f-1", owner="user-1", users=None, name="report.pdf", extension="pdf") -> FileDocument:
    return FileDocument(
        id=file_id, name=name, url=f"http://storage/{file_id}", type="document", extension=extension,
        size=1024, bucket_file_id=f"obj-{file_id}", owner=owner, account_id=owner, users=users or [],
    )


def postgrest_error(message: str) -> PostgrestAPIError:
    return PostgrestAPIError({"message": message, "code": "XX000", "details": None, "hint": None})


@pytest.fixture
def mocks():
    """Patches every Supabase touch point used by the file actions."""
    with patch(f"{ACTIONS}.get_supabase_client", new_callable=AsyncMock) as mock_get_client, \
         patch(f"{ACTIONS}.upload_object", new_callable=AsyncMock) as mock_upload, \
         patch(f"{ACTIONS}.delete_object", new_callable=AsyncMock) as mock_delete_object, \
         patch(f"{ACTIONS}.crud.insert_file_document", new_callable=AsyncMock) as mock_insert, \
         patch(f"{ACTIONS}.crud.delete_file_document", new_callable=AsyncMock) as mock_delete_doc, \
         patch(f"{ACTIONS}.crud.delete_file_documents_by_object", new_callable=AsyncMock) as mock_delete_by_object, \
         patch(f"{ACTIONS}.crud.get_file_document", new_callable=AsyncMock) as mock_get_doc, \
         patch(f"{ACTIONS}.crud.update_file_document", new_callable=AsyncMock) as mock_update_doc, \
         patch(f"{ACTIONS}.crud.list_file_documents", new_callable=AsyncMock) as mock_list_docs, \
         patch(f"{ACTIONS}.crud.get_user_file_ids", new_callable=AsyncMock) as mock_get_ids, \
         patch(f"{ACTIONS}.crud.set_user_file_ids", new_callable=AsyncMock) as mock_set_ids, \
         patch("core.utils.asyncio.sleep", new_callable=AsyncMock):
        mock_get_client.return_value = MagicMock(name="supabase")
        mock_upload.return_value = "obj-f-1"
        mock_insert.return_value = make_file()
        mock_get_ids.return_value = ["f-0"]
        yield {
            "client": mock_get_client.return_value,
            "upload": mock_upload,
            "delete_object": mock_delete_object,
            "insert": mock_insert,
            "delete_doc": mock_delete_doc,
            "delete_by_object": mock_delete_by_object,
            "get_doc": mock_get_doc,
            "update_doc": mock_update_doc,
            "list_docs": mock_list_docs,
            "get_ids": mock_get_ids,
            "set_ids": mock_set_ids,
        }


# --- Upload saga ---
@pytest.mark.asyncio
async def test_upload_file_success(mocks):
    result = await actions.upload_file(b"%PDF-1.7", "report.pdf", owner_id="user-1", content_type="application/pdf")

    assert result.success is True
    assert result.data.id == "f-1"
    mocks["upload"].assert_awaited_once_with(mocks["client"], b"%PDF-1.7", "report.pdf", "application/pdf", "pdf")
    inserted = mocks["insert"].await_args.args[0]
    assert inserted["bucket_file_id"] == "obj-f-1"
    assert inserted["type"] == "document"
    assert inserted["extension"] == "pdf"
    assert inserted["size"] == 8
    assert inserted["owner"] == "user-1"
    assert inserted["account_id"] == "user-1"
    assert inserted["users"] == []
    mocks["set_ids"].assert_awaited_once_with("user-1", ["f-0", "f-1"])
    mocks["delete_object"].assert_not_awaited()


@pytest.mark.asyncio
async def test_upload_file_document_insert_failure_removes_blob(mocks):
    mocks["insert"].side_effect = postgrest_error("insert failed")

    result = await actions.upload_file(b"data", "report.pdf", owner_id="user-1")

    assert result.success is False
    assert result.error == "insert failed"
    mocks["delete_object"].assert_awaited_once_with(mocks["client"], "obj-f-1")
    mocks["delete_by_object"].assert_awaited_once_with("obj-f-1")
    mocks["delete_doc"].assert_not_awaited()
    mocks["set_ids"].assert_not_awaited()


@pytest.mark.asyncio
async def test_upload_file_link_failure_retries_then_cleans_up(mocks):
    mocks["get_ids"].side_effect = RuntimeError("users table unavailable")

    with patch.object(settings, "DB_RETRY_ATTEMPTS", 3):
        result = await actions.upload_file(b"data", "report.pdf", owner_id="user-1")

    assert result.success is False
    assert result.error == "users table unavailable"
    assert mocks["get_ids"].await_count == 3
    mocks["delete_object"].assert_awaited_once_with(mocks["client"], "obj-f-1")
    mocks["delete_by_object"].assert_awaited_once_with("obj-f-1")


@pytest.mark.asyncio
async def test_upload_file_link_recovers_on_retry(mocks):
    mocks["get_ids"].side_effect = [RuntimeError("timeout"), ["f-0"]]

    result = await actions.upload_file(b"data", "report.pdf", owner_id="user-1")

    assert result.success is True
    mocks["set_ids"].assert_awaited_once_with("user-1", ["f-0", "f-1"])
    mocks["delete_object"].assert_not_awaited()


@pytest.mark.asyncio
async def test_upload_file_cleanup_failure_keeps_original_error(mocks):
    mocks["get_ids"].side_effect = RuntimeError("link failed")
    mocks["delete_object"].side_effect = StorageException("storage down")
    mocks["delete_by_object"].side_effect = postgrest_error("delete failed")

    with patch.object(settings, "DB_RETRY_ATTEMPTS", 1):
        result = await actions.upload_file(b"data", "report.pdf", owner_id="user-1")

    assert result.success is False
    assert result.error == "link failed"
    mocks["delete_object"].assert_awaited_once()
    mocks["delete_by_object"].assert_awaited_once_with("obj-f-1")


@pytest.mark.asyncio
async def test_upload_file_insert_without_response_removes_row_by_object(mocks):
    mocks["insert"].side_effect = RuntimeError("Insert returned no data for the new file document")

    result = await actions.upload_file(b"data", "report.pdf", owner_id="user-1")

    assert result.success is False
    mocks["delete_object"].assert_awaited_once_with(mocks["client"], "obj-f-1")
    mocks["delete_by_object"].assert_awaited_once_with("obj-f-1")
    mocks["set_ids"].assert_not_awaited()


@pytest.mark.asyncio
async def test_upload_file_link_skips_existing_reference(mocks):
    mocks["get_ids"].return_value = ["f-0", "f-1"]

    result = await actions.upload_file(b"data", "report.pdf", owner_id="user-1")

    assert result.success is True
    mocks["set_ids"].assert_not_awaited()

@pytest.mark.asyncio
async def test_upload_file_storage_failure_needs_no_cleanup(mocks):
    mocks["upload"].side_effect = StorageException("bucket missing")

    result = await actions.upload_file(b"data", "report.pdf", owner_id="user-1")

    assert result.success is False
    assert "bucket missing" in result.error
    mocks["insert"].assert_not_awaited()
    mocks["delete_object"].assert_not_awaited()


@pytest.mark.asyncio
async def test_upload_file_validation(mocks):
    assert (await actions.upload_file(b"data", "", owner_id="user-1")).error == actions.NO_FILE_PROVIDED
    assert (await actions.upload_file(b"data", "a.txt", owner_id="")).error == actions.OWNER_REQUIRED
    with patch.object(settings, "MAX_FILE_SIZE", 3):
        assert (await actions.upload_file(b"data", "a.txt", owner_id="user-1")).error == actions.FILE_TOO_LARGE
    mocks["upload"].assert_not_awaited()


# --- Rename / share / delete ---
@pytest.mark.asyncio
async def test_rename_file_reappends_extension(mocks):
    mocks["get_doc"].return_value = make_file()
    mocks["update_doc"].return_value = make_file(name="summary.pdf")

    result = await actions.rename_file("f-1", "summary.pdf", None, OWNER)

    assert result.success is True
    assert result.data.name == "summary.pdf"
    file_id, updates = mocks["update_doc"].await_args.args
    assert file_id == "f-1"
    assert updates["name"] == "summary.pdf"

    await actions.rename_file("f-1", "  draft ", None, OWNER)
    assert mocks["update_doc"].await_args.args[1]["name"] == "draft.pdf"


@pytest.mark.asyncio
async def test_rename_file_rejects_non_owner_and_empty_name(mocks):
    mocks["get_doc"].return_value = make_file()

    assert (await actions.rename_file("f-1", "new", None, OTHER)).error == actions.NOT_FILE_OWNER
    assert (await actions.rename_file("f-1", ".pdf", None, OWNER)).error == actions.EMPTY_FILE_NAME
    mocks["update_doc"].assert_not_awaited()

    mocks["get_doc"].return_value = None
    assert (await actions.rename_file("missing", "new", None, OWNER)).error == actions.FILE_NOT_FOUND


@pytest.mark.asyncio
async def test_update_file_users_normalises_emails(mocks):
    mocks["get_doc"].return_value = make_file()
    mocks["update_doc"].return_value = make_file(users=["friend@example.com"])

    result = await actions.update_file_users(
        "f-1", [" Friend@Example.com", "friend@example.com", "", "OWNER@example.com"], OWNER
    )

    assert result.success is True
    assert mocks["update_doc"].await_args.args[1]["users"] == ["friend@example.com"]


@pytest.mark.asyncio
async def test_delete_file_removes_document_blob_and_reference(mocks):
    mocks["get_doc"].return_value = make_file()
    mocks["get_ids"].return_value = ["f-0", "f-1"]

    result = await actions.delete_file("f-1", OWNER)

    assert result.success is True
    mocks["delete_doc"].assert_awaited_once_with("f-1")
    mocks["delete_object"].assert_awaited_once_with(mocks["client"], "obj-f-1")
    mocks["set_ids"].assert_awaited_once_with("user-1", ["f-0"])


@pytest.mark.asyncio
async def test_delete_file_tolerates_storage_failure(mocks):
    mocks["get_doc"].return_value = make_file()
    mocks["delete_object"].side_effect = StorageException("gone")
    mocks["get_ids"].return_value = ["f-1"]

    result = await actions.delete_file("f-1", OWNER)

    assert result.success is True
    mocks["set_ids"].assert_awaited_once_with("user-1", [])


@pytest.mark.asyncio
async def test_delete_file_document_failure_is_reported(mocks):
    mocks["get_doc"].return_value = make_file()
    mocks["delete_doc"].side_effect = postgrest_error("permission denied")

    result = await actions.delete_file("f-1", OWNER)

    assert result.success is False
    assert result.error == "permission denied"
    mocks["delete_object"].assert_not_awaited()


# --- Listing & access ---
@pytest.mark.asyncio
async def test_list_files_passes_filters(mocks):
    mocks["list_docs"].return_value = [make_file()]

    files = await actions.list_files(OWNER, types=["document", "bogus"], search="  rep ", sort="name-asc", limit=10)

    assert len(files) == 1
    mocks["list_docs"].assert_awaited_once_with(
        owner_id="user-1", email="owner@example.com", types=["document"],
        search="rep", sort_column="name", descending=False, limit=10,
    )


@pytest.mark.asyncio
async def test_list_files_type_edge_cases(mocks):
    assert await actions.list_files(OWNER, types=["bogus"]) == []
    mocks["list_docs"].assert_not_awaited()

    mocks["list_docs"].return_value = []
    await actions.list_files(OWNER, types=["all"])
    assert mocks["list_docs"].await_args.kwargs["types"] is None
    assert mocks["list_docs"].await_args.kwargs["sort_column"] == "created_at"
    assert mocks["list_docs"].await_args.kwargs["descending"] is True


@pytest.mark.asyncio
async def test_get_file_visible_to_shared_user_only(mocks):
    mocks["get_doc"].return_value = make_file(users=["friend@example.com"])
    assert (await actions.get_file("f-1", OTHER)).id == "f-1"

    mocks["get_doc"].return_value = make_file()
    assert await actions.get_file("f-1", OTHER) is None


@pytest.mark.asyncio
async def test_get_total_space_used(mocks):
    mocks["list_docs"].return_value = [make_file("a"), make_file("b")]

    summary = await actions.get_total_space_used(OWNER)

    mocks["list_docs"].assert_awaited_once_with(owner_id="user-1")
    assert summary.used == 2048
    assert summary.all == settings.TOTAL_STORAGE_BYTES


# --- Backend outages ---
@pytest.mark.asyncio
async def test_owner_actions_report_outage_instead_of_not_found(mocks):
    mocks["get_doc"].side_effect = postgrest_error("connection refused")

    rename = await actions.rename_file("f-1", "summary", None, OWNER)
    share = await actions.update_file_users("f-1", ["friend@example.com"], OWNER)
    delete = await actions.delete_file("f-1", OWNER)
    download = await actions.get_download_url("f-1", OWNER)

    for result in (rename, share, delete, download):
        assert result.success is False
        assert result.error == "connection refused"
    mocks["update_doc"].assert_not_awaited()
    mocks["delete_doc"].assert_not_awaited()


@pytest.mark.asyncio
async def test_listing_and_usage_propagate_outage(mocks):
    mocks["list_docs"].side_effect = postgrest_error("connection refused")

    with pytest.raises(PostgrestAPIError):
        await actions.list_files(OWNER)
    with pytest.raises(PostgrestAPIError):
        await actions.get_total_space_used(OWNER)


# --- HTTP layer ---
@pytest.fixture
def client():
    app.dependency_overrides[require_current_user] = lambda: OWNER
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def test_health_check(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_upload_endpoint_success(client: TestClient):
    with patch(f"{ACTIONS}.upload_file", new_callable=AsyncMock) as mock_upload:
        mock_upload.return_value = actions.ActionResult(success=True, data=make_file())
        response = client.post("/files", files={"file": ("report.pdf", b"%PDF", "application/pdf")})

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["id"] == "f-1"
    mock_upload.assert_awaited_once_with(
        content=b"%PDF", file_name="report.pdf", owner_id="user-1",
        account_id="acct-1", content_type="application/pdf",
    )


@pytest.mark.parametrize("error, status_code", [
    (actions.FILE_TOO_LARGE, 413),
    (actions.NOT_FILE_OWNER, 403),
    (actions.FILE_NOT_FOUND, 404),
    ("insert failed", 500),
])
def test_delete_endpoint_maps_errors(client: TestClient, error, status_code):
    with patch(f"{ACTIONS}.delete_file", new_callable=AsyncMock) as mock_delete:
        mock_delete.return_value = actions.ActionResult(success=False, error=error)
        response = client.delete("/files/f-1")

    assert response.status_code == status_code
    assert response.json()["detail"] == error


def test_get_file_endpoint_not_found(client: TestClient):
    with patch(f"{ACTIONS}.get_file", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = None
        response = client.get("/files/missing")
    assert response.status_code == 404


def test_list_endpoint_passes_query(client: TestClient):
    with patch(f"{ACTIONS}.list_files", new_callable=AsyncMock) as mock_list:
        mock_list.return_value = [make_file()]
        response = client.get("/files", params=[("type", "image"), ("type", "video"), ("sort", "size-desc")])

    assert response.status_code == 200
    assert response.json()[0]["id"] == "f-1"
    mock_list.assert_awaited_once_with(OWNER, types=["image", "video"], search=None, sort="size-desc", limit=None)


def test_endpoints_require_session():
    # No dependency override and no cookie: the real dependency rejects the request
    with TestClient(app) as c:
        response = c.get("/usage")
    assert response.status_code == 401


def test_upload_endpoint_rejects_oversized_file_before_reading(client: TestClient):
    with patch(f"{ACTIONS}.upload_file", new_callable=AsyncMock) as mock_upload, \
         patch.object(settings, "MAX_FILE_SIZE", 3):
        response = client.post("/files", files={"file": ("report.pdf", b"%PDF", "application/pdf")})

    assert response.status_code == 413
    assert response.json()["detail"] == actions.FILE_TOO_LARGE
    mock_upload.assert_not_awaited()


@pytest.mark.parametrize("method, path", [
    ("GET", "/files"),
    ("GET", "/files/f-1"),
    ("GET", "/usage"),
])
def test_read_endpoints_answer_502_on_outage(client: TestClient, method, path):
    with patch(f"{ACTIONS}.crud.get_file_document", new_callable=AsyncMock) as mock_get_doc, \
         patch(f"{ACTIONS}.crud.list_file_documents", new_callable=AsyncMock) as mock_list_docs:
        mock_get_doc.side_effect = postgrest_error("connection refused")
        mock_list_docs.side_effect = postgrest_error("connection refused")
        response = client.request(method, path)

    assert response.status_code == 502


def test_rename_endpoint_answers_500_on_outage(client: TestClient):
    with patch(f"{ACTIONS}.crud.get_file_document", new_callable=AsyncMock) as mock_get_doc:
        mock_get_doc.side_effect = postgrest_error("connection refused")
        response = client.patch("/files/f-1/rename", json={"name": "summary"})

    assert response.status_code == 500
    assert response.json()["detail"] == "connection refused"
