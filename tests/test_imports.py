"""Tests for the bulk-import HTTP API."""
import os

import pytest
from httpx import AsyncClient

from app.config import settings
from app.services.import_manager import ImportJobManager
from tests.conftest import AUTH_HEADERS, AUTH_HEADERS_USER2

CSV_OK = (
    "Title,Description,Preview URL\n"
    "Meal Muse,Plans meals from your fridge,mealmuse.app\n"
    "Desk Buddy,Office booking for small teams,https://deskbuddy.io\n"
).encode()


async def _upload(client: AsyncClient, name: str, content: bytes, headers=AUTH_HEADERS):
    return await client.post(
        "/api/ideas/bulk-import",
        files={"file": (name, content, "application/octet-stream")},
        headers=headers,
    )


@pytest.mark.asyncio
async def test_bulk_import_accepts_and_completes(
    client: AsyncClient, import_manager: ImportJobManager
):
    resp = await _upload(client, "ideas.csv", CSV_OK)
    assert resp.status_code == 202
    data = resp.json()
    assert data["status"] == "processing"
    assert data["totalRows"] == 2
    job_id = data["jobId"]

    await import_manager.wait(job_id)

    resp = await client.get(f"/api/import-jobs/{job_id}", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    job = resp.json()
    assert job["id"] == job_id
    assert job["status"] == "completed"
    assert job["processedRows"] == job["totalRows"] == 2
    assert job["successfulRows"] == 2
    assert job["failedRows"] == 0
    assert len(job["results"]) == 2
    assert job["errorSummary"] == []
    assert job["completedAt"] is not None


@pytest.mark.asyncio
async def test_unsupported_file_type_is_rejected(client: AsyncClient):
    resp = await _upload(client, "ideas.pdf", b"%PDF-1.4")
    assert resp.status_code == 400
    assert ".csv, .xlsx, .xls" in resp.json()["detail"]

    jobs = await client.get("/api/import-jobs", headers=AUTH_HEADERS)
    assert jobs.json() == []


@pytest.mark.asyncio
async def test_oversized_upload_is_rejected(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(settings, "MAX_FILE_SIZE", 16)
    resp = await _upload(client, "ideas.csv", CSV_OK)
    assert resp.status_code == 413


@pytest.mark.asyncio
async def test_empty_or_unreadable_files_are_unprocessable(client: AsyncClient):
    resp = await _upload(client, "empty.csv", b"Title,URL\n")
    assert resp.status_code == 422

    resp = await _upload(client, "broken.xlsx", b"not really a workbook")
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_bulk_import_requires_identity(client: AsyncClient):
    resp = await client.post(
        "/api/ideas/bulk-import",
        files={"file": ("ideas.csv", CSV_OK, "text/csv")},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_job_is_visible_only_to_its_owner(
    client: AsyncClient, import_manager: ImportJobManager
):
    job_id = (await _upload(client, "ideas.csv", CSV_OK)).json()["jobId"]
    await import_manager.wait(job_id)

    resp = await client.get(f"/api/import-jobs/{job_id}", headers=AUTH_HEADERS_USER2)
    assert resp.status_code == 404

    resp = await client.get("/api/import-jobs/does-not-exist", headers=AUTH_HEADERS)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_error_summary_lists_first_errors_then_remainder(
    client: AsyncClient, import_manager: ImportJobManager
):
    lines = ["Title,Notes"] + [f"Nameless {i},no link here" for i in range(12)]
    resp = await _upload(client, "bad.csv", ("\n".join(lines) + "\n").encode())
    job_id = resp.json()["jobId"]
    await import_manager.wait(job_id)

    job = (await client.get(f"/api/import-jobs/{job_id}", headers=AUTH_HEADERS)).json()
    assert job["status"] == "completed"
    assert job["failedRows"] == 12
    assert job["processedRows"] == 12
    assert job["errors"][0] == {"row": 1, "error": "Preview URL is required"}
    assert len(job["errorSummary"]) == settings.IMPORT_ERROR_PREVIEW_LIMIT + 1
    assert job["errorSummary"][0] == "Row 1: Preview URL is required"
    assert job["errorSummary"][-1] == "... and 2 more errors"


@pytest.mark.asyncio
async def test_cancel_finished_job_conflicts(
    client: AsyncClient, import_manager: ImportJobManager
):
    job_id = (await _upload(client, "ideas.csv", CSV_OK)).json()["jobId"]
    await import_manager.wait(job_id)

    resp = await client.post(f"/api/import-jobs/{job_id}/cancel", headers=AUTH_HEADERS)
    assert resp.status_code == 409

    resp = await client.post(f"/api/import-jobs/{job_id}/cancel", headers=AUTH_HEADERS_USER2)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_list_jobs_returns_own_jobs(
    client: AsyncClient, import_manager: ImportJobManager
):
    first = (await _upload(client, "one.csv", CSV_OK)).json()["jobId"]
    await import_manager.wait(first)
    second = (await _upload(client, "two.csv", CSV_OK)).json()["jobId"]
    await import_manager.wait(second)

    resp = await client.get("/api/import-jobs", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    assert {j["id"] for j in resp.json()} == {first, second}
    assert (await client.get("/api/import-jobs", headers=AUTH_HEADERS_USER2)).json() == []


@pytest.mark.asyncio
async def test_upload_is_removed_when_job_creation_errors(
    client: AsyncClient, import_manager: ImportJobManager, monkeypatch, tmp_path
):
    async def failing_create_job(user_id, filename, file_path):
        raise RuntimeError("job insert failed")

    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))
    monkeypatch.setattr(import_manager, "create_job", failing_create_job)

    with pytest.raises(RuntimeError):
        await _upload(client, "ideas.csv", CSV_OK)

    assert os.listdir(tmp_path) == []
