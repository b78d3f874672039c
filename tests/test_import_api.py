from qbank.core.config import settings
from qbank.domain.imports.orchestrator import start_import
from tests.utils.question_bank import admin_headers, build_csv, count_rows, question_row


def _upload(client, headers, content, filename="questions.csv"):
    return client.post(
        "/admin/import/csv",
        files={"file": (filename, content, "text/csv")},
        headers=headers,
    )


def test_upload_is_queued_and_runs_in_the_background(client, auth_headers, import_queue):
    response = _upload(client, auth_headers, build_csv([question_row(i) for i in range(1, 6)]))

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "queued"
    assert body["filename"] == "questions.csv"
    assert body["estimated_time_minutes"] >= 1
    import_id = body["import_id"]

    assert import_queue.join(timeout=30)

    progress = client.get(f"/admin/import/{import_id}/progress", headers=auth_headers)
    assert progress.status_code == 200
    assert progress.json() == {
        "import_id": import_id,
        "status": "completed",
        "processed": 5,
        "total": 5,
        "progress_percent": 100,
        "successful": 5,
        "failed": 0,
        "duplicates": 0,
        "estimated_remaining_minutes": 0,
    }
    assert count_rows("questions") == 5


def test_rollback_endpoint(client, auth_headers, import_queue):
    import_id = _upload(client, auth_headers, build_csv([question_row(1), question_row(2)])).json()["import_id"]
    assert import_queue.join(timeout=30)

    response = client.post(f"/admin/import/{import_id}/rollback", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["deleted_count"] == 2
    assert response.json()["status"] == "rollback"
    assert response.json()["message"] == "Rollback completed. Deleted 2 imported questions."
    assert count_rows("questions") == 0

    again = client.post(f"/admin/import/{import_id}/rollback", headers=auth_headers)
    assert again.status_code == 409


def test_rollback_of_queued_import_conflicts(client, auth_headers):
    import_id = start_import("pending.csv", "admin-1")

    response = client.post(f"/admin/import/{import_id}/rollback", headers=auth_headers)

    assert response.status_code == 409


def test_unknown_import_returns_404(client, auth_headers):
    missing = "00000000-0000-0000-0000-000000000000"

    assert client.get(f"/admin/import/{missing}/progress", headers=auth_headers).status_code == 404
    assert client.post(f"/admin/import/{missing}/rollback", headers=auth_headers).status_code == 404
    assert client.get(f"/admin/import/{missing}", headers=auth_headers).status_code == 404


def test_import_history_lists_own_imports(client, auth_headers, import_queue):
    _upload(client, auth_headers, build_csv([question_row(1)]), filename="mine.csv")
    start_import("someone-else.csv", "admin-2")
    assert import_queue.join(timeout=30)

    mine = client.get("/admin/imports", headers=auth_headers).json()
    everyone = client.get("/admin/imports", params={"mine_only": "false"}, headers=auth_headers).json()

    assert mine["total_count"] == 1
    assert mine["imports"][0]["csv_filename"] == "mine.csv"
    assert mine["imports"][0]["status"] == "completed"
    assert everyone["total_count"] == 2

    detail = client.get(f"/admin/import/{mine['imports'][0]['id']}", headers=auth_headers)
    assert detail.status_code == 200
    assert detail.json()["successful_imports"] == 1


def test_failed_import_is_visible_in_history(client, auth_headers, import_queue):
    import_id = _upload(client, auth_headers, b"text,option_a\nonly,two\n").json()["import_id"]
    assert import_queue.join(timeout=30)

    detail = client.get(f"/admin/import/{import_id}", headers=auth_headers).json()

    assert detail["status"] == "failed"
    assert "Missing required columns" in detail["error_details"]["error"]


def test_requires_a_valid_token(client):
    response = client.get("/admin/imports", headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == 401


def test_requires_admin_role(client):
    response = _upload(client, admin_headers("student-1", role="student"), build_csv([question_row(1)]))

    assert response.status_code == 403


def test_rejects_non_csv_and_empty_uploads(client, auth_headers):
    assert _upload(client, auth_headers, b"a,b\n", filename="questions.xlsx").status_code == 400
    assert _upload(client, auth_headers, b"").status_code == 400


def test_rejects_oversized_upload(client, auth_headers, monkeypatch):
    monkeypatch.setattr(settings, "upload_max_file_size_mb", 0)

    response = _upload(client, auth_headers, build_csv([question_row(1)]))

    assert response.status_code == 413


def test_uploads_are_rate_limited_per_admin(client, auth_headers, import_queue):
    content = build_csv([question_row(1)])

    statuses = [_upload(client, auth_headers, content).status_code for _ in range(4)]
    other_admin = _upload(client, admin_headers("admin-2"), content)
    import_queue.join(timeout=30)

    assert statuses == [202, 202, 202, 429]
    assert other_admin.status_code == 202


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


def test_rejected_uploads_do_not_use_the_quota(client, auth_headers, import_queue):
    for _ in range(3):
        assert _upload(client, auth_headers, b"", filename="notes.txt").status_code == 400

    response = _upload(client, auth_headers, build_csv([question_row(1)]))
    import_queue.join(timeout=30)

    assert response.status_code == 202
