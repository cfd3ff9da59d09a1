import pytest
from fastapi.testclient import TestClient

from voice_minutes.main import create_app


@pytest.fixture
def client(services):
    with TestClient(create_app(services=services), raise_server_exceptions=False) as c:
        yield c


def _upload(client, name="meeting.mp3", content=b"ID3 fake audio", mime="audio/mpeg", **form):
    return client.post("/api/audio/upload", files={"audioFile": (name, content, mime)}, data=form)


def test_root_and_health(client):
    root = client.get("/")
    assert root.status_code == 200
    assert root.json()["success"] is True

    health = client.get("/health")
    assert health.status_code == 200
    body = health.json()
    assert body["data"]["services"] == {"openai": "not_configured", "database": "connected", "wiki": "not_configured"}

    detailed = client.get("/health/detailed").json()["data"]
    assert detailed["runtime"]["environment"] == "test"
    assert detailed["endpoints"]["audio"] == "/api/audio"


def test_upload_processes_file(client):
    resp = _upload(client, format="html,json", publish="false")

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    data = body["data"]
    assert set(data["documents"]) == {"html", "json"}
    assert data["structured_data"]["meeting_info"]["title"] == "Weekly Sync"
    assert data["used_fallback"] is False

    audio_id = data["audio_file"]["id"]
    status = client.get(f"/api/audio/status/{audio_id}").json()["data"]
    assert (status["status"], status["progress"]) == ("completed", 100)

    html_url = data["documents"]["html"]["url"]
    served = client.get(html_url)
    assert served.status_code == 200
    assert "Weekly Sync" in served.text

    meeting = client.get(f"/api/meeting/{data['meeting']['id']}").json()["data"]
    assert len(meeting["agendas"]) == 2


def test_upload_rejects_non_audio(client):
    resp = _upload(client, name="notes.txt", content=b"hello", mime="text/plain")
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["type"] == "UploadError"


def test_upload_rejects_unknown_format(client, services):
    resp = _upload(client, format="pdf")
    assert resp.status_code == 400
    assert list(services.intake.upload_dir.iterdir()) == []


def test_upload_pipeline_failure_envelope(client):
    resp = _upload(client, content=b"broken audio")
    assert resp.status_code == 500
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["type"] == "PipelineFailure"
    assert body["error"]["detail"]["stage"] == "transcribing"
    assert "stack" in body

    audio_id = body["error"]["detail"]["audio_file_id"]
    status = client.get(f"/api/audio/status/{audio_id}").json()["data"]
    assert (status["status"], status["progress"]) == ("failed", 0)


def test_transcribe_only(client, services):
    resp = client.post("/api/audio/transcribe", files={"audioFile": ("a.mp3", b"ID3", "audio/mpeg")})
    assert resp.status_code == 200
    assert resp.json()["data"]["text"].startswith("Kim:")
    assert list(services.intake.upload_dir.iterdir()) == []


def test_batch_upload(client):
    files = [
        ("audioFiles", ("a.mp3", b"ID3 one", "audio/mpeg")),
        ("audioFiles", ("b.mp3", b"broken audio", "audio/mpeg")),
    ]
    resp = client.post("/api/audio/batch", files=files, data={"publish": "false"})

    assert resp.status_code == 200
    summary = resp.json()["data"]["summary"]
    assert summary == {"total": 2, "successful": 1, "failed": 1, "success_rate": 50.0}


def test_batch_upload_limit(client):
    files = [("audioFiles", (f"{i}.mp3", b"ID3", "audio/mpeg")) for i in range(6)]
    resp = client.post("/api/audio/batch", files=files)
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_audio_files_and_stats(client):
    _upload(client, format="html", publish="false")
    files = client.get("/api/audio/files").json()
    assert files["pagination"]["total"] == 1
    stats = client.get("/api/audio/stats").json()["data"]
    assert (stats["total_audio_files"], stats["completed_files"], stats["success_rate"]) == (1, 1, 100.0)


def test_meeting_management(client):
    created = client.post("/api/meeting", json={"title": "手動登録", "location": "会議室B"})
    assert created.status_code == 201
    meeting_id = created.json()["data"]["id"]

    updated = client.put(f"/api/meeting/{meeting_id}", json={"title": "手動登録（更新）"}).json()["data"]
    assert updated["title"] == "手動登録（更新）"
    assert updated["location"] == "会議室B"

    approved = client.patch(f"/api/meeting/{meeting_id}/approval", json={"status": "approved", "approved_by": "佐藤"})
    assert approved.json()["data"]["status"] == "approved"
    again = client.patch(f"/api/meeting/{meeting_id}/approval", json={"status": "rejected"})
    assert again.status_code == 400

    listing = client.get("/api/meeting", params={"status": "approved"}).json()
    assert listing["pagination"]["total"] == 1

    assert client.delete(f"/api/meeting/{meeting_id}").json()["success"] is True
    missing = client.get(f"/api/meeting/{meeting_id}")
    assert missing.status_code == 404
    assert missing.json()["success"] is False


def test_action_items(client):
    meeting_id = _upload(client, format="html", publish="false").json()["data"]["meeting"]["id"]

    actions = client.get(f"/api/meeting/{meeting_id}/actions").json()
    assert actions["summary"] == {"total": 2, "open": 2, "completed": 0}

    action_id = actions["data"][0]["id"]
    done = client.patch(f"/api/meeting/actions/{action_id}", json={"status": "completed"}).json()["data"]
    assert done["status"] == "completed"
    assert done["completion_date"] is not None


def test_request_validation_uses_envelope(client):
    resp = client.patch("/api/meeting/1/approval", json={"status": "maybe"})
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_document_endpoints(client):
    meeting_id = _upload(client, format="html", publish="false").json()["data"]["meeting"]["id"]

    generated = client.post("/api/document/generate", json={"meeting_id": meeting_id, "formats": ["json"]})
    assert generated.status_code == 200
    json_name = generated.json()["data"]["documents"]["json"]["file_name"]

    names = {d["file_name"] for d in client.get("/api/document").json()["data"]}
    assert json_name in names

    preview = client.get(f"/api/document/preview/{json_name}").json()["data"]
    assert preview["meeting_info"]["title"] == "Weekly Sync"

    download = client.get(f"/api/document/download/{json_name}")
    assert download.status_code == 200
    assert download.headers["content-type"].startswith("application/json")

    assert client.delete(f"/api/document/{json_name}").json()["success"] is True
    assert client.get(f"/api/document/download/{json_name}").status_code == 404

    templates = client.get("/api/document/templates").json()["data"]
    assert [t["id"] for t in templates] == ["default", "executive", "technical"]


def test_generate_from_structured_data(client):
    resp = client.post("/api/document/generate", json={
        "structured_data": {"meeting_info": {"title": "即席会議"}, "agendas": [{"title": "議題A"}]},
        "formats": "html",
    })
    assert resp.status_code == 200
    assert set(resp.json()["data"]["documents"]) == {"html"}

    bad = client.post("/api/document/generate", json={"formats": "html"})
    assert bad.status_code == 400


def test_unknown_route_uses_envelope(client):
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.json()["success"] is False


def test_update_meeting_rejects_null_meeting_type(client):
    meeting_id = client.post("/api/meeting", json={"title": "手動登録"}).json()["data"]["id"]

    resp = client.put(f"/api/meeting/{meeting_id}", json={"meeting_type": None})

    assert resp.status_code == 400
    assert resp.json()["error"]["type"] == "ValidationError"
    assert client.get(f"/api/meeting/{meeting_id}").json()["data"]["meeting_type"] == "定例会議"


def test_pending_action_items_endpoint(client):
    _upload(client, format="html", publish="false")

    body = client.get("/api/meeting/actions/pending").json()

    assert body["total"] == 2
    assert [i["task_description"] for i in body["data"]] == ["Send report", "Post job listing"]
