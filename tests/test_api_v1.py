from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from hlsingest.core.config import get_settings
from hlsingest.main import create_app

from tests.conftest import build_token


def _upload(client, headers, *, title="Harbour at dusk", description="Boats coming in", tags="", files=None):
    if files is None:
        files = {
            "videofile": ("clip.mp4", b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 2048, "video/mp4"),
            "thumbnail": ("cover.jpg", b"\xff\xd8\xff\xe0" + b"\x00" * 64, "image/jpeg"),
        }
    data = {"title": title, "description": description, "tags": tags}
    return client.post("/v1/videos", data=data, files=files, headers=headers)


def test_v1_health_ok(client):
    resp = client.get("/v1/health")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["status"] == "ok"
    assert payload["storage_backend"] == "local"


def test_upload_requires_authorization(client):
    resp = _upload(client, {})
    assert resp.status_code == 401


def test_token_without_subject_is_forbidden(client):
    resp = _upload(client, {"Authorization": f"Bearer {build_token(None)}"})
    assert resp.status_code == 403
    assert resp.json()["detail"] == "user_identity_required"


def test_upload_flow_creates_video(client, user_headers, settings):
    resp = _upload(client, user_headers, tags="boats, harbour,,boats")
    assert resp.status_code == 201, resp.text
    video = resp.json()

    assert video["tags"] == ["boats", "harbour"]

    assert video["owner_id"] == "user-test"
    assert video["duration"] == "00:00:35"
    assert video["quality"] == [{"resolution": "720p", "url": video["manifest_url"]}]
    assert video["manifest_url"].startswith("https://cdn.example.test/media/videos/")
    assert video["manifest_url"].endswith("/720p/playlist.m3u8")

    key = video["manifest_url"].removeprefix("https://cdn.example.test/media/")
    manifest = settings.local_storage_base_path / key
    assert manifest.read_text().count("#EXTINF") == 4

    fetched = client.get(f"/v1/videos/{video['video_id']}")
    assert fetched.status_code == 200
    assert fetched.json()["title"] == "Harbour at dusk"

    assert list(settings.staging_root.iterdir()) == []
    assert list(settings.jobs_root.iterdir()) == []


def test_missing_thumbnail_is_validation_error(client, user_headers, settings):
    files = {"videofile": ("clip.mp4", b"\x00" * 128, "video/mp4")}
    resp = _upload(client, user_headers, files=files)

    assert resp.status_code == 400
    detail = resp.json()["detail"]
    assert detail["kind"] == "validation_error"
    assert detail["detail"]["fields"] == ["thumbnail"]
    assert list(settings.staging_root.iterdir()) == []


def test_blank_title_is_validation_error(client, user_headers):
    resp = _upload(client, user_headers, title="   ")
    assert resp.status_code == 400
    assert resp.json()["detail"]["kind"] == "validation_error"


def test_unprobeable_source_reports_probe_error(client, user_headers, settings, monkeypatch):
    monkeypatch.setenv("FAKE_PROBE_MODE", "fail")
    resp = _upload(client, user_headers)

    assert resp.status_code == 500
    assert resp.json()["detail"]["kind"] == "probe_error"
    assert list(settings.jobs_root.iterdir()) == []
    assert client.get("/v1/videos").json()["total"] == 0


def test_transcode_failure_reports_segment_reason(client, user_headers, monkeypatch):
    monkeypatch.setenv("FAKE_FAIL_AFTER", "1")
    resp = _upload(client, user_headers)

    assert resp.status_code == 500
    detail = resp.json()["detail"]
    assert detail["kind"] == "segment_error"
    assert detail["detail"]["reason"] == "transcode_failed"


def test_list_is_paginated_and_filterable(client, user_headers):
    for index in range(3):
        assert _upload(client, user_headers, title=f"clip {index}").status_code == 201

    page = client.get("/v1/videos", params={"page": 1, "limit": 2}).json()
    assert page["total"] == 3
    assert len(page["items"]) == 2
    assert page["items"][0]["title"] == "clip 2"

    second = client.get("/v1/videos", params={"page": 2, "limit": 2}).json()
    assert [item["title"] for item in second["items"]] == ["clip 0"]

    other = client.get("/v1/videos", params={"owner_id": "someone-else"}).json()
    assert other["total"] == 0


def test_unknown_video_is_404(client):
    resp = client.get("/v1/videos/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "video_not_found"


def test_admin_env_check_requires_scope(client, user_headers):
    resp = client.get("/v1/admin/env-check", headers=user_headers)
    assert resp.status_code == 403


def test_admin_env_check_reports_toolchain(client, admin_headers):
    resp = client.get("/v1/admin/env-check", headers=admin_headers)
    assert resp.status_code == 200
    assert set(resp.json()) == {"ffmpeg", "ffprobe"}


def test_dev_token_is_accepted_by_the_api(client):
    resp = client.post("/v1/admin/dev-token", json={"user_id": "dev-user", "scopes": ["admin"]})
    assert resp.status_code == 200
    headers = {"Authorization": f"Bearer {resp.json()['token']}"}

    assert client.get("/v1/admin/env-check", headers=headers).status_code == 200


@pytest.fixture()
def production_client(monkeypatch, configure_environment):
    monkeypatch.setenv("HLSINGEST_ENVIRONMENT", "production")
    get_settings.cache_clear()
    with TestClient(create_app()) as client:
        yield client


def test_dev_token_disabled_outside_development(production_client):
    resp = production_client.post("/v1/admin/dev-token", json={"user_id": "dev-user"})
    assert resp.status_code == 403
    assert resp.json()["detail"] == "dev_token_disabled"


def test_oversized_upload_is_rejected_while_staging(client, user_headers, settings, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_size_bytes", 512)
    resp = _upload(client, user_headers)

    assert resp.status_code == 413
    assert resp.json()["detail"] == "upload_too_large"
    assert list(settings.staging_root.iterdir()) == []
