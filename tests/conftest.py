import asyncio
import os
import stat
import sys
import textwrap
from dataclasses import dataclass, field
from pathlib import Path

import jwt
import pytest
import structlog
from fastapi.testclient import TestClient

from hlsingest.core.config import get_settings
from hlsingest.core.db import Base, create_all, create_engine
from hlsingest.core.storage import LocalStorage
from hlsingest.main import create_app


FAKE_FFPROBE = textwrap.dedent(
    """
    import json, os, sys, time

    mode = os.environ.get("FAKE_PROBE_MODE", "ok")
    if mode == "fail":
        sys.stderr.write("Invalid data found when processing input\\n")
        sys.exit(1)
    if mode == "hang":
        time.sleep(60)
    if mode == "garbage":
        print("not json")
        sys.exit(0)
    if mode == "nostreams":
        print(json.dumps({"streams": [], "format": {"format_name": "mov,mp4"}}))
        sys.exit(0)

    duration = os.environ.get("FAKE_DURATION", "35.0")
    print(json.dumps({
        "streams": [
            {"index": 0, "codec_type": "video", "codec_name": "h264", "width": 1280, "height": int(os.environ.get("FAKE_HEIGHT", "720"))},
            {"index": 1, "codec_type": "audio", "codec_name": "aac", "channels": 2},
        ],
        "format": {"format_name": "mov,mp4,m4a,3gp,3g2,mj2", "duration": duration},
    }))
    """
)

FAKE_FFMPEG = textwrap.dedent(
    """
    import math, os, sys, time

    args = sys.argv[1:]
    hls_time = float(args[args.index("-hls_time") + 1])
    pattern = args[args.index("-hls_segment_filename") + 1]
    manifest = args[-1]
    duration = float(os.environ.get("FAKE_DURATION", "35.0"))
    fail_after = os.environ.get("FAKE_FAIL_AFTER")
    mode = os.environ.get("FAKE_FFMPEG_MODE", "ok")

    if mode == "hang":
        open(os.path.join(os.path.dirname(manifest), "ffmpeg.pid"), "w").write(str(os.getpid()))
        time.sleep(60)

    count = int(math.ceil(duration / hls_time)) if duration > 0 else 0
    durations = [min(hls_time, duration - i * hls_time) for i in range(count)]
    for i, seg in enumerate(durations):
        if fail_after is not None and i >= int(fail_after):
            sys.stderr.write("Conversion failed!\\n")
            sys.exit(1)
        with open(pattern % i, "wb") as handle:
            handle.write(b"\\x47" * 188 * (i + 1))
        print("out_time_ms=%d" % int(sum(durations[: i + 1]) * 1000000), flush=True)
        print("progress=continue", flush=True)

    if mode == "orphan":
        with open(pattern % count, "wb") as handle:
            handle.write(b"\\x47" * 188)

    lines = ["#EXTM3U", "#EXT-X-VERSION:3", "#EXT-X-TARGETDURATION:%d" % math.ceil(hls_time), "#EXT-X-MEDIA-SEQUENCE:0"]
    if mode != "live":
        lines.append("#EXT-X-PLAYLIST-TYPE:VOD")
    for i, seg in enumerate(durations):
        lines.append("#EXTINF:%.6f," % seg)
        lines.append(os.path.basename(pattern % i))
    if mode != "live":
        lines.append("#EXT-X-ENDLIST")
    with open(manifest, "w") as handle:
        handle.write("\\n".join(lines) + "\\n")
    print("progress=end", flush=True)
    """
)


@dataclass
class FakeTools:
    ffmpeg: Path
    ffprobe: Path


def _write_script(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture()
def fake_tools(tmp_path) -> FakeTools:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    return FakeTools(
        ffmpeg=_write_script(bin_dir / "ffmpeg", FAKE_FFMPEG),
        ffprobe=_write_script(bin_dir / "ffprobe", FAKE_FFPROBE),
    )


@pytest.fixture(autouse=True)
def configure_environment(monkeypatch, tmp_path, fake_tools):
    for key in list(os.environ.keys()):
        if key.startswith("HLSINGEST_") or key.startswith("FAKE_"):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setenv("HLSINGEST_ENV", "test")
    monkeypatch.setenv("HLSINGEST_LOG_LEVEL", "debug")
    monkeypatch.setenv("HLSINGEST_DB_URL", f"sqlite+aiosqlite:///{tmp_path / 'hlsingest_test.db'}")
    monkeypatch.setenv("HLSINGEST_WORK_ROOT", str(tmp_path / "work"))
    monkeypatch.setenv("HLSINGEST_STORAGE_BACKEND", "local")
    monkeypatch.setenv("HLSINGEST_LOCAL_STORAGE_BASE_PATH", str(tmp_path / "media"))
    monkeypatch.setenv("HLSINGEST_PUBLIC_BASE_URL", "https://cdn.example.test/media")
    monkeypatch.setenv("HLSINGEST_FFMPEG_BINARY", str(fake_tools.ffmpeg))
    monkeypatch.setenv("HLSINGEST_FFPROBE_BINARY", str(fake_tools.ffprobe))
    monkeypatch.setenv("HLSINGEST_JWT_SECRET", "test-secret")
    monkeypatch.setenv("HLSINGEST_JWT_ISSUER", "hlsingest-test")
    monkeypatch.setenv("HLSINGEST_JWT_AUDIENCE", "hlsingest")

    get_settings.cache_clear()
    settings = get_settings()
    engine = create_engine(settings)

    asyncio.run(create_all(engine))

    yield settings

    async def _teardown() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

    asyncio.run(_teardown())
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_structlog():
    # configure_logging binds the current sys.stderr, which may be a capture
    # stream closed after the test; keep that configuration from leaking.
    yield
    structlog.reset_defaults()


@pytest.fixture()
def settings(configure_environment):
    return configure_environment


@pytest.fixture()
def client(configure_environment):
    app = create_app()
    with TestClient(app) as client:
        yield client


def build_token(user_id: str | None, *, scopes: list[str] | None = None) -> str:
    payload: dict = {"iss": "hlsingest-test", "aud": "hlsingest"}
    if user_id:
        payload["sub"] = user_id
    if scopes:
        payload["scopes"] = scopes
    return jwt.encode(payload, "test-secret", algorithm="HS256")


@pytest.fixture()
def user_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('user-test')}"}


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('user-admin', scopes=['admin'])}"}


@pytest.fixture()
def staged_upload(tmp_path):
    """A staged source video and thumbnail, as the HTTP layer would leave them."""
    staging = tmp_path / "staging"
    staging.mkdir()
    source = staging / "source.mp4"
    source.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 1024)
    thumbnail = staging / "thumbnail.jpg"
    thumbnail.write_bytes(b"\xff\xd8\xff\xe0" + b"\x00" * 64)
    return source, thumbnail


@pytest.fixture()
def local_storage(tmp_path) -> LocalStorage:
    return LocalStorage(tmp_path / "store", public_base_url="https://cdn.example.test/store")


@dataclass
class RecordingSink:
    """Persistence sink double that records every commit."""

    fail_with: Exception | None = None
    commits: list = field(default_factory=list)

    async def commit(self, asset) -> str:
        self.commits.append(asset)
        if self.fail_with is not None:
            raise self.fail_with
        return f"video-{len(self.commits)}"


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()
