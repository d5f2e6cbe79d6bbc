from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Callable, Optional

from hlsingest.core.errors import SegmentError, SegmentErrorReason
from hlsingest.core.logging import get_logger

from .models import Rendition, SegmentFile, SegmentSet
from .playlist import parse_playlist
from .process import reap

MANIFEST_NAME = "playlist.m3u8"
SEGMENT_PATTERN = "segment%03d.ts"
LOG_NAME = "ffmpeg.log"
DEFAULT_SEGMENT_SECONDS = 10
DEFAULT_TRANSCODE_TIMEOUT_S = 3600.0

_SEGMENT_RE = re.compile(r"^segment(\d+)\.ts$")

ProgressCallback = Callable[[float], None]


class Segmenter:
    """Package a source file into a VOD HLS playlist with ffmpeg."""

    def __init__(
        self,
        ffmpeg_binary: str = "ffmpeg",
        *,
        timeout_s: float = DEFAULT_TRANSCODE_TIMEOUT_S,
        segment_seconds: int = DEFAULT_SEGMENT_SECONDS,
    ):
        self.ffmpeg_binary = ffmpeg_binary
        self.timeout_s = timeout_s
        self.segment_seconds = segment_seconds
        self.logger = get_logger(component="segmenter")

    def build_command(
        self,
        source_path: Path,
        work_dir: Path,
        segment_seconds: int,
        rendition: Optional[Rendition] = None,
    ) -> list[str]:
        command = [
            self.ffmpeg_binary,
            "-nostdin",
            "-y",
            "-v",
            "error",
            "-progress",
            "pipe:1",
            "-i",
            str(source_path),
        ]
        if rendition and rendition.height:
            command += ["-vf", f"scale=-2:{rendition.height}"]
        command += [
            "-codec:v",
            "libx264",
            "-codec:a",
            "aac",
            "-start_number",
            "0",
            "-hls_time",
            str(segment_seconds),
            "-hls_list_size",
            "0",
            "-hls_segment_filename",
            str(work_dir / SEGMENT_PATTERN),
            "-hls_playlist_type",
            "vod",
            "-f",
            "hls",
            str(work_dir / MANIFEST_NAME),
        ]
        return command

    async def segment(
        self,
        source_path: Path,
        work_dir: Path,
        segment_seconds: Optional[int] = None,
        *,
        rendition: Optional[Rendition] = None,
        expected_duration_s: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SegmentSet:
        """Run the transcode and return the produced segments.

        Partial output is left in ``work_dir`` on failure; the caller owns cleanup.
        The ffmpeg process never outlives this call, including on cancellation.
        """
        seconds = segment_seconds or self.segment_seconds
        if expected_duration_s is not None and expected_duration_s <= 0:
            raise SegmentError(SegmentErrorReason.empty_media, "source has zero duration")

        work_dir.mkdir(parents=True, exist_ok=True)
        command = self.build_command(source_path, work_dir, seconds, rendition)
        log_path = work_dir / LOG_NAME

        with log_path.open("wb") as log_handle:
            try:
                process = await asyncio.create_subprocess_exec(
                    *command,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=log_handle,
                )
            except OSError as exc:
                raise SegmentError(
                    SegmentErrorReason.transcode_failed,
                    "ffmpeg could not be started",
                    detail={"error": str(exc)},
                ) from exc

            self.logger.info("segmenter_started", pid=process.pid, segment_seconds=seconds)
            try:
                await asyncio.wait_for(
                    self._follow(process, expected_duration_s, on_progress),
                    timeout=self.timeout_s,
                )
            except asyncio.TimeoutError as exc:
                raise SegmentError(
                    SegmentErrorReason.timeout,
                    f"ffmpeg timed out after {self.timeout_s}s",
                ) from exc
            finally:
                await reap(process, context="ffmpeg")

        if process.returncode != 0:
            raise SegmentError(
                SegmentErrorReason.transcode_failed,
                f"ffmpeg exited with code {process.returncode}",
                detail={"stderr": _tail(log_path)},
            )

        segment_set = self._collect(work_dir, seconds)
        self.logger.info(
            "segmenter_completed",
            segments=len(segment_set.segments),
            duration_s=round(segment_set.total_duration_s, 3),
        )
        return segment_set

    async def _follow(
        self,
        process: asyncio.subprocess.Process,
        expected_duration_s: Optional[float],
        on_progress: Optional[ProgressCallback],
    ) -> None:
        assert process.stdout is not None
        last_reported = -1.0
        while True:
            line = await process.stdout.readline()
            if not line:
                break
            fraction = _progress_fraction(line.decode("utf-8", errors="ignore"), expected_duration_s)
            if fraction is not None and on_progress and fraction > last_reported:
                last_reported = fraction
                on_progress(fraction)
        await process.wait()

    def _collect(self, work_dir: Path, segment_seconds: int) -> SegmentSet:
        manifest_path = work_dir / MANIFEST_NAME
        if not manifest_path.exists():
            raise SegmentError(SegmentErrorReason.transcode_failed, "ffmpeg produced no manifest")
        try:
            playlist = parse_playlist(manifest_path.read_text(encoding="utf-8"))
        except ValueError as exc:
            raise SegmentError(SegmentErrorReason.transcode_failed, f"unreadable manifest: {exc}") from exc

        if not playlist.is_vod:
            raise SegmentError(SegmentErrorReason.transcode_failed, "manifest is not a closed VOD playlist")

        files = sorted(
            (int(match.group(1)), path)
            for path in work_dir.iterdir()
            if (match := _SEGMENT_RE.match(path.name))
        )
        if not playlist.entries and not files:
            raise SegmentError(SegmentErrorReason.empty_media, "ffmpeg produced no segments")

        listed = [entry.uri for entry in playlist.entries]
        present = [path.name for _, path in files]
        if listed != present:
            raise SegmentError(
                SegmentErrorReason.transcode_failed,
                "manifest does not match segment files",
                detail={"listed": len(listed), "present": len(present)},
            )
        if [index for index, _ in files] != list(range(len(files))):
            raise SegmentError(SegmentErrorReason.transcode_failed, "segment numbering has gaps")

        segments = tuple(
            SegmentFile(index=index, path=path, duration_s=entry.duration_s)
            for (index, path), entry in zip(files, playlist.entries)
        )
        return SegmentSet(
            manifest_path=manifest_path,
            segments=segments,
            target_duration_s=playlist.target_duration_s or segment_seconds,
        )


def _progress_fraction(line: str, expected_duration_s: Optional[float]) -> Optional[float]:
    # ffmpeg reports out_time_ms in microseconds
    if not expected_duration_s or not line.startswith("out_time_ms="):
        return None
    try:
        seconds = int(line.strip().split("=", 1)[1]) / 1_000_000.0
    except (ValueError, IndexError):
        return None
    return max(0.0, min(1.0, seconds / expected_duration_s))


def _tail(path: Path, limit: int = 2000) -> str:
    try:
        data = path.read_bytes()
    except OSError:
        return ""
    return data[-limit:].decode("utf-8", errors="ignore").strip()


__all__ = ["Segmenter", "MANIFEST_NAME", "DEFAULT_SEGMENT_SECONDS", "DEFAULT_TRANSCODE_TIMEOUT_S"]
