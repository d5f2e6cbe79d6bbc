from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from hlsingest.core.errors import ProbeError
from hlsingest.core.logging import get_logger

from .models import MediaMetadata
from .process import reap

DEFAULT_PROBE_TIMEOUT_S = 30.0


class MediaProber:
    """Read-only container metadata extraction backed by ffprobe."""

    def __init__(self, ffprobe_binary: str = "ffprobe", *, timeout_s: float = DEFAULT_PROBE_TIMEOUT_S):
        self.ffprobe_binary = ffprobe_binary
        self.timeout_s = timeout_s
        self.logger = get_logger(component="media_prober")

    def build_command(self, source_path: Path) -> list[str]:
        return [
            self.ffprobe_binary,
            "-v",
            "error",
            "-show_format",
            "-show_streams",
            "-print_format",
            "json",
            str(source_path),
        ]

    async def probe(self, source_path: Path) -> MediaMetadata:
        """Probe ``source_path`` and return its metadata.

        Args:
            source_path: A local, readable media file.

        Returns:
            The parsed metadata.

        Raises:
            ProbeError: The file is missing, empty or unreadable, ffprobe failed,
                timed out, or reported no streams.
        """
        try:
            size_bytes = source_path.stat().st_size
        except OSError as exc:
            raise ProbeError(f"source not readable: {source_path.name}", detail={"error": str(exc)}) from exc
        if not source_path.is_file():
            raise ProbeError(f"source is not a regular file: {source_path.name}")
        if size_bytes == 0:
            raise ProbeError(f"source is empty: {source_path.name}")

        raw = await self._run(source_path)
        metadata = parse_probe_output(raw)
        self.logger.info(
            "probe_completed",
            source=source_path.name,
            duration_s=metadata.duration_s,
            streams=metadata.stream_count,
        )
        return metadata

    async def _run(self, source_path: Path) -> Dict[str, Any]:
        command = self.build_command(source_path)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ProbeError("ffprobe could not be started", detail={"error": str(exc)}) from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout_s)
        except asyncio.TimeoutError as exc:
            raise ProbeError(f"ffprobe timed out after {self.timeout_s}s") from exc
        finally:
            await reap(process, context="ffprobe")

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="ignore").strip()
            raise ProbeError(
                f"ffprobe exited with code {process.returncode}",
                detail={"stderr": message[-2000:]},
            )
        try:
            payload = json.loads(stdout.decode("utf-8", errors="ignore"))
        except json.JSONDecodeError as exc:
            raise ProbeError("ffprobe returned malformed JSON") from exc
        if not isinstance(payload, dict):
            raise ProbeError("ffprobe returned malformed JSON")
        return payload


def parse_probe_output(raw: Dict[str, Any]) -> MediaMetadata:
    """Normalise ffprobe JSON into :class:`MediaMetadata`.

    Args:
        raw: The decoded ``-show_format -show_streams`` output.

    Returns:
        The metadata. Duration falls back to the longest stream duration and then
        to ``0.0`` when ffprobe cannot report one.

    Raises:
        ProbeError: The output lists no streams.
    """
    streams = [stream for stream in raw.get("streams") or [] if isinstance(stream, dict)]
    if not streams:
        raise ProbeError("no media streams found")

    format_info = raw.get("format") or {}
    duration_s = _parse_duration(format_info.get("duration"))
    if duration_s is None:
        duration_s = max((_parse_duration(stream.get("duration")) or 0.0 for stream in streams), default=0.0)

    video = _first_of_type(streams, "video")
    audio = _first_of_type(streams, "audio")

    return MediaMetadata(
        duration_s=duration_s,
        format_name=format_info.get("format_name") or format_info.get("format_long_name") or "unknown",
        stream_count=len(streams),
        width=_int_or_none(video.get("width")) if video else None,
        height=_int_or_none(video.get("height")) if video else None,
        video_codec=video.get("codec_name") if video else None,
        audio_codec=audio.get("codec_name") if audio else None,
    )


def _first_of_type(streams: Iterable[Dict[str, Any]], codec_type: str) -> Optional[Dict[str, Any]]:
    for stream in streams:
        value = stream.get("codec_type")
        if isinstance(value, str) and value.lower() == codec_type:
            return stream
    return None


def _parse_duration(raw_value: Any) -> Optional[float]:
    """Parse a duration value from ffprobe.

    Args:
        raw_value: The raw duration value.

    Returns:
        The duration in seconds, or None if it is unavailable or invalid.
    """
    if raw_value in (None, "N/A", ""):
        return None
    try:
        value = float(raw_value)
    except (TypeError, ValueError):
        return None
    if value != value or value < 0:
        return None
    return value


def _int_or_none(value: Any) -> Optional[int]:
    if value in (None, "N/A", ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


__all__ = ["MediaProber", "parse_probe_output", "DEFAULT_PROBE_TIMEOUT_S"]
