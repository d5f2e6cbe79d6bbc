"""Minimal reader/rewriter for HLS media playlists (m3u8)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True, slots=True)
class PlaylistEntry:
    duration_s: float
    uri: str


@dataclass(frozen=True, slots=True)
class MediaPlaylist:
    entries: tuple[PlaylistEntry, ...]
    target_duration_s: Optional[int]
    playlist_type: Optional[str]
    ended: bool

    @property
    def is_vod(self) -> bool:
        return self.playlist_type == "VOD" and self.ended


def parse_playlist(text: str) -> MediaPlaylist:
    lines = [line.strip() for line in text.splitlines()]
    if not lines or lines[0] != "#EXTM3U":
        raise ValueError("not an m3u8 playlist")

    entries: list[PlaylistEntry] = []
    target_duration: Optional[int] = None
    playlist_type: Optional[str] = None
    ended = False
    pending: Optional[float] = None

    for line in lines[1:]:
        if not line:
            continue
        if line.startswith("#EXTINF:"):
            pending = float(line[len("#EXTINF:") :].split(",", 1)[0])
        elif line.startswith("#EXT-X-TARGETDURATION:"):
            target_duration = int(line.split(":", 1)[1])
        elif line.startswith("#EXT-X-PLAYLIST-TYPE:"):
            playlist_type = line.split(":", 1)[1].upper()
        elif line == "#EXT-X-ENDLIST":
            ended = True
        elif not line.startswith("#"):
            if pending is None:
                raise ValueError(f"segment without #EXTINF: {line}")
            entries.append(PlaylistEntry(duration_s=pending, uri=line))
            pending = None

    return MediaPlaylist(
        entries=tuple(entries),
        target_duration_s=target_duration,
        playlist_type=playlist_type,
        ended=ended,
    )


def rewrite_uris(text: str, mapping: Mapping[str, str]) -> str:
    """Replace segment URIs found in ``mapping``; tags and unknown URIs pass through."""
    output = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#") and stripped in mapping:
            output.append(mapping[stripped])
        else:
            output.append(line)
    return "\n".join(output) + "\n"


__all__ = ["PlaylistEntry", "MediaPlaylist", "parse_playlist", "rewrite_uris"]
