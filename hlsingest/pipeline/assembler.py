from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from .models import MediaMetadata, QualityVariant, VideoAsset, format_duration

DEFAULT_RESOLUTION_LABEL = "360p"


def assemble(
    title: str,
    description: str,
    owner_id: str,
    metadata: MediaMetadata,
    thumbnail_url: str,
    manifest_url: str,
    *,
    variants: Optional[Sequence[QualityVariant]] = None,
    default_label: str = DEFAULT_RESOLUTION_LABEL,
    tags: Sequence[str] = (),
    created_at: Optional[datetime] = None,
) -> VideoAsset:
    """Build the record handed to the persistence sink. Pure; performs no I/O.

    Without explicit ``variants`` a single variant pointing at ``manifest_url`` is
    labelled from the probed source height.
    Tags are trimmed and de-duplicated, keeping first-seen order.

    Raises:
        ValueError: A required field is missing or the variants are inconsistent.
    """
    for name, value in (("title", title), ("owner_id", owner_id), ("thumbnail_url", thumbnail_url), ("manifest_url", manifest_url)):
        if not value or not str(value).strip():
            raise ValueError(f"{name} is required")
    if metadata is None:
        raise ValueError("metadata is required")

    if variants is None:
        label = f"{metadata.height}p" if metadata.height else default_label
        variants = [QualityVariant(resolution_label=label, manifest_url=manifest_url)]

    return VideoAsset(
        title=title.strip(),
        description=(description or "").strip(),
        thumbnail_url=thumbnail_url,
        manifest_url=manifest_url,
        duration_string=format_duration(metadata.duration_s),
        quality_variants=tuple(variants),
        owner_id=owner_id,
        created_at=created_at or datetime.now(timezone.utc),
        tags=normalize_tags(tags),
    )


def normalize_tags(tags: Sequence[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for tag in tags:
        cleaned = tag.strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return tuple(seen)


__all__ = ["assemble", "normalize_tags", "DEFAULT_RESOLUTION_LABEL"]
