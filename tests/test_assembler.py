from __future__ import annotations

from datetime import datetime, timezone

import pytest

from hlsingest.pipeline.assembler import assemble
from hlsingest.pipeline.models import MediaMetadata, QualityVariant, format_duration

MANIFEST = "https://cdn.example.test/videos/j/720p/playlist.m3u8"
THUMB = "https://cdn.example.test/videos/j/thumbnail.jpg"


@pytest.mark.parametrize(
    "seconds, expected",
    [
        (0, "00:00:00"),
        (35.0, "00:00:35"),
        (59.999, "00:00:59"),
        (3600, "01:00:00"),
        (3725.4, "01:02:05"),
        (360000, "100:00:00"),
    ],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_format_duration_rejects_negative():
    with pytest.raises(ValueError):
        format_duration(-0.5)


def test_single_variant_is_labelled_from_source_height():
    created = datetime(2026, 10, 19, tzinfo=timezone.utc)
    asset = assemble(
        " Harbour ",
        "Boats",
        "user-1",
        MediaMetadata(duration_s=35.2, height=720),
        THUMB,
        MANIFEST,
        created_at=created,
    )

    assert asset.title == "Harbour"
    assert asset.duration_string == "00:00:35"
    assert asset.quality_variants == (QualityVariant("720p", MANIFEST),)
    assert asset.created_at == created
    assert asset.asset_id is None


def test_unknown_height_uses_default_label():
    asset = assemble("t", "d", "u", MediaMetadata(duration_s=1.0), THUMB, MANIFEST)
    assert [variant.resolution_label for variant in asset.quality_variants] == ["360p"]


def test_explicit_variants_are_kept_in_order():
    variants = [QualityVariant("720p", MANIFEST), QualityVariant("360p", MANIFEST.replace("720p", "360p"))]
    asset = assemble("t", "d", "u", MediaMetadata(duration_s=1.0), THUMB, MANIFEST, variants=variants)
    assert [variant.resolution_label for variant in asset.quality_variants] == ["720p", "360p"]


def test_duplicate_labels_are_rejected():
    variants = [QualityVariant("720p", MANIFEST), QualityVariant("720p", MANIFEST)]
    with pytest.raises(ValueError, match="duplicate"):
        assemble("t", "d", "u", MediaMetadata(duration_s=1.0), THUMB, MANIFEST, variants=variants)


def test_empty_variants_are_rejected():
    with pytest.raises(ValueError):
        assemble("t", "d", "u", MediaMetadata(duration_s=1.0), THUMB, MANIFEST, variants=[])


@pytest.mark.parametrize(
    "title, owner, thumbnail, manifest, missing",
    [
        ("", "u", THUMB, MANIFEST, "title"),
        ("t", " ", THUMB, MANIFEST, "owner_id"),
        ("t", "u", "", MANIFEST, "thumbnail_url"),
        ("t", "u", THUMB, "", "manifest_url"),
    ],
)
def test_required_fields(title, owner, thumbnail, manifest, missing):
    with pytest.raises(ValueError, match=missing):
        assemble(title, "d", owner, MediaMetadata(duration_s=1.0), thumbnail, manifest)


def test_tags_are_trimmed_and_deduplicated():
    asset = assemble(
        "t", "d", "u", MediaMetadata(duration_s=1.0), THUMB, MANIFEST, tags=["boats", " harbour ", "", "boats"]
    )
    assert asset.tags == ("boats", "harbour")
