"""Typed failures surfaced by the ingest pipeline.

Each error carries a stable ``kind`` for diagnostics and the HTTP status class the
ingress layer should answer with. The pipeline itself never inspects ``status_code``.
"""

from __future__ import annotations

import enum
from typing import Any, Optional


class IngestError(Exception):
    kind = "ingest_error"
    status_code = 500

    def __init__(self, message: str, *, detail: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class ValidationError(IngestError):
    """Missing file or metadata on the request."""

    kind = "validation_error"
    status_code = 400


class ProbeError(IngestError):
    """The source could not be probed: unreadable, empty, or ffprobe failed or timed out."""

    kind = "probe_error"


class SegmentErrorReason(str, enum.Enum):
    empty_media = "empty_media"
    transcode_failed = "transcode_failed"
    timeout = "timeout"


class SegmentError(IngestError):
    kind = "segment_error"

    def __init__(
        self,
        reason: SegmentErrorReason,
        message: str,
        *,
        detail: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, detail={"reason": reason.value, **(detail or {})})
        self.reason = reason


class UploadError(IngestError):
    """At least one artifact transfer failed; compensating deletes were attempted."""

    kind = "upload_error"

    def __init__(
        self,
        message: str,
        *,
        failed_keys: tuple[str, ...] = (),
        detail: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, detail={"failed_keys": list(failed_keys), **(detail or {})})
        self.failed_keys = failed_keys


class PersistenceError(IngestError):
    """The persistence sink rejected the final commit."""

    kind = "persistence_error"


class ConfigurationError(IngestError):
    """The configured renditions cannot produce distinct outputs for this job."""

    kind = "configuration_error"


__all__ = [
    "IngestError",
    "ConfigurationError",
    "ValidationError",
    "ProbeError",
    "SegmentErrorReason",
    "SegmentError",
    "UploadError",
    "PersistenceError",
]
