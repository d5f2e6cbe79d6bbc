from __future__ import annotations

import subprocess

from .config import Settings


def binary_available(binary: str) -> bool:
    try:
        subprocess.run([binary, "-version"], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=True, timeout=10)
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired):
        return False
    return True


def check_toolchain(settings: Settings) -> dict[str, bool]:
    """Report whether the configured ffmpeg and ffprobe binaries run."""
    return {
        "ffmpeg": binary_available(settings.ffmpeg_binary),
        "ffprobe": binary_available(settings.ffprobe_binary),
    }


__all__ = ["binary_available", "check_toolchain"]
