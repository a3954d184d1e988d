from __future__ import annotations

import logging
import shutil
import subprocess

from recordapp.errors import LaunchError


logger = logging.getLogger(__name__)


def require_encoder(path: str = "ffmpeg") -> str:
    resolved = shutil.which(path)
    if resolved is None:
        raise LaunchError(f"{path} not found in PATH; cannot record")
    return resolved


def encoder_available(path: str = "ffmpeg", timeout_seconds: float = 5.0) -> bool:
    try:
        proc = subprocess.run(
            [path, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout_seconds,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.warning("encoder check failed for %s: %s", path, exc)
        return False
    return proc.returncode == 0
