from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass
class EncoderConfig:
    path: str = "ffmpeg"
    screen_format: str = "gdigrab"
    screen_input: str = "desktop"
    audio_format: str = "dshow"
    stop_grace_seconds: float = 5.0
    kill_timeout_seconds: float = 5.0


@dataclass
class RemoteConfig:
    base_url: str = "http://localhost:5000"
    command_path: str = "/api/recording/command"
    status_path: str = "/api/recording/status"
    upload_path: str = "/api/recording/upload"
    poll_interval_seconds: float = 1.0
    timeout_seconds: float = 10.0
    audio_device: str | None = None
    upload_after_capture: bool = False


@dataclass
class AppConfig:
    output_dir: Path
    encoder: EncoderConfig = field(default_factory=EncoderConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    log_level: str = "INFO"
    log_file: Path | None = None


def _expand_path(value: str | None, base: Path) -> Path | None:
    if value in (None, ""):
        return None
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (base / path).resolve()
    return path


def _non_negative(value: Any, key: str) -> float:
    number = float(value)
    if number < 0:
        raise ValueError(f"{key} must be >= 0, got {number}")
    return number


def _optional_str(value: Any) -> str | None:
    if value in (None, ""):
        return None
    return str(value)


def default_config(output_dir: Path | None = None) -> AppConfig:
    app = AppConfig(output_dir=output_dir or (Path.cwd() / "recordings"))
    ensure_dirs(app)
    return app


def load_config(path: str | Path) -> AppConfig:
    try:
        import yaml  # type: ignore
    except Exception as exc:
        raise RuntimeError("PyYAML is required for config loading. Install with: pip install PyYAML") from exc

    cfg_path = Path(path).expanduser().resolve()
    with cfg_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    base = cfg_path.parent
    encoder_raw = raw.get("encoder", {}) or {}
    remote_raw = raw.get("remote", {}) or {}

    encoder = EncoderConfig(
        path=str(encoder_raw.get("path", "ffmpeg")),
        screen_format=str(encoder_raw.get("screen_format", "gdigrab")),
        screen_input=str(encoder_raw.get("screen_input", "desktop")),
        audio_format=str(encoder_raw.get("audio_format", "dshow")),
        stop_grace_seconds=_non_negative(encoder_raw.get("stop_grace_seconds", 5.0), "encoder.stop_grace_seconds"),
        kill_timeout_seconds=_non_negative(
            encoder_raw.get("kill_timeout_seconds", 5.0), "encoder.kill_timeout_seconds"
        ),
    )

    base_url = str(remote_raw.get("base_url", "http://localhost:5000")).strip()
    if not base_url:
        raise ValueError("remote.base_url must not be empty")

    remote = RemoteConfig(
        base_url=base_url,
        command_path=str(remote_raw.get("command_path", "/api/recording/command")),
        status_path=str(remote_raw.get("status_path", "/api/recording/status")),
        upload_path=str(remote_raw.get("upload_path", "/api/recording/upload")),
        poll_interval_seconds=_non_negative(
            remote_raw.get("poll_interval_seconds", 1.0), "remote.poll_interval_seconds"
        ),
        timeout_seconds=_non_negative(remote_raw.get("timeout_seconds", 10.0), "remote.timeout_seconds"),
        audio_device=_optional_str(remote_raw.get("audio_device")),
        upload_after_capture=bool(remote_raw.get("upload_after_capture", False)),
    )

    app = AppConfig(
        output_dir=_expand_path(raw.get("output_dir"), base) or (base / "recordings"),
        encoder=encoder,
        remote=remote,
        log_level=str(raw.get("log_level", "INFO")),
        log_file=_expand_path(raw.get("log_file"), base),
    )

    ensure_dirs(app)
    return app


def ensure_dirs(config: AppConfig) -> None:
    config.output_dir.mkdir(parents=True, exist_ok=True)
    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
