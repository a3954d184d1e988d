from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import enum
import logging
from pathlib import Path


logger = logging.getLogger(__name__)


class RecordingMode(str, enum.Enum):
    SCREEN = "screen"
    AUDIO = "audio"
    COMBINED = "combined"


class QualityProfile(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, value: str | QualityProfile | None, kind: str = "video") -> QualityProfile:
        if isinstance(value, QualityProfile):
            return value
        text = (value or "").strip().lower()
        for profile in cls:
            if profile.value == text:
                return profile
        logger.warning("unknown %s quality %r; using medium", kind, value)
        return cls.MEDIUM


@dataclass(frozen=True)
class VideoSettings:
    codec: str
    pixel_format: str
    crf: int


@dataclass(frozen=True)
class AudioSettings:
    codec: str
    bitrate: str


VIDEO_PRESET = "veryfast"
COMBINED_FRAMERATE = 30
SCREENSHOT_QUALITY = 2

_VIDEO_TABLE: dict[QualityProfile, VideoSettings] = {
    QualityProfile.LOW: VideoSettings(codec="libx264", pixel_format="yuv420p", crf=28),
    QualityProfile.MEDIUM: VideoSettings(codec="libx264", pixel_format="yuv420p", crf=23),
    QualityProfile.HIGH: VideoSettings(codec="libx264", pixel_format="yuv420p", crf=18),
}

_AUDIO_TABLE: dict[QualityProfile, AudioSettings] = {
    QualityProfile.LOW: AudioSettings(codec="libmp3lame", bitrate="64k"),
    QualityProfile.MEDIUM: AudioSettings(codec="libmp3lame", bitrate="128k"),
    QualityProfile.HIGH: AudioSettings(codec="libmp3lame", bitrate="192k"),
}

# Combined recordings always mux AAC at a fixed bitrate; the requested audio
# quality is accepted and ignored.
COMBINED_AUDIO = AudioSettings(codec="aac", bitrate="128k")


def video_settings(quality: str | QualityProfile | None) -> VideoSettings:
    return _VIDEO_TABLE[QualityProfile.parse(quality, kind="video")]


def audio_settings(quality: str | QualityProfile | None) -> AudioSettings:
    return _AUDIO_TABLE[QualityProfile.parse(quality, kind="audio")]


@dataclass(frozen=True)
class CaptureBackend:
    """Input formats handed to the encoder for screen and audio capture."""

    screen_format: str = "gdigrab"
    screen_input: str = "desktop"
    audio_format: str = "dshow"

    def audio_input(self, device: str) -> str:
        if self.audio_format == "dshow":
            return f"audio={device}"
        return device


@dataclass(frozen=True)
class CaptureRequest:
    mode: RecordingMode
    duration_seconds: int = 0
    quality: str = "medium"
    audio_quality: str | None = None
    device: str | None = None

    def __post_init__(self) -> None:
        if int(self.duration_seconds) < 0:
            raise ValueError(f"duration must be a non-negative integer, got {self.duration_seconds}")
        if self.mode in (RecordingMode.AUDIO, RecordingMode.COMBINED) and not self.device:
            raise ValueError(f"{self.mode.value} recording requires an audio input device")

    @property
    def indefinite(self) -> bool:
        return int(self.duration_seconds) == 0


def _timestamp(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d_%H%M%S")


def output_extension(request: CaptureRequest) -> str:
    if request.mode is RecordingMode.AUDIO:
        return "mp3"
    if request.mode is RecordingMode.COMBINED and request.indefinite:
        # Matroska survives an aborted encoder; remuxed to mp4 on stop.
        return "mkv"
    return "mp4"


def recording_output_path(output_dir: Path, request: CaptureRequest, now: datetime | None = None) -> Path:
    name = f"{request.mode.value}_recording_{_timestamp(now)}.{output_extension(request)}"
    return output_dir / name


def screenshot_output_path(output_dir: Path, now: datetime | None = None) -> Path:
    return output_dir / f"screenshot_{_timestamp(now)}.png"


def delivery_path(path: Path) -> Path:
    return path.with_suffix(".mp4")


def _duration_args(duration_seconds: int) -> list[str]:
    if int(duration_seconds) > 0:
        return ["-t", str(int(duration_seconds))]
    return []


def _video_codec_args(settings: VideoSettings) -> list[str]:
    return [
        "-c:v",
        settings.codec,
        "-pix_fmt",
        settings.pixel_format,
        "-crf",
        str(settings.crf),
        "-preset",
        VIDEO_PRESET,
    ]


def build_screen_args(
    duration_seconds: int,
    quality: str | QualityProfile | None,
    out_path: Path,
    backend: CaptureBackend = CaptureBackend(),
) -> list[str]:
    return [
        "-f",
        backend.screen_format,
        "-i",
        backend.screen_input,
        *_duration_args(duration_seconds),
        *_video_codec_args(video_settings(quality)),
        "-y",
        str(out_path),
    ]


def build_audio_args(
    duration_seconds: int,
    quality: str | QualityProfile | None,
    device: str,
    out_path: Path,
    backend: CaptureBackend = CaptureBackend(),
) -> list[str]:
    if not device:
        raise ValueError("audio recording requires an audio input device")
    settings = audio_settings(quality)
    return [
        "-f",
        backend.audio_format,
        "-i",
        backend.audio_input(device),
        *_duration_args(duration_seconds),
        "-acodec",
        settings.codec,
        "-b:a",
        settings.bitrate,
        "-y",
        str(out_path),
    ]


def build_combined_args(
    duration_seconds: int,
    video_quality: str | QualityProfile | None,
    audio_quality: str | QualityProfile | None,
    device: str,
    out_path: Path,
    backend: CaptureBackend = CaptureBackend(),
) -> list[str]:
    if not device:
        raise ValueError("combined recording requires an audio input device")
    if audio_quality is not None:
        logger.debug("combined recording ignores audio quality %r", audio_quality)
    return [
        "-f",
        backend.screen_format,
        "-framerate",
        str(COMBINED_FRAMERATE),
        "-i",
        backend.screen_input,
        "-f",
        backend.audio_format,
        "-i",
        backend.audio_input(device),
        *_duration_args(duration_seconds),
        *_video_codec_args(video_settings(video_quality)),
        "-c:a",
        COMBINED_AUDIO.codec,
        "-b:a",
        COMBINED_AUDIO.bitrate,
        "-movflags",
        "+faststart",
        "-y",
        str(out_path),
    ]


def build_request_args(request: CaptureRequest, out_path: Path, backend: CaptureBackend = CaptureBackend()) -> list[str]:
    if request.mode is RecordingMode.SCREEN:
        return build_screen_args(request.duration_seconds, request.quality, out_path, backend)
    if request.mode is RecordingMode.AUDIO:
        return build_audio_args(request.duration_seconds, request.quality, request.device or "", out_path, backend)
    return build_combined_args(
        request.duration_seconds,
        request.quality,
        request.audio_quality,
        request.device or "",
        out_path,
        backend,
    )


def build_screenshot_args(out_path: Path, backend: CaptureBackend = CaptureBackend()) -> list[str]:
    return [
        "-f",
        backend.screen_format,
        "-i",
        backend.screen_input,
        "-vframes",
        "1",
        "-q:v",
        str(SCREENSHOT_QUALITY),
        "-y",
        str(out_path),
    ]


def build_list_devices_args(backend: CaptureBackend = CaptureBackend()) -> list[str]:
    return ["-hide_banner", "-list_devices", "true", "-f", backend.audio_format, "-i", "dummy"]


def build_remux_args(in_path: Path, out_path: Path) -> list[str]:
    return ["-i", str(in_path), "-c", "copy", "-y", str(out_path)]
