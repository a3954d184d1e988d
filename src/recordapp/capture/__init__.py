from .args import (
    CaptureBackend,
    CaptureRequest,
    QualityProfile,
    RecordingMode,
)
from .devices import parse_audio_devices
from .supervisor import ActiveSession, RecordingSupervisor, SupervisorState

__all__ = [
    "ActiveSession",
    "CaptureBackend",
    "CaptureRequest",
    "QualityProfile",
    "RecordingMode",
    "RecordingSupervisor",
    "SupervisorState",
    "parse_audio_devices",
]
