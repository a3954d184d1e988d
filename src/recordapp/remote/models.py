from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import json
from typing import Any

from recordapp.errors import DecodeError


@dataclass(frozen=True)
class CommandEnvelope:
    action: str = ""
    type: str = ""
    duration: int = 0
    quality: str = "medium"

    @property
    def is_empty(self) -> bool:
        return not self.action


@dataclass(frozen=True)
class StatusReport:
    status: str
    current_file: str = ""
    start_time: datetime | None = None
    duration: str = "00:00:00"

    def to_json_dict(self) -> dict[str, object]:
        start = self.start_time or datetime.now()
        return {
            "status": self.status,
            "currentFile": self.current_file,
            "startTime": start.isoformat(),
            "duration": self.duration,
        }


def _field(raw: dict[str, Any], name: str) -> Any:
    if name in raw:
        return raw[name]
    for key, value in raw.items():
        if isinstance(key, str) and key.lower() == name:
            return value
    return None


def _as_str(value: Any, name: str, default: str) -> str:
    if value is None:
        return default
    if not isinstance(value, str):
        raise DecodeError(f"command field {name!r} must be a string, got {type(value).__name__}")
    return value


def _as_int(value: Any, name: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"command field {name!r} must be an integer, got {value!r}")
    return value


def decode_command(payload: str | bytes) -> CommandEnvelope:
    try:
        raw = json.loads(payload)
    except ValueError as exc:
        raise DecodeError(f"malformed command payload: {exc}") from exc

    if raw is None:
        return CommandEnvelope()
    if not isinstance(raw, dict):
        raise DecodeError(f"command payload must be a JSON object, got {type(raw).__name__}")

    return CommandEnvelope(
        action=_as_str(_field(raw, "action"), "action", "").strip(),
        type=_as_str(_field(raw, "type"), "type", "").strip(),
        duration=_as_int(_field(raw, "duration"), "duration"),
        quality=_as_str(_field(raw, "quality"), "quality", "medium"),
    )
