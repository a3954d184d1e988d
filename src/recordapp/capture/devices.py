from __future__ import annotations

import re


# e.g. [dshow @ 000002162621c1c0]  "Microphone Array (Realtek(R) Audio)" (audio)
_AUDIO_DEVICE_RE = re.compile(r'\]\s+"(?P<name>.+)"\s+\(audio\)\s*$')


def parse_audio_devices(diagnostics: str) -> list[str]:
    devices: list[str] = []
    for line in diagnostics.splitlines():
        if "(audio)" not in line:
            continue
        m = _AUDIO_DEVICE_RE.search(line)
        if m is None:
            continue
        name = m.group("name").strip()
        if name:
            devices.append(name)
    return devices
