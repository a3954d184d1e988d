from __future__ import annotations

from pathlib import Path
import subprocess
import threading
import time

import pytest

from recordapp.capture import supervisor as supervisor_mod
from recordapp.capture.args import CaptureRequest, RecordingMode
from recordapp.capture.supervisor import RecordingSupervisor, SupervisorState
from recordapp.errors import AlreadyRecordingError, CaptureFailedError, LaunchError


def _value_after(args: list[str], flag: str) -> str:
    return args[args.index(flag) + 1]


@pytest.mark.parametrize("quality", ["low", "medium", "high", "garbage"])
def test_fixed_duration_start_blocks_until_exit(tmp_path: Path, install_encoder, quality: str) -> None:
    encoder = install_encoder(exit_after=0.05)
    sup = RecordingSupervisor(tmp_path)

    out = sup.start(CaptureRequest(mode=RecordingMode.SCREEN, duration_seconds=3, quality=quality))

    assert out.suffix == ".mp4"
    assert out.parent == tmp_path
    assert not sup.is_recording
    assert sup.state is SupervisorState.IDLE
    assert len(encoder.launched) == 1
    cmd = encoder.launched[0].args
    assert cmd[0] == "ffmpeg"
    assert _value_after(cmd, "-t") == "3"
    expected_crf = {"low": "28", "medium": "23", "high": "18", "garbage": "23"}[quality]
    assert _value_after(cmd, "-crf") == expected_crf


def test_fixed_duration_audio_returns_mp3(tmp_path: Path, install_encoder) -> None:
    install_encoder(exit_after=0.02)
    sup = RecordingSupervisor(tmp_path)
    out = sup.start(CaptureRequest(mode=RecordingMode.AUDIO, duration_seconds=1, quality="high", device="mic"))
    assert out.suffix == ".mp3"


def test_start_while_running_raises_and_keeps_session(tmp_path: Path, install_encoder) -> None:
    encoder = install_encoder()
    sup = RecordingSupervisor(tmp_path)

    first = sup.start(CaptureRequest(mode=RecordingMode.SCREEN, duration_seconds=0))
    assert sup.state is SupervisorState.RUNNING

    with pytest.raises(AlreadyRecordingError):
        sup.start(CaptureRequest(mode=RecordingMode.SCREEN, duration_seconds=0))

    session = sup.active_session
    assert session is not None
    assert session.output_path == first
    assert len(encoder.launched) == 1
    assert not encoder.launched[0].stdin.written

    assert sup.stop() == first


def test_concurrent_starts_resolve_to_one_winner(tmp_path: Path, install_encoder) -> None:
    encoder = install_encoder()
    sup = RecordingSupervisor(tmp_path)
    barrier = threading.Barrier(2)
    outcomes: list[str] = []

    def _attempt() -> None:
        barrier.wait()
        try:
            sup.start(CaptureRequest(mode=RecordingMode.SCREEN, duration_seconds=0))
            outcomes.append("started")
        except AlreadyRecordingError:
            outcomes.append("rejected")

    threads = [threading.Thread(target=_attempt) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=2)

    assert sorted(outcomes) == ["rejected", "started"]
    assert len(encoder.launched) == 1
    sup.stop()


def test_stop_when_idle_is_noop(tmp_path: Path, install_encoder) -> None:
    encoder = install_encoder()
    sup = RecordingSupervisor(tmp_path)

    assert sup.stop() is None
    assert sup.stop() is None
    assert encoder.launched == []
    assert encoder.runs == []


def test_stop_indefinite_combined_converts_once(tmp_path: Path, install_encoder) -> None:
    encoder = install_encoder()
    sup = RecordingSupervisor(tmp_path)

    provisional = sup.start(
        CaptureRequest(mode=RecordingMode.COMBINED, duration_seconds=0, quality="high", device="mic")
    )
    assert provisional.suffix == ".mkv"
    assert sup.is_recording

    final = sup.stop()

    assert final == provisional.with_suffix(".mp4")
    assert encoder.launched[0].stdin.written == ["q\n"]
    assert not encoder.launched[0].killed
    assert encoder.runs == [["ffmpeg", "-i", str(provisional), "-c", "copy", "-y", str(final)]]
    assert not sup.is_recording
    assert sup.state is SupervisorState.IDLE


def test_stop_indefinite_screen_skips_conversion(tmp_path: Path, install_encoder) -> None:
    encoder = install_encoder()
    sup = RecordingSupervisor(tmp_path)

    out = sup.start(CaptureRequest(mode=RecordingMode.SCREEN, duration_seconds=0))
    assert sup.stop() == out
    assert encoder.runs == []


def test_stop_force_kills_after_grace_period(tmp_path: Path, install_encoder) -> None:
    encoder = install_encoder(quit_on_q=False)
    sup = RecordingSupervisor(tmp_path, stop_grace_seconds=0.2, kill_timeout_seconds=1.0)

    sup.start(CaptureRequest(mode=RecordingMode.SCREEN, duration_seconds=0))
    started = time.monotonic()
    sup.stop()
    elapsed = time.monotonic() - started

    assert encoder.launched[0].killed
    assert 0.2 <= elapsed < 1.5
    assert not sup.is_recording


def test_stop_kills_when_stdin_is_gone(tmp_path: Path, install_encoder) -> None:
    encoder = install_encoder()
    sup = RecordingSupervisor(tmp_path, stop_grace_seconds=5.0)

    sup.start(CaptureRequest(mode=RecordingMode.SCREEN, duration_seconds=0))
    encoder.launched[0].stdin.close()
    sup.stop()

    assert encoder.launched[0].killed


def test_stop_clears_session_when_conversion_fails(tmp_path: Path, install_encoder) -> None:
    encoder = install_encoder()
    encoder.run_result = (1, "moov atom not found")
    sup = RecordingSupervisor(tmp_path)

    sup.start(CaptureRequest(mode=RecordingMode.COMBINED, duration_seconds=0, device="mic"))
    with pytest.raises(CaptureFailedError) as excinfo:
        sup.stop()

    assert excinfo.value.returncode == 1
    assert "moov atom" in excinfo.value.diagnostics
    assert not sup.is_recording
    assert sup.state is SupervisorState.IDLE


def test_launch_failure_leaves_supervisor_idle(tmp_path: Path, monkeypatch, install_encoder) -> None:
    encoder = install_encoder()

    def _missing(cmd: list[str]) -> object:
        raise FileNotFoundError(2, "No such file or directory", cmd[0])

    monkeypatch.setattr(supervisor_mod, "_launch_encoder", _missing)
    sup = RecordingSupervisor(tmp_path)

    with pytest.raises(LaunchError):
        sup.start(CaptureRequest(mode=RecordingMode.SCREEN, duration_seconds=0))
    assert not sup.is_recording
    assert sup.state is SupervisorState.IDLE
    assert isinstance(sup.last_error, LaunchError)

    monkeypatch.setattr(supervisor_mod, "_launch_encoder", encoder.launch)
    sup.start(CaptureRequest(mode=RecordingMode.SCREEN, duration_seconds=0))
    assert sup.is_recording
    assert sup.last_error is None
    sup.stop()


def test_external_exit_clears_session(tmp_path: Path, install_encoder) -> None:
    encoder = install_encoder(stderr_lines=("device lost\n",))
    sup = RecordingSupervisor(tmp_path)

    sup.start(CaptureRequest(mode=RecordingMode.COMBINED, duration_seconds=0, device="mic"))
    encoder.launched[0].finish(1)

    assert sup.wait_for_exit(timeout=2.0)
    assert not sup.is_recording
    assert sup.stop() is None
    assert encoder.runs == []


def test_screenshot_success_and_failure(tmp_path: Path, install_encoder) -> None:
    encoder = install_encoder()
    sup = RecordingSupervisor(tmp_path)

    out = sup.screenshot()
    assert out.suffix == ".png"
    assert out.name.startswith("screenshot_")
    assert encoder.runs[0][-1] == str(out)

    encoder.run_result = (1, "Could not find video device")
    with pytest.raises(CaptureFailedError) as excinfo:
        sup.screenshot()
    assert "Could not find video device" in str(excinfo.value)


def test_list_audio_devices_parses_stderr(tmp_path: Path, install_encoder) -> None:
    encoder = install_encoder()
    encoder.run_result = (
        1,
        '[dshow @ 0] "Webcam" (video)\n'
        '[dshow @ 0] "Microphone (USB)" (audio)\n'
        '[dshow @ 0] "Line In" (audio)\n'
        "dummy: Immediate exit requested\n",
    )
    sup = RecordingSupervisor(tmp_path)

    assert sup.list_audio_devices() == ["Microphone (USB)", "Line In"]
    assert encoder.runs[0] == ["ffmpeg", "-hide_banner", "-list_devices", "true", "-f", "dshow", "-i", "dummy"]


def test_list_audio_devices_without_encoder_raises_launch_error(tmp_path: Path, monkeypatch) -> None:
    def _missing(cmd: list[str]) -> subprocess.CompletedProcess:
        raise FileNotFoundError(2, "No such file or directory", cmd[0])

    monkeypatch.setattr(supervisor_mod, "_run_encoder", _missing)
    sup = RecordingSupervisor(tmp_path, encoder_path="ffmpeg-missing")

    with pytest.raises(LaunchError):
        sup.list_audio_devices()
