from __future__ import annotations

from collections import deque
import contextlib
from dataclasses import dataclass, field
from datetime import datetime
import enum
import logging
from pathlib import Path
import shlex
import subprocess
import threading

from recordapp.capture.args import (
    CaptureBackend,
    CaptureRequest,
    RecordingMode,
    build_list_devices_args,
    build_remux_args,
    build_request_args,
    build_screenshot_args,
    delivery_path,
    recording_output_path,
    screenshot_output_path,
)
from recordapp.capture.devices import parse_audio_devices
from recordapp.config import AppConfig
from recordapp.errors import AlreadyRecordingError, CaptureFailedError, LaunchError, RecorderError


logger = logging.getLogger(__name__)

GRACEFUL_QUIT = "q"
_DIAGNOSTIC_TAIL_LINES = 40


class SupervisorState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    CONVERTING = "converting"


@dataclass(frozen=True)
class ActiveSession:
    mode: RecordingMode
    output_path: Path
    started_at: datetime
    indefinite: bool


@dataclass
class _Session:
    request: CaptureRequest
    process: subprocess.Popen
    output_path: Path
    started_at: datetime
    remux_to: Path | None = None
    stopping: bool = False
    exited: threading.Event = field(default_factory=threading.Event)
    diagnostics: deque = field(default_factory=lambda: deque(maxlen=_DIAGNOSTIC_TAIL_LINES))

    def snapshot(self) -> ActiveSession:
        return ActiveSession(
            mode=self.request.mode,
            output_path=self.output_path,
            started_at=self.started_at,
            indefinite=self.request.indefinite,
        )


def format_command(cmd: list[str]) -> str:
    return shlex.join(cmd)


def _launch_encoder(cmd: list[str]) -> subprocess.Popen:
    return subprocess.Popen(
        cmd,
        stdin=subprocess.PIPE,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
    )


def _run_encoder(cmd: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
    )


class RecordingSupervisor:
    """Owns the single encoder process behind screen, audio and combined recordings.

    At most one recording runs at a time. ``start`` and ``stop`` take the same lock
    for their state transitions, so two racing ``start`` calls resolve to one
    recording and one ``AlreadyRecordingError``. Process waits never hold the lock.

    A watcher thread per recording drains the encoder's stderr and notices the
    process exit, which clears the session when nobody is stopping it.
    """

    def __init__(
        self,
        output_dir: Path,
        encoder_path: str = "ffmpeg",
        backend: CaptureBackend | None = None,
        stop_grace_seconds: float = 5.0,
        kill_timeout_seconds: float = 5.0,
    ) -> None:
        self.output_dir = output_dir
        self.encoder_path = encoder_path
        self.backend = backend or CaptureBackend()
        self.stop_grace_seconds = float(stop_grace_seconds)
        self.kill_timeout_seconds = float(kill_timeout_seconds)
        self._lock = threading.Lock()
        self._session: _Session | None = None
        self._last_error: Exception | None = None
        self._state = SupervisorState.IDLE
        self.output_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(cls, config: AppConfig) -> RecordingSupervisor:
        return cls(
            output_dir=config.output_dir,
            encoder_path=config.encoder.path,
            backend=CaptureBackend(
                screen_format=config.encoder.screen_format,
                screen_input=config.encoder.screen_input,
                audio_format=config.encoder.audio_format,
            ),
            stop_grace_seconds=config.encoder.stop_grace_seconds,
            kill_timeout_seconds=config.encoder.kill_timeout_seconds,
        )

    @property
    def state(self) -> SupervisorState:
        with self._lock:
            return self._state

    @property
    def last_error(self) -> Exception | None:
        """The exception from the most recent failed launch, cleared by the next successful one."""
        with self._lock:
            return self._last_error

    @property
    def is_recording(self) -> bool:
        with self._lock:
            return self._session is not None

    @property
    def active_session(self) -> ActiveSession | None:
        with self._lock:
            return self._session.snapshot() if self._session is not None else None

    def _command(self, args: list[str]) -> list[str]:
        return [self.encoder_path, *args]

    def start(self, request: CaptureRequest) -> Path:
        with self._lock:
            if self._session is not None:
                raise AlreadyRecordingError(f"recording already in progress: {self._session.output_path}")
            try:
                out_path = recording_output_path(self.output_dir, request)
                cmd = self._command(build_request_args(request, out_path, self.backend))
                session = self._spawn(request, cmd, out_path)
            except Exception as exc:
                self._last_error = exc
                logger.error("%s recording failed to start: %s", request.mode.value, exc)
                raise
            self._last_error = None
            self._session = session
            self._state = SupervisorState.RUNNING

        logger.info(
            "%s recording started duration=%ss quality=%s -> %s",
            request.mode.value,
            request.duration_seconds,
            request.quality,
            out_path,
        )
        if request.indefinite:
            return out_path

        session.exited.wait()
        return out_path

    def _spawn(self, request: CaptureRequest, cmd: list[str], out_path: Path) -> _Session:
        logger.info("executing encoder: %s", format_command(cmd))
        try:
            proc = _launch_encoder(cmd)
        except (OSError, ValueError) as exc:
            raise LaunchError(f"failed to start encoder {self.encoder_path!r}: {exc}") from exc

        remux_to = delivery_path(out_path) if out_path.suffix == ".mkv" else None
        session = _Session(
            request=request,
            process=proc,
            output_path=out_path,
            started_at=datetime.now(),
            remux_to=remux_to,
        )
        watcher = threading.Thread(
            target=self._watch,
            args=(session,),
            name=f"encoder-watch-{proc.pid}",
            daemon=True,
        )
        watcher.start()
        return session

    def _watch(self, session: _Session) -> None:
        proc = session.process
        try:
            if proc.stderr is not None:
                for line in proc.stderr:
                    session.diagnostics.append(line.rstrip())
            returncode = proc.wait()
            if proc.stdin is not None:
                with contextlib.suppress(OSError):
                    proc.stdin.close()

            with self._lock:
                cleared = self._session is session and not session.stopping
                if cleared:
                    self._session = None
                    self._state = SupervisorState.IDLE

            if not cleared:
                return
            if session.request.indefinite:
                logger.warning(
                    "encoder exited on its own (code %s) during %s; session cleared",
                    returncode,
                    session.output_path,
                )
            elif returncode != 0:
                logger.warning(
                    "encoder exited with code %s for %s: %s",
                    returncode,
                    session.output_path,
                    "\n".join(session.diagnostics),
                )
            else:
                logger.info("recording finished -> %s", session.output_path)
        finally:
            session.exited.set()

    def wait_for_exit(self, timeout: float | None = None) -> bool:
        with self._lock:
            session = self._session
        if session is None:
            return True
        return session.exited.wait(timeout)

    def stop(self) -> Path | None:
        with self._lock:
            session = self._session
            if session is None:
                logger.warning("stop requested but no recording is active")
                return None
            if session.stopping:
                logger.warning("stop already in progress for %s", session.output_path)
                return None
            session.stopping = True
            self._state = SupervisorState.STOPPING

        try:
            self._terminate(session)
            result = session.output_path
            if session.remux_to is not None:
                with self._lock:
                    self._state = SupervisorState.CONVERTING
                result = self._remux(session.output_path, session.remux_to)
                logger.info("recording stopped and converted -> %s", result)
            else:
                logger.info("recording stopped -> %s", result)
            return result
        finally:
            with self._lock:
                if self._session is session:
                    self._session = None
                self._state = SupervisorState.IDLE

    def _terminate(self, session: _Session) -> None:
        proc = session.process
        try:
            self._request_quit(proc)
        except (OSError, ValueError) as exc:
            logger.warning("graceful stop failed (%s); killing encoder pid %s", exc, proc.pid)
            self._kill(proc)
        else:
            if not session.exited.wait(self.stop_grace_seconds):
                logger.warning(
                    "encoder pid %s did not exit within %.1fs; killing",
                    proc.pid,
                    self.stop_grace_seconds,
                )
                self._kill(proc)

        if not session.exited.wait(self.kill_timeout_seconds):
            raise RecorderError(f"encoder pid {proc.pid} did not exit after kill")

    def _request_quit(self, proc: subprocess.Popen) -> None:
        if proc.stdin is None:
            raise BrokenPipeError("encoder stdin is not available")
        proc.stdin.write(GRACEFUL_QUIT + "\n")
        proc.stdin.flush()

    def _kill(self, proc: subprocess.Popen) -> None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()

    def _remux(self, source: Path, target: Path) -> Path:
        cmd = self._command(build_remux_args(source, target))
        self._run_checked(cmd, context="container conversion")
        return target

    def _run_checked(self, cmd: list[str], context: str) -> subprocess.CompletedProcess:
        logger.info("executing encoder: %s", format_command(cmd))
        try:
            proc = _run_encoder(cmd)
        except (OSError, ValueError) as exc:
            raise LaunchError(f"failed to start encoder {self.encoder_path!r}: {exc}") from exc
        if proc.returncode != 0:
            diagnostics = (proc.stderr or "").strip()
            raise CaptureFailedError(
                f"{context} failed with exit code {proc.returncode}: {diagnostics}",
                diagnostics=diagnostics,
                returncode=proc.returncode,
            )
        return proc

    def screenshot(self) -> Path:
        out_path = screenshot_output_path(self.output_dir)
        self._run_checked(self._command(build_screenshot_args(out_path, self.backend)), context="screenshot")
        logger.info("screenshot saved -> %s", out_path)
        return out_path

    def list_audio_devices(self) -> list[str]:
        cmd = self._command(build_list_devices_args(self.backend))
        logger.info("executing encoder: %s", format_command(cmd))
        try:
            proc = _run_encoder(cmd)
        except (OSError, ValueError) as exc:
            raise LaunchError(f"failed to start encoder {self.encoder_path!r}: {exc}") from exc
        # The dummy input makes the encoder exit non-zero; only the listing matters.
        devices = parse_audio_devices(proc.stderr or "")
        logger.info("found %s audio device(s)", len(devices))
        return devices
