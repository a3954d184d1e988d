from __future__ import annotations

from datetime import datetime
import logging
from pathlib import Path
import threading

from recordapp.capture import CaptureRequest, RecordingMode, RecordingSupervisor
from recordapp.config import AppConfig
from recordapp.errors import DecodeError, RecorderError, TransportError, UnknownCommandError
from recordapp.remote import CommandEnvelope, CommandFeedClient, StatusReport, decode_command


logger = logging.getLogger(__name__)

_MODES = {mode.value: mode for mode in RecordingMode}


class CommandLoop:
    """Polls the command feed and drives the supervisor, one command per cycle."""

    def __init__(
        self,
        supervisor: RecordingSupervisor,
        client: CommandFeedClient,
        output_dir: Path,
        poll_interval_seconds: float = 1.0,
        audio_device: str | None = None,
        upload_after_capture: bool = False,
    ) -> None:
        self.supervisor = supervisor
        self.client = client
        self.output_dir = output_dir
        self.poll_interval_seconds = poll_interval_seconds
        self.upload_after_capture = upload_after_capture
        self._audio_device = audio_device
        self._devices_probed = audio_device is not None

    def resolve_audio_device(self) -> str | None:
        if not self._devices_probed:
            self._devices_probed = True
            try:
                devices = self.supervisor.list_audio_devices()
            except RecorderError as exc:
                logger.warning("audio device enumeration failed: %s", exc)
                devices = []
            self._audio_device = devices[0] if devices else None
            logger.info("default audio device: %s", self._audio_device or "<none>")
        return self._audio_device

    def report(self, status: str) -> None:
        report = StatusReport(status=status, current_file=str(self.output_dir), start_time=datetime.now())
        if not self.client.send_status(report):
            logger.debug("status %r not delivered", status)

    def poll_once(self) -> None:
        try:
            command = decode_command(self.client.fetch_command())
            if command.is_empty:
                return
            logger.info("received command: %s %s", command.action, command.type)
            self.report("processing")
            output = self._dispatch(command)
            if output is not None and self.upload_after_capture:
                self.client.upload_file(output)
            self.report("idle")
        except UnknownCommandError:
            raise
        except TransportError as exc:
            logger.warning("command feed unavailable: %s", exc)
            self.report(f"error: {exc}")
        except DecodeError as exc:
            logger.error("could not parse command response: %s", exc)
        except Exception as exc:
            logger.exception("error while handling command")
            self.report(f"error: {exc}")

    def _dispatch(self, command: CommandEnvelope) -> Path | None:
        action = command.action.lower()
        if action == "start":
            mode = _MODES.get(command.type.lower())
            if mode is None:
                logger.error("unknown recording type: %s", command.type)
                self.report(f"error: Unknown recording type '{command.type}'")
                raise UnknownCommandError(f"unknown recording type {command.type!r}")
            return self._start(mode, command)
        if action == "stop":
            return self.supervisor.stop()
        if action == "screenshot":
            return self.supervisor.screenshot()

        logger.error("unknown command: %s", command.action)
        self.report(f"error: Unknown command '{command.action}'")
        raise UnknownCommandError(f"unknown command {command.action!r}")

    def _start(self, mode: RecordingMode, command: CommandEnvelope) -> Path | None:
        device = None if mode is RecordingMode.SCREEN else self.resolve_audio_device()
        request = CaptureRequest(
            mode=mode,
            duration_seconds=command.duration,
            quality=command.quality,
            audio_quality=command.quality if mode is RecordingMode.COMBINED else None,
            device=device,
        )
        out_path = self.supervisor.start(request)
        if request.indefinite:
            logger.info("%s recording running until stopped -> %s", mode.value, out_path)
            return None
        return out_path

    def run(self, stop_event: threading.Event | None = None) -> None:
        stop_event = stop_event or threading.Event()
        self.resolve_audio_device()
        logger.info("command polling started (every %.1fs)", self.poll_interval_seconds)
        try:
            while not stop_event.is_set():
                self.poll_once()
                if stop_event.wait(self.poll_interval_seconds):
                    break
        finally:
            logger.info("command polling stopped")


def build_command_loop(config: AppConfig, supervisor: RecordingSupervisor | None = None) -> CommandLoop:
    return CommandLoop(
        supervisor=supervisor or RecordingSupervisor.from_config(config),
        client=CommandFeedClient.from_config(config.remote),
        output_dir=config.output_dir,
        poll_interval_seconds=config.remote.poll_interval_seconds,
        audio_device=config.remote.audio_device,
        upload_after_capture=config.remote.upload_after_capture,
    )


def run_command_service(config: AppConfig, shutdown_event: threading.Event | None = None) -> None:
    loop = build_command_loop(config)
    try:
        loop.run(shutdown_event)
    except KeyboardInterrupt:
        logger.info("interrupt received, shutting down")
    finally:
        if loop.supervisor.is_recording:
            logger.info("stopping active recording before exit")
            try:
                loop.supervisor.stop()
            except RecorderError:
                logger.exception("failed to stop recording on shutdown")


class CommandService:
    """Runs the command loop on a worker thread so the caller's thread stays free."""

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self.error: Exception | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def _main(self) -> None:
        try:
            run_command_service(self.config, shutdown_event=self._stop_event)
        except Exception as exc:
            self.error = exc
            logger.error("command service terminated: %s", exc)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._main, name="command-service", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def join(self, timeout: float | None = None) -> bool:
        if self._thread is None:
            return True
        self._thread.join(timeout=timeout)
        return not self._thread.is_alive()
