from __future__ import annotations


class RecorderError(RuntimeError):
    pass


class AlreadyRecordingError(RecorderError):
    pass


class LaunchError(RecorderError):
    pass


class CaptureFailedError(RecorderError):
    def __init__(self, message: str, diagnostics: str = "", returncode: int | None = None) -> None:
        super().__init__(message)
        self.diagnostics = diagnostics
        self.returncode = returncode


class TransportError(RecorderError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class DecodeError(RecorderError):
    pass


class UnknownCommandError(RecorderError):
    """Raised out of the dispatch loop when the feed sends something it cannot act on."""
