from __future__ import annotations

import subprocess
import threading
from typing import Callable

import pytest

from recordapp.capture import supervisor as supervisor_mod


class _FakeStdin:
    def __init__(self, proc: FakeProcess) -> None:
        self.proc = proc
        self.closed = False
        self.written: list[str] = []

    def write(self, data: str) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed file")
        self.written.append(data)
        if self.proc.quit_on_q and data.strip() == "q":
            self.proc.finish(0)
        return len(data)

    def flush(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True


class FakeProcess:
    def __init__(
        self,
        cmd: list[str],
        stderr_lines: tuple[str, ...] = (),
        quit_on_q: bool = True,
        exit_after: float | None = None,
        returncode: int = 0,
    ) -> None:
        self.args = cmd
        self.pid = 4242
        self.returncode: int | None = None
        self.quit_on_q = quit_on_q
        self.killed = False
        self._done = threading.Event()
        self._stderr_lines = list(stderr_lines)
        self.stdin = _FakeStdin(self)
        self.stderr = self._stderr()
        if exit_after is not None:
            timer = threading.Timer(exit_after, self.finish, args=(returncode,))
            timer.daemon = True
            timer.start()

    def _stderr(self):
        yield from self._stderr_lines
        self._done.wait()

    def finish(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
        self._done.set()

    def wait(self, timeout: float | None = None) -> int:
        if not self._done.wait(timeout):
            raise subprocess.TimeoutExpired(self.args, timeout)
        assert self.returncode is not None
        return self.returncode

    def poll(self) -> int | None:
        return self.returncode if self._done.is_set() else None

    def kill(self) -> None:
        self.killed = True
        self.finish(-9)


class _Encoder:
    def __init__(self, **proc_kwargs) -> None:
        self.proc_kwargs = proc_kwargs
        self.launched: list[FakeProcess] = []
        self.runs: list[list[str]] = []
        self.run_result: tuple[int, str] = (0, "")

    def launch(self, cmd: list[str]) -> FakeProcess:
        proc = FakeProcess(cmd, **self.proc_kwargs)
        self.launched.append(proc)
        return proc

    def run(self, cmd: list[str]) -> subprocess.CompletedProcess:
        self.runs.append(cmd)
        code, stderr = self.run_result
        return subprocess.CompletedProcess(cmd, code, stdout=None, stderr=stderr)


def _install(monkeypatch, **proc_kwargs) -> _Encoder:
    encoder = _Encoder(**proc_kwargs)
    monkeypatch.setattr(supervisor_mod, "_launch_encoder", encoder.launch)
    monkeypatch.setattr(supervisor_mod, "_run_encoder", encoder.run)
    return encoder


@pytest.fixture
def install_encoder(monkeypatch) -> Callable[..., _Encoder]:
    def _factory(**proc_kwargs) -> _Encoder:
        return _install(monkeypatch, **proc_kwargs)

    return _factory
