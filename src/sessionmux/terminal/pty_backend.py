"""PTY-backed process collaborator: spawn, I/O, resize and exit reporting."""

from __future__ import annotations

import asyncio
import codecs
import logging as py_logging
import os
import select
import subprocess
import sys
import threading
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass

from sessionmux.errors import ErrorCode, SessionMuxError
from sessionmux.terminal.bus import DataFrameBus
from sessionmux.terminal.models import DataFrame, ProcessExit

logger = py_logging.getLogger(__name__)

DEFAULT_READ_SIZE = 4096
READ_POLL_SECONDS = 0.1


@dataclass(frozen=True)
class PtyHandle:
    session_id: str
    command: tuple[str, ...]
    cwd: str


PtySpawn = Callable[[list[str], str | None, dict[str, str] | None, tuple[int, int]], object]


def _spawn_with_pywinpty(
    command: list[str],
    cwd: str | None,
    env: dict[str, str] | None,
    dimensions: tuple[int, int],
) -> object:
    try:
        from winpty import PtyProcess
    except ImportError as exc:
        raise SessionMuxError(
            "pywinpty backend is unavailable.",
            code=ErrorCode.SPAWN_FAILED,
            hint="Install the windows extra: pip install sessionmux[windows].",
        ) from exc

    kwargs: dict[str, object] = {"dimensions": (dimensions[1], dimensions[0])}
    if cwd:
        kwargs["cwd"] = cwd
    if env:
        kwargs["env"] = env
    return PtyProcess.spawn(subprocess.list2cmdline(command), **kwargs)


class _PosixPtyProcess:
    """Child process attached to the slave side of a stdlib pseudo-terminal."""

    def __init__(self, command: list[str], cwd: str | None, env: dict[str, str] | None, dimensions: tuple[int, int]):
        import pty

        master_fd, slave_fd = pty.openpty()
        self._master_fd = master_fd
        self._closed = False
        try:
            _set_winsize(slave_fd, cols=dimensions[0], rows=dimensions[1])
            self._process = subprocess.Popen(
                command,
                cwd=cwd or None,
                env=env,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                close_fds=True,
            )
        except BaseException:
            os.close(master_fd)
            raise
        finally:
            os.close(slave_fd)

    def read(self, size: int = DEFAULT_READ_SIZE) -> bytes:
        # Poll with a timeout so close() ends the wait instead of a blocked os.read.
        while not self._closed:
            try:
                ready, _, _ = select.select([self._master_fd], [], [], READ_POLL_SECONDS)
                if ready:
                    return os.read(self._master_fd, size)
            except (OSError, ValueError):
                # EIO on Linux once the slave side is gone.
                return b""
        return b""

    def write(self, payload: str) -> None:
        os.write(self._master_fd, payload.encode("utf-8"))

    def set_size(self, cols: int, rows: int) -> None:
        _set_winsize(self._master_fd, cols=cols, rows=rows)

    def isalive(self) -> bool:
        return self._process.poll() is None

    @property
    def exitstatus(self) -> int | None:
        return self._process.poll()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with suppress(OSError):
            os.close(self._master_fd)

    def terminate(self) -> None:
        self._process.terminate()


def _set_winsize(fd: int, *, cols: int, rows: int) -> None:
    import fcntl
    import struct
    import termios

    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


def default_spawn() -> PtySpawn:
    if sys.platform == "win32":
        return _spawn_with_pywinpty
    return _PosixPtyProcess


class PtyBackend:
    def __init__(
        self,
        bus: DataFrameBus,
        *,
        command: list[str] | None = None,
        spawn: PtySpawn | None = None,
        initial_size: tuple[int, int] = (80, 24),
        read_size: int = DEFAULT_READ_SIZE,
    ) -> None:
        self._bus = bus
        self._command = list(command or ["claude"])
        self._spawn = spawn or default_spawn()
        self._initial_size = initial_size
        self._read_size = read_size
        self._sessions: dict[str, object] = {}
        self._readers: dict[str, threading.Thread] = {}

    async def spawn_process(self, session_id: str, cwd: str, env: dict[str, str]) -> PtyHandle:
        if session_id in self._sessions:
            raise SessionMuxError(
                f"Session process already started: {session_id}",
                code=ErrorCode.VALIDATION_ERROR,
                hint="Terminate the current process before starting a new one.",
                session_id=session_id,
            )
        if not self._command:
            raise SessionMuxError(
                "Launch command cannot be empty.",
                code=ErrorCode.SPAWN_FAILED,
                hint="Set launch_command in the config file.",
                session_id=session_id,
            )

        merged_env = {**os.environ, **env}
        loop = asyncio.get_running_loop()
        pending = loop.run_in_executor(
            None, self._spawn, list(self._command), cwd or None, merged_env, self._initial_size
        )
        try:
            process = await asyncio.shield(pending)
        except asyncio.CancelledError:
            # The executor keeps running; close whatever it produces.
            pending.add_done_callback(_close_orphan)
            raise
        except SessionMuxError:
            raise
        except Exception as exc:
            raise SessionMuxError(
                f"Failed to start process for session {session_id}.",
                code=ErrorCode.SPAWN_FAILED,
                hint=str(exc) or "Check the launch command and project directory.",
                session_id=session_id,
            ) from exc

        handle = PtyHandle(session_id=session_id, command=tuple(self._command), cwd=cwd)
        self._sessions[session_id] = process
        # One dedicated reader per session; an idle session must not hold a shared executor worker.
        reader = threading.Thread(
            target=self._read_forever,
            args=(session_id, process, loop),
            name=f"sessionmux-reader-{session_id}",
            daemon=True,
        )
        self._readers[session_id] = reader
        reader.start()
        logger.info("process-started session=%s cwd=%s", session_id, cwd)
        return handle

    def send_input(self, session_id: str, data: str) -> None:
        process = self._require_session(session_id)
        try:
            process.write(data)
        except Exception as exc:
            raise SessionMuxError(
                f"Failed to write to session {session_id}.",
                code=ErrorCode.RUNTIME_ERROR,
                hint=str(exc) or "Verify the session process is alive.",
                session_id=session_id,
            ) from exc

    def resize(self, session_id: str, cols: int, rows: int) -> None:
        if cols <= 0 or rows <= 0:
            raise SessionMuxError(
                f"Invalid PTY size: {cols}x{rows}",
                code=ErrorCode.VALIDATION_ERROR,
                hint="Use positive terminal row/column values.",
                session_id=session_id,
            )
        process = self._require_session(session_id)
        try:
            process.set_size(cols, rows)
        except Exception as exc:
            raise SessionMuxError(
                f"Failed to resize session {session_id}.",
                code=ErrorCode.RUNTIME_ERROR,
                hint=str(exc) or "Verify the PTY supports resizing.",
                session_id=session_id,
            ) from exc

    def is_alive(self, session_id: str) -> bool:
        process = self._sessions.get(session_id)
        if process is None:
            return False
        return _is_alive(process)

    def terminate(self, session_id: str) -> None:
        process = self._sessions.pop(session_id, None)
        # The reader thread ends on its own once the closed process reports EOF.
        self._readers.pop(session_id, None)
        if process is None:
            logger.debug("terminate-skipped session=%s reason=not-running", session_id)
            return
        _close_process(process)
        logger.info("process-terminated session=%s", session_id)

    def stop_all(self) -> None:
        for session_id in list(self._sessions):
            self.terminate(session_id)

    def _read_forever(self, session_id: str, process: object, loop: asyncio.AbstractEventLoop) -> None:
        """Blocking read loop run on the session's reader thread.

        Decoded text goes back to the event loop in read order; the final
        callback reaps the process there, so frames always precede the exit.
        """
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            try:
                chunk = _read_chunk(process, self._read_size)
            except Exception:
                logger.debug("process-read-failed session=%s", session_id, exc_info=True)
                chunk = None
            if not chunk:
                break
            text = decoder.decode(chunk) if isinstance(chunk, bytes) else str(chunk)
            if text and not self._post(loop, self._bus.publish, DataFrame(session_id=session_id, payload=text)):
                return

        tail = decoder.decode(b"", final=True)
        if tail:
            self._post(loop, self._bus.publish, DataFrame(session_id=session_id, payload=tail))
        self._post(loop, self._reap, session_id, process)

    def _post(self, loop: asyncio.AbstractEventLoop, callback: Callable[..., None], *args: object) -> bool:
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            logger.debug("reader-stopped reason=loop-closed")
            return False
        return True

    def _reap(self, session_id: str, process: object) -> None:
        if self._sessions.get(session_id) is not process:
            return
        self._sessions.pop(session_id, None)
        self._readers.pop(session_id, None)
        exit_code = getattr(process, "exitstatus", None)
        _close_process(process)
        self._bus.publish(ProcessExit(session_id=session_id, exit_code=exit_code))
        logger.info("process-exited session=%s code=%s", session_id, exit_code)

    def _require_session(self, session_id: str) -> object:
        process = self._sessions.get(session_id)
        if process is None:
            raise SessionMuxError(
                f"Session process not running: {session_id}",
                code=ErrorCode.NOT_FOUND,
                hint="Start the session before PTY I/O operations.",
                session_id=session_id,
            )
        return process


def _read_chunk(process: object, size: int) -> bytes | str | None:
    try:
        return process.read(size)
    except TypeError:
        return process.read()
    except EOFError:
        return None


def _close_orphan(future: asyncio.Future[object]) -> None:
    if future.cancelled() or future.exception() is not None:
        return
    _close_process(future.result())


def _close_process(process: object) -> None:
    alive = _is_alive(process)
    if hasattr(process, "close"):
        try:
            process.close()
        except TypeError:
            process.close(True)
        except Exception:
            logger.debug("process close failed", exc_info=True)
    if alive and _is_alive(process):
        if hasattr(process, "terminate"):
            with suppress(Exception):
                process.terminate()
        elif hasattr(process, "kill"):
            with suppress(Exception):
                process.kill()


def _is_alive(process: object) -> bool:
    if hasattr(process, "isalive"):
        try:
            return bool(process.isalive())
        except Exception:
            return True
    return True
