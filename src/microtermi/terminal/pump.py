"""Background readers that turn captured pipes into text lines."""

from __future__ import annotations

import logging as py_logging
import queue
import threading
from typing import BinaryIO

logger = py_logging.getLogger(__name__)

STDERR_PREFIX = "[stderr] "


class LineSender:
    def __init__(self, sink: queue.SimpleQueue[str]) -> None:
        self._sink = sink

    def send(self, line: str) -> None:
        self._sink.put(line)


class LineReceiver:
    """Consumer end of a session's output channel. Never blocks."""

    def __init__(self, source: queue.SimpleQueue[str]) -> None:
        self._source = source

    def try_recv(self) -> str | None:
        try:
            return self._source.get_nowait()
        except queue.Empty:
            return None

    def try_recv_all(self) -> list[str]:
        lines: list[str] = []
        while True:
            line = self.try_recv()
            if line is None:
                return lines
            lines.append(line)


def line_channel() -> tuple[LineSender, LineReceiver]:
    shared: queue.SimpleQueue[str] = queue.SimpleQueue()
    return LineSender(shared), LineReceiver(shared)


def decode_line(raw: bytes) -> str:
    return raw.rstrip(b"\r\n").decode("utf-8", errors="replace")


class OutputPump:
    def __init__(
        self,
        stream: BinaryIO,
        sender: LineSender,
        *,
        prefix: str = "",
        name: str = "output-pump",
    ) -> None:
        self.prefix = prefix
        self._stream = stream
        self._sender = sender
        self.lines_forwarded = 0
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> OutputPump:
        self._thread.start()
        return self

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    def _run(self) -> None:
        try:
            for raw in iter(self._stream.readline, b""):
                line = decode_line(raw)
                if not line:
                    continue
                self._sender.send(f"{self.prefix}{line}")
                self.lines_forwarded += 1
        except (OSError, ValueError):
            # Pipe closed underneath us (kill or interpreter shutdown).
            logger.debug("pump-closed thread=%s", self._thread.name, exc_info=True)
        finally:
            try:
                self._stream.close()
            except OSError:
                pass
        logger.debug("pump-eof thread=%s lines=%s", self._thread.name, self.lines_forwarded)


def start_pumps(stdout: BinaryIO, stderr: BinaryIO, sender: LineSender, *, label: str = "") -> list[OutputPump]:
    suffix = f":{label}" if label else ""
    return [
        OutputPump(stdout, sender, name=f"pump-stdout{suffix}").start(),
        OutputPump(stderr, sender, prefix=STDERR_PREFIX, name=f"pump-stderr{suffix}").start(),
    ]
