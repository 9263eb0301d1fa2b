"""Structured event logging for translation runs."""

from __future__ import annotations

import json
import pathlib
from datetime import datetime, timezone
from typing import IO, Any, Optional, Protocol


class EventLogger(Protocol):
    """Receives ``{event, payload}`` emissions from the pipeline."""

    def info(self, event: str, payload: Any = None) -> None: ...

    def warn(self, event: str, payload: Any = None) -> None: ...

    def error(self, event: str, payload: Any = None) -> None: ...


class JsonLinesEventLogger:
    """Appends one JSON object per event to a log file.

    The file is opened on the first event and kept open until :meth:`close`.
    Each line is flushed as it is written; writes are small and synchronous.
    """

    def __init__(self, path: pathlib.Path) -> None:
        self.path = path
        self._handle: Optional[IO[str]] = None

    def _stream(self) -> IO[str]:
        if self._handle is None or self._handle.closed:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = self.path.open("a", encoding="utf-8")
        return self._handle

    def _write(self, level: str, event: str, payload: Any) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "message": event,
            "data": payload,
        }
        stream = self._stream()
        stream.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        stream.flush()

    def info(self, event: str, payload: Any = None) -> None:
        self._write("info", event, payload)

    def warn(self, event: str, payload: Any = None) -> None:
        self._write("warn", event, payload)

    def error(self, event: str, payload: Any = None) -> None:
        self._write("error", event, payload)

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "JsonLinesEventLogger":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class NullEventLogger:
    """Discards every event."""

    def info(self, event: str, payload: Any = None) -> None:
        return None

    def warn(self, event: str, payload: Any = None) -> None:
        return None

    def error(self, event: str, payload: Any = None) -> None:
        return None
