"""Status events emitted while a run is in progress.

A stream is any number of ``progress`` events with non-decreasing values,
terminated by exactly one ``complete`` or ``error`` event. Each event is
serialized as one JSON object per line.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Union


@dataclass(frozen=True)
class ProgressEvent:
    value: int
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": "progress", "value": self.value}
        if self.message is not None:
            out["message"] = self.message
        return out


@dataclass(frozen=True)
class CompleteEvent:
    download_id: str
    total_pages: int
    archive_size: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "complete",
            "downloadId": self.download_id,
            "stats": {
                "totalPages": self.total_pages,
                "archiveSize": self.archive_size,
            },
        }


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": "error", "message": self.message}
        if self.code is not None:
            out["code"] = self.code
        return out


Event = Union[ProgressEvent, CompleteEvent, ErrorEvent]


def to_json_line(event: Event) -> str:
    return json.dumps(event.to_dict(), ensure_ascii=False) + "\n"


def iter_ndjson(events: Iterable[Event]) -> Iterator[bytes]:
    for event in events:
        yield to_json_line(event).encode("utf-8")


class ProgressStream:
    """Enforces the stream contract for one run.

    Progress values are clamped to 0-100 and never decrease; once a terminal
    event has been produced no further events are accepted.
    """

    def __init__(self) -> None:
        self._value = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def progress(self, value: float, message: str | None = None) -> ProgressEvent:
        self._check_open()
        self._value = max(self._value, min(100, int(value)))
        return ProgressEvent(self._value, message)

    def complete(self, download_id: str, *, total_pages: int, archive_size: str) -> CompleteEvent:
        self._check_open()
        self._closed = True
        return CompleteEvent(download_id, total_pages, archive_size)

    def error(self, message: str, *, code: str | None = None) -> ErrorEvent:
        self._check_open()
        self._closed = True
        return ErrorEvent(message, code)

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("stream already terminated")
