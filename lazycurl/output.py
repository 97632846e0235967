"""lazycurl output - status marker protocol and result formatting."""

from __future__ import annotations

import re

from lazycurl.builder import STATUS_MARKER_PREFIX
from lazycurl.executor import ExecutionResult

_HTTP_STATUS_RE = re.compile(r"HTTP/\S*\s+(\d+)")


def parse_status_marker_line(line: str) -> int | None:
    """Status code from a ``__LAZYCURL_HTTP_STATUS__<digits>`` line."""
    line = line.rstrip("\r")
    if not line.startswith(STATUS_MARKER_PREFIX):
        return None
    rest = line[len(STATUS_MARKER_PREFIX) :].strip(" \t\r")
    m = re.match(r"\d+", rest)
    return int(m.group(0)) if m else None


def parse_status_marker(text: str) -> int | None:
    """Return the code of the last status marker line in text."""
    last = None
    for line in text.split("\n"):
        code = parse_status_marker_line(line)
        if code is not None:
            last = code
    return last


def parse_last_http_code(text: str) -> int | None:
    """Fallback: code of the last ``HTTP/x.y NNN`` status line."""
    last = None
    for line in text.split("\n"):
        idx = line.find("HTTP/")
        if idx == -1:
            continue
        m = _HTTP_STATUS_RE.match(line, idx)
        if m:
            last = int(m.group(1))
    return last


def response_status(text: str) -> int | None:
    code = parse_status_marker(text)
    if code is None:
        code = parse_last_http_code(text)
    return code


def strip_status_marker(text: str) -> str:
    """Remove status marker lines from curl's stdout."""
    lines = text.split("\n")
    kept = [line for line in lines if not line.rstrip("\r").startswith(STATUS_MARKER_PREFIX)]
    return "\n".join(kept)


class MarkerFilter:
    """Strip marker lines from stdout as it streams in.

    Complete lines are released immediately; a trailing partial line is
    held back only while it could still turn out to be a marker.
    """

    def __init__(self):
        self._pending = ""
        self._mid_line = False

    def feed(self, chunk: str) -> str:
        data = self._pending + chunk
        self._pending = ""
        out = []
        while data:
            newline = data.find("\n")
            if newline == -1:
                if not self._mid_line and _could_be_marker(data):
                    self._pending = data
                else:
                    out.append(data)
                    self._mid_line = True
                break
            line, data = data[: newline + 1], data[newline + 1 :]
            if self._mid_line or not line.startswith(STATUS_MARKER_PREFIX):
                out.append(line)
            self._mid_line = False
        return "".join(out)

    def flush(self) -> str:
        rest, self._pending = self._pending, ""
        self._mid_line = False
        if rest.startswith(STATUS_MARKER_PREFIX):
            return ""
        return rest


def _could_be_marker(partial: str) -> bool:
    if len(partial) < len(STATUS_MARKER_PREFIX):
        return STATUS_MARKER_PREFIX.startswith(partial)
    return partial.startswith(STATUS_MARKER_PREFIX)


def format_result(result: ExecutionResult) -> str:
    """Summary block printed after a run.

        STATUS: 200
        TIME: 45ms

    plus EXIT/ERROR lines when curl failed.
    """
    lines = []
    status = response_status(result.stdout_text)
    if status is not None:
        lines.append(f"STATUS: {status}")
    lines.append(f"TIME: {int(result.duration_ms)}ms")
    if result.exit_code not in (None, 0):
        lines.append(f"EXIT: {result.exit_code}")
    if result.error_message:
        lines.append(f"ERROR: {result.error_message}")
    return "\n".join(lines)
