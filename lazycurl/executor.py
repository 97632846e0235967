"""lazycurl executor - run curl as a child process and stream its output."""

from __future__ import annotations

import enum
import logging
import os
import selectors
import subprocess
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol, Union

from lazycurl.builder import TOOL, format_command
from lazycurl.exceptions import (
    ExecutionInProgress,
    InvalidCommand,
    JobFinished,
    SpawnFailed,
)

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05  # seconds, bound used by finish() and execute()
READ_CHUNK = 64 * 1024


class Stream(enum.Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


class OutputSink(Protocol):
    def emit(self, stream: Stream, chunk: bytes) -> None: ...


SinkLike = Union[OutputSink, Callable[[Stream, bytes], None], None]


def _emit(sink: SinkLike, stream: Stream, chunk: bytes) -> None:
    if sink is None:
        return
    emit = getattr(sink, "emit", None)
    if emit is not None:
        emit(stream, chunk)
    else:
        sink(stream, chunk)


# ── Termination and diagnosis ────────────────────────────────────────────

CURL_ERROR_MESSAGES: dict[int, str] = {
    1: "Unsupported protocol",
    2: "Failed to initialize",
    3: "URL malformed",
    4: "A feature or option that was needed to perform the desired request was not enabled",
    5: "Couldn't resolve proxy",
    6: "Couldn't resolve host",
    7: "Failed to connect to host",
    8: "FTP weird server reply",
    9: "FTP access denied",
    10: "FTP accept failed",
    11: "FTP weird PASS reply",
    12: "FTP accept timeout",
    13: "FTP weird PASV reply",
    14: "FTP weird 227 format",
    15: "FTP can't get host",
    16: "HTTP/2 framing layer error",
    17: "FTP couldn't set binary",
    18: "Partial file transfer",
    19: "FTP couldn't download/access the given file",
    20: "FTP write error",
    21: "FTP quote error",
    22: "HTTP page not retrieved",
    23: "Write error",
    24: "Upload failed",
    25: "Failed to open/read local data",
    26: "Read error",
    27: "Out of memory",
    28: "Operation timeout",
    29: "FTP PORT failed",
    30: "FTP couldn't use REST",
    31: "HTTP range error",
    32: "HTTP post error",
    33: "SSL connect error",
    34: "FTP bad download resume",
    35: "FILE couldn't read file",
    36: "LDAP cannot bind",
    37: "LDAP search failed",
    38: "Function not found",
    39: "Aborted by callback",
    40: "Bad function argument",
    41: "Bad calling order",
    42: "HTTP Interface operation failed",
    43: "Bad password entered",
    44: "Too many redirects",
    45: "Unknown option specified",
    46: "Malformed telnet option",
    47: "The peer certificate cannot be authenticated",
    48: "Unknown TELNET option specified",
    49: "Malformed telnet option",
    51: "The peer's SSL certificate or SSH MD5 fingerprint was not OK",
    52: "The server didn't reply anything",
    53: "SSL crypto engine not found",
    54: "Cannot set SSL crypto engine as default",
    55: "Failed sending network data",
    56: "Failure in receiving network data",
    58: "Problem with the local certificate",
    59: "Couldn't use specified cipher",
    60: "Peer certificate cannot be authenticated with known CA certificates",
    61: "Unrecognized transfer encoding",
    62: "Invalid LDAP URL",
    63: "Maximum file size exceeded",
    64: "Requested FTP SSL level failed",
    65: "Sending the data requires a rewind that failed",
    66: "Failed to initialise SSL Engine",
    67: "The user name, password, or similar was not accepted and curl failed to log in",
    68: "File not found on TFTP server",
    69: "Permission problem on TFTP server",
    70: "Out of disk space on TFTP server",
    71: "Illegal TFTP operation",
    72: "Unknown transfer ID",
    73: "File already exists",
    74: "No such user",
    75: "Character conversion failed",
    76: "Character conversion functions required",
    77: "Problem with reading the SSL CA cert",
    78: "The resource referenced in the URL does not exist",
    79: "An unspecified error occurred during the SSH session",
    80: "Failed to shut down the SSL connection",
    82: "Could not load CRL file",
    83: "Issuer check failed",
    84: "The FTP PRET command failed",
    85: "RTSP: mismatch of CSeq numbers",
    86: "RTSP: mismatch of Session Identifiers",
    87: "Unable to parse FTP file list",
    88: "FTP chunk callback reported error",
    89: "No connection available, the session will be queued",
    90: "SSL public key does not matched pinned public key",
    91: "Invalid SSL certificate status",
    92: "Stream error in HTTP/2 framing layer",
    93: "An API function was called from inside a callback",
    94: "An authentication function returned an error",
    95: "A problem was detected in the HTTP/3 layer",
    96: "QUIC connection error",
}


def curl_error_message(exit_code: int) -> str:
    return CURL_ERROR_MESSAGES.get(exit_code, "Unknown error")


class TerminationKind(enum.Enum):
    EXITED = "exited"
    SIGNALED = "signaled"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Termination:
    kind: TerminationKind
    code: int

    @classmethod
    def from_returncode(cls, returncode: int | None) -> Termination:
        """Map a Popen return code (negative means killed by signal)."""
        if returncode is None:
            return cls(TerminationKind.UNKNOWN, -1)
        if returncode < 0:
            return cls(TerminationKind.SIGNALED, -returncode)
        return cls(TerminationKind.EXITED, returncode)


def diagnose(termination: Termination | None) -> tuple[int | None, str | None]:
    """Return (exit_code, error_message) for a finished process."""
    if termination is None:
        return None, None
    kind, code = termination.kind, termination.code
    if kind is TerminationKind.EXITED:
        if code == 0:
            return 0, None
        return code, f"Command failed with exit code {code}: {curl_error_message(code)}"
    if kind is TerminationKind.SIGNALED:
        return None, f"Process terminated by signal {code}"
    if kind is TerminationKind.STOPPED:
        return None, f"Process stopped by signal {code}"
    return None, f"Process terminated with status {code}"


@dataclass(frozen=True)
class ExecutionResult:
    """Snapshot of one completed curl run."""

    command: str
    exit_code: int | None
    stdout: bytes
    stderr: bytes
    duration_ns: int
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and self.error_message is None

    @property
    def duration_ms(self) -> float:
        return self.duration_ns / 1_000_000

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")


# ── Execution job ────────────────────────────────────────────────────────


class JobState(enum.Enum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"


def tokenize(command: str) -> list[str]:
    """Split on runs of whitespace. Quotes are not interpreted."""
    return command.split()


class ExecutionJob:
    """Pollable handle to one running curl process.

    Drive it with poll() from an event loop, or call finish() to block
    until the process is done. Release it with close() (or use it as a
    context manager).
    """

    def __init__(self, command: str | Sequence[str]):
        if isinstance(command, str):
            self.argv = tokenize(command)
            self.command = command
        else:
            self.argv = list(command)
            self.command = format_command(self.argv)
        self.state = JobState.CREATED
        self.termination: Termination | None = None
        self._process: subprocess.Popen | None = None
        self._selector: selectors.BaseSelector | None = None
        self._stdout = bytearray()
        self._stderr = bytearray()
        self._started_ns = 0
        self._collected = False

    @classmethod
    def start(cls, command: str | Sequence[str]) -> ExecutionJob:
        """Spawn curl for command.

        A string is split on whitespace; pass the argv list to keep
        arguments that contain spaces intact.
        """
        job = cls(command)
        job._spawn()
        return job

    def _spawn(self) -> None:
        if not self.argv or self.argv[0] != TOOL:
            raise InvalidCommand(self.command)
        try:
            process = subprocess.Popen(
                self.argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise SpawnFailed(self.argv, e) from e

        self._started_ns = time.monotonic_ns()
        self._process = process
        self._selector = selectors.DefaultSelector()
        self._selector.register(process.stdout, selectors.EVENT_READ, Stream.STDOUT)
        self._selector.register(process.stderr, selectors.EVENT_READ, Stream.STDERR)
        self.state = JobState.RUNNING
        # argv holds substituted secrets; log its shape only
        logger.debug("started pid %s: %s with %d args", process.pid, TOOL, len(self.argv) - 1)

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def done(self) -> bool:
        return self.state is JobState.COMPLETED

    @property
    def stdout(self) -> bytes:
        return bytes(self._stdout)

    @property
    def stderr(self) -> bytes:
        return bytes(self._stderr)

    def poll(self, timeout: float = 0.0, sink: SinkLike = None) -> bool:
        """Drain whatever output is ready, waiting at most timeout seconds.

        Returns True once both pipes have closed and the process has been
        reaped.
        """
        if self.state is JobState.COMPLETED:
            return True
        if self._open_streams():
            for key, _ in self._selector.select(max(timeout, 0.0)):
                self._read(key, sink)
        if self._open_streams():
            return False

        self.termination = Termination.from_returncode(self._process.wait())
        self.state = JobState.COMPLETED
        logger.debug("pid %s finished: %s", self._process.pid, self.termination)
        return True

    def finish(self) -> ExecutionResult:
        """Block until completion and return the result.

        The job's output buffers move into the result.
        """
        if self._collected:
            raise JobFinished()
        while not self.poll(POLL_INTERVAL):
            pass

        duration_ns = time.monotonic_ns() - self._started_ns
        exit_code, error_message = diagnose(self.termination)
        result = ExecutionResult(
            command=self.command,
            exit_code=exit_code,
            stdout=bytes(self._stdout),
            stderr=bytes(self._stderr),
            duration_ns=duration_ns,
            error_message=error_message,
        )
        self._stdout = bytearray()
        self._stderr = bytearray()
        self._collected = True
        return result

    def close(self) -> None:
        """Release pipes and the selector. Safe to call more than once.

        A process that is still running is killed and reaped.
        """
        if self._process is not None and self._process.poll() is None:
            logger.debug("killing unfinished pid %s", self._process.pid)
            self._process.kill()
            self._process.wait()
        if self._selector is not None:
            for key in list(self._selector.get_map().values()):
                key.fileobj.close()
            self._selector.close()
            self._selector = None
        if self._process is not None:
            for pipe in (self._process.stdout, self._process.stderr):
                if pipe is not None and not pipe.closed:
                    pipe.close()

    def __enter__(self) -> ExecutionJob:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _open_streams(self) -> bool:
        return self._selector is not None and bool(self._selector.get_map())

    def _read(self, key: selectors.SelectorKey, sink: SinkLike) -> None:
        chunk = os.read(key.fd, READ_CHUNK)
        if not chunk:
            self._selector.unregister(key.fileobj)
            key.fileobj.close()
            return
        buffer = self._stdout if key.data is Stream.STDOUT else self._stderr
        buffer.extend(chunk)
        _emit(sink, key.data, chunk)


# ── Runtime ──────────────────────────────────────────────────────────────


class CommandExecutor:
    """Owns at most one active job plus the last finished result."""

    def __init__(self):
        self.active_job: ExecutionJob | None = None
        self.last_result: ExecutionResult | None = None
        self.stream_stdout = bytearray()
        self.stream_stderr = bytearray()

    @property
    def running(self) -> bool:
        return self.active_job is not None

    def start_execution(self, command: str | Sequence[str]) -> ExecutionJob:
        """Start a job. Raises ExecutionInProgress if one is active."""
        if self.active_job is not None:
            raise ExecutionInProgress()
        self.stream_stdout.clear()
        self.stream_stderr.clear()
        self.clear_result()
        self.active_job = ExecutionJob.start(command)
        return self.active_job

    def tick(self, timeout: float = 0.0, sink: SinkLike = None) -> ExecutionResult | None:
        """Poll the active job once; returns the result on the completing tick."""
        job = self.active_job
        if job is None:
            return None

        def _mirror(stream: Stream, chunk: bytes) -> None:
            if stream is Stream.STDOUT:
                self.stream_stdout.extend(chunk)
            else:
                self.stream_stderr.extend(chunk)
            _emit(sink, stream, chunk)

        if not job.poll(timeout, _mirror):
            return None
        try:
            result = job.finish()
        finally:
            job.close()
            self.active_job = None
        self.last_result = result
        return result

    def execute(
        self,
        command: str | Sequence[str],
        sink: SinkLike = None,
        poll_interval: float = POLL_INTERVAL,
    ) -> ExecutionResult:
        """Run command to completion, streaming chunks to sink."""
        self.start_execution(command)
        while True:
            result = self.tick(poll_interval, sink)
            if result is not None:
                return result

    def output_body(self) -> bytes:
        if self.active_job is not None:
            return bytes(self.stream_stdout)
        return self.last_result.stdout if self.last_result else b""

    def output_error(self) -> bytes:
        if self.active_job is not None:
            return bytes(self.stream_stderr)
        return self.last_result.stderr if self.last_result else b""

    def clear_result(self) -> None:
        self.last_result = None

    def close(self) -> None:
        if self.active_job is not None:
            self.active_job.close()
            self.active_job = None

    def __enter__(self) -> CommandExecutor:
        return self

    def __exit__(self, *exc) -> None:
        self.close()
