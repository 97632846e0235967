"""lazycurl exceptions."""


class LazycurlError(Exception):
    """Base class for every error raised by lazycurl."""


class ConfigError(LazycurlError):
    """Config, environment or request file could not be loaded."""


class CurlParseError(LazycurlError):
    """A pasted curl command could not be imported."""


class ExecutionError(LazycurlError):
    """Base class for execution job failures."""


class InvalidCommand(ExecutionError):
    """The command is empty or does not invoke curl."""

    def __init__(self, command):
        self.command = command
        super().__init__(f"Not a curl command: {command!r}")


class SpawnFailed(ExecutionError):
    """The OS refused to create the child process."""

    def __init__(self, argv: list[str], cause: OSError):
        self.argv = argv
        self.cause = cause
        super().__init__(f"Failed to start {argv[0]}: {cause}")


class ExecutionInProgress(ExecutionError):
    """A job is already running; only one may be active at a time."""

    def __init__(self):
        super().__init__("Another request is still running")


class JobFinished(ExecutionError):
    """finish() was already called on this job."""

    def __init__(self):
        super().__init__("Execution result was already collected")
