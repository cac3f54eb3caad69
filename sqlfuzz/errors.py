"""
Error types for the sqlfuzz harness.

Only failures of the harness itself are errors. A parser crash or a leaking
query is what the harness is looking for and is reported, not raised.
"""


class SqlFuzzError(Exception):
    """Base class for all sqlfuzz errors."""


class SetupError(SqlFuzzError):
    """The harness could not be set up. Fatal, the run is aborted."""


class CorpusError(SetupError):
    """The sample query corpus could not be read."""

    def __init__(self, path, reason: str):
        super().__init__(f"Unable to open file {path}: {reason}")
        self.path = path


class SharedMemoryError(SetupError):
    """The shared query buffer could not be created or attached."""


class ToolNotFoundError(SetupError):
    """An external program the leak checker runs is not installed."""

    def __init__(self, tool: str):
        super().__init__(f"Required program not found: {tool}")
        self.tool = tool


class SubprocessProtocolError(SqlFuzzError):
    """
    The leak checking tool did not terminate through its normal exit path.

    This means the testing infrastructure misbehaved, so it must never be
    read as "no leak".
    """

    def __init__(self, command: list[str], returncode: int):
        super().__init__(
            f"Leak check command did not exit normally (returncode {returncode}): "
            f"{' '.join(command)}"
        )
        self.command = command
        self.returncode = returncode


class ModelAssumptionError(SqlFuzzError):
    """The generator reached a token that has no transition entry to continue from."""

    def __init__(self, token: int, previous: int | None = None):
        if previous is None:
            message = f"Token {token} has no entry in the transition model"
        else:
            message = (
                f"Token {token} has no entry in the transition model and the "
                f"fallback token {previous} has none either"
            )
        super().__init__(message)
        self.token = token
        self.previous = previous


class WorkerError(SqlFuzzError):
    """A crash-finding worker stopped because of a harness error, not a parser fault."""
