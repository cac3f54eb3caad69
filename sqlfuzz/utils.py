"""
Helpers shared by the sqlfuzz entry point: tee logging and run statistics.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, TextIO


@dataclass
class RunStats:
    """Counters for one harness run, printed in the summary footer."""

    mode: str
    corpus_path: str
    start_time: str = field(default_factory=lambda: datetime.now().isoformat())
    iterations: int = 0
    # Unknown in crash mode, where the queries are generated by the workers.
    queries_generated: int | None = None
    crashes_found: int = 0
    leaks_found: int = 0
    leak_checks_run: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class TeeLogger:
    """
    A file-like object that writes to both a log file and another stream
    (usually the original stdout).

    Consecutive identical lines are collapsed into one line with a (xN)
    suffix, so a worker that keeps dying on the same input does not flood
    the log.
    """

    def __init__(self, file_path: str | Path, original_stream: TextIO):
        self.original_stream = original_stream
        self.log_file = open(file_path, "w", encoding="utf-8")

        self._last_line: str | None = None
        self._repeat_count = 0

    def _emit(self, text: str) -> None:
        self.original_stream.write(text)
        self.log_file.write(text)

    def _flush_repeat(self) -> None:
        if self._last_line is None:
            return
        output = self._last_line
        if self._repeat_count > 1:
            suffix = f" (x{self._repeat_count})"
            if output.endswith("\n"):
                output = output[:-1] + suffix + "\n"
            else:
                output += suffix
        self._emit(output)
        self._last_line = None
        self._repeat_count = 0

    def write(self, message: str) -> None:
        if not message:
            return

        # print() sends its trailing "\n" as a separate write.
        if message == "\n":
            if self._last_line is not None and self._last_line.endswith("\n"):
                return
            # Terminates a buffered line that was written without its newline.
            if self._last_line is not None:
                self._last_line += "\n"
                return
            self._emit(message)
            self._do_flush()
            return

        if self._last_line is not None and message.rstrip("\n") == self._last_line.rstrip("\n"):
            self._repeat_count += 1
            return

        self._flush_repeat()
        self._last_line = message
        self._repeat_count = 1

    def _do_flush(self) -> None:
        self.original_stream.flush()
        self.log_file.flush()

    def flush(self) -> None:
        self._flush_repeat()
        self._do_flush()

    def close(self) -> None:
        self._flush_repeat()
        self._do_flush()
        self.log_file.close()

    @property
    def encoding(self) -> str:
        return getattr(self.original_stream, "encoding", "utf-8")

    def isatty(self) -> bool:
        return hasattr(self.original_stream, "isatty") and self.original_stream.isatty()

    def fileno(self) -> int:
        """Return the file descriptor of the original stream.

        Raises OSError if the original stream doesn't have a file descriptor.
        """
        if hasattr(self.original_stream, "fileno"):
            return self.original_stream.fileno()
        raise OSError("TeeLogger does not have a file descriptor")
