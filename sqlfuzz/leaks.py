"""
Memory leak isolation for the SQL parser.

Batches of random queries are run through valgrind against a standalone
parser executable. "Does this batch leak?" is used as a boolean oracle, and
leaking batches are bisected until single leaking queries are left.
"""

from __future__ import annotations

import os
import re
import shutil
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Callable, Sequence, TextIO

from sqlfuzz.errors import SubprocessProtocolError, ToolNotFoundError
from sqlfuzz.generator import QueryGenerator
from sqlfuzz.model import MarkovModel

VALGRIND_PATH = "/usr/bin/valgrind"
# Parses a whole query file in one process, see sqlfuzz/parse_file.py.
PARSER_COMMAND = (sys.executable, "-m", "sqlfuzz.parse_file")
TMP_DIR = Path("/tmp")

# valgrind's leak summary, with at least two digits of lost bytes.
LEAK_PATTERN = re.compile(r"definitely lost: \d{2}")


class LeakChecker:
    """Answers whether a batch of queries makes the parser leak memory."""

    def __init__(
        self,
        valgrind_path: str = VALGRIND_PATH,
        parser_command: Sequence[str] = PARSER_COMMAND,
        tmp_dir: Path = TMP_DIR,
    ):
        self.valgrind_path = valgrind_path
        self.parser_command = list(parser_command)
        self.tmp_dir = tmp_dir
        self.checks_run = 0

    def check_tools(self) -> None:
        """Raise ToolNotFoundError unless valgrind and the parser program can be run.

        A missing program would only show up as valgrind output without a
        leak summary, which reads the same as "no leak".
        """
        for tool in (self.valgrind_path, self.parser_command[0]):
            if shutil.which(tool) is None:
                raise ToolNotFoundError(tool)

    def build_command(self, queries_path: str) -> list[str]:
        return [self.valgrind_path, *self.parser_command, queries_path]

    def has_leak(self, batch: Sequence[str]) -> bool:
        """
        Run the parser under valgrind on `batch` and look for a definite leak.

        The queries are written one per line to a fresh temporary file, which
        is removed again on every exit path. A tool that does not exit
        normally (killed by a signal) raises SubprocessProtocolError.
        """
        if not batch:
            return False

        queries_file = tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", prefix="query-", dir=self.tmp_dir, delete=False
        )
        queries_path = queries_file.name
        try:
            with queries_file:
                for query in batch:
                    queries_file.write(query + "\n")

            command = self.build_command(queries_path)
            self.checks_run += 1
            result = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
            if result.returncode < 0:
                raise SubprocessProtocolError(command, result.returncode)
            return LEAK_PATTERN.search(result.stdout or "") is not None
        finally:
            try:
                os.unlink(queries_path)
            except OSError as e:
                print(f"[!] Warning: Unable to remove file {queries_path}: {e}", file=sys.stderr)


def isolate(
    batch: Sequence[str],
    has_leak: Callable[[Sequence[str]], bool],
    out: TextIO,
) -> list[str]:
    """
    Bisect `batch` down to the single queries that leak on their own.

    This is not a binary search for one culprit: both halves are tested and
    every leaking half is split again, so several independent leaks in one
    batch are all found. Each emitted query is written to `out` on its own
    line and returned in batch order.
    """
    found: list[str] = []

    def _isolate(start: int, end: int) -> None:
        if start >= end:
            return
        if end - start == 1:
            if has_leak(batch[start:end]):
                out.write(batch[start] + "\n")
                out.flush()
                found.append(batch[start])
            return

        mid = start + (end - start) // 2
        if has_leak(batch[start:mid]):
            _isolate(start, mid)
        if has_leak(batch[mid:end]):
            _isolate(mid, end)

    _isolate(0, len(batch))
    return found


class LeakFinder:
    """Generates batches and isolates the leaking queries in each of them."""

    def __init__(self, model: MarkovModel, checker: LeakChecker):
        self.model = model
        self.checker = checker
        self.generator = QueryGenerator(model)

    def find_leaks(self, iterations: int, batch_size: int, out: TextIO) -> list[str]:
        leaks = []
        for i in range(iterations):
            batch = self.generator.generate_batch(batch_size)
            print(
                f"[*] Checking batch {i + 1}/{iterations} of {len(batch)} queries...",
                file=sys.stderr,
            )
            found = isolate(batch, self.checker.has_leak, out)
            if found:
                print(f"  [!!!] {len(found)} leaking queries isolated.", file=sys.stderr)
            leaks.extend(found)
        return leaks
