"""
Crash isolation for the SQL parser.

Each iteration forks a worker that parses random queries forever. Before every
parse the worker copies the query into a shared memory buffer. The parent does
nothing but wait for the worker to die; once it has, the buffer still holds
the query that was being parsed, because its only writer is gone.

No lock guards the buffer. The worker is the only writer while it is alive
and the parent only reads after waitpid() has returned, so the two never
touch it at the same time.
"""

from __future__ import annotations

import faulthandler
import os
import secrets
import signal
import sys
import traceback
from dataclasses import dataclass
from multiprocessing import shared_memory
from typing import NoReturn, TextIO

from sqlfuzz.analysis import TerminationSignature, TerminationType, decode_wait_status
from sqlfuzz.errors import SharedMemoryError, WorkerError
from sqlfuzz.generator import QueryGenerator
from sqlfuzz.model import MarkovModel
from sqlfuzz.sql import Parser

IPC_SIZE = 4096

# Exit codes used by a worker that leaves on its own.
WORKER_FAULT_EXIT_CODE = 70  # The parser raised.
WORKER_ERROR_EXIT_CODE = 71  # The harness itself failed inside the worker.


class SharedQueryBuffer:
    """A fixed size, NUL terminated text buffer in POSIX shared memory."""

    def __init__(self, size: int = IPC_SIZE, name: str | None = None):
        self.size = size
        self.name = name or f"sqlfuzz-{secrets.token_hex(8)}"
        try:
            self._shm = shared_memory.SharedMemory(name=self.name, create=True, size=size)
        except (OSError, ValueError) as e:
            raise SharedMemoryError(f"Unable to create shared memory {self.name}: {e}") from e
        self._shm.buf[0] = 0

    def write(self, query: str) -> None:
        """Overwrite the buffer with `query`, truncated to fit with its terminator."""
        data = query.encode("utf-8", errors="replace")[: self.size - 1]
        self._shm.buf[: len(data)] = data
        self._shm.buf[len(data)] = 0

    def read(self) -> str:
        raw = bytes(self._shm.buf[: self.size])
        return raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")

    def release(self) -> None:
        """Detach from and destroy the segment."""
        self._shm.close()
        try:
            self._shm.unlink()
        except FileNotFoundError:
            pass


@dataclass
class CrashReport:
    pid: int
    query: str
    signature: TerminationSignature


class CrashFinder:
    """Runs the fork, wait and read cycle against a parser."""

    def __init__(self, model: MarkovModel, parser: Parser, buffer: SharedQueryBuffer):
        self.model = model
        self.parser = parser
        self.buffer = buffer
        self.generator = QueryGenerator(model)

    def _worker_loop(self) -> NoReturn:
        """
        Parse random queries until the parser brings the process down.

        A signal kills the worker outright. An exception escaping the parser
        ends it with WORKER_FAULT_EXIT_CODE; any other failure is the
        harness's own and ends it with WORKER_ERROR_EXIT_CODE.
        """
        exit_code = WORKER_ERROR_EXIT_CODE
        try:
            signal.signal(signal.SIGINT, signal.SIG_DFL)
            faulthandler.enable(file=sys.__stderr__)
            self.generator.reseed()
            while True:
                query = self.generator.generate()
                self.buffer.write(query)
                try:
                    self.parser.parse(query)
                except Exception:
                    exit_code = WORKER_FAULT_EXIT_CODE
                    raise
        except Exception:
            traceback.print_exc()
        finally:
            sys.stderr.flush()
            os._exit(exit_code)

    def find_crashes(self, iterations: int, out: TextIO) -> list[CrashReport]:
        """Fork `iterations` workers one after the other and report how each one died."""
        reports = []
        for i in range(iterations):
            # Pending output would otherwise be written twice, once per process.
            sys.stdout.flush()
            sys.stderr.flush()

            pid = os.fork()
            if pid == 0:
                self._worker_loop()

            _, status = os.waitpid(pid, 0)
            signature = decode_wait_status(status, WORKER_FAULT_EXIT_CODE)
            if (
                signature.termination_type == TerminationType.EXITED
                and signature.returncode == WORKER_ERROR_EXIT_CODE
            ):
                raise WorkerError(f"Worker {pid} failed with an internal harness error")

            query = self.buffer.read()
            print(
                f"[!] Worker {pid} terminated ({signature.fingerprint}) "
                f"in iteration {i + 1}/{iterations}.",
                file=sys.stderr,
            )
            out.write("Child terminated, last query was:\n")
            out.write(query + "\n")
            out.flush()
            reports.append(CrashReport(pid=pid, query=query, signature=signature))
        return reports
