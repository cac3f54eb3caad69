"""
Command line entry point for sqlfuzz.

Builds the Markov model from the sample query corpus, then runs either the
crash finder (default) or the leak finder (--valgrind).
"""

import argparse
import json
import logging
import os
import platform
import socket
import sys
from datetime import datetime
from pathlib import Path
from textwrap import dedent

import psutil

from sqlfuzz.crashes import CrashFinder, SharedQueryBuffer
from sqlfuzz.errors import SetupError
from sqlfuzz.leaks import LeakChecker, LeakFinder
from sqlfuzz.model import build_model
from sqlfuzz.sql import SqlparseLexer, SqlparseParser
from sqlfuzz.utils import RunStats, TeeLogger

DEFAULT_QUERIES_FILE = Path("queries") / "wikidb.sql"
LOGS_DIR = Path("logs")

CRASH_ITERATIONS = 100
LEAK_ITERATIONS = 10
LEAK_BATCH_SIZE = 10


def get_command_line_options() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="sqlfuzz: find SQL parser crashes and leaks with Markov-generated queries."
    )
    parser.add_argument(
        "-v",
        "--valgrind",
        action="store_true",
        help="Run valgrind to look for memory leaks.",
    )
    parser.add_argument(
        "-q",
        "--queries",
        type=Path,
        default=DEFAULT_QUERIES_FILE,
        help="File to read sample queries for seeding the Markov chain from.",
    )
    return parser


def find_parse_errors(model, stats: RunStats) -> None:
    print("Looking for parse errors")
    buffer = SharedQueryBuffer()
    try:
        finder = CrashFinder(model, SqlparseParser(), buffer)
        reports = finder.find_crashes(CRASH_ITERATIONS, sys.stdout)
        stats.iterations = CRASH_ITERATIONS
        stats.crashes_found = len(reports)
    finally:
        buffer.release()


def find_memory_leaks(model, stats: RunStats) -> None:
    print("Looking for memory leaks")
    checker = LeakChecker()
    checker.check_tools()
    finder = LeakFinder(model, checker)
    try:
        leaks = finder.find_leaks(LEAK_ITERATIONS, LEAK_BATCH_SIZE, sys.stdout)
        stats.leaks_found = len(leaks)
        stats.iterations = LEAK_ITERATIONS
    finally:
        stats.queries_generated = finder.generator.queries_generated
        stats.leak_checks_run = checker.checks_run


def main():
    """Parse command-line arguments and run the selected finder."""
    args = get_command_line_options().parse_args()

    LOGS_DIR.mkdir(exist_ok=True)
    run_start_time = datetime.now()
    timestamp_iso = run_start_time.isoformat()
    safe_timestamp = timestamp_iso.replace(":", "-")
    log_path = LOGS_DIR / f"sqlfuzz_run_{safe_timestamp}.log"
    mode = "leaks" if args.valgrind else "crashes"

    original_stdout = sys.stdout
    original_stderr = sys.stderr

    # This initial print goes only to the console
    print(f"[+] Starting sqlfuzz. Full log will be at: {log_path}")

    tee_logger = TeeLogger(log_path, original_stdout)
    sys.stdout = tee_logger
    sys.stderr = tee_logger
    log_handler = logging.StreamHandler(tee_logger)
    log_handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger = logging.getLogger("sqlfuzz")
    package_logger.addHandler(log_handler)
    package_logger.setLevel(logging.INFO)

    stats = RunStats(mode=mode, corpus_path=str(args.queries), start_time=timestamp_iso)
    termination_reason = "Completed"
    exit_code = 0

    try:
        header = f"""
================================================================================
SQLFUZZ RUN
================================================================================
- Hostname:          {socket.gethostname()}
- Platform:          {platform.platform()}
- Process ID:        {os.getpid()}
- Python Version:    {sys.version.replace(chr(10), " ")}
- CPUs:              {psutil.cpu_count(logical=True)}
- Total RAM:         {psutil.virtual_memory().total / (1024**3):.2f} GB
- Working Dir:       {Path.cwd()}
- Log File:          {log_path}
- Start Time:        {timestamp_iso}
- Command:           {" ".join(sys.argv)}
- Mode:              {mode}
- Corpus:            {args.queries}
================================================================================
"""
        print(dedent(header))

        model = build_model(args.queries, SqlparseLexer())
        if args.valgrind:
            find_memory_leaks(model, stats)
        else:
            find_parse_errors(model, stats)
    except SetupError as e:
        termination_reason = f"Setup failed: {e}"
        exit_code = 1
        print(f"[!] Error: {e}", file=original_stderr)
    except KeyboardInterrupt:
        print("\n[!] Fuzzing stopped by user.")
        termination_reason = "KeyboardInterrupt"
    except Exception as e:
        termination_reason = f"Error: {e}"
        exit_code = 1
        print(f"\n[!!!] An unexpected error occurred: {e}", file=original_stderr)
        import traceback

        traceback.print_exc(file=original_stderr)
    finally:
        duration = datetime.now() - run_start_time
        summary = f"""
================================================================================
SQLFUZZ RUN SUMMARY
================================================================================
- Termination:       {termination_reason}
- Total Duration:    {duration}
- Process RSS:       {psutil.Process().memory_info().rss / (1024 * 1024):.2f} MB

{json.dumps(stats.to_dict(), indent=4)}
================================================================================
"""
        print(dedent(summary))

        package_logger.removeHandler(log_handler)
        tee_logger.close()
        sys.stdout = original_stdout
        sys.stderr = original_stderr
        print(f"[+] sqlfuzz finished. Full log saved to: {log_path}")

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
