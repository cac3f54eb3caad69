"""
Standalone parser driver used as the leak checker's target.

Reads a file with one query per line and runs every line through the parser,
so the whole batch is parsed inside a single process under valgrind.

Usage: python -m sqlfuzz.parse_file QUERIES_FILE
"""

import argparse
import sys

from sqlfuzz.sql import SqlparseParser


def parse_queries(lines, parser) -> tuple[int, int]:
    """Parse each line and return (queries parsed, queries rejected)."""
    parsed = 0
    rejected = 0
    for line in lines:
        query = line.rstrip("\r\n")
        if not query.strip():
            continue
        parsed += 1
        if not parser.parse(query):
            rejected += 1
    return parsed, rejected


def main(argv=None) -> int:
    arg_parser = argparse.ArgumentParser(
        description="Parse every query in a file, one query per line."
    )
    arg_parser.add_argument("queries_file", help="File with one query per line.")
    args = arg_parser.parse_args(argv)

    try:
        with open(args.queries_file, "r", encoding="utf-8", errors="replace") as f:
            parsed, rejected = parse_queries(f, SqlparseParser())
    except OSError as e:
        print(f"[!] Error: Unable to open file {args.queries_file}: {e}", file=sys.stderr)
        return 1

    print(f"[+] Parsed {parsed} queries, {rejected} rejected.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
